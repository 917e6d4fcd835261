"""
Normalized error types for the gateway.

Every failure that leaves the intent router, a handler module or the local
API is a ``GatewayError``: it carries a category, a severity, a sanitized
context and identifiers that tie log lines together. Callers only ever need
to check ``isinstance(err, GatewayError)`` to know whether a failure has
already been categorized.
"""

import uuid
from datetime import datetime, timezone
from typing import Any, Mapping, Optional

CATEGORIES = (
    "auth",
    "graph",
    "api",
    "module",
    "intent-router",
    "validation",
    "protocol",
    "system",
)

SEVERITIES = ("info", "warning", "error", "critical")

# Keys dropped from error context before it is stored or logged
_SECRET_KEYS = {
    "password",
    "token",
    "secret",
    "accesstoken",
    "refreshtoken",
    "clientsecret",
}


def sanitize_context(context: Optional[Mapping[str, Any]]) -> dict[str, Any]:
    """Return a copy of ``context`` without credential-like keys."""
    if not context:
        return {}
    return {
        key: value
        for key, value in context.items()
        if str(key).casefold() not in _SECRET_KEYS
    }


class GatewayError(Exception):
    """An error that has already been categorized."""

    default_category = "system"
    default_severity = "error"

    def __init__(
        self,
        message: str,
        category: Optional[str] = None,
        severity: Optional[str] = None,
        context: Optional[Mapping[str, Any]] = None,
        trace_id: Optional[str] = None,
        user_id: Optional[str] = None,
        device_id: Optional[str] = None,
    ):
        super().__init__(message)
        category = category or self.default_category
        severity = severity or self.default_severity
        if category not in CATEGORIES:
            raise ValueError(f"Unknown error category: {category}")
        if severity not in SEVERITIES:
            raise ValueError(f"Unknown error severity: {severity}")

        self.id = str(uuid.uuid4())
        self.message = message
        self.category = category
        self.severity = severity
        self.context = sanitize_context(context)
        self.timestamp = datetime.now(timezone.utc).isoformat()
        self.trace_id = trace_id
        self.user_id = user_id
        self.device_id = device_id

    def to_api_dict(self) -> dict[str, Any]:
        """Fields that are safe to hand to an API client (no stack, no context)."""
        return {
            "id": self.id,
            "category": self.category,
            "message": self.message,
            "severity": self.severity,
            "timestamp": self.timestamp,
        }

    def to_log_dict(self) -> dict[str, Any]:
        data = self.to_api_dict()
        data["context"] = self.context
        if self.trace_id:
            data["traceId"] = self.trace_id
        if self.user_id:
            data["userId"] = self.user_id
        if self.device_id:
            data["deviceId"] = self.device_id
        return data


class IntentNotSupportedError(GatewayError):
    """No registered module advertises the requested intent."""

    default_category = "module"


class InvalidModuleError(GatewayError):
    """The selected module does not honour the handler contract."""

    default_category = "module"


class IntentHandlingError(GatewayError):
    """A handler raised an exception that was not already categorized."""

    default_category = "intent-router"


class InvalidEntitiesError(GatewayError):
    """A handler rejected the entities it was given."""

    default_category = "validation"
    default_severity = "warning"


class ModuleRegistrationError(ValueError):
    """A module failed structural validation at registration."""


class ModuleNotRegisteredError(LookupError):
    """A strict lookup found no module with the requested id."""


class GraphRequestError(GatewayError):
    """Microsoft Graph answered with an error status."""

    default_category = "graph"

    def __init__(self, message: str, status_code: int, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.status_code = status_code
        self.context.setdefault("statusCode", status_code)
