"""Microsoft 365 gateway - MCP access to mail, calendar, files and people."""

from .errors import GatewayError
from .redaction import redact_sensitive_data
from .registry import HandlerModule, ModuleRegistry
from .router import IntentRouter

__all__ = [
    "GatewayError",
    "HandlerModule",
    "IntentRouter",
    "ModuleRegistry",
    "redact_sensitive_data",
]
