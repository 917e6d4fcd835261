"""
Logging and metrics collaborators.

``MonitoringService`` is the interface the router, registry and handler
modules log through. The base class does nothing, so components constructed
without a monitoring service never need to check whether one is available.
``LoggingMonitoringService`` writes through the standard ``logging`` module
(to stderr, see ``configure_logging``) and throttles error storms.
"""

import logging
import sys
import time
from typing import Any, Callable, Optional

from .errors import GatewayError
from .events import EventBus, NullEventBus

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

# Error throttling: at most this many errors per category per window
MAX_ERRORS_PER_WINDOW = 10
ERROR_WINDOW_SECONDS = 1.0


def configure_logging(level: str | int = logging.INFO) -> None:
    """Send all diagnostic output to stderr.

    Stdout is reserved for the JSON-RPC stream when running as an adapter.
    """
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO
    logging.basicConfig(
        level=level, format=LOG_FORMAT, stream=sys.stderr, force=True
    )


class MonitoringService:
    """No-op monitoring collaborator."""

    def debug(
        self,
        message: str,
        metadata: Optional[dict[str, Any]] = None,
        category: Optional[str] = None,
        error: Optional[BaseException] = None,
        user_id: Optional[str] = None,
        device_id: Optional[str] = None,
    ) -> None:
        pass

    def info(
        self,
        message: str,
        metadata: Optional[dict[str, Any]] = None,
        category: Optional[str] = None,
        error: Optional[BaseException] = None,
        user_id: Optional[str] = None,
        device_id: Optional[str] = None,
    ) -> None:
        pass

    def warn(
        self,
        message: str,
        metadata: Optional[dict[str, Any]] = None,
        category: Optional[str] = None,
        error: Optional[BaseException] = None,
        user_id: Optional[str] = None,
        device_id: Optional[str] = None,
    ) -> None:
        pass

    def error(
        self,
        message: str,
        metadata: Optional[dict[str, Any]] = None,
        category: Optional[str] = None,
        error: Optional[BaseException] = None,
        user_id: Optional[str] = None,
        device_id: Optional[str] = None,
    ) -> None:
        pass

    def log_error(self, error: GatewayError) -> None:
        pass

    def track_metric(
        self, name: str, value: float, tags: Optional[dict[str, Any]] = None
    ) -> None:
        pass


class LoggingMonitoringService(MonitoringService):
    """Monitoring service backed by the ``logging`` module."""

    def __init__(
        self,
        events: Optional[EventBus] = None,
        logger_name: str = "m365_gateway",
        clock: Callable[[], float] = time.monotonic,
    ):
        self.events = events or NullEventBus()
        self._logger = logging.getLogger(logger_name)
        self._clock = clock
        self._error_windows: dict[str, tuple[float, int, int]] = {}

    def _format(
        self,
        message: str,
        metadata: Optional[dict[str, Any]],
        category: Optional[str],
        user_id: Optional[str],
        device_id: Optional[str],
    ) -> str:
        parts = []
        if category:
            parts.append(f"[{category}]")
        parts.append(message)
        if user_id:
            parts.append(f"user={user_id}")
        if device_id:
            parts.append(f"device={device_id}")
        if metadata:
            parts.append(f"{metadata}")
        return " ".join(parts)

    def _allow_error(self, category: str) -> bool:
        """Apply the per-category error budget, reporting suppressed counts."""
        now = self._clock()
        window_start, count, suppressed = self._error_windows.get(
            category, (now, 0, 0)
        )
        if now - window_start >= ERROR_WINDOW_SECONDS:
            if suppressed:
                self._logger.warning(
                    f"[{category}] {suppressed} errors suppressed by throttling"
                )
            window_start, count, suppressed = now, 0, 0

        if count >= MAX_ERRORS_PER_WINDOW:
            self._error_windows[category] = (window_start, count, suppressed + 1)
            return False

        self._error_windows[category] = (window_start, count + 1, suppressed)
        return True

    def debug(self, message, metadata=None, category=None, error=None,
              user_id=None, device_id=None):
        self._logger.debug(
            self._format(message, metadata, category, user_id, device_id)
        )

    def info(self, message, metadata=None, category=None, error=None,
             user_id=None, device_id=None):
        self._logger.info(
            self._format(message, metadata, category, user_id, device_id)
        )

    def warn(self, message, metadata=None, category=None, error=None,
             user_id=None, device_id=None):
        self._logger.warning(
            self._format(message, metadata, category, user_id, device_id)
        )

    def error(self, message, metadata=None, category=None, error=None,
              user_id=None, device_id=None):
        category = category or "system"
        if not self._allow_error(category):
            return
        self._logger.error(
            self._format(message, metadata, category, user_id, device_id),
            exc_info=error if isinstance(error, BaseException) else None,
        )
        self.events.publish(
            "log:error",
            {
                "message": message,
                "category": category,
                "userId": user_id,
                "deviceId": device_id,
            },
        )

    def log_error(self, error: GatewayError) -> None:
        if not self._allow_error(error.category):
            return
        level = {
            "info": logging.INFO,
            "warning": logging.WARNING,
            "error": logging.ERROR,
            "critical": logging.CRITICAL,
        }[error.severity]
        self._logger.log(level, f"[{error.category}] {error.message} {error.to_log_dict()}")
        self.events.publish("log:error", error.to_log_dict())

    def track_metric(self, name, value, tags=None):
        self._logger.debug(f"metric {name}={value:.2f} {tags or {}}")
