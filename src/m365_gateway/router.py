"""
Intent router.

Resolves an intent name to the highest-priority module advertising it and
runs that module's handler. Every failure that leaves ``route_intent`` is a
``GatewayError``: errors that are already categorized pass through
unchanged, anything else is wrapped once in ``IntentHandlingError``.
"""

import logging
import time
import traceback
from typing import Any, Optional

from .errors import (
    GatewayError,
    IntentHandlingError,
    IntentNotSupportedError,
    InvalidModuleError,
)
from .events import EventBus, NullEventBus
from .monitoring import MonitoringService
from .redaction import redact_sensitive_data
from .registry import HandlerModule, ModuleRegistry

logger = logging.getLogger(__name__)

ROUTING_TIME_METRIC = "intent_routing_time"


class IntentRouter:
    def __init__(
        self,
        registry: ModuleRegistry,
        monitoring: Optional[MonitoringService] = None,
        events: Optional[EventBus] = None,
    ):
        self.registry = registry
        self.monitoring = monitoring or MonitoringService()
        self.events = events or NullEventBus()

    def get_modules_for_intent(self, intent: str) -> list[HandlerModule]:
        logger.debug(f"Looking up modules for intent '{intent}'")
        modules = self.registry.find_by_capability(intent)
        module_ids = [module.id for module in modules]
        self.monitoring.info(
            "Modules found for intent",
            {"intent": intent, "count": len(modules), "moduleIds": module_ids},
            category="intent-router",
        )
        self.events.publish(
            "modulesFound", {"intent": intent, "moduleIds": module_ids}
        )
        return modules

    async def route_intent(
        self,
        intent: str,
        entities: Optional[dict[str, Any]] = None,
        context: Optional[dict[str, Any]] = None,
        user_id: Optional[str] = None,
        session_id: Optional[str] = None,
    ) -> Any:
        """Dispatch ``intent`` to the first module that supports it.

        Args:
            intent: capability name, e.g. ``"readMail"``.
            entities: structured arguments for the handler.
            context: ambient state passed through to the handler.
            user_id: requester identity, used to tag log events.
            session_id: requester session, used to tag log events.

        Raises:
            IntentNotSupportedError: no module advertises ``intent``.
            InvalidModuleError: the selected module has no callable handler.
            GatewayError: any handler failure, categorized.
        """
        entities = entities if entities is not None else {}
        context = context if context is not None else {}
        started = time.perf_counter()

        log_metadata = {
            "intent": intent,
            "entities": redact_sensitive_data(entities),
            "context": redact_sensitive_data(context),
            "sessionId": session_id,
        }
        logger.info(f"Routing intent '{intent}'")
        self.monitoring.debug(
            "Routing intent", log_metadata, category="intent-router", user_id=user_id
        )

        modules = self.registry.find_by_capability(intent)
        if not modules:
            error = IntentNotSupportedError(
                f"No module found for intent: {intent}",
                context={"intent": intent},
                user_id=user_id,
            )
            self.monitoring.log_error(error)
            if user_id:
                self.monitoring.error(
                    f"No module found for intent: {intent}",
                    {"intent": intent, "sessionId": session_id},
                    category="intent-router",
                    user_id=user_id,
                )
            raise error

        module = modules[0]
        handler = getattr(module, "handle_intent", None)
        if not callable(handler):
            error = InvalidModuleError(
                f"Module '{module.id}' does not implement handle_intent",
                context={"intent": intent, "moduleId": module.id},
                user_id=user_id,
            )
            self.monitoring.log_error(error)
            raise error

        try:
            result = await handler(intent, entities, context)
        except GatewayError as e:
            self._track(intent, module.id, started, success=False)
            self.monitoring.log_error(e)
            raise
        except Exception as e:
            self._track(intent, module.id, started, success=False)
            wrapped = IntentHandlingError(
                f"Error handling intent '{intent}': {e}",
                context={
                    "intent": intent,
                    "moduleId": module.id,
                    "originalError": str(e),
                    "errorType": type(e).__name__,
                    "stack": "".join(
                        traceback.format_exception(type(e), e, e.__traceback__)
                    ),
                },
                user_id=user_id,
            )
            logger.error(
                f"Intent '{intent}' failed in module '{module.id}': {e}",
                exc_info=True,
            )
            self.monitoring.log_error(wrapped)
            raise wrapped from e

        elapsed = self._track(intent, module.id, started, success=True)
        self.monitoring.info(
            "Intent handled",
            {**log_metadata, "moduleId": module.id, "durationMs": elapsed},
            category="intent-router",
            user_id=user_id,
        )
        self.events.publish(
            "intentHandled",
            {
                "intent": intent,
                "moduleId": module.id,
                "durationMs": elapsed,
                "userId": user_id,
                "sessionId": session_id,
            },
        )
        return result

    def _track(self, intent: str, module_id: str, started: float, success: bool) -> float:
        elapsed = (time.perf_counter() - started) * 1000
        self.monitoring.track_metric(
            ROUTING_TIME_METRIC,
            elapsed,
            {"intent": intent, "moduleId": module_id, "success": success},
        )
        return elapsed
