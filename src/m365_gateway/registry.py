"""
Module registry.

An in-memory directory of handler modules and the capabilities they
advertise. Modules are registered once at startup and live for the
lifetime of the process; there is no unregister.
"""

import copy
import logging
import numbers
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional, Protocol, Sequence, runtime_checkable

from .errors import ModuleNotRegisteredError, ModuleRegistrationError
from .monitoring import MonitoringService

logger = logging.getLogger(__name__)


@runtime_checkable
class HandlerModule(Protocol):
    """Contract every handler module fulfils.

    ``priority`` is optional on the module; the registry defaults it to 0.
    """

    id: str
    name: str
    capabilities: Sequence[str]

    def init(self, services: Any) -> Any: ...

    async def handle_intent(
        self, intent: str, entities: dict[str, Any], context: dict[str, Any]
    ) -> Any: ...


@dataclass(frozen=True)
class RegistrationInfo:
    module_id: str
    registered_at: datetime


class ModuleRegistry:
    def __init__(self, monitoring: Optional[MonitoringService] = None):
        self.monitoring = monitoring or MonitoringService()
        self._modules: dict[str, HandlerModule] = {}
        # capability -> module ids in registration order
        self._capability_index: dict[str, dict[str, None]] = {}
        self._registrations: dict[str, RegistrationInfo] = {}
        self._priorities: dict[str, float] = {}

    def _reject(self, message: str) -> None:
        logger.error(f"Module registration rejected: {message}")
        self.monitoring.error(message, category="module")
        raise ModuleRegistrationError(message)

    def _validate(self, module: Any) -> None:
        if module is None:
            self._reject("module is required")

        module_id = getattr(module, "id", None)
        if not isinstance(module_id, str) or not module_id:
            self._reject("module id must be a non-empty string")
        if module_id in self._modules:
            self._reject(f"Module '{module_id}' is already registered")

        if not isinstance(getattr(module, "name", None), str):
            self._reject(f"Module '{module_id}' name must be a string")

        capabilities = getattr(module, "capabilities", None)
        if not isinstance(capabilities, (list, tuple, set, frozenset)) or not all(
            isinstance(capability, str) for capability in capabilities
        ):
            self._reject(
                f"Module '{module_id}' capabilities must be a list of strings"
            )

        for method in ("init", "handle_intent"):
            if not callable(getattr(module, method, None)):
                self._reject(f"Module '{module_id}' must implement {method}()")

    def register(self, module: HandlerModule) -> None:
        """Validate and register ``module``.

        Raises:
            ModuleRegistrationError: if the module violates the handler
                contract or its id is already taken. The registry is left
                unchanged in that case.
        """
        self._validate(module)

        priority = getattr(module, "priority", 0)
        if priority is None:
            priority = 0
        elif isinstance(priority, bool) or not isinstance(priority, numbers.Real):
            logger.warning(
                f"Module '{module.id}' has non-numeric priority {priority!r}, using 0"
            )
            priority = 0

        entry = copy.copy(module)
        if getattr(entry, "priority", None) != priority:
            try:
                entry.priority = priority
            except AttributeError:
                # frozen or slotted module; priority_of() stays authoritative
                logger.debug(f"Module '{entry.id}' is immutable, priority kept by the registry")

        self._priorities[entry.id] = priority
        self._modules[entry.id] = entry
        self._registrations[entry.id] = RegistrationInfo(
            module_id=entry.id, registered_at=datetime.now(timezone.utc)
        )
        for capability in entry.capabilities:
            self._capability_index.setdefault(capability, {})[entry.id] = None

        logger.info(
            f"Registered module '{entry.id}' with capabilities: "
            f"{', '.join(sorted(entry.capabilities))}"
        )
        self.monitoring.info(
            "Module registered",
            {"moduleId": entry.id, "capabilities": list(entry.capabilities)},
            category="module",
        )

    def lookup(self, module_id: str, strict: bool = False) -> Optional[HandlerModule]:
        module = self._modules.get(module_id)
        if module is None and strict:
            raise ModuleNotRegisteredError(f"Module '{module_id}' is not registered")
        return module

    def list_all(self) -> list[HandlerModule]:
        return list(self._modules.values())

    def find_by_capability(self, capability: str) -> list[HandlerModule]:
        """Modules advertising ``capability``, highest priority first.

        Modules of equal priority keep their registration order.
        """
        module_ids = self._capability_index.get(capability, {})
        modules = [self._modules[module_id] for module_id in module_ids]
        return sorted(
            modules, key=lambda module: self._priorities[module.id], reverse=True
        )

    def list_capabilities(self) -> list[str]:
        return sorted(self._capability_index)

    def priority_of(self, module_id: str) -> float:
        """Resolved priority of a registered module (0 when unknown)."""
        return self._priorities.get(module_id, 0)

    def registration_info(self, module_id: str) -> Optional[RegistrationInfo]:
        return self._registrations.get(module_id)
