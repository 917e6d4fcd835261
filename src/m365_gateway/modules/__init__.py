"""Microsoft 365 handler modules and their startup wiring."""

import logging
import time

from ..monitoring import MonitoringService
from ..registry import ModuleRegistry
from .base import BaseHandlerModule, ModuleServices
from .calendar import CalendarModule
from .files import FilesModule
from .mail import MailModule
from .people import PeopleModule

logger = logging.getLogger(__name__)

DEFAULT_MODULES = (MailModule, CalendarModule, FilesModule, PeopleModule)


def register_default_modules(registry: ModuleRegistry) -> None:
    for module_class in DEFAULT_MODULES:
        registry.register(module_class())


def initialize_modules(
    registry: ModuleRegistry,
    services: ModuleServices,
    monitoring: MonitoringService | None = None,
) -> list[str]:
    """Call ``init`` on every registered module.

    A module whose ``init`` fails is logged and skipped; the others still
    start. Returns the ids of the modules that initialized.
    """
    monitoring = monitoring or MonitoringService()
    started = time.perf_counter()
    initialized = []

    for module in registry.list_all():
        try:
            module.init(services)
            initialized.append(module.id)
        except Exception as e:
            logger.error(f"Module '{module.id}' failed to initialize: {e}", exc_info=True)
            monitoring.error(
                f"Module '{module.id}' failed to initialize",
                {"moduleId": module.id},
                category="module",
                error=e,
            )

    elapsed = (time.perf_counter() - started) * 1000
    monitoring.track_metric(
        "module_initialization_time", elapsed, {"modules": len(initialized)}
    )
    logger.info(f"Initialized {len(initialized)} module(s): {', '.join(initialized)}")
    return initialized


__all__ = [
    "BaseHandlerModule",
    "CalendarModule",
    "DEFAULT_MODULES",
    "FilesModule",
    "MailModule",
    "ModuleServices",
    "PeopleModule",
    "initialize_modules",
    "register_default_modules",
]
