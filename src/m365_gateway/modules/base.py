import logging
from dataclasses import dataclass, field
from io import BytesIO
from typing import Any, ClassVar, Optional

from markitdown import MarkItDown, StreamInfo

from ..errors import GatewayError, IntentNotSupportedError, InvalidEntitiesError
from ..events import EventBus, NullEventBus
from ..graph import GraphClient
from ..monitoring import MonitoringService

logger = logging.getLogger(__name__)

markitdown = MarkItDown(enable_builtins=True)


@dataclass
class ModuleServices:
    """Shared collaborators handed to every module in ``init``."""

    graph: Optional[GraphClient] = None
    registry: Any = None
    monitoring: MonitoringService = field(default_factory=MonitoringService)
    events: EventBus = field(default_factory=NullEventBus)


def as_bool(value: Any, default: bool = False) -> bool:
    """Coerce query-string style flags ("true", "0", ...) to bool."""
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


def as_int(value: Any, default: int, name: str = "value") -> int:
    if value is None or value == "":
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        raise InvalidEntitiesError(
            f"{name} must be an integer", context={"field": name}
        )


def require(entities: dict[str, Any], *names: str) -> None:
    """Raise InvalidEntitiesError naming every missing entity."""
    missing = [name for name in names if entities.get(name) in (None, "", [])]
    if missing:
        raise InvalidEntitiesError(
            f"Missing required field(s): {', '.join(missing)}",
            context={"missing": missing},
        )


def as_list(value: Any) -> list[str]:
    """Accept a list or a comma-separated string of values."""
    if value is None or value == "":
        return []
    if isinstance(value, str):
        return [part.strip() for part in value.split(",") if part.strip()]
    if isinstance(value, (list, tuple, set)):
        return [str(part).strip() for part in value if str(part).strip()]
    raise InvalidEntitiesError(
        "Expected a list or a comma-separated string",
        context={"valueType": type(value).__name__},
    )


def recipients(addresses: list[str]) -> list[dict[str, Any]]:
    """Graph recipient objects for plain email addresses."""
    return [{"emailAddress": {"address": address}} for address in addresses]


def convert_to_markdown(content: str | bytes, mimetype: str = "text/html") -> str:
    """Convert HTML (or any document markitdown understands) to Markdown."""
    if isinstance(content, str):
        content = content.encode("utf-8")
    stream = BytesIO(content)
    return markitdown.convert(
        stream, stream_info=StreamInfo(mimetype=mimetype)
    ).text_content


def truncate(content: str, max_length: int) -> tuple[str, bool]:
    if len(content) <= max_length:
        return content, False
    return (
        content[:max_length]
        + f"\n\n[Content truncated - {len(content)} total characters]",
        True,
    )


class BaseHandlerModule:
    """Common plumbing for Microsoft 365 handler modules.

    Subclasses set ``id``, ``name`` and ``handlers``, a mapping from
    capability name to the name of the coroutine method serving it.
    """

    id: ClassVar[str]
    name: ClassVar[str]
    handlers: ClassVar[dict[str, str]] = {}
    priority = 0

    def __init__(self):
        self.services = ModuleServices()

    @property
    def capabilities(self) -> list[str]:
        return list(self.handlers)

    @property
    def graph(self) -> GraphClient:
        if self.services.graph is None:
            raise GatewayError(
                f"Module '{self.id}' has no Graph client; was init() called?",
                category="module",
            )
        return self.services.graph

    def init(self, services: ModuleServices) -> "BaseHandlerModule":
        self.services = services
        logger.info(f"Module '{self.id}' initialized")
        return self

    async def handle_intent(
        self, intent: str, entities: dict[str, Any], context: dict[str, Any]
    ) -> Any:
        method_name = self.handlers.get(intent)
        if method_name is None:
            raise IntentNotSupportedError(
                f"Module '{self.id}' does not support intent: {intent}",
                context={"intent": intent, "moduleId": self.id},
            )

        logger.info(f"{self.id}.{method_name} called")
        try:
            return await getattr(self, method_name)(entities or {}, context or {})
        except GatewayError:
            raise
        except Exception as e:
            logger.error(f"{self.id}.{method_name} failed: {str(e)}", exc_info=True)
            raise
