import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

ENV_PREFIX = "M365_GATEWAY_"


def _env(name: str, default: Optional[str] = None) -> Optional[str]:
    return os.getenv(f"{ENV_PREFIX}{name}", default)


def _env_bool(name: str, default: bool = False) -> bool:
    value = _env(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class GatewaySettings:
    """Runtime settings, read from the environment (and a ``.env`` file)."""

    client_id: Optional[str] = None
    tenant_id: str = "common"
    redirect_uri: Optional[str] = None
    auth_record_file: Path = Path.home() / ".m365-gateway-auth.json"
    token_cache_name: str = "m365-gateway-token-cache"
    api_host: str = "127.0.0.1"
    api_port: int = 3000
    api_base_path: str = "/api"
    api_timeout: float = 30.0
    health_check_interval: float = 30.0
    skip_init: bool = False
    log_level: str = "INFO"

    @property
    def api_base_url(self) -> str:
        return f"http://{self.api_host}:{self.api_port}{self.api_base_path}"

    @classmethod
    def from_env(cls, dotenv: bool = True) -> "GatewaySettings":
        if dotenv:
            load_dotenv()

        auth_record = _env("AUTH_RECORD")
        return cls(
            client_id=_env("CLIENT_ID"),
            tenant_id=_env("TENANT_ID", "common"),
            redirect_uri=_env("REDIRECT_URI"),
            auth_record_file=(
                Path(auth_record).expanduser()
                if auth_record
                else Path.home() / ".m365-gateway-auth.json"
            ),
            token_cache_name=_env("TOKEN_CACHE_NAME", "m365-gateway-token-cache"),
            api_host=_env("API_HOST", "127.0.0.1"),
            api_port=int(_env("API_PORT", "3000")),
            api_base_path="/" + _env("API_BASE_PATH", "/api").strip("/"),
            api_timeout=float(_env("API_TIMEOUT", "30")),
            health_check_interval=float(_env("HEALTH_CHECK_INTERVAL", "30")),
            skip_init=_env_bool("SKIP_INIT"),
            log_level=_env("LOG_LEVEL", "INFO"),
        )
