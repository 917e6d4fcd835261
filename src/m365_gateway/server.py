"""Console entry points: stdio adapter, local REST API and interactive sign-in."""

import asyncio
import datetime
import logging
import sys

import uvicorn

from .adapter import ApiClient, StdioAdapter
from .api import create_app
from .auth import SCOPES, AzureAuthentication
from .config import GatewaySettings
from .events import EventBus
from .graph import GraphClient
from .modules import ModuleServices, initialize_modules, register_default_modules
from .monitoring import LoggingMonitoringService, configure_logging
from .registry import ModuleRegistry
from .router import IntentRouter

logger = logging.getLogger(__name__)


def build_gateway(settings: GatewaySettings) -> tuple[ModuleRegistry, IntentRouter]:
    """Wire the registry, handler modules and router for one process."""
    events = EventBus()
    monitoring = LoggingMonitoringService(events)
    registry = ModuleRegistry(monitoring)
    register_default_modules(registry)

    graph = GraphClient(AzureAuthentication(settings), timeout=settings.api_timeout)
    services = ModuleServices(
        graph=graph, registry=registry, monitoring=monitoring, events=events
    )
    initialize_modules(registry, services, monitoring)
    return registry, IntentRouter(registry, monitoring, events)


def adapter_main() -> None:
    settings = GatewaySettings.from_env()
    configure_logging(settings.log_level)

    adapter = StdioAdapter(
        ApiClient(settings.api_base_url, timeout=settings.api_timeout),
        health_check_interval=settings.health_check_interval,
        check_backend=not settings.skip_init,
    )
    sys.exit(asyncio.run(adapter.serve()))


def api_main() -> None:
    settings = GatewaySettings.from_env()
    configure_logging(settings.log_level)

    if not settings.client_id:
        print(
            "Error: M365_GATEWAY_CLIENT_ID environment variable is required",
            file=sys.stderr,
        )
        sys.exit(1)

    registry, router = build_gateway(settings)
    app = create_app(router, registry, settings.api_base_path)
    logger.info(f"Local API listening on {settings.api_base_url}")
    uvicorn.run(
        app,
        host=settings.api_host,
        port=settings.api_port,
        log_level=settings.log_level.lower(),
    )


async def _whoami(auth: AzureAuthentication) -> dict:
    graph = GraphClient(auth)
    try:
        return await graph.request(
            "GET", "/me", params={"$select": "id,displayName,mail,userPrincipalName"}
        )
    finally:
        await graph.aclose()


def _print_user(user_info: dict) -> None:
    print(f"Signed in as: {user_info['displayName']}")
    print(f"Email: {user_info.get('mail') or user_info.get('userPrincipalName')}")
    print(f"User ID: {user_info['id']}")


def _print_token(auth: AzureAuthentication) -> None:
    try:
        token, expires_on = auth.get_token_with_details()
        expires_dt = datetime.datetime.fromtimestamp(expires_on)
        print("\nToken Information:")
        print(f"   Token (first 20 chars): {token[:20]}...")
        print(f"   Expires on: {expires_dt.strftime('%Y-%m-%d %H:%M:%S')}")
        print(f"   Expires in: {expires_dt - datetime.datetime.now()}")
    except Exception as e:
        print(f"   Could not retrieve token details: {e}")


def login_main() -> None:
    """Sign in to Microsoft 365 once so later runs authenticate silently."""
    settings = GatewaySettings.from_env()
    configure_logging("WARNING")

    if not settings.client_id:
        print("Error: M365_GATEWAY_CLIENT_ID environment variable is required")
        print("\nPlease set it in your .env file or environment:")
        print("export M365_GATEWAY_CLIENT_ID='your-app-id'")
        print("\nOptional environment variables:")
        print("- M365_GATEWAY_TENANT_ID: Tenant ID (defaults to 'common')")
        print("- M365_GATEWAY_REDIRECT_URI: Custom redirect URI")
        sys.exit(1)

    print("Microsoft 365 Gateway - Delegated Access Sign-in")
    print("================================================")
    if settings.redirect_uri:
        print(f"Using custom redirect URI: {settings.redirect_uri}")
    print()

    auth = AzureAuthentication(settings)

    if auth.exists_valid_token():
        try:
            _print_user(asyncio.run(_whoami(auth)))
            _print_token(auth)
            choice = input("\nDo you want to re-authenticate? (y/n): ").lower()
            if choice != "y":
                print("Using existing authentication.")
                return
            auth.clear_cache()
        except Exception as e:
            print(f"Authentication check failed: {e}")
            print("Proceeding with authentication...")

    print("This will open a browser window for Microsoft sign-in.")
    print("\nRequested permissions:")
    for scope in SCOPES:
        print(f"   - {scope}")

    try:
        auth.authenticate()
        print("\nAuthentication successful!")
        print(f"AuthenticationRecord saved to: {auth.auth_record_file}")
        _print_user(asyncio.run(_whoami(auth)))
        _print_token(auth)
    except Exception as e:
        print(f"\nAuthentication failed: {e}")
        sys.exit(1)

    print("\nFuture runs will authenticate silently using the saved AuthenticationRecord.")
