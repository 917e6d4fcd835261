"""Local REST API the stdio adapter talks to."""

import json
import logging
from typing import Any

from fastapi import APIRouter, FastAPI, Request
from fastapi.responses import JSONResponse

from .adapter import INTERNAL_CALL_HEADER
from .errors import GatewayError, GraphRequestError, IntentNotSupportedError, InvalidEntitiesError
from .registry import ModuleRegistry
from .router import IntentRouter
from .tools import API_ROUTES, SERVER_NAME, SERVER_VERSION, ApiRoute, list_tools

logger = logging.getLogger(__name__)

USER_ID_HEADER = "X-User-Id"
SESSION_ID_HEADER = "X-Session-Id"


def status_for(error: GatewayError) -> int:
    if isinstance(error, IntentNotSupportedError):
        return 404
    if error.category == "validation":
        return 400
    if error.category == "auth":
        return 401
    if isinstance(error, GraphRequestError) and error.status_code in (403, 404, 409, 412):
        return error.status_code
    return 500


async def _json_body(request: Request) -> dict[str, Any]:
    raw = await request.body()
    if not raw:
        return {}
    try:
        body = json.loads(raw)
    except ValueError:
        raise InvalidEntitiesError("Request body is not valid JSON")
    if not isinstance(body, dict):
        raise InvalidEntitiesError("Request body must be a JSON object")
    return body


def _request_context(request: Request) -> dict[str, Any]:
    return {
        "source": "api",
        "path": request.url.path,
        "internalCall": request.headers.get(INTERNAL_CALL_HEADER) == "true",
    }


def _capability_endpoint(route: ApiRoute):
    async def endpoint(request: Request) -> Any:
        entities: dict[str, Any] = dict(request.query_params)
        if route.has_body:
            entities.update(await _json_body(request))
        entities.update(request.path_params)

        router: IntentRouter = request.app.state.router
        return await router.route_intent(
            route.capability,
            entities,
            _request_context(request),
            user_id=request.headers.get(USER_ID_HEADER),
            session_id=request.headers.get(SESSION_ID_HEADER),
        )

    endpoint.__name__ = route.rpc_method.replace(".", "_")
    return endpoint


def create_app(
    router: IntentRouter, registry: ModuleRegistry, base_path: str = "/api"
) -> FastAPI:
    app = FastAPI(title=SERVER_NAME, version=SERVER_VERSION)
    app.state.router = router
    app.state.registry = registry

    api = APIRouter(prefix=base_path.rstrip("/"))

    @api.get("/health")
    async def health():
        return {"status": "ok"}

    @api.get("/tools")
    async def tools():
        return {"tools": list_tools()}

    @api.get("/v1/modules")
    async def modules():
        result = []
        for module in registry.list_all():
            info = registry.registration_info(module.id)
            result.append(
                {
                    "id": module.id,
                    "name": module.name,
                    "capabilities": list(module.capabilities),
                    "priority": registry.priority_of(module.id),
                    "registeredAt": info.registered_at.isoformat() if info else None,
                }
            )
        return {"modules": result}

    @api.get("/v1/capabilities")
    async def capabilities():
        return {"capabilities": registry.list_capabilities()}

    @api.get("/v1/intents/{intent}/modules")
    async def intent_modules(intent: str):
        modules = router.get_modules_for_intent(intent)
        return {"intent": intent, "modules": [module.id for module in modules]}

    @api.post("/v1/intents")
    async def route_intent(request: Request):
        body = await _json_body(request)
        intent = body.get("intent")
        if not isinstance(intent, str) or not intent:
            raise InvalidEntitiesError(
                "intent is required", context={"missing": ["intent"]}
            )
        entities = body.get("entities") or {}
        if not isinstance(entities, dict):
            raise InvalidEntitiesError("entities must be an object")
        context = body.get("context") or {}
        if not isinstance(context, dict):
            raise InvalidEntitiesError("context must be an object")
        result = await router.route_intent(
            intent,
            entities,
            {**_request_context(request), **context},
            user_id=request.headers.get(USER_ID_HEADER),
            session_id=request.headers.get(SESSION_ID_HEADER),
        )
        return {"intent": intent, "result": result}

    for route in API_ROUTES:
        api.add_api_route(
            route.path,
            _capability_endpoint(route),
            methods=[route.http_method],
            name=route.rpc_method,
        )

    app.include_router(api)

    @app.exception_handler(GatewayError)
    async def gateway_error_handler(request: Request, exc: GatewayError):
        status = status_for(exc)
        if status >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
        return JSONResponse(status_code=status, content={"error": exc.to_api_dict()})

    return app

