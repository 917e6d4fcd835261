"""
Stdio JSON-RPC adapter.

Speaks line-delimited JSON-RPC 2.0 with an LLM host on stdin/stdout and
translates a fixed set of methods into calls against the gateway's local REST
API. Stdout carries protocol messages only; every diagnostic goes through
``logging`` to stderr.

Requests are handled concurrently: a slow request does not hold back the
ones after it, so responses may arrive out of order and the host has to
match them by ``id``.
"""

import asyncio
import calendar
import contextlib
import datetime as dt
import json
import logging
import random
import signal
import sys
import threading
from typing import Any, Awaitable, Callable, Optional, TextIO
from urllib.parse import quote

import httpx

from .tools import (
    DEFAULT_PROTOCOL_VERSION,
    ROUTES_BY_RPC_METHOD,
    SERVER_NAME,
    SERVER_VERSION,
    TOOLS_BY_NAME,
    ApiRoute,
    list_tools,
    manifest,
)

logger = logging.getLogger(__name__)

JSONRPC_VERSION = "2.0"

INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
SERVER_ERROR = -32000

INTERNAL_CALL_HEADER = "X-MCP-Internal-Call"

RETRY_ATTEMPTS = 3
RETRY_BASE_DELAY = 0.1
RETRY_MAX_DELAY = 3.0
RETRY_JITTER = 0.25

AUTH_REQUIRED_MESSAGE = "Authentication required. Please sign in with m365-gateway-login."

_STOP = object()


class JsonRpcError(Exception):
    def __init__(self, code: int, message: str, data: Any = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.data = data

    def to_dict(self) -> dict[str, Any]:
        error = {"code": self.code, "message": self.message}
        if self.data is not None:
            error["data"] = self.data
        return error


class ApiError(Exception):
    """The local REST API answered with an error, or could not be reached."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        category: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.category = category


def looks_like_jsonrpc(obj: Any) -> bool:
    return (
        isinstance(obj, dict)
        and "jsonrpc" in obj
        and any(key in obj for key in ("method", "result", "error"))
    )


def backoff_delay(attempt: int) -> float:
    """Exponential backoff with jitter for the given (0-based) retry."""
    delay = min(RETRY_BASE_DELAY * 2**attempt, RETRY_MAX_DELAY)
    return delay * random.uniform(1 - RETRY_JITTER, 1 + RETRY_JITTER)


def expand_timeframe(
    arguments: dict[str, Any], today: Optional[dt.date] = None
) -> dict[str, Any]:
    """Turn a ``timeframe`` of today, week or month into start/end dates.

    Weeks run Sunday to Saturday. Explicit ``start``/``end`` arguments win.
    """
    timeframe = arguments.get("timeframe")
    arguments = {key: value for key, value in arguments.items() if key != "timeframe"}
    if not timeframe:
        return arguments

    today = today or dt.date.today()
    if timeframe == "today":
        start = end = today
    elif timeframe == "week":
        start = today - dt.timedelta(days=(today.weekday() + 1) % 7)
        end = start + dt.timedelta(days=6)
    elif timeframe == "month":
        start = today.replace(day=1)
        end = today.replace(day=calendar.monthrange(today.year, today.month)[1])
    else:
        raise JsonRpcError(
            INVALID_PARAMS,
            f"Unknown timeframe: {timeframe}",
            {"allowed": ["today", "week", "month"]},
        )

    arguments.setdefault("start", start.isoformat())
    arguments.setdefault("end", end.isoformat())
    return arguments


def _query_params(params: dict[str, Any]) -> dict[str, str]:
    query = {}
    for key, value in params.items():
        if value is None:
            continue
        if isinstance(value, bool):
            query[key] = "true" if value else "false"
        elif isinstance(value, (list, tuple)):
            query[key] = ",".join(str(item) for item in value)
        else:
            query[key] = str(value)
    return query


class ApiClient:
    """Calls the gateway's local REST API, retrying transient failures."""

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        max_attempts: int = RETRY_ATTEMPTS,
        client: Optional[httpx.AsyncClient] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.base_url = base_url.rstrip("/")
        self.max_attempts = max_attempts
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._sleep = sleep

    async def call(
        self,
        method: str,
        path: str,
        params: Optional[dict[str, Any]] = None,
        json: Optional[dict[str, Any]] = None,
    ) -> Any:
        url = f"{self.base_url}{path}"
        attempt = 0
        while True:
            try:
                response = await self._client.request(
                    method,
                    url,
                    params=params,
                    json=json,
                    headers={INTERNAL_CALL_HEADER: "true"},
                )
            except httpx.TransportError as e:
                if attempt + 1 < self.max_attempts:
                    logger.warning(f"{method} {path} failed ({e!r}), retrying")
                    await self._sleep(backoff_delay(attempt))
                    attempt += 1
                    continue
                raise ApiError(f"Local API unreachable: {e}") from e

            if response.status_code >= 500 and attempt + 1 < self.max_attempts:
                logger.warning(f"{method} {path} returned {response.status_code}, retrying")
                await self._sleep(backoff_delay(attempt))
                attempt += 1
                continue

            if response.is_error:
                raise self._api_error(response)
            if not response.content:
                return None
            return response.json()

    @staticmethod
    def _api_error(response: httpx.Response) -> ApiError:
        try:
            error = response.json().get("error") or {}
        except (ValueError, AttributeError):
            error = {}
        if not isinstance(error, dict):
            error = {"message": str(error)}
        return ApiError(
            error.get("message") or f"Local API returned HTTP {response.status_code}",
            status_code=response.status_code,
            category=error.get("category"),
        )

    async def health(self) -> bool:
        try:
            await self.call("GET", "/health")
            return True
        except (ApiError, ValueError):
            # ValueError: something other than the local API answered
            return False

    async def aclose(self) -> None:
        await self._client.aclose()


class StdioAdapter:
    def __init__(
        self,
        api: ApiClient,
        output: Optional[TextIO] = None,
        health_check_interval: float = 30.0,
        check_backend: bool = True,
    ):
        self.api = api
        # Captured now: stdout is redirected to stderr while serving
        self._output = output or sys.stdout
        self.health_check_interval = health_check_interval
        self.check_backend_on_start = check_backend
        self.backend_available: Optional[bool] = None
        self._tasks: set[asyncio.Task] = set()
        self._write_lock = threading.Lock()
        self._queue: Optional[asyncio.Queue] = None
        self.stop_reason: Optional[str] = None
        self._methods: dict[str, Callable[[dict[str, Any]], Awaitable[Any]]] = {
            "initialize": self._initialize,
            "getManifest": self._get_manifest,
            "shutdown": self._shutdown,
            "tools/list": self._tools_list,
            "resources/list": self._resources_list,
            "prompts/list": self._prompts_list,
            "tools/invoke": self._tools_invoke,
            # what MCP hosts send for tools/invoke
            "tools/call": self._tools_invoke,
        }

    # Output channels

    def send(self, message: dict[str, Any]) -> None:
        """Write one protocol message as a single line."""
        line = json.dumps(message, default=str)
        with self._write_lock:
            self._output.write(line + "\n")
            self._output.flush()

    def emit(self, obj: Any) -> None:
        """Generic logging path.

        Anything shaped like a JSON-RPC message goes to the protocol channel,
        everything else to the diagnostic log.
        """
        if looks_like_jsonrpc(obj):
            logger.warning("JSON-RPC message passed to the log, sending it on stdout")
            self.send(obj)
        else:
            logger.info(f"{obj}")

    # Framing

    @staticmethod
    def parse_line(line: str) -> Optional[Any]:
        try:
            return json.loads(line)
        except json.JSONDecodeError as e:
            logger.error(f"Ignoring malformed JSON-RPC line ({e}): {line[:200]!r}")
            return None

    async def handle_line(self, line: str) -> None:
        if not line.strip():
            return
        message = self.parse_line(line)
        if message is None:
            return
        response = await self.handle_message(message)
        if response is not None:
            self.send(response)
            if message.get("method") == "shutdown":
                self.stop("shutdown requested")

    async def handle_message(self, message: Any) -> Optional[dict[str, Any]]:
        """Return the response for ``message``, or None if it gets none."""
        if not isinstance(message, dict):
            logger.error(f"Ignoring non-object JSON-RPC message: {message!r}")
            return None

        if "id" not in message:
            if "method" in message:
                logger.info(f"Notification received: {message['method']}")
            else:
                logger.warning(f"Ignoring message without id or method: {message}")
            return None

        request_id = message["id"]
        method = message.get("method")
        if not isinstance(method, str):
            return self._error(request_id, JsonRpcError(INVALID_REQUEST, "Invalid Request"))

        params = message.get("params")
        if params is None:
            params = {}
        if not isinstance(params, dict):
            return self._error(
                request_id, JsonRpcError(INVALID_PARAMS, "params must be an object")
            )

        logger.debug(f"Request {request_id}: {method}")
        try:
            result = await self.dispatch(method, params)
        except JsonRpcError as e:
            logger.info(f"Request {request_id} ({method}) failed: {e.message}")
            return self._error(request_id, e)
        except Exception as e:
            logger.error(f"Request {request_id} ({method}) failed: {e}", exc_info=True)
            return self._error(
                request_id, JsonRpcError(SERVER_ERROR, f"Internal error: {e}")
            )

        return {"jsonrpc": JSONRPC_VERSION, "id": request_id, "result": result}

    @staticmethod
    def _error(request_id: Any, error: JsonRpcError) -> dict[str, Any]:
        return {"jsonrpc": JSONRPC_VERSION, "id": request_id, "error": error.to_dict()}

    async def dispatch(self, method: str, params: dict[str, Any]) -> Any:
        handler = self._methods.get(method)
        if handler is not None:
            return await handler(params)
        route = ROUTES_BY_RPC_METHOD.get(method)
        if route is not None:
            return await self.call_route(route, params)
        raise JsonRpcError(METHOD_NOT_FOUND, f"Method not found: {method}")

    # Methods

    async def _initialize(self, params):
        return {
            "protocolVersion": params.get("protocolVersion") or DEFAULT_PROTOCOL_VERSION,
            "capabilities": {"toolInvocation": True, "manifest": True},
            "serverInfo": {"name": SERVER_NAME, "version": SERVER_VERSION},
        }

    async def _get_manifest(self, params):
        return manifest(params.get("protocolVersion"))

    async def _shutdown(self, params):
        logger.info("Shutdown requested by host")
        return None

    async def _tools_list(self, params):
        return {"tools": list_tools()}

    async def _resources_list(self, params):
        return {"resources": []}

    async def _prompts_list(self, params):
        return {"prompts": []}

    async def _tools_invoke(self, params):
        name = params.get("name")
        if not isinstance(name, str) or not name:
            raise JsonRpcError(INVALID_PARAMS, "Missing tool name in params")
        arguments = params.get("arguments")
        if arguments is None:
            arguments = {}
        if not isinstance(arguments, dict):
            raise JsonRpcError(INVALID_PARAMS, "Tool arguments must be an object")

        tool = TOOLS_BY_NAME.get(name)
        if tool is None:
            raise JsonRpcError(METHOD_NOT_FOUND, f"Tool not found: {name}", {"tool": name})

        logger.info(f"Invoking tool {name}")
        result = await self.call_route(tool.route, arguments)
        return {
            "content": [
                {"type": "text", "text": json.dumps(result, indent=2, default=str)}
            ],
            "isError": False,
        }

    async def call_route(self, route: ApiRoute, params: dict[str, Any]) -> Any:
        if route.capability == "getEvents":
            params = expand_timeframe(params)
        path = route.path
        for name in route.path_params:
            value = params.get(name)
            if value in (None, ""):
                raise JsonRpcError(
                    INVALID_PARAMS,
                    f"Missing required parameter: {name}",
                    {"parameter": name},
                )
            path = path.replace(f"{{{name}}}", quote(str(value), safe=""))

        rest = {key: value for key, value in params.items() if key not in route.path_params}
        try:
            if route.has_body:
                return await self.api.call(route.http_method, path, json=rest)
            return await self.api.call(route.http_method, path, params=_query_params(rest))
        except ApiError as e:
            raise self._rpc_error(e) from e

    @staticmethod
    def _rpc_error(error: ApiError) -> JsonRpcError:
        if error.status_code == 401 or error.category == "auth":
            return JsonRpcError(
                SERVER_ERROR, AUTH_REQUIRED_MESSAGE, {"errorType": "auth_required"}
            )
        data = {"status": error.status_code, "category": error.category}
        if error.status_code == 400:
            return JsonRpcError(INVALID_PARAMS, error.message, data)
        return JsonRpcError(SERVER_ERROR, error.message, data)

    # Lifecycle

    async def check_backend(self) -> bool:
        available = await self.api.health()
        if available != self.backend_available:
            if available:
                logger.info(f"Local API available at {self.api.base_url}")
            else:
                logger.warning(f"Local API not reachable at {self.api.base_url}")
            self.emit({"event": "backendStatus", "available": available})
        self.backend_available = available
        return available

    async def _health_loop(self) -> None:
        # Also keeps a timer pending so the loop never idles out between requests
        while True:
            await asyncio.sleep(self.health_check_interval)
            try:
                await self.check_backend()
            except Exception as e:
                logger.error(f"Backend health check failed: {e}", exc_info=True)

    def stop(self, reason: str) -> None:
        if self.stop_reason is not None:
            return
        self.stop_reason = reason
        logger.info(f"Stopping adapter: {reason}")
        if self._queue is not None:
            self._queue.put_nowait(_STOP)

    def _spawn(self, coro) -> None:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _start_reader(self, reader: TextIO, loop: asyncio.AbstractEventLoop) -> None:
        queue = self._queue

        def pump():
            try:
                for line in iter(reader.readline, ""):
                    loop.call_soon_threadsafe(queue.put_nowait, line)
                loop.call_soon_threadsafe(queue.put_nowait, None)
            except RuntimeError:
                # loop already closed after shutdown
                return

        threading.Thread(target=pump, name="stdin-reader", daemon=True).start()

    def _install_signal_handlers(self, loop: asyncio.AbstractEventLoop) -> None:
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self.stop, f"received {sig.name}")
            except (NotImplementedError, RuntimeError):
                logger.debug(f"Cannot install a handler for {sig.name} here")

    async def serve(self, reader: Optional[TextIO] = None) -> int:
        """Process requests until stdin closes, ``shutdown`` or a signal."""
        loop = asyncio.get_running_loop()
        self._queue = asyncio.Queue()
        self._install_signal_handlers(loop)
        self._start_reader(reader or sys.stdin, loop)
        logger.info("MCP adapter started, waiting for requests on stdin")

        if self.check_backend_on_start:
            self._spawn(self.check_backend())
        keepalive = asyncio.create_task(self._health_loop())

        try:
            with contextlib.redirect_stdout(sys.stderr):
                while True:
                    line = await self._queue.get()
                    if line is _STOP:
                        break
                    if line is None:
                        self.stop("stdin closed")
                        break
                    if self.stop_reason is not None:
                        break
                    self._spawn(self.handle_line(line))

                if self._tasks:
                    logger.info(f"Waiting for {len(self._tasks)} in-flight request(s)")
                    await asyncio.gather(*list(self._tasks), return_exceptions=True)
        finally:
            keepalive.cancel()
            try:
                with contextlib.suppress(asyncio.CancelledError):
                    await keepalive
            finally:
                await self.api.aclose()

        logger.info(f"Adapter stopped ({self.stop_reason})")
        return 0
