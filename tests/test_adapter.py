"""
Unit tests for the stdio JSON-RPC adapter and its local API client.
"""

import asyncio
import datetime as dt
import io
import json
import time
from unittest.mock import AsyncMock, Mock

import httpx
import pytest

from m365_gateway.adapter import (
    INTERNAL_CALL_HEADER,
    INVALID_PARAMS,
    INVALID_REQUEST,
    METHOD_NOT_FOUND,
    SERVER_ERROR,
    ApiClient,
    ApiError,
    JsonRpcError,
    StdioAdapter,
    backoff_delay,
    expand_timeframe,
    looks_like_jsonrpc,
)


def make_api():
    api = Mock(spec=ApiClient)
    api.base_url = "http://127.0.0.1:3000/api"
    api.call = AsyncMock(return_value={"ok": True})
    api.health = AsyncMock(return_value=True)
    api.aclose = AsyncMock()
    return api


class SlowEofReader:
    """stdin double that reaches EOF after a delay."""

    def __init__(self, delay):
        self.delay = delay

    def readline(self):
        time.sleep(self.delay)
        return ""


class TestFraming:
    """Test cases for line handling and the exactly-one-response rule."""

    def setup_method(self):
        self.api = make_api()
        self.output = io.StringIO()
        self.adapter = StdioAdapter(self.api, output=self.output, check_backend=False)

    def run_line(self, message):
        line = message if isinstance(message, str) else json.dumps(message)
        asyncio.run(self.adapter.handle_line(line))
        return [json.loads(out) for out in self.output.getvalue().splitlines()]

    def test_notification_gets_no_response(self):
        responses = self.run_line({"jsonrpc": "2.0", "method": "notify", "params": {}})
        assert responses == []

    def test_initialized_notification_gets_no_response(self):
        responses = self.run_line(
            {"jsonrpc": "2.0", "method": "notifications/initialized"}
        )
        assert responses == []

    def test_unknown_method(self):
        responses = self.run_line({"jsonrpc": "2.0", "id": 7, "method": "doesNotExist"})

        assert len(responses) == 1
        assert responses[0]["jsonrpc"] == "2.0"
        assert responses[0]["id"] == 7
        assert responses[0]["error"]["code"] == METHOD_NOT_FOUND
        assert "result" not in responses[0]

    def test_malformed_line_is_ignored(self):
        assert self.run_line("{not json") == []

    def test_blank_line_is_ignored(self):
        assert self.run_line("   ") == []

    def test_non_string_method_is_invalid_request(self):
        responses = self.run_line({"jsonrpc": "2.0", "id": 1, "method": 5})
        assert responses[0]["error"]["code"] == INVALID_REQUEST

    def test_non_object_params_rejected(self):
        responses = self.run_line(
            {"jsonrpc": "2.0", "id": 1, "method": "tools/list", "params": [1]}
        )
        assert responses[0]["error"]["code"] == INVALID_PARAMS

    def test_success_has_result_only(self):
        responses = self.run_line({"jsonrpc": "2.0", "id": 3, "method": "tools/list"})

        assert set(responses[0]) == {"jsonrpc", "id", "result"}
        assert responses[0]["result"]["tools"]

    def test_handler_crash_becomes_error_response(self):
        self.api.call.side_effect = RuntimeError("kaboom")

        responses = self.run_line(
            {"jsonrpc": "2.0", "id": 9, "method": "mail.readMail", "params": {}}
        )

        assert responses[0]["id"] == 9
        assert responses[0]["error"]["code"] == SERVER_ERROR
        assert "kaboom" in responses[0]["error"]["message"]
        assert "Traceback" not in json.dumps(responses[0])

    def test_emit_routes_protocol_messages_to_output(self):
        self.adapter.emit({"jsonrpc": "2.0", "id": 1, "result": {}})
        self.adapter.emit({"event": "backendStatus", "available": True})

        lines = self.output.getvalue().splitlines()
        assert len(lines) == 1
        assert json.loads(lines[0])["id"] == 1


class TestMethods:
    """Test cases for the fixed method table."""

    def setup_method(self):
        self.api = make_api()
        self.adapter = StdioAdapter(self.api, output=io.StringIO(), check_backend=False)

    def request(self, method, params=None, request_id=1):
        message = {"jsonrpc": "2.0", "id": request_id, "method": method}
        if params is not None:
            message["params"] = params
        return asyncio.run(self.adapter.handle_message(message))

    def test_initialize_echoes_protocol_version(self):
        response = self.request("initialize", {"protocolVersion": "2024-11-05"})

        result = response["result"]
        assert result["protocolVersion"] == "2024-11-05"
        assert result["capabilities"]["toolInvocation"] is True
        assert result["capabilities"]["manifest"] is True
        assert result["serverInfo"]["name"]

    def test_initialize_default_protocol_version(self):
        assert self.request("initialize")["result"]["protocolVersion"] == "2024-11-05"

    def test_get_manifest(self):
        result = self.request("getManifest")["result"]

        assert result["capabilities"] == {"toolInvocation": True, "manifest": True}
        assert any(tool["name"] == "readMail" for tool in result["tools"])

    def test_empty_enumerations(self):
        assert self.request("resources/list")["result"] == {"resources": []}
        assert self.request("prompts/list")["result"] == {"prompts": []}

    def test_tools_list_has_input_schemas(self):
        tools = self.request("tools/list")["result"]["tools"]
        send_mail = next(tool for tool in tools if tool["name"] == "sendMail")

        assert send_mail["inputSchema"]["type"] == "object"
        assert set(send_mail["inputSchema"]["required"]) == {"to", "subject", "body"}

    def test_tools_invoke_missing_name(self):
        response = self.request("tools/invoke", {"arguments": {}})

        assert response["error"]["code"] == INVALID_PARAMS
        self.api.call.assert_not_called()

    def test_tools_invoke_unknown_tool(self):
        response = self.request("tools/invoke", {"name": "launchRockets"})

        assert response["error"]["code"] == METHOD_NOT_FOUND
        assert response["error"]["message"].startswith("Tool not found")
        assert response["error"]["data"] == {"tool": "launchRockets"}

    def test_tools_invoke_get_route(self):
        self.api.call.return_value = [{"id": "m1"}]

        response = self.request(
            "tools/invoke", {"name": "readMail", "arguments": {"limit": 5, "unreadOnly": True}}
        )

        self.api.call.assert_awaited_once_with(
            "GET", "/v1/mail", params={"limit": "5", "unreadOnly": "true"}
        )
        content = response["result"]["content"]
        assert response["result"]["isError"] is False
        assert content[0]["type"] == "text"
        assert json.loads(content[0]["text"]) == [{"id": "m1"}]

    def test_tools_call_alias(self):
        response = self.request("tools/call", {"name": "listFiles"})

        assert "result" in response
        self.api.call.assert_awaited_once_with("GET", "/v1/files", params={})

    def test_tools_invoke_post_route_sends_body(self):
        arguments = {"to": "a@b.com", "subject": "Hi", "body": "Hello"}

        self.request("tools/invoke", {"name": "sendMail", "arguments": arguments})

        self.api.call.assert_awaited_once_with("POST", "/v1/mail/send", json=arguments)

    def test_tools_invoke_expands_timeframe(self):
        self.request("tools/invoke", {"name": "getEvents", "arguments": {"timeframe": "today"}})

        params = self.api.call.call_args.kwargs["params"]
        today = dt.date.today().isoformat()
        assert params == {"start": today, "end": today}

    def test_passthrough_get_events_expands_timeframe(self):
        self.request("calendar.getEvents", {"timeframe": "today", "limit": 5})

        params = self.api.call.call_args.kwargs["params"]
        today = dt.date.today().isoformat()
        assert params == {"start": today, "end": today, "limit": "5"}

    def test_passthrough_fills_path_parameter(self):
        self.request("mail.readMailDetails", {"id": "AA/MK=", "includeBody": False})

        self.api.call.assert_awaited_once_with(
            "GET", "/v1/mail/AA%2FMK%3D", params={"includeBody": "false"}
        )

    def test_passthrough_delete_fills_both_path_parameters(self):
        self.request("calendar.removeAttachment", {"id": "ev1", "attachmentId": "att/1"})

        self.api.call.assert_awaited_once_with(
            "DELETE", "/v1/calendar/events/ev1/attachments/att%2F1", params={}
        )

    def test_passthrough_missing_path_parameter(self):
        response = self.request("calendar.acceptEvent", {"comment": "ok"})

        assert response["error"]["code"] == INVALID_PARAMS
        assert response["error"]["data"] == {"parameter": "id"}
        self.api.call.assert_not_called()

    def test_api_auth_failure(self):
        self.api.call.side_effect = ApiError("Unauthorized", status_code=401)

        response = self.request("mail.readMail", {})

        assert response["error"]["code"] == SERVER_ERROR
        assert response["error"]["message"].startswith("Authentication required")
        assert response["error"]["data"]["errorType"] == "auth_required"

    def test_api_validation_failure(self):
        self.api.call.side_effect = ApiError(
            "Missing required field(s): query", status_code=400, category="validation"
        )

        response = self.request("mail.searchMail", {})

        assert response["error"]["code"] == INVALID_PARAMS
        assert response["error"]["message"] == "Missing required field(s): query"

    def test_shutdown_acknowledged_then_stops(self):
        output = io.StringIO()
        adapter = StdioAdapter(self.api, output=output, check_backend=False)

        asyncio.run(
            adapter.handle_line(json.dumps({"jsonrpc": "2.0", "id": 4, "method": "shutdown"}))
        )

        response = json.loads(output.getvalue())
        assert response == {"jsonrpc": "2.0", "id": 4, "result": None}
        assert adapter.stop_reason == "shutdown requested"


class TestServe:
    """Test cases for the serve loop."""

    def test_out_of_order_responses_matched_by_id(self):
        api = make_api()

        async def call(method, path, **kwargs):
            if path == "/v1/mail":
                await asyncio.sleep(0.05)
                return "slow"
            return "fast"

        api.call.side_effect = call
        output = io.StringIO()
        adapter = StdioAdapter(api, output=output, check_backend=False)
        reader = io.StringIO(
            json.dumps({"jsonrpc": "2.0", "id": 1, "method": "mail.readMail"})
            + "\n"
            + json.dumps({"jsonrpc": "2.0", "id": 2, "method": "files.listFiles"})
            + "\n"
        )

        exit_code = asyncio.run(adapter.serve(reader))

        responses = [json.loads(line) for line in output.getvalue().splitlines()]
        assert exit_code == 0
        assert [response["id"] for response in responses] == [2, 1]
        assert {r["id"]: r["result"] for r in responses} == {1: "slow", 2: "fast"}
        assert adapter.stop_reason == "stdin closed"
        api.aclose.assert_awaited_once()

    def test_bad_line_does_not_stop_the_loop(self):
        api = make_api()
        output = io.StringIO()
        adapter = StdioAdapter(api, output=output, check_backend=False)
        reader = io.StringIO(
            "garbage\n"
            + json.dumps({"jsonrpc": "2.0", "method": "notify"})
            + "\n"
            + json.dumps({"jsonrpc": "2.0", "id": 5, "method": "prompts/list"})
            + "\n"
        )

        asyncio.run(adapter.serve(reader))

        responses = [json.loads(line) for line in output.getvalue().splitlines()]
        assert responses == [{"jsonrpc": "2.0", "id": 5, "result": {"prompts": []}}]

    def test_startup_backend_check(self):
        api = make_api()
        api.health.return_value = False
        adapter = StdioAdapter(api, output=io.StringIO(), check_backend=True)

        asyncio.run(adapter.serve(io.StringIO("")))

        api.health.assert_awaited()
        assert adapter.backend_available is False

    def test_failing_health_check_keeps_serving(self):
        api = make_api()
        api.health.side_effect = RuntimeError("health endpoint broke")
        adapter = StdioAdapter(
            api, output=io.StringIO(), health_check_interval=0.01, check_backend=False
        )

        exit_code = asyncio.run(adapter.serve(SlowEofReader(0.1)))

        assert exit_code == 0
        assert api.health.await_count >= 2
        api.aclose.assert_awaited_once()

    def test_non_api_health_answer_is_unavailable(self):
        client = httpx.AsyncClient(
            transport=httpx.MockTransport(
                lambda request: httpx.Response(200, text="<html>not the api</html>")
            )
        )
        api = ApiClient("http://127.0.0.1:3000/api", client=client, sleep=AsyncMock())
        adapter = StdioAdapter(
            api, output=io.StringIO(), health_check_interval=0.01, check_backend=True
        )

        exit_code = asyncio.run(adapter.serve(SlowEofReader(0.1)))

        assert exit_code == 0
        assert adapter.backend_available is False


class TestHelpers:
    """Test cases for module-level helpers."""

    def test_looks_like_jsonrpc(self):
        assert looks_like_jsonrpc({"jsonrpc": "2.0", "method": "x"})
        assert looks_like_jsonrpc({"jsonrpc": "2.0", "id": 1, "error": {}})
        assert not looks_like_jsonrpc({"jsonrpc": "2.0"})
        assert not looks_like_jsonrpc({"method": "x"})
        assert not looks_like_jsonrpc("jsonrpc")

    def test_expand_timeframe_week(self):
        # 2024-09-04 is a Wednesday
        result = expand_timeframe({"timeframe": "week"}, today=dt.date(2024, 9, 4))
        assert result == {"start": "2024-09-01", "end": "2024-09-07"}

    def test_expand_timeframe_month(self):
        result = expand_timeframe({"timeframe": "month"}, today=dt.date(2024, 2, 10))
        assert result == {"start": "2024-02-01", "end": "2024-02-29"}

    def test_expand_timeframe_keeps_explicit_dates(self):
        result = expand_timeframe(
            {"timeframe": "today", "start": "2024-01-01"}, today=dt.date(2024, 9, 4)
        )
        assert result == {"start": "2024-01-01", "end": "2024-09-04"}

    def test_expand_timeframe_unknown(self):
        with pytest.raises(JsonRpcError) as exc_info:
            expand_timeframe({"timeframe": "year"})
        assert exc_info.value.code == INVALID_PARAMS

    def test_backoff_delay_is_capped(self):
        assert 0.075 <= backoff_delay(0) <= 0.125
        assert backoff_delay(10) <= 3.0 * 1.25


class TestApiClient:
    """Test cases for the local API client."""

    def make_client(self, handler):
        self.sleep = AsyncMock()
        return ApiClient(
            "http://127.0.0.1:3000/api/",
            client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
            sleep=self.sleep,
        )

    def test_call_sends_internal_header(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={"value": 1})

        result = asyncio.run(self.make_client(handler).call("GET", "/v1/mail", params={"limit": "5"}))

        assert result == {"value": 1}
        assert seen[0].headers[INTERNAL_CALL_HEADER] == "true"
        assert str(seen[0].url) == "http://127.0.0.1:3000/api/v1/mail?limit=5"

    def test_retries_server_errors(self):
        responses = iter([httpx.Response(503), httpx.Response(200, json=[1])])

        result = asyncio.run(
            self.make_client(lambda request: next(responses)).call("GET", "/v1/mail")
        )

        assert result == [1]
        assert self.sleep.await_count == 1

    def test_gives_up_after_max_attempts(self):
        calls = []

        def handler(request):
            calls.append(request)
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(ApiError, match="unreachable"):
            asyncio.run(self.make_client(handler).call("GET", "/v1/mail"))

        assert len(calls) == 3

    def test_client_error_not_retried(self):
        def handler(request):
            return httpx.Response(
                400, json={"error": {"message": "bad input", "category": "validation"}}
            )

        with pytest.raises(ApiError) as exc_info:
            asyncio.run(self.make_client(handler).call("POST", "/v1/mail/send", json={}))

        assert exc_info.value.status_code == 400
        assert exc_info.value.category == "validation"
        assert exc_info.value.message == "bad input"
        self.sleep.assert_not_awaited()

    def test_empty_response(self):
        result = asyncio.run(
            self.make_client(lambda request: httpx.Response(204)).call("PATCH", "/v1/x")
        )
        assert result is None

    def test_health(self):
        assert asyncio.run(
            self.make_client(lambda request: httpx.Response(200, json={"status": "ok"})).health()
        )
        assert not asyncio.run(
            self.make_client(lambda request: httpx.Response(404)).health()
        )
        assert not asyncio.run(
            self.make_client(lambda request: httpx.Response(200, text="<html></html>")).health()
        )
