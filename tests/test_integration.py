"""
Integration tests wiring the adapter, the local API, the router and the modules.
"""

import asyncio
import io
import json
from unittest.mock import AsyncMock, Mock, patch

import httpx
import pytest

from m365_gateway.adapter import ApiClient, StdioAdapter
from m365_gateway.api import create_app
from m365_gateway.auth import AuthenticationRequiredError
from m365_gateway.config import GatewaySettings
from m365_gateway.graph import GraphClient
from m365_gateway.server import build_gateway


@pytest.fixture
def gateway(mock_graph):
    """Registry and router built with the Graph client replaced by a double."""
    with patch("m365_gateway.server.AzureAuthentication") as mock_auth_class, patch(
        "m365_gateway.server.GraphClient", return_value=mock_graph
    ):
        registry, router = build_gateway(GatewaySettings(client_id="test-client-id"))
    mock_auth_class.assert_called_once()
    return registry, router


def adapter_for(registry, router):
    app = create_app(router, registry)
    client = httpx.AsyncClient(transport=httpx.ASGITransport(app=app))
    api = ApiClient("http://gateway/api", client=client, sleep=AsyncMock())
    return StdioAdapter(api, output=io.StringIO(), check_backend=False)


class TestGatewayWiring:
    """Test cases for build_gateway."""

    def test_default_modules_registered_and_initialized(self, gateway, mock_graph):
        registry, _ = gateway

        assert [module.id for module in registry.list_all()] == [
            "mail",
            "calendar",
            "files",
            "people",
        ]
        for module in registry.list_all():
            assert module.services.graph is mock_graph
            assert module.services.registry is registry

    def test_router_reaches_modules(self, gateway, mock_graph, sample_email_data):
        _, router = gateway
        mock_graph.collect.return_value = sample_email_data

        emails = asyncio.run(router.route_intent("readMail", {"limit": 2}))

        assert [email["id"] for email in emails] == ["email1", "email2"]

    def test_graph_client_uses_settings_timeout(self):
        with patch("m365_gateway.server.AzureAuthentication"), patch(
            "m365_gateway.server.GraphClient", return_value=Mock(spec=GraphClient)
        ) as mock_graph_class:
            build_gateway(GatewaySettings(client_id="x", api_timeout=12.0))

        assert mock_graph_class.call_args.kwargs["timeout"] == 12.0


class TestEndToEnd:
    """JSON-RPC requests travelling through the adapter into the modules."""

    def test_tools_invoke_read_mail(self, gateway, mock_graph, sample_email_data):
        mock_graph.collect.return_value = sample_email_data
        adapter = adapter_for(*gateway)

        response = asyncio.run(
            adapter.handle_message(
                {
                    "jsonrpc": "2.0",
                    "id": 1,
                    "method": "tools/invoke",
                    "params": {"name": "readMail", "arguments": {"limit": 2}},
                }
            )
        )

        assert response["id"] == 1
        content = response["result"]["content"][0]
        assert content["type"] == "text"
        emails = json.loads(content["text"])
        assert emails[0]["subject"] == "Test Email 1"
        assert mock_graph.collect.call_args.kwargs["limit"] == 2

    def test_passthrough_with_path_parameter(self, gateway, mock_graph):
        mock_graph.request.return_value = {"id": "m1", "body": {"content": "hi"}}
        adapter = adapter_for(*gateway)

        response = asyncio.run(
            adapter.handle_message(
                {
                    "jsonrpc": "2.0",
                    "id": "r1",
                    "method": "mail.readMailDetails",
                    "params": {"id": "m1"},
                }
            )
        )

        assert response["result"]["id"] == "m1"
        assert mock_graph.request.call_args.args == ("GET", "/me/messages/m1")

    def test_validation_failure_is_invalid_params(self, gateway):
        adapter = adapter_for(*gateway)

        response = asyncio.run(
            adapter.handle_message(
                {
                    "jsonrpc": "2.0",
                    "id": 2,
                    "method": "tools/invoke",
                    "params": {"name": "sendMail", "arguments": {"to": "a@b.com"}},
                }
            )
        )

        assert response["error"]["code"] == -32602
        assert "subject" in response["error"]["message"]

    def test_expired_sign_in_is_auth_required(self, gateway, mock_graph):
        mock_graph.collect.side_effect = AuthenticationRequiredError(
            "Failed to acquire access token: expired"
        )
        adapter = adapter_for(*gateway)

        response = asyncio.run(
            adapter.handle_message(
                {
                    "jsonrpc": "2.0",
                    "id": 3,
                    "method": "tools/invoke",
                    "params": {"name": "readMail", "arguments": {}},
                }
            )
        )

        assert response["error"]["code"] == -32000
        assert response["error"]["message"].startswith("Authentication required")
        assert response["error"]["data"]["errorType"] == "auth_required"
