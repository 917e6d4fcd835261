"""
Test configuration and fixtures for the Microsoft 365 gateway tests.
"""

import os
from unittest.mock import AsyncMock, Mock

import pytest

from m365_gateway.graph import GraphClient
from m365_gateway.modules import ModuleServices


class FakeModule:
    """Minimal handler module used by registry and router tests."""

    def __init__(self, id, capabilities, priority=None, result=None, error=None, name=None):
        self.id = id
        self.name = name or f"Fake {id}"
        self.capabilities = list(capabilities)
        if priority is not None:
            self.priority = priority
        self.result = result
        self.error = error
        self.calls = []
        self.initialized_with = None

    def init(self, services):
        self.initialized_with = services

    async def handle_intent(self, intent, entities, context):
        self.calls.append((intent, entities, context))
        if self.error is not None:
            raise self.error
        return self.result


@pytest.fixture
def make_module():
    """Factory for FakeModule instances."""
    return FakeModule


@pytest.fixture
def mock_auth():
    """Fixture providing a mock authentication instance."""
    auth = Mock()
    auth.exists_valid_token.return_value = True
    auth.get_token.return_value = "mock-access-token"
    return auth


@pytest.fixture
def mock_graph():
    """GraphClient double with awaitable request/collect/download_raw."""
    graph = Mock(spec=GraphClient)
    graph.request = AsyncMock(return_value={})
    graph.collect = AsyncMock(return_value=[])
    graph.download_raw = AsyncMock(return_value=b"")
    return graph


@pytest.fixture
def services(mock_graph):
    return ModuleServices(graph=mock_graph)


@pytest.fixture
def clean_env():
    """Fixture that provides a clean environment for testing."""
    original_env = dict(os.environ)

    for var in list(os.environ):
        if var.startswith("M365_GATEWAY_"):
            del os.environ[var]

    yield

    os.environ.clear()
    os.environ.update(original_env)


@pytest.fixture
def sample_email_data():
    """Fixture providing sample Graph messages."""
    return [
        {
            "id": "email1",
            "subject": "Test Email 1",
            "from": {
                "emailAddress": {"address": "sender1@test.com", "name": "Sender One"}
            },
            "toRecipients": [{"emailAddress": {"address": "recipient@test.com"}}],
            "receivedDateTime": "2024-09-01T10:00:00Z",
            "bodyPreview": "Hello there",
            "hasAttachments": False,
            "isRead": False,
            "conversationId": "conv1",
        },
        {
            "id": "email2",
            "subject": "Test Email 2",
            "from": {
                "emailAddress": {"address": "sender2@test.com", "name": "Sender Two"}
            },
            "toRecipients": [{"emailAddress": {"address": "recipient@test.com"}}],
            "receivedDateTime": "2024-09-01T11:00:00Z",
            "hasAttachments": True,
            "isRead": True,
            "conversationId": "conv2",
        },
    ]


@pytest.fixture
def sample_event_data():
    """Fixture providing a sample Graph event."""
    return {
        "id": "event1",
        "subject": "Planning",
        "start": {"dateTime": "2024-09-02T09:00:00", "timeZone": "UTC"},
        "end": {"dateTime": "2024-09-02T10:00:00", "timeZone": "UTC"},
        "location": {"displayName": "Room 1"},
        "organizer": {"emailAddress": {"address": "boss@test.com", "name": "Boss"}},
        "attendees": [{"emailAddress": {"address": "me@test.com", "name": "Me"}}],
        "isOnlineMeeting": True,
    }
