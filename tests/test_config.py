"""
Unit tests for settings and result normalizers.
"""

import os
from pathlib import Path

import pytest

from m365_gateway.config import GatewaySettings
from m365_gateway.normalizers import (
    normalize_email,
    normalize_event,
    normalize_file,
    normalize_person,
)


class TestGatewaySettings:
    """Test cases for GatewaySettings.from_env."""

    def test_defaults(self, clean_env):
        settings = GatewaySettings.from_env(dotenv=False)

        assert settings.client_id is None
        assert settings.tenant_id == "common"
        assert settings.api_base_url == "http://127.0.0.1:3000/api"
        assert settings.skip_init is False
        assert settings.auth_record_file == Path.home() / ".m365-gateway-auth.json"

    def test_environment_overrides(self, clean_env):
        os.environ.update(
            {
                "M365_GATEWAY_CLIENT_ID": "app-id",
                "M365_GATEWAY_TENANT_ID": "tenant",
                "M365_GATEWAY_API_PORT": "8080",
                "M365_GATEWAY_API_BASE_PATH": "gateway/",
                "M365_GATEWAY_SKIP_INIT": "true",
                "M365_GATEWAY_AUTH_RECORD": "/tmp/auth.json",
                "M365_GATEWAY_HEALTH_CHECK_INTERVAL": "5",
            }
        )

        settings = GatewaySettings.from_env(dotenv=False)

        assert settings.client_id == "app-id"
        assert settings.tenant_id == "tenant"
        assert settings.api_base_url == "http://127.0.0.1:8080/gateway"
        assert settings.skip_init is True
        assert settings.auth_record_file == Path("/tmp/auth.json")
        assert settings.health_check_interval == 5.0


class TestNormalizers:
    """Test cases for Graph result normalizers."""

    def test_normalize_email(self, sample_email_data):
        email = normalize_email(sample_email_data[0])

        assert email["type"] == "email"
        assert email["from"] == {"name": "Sender One", "email": "sender1@test.com"}
        assert email["to"] == [{"name": None, "email": "recipient@test.com"}]
        assert email["preview"] == "Hello there"
        assert email["isRead"] is False

    def test_preview_is_shortened(self):
        email = normalize_email({"id": "1", "bodyPreview": "x" * 500})
        assert len(email["preview"]) == 150

    def test_normalize_event(self, sample_event_data):
        event = normalize_event(sample_event_data)

        assert event["start"] == "2024-09-02T09:00:00"
        assert event["timeZone"] == "UTC"
        assert event["organizer"]["email"] == "boss@test.com"
        assert event["attendees"] == [{"name": "Me", "email": "me@test.com"}]

    def test_normalize_file_and_folder(self):
        assert normalize_file({"id": "1", "name": "Docs", "folder": {}})["type"] == "folder"
        file = normalize_file({"id": "2", "name": "a.txt", "file": {"mimeType": "text/plain"}})
        assert file["type"] == "file"
        assert file["mimeType"] == "text/plain"
        assert file["size"] == 0

    def test_normalize_person_prefers_scored_address(self):
        person = normalize_person(
            {"id": "p", "mail": "b@test.com", "scoredEmailAddresses": [{"address": "a@test.com"}]}
        )
        assert person["email"] == "a@test.com"

    @pytest.mark.parametrize("normalize", [normalize_email, normalize_event, normalize_file, normalize_person])
    def test_rejects_non_mapping(self, normalize):
        with pytest.raises(ValueError, match="Invalid"):
            normalize(None)
