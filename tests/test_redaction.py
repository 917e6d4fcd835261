"""
Unit tests for sensitive-data redaction.
"""

from unittest.mock import patch

from m365_gateway.redaction import (
    CIRCULAR_REFERENCE,
    REDACTED,
    REDACTED_MAPPING,
    redact_sensitive_data,
)


class TestRedactSensitiveData:
    """Test cases for redact_sensitive_data."""

    def test_nested_example(self):
        data = {"password": "secret", "nested": {"token": "abc", "ok": "keep"}}

        assert redact_sensitive_data(data) == {
            "password": "REDACTED",
            "nested": {"token": "REDACTED", "ok": "keep"},
        }

    def test_keys_are_case_insensitive(self):
        data = {"AccessToken": "x", "EMAILADDRESS": "a@b.com", "Body": "hi"}

        assert redact_sensitive_data(data) == {
            "AccessToken": REDACTED,
            "EMAILADDRESS": REDACTED,
            "Body": REDACTED,
        }

    def test_placeholders_by_value_type(self):
        data = {
            "mail": ["a", "b", "c"],
            "user": {"id": "1", "name": "x"},
            "content": "text",
        }

        assert redact_sensitive_data(data) == {
            "mail": "[3 items]",
            "user": REDACTED_MAPPING,
            "content": REDACTED,
        }

    def test_lists_are_walked(self):
        data = {"recipients": [{"email": "a@b.com", "type": "to"}, "plain"]}

        assert redact_sensitive_data(data) == {
            "recipients": [{"email": REDACTED, "type": "to"}, "plain"]
        }

    def test_input_not_mutated(self):
        data = {"password": "secret", "nested": {"token": "abc"}}

        redact_sensitive_data(data)

        assert data == {"password": "secret", "nested": {"token": "abc"}}

    def test_idempotent(self):
        data = {
            "password": "secret",
            "mail": [1, 2],
            "user": {"a": 1},
            "nested": {"token": "t", "ok": 1},
        }

        once = redact_sensitive_data(data)

        assert redact_sensitive_data(once) == once

    def test_circular_reference(self):
        data = {"name": "loop"}
        data["self"] = data

        result = redact_sensitive_data(data)

        assert result == {"name": "loop", "self": CIRCULAR_REFERENCE}

    def test_circular_list(self):
        items = ["a"]
        items.append(items)

        assert redact_sensitive_data({"items": items}) == {
            "items": ["a", CIRCULAR_REFERENCE]
        }

    def test_shared_object_is_not_a_cycle(self):
        shared = {"ok": 1}

        assert redact_sensitive_data({"a": shared, "b": shared}) == {
            "a": {"ok": 1},
            "b": {"ok": 1},
        }

    def test_scalars_pass_through(self):
        assert redact_sensitive_data("text") == "text"
        assert redact_sensitive_data(None) is None
        assert redact_sensitive_data({"token": None}) == {"token": None}

    def test_fails_open(self):
        """A failing walk returns the original, unredacted data."""
        data = {"password": "secret"}

        with patch(
            "m365_gateway.redaction._walk", side_effect=RuntimeError("walk failed")
        ):
            result = redact_sensitive_data(data)

        assert result is data
        assert result["password"] == "secret"
