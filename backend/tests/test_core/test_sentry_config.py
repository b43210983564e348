"""Tests for Sentry SDK configuration with privacy-compliant settings."""

import os
from typing import Any
from unittest.mock import patch

from core.sentry_config import _before_send, init_sentry


class TestBeforeSendScrubbing:
    """Tests for PII and credential scrubbing in _before_send."""

    def test_scrubs_email_and_username_from_user(self) -> None:
        event: dict[str, Any] = {
            "user": {"id": "123", "email": "user@example.com", "username": "u"}
        }
        result = _before_send(event, {})  # type: ignore[arg-type]
        assert result is not None
        assert result["user"] == {"id": "123"}  # type: ignore[typeddict-item]

    def test_anonymizes_ip_address(self) -> None:
        event: dict[str, Any] = {"user": {"id": "123", "ip_address": "192.168.1.100"}}
        result = _before_send(event, {})  # type: ignore[arg-type]
        assert result["user"]["ip_address"] == "{{auto}}"  # type: ignore[index]

    def test_filters_token_material_in_extra(self) -> None:
        event: dict[str, Any] = {
            "extra": {
                "session_token": "abc",
                "nested": {"refresh_token": "def", "user_id": 4},
                "codes": [{"code": "AAAA2222"}],
            }
        }
        result = _before_send(event, {})  # type: ignore[arg-type]
        extra = result["extra"]  # type: ignore[index]
        assert extra["session_token"] == "[Filtered]"
        assert extra["nested"] == {"refresh_token": "[Filtered]", "user_id": 4}
        assert extra["codes"] == [{"code": "[Filtered]"}]

    def test_masks_emails_in_breadcrumb_messages(self) -> None:
        event: dict[str, Any] = {
            "breadcrumbs": {
                "values": [{"message": "Login attempt for someone@example.com"}]
            }
        }
        result = _before_send(event, {})  # type: ignore[arg-type]
        message = result["breadcrumbs"]["values"][0]["message"]  # type: ignore[index]
        assert "someone@example.com" not in message
        assert "[email]" in message


class TestInitSentry:
    """Tests for init_sentry."""

    def test_disabled_without_dsn(self) -> None:
        with patch.dict(os.environ, {}, clear=False):
            os.environ.pop("SENTRY_DSN", None)
            with patch("core.sentry_config.sentry_sdk.init") as mock_init:
                init_sentry()
        mock_init.assert_not_called()

    def test_initializes_with_dsn(self) -> None:
        with patch.dict(os.environ, {"SENTRY_DSN": "https://key@sentry.example/1"}):
            with patch("core.sentry_config.sentry_sdk.init") as mock_init:
                init_sentry()

        mock_init.assert_called_once()
        kwargs = mock_init.call_args.kwargs
        assert kwargs["send_default_pii"] is False
        assert kwargs["before_send"] is _before_send
