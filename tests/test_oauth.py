"""Summary: Tests for the token refresher and OAuth helpers.

Importance: Ensures provider responses map onto typed refresh outcomes.
Alternatives: Validate OAuth flows manually.
"""

from __future__ import annotations

import socket
import urllib.error
from datetime import datetime, timedelta, timezone
from typing import Any

import pytest

from deskmate import oauth
from deskmate.config import AppConfig
from deskmate.errors import ProviderMisconfigured, ProviderUnreachable, RefreshRejected
from deskmate.oauth import (
    OAuthHttpError,
    OAuthTokenResult,
    TokenRefresher,
    _refresh_payload,
    _token_payload,
)
from deskmate.providers import ProviderRegistry


def _config() -> AppConfig:
    return AppConfig(
        db_path="test.db",
        api_host="127.0.0.1",
        api_port=8000,
        api_key="",
        oauth_redirect_uri="http://localhost:8000/email/oauth2/callback",
        google_client_id="google-client",
        google_client_secret="google-secret",
        google_auth_url="https://accounts.google.com/o/oauth2/auth",
        google_token_url="https://oauth2.googleapis.com/token",
        microsoft_client_id="",
        microsoft_client_secret="",
        microsoft_auth_url="https://login.microsoftonline.com/common/oauth2/v2.0/authorize",
        microsoft_token_url="https://login.microsoftonline.com/common/oauth2/v2.0/token",
        yahoo_client_id="",
        yahoo_client_secret="",
        yahoo_auth_url="https://api.login.yahoo.com/oauth2/request_auth",
        yahoo_token_url="https://api.login.yahoo.com/oauth2/get_token",
        google_calendar_base_url="https://www.googleapis.com/calendar/v3",
    )


def _refresher() -> TokenRefresher:
    return TokenRefresher(ProviderRegistry.from_config(_config()), timeout=1.0)


def test_refresh_payload_includes_grant_type() -> None:
    payload = _refresh_payload("client", "secret", "refresh")
    assert payload["grant_type"] == "refresh_token"
    assert payload["refresh_token"] == "refresh"


def test_token_payload_includes_redirect_uri() -> None:
    payload = _token_payload("client", "secret", "code123", "http://localhost/callback")
    assert payload["redirect_uri"] == "http://localhost/callback"
    assert payload["grant_type"] == "authorization_code"


def test_token_result_defaults_expiry_to_one_hour() -> None:
    now = datetime(2030, 1, 1, tzinfo=timezone.utc)
    result = OAuthTokenResult.from_response({"access_token": "a"}, now=now)
    assert result.expires_at == now + timedelta(seconds=3600)
    assert result.refresh_token is None


def test_refresh_success_returns_new_token(monkeypatch: pytest.MonkeyPatch) -> None:
    """Summary: Verify a successful grant yields a refreshed token.

    Importance: The resolver persists exactly what the refresher returns.
    Alternatives: Parse responses inside the resolver.
    """

    calls: list[dict[str, str]] = []

    def fake_post(url: str, payload: dict[str, str], timeout: float) -> dict[str, Any]:
        calls.append(payload)
        return {"access_token": "new-access", "expires_in": 3599}

    monkeypatch.setattr(oauth, "_post_form", fake_post)
    before = datetime.now(timezone.utc)
    refreshed = _refresher().refresh("gmail", "refresh-1")
    assert refreshed.access_token == "new-access"
    assert refreshed.refresh_token is None
    assert refreshed.expires_at >= before + timedelta(seconds=3599)
    assert calls[0]["client_id"] == "google-client"


def test_refresh_without_client_credentials_is_misconfigured(monkeypatch: pytest.MonkeyPatch) -> None:
    def fail_post(url: str, payload: dict[str, str], timeout: float) -> dict[str, Any]:
        raise AssertionError("token endpoint should not be called")

    monkeypatch.setattr(oauth, "_post_form", fail_post)
    with pytest.raises(ProviderMisconfigured) as excinfo:
        _refresher().refresh("microsoft", "refresh-1")
    assert excinfo.value.reconnect is False
    assert excinfo.value.status_code == 500


def test_exchange_without_client_credentials_is_misconfigured() -> None:
    with pytest.raises(ProviderMisconfigured):
        _refresher().exchange_code("yahoo", "code-1", "http://localhost/callback")


def test_refresh_invalid_grant_is_rejected(monkeypatch: pytest.MonkeyPatch) -> None:
    def fake_post(url: str, payload: dict[str, str], timeout: float) -> dict[str, Any]:
        raise OAuthHttpError(400, {"error": "invalid_grant"})

    monkeypatch.setattr(oauth, "_post_form", fake_post)
    with pytest.raises(RefreshRejected) as excinfo:
        _refresher().refresh("google", "revoked")
    assert "invalid_grant" in str(excinfo.value)


def test_refresh_server_error_is_unreachable(monkeypatch: pytest.MonkeyPatch) -> None:
    def fake_post(url: str, payload: dict[str, str], timeout: float) -> dict[str, Any]:
        raise OAuthHttpError(503, {})

    monkeypatch.setattr(oauth, "_post_form", fake_post)
    with pytest.raises(ProviderUnreachable) as excinfo:
        _refresher().refresh("google", "refresh-1")
    assert excinfo.value.status_code == 502


def test_refresh_timeout_is_unreachable(monkeypatch: pytest.MonkeyPatch) -> None:
    def fake_post(url: str, payload: dict[str, str], timeout: float) -> dict[str, Any]:
        raise socket.timeout("timed out")

    monkeypatch.setattr(oauth, "_post_form", fake_post)
    with pytest.raises(ProviderUnreachable) as excinfo:
        _refresher().refresh("google", "refresh-1")
    assert excinfo.value.timed_out
    assert excinfo.value.status_code == 504


def test_refresh_network_error_is_unreachable(monkeypatch: pytest.MonkeyPatch) -> None:
    def fake_post(url: str, payload: dict[str, str], timeout: float) -> dict[str, Any]:
        raise urllib.error.URLError("connection refused")

    monkeypatch.setattr(oauth, "_post_form", fake_post)
    with pytest.raises(ProviderUnreachable):
        _refresher().refresh("google", "refresh-1")


def test_refresh_missing_access_token_is_unreachable(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(oauth, "_post_form", lambda url, payload, timeout: {"token_type": "Bearer"})
    with pytest.raises(ProviderUnreachable):
        _refresher().refresh("google", "refresh-1")


def test_exchange_code_returns_refresh_token(monkeypatch: pytest.MonkeyPatch) -> None:
    def fake_post(url: str, payload: dict[str, str], timeout: float) -> dict[str, Any]:
        assert payload["code"] == "code123"
        return {"access_token": "a", "refresh_token": "r", "expires_in": "120"}

    monkeypatch.setattr(oauth, "_post_form", fake_post)
    result = _refresher().exchange_code("google", "code123", "http://localhost/callback")
    assert result.refresh_token == "r"
