"""Summary: Tests for token, setup, and OAuth connect services.

Importance: Ensures the records the resolver depends on are written correctly.
Alternatives: Test only through the HTTP API.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from deskmate.config import AppConfig
from deskmate.errors import UnknownProvider
from deskmate.oauth import OAuthTokenResult
from deskmate.providers import ProviderRegistry
from deskmate.services import EmailSetupService, OAuthConnectService, TokenService
from deskmate.storage.sqlite_store import SqliteStore, StoredOAuthState


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
        microsoft_client_id="ms-client",
        microsoft_client_secret="ms-secret",
        microsoft_auth_url="https://login.microsoftonline.com/common/oauth2/v2.0/authorize",
        microsoft_token_url="https://login.microsoftonline.com/common/oauth2/v2.0/token",
        yahoo_client_id="",
        yahoo_client_secret="",
        yahoo_auth_url="https://api.login.yahoo.com/oauth2/request_auth",
        yahoo_token_url="https://api.login.yahoo.com/oauth2/get_token",
        google_calendar_base_url="https://www.googleapis.com/calendar/v3",
    )


def _store(tmp_path: Path) -> SqliteStore:
    store = SqliteStore(str(tmp_path / "test.db"))
    store.initialize()
    return store


class FakeExchange:
    def __init__(self) -> None:
        self.codes: list[str] = []

    def exchange_code(self, provider_name: str, code: str, redirect_uri: str) -> OAuthTokenResult:
        self.codes.append(code)
        return OAuthTokenResult.from_response({"access_token": "a", "refresh_token": "r"})


def test_token_service_stores_and_reports_status(tmp_path: Path) -> None:
    store = _store(tmp_path)
    registry = ProviderRegistry.from_config(_config())
    tokens = TokenService(store=store, registry=registry, user_id="u1")
    assert tokens.status("google") == {"provider": "google", "connected": False}

    expires = datetime.now(timezone.utc) + timedelta(hours=1)
    tokens.store_tokens("gmail", "access", "refresh", expires)
    status = tokens.status("google")
    assert status["connected"] is True
    assert status["expired"] is False
    assert status["has_refresh_token"] is True
    assert "access" not in status.values()


def test_token_service_rejects_unknown_provider(tmp_path: Path) -> None:
    tokens = TokenService(
        store=_store(tmp_path), registry=ProviderRegistry.from_config(_config()), user_id="u1"
    )
    with pytest.raises(UnknownProvider):
        tokens.store_tokens("aol", "a", None, datetime.now(timezone.utc))


def test_manual_setup_uses_provider_host(tmp_path: Path) -> None:
    """Summary: Verify manual setup stores the provider's IMAP host.

    Importance: Users pick a provider name instead of typing server settings.
    Alternatives: Require explicit host configuration.
    """

    store = _store(tmp_path)
    setup = EmailSetupService(
        store=store, registry=ProviderRegistry.from_config(_config()), user_id="u1"
    )
    config = setup.manual_setup("me@outlook.com", "outlook")
    assert config.host == "outlook.office365.com"
    assert config.provider == "microsoft"
    assert store.get_user_email("u1") == "me@outlook.com"


def test_manual_setup_unknown_provider_defaults_to_gmail(tmp_path: Path) -> None:
    setup = EmailSetupService(
        store=_store(tmp_path), registry=ProviderRegistry.from_config(_config()), user_id="u1"
    )
    config = setup.manual_setup("me@example.com", "fastmail")
    assert config.host == "imap.gmail.com"
    assert config.provider == "google"


def test_describe_reports_token_state(tmp_path: Path) -> None:
    store = _store(tmp_path)
    registry = ProviderRegistry.from_config(_config())
    setup = EmailSetupService(store=store, registry=registry, user_id="u1")
    assert setup.describe() == {"configured": False}

    setup.manual_setup("me@gmail.com", "gmail")
    described = setup.describe()
    assert described["configured"] is True
    assert described["use_oauth"] is False
    assert described["has_valid_tokens"] is False

    TokenService(store=store, registry=registry, user_id="u1").store_tokens(
        "google", "a", "r", datetime.now(timezone.utc) + timedelta(hours=1)
    )
    described = setup.describe()
    assert described["use_oauth"] is True
    assert described["has_valid_tokens"] is True


def test_configure_explicit_host_infers_provider(tmp_path: Path) -> None:
    setup = EmailSetupService(
        store=_store(tmp_path), registry=ProviderRegistry.from_config(_config()), user_id="u1"
    )
    assert setup.configure("imap.mail.yahoo.com", 993, True).provider == "yahoo"
    assert setup.configure("mail.example.com", 143, False).provider is None


def test_oauth_connect_round_trip(tmp_path: Path) -> None:
    """Summary: Verify the consent flow stores tokens and a configuration.

    Importance: The callback is where the first token record is created.
    Alternatives: Require manual token import.
    """

    store = _store(tmp_path)
    exchange = FakeExchange()
    connect = OAuthConnectService(
        store=store,
        registry=ProviderRegistry.from_config(_config()),
        refresher=exchange,  # type: ignore[arg-type]
        redirect_uri="http://localhost/callback",
    )
    url = connect.start("u1", "google")
    state = url.split("state=")[1].split("&")[0]

    assert connect.complete("google", "code-1", state) == "u1"
    assert exchange.codes == ["code-1"]
    record = store.get_oauth_token("u1", "google")
    assert record is not None and record.refresh_token == "r"
    config = store.get_email_configuration("u1")
    assert config is not None and config.host == "imap.gmail.com"

    with pytest.raises(ValueError):
        connect.complete("google", "code-1", state)


def test_oauth_connect_rejects_expired_state(tmp_path: Path) -> None:
    store = _store(tmp_path)
    store.save_oauth_state(
        StoredOAuthState("old", "u1", "google", datetime.now(timezone.utc) - timedelta(hours=1))
    )
    connect = OAuthConnectService(
        store=store,
        registry=ProviderRegistry.from_config(_config()),
        refresher=FakeExchange(),  # type: ignore[arg-type]
        redirect_uri="http://localhost/callback",
    )
    with pytest.raises(ValueError):
        connect.complete("google", "code", "old")
