"""Summary: Tests for configuration loading.

Importance: Ensures defaults, .env, and environment overrides behave correctly.
Alternatives: Validate configuration manually during runtime.
"""

from __future__ import annotations

import json
import os
from pathlib import Path

import pytest

from deskmate.config import AppConfig, load_defaults, load_dotenv, parse_bool


DEFAULTS = {
    "db_path": "test.db",
    "api_host": "127.0.0.1",
    "api_port": "8000",
    "api_key": "",
    "oauth_redirect_uri": "http://localhost:8000/email/oauth2/callback",
    "google_client_id": "",
    "google_client_secret": "",
    "google_auth_url": "https://accounts.google.com/o/oauth2/auth",
    "google_token_url": "https://oauth2.googleapis.com/token",
    "microsoft_client_id": "",
    "microsoft_client_secret": "",
    "microsoft_auth_url": "https://login.microsoftonline.com/common/oauth2/v2.0/authorize",
    "microsoft_token_url": "https://login.microsoftonline.com/common/oauth2/v2.0/token",
    "yahoo_client_id": "",
    "yahoo_client_secret": "",
    "yahoo_auth_url": "https://api.login.yahoo.com/oauth2/request_auth",
    "yahoo_token_url": "https://api.login.yahoo.com/oauth2/get_token",
    "google_calendar_base_url": "https://www.googleapis.com/calendar/v3",
    "http_timeout_seconds": "10",
    "token_expiry_skew_seconds": "60",
    "serialize_refresh": "false",
    "sent_fallback_sample": "50",
}


def _write_defaults(root: Path) -> None:
    (root / "config").mkdir()
    (root / "config" / "defaults.json").write_text(json.dumps(DEFAULTS), encoding="utf-8")


def test_load_defaults_reads_json(tmp_path: Path) -> None:
    """Summary: Verify defaults are parsed from JSON.

    Importance: Confirms config file is the source of truth for variables.
    Alternatives: Hardcode defaults in the test.
    """

    defaults_path = tmp_path / "defaults.json"
    defaults_path.write_text("{\"db_path\": \"test.db\"}", encoding="utf-8")
    defaults = load_defaults(defaults_path)
    assert defaults["db_path"] == "test.db"


def test_load_defaults_missing_file_raises(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        load_defaults(tmp_path / "missing.json")


def test_load_dotenv_sets_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Summary: Ensure .env values populate environment variables.

    Importance: Validates local secret loading without external tools.
    Alternatives: Assume OS environment is always set.
    """

    env_path = tmp_path / ".env"
    env_path.write_text("# comment\nDESKMATE_DOTENV_SAMPLE=from-dotenv\n", encoding="utf-8")
    monkeypatch.delenv("DESKMATE_DOTENV_SAMPLE", raising=False)
    load_dotenv(env_path)
    assert os.getenv("DESKMATE_DOTENV_SAMPLE") == "from-dotenv"


def test_app_config_uses_defaults(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Summary: Verify AppConfig honors defaults when env is absent.

    Importance: Confirms config file remains the baseline for variables.
    Alternatives: Inline defaults directly in the AppConfig class.
    """

    _write_defaults(tmp_path)
    monkeypatch.chdir(tmp_path)
    for name in ("DESKMATE_DB_PATH", "DESKMATE_SERIALIZE_REFRESH", "GOOGLE_CLIENT_ID"):
        monkeypatch.delenv(name, raising=False)
    config = AppConfig.from_env()
    assert config.db_path == "test.db"
    assert config.api_port == 8000
    assert config.token_expiry_skew_seconds == 60
    assert config.serialize_refresh is False
    assert config.sent_fallback_sample == 50
    assert config.google_token_url == "https://oauth2.googleapis.com/token"


def test_app_config_env_overrides(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    _write_defaults(tmp_path)
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("DESKMATE_DB_PATH", "override.db")
    monkeypatch.setenv("DESKMATE_SERIALIZE_REFRESH", "yes")
    monkeypatch.setenv("MICROSOFT_EMAIL_CLIENT_ID", "ms-client")
    config = AppConfig.from_env()
    assert config.db_path == "override.db"
    assert config.serialize_refresh is True
    assert config.microsoft_client_id == "ms-client"


def test_parse_bool_values() -> None:
    assert parse_bool("1")
    assert parse_bool(" True ")
    assert not parse_bool("false")
    assert not parse_bool("")
    assert parse_bool(True)
