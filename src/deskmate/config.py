"""Summary: Application configuration for Deskmate.

Importance: Centralizes environment, .env, and config defaults for consistent behavior.
Alternatives: Use a dedicated settings library like Pydantic Settings.
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from dataclasses import dataclass


@dataclass(frozen=True)
class AppConfig:
    """Summary: Holds configuration values for providers, storage, and the API.

    Importance: Ensures all services derive settings from a single source of truth.
    Alternatives: Store settings in a shared config file and parse at startup.
    """

    db_path: str
    api_host: str
    api_port: int
    api_key: str
    oauth_redirect_uri: str
    google_client_id: str
    google_client_secret: str
    google_auth_url: str
    google_token_url: str
    microsoft_client_id: str
    microsoft_client_secret: str
    microsoft_auth_url: str
    microsoft_token_url: str
    yahoo_client_id: str
    yahoo_client_secret: str
    yahoo_auth_url: str
    yahoo_token_url: str
    google_calendar_base_url: str
    http_timeout_seconds: float = 10.0
    token_expiry_skew_seconds: int = 60
    serialize_refresh: bool = False
    sent_fallback_sample: int = 50

    @staticmethod
    def from_env() -> "AppConfig":
        """Summary: Build configuration from defaults, .env, and environment.

        Importance: Keeps all variables defined in config defaults while allowing overrides.
        Alternatives: Parse only environment variables without a defaults file.
        """

        defaults = load_defaults(Path("config") / "defaults.json")
        load_dotenv(Path(".env"))
        return AppConfig(
            db_path=os.getenv("DESKMATE_DB_PATH", defaults["db_path"]),
            api_host=os.getenv("DESKMATE_API_HOST", defaults["api_host"]),
            api_port=int(os.getenv("DESKMATE_API_PORT", defaults["api_port"])),
            api_key=os.getenv("DESKMATE_API_KEY", defaults["api_key"]),
            oauth_redirect_uri=os.getenv(
                "DESKMATE_OAUTH_REDIRECT_URI", defaults["oauth_redirect_uri"]
            ),
            google_client_id=os.getenv("GOOGLE_CLIENT_ID", defaults["google_client_id"]),
            google_client_secret=os.getenv("GOOGLE_CLIENT_SECRET", defaults["google_client_secret"]),
            google_auth_url=os.getenv("GOOGLE_AUTH_URL", defaults["google_auth_url"]),
            google_token_url=os.getenv("GOOGLE_TOKEN_URL", defaults["google_token_url"]),
            microsoft_client_id=os.getenv(
                "MICROSOFT_EMAIL_CLIENT_ID", defaults["microsoft_client_id"]
            ),
            microsoft_client_secret=os.getenv(
                "MICROSOFT_EMAIL_CLIENT_SECRET", defaults["microsoft_client_secret"]
            ),
            microsoft_auth_url=os.getenv("MICROSOFT_AUTH_URL", defaults["microsoft_auth_url"]),
            microsoft_token_url=os.getenv("MICROSOFT_TOKEN_URL", defaults["microsoft_token_url"]),
            yahoo_client_id=os.getenv("YAHOO_CLIENT_ID", defaults["yahoo_client_id"]),
            yahoo_client_secret=os.getenv("YAHOO_CLIENT_SECRET", defaults["yahoo_client_secret"]),
            yahoo_auth_url=os.getenv("YAHOO_AUTH_URL", defaults["yahoo_auth_url"]),
            yahoo_token_url=os.getenv("YAHOO_TOKEN_URL", defaults["yahoo_token_url"]),
            google_calendar_base_url=os.getenv(
                "GOOGLE_CALENDAR_BASE_URL", defaults["google_calendar_base_url"]
            ),
            http_timeout_seconds=float(
                os.getenv("DESKMATE_HTTP_TIMEOUT", defaults["http_timeout_seconds"])
            ),
            token_expiry_skew_seconds=int(
                os.getenv("DESKMATE_TOKEN_EXPIRY_SKEW", defaults["token_expiry_skew_seconds"])
            ),
            serialize_refresh=parse_bool(
                os.getenv("DESKMATE_SERIALIZE_REFRESH", defaults["serialize_refresh"])
            ),
            sent_fallback_sample=int(
                os.getenv("DESKMATE_SENT_FALLBACK_SAMPLE", defaults["sent_fallback_sample"])
            ),
        )


def load_defaults(path: Path) -> dict[str, str]:
    """Summary: Load configuration defaults from JSON.

    Importance: Ensures all variables exist in a single config file.
    Alternatives: Inline defaults in the AppConfig initializer.
    """

    if not path.exists():
        raise FileNotFoundError(f"Defaults file not found: {path}")
    return json.loads(path.read_text(encoding="utf-8"))


def load_dotenv(path: Path) -> None:
    """Summary: Load key-value pairs from a .env file into the environment.

    Importance: Keeps client secrets out of code while supporting local workflows.
    Alternatives: Use python-dotenv or OS-specific secret stores.
    """

    if not path.exists():
        return
    for raw_line in path.read_text(encoding="utf-8").splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        os.environ.setdefault(key.strip(), value.strip())


def parse_bool(value: str | bool) -> bool:
    """Parse a truthy config string such as "1", "true", or "yes"."""

    if isinstance(value, bool):
        return value
    return value.strip().lower() in {"1", "true", "yes", "on"}
