"""Summary: OAuth client helpers for provider token exchanges.

Importance: Performs code exchanges and refresh-token grants without extra dependencies.
Alternatives: Use provider SDKs for OAuth flows.
"""

from __future__ import annotations

import json
import logging
import secrets
import socket
import urllib.error
import urllib.parse
import urllib.request
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

from deskmate.errors import ProviderMisconfigured, ProviderUnreachable, RefreshRejected
from deskmate.models import RefreshedToken
from deskmate.providers import ProviderRegistry


logger = logging.getLogger(__name__)

DEFAULT_EXPIRES_IN = 3600


@dataclass(frozen=True)
class OAuthTokenResult:
    """Summary: Normalized OAuth token response data.

    Importance: Provides a consistent token representation for storage and refresh logic.
    Alternatives: Store the raw provider response without normalization.
    """

    access_token: str
    refresh_token: str | None
    expires_at: datetime
    token_type: str | None
    raw: dict[str, Any]

    @staticmethod
    def from_response(payload: dict[str, Any], now: datetime | None = None) -> "OAuthTokenResult":
        """Summary: Build an OAuthTokenResult from a provider payload.

        Importance: Normalizes expiry and optional fields across providers.
        Alternatives: Use provider-specific token response classes.
        """

        issued_at = now or datetime.now(timezone.utc)
        expires_in = payload.get("expires_in")
        try:
            seconds = int(expires_in) if expires_in is not None else DEFAULT_EXPIRES_IN
        except (TypeError, ValueError):
            seconds = DEFAULT_EXPIRES_IN
        return OAuthTokenResult(
            access_token=payload["access_token"],
            refresh_token=payload.get("refresh_token"),
            expires_at=issued_at + timedelta(seconds=seconds),
            token_type=payload.get("token_type"),
            raw=payload,
        )


class OAuthHttpError(Exception):
    """Raised by ``_post_form`` when the endpoint answers with an HTTP error."""

    def __init__(self, status: int, body: dict[str, Any]) -> None:
        super().__init__(f"HTTP {status}: {body}")
        self.status = status
        self.body = body

    @property
    def description(self) -> str:
        return str(self.body.get("error_description") or self.body.get("error") or self.status)


def create_state_token() -> str:
    """Summary: Generate a CSRF state token.

    Importance: Protects OAuth flows from CSRF attacks.
    Alternatives: Use server-side session storage with pre-generated tokens.
    """

    return secrets.token_urlsafe(24)


class TokenRefresher:
    """Summary: Performs provider-specific token grants.

    Importance: The only component that talks to token endpoints; it never writes to the
    store, leaving persistence to the resolver.
    Alternatives: Let the IMAP library refresh tokens implicitly.
    """

    def __init__(self, registry: ProviderRegistry, timeout: float = 10.0) -> None:
        self._registry = registry
        self._timeout = timeout

    def refresh(self, provider_name: str, refresh_token: str) -> RefreshedToken:
        """Summary: Exchange a refresh token for a new access token.

        Importance: Keeps delegated access alive without re-consent.
        Alternatives: Always re-run OAuth flows when tokens expire.
        """

        if not refresh_token:
            raise RefreshRejected("Refresh token is required", provider=provider_name)
        provider = self._registry.get(provider_name)
        try:
            payload = _refresh_payload(provider.client_id, provider.client_secret, refresh_token)
        except ValueError as exc:
            raise ProviderMisconfigured(str(exc), provider=provider.name) from exc
        logger.info("Refreshing OAuth token for %s.", provider.name)
        response = self._request(provider.name, provider.token_url, payload, "refresh")
        result = _parse_token_response(provider.name, response)
        return RefreshedToken(
            access_token=result.access_token,
            refresh_token=result.refresh_token,
            expires_at=result.expires_at,
        )

    def exchange_code(self, provider_name: str, code: str, redirect_uri: str) -> OAuthTokenResult:
        """Summary: Exchange an OAuth authorization code for tokens.

        Importance: Completes consent flows by retrieving access and refresh tokens.
        Alternatives: Use provider SDKs or external auth services.
        """

        provider = self._registry.get(provider_name)
        try:
            payload = _token_payload(provider.client_id, provider.client_secret, code, redirect_uri)
        except ValueError as exc:
            raise ProviderMisconfigured(str(exc), provider=provider.name) from exc
        response = self._request(provider.name, provider.token_url, payload, "code exchange")
        return _parse_token_response(provider.name, response)

    def _request(
        self, provider_name: str, url: str, payload: dict[str, str], purpose: str
    ) -> dict[str, Any]:
        try:
            return _post_form(url, payload, self._timeout)
        except OAuthHttpError as exc:
            if exc.status >= 500:
                raise ProviderUnreachable(
                    f"Token {purpose} failed with HTTP {exc.status}", provider=provider_name
                ) from exc
            logger.warning("Token %s rejected by %s: %s", purpose, provider_name, exc.description)
            raise RefreshRejected(
                f"Token {purpose} rejected: {exc.description}", provider=provider_name
            ) from exc
        except (socket.timeout, TimeoutError) as exc:
            raise ProviderUnreachable(
                f"Token {purpose} timed out", provider=provider_name, timed_out=True
            ) from exc
        except urllib.error.URLError as exc:
            timed_out = isinstance(exc.reason, (socket.timeout, TimeoutError))
            raise ProviderUnreachable(
                f"Token {purpose} failed: {exc.reason}", provider=provider_name, timed_out=timed_out
            ) from exc
        except (OSError, ValueError) as exc:
            raise ProviderUnreachable(
                f"Token {purpose} failed: {exc}", provider=provider_name
            ) from exc


def _parse_token_response(provider_name: str, response: dict[str, Any]) -> OAuthTokenResult:
    if not response.get("access_token"):
        raise ProviderUnreachable("Token endpoint returned no access token", provider=provider_name)
    return OAuthTokenResult.from_response(response)


def _token_payload(client_id: str, client_secret: str, code: str, redirect_uri: str) -> dict[str, str]:
    _ensure_oauth_config(client_id, client_secret)
    return {
        "client_id": client_id,
        "client_secret": client_secret,
        "code": code,
        "grant_type": "authorization_code",
        "redirect_uri": redirect_uri,
    }


def _refresh_payload(client_id: str, client_secret: str, refresh_token: str) -> dict[str, str]:
    _ensure_oauth_config(client_id, client_secret)
    return {
        "client_id": client_id,
        "client_secret": client_secret,
        "refresh_token": refresh_token,
        "grant_type": "refresh_token",
    }


def _ensure_oauth_config(client_id: str, client_secret: str) -> None:
    """Summary: Validate that OAuth client credentials exist.

    Importance: Prevents confusing token endpoint errors when credentials are missing.
    Alternatives: Allow requests to fail at the provider endpoint.
    """

    if not client_id or not client_secret:
        raise ValueError("Missing OAuth client credentials")


def _post_form(url: str, payload: dict[str, str], timeout: float) -> dict[str, Any]:
    """Summary: Send a form-encoded POST request and parse JSON.

    Importance: Avoids new dependencies while supporting OAuth exchanges.
    Alternatives: Use requests or a provider SDK.
    """

    data = urllib.parse.urlencode(payload).encode("utf-8")
    request = urllib.request.Request(
        url,
        data=data,
        headers={"Content-Type": "application/x-www-form-urlencoded"},
        method="POST",
    )
    try:
        with urllib.request.urlopen(request, timeout=timeout) as response:
            raw = response.read().decode("utf-8")
    except urllib.error.HTTPError as exc:
        error_body = exc.read().decode("utf-8", errors="ignore")
        try:
            body = json.loads(error_body) if error_body else {}
        except ValueError:
            body = {"error": error_body or str(exc.reason)}
        raise OAuthHttpError(exc.code, body) from exc
    return json.loads(raw)
