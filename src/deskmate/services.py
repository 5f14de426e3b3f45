"""Summary: Core application services for Deskmate.

Importance: Resolves credentials, manages token and configuration records, and runs the
sent-mail fallback chain for every route.
Alternatives: Build a full service layer with a dependency injection framework.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any

from deskmate.email import EmailTransport, MailboxUnavailable
from deskmate.errors import (
    ConfigurationMissing,
    CredentialError,
    CredentialExpired,
    CredentialMissing,
    IdentityMissing,
    ProviderUnreachable,
    RefreshRejected,
    TokenPersistFailed,
)
from deskmate.mailbox import sent_mailbox_candidates
from deskmate.models import (
    DEFAULT_IMAP_PORT,
    GOOGLE,
    CredentialFragment,
    EmailConfiguration,
    EmailMessage,
    OAuthCredential,
    ResolvedCredential,
    TokenRecord,
)
from deskmate.oauth import TokenRefresher, create_state_token
from deskmate.providers import ProviderRegistry
from deskmate.storage.sqlite_store import SqliteStore, StoredOAuthState


logger = logging.getLogger(__name__)

OAUTH_STATE_TTL = timedelta(minutes=10)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class KeyedLocks:
    """Summary: One mutex per key, created on demand and dropped when unused.

    Importance: Lets concurrent requests for the same (user, provider) share one refresh
    without keeping a lock for every user ever seen.
    Alternatives: A distributed lock in the database.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[tuple[str, str], threading.Lock] = {}
        self._holders: dict[tuple[str, str], int] = {}

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)

    @contextmanager
    def hold(self, key: tuple[str, str]) -> Iterator[None]:
        with self._guard:
            lock = self._locks.setdefault(key, threading.Lock())
            self._holders[key] = self._holders.get(key, 0) + 1
        try:
            with lock:
                yield
        finally:
            with self._guard:
                self._holders[key] -= 1
                if not self._holders[key]:
                    del self._holders[key]
                    del self._locks[key]


@dataclass(frozen=True)
class CredentialResolver:
    """Summary: Turns a user identity into a ready-to-use mail credential.

    Importance: The single place that picks password or OAuth, refreshes expired tokens,
    and persists the result; every route calls it once per request.
    Alternatives: Re-derive credentials inside each route handler.
    """

    store: SqliteStore
    registry: ProviderRegistry
    refresher: TokenRefresher
    expiry_skew_seconds: int = 60
    locks: KeyedLocks | None = None
    clock: Callable[[], datetime] = field(default=_utcnow)

    def resolve(
        self,
        user_id: str,
        fragment: CredentialFragment | None = None,
        identity_email: str | None = None,
    ) -> ResolvedCredential:
        """Summary: Resolve the credential for a user.

        Importance: Password overrides stale OAuth state; refresh happens at most once.
        Alternatives: Let the IMAP client refresh tokens lazily mid-session.
        """

        fragment = fragment or CredentialFragment()
        host, port, secure, provider = self._resolve_endpoint(user_id, fragment)
        user = self._resolve_address(user_id, fragment, identity_email)

        if fragment.password:
            logger.info("Using password authentication for user %s.", user_id)
            return ResolvedCredential(
                host=host,
                port=port,
                secure=secure,
                user=user,
                provider=provider,
                password=fragment.password,
            )

        if not provider:
            raise CredentialMissing(
                "No authentication method provided. Provide a password or connect with OAuth."
            )
        record = self._usable_token(user_id, provider)
        settings = self.registry.get(provider)
        return ResolvedCredential(
            host=host,
            port=port,
            secure=secure,
            user=user,
            provider=provider,
            oauth2=OAuthCredential(
                access_token=record.access_token,
                refresh_token=record.refresh_token,
                expires=record.expires_at,
                client_id=settings.client_id,
                client_secret=settings.client_secret,
            ),
        )

    def resolve_access_token(self, user_id: str, provider: str = GOOGLE) -> str:
        """Summary: Return a valid access token for non-IMAP APIs.

        Importance: Calendar calls share the same refresh and persist rules as mail.
        Alternatives: Have the client send its own access token.
        """

        return self._usable_token(user_id, self.registry.normalize(provider)).access_token

    def _resolve_endpoint(
        self, user_id: str, fragment: CredentialFragment
    ) -> tuple[str, int, bool, str | None]:
        if fragment.has_host():
            provider = fragment.provider
            if provider:
                provider = self.registry.normalize(provider)
            else:
                owner = self.registry.for_host(fragment.host or "")
                provider = owner.name if owner else None
            return (
                fragment.host or "",
                fragment.port or DEFAULT_IMAP_PORT,
                True if fragment.secure is None else fragment.secure,
                provider,
            )

        config = self.store.get_email_configuration(user_id)
        if config is None:
            raise ConfigurationMissing("Email configuration not found")
        provider = self.registry.normalize(config.provider) if config.provider else None
        return config.host, config.port or DEFAULT_IMAP_PORT, config.secure, provider

    def _resolve_address(
        self, user_id: str, fragment: CredentialFragment, identity_email: str | None
    ) -> str:
        if fragment.user:
            return fragment.user
        profile_email = self.store.get_user_email(user_id)
        if profile_email:
            return profile_email
        if identity_email:
            logger.info("Profile email missing for %s; using identity provider claim.", user_id)
            return identity_email
        raise IdentityMissing("User email address is required")

    def _usable_token(self, user_id: str, provider: str) -> TokenRecord:
        record = self.store.get_oauth_token(user_id, provider)
        if record is None:
            raise CredentialMissing(f"No {provider} OAuth token found", provider=provider)
        if not record.is_expired(self.clock(), self.expiry_skew_seconds):
            return record
        if not record.refresh_token:
            raise CredentialExpired(
                "OAuth token expired and no refresh token available", provider=provider
            )
        if self.locks is None:
            return self._refresh(record)
        with self.locks.hold((user_id, provider)):
            current = self.store.get_oauth_token(user_id, provider) or record
            if not current.is_expired(self.clock(), self.expiry_skew_seconds):
                logger.info("Reusing token refreshed concurrently for %s/%s.", user_id, provider)
                return current
            if not current.refresh_token:
                raise CredentialExpired(
                    "OAuth token expired and no refresh token available", provider=provider
                )
            return self._refresh(current)

    def _refresh(self, record: TokenRecord) -> TokenRecord:
        try:
            refreshed = self.refresher.refresh(record.provider, record.refresh_token or "")
        except RefreshRejected as exc:
            raise CredentialExpired(
                "Failed to refresh OAuth token. Please reconnect your account.",
                provider=record.provider,
            ) from exc
        updated = TokenRecord(
            user_id=record.user_id,
            provider=record.provider,
            access_token=refreshed.access_token,
            refresh_token=refreshed.refresh_token or record.refresh_token,
            expires_at=refreshed.expires_at,
            updated_at=self.clock(),
        )
        try:
            self.store.upsert_oauth_token(updated)
        except sqlite3.Error as exc:
            logger.error("Could not persist refreshed token for %s/%s.", record.user_id, record.provider)
            raise TokenPersistFailed(
                "Refreshed token could not be saved", provider=record.provider
            ) from exc
        logger.info("Refreshed OAuth token for %s/%s.", record.user_id, record.provider)
        return updated


@dataclass(frozen=True)
class TokenService:
    """Summary: Stores OAuth tokens for a user.

    Importance: Records tokens delivered by consent flows or imported by clients.
    Alternatives: Use a secrets manager.
    """

    store: SqliteStore
    registry: ProviderRegistry
    user_id: str

    def store_tokens(
        self,
        provider_name: str,
        access_token: str,
        refresh_token: str | None,
        expires_at: datetime,
    ) -> None:
        """Summary: Store OAuth tokens for a provider.

        Importance: Persists tokens needed for IMAP and Calendar calls.
        Alternatives: Require re-authentication for each run.
        """

        provider = self.registry.get(provider_name).name
        self.store.upsert_oauth_token(
            TokenRecord(
                user_id=self.user_id,
                provider=provider,
                access_token=access_token,
                refresh_token=refresh_token,
                expires_at=expires_at,
            )
        )
        logger.info("Stored OAuth tokens for %s.", provider)

    def status(self, provider_name: str, now: datetime | None = None) -> dict[str, Any]:
        """Describe the stored token without exposing secrets."""

        provider = self.registry.get(provider_name).name
        record = self.store.get_oauth_token(self.user_id, provider)
        if record is None:
            return {"provider": provider, "connected": False}
        return {
            "provider": provider,
            "connected": True,
            "expired": record.is_expired(now or _utcnow()),
            "expires_at": record.expires_at.isoformat(),
            "has_refresh_token": bool(record.refresh_token),
        }


@dataclass(frozen=True)
class EmailSetupService:
    """Summary: Manages a user's email configuration.

    Importance: Creates the configuration row the resolver reads host settings from.
    Alternatives: Require clients to send host settings on every request.
    """

    store: SqliteStore
    registry: ProviderRegistry
    user_id: str

    def manual_setup(self, email: str, provider_name: str | None) -> EmailConfiguration:
        """Summary: Configure a mailbox by provider name.

        Importance: Users pick "gmail" or "outlook" instead of typing server names.
        Alternatives: Auto-discover servers from the email domain.
        """

        settings = self.registry.get(GOOGLE)
        if provider_name and self.registry.normalize(provider_name) in self.registry.names():
            settings = self.registry.get(provider_name)
        config = EmailConfiguration(
            user_id=self.user_id,
            host=settings.imap_host,
            port=settings.imap_port,
            secure=settings.secure,
            provider=settings.name,
        )
        self.store.upsert_email_configuration(config)
        self.store.update_user_email(self.user_id, email)
        logger.info("Configured %s mailbox for user %s.", settings.name, self.user_id)
        return config

    def configure(
        self, host: str, port: int, secure: bool, provider_name: str | None = None
    ) -> EmailConfiguration:
        """Store an explicit server configuration."""

        provider = None
        if provider_name:
            provider = self.registry.get(provider_name).name
        else:
            owner = self.registry.for_host(host)
            provider = owner.name if owner else None
        config = EmailConfiguration(
            user_id=self.user_id, host=host, port=port, secure=secure, provider=provider
        )
        self.store.upsert_email_configuration(config)
        return config

    def describe(self, now: datetime | None = None) -> dict[str, Any]:
        """Summary: Summarize configuration and token state.

        Importance: Lets clients decide whether to show a connect or reconnect prompt.
        Alternatives: Let clients find out by calling fetch routes.
        """

        config = self.store.get_email_configuration(self.user_id)
        if config is None:
            return {"configured": False}
        record = None
        if config.provider:
            record = self.store.get_oauth_token(
                self.user_id, self.registry.normalize(config.provider)
            )
        return {
            "configured": True,
            "config": {
                "host": config.host,
                "port": config.port,
                "secure": config.secure,
                "provider": config.provider,
            },
            "has_valid_tokens": bool(record and not record.is_expired(now or _utcnow())),
            "use_oauth": record is not None,
        }


@dataclass(frozen=True)
class OAuthConnectService:
    """Summary: Runs the consent flow that creates token records.

    Importance: Issues single-use states and stores the tokens from the callback.
    Alternatives: Keep states in memory on the API process.
    """

    store: SqliteStore
    registry: ProviderRegistry
    refresher: TokenRefresher
    redirect_uri: str

    def start(self, user_id: str, provider_name: str) -> str:
        provider = self.registry.get(provider_name).name
        state = create_state_token()
        self.store.save_oauth_state(
            StoredOAuthState(state=state, user_id=user_id, provider=provider, created_at=_utcnow())
        )
        return self.registry.build_auth_url(provider, self.redirect_uri, state)

    def complete(self, provider_name: str, code: str, state: str) -> str:
        """Summary: Validate state, exchange the code, and store tokens.

        Importance: Creates the first token record and, when missing, the email
        configuration for the provider.
        Alternatives: Store only the authorization code and exchange later.
        """

        provider = self.registry.get(provider_name)
        stored = self.store.pop_oauth_state(state, provider.name)
        if stored is None:
            raise ValueError("Invalid OAuth state")
        if _utcnow() - stored.created_at > OAUTH_STATE_TTL:
            raise ValueError("OAuth state expired")
        result = self.refresher.exchange_code(provider.name, code, self.redirect_uri)
        self.store.upsert_oauth_token(
            TokenRecord(
                user_id=stored.user_id,
                provider=provider.name,
                access_token=result.access_token,
                refresh_token=result.refresh_token,
                expires_at=result.expires_at,
            )
        )
        if self.store.get_email_configuration(stored.user_id) is None:
            self.store.upsert_email_configuration(
                EmailConfiguration(
                    user_id=stored.user_id,
                    host=provider.imap_host,
                    port=provider.imap_port,
                    secure=provider.secure,
                    provider=provider.name,
                )
            )
        self.store.delete_expired_oauth_states(_utcnow() - OAUTH_STATE_TTL)
        logger.info("Connected %s for user %s.", provider.name, stored.user_id)
        return stored.user_id


@dataclass(frozen=True)
class SentMailResult:
    """Outcome of a sent-mail lookup."""

    mailbox: str
    messages: list[EmailMessage]
    approximate: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "mailbox": self.mailbox,
            "approximate": self.approximate,
            "emails": [message.to_dict() for message in self.messages],
        }


@dataclass(frozen=True)
class SentMailService:
    """Summary: Fetches recent sent mail with a layered fallback.

    Importance: Works across providers with different folder names and degrades to an
    INBOX scan instead of failing.
    Alternatives: Fail when no sent folder is advertised.
    """

    transport: EmailTransport
    fallback_sample: int = 50

    def fetch_sent(self, credential: ResolvedCredential, limit: int = 20) -> SentMailResult:
        """Summary: Return recent sent messages, newest first.

        Importance: Credential failures propagate; folder and network failures only
        move the chain to the next candidate.
        Alternatives: Open a single guessed folder and return whatever it holds.
        """

        try:
            listing = self.transport.list_mailboxes(credential)
        except (MailboxUnavailable, ProviderUnreachable) as exc:
            logger.warning("Mailbox listing failed for %s: %s", credential.host, exc)
            listing = []
        except CredentialError:
            raise
        except Exception:
            logger.exception("Unexpected failure listing mailboxes on %s.", credential.host)
            listing = []

        for candidate in sent_mailbox_candidates(listing, credential.host):
            messages = self._try_fetch(credential, candidate.path, limit)
            if messages:
                logger.info(
                    "Loaded %s sent emails from %s (rule %s).",
                    len(messages),
                    candidate.path,
                    candidate.rule,
                )
                return SentMailResult(mailbox=candidate.path, messages=_newest_first(messages, limit))

        logger.info("No sent folder yielded messages; filtering INBOX by sender.")
        inbox = self._try_fetch(credential, "INBOX", self.fallback_sample)
        own_address = credential.user.lower()
        filtered = [message for message in inbox if own_address in message.sender.lower()]
        return SentMailResult(
            mailbox="INBOX", messages=_newest_first(filtered, limit), approximate=True
        )

    def _try_fetch(self, credential: ResolvedCredential, mailbox: str, limit: int) -> list[EmailMessage]:
        try:
            return self.transport.fetch_emails(credential, mailbox, limit, reverse=True)
        except (MailboxUnavailable, ProviderUnreachable) as exc:
            logger.info("Skipping mailbox %s: %s", mailbox, exc)
        except CredentialError:
            raise
        except Exception:
            logger.exception("Unexpected failure reading mailbox %s.", mailbox)
        return []


def _newest_first(messages: list[EmailMessage], limit: int) -> list[EmailMessage]:
    return sorted(messages, key=lambda message: message.date, reverse=True)[: max(limit, 0)]
