"""Summary: Application factory wiring core services.

Importance: Centralizes dependency creation for the CLI and API layers.
Alternatives: Instantiate services manually in each entrypoint.
"""

from __future__ import annotations

from dataclasses import dataclass

from deskmate.calendar import GoogleCalendarClient
from deskmate.config import AppConfig
from deskmate.email import EmailTransport, ImapEmailTransport
from deskmate.oauth import TokenRefresher
from deskmate.providers import ProviderRegistry
from deskmate.services import (
    CredentialResolver,
    EmailSetupService,
    KeyedLocks,
    OAuthConnectService,
    SentMailService,
    TokenService,
)
from deskmate.storage.sqlite_store import SqliteStore


@dataclass(frozen=True)
class AppContext:
    """Summary: Shared application context for building user services.

    Importance: One store, registry, and resolver serve every request.
    Alternatives: Rebuild dependencies for every request.
    """

    store: SqliteStore
    registry: ProviderRegistry
    refresher: TokenRefresher
    resolver: CredentialResolver
    transport: EmailTransport
    calendar: GoogleCalendarClient
    oauth: OAuthConnectService
    sent_mail: SentMailService
    config: AppConfig

    def services_for_user(self, user_id: str) -> "AppServices":
        """Summary: Build user-scoped services from shared context.

        Importance: Keeps token and configuration writes bound to one user.
        Alternatives: Pass the user ID into every service call.
        """

        return AppServices(
            tokens=TokenService(store=self.store, registry=self.registry, user_id=user_id),
            email_setup=EmailSetupService(
                store=self.store, registry=self.registry, user_id=user_id
            ),
            user_id=user_id,
        )


@dataclass(frozen=True)
class AppServices:
    """Bundle of user-scoped services."""

    tokens: TokenService
    email_setup: EmailSetupService
    user_id: str


def build_context(
    config: AppConfig,
    transport: EmailTransport | None = None,
    refresher: TokenRefresher | None = None,
    calendar: GoogleCalendarClient | None = None,
) -> AppContext:
    """Summary: Build shared context from configuration.

    Importance: Tests swap the transport, refresher, or calendar client here without
    touching the network.
    Alternatives: Construct dependencies separately per request.
    """

    store = SqliteStore(config.db_path)
    store.initialize()
    registry = ProviderRegistry.from_config(config)
    refresher = refresher or TokenRefresher(registry, timeout=config.http_timeout_seconds)
    transport = transport or ImapEmailTransport(registry)
    resolver = CredentialResolver(
        store=store,
        registry=registry,
        refresher=refresher,
        expiry_skew_seconds=config.token_expiry_skew_seconds,
        locks=KeyedLocks() if config.serialize_refresh else None,
    )
    return AppContext(
        store=store,
        registry=registry,
        refresher=refresher,
        resolver=resolver,
        transport=transport,
        calendar=calendar
        or GoogleCalendarClient(
            config.google_calendar_base_url, timeout=config.http_timeout_seconds
        ),
        oauth=OAuthConnectService(
            store=store,
            registry=registry,
            refresher=refresher,
            redirect_uri=config.oauth_redirect_uri,
        ),
        sent_mail=SentMailService(transport=transport, fallback_sample=config.sent_fallback_sample),
        config=config,
    )
