"""Summary: Provider registry for OAuth and IMAP endpoints.

Importance: Keeps endpoint metadata in one immutable value passed to services.
Alternatives: Read provider settings from environment variables at call sites.
"""

from __future__ import annotations

import urllib.parse
from dataclasses import dataclass

from deskmate.config import AppConfig
from deskmate.errors import UnknownProvider
from deskmate.models import DEFAULT_IMAP_PORT, GOOGLE, MICROSOFT, YAHOO


PROVIDER_ALIASES = {
    "gmail": GOOGLE,
    "googlemail": GOOGLE,
    "outlook": MICROSOFT,
    "hotmail": MICROSOFT,
    "office365": MICROSOFT,
    "live": MICROSOFT,
    "ymail": YAHOO,
}


@dataclass(frozen=True)
class ProviderSettings:
    """Summary: Endpoint metadata for one provider.

    Importance: Bundles IMAP, SMTP, and OAuth details needed for delegated access.
    Alternatives: Hardcode endpoints inside the transport and refresher.
    """

    name: str
    imap_host: str
    smtp_host: str
    auth_url: str
    token_url: str
    client_id: str
    client_secret: str
    scope: str
    imap_port: int = DEFAULT_IMAP_PORT
    smtp_port: int = 465
    secure: bool = True
    extra_hosts: tuple[str, ...] = ()

    def owns_host(self, host: str) -> bool:
        candidate = host.strip().lower()
        return candidate == self.imap_host or candidate in self.extra_hosts


class ProviderRegistry:
    """Summary: Immutable mapping from provider name to endpoint metadata.

    Importance: Constructor-injected into the resolver and refresher so no module
    reads ambient configuration.
    Alternatives: A module-level dictionary populated from the environment.
    """

    def __init__(self, providers: list[ProviderSettings]) -> None:
        self._providers = {provider.name: provider for provider in providers}

    @staticmethod
    def from_config(config: AppConfig) -> "ProviderRegistry":
        """Summary: Build the registry from application configuration.

        Importance: Single place where client credentials meet endpoint metadata.
        Alternatives: Load provider definitions from a JSON file.
        """

        return ProviderRegistry(
            [
                ProviderSettings(
                    name=GOOGLE,
                    imap_host="imap.gmail.com",
                    smtp_host="smtp.gmail.com",
                    auth_url=config.google_auth_url,
                    token_url=config.google_token_url,
                    client_id=config.google_client_id,
                    client_secret=config.google_client_secret,
                    scope="https://mail.google.com/ https://www.googleapis.com/auth/calendar",
                    extra_hosts=("imap.googlemail.com",),
                ),
                ProviderSettings(
                    name=MICROSOFT,
                    imap_host="outlook.office365.com",
                    smtp_host="smtp.office365.com",
                    smtp_port=587,
                    auth_url=config.microsoft_auth_url,
                    token_url=config.microsoft_token_url,
                    client_id=config.microsoft_client_id,
                    client_secret=config.microsoft_client_secret,
                    scope=(
                        "https://outlook.office.com/IMAP.AccessAsUser.All "
                        "https://outlook.office.com/SMTP.Send offline_access"
                    ),
                    extra_hosts=("imap-mail.outlook.com",),
                ),
                ProviderSettings(
                    name=YAHOO,
                    imap_host="imap.mail.yahoo.com",
                    smtp_host="smtp.mail.yahoo.com",
                    auth_url=config.yahoo_auth_url,
                    token_url=config.yahoo_token_url,
                    client_id=config.yahoo_client_id,
                    client_secret=config.yahoo_client_secret,
                    scope="mail-w",
                ),
            ]
        )

    def names(self) -> list[str]:
        return sorted(self._providers)

    def normalize(self, name: str) -> str:
        """Map an alias such as ``gmail`` or ``outlook`` to a registry name."""

        cleaned = name.strip().lower()
        return PROVIDER_ALIASES.get(cleaned, cleaned)

    def get(self, name: str) -> ProviderSettings:
        """Summary: Look up provider settings by name or alias.

        Importance: Rejects providers the application cannot refresh tokens for.
        Alternatives: Return None and let callers decide.
        """

        provider = self._providers.get(self.normalize(name))
        if provider is None:
            raise UnknownProvider(f"Unsupported provider: {name}", provider=name)
        return provider

    def for_host(self, host: str) -> ProviderSettings | None:
        """Return the provider owning an IMAP host, if any."""

        for provider in self._providers.values():
            if provider.owns_host(host):
                return provider
        return None

    def build_auth_url(self, name: str, redirect_uri: str, state: str) -> str:
        """Summary: Build a provider authorization URL.

        Importance: Starts the consent flow that yields the first token record.
        Alternatives: Use provider SDK helpers.
        """

        provider = self.get(name)
        params = {
            "client_id": provider.client_id,
            "redirect_uri": redirect_uri,
            "response_type": "code",
            "scope": provider.scope,
            "state": state,
            "access_type": "offline",
            "prompt": "consent",
        }
        return provider.auth_url + "?" + urllib.parse.urlencode(params)
