"""Summary: Domain model dataclasses for Deskmate.

Importance: Defines the token, configuration, and credential shapes shared across services.
Alternatives: Use Pydantic models or ORM classes directly.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any


GOOGLE = "google"
MICROSOFT = "microsoft"
YAHOO = "yahoo"
PROVIDERS = (GOOGLE, MICROSOFT, YAHOO)

DEFAULT_IMAP_PORT = 993


@dataclass(frozen=True)
class User:
    """Summary: Represents a user profile.

    Importance: Supplies the profile email used during credential resolution.
    Alternatives: Read profile data from an external identity provider only.
    """

    id: str
    display_name: str
    email: str | None = None


@dataclass(frozen=True)
class TokenRecord:
    """Summary: OAuth token stored per (user, provider).

    Importance: Durable source of access and refresh tokens for delegated access.
    Alternatives: Keep tokens only in the user's session.
    """

    user_id: str
    provider: str
    access_token: str
    refresh_token: str | None
    expires_at: datetime
    updated_at: datetime | None = None

    def is_expired(self, now: datetime, skew_seconds: int = 0) -> bool:
        """Return True when the token expires within ``skew_seconds`` of ``now``."""

        return (self.expires_at - now).total_seconds() <= skew_seconds


@dataclass(frozen=True)
class EmailConfiguration:
    """Summary: Mail server settings for a user.

    Importance: Determines the IMAP endpoint and whether OAuth or password auth applies.
    Alternatives: Require clients to send host settings on every request.
    """

    user_id: str
    host: str
    port: int = DEFAULT_IMAP_PORT
    secure: bool = True
    provider: str | None = None
    updated_at: datetime | None = None


@dataclass(frozen=True)
class CredentialFragment:
    """Summary: Partial credential supplied explicitly by a caller.

    Importance: Allows manual overrides such as a password or a different host.
    Alternatives: Resolve credentials only from stored state.
    """

    host: str | None = None
    port: int | None = None
    secure: bool | None = None
    provider: str | None = None
    user: str | None = None
    password: str | None = None

    def has_host(self) -> bool:
        return bool(self.host)


@dataclass(frozen=True)
class OAuthCredential:
    """OAuth2 bearer details handed to the mail transport."""

    access_token: str
    refresh_token: str | None
    expires: datetime
    client_id: str
    client_secret: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "accessToken": self.access_token,
            "refreshToken": self.refresh_token,
            "expires": int(self.expires.timestamp() * 1000),
            "clientId": self.client_id,
            "clientSecret": self.client_secret,
        }


@dataclass(frozen=True)
class ResolvedCredential:
    """Summary: Ready-to-use mail credential, password or OAuth.

    Importance: The single output of resolution that every transport call consumes.
    Alternatives: Pass loosely-typed dictionaries between routes and transports.
    """

    host: str
    port: int
    secure: bool
    user: str
    provider: str | None = None
    password: str | None = field(default=None, repr=False)
    oauth2: OAuthCredential | None = field(default=None, repr=False)

    def __post_init__(self) -> None:
        if (self.password is None) == (self.oauth2 is None):
            raise ValueError("Exactly one of password or oauth2 must be set")

    @property
    def uses_oauth(self) -> bool:
        return self.oauth2 is not None

    def to_transport_dict(self) -> dict[str, Any]:
        """Return the transport payload shape for this credential."""

        payload: dict[str, Any] = {
            "host": self.host,
            "port": self.port,
            "secure": self.secure,
            "user": self.user,
        }
        if self.oauth2 is not None:
            payload["oauth2"] = self.oauth2.to_dict()
        else:
            payload["password"] = self.password
        return payload


@dataclass(frozen=True)
class RefreshedToken:
    """Result of a refresh-token exchange."""

    access_token: str
    refresh_token: str | None
    expires_at: datetime


@dataclass(frozen=True)
class MailboxDescriptor:
    """A folder as reported by the transport's listing."""

    path: str
    special_use: str | None = None
    delimiter: str | None = None


@dataclass(frozen=True)
class EmailMessage:
    """Summary: Represents a fetched email message.

    Importance: Common message shape for sent-mail listings and API responses.
    Alternatives: Return raw RFC822 payloads to the caller.
    """

    uid: str
    message_id: str
    subject: str
    sender: str
    recipients: str
    date: datetime
    text: str
    flags: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.uid,
            "messageId": self.message_id,
            "subject": self.subject,
            "from": self.sender,
            "to": self.recipients,
            "date": self.date.isoformat(),
            "text": self.text,
            "flags": list(self.flags),
        }


@dataclass(frozen=True)
class OutgoingEmail:
    """Message payload for the send route."""

    to: str
    subject: str
    text: str
    cc: str | None = None
    in_reply_to: str | None = None
