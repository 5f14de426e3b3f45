"""Summary: FastAPI application for Deskmate.

Importance: Exposes email, OAuth, and calendar endpoints that all share one credential
resolver and one error shape.
Alternatives: Use a CLI-only workflow or a different web framework.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.responses import HTMLResponse, JSONResponse
from pydantic import BaseModel, Field

from deskmate.app import build_context
from deskmate.calendar import (
    CalendarRequestError,
    GoogleCalendarClient,
    normalize_event_patch,
    normalize_event_times,
)
from deskmate.config import AppConfig
from deskmate.email import EmailTransport, MailboxUnavailable
from deskmate.errors import CredentialError
from deskmate.mailbox import locate_sent_mailbox
from deskmate.models import GOOGLE, CredentialFragment, OutgoingEmail
from deskmate.oauth import DEFAULT_EXPIRES_IN, TokenRefresher


logger = logging.getLogger(__name__)


class CredentialRequest(BaseModel):
    """Summary: Optional explicit credential fields sent by a client.

    Importance: Lets a caller override the stored host or supply a password.
    Alternatives: Accept credentials only from stored configuration.
    """

    host: str | None = None
    port: int | None = None
    secure: bool | None = None
    provider: str | None = None
    user: str | None = None
    password: str | None = None

    def to_fragment(self) -> CredentialFragment:
        return CredentialFragment(
            host=self.host,
            port=self.port,
            secure=self.secure,
            provider=self.provider,
            user=self.user,
            password=self.password,
        )


class FetchRequest(CredentialRequest):
    mailbox: str = "INBOX"
    limit: int = Field(default=20, ge=1, le=200)


class SentRequest(CredentialRequest):
    limit: int = Field(default=20, ge=1, le=200)


class StatsRequest(CredentialRequest):
    mailbox: str = "INBOX"


class SendRequest(CredentialRequest):
    """Summary: Request payload for sending an email.

    Importance: Keeps outgoing message fields explicit for API clients.
    Alternatives: Accept a raw RFC822 payload.
    """

    to: str
    subject: str
    text: str
    cc: str | None = None
    in_reply_to: str | None = None


class MarkReadRequest(CredentialRequest):
    mailbox: str = "INBOX"
    uid: str


class MoveRequest(CredentialRequest):
    """Summary: Request payload for moving one message between folders.

    Importance: Names both folders explicitly so nothing is guessed server-side.
    Alternatives: Support only archive-style moves to a fixed folder.
    """

    source_mailbox: str = "INBOX"
    target_mailbox: str
    uid: str


class EmailSetupRequest(BaseModel):
    """Summary: Request payload for manual email setup.

    Importance: Records the mailbox address and provider for later resolution.
    Alternatives: Only support OAuth-based setup.
    """

    email: str
    provider: str | None = None


class TokenStoreRequest(BaseModel):
    """Summary: Request payload for storing OAuth tokens.

    Importance: Enables importing tokens obtained outside the consent flow.
    Alternatives: Store tokens in an external vault.
    """

    provider_name: str
    access_token: str
    refresh_token: str | None = None
    expires_at: datetime | None = None


class CalendarEventRequest(BaseModel):
    """Summary: Request payload for calendar event creation.

    Importance: Accepts a bare start time and fills in the rest.
    Alternatives: Require full Google Calendar event resources.
    """

    summary: str
    description: str | None = None
    location: str | None = None
    start: Any = None
    end: Any = None
    time_zone: str = "UTC"
    attendees: list[str] = Field(default_factory=list)

    def to_event(self) -> dict[str, Any]:
        event: dict[str, Any] = {"summary": self.summary}
        if self.description:
            event["description"] = self.description
        if self.location:
            event["location"] = self.location
        if self.start is not None:
            event["start"] = self.start
        if self.end is not None:
            event["end"] = self.end
        if self.attendees:
            event["attendees"] = [{"email": address} for address in self.attendees]
        return normalize_event_times(event, self.time_zone)


class CalendarEventUpdateRequest(BaseModel):
    """Partial event update; only the fields that are set are sent."""

    summary: str | None = None
    description: str | None = None
    location: str | None = None
    start: Any = None
    end: Any = None
    time_zone: str = "UTC"
    attendees: list[str] | None = None

    def to_patch(self) -> dict[str, Any]:
        patch: dict[str, Any] = {
            name: value
            for name, value in (
                ("summary", self.summary),
                ("description", self.description),
                ("location", self.location),
                ("start", self.start),
                ("end", self.end),
            )
            if value is not None
        }
        if self.attendees is not None:
            patch["attendees"] = [{"email": address} for address in self.attendees]
        return normalize_event_patch(patch, self.time_zone)


@dataclass(frozen=True)
class RequestIdentity:
    """Caller identity taken from upstream authentication headers."""

    user_id: str
    email: str | None = None


def create_app(
    config: AppConfig,
    transport: EmailTransport | None = None,
    refresher: TokenRefresher | None = None,
    calendar: GoogleCalendarClient | None = None,
) -> FastAPI:
    """Summary: Create a FastAPI app wired to Deskmate services.

    Importance: Ensures the API layer shares the same configuration and storage.
    Alternatives: Instantiate services globally outside the factory.
    """

    if not logging.getLogger().handlers:
        logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    app = FastAPI(title="Deskmate API", version="0.1.0")
    context = build_context(config, transport=transport, refresher=refresher, calendar=calendar)

    @app.exception_handler(CredentialError)
    async def credential_error_handler(request: Request, exc: CredentialError) -> JSONResponse:
        """Summary: Translate credential failures into one JSON shape.

        Importance: Clients decide between retry and reconnect from `code` and
        `reconnect` instead of parsing messages.
        Alternatives: Raise HTTPException in every route.
        """

        logger.warning("%s on %s: %s", exc.code, request.url.path, exc.message)
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "error": exc.message,
                "code": exc.code,
                "action": exc.action,
                "reconnect": exc.reconnect,
            },
        )

    def require_api_key(x_api_key: str | None = Header(default=None)) -> None:
        """Summary: Enforce API key authentication when configured.

        Importance: Adds a minimal security layer for local and private deployments.
        Alternatives: Use OAuth or session-based authentication.
        """

        if not config.api_key:
            return
        if x_api_key != config.api_key:
            raise HTTPException(status_code=401, detail="Invalid API key")

    def current_identity(
        x_user_id: str | None = Header(default=None),
        x_user_email: str | None = Header(default=None),
    ) -> RequestIdentity:
        """Summary: Read the caller identity set by the upstream auth layer.

        Importance: Every route is scoped to exactly one user.
        Alternatives: Verify identity-provider JWTs in this service.
        """

        if not x_user_id:
            raise HTTPException(status_code=401, detail="Missing user identity")
        return RequestIdentity(user_id=x_user_id, email=x_user_email or None)

    def _resolve(identity: RequestIdentity, payload: CredentialRequest | None = None):
        fragment = payload.to_fragment() if payload is not None else None
        return context.resolver.resolve(identity.user_id, fragment, identity.email)

    @app.get("/health")
    def health() -> dict[str, str]:
        """Summary: Health check endpoint.

        Importance: Supports uptime checks in local and cloud deployments.
        Alternatives: Use a metrics endpoint only.
        """

        return {"status": "ok"}

    @app.post("/email/setup", dependencies=[Depends(require_api_key)])
    def email_setup(
        payload: EmailSetupRequest, identity: RequestIdentity = Depends(current_identity)
    ) -> dict[str, Any]:
        """Summary: Configure a mailbox by provider name.

        Importance: Creates the configuration the resolver reads host settings from.
        Alternatives: Require explicit host settings on every call.
        """

        services = context.services_for_user(identity.user_id)
        stored = services.email_setup.manual_setup(payload.email, payload.provider)
        return {
            "success": True,
            "config": {
                "host": stored.host,
                "port": stored.port,
                "secure": stored.secure,
                "provider": stored.provider,
            },
        }

    @app.get("/email/config", dependencies=[Depends(require_api_key)])
    def email_config(identity: RequestIdentity = Depends(current_identity)) -> dict[str, Any]:
        return context.services_for_user(identity.user_id).email_setup.describe()

    @app.get("/email/oauth2/authorize", dependencies=[Depends(require_api_key)])
    def oauth_authorize(
        provider: str = GOOGLE, identity: RequestIdentity = Depends(current_identity)
    ) -> dict[str, str]:
        """Summary: Return the provider authorization URL.

        Importance: Starts the consent flow that creates the first token record.
        Alternatives: Use CLI-only OAuth helpers.
        """

        return {"url": context.oauth.start(identity.user_id, provider)}

    @app.get("/email/oauth2/callback", response_class=HTMLResponse)
    def oauth_callback(code: str, state: str, provider: str = GOOGLE) -> str:
        """Summary: Handle the OAuth callback and store tokens.

        Importance: Completes the consent flow; state validation protects against CSRF.
        Alternatives: Store the authorization code and exchange it later.
        """

        try:
            context.oauth.complete(provider, code, state)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return "<h1>Deskmate email connected</h1><p>You can close this window.</p>"

    @app.post("/tokens", dependencies=[Depends(require_api_key)])
    def store_tokens(
        payload: TokenStoreRequest, identity: RequestIdentity = Depends(current_identity)
    ) -> dict[str, Any]:
        """Summary: Store OAuth tokens for a provider.

        Importance: Prepares mail access with tokens obtained elsewhere.
        Alternatives: Require interactive OAuth for each run.
        """

        expires_at = payload.expires_at or datetime.now(timezone.utc) + timedelta(
            seconds=DEFAULT_EXPIRES_IN
        )
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        tokens = context.services_for_user(identity.user_id).tokens
        tokens.store_tokens(
            payload.provider_name, payload.access_token, payload.refresh_token, expires_at
        )
        return tokens.status(payload.provider_name)

    @app.post("/email/fetch", dependencies=[Depends(require_api_key)])
    def fetch_emails(
        payload: FetchRequest, identity: RequestIdentity = Depends(current_identity)
    ) -> dict[str, Any]:
        credential = _resolve(identity, payload)
        try:
            messages = context.transport.fetch_emails(credential, payload.mailbox, payload.limit)
        except MailboxUnavailable as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        return {"mailbox": payload.mailbox, "emails": [message.to_dict() for message in messages]}

    @app.post("/email/mailboxes", dependencies=[Depends(require_api_key)])
    def list_mailboxes(
        payload: CredentialRequest, identity: RequestIdentity = Depends(current_identity)
    ) -> dict[str, Any]:
        """Summary: List folders and the detected sent folder.

        Importance: Lets clients show a folder picker with the sent folder preselected.
        Alternatives: Return only folder names.
        """

        credential = _resolve(identity, payload)
        try:
            listing = context.transport.list_mailboxes(credential)
        except MailboxUnavailable as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        return {
            "mailboxes": [
                {"path": item.path, "specialUse": item.special_use, "delimiter": item.delimiter}
                for item in listing
            ],
            "sent": locate_sent_mailbox(listing, credential.host),
        }

    @app.post("/email/sent", dependencies=[Depends(require_api_key)])
    def sent_emails(
        payload: SentRequest, identity: RequestIdentity = Depends(current_identity)
    ) -> dict[str, Any]:
        """Summary: Return recent sent messages.

        Importance: Provides writing-style samples regardless of provider folder naming.
        Alternatives: Require clients to name the sent folder.
        """

        credential = _resolve(identity, payload)
        return context.sent_mail.fetch_sent(credential, payload.limit).to_dict()

    @app.post("/email/send", dependencies=[Depends(require_api_key)])
    def send_email(
        payload: SendRequest, identity: RequestIdentity = Depends(current_identity)
    ) -> dict[str, Any]:
        credential = _resolve(identity, payload)
        message_id = context.transport.send_email(
            credential,
            OutgoingEmail(
                to=payload.to,
                subject=payload.subject,
                text=payload.text,
                cc=payload.cc,
                in_reply_to=payload.in_reply_to,
            ),
        )
        return {"success": True, "messageId": message_id}

    @app.post("/email/stats", dependencies=[Depends(require_api_key)])
    def mailbox_stats(
        payload: StatsRequest, identity: RequestIdentity = Depends(current_identity)
    ) -> dict[str, Any]:
        credential = _resolve(identity, payload)
        try:
            stats = context.transport.mailbox_stats(credential, payload.mailbox)
        except MailboxUnavailable as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        return {"mailbox": payload.mailbox, **stats}

    @app.post("/email/mark-read", dependencies=[Depends(require_api_key)])
    def mark_read(
        payload: MarkReadRequest, identity: RequestIdentity = Depends(current_identity)
    ) -> dict[str, bool]:
        credential = _resolve(identity, payload)
        try:
            context.transport.mark_read(credential, payload.mailbox, payload.uid)
        except MailboxUnavailable as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        return {"success": True}

    @app.post("/email/move", dependencies=[Depends(require_api_key)])
    def move_message(
        payload: MoveRequest, identity: RequestIdentity = Depends(current_identity)
    ) -> dict[str, bool]:
        """Summary: Move one message from a source folder to a target folder.

        Importance: Shares credential resolution with every other mail route.
        Alternatives: Let clients talk IMAP directly for folder management.
        """

        credential = _resolve(identity, payload)
        try:
            context.transport.move_message(
                credential, payload.source_mailbox, payload.uid, payload.target_mailbox
            )
        except MailboxUnavailable as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        return {"success": True}

    @app.get("/email/test-oauth", dependencies=[Depends(require_api_key)])
    def test_oauth(identity: RequestIdentity = Depends(current_identity)) -> dict[str, Any]:
        """Summary: Verify stored OAuth credentials against the mail server.

        Importance: Surfaces expired or revoked grants before the user needs them.
        Alternatives: Wait for the next fetch to fail.
        """

        credential = _resolve(identity)
        context.transport.check_connection(credential)
        return {
            "success": True,
            "user": credential.user,
            "host": credential.host,
            "useOAuth": credential.uses_oauth,
        }

    @app.post("/calendar/events", dependencies=[Depends(require_api_key)])
    def create_calendar_event(
        payload: CalendarEventRequest, identity: RequestIdentity = Depends(current_identity)
    ) -> dict[str, Any]:
        access_token = context.resolver.resolve_access_token(identity.user_id, GOOGLE)
        try:
            created = context.calendar.create_event(access_token, payload.to_event())
        except CalendarRequestError as exc:
            raise HTTPException(status_code=exc.status, detail=exc.detail) from exc
        return {"success": True, "event": created}

    @app.get("/calendar/events", dependencies=[Depends(require_api_key)])
    def list_calendar_events(
        max_results: int = 10, identity: RequestIdentity = Depends(current_identity)
    ) -> dict[str, Any]:
        access_token = context.resolver.resolve_access_token(identity.user_id, GOOGLE)
        try:
            events = context.calendar.list_upcoming(access_token, max_results=max_results)
        except CalendarRequestError as exc:
            raise HTTPException(status_code=exc.status, detail=exc.detail) from exc
        return {"events": events}

    @app.put("/calendar/events/{event_id}", dependencies=[Depends(require_api_key)])
    def update_calendar_event(
        event_id: str,
        payload: CalendarEventUpdateRequest,
        identity: RequestIdentity = Depends(current_identity),
    ) -> dict[str, Any]:
        access_token = context.resolver.resolve_access_token(identity.user_id, GOOGLE)
        try:
            updated = context.calendar.update_event(access_token, event_id, payload.to_patch())
        except CalendarRequestError as exc:
            raise HTTPException(status_code=exc.status, detail=exc.detail) from exc
        return {"success": True, "event": updated}

    @app.delete("/calendar/events/{event_id}", dependencies=[Depends(require_api_key)])
    def delete_calendar_event(
        event_id: str, identity: RequestIdentity = Depends(current_identity)
    ) -> dict[str, bool]:
        access_token = context.resolver.resolve_access_token(identity.user_id, GOOGLE)
        try:
            context.calendar.delete_event(access_token, event_id)
        except CalendarRequestError as exc:
            raise HTTPException(status_code=exc.status, detail=exc.detail) from exc
        return {"success": True}

    return app


app = create_app(AppConfig.from_env())
