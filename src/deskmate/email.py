"""Summary: Mail transport interfaces and the IMAP/SMTP implementation.

Importance: Encapsulates listing, fetching, and sending with a resolved credential, and
isolates provider error strings behind typed errors.
Alternatives: Rely solely on provider SDKs with vendor lock-in.
"""

from __future__ import annotations

import base64
import imaplib
import logging
import re
import smtplib
import socket
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from email import message_from_bytes
from email.header import decode_header
from email.message import EmailMessage as MimeMessage
from email.utils import make_msgid, parsedate_to_datetime

from deskmate.errors import CredentialError, CredentialExpired, ProviderUnreachable
from deskmate.models import EmailMessage, MailboxDescriptor, OutgoingEmail, ResolvedCredential
from deskmate.providers import ProviderRegistry


logger = logging.getLogger(__name__)

AUTH_FAILURE_MARKERS = (
    "invalid_grant",
    "invalid credentials",
    "authenticationfailed",
    "authentication failed",
    "authenticate failed",
)

SPECIAL_USE_FLAGS = ("\\sent", "\\drafts", "\\trash", "\\junk", "\\all", "\\archive", "\\flagged")

_LIST_PATTERN = re.compile(r'\((?P<flags>[^)]*)\)\s+(?P<delimiter>"(?:[^"\\]|\\.)*"|NIL)\s+(?P<name>.+)')


class MailboxUnavailable(Exception):
    """Raised when a mailbox cannot be opened or searched."""


class EmailTransport(ABC):
    """Summary: Abstract interface for mail access with a resolved credential.

    Importance: Lets routes and the sent-mail fallback work against IMAP or test doubles.
    Alternatives: Call imaplib directly from route handlers.
    """

    @abstractmethod
    def list_mailboxes(self, credential: ResolvedCredential) -> list[MailboxDescriptor]:
        """Summary: List folders on the account.

        Importance: Feeds the sent-folder locator and the mailbox picker.
        Alternatives: Hardcode common folder names.
        """

    @abstractmethod
    def fetch_emails(
        self, credential: ResolvedCredential, mailbox: str, limit: int, reverse: bool = True
    ) -> list[EmailMessage]:
        """Summary: Fetch the most recent messages of a mailbox.

        Importance: Drives inbox and sent listings.
        Alternatives: Fetch by UID ranges or search queries.
        """

    @abstractmethod
    def send_email(self, credential: ResolvedCredential, message: OutgoingEmail) -> str:
        """Send a message and return its Message-ID."""

    @abstractmethod
    def mailbox_stats(self, credential: ResolvedCredential, mailbox: str) -> dict[str, int]:
        """Return ``{"total": ..., "unseen": ...}`` for a mailbox."""

    @abstractmethod
    def mark_read(self, credential: ResolvedCredential, mailbox: str, uid: str) -> None:
        """Add the ``\\Seen`` flag to one message."""

    @abstractmethod
    def move_message(
        self, credential: ResolvedCredential, mailbox: str, uid: str, destination: str
    ) -> None:
        """Summary: Move one message to another folder.

        Importance: Lets clients archive or file mail without a second client library.
        Alternatives: Copy the message and leave the original in place.
        """

    def check_connection(self, credential: ResolvedCredential) -> None:
        """Authenticate and disconnect; raises on failure."""

        self.mailbox_stats(credential, "INBOX")


def translate_transport_error(exc: BaseException, provider: str | None = None) -> Exception:
    """Summary: Map a transport exception to the application's error types.

    Importance: The only place provider error strings are inspected; core logic sees
    typed errors.
    Alternatives: Match error strings in each route handler.
    """

    if isinstance(exc, (CredentialError, MailboxUnavailable)):
        return exc
    message = str(exc)
    lowered = message.lower()
    if any(marker in lowered for marker in AUTH_FAILURE_MARKERS) or isinstance(
        exc, smtplib.SMTPAuthenticationError
    ):
        return CredentialExpired(f"Mail server rejected the credential: {message}", provider=provider)
    if isinstance(exc, (socket.timeout, TimeoutError)):
        return ProviderUnreachable("Mail server timed out", provider=provider, timed_out=True)
    if isinstance(exc, (OSError, imaplib.IMAP4.abort, smtplib.SMTPException)):
        return ProviderUnreachable(f"Mail server unavailable: {message}", provider=provider)
    if isinstance(exc, (imaplib.IMAP4.error, ValueError)):
        return MailboxUnavailable(message)
    return ProviderUnreachable(f"Mail transport failed: {message}", provider=provider)


class ImapEmailTransport(EmailTransport):
    """Summary: Reads mail over IMAP and sends over SMTP.

    Importance: Provides real-world integration for Gmail, Outlook, and Yahoo accounts
    with XOAUTH2 or password authentication.
    Alternatives: Use Gmail or Microsoft Graph APIs instead of IMAP.
    """

    def __init__(self, registry: ProviderRegistry, timeout: float = 30.0) -> None:
        self._registry = registry
        self._timeout = timeout

    def list_mailboxes(self, credential: ResolvedCredential) -> list[MailboxDescriptor]:
        def _list(client: imaplib.IMAP4) -> list[MailboxDescriptor]:
            status, data = client.list()
            if status != "OK":
                raise MailboxUnavailable("IMAP LIST failed")
            return parse_list_response(data)

        return self._with_client(credential, _list)

    def fetch_emails(
        self, credential: ResolvedCredential, mailbox: str, limit: int, reverse: bool = True
    ) -> list[EmailMessage]:
        def _fetch(client: imaplib.IMAP4) -> list[EmailMessage]:
            status, _ = client.select(quote_mailbox(mailbox), readonly=True)
            if status != "OK":
                raise MailboxUnavailable(f"Cannot open mailbox {mailbox}")
            status, data = client.uid("SEARCH", None, "ALL")
            if status != "OK":
                raise MailboxUnavailable(f"IMAP search failed for {mailbox}")
            message_ids = data[0].split() if data and data[0] else []
            recent_ids = message_ids[-limit:] if limit > 0 else []
            if reverse:
                recent_ids = list(reversed(recent_ids))
            messages = [self._fetch_message(client, message_id) for message_id in recent_ids]
            return [message for message in messages if message is not None]

        return self._with_client(credential, _fetch)

    def mailbox_stats(self, credential: ResolvedCredential, mailbox: str) -> dict[str, int]:
        def _stats(client: imaplib.IMAP4) -> dict[str, int]:
            status, data = client.status(quote_mailbox(mailbox), "(MESSAGES UNSEEN)")
            if status != "OK" or not data or not data[0]:
                raise MailboxUnavailable(f"Cannot read status of {mailbox}")
            raw = data[0].decode("utf-8", errors="ignore") if isinstance(data[0], bytes) else str(data[0])
            total = re.search(r"MESSAGES (\d+)", raw)
            unseen = re.search(r"UNSEEN (\d+)", raw)
            return {
                "total": int(total.group(1)) if total else 0,
                "unseen": int(unseen.group(1)) if unseen else 0,
            }

        return self._with_client(credential, _stats)

    def mark_read(self, credential: ResolvedCredential, mailbox: str, uid: str) -> None:
        def _mark(client: imaplib.IMAP4) -> None:
            self._select_writable(client, mailbox)
            status, _ = client.uid("STORE", uid, "+FLAGS", "(\\Seen)")
            if status != "OK":
                raise MailboxUnavailable(f"Cannot flag message {uid} in {mailbox}")

        self._with_client(credential, _mark)
        logger.info("Marked message %s in %s as read.", uid, mailbox)

    def move_message(
        self, credential: ResolvedCredential, mailbox: str, uid: str, destination: str
    ) -> None:
        def _move(client: imaplib.IMAP4) -> None:
            self._select_writable(client, mailbox)
            target = quote_mailbox(destination)
            if "MOVE" in client.capabilities:
                status, _ = client.uid("MOVE", uid, target)
                if status != "OK":
                    raise MailboxUnavailable(f"Cannot move message {uid} to {destination}")
                return
            status, _ = client.uid("COPY", uid, target)
            if status != "OK":
                raise MailboxUnavailable(f"Cannot copy message {uid} to {destination}")
            client.uid("STORE", uid, "+FLAGS", "(\\Deleted)")
            client.expunge()

        self._with_client(credential, _move)
        logger.info("Moved message %s from %s to %s.", uid, mailbox, destination)

    def _select_writable(self, client: imaplib.IMAP4, mailbox: str) -> None:
        status, _ = client.select(quote_mailbox(mailbox))
        if status != "OK":
            raise MailboxUnavailable(f"Cannot open mailbox {mailbox}")

    def send_email(self, credential: ResolvedCredential, message: OutgoingEmail) -> str:
        mime = MimeMessage()
        mime["From"] = credential.user
        mime["To"] = message.to
        if message.cc:
            mime["Cc"] = message.cc
        mime["Subject"] = message.subject
        if message.in_reply_to:
            mime["In-Reply-To"] = message.in_reply_to
            mime["References"] = message.in_reply_to
        message_id = make_msgid()
        mime["Message-ID"] = message_id
        mime.set_content(message.text)

        host, port = self._smtp_endpoint(credential)
        try:
            if port == 465:
                server: smtplib.SMTP = smtplib.SMTP_SSL(host, port, timeout=self._timeout)
            else:
                server = smtplib.SMTP(host, port, timeout=self._timeout)
            with server:
                if port != 465:
                    server.starttls()
                server.ehlo()
                if credential.oauth2 is not None:
                    auth_string = xoauth2_string(credential.user, credential.oauth2.access_token)
                    code, response = server.docmd(
                        "AUTH", "XOAUTH2 " + base64.b64encode(auth_string).decode("ascii")
                    )
                    if code != 235:
                        raise smtplib.SMTPAuthenticationError(code, response)
                else:
                    server.login(credential.user, credential.password or "")
                server.send_message(mime)
        except Exception as exc:
            raise translate_transport_error(exc, credential.provider) from exc
        logger.info("Sent email %s via %s.", message_id, host)
        return message_id

    def _smtp_endpoint(self, credential: ResolvedCredential) -> tuple[str, int]:
        provider = self._registry.for_host(credential.host)
        if provider is not None:
            return provider.smtp_host, provider.smtp_port
        return re.sub(r"^imap", "smtp", credential.host), 465

    def _with_client(self, credential: ResolvedCredential, action):
        try:
            with self._open(credential) as client:
                self._authenticate(client, credential)
                return action(client)
        except Exception as exc:
            raise translate_transport_error(exc, credential.provider) from exc

    def _open(self, credential: ResolvedCredential) -> imaplib.IMAP4:
        if credential.secure:
            return imaplib.IMAP4_SSL(credential.host, credential.port, timeout=self._timeout)
        return imaplib.IMAP4(credential.host, credential.port, timeout=self._timeout)

    def _authenticate(self, client: imaplib.IMAP4, credential: ResolvedCredential) -> None:
        if credential.oauth2 is not None:
            auth_string = xoauth2_string(credential.user, credential.oauth2.access_token)
            client.authenticate("XOAUTH2", lambda _: auth_string)
        else:
            client.login(credential.user, credential.password or "")

    def _fetch_message(self, client: imaplib.IMAP4, message_id: bytes) -> EmailMessage | None:
        """Summary: Fetch and parse a single message.

        Importance: Extracts metadata and body for listings.
        Alternatives: Fetch only envelopes for faster listings.
        """

        status, data = client.uid("FETCH", message_id, "(RFC822 FLAGS)")
        if status != "OK" or not data or not isinstance(data[0], tuple):
            return None
        raw_email = data[0][1]
        flags = tuple(re.findall(rb"\\\w+", data[0][0] or b""))
        return parse_message(
            raw_email,
            uid=message_id.decode("utf-8"),
            flags=tuple(flag.decode("utf-8") for flag in flags),
        )


def xoauth2_string(user: str, access_token: str) -> bytes:
    return f"user={user}\x01auth=Bearer {access_token}\x01\x01".encode("utf-8")


def quote_mailbox(name: str) -> str:
    """Quote a mailbox name for an IMAP command, encoding non-ASCII characters."""

    escaped = encode_mailbox_name(name).replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def encode_mailbox_name(name: str) -> str:
    """Encode a mailbox name as IMAP modified UTF-7, the inverse of ``decode_mailbox_name``."""

    encoded: list[str] = []
    pending: list[str] = []

    def _flush() -> None:
        if pending:
            raw = base64.b64encode("".join(pending).encode("utf-16-be")).decode("ascii")
            encoded.append("&" + raw.rstrip("=").replace("/", ",") + "-")
            pending.clear()

    for char in name:
        if 0x20 <= ord(char) <= 0x7E:
            _flush()
            encoded.append("&-" if char == "&" else char)
        else:
            pending.append(char)
    _flush()
    return "".join(encoded)


def parse_list_response(lines: list[bytes | None]) -> list[MailboxDescriptor]:
    """Summary: Parse IMAP LIST lines into mailbox descriptors.

    Importance: Preserves special-use flags such as ``\\Sent`` for the locator.
    Alternatives: Keep only folder names and discard flags.
    """

    mailboxes: list[MailboxDescriptor] = []
    for raw in lines:
        if raw is None:
            continue
        line = raw.decode("utf-8", errors="ignore") if isinstance(raw, bytes) else str(raw)
        match = _LIST_PATTERN.match(line.strip())
        if not match:
            continue
        flags = match.group("flags").split()
        if any(flag.lower() == "\\noselect" for flag in flags):
            continue
        delimiter_raw = match.group("delimiter")
        delimiter = None if delimiter_raw == "NIL" else delimiter_raw[1:-1].replace("\\\\", "\\")
        name = match.group("name").strip()
        if name.startswith('"') and name.endswith('"'):
            name = name[1:-1].replace('\\"', '"').replace("\\\\", "\\")
        special_use = next(
            (flag for flag in flags if flag.lower() in SPECIAL_USE_FLAGS), None
        )
        mailboxes.append(
            MailboxDescriptor(
                path=decode_mailbox_name(name), special_use=special_use, delimiter=delimiter
            )
        )
    return mailboxes


def decode_mailbox_name(name: str) -> str:
    """Decode an IMAP modified UTF-7 mailbox name (RFC 3501, section 5.1.3)."""

    def _decode(match: re.Match[str]) -> str:
        chunk = match.group(1)
        if not chunk:
            return "&"
        padded = chunk.replace(",", "/") + "=" * (-len(chunk) % 4)
        return base64.b64decode(padded).decode("utf-16-be", errors="ignore")

    return re.sub(r"&([A-Za-z0-9+,]*)-", _decode, name)


def parse_message(raw_email: bytes, uid: str, flags: tuple[str, ...] = ()) -> EmailMessage:
    """Parse an RFC822 payload into an EmailMessage."""

    message = message_from_bytes(raw_email)
    return EmailMessage(
        uid=uid,
        message_id=message.get("Message-Id", uid),
        subject=_decode_header_value(message.get("Subject", "")),
        sender=_decode_header_value(message.get("From", "")),
        recipients=_decode_header_value(message.get("To", "")),
        date=_parse_date(message.get("Date", "")),
        text=_extract_body(message),
        flags=flags,
    )


def _decode_header_value(value: str) -> str:
    """Summary: Decode encoded email header values.

    Importance: Ensures metadata is readable in listings.
    Alternatives: Store raw header values and decode at display time.
    """

    decoded_parts = decode_header(value)
    fragments: list[str] = []
    for part, encoding in decoded_parts:
        if isinstance(part, bytes):
            fragments.append(part.decode(encoding or "utf-8", errors="ignore"))
        else:
            fragments.append(part)
    return "".join(fragments).strip()


def _extract_body(message: object) -> str:
    """Summary: Extract a plaintext body from an email message.

    Importance: Provides readable content for previews and replies.
    Alternatives: Store only HTML or raw MIME without parsing.
    """

    if message.is_multipart():
        parts = []
        for part in message.walk():
            if part.get_content_type() == "text/plain":
                payload = part.get_payload(decode=True) or b""
                parts.append(payload.decode(part.get_content_charset() or "utf-8", errors="ignore"))
        return "\n".join(parts).strip()
    payload = message.get_payload(decode=True) or b""
    return payload.decode(message.get_content_charset() or "utf-8", errors="ignore").strip()


def _parse_date(raw_date: str) -> datetime:
    """Summary: Parse an email date into an aware datetime.

    Importance: Normalizes timestamps for sorting sent listings.
    Alternatives: Store raw strings and parse on demand.
    """

    try:
        parsed = parsedate_to_datetime(raw_date)
    except (TypeError, ValueError, IndexError):
        return datetime.now(timezone.utc)
    if parsed is None:
        return datetime.now(timezone.utc)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
