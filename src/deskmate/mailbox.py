"""Summary: Sent-folder discovery across IMAP providers.

Importance: Finds a user's "Sent" mailbox on Gmail, Outlook, Yahoo, and generic servers
without ever failing the request.
Alternatives: Ask the user to pick their sent folder during setup.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable

from deskmate.models import MailboxDescriptor


logger = logging.getLogger(__name__)

GMAIL_SENT = "[Gmail]/Sent Mail"

SENT_SPECIAL_USE = "\\sent"

SENT_NAME_PATTERNS = (
    "Sent",
    "Sent Mail",
    "Sent Items",
    "Sent Messages",
    GMAIL_SENT,
    "[Google Mail]/Sent Mail",
    "INBOX.Sent",
    # French
    "Envoyés",
    "Éléments envoyés",
    "Messages envoyés",
    # Spanish
    "Enviados",
    "Elementos enviados",
    # German
    "Gesendet",
    "Gesendete Elemente",
    "Gesendete Objekte",
)

BARE_GUESSES = ("SENT", "Sent", "Sent Items")

GMAIL_HOST_MARKERS = ("gmail", "googlemail")


@dataclass(frozen=True)
class SentMailboxMatch:
    """A located sent folder and the rule that produced it."""

    path: str
    rule: int


def is_gmail_host(host: str | None) -> bool:
    if not host:
        return False
    lowered = host.lower()
    return any(marker in lowered for marker in GMAIL_HOST_MARKERS)


def sent_mailbox_candidates(
    listing: Iterable[MailboxDescriptor] | None, host: str | None
) -> list[SentMailboxMatch]:
    """Summary: Return every sent-folder candidate in priority order.

    Importance: The sent-mail fetch walks this chain until a folder yields messages.
    Alternatives: Return only the single best guess.
    """

    mailboxes = [item for item in (listing or []) if item is not None and item.path]
    candidates: list[SentMailboxMatch] = []
    seen: set[str] = set()

    def _add(path: str, rule: int) -> None:
        if path not in seen:
            seen.add(path)
            candidates.append(SentMailboxMatch(path=path, rule=rule))

    for mailbox in mailboxes:
        if _normalize_special_use(mailbox.special_use) == SENT_SPECIAL_USE:
            _add(mailbox.path, 1)

    for pattern in SENT_NAME_PATTERNS:
        wanted = pattern.casefold()
        for mailbox in mailboxes:
            if _matches_name(mailbox, wanted):
                _add(mailbox.path, 2)

    if is_gmail_host(host):
        _add(GMAIL_SENT, 3)

    for guess in BARE_GUESSES:
        _add(guess, 4)

    return candidates


def match_sent_mailbox(
    listing: Iterable[MailboxDescriptor] | None, host: str | None
) -> SentMailboxMatch:
    """Return the best sent-folder guess along with the rule that matched."""

    match = sent_mailbox_candidates(listing, host)[0]
    logger.debug("Sent mailbox resolved to %s by rule %s.", match.path, match.rule)
    return match


def locate_sent_mailbox(listing: Iterable[MailboxDescriptor] | None, host: str | None) -> str:
    """Summary: Pick the most likely sent folder path.

    Importance: Route handlers need one folder to open; rule 4 guarantees an answer.
    Alternatives: Raise when no folder is advertised as sent.
    """

    return match_sent_mailbox(listing, host).path


def _normalize_special_use(value: str | None) -> str:
    if not value:
        return ""
    cleaned = value.strip().casefold()
    if not cleaned.startswith("\\"):
        cleaned = "\\" + cleaned
    return cleaned


def _matches_name(mailbox: MailboxDescriptor, wanted: str) -> bool:
    path = mailbox.path.casefold()
    if path == wanted:
        return True
    delimiters = [mailbox.delimiter] if mailbox.delimiter else ["/", "."]
    for delimiter in delimiters:
        if delimiter and delimiter in path and path.rsplit(delimiter, 1)[-1] == wanted:
            return True
    return False
