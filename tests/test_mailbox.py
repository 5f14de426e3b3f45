"""Summary: Tests for sent-folder discovery.

Importance: Ensures each provider layout resolves to the right folder.
Alternatives: Validate against live accounts only.
"""

from __future__ import annotations

from deskmate.mailbox import (
    GMAIL_SENT,
    locate_sent_mailbox,
    match_sent_mailbox,
    sent_mailbox_candidates,
)
from deskmate.models import MailboxDescriptor


def test_special_use_flag_wins() -> None:
    listing = [
        MailboxDescriptor("INBOX"),
        MailboxDescriptor("Sent"),
        MailboxDescriptor("Archive/Outgoing", special_use="\\Sent", delimiter="/"),
    ]
    match = match_sent_mailbox(listing, "mail.example.com")
    assert match.path == "Archive/Outgoing"
    assert match.rule == 1


def test_name_patterns_follow_priority_order() -> None:
    listing = [MailboxDescriptor("Sent Items"), MailboxDescriptor("Sent Messages")]
    assert locate_sent_mailbox(listing, "outlook.office365.com") == "Sent Items"


def test_name_match_is_case_insensitive() -> None:
    assert locate_sent_mailbox([MailboxDescriptor("sent mail")], None) == "sent mail"


def test_dovecot_style_inbox_sent() -> None:
    listing = [MailboxDescriptor("INBOX", delimiter="."), MailboxDescriptor("INBOX.Sent", delimiter=".")]
    match = match_sent_mailbox(listing, "mail.example.com")
    assert match.path == "INBOX.Sent"
    assert match.rule == 2


def test_localized_folder_names() -> None:
    """Summary: Verify French, Spanish, and German sent folders are found.

    Importance: Non-English accounts rarely advertise special-use flags.
    Alternatives: Only support English folder names.
    """

    assert locate_sent_mailbox([MailboxDescriptor("Éléments envoyés")], None) == "Éléments envoyés"
    assert locate_sent_mailbox([MailboxDescriptor("Enviados")], None) == "Enviados"
    assert (
        locate_sent_mailbox([MailboxDescriptor("INBOX/Gesendete Objekte", delimiter="/")], None)
        == "INBOX/Gesendete Objekte"
    )


def test_gmail_host_without_listing() -> None:
    match = match_sent_mailbox([], "imap.gmail.com")
    assert match.path == GMAIL_SENT
    assert match.rule == 3


def test_empty_listing_on_generic_host_falls_back_to_sent() -> None:
    match = match_sent_mailbox(None, "mail.example.com")
    assert match.path == "SENT"
    assert match.rule == 4


def test_candidates_are_ordered_and_deduplicated() -> None:
    listing = [
        MailboxDescriptor("[Gmail]/Sent Mail", special_use="\\Sent", delimiter="/"),
        MailboxDescriptor("Sent"),
    ]
    candidates = sent_mailbox_candidates(listing, "imap.gmail.com")
    paths = [candidate.path for candidate in candidates]
    assert paths == ["[Gmail]/Sent Mail", "Sent", "SENT", "Sent Items"]
    assert [candidate.rule for candidate in candidates] == [1, 2, 4, 4]
