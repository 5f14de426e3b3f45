"""Summary: Tests for the Google Calendar client helpers.

Importance: Ensures event payloads are completed and API failures are typed.
Alternatives: Validate calendar calls against the live API.
"""

from __future__ import annotations

import io
import json
import urllib.error
import urllib.request
from datetime import datetime
from typing import Any

import pytest

from deskmate.calendar import (
    CalendarRequestError,
    GoogleCalendarClient,
    _translate_http_error,
    normalize_event_patch,
    normalize_event_times,
)
from deskmate.errors import CredentialExpired, ProviderUnreachable


class _FakeResponse:
    def __init__(self, payload: dict[str, Any] | None) -> None:
        self._body = json.dumps(payload).encode("utf-8") if payload is not None else b""

    def read(self) -> bytes:
        return self._body

    def __enter__(self) -> "_FakeResponse":
        return self

    def __exit__(self, *args: object) -> None:
        return None


def test_normalize_fills_end_one_hour_after_start() -> None:
    event = normalize_event_times({"summary": "Sync", "start": "2030-01-01T10:00:00+00:00"})
    start = datetime.fromisoformat(event["start"]["dateTime"])
    end = datetime.fromisoformat(event["end"]["dateTime"])
    assert (end - start).total_seconds() == 3600
    assert event["start"]["timeZone"] == "UTC"
    assert event["end"]["timeZone"] == "UTC"


def test_normalize_keeps_explicit_time_zone() -> None:
    event = normalize_event_times(
        {
            "start": {"dateTime": "2030-01-01T10:00:00", "timeZone": "Europe/Paris"},
            "end": {"dateTime": "2030-01-01T12:00:00"},
        }
    )
    assert event["start"]["timeZone"] == "Europe/Paris"
    assert event["end"]["timeZone"] == "Europe/Paris"
    assert event["end"]["dateTime"] == "2030-01-01T12:00:00"


def test_normalize_without_start_schedules_default() -> None:
    event = normalize_event_times({"summary": "Later"}, time_zone="America/New_York")
    assert event["start"]["timeZone"] == "America/New_York"
    assert "dateTime" in event["end"]


def test_normalize_all_day_start_ends_next_day() -> None:
    event = normalize_event_times({"summary": "Offsite", "start": {"date": "2030-01-31"}})
    assert event["start"] == {"date": "2030-01-31"}
    assert event["end"] == {"date": "2030-02-01"}


def test_normalize_patch_only_touches_given_times() -> None:
    patch = normalize_event_patch({"summary": "Moved", "end": "2030-01-01T12:00:00+00:00"}, "Europe/Paris")
    assert "start" not in patch
    assert patch["end"]["timeZone"] == "Europe/Paris"
    with pytest.raises(CalendarRequestError) as excinfo:
        normalize_event_patch({"start": "tomorrow"})
    assert excinfo.value.status == 400


def test_http_error_translation() -> None:
    assert isinstance(_translate_http_error(401, "{}"), CredentialExpired)
    assert isinstance(_translate_http_error(400, '{"error": "invalid_grant"}'), CredentialExpired)
    assert isinstance(_translate_http_error(503, ""), ProviderUnreachable)
    error = _translate_http_error(404, "Not Found")
    assert isinstance(error, CalendarRequestError)
    assert error.status == 404


def test_create_event_sends_bearer_token(monkeypatch: pytest.MonkeyPatch) -> None:
    """Summary: Verify events are posted with the resolved access token.

    Importance: The calendar uses the same token the resolver refreshed.
    Alternatives: Pass API keys instead of user tokens.
    """

    seen: list[urllib.request.Request] = []

    def fake_urlopen(request: urllib.request.Request, timeout: float) -> _FakeResponse:
        seen.append(request)
        return _FakeResponse({"id": "evt-1"})

    monkeypatch.setattr(urllib.request, "urlopen", fake_urlopen)
    client = GoogleCalendarClient("https://calendar.example.com/v3/", timeout=1.0)
    created = client.create_event("access-1", {"summary": "Sync"})
    assert created["id"] == "evt-1"
    assert seen[0].full_url == "https://calendar.example.com/v3/calendars/primary/events"
    assert seen[0].get_header("Authorization") == "Bearer access-1"


def test_unauthorized_response_raises_credential_expired(monkeypatch: pytest.MonkeyPatch) -> None:
    def fake_urlopen(request: urllib.request.Request, timeout: float) -> _FakeResponse:
        raise urllib.error.HTTPError(
            request.full_url, 401, "Unauthorized", {}, io.BytesIO(b'{"error": "invalid_grant"}')
        )

    monkeypatch.setattr(urllib.request, "urlopen", fake_urlopen)
    client = GoogleCalendarClient("https://calendar.example.com/v3")
    with pytest.raises(CredentialExpired):
        client.list_upcoming("expired-token")


def test_update_and_delete_target_the_event(monkeypatch: pytest.MonkeyPatch) -> None:
    seen: list[urllib.request.Request] = []

    def fake_urlopen(request: urllib.request.Request, timeout: float) -> _FakeResponse:
        seen.append(request)
        if request.get_method() == "DELETE":
            return _FakeResponse(None)
        return _FakeResponse({"id": "evt/1", "summary": "Renamed"})

    monkeypatch.setattr(urllib.request, "urlopen", fake_urlopen)
    client = GoogleCalendarClient("https://calendar.example.com/v3")
    updated = client.update_event("access-1", "evt/1", {"summary": "Renamed"})
    client.delete_event("access-1", "evt/1")

    assert updated["summary"] == "Renamed"
    assert [request.get_method() for request in seen] == ["PATCH", "DELETE"]
    assert seen[0].full_url == "https://calendar.example.com/v3/calendars/primary/events/evt%2F1"
    assert json.loads(seen[0].data or b"{}") == {"summary": "Renamed"}
    assert seen[1].data is None
