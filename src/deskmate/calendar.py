"""Summary: Google Calendar client backed by resolved OAuth tokens.

Importance: Creates, lists, updates, and deletes events with the same token lifecycle as
mail access.
Alternatives: Use the googleapiclient SDK.
"""

from __future__ import annotations

import json
import logging
import socket
import urllib.error
import urllib.parse
import urllib.request
from datetime import date, datetime, timedelta, timezone
from typing import Any

from deskmate.errors import CredentialExpired, ProviderUnreachable
from deskmate.models import GOOGLE


logger = logging.getLogger(__name__)


class CalendarRequestError(Exception):
    """Raised when the Calendar API rejects a request for a non-credential reason."""

    def __init__(self, status: int, detail: str) -> None:
        super().__init__(detail)
        self.status = status
        self.detail = detail


class GoogleCalendarClient:
    """Summary: Minimal Google Calendar v3 client.

    Importance: Keeps calendar calls behind one seam so credential failures surface as
    typed errors.
    Alternatives: Call the REST API inline from route handlers.
    """

    def __init__(self, base_url: str, timeout: float = 10.0) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout

    def create_event(self, access_token: str, event: dict[str, Any]) -> dict[str, Any]:
        """Summary: Insert an event into the primary calendar.

        Importance: Backs the assistant's "add to calendar" action.
        Alternatives: Generate an .ics attachment instead.
        """

        url = f"{self._base_url}/calendars/primary/events"
        created = self._request("POST", url, access_token, event)
        logger.info("Created calendar event %s.", created.get("id"))
        return created

    def list_upcoming(
        self, access_token: str, max_results: int = 10, now: datetime | None = None
    ) -> list[dict[str, Any]]:
        """List upcoming single events ordered by start time."""

        params = {
            "timeMin": (now or datetime.now(timezone.utc)).isoformat(),
            "maxResults": str(max_results),
            "singleEvents": "true",
            "orderBy": "startTime",
        }
        url = f"{self._base_url}/calendars/primary/events?" + urllib.parse.urlencode(params)
        payload = self._request("GET", url, access_token, None)
        return list(payload.get("items", []))

    def update_event(
        self, access_token: str, event_id: str, event: dict[str, Any]
    ) -> dict[str, Any]:
        """Summary: Patch an existing event in the primary calendar.

        Importance: Lets the assistant reschedule or rename events it created.
        Alternatives: Delete and recreate the event, losing its id and attendees' replies.
        """

        url = f"{self._base_url}/calendars/primary/events/{urllib.parse.quote(event_id, safe='')}"
        updated = self._request("PATCH", url, access_token, event)
        logger.info("Updated calendar event %s.", event_id)
        return updated

    def delete_event(self, access_token: str, event_id: str) -> None:
        url = f"{self._base_url}/calendars/primary/events/{urllib.parse.quote(event_id, safe='')}"
        self._request("DELETE", url, access_token, None)
        logger.info("Deleted calendar event %s.", event_id)

    def _request(
        self, method: str, url: str, access_token: str, body: dict[str, Any] | None
    ) -> dict[str, Any]:
        data = json.dumps(body).encode("utf-8") if body is not None else None
        headers = {"Authorization": f"Bearer {access_token}"}
        if data is not None:
            headers["Content-Type"] = "application/json"
        request = urllib.request.Request(url, data=data, headers=headers, method=method)
        try:
            with urllib.request.urlopen(request, timeout=self._timeout) as response:
                raw = response.read().decode("utf-8")
        except urllib.error.HTTPError as exc:
            error_body = exc.read().decode("utf-8", errors="ignore")
            raise _translate_http_error(exc.code, error_body) from exc
        except (socket.timeout, TimeoutError) as exc:
            raise ProviderUnreachable(
                "Google Calendar timed out", provider=GOOGLE, timed_out=True
            ) from exc
        except urllib.error.URLError as exc:
            raise ProviderUnreachable(
                f"Google Calendar unreachable: {exc.reason}", provider=GOOGLE
            ) from exc
        return json.loads(raw) if raw else {}


def _translate_http_error(status: int, body: str) -> Exception:
    lowered = body.lower()
    if status == 401 or "invalid_grant" in lowered or "invalid credentials" in lowered:
        return CredentialExpired("Invalid Google credentials", provider=GOOGLE)
    if status >= 500:
        return ProviderUnreachable(f"Google Calendar failed with HTTP {status}", provider=GOOGLE)
    return CalendarRequestError(status, body or f"HTTP {status}")


def normalize_event_times(event: dict[str, Any], time_zone: str = "UTC") -> dict[str, Any]:
    """Summary: Fill in missing start/end fields on an event payload.

    Importance: Clients often send a bare start; the API requires both ends with zones.
    Alternatives: Reject incomplete events with a validation error.
    """

    normalized = dict(event)
    start = _as_time_block(normalized.get("start"), time_zone)
    if start is None:
        start_at = datetime.now(timezone.utc) + timedelta(hours=1)
        start = {"dateTime": start_at.isoformat(), "timeZone": time_zone}
    normalized["start"] = start

    end = _as_time_block(normalized.get("end"), start.get("timeZone", time_zone))
    if end is None and "date" in start:
        end = {"date": (date.fromisoformat(start["date"]) + timedelta(days=1)).isoformat()}
    elif end is None:
        start_at = _parse_datetime(start.get("dateTime"))
        end_at = (start_at or datetime.now(timezone.utc)) + timedelta(hours=1)
        end = {"dateTime": end_at.isoformat(), "timeZone": start.get("timeZone", time_zone)}
    normalized["end"] = end
    return normalized


def normalize_event_patch(event: dict[str, Any], time_zone: str = "UTC") -> dict[str, Any]:
    """Attach time zones to whichever of start or end a partial update carries."""

    normalized = dict(event)
    for key in ("start", "end"):
        if key not in normalized:
            continue
        block = _as_time_block(normalized[key], time_zone)
        if block is None:
            raise CalendarRequestError(400, f"Invalid {key} time: {normalized[key]!r}")
        normalized[key] = block
    return normalized


def _as_time_block(value: Any, time_zone: str) -> dict[str, Any] | None:
    if isinstance(value, str):
        parsed = _parse_datetime(value)
        if parsed is None:
            return None
        return {"dateTime": parsed.isoformat(), "timeZone": time_zone}
    if isinstance(value, dict):
        if "date" in value:
            try:
                date.fromisoformat(str(value["date"]))
            except ValueError:
                return None
            return dict(value)
        if not value.get("dateTime"):
            return None
        block = dict(value)
        block.setdefault("timeZone", time_zone)
        return block
    return None


def _parse_datetime(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
