"""Google Calendar event listing for the current hour."""

from __future__ import annotations

import contextlib
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

import httplib2
from google.auth.exceptions import GoogleAuthError
from googleapiclient.errors import HttpError

from calnow.exceptions import CalnowError

logger = logging.getLogger(__name__)

# Failures below the API client: DNS, sockets, timeouts, credential refresh
TRANSPORT_ERRORS = (httplib2.HttpLib2Error, GoogleAuthError, OSError)


class CalendarError(CalnowError):
    """Raised when the Calendar API call fails."""

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


@dataclass
class Event:
    """Represents a Google Calendar event."""

    id: str
    summary: str
    start: datetime | None = None
    start_text: str = ""  # as sent by the API, date only for all-day events
    description: str | None = None
    all_day: bool = False


def hour_window(now: datetime) -> tuple[datetime, datetime]:
    """The hour starting at ``now`` rounded to the nearest hour."""
    hour = now.replace(minute=0, second=0, microsecond=0)
    if now - hour >= timedelta(minutes=30):
        hour += timedelta(hours=1)
    return hour, hour + timedelta(hours=1)


def _format_datetime(dt: datetime) -> str:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.isoformat()


class CalendarClient:
    """Reads events from a calendar through an authorized API service.

    Usage:
        service = manager.build_service("calendar", "v3")
        client = CalendarClient(service)
        events = client.current_events("primary")
    """

    def __init__(self, service: Any) -> None:
        self._service = service

    def list_events(
        self,
        calendar_id: str,
        time_min: datetime,
        time_max: datetime,
        max_results: int = 10,
    ) -> list[Event]:
        """List non-deleted single events starting between two times.

        Raises:
            CalendarError: If the API call fails.
        """
        try:
            results = (
                self._service.events()
                .list(
                    calendarId=calendar_id,
                    showDeleted=False,
                    singleEvents=True,
                    timeMin=_format_datetime(time_min),
                    timeMax=_format_datetime(time_max),
                    maxResults=max_results,
                    orderBy="startTime",
                )
                .execute()
            )
        except HttpError as e:
            status = getattr(e.resp, "status", None)
            raise CalendarError(
                f"Unable to retrieve events for calendar '{calendar_id}': {e}",
                status_code=int(status) if status else None,
            ) from e
        except TRANSPORT_ERRORS as e:
            raise CalendarError(
                f"Unable to reach the Calendar API for calendar '{calendar_id}': {e}"
            ) from e

        items = results.get("items", [])
        logger.debug(f"Calendar {calendar_id} returned {len(items)} events")
        return [self._parse_event(item) for item in items]

    def current_events(self, calendar_id: str, now: datetime | None = None) -> list[Event]:
        """List events in the current hour."""
        time_min, time_max = hour_window(now or datetime.now(timezone.utc))
        return self.list_events(calendar_id, time_min, time_max)

    def _parse_event(self, data: dict) -> Event:
        start = None
        start_data = data.get("start", {})
        if "dateTime" in start_data:
            with contextlib.suppress(ValueError):
                start = datetime.fromisoformat(start_data["dateTime"].replace("Z", "+00:00"))

        return Event(
            id=data.get("id", ""),
            summary=data.get("summary", ""),
            start=start,
            start_text=start_data.get("dateTime") or start_data.get("date", ""),
            description=data.get("description"),
            all_day="dateTime" not in start_data and "date" in start_data,
        )
