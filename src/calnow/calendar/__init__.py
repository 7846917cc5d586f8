"""Google Calendar access for the current hour.

Usage:
    from calnow.calendar import CalendarClient

    client = CalendarClient(service)
    for event in client.current_events("primary"):
        print(event.start_text, event.summary)
"""

from __future__ import annotations

from calnow.calendar.client import CalendarClient, CalendarError, Event, hour_window

__all__ = ["CalendarClient", "CalendarError", "Event", "hour_window"]
