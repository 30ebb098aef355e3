"""
Google Calendar integration source.

Lists the timed events of one week and condenses them into career-relevant
context: a line per meeting, the meetings worth mentioning, and a one
paragraph summary.
"""

from __future__ import annotations

from datetime import date, datetime, time, timezone
from typing import Any, Dict, List, Optional

import httpx
import structlog

from .base import IntegrationSource

logger = structlog.get_logger()

# Title keywords that mark a meeting as career-relevant
KEY_MEETING_KEYWORDS = (
    "1:1",
    "review",
    "feedback",
    "demo",
    "presentation",
    "retrospective",
    "planning",
    "architecture",
    "design",
    "stakeholder",
)

MAX_EVENTS = 50


class CalendarAccessError(Exception):
    """Calendar API rejected the stored credentials."""


class GoogleCalendarSource(IntegrationSource):
    """Fetch one week of primary-calendar events over the REST API."""

    def __init__(
        self,
        api_url: str = "https://www.googleapis.com/calendar/v3",
        timeout: float = 15.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    @property
    def integration_type(self) -> str:
        return "google_calendar"

    def fetch_weekly_data(
        self,
        credentials: Dict[str, Any],
        week_start: date,
        week_end: date,
    ) -> Dict[str, Any]:
        token = credentials.get("access_token")
        if not token:
            raise CalendarAccessError("Calendar integration has no access token")

        params = {
            "timeMin": datetime.combine(week_start, time.min, timezone.utc).isoformat(),
            "timeMax": datetime.combine(week_end, time.max, timezone.utc).isoformat(),
            "singleEvents": "true",
            "orderBy": "startTime",
            "maxResults": MAX_EVENTS,
        }
        with httpx.Client(timeout=self.timeout, transport=self.transport) as client:
            response = client.get(
                f"{self.api_url}/calendars/primary/events",
                params=params,
                headers={"Authorization": f"Bearer {token}"},
            )
        if response.status_code == 401:
            raise CalendarAccessError("Calendar access expired. Please reconnect.")
        if response.status_code == 403:
            raise CalendarAccessError("Insufficient calendar permissions")
        response.raise_for_status()

        events = [
            _transform_event(item)
            for item in response.json().get("items", [])
            if (item.get("start") or {}).get("dateTime")
        ]
        logger.info("calendar_events_fetched", count=len(events))
        return summarize_events(events)


def _transform_event(item: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": item.get("id"),
        "summary": item.get("summary") or "Untitled Event",
        "description": item.get("description"),
        "start": item["start"]["dateTime"],
        "end": (item.get("end") or {}).get("dateTime"),
        "attendees": len(item.get("attendees") or []),
    }


def is_key_meeting(event: Dict[str, Any]) -> bool:
    title = event["summary"].lower()
    return any(keyword in title for keyword in KEY_MEETING_KEYWORDS)


def summarize_events(events: List[Dict[str, Any]]) -> Dict[str, Any]:
    """Condense transformed events into the weekly calendar context."""
    meeting_context = []
    for event in events:
        when = datetime.fromisoformat(event["start"].replace("Z", "+00:00"))
        line = f"{when.strftime('%A, %b')} {when.day}: {event['summary']}"
        if event["attendees"] > 1:
            line += f" ({event['attendees']} attendees)"
        if event.get("description"):
            line += f" - {event['description']}"
        meeting_context.append(line)

    key_meetings = [event for event in events if is_key_meeting(event)]
    return {
        "total_meetings": len(events),
        "meeting_context": meeting_context,
        "key_meetings": key_meetings,
        "summary": _weekly_summary(events, key_meetings),
    }


def _weekly_summary(
    events: List[Dict[str, Any]], key_meetings: List[Dict[str, Any]]
) -> str:
    if not events:
        return "No meetings scheduled this week."

    titles = [event["summary"].lower() for event in events]
    one_on_ones = sum(1 for title in titles if "1:1" in title)
    presentations = sum(
        1 for title in titles if "demo" in title or "presentation" in title
    )

    parts = [f"This week included {len(events)} meetings."]
    if one_on_ones:
        parts.append(f"Had {one_on_ones} 1:1 meeting(s) for development discussions.")
    if presentations:
        parts.append(f"Delivered {presentations} presentation(s) or demo(s).")
    if key_meetings:
        named = ", ".join(meeting["summary"] for meeting in key_meetings[:3])
        if len(key_meetings) > 3:
            named += f" and {len(key_meetings) - 3} others"
        parts.append(
            f"Participated in {len(key_meetings)} career-relevant meetings including: {named}."
        )
    return " ".join(parts)
