"""Tests for the HTTP integrations, against mocked transports."""

import json
from datetime import date

import httpx
import pytest

from advance_weekly.integrations.google_calendar import (
    CalendarAccessError,
    GoogleCalendarSource,
    summarize_events,
)
from advance_weekly.integrations.llm_proxy import LLMProxyClient


class TestLLMProxyClient:
    def test_posts_payload_with_bearer_token(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["auth"] = request.headers.get("Authorization")
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"content": "## Done\n\n- Things"})

        client = LLMProxyClient(
            "http://proxy.test/v1/generate",
            api_key="secret",
            model="test-model",
            transport=httpx.MockTransport(handler),
        )
        try:
            text = client.generate(
                "Write it", temperature=0.2, max_tokens=300, context={"type": "x"}
            )
        finally:
            client.close()

        assert text == "## Done\n\n- Things"
        assert seen["auth"] == "Bearer secret"
        assert seen["body"] == {
            "model": "test-model",
            "prompt": "Write it",
            "temperature": 0.2,
            "max_tokens": 300,
            "context": {"type": "x"},
        }

    def test_server_error_raises(self):
        client = LLMProxyClient(
            "http://proxy.test/v1/generate",
            transport=httpx.MockTransport(lambda request: httpx.Response(500)),
        )
        with pytest.raises(httpx.HTTPStatusError):
            client.generate("Write it")

    def test_timeout_is_reraised(self):
        def handler(request):
            raise httpx.ReadTimeout("too slow", request=request)

        client = LLMProxyClient(
            "http://proxy.test/v1/generate", transport=httpx.MockTransport(handler)
        )
        with pytest.raises(httpx.TimeoutException):
            client.generate("Write it")

    def test_missing_content_rejected(self):
        client = LLMProxyClient(
            "http://proxy.test/v1/generate",
            transport=httpx.MockTransport(
                lambda request: httpx.Response(200, json={"text": "wrong key"})
            ),
        )
        with pytest.raises(ValueError):
            client.generate("Write it")


EVENTS = {
    "items": [
        {
            "id": "1",
            "summary": "1:1 with Dana",
            "start": {"dateTime": "2025-07-21T15:00:00Z"},
            "end": {"dateTime": "2025-07-21T15:30:00Z"},
            "attendees": [{"email": "a"}, {"email": "b"}],
        },
        {
            "id": "2",
            "summary": "Sprint Demo",
            "description": "Importer walkthrough",
            "start": {"dateTime": "2025-07-23T17:00:00Z"},
        },
        {
            "id": "3",
            "summary": "Lunch",
            "start": {"dateTime": "2025-07-24T12:00:00Z"},
        },
        {
            "id": "4",
            "summary": "Company holiday",
            "start": {"date": "2025-07-25"},
        },
    ]
}


class TestGoogleCalendarSource:
    def test_fetches_and_summarizes_week(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = request.url
            seen["auth"] = request.headers.get("Authorization")
            return httpx.Response(200, json=EVENTS)

        source = GoogleCalendarSource(
            api_url="https://calendar.test/v3/", transport=httpx.MockTransport(handler)
        )
        data = source.fetch_weekly_data(
            {"access_token": "tok"}, date(2025, 7, 21), date(2025, 7, 25)
        )

        assert seen["auth"] == "Bearer tok"
        assert seen["url"].path == "/v3/calendars/primary/events"
        assert seen["url"].params["singleEvents"] == "true"
        assert seen["url"].params["timeMin"].startswith("2025-07-21T00:00:00")

        assert data["total_meetings"] == 3
        assert [m["summary"] for m in data["key_meetings"]] == ["1:1 with Dana", "Sprint Demo"]
        assert data["meeting_context"][0] == "Monday, Jul 21: 1:1 with Dana (2 attendees)"
        assert data["meeting_context"][1].endswith("Sprint Demo - Importer walkthrough")
        assert data["summary"] == (
            "This week included 3 meetings. "
            "Had 1 1:1 meeting(s) for development discussions. "
            "Delivered 1 presentation(s) or demo(s). "
            "Participated in 2 career-relevant meetings including: "
            "1:1 with Dana, Sprint Demo."
        )

    @pytest.mark.parametrize(
        "status,message",
        [
            (401, "Calendar access expired. Please reconnect."),
            (403, "Insufficient calendar permissions"),
        ],
    )
    def test_rejected_credentials(self, status, message):
        source = GoogleCalendarSource(
            transport=httpx.MockTransport(lambda request: httpx.Response(status))
        )
        with pytest.raises(CalendarAccessError, match=message):
            source.fetch_weekly_data(
                {"access_token": "old"}, date(2025, 7, 21), date(2025, 7, 25)
            )

    def test_missing_token(self):
        with pytest.raises(CalendarAccessError):
            GoogleCalendarSource().fetch_weekly_data(
                {}, date(2025, 7, 21), date(2025, 7, 25)
            )


def test_empty_week_summary():
    assert summarize_events([])["summary"] == "No meetings scheduled this week."
