"""Shared fixtures."""

from datetime import datetime, timezone

import httpx
import pytest

from rental_occupancy.config import Settings
from rental_occupancy.core.ical_parser import CalendarEvent
from rental_occupancy.db.database import Database

SAMPLE_ICS = (
    "BEGIN:VCALENDAR\r\n"
    "VERSION:2.0\r\n"
    "PRODID:-//Airbnb Inc//Hosting Calendar 1.0//EN\r\n"
    "BEGIN:VEVENT\r\n"
    "DTSTAMP:20240220T101500Z\r\n"
    "DTSTART;VALUE=DATE:20240301\r\n"
    "DTEND;VALUE=DATE:20240305\r\n"
    "SUMMARY:Reserved\r\n"
    "UID:1418fb94e984-a1b2@airbnb.com\r\n"
    "DESCRIPTION:Reservation URL: https://www.airbnb.com/hosting/reservations/\r\n"
    " details/HMABCDEF12\\nPhone Number (Last 4 Digits): 1234\r\n"
    "END:VEVENT\r\n"
    "BEGIN:VEVENT\r\n"
    "DTSTAMP:20240220T101500Z\r\n"
    "DTSTART;VALUE=DATE:20240310\r\n"
    "DTEND;VALUE=DATE:20240315\r\n"
    "SUMMARY:Airbnb (Not available)\r\n"
    "UID:7f3a9c2e55d1-c3d4@airbnb.com\r\n"
    "END:VEVENT\r\n"
    "END:VCALENDAR\r\n"
)


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


class StaticFeedSource:
    """Feed source returning canned events, or raising a canned error."""

    def __init__(self, events=None, error=None):
        self.events = list(events or [])
        self.error = error
        self.calls: list[str] = []
        self.closed = False

    async def fetch_events(self, url: str) -> list[CalendarEvent]:
        self.calls.append(url)
        if self.error is not None:
            raise self.error
        return list(self.events)

    async def close(self) -> None:
        self.closed = True


def ics_transport(body: str = SAMPLE_ICS, status_code: int = 200,
                  content_type: str = "text/calendar; charset=utf-8") -> httpx.MockTransport:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            status_code,
            text=body,
            headers={"content-type": content_type},
        )

    return httpx.MockTransport(handler)


@pytest.fixture
def sample_ics() -> str:
    return SAMPLE_ICS


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        _env_file=None,
    )


@pytest.fixture
async def database(settings):
    db = Database(settings.database_url)
    await db.init()
    yield db
    await db.dispose()
