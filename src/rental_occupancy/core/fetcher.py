"""iCal feed fetchers.

Two interchangeable sources implement ``fetch_events(url)``:
``ICalFetcher`` downloads and parses the feed itself, ``ProxyFeedClient``
asks a remote ``/fetch-ical`` service to do it.
"""

from typing import Optional, Protocol
import logging

import httpx

from rental_occupancy.config import ICalService, Settings
from rental_occupancy.core.dates import normalize_instant
from rental_occupancy.core.ical_parser import CALENDAR_MARKER, CalendarEvent, iter_events
from rental_occupancy.errors import (
    DateNormalizationFailure,
    FetchError,
    FetchHttpError,
    FetchTimeout,
    InvalidFeedStructure,
    InvalidFeedUrl,
)

logger = logging.getLogger(__name__)

CALENDAR_CONTENT_TYPES = ("text/calendar", "text/plain", "application/octet-stream")


class FeedSource(Protocol):
    async def fetch_events(self, url: str) -> list[CalendarEvent]: ...

    async def close(self) -> None: ...


class ICalFetcher:
    """Fetches and parses iCal feeds."""

    def __init__(
        self,
        timeout: float = 10.0,
        user_agent: str = "Rental-Occupancy-iCal/0.1",
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.timeout = timeout
        self.user_agent = user_agent
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=self.timeout,
                headers={"Accept": "*/*", "User-Agent": self.user_agent},
                follow_redirects=True,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
        self._client = None

    async def fetch(self, url: str) -> str:
        """Download a feed and check that it looks like iCalendar.

        Args:
            url: The iCal URL to fetch

        Returns:
            The raw feed text

        Raises:
            InvalidFeedUrl: If no URL was given
            FetchTimeout: If the server did not answer in time
            FetchHttpError: If the server answered with a non-2xx status
            FetchError: On any other transport failure
            InvalidFeedStructure: If the body has no VCALENDAR header
        """
        if not url or not url.strip():
            raise InvalidFeedUrl("icalUrl is required")

        logger.info(f"Fetching iCal data from {url}")
        client = await self._get_client()
        try:
            response = await client.get(url.strip())
        except httpx.TimeoutException as e:
            raise FetchTimeout(
                f"Timed out after {self.timeout:g}s fetching iCal data"
            ) from e
        except httpx.HTTPError as e:
            raise FetchError(f"Failed to fetch iCal data: {e}") from e

        if not response.is_success:
            raise FetchHttpError(
                f"Failed to fetch iCal data: {response.reason_phrase} ({response.status_code})",
                status_code=response.status_code,
            )

        content_type = response.headers.get("content-type", "")
        if not content_type.lower().startswith(CALENDAR_CONTENT_TYPES):
            logger.warning(f"Unexpected content type for iCal feed {url}: {content_type!r}")

        content = response.text
        logger.debug(f"Received iCal data length: {len(content)}")

        if CALENDAR_MARKER not in content:
            raise InvalidFeedStructure("Invalid iCal data: Missing VCALENDAR header")

        return content

    async def fetch_events(self, url: str) -> list[CalendarEvent]:
        """Fetch an iCal feed and parse it into events."""
        content = await self.fetch(url)
        events = list(iter_events(content))
        logger.info(f"Parsed {len(events)} events from {url}")
        return events


class ProxyFeedClient:
    """Fetches events through a remote ``/fetch-ical`` service.

    The service takes ``{"icalUrl": url}`` and answers ``{"data": [...]}``
    with ``startDate``/``endDate`` pairs, or ``{"error": message}``.
    """

    def __init__(
        self,
        proxy_url: str,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.proxy_url = proxy_url
        self.timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self.timeout, transport=self._transport)
        return self._client

    async def close(self) -> None:
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
        self._client = None

    async def fetch_events(self, url: str) -> list[CalendarEvent]:
        if not url or not url.strip():
            raise InvalidFeedUrl("icalUrl is required")

        client = await self._get_client()
        try:
            response = await client.post(self.proxy_url, json={"icalUrl": url.strip()})
        except httpx.TimeoutException as e:
            raise FetchTimeout(f"Timed out after {self.timeout:g}s waiting for iCal service") from e
        except httpx.HTTPError as e:
            raise FetchError(f"iCal service unreachable: {e}") from e

        try:
            payload = response.json()
        except ValueError:
            payload = {}

        if not response.is_success:
            message = payload.get("error") if isinstance(payload, dict) else None
            raise FetchHttpError(
                message or f"HTTP error! status: {response.status_code}",
                status_code=response.status_code,
            )

        if not isinstance(payload, dict) or not isinstance(payload.get("data"), list):
            raise InvalidFeedStructure("iCal service returned an unexpected payload")

        events: list[CalendarEvent] = []
        for item in payload["data"]:
            try:
                start = normalize_instant(item["startDate"])
                end = normalize_instant(item["endDate"])
            except (KeyError, TypeError, DateNormalizationFailure) as e:
                logger.warning(f"Skipping malformed event from iCal service: {e}")
                continue
            if end < start:
                logger.warning(f"Skipping event ending before it starts: {item}")
                continue
            events.append(CalendarEvent(start=start, end=end))
        return events


def build_feed_source(settings: Settings) -> FeedSource:
    """Create the feed source selected by ``settings.ical_service``."""
    if settings.ical_service == ICalService.PROXY:
        logger.info(f"Using iCal proxy service at {settings.proxy_url}")
        return ProxyFeedClient(settings.proxy_url, timeout=settings.fetch_timeout_seconds)
    return ICalFetcher(
        timeout=settings.fetch_timeout_seconds,
        user_agent=settings.user_agent,
    )
