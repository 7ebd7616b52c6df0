"""Exceptions raised by the import pipeline and the listing manager."""

from typing import Optional


class IngestionError(Exception):
    """A feed import failed as a whole."""


class InvalidFeedUrl(IngestionError, ValueError):
    """No usable feed URL was given."""


class FetchError(IngestionError):
    """The feed could not be retrieved."""


class FetchTimeout(FetchError):
    """The feed server did not answer within the configured timeout."""


class FetchHttpError(FetchError):
    """The feed server answered with a non-2xx status."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class InvalidFeedStructure(IngestionError):
    """The payload is not an iCalendar document."""


class EmptyFeed(IngestionError):
    """The feed parsed but held no usable events."""


class StorageWriteFailure(IngestionError):
    """Writing reservations to storage failed."""


class DateNormalizationFailure(ValueError):
    """A DTSTART/DTEND token could not be turned into an instant.

    Absorbed by the event extractor; the owning event is dropped.
    """

    def __init__(self, token: str):
        super().__init__(f"Unrecognized date value: {token!r}")
        self.token = token


class ListingNotFound(LookupError):
    """No listing exists with the requested id."""

    def __init__(self, listing_id: int):
        super().__init__(f"Listing {listing_id} not found")
        self.listing_id = listing_id
