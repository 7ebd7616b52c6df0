"""Normalization of iCal DTSTART/DTEND values to UTC instants.

Feeds in the wild mix three encodings for the same moment: RFC 3339 style
timestamps, the iCalendar basic date-time form (``20240115T000000Z``) and
bare dates (``20240115``). Everything is folded into one representation, a
timezone-aware ``datetime`` in UTC with whole-second precision.

Values without an explicit offset (bare dates and floating date-times) are
read as UTC. Feeds from listing platforms publish whole-day bookings as bare
dates, and reading them in the server's local zone would shift the booked
day depending on where the service happens to run.
"""

from datetime import date, datetime, timezone
import logging

from dateutil import parser as date_parser
from icalendar.prop import vDate, vDatetime

from rental_occupancy.errors import DateNormalizationFailure

logger = logging.getLogger(__name__)

INSTANT_FORMAT = "%Y-%m-%dT%H:%M:%SZ"

# Fills fields a partial timestamp leaves out ("2024-03" is 1 March 2024)
PARSE_DEFAULT = datetime(1970, 1, 1)


def _to_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    else:
        value = value.astimezone(timezone.utc)
    return value.replace(microsecond=0)


def _parse_generic(token: str) -> datetime | None:
    try:
        return date_parser.parse(token, default=PARSE_DEFAULT)
    except (ValueError, OverflowError):
        return None


def _parse_basic_datetime(token: str) -> datetime | None:
    # YYYYMMDDTHHMMSS with optional trailing Z
    if len(token) < 15 or token[8] != "T":
        return None
    try:
        return vDatetime.from_ical(token)
    except ValueError:
        return None


def _parse_basic_date(token: str) -> datetime | None:
    if len(token) != 8 or not token.isdigit():
        return None
    try:
        day = vDate.from_ical(token)
    except ValueError:
        return None
    return datetime(day.year, day.month, day.day)


def normalize_instant(token: str) -> datetime:
    """Convert a raw DTSTART/DTEND token into a UTC instant.

    Formats are tried in order: free-form timestamp, basic date-time,
    basic date.

    Args:
        token: The text captured after the property's ``:``

    Returns:
        Timezone-aware datetime in UTC

    Raises:
        DateNormalizationFailure: If no format matches
    """
    raw = token.strip() if isinstance(token, str) else ""
    if not raw:
        raise DateNormalizationFailure(token)

    for parse in (_parse_generic, _parse_basic_datetime, _parse_basic_date):
        parsed = parse(raw)
        if parsed is not None:
            return _to_utc(parsed)

    raise DateNormalizationFailure(token)


def format_instant(value: datetime) -> str:
    """Render an instant in the canonical ``YYYY-MM-DDTHH:MM:SSZ`` form."""
    return _to_utc(value).strftime(INSTANT_FORMAT)


def instant_to_date(value: datetime) -> date:
    """Truncate an instant to its calendar date in UTC."""
    return _to_utc(value).date()
