"""iCal feed parser.

Turns raw ICS text into booked date spans. The scan is deliberately
forgiving: events missing a start or end, or carrying dates that cannot be
read, are skipped rather than failing the whole feed.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Iterator, Optional, Union
import logging

from icalendar.parser import Contentline, Contentlines

from rental_occupancy.core.dates import format_instant, normalize_instant
from rental_occupancy.errors import DateNormalizationFailure, InvalidFeedStructure

logger = logging.getLogger(__name__)

CALENDAR_MARKER = "BEGIN:VCALENDAR"


@dataclass(frozen=True)
class CalendarEvent:
    """The booked span of one VEVENT."""

    start: datetime
    end: datetime

    def to_dict(self) -> dict[str, str]:
        return {"startDate": format_instant(self.start), "endDate": format_instant(self.end)}

    def __repr__(self) -> str:
        return f"<CalendarEvent {format_instant(self.start)}-{format_instant(self.end)}>"


def unfold_lines(ical_content: Union[str, bytes]) -> list[str]:
    """Split ICS text into logical property lines.

    A physical line starting with a space or tab continues the previous
    line (RFC 5545 folding); icalendar drops the fold marker and joins it.

    Args:
        ical_content: Raw ICS text

    Returns:
        Logical lines in document order, stripped, without blank lines

    Raises:
        ValueError: If icalendar cannot split the text into content lines
    """
    if isinstance(ical_content, bytes):
        ical_content = ical_content.decode("utf-8", errors="replace")

    return [str(line).strip() for line in Contentlines.from_ical(ical_content) if line.strip()]


def _params_hint(params) -> str:
    return ";".join(f"{key}={value}" for key, value in params.items())


def _read_date(name: str, params: str, value: str) -> Optional[datetime]:
    try:
        return normalize_instant(value)
    except DateNormalizationFailure as e:
        hint = f" ({params})" if params else ""
        logger.warning(f"Ignoring {name}{hint}: {e}")
        return None


def extract_events(lines: Iterable[str]) -> Iterator[CalendarEvent]:
    """Scan logical lines for VEVENT blocks and yield their date spans.

    A VEVENT is emitted only if both DTSTART and DTEND were read. A
    BEGIN:VEVENT inside an open event discards what was collected so far.

    This is a generator: it can be consumed once. Re-parse the raw text to
    scan again.
    """
    in_event = False
    start: Optional[datetime] = None
    end: Optional[datetime] = None

    for line in lines:
        upper = line.upper()

        if upper == "BEGIN:VEVENT":
            if in_event:
                logger.debug("BEGIN:VEVENT inside an open event, restarting it")
            in_event = True
            start = end = None
            continue

        if not in_event:
            continue

        if upper == "END:VEVENT":
            in_event = False
            if start is None or end is None:
                logger.debug("Dropping event without both DTSTART and DTEND")
            elif end < start:
                logger.warning(
                    f"Dropping event ending before it starts: "
                    f"{format_instant(start)} > {format_instant(end)}"
                )
            else:
                yield CalendarEvent(start=start, end=end)
            continue

        try:
            name, params, value = Contentline(line).parts()
        except ValueError:
            logger.debug(f"Skipping unreadable content line: {line!r}")
            continue

        name = name.upper()
        if name == "DTSTART":
            start = _read_date(name, _params_hint(params), value)
        elif name == "DTEND":
            end = _read_date(name, _params_hint(params), value)


def iter_events(ical_content: Union[str, bytes]) -> Iterator[CalendarEvent]:
    """Lazily parse ICS text into CalendarEvents.

    Raises:
        InvalidFeedStructure: If the text is not an iCalendar document
    """
    try:
        lines = unfold_lines(ical_content)
    except ValueError as e:
        raise InvalidFeedStructure(f"Failed to parse iCal content: {e}") from e
    if not any(line.upper() == CALENDAR_MARKER for line in lines):
        raise InvalidFeedStructure("Invalid iCal data: Missing VCALENDAR header")
    return extract_events(lines)


def parse_ics(ical_content: Union[str, bytes]) -> list[dict[str, str]]:
    """Parse an iCal feed into start/end pairs.

    Args:
        ical_content: Raw iCal content as string

    Returns:
        List of ``{"startDate": ..., "endDate": ...}`` dicts with ISO-8601
        UTC instants, in feed order

    Raises:
        InvalidFeedStructure: If the text is not an iCalendar document
    """
    return [event.to_dict() for event in iter_events(ical_content)]
