"""Reconciliation of parsed calendar events with stored reservations."""

from dataclasses import dataclass
from datetime import date
from typing import Iterable
import logging

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from rental_occupancy.core.dates import instant_to_date
from rental_occupancy.core.ical_parser import CalendarEvent
from rental_occupancy.db.models import Reservation, ReservationSource, utcnow
from rental_occupancy.errors import StorageWriteFailure

logger = logging.getLogger(__name__)

RESERVATION_KEY = ("listing_id", "start_date", "end_date")

_INSERTS = {
    "sqlite": sqlite.insert,
    "postgresql": postgresql.insert,
}


@dataclass(frozen=True)
class ReservationDraft:
    """A reservation about to be written."""

    listing_id: int
    start_date: date
    end_date: date
    source: str

    @property
    def key(self) -> tuple[int, date, date]:
        return (self.listing_id, self.start_date, self.end_date)


def reconcile_events(
    listing_id: int,
    events: Iterable[CalendarEvent],
    source: str = ReservationSource.AIRBNB.value,
) -> list[ReservationDraft]:
    """Map calendar events to reservation drafts for a listing.

    Start and end instants are truncated to their UTC dates. Events that
    collapse onto the same (listing, start, end) key are written once.
    """
    drafts: dict[tuple[int, date, date], ReservationDraft] = {}
    for event in events:
        draft = ReservationDraft(
            listing_id=listing_id,
            start_date=instant_to_date(event.start),
            end_date=instant_to_date(event.end),
            source=source,
        )
        drafts.setdefault(draft.key, draft)
    return list(drafts.values())


async def upsert_reservations(session: AsyncSession, drafts: list[ReservationDraft]) -> int:
    """Write drafts with one INSERT ... ON CONFLICT DO UPDATE statement.

    Rows are bound as an executemany batch, so feed size is not capped by
    the driver's bound-parameter limit. The batch shares the session's
    transaction.

    An existing row with the same key only has ``source`` and
    ``updated_at`` replaced; notes and creation time are kept.

    Returns:
        Number of rows written

    Raises:
        StorageWriteFailure: If the database rejects the batch
    """
    if not drafts:
        return 0

    dialect = session.get_bind().dialect.name
    insert = _INSERTS.get(dialect)
    if insert is None:
        raise StorageWriteFailure(f"Upsert is not supported on {dialect}")

    now = utcnow()
    rows = [
        {
            "listing_id": d.listing_id,
            "start_date": d.start_date,
            "end_date": d.end_date,
            "source": d.source,
            "created_at": now,
            "updated_at": now,
        }
        for d in drafts
    ]

    stmt = insert(Reservation.__table__)
    stmt = stmt.on_conflict_do_update(
        index_elements=list(RESERVATION_KEY),
        set_={
            "source": stmt.excluded.source,
            "updated_at": stmt.excluded.updated_at,
        },
    )

    try:
        await session.execute(stmt, rows)
    except SQLAlchemyError as e:
        logger.error(f"Reservation upsert failed for {len(rows)} rows: {e}")
        raise StorageWriteFailure(f"Failed to save reservations: {e}") from e

    logger.debug(f"Upserted {len(rows)} reservations")
    return len(rows)
