"""Listing manager that ties feed import, storage and occupancy together."""

from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Optional
import logging

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from rental_occupancy.config import Settings
from rental_occupancy.core.fetcher import FeedSource, build_feed_source
from rental_occupancy.core.occupancy import calculate_occupancy, days_in_month
from rental_occupancy.core.pricing import suggest_price
from rental_occupancy.core.reconciler import reconcile_events, upsert_reservations
from rental_occupancy.db.database import Database
from rental_occupancy.db.models import Listing, Reservation, ReservationSource, utcnow
from rental_occupancy.errors import (
    EmptyFeed,
    IngestionError,
    ListingNotFound,
    StorageWriteFailure,
)

logger = logging.getLogger(__name__)


@dataclass
class ImportResult:
    """Outcome of one feed import."""

    listing_id: int
    events: int
    written: int

    def to_dict(self) -> dict:
        return {"listing_id": self.listing_id, "events": self.events, "written": self.written}


def _listing_dict(listing: Listing) -> dict:
    return {
        "id": listing.id,
        "owner_id": listing.owner_id,
        "title": listing.title,
        "ical_url": listing.ical_url,
        "last_imported_at": (
            listing.last_imported_at.isoformat() if listing.last_imported_at else None
        ),
        "last_import_error": listing.last_import_error,
        "created_at": listing.created_at.isoformat() if listing.created_at else None,
    }


class OccupancyManager:
    """Main manager coordinating listings, imports and occupancy."""

    def __init__(
        self,
        settings: Settings,
        database: Database,
        feed_source: Optional[FeedSource] = None,
    ):
        self.settings = settings
        self.db = database
        self.feed_source = feed_source or build_feed_source(settings)

    async def close(self) -> None:
        await self.feed_source.close()

    # Listings

    async def create_listing(self, owner_id: str, title: str) -> dict:
        """Create a listing for an owner."""
        title = (title or "").strip()
        if not title:
            raise ValueError("Listing title is required")
        if not owner_id:
            raise ValueError("Owner id is required")

        async with self.db.session() as session:
            listing = Listing(owner_id=owner_id, title=title, created_at=utcnow())
            session.add(listing)
            await session.flush()
            logger.info(f"Created listing {listing.id} for owner {owner_id}")
            return _listing_dict(listing)

    async def get_listings(self, owner_id: str) -> list[dict]:
        """Get an owner's listings, newest first."""
        async with self.db.session() as session:
            result = await session.execute(
                select(Listing)
                .where(Listing.owner_id == owner_id)
                .order_by(Listing.created_at.desc(), Listing.id.desc())
            )
            return [_listing_dict(listing) for listing in result.scalars().all()]

    async def get_listing(self, listing_id: int) -> dict:
        async with self.db.session() as session:
            listing = await session.get(Listing, listing_id)
            if listing is None:
                raise ListingNotFound(listing_id)
            return _listing_dict(listing)

    # Reservations

    async def get_reservations(
        self,
        listing_id: int,
        from_date: Optional[date] = None,
        to_date: Optional[date] = None,
    ) -> list[dict]:
        """Get a listing's reservations ordered by start date.

        ``from_date`` keeps stays ending on or after it, ``to_date`` keeps
        stays starting on or before it.
        """
        async with self.db.session() as session:
            if await session.get(Listing, listing_id) is None:
                raise ListingNotFound(listing_id)

            query = select(Reservation).where(Reservation.listing_id == listing_id)
            if from_date:
                query = query.where(Reservation.end_date >= from_date)
            if to_date:
                query = query.where(Reservation.start_date <= to_date)
            query = query.order_by(Reservation.start_date, Reservation.end_date)

            result = await session.execute(query)
            return [r.to_dict() for r in result.scalars().all()]

    async def import_feed(
        self, listing_id: int, url: str, source: Optional[str] = None
    ) -> ImportResult:
        """Fetch a listing's iCal feed and upsert its reservations.

        Re-importing the same feed leaves the reservation set unchanged.

        Raises:
            ListingNotFound: If the listing does not exist
            IngestionError: If the feed cannot be fetched or holds no events,
                or the reservations cannot be written
        """
        source = source or self.settings.default_source or ReservationSource.AIRBNB.value
        await self.get_listing(listing_id)

        logger.info(f"Starting iCal import for listing {listing_id} from {url}")
        try:
            events = await self.feed_source.fetch_events(url)
            if not events:
                raise EmptyFeed("No events found in the calendar")

            drafts = reconcile_events(listing_id, events, source=source)
            try:
                async with self.db.session() as session:
                    listing = await session.get(Listing, listing_id)
                    if listing is None:
                        raise ListingNotFound(listing_id)
                    written = await upsert_reservations(session, drafts)
                    listing.ical_url = url
                    listing.last_imported_at = utcnow()
                    listing.last_import_error = None
            except SQLAlchemyError as e:
                raise StorageWriteFailure(f"Failed to save reservations: {e}") from e
        except IngestionError as e:
            logger.error(f"iCal import failed for listing {listing_id}: {e}")
            await self._record_import_error(listing_id, str(e))
            raise

        logger.info(
            f"Imported {len(events)} events ({written} reservations) into listing {listing_id}"
        )
        return ImportResult(listing_id=listing_id, events=len(events), written=written)

    async def _record_import_error(self, listing_id: int, error: str) -> None:
        try:
            async with self.db.session() as session:
                listing = await session.get(Listing, listing_id)
                if listing is not None:
                    listing.last_import_error = error
        except SQLAlchemyError as e:
            logger.error(f"Could not record import error on listing {listing_id}: {e}")

    # Occupancy

    async def get_occupancy(
        self,
        listing_id: int,
        year: Optional[int] = None,
        month: Optional[int] = None,
    ) -> dict:
        """Occupancy and suggested price for a listing in one month.

        Defaults to the current month (UTC).
        """
        today = datetime.now(timezone.utc).date()
        if year is None:
            year = today.year
        if month is None:
            month = today.month
        last = date(year, month, days_in_month(year, month))
        first = last.replace(day=1)

        async with self.db.session() as session:
            if await session.get(Listing, listing_id) is None:
                raise ListingNotFound(listing_id)
            result = await session.execute(
                select(Reservation)
                .where(Reservation.listing_id == listing_id)
                .where(Reservation.start_date >= first)
                .where(Reservation.start_date <= last)
                .order_by(Reservation.start_date)
            )
            reservations = result.scalars().all()

        snapshot = calculate_occupancy(reservations, year=year, month=month)
        price = suggest_price(snapshot.rate, self.settings.base_price)
        return {
            "listing_id": listing_id,
            **snapshot.to_dict(),
            "base_price": float(self.settings.base_price),
            "suggested_price": float(price),
        }

    async def health_check(self) -> dict:
        try:
            await self.db.ping()
            database = "ok"
        except SQLAlchemyError as e:
            logger.error(f"Database health check failed: {e}")
            database = "error"
        return {
            "status": "ok" if database == "ok" else "degraded",
            "database": database,
            "ical_service": self.settings.ical_service.value,
        }
