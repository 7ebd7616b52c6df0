"""Tests for reservation reconciliation and the listing manager."""

from datetime import date, timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from rental_occupancy.core.ical_parser import CalendarEvent, iter_events
from rental_occupancy.core.manager import OccupancyManager
from rental_occupancy.core.reconciler import (
    ReservationDraft,
    reconcile_events,
    upsert_reservations,
)
from rental_occupancy.db.models import Listing, Reservation
from rental_occupancy.errors import (
    EmptyFeed,
    FetchTimeout,
    ListingNotFound,
    StorageWriteFailure,
)
from tests.conftest import SAMPLE_ICS, StaticFeedSource, utc

FEED_URL = "https://www.airbnb.com/calendar/ical/12345.ics"


@pytest.fixture
def feed_source():
    return StaticFeedSource(events=list(iter_events(SAMPLE_ICS)))


@pytest.fixture
def manager(settings, database, feed_source):
    return OccupancyManager(settings, database, feed_source=feed_source)


async def _rows(database, listing_id):
    async with database.session() as session:
        result = await session.execute(
            select(Reservation)
            .where(Reservation.listing_id == listing_id)
            .order_by(Reservation.start_date)
        )
        return result.scalars().all()


class TestReconcileEvents:
    """Test cases for reconcile_events."""

    def test_dates_truncated_in_utc(self):
        events = [CalendarEvent(start=utc(2024, 3, 1, 15), end=utc(2024, 3, 4, 11))]

        drafts = reconcile_events(7, events)

        assert drafts == [ReservationDraft(7, date(2024, 3, 1), date(2024, 3, 4), "airbnb")]

    def test_duplicate_keys_collapse(self):
        events = [
            CalendarEvent(start=utc(2024, 3, 1), end=utc(2024, 3, 4)),
            CalendarEvent(start=utc(2024, 3, 1, 14), end=utc(2024, 3, 4, 10)),
        ]

        assert len(reconcile_events(1, events)) == 1

    def test_caller_source(self):
        events = [CalendarEvent(start=utc(2024, 3, 1), end=utc(2024, 3, 4))]
        assert reconcile_events(1, events, source="vrbo")[0].source == "vrbo"


class TestUpsertReservations:
    """Test cases for upsert_reservations."""

    async def test_existing_row_keeps_other_fields(self, database):
        async with database.session() as session:
            listing = Listing(owner_id="owner-1", title="Beach House")
            session.add(listing)
            await session.flush()
            session.add(Reservation(
                listing_id=listing.id,
                start_date=date(2024, 3, 1),
                end_date=date(2024, 3, 5),
                source="manual",
                notes="Early check-in",
            ))
            listing_id = listing.id

        drafts = [
            ReservationDraft(listing_id, date(2024, 3, 1), date(2024, 3, 5), "airbnb"),
            ReservationDraft(listing_id, date(2024, 3, 10), date(2024, 3, 15), "airbnb"),
        ]
        async with database.session() as session:
            written = await upsert_reservations(session, drafts)

        rows = await _rows(database, listing_id)
        assert written == 2
        assert len(rows) == 2
        assert rows[0].source == "airbnb"
        assert rows[0].notes == "Early check-in"
        assert rows[1].notes is None

    async def test_empty_batch(self, database):
        async with database.session() as session:
            assert await upsert_reservations(session, []) == 0

    async def test_storage_error_wrapped(self):
        session = MagicMock()
        session.get_bind.return_value.dialect.name = "sqlite"
        session.execute = AsyncMock(
            side_effect=OperationalError("INSERT", {}, Exception("database is locked"))
        )
        drafts = [ReservationDraft(1, date(2024, 3, 1), date(2024, 3, 5), "airbnb")]

        with pytest.raises(StorageWriteFailure, match="database is locked"):
            await upsert_reservations(session, drafts)

    async def test_large_batch(self, database):
        async with database.session() as session:
            listing = Listing(owner_id="owner-1", title="Beach House")
            session.add(listing)
            await session.flush()
            listing_id = listing.id

        first = date(2000, 1, 1)
        drafts = [
            ReservationDraft(listing_id, first + timedelta(days=i), first + timedelta(days=i + 1), "airbnb")
            for i in range(6000)
        ]
        async with database.session() as session:
            written = await upsert_reservations(session, drafts)

        assert written == 6000
        assert len(await _rows(database, listing_id)) == 6000


class TestListings:
    """Test cases for listing management."""

    async def test_create_and_list_by_owner(self, manager):
        first = await manager.create_listing("owner-1", "  Beach House ")
        second = await manager.create_listing("owner-1", "City Flat")
        await manager.create_listing("owner-2", "Cabin")

        listings = await manager.get_listings("owner-1")

        assert first["title"] == "Beach House"
        assert [l["id"] for l in listings] == [second["id"], first["id"]]

    async def test_blank_title_rejected(self, manager):
        with pytest.raises(ValueError):
            await manager.create_listing("owner-1", "   ")

    async def test_missing_listing(self, manager):
        with pytest.raises(ListingNotFound):
            await manager.get_listing(999)


class TestImportFeed:
    """Test cases for importing feeds."""

    async def test_import_creates_reservations(self, manager, database, feed_source):
        listing = await manager.create_listing("owner-1", "Beach House")

        result = await manager.import_feed(listing["id"], FEED_URL)

        assert result.events == 2
        assert result.written == 2
        assert feed_source.calls == [FEED_URL]

        reservations = await manager.get_reservations(listing["id"])
        assert [(r["start_date"], r["end_date"], r["source"]) for r in reservations] == [
            ("2024-03-01", "2024-03-05", "airbnb"),
            ("2024-03-10", "2024-03-15", "airbnb"),
        ]

        stored = await manager.get_listing(listing["id"])
        assert stored["ical_url"] == FEED_URL
        assert stored["last_imported_at"] is not None
        assert stored["last_import_error"] is None

    async def test_reimport_is_idempotent(self, manager, database):
        listing = await manager.create_listing("owner-1", "Beach House")

        await manager.import_feed(listing["id"], FEED_URL)
        first = [(r.listing_id, r.start_date, r.end_date) for r in await _rows(database, listing["id"])]
        await manager.import_feed(listing["id"], FEED_URL)
        second = [(r.listing_id, r.start_date, r.end_date) for r in await _rows(database, listing["id"])]

        assert first == second
        assert len(second) == 2

    async def test_same_dates_on_other_listing_kept_apart(self, manager, database):
        a = await manager.create_listing("owner-1", "A")
        b = await manager.create_listing("owner-1", "B")

        await manager.import_feed(a["id"], FEED_URL)
        await manager.import_feed(b["id"], FEED_URL)

        assert len(await _rows(database, a["id"])) == 2
        assert len(await _rows(database, b["id"])) == 2

    async def test_empty_feed(self, settings, database):
        manager = OccupancyManager(settings, database, feed_source=StaticFeedSource())
        listing = await manager.create_listing("owner-1", "Beach House")

        with pytest.raises(EmptyFeed, match="No events found"):
            await manager.import_feed(listing["id"], FEED_URL)

    async def test_fetch_failure_recorded(self, settings, database):
        source = StaticFeedSource(error=FetchTimeout("Timed out after 10s fetching iCal data"))
        manager = OccupancyManager(settings, database, feed_source=source)
        listing = await manager.create_listing("owner-1", "Beach House")

        with pytest.raises(FetchTimeout):
            await manager.import_feed(listing["id"], FEED_URL)

        stored = await manager.get_listing(listing["id"])
        assert stored["last_import_error"] == "Timed out after 10s fetching iCal data"
        assert await _rows(database, listing["id"]) == []

    async def test_unknown_listing(self, manager, feed_source):
        with pytest.raises(ListingNotFound):
            await manager.import_feed(42, FEED_URL)
        assert feed_source.calls == []

    async def test_listing_deleted_during_fetch(self, settings, database):
        class DeletingFeedSource(StaticFeedSource):
            async def fetch_events(self, url):
                async with database.session() as session:
                    await session.delete(await session.get(Listing, self.listing_id))
                return await super().fetch_events(url)

        source = DeletingFeedSource(events=list(iter_events(SAMPLE_ICS)))
        manager = OccupancyManager(settings, database, feed_source=source)
        source.listing_id = (await manager.create_listing("owner-1", "Beach House"))["id"]

        with pytest.raises(ListingNotFound):
            await manager.import_feed(source.listing_id, FEED_URL)
        assert await _rows(database, source.listing_id) == []

    async def test_reservation_range_query(self, manager):
        listing = await manager.create_listing("owner-1", "Beach House")
        await manager.import_feed(listing["id"], FEED_URL)

        later = await manager.get_reservations(listing["id"], from_date=date(2024, 3, 6))
        earlier = await manager.get_reservations(listing["id"], to_date=date(2024, 3, 9))

        assert [r["start_date"] for r in later] == ["2024-03-10"]
        assert [r["start_date"] for r in earlier] == ["2024-03-01"]


class TestOccupancy:
    """Test cases for occupancy snapshots."""

    async def test_occupancy_for_month(self, manager):
        listing = await manager.create_listing("owner-1", "Beach House")
        await manager.import_feed(listing["id"], FEED_URL)

        result = await manager.get_occupancy(listing["id"], year=2024, month=3)

        # 1-5 and 10-15 March, inclusive: 11 of 31 days
        assert result["occupied_days"] == 11
        assert result["total_days"] == 31
        assert result["rate"] == 35
        assert result["suggested_price"] == 80.0

    async def test_occupancy_other_month(self, manager):
        listing = await manager.create_listing("owner-1", "Beach House")
        await manager.import_feed(listing["id"], FEED_URL)

        result = await manager.get_occupancy(listing["id"], year=2024, month=4)

        assert result["rate"] == 0
        assert result["total_days"] == 30

    async def test_occupancy_unknown_listing(self, manager):
        with pytest.raises(ListingNotFound):
            await manager.get_occupancy(5, year=2024, month=3)

    async def test_health_check(self, manager):
        assert (await manager.health_check())["database"] == "ok"
