"""Database models for rental occupancy."""

from datetime import datetime, date
from enum import Enum
from typing import Optional

from sqlalchemy import (
    Date,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def utcnow() -> datetime:
    """Naive UTC timestamp, as stored in DateTime columns."""
    return datetime.utcnow().replace(microsecond=0)


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


class ReservationSource(str, Enum):
    """Where a reservation came from."""

    MANUAL = "manual"
    AIRBNB = "airbnb"
    VRBO = "vrbo"
    BOOKING = "booking"
    OTHER = "other"


class Listing(Base):
    """A rentable property owned by a user."""

    __tablename__ = "listings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    owner_id: Mapped[str] = mapped_column(String(100), index=True)
    title: Mapped[str] = mapped_column(String(255))
    ical_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    last_imported_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    last_import_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    # Relationships
    reservations: Mapped[list["Reservation"]] = relationship(
        "Reservation", back_populates="listing", order_by="Reservation.start_date"
    )

    def __repr__(self) -> str:
        return f"<Listing {self.id} {self.title}>"


class Reservation(Base):
    """A booked date range on a listing.

    Keyed by (listing_id, start_date, end_date); re-importing a feed
    updates the matching row instead of adding a new one.
    """

    __tablename__ = "reservations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    listing_id: Mapped[int] = mapped_column(ForeignKey("listings.id"))
    start_date: Mapped[date] = mapped_column(Date)
    end_date: Mapped[date] = mapped_column(Date)
    source: Mapped[str] = mapped_column(String(20), default=ReservationSource.MANUAL.value)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    # Relationships
    listing: Mapped["Listing"] = relationship("Listing", back_populates="reservations")

    __table_args__ = (
        UniqueConstraint(
            "listing_id", "start_date", "end_date",
            name="uq_reservation_dates",
        ),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "listing_id": self.listing_id,
            "start_date": self.start_date.isoformat(),
            "end_date": self.end_date.isoformat(),
            "source": self.source,
            "notes": self.notes,
        }

    def __repr__(self) -> str:
        return f"<Reservation {self.listing_id} {self.start_date}-{self.end_date}>"
