"""Monthly occupancy from stored reservations."""

import calendar
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Iterable, Protocol


class DateRange(Protocol):
    start_date: date
    end_date: date


@dataclass(frozen=True)
class OccupancySnapshot:
    """Occupancy of one listing for one month. Computed, never stored."""

    month: int
    year: int
    occupied_day_count: int
    total_day_count: int
    rate: int

    def to_dict(self) -> dict:
        return {
            "month": self.month,
            "year": self.year,
            "occupied_days": self.occupied_day_count,
            "total_days": self.total_day_count,
            "rate": self.rate,
        }


def days_in_month(year: int, month: int) -> int:
    if not 1 <= month <= 12:
        raise ValueError(f"Month must be between 1 and 12, got {month}")
    return calendar.monthrange(year, month)[1]


def calculate_occupancy(
    reservations: Iterable[DateRange], year: int, month: int
) -> OccupancySnapshot:
    """Compute the share of days in a month covered by reservations.

    Reservations count toward the month they start in. A stay that starts
    in an earlier month and runs into this one is not counted here; a stay
    that starts here and runs into the next month only counts its days in
    this month. End dates are inclusive.

    Args:
        reservations: Objects with ``start_date`` and ``end_date``
        year: Reference year
        month: Reference month, 1-12

    Returns:
        OccupancySnapshot with the rate as a whole percentage
    """
    total = days_in_month(year, month)
    occupied: set[int] = set()

    for reservation in reservations:
        start = reservation.start_date
        if start.year != year or start.month != month:
            continue

        day = start
        while day <= reservation.end_date and day.month == month:
            occupied.add(day.day)
            day += timedelta(days=1)

    rate = round(100 * len(occupied) / total)
    return OccupancySnapshot(
        month=month,
        year=year,
        occupied_day_count=len(occupied),
        total_day_count=total,
        rate=rate,
    )
