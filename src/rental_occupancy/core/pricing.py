"""Occupancy-based price suggestion."""

from decimal import Decimal
from typing import Union

HIGH_OCCUPANCY = 80
LOW_OCCUPANCY = 40
HIGH_MULTIPLIER = Decimal("1.2")
LOW_MULTIPLIER = Decimal("0.8")

DEFAULT_BASE_PRICE = Decimal("100")


def suggest_price(
    occupancy_rate: Union[int, float],
    base_price: Union[Decimal, int, str] = DEFAULT_BASE_PRICE,
) -> Decimal:
    """Suggest a nightly price from an occupancy percentage.

    Above 80% the base price goes up 20%, below 40% it goes down 20%,
    otherwise it is unchanged. No demand or history modelling.
    """
    if not 0 <= occupancy_rate <= 100:
        raise ValueError(f"Occupancy rate must be between 0 and 100, got {occupancy_rate}")

    base = Decimal(str(base_price))
    if occupancy_rate > HIGH_OCCUPANCY:
        price = base * HIGH_MULTIPLIER
    elif occupancy_rate < LOW_OCCUPANCY:
        price = base * LOW_MULTIPLIER
    else:
        price = base
    return price.quantize(Decimal("0.01"))
