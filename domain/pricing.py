"""Pricing Calculator"""
from decimal import Decimal
from typing import Iterable, Optional

from domain.value_objects import Money

DEFAULT_CURRENCY = "KES"
_MINUTES_PER_HOUR = Decimal(60)


def calculate_total(
    hourly_rate: Decimal,
    durations_minutes: Iterable[int],
    currency: Optional[str] = None,
    default_currency: str = DEFAULT_CURRENCY
) -> Money:
    """Sum hourly_rate * minutes / 60 over all slots, unrounded"""
    rate = Decimal(str(hourly_rate))
    total = sum(
        (rate * Decimal(minutes) / _MINUTES_PER_HOUR for minutes in durations_minutes),
        Decimal(0)
    )
    return Money(amount=total, currency=currency or default_currency)
