"""
Pricing & duration

Every rental month is exactly 30 days, so a 12 month rental runs 360 days.
The deposit is always one month's rate, whatever the duration.
"""

import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional, Union

from errors import InputError

DAYS_PER_MONTH = 30
MIN_MONTHS = 1
MAX_MONTHS = 12

CENTS = Decimal("0.01")

Number = Union[int, float, Decimal, str]


@dataclass(frozen=True)
class Quote:
    monthly_rate: Decimal
    months: int
    pickup_date: datetime
    return_date: datetime
    rental_amount: Decimal
    security_deposit: Decimal
    total_due_now: Decimal

    @property
    def days(self) -> int:
        return self.months * DAYS_PER_MONTH


def to_money(value: Number) -> Decimal:
    # str() keeps floats like 499.99 from turning into binary noise
    return Decimal(str(value)).quantize(CENTS, rounding=ROUND_HALF_UP)


def return_date_for(pickup_date: datetime, months: int) -> datetime:
    return pickup_date + timedelta(days=months * DAYS_PER_MONTH)


def quote(monthly_rate: Number, pickup_date: Optional[datetime], months: int) -> Quote:
    """Price a rental.

    Raises InputError when the input cannot be priced.
    """
    if not isinstance(pickup_date, datetime):
        raise InputError("Please select a pickup date")
    if isinstance(months, bool) or not isinstance(months, int):
        raise InputError("Rental duration must be a whole number of months")
    if months < MIN_MONTHS or months > MAX_MONTHS:
        raise InputError(
            f"Rental duration must be between {MIN_MONTHS} and {MAX_MONTHS} months"
        )
    rate = to_money(monthly_rate)
    if rate <= 0:
        raise InputError("Monthly rate must be positive")

    rental_amount = rate * months
    deposit = rate
    return Quote(
        monthly_rate=rate,
        months=months,
        pickup_date=pickup_date,
        return_date=return_date_for(pickup_date, months),
        rental_amount=rental_amount,
        security_deposit=deposit,
        total_due_now=rental_amount + deposit,
    )


def try_quote(monthly_rate: Number, pickup_date: Optional[datetime], months: Optional[int]) -> Optional[Quote]:
    """Like quote(), but None while the form is not ready yet."""
    if pickup_date is None or not months or months <= 0:
        return None
    return quote(monthly_rate, pickup_date, months)


def rental_days(pickup_date: datetime, return_date: datetime) -> int:
    seconds = (return_date - pickup_date).total_seconds()
    return math.ceil(seconds / timedelta(days=1).total_seconds())


def display_months(days: int) -> int:
    return math.ceil(days / DAYS_PER_MONTH)
