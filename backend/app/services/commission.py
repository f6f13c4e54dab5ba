"""Platform commission arithmetic.

All amounts are integer pence. The platform fee is added on top of the
instructor's rate: the learner pays ``base + fee`` and the instructor keeps
``base``. Only the fee is rounded (half up), so ``total - base`` is always
exactly the fee.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from numbers import Real
from typing import Optional

from app.config import settings
from app.errors import InvalidAmount


@dataclass(frozen=True)
class PaymentAmounts:
    total_amount_pence: int
    platform_fee_pence: int
    instructor_amount_pence: int


def round_half_up(value: Real | Decimal) -> int:
    """Round to the nearest integer with halves going up (``2.5 -> 3``)."""
    return int(Decimal(str(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def validate_amount(amount: object, name: str = "amount") -> int:
    """Return *amount* as an int or raise :class:`InvalidAmount`.

    Booleans, NaN/inf, fractional and negative values are rejected.
    """
    if isinstance(amount, bool) or not isinstance(amount, Real):
        raise InvalidAmount(f"{name} must be a whole number of pence")
    if not math.isfinite(amount):
        raise InvalidAmount(f"{name} must be finite")
    if amount != int(amount):
        raise InvalidAmount(f"{name} must be a whole number of pence")
    if amount < 0:
        raise InvalidAmount(f"{name} must not be negative")
    return int(amount)


def _fee_percentage(fee_pct: Optional[int]) -> int:
    pct = settings.PLATFORM_FEE_PERCENTAGE if fee_pct is None else fee_pct
    if isinstance(pct, bool) or not isinstance(pct, Real) or not 0 <= pct <= 100:
        raise InvalidAmount("fee percentage must be between 0 and 100")
    return pct


def platform_fee(base_amount_pence: int, fee_pct: Optional[int] = None) -> int:
    """Commission on *base_amount_pence*, rounded half up."""
    base = validate_amount(base_amount_pence, "base_amount_pence")
    pct = _fee_percentage(fee_pct)
    return round_half_up(Decimal(base) * Decimal(str(pct)) / Decimal(100))


def total_payable(base_amount_pence: int, fee_pct: Optional[int] = None) -> int:
    """What the learner pays for *base_amount_pence*: base plus platform fee."""
    base = validate_amount(base_amount_pence, "base_amount_pence")
    return base + platform_fee(base, fee_pct)


def payment_amounts(base_amount_pence: int, fee_pct: Optional[int] = None) -> PaymentAmounts:
    """Full breakdown for a charge on *base_amount_pence*."""
    base = validate_amount(base_amount_pence, "base_amount_pence")
    fee = platform_fee(base, fee_pct)
    return PaymentAmounts(
        total_amount_pence=base + fee,
        platform_fee_pence=fee,
        instructor_amount_pence=base,
    )


def payment_from_hours(hours: float, hourly_rate_pence: int) -> int:
    """Base amount for *hours* of lessons at *hourly_rate_pence*."""
    rate = validate_amount(hourly_rate_pence, "hourly_rate_pence")
    if isinstance(hours, bool) or not isinstance(hours, Real) or not math.isfinite(hours) or hours <= 0:
        raise InvalidAmount("hours must be a positive number")
    return round_half_up(Decimal(str(hours)) * Decimal(rate))
