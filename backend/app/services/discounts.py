"""Discount application and discount-code bookkeeping.

The discount always comes off the instructor's base amount first, and the
platform fee is then computed on the discounted base, so a discount also
reduces the commission the platform takes.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.errors import ValidationError
from app.models.discount_code import DiscountCode
from app.services.commission import platform_fee, round_half_up, validate_amount

logger = logging.getLogger(__name__)

DISCOUNT_TYPES = ("percentage", "fixed_amount")


@dataclass(frozen=True)
class DiscountedAmounts:
    original_amount_pence: int
    discount_amount_pence: int
    discounted_amount_pence: int
    platform_fee_pence: int
    total_amount_pence: int
    instructor_amount_pence: int


@dataclass(frozen=True)
class ResolvedDiscount:
    code: Optional[str]
    discount_amount_pence: int
    applied: bool


def calculate_discount(base_amount_pence: int, discount_type: str, discount_value: int) -> int:
    """Discount in pence for *base_amount_pence*, always within ``[0, base]``."""
    base = validate_amount(base_amount_pence, "base_amount_pence")
    value = validate_amount(discount_value, "discount_value")

    if discount_type == "percentage":
        discount = round_half_up(Decimal(base) * Decimal(value) / Decimal(100))
        return max(0, min(discount, base))
    if discount_type == "fixed_amount":
        return min(value, base)
    raise ValidationError(f"Unknown discount type: {discount_type}")


def discounted_amounts(
    base_amount_pence: int,
    discount_amount_pence: int,
    fee_pct: Optional[int] = None,
) -> DiscountedAmounts:
    """Apply *discount_amount_pence* to the base, then add the platform fee."""
    base = validate_amount(base_amount_pence, "base_amount_pence")
    discount = min(validate_amount(discount_amount_pence, "discount_amount_pence"), base)
    discounted = base - discount
    fee = platform_fee(discounted, fee_pct)
    return DiscountedAmounts(
        original_amount_pence=base,
        discount_amount_pence=discount,
        discounted_amount_pence=discounted,
        platform_fee_pence=fee,
        total_amount_pence=discounted + fee,
        instructor_amount_pence=discounted,
    )


def _is_usable(discount: DiscountCode, now: datetime) -> bool:
    if not discount.is_active:
        return False
    if discount.expires_at is not None and discount.expires_at <= now:
        return False
    if discount.max_uses is not None and discount.uses_count >= discount.max_uses:
        return False
    return discount.discount_type in DISCOUNT_TYPES


async def resolve_discount(
    db: AsyncSession,
    code: Optional[str],
    base_amount_pence: int,
) -> ResolvedDiscount:
    """Look up *code* and compute its discount on *base_amount_pence*.

    Unknown, inactive, expired or exhausted codes give a zero discount rather
    than an error.
    """
    if not code:
        return ResolvedDiscount(code=None, discount_amount_pence=0, applied=False)

    result = await db.execute(select(DiscountCode).where(DiscountCode.code == code))
    discount = result.scalar_one_or_none()

    if discount is None or not _is_usable(discount, datetime.utcnow()):
        logger.warning(f"Discount code {code!r} is unknown or not usable; applying no discount")
        return ResolvedDiscount(code=code, discount_amount_pence=0, applied=False)

    amount = calculate_discount(base_amount_pence, discount.discount_type, discount.discount_value)
    return ResolvedDiscount(code=code, discount_amount_pence=amount, applied=amount > 0)


async def record_discount_usage(db: AsyncSession, code: Optional[str], discount_amount_pence: int) -> None:
    """Increment the usage counter for *code* when it actually discounted something.

    Call after the payment itself is committed: this commits on its own and
    a failure is logged without touching the payment.
    """
    if not code or discount_amount_pence <= 0:
        return
    try:
        await db.execute(
            update(DiscountCode)
            .where(DiscountCode.code == code)
            .values(uses_count=DiscountCode.uses_count + 1)
        )
        await db.commit()
    except Exception as e:
        await db.rollback()
        logger.error(f"Failed to record usage for discount code {code!r}: {e}")
