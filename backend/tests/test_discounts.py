"""Tests for discount calculation and discount codes."""
from datetime import datetime, timedelta

import pytest
from sqlalchemy import select

from app.errors import InvalidAmount, ValidationError
from app.models.discount_code import DiscountCode
from app.services.discounts import (
    calculate_discount, discounted_amounts, record_discount_usage, resolve_discount,
)


def test_ten_percent_discount_then_fee():
    """3000 with a 10% code: discount 300, base 2700, fee 486, total 3186."""
    discount = calculate_discount(3000, "percentage", 10)
    amounts = discounted_amounts(3000, discount)

    assert discount == 300
    assert amounts.discounted_amount_pence == 2700
    assert amounts.platform_fee_pence == 486
    assert amounts.total_amount_pence == 3186
    assert amounts.instructor_amount_pence == 2700


def test_fixed_discount_capped_at_base():
    assert calculate_discount(3000, "fixed_amount", 500) == 500
    assert calculate_discount(300, "fixed_amount", 500) == 300


def test_percentage_over_hundred_clamped():
    assert calculate_discount(3000, "percentage", 150) == 3000


def test_unknown_discount_type():
    with pytest.raises(ValidationError):
        calculate_discount(3000, "bogof", 10)


def test_negative_base_rejected():
    with pytest.raises(InvalidAmount):
        calculate_discount(-1, "percentage", 10)


def test_full_discount_leaves_nothing_to_pay():
    amounts = discounted_amounts(3000, 3000)
    assert amounts.total_amount_pence == 0
    assert amounts.platform_fee_pence == 0


@pytest.fixture
async def codes(test_db):
    now = datetime.utcnow()
    test_db.add_all([
        DiscountCode(code="TENOFF", discount_type="percentage", discount_value=10),
        DiscountCode(code="FIVER", discount_type="fixed_amount", discount_value=500, max_uses=1),
        DiscountCode(code="OLD", discount_type="percentage", discount_value=50, expires_at=now - timedelta(days=1)),
        DiscountCode(code="OFF", discount_type="percentage", discount_value=50, is_active=False),
        DiscountCode(code="USEDUP", discount_type="fixed_amount", discount_value=500, max_uses=2, uses_count=2),
    ])
    await test_db.commit()


async def test_resolve_valid_code(test_db, codes):
    resolved = await resolve_discount(test_db, "TENOFF", 3000)
    assert resolved.applied is True
    assert resolved.discount_amount_pence == 300


@pytest.mark.parametrize("code", ["NOPE", "OLD", "OFF", "USEDUP"])
async def test_unusable_code_gives_zero_discount(test_db, codes, code):
    resolved = await resolve_discount(test_db, code, 3000)
    assert resolved.applied is False
    assert resolved.discount_amount_pence == 0


async def test_no_code(test_db):
    resolved = await resolve_discount(test_db, None, 3000)
    assert resolved.applied is False
    assert resolved.code is None


async def test_record_usage_increments_counter(test_db, codes):
    await record_discount_usage(test_db, "FIVER", 500)
    await record_discount_usage(test_db, "TENOFF", 0)

    result = await test_db.execute(
        select(DiscountCode.code, DiscountCode.uses_count).where(DiscountCode.code.in_(["FIVER", "TENOFF"]))
    )
    counts = dict(result.all())
    assert counts == {"FIVER": 1, "TENOFF": 0}

    # max_uses=1 is now exhausted
    resolved = await resolve_discount(test_db, "FIVER", 3000)
    assert resolved.applied is False
