"""Service functions for lesson-credit ledger operations.

The ledger (``credit_ledger``) is the source of truth. The ``learner_credits``
row is a cache of its sum and is updated in the same unit of work as every
append. Mutations lock the balance row with SELECT FOR UPDATE, and the row's
version counter rejects a stale concurrent write. Functions flush; the caller
commits.
"""
import logging
from decimal import Decimal
from numbers import Real
from typing import List, Optional

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from app.errors import InsufficientCredit, NotFoundError, ValidationError
from app.models.credit_ledger import CreditLedgerEntry
from app.models.learner_credit import LearnerCredit
from app.services.commission import validate_amount

logger = logging.getLogger(__name__)


def hours_to_minutes(hours: float) -> int:
    """Convert a positive number of hours to whole minutes."""
    if isinstance(hours, bool) or not isinstance(hours, Real) or hours <= 0:
        raise ValidationError("hours must be a positive number")
    minutes = Decimal(str(hours)) * 60
    if minutes != minutes.to_integral_value():
        raise ValidationError("hours must be a whole number of minutes")
    return int(minutes)


async def _locked_balance(db: AsyncSession, learner_id: str, instructor_id: str) -> Optional[LearnerCredit]:
    result = await db.execute(
        select(LearnerCredit)
        .where(
            LearnerCredit.learner_id == learner_id,
            LearnerCredit.instructor_id == instructor_id,
        )
        .with_for_update()
    )
    return result.scalar_one_or_none()


async def purchase_credits(
    db: AsyncSession,
    learner_id: str,
    instructor_id: str,
    hours: float,
    hourly_rate_pence: int,
    order_id: Optional[str] = None,
) -> CreditLedgerEntry:
    """
    Add purchased hours to a learner's credit with an instructor.

    Appends a PURCHASE entry and creates or updates the balance row, storing
    the latest hourly rate.
    """
    minutes = hours_to_minutes(hours)
    rate = validate_amount(hourly_rate_pence, "hourly_rate_pence")

    credit = await _locked_balance(db, learner_id, instructor_id)
    if credit is None:
        credit = LearnerCredit(
            learner_id=learner_id,
            instructor_id=instructor_id,
            minutes_purchased=minutes,
            minutes_used=0,
            minutes_adjusted=0,
            hourly_rate_pence=rate,
            purchase_payment_id=order_id,
            is_active=True,
        )
        db.add(credit)
    else:
        credit.minutes_purchased += minutes
        credit.hourly_rate_pence = rate
        credit.is_active = True

    entry = CreditLedgerEntry(
        learner_id=learner_id,
        instructor_id=instructor_id,
        delta_minutes=minutes,
        source="PURCHASE",
        order_id=order_id,
        note=f"Credit purchase: {hours} hours",
    )
    db.add(entry)
    await db.flush()

    logger.info(f"Credited {minutes} minutes to learner {learner_id} with instructor {instructor_id}")
    return entry


async def consume_credits(
    db: AsyncSession,
    learner_id: str,
    instructor_id: str,
    hours: float,
    lesson_id: Optional[str] = None,
    order_id: Optional[str] = None,
) -> CreditLedgerEntry:
    """
    Spend credit hours on a lesson.

    Raises NotFoundError when there is no active credit account and
    InsufficientCredit when the remaining balance is too small; nothing is
    written in either case.
    """
    minutes = hours_to_minutes(hours)

    credit = await _locked_balance(db, learner_id, instructor_id)
    if credit is None or not credit.is_active:
        raise NotFoundError("No active credit account found with this instructor")

    if credit.remaining_minutes < minutes:
        raise InsufficientCredit(
            available_minutes=credit.remaining_minutes,
            requested_minutes=minutes,
        )

    credit.minutes_used += minutes
    entry = CreditLedgerEntry(
        learner_id=learner_id,
        instructor_id=instructor_id,
        delta_minutes=-minutes,
        source="CONSUMPTION",
        order_id=order_id,
        lesson_id=lesson_id,
        note=f"Credit usage: {hours} hours",
    )
    db.add(entry)
    await db.flush()

    logger.info(f"Consumed {minutes} minutes for learner {learner_id} with instructor {instructor_id}")
    return entry


async def adjust_credits(
    db: AsyncSession,
    learner_id: str,
    instructor_id: str,
    delta_minutes: int,
    source: str,
    note: str,
    order_id: Optional[str] = None,
    lesson_id: Optional[str] = None,
) -> CreditLedgerEntry:
    """Record a REFUND or ADJUSTMENT movement. The balance may not go negative."""
    if source not in ("REFUND", "ADJUSTMENT"):
        raise ValidationError(f"Adjustments must use REFUND or ADJUSTMENT, not {source}")
    if isinstance(delta_minutes, bool) or not isinstance(delta_minutes, int) or delta_minutes == 0:
        raise ValidationError("delta_minutes must be a non-zero whole number")

    credit = await _locked_balance(db, learner_id, instructor_id)
    if credit is None:
        raise NotFoundError("No credit account found with this instructor")

    if credit.remaining_minutes + delta_minutes < 0:
        raise InsufficientCredit(
            available_minutes=credit.remaining_minutes,
            requested_minutes=-delta_minutes,
        )

    credit.minutes_adjusted += delta_minutes
    entry = CreditLedgerEntry(
        learner_id=learner_id,
        instructor_id=instructor_id,
        delta_minutes=delta_minutes,
        source=source,
        order_id=order_id,
        lesson_id=lesson_id,
        note=note,
    )
    db.add(entry)
    await db.flush()
    return entry


async def get_balance(db: AsyncSession, learner_id: str, instructor_id: str) -> Optional[LearnerCredit]:
    """Read the cached balance row for a pair without locking it."""
    result = await db.execute(
        select(LearnerCredit).where(
            LearnerCredit.learner_id == learner_id,
            LearnerCredit.instructor_id == instructor_id,
        )
    )
    return result.scalar_one_or_none()


async def replay_balance(db: AsyncSession, learner_id: str, instructor_id: str) -> int:
    """Remaining minutes for a pair computed from the ledger alone."""
    result = await db.execute(
        select(func.coalesce(func.sum(CreditLedgerEntry.delta_minutes), 0)).where(
            CreditLedgerEntry.learner_id == learner_id,
            CreditLedgerEntry.instructor_id == instructor_id,
        )
    )
    return int(result.scalar_one())


async def list_credits(
    db: AsyncSession,
    learner_id: str,
    instructor_id: Optional[str] = None,
) -> List[LearnerCredit]:
    query = select(LearnerCredit).where(
        LearnerCredit.learner_id == learner_id,
        LearnerCredit.is_active.is_(True),
    )
    if instructor_id:
        query = query.where(LearnerCredit.instructor_id == instructor_id)
    result = await db.execute(query.order_by(LearnerCredit.created_at))
    return list(result.scalars().all())


async def list_ledger(db: AsyncSession, learner_id: str, instructor_id: str) -> List[CreditLedgerEntry]:
    result = await db.execute(
        select(CreditLedgerEntry)
        .where(
            CreditLedgerEntry.learner_id == learner_id,
            CreditLedgerEntry.instructor_id == instructor_id,
        )
        .order_by(CreditLedgerEntry.created_at)
    )
    return list(result.scalars().all())
