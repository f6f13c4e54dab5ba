"""Friday payout batching for instructors.

Payout rules
------------
1. A payout run is keyed by a Friday. Its lesson period is the preceding
   Friday 00:00 through Thursday 23:59:59, inclusive.
2. A lesson is eligible when its booking is ``completed``, it ended inside
   the period, and its linked payment ``succeeded`` without having been a
   destination charge.
3. Eligible lessons are grouped by instructor. The payout amount is the sum
   of ``instructor_amount_pence``; the platform fee is summed for reporting
   only, since the stored instructor amount already excludes it.
4. At most one payout exists per (instructor, payout date). A repeat run
   returns the existing payout untouched.
5. One instructor's failure never stops the rest of the batch. A failed
   payout stays ``failed`` and is re-driven by :func:`retry_failed_payouts`
   with exponential backoff. Stripe rejections that cannot succeed on retry
   (an invalid request or revoked access) are left for manual handling at once.
6. A group whose instructor share totals zero is settled as ``paid`` with
   no transfer.
"""
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from typing import Dict, List, Optional, Tuple

import stripe
from sqlalchemy import select, func, and_, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.config import settings
from app.errors import (
    InvalidPayoutDate, LPlateError, ValidationError, handle_stripe_error, is_retryable_stripe_error,
)
from app.models.booking import Booking
from app.models.payment import Payment
from app.models.payout import Payout, PayoutPayment
from app.models.stripe_connect_account import StripeConnectAccount
from app.services.stripe_gateway import PaymentGateway
from app.services.transitions import PAYOUT_TRANSITIONS, apply_transition

logger = logging.getLogger(__name__)

FRIDAY = 4  # date.weekday()


@dataclass(frozen=True)
class EligibleLesson:
    booking_id: str
    instructor_id: str
    payment_id: str
    instructor_amount_pence: int
    platform_fee_pence: int


@dataclass
class InstructorPayoutResult:
    instructor_id: str
    success: bool
    message: str = ""
    payout_id: Optional[str] = None
    stripe_transfer_id: Optional[str] = None
    amount_pence: int = 0
    lesson_count: int = 0
    error: Optional[str] = None


@dataclass
class PayoutBatchResult:
    payout_date: date
    lesson_period_start: date
    lesson_period_end: date
    total_instructors: int = 0
    successful_payouts: int = 0
    failed_payouts: int = 0
    results: List[InstructorPayoutResult] = field(default_factory=list)


# ── Dates ─────────────────────────────────────────────────────────────────────

def ensure_friday(payout_date: date) -> None:
    if payout_date.weekday() != FRIDAY:
        raise InvalidPayoutDate(
            "Payout date must be a Friday",
            payout_date=payout_date.isoformat(),
        )


def lesson_period(payout_date: date) -> Tuple[datetime, datetime]:
    """Inclusive datetime window of lessons settled by the payout on *payout_date*."""
    ensure_friday(payout_date)
    start = datetime.combine(payout_date - timedelta(days=7), time.min)
    end = datetime.combine(payout_date - timedelta(days=1), time.max)
    return start, end


def next_payout_date(completed_at: date | datetime) -> date:
    """The Friday payout run that settles a lesson completed on *completed_at*.

    The run on a Friday covers lessons up to the day before, so a lesson
    finished on a Friday waits a full week.
    """
    day = completed_at.date() if isinstance(completed_at, datetime) else completed_at
    days_until_friday = (FRIDAY - day.weekday()) % 7
    if days_until_friday == 0:
        days_until_friday = 7
    return day + timedelta(days=days_until_friday)


def fridays_in_range(start: date, end: date) -> List[date]:
    """Every Friday between *start* and *end*, inclusive."""
    current = start + timedelta(days=(FRIDAY - start.weekday()) % 7)
    fridays = []
    while current <= end:
        fridays.append(current)
        current += timedelta(days=7)
    return fridays


# ── Selection ─────────────────────────────────────────────────────────────────

async def find_eligible_lessons(db: AsyncSession, start: datetime, end: datetime) -> List[EligibleLesson]:
    """Completed lessons ending in ``[start, end]`` with a succeeded payment.

    Destination-charge payments are left out: the charge already paid the
    instructor.
    """
    result = await db.execute(
        select(
            Booking.uuid,
            Booking.instructor_id,
            Payment.uuid,
            Payment.instructor_amount_pence,
            Payment.platform_fee_pence,
        )
        .join(Payment, Payment.booking_id == Booking.uuid)
        .where(
            and_(
                Booking.status == "completed",
                Booking.end_at >= start,
                Booking.end_at <= end,
                Payment.status == "succeeded",
                Payment.destination_account_id.is_(None),
            )
        )
        .order_by(Booking.instructor_id, Booking.end_at)
    )
    return [EligibleLesson(*row) for row in result.all()]


def group_by_instructor(lessons: List[EligibleLesson]) -> Dict[str, List[EligibleLesson]]:
    grouped: Dict[str, List[EligibleLesson]] = defaultdict(list)
    for lesson in lessons:
        grouped[lesson.instructor_id].append(lesson)
    return dict(grouped)


async def _existing_payout(db: AsyncSession, instructor_id: str, payout_date: date) -> Optional[Payout]:
    result = await db.execute(
        select(Payout).where(
            Payout.instructor_id == instructor_id,
            Payout.payout_date == payout_date,
        )
    )
    return result.scalar_one_or_none()


async def _payout_account(db: AsyncSession, instructor_id: str) -> StripeConnectAccount:
    result = await db.execute(
        select(StripeConnectAccount).where(StripeConnectAccount.instructor_id == instructor_id)
    )
    account = result.scalar_one_or_none()
    if account is None:
        raise ValidationError("Instructor Stripe account not found")
    if not account.payouts_enabled:
        raise ValidationError("Instructor payouts not enabled")
    return account


def _error_message(error: Exception) -> str:
    if isinstance(error, stripe.StripeError):
        return handle_stripe_error(error).message
    if isinstance(error, LPlateError):
        return error.message
    return str(error) or error.__class__.__name__


def _is_permanent(error: Exception) -> bool:
    """A Stripe rejection that will fail the same way on every retry."""
    return isinstance(error, stripe.StripeError) and not is_retryable_stripe_error(error)


def _already_processed(payout: Payout) -> InstructorPayoutResult:
    logger.info(f"Payout {payout.uuid} already exists for instructor {payout.instructor_id}, skipping")
    return InstructorPayoutResult(
        instructor_id=payout.instructor_id,
        success=True,
        message="Payout already processed",
        payout_id=payout.uuid,
        stripe_transfer_id=payout.stripe_transfer_id,
        amount_pence=payout.total_amount_pence,
        lesson_count=payout.lesson_count,
    )


# ── Processing ────────────────────────────────────────────────────────────────

async def process_instructor_payout(
    db: AsyncSession,
    gateway: PaymentGateway,
    instructor_id: str,
    lessons: List[EligibleLesson],
    payout_date: date,
    period_start: date,
    period_end: date,
) -> InstructorPayoutResult:
    """
    Create and fund one instructor's payout.

    Returns the existing payout unchanged when one already exists for the
    date. A transfer failure marks the committed payout ``failed`` and
    re-raises.
    """
    existing = await _existing_payout(db, instructor_id, payout_date)
    if existing is not None:
        return _already_processed(existing)

    total_amount = sum(lesson.instructor_amount_pence for lesson in lessons)
    total_fee = sum(lesson.platform_fee_pence for lesson in lessons)
    lesson_count = len({lesson.booking_id for lesson in lessons})
    payment_ids = list(dict.fromkeys(lesson.payment_id for lesson in lessons))

    stripe_account_id = None
    if total_amount > 0:
        account = await _payout_account(db, instructor_id)
        stripe_account_id = account.stripe_account_id

    payout = Payout(
        instructor_id=instructor_id,
        total_amount_pence=total_amount,
        platform_fee_pence=total_fee,
        net_amount_pence=total_amount,
        payout_date=payout_date,
        lesson_period_start=period_start,
        lesson_period_end=period_end,
        lesson_count=lesson_count,
        status="pending",
        stripe_account_id=stripe_account_id,
    )
    db.add(payout)
    try:
        await db.commit()
    except IntegrityError:
        # Another run created it between the lookup and the insert.
        await db.rollback()
        existing = await _existing_payout(db, instructor_id, payout_date)
        if existing is None:
            raise
        return _already_processed(existing)
    payout_id = payout.uuid

    try:
        db.add_all([PayoutPayment(payout_id=payout_id, payment_id=payment_id) for payment_id in payment_ids])
        await db.commit()
    except Exception as e:
        await db.rollback()
        logger.error(f"Failed to link payments to payout {payout_id}: {e}")
        payout = await db.get(Payout, payout_id)

    if total_amount <= 0:
        # Fully discounted lessons: settle the payout without a transfer.
        apply_transition(payout, "paid", PAYOUT_TRANSITIONS, "payout")
        await db.commit()
        logger.info(f"Payout {payout_id} for instructor {instructor_id} has nothing to transfer; marked paid")
        return InstructorPayoutResult(
            instructor_id=instructor_id,
            success=True,
            message="Nothing to transfer",
            payout_id=payout_id,
            amount_pence=0,
            lesson_count=lesson_count,
        )

    try:
        transfer = gateway.create_transfer(
            amount=total_amount,
            destination=stripe_account_id,
            metadata={
                "payout_id": payout_id,
                "instructor_id": instructor_id,
                "lesson_count": str(lesson_count),
                "period_start": period_start.isoformat(),
                "period_end": period_end.isoformat(),
            },
            idempotency_key=f"payout-{payout_id}",
        )
    except Exception as e:
        apply_transition(payout, "failed", PAYOUT_TRANSITIONS, "payout")
        payout.last_error = _error_message(e)
        if _is_permanent(e):
            payout.retry_count = settings.PAYOUT_MAX_RETRIES
            payout.retry_after = None
            logger.error(f"Payout {payout_id} will not be retried; left for manual handling")
        else:
            payout.retry_after = datetime.utcnow() + timedelta(minutes=settings.PAYOUT_RETRY_BASE_MINUTES)
        await db.commit()
        logger.error(f"Transfer failed for payout {payout_id} (instructor {instructor_id}): {payout.last_error}")
        raise

    payout.stripe_transfer_id = transfer.id
    apply_transition(payout, "processing", PAYOUT_TRANSITIONS, "payout")
    await db.commit()

    logger.info(f"Payout {payout_id} sent: {total_amount} pence to instructor {instructor_id} ({lesson_count} lessons)")
    return InstructorPayoutResult(
        instructor_id=instructor_id,
        success=True,
        message="Payout processed successfully",
        payout_id=payout_id,
        stripe_transfer_id=transfer.id,
        amount_pence=total_amount,
        lesson_count=lesson_count,
    )


async def run_payout_batch(db: AsyncSession, gateway: PaymentGateway, payout_date: date) -> PayoutBatchResult:
    """
    Pay every instructor for the lessons settled by *payout_date*.

    Raises InvalidPayoutDate for a non-Friday. Per-instructor failures are
    reported in the result rather than raised.
    """
    start, end = lesson_period(payout_date)
    batch = PayoutBatchResult(
        payout_date=payout_date,
        lesson_period_start=start.date(),
        lesson_period_end=end.date(),
    )
    logger.info(f"Processing payouts for {payout_date.isoformat()} (lessons {start.date()} to {end.date()})")

    lessons = await find_eligible_lessons(db, start, end)
    grouped = group_by_instructor(lessons)
    batch.total_instructors = len(grouped)

    for instructor_id, instructor_lessons in grouped.items():
        try:
            result = await process_instructor_payout(
                db,
                gateway,
                instructor_id,
                instructor_lessons,
                payout_date,
                batch.lesson_period_start,
                batch.lesson_period_end,
            )
        except Exception as e:
            await db.rollback()
            logger.error(f"Payout error for instructor {instructor_id}: {e}")
            result = InstructorPayoutResult(
                instructor_id=instructor_id,
                success=False,
                message="Payout failed",
                amount_pence=sum(lesson.instructor_amount_pence for lesson in instructor_lessons),
                lesson_count=len({lesson.booking_id for lesson in instructor_lessons}),
                error=_error_message(e),
            )
        batch.results.append(result)

    batch.successful_payouts = sum(1 for r in batch.results if r.success)
    batch.failed_payouts = sum(1 for r in batch.results if not r.success)
    logger.info(
        f"Payout run {payout_date.isoformat()} complete: {batch.successful_payouts} succeeded, "
        f"{batch.failed_payouts} failed"
    )
    return batch


# ── Retry ─────────────────────────────────────────────────────────────────────

def retry_delay(retry_count: int) -> timedelta:
    """Exponential backoff: base, 2x base, 4x base, ..."""
    base = timedelta(minutes=settings.PAYOUT_RETRY_BASE_MINUTES)
    return base * (2 ** max(retry_count - 1, 0))


async def retry_failed_payouts(
    db: AsyncSession,
    gateway: PaymentGateway,
    now: Optional[datetime] = None,
) -> Dict[str, int]:
    """Re-attempt transfers for failed payouts whose backoff has elapsed.

    Payouts that exhaust ``PAYOUT_MAX_RETRIES``, or hit a Stripe rejection
    that retrying cannot fix, stay ``failed`` for manual handling.
    """
    now = now or datetime.utcnow()
    max_retries = settings.PAYOUT_MAX_RETRIES
    stats = {"retried": 0, "recovered": 0, "failed": 0, "exhausted": 0}

    result = await db.execute(
        select(Payout.uuid).where(
            and_(
                Payout.status == "failed",
                Payout.retry_count < max_retries,
                or_(Payout.retry_after.is_(None), Payout.retry_after <= now),
            )
        )
    )
    payout_ids = list(result.scalars().all())

    for payout_id in payout_ids:
        payout = await db.get(Payout, payout_id)
        if payout is None or payout.status != "failed":
            continue
        stats["retried"] += 1
        payout.retry_count += 1
        attempt = payout.retry_count

        try:
            account = await _payout_account(db, payout.instructor_id)
            transfer = gateway.create_transfer(
                amount=payout.total_amount_pence,
                destination=account.stripe_account_id,
                metadata={
                    "payout_id": payout.uuid,
                    "instructor_id": payout.instructor_id,
                    "retry": str(attempt),
                },
                idempotency_key=f"payout-{payout.uuid}-retry-{attempt}",
            )
        except Exception as e:
            payout.last_error = _error_message(e)
            if attempt >= max_retries or _is_permanent(e):
                payout.retry_count = max_retries
                payout.retry_after = None
                stats["exhausted"] += 1
                logger.error(
                    f"Payout {payout.uuid} failed after {attempt} retries; left for manual handling: {payout.last_error}"
                )
            else:
                payout.retry_after = now + retry_delay(attempt)
                stats["failed"] += 1
                logger.warning(
                    f"Payout {payout.uuid} retry {attempt}/{max_retries} failed "
                    f"(next attempt after {payout.retry_after.isoformat()}): {payout.last_error}"
                )
            await db.commit()
            continue

        payout.stripe_account_id = account.stripe_account_id
        payout.stripe_transfer_id = transfer.id
        payout.last_error = None
        payout.retry_after = None
        apply_transition(payout, "processing", PAYOUT_TRANSITIONS, "payout")
        await db.commit()
        stats["recovered"] += 1
        logger.info(f"Payout {payout.uuid} recovered on retry {attempt}")

    return stats


# ── History ───────────────────────────────────────────────────────────────────

async def list_payouts(
    db: AsyncSession,
    instructor_id: str,
    page: int = 1,
    page_size: int = 10,
) -> Tuple[List[Payout], int]:
    """Payout history for an instructor, newest payout date first, with linked payments."""
    count_result = await db.execute(
        select(func.count(Payout.uuid)).where(Payout.instructor_id == instructor_id)
    )
    total = count_result.scalar() or 0

    result = await db.execute(
        select(Payout)
        .where(Payout.instructor_id == instructor_id)
        .options(selectinload(Payout.payments).selectinload(PayoutPayment.payment))
        .order_by(Payout.payout_date.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    return list(result.scalars().all()), total
