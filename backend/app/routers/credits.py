"""Prepaid lesson credit router."""
import logging
from typing import Optional
from uuid import uuid4

import stripe
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.database import get_db
from app.errors import handle_stripe_error
from app.models.payment import Payment
from app.routers.payments import get_learner_booking, get_active_instructor
from app.schemas.credits import (
    CreditBalanceResponse, CreditListResponse, CreditUseRequest, CreditUseResponse,
    CreditPurchaseRequest, CreditPurchaseResponse, LedgerEntryResponse, LedgerResponse,
)
from app.services.commission import payment_amounts, payment_from_hours
from app.services.credit_ledger import (
    consume_credits, get_balance, hours_to_minutes, list_credits, list_ledger, replay_balance,
)
from app.services.stripe_gateway import PaymentGateway, get_payment_gateway
from app.services.webhooks import confirm_payment

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/api/credits", response_model=CreditListResponse)
async def get_credits(
    learner_id: str,
    instructor_id: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
):
    """Active credit balances for a learner, optionally with one instructor."""
    credits = await list_credits(db, learner_id, instructor_id)
    return CreditListResponse(credits=[CreditBalanceResponse.model_validate(c) for c in credits])


@router.post("/api/credits/use", response_model=CreditUseResponse)
async def use_credits(
    body: CreditUseRequest,
    db: AsyncSession = Depends(get_db),
):
    """
    Pay for a lesson from prepaid credit.

    Records a ``credit`` payment carrying the usual fee breakdown, so credit
    funded lessons are paid out like card ones, and consumes the minutes.
    The lesson is priced at the rate stored on the credit row, which is what
    the learner paid, not the instructor's current rate. Nothing is written
    when the balance is too small.
    """
    await get_active_instructor(db, body.instructor_id)
    if body.booking_id:
        await get_learner_booking(db, body.booking_id, body.learner_id, body.instructor_id)

    # Amounts are filled in from the locked credit row once the minutes are consumed.
    payment = Payment(
        learner_id=body.learner_id,
        instructor_id=body.instructor_id,
        booking_id=body.booking_id,
        total_amount_pence=0,
        platform_fee_pence=0,
        instructor_amount_pence=0,
        discount_amount_pence=0,
        currency=settings.CURRENCY,
        payment_method="credit",
        purpose="lesson",
        hours=body.hours,
        stripe_payment_intent_id=f"credit_{uuid4().hex}",
        description=f"Lesson paid with credit: {body.hours} hours",
        status="succeeded",
    )
    try:
        db.add(payment)
        await db.flush()
        entry = await consume_credits(
            db,
            body.learner_id,
            body.instructor_id,
            body.hours,
            lesson_id=body.booking_id,
            order_id=payment.uuid,
        )
        credit = await get_balance(db, body.learner_id, body.instructor_id)
        amounts = payment_amounts(payment_from_hours(body.hours, credit.hourly_rate_pence))
        payment.total_amount_pence = amounts.total_amount_pence
        payment.platform_fee_pence = amounts.platform_fee_pence
        payment.instructor_amount_pence = amounts.instructor_amount_pence
        remaining = credit.remaining_minutes
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    return CreditUseResponse(
        payment_id=payment.uuid,
        minutes_consumed=-entry.delta_minutes,
        remaining_minutes=remaining,
        total_amount_pence=amounts.total_amount_pence,
        platform_fee_pence=amounts.platform_fee_pence,
        instructor_amount_pence=amounts.instructor_amount_pence,
    )


@router.put("/api/credits", response_model=CreditPurchaseResponse)
async def purchase_credit_hours(
    body: CreditPurchaseRequest,
    db: AsyncSession = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
):
    """
    Buy prepaid hours with an instructor.

    Creates a ``credit_purchase`` PaymentIntent and a pending payment. Credit
    is granted when the payment succeeds: straight away if the intent
    confirmed synchronously, otherwise by the payments webhook.
    """
    instructor = await get_active_instructor(db, body.instructor_id)
    minutes = hours_to_minutes(body.hours)
    rate = instructor.hourly_rate_pence
    amounts = payment_amounts(payment_from_hours(body.hours, rate))

    metadata = {
        "type": "credit_purchase",
        "learner_id": body.learner_id,
        "instructor_id": body.instructor_id,
        "hours": str(body.hours),
        "hourly_rate_pence": str(rate),
    }
    description = f"Lesson credit: {body.hours} hours"
    try:
        intent = gateway.create_payment_intent(
            amount=amounts.total_amount_pence,
            metadata=metadata,
            description=description,
            payment_method=body.payment_method_id,
        )
    except stripe.StripeError as e:
        logger.error(f"Credit purchase intent failed for learner {body.learner_id}: {e}")
        raise handle_stripe_error(e)

    payment = Payment(
        learner_id=body.learner_id,
        instructor_id=body.instructor_id,
        total_amount_pence=amounts.total_amount_pence,
        platform_fee_pence=amounts.platform_fee_pence,
        instructor_amount_pence=amounts.instructor_amount_pence,
        discount_amount_pence=0,
        currency=settings.CURRENCY,
        payment_method="card",
        purpose="credit_purchase",
        hours=body.hours,
        stripe_payment_intent_id=intent.id,
        description=description,
        status="pending",
    )
    try:
        db.add(payment)
        await db.flush()
        granted = False
        if intent.status == "succeeded":
            granted = await confirm_payment(db, payment, metadata)
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    return CreditPurchaseResponse(
        payment_id=payment.uuid,
        payment_intent_id=intent.id,
        client_secret=intent.client_secret,
        status=payment.status,
        hours=body.hours,
        minutes=minutes,
        total_amount_pence=amounts.total_amount_pence,
        platform_fee_pence=amounts.platform_fee_pence,
        instructor_amount_pence=amounts.instructor_amount_pence,
        credits_granted=granted,
    )


@router.get("/api/credits/ledger", response_model=LedgerResponse)
async def get_ledger(
    learner_id: str,
    instructor_id: str,
    db: AsyncSession = Depends(get_db),
):
    """Ledger history for a learner/instructor pair, oldest first."""
    entries = await list_ledger(db, learner_id, instructor_id)
    return LedgerResponse(
        learner_id=learner_id,
        instructor_id=instructor_id,
        entries=[LedgerEntryResponse.model_validate(e) for e in entries],
        balance_minutes=await replay_balance(db, learner_id, instructor_id),
    )
