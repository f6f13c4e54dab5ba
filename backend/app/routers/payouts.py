"""Instructor payout router: manual batch runs and payout history."""
import logging
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.errors import ValidationError
from app.schemas.payouts import (
    PayoutBatchResponse, PayoutListResponse, PayoutPaymentResponse, PayoutResponse, PayoutRunRequest,
)
from app.services.payouts import list_payouts, run_payout_batch
from app.services.stripe_gateway import PaymentGateway, get_payment_gateway

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/api/payouts", response_model=PayoutBatchResponse)
async def run_payouts(
    body: Optional[PayoutRunRequest] = None,
    db: AsyncSession = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
):
    """
    Run the payout batch for a Friday.

    The scheduler does this every Friday; this endpoint lets an operator
    re-run a date. Runs are idempotent per instructor and date.
    """
    payout_date = (body.payout_date if body else None) or date.today()
    logger.info(f"Manual payout run requested for {payout_date.isoformat()}")
    result = await run_payout_batch(db, gateway, payout_date)
    return PayoutBatchResponse.model_validate(result)


@router.get("/api/payouts", response_model=PayoutListResponse)
async def get_payouts(
    instructor_id: str,
    page: int = 1,
    page_size: int = 10,
    db: AsyncSession = Depends(get_db),
):
    """Payout history for an instructor, newest first, with the payments each covered."""
    if page < 1 or page_size < 1:
        raise ValidationError("page and page_size must be positive")

    payouts, total = await list_payouts(db, instructor_id, page, page_size)
    return PayoutListResponse(
        payouts=[
            PayoutResponse(
                uuid=p.uuid,
                instructor_id=p.instructor_id,
                total_amount_pence=p.total_amount_pence,
                platform_fee_pence=p.platform_fee_pence,
                net_amount_pence=p.net_amount_pence,
                payout_date=p.payout_date,
                lesson_period_start=p.lesson_period_start,
                lesson_period_end=p.lesson_period_end,
                lesson_count=p.lesson_count,
                status=p.status,
                stripe_transfer_id=p.stripe_transfer_id,
                retry_count=p.retry_count,
                last_error=p.last_error,
                created_at=p.created_at,
                payments=[
                    PayoutPaymentResponse(
                        payment_id=link.payment.uuid,
                        booking_id=link.payment.booking_id,
                        instructor_amount_pence=link.payment.instructor_amount_pence,
                        platform_fee_pence=link.payment.platform_fee_pence,
                    )
                    for link in p.payments
                ],
            )
            for p in payouts
        ],
        total=total,
        page=page,
        page_size=page_size,
        total_pages=(total + page_size - 1) // page_size,
    )
