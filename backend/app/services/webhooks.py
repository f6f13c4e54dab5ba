"""Reconciliation of Stripe webhook events against stored records.

Stripe delivers events at least once and in no guaranteed order, so every
handler is idempotent: it checks the stored status (or a stored external id)
before writing, and re-applying a status a record already has is a no-op.
Handlers return a short outcome string for logging and tests.
"""
import logging
from decimal import Decimal
from typing import Any, Dict, Optional

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from app.errors import InvalidStatusTransition
from app.models.instructor import Instructor
from app.models.payment import Payment
from app.models.payout import Payout
from app.models.refund import Refund
from app.models.stripe_connect_account import StripeConnectAccount
from app.services.commission import round_half_up
from app.services.credit_ledger import purchase_credits
from app.services.transitions import PAYMENT_TRANSITIONS, PAYOUT_TRANSITIONS, apply_transition

logger = logging.getLogger(__name__)


def _plain(value: Any) -> Optional[Dict[str, Any]]:
    """Turn a StripeObject (or dict) into plain JSON-able data."""
    if value is None:
        return None
    if hasattr(value, "to_dict"):
        return value.to_dict()
    return dict(value)


async def _payment_by_intent(db: AsyncSession, payment_intent_id: Optional[str]) -> Optional[Payment]:
    if not payment_intent_id:
        return None
    result = await db.execute(
        select(Payment)
        .where(Payment.stripe_payment_intent_id == payment_intent_id)
        .with_for_update()
    )
    return result.scalar_one_or_none()


def _transition(record, new_status: str, allowed, label: str) -> bool:
    """apply_transition that logs and ignores out-of-order events instead of raising."""
    try:
        return apply_transition(record, new_status, allowed, label)
    except InvalidStatusTransition as e:
        logger.warning(f"Ignoring webhook transition for {label} {record.uuid}: {e.message}")
        return False


# ── Payments ──────────────────────────────────────────────────────────────────

async def confirm_payment(db: AsyncSession, payment: Payment, metadata: Optional[Dict[str, Any]] = None) -> bool:
    """
    Mark *payment* succeeded and grant credits for a credit purchase.

    Returns False, writing nothing, when the payment was already succeeded
    (or cannot move there). Flushes; the caller commits. A flush or commit
    raises StaleDataError when a concurrent session confirmed it first.
    """
    if not _transition(payment, "succeeded", PAYMENT_TRANSITIONS, "payment"):
        return False

    metadata = metadata or {}
    if payment.purpose == "credit_purchase" or metadata.get("type") == "credit_purchase":
        hours = payment.hours or float(metadata.get("hours") or 0)
        if hours <= 0:
            logger.warning(f"Credit purchase payment {payment.uuid} has no hours; no credit granted")
        else:
            rate = metadata.get("hourly_rate_pence")
            if rate:
                hourly_rate_pence = int(rate)
            else:
                instructor = await db.get(Instructor, payment.instructor_id)
                hourly_rate_pence = instructor.hourly_rate_pence if instructor else payment.instructor_amount_pence
            await purchase_credits(
                db,
                payment.learner_id,
                payment.instructor_id,
                hours,
                hourly_rate_pence,
                order_id=payment.uuid,
            )
    await db.flush()
    return True


async def handle_payment_succeeded(db: AsyncSession, payment_intent: Dict[str, Any]) -> str:
    payment = await _payment_by_intent(db, payment_intent.get("id"))
    if payment is None:
        logger.warning(f"No payment stored for succeeded intent {payment_intent.get('id')}")
        return "ignored"

    try:
        if not await confirm_payment(db, payment, _plain(payment_intent.get("metadata")) or {}):
            return "already_processed"
        await db.commit()
    except StaleDataError:
        # A concurrent delivery of the same event saved first.
        await db.rollback()
        logger.info(f"Payment {payment_intent.get('id')} was confirmed by a concurrent delivery")
        return "already_processed"
    logger.info(f"Payment {payment_intent.get('id')} succeeded")
    return "processed"


async def handle_payment_failed(db: AsyncSession, payment_intent: Dict[str, Any]) -> str:
    payment = await _payment_by_intent(db, payment_intent.get("id"))
    if payment is None:
        logger.warning(f"No payment stored for failed intent {payment_intent.get('id')}")
        return "ignored"

    if not _transition(payment, "failed", PAYMENT_TRANSITIONS, "payment"):
        return "already_processed"
    await db.commit()
    logger.info(f"Payment {payment_intent.get('id')} failed")
    return "processed"


def split_refund(payment: Payment, refund_amount_pence: int) -> tuple[int, int]:
    """Split a refund into (platform fee refund, instructor refund).

    Uses the fee ratio stored on the original payment, so a later change to
    the platform percentage does not change how old charges are refunded.
    """
    if payment.total_amount_pence <= 0:
        return 0, refund_amount_pence
    fee_refund = round_half_up(
        Decimal(refund_amount_pence) * Decimal(payment.platform_fee_pence) / Decimal(payment.total_amount_pence)
    )
    return fee_refund, refund_amount_pence - fee_refund


async def handle_charge_refunded(db: AsyncSession, charge: Dict[str, Any]) -> str:
    payment = await _payment_by_intent(db, charge.get("payment_intent"))
    if payment is None:
        logger.error(f"Payment not found for refund on charge {charge.get('id')}")
        return "ignored"

    refunds = ((charge.get("refunds") or {}).get("data")) or []
    if not refunds and charge.get("amount_refunded"):
        # Newer API versions do not embed the refund list; record the delta
        # against what has already been stored for this payment.
        recorded = await db.execute(
            select(func.coalesce(func.sum(Refund.amount_pence), 0)).where(Refund.payment_id == payment.uuid)
        )
        delta = int(charge["amount_refunded"]) - int(recorded.scalar_one())
        if delta > 0:
            refunds = [{"id": f"{charge.get('id')}:{charge['amount_refunded']}", "amount": delta}]

    created = 0
    for refund in refunds:
        existing = await db.execute(select(Refund.uuid).where(Refund.stripe_refund_id == refund["id"]))
        if existing.scalar_one_or_none():
            continue
        amount = int(refund.get("amount") or 0)
        fee_refund, instructor_refund = split_refund(payment, amount)
        db.add(Refund(
            payment_id=payment.uuid,
            stripe_refund_id=refund["id"],
            amount_pence=amount,
            platform_fee_refund_pence=fee_refund,
            instructor_refund_pence=instructor_refund,
            reason=refund.get("reason") or "requested_by_customer",
            status=refund.get("status") or "succeeded",
        ))
        created += 1
        logger.info(f"Refund {refund['id']} recorded for payment {payment.uuid}: {amount} pence")

    changed = _transition(payment, "refunded", PAYMENT_TRANSITIONS, "payment")
    if payment.purpose == "credit_purchase" and changed:
        logger.warning(
            f"Credit purchase {payment.uuid} refunded; unused credit must be adjusted manually"
        )
    await db.commit()
    return "processed" if (created or changed) else "already_processed"


async def handle_dispute_created(db: AsyncSession, dispute: Dict[str, Any]) -> str:
    payment = await _payment_by_intent(db, dispute.get("payment_intent"))
    if payment is None:
        logger.error(f"Payment not found for dispute {dispute.get('id')}")
        return "ignored"
    logger.warning(
        f"Dispute {dispute.get('id')} created for payment {payment.uuid} "
        f"(learner {payment.learner_id}, instructor {payment.instructor_id}): {dispute.get('reason')}"
    )
    return "logged"


PAYMENT_HANDLERS = {
    "payment_intent.succeeded": handle_payment_succeeded,
    "payment_intent.payment_failed": handle_payment_failed,
    "charge.refunded": handle_charge_refunded,
    "charge.dispute.created": handle_dispute_created,
}


async def reconcile_payment_event(db: AsyncSession, event: Dict[str, Any]) -> str:
    """Dispatch a payments-endpoint event to its handler."""
    event_type = event["type"]
    handler = PAYMENT_HANDLERS.get(event_type)
    if handler is None:
        logger.info(f"Unhandled payment event type: {event_type}")
        return "ignored"
    return await handler(db, event["data"]["object"])


# ── Connect ───────────────────────────────────────────────────────────────────

async def _connect_account(db: AsyncSession, stripe_account_id: Optional[str]) -> Optional[StripeConnectAccount]:
    if not stripe_account_id:
        return None
    result = await db.execute(
        select(StripeConnectAccount).where(StripeConnectAccount.stripe_account_id == stripe_account_id)
    )
    return result.scalar_one_or_none()


async def handle_account_updated(db: AsyncSession, event: Dict[str, Any]) -> str:
    account = event["data"]["object"]
    stored = await _connect_account(db, account.get("id"))
    if stored is None:
        logger.warning(f"Connect account {account.get('id')} is not stored")
        return "ignored"

    stored.charges_enabled = bool(account.get("charges_enabled"))
    stored.payouts_enabled = bool(account.get("payouts_enabled"))
    stored.details_submitted = bool(account.get("details_submitted"))
    stored.requirements = _plain(account.get("requirements"))
    await db.commit()
    logger.info(f"Account {stored.stripe_account_id} updated")
    return "processed"


async def handle_account_deauthorized(db: AsyncSession, event: Dict[str, Any]) -> str:
    # The event object is the Application; the connected account is on the event.
    account_id = event.get("account") or event["data"]["object"].get("id")
    stored = await _connect_account(db, account_id)
    if stored is None:
        logger.warning(f"Deauthorized account {account_id} is not stored")
        return "ignored"

    stored.charges_enabled = False
    stored.payouts_enabled = False
    await db.commit()
    logger.info(f"Account {account_id} deauthorized")
    return "processed"


async def _payout_for_transfer(db: AsyncSession, transfer: Dict[str, Any]) -> Optional[Payout]:
    result = await db.execute(select(Payout).where(Payout.stripe_transfer_id == transfer.get("id")))
    payout = result.scalar_one_or_none()
    if payout is None:
        payout_id = (transfer.get("metadata") or {}).get("payout_id")
        if payout_id:
            payout = await db.get(Payout, payout_id)
    return payout


async def _update_payout_from_transfer(db: AsyncSession, event: Dict[str, Any], new_status: str) -> str:
    transfer = event["data"]["object"]
    payout = await _payout_for_transfer(db, transfer)
    if payout is None:
        logger.error(f"Payout not found for transfer {transfer.get('id')}")
        return "ignored"

    if payout.stripe_transfer_id is None:
        payout.stripe_transfer_id = transfer.get("id")
    changed = _transition(payout, new_status, PAYOUT_TRANSITIONS, "payout")
    await db.commit()
    if changed:
        logger.info(f"Transfer {transfer.get('id')} moved payout {payout.uuid} to {new_status}")
        return "processed"
    return "already_processed"


async def handle_transfer_created(db: AsyncSession, event: Dict[str, Any]) -> str:
    return await _update_payout_from_transfer(db, event, "processing")


async def handle_transfer_updated(db: AsyncSession, event: Dict[str, Any]) -> str:
    # Transfers carry no status of their own; an update means the funds landed.
    return await _update_payout_from_transfer(db, event, "paid")


CONNECT_HANDLERS = {
    "account.updated": handle_account_updated,
    "account.application.deauthorized": handle_account_deauthorized,
    "transfer.created": handle_transfer_created,
    "transfer.updated": handle_transfer_updated,
}


async def reconcile_connect_event(db: AsyncSession, event: Dict[str, Any]) -> str:
    """Dispatch a Connect-endpoint event to its handler."""
    event_type = event["type"]
    handler = CONNECT_HANDLERS.get(event_type)
    if handler is None:
        logger.info(f"Unhandled event type: {event_type}")
        return "ignored"
    return await handler(db, event)
