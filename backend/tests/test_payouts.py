"""Tests for Friday payout batching and failed payout retries."""
from datetime import date, datetime, timedelta

import pytest
import stripe
from sqlalchemy import select, func

from app.config import settings
from app.errors import InvalidPayoutDate
from app.models.booking import Booking
from app.models.payment import Payment
from app.models.payout import Payout, PayoutPayment
from app.services.payouts import (
    fridays_in_range, lesson_period, list_payouts, next_payout_date, retry_delay,
    retry_failed_payouts, run_payout_batch,
)

FRIDAY = date(2026, 10, 16)


def test_lesson_period_covers_previous_friday_to_thursday():
    start, end = lesson_period(FRIDAY)
    assert start == datetime(2026, 10, 9, 0, 0, 0)
    assert end == datetime(2026, 10, 15, 23, 59, 59, 999999)


def test_non_friday_rejected():
    with pytest.raises(InvalidPayoutDate):
        lesson_period(date(2026, 10, 14))  # Wednesday


def test_next_payout_date():
    assert next_payout_date(date(2026, 10, 14)) == FRIDAY
    assert next_payout_date(datetime(2026, 10, 15, 23, 0)) == FRIDAY
    # A Friday lesson waits for the following week's run
    assert next_payout_date(FRIDAY) == date(2026, 10, 23)


def test_fridays_in_range():
    assert fridays_in_range(date(2026, 10, 1), date(2026, 10, 31)) == [
        date(2026, 10, 2), date(2026, 10, 9), date(2026, 10, 16), date(2026, 10, 23), date(2026, 10, 30),
    ]


def test_retry_delay_backs_off_exponentially():
    assert retry_delay(1) == timedelta(minutes=30)
    assert retry_delay(2) == timedelta(minutes=60)
    assert retry_delay(3) == timedelta(minutes=120)


async def test_wednesday_batch_rejected(test_db, gateway):
    with pytest.raises(InvalidPayoutDate):
        await run_payout_batch(test_db, gateway, date(2026, 10, 14))
    assert gateway.transfers == []


async def test_batch_pays_eligible_lessons_only(test_db, gateway, learner_id, instructor_id, make_lesson):
    await make_lesson(learner_id, instructor_id, datetime(2026, 10, 9, 10))
    await make_lesson(learner_id, instructor_id, datetime(2026, 10, 15, 18), base_pence=4500)
    # Outside the window, not completed, or not paid
    await make_lesson(learner_id, instructor_id, datetime(2026, 10, 8, 18))
    await make_lesson(learner_id, instructor_id, datetime(2026, 10, 16, 10))
    await make_lesson(learner_id, instructor_id, datetime(2026, 10, 12, 10), booking_status="confirmed")
    await make_lesson(learner_id, instructor_id, datetime(2026, 10, 13, 10), payment_status="pending")

    result = await run_payout_batch(test_db, gateway, FRIDAY)

    assert result.total_instructors == 1
    assert result.successful_payouts == 1
    assert result.failed_payouts == 0
    assert result.lesson_period_start == date(2026, 10, 9)
    assert result.lesson_period_end == date(2026, 10, 15)
    [outcome] = result.results
    assert outcome.amount_pence == 7500
    assert outcome.lesson_count == 2

    [transfer] = gateway.transfers
    assert transfer["amount"] == 7500
    assert transfer["destination"] == "acct_instructor_1"
    assert transfer["idempotency_key"] == f"payout-{outcome.payout_id}"

    payout = await test_db.get(Payout, outcome.payout_id)
    assert payout.status == "processing"
    assert payout.platform_fee_pence == 540 + 810
    assert payout.net_amount_pence == 7500
    assert payout.stripe_transfer_id == outcome.stripe_transfer_id
    links = await test_db.execute(select(func.count(PayoutPayment.uuid)).where(PayoutPayment.payout_id == payout.uuid))
    assert links.scalar() == 2


async def test_batch_is_idempotent(test_db, gateway, learner_id, instructor_id, make_lesson):
    await make_lesson(learner_id, instructor_id, datetime(2026, 10, 12, 10))

    first = await run_payout_batch(test_db, gateway, FRIDAY)
    second = await run_payout_batch(test_db, gateway, FRIDAY)

    assert len(gateway.transfers) == 1
    assert second.results[0].success is True
    assert second.results[0].message == "Payout already processed"
    assert second.results[0].payout_id == first.results[0].payout_id
    count = await test_db.execute(select(func.count(Payout.uuid)))
    assert count.scalar() == 1


async def test_one_instructor_failing_does_not_stop_others(
    test_db, gateway, learner_id, make_instructor, make_lesson
):
    good = await make_instructor(stripe_account_id="acct_good")
    broken = await make_instructor(stripe_account_id="acct_broken")
    no_account = await make_instructor()
    await make_lesson(learner_id, good, datetime(2026, 10, 12, 10))
    await make_lesson(learner_id, broken, datetime(2026, 10, 12, 12))
    await make_lesson(learner_id, no_account, datetime(2026, 10, 12, 14))
    gateway.failing_destinations.add("acct_broken")

    result = await run_payout_batch(test_db, gateway, FRIDAY)

    assert result.total_instructors == 3
    assert result.successful_payouts == 1
    assert result.failed_payouts == 2
    outcomes = {r.instructor_id: r for r in result.results}
    assert outcomes[good].success is True
    assert outcomes[broken].success is False
    assert "connect" in outcomes[broken].error.lower()
    assert outcomes[no_account].error == "Instructor Stripe account not found"

    # The failed transfer leaves a queryable failed payout scheduled for retry
    failed = (await test_db.execute(select(Payout).where(Payout.instructor_id == broken))).scalar_one()
    assert failed.status == "failed"
    assert failed.last_error
    assert failed.retry_after is not None
    no_payout = await test_db.execute(select(func.count(Payout.uuid)).where(Payout.instructor_id == no_account))
    assert no_payout.scalar() == 0


async def test_retry_recovers_failed_payout(test_db, gateway, learner_id, make_instructor, make_lesson):
    instructor = await make_instructor(stripe_account_id="acct_flaky")
    await make_lesson(learner_id, instructor, datetime(2026, 10, 12, 10))
    gateway.failing_destinations.add("acct_flaky")
    await run_payout_batch(test_db, gateway, FRIDAY)

    # Backoff not yet elapsed
    stats = await retry_failed_payouts(test_db, gateway, now=datetime.utcnow())
    assert stats["retried"] == 0

    gateway.failing_destinations.clear()
    stats = await retry_failed_payouts(test_db, gateway, now=datetime.utcnow() + timedelta(hours=1))

    assert stats == {"retried": 1, "recovered": 1, "failed": 0, "exhausted": 0}
    payout = (await test_db.execute(select(Payout).where(Payout.instructor_id == instructor))).scalar_one()
    assert payout.status == "processing"
    assert payout.retry_count == 1
    assert payout.last_error is None
    assert gateway.transfers[0]["idempotency_key"] == f"payout-{payout.uuid}-retry-1"


async def test_retry_gives_up_after_max_retries(test_db, gateway, learner_id, make_instructor, make_lesson):
    instructor = await make_instructor(stripe_account_id="acct_dead")
    await make_lesson(learner_id, instructor, datetime(2026, 10, 12, 10))
    gateway.failing_destinations.add("acct_dead")
    await run_payout_batch(test_db, gateway, FRIDAY)

    now = datetime.utcnow()
    totals = {"failed": 0, "exhausted": 0}
    for hours in (1, 3, 6, 12):
        stats = await retry_failed_payouts(test_db, gateway, now=now + timedelta(hours=hours))
        totals["failed"] += stats["failed"]
        totals["exhausted"] += stats["exhausted"]

    assert totals == {"failed": 2, "exhausted": 1}
    payout = (await test_db.execute(select(Payout).where(Payout.instructor_id == instructor))).scalar_one()
    assert payout.status == "failed"
    assert payout.retry_count == 3
    assert payout.retry_after is None


async def test_list_payouts_newest_first(test_db, gateway, learner_id, instructor_id, make_lesson):
    await make_lesson(learner_id, instructor_id, datetime(2026, 10, 5, 10))
    await make_lesson(learner_id, instructor_id, datetime(2026, 10, 12, 10))
    await run_payout_batch(test_db, gateway, date(2026, 10, 9))
    await run_payout_batch(test_db, gateway, FRIDAY)

    payouts, total = await list_payouts(test_db, instructor_id, page=1, page_size=10)

    assert total == 2
    assert [p.payout_date for p in payouts] == [FRIDAY, date(2026, 10, 9)]
    assert len(payouts[0].payments) == 1
    assert payouts[0].payments[0].payment.instructor_amount_pence == 3000


async def test_destination_charges_are_not_paid_out_again(
    client, test_db, gateway, learner_id, instructor_id, monkeypatch,
):
    monkeypatch.setattr(settings, "STRIPE_DESTINATION_CHARGES", True)
    gateway.intent_status = "succeeded"
    booking = Booking(
        learner_id=learner_id,
        instructor_id=instructor_id,
        start_at=datetime(2026, 10, 12, 9),
        end_at=datetime(2026, 10, 12, 10),
        price_pence=3000,
        status="confirmed",
    )
    test_db.add(booking)
    await test_db.commit()
    booking_id = booking.uuid

    response = await client.post("/api/payments", json={
        "learner_id": learner_id,
        "instructor_id": instructor_id,
        "booking_id": booking_id,
    })
    assert response.status_code == 201
    assert response.json()["payment"]["destination_account_id"] == "acct_instructor_1"
    assert gateway.intents[0]["destination"] == "acct_instructor_1"

    booking = await test_db.get(Booking, booking_id)
    booking.status = "completed"
    await test_db.commit()

    result = await run_payout_batch(test_db, gateway, FRIDAY)

    assert result.total_instructors == 0
    assert gateway.transfers == []
    payment = (await test_db.execute(select(Payment).where(Payment.booking_id == booking_id))).scalar_one()
    assert payment.status == "succeeded"
    assert payment.destination_account_id == "acct_instructor_1"


async def test_permanent_stripe_error_is_not_retried(test_db, gateway, learner_id, make_instructor, make_lesson):
    instructor = await make_instructor(stripe_account_id="acct_gone")
    await make_lesson(learner_id, instructor, datetime(2026, 10, 12, 10))
    gateway.failing_destinations.add("acct_gone")
    gateway.transfer_error = stripe.InvalidRequestError("No such destination: 'acct_gone'", "destination")

    result = await run_payout_batch(test_db, gateway, FRIDAY)

    assert result.failed_payouts == 1
    payout = (await test_db.execute(select(Payout).where(Payout.instructor_id == instructor))).scalar_one()
    assert payout.status == "failed"
    assert payout.retry_count == settings.PAYOUT_MAX_RETRIES
    assert payout.retry_after is None
    assert "acct_gone" in payout.last_error

    stats = await retry_failed_payouts(test_db, gateway, now=datetime.utcnow() + timedelta(days=1))
    assert stats["retried"] == 0


async def test_retry_stops_on_permanent_stripe_error(test_db, gateway, learner_id, make_instructor, make_lesson):
    instructor = await make_instructor(stripe_account_id="acct_revoked")
    await make_lesson(learner_id, instructor, datetime(2026, 10, 12, 10))
    gateway.failing_destinations.add("acct_revoked")
    await run_payout_batch(test_db, gateway, FRIDAY)

    gateway.transfer_error = stripe.PermissionError("The account has revoked platform access")
    now = datetime.utcnow()
    stats = await retry_failed_payouts(test_db, gateway, now=now + timedelta(hours=1))

    assert stats == {"retried": 1, "recovered": 0, "failed": 0, "exhausted": 1}
    payout = (await test_db.execute(select(Payout).where(Payout.instructor_id == instructor))).scalar_one()
    assert payout.retry_count == settings.PAYOUT_MAX_RETRIES
    assert payout.retry_after is None

    stats = await retry_failed_payouts(test_db, gateway, now=now + timedelta(days=1))
    assert stats["retried"] == 0
    assert gateway.transfers == []


async def test_zero_total_payout_settled_without_transfer(test_db, gateway, learner_id, make_instructor, make_lesson):
    with_account = await make_instructor(stripe_account_id="acct_free")
    without_account = await make_instructor()
    await make_lesson(learner_id, with_account, datetime(2026, 10, 12, 10), base_pence=0)
    await make_lesson(learner_id, without_account, datetime(2026, 10, 13, 10), base_pence=0)

    result = await run_payout_batch(test_db, gateway, FRIDAY)

    assert result.successful_payouts == 2
    assert result.failed_payouts == 0
    assert all(r.message == "Nothing to transfer" for r in result.results)
    assert gateway.transfers == []
    payouts = (await test_db.execute(select(Payout))).scalars().all()
    assert {p.status for p in payouts} == {"paid"}
    assert all(p.total_amount_pence == 0 and p.stripe_transfer_id is None for p in payouts)
    links = await test_db.execute(select(func.count(PayoutPayment.payout_id)))
    assert links.scalar() == 2
