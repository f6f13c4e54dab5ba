"""Tests for payment endpoints."""
from datetime import datetime

import pytest
from sqlalchemy import select

from app.models.booking import Booking
from app.models.discount_code import DiscountCode
from app.models.payment import Payment


@pytest.fixture
async def ten_off(test_db):
    test_db.add(DiscountCode(code="TENOFF", discount_type="percentage", discount_value=10))
    await test_db.commit()


async def test_quote_with_discount(client, ten_off):
    response = await client.post("/api/payments/quote", json={"amount_pence": 3000, "discount_code": "TENOFF"})

    assert response.status_code == 200
    data = response.json()
    assert data["discount_amount_pence"] == 300
    assert data["discounted_amount_pence"] == 2700
    assert data["platform_fee_pence"] == 486
    assert data["total_amount_pence"] == 3186
    assert data["instructor_amount_pence"] == 2700
    assert data["fee_percentage"] == 18
    assert data["discount_applied"] is True


async def test_quote_with_unknown_code_charges_full_price(client):
    response = await client.post("/api/payments/quote", json={"amount_pence": 3000, "discount_code": "NOPE"})

    data = response.json()
    assert data["discount_applied"] is False
    assert data["total_amount_pence"] == 3540


async def test_quote_rejects_negative_amount(client):
    response = await client.post("/api/payments/quote", json={"amount_pence": -5})
    assert response.status_code == 400
    assert response.json()["code"] == "invalid_amount"


async def test_create_payment_from_hours(client, gateway, learner_id, instructor_id):
    response = await client.post("/api/payments", json={
        "learner_id": learner_id,
        "instructor_id": instructor_id,
        "hours": 2,
    })

    assert response.status_code == 201
    data = response.json()
    payment = data["payment"]
    assert payment["total_amount_pence"] == 7080
    assert payment["platform_fee_pence"] == 1080
    assert payment["instructor_amount_pence"] == 6000
    assert payment["status"] == "pending"
    assert payment["stripe_payment_intent_id"] == "pi_test_1"
    assert data["client_secret"] == "pi_test_1_secret"

    [intent] = gateway.intents
    assert intent["amount"] == 7080
    assert intent["metadata"]["platform_fee_pence"] == "1080"
    assert intent["destination"] is None


async def test_create_payment_for_booking_price(client, test_db, learner_id, instructor_id):
    booking = Booking(
        learner_id=learner_id,
        instructor_id=instructor_id,
        start_at=datetime(2026, 10, 20, 9),
        end_at=datetime(2026, 10, 20, 10, 30),
        price_pence=4500,
    )
    test_db.add(booking)
    await test_db.commit()

    response = await client.post("/api/payments", json={
        "learner_id": learner_id,
        "instructor_id": instructor_id,
        "booking_id": booking.uuid,
    })

    assert response.status_code == 201
    assert response.json()["payment"]["total_amount_pence"] == 5310
    assert response.json()["payment"]["booking_id"] == booking.uuid


async def test_create_payment_with_discount_records_usage(client, test_db, ten_off, learner_id, instructor_id):
    response = await client.post("/api/payments", json={
        "learner_id": learner_id,
        "instructor_id": instructor_id,
        "amount_pence": 3000,
        "discount_code": "TENOFF",
    })

    assert response.status_code == 201
    data = response.json()
    assert data["discount_applied"] is True
    assert data["payment"]["total_amount_pence"] == 3186
    assert data["payment"]["discount_code"] == "TENOFF"
    uses = await test_db.execute(select(DiscountCode.uses_count).where(DiscountCode.code == "TENOFF"))
    assert uses.scalar() == 1


async def test_synchronously_confirmed_payment_is_succeeded(client, gateway, learner_id, instructor_id):
    gateway.intent_status = "succeeded"

    response = await client.post("/api/payments", json={
        "learner_id": learner_id,
        "instructor_id": instructor_id,
        "amount_pence": 3000,
        "payment_method_id": "pm_card_visa",
    })

    assert response.status_code == 201
    assert response.json()["payment"]["status"] == "succeeded"
    assert gateway.intents[0]["payment_method"] == "pm_card_visa"


async def test_replayed_idempotency_key_returns_same_payment(client, test_db, learner_id, instructor_id):
    body = {
        "learner_id": learner_id,
        "instructor_id": instructor_id,
        "amount_pence": 3000,
        "idempotency_key": "checkout-42",
    }

    first = await client.post("/api/payments", json=body)
    second = await client.post("/api/payments", json=body)

    assert first.json()["payment"]["uuid"] == second.json()["payment"]["uuid"]
    payments = await test_db.execute(select(Payment))
    assert len(payments.scalars().all()) == 1


async def test_create_payment_unknown_instructor(client, learner_id):
    response = await client.post("/api/payments", json={
        "learner_id": learner_id,
        "instructor_id": "missing",
        "amount_pence": 3000,
    })
    assert response.status_code == 404


async def test_create_payment_needs_an_amount(client, learner_id, instructor_id):
    response = await client.post("/api/payments", json={
        "learner_id": learner_id,
        "instructor_id": instructor_id,
    })
    assert response.status_code == 400
    assert response.json()["code"] == "validation_error"


async def test_create_payment_missing_fields(client):
    response = await client.post("/api/payments", json={"amount_pence": 3000})
    assert response.status_code == 400


async def test_get_payment_includes_intent_status(client, gateway, learner_id, instructor_id):
    created = await client.post("/api/payments", json={
        "learner_id": learner_id,
        "instructor_id": instructor_id,
        "amount_pence": 3000,
    })
    payment_id = created.json()["payment"]["uuid"]
    gateway.intent_status = "processing"

    response = await client.get(f"/api/payments/{payment_id}")

    assert response.status_code == 200
    assert response.json()["intent_status"] == "processing"
    assert response.json()["payment"]["uuid"] == payment_id


async def test_get_unknown_payment(client):
    response = await client.get("/api/payments/does-not-exist")
    assert response.status_code == 404
