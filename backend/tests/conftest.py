"""Pytest configuration and fixtures."""
import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("SCHEDULER_ENABLED", "false")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")

from types import SimpleNamespace

import pytest
import stripe
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

from app.database import Base, build_session_factory, get_db
from app.models.booking import Booking
from app.models.instructor import Instructor
from app.models.payment import Payment
from app.models.profile import Profile
from app.models.stripe_connect_account import StripeConnectAccount
from app.services.commission import payment_amounts
from app.services.stripe_gateway import PaymentGateway, get_payment_gateway
from main import app


class FakeGateway(PaymentGateway):
    """PaymentGateway that records calls instead of talking to Stripe.

    Webhook signature verification is inherited, so tests sign payloads the
    way Stripe does.
    """

    def __init__(self):
        super().__init__(api_key="sk_test_fake", currency="gbp")
        self.intent_status = "requires_payment_method"
        self.intents = []
        self.transfers = []
        self.accounts = []
        self.failing_destinations = set()
        self.transfer_error = None
        self.account_state = {"charges_enabled": False, "payouts_enabled": False, "details_submitted": False}

    def create_payment_intent(self, **kwargs):
        key = kwargs.get("idempotency_key")
        for n, previous in enumerate(self.intents, start=1):
            if key and previous.get("idempotency_key") == key:
                break
        else:
            self.intents.append(kwargs)
            n = len(self.intents)
        return SimpleNamespace(id=f"pi_test_{n}", status=self.intent_status, client_secret=f"pi_test_{n}_secret")

    def retrieve_payment_intent(self, payment_intent_id):
        return SimpleNamespace(id=payment_intent_id, status=self.intent_status)

    def create_transfer(self, **kwargs):
        if kwargs["destination"] in self.failing_destinations:
            raise self.transfer_error or stripe.APIConnectionError("Could not connect to Stripe")
        self.transfers.append(kwargs)
        return SimpleNamespace(id=f"tr_test_{len(self.transfers)}")

    def create_account(self, **kwargs):
        self.accounts.append(kwargs)
        return stripe.Account.construct_from(
            {"id": f"acct_test_{len(self.accounts)}", **self.account_state}, "sk_test_fake"
        )

    def retrieve_account(self, account_id):
        return stripe.Account.construct_from(
            {
                "id": account_id,
                **self.account_state,
                "requirements": {"currently_due": ["individual.dob.day"], "past_due": [], "disabled_reason": None},
            },
            "sk_test_fake",
        )

    def create_account_link(self, **kwargs):
        self.last_account_link = kwargs
        return SimpleNamespace(url=f"https://connect.stripe.com/setup/e/{kwargs['account_id']}")

    def create_login_link(self, account_id):
        return SimpleNamespace(url=f"https://connect.stripe.com/express/{account_id}")


@pytest.fixture
async def db_engine():
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", poolclass=StaticPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return build_session_factory(db_engine)


@pytest.fixture
async def file_session_factory(tmp_path):
    """Session factory over a file-backed SQLite database.

    Each session gets its own connection, so two sessions can interleave
    reads and writes the way concurrent requests do.
    """
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'concurrent.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield build_session_factory(engine)
    await engine.dispose()


@pytest.fixture
async def file_pair(file_session_factory):
    """A learner and an instructor in the file-backed database; returns (learner id, instructor id)."""
    async with file_session_factory() as session:
        learner = Profile(name="Lara Learner", email="lara@example.com", role="learner")
        instructor = Profile(name="Ian Instructor", email="ian@example.com", role="instructor")
        session.add_all([learner, instructor])
        await session.flush()
        session.add(Instructor(uuid=instructor.uuid, hourly_rate_pence=3000, postcode="SW1A 1AA"))
        await session.commit()
        return learner.uuid, instructor.uuid


@pytest.fixture
async def test_db(session_factory):
    """Create test database session."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
async def client(test_db, gateway):
    """HTTP client wired to the test session and fake gateway."""
    async def override_get_db():
        yield test_db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_payment_gateway] = lambda: gateway
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest.fixture
async def learner_id(test_db):
    learner = Profile(name="Lara Learner", email="lara@example.com", role="learner")
    test_db.add(learner)
    await test_db.commit()
    return learner.uuid


@pytest.fixture
async def make_instructor(test_db):
    """Factory creating an instructor (and optionally a Connect account); returns the id."""
    count = 0

    async def _make(rate_pence=3000, stripe_account_id=None, payouts_enabled=True):
        nonlocal count
        count += 1
        profile = Profile(name=f"Ian Instructor{count}", email=f"ian{count}@example.com", role="instructor")
        test_db.add(profile)
        await test_db.flush()
        test_db.add(Instructor(uuid=profile.uuid, hourly_rate_pence=rate_pence, postcode="SW1A 1AA"))
        if stripe_account_id:
            test_db.add(StripeConnectAccount(
                instructor_id=profile.uuid,
                stripe_account_id=stripe_account_id,
                charges_enabled=payouts_enabled,
                payouts_enabled=payouts_enabled,
                details_submitted=payouts_enabled,
            ))
        await test_db.commit()
        return profile.uuid

    return _make


@pytest.fixture
async def instructor_id(make_instructor):
    return await make_instructor(stripe_account_id="acct_instructor_1")


@pytest.fixture
async def make_lesson(test_db):
    """Factory for a booking plus its payment; returns (booking id, payment id)."""
    count = 0

    async def _make(learner_id, instructor_id, end_at, base_pence=3000,
                    booking_status="completed", payment_status="succeeded"):
        nonlocal count
        count += 1
        booking = Booking(
            learner_id=learner_id,
            instructor_id=instructor_id,
            start_at=end_at.replace(hour=max(end_at.hour - 1, 0)),
            end_at=end_at,
            price_pence=base_pence,
            status=booking_status,
        )
        test_db.add(booking)
        await test_db.flush()
        amounts = payment_amounts(base_pence)
        payment = Payment(
            learner_id=learner_id,
            instructor_id=instructor_id,
            booking_id=booking.uuid,
            total_amount_pence=amounts.total_amount_pence,
            platform_fee_pence=amounts.platform_fee_pence,
            instructor_amount_pence=amounts.instructor_amount_pence,
            discount_amount_pence=0,
            stripe_payment_intent_id=f"pi_lesson_{count}_{booking.uuid[:8]}",
            status=payment_status,
        )
        test_db.add(payment)
        await test_db.commit()
        return booking.uuid, payment.uuid

    return _make
