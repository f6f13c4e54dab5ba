"""Tests for the payout scheduler jobs and their Redis locks."""
from datetime import date, datetime
from unittest.mock import AsyncMock, patch

import pytest

from app.config import settings
from app.services import scheduler as scheduler_service


@pytest.fixture
def redis_mock():
    client = AsyncMock()
    client.set.return_value = True
    with patch.object(scheduler_service, "get_redis_client", AsyncMock(return_value=client)):
        yield client


async def test_weekly_payouts_runs_under_lock(redis_mock, session_factory, gateway, learner_id, instructor_id, make_lesson):
    await make_lesson(learner_id, instructor_id, datetime(2026, 10, 12, 10))

    result = await scheduler_service.run_weekly_payouts(
        date(2026, 10, 16), session_factory=session_factory, gateway=gateway,
    )

    assert result.successful_payouts == 1
    assert len(gateway.transfers) == 1
    redis_mock.set.assert_awaited_once_with("lplate:lock:weekly_payouts", "1", nx=True, ex=1800)
    redis_mock.delete.assert_awaited_once_with("lplate:lock:weekly_payouts")


async def test_weekly_payouts_skipped_when_locked(redis_mock, session_factory, gateway):
    redis_mock.set.return_value = None

    result = await scheduler_service.run_weekly_payouts(
        date(2026, 10, 16), session_factory=session_factory, gateway=gateway,
    )

    assert result is None
    redis_mock.delete.assert_not_awaited()


async def test_weekly_payouts_releases_lock_on_bad_date(redis_mock, session_factory, gateway):
    result = await scheduler_service.run_weekly_payouts(
        date(2026, 10, 14), session_factory=session_factory, gateway=gateway,
    )

    assert result is None
    redis_mock.delete.assert_awaited_once()


async def test_lock_not_acquired_when_redis_down():
    broken = AsyncMock()
    broken.set.side_effect = ConnectionError("redis unavailable")
    with patch.object(scheduler_service, "get_redis_client", AsyncMock(return_value=broken)):
        assert await scheduler_service.acquire_lock("weekly_payouts") is False


async def test_retry_job_returns_stats(redis_mock, session_factory, gateway):
    stats = await scheduler_service.retry_payouts(session_factory=session_factory, gateway=gateway)

    assert stats == {"retried": 0, "recovered": 0, "failed": 0, "exhausted": 0}
    redis_mock.set.assert_awaited_once_with("lplate:lock:retry_failed_payouts", "1", nx=True, ex=300)


def test_register_jobs():
    try:
        scheduler_service.register_jobs()
        weekly = scheduler_service.scheduler.get_job("weekly_payouts")
        retry = scheduler_service.scheduler.get_job("retry_failed_payouts")
        assert "day_of_week='fri'" in str(weekly.trigger)
        assert f"hour='{settings.PAYOUT_CRON_HOUR}'" in str(weekly.trigger)
        assert retry is not None
    finally:
        scheduler_service.scheduler.remove_all_jobs()


def test_scheduler_disabled_by_setting(monkeypatch):
    monkeypatch.setattr(settings, "SCHEDULER_ENABLED", False)
    scheduler_service.start_scheduler()
    assert not scheduler_service.scheduler.running
