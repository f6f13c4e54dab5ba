"""Scheduler service for payout cron jobs using APScheduler."""
import logging
import os
import multiprocessing
from datetime import date, datetime, timedelta
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger
import redis.asyncio as redis

from app.config import settings
from app.database import AsyncSessionLocal
from app.services.payouts import retry_failed_payouts, run_payout_batch
from app.services.stripe_gateway import PaymentGateway, get_payment_gateway

logger = logging.getLogger(__name__)

# Initialize scheduler
scheduler = AsyncIOScheduler()

# Redis client for distributed locking
redis_client = None

LOCK_PREFIX = "lplate:lock:"


async def get_redis_client():
    """Get or create Redis client."""
    global redis_client
    if redis_client is None:
        redis_client = redis.from_url(settings.REDIS_URL, decode_responses=True)
    return redis_client


async def acquire_lock(lock_name: str, timeout: int = 300) -> bool:
    """
    Acquire a distributed lock using Redis.

    Args:
        lock_name: Name of the lock
        timeout: Lock timeout in seconds

    Returns:
        True if lock acquired, False otherwise (including when Redis is down)
    """
    try:
        client = await get_redis_client()
        result = await client.set(f"{LOCK_PREFIX}{lock_name}", "1", nx=True, ex=timeout)
        return bool(result)
    except Exception as e:
        logger.error(f"Failed to acquire lock {lock_name}: {e}")
        return False


async def release_lock(lock_name: str):
    """Release a distributed lock."""
    try:
        client = await get_redis_client()
        await client.delete(f"{LOCK_PREFIX}{lock_name}")
    except Exception as e:
        logger.error(f"Failed to release lock {lock_name}: {e}")


async def run_weekly_payouts(
    payout_date: Optional[date] = None,
    session_factory=None,
    gateway: Optional[PaymentGateway] = None,
):
    """Friday job: pay every instructor for last week's completed lessons."""
    lock_name = "weekly_payouts"

    if not await acquire_lock(lock_name, timeout=1800):
        logger.info(f"Skipping {lock_name} - another instance is running")
        return None

    payout_date = payout_date or date.today()
    session_factory = session_factory or AsyncSessionLocal
    gateway = gateway or get_payment_gateway()
    try:
        logger.info(f"Running weekly payouts for {payout_date.isoformat()}")
        async with session_factory() as session:
            result = await run_payout_batch(session, gateway, payout_date)
        logger.info(
            f"Weekly payouts complete: {result.successful_payouts} succeeded, "
            f"{result.failed_payouts} failed of {result.total_instructors} instructors"
        )
        return result
    except Exception as e:
        logger.error(f"Error in {lock_name}: {e}", exc_info=True)
        return None
    finally:
        await release_lock(lock_name)


async def retry_payouts(session_factory=None, gateway: Optional[PaymentGateway] = None):
    """Hourly job: re-drive failed payout transfers whose backoff has elapsed."""
    lock_name = "retry_failed_payouts"

    if not await acquire_lock(lock_name):
        logger.info(f"Skipping {lock_name} - another instance is running")
        return None

    session_factory = session_factory or AsyncSessionLocal
    gateway = gateway or get_payment_gateway()
    try:
        async with session_factory() as session:
            stats = await retry_failed_payouts(session, gateway)
        logger.info(
            f"Payout retry complete: {stats['recovered']} recovered, {stats['failed']} failed, "
            f"{stats['exhausted']} exhausted of {stats['retried']} retried"
        )
        return stats
    except Exception as e:
        logger.error(f"Error in {lock_name}: {e}", exc_info=True)
        return None
    finally:
        await release_lock(lock_name)


def register_jobs():
    """Add the payout jobs to the scheduler."""
    scheduler.add_job(
        run_weekly_payouts,
        trigger=CronTrigger(day_of_week="fri", hour=settings.PAYOUT_CRON_HOUR, minute=0),
        id="weekly_payouts",
        name="Weekly instructor payouts",
        replace_existing=True
    )

    # Staggered by 10 minutes so a retry never overlaps the Friday run start
    scheduler.add_job(
        retry_payouts,
        trigger=IntervalTrigger(hours=1, start_date=datetime.utcnow() + timedelta(minutes=10)),
        id="retry_failed_payouts",
        name="Retry failed payouts",
        replace_existing=True
    )


def start_scheduler():
    """Start the APScheduler with the payout jobs."""
    # Worker processes are named "SpawnProcess-1", "SpawnProcess-2", ...;
    # only the first runs the scheduler
    current_pid = os.getpid()
    current_process_name = multiprocessing.current_process().name

    if not settings.SCHEDULER_ENABLED:
        logger.info("Scheduler disabled by configuration")
        return

    if current_process_name != "SpawnProcess-1":
        logger.info(f"Skipping scheduler on {current_process_name} (PID: {current_pid}) - scheduler only runs on SpawnProcess-1")
        return

    logger.info(f"Starting scheduler on {current_process_name} (PID: {current_pid})...")
    register_jobs()
    scheduler.start()
    logger.info("Scheduler started with payout jobs on master process")


def stop_scheduler():
    """Stop the APScheduler."""
    if scheduler.running:
        scheduler.shutdown()
        logger.info("Scheduler stopped")
    else:
        logger.info("Scheduler was not running")
