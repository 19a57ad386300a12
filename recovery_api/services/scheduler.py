"""Background job scheduler.

APScheduler-based periodic sweep of expired verification codes and reset
tokens.
"""

from collections.abc import Callable
from datetime import UTC, datetime

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from recovery_api.config import settings
from recovery_api.core.verification_store import VerificationStore
from recovery_api.logging_config import get_logger

logger = get_logger(__name__)

SWEEP_JOB_ID = "verification_sweep"

# Global scheduler instance
scheduler: AsyncIOScheduler | None = None


async def sweep_expired_entries(
    store: VerificationStore,
    clock: Callable[[], datetime] = lambda: datetime.now(UTC),
) -> int:
    """Remove expired codes and reset tokens from the store."""
    try:
        removed = store.sweep_expired(clock())
    except Exception as e:
        logger.error("Verification sweep failed", error=str(e))
        return 0

    logger.debug("Verification sweep completed", removed=removed)
    return removed


def start_scheduler(store: VerificationStore) -> AsyncIOScheduler:
    """Start the background job scheduler.

    Args:
        store: The verification store to sweep.

    Returns:
        The started scheduler instance
    """
    global scheduler

    if scheduler is not None:
        logger.warning("Scheduler already running")
        return scheduler

    scheduler = AsyncIOScheduler()

    if settings.sweep_enabled:
        scheduler.add_job(
            sweep_expired_entries,
            trigger=IntervalTrigger(minutes=settings.sweep_interval_minutes),
            args=[store],
            id=SWEEP_JOB_ID,
            name="Expired Verification Sweep",
            replace_existing=True,
            max_instances=1,
        )
        logger.info(
            "Scheduled verification sweep job",
            interval_minutes=settings.sweep_interval_minutes,
        )

    scheduler.start()
    logger.info("Background scheduler started")

    return scheduler


def stop_scheduler() -> None:
    """Stop the background job scheduler."""
    global scheduler

    if scheduler is not None:
        scheduler.shutdown(wait=False)
        scheduler = None
        logger.info("Background scheduler stopped")


def get_scheduler() -> AsyncIOScheduler | None:
    return scheduler
