"""Cron scheduling for the sync jobs.

Uses APScheduler's AsyncIOScheduler so the jobs run on the app's event loop.
When a Redis client is configured, each firing takes a non-blocking lock so
only one replica runs it.
"""
import logging
from typing import TYPE_CHECKING, Awaitable, Callable, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from redis.asyncio import Redis
from redis.asyncio.lock import Lock as AsyncRedisLock
from redis.exceptions import LockError

from ..schemas.metrics import SyncRunResult

if TYPE_CHECKING:
    from ..runtime import SpendboardRuntime


logger = logging.getLogger(__name__)


LOCK_PREFIX = "spendboard:lock:job"
LOCK_TTL_SECONDS = 6 * 60 * 60


async def run_locked(
    job_id: str,
    job: Callable[[], Awaitable[SyncRunResult]],
    redis: Optional[Redis] = None,
) -> Optional[SyncRunResult]:
    """Run a job once, skipping if another runner holds its lock.

    Errors are logged, never raised, so one failed firing cannot take down the
    scheduler.

    Returns:
        The job's result, or None if skipped or failed
    """
    lock: Optional[AsyncRedisLock] = None
    if redis is not None:
        lock = AsyncRedisLock(
            redis,
            name=f"{LOCK_PREFIX}:{job_id}",
            timeout=LOCK_TTL_SECONDS,
            blocking=False,
        )
        try:
            acquired = await lock.acquire(blocking=False)
        except Exception as exc:
            logger.error("Could not reach Redis for %s lock: %s", job_id, exc)
            return None
        if not acquired:
            logger.info("Skipping %s: another runner holds the lock", job_id)
            return None

    try:
        logger.info("Scheduled job %s starting", job_id)
        result = await job()
        logger.info("Scheduled job %s finished", job_id)
        return result
    except Exception as exc:
        logger.error("Scheduled job %s failed: %s", job_id, exc, exc_info=True)
        return None
    finally:
        if lock is not None:
            try:
                await lock.release()
            except LockError as exc:
                logger.warning("Lock for %s was already released: %s", job_id, exc)


class SyncScheduler:
    """Registers the five sync schedules against a runtime's jobs."""

    def __init__(self, runtime: "SpendboardRuntime") -> None:
        self.runtime = runtime
        self.scheduler = AsyncIOScheduler(timezone=runtime.tz)
        self._register()

    def _schedules(self) -> list[tuple[str, CronTrigger, Callable[[], Awaitable[SyncRunResult]]]]:
        tz = self.runtime.tz
        metrics_job = self.runtime.metrics_job
        product_job = self.runtime.product_job
        traffic_job = self.runtime.traffic_job
        return [
            (
                "daily_metrics_sync",
                CronTrigger(hour=2, minute=0, timezone=tz),
                metrics_job.handle_daily_sync,
            ),
            (
                "daily_product_sync",
                CronTrigger(hour=3, minute=0, timezone=tz),
                product_job.handle_daily_product_sync,
            ),
            (
                "monthly_full_product_sync",
                CronTrigger(day=1, hour=0, minute=0, timezone=tz),
                product_job.handle_monthly_full_sync,
            ),
            (
                "daily_traffic_sync",
                CronTrigger(hour=4, minute=0, timezone=tz),
                traffic_job.handle_daily_traffic_sync,
            ),
            (
                "weekly_traffic_sync",
                CronTrigger(day_of_week="sun", hour=0, minute=0, timezone=tz),
                traffic_job.handle_weekly_extended_sync,
            ),
        ]

    def _register(self) -> None:
        for job_id, trigger, job in self._schedules():
            self.scheduler.add_job(
                run_locked,
                trigger=trigger,
                args=[job_id, job, self.runtime.redis],
                id=job_id,
                name=job_id,
                replace_existing=True,
                max_instances=1,
                coalesce=True,
            )

    @property
    def job_ids(self) -> list[str]:
        return [job.id for job in self.scheduler.get_jobs()]

    def start(self) -> None:
        self.scheduler.start()
        logger.info("Sync scheduler started with jobs: %s", ", ".join(self.job_ids))

    def shutdown(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Sync scheduler stopped")
