"""Shared plumbing for the per-store sync jobs."""
import logging
from datetime import date, datetime, timedelta, timezone, tzinfo
from typing import Awaitable, Callable, Optional
from zoneinfo import ZoneInfo

from ..audit import AuditAction, AuditLogEntry, AuditService, AuditStatus, error_details
from ..schemas.metrics import SyncRunResult
from ..schemas.stores import Store
from ..stores.repository import StoreRepository


logger = logging.getLogger(__name__)


DEFAULT_TIMEZONE = "Asia/Kolkata"


def resolve_timezone(tz_name: Optional[str]) -> ZoneInfo:
    try:
        return ZoneInfo(tz_name or DEFAULT_TIMEZONE)
    except Exception:
        logger.warning("Invalid SYNC_TIMEZONE '%s', using UTC", tz_name)
        return ZoneInfo("UTC")


def start_of_day(day: date, tz: tzinfo) -> datetime:
    return datetime.combine(day, datetime.min.time(), tzinfo=tz)


def end_of_day(day: date, tz: tzinfo) -> datetime:
    return datetime.combine(day, datetime.max.time(), tzinfo=tz)


class StoreSyncJob:
    """Base for jobs that visit every store in sequence."""

    def __init__(
        self,
        stores: StoreRepository,
        audit: Optional[AuditService] = None,
        tz: Optional[tzinfo] = None,
    ) -> None:
        self.stores = stores
        self.audit = audit
        self.tz = tz or resolve_timezone(None)

    def today(self) -> date:
        return datetime.now(self.tz).date()

    def window_start(self, days: int) -> date:
        """First day of a trailing window of `days` days ending today."""
        return self.today() - timedelta(days=days)

    def _record_store_failure(self, job: str, store: Store, exc: BaseException) -> None:
        if self.audit is None:
            return
        self.audit.fire(
            AuditLogEntry(
                action=AuditAction.METRICS_SYNC_FAILED,
                status=AuditStatus.FAILURE,
                store_id=store.id,
                store_name=store.name,
                error_message=str(exc),
                error_details=error_details(exc),
                metadata={"job": job},
            )
        )

    async def run_for_all_stores(
        self,
        job: str,
        date_range: str,
        sync_one: Callable[[Store], Awaitable[int]],
    ) -> SyncRunResult:
        """Run sync_one for each store in turn; one store's failure never stops the loop.

        Args:
            job: Job name for logs and audit metadata
            date_range: Human readable window for the run summary
            sync_one: Coroutine returning the number of records written

        Returns:
            SyncRunResult with per-store success/failure counts
        """
        result = SyncRunResult(
            job=job,
            date_range=date_range,
            started_at=datetime.now(timezone.utc),
        )

        stores = self.stores.find_all()
        result.stores_total = len(stores)
        logger.info("Starting %s for %s stores (%s)", job, len(stores), date_range)

        for store in stores:
            try:
                logger.debug("Processing store: %s", store.name)
                processed = await sync_one(store)
                result.records_processed += processed
                result.stores_succeeded += 1
            except Exception as exc:
                logger.error("Failed %s for %s: %s", job, store.name, exc, exc_info=True)
                result.stores_failed += 1
                result.failed_store_ids.append(store.id)
                self._record_store_failure(job, store, exc)

        result.finished_at = datetime.now(timezone.utc)
        logger.info(
            "%s completed: %s succeeded, %s failed, %s records",
            job,
            result.stores_succeeded,
            result.stores_failed,
            result.records_processed,
        )
        return result
