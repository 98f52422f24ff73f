"""Daily Store Metric sync: Shopify orders + Facebook spend + Google spend per day."""
import asyncio
import logging
import time
from datetime import date, datetime, timedelta, tzinfo
from typing import Optional, Sequence

from ..audit import AuditService
from ..exceptions import InvalidDateRangeError
from ..integrations.facebook_client import FacebookClient
from ..integrations.google_client import GoogleAdsClient
from ..integrations.shopify_client import ShopifyClient
from ..metrics.store_metrics import StoreMetricsRepository
from ..schemas.metrics import (
    DailyAdSpend,
    DailyOrdersSummary,
    DailySyncReport,
    RangeSyncReport,
    StoreMetric,
    SyncRunResult,
)
from ..schemas.stores import Store
from ..stores.repository import StoreRepository
from .base import StoreSyncJob


logger = logging.getLogger(__name__)


def merge_by_date(
    store_id: str,
    shopify_rows: Sequence[DailyOrdersSummary],
    facebook_rows: Sequence[DailyAdSpend],
    google_rows: Sequence[DailyAdSpend],
) -> dict[str, StoreMetric]:
    """Combine vendor rows into one StoreMetric per ISO date.

    Each vendor only fills its own fields; untouched fields stay 0.
    """
    merged: dict[str, StoreMetric] = {}

    def entry(day: str) -> StoreMetric:
        if day not in merged:
            merged[day] = StoreMetric(store_id=store_id, date=date.fromisoformat(day))
        return merged[day]

    for row in shopify_rows:
        metric = entry(row.date)
        metric.shopify_sold_orders = row.sold_orders
        metric.shopify_order_value = row.order_value
        metric.shopify_sold_items = row.sold_items

    for row in facebook_rows:
        entry(row.date).facebook_meta_spend = row.spend

    for row in google_rows:
        entry(row.date).google_ad_spend = row.spend

    return merged


def parse_backfill_range(start_date: Optional[str], end_date: Optional[str]) -> tuple[date, date]:
    """Parse a YYYY-MM-DD pair.

    Raises:
        InvalidDateRangeError: If either date is unparseable or start is after end
    """
    try:
        start = datetime.strptime(start_date, "%Y-%m-%d").date()
        end = datetime.strptime(end_date, "%Y-%m-%d").date()
    except (TypeError, ValueError) as exc:
        raise InvalidDateRangeError("Invalid date format. Use YYYY-MM-DD") from exc

    if start > end:
        raise InvalidDateRangeError("startDate must be before endDate")

    return start, end


class MetricsSyncJob(StoreSyncJob):
    """Fetches all three vendors concurrently per store and upserts per-day rows."""

    JOB_NAME = "daily_metrics_sync"

    def __init__(
        self,
        stores: StoreRepository,
        metrics: StoreMetricsRepository,
        shopify: ShopifyClient,
        facebook: FacebookClient,
        google: GoogleAdsClient,
        audit: Optional[AuditService] = None,
        tz: Optional[tzinfo] = None,
    ) -> None:
        super().__init__(stores, audit=audit, tz=tz)
        self.metrics = metrics
        self.shopify = shopify
        self.facebook = facebook
        self.google = google

    async def sync_store(self, store: Store, from_date: date, to_date: date) -> int:
        """Sync [from_date, to_date] for one store; returns the number of days upserted.

        All three vendor calls run to completion before any error is raised, so
        no call is left running in the background.
        """
        results = await asyncio.gather(
            self.shopify.fetch_orders(store, from_date, to_date),
            self.facebook.fetch_ad_spend(store, from_date, to_date),
            self.google.fetch_ad_spend(store, from_date, to_date),
            return_exceptions=True,
        )
        for outcome in results:
            if isinstance(outcome, BaseException):
                raise outcome

        shopify_rows, facebook_rows, google_rows = results
        merged = merge_by_date(store.id, shopify_rows, facebook_rows, google_rows)

        for day in sorted(merged):
            self.metrics.create_or_update(merged[day])

        return len(merged)

    async def handle_daily_sync(self) -> SyncRunResult:
        """Sync yesterday (in the sync timezone) for every store."""
        yesterday = self.today() - timedelta(days=1)
        logger.info("Syncing data for date: %s", yesterday.isoformat())

        async def sync_one(store: Store) -> int:
            days = await self.sync_store(store, yesterday, yesterday)
            logger.info("Synced %s days for %s", days, store.name)
            return days

        return await self.run_for_all_stores(self.JOB_NAME, yesterday.isoformat(), sync_one)

    async def sync_store_daily(self, store_id: str) -> DailySyncReport:
        """On-demand sync of yesterday for one store."""
        store = self.stores.find_one(store_id)
        yesterday = self.today() - timedelta(days=1)

        logger.info("Starting daily sync for store: %s", store.name)
        days = await self.sync_store(store, yesterday, yesterday)
        logger.info("Daily sync completed. Updated %s day(s).", days)

        return DailySyncReport(
            message=f"Daily sync completed for store: {store.name}",
            date=yesterday.isoformat(),
            days_processed=days,
        )

    async def sync_store_range(
        self,
        store_id: str,
        start_date: Optional[str],
        end_date: Optional[str],
    ) -> RangeSyncReport:
        """Backfill an inclusive date range for one store.

        The range is validated before the store is looked up or any vendor is
        called.

        Raises:
            InvalidDateRangeError: Malformed or inverted range
            StoreNotFoundError: Unknown store
        """
        start, end = parse_backfill_range(start_date, end_date)
        store = self.stores.find_one(store_id)

        logger.warning(
            "RANGE SYNC INITIATED for %s: %s to %s (%s days)",
            store.name,
            start.isoformat(),
            end.isoformat(),
            (end - start).days + 1,
        )
        days = await self.sync_store(store, start, end)
        logger.info("Range sync completed. Updated %s days for %s", days, store.name)

        return RangeSyncReport(
            message=f"Range sync completed for store: {store.name}",
            start_date=start.isoformat(),
            end_date=end.isoformat(),
            days_processed=days,
            job_id=f"range-{int(time.time() * 1000)}",
        )
