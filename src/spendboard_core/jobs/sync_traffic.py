"""Traffic Metric sync: delete rows in the new window, then re-insert the fresh report."""
import logging
from datetime import tzinfo
from typing import Optional

from ..audit import AuditService
from ..integrations.shopify_client import ShopifyClient
from ..metrics.traffic_metrics import TrafficMetricsRepository
from ..schemas.metrics import SyncRunResult, TrafficMetricInput, TrafficSyncReport
from ..schemas.stores import Store
from ..stores.repository import StoreRepository
from .base import StoreSyncJob


logger = logging.getLogger(__name__)


class TrafficSyncJob(StoreSyncJob):
    """Refreshes the top landing pages per store."""

    DAILY_DAYS_BACK = 7
    DAILY_PAGE_LIMIT = 20
    WEEKLY_DAYS_BACK = 30
    WEEKLY_PAGE_LIMIT = 50

    def __init__(
        self,
        stores: StoreRepository,
        traffic: TrafficMetricsRepository,
        shopify: ShopifyClient,
        audit: Optional[AuditService] = None,
        tz: Optional[tzinfo] = None,
    ) -> None:
        super().__init__(stores, audit=audit, tz=tz)
        self.traffic = traffic
        self.shopify = shopify

    async def _resync(self, store: Store, days_back: int, limit: int) -> int:
        start_date = self.window_start(days_back)
        end_date = self.today()

        logger.info(
            "Processing traffic metrics for: %s from %s to %s",
            store.name,
            start_date.isoformat(),
            end_date.isoformat(),
        )

        self.traffic.reset_store_traffic(store.id, start_date)
        pages = await self.shopify.fetch_traffic_analytics(store, days_back, limit)

        for page in pages:
            self.traffic.upsert_traffic_metric(
                TrafficMetricInput(
                    store_id=store.id,
                    landing_page_type=page.landing_page_type,
                    landing_page_path=page.landing_page_path,
                    online_store_visitors=page.online_store_visitors,
                    sessions=page.sessions,
                    sessions_with_cart_additions=page.sessions_with_cart_additions,
                    sessions_that_reached_checkout=page.sessions_that_reached_checkout,
                    start_date=start_date,
                    end_date=end_date,
                )
            )

        logger.info(
            "Synced %s landing pages for %s (last %s days)", len(pages), store.name, days_back
        )
        return len(pages)

    async def handle_daily_traffic_sync(self) -> SyncRunResult:
        return await self.run_for_all_stores(
            "daily_traffic_sync",
            f"Last {self.DAILY_DAYS_BACK} days",
            lambda store: self._resync(store, self.DAILY_DAYS_BACK, self.DAILY_PAGE_LIMIT),
        )

    async def handle_weekly_extended_sync(self) -> SyncRunResult:
        return await self.run_for_all_stores(
            "weekly_traffic_sync",
            f"Last {self.WEEKLY_DAYS_BACK} days",
            lambda store: self._resync(store, self.WEEKLY_DAYS_BACK, self.WEEKLY_PAGE_LIMIT),
        )

    async def sync_store_traffic(
        self,
        store_id: str,
        days: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> TrafficSyncReport:
        """On-demand traffic resync for one store (defaults: 7 days, top 10 pages)."""
        store = self.stores.find_one(store_id)
        days_back = days if days and days > 0 else 7
        page_limit = limit if limit and limit > 0 else 10

        logger.info(
            "Starting traffic analytics sync for %s (last %s days, top %s pages)",
            store.name,
            days_back,
            page_limit,
        )
        processed = await self._resync(store, days_back, page_limit)

        return TrafficSyncReport(
            message=f"Traffic analytics synced for store: {store.name}",
            date_range=f"Last {days_back} days",
            landing_pages_processed=processed,
        )
