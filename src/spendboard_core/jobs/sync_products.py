"""Product Metric sync: reset the store's totals, then re-apply a fresh batch."""
import logging
from datetime import tzinfo
from typing import Optional

from ..audit import AuditService
from ..integrations.shopify_client import ShopifyClient
from ..metrics.product_metrics import ProductMetricsRepository
from ..schemas.metrics import ProductMetricInput, ProductSyncReport, SyncRunResult
from ..schemas.stores import Store
from ..stores.repository import StoreRepository
from .base import StoreSyncJob, end_of_day, start_of_day


logger = logging.getLogger(__name__)


class ProductSyncJob(StoreSyncJob):
    """Rebuilds per-product totals from Shopify orders."""

    DAILY_WINDOW_DAYS = 30

    def __init__(
        self,
        stores: StoreRepository,
        products: ProductMetricsRepository,
        shopify: ShopifyClient,
        audit: Optional[AuditService] = None,
        tz: Optional[tzinfo] = None,
    ) -> None:
        super().__init__(stores, audit=audit, tz=tz)
        self.products = products
        self.shopify = shopify

    def _describe(self, days: Optional[int]) -> str:
        if not days:
            return "All-time data"
        return f"{self.window_start(days).isoformat()} to {self.today().isoformat()}"

    async def _resync(self, store: Store, days: Optional[int]) -> int:
        """Reset, fetch, then increment-upsert. days=None means all-time."""
        if days:
            from_dt = start_of_day(self.window_start(days), self.tz)
            to_dt = end_of_day(self.today(), self.tz)
        else:
            from_dt = to_dt = None

        logger.info("Syncing products for %s: %s", store.name, self._describe(days))

        self.products.reset_store_products(store.id)
        sales = await self.shopify.fetch_product_sales(store, from_dt, to_dt)

        for product in sales:
            self.products.upsert_product_metric(
                ProductMetricInput(
                    store_id=store.id,
                    product_id=product.product_id,
                    product_name=product.product_name,
                    product_image=product.product_image,
                    product_url=product.product_url,
                    quantity_sold=product.quantity_sold,
                    revenue=product.revenue,
                )
            )

        logger.info(
            "Synced %s products for %s (%s)",
            len(sales),
            store.name,
            f"last {days} days" if days else "all-time",
        )
        return len(sales)

    async def handle_daily_product_sync(self) -> SyncRunResult:
        days = self.DAILY_WINDOW_DAYS
        return await self.run_for_all_stores(
            "daily_product_sync",
            self._describe(days),
            lambda store: self._resync(store, days),
        )

    async def handle_monthly_full_sync(self) -> SyncRunResult:
        return await self.run_for_all_stores(
            "monthly_full_product_sync",
            self._describe(None),
            lambda store: self._resync(store, None),
        )

    async def sync_store_products(self, store_id: str, days: Optional[int] = None) -> ProductSyncReport:
        """On-demand product resync for one store; days <= 0 or None means all-time."""
        store = self.stores.find_one(store_id)
        days = days if days and days > 0 else None

        processed = await self._resync(store, days)
        return ProductSyncReport(
            message=f"Product analytics synced for store: {store.name}",
            date_range=self._describe(days),
            products_processed=processed,
        )
