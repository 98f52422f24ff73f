"""Pydantic models for vendor results and persisted metric rows."""
from datetime import date, datetime
from typing import Optional

from pydantic import Field

from .base import CamelModel


class DailyOrdersSummary(CamelModel):
    """Shopify orders rolled up for one calendar day."""

    date: str = Field(..., description="YYYY-MM-DD")
    sold_orders: int = 0
    order_value: float = 0.0
    sold_items: int = 0


class DailyAdSpend(CamelModel):
    """Ad spend for one calendar day (Facebook or Google)."""

    date: str = Field(..., description="YYYY-MM-DD")
    spend: float = 0.0


class ProductSales(CamelModel):
    """Per-product sales aggregated from Shopify orders."""

    product_id: str
    product_name: str
    product_image: str = ""
    product_url: str = ""
    quantity_sold: int = 0
    revenue: float = 0.0


class TrafficAnalytics(CamelModel):
    """One landing page row from the ShopifyQL sessions report."""

    landing_page_type: str = "Unknown"
    landing_page_path: str = "/"
    online_store_visitors: int = 0
    sessions: int = 0
    sessions_with_cart_additions: int = 0
    sessions_that_reached_checkout: int = 0


class StoreMetric(CamelModel):
    """Daily Store Metric: one row per (store, date)."""

    store_id: str
    date: date
    facebook_meta_spend: float = 0.0
    google_ad_spend: float = 0.0
    shopify_sold_orders: int = 0
    shopify_order_value: float = 0.0
    shopify_sold_items: int = 0


class ProductMetricInput(CamelModel):
    """Increment applied to a Product Metric row."""

    store_id: str
    product_id: str
    product_name: str
    product_image: str = ""
    product_url: str = ""
    quantity_sold: int = 0
    revenue: float = 0.0


class ProductMetric(CamelModel):
    """Product Metric: running totals per (store, product)."""

    store_id: str
    product_id: str
    product_name: str
    product_image: str = ""
    product_url: str = ""
    total_quantity_sold: int = 0
    total_revenue: float = 0.0
    last_sync_date: datetime


class TrafficMetricInput(CamelModel):
    """Replacement payload for a Traffic Metric row."""

    store_id: str
    landing_page_type: str
    landing_page_path: str
    online_store_visitors: int = 0
    sessions: int = 0
    sessions_with_cart_additions: int = 0
    sessions_that_reached_checkout: int = 0
    start_date: date
    end_date: date


class TrafficMetric(TrafficMetricInput):
    """Traffic Metric: funnel counts per (store, landing page, window start)."""

    last_sync_date: datetime


class MetricsAggregate(CamelModel):
    """Totals across stores for a date range."""

    total_stores: int = 0
    total_ad_spend: float = 0.0
    total_orders: int = 0
    total_revenue: float = 0.0
    date_range: str = "last30days"


class SyncRunResult(CamelModel):
    """Outcome of one scheduled job run across all stores."""

    job: str
    date_range: str
    stores_total: int = 0
    stores_succeeded: int = 0
    stores_failed: int = 0
    records_processed: int = 0
    failed_store_ids: list[str] = Field(default_factory=list)
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None


class DailySyncReport(CamelModel):
    """Result of an on-demand daily sync for one store."""

    message: str
    date: str
    days_processed: int = 0


class RangeSyncReport(CamelModel):
    """Result of an on-demand backfill for one store."""

    message: str
    start_date: str
    end_date: str
    days_processed: int = 0
    job_id: str


class ProductSyncReport(CamelModel):
    message: str
    date_range: str
    products_processed: int = 0


class TrafficSyncReport(CamelModel):
    message: str
    date_range: str
    landing_pages_processed: int = 0
