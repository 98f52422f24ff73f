"""Spendboard metrics persistence layer.

Persists to SQLite (data/spendboard.db):
- store_metrics: one row per store per day (replace on upsert)
- product_metrics: running totals per product (increment on upsert)
- traffic_metrics: landing page funnel per sync window (replace on upsert)
"""
from .product_metrics import ProductMetricsRepository
from .store_metrics import NAMED_RANGES, StoreMetricsRepository, resolve_date_range
from .traffic_metrics import TrafficMetricsRepository

__all__ = [
    "NAMED_RANGES",
    "ProductMetricsRepository",
    "StoreMetricsRepository",
    "TrafficMetricsRepository",
    "resolve_date_range",
]
