"""Pydantic models shared across Spendboard."""
from .facebook import BreakdownMetrics, CalculatedMetrics, DetailedResult, InsightMetrics
from .metrics import (
    DailyAdSpend,
    DailyOrdersSummary,
    DailySyncReport,
    MetricsAggregate,
    ProductMetric,
    ProductMetricInput,
    ProductSales,
    ProductSyncReport,
    RangeSyncReport,
    StoreMetric,
    SyncRunResult,
    TrafficAnalytics,
    TrafficMetric,
    TrafficMetricInput,
    TrafficSyncReport,
)
from .stores import Store

__all__ = [
    "BreakdownMetrics",
    "CalculatedMetrics",
    "DailyAdSpend",
    "DailyOrdersSummary",
    "DailySyncReport",
    "DetailedResult",
    "InsightMetrics",
    "MetricsAggregate",
    "ProductMetric",
    "ProductMetricInput",
    "ProductSales",
    "ProductSyncReport",
    "RangeSyncReport",
    "Store",
    "StoreMetric",
    "SyncRunResult",
    "TrafficAnalytics",
    "TrafficMetric",
    "TrafficMetricInput",
    "TrafficSyncReport",
]
