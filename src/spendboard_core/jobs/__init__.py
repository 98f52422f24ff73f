"""Per-store sync jobs and their cron schedule."""
from .base import StoreSyncJob, resolve_timezone
from .scheduler import SyncScheduler, run_locked
from .sync_metrics import MetricsSyncJob, merge_by_date, parse_backfill_range
from .sync_products import ProductSyncJob
from .sync_traffic import TrafficSyncJob

__all__ = [
    "MetricsSyncJob",
    "ProductSyncJob",
    "StoreSyncJob",
    "SyncScheduler",
    "TrafficSyncJob",
    "merge_by_date",
    "parse_backfill_range",
    "resolve_timezone",
    "run_locked",
]
