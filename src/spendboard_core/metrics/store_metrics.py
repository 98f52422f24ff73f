"""Daily Store Metric persistence.

One row per (store, date). Re-syncing a date overwrites the row in full.
"""
import logging
import sqlite3
from datetime import date, datetime, timedelta, tzinfo
from typing import Optional
from zoneinfo import ZoneInfo

from ..schemas.metrics import MetricsAggregate, StoreMetric


logger = logging.getLogger(__name__)


NAMED_RANGES = {
    "last7days": 7,
    "last14days": 14,
    "last30days": 30,
    "last60days": 60,
    "last90days": 90,
}

DEFAULT_AGGREGATE_RANGE = "last30days"


def resolve_date_range(
    range_name: Optional[str] = None,
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
    today: Optional[date] = None,
) -> tuple[Optional[date], Optional[date]]:
    """Resolve a query window to inclusive (start, end) bounds.

    Explicit start/end dates win over a named range. A named range means
    "N days back from today". Unknown or absent ranges leave both bounds open.

    Raises:
        ValueError: If start_date/end_date are not YYYY-MM-DD
    """
    if start_date or end_date:
        start = datetime.strptime(start_date, "%Y-%m-%d").date() if start_date else None
        end = datetime.strptime(end_date, "%Y-%m-%d").date() if end_date else None
        return start, end

    days = NAMED_RANGES.get(range_name or "")
    if days is None:
        return None, None

    today = today or date.today()
    return today - timedelta(days=days), None


class StoreMetricsRepository:
    """Upserts and queries Daily Store Metric rows."""

    def __init__(self, conn: sqlite3.Connection, tz: Optional[tzinfo] = None) -> None:
        self.conn = conn
        self.tz = tz or ZoneInfo("UTC")

    def _today(self) -> date:
        return datetime.now(self.tz).date()

    def create_or_update(self, metric: StoreMetric) -> StoreMetric:
        """Upsert by (store_id, date), replacing all five metric fields."""
        self.conn.execute(
            """
            INSERT INTO store_metrics (
                store_id, metric_date,
                facebook_meta_spend, google_ad_spend,
                shopify_sold_orders, shopify_order_value, shopify_sold_items
            )
            VALUES (?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(store_id, metric_date)
            DO UPDATE SET
                facebook_meta_spend=excluded.facebook_meta_spend,
                google_ad_spend=excluded.google_ad_spend,
                shopify_sold_orders=excluded.shopify_sold_orders,
                shopify_order_value=excluded.shopify_order_value,
                shopify_sold_items=excluded.shopify_sold_items,
                updated_at=CURRENT_TIMESTAMP
            """,
            (
                metric.store_id,
                metric.date.isoformat(),
                metric.facebook_meta_spend,
                metric.google_ad_spend,
                metric.shopify_sold_orders,
                metric.shopify_order_value,
                metric.shopify_sold_items,
            ),
        )
        self.conn.commit()
        return metric

    def find_by_store(
        self,
        store_id: str,
        range_name: Optional[str] = None,
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
    ) -> list[StoreMetric]:
        """Rows for one store within the resolved window, oldest first."""
        start, end = resolve_date_range(range_name, start_date, end_date, self._today())

        clauses = ["store_id = ?"]
        params: list = [store_id]
        if start:
            clauses.append("metric_date >= ?")
            params.append(start.isoformat())
        if end:
            clauses.append("metric_date <= ?")
            params.append(end.isoformat())

        rows = self.conn.execute(
            f"""
            SELECT * FROM store_metrics
            WHERE {" AND ".join(clauses)}
            ORDER BY metric_date ASC
            """,
            params,
        ).fetchall()

        return [_row_to_metric(row) for row in rows]

    def aggregate(
        self,
        range_name: Optional[str] = None,
        store_ids: Optional[list[str]] = None,
    ) -> MetricsAggregate:
        """Sum spend, orders and revenue per store, then across stores."""
        range_name = range_name or DEFAULT_AGGREGATE_RANGE
        start, _ = resolve_date_range(range_name, today=self._today())

        clauses: list[str] = []
        params: list = []
        if start:
            clauses.append("metric_date >= ?")
            params.append(start.isoformat())
        if store_ids:
            clauses.append(f"store_id IN ({', '.join('?' for _ in store_ids)})")
            params.extend(store_ids)

        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        rows = self.conn.execute(
            f"""
            SELECT
                store_id,
                SUM(facebook_meta_spend) AS facebook_meta_spend,
                SUM(google_ad_spend) AS google_ad_spend,
                SUM(shopify_sold_orders) AS shopify_sold_orders,
                SUM(shopify_order_value) AS shopify_order_value
            FROM store_metrics
            {where}
            GROUP BY store_id
            """,
            params,
        ).fetchall()

        return MetricsAggregate(
            total_stores=len(rows),
            total_ad_spend=sum(
                (row["facebook_meta_spend"] or 0) + (row["google_ad_spend"] or 0)
                for row in rows
            ),
            total_orders=sum(row["shopify_sold_orders"] or 0 for row in rows),
            total_revenue=sum(row["shopify_order_value"] or 0 for row in rows),
            date_range=range_name,
        )

    def delete_by_store_id(self, store_id: str) -> None:
        self.conn.execute("DELETE FROM store_metrics WHERE store_id = ?", (store_id,))
        self.conn.commit()


def _row_to_metric(row: sqlite3.Row) -> StoreMetric:
    return StoreMetric(
        store_id=row["store_id"],
        date=date.fromisoformat(row["metric_date"]),
        facebook_meta_spend=row["facebook_meta_spend"],
        google_ad_spend=row["google_ad_spend"],
        shopify_sold_orders=row["shopify_sold_orders"],
        shopify_order_value=row["shopify_order_value"],
        shopify_sold_items=row["shopify_sold_items"],
    )
