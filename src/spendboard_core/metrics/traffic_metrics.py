"""Traffic Metric persistence.

Rows are keyed by (store, landing page path, window start) and fully replaced
on upsert. A resync deletes the store's rows whose window starts on or after
the new window's start before re-inserting.
"""
import logging
import sqlite3
from datetime import date, datetime, timezone
from typing import Optional

from ..schemas.metrics import TrafficMetric, TrafficMetricInput


logger = logging.getLogger(__name__)


class TrafficMetricsRepository:
    """Upserts and queries Traffic Metric rows."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        self.conn = conn

    def upsert_traffic_metric(self, item: TrafficMetricInput) -> None:
        now = datetime.now(timezone.utc).isoformat()
        self.conn.execute(
            """
            INSERT INTO traffic_metrics (
                store_id, landing_page_type, landing_page_path,
                online_store_visitors, sessions,
                sessions_with_cart_additions, sessions_that_reached_checkout,
                start_date, end_date, last_sync_date
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(store_id, landing_page_path, start_date)
            DO UPDATE SET
                landing_page_type=excluded.landing_page_type,
                online_store_visitors=excluded.online_store_visitors,
                sessions=excluded.sessions,
                sessions_with_cart_additions=excluded.sessions_with_cart_additions,
                sessions_that_reached_checkout=excluded.sessions_that_reached_checkout,
                end_date=excluded.end_date,
                last_sync_date=excluded.last_sync_date,
                updated_at=CURRENT_TIMESTAMP
            """,
            (
                item.store_id,
                item.landing_page_type,
                item.landing_page_path,
                item.online_store_visitors,
                item.sessions,
                item.sessions_with_cart_additions,
                item.sessions_that_reached_checkout,
                item.start_date.isoformat(),
                item.end_date.isoformat(),
                now,
            ),
        )
        self.conn.commit()

    def get_top_landing_pages_by_store(
        self,
        store_id: str,
        limit: int = 10,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
    ) -> list[TrafficMetric]:
        """Busiest landing pages, optionally filtered on window start."""
        clauses = ["store_id = ?"]
        params: list = [store_id]
        if start_date:
            clauses.append("start_date >= ?")
            params.append(start_date.isoformat())
        if end_date:
            clauses.append("start_date <= ?")
            params.append(end_date.isoformat())

        rows = self.conn.execute(
            f"""
            SELECT * FROM traffic_metrics
            WHERE {" AND ".join(clauses)}
            ORDER BY sessions DESC
            LIMIT ?
            """,
            [*params, limit],
        ).fetchall()

        return [_row_to_traffic(row) for row in rows]

    def reset_store_traffic(self, store_id: str, start_date: date) -> None:
        """Delete the store's rows whose window starts on or after start_date."""
        cursor = self.conn.execute(
            """
            DELETE FROM traffic_metrics
            WHERE store_id = ? AND start_date >= ?
            """,
            (store_id, start_date.isoformat()),
        )
        self.conn.commit()
        logger.debug(
            "Removed %s traffic rows for store %s from %s",
            cursor.rowcount,
            store_id,
            start_date.isoformat(),
        )

    def delete_by_store_id(self, store_id: str) -> None:
        self.conn.execute("DELETE FROM traffic_metrics WHERE store_id = ?", (store_id,))
        self.conn.commit()


def _row_to_traffic(row: sqlite3.Row) -> TrafficMetric:
    return TrafficMetric(
        store_id=row["store_id"],
        landing_page_type=row["landing_page_type"],
        landing_page_path=row["landing_page_path"],
        online_store_visitors=row["online_store_visitors"],
        sessions=row["sessions"],
        sessions_with_cart_additions=row["sessions_with_cart_additions"],
        sessions_that_reached_checkout=row["sessions_that_reached_checkout"],
        start_date=date.fromisoformat(row["start_date"]),
        end_date=date.fromisoformat(row["end_date"]),
        last_sync_date=datetime.fromisoformat(row["last_sync_date"]),
    )
