"""Product Metric persistence.

Totals are incremented on upsert, never replaced. A full resync zeroes the
store's rows first (reset_store_products) and then re-applies increments from
the fresh batch, so repeated syncs do not double count.
"""
import logging
import sqlite3
from datetime import datetime, timezone

from ..schemas.metrics import ProductMetric, ProductMetricInput


logger = logging.getLogger(__name__)


class ProductMetricsRepository:
    """Upserts and queries Product Metric rows."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        self.conn = conn

    def upsert_product_metric(self, item: ProductMetricInput) -> None:
        """Set descriptive fields and add quantity/revenue to the running totals."""
        now = datetime.now(timezone.utc).isoformat()
        self.conn.execute(
            """
            INSERT INTO product_metrics (
                store_id, product_id, product_name, product_image, product_url,
                total_quantity_sold, total_revenue, last_sync_date
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(store_id, product_id)
            DO UPDATE SET
                product_name=excluded.product_name,
                product_image=excluded.product_image,
                product_url=excluded.product_url,
                total_quantity_sold=total_quantity_sold + excluded.total_quantity_sold,
                total_revenue=total_revenue + excluded.total_revenue,
                last_sync_date=excluded.last_sync_date,
                updated_at=CURRENT_TIMESTAMP
            """,
            (
                item.store_id,
                item.product_id,
                item.product_name,
                item.product_image,
                item.product_url,
                item.quantity_sold,
                item.revenue,
                now,
            ),
        )
        self.conn.commit()

    def get_top_products_by_store(self, store_id: str, limit: int = 5) -> list[ProductMetric]:
        rows = self.conn.execute(
            """
            SELECT * FROM product_metrics
            WHERE store_id = ?
            ORDER BY total_revenue DESC, total_quantity_sold DESC
            LIMIT ?
            """,
            (store_id, limit),
        ).fetchall()

        return [
            ProductMetric(
                store_id=row["store_id"],
                product_id=row["product_id"],
                product_name=row["product_name"],
                product_image=row["product_image"],
                product_url=row["product_url"] or "",
                total_quantity_sold=row["total_quantity_sold"],
                total_revenue=row["total_revenue"],
                last_sync_date=datetime.fromisoformat(row["last_sync_date"]),
            )
            for row in rows
        ]

    def reset_store_products(self, store_id: str) -> None:
        """Zero the totals of every product row for the store, in place."""
        cursor = self.conn.execute(
            """
            UPDATE product_metrics
            SET total_quantity_sold = 0,
                total_revenue = 0,
                updated_at = CURRENT_TIMESTAMP
            WHERE store_id = ?
            """,
            (store_id,),
        )
        self.conn.commit()
        logger.debug("Reset %s product rows for store %s", cursor.rowcount, store_id)

    def delete_by_store_id(self, store_id: str) -> None:
        self.conn.execute("DELETE FROM product_metrics WHERE store_id = ?", (store_id,))
        self.conn.commit()
