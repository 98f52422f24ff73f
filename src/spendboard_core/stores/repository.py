"""Store lookup and credential persistence."""
import logging
import sqlite3
import uuid
from datetime import datetime
from typing import Optional

from ..audit import AuditAction, AuditLogEntry, AuditService, AuditStatus
from ..exceptions import StoreNotFoundError
from ..metrics.product_metrics import ProductMetricsRepository
from ..metrics.store_metrics import StoreMetricsRepository
from ..metrics.traffic_metrics import TrafficMetricsRepository
from ..schemas.stores import Store


logger = logging.getLogger(__name__)


_COLUMNS = (
    "id",
    "name",
    "shopify_token",
    "shopify_store_url",
    "fb_ad_spend_token",
    "fb_account_id",
    "google_access_token",
    "google_refresh_token",
    "google_customer_id",
    "google_token_expiry",
)


class StoreRepository:
    """SQLite-backed store records."""

    def __init__(
        self,
        conn: sqlite3.Connection,
        metrics: Optional[StoreMetricsRepository] = None,
        products: Optional[ProductMetricsRepository] = None,
        traffic: Optional[TrafficMetricsRepository] = None,
        audit: Optional[AuditService] = None,
    ) -> None:
        self.conn = conn
        self.metrics = metrics
        self.products = products
        self.traffic = traffic
        self.audit = audit

    def create(self, store: Store) -> Store:
        """Insert a store. Generates an id when the given one is empty."""
        if not store.id:
            store = store.model_copy(update={"id": uuid.uuid4().hex})

        values = store.model_dump()
        expiry = values["google_token_expiry"]
        values["google_token_expiry"] = expiry.isoformat() if expiry else None

        self.conn.execute(
            f"""
            INSERT INTO stores ({", ".join(_COLUMNS)})
            VALUES ({", ".join("?" for _ in _COLUMNS)})
            """,
            tuple(values[column] for column in _COLUMNS),
        )
        self.conn.commit()
        logger.info("Created store %s (%s)", store.name, store.id)
        return store

    def find_all(self) -> list[Store]:
        rows = self.conn.execute(
            f"SELECT {', '.join(_COLUMNS)} FROM stores ORDER BY created_at, name"
        ).fetchall()
        return [_row_to_store(row) for row in rows]

    def find_one(self, store_id: str) -> Store:
        """Fetch a store by id.

        Raises:
            StoreNotFoundError: If no store has this id
        """
        row = self.conn.execute(
            f"SELECT {', '.join(_COLUMNS)} FROM stores WHERE id = ?",
            (store_id,),
        ).fetchone()

        if row is None:
            raise StoreNotFoundError(store_id)

        return _row_to_store(row)

    def _update_google(self, store_id: str, **columns: Optional[str]) -> None:
        assignments = ", ".join(f"{column} = ?" for column in columns)
        cursor = self.conn.execute(
            f"UPDATE stores SET {assignments}, updated_at = CURRENT_TIMESTAMP WHERE id = ?",
            (*columns.values(), store_id),
        )
        self.conn.commit()

        if cursor.rowcount == 0:
            raise StoreNotFoundError(store_id)

    def update_google_tokens(
        self, store_id: str, access_token: str, expiry: datetime
    ) -> None:
        """Persist a refreshed Google access token and its expiry."""
        self._update_google(
            store_id,
            google_access_token=access_token,
            google_token_expiry=expiry.isoformat(),
        )

    def save_google_connection(
        self,
        store_id: str,
        access_token: str,
        refresh_token: str,
        expiry: datetime,
    ) -> None:
        """Store the tokens from a completed OAuth consent. The customer id is kept."""
        self._update_google(
            store_id,
            google_access_token=access_token,
            google_refresh_token=refresh_token,
            google_token_expiry=expiry.isoformat(),
        )
        logger.info("Saved Google OAuth tokens for store %s", store_id)

    def set_google_customer_id(self, store_id: str, customer_id: str) -> None:
        self._update_google(store_id, google_customer_id=customer_id)
        logger.info("Linked Google Ads customer %s to store %s", customer_id, store_id)

    def disconnect_google(self, store_id: str) -> None:
        """Clear every Google credential; the store's Google spend syncs as empty afterwards."""
        self._update_google(
            store_id,
            google_access_token=None,
            google_refresh_token=None,
            google_customer_id=None,
            google_token_expiry=None,
        )
        logger.info("Disconnected Google Ads from store %s", store_id)

    async def remove(self, store_id: str) -> None:
        """Delete a store and every metric row that belongs to it."""
        store = self.find_one(store_id)

        if self.metrics:
            self.metrics.delete_by_store_id(store_id)
        if self.products:
            self.products.delete_by_store_id(store_id)
        if self.traffic:
            self.traffic.delete_by_store_id(store_id)

        self.conn.execute("DELETE FROM stores WHERE id = ?", (store_id,))
        self.conn.commit()
        logger.info("Deleted store %s (%s)", store.name, store_id)

        if self.audit:
            await self.audit.log(
                AuditLogEntry(
                    action=AuditAction.STORE_DELETED,
                    status=AuditStatus.SUCCESS,
                    store_id=store_id,
                    store_name=store.name,
                )
            )


def _row_to_store(row: sqlite3.Row) -> Store:
    expiry = row["google_token_expiry"]
    return Store(
        id=row["id"],
        name=row["name"],
        shopify_token=row["shopify_token"],
        shopify_store_url=row["shopify_store_url"],
        fb_ad_spend_token=row["fb_ad_spend_token"],
        fb_account_id=row["fb_account_id"],
        google_access_token=row["google_access_token"],
        google_refresh_token=row["google_refresh_token"],
        google_customer_id=row["google_customer_id"],
        google_token_expiry=datetime.fromisoformat(expiry) if expiry else None,
    )
