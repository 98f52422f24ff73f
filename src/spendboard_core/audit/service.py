"""Append-only audit log backed by SQLite.

Audit writes are best effort: persistence errors are logged and swallowed,
never propagated to the caller.
"""
import asyncio
import json
import logging
import sqlite3
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import Field

from ..schemas.base import CamelModel


logger = logging.getLogger(__name__)


class AuditAction(str, Enum):
    """Audited actions."""

    SHOPIFY_SYNC_STARTED = "SHOPIFY_SYNC_STARTED"
    SHOPIFY_SYNC_FAILED = "SHOPIFY_SYNC_FAILED"
    SHOPIFY_ORDERS_FETCHED = "SHOPIFY_ORDERS_FETCHED"
    SHOPIFY_PRODUCTS_SYNCED = "SHOPIFY_PRODUCTS_SYNCED"
    SHOPIFY_TRAFFIC_SYNCED = "SHOPIFY_TRAFFIC_SYNCED"

    FACEBOOK_SYNC_STARTED = "FACEBOOK_SYNC_STARTED"
    FACEBOOK_SYNC_FAILED = "FACEBOOK_SYNC_FAILED"
    FACEBOOK_AD_SPEND_FETCHED = "FACEBOOK_AD_SPEND_FETCHED"
    FACEBOOK_INSIGHTS_FETCHED = "FACEBOOK_INSIGHTS_FETCHED"
    FACEBOOK_API_ERROR = "FACEBOOK_API_ERROR"

    GOOGLE_SYNC_STARTED = "GOOGLE_SYNC_STARTED"
    GOOGLE_SYNC_FAILED = "GOOGLE_SYNC_FAILED"
    GOOGLE_AD_SPEND_FETCHED = "GOOGLE_AD_SPEND_FETCHED"
    GOOGLE_TOKEN_REFRESHED = "GOOGLE_TOKEN_REFRESHED"
    GOOGLE_CONNECTED = "GOOGLE_CONNECTED"
    GOOGLE_CONNECT_FAILED = "GOOGLE_CONNECT_FAILED"
    GOOGLE_ACCOUNT_SELECTED = "GOOGLE_ACCOUNT_SELECTED"
    GOOGLE_DISCONNECTED = "GOOGLE_DISCONNECTED"

    METRICS_SYNC_FAILED = "METRICS_SYNC_FAILED"

    STORE_DELETED = "STORE_DELETED"


class AuditStatus(str, Enum):
    """Outcome of an audited action."""

    PENDING = "PENDING"
    SUCCESS = "SUCCESS"
    FAILURE = "FAILURE"


class AuditLogEntry(CamelModel):
    """One audit record. Never mutated after creation."""

    action: AuditAction
    status: AuditStatus
    user_id: Optional[str] = None
    store_id: Optional[str] = None
    user_email: Optional[str] = None
    store_name: Optional[str] = None
    metadata: Optional[dict[str, Any]] = None
    error_message: Optional[str] = None
    error_details: Optional[dict[str, Any]] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    duration: Optional[int] = Field(None, description="Milliseconds")
    created_at: Optional[datetime] = None


def error_details(exc: BaseException) -> dict[str, Any]:
    """Serializable summary of an exception for error_details."""
    details: dict[str, Any] = {"type": type(exc).__name__, "message": str(exc)}
    for attr in ("vendor", "status", "code"):
        value = getattr(exc, attr, None)
        if value is not None:
            details[attr] = value
    return details


class AuditService:
    """Records audit entries; reads them back for the admin views."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        self.conn = conn
        self._pending: set[asyncio.Task] = set()

    async def log(self, entry: AuditLogEntry) -> None:
        """Persist an audit entry. Never raises."""
        try:
            created_at = entry.created_at or datetime.now(timezone.utc)
            self.conn.execute(
                """
                INSERT INTO audit_logs (
                    action, status, user_id, store_id, user_email, store_name,
                    metadata_json, error_message, error_details_json,
                    ip_address, user_agent, duration_ms, created_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    entry.action.value,
                    entry.status.value,
                    entry.user_id,
                    entry.store_id,
                    entry.user_email,
                    entry.store_name,
                    _dump(entry.metadata),
                    entry.error_message,
                    _dump(entry.error_details),
                    entry.ip_address,
                    entry.user_agent,
                    entry.duration,
                    created_at.isoformat(),
                ),
            )
            self.conn.commit()

            message = f"[AUDIT] {entry.action.value} - {entry.status.value}"
            if entry.user_email:
                message += f" - {entry.user_email}"
            if entry.store_name:
                message += f" - {entry.store_name}"

            if entry.status == AuditStatus.FAILURE:
                logger.error("%s: %s", message, entry.error_message)
            else:
                logger.info(message)

        except Exception as exc:
            logger.error("Failed to create audit log: %s", exc)

    def fire(self, entry: AuditLogEntry) -> Optional[asyncio.Task]:
        """Schedule log() as a detached background task.

        Returns None (and writes nothing) when called outside a running loop.
        """
        try:
            task = asyncio.get_running_loop().create_task(self.log(entry))
        except RuntimeError:
            logger.warning("No running event loop, dropping audit entry %s", entry.action.value)
            return None

        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def drain(self) -> None:
        """Wait for outstanding background audit writes."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def find_all(
        self,
        action: Optional[AuditAction] = None,
        status: Optional[AuditStatus] = None,
        user_id: Optional[str] = None,
        store_id: Optional[str] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        limit: int = 100,
        skip: int = 0,
    ) -> tuple[list[AuditLogEntry], int]:
        """Filtered, newest-first page of audit entries plus the total match count."""
        clauses: list[str] = []
        params: list[Any] = []

        if action:
            clauses.append("action = ?")
            params.append(action.value)
        if status:
            clauses.append("status = ?")
            params.append(status.value)
        if user_id:
            clauses.append("user_id = ?")
            params.append(user_id)
        if store_id:
            clauses.append("store_id = ?")
            params.append(store_id)
        if start_date:
            clauses.append("created_at >= ?")
            params.append(start_date.isoformat())
        if end_date:
            clauses.append("created_at <= ?")
            params.append(end_date.isoformat())

        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""

        total = self.conn.execute(
            f"SELECT COUNT(*) FROM audit_logs {where}", params
        ).fetchone()[0]

        rows = self.conn.execute(
            f"""
            SELECT * FROM audit_logs {where}
            ORDER BY created_at DESC, id DESC
            LIMIT ? OFFSET ?
            """,
            [*params, limit, skip],
        ).fetchall()

        return [_row_to_entry(row) for row in rows], total

    def find_by_store(self, store_id: str, limit: int = 50) -> list[AuditLogEntry]:
        logs, _ = self.find_all(store_id=store_id, limit=limit)
        return logs

    def get_stats(
        self,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        store_id: Optional[str] = None,
    ) -> list[dict[str, Any]]:
        """Counts grouped by action, then by status, busiest action first."""
        clauses: list[str] = []
        params: list[Any] = []
        if start_date:
            clauses.append("created_at >= ?")
            params.append(start_date.isoformat())
        if end_date:
            clauses.append("created_at <= ?")
            params.append(end_date.isoformat())
        if store_id:
            clauses.append("store_id = ?")
            params.append(store_id)

        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        rows = self.conn.execute(
            f"""
            SELECT action, status, COUNT(*) AS count
            FROM audit_logs {where}
            GROUP BY action, status
            """,
            params,
        ).fetchall()

        by_action: dict[str, dict[str, Any]] = {}
        for row in rows:
            stats = by_action.setdefault(
                row["action"], {"action": row["action"], "statuses": [], "total": 0}
            )
            stats["statuses"].append({"status": row["status"], "count": row["count"]})
            stats["total"] += row["count"]

        return sorted(by_action.values(), key=lambda s: s["total"], reverse=True)


def _dump(value: Optional[dict[str, Any]]) -> Optional[str]:
    if value is None:
        return None
    return json.dumps(value, separators=(",", ":"), default=str)


def _row_to_entry(row: sqlite3.Row) -> AuditLogEntry:
    return AuditLogEntry(
        action=row["action"],
        status=row["status"],
        user_id=row["user_id"],
        store_id=row["store_id"],
        user_email=row["user_email"],
        store_name=row["store_name"],
        metadata=json.loads(row["metadata_json"]) if row["metadata_json"] else None,
        error_message=row["error_message"],
        error_details=(
            json.loads(row["error_details_json"]) if row["error_details_json"] else None
        ),
        ip_address=row["ip_address"],
        user_agent=row["user_agent"],
        duration=row["duration_ms"],
        created_at=datetime.fromisoformat(row["created_at"]),
    )
