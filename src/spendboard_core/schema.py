"""SQLite schema definitions.

Database: data/spendboard.db (WAL mode)
Tables: stores, store_metrics, product_metrics, traffic_metrics, audit_logs
"""
import logging
import sqlite3
from pathlib import Path


logger = logging.getLogger(__name__)


SCHEMA_VERSION = 1


def connect(db_path: str | Path) -> sqlite3.Connection:
    """Open a SQLite connection with WAL enabled and row access by name.

    Args:
        db_path: Path to SQLite database file, or ":memory:"

    Returns:
        Open connection
    """
    if str(db_path) != ":memory:":
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)

    conn = sqlite3.connect(str(db_path), check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA foreign_keys=ON")
    return conn


def init_database(conn: sqlite3.Connection) -> None:
    """Initialize database with schema.

    Creates tables if they don't exist.

    Args:
        conn: SQLite connection
    """
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS schema_version (
            version INTEGER PRIMARY KEY,
            applied_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
        )
        """
    )

    cursor = conn.execute("SELECT MAX(version) FROM schema_version")
    current_version = cursor.fetchone()[0] or 0

    if current_version < SCHEMA_VERSION:
        _apply_schema(conn)
        conn.execute(
            "INSERT INTO schema_version (version) VALUES (?)",
            (SCHEMA_VERSION,),
        )
        conn.commit()
        logger.info("Database schema initialized (version %s)", SCHEMA_VERSION)
    else:
        logger.debug("Database schema up to date (version %s)", current_version)


def _apply_schema(conn: sqlite3.Connection) -> None:
    """Apply database schema.

    Args:
        conn: SQLite connection (in transaction)
    """
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS stores (
            id TEXT PRIMARY KEY,
            name TEXT NOT NULL UNIQUE,
            shopify_token TEXT,
            shopify_store_url TEXT,
            fb_ad_spend_token TEXT,
            fb_account_id TEXT,
            google_access_token TEXT,
            google_refresh_token TEXT,
            google_customer_id TEXT,
            google_token_expiry TEXT,
            created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
            updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
        )
        """
    )

    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS store_metrics (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            store_id TEXT NOT NULL,
            metric_date TEXT NOT NULL,
            facebook_meta_spend REAL NOT NULL DEFAULT 0,
            google_ad_spend REAL NOT NULL DEFAULT 0,
            shopify_sold_orders INTEGER NOT NULL DEFAULT 0,
            shopify_order_value REAL NOT NULL DEFAULT 0,
            shopify_sold_items INTEGER NOT NULL DEFAULT 0,
            created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
            updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
            UNIQUE(store_id, metric_date)
        )
        """
    )

    conn.execute(
        """
        CREATE INDEX IF NOT EXISTS idx_store_metrics_date
        ON store_metrics(metric_date)
        """
    )

    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS product_metrics (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            store_id TEXT NOT NULL,
            product_id TEXT NOT NULL,
            product_name TEXT NOT NULL,
            product_image TEXT NOT NULL DEFAULT '',
            product_url TEXT,
            total_quantity_sold INTEGER NOT NULL DEFAULT 0,
            total_revenue REAL NOT NULL DEFAULT 0,
            last_sync_date TEXT NOT NULL,
            created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
            updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
            UNIQUE(store_id, product_id)
        )
        """
    )

    conn.execute(
        """
        CREATE INDEX IF NOT EXISTS idx_product_metrics_quantity
        ON product_metrics(store_id, total_quantity_sold DESC)
        """
    )

    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS traffic_metrics (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            store_id TEXT NOT NULL,
            landing_page_type TEXT NOT NULL,
            landing_page_path TEXT NOT NULL,
            online_store_visitors INTEGER NOT NULL DEFAULT 0,
            sessions INTEGER NOT NULL DEFAULT 0,
            sessions_with_cart_additions INTEGER NOT NULL DEFAULT 0,
            sessions_that_reached_checkout INTEGER NOT NULL DEFAULT 0,
            start_date TEXT NOT NULL,
            end_date TEXT NOT NULL,
            last_sync_date TEXT NOT NULL,
            created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
            updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
            UNIQUE(store_id, landing_page_path, start_date)
        )
        """
    )

    conn.execute(
        """
        CREATE INDEX IF NOT EXISTS idx_traffic_metrics_sessions
        ON traffic_metrics(store_id, sessions DESC)
        """
    )

    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS audit_logs (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            action TEXT NOT NULL,
            status TEXT NOT NULL,
            user_id TEXT,
            store_id TEXT,
            user_email TEXT,
            store_name TEXT,
            metadata_json TEXT,
            error_message TEXT,
            error_details_json TEXT,
            ip_address TEXT,
            user_agent TEXT,
            duration_ms INTEGER,
            created_at TEXT NOT NULL
        )
        """
    )

    conn.execute(
        """
        CREATE INDEX IF NOT EXISTS idx_audit_created
        ON audit_logs(created_at DESC)
        """
    )

    conn.execute(
        """
        CREATE INDEX IF NOT EXISTS idx_audit_store
        ON audit_logs(store_id, created_at DESC)
        WHERE store_id IS NOT NULL
        """
    )

    conn.execute(
        """
        CREATE INDEX IF NOT EXISTS idx_audit_action_status
        ON audit_logs(action, status, created_at DESC)
        """
    )
