"""Explicit wiring of repositories, vendor clients and jobs.

Configuration comes from environment variables read at construction time.
"""
import logging
import os
import sqlite3
from pathlib import Path
from typing import Optional

import aiohttp
from redis.asyncio import Redis

from .audit import AuditService
from .integrations.archive import RawPayloadArchive
from .integrations.facebook_client import FacebookClient
from .integrations.google_client import GoogleAdsClient, GoogleOAuthClient
from .integrations.shopify_client import ShopifyClient
from .jobs.base import resolve_timezone
from .jobs.sync_metrics import MetricsSyncJob
from .jobs.sync_products import ProductSyncJob
from .jobs.sync_traffic import TrafficSyncJob
from .metrics.product_metrics import ProductMetricsRepository
from .metrics.store_metrics import StoreMetricsRepository
from .metrics.traffic_metrics import TrafficMetricsRepository
from .schema import connect, init_database
from .stores.repository import StoreRepository


logger = logging.getLogger(__name__)


class SpendboardRuntime:
    """Owns the SQLite connection, HTTP session and optional Redis client.

    Use as an async context manager; everything is built on enter and closed
    on exit.
    """

    def __init__(self, db_path: Optional[str | Path] = None) -> None:
        self.db_path = db_path or os.getenv("SPENDBOARD_DB_PATH", "data/spendboard.db")
        self.timezone = os.getenv("SYNC_TIMEZONE", "Asia/Kolkata")
        self.tz = resolve_timezone(self.timezone)

        self.shopify_api_version = os.getenv("SHOPIFY_API_VERSION", "2024-10")
        self.shopify_analytics_api_version = os.getenv("SHOPIFY_ANALYTICS_API_VERSION", "2025-10")
        self.facebook_api_version = os.getenv("FACEBOOK_API_VERSION", "v19.0")
        self.google_ads_api_version = os.getenv("GOOGLE_ADS_API_VERSION", "v16")
        self.google_client_id = os.getenv("GOOGLE_CLIENT_ID")
        self.google_client_secret = os.getenv("GOOGLE_CLIENT_SECRET")
        self.google_redirect_uri = os.getenv("GOOGLE_REDIRECT_URI")
        self.google_developer_token = os.getenv("GOOGLE_DEVELOPER_TOKEN")
        self.raw_archive_dir = os.getenv("RAW_ARCHIVE_DIR")
        self.redis_url = os.getenv("REDIS_URL")

        self.conn: Optional[sqlite3.Connection] = None
        self.session: Optional[aiohttp.ClientSession] = None
        self.redis: Optional[Redis] = None

    async def __aenter__(self) -> "SpendboardRuntime":
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def open(self) -> None:
        self.conn = connect(self.db_path)
        init_database(self.conn)

        timeout = aiohttp.ClientTimeout(total=300, connect=30)
        self.session = aiohttp.ClientSession(timeout=timeout)

        if self.redis_url:
            self.redis = Redis.from_url(self.redis_url, decode_responses=False)

        self.audit = AuditService(self.conn)
        self.metrics = StoreMetricsRepository(self.conn, tz=self.tz)
        self.products = ProductMetricsRepository(self.conn)
        self.traffic = TrafficMetricsRepository(self.conn)
        self.stores = StoreRepository(
            self.conn,
            metrics=self.metrics,
            products=self.products,
            traffic=self.traffic,
            audit=self.audit,
        )

        archive = RawPayloadArchive(self.raw_archive_dir) if self.raw_archive_dir else None

        self.shopify = ShopifyClient(
            self.session,
            audit=self.audit,
            api_version=self.shopify_api_version,
            analytics_api_version=self.shopify_analytics_api_version,
            tz=self.tz,
            archive=archive,
        )
        self.facebook = FacebookClient(
            self.session,
            audit=self.audit,
            api_version=self.facebook_api_version,
            archive=archive,
        )
        self.google_oauth = GoogleOAuthClient(
            self.session,
            self.google_client_id,
            self.google_client_secret,
            redirect_uri=self.google_redirect_uri,
            developer_token=self.google_developer_token,
            api_version=self.google_ads_api_version,
        )
        self.google = GoogleAdsClient(
            self.session,
            self.google_oauth,
            stores=self.stores,
            audit=self.audit,
            developer_token=self.google_developer_token,
            api_version=self.google_ads_api_version,
            archive=archive,
        )

        self.metrics_job = MetricsSyncJob(
            self.stores,
            self.metrics,
            self.shopify,
            self.facebook,
            self.google,
            audit=self.audit,
            tz=self.tz,
        )
        self.product_job = ProductSyncJob(
            self.stores, self.products, self.shopify, audit=self.audit, tz=self.tz
        )
        self.traffic_job = TrafficSyncJob(
            self.stores, self.traffic, self.shopify, audit=self.audit, tz=self.tz
        )

        logger.info("Spendboard runtime ready")
        logger.info("Database: %s", self.db_path)
        logger.info("Sync timezone: %s", self.tz.key)

    async def close(self) -> None:
        audit = getattr(self, "audit", None)
        if audit is not None:
            await audit.drain()

        if self.session is not None:
            await self.session.close()
            self.session = None

        if self.redis is not None:
            await self.redis.aclose()
            self.redis = None

        if self.conn is not None:
            self.conn.close()
            self.conn = None
