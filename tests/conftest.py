"""Shared fixtures: in-memory database, repositories and aiohttp mocks."""
from unittest.mock import AsyncMock, MagicMock

import pytest

from spendboard_core.audit import AuditService
from spendboard_core.metrics import (
    ProductMetricsRepository,
    StoreMetricsRepository,
    TrafficMetricsRepository,
)
from spendboard_core.schema import connect, init_database
from spendboard_core.schemas.stores import Store
from spendboard_core.stores import StoreRepository


@pytest.fixture
def conn():
    connection = connect(":memory:")
    init_database(connection)
    yield connection
    connection.close()


@pytest.fixture
def audit(conn):
    return AuditService(conn)


@pytest.fixture
def metrics_repo(conn):
    return StoreMetricsRepository(conn)


@pytest.fixture
def products_repo(conn):
    return ProductMetricsRepository(conn)


@pytest.fixture
def traffic_repo(conn):
    return TrafficMetricsRepository(conn)


@pytest.fixture
def store_repo(conn, metrics_repo, products_repo, traffic_repo, audit):
    return StoreRepository(
        conn,
        metrics=metrics_repo,
        products=products_repo,
        traffic=traffic_repo,
        audit=audit,
    )


@pytest.fixture
def store():
    return Store(
        id="s1",
        name="Test Store",
        shopify_token="shpat_test",
        shopify_store_url="test-shop.myshopify.com",
        fb_ad_spend_token="fb-token",
        fb_account_id="123456",
        google_refresh_token="google-refresh",
        google_customer_id="123-456-7890",
    )


@pytest.fixture
def make_response():
    """Factory for AsyncMocks usable as `async with session.get/post(...) as response`."""

    def _make(status=200, payload=None, text=""):
        response = AsyncMock()
        response.status = status
        response.json.return_value = payload
        response.text.return_value = text
        response.__aenter__.return_value = response
        return response

    return _make


@pytest.fixture
def mock_session():
    return MagicMock()
