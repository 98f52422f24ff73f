"""Unit tests for API routes."""
import asyncio
from datetime import date, timedelta
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from spendboard_core.audit import AuditAction, AuditLogEntry, AuditStatus
from spendboard_core.exceptions import VendorApiError
from spendboard_core.jobs.sync_metrics import MetricsSyncJob
from spendboard_core.main import create_app
from spendboard_core.schemas.metrics import (
    DailyAdSpend,
    DailyOrdersSummary,
    ProductMetricInput,
    ProductSyncReport,
    StoreMetric,
    TrafficMetricInput,
    TrafficSyncReport,
)


HEADERS = {"X-SPENDBOARD-API-KEY": "test-api-key"}


@pytest.fixture
def vendors():
    shopify = MagicMock()
    shopify.fetch_orders = AsyncMock(return_value=[])
    facebook = MagicMock()
    facebook.fetch_ad_spend = AsyncMock(return_value=[])
    google = MagicMock()
    google.fetch_ad_spend = AsyncMock(return_value=[])
    return shopify, facebook, google


@pytest.fixture
def runtime(store_repo, metrics_repo, products_repo, traffic_repo, audit, vendors, store):
    store_repo.create(store)
    shopify, facebook, google = vendors
    product_job = MagicMock()
    product_job.sync_store_products = AsyncMock(
        return_value=ProductSyncReport(
            message="Product analytics synced for store: Test Store",
            date_range="All-time data",
            products_processed=3,
        )
    )
    traffic_job = MagicMock()
    traffic_job.sync_store_traffic = AsyncMock(
        return_value=TrafficSyncReport(
            message="Traffic analytics synced for store: Test Store",
            date_range="Last 7 days",
            landing_pages_processed=4,
        )
    )
    return SimpleNamespace(
        audit=audit,
        stores=store_repo,
        metrics=metrics_repo,
        products=products_repo,
        traffic=traffic_repo,
        shopify=shopify,
        facebook=facebook,
        google=google,
        metrics_job=MetricsSyncJob(store_repo, metrics_repo, shopify, facebook, google),
        product_job=product_job,
        traffic_job=traffic_job,
    )


@pytest.fixture
def client(monkeypatch, runtime):
    """Create test client with mocked environment."""
    monkeypatch.setenv("SPENDBOARD_API_KEY", "test-api-key")
    app = create_app(runtime=runtime)
    with TestClient(app) as client:
        yield client


def test_missing_api_key_rejected(client):
    response = client.get("/api/v1/metrics/aggregate")

    assert response.status_code == 401
    assert "Invalid API key" in response.json()["detail"]


@pytest.mark.parametrize("key", ["wrong-key", "test-api-key-", "TEST-API-KEY", ""])
def test_invalid_api_key_rejected(client, key):
    response = client.get("/api/v1/stores/s1/metrics", headers={"X-SPENDBOARD-API-KEY": key})

    assert response.status_code == 401
    assert response.headers["www-authenticate"] == "API-Key"


def test_unconfigured_api_key_returns_503(client, monkeypatch):
    monkeypatch.delenv("SPENDBOARD_API_KEY")

    response = client.get("/api/v1/stores/s1/metrics", headers=HEADERS)

    assert response.status_code == 503
    assert response.json()["detail"] == "API key not configured"


def test_facebook_router_shares_api_key(client):
    response = client.get(
        "/api/v1/facebook/stores/s1/campaigns",
        params={"startDate": "2024-11-01", "endDate": "2024-11-07"},
        headers={"X-SPENDBOARD-API-KEY": "wrong-key"},
    )

    assert response.status_code == 401


def test_store_metrics_camel_case(client, metrics_repo):
    metrics_repo.create_or_update(
        StoreMetric(
            store_id="s1",
            date=date(2024, 11, 1),
            facebook_meta_spend=50.0,
            google_ad_spend=30.0,
            shopify_sold_orders=10,
            shopify_order_value=500.0,
            shopify_sold_items=20,
        )
    )

    response = client.get(
        "/api/v1/stores/s1/metrics",
        params={"startDate": "2024-11-01", "endDate": "2024-11-30"},
        headers=HEADERS,
    )

    assert response.status_code == 200
    assert response.json() == [
        {
            "storeId": "s1",
            "date": "2024-11-01",
            "facebookMetaSpend": 50.0,
            "googleAdSpend": 30.0,
            "shopifySoldOrders": 10,
            "shopifyOrderValue": 500.0,
            "shopifySoldItems": 20,
        }
    ]


@pytest.mark.parametrize("value", ["yesterday", "20241101"])
def test_store_metrics_bad_date(client, value):
    response = client.get(
        "/api/v1/stores/s1/metrics", params={"startDate": value}, headers=HEADERS
    )

    assert response.status_code == 400
    assert response.json()["detail"] == "Invalid startDate. Use YYYY-MM-DD"


def test_aggregate_filters_store_ids(client, metrics_repo):
    today = metrics_repo._today()
    for store_id in ("s1", "s2"):
        metrics_repo.create_or_update(
            StoreMetric(
                store_id=store_id,
                date=today - timedelta(days=1),
                facebook_meta_spend=10.0,
                shopify_sold_orders=2,
                shopify_order_value=80.0,
            )
        )

    response = client.get(
        "/api/v1/metrics/aggregate",
        params={"range": "last7days", "storeIds": "s1, s2"},
        headers=HEADERS,
    )

    assert response.status_code == 200
    assert response.json() == {
        "totalStores": 2,
        "totalAdSpend": 20.0,
        "totalOrders": 4,
        "totalRevenue": 160.0,
        "dateRange": "last7days",
    }


def test_range_sync_rejects_inverted_range(client, vendors):
    shopify, _, _ = vendors

    response = client.post(
        "/api/v1/metrics/sync/s1/range",
        json={"startDate": "2025-02-01", "endDate": "2025-01-01"},
        headers=HEADERS,
    )

    assert response.status_code == 400
    assert response.json() == {"error": "startDate must be before endDate", "status": 400}
    shopify.fetch_orders.assert_not_awaited()


def test_range_sync_success(client, vendors, metrics_repo):
    shopify, facebook, _ = vendors
    shopify.fetch_orders.return_value = [
        DailyOrdersSummary(date="2024-11-01", sold_orders=10, order_value=500.0, sold_items=20)
    ]
    facebook.fetch_ad_spend.return_value = [DailyAdSpend(date="2024-11-01", spend=50.0)]

    response = client.post(
        "/api/v1/metrics/sync/s1/range",
        json={"startDate": "2024-11-01", "endDate": "2024-11-01"},
        headers=HEADERS,
    )

    assert response.status_code == 200
    body = response.json()
    assert body["daysProcessed"] == 1
    assert body["jobId"].startswith("range-")
    assert metrics_repo.find_by_store("s1")[0].facebook_meta_spend == 50.0


def test_daily_sync_unknown_store(client):
    response = client.post("/api/v1/metrics/sync/missing/daily", headers=HEADERS)

    assert response.status_code == 404
    assert response.json()["detail"] == "Store not found: missing"


def test_daily_sync_vendor_failure(client, vendors):
    shopify, _, _ = vendors
    shopify.fetch_orders.side_effect = VendorApiError("shopify", "request failed", 500)

    response = client.post("/api/v1/metrics/sync/s1/daily", headers=HEADERS)

    assert response.status_code == 502
    assert response.json()["vendor"] == "shopify"


def test_top_products_rounds_revenue(client, products_repo):
    products_repo.upsert_product_metric(
        ProductMetricInput(
            store_id="s1",
            product_id="p1",
            product_name="Mug",
            quantity_sold=3,
            revenue=33.333333,
        )
    )

    response = client.get("/api/v1/stores/s1/top-products", headers=HEADERS)

    assert response.status_code == 200
    body = response.json()
    assert body["storeName"] == "Test Store"
    assert body["topProducts"][0]["totalRevenue"] == 33.33
    assert body["topProducts"][0]["totalQuantitySold"] == 3


def test_sync_products_passes_days(client, runtime):
    response = client.post(
        "/api/v1/stores/s1/sync-products", params={"days": 30}, headers=HEADERS
    )

    assert response.status_code == 200
    assert response.json()["productsProcessed"] == 3
    runtime.product_job.sync_store_products.assert_awaited_once_with("s1", 30)


def test_traffic_analytics_conversion_rate(client, traffic_repo):
    traffic_repo.upsert_traffic_metric(
        TrafficMetricInput(
            store_id="s1",
            landing_page_type="Product",
            landing_page_path="/products/mug",
            online_store_visitors=90,
            sessions=120,
            sessions_with_cart_additions=30,
            sessions_that_reached_checkout=12,
            start_date=date(2024, 11, 23),
            end_date=date(2024, 11, 30),
        )
    )
    traffic_repo.upsert_traffic_metric(
        TrafficMetricInput(
            store_id="s1",
            landing_page_type="Home",
            landing_page_path="/",
            start_date=date(2024, 11, 23),
            end_date=date(2024, 11, 30),
        )
    )

    response = client.get("/api/v1/stores/s1/traffic-analytics", headers=HEADERS)

    assert response.status_code == 200
    pages = response.json()["topLandingPages"]
    assert pages[0]["landingPagePath"] == "/products/mug"
    assert pages[0]["conversionRate"] == 10.0
    assert pages[1]["conversionRate"] == 0.0


def test_sync_traffic_passes_window(client, runtime):
    response = client.post(
        "/api/v1/stores/s1/sync-traffic", params={"days": 14, "limit": 25}, headers=HEADERS
    )

    assert response.status_code == 200
    assert response.json()["landingPagesProcessed"] == 4
    runtime.traffic_job.sync_store_traffic.assert_awaited_once_with("s1", 14, 25)


def test_audit_endpoints(audit, client):
    asyncio.run(
        audit.log(
            AuditLogEntry(
                action=AuditAction.SHOPIFY_SYNC_FAILED,
                status=AuditStatus.FAILURE,
                store_id="s1",
                store_name="Test Store",
                error_message="boom",
            )
        )
    )
    asyncio.run(
        audit.log(
            AuditLogEntry(
                action=AuditAction.SHOPIFY_SYNC_STARTED,
                status=AuditStatus.PENDING,
                store_id="s1",
            )
        )
    )

    page = client.get(
        "/api/v1/audit", params={"status": "FAILURE"}, headers=HEADERS
    ).json()
    assert page["total"] == 1
    assert page["logs"][0]["errorMessage"] == "boom"

    stats = client.get("/api/v1/audit/stats", headers=HEADERS).json()
    assert {entry["action"] for entry in stats} == {
        "SHOPIFY_SYNC_FAILED",
        "SHOPIFY_SYNC_STARTED",
    }

    by_store = client.get("/api/v1/audit/stores/s1", headers=HEADERS).json()
    assert len(by_store) == 2


def test_audit_rejects_bad_paging(client):
    response = client.get("/api/v1/audit", params={"limit": 0}, headers=HEADERS)

    assert response.status_code == 400
