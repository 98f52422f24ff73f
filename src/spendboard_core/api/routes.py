"""FastAPI routes for dashboard metrics, analytics syncs and the audit log."""
import logging
from datetime import datetime
from typing import Annotated, Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import JSONResponse
from pydantic import Field

from ..audit import AuditAction, AuditLogEntry, AuditStatus
from ..exceptions import InvalidDateRangeError
from ..integrations.common import round2
from ..schemas.base import CamelModel
from ..schemas.metrics import (
    DailySyncReport,
    MetricsAggregate,
    ProductMetric,
    ProductSyncReport,
    RangeSyncReport,
    StoreMetric,
    TrafficSyncReport,
)
from .auth import require_api_key
from .dependencies import get_runtime, parse_query_date


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1", tags=["metrics"], dependencies=[Depends(require_api_key)])


class RangeSyncRequest(CamelModel):
    """Backfill window, both ends inclusive."""

    start_date: Optional[str] = Field(None, description="YYYY-MM-DD", examples=["2024-11-01"])
    end_date: Optional[str] = Field(None, description="YYYY-MM-DD", examples=["2024-11-30"])


class TopProductsResponse(CamelModel):
    store_id: str
    store_name: str
    top_products: list[ProductMetric]


class LandingPageStats(CamelModel):
    landing_page_type: str
    landing_page_path: str
    online_store_visitors: int
    sessions: int
    sessions_with_cart_additions: int
    sessions_that_reached_checkout: int
    conversion_rate: float = Field(..., description="Checkout sessions per 100 sessions")
    last_sync_date: datetime


class TrafficAnalyticsResponse(CamelModel):
    store_id: str
    store_name: str
    top_landing_pages: list[LandingPageStats]


class AuditLogPage(CamelModel):
    logs: list[AuditLogEntry]
    total: int


class AuditStatusCount(CamelModel):
    status: str
    count: int


class AuditActionStats(CamelModel):
    action: str
    statuses: list[AuditStatusCount]
    total: int


# Metrics


@router.get(
    "/stores/{store_id}/metrics",
    response_model=list[StoreMetric],
    summary="Daily metrics for a store",
)
async def get_store_metrics(
    store_id: str,
    range_name: Annotated[Optional[str], Query(alias="range")] = None,
    start_date: Annotated[Optional[str], Query(alias="startDate")] = None,
    end_date: Annotated[Optional[str], Query(alias="endDate")] = None,
    runtime=Depends(get_runtime),
) -> list[StoreMetric]:
    parse_query_date(start_date, "startDate")
    parse_query_date(end_date, "endDate")
    return runtime.metrics.find_by_store(store_id, range_name, start_date, end_date)


@router.get(
    "/metrics/aggregate",
    response_model=MetricsAggregate,
    summary="Totals across stores",
)
async def get_aggregate(
    range_name: Annotated[Optional[str], Query(alias="range")] = None,
    store_ids: Annotated[Optional[str], Query(alias="storeIds", description="Comma separated")] = None,
    runtime=Depends(get_runtime),
) -> MetricsAggregate:
    ids = [value.strip() for value in store_ids.split(",") if value.strip()] if store_ids else None
    return runtime.metrics.aggregate(range_name, ids)


@router.post(
    "/metrics/sync/{store_id}/daily",
    response_model=DailySyncReport,
    summary="Sync yesterday's metrics for one store",
)
async def daily_sync(store_id: str, runtime=Depends(get_runtime)) -> DailySyncReport:
    return await runtime.metrics_job.sync_store_daily(store_id)


@router.post(
    "/metrics/sync/{store_id}/range",
    response_model=RangeSyncReport,
    summary="Backfill metrics for a date range",
    responses={400: {"description": "Invalid date range"}},
)
async def range_sync(
    store_id: str,
    payload: RangeSyncRequest,
    runtime=Depends(get_runtime),
) -> Any:
    try:
        return await runtime.metrics_job.sync_store_range(
            store_id, payload.start_date, payload.end_date
        )
    except InvalidDateRangeError as exc:
        logger.info("Rejected range sync for %s: %s", store_id, exc)
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": str(exc), "status": status.HTTP_400_BAD_REQUEST},
        )


# Product analytics


@router.get(
    "/stores/{store_id}/top-products",
    response_model=TopProductsResponse,
    summary="Best selling products by revenue",
)
async def get_top_products(
    store_id: str,
    limit: int = 5,
    runtime=Depends(get_runtime),
) -> TopProductsResponse:
    store = runtime.stores.find_one(store_id)
    products = runtime.products.get_top_products_by_store(store_id, limit if limit > 0 else 5)
    return TopProductsResponse(
        store_id=store.id,
        store_name=store.name,
        top_products=[
            product.model_copy(update={"total_revenue": round2(product.total_revenue)})
            for product in products
        ],
    )


@router.post(
    "/stores/{store_id}/sync-products",
    response_model=ProductSyncReport,
    summary="Resync product totals (omit days for all-time)",
)
async def sync_products(
    store_id: str,
    days: Optional[int] = None,
    runtime=Depends(get_runtime),
) -> ProductSyncReport:
    return await runtime.product_job.sync_store_products(store_id, days)


# Traffic analytics


@router.get(
    "/stores/{store_id}/traffic-analytics",
    response_model=TrafficAnalyticsResponse,
    summary="Top landing pages by sessions",
)
async def get_traffic_analytics(
    store_id: str,
    limit: int = 10,
    start_date: Annotated[Optional[str], Query(alias="startDate")] = None,
    end_date: Annotated[Optional[str], Query(alias="endDate")] = None,
    runtime=Depends(get_runtime),
) -> TrafficAnalyticsResponse:
    start = parse_query_date(start_date, "startDate")
    end = parse_query_date(end_date, "endDate")

    store = runtime.stores.find_one(store_id)
    pages = runtime.traffic.get_top_landing_pages_by_store(
        store_id, limit if limit > 0 else 10, start, end
    )

    return TrafficAnalyticsResponse(
        store_id=store.id,
        store_name=store.name,
        top_landing_pages=[
            LandingPageStats(
                landing_page_type=page.landing_page_type,
                landing_page_path=page.landing_page_path,
                online_store_visitors=page.online_store_visitors,
                sessions=page.sessions,
                sessions_with_cart_additions=page.sessions_with_cart_additions,
                sessions_that_reached_checkout=page.sessions_that_reached_checkout,
                conversion_rate=(
                    round2(page.sessions_that_reached_checkout / page.sessions * 100)
                    if page.sessions > 0
                    else 0.0
                ),
                last_sync_date=page.last_sync_date,
            )
            for page in pages
        ],
    )


@router.post(
    "/stores/{store_id}/sync-traffic",
    response_model=TrafficSyncReport,
    summary="Resync landing page traffic",
)
async def sync_traffic(
    store_id: str,
    days: Optional[int] = None,
    limit: Optional[int] = None,
    runtime=Depends(get_runtime),
) -> TrafficSyncReport:
    return await runtime.traffic_job.sync_store_traffic(store_id, days, limit)


# Audit


@router.get("/audit", response_model=AuditLogPage, tags=["audit"], summary="Audit log")
async def list_audit_logs(
    action: Optional[AuditAction] = None,
    audit_status: Annotated[Optional[AuditStatus], Query(alias="status")] = None,
    user_id: Annotated[Optional[str], Query(alias="userId")] = None,
    store_id: Annotated[Optional[str], Query(alias="storeId")] = None,
    start_date: Annotated[Optional[datetime], Query(alias="startDate")] = None,
    end_date: Annotated[Optional[datetime], Query(alias="endDate")] = None,
    limit: int = 100,
    skip: int = 0,
    runtime=Depends(get_runtime),
) -> AuditLogPage:
    if limit < 1 or skip < 0:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="limit must be positive and skip non-negative",
        )
    logs, total = runtime.audit.find_all(
        action=action,
        status=audit_status,
        user_id=user_id,
        store_id=store_id,
        start_date=start_date,
        end_date=end_date,
        limit=limit,
        skip=skip,
    )
    return AuditLogPage(logs=logs, total=total)


@router.get(
    "/audit/stats",
    response_model=list[AuditActionStats],
    tags=["audit"],
    summary="Audit counts by action and status",
)
async def audit_stats(
    start_date: Annotated[Optional[datetime], Query(alias="startDate")] = None,
    end_date: Annotated[Optional[datetime], Query(alias="endDate")] = None,
    store_id: Annotated[Optional[str], Query(alias="storeId")] = None,
    runtime=Depends(get_runtime),
) -> list[AuditActionStats]:
    return runtime.audit.get_stats(start_date, end_date, store_id)


@router.get(
    "/audit/stores/{store_id}",
    response_model=list[AuditLogEntry],
    tags=["audit"],
    summary="Audit log for one store",
)
async def store_audit_logs(
    store_id: str,
    limit: int = 50,
    runtime=Depends(get_runtime),
) -> list[AuditLogEntry]:
    return runtime.audit.find_by_store(store_id, limit)
