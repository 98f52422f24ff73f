"""FastAPI routes for Facebook Ads insights and breakdowns."""
import asyncio
import logging
from datetime import date, datetime
from typing import Annotated, Optional, Union

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import Field

from ..integrations.facebook_client import VALID_BREAKDOWNS
from ..schemas.base import CamelModel
from ..schemas.facebook import BreakdownMetrics, InsightMetrics
from .auth import require_api_key
from .dependencies import get_runtime


logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/v1/facebook",
    tags=["facebook"],
    dependencies=[Depends(require_api_key)],
)

LEVELS = ("account", "campaign", "adset", "ad")
ASSET_TYPES = ("image_asset", "video_asset", "title_asset", "body_asset")

InsightRow = Union[InsightMetrics, BreakdownMetrics]


class DateRange(CamelModel):
    from_date: str = Field(..., alias="from")
    to_date: str = Field(..., alias="to")


class InsightsResponse(CamelModel):
    store_id: str
    store_name: str
    date_range: DateRange
    level: str
    breakdown: Optional[str] = None
    entity_id: Optional[str] = None
    data: list[InsightRow]
    total_records: int


class CampaignsResponse(CamelModel):
    store_id: str
    store_name: str
    date_range: DateRange
    campaigns: list[InsightMetrics]
    total_campaigns: int


class AdSetsResponse(CamelModel):
    store_id: str
    store_name: str
    date_range: DateRange
    campaign_id: Optional[str] = None
    ad_sets: list[InsightMetrics]
    total_ad_sets: int


class AdsResponse(CamelModel):
    store_id: str
    store_name: str
    date_range: DateRange
    ad_set_id: Optional[str] = None
    ads: list[InsightMetrics]
    total_ads: int


class DemographicBreakdowns(CamelModel):
    age: list[BreakdownMetrics]
    gender: list[BreakdownMetrics]


class DemographicsResponse(CamelModel):
    store_id: str
    store_name: str
    date_range: DateRange
    level: str
    breakdowns: DemographicBreakdowns


class PlacementsResponse(CamelModel):
    store_id: str
    store_name: str
    date_range: DateRange
    level: str
    breakdown_type: str = "placement"
    data: list[BreakdownMetrics]


class CreativeAssetsResponse(CamelModel):
    store_id: str
    store_name: str
    date_range: DateRange
    level: str
    asset_type: str
    data: list[BreakdownMetrics]


def validate_date_range(start_date: str, end_date: str) -> tuple[date, date]:
    try:
        start = datetime.strptime(start_date, "%Y-%m-%d").date()
        end = datetime.strptime(end_date, "%Y-%m-%d").date()
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid date format. Use YYYY-MM-DD",
        )

    if start > end:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Start date must be before or equal to end date",
        )
    return start, end


def validate_level(level: str) -> str:
    if level not in LEVELS:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid level. Valid values: {', '.join(LEVELS)}",
        )
    return level


def validate_breakdown(breakdown: str) -> str:
    if breakdown not in VALID_BREAKDOWNS:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid breakdown. Valid values: {', '.join(VALID_BREAKDOWNS)}",
        )
    return breakdown


StartDate = Annotated[str, Query(alias="startDate", description="YYYY-MM-DD")]
EndDate = Annotated[str, Query(alias="endDate", description="YYYY-MM-DD")]
EntityId = Annotated[Optional[str], Query(alias="entityId")]


@router.get("/stores/{store_id}/insights", response_model=InsightsResponse)
async def get_insights(
    store_id: str,
    start_date: StartDate,
    end_date: EndDate,
    level: str = "campaign",
    breakdown: Optional[str] = None,
    entity_id: EntityId = None,
    limit: int = 100,
    runtime=Depends(get_runtime),
) -> InsightsResponse:
    start, end = validate_date_range(start_date, end_date)
    validate_level(level)
    if breakdown:
        validate_breakdown(breakdown)

    store = runtime.stores.find_one(store_id)
    logger.info(
        "Fetching %s insights for %s: %s to %s%s",
        level,
        store.name,
        start_date,
        end_date,
        f" with breakdown: {breakdown}" if breakdown else "",
    )
    data = await runtime.facebook.fetch_insights(
        store, start, end, level, breakdown, entity_id, limit if limit > 0 else 100
    )

    return InsightsResponse(
        store_id=store.id,
        store_name=store.name,
        date_range=DateRange(from_date=start_date, to_date=end_date),
        level=level,
        breakdown=breakdown,
        entity_id=entity_id,
        data=data,
        total_records=len(data),
    )


@router.get("/stores/{store_id}/campaigns", response_model=CampaignsResponse)
async def get_campaigns(
    store_id: str,
    start_date: StartDate,
    end_date: EndDate,
    limit: int = 100,
    runtime=Depends(get_runtime),
) -> CampaignsResponse:
    start, end = validate_date_range(start_date, end_date)
    store = runtime.stores.find_one(store_id)

    campaigns = await runtime.facebook.fetch_campaigns_with_details(
        store, start, end, limit if limit > 0 else 100
    )
    return CampaignsResponse(
        store_id=store.id,
        store_name=store.name,
        date_range=DateRange(from_date=start_date, to_date=end_date),
        campaigns=campaigns,
        total_campaigns=len(campaigns),
    )


@router.get("/stores/{store_id}/adsets", response_model=AdSetsResponse)
async def get_adsets(
    store_id: str,
    start_date: StartDate,
    end_date: EndDate,
    campaign_id: Annotated[Optional[str], Query(alias="campaignId")] = None,
    limit: int = 100,
    runtime=Depends(get_runtime),
) -> AdSetsResponse:
    start, end = validate_date_range(start_date, end_date)
    store = runtime.stores.find_one(store_id)

    adsets = await runtime.facebook.fetch_adsets_with_details(
        store, start, end, campaign_id, limit if limit > 0 else 100
    )
    return AdSetsResponse(
        store_id=store.id,
        store_name=store.name,
        date_range=DateRange(from_date=start_date, to_date=end_date),
        campaign_id=campaign_id,
        ad_sets=adsets,
        total_ad_sets=len(adsets),
    )


@router.get("/stores/{store_id}/ads", response_model=AdsResponse)
async def get_ads(
    store_id: str,
    start_date: StartDate,
    end_date: EndDate,
    adset_id: Annotated[Optional[str], Query(alias="adSetId")] = None,
    limit: int = 100,
    runtime=Depends(get_runtime),
) -> AdsResponse:
    start, end = validate_date_range(start_date, end_date)
    store = runtime.stores.find_one(store_id)

    ads = await runtime.facebook.fetch_ads_with_details(
        store, start, end, adset_id, limit if limit > 0 else 100
    )
    return AdsResponse(
        store_id=store.id,
        store_name=store.name,
        date_range=DateRange(from_date=start_date, to_date=end_date),
        ad_set_id=adset_id,
        ads=ads,
        total_ads=len(ads),
    )


@router.get("/stores/{store_id}/breakdown/demographics", response_model=DemographicsResponse)
async def get_demographic_breakdown(
    store_id: str,
    start_date: StartDate,
    end_date: EndDate,
    level: str = "account",
    entity_id: EntityId = None,
    runtime=Depends(get_runtime),
) -> DemographicsResponse:
    start, end = validate_date_range(start_date, end_date)
    validate_level(level)
    store = runtime.stores.find_one(store_id)

    age, gender = await asyncio.gather(
        runtime.facebook.fetch_insights(store, start, end, level, "age", entity_id),
        runtime.facebook.fetch_insights(store, start, end, level, "gender", entity_id),
    )
    return DemographicsResponse(
        store_id=store.id,
        store_name=store.name,
        date_range=DateRange(from_date=start_date, to_date=end_date),
        level=level,
        breakdowns=DemographicBreakdowns(age=age, gender=gender),
    )


@router.get("/stores/{store_id}/breakdown/placements", response_model=PlacementsResponse)
async def get_placement_breakdown(
    store_id: str,
    start_date: StartDate,
    end_date: EndDate,
    level: str = "account",
    entity_id: EntityId = None,
    runtime=Depends(get_runtime),
) -> PlacementsResponse:
    start, end = validate_date_range(start_date, end_date)
    validate_level(level)
    store = runtime.stores.find_one(store_id)

    data = await runtime.facebook.fetch_insights(
        store, start, end, level, "publisher_platform,platform_position", entity_id
    )
    return PlacementsResponse(
        store_id=store.id,
        store_name=store.name,
        date_range=DateRange(from_date=start_date, to_date=end_date),
        level=level,
        data=data,
    )


@router.get(
    "/stores/{store_id}/breakdown/creative-assets",
    response_model=CreativeAssetsResponse,
)
async def get_creative_asset_breakdown(
    store_id: str,
    start_date: StartDate,
    end_date: EndDate,
    asset_type: Annotated[str, Query(alias="assetType")],
    level: str = "ad",
    entity_id: EntityId = None,
    runtime=Depends(get_runtime),
) -> CreativeAssetsResponse:
    start, end = validate_date_range(start_date, end_date)
    validate_level(level)
    if asset_type not in ASSET_TYPES:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid assetType. Valid values: {', '.join(ASSET_TYPES)}",
        )
    store = runtime.stores.find_one(store_id)

    data = await runtime.facebook.fetch_insights(store, start, end, level, asset_type, entity_id)
    return CreativeAssetsResponse(
        store_id=store.id,
        store_name=store.name,
        date_range=DateRange(from_date=start_date, to_date=end_date),
        level=level,
        asset_type=asset_type,
        data=data,
    )
