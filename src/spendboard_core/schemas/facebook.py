"""Pydantic models for Facebook insight rows."""
from typing import Optional

from pydantic import Field

from .base import CamelModel


class DetailedResult(CamelModel):
    """One action count with its display name."""

    action_type: str
    type: str
    value: int = 0


class CalculatedMetrics(CamelModel):
    """Metrics derived from one raw insight row."""

    results: int = 0
    detailed_results: list[DetailedResult] = Field(default_factory=list)
    reach: int = 0
    impressions: int = 0
    frequency: float = 0.0
    cost_per_result: float = 0.0
    amount_spent: float = 0.0
    cpm: float = 0.0
    link_clicks: int = 0
    cpc: float = 0.0
    ctr: float = Field(0.0, description="Percent")
    link_ctr: float = Field(0.0, description="Percent")
    landing_page_views: int = 0
    result_roas: float = 0.0
    results_value: float = 0.0


class InsightMetrics(CalculatedMetrics):
    """Campaign, ad set or ad level insight merged with entity metadata."""

    id: str
    name: str
    status: Optional[str] = None
    objective: Optional[str] = None
    campaign_id: Optional[str] = None
    campaign_name: Optional[str] = None
    ad_set_id: Optional[str] = None
    ad_set_name: Optional[str] = None
    budget: Optional[float] = None
    start_time: Optional[str] = None
    end_time: Optional[str] = None


class BreakdownMetrics(CalculatedMetrics):
    """Insight row split by a breakdown dimension."""

    dimension: str
    value: str
