"""Facebook Marketing (Graph) API client.

Daily account spend for the metrics sync, plus campaign/ad set/ad insights and
breakdowns for the analytics views.
"""
import asyncio
import json
import logging
from datetime import date
from time import monotonic
from typing import Any, Optional, Union

import aiohttp

from ..audit import AuditAction, AuditLogEntry, AuditService, AuditStatus, error_details
from ..exceptions import FacebookApiError, FacebookRateLimitError
from ..schemas.facebook import BreakdownMetrics, CalculatedMetrics, DetailedResult, InsightMetrics
from ..schemas.metrics import DailyAdSpend
from ..schemas.stores import Store
from .archive import RawPayloadArchive
from .common import elapsed_ms, redact, round2, safe_float, safe_int


logger = logging.getLogger(__name__)


VALID_BREAKDOWNS = (
    "country",
    "region",
    "age",
    "gender",
    "publisher_platform",
    "publisher_platform,platform_position",
    "device_platform",
    "image_asset",
    "video_asset",
    "title_asset",
    "body_asset",
)

INSIGHT_FIELDS = (
    "campaign_name",
    "campaign_id",
    "adset_name",
    "adset_id",
    "ad_name",
    "ad_id",
    "objective",
    "actions",
    "reach",
    "impressions",
    "frequency",
    "cost_per_action_type",
    "spend",
    "cpm",
    "clicks",
    "cpc",
    "ctr",
    "inline_link_clicks",
    "inline_link_click_ctr",
    "action_values",
)

ACTION_TYPE_NAMES = {
    "onsite_conversion.messaging_conversation_started_7d_click": "Messaging conversations started",
    "messaging_conversation_started": "Messaging conversations started",
    "add_payment_info": "Website payment info adds",
    "add_to_cart": "Website adds to cart",
    "initiate_checkout": "Website checkouts initiated",
    "view_content": "Website content views",
    "lead": "Leads",
    "complete_registration": "Registrations",
    "purchase": "Website purchases",
    "offsite_conversion.fb_pixel_purchase": "Website purchases",
    "landing_page_view": "Landing page views",
    "link_click": "Link clicks",
    "post_engagement": "Post engagements",
    "app_install": "App installs",
    "video_view": "Video views",
}

PURCHASE_ACTION = "offsite_conversion.fb_pixel_purchase"

# objective (lowercase) -> action type counted as a result; None means link clicks
OBJECTIVE_RESULT_ACTIONS = {
    "conversions": PURCHASE_ACTION,
    "outcome_sales": PURCHASE_ACTION,
    "lead_generation": "lead",
    "outcome_leads": "lead",
    "link_clicks": None,
    "outcome_traffic": None,
    "post_engagement": "post_engagement",
    "outcome_engagement": "post_engagement",
    "app_installs": "app_install",
    "outcome_app_promotion": "app_install",
    "video_views": "video_view",
}


def normalize_account_id(account_id: str) -> str:
    return account_id if account_id.startswith("act_") else f"act_{account_id}"


def map_action_type(action_type: str) -> str:
    return ACTION_TYPE_NAMES.get(action_type, action_type)


def calculate_metrics(insight: dict[str, Any], objective: str = "") -> CalculatedMetrics:
    """Derive dashboard metrics from one raw insight row.

    Every ratio is 0 when its denominator is 0; money and ratio values are
    rounded half up to 2 decimal places.

    Args:
        insight: Raw Graph API insight row
        objective: Campaign objective, selects which action counts as a result

    Returns:
        CalculatedMetrics for the row
    """
    spend = safe_float(insight.get("spend")) or 0.0
    impressions = safe_int(insight.get("impressions")) or 0
    reach = safe_int(insight.get("reach")) or 0
    frequency = safe_float(insight.get("frequency")) or 0.0
    clicks = safe_int(insight.get("clicks")) or 0
    link_clicks = safe_int(insight.get("inline_link_clicks")) or 0

    actions = insight.get("actions") or []
    action_values = insight.get("action_values") or []

    def action_count(action_type: str) -> int:
        for action in actions:
            if action.get("action_type") == action_type:
                return safe_int(action.get("value")) or 0
        return 0

    def action_value(action_type: str) -> float:
        for action in action_values:
            if action.get("action_type") == action_type:
                return safe_float(action.get("value")) or 0.0
        return 0.0

    key = (objective or "").lower()
    if key in OBJECTIVE_RESULT_ACTIONS:
        result_action = OBJECTIVE_RESULT_ACTIONS[key]
        results = action_count(result_action) if result_action else link_clicks
    else:
        results = action_count(PURCHASE_ACTION) or link_clicks

    results_value = action_value(PURCHASE_ACTION)

    return CalculatedMetrics(
        results=results,
        detailed_results=[
            DetailedResult(
                action_type=action.get("action_type", ""),
                type=map_action_type(action.get("action_type", "")),
                value=safe_int(action.get("value")) or 0,
            )
            for action in actions
        ],
        reach=reach,
        impressions=impressions,
        frequency=round2(frequency),
        cost_per_result=round2(spend / results) if results > 0 else 0.0,
        amount_spent=round2(spend),
        cpm=round2(spend / impressions * 1000) if impressions > 0 else 0.0,
        link_clicks=link_clicks,
        cpc=round2(spend / clicks) if clicks > 0 else 0.0,
        ctr=round2(clicks / impressions * 100) if impressions > 0 else 0.0,
        link_ctr=round2(link_clicks / impressions * 100) if impressions > 0 else 0.0,
        landing_page_views=action_count("landing_page_view"),
        result_roas=round2(results_value / spend) if results_value > 0 and spend > 0 else 0.0,
        results_value=round2(results_value),
    )


def _entity_id_and_name(insight: dict[str, Any], level: str) -> tuple[str, str]:
    preferred = {"campaign": "campaign", "adset": "adset", "ad": "ad"}.get(level)
    order = ["campaign", "adset", "ad"]
    if preferred:
        order.remove(preferred)
        order.insert(0, preferred)

    entity_id = next((insight[f"{k}_id"] for k in order if insight.get(f"{k}_id")), "unknown")
    name = next((insight[f"{k}_name"] for k in order if insight.get(f"{k}_name")), "Unknown")
    return entity_id, name


def process_regular_insights(rows: list[dict[str, Any]], level: str) -> list[InsightMetrics]:
    results: list[InsightMetrics] = []
    for insight in rows:
        metrics = calculate_metrics(insight, insight.get("objective") or "")
        entity_id, name = _entity_id_and_name(insight, level)

        extra: dict[str, Any] = {}
        if level == "campaign":
            extra["objective"] = insight.get("objective") or "UNKNOWN"
            extra["status"] = insight.get("status")
        if level in ("adset", "ad"):
            extra["campaign_id"] = insight.get("campaign_id")
            extra["campaign_name"] = insight.get("campaign_name")
        if level == "ad":
            extra["ad_set_id"] = insight.get("adset_id")
            extra["ad_set_name"] = insight.get("adset_name")

        results.append(InsightMetrics(id=entity_id, name=name, **metrics.model_dump(), **extra))
    return results


def process_breakdown_insights(rows: list[dict[str, Any]], breakdown: str) -> list[BreakdownMetrics]:
    fields = breakdown.split(",")
    results: list[BreakdownMetrics] = []
    for insight in rows:
        metrics = calculate_metrics(insight)
        if len(fields) == 1:
            value = insight.get(breakdown) or "Unknown"
        else:
            value = " - ".join(str(insight.get(field) or "Unknown") for field in fields)
        results.append(
            BreakdownMetrics(dimension=breakdown, value=str(value), **metrics.model_dump())
        )
    return results


def _entity_budget(entity: dict[str, Any]) -> float:
    raw = entity.get("daily_budget") or entity.get("lifetime_budget") or "0"
    return (safe_float(raw) or 0.0) / 100


class FacebookClient:
    """Async Graph API client; credentials come from the Store."""

    RATE_LIMIT_ERROR_CODE = 17
    RATE_LIMIT_RETRY_DELAY = 2.0
    MAX_RATE_LIMIT_RETRIES = 3
    METADATA_PAGE_SIZE = 500

    def __init__(
        self,
        session: aiohttp.ClientSession,
        audit: Optional[AuditService] = None,
        api_version: str = "v19.0",
        archive: Optional[RawPayloadArchive] = None,
    ) -> None:
        self.session = session
        self.audit = audit
        self.api_version = api_version
        self.base_url = f"https://graph.facebook.com/{api_version}"
        self.archive = archive

    def _record(self, action: AuditAction, status: AuditStatus, store: Store, **fields: Any) -> None:
        if self.audit is None:
            return
        self.audit.fire(
            AuditLogEntry(
                action=action,
                status=status,
                store_id=store.id,
                store_name=store.name,
                **fields,
            )
        )

    def _record_failure(self, store: Store, exc: BaseException) -> None:
        self._record(
            AuditAction.FACEBOOK_SYNC_FAILED,
            AuditStatus.FAILURE,
            store,
            error_message=str(exc),
            error_details=error_details(exc),
        )

    async def _call(
        self,
        url: str,
        params: Optional[dict[str, Any]] = None,
        store: Optional[Store] = None,
    ) -> dict[str, Any]:
        """GET a Graph API resource, retrying on the rate limit error code.

        Args:
            url: Absolute Graph API URL (or a paging.next URL)
            params: Query parameters
            store: Store the call is made for; its token is redacted from
                logged errors and API error payloads are audited against it

        Returns:
            Decoded JSON payload

        Raises:
            FacebookRateLimitError: code 17 persisted after all retries
            FacebookApiError: any other error payload or transport failure
        """
        token = store.fb_ad_spend_token if store else None
        retries = 0
        while True:
            try:
                async with self.session.get(url, params=params) as response:
                    status = response.status
                    try:
                        payload = await response.json(content_type=None)
                    except ValueError:
                        payload = {"error": {"message": (await response.text())[:500]}}
            except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
                message = redact(str(exc) or type(exc).__name__, [token])
                logger.error("Facebook request failed: %s", message)
                raise FacebookApiError(message) from exc

            payload = payload or {}
            if status == 200 and "error" not in payload:
                return payload

            error = payload.get("error") or {}
            code = error.get("code")
            message = error.get("message") or f"HTTP {status}"

            if code == self.RATE_LIMIT_ERROR_CODE:
                if retries < self.MAX_RATE_LIMIT_RETRIES:
                    retries += 1
                    logger.warning(
                        "Facebook rate limit hit, retrying in %ss (%s/%s)",
                        self.RATE_LIMIT_RETRY_DELAY,
                        retries,
                        self.MAX_RATE_LIMIT_RETRIES,
                    )
                    await asyncio.sleep(self.RATE_LIMIT_RETRY_DELAY)
                    continue
                logger.error("Facebook rate limit persisted after %s retries", retries)
                failure = FacebookRateLimitError(retries + 1, message)
            else:
                logger.error("Facebook API error (%s): %s", status, redact(message, [token]))
                failure = FacebookApiError(redact(message, [token]), code=code, status=status)

            if store is not None:
                self._record(
                    AuditAction.FACEBOOK_API_ERROR,
                    AuditStatus.FAILURE,
                    store,
                    error_message=str(failure),
                    error_details=error_details(failure),
                    metadata={"endpoint": url.split("?", 1)[0].replace(self.base_url, "")},
                )
            raise failure

    async def _call_paged(
        self,
        url: str,
        params: dict[str, Any],
        store: Store,
        limit: Optional[int] = None,
    ) -> list[dict[str, Any]]:
        """Collect `data` across paging.next links, stopping once limit rows are held."""
        payload = await self._call(url, params, store=store)
        rows = list(payload.get("data") or [])
        next_url = (payload.get("paging") or {}).get("next")

        while next_url and (limit is None or len(rows) < limit):
            payload = await self._call(next_url, store=store)
            page = payload.get("data") or []
            if not page:
                break
            rows.extend(page)
            next_url = (payload.get("paging") or {}).get("next")

        if limit is not None:
            rows = rows[:limit]
        return rows

    async def fetch_ad_spend(
        self,
        store: Store,
        from_date: date,
        to_date: date,
    ) -> list[DailyAdSpend]:
        """Account-level spend per day for [from_date, to_date]."""
        if not store.has_facebook:
            logger.warning("Store %s has no Facebook credentials, skipping ad spend", store.name)
            return []

        started = monotonic()
        self._record(
            AuditAction.FACEBOOK_SYNC_STARTED,
            AuditStatus.PENDING,
            store,
            metadata={"from": from_date.isoformat(), "to": to_date.isoformat()},
        )

        try:
            token = store.fb_ad_spend_token
            url = f"{self.base_url}/{normalize_account_id(store.fb_account_id)}/insights"
            time_range = json.dumps({"since": from_date.isoformat(), "until": to_date.isoformat()})
            params = {
                "access_token": token,
                "level": "account",
                "fields": "spend,date_start",
                "time_increment": "1",
                "limit": "500",
                "time_range": time_range,
            }

            logger.info("Fetching Facebook ad spend for %s: %s", store.name, time_range)
            rows = await self._call_paged(url, params, store)

            if self.archive and rows:
                await self.archive.write("facebook", "ad_spend", store.id, rows)

            if not rows:
                logger.warning("No ad spend data returned for %s", store.name)

            daily_spend = [
                DailyAdSpend(date=row["date_start"], spend=safe_float(row.get("spend")) or 0.0)
                for row in rows
                if row.get("date_start")
            ]

            logger.info("Retrieved %s days of ad spend for %s", len(daily_spend), store.name)
            self._record(
                AuditAction.FACEBOOK_AD_SPEND_FETCHED,
                AuditStatus.SUCCESS,
                store,
                duration=elapsed_ms(started),
                metadata={"daysProcessed": len(daily_spend)},
            )
            return daily_spend

        except Exception as exc:
            self._record_failure(store, exc)
            raise

    async def fetch_insights(
        self,
        store: Store,
        from_date: date,
        to_date: date,
        level: str = "account",
        breakdown: Optional[str] = None,
        entity_id: Optional[str] = None,
        limit: int = 500,
    ) -> Union[list[InsightMetrics], list[BreakdownMetrics]]:
        """Insights at a level (or under an entity), optionally split by a breakdown.

        Args:
            store: Store with Facebook credentials
            from_date: First day (inclusive)
            to_date: Last day (inclusive)
            level: 'account', 'campaign', 'adset' or 'ad'
            breakdown: One of VALID_BREAKDOWNS
            entity_id: Campaign or ad set id to scope the query to
            limit: Maximum rows returned

        Returns:
            BreakdownMetrics rows when a breakdown is given, else InsightMetrics
        """
        if not store.has_facebook:
            logger.warning("Store %s has no Facebook credentials, skipping insights", store.name)
            return []

        started = monotonic()
        self._record(
            AuditAction.FACEBOOK_SYNC_STARTED,
            AuditStatus.PENDING,
            store,
            metadata={
                "from": from_date.isoformat(),
                "to": to_date.isoformat(),
                "level": level,
                "breakdown": breakdown or "none",
                "entityId": entity_id or "none",
                "limit": limit,
            },
        )

        try:
            token = store.fb_ad_spend_token
            target = entity_id or normalize_account_id(store.fb_account_id)
            url = f"{self.base_url}/{target}/insights"

            params: dict[str, Any] = {
                "access_token": token,
                "fields": ",".join(INSIGHT_FIELDS),
                "time_range": json.dumps(
                    {"since": from_date.isoformat(), "until": to_date.isoformat()}
                ),
                "limit": str(limit),
            }
            if not entity_id:
                params["level"] = level
            if breakdown:
                params["breakdowns"] = breakdown

            logger.info(
                "Fetching %s insights for %s%s",
                level,
                store.name,
                f" with breakdown: {breakdown}" if breakdown else "",
            )

            rows = await self._call_paged(url, params, store, limit=limit)

            if self.archive and rows:
                await self.archive.write("facebook", f"insights_{level}", store.id, rows)

            if not rows:
                logger.warning("No %s insights data found for %s", level, store.name)

            metadata: dict[str, Any] = {"recordsProcessed": len(rows)}
            if breakdown:
                metadata["breakdown"] = breakdown
                results: Union[list[InsightMetrics], list[BreakdownMetrics]] = (
                    process_breakdown_insights(rows, breakdown)
                )
            else:
                metadata["level"] = level
                results = process_regular_insights(rows, level)

            self._record(
                AuditAction.FACEBOOK_INSIGHTS_FETCHED,
                AuditStatus.SUCCESS,
                store,
                duration=elapsed_ms(started),
                metadata=metadata,
            )
            return results

        except Exception as exc:
            self._record_failure(store, exc)
            raise

    async def _fetch_entities(self, store: Store, url: str, fields: str, limit: int) -> list[dict]:
        payload = await self._call(
            url,
            {
                "access_token": store.fb_ad_spend_token,
                "fields": fields,
                "limit": str(self.METADATA_PAGE_SIZE),
            },
            store=store,
        )
        return list(payload.get("data") or [])[:limit]

    @staticmethod
    def _merge_metadata(
        insights: list[InsightMetrics],
        metadata: dict[str, dict[str, Any]],
    ) -> list[InsightMetrics]:
        return [
            insight.model_copy(update=metadata[insight.id]) if insight.id in metadata else insight
            for insight in insights
        ]

    async def fetch_campaigns_with_details(
        self,
        store: Store,
        from_date: date,
        to_date: date,
        limit: int = 100,
    ) -> list[InsightMetrics]:
        """Campaign insights merged with status, objective, budget and schedule."""
        if not store.has_facebook:
            logger.warning("Store %s has no Facebook credentials, skipping campaigns", store.name)
            return []

        account_id = normalize_account_id(store.fb_account_id)
        logger.info("Fetching campaigns metadata for %s", store.name)
        campaigns = await self._fetch_entities(
            store,
            f"{self.base_url}/{account_id}/campaigns",
            "id,name,status,objective,daily_budget,lifetime_budget,start_time,stop_time",
            limit,
        )
        if not campaigns:
            logger.warning("No campaigns found for %s", store.name)
            return []

        insights = await self.fetch_insights(store, from_date, to_date, "campaign", limit=limit)

        metadata = {
            campaign["id"]: {
                "status": campaign.get("status"),
                "objective": campaign.get("objective"),
                "budget": _entity_budget(campaign),
                "start_time": campaign.get("start_time") or "",
                "end_time": campaign.get("stop_time") or "",
            }
            for campaign in campaigns
        }
        return self._merge_metadata(insights, metadata)

    async def fetch_adsets_with_details(
        self,
        store: Store,
        from_date: date,
        to_date: date,
        campaign_id: Optional[str] = None,
        limit: int = 100,
    ) -> list[InsightMetrics]:
        """Ad set insights merged with status, budget and schedule."""
        if not store.has_facebook:
            logger.warning("Store %s has no Facebook credentials, skipping ad sets", store.name)
            return []

        parent = campaign_id or normalize_account_id(store.fb_account_id)
        logger.info(
            "Fetching ad sets metadata for %s%s",
            store.name,
            f" (campaign: {campaign_id})" if campaign_id else "",
        )
        adsets = await self._fetch_entities(
            store,
            f"{self.base_url}/{parent}/adsets",
            "id,name,status,campaign_id,daily_budget,lifetime_budget,start_time,end_time",
            limit,
        )
        if not adsets:
            logger.warning("No ad sets found for %s", store.name)
            return []

        insights = await self.fetch_insights(
            store, from_date, to_date, "adset", entity_id=campaign_id, limit=limit
        )

        metadata = {
            adset["id"]: {
                "status": adset.get("status"),
                "budget": _entity_budget(adset),
                "start_time": adset.get("start_time") or "",
                "end_time": adset.get("end_time") or "",
            }
            for adset in adsets
        }
        return self._merge_metadata(insights, metadata)

    async def fetch_ads_with_details(
        self,
        store: Store,
        from_date: date,
        to_date: date,
        adset_id: Optional[str] = None,
        limit: int = 100,
    ) -> list[InsightMetrics]:
        """Ad insights merged with status."""
        if not store.has_facebook:
            logger.warning("Store %s has no Facebook credentials, skipping ads", store.name)
            return []

        parent = adset_id or normalize_account_id(store.fb_account_id)
        logger.info(
            "Fetching ads metadata for %s%s",
            store.name,
            f" (ad set: {adset_id})" if adset_id else "",
        )
        ads = await self._fetch_entities(
            store,
            f"{self.base_url}/{parent}/ads",
            "id,name,status,adset_id,campaign_id",
            limit,
        )
        if not ads:
            logger.warning("No ads found for %s", store.name)
            return []

        insights = await self.fetch_insights(
            store, from_date, to_date, "ad", entity_id=adset_id, limit=limit
        )

        metadata = {ad["id"]: {"status": ad.get("status")} for ad in ads}
        return self._merge_metadata(insights, metadata)
