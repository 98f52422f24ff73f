"""Shopify Admin GraphQL client.

Fetches daily order rollups, per-product sales and landing page traffic
(ShopifyQL) for a store.
"""
import asyncio
import logging
from datetime import date, datetime, timedelta, tzinfo
from time import monotonic
from typing import Any, AsyncIterator, Optional
from zoneinfo import ZoneInfo

import aiohttp

from ..audit import AuditAction, AuditLogEntry, AuditService, AuditStatus, error_details
from ..exceptions import ShopifyGraphQLError, VendorApiError
from ..schemas.metrics import DailyOrdersSummary, ProductSales, TrafficAnalytics
from ..schemas.stores import Store
from .archive import RawPayloadArchive
from .common import elapsed_ms, redact, safe_float, safe_int


logger = logging.getLogger(__name__)


ORDERS_QUERY = """
query getOrders($cursor: String, $queryString: String!) {
  orders(first: 100, after: $cursor, query: $queryString) {
    edges {
      cursor
      node {
        id
        totalPriceSet { shopMoney { amount } }
        lineItems(first: 100) {
          edges {
            node {
              quantity
              product {
                id
                title
                onlineStoreUrl
                featuredImage { url }
              }
            }
          }
        }
      }
    }
    pageInfo { hasNextPage }
  }
}
"""


def build_traffic_query(days_back: int, limit: int) -> str:
    """ShopifyQL sessions report, flattened to a single line."""
    shopifyql = f"""
        FROM sessions
        SHOW online_store_visitors, sessions, sessions_with_cart_additions, sessions_that_reached_checkout
        WHERE landing_page_path IS NOT NULL
        AND human_or_bot_session IN ('human', 'bot')
        GROUP BY landing_page_type, landing_page_path
        WITH TOTALS
        SINCE startOfDay(-{days_back}d)
        UNTIL today
        ORDER BY sessions DESC
        LIMIT {limit}
    """
    return " ".join(shopifyql.split()).replace('"', '\\"')


def _shop_domain(store_url: str) -> str:
    domain = store_url.strip()
    for prefix in ("https://", "http://"):
        if domain.startswith(prefix):
            domain = domain[len(prefix):]
    return domain.rstrip("/")


class ShopifyClient:
    """Async Shopify client shared by every store (credentials come from the Store)."""

    DELAY_BETWEEN_DAYS = 0.1
    PROGRESS_EVERY_DAYS = 10

    def __init__(
        self,
        session: aiohttp.ClientSession,
        audit: Optional[AuditService] = None,
        api_version: str = "2024-10",
        analytics_api_version: str = "2025-10",
        tz: Optional[tzinfo] = None,
        archive: Optional[RawPayloadArchive] = None,
    ) -> None:
        """Initialize Shopify client.

        Args:
            session: Shared aiohttp session
            audit: Audit service for PENDING/SUCCESS/FAILURE entries
            api_version: Admin API version for orders queries
            analytics_api_version: Admin API version for ShopifyQL
            tz: Timezone that defines day boundaries
            archive: Optional raw payload archive
        """
        self.session = session
        self.audit = audit
        self.api_version = api_version
        self.analytics_api_version = analytics_api_version
        self.tz = tz or ZoneInfo("UTC")
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
            AuditAction.SHOPIFY_SYNC_FAILED,
            AuditStatus.FAILURE,
            store,
            error_message=str(exc),
            error_details=error_details(exc),
        )

    async def _post_graphql(
        self,
        store: Store,
        payload: dict[str, Any],
        api_version: Optional[str] = None,
    ) -> dict[str, Any]:
        """POST a GraphQL document and return its `data` object."""
        version = api_version or self.api_version
        url = f"https://{_shop_domain(store.shopify_store_url)}/admin/api/{version}/graphql.json"
        headers = {
            "X-Shopify-Access-Token": store.shopify_token,
            "Content-Type": "application/json",
        }

        try:
            async with self.session.post(url, json=payload, headers=headers) as response:
                if response.status != 200:
                    error_body = await response.text()
                    logger.error(
                        "Shopify GraphQL error (%s): %s",
                        response.status,
                        redact(error_body[:500], [store.shopify_token]),
                    )
                    raise VendorApiError(
                        "shopify",
                        f"GraphQL request failed: {response.status}",
                        status=response.status,
                    )
                result = await response.json()
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            logger.error(
                "Shopify request failed for %s: %s",
                store.name,
                redact(str(exc), [store.shopify_token]),
            )
            raise VendorApiError("shopify", str(exc) or type(exc).__name__) from exc

        if result.get("errors"):
            logger.error("Shopify GraphQL errors: %s", result["errors"])
            raise ShopifyGraphQLError(result["errors"])

        return result.get("data") or {}

    async def _iter_orders(self, store: Store, query_string: str) -> AsyncIterator[dict]:
        """Yield order nodes matching the search string, across all pages."""
        cursor: Optional[str] = None
        while True:
            data = await self._post_graphql(
                store,
                {
                    "query": ORDERS_QUERY,
                    "variables": {"cursor": cursor, "queryString": query_string},
                },
            )
            orders = data.get("orders")
            if not isinstance(orders, dict):
                logger.error("Shopify orders response has no orders connection: %s", data)
                raise VendorApiError("shopify", "Malformed orders response")
            edges = orders.get("edges") or []

            if self.archive and edges:
                await self.archive.write(
                    "shopify", "orders", store.id, [edge["node"] for edge in edges]
                )

            for edge in edges:
                yield edge["node"]

            if not (orders.get("pageInfo") or {}).get("hasNextPage") or not edges:
                break
            cursor = edges[-1]["cursor"]

    def _day_bounds(self, day: date) -> tuple[datetime, datetime]:
        start = datetime.combine(day, datetime.min.time(), tzinfo=self.tz)
        end = datetime.combine(day, datetime.max.time(), tzinfo=self.tz)
        return start, end

    async def fetch_orders(
        self,
        store: Store,
        from_date: date,
        to_date: date,
    ) -> list[DailyOrdersSummary]:
        """Roll up orders per day for every day in [from_date, to_date].

        Days without orders are still returned with zero counts.

        Args:
            store: Store with Shopify credentials
            from_date: First day (inclusive)
            to_date: Last day (inclusive)

        Returns:
            One DailyOrdersSummary per day, ascending
        """
        if not store.has_shopify:
            logger.warning("Store %s has no Shopify credentials, skipping orders", store.name)
            return []

        started = monotonic()
        total_days = (to_date - from_date).days + 1
        self._record(
            AuditAction.SHOPIFY_SYNC_STARTED,
            AuditStatus.PENDING,
            store,
            metadata={"from": from_date.isoformat(), "to": to_date.isoformat()},
        )

        try:
            logger.info(
                "Fetching Shopify orders for %s: %s to %s (%s days)",
                store.name,
                from_date.isoformat(),
                to_date.isoformat(),
                total_days,
            )

            results: list[DailyOrdersSummary] = []
            current = from_date
            while current <= to_date:
                day_start, day_end = self._day_bounds(current)
                query_string = (
                    f"created_at:>='{day_start.isoformat()}' "
                    f"AND created_at:<='{day_end.isoformat()}'"
                )

                sold_orders = 0
                order_value = 0.0
                sold_items = 0
                async for order in self._iter_orders(store, query_string):
                    sold_orders += 1
                    order_value += _order_total(order)
                    sold_items += sum(
                        edge["node"].get("quantity") or 0
                        for edge in order["lineItems"]["edges"]
                    )

                results.append(
                    DailyOrdersSummary(
                        date=current.isoformat(),
                        sold_orders=sold_orders,
                        order_value=order_value,
                        sold_items=sold_items,
                    )
                )

                if len(results) % self.PROGRESS_EVERY_DAYS == 0:
                    logger.info(
                        "Progress: %s/%s days processed for %s",
                        len(results),
                        total_days,
                        store.name,
                    )

                if total_days > 1 and current < to_date:
                    await asyncio.sleep(self.DELAY_BETWEEN_DAYS)

                current += timedelta(days=1)

            logger.info("Retrieved %s days of orders for %s", len(results), store.name)
            self._record(
                AuditAction.SHOPIFY_ORDERS_FETCHED,
                AuditStatus.SUCCESS,
                store,
                duration=elapsed_ms(started),
                metadata={"daysProcessed": len(results), "totalDays": total_days},
            )
            return results

        except Exception as exc:
            self._record_failure(store, exc)
            raise

    async def fetch_product_sales(
        self,
        store: Store,
        from_dt: Optional[datetime] = None,
        to_dt: Optional[datetime] = None,
    ) -> list[ProductSales]:
        """Aggregate quantity and revenue per product.

        Without both bounds every order is scanned (all-time). Revenue is the
        order total split across line items by quantity share, which ignores
        per-item price differences and discounts.
        """
        if not store.has_shopify:
            logger.warning("Store %s has no Shopify credentials, skipping products", store.name)
            return []

        started = monotonic()
        query_string = ""
        if from_dt and to_dt:
            query_string = (
                f"created_at:>='{from_dt.isoformat()}' "
                f"AND created_at:<='{to_dt.isoformat()}'"
            )
            range_label = f"{from_dt.date().isoformat()} to {to_dt.date().isoformat()}"
        else:
            range_label = "all-time"

        self._record(
            AuditAction.SHOPIFY_SYNC_STARTED,
            AuditStatus.PENDING,
            store,
            metadata={
                "from": from_dt.isoformat() if from_dt else "",
                "to": to_dt.isoformat() if to_dt else "",
            },
        )

        try:
            logger.info("Fetching product sales for %s: %s", store.name, range_label)

            products: dict[str, ProductSales] = {}
            async for order in self._iter_orders(store, query_string):
                order_total = _order_total(order)
                line_items = [edge["node"] for edge in order["lineItems"]["edges"]]
                total_items = sum(item.get("quantity") or 0 for item in line_items)

                for item in line_items:
                    product = item.get("product")
                    if not product:
                        continue

                    quantity = item.get("quantity") or 0
                    item_revenue = quantity / total_items * order_total if total_items else 0.0

                    existing = products.get(product["id"])
                    if existing is None:
                        existing = ProductSales(
                            product_id=product["id"],
                            product_name=product.get("title") or "",
                            product_image=(product.get("featuredImage") or {}).get("url") or "",
                            product_url=product.get("onlineStoreUrl") or "",
                        )
                        products[product["id"]] = existing

                    existing.quantity_sold += quantity
                    existing.revenue += item_revenue

            results = list(products.values())
            logger.info(
                "Retrieved sales data for %s products from %s", len(results), store.name
            )
            self._record(
                AuditAction.SHOPIFY_PRODUCTS_SYNCED,
                AuditStatus.SUCCESS,
                store,
                duration=elapsed_ms(started),
                metadata={"productsProcessed": len(results), "dateRange": range_label},
            )
            return results

        except Exception as exc:
            self._record_failure(store, exc)
            raise

    async def fetch_traffic_analytics(
        self,
        store: Store,
        days_back: int = 7,
        limit: int = 10,
    ) -> list[TrafficAnalytics]:
        """Top landing pages by sessions over the trailing days_back days."""
        if not store.has_shopify:
            logger.warning("Store %s has no Shopify credentials, skipping traffic", store.name)
            return []

        started = monotonic()
        document = (
            "query { "
            f'shopifyqlQuery(query: "{build_traffic_query(days_back, limit)}") {{ '
            "tableData { columns { name dataType displayName } rows } "
            "parseErrors "
            "} }"
        )

        self._record(
            AuditAction.SHOPIFY_SYNC_STARTED,
            AuditStatus.PENDING,
            store,
            metadata={"daysBack": days_back, "limit": limit},
        )

        try:
            data = await self._post_graphql(
                store, {"query": document}, api_version=self.analytics_api_version
            )
            query_data = data.get("shopifyqlQuery") or {}

            parse_errors = query_data.get("parseErrors")
            if parse_errors:
                logger.error("ShopifyQL parse errors: %s", parse_errors)
                raise ShopifyGraphQLError(f"ShopifyQL parse errors: {parse_errors}")

            table = query_data.get("tableData") or {}
            columns = [column.get("name") for column in table.get("columns") or []]
            rows = table.get("rows") or []

            if self.archive and rows:
                await self.archive.write("shopify", "traffic", store.id, rows)

            results = [_traffic_row(row, columns) for row in rows]

            logger.info(
                "Retrieved traffic analytics for %s landing pages from %s",
                len(results),
                store.name,
            )
            self._record(
                AuditAction.SHOPIFY_TRAFFIC_SYNCED,
                AuditStatus.SUCCESS,
                store,
                duration=elapsed_ms(started),
                metadata={"pagesProcessed": len(results), "daysBack": days_back},
            )
            return results

        except Exception as exc:
            self._record_failure(store, exc)
            raise


def _order_total(order: dict) -> float:
    money = ((order.get("totalPriceSet") or {}).get("shopMoney") or {})
    return safe_float(money.get("amount")) or 0.0


def _traffic_row(row: Any, columns: list[str]) -> TrafficAnalytics:
    if isinstance(row, (list, tuple)):
        row = dict(zip(columns, row))

    return TrafficAnalytics(
        landing_page_type=row.get("landing_page_type") or "Unknown",
        landing_page_path=row.get("landing_page_path") or "/",
        online_store_visitors=safe_int(row.get("online_store_visitors")) or 0,
        sessions=safe_int(row.get("sessions")) or 0,
        sessions_with_cart_additions=safe_int(row.get("sessions_with_cart_additions")) or 0,
        sessions_that_reached_checkout=safe_int(row.get("sessions_that_reached_checkout")) or 0,
    )
