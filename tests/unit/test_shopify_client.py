"""Unit tests for the Shopify GraphQL client (mocked aiohttp session)."""
from datetime import date
from unittest.mock import MagicMock

import pytest

from spendboard_core.audit import AuditAction, AuditStatus
from spendboard_core.exceptions import ShopifyGraphQLError, VendorApiError
from spendboard_core.integrations.shopify_client import (
    ShopifyClient,
    _shop_domain,
    build_traffic_query,
)
from spendboard_core.schemas.stores import Store


def _line_item(quantity, product_id=None, title="Product"):
    product = None
    if product_id:
        product = {
            "id": product_id,
            "title": title,
            "onlineStoreUrl": f"https://shop.example/{product_id}",
            "featuredImage": {"url": f"https://cdn.example/{product_id}.jpg"},
        }
    return {"node": {"quantity": quantity, "product": product}}


def _order(amount, *line_items):
    return {
        "id": "gid://shopify/Order/1",
        "totalPriceSet": {"shopMoney": {"amount": str(amount)}},
        "lineItems": {"edges": list(line_items)},
    }


def _orders_page(orders, has_next=False, cursor_prefix="c"):
    return {
        "data": {
            "orders": {
                "edges": [
                    {"cursor": f"{cursor_prefix}{i}", "node": order}
                    for i, order in enumerate(orders, start=1)
                ],
                "pageInfo": {"hasNextPage": has_next},
            }
        }
    }


@pytest.fixture
def client(mock_session):
    shopify = ShopifyClient(mock_session)
    shopify.DELAY_BETWEEN_DAYS = 0
    return shopify


@pytest.mark.asyncio
async def test_fetch_orders_rolls_up_one_day(client, mock_session, make_response, store):
    mock_session.post.return_value = make_response(
        payload=_orders_page(
            [
                _order(300, _line_item(2, "p1"), _line_item(3, "p2")),
                _order(200, _line_item(5, "p1")),
            ]
        )
    )

    results = await client.fetch_orders(store, date(2024, 11, 1), date(2024, 11, 1))

    assert len(results) == 1
    assert results[0].date == "2024-11-01"
    assert results[0].sold_orders == 2
    assert results[0].order_value == 500.0
    assert results[0].sold_items == 10

    call = mock_session.post.call_args
    assert call.args[0] == "https://test-shop.myshopify.com/admin/api/2024-10/graphql.json"
    assert call.kwargs["headers"]["X-Shopify-Access-Token"] == "shpat_test"
    query_string = call.kwargs["json"]["variables"]["queryString"]
    assert query_string.startswith("created_at:>='2024-11-01T00:00:00")


@pytest.mark.asyncio
async def test_fetch_orders_follows_last_edge_cursor(client, mock_session, make_response, store):
    mock_session.post.side_effect = [
        make_response(payload=_orders_page([_order(10), _order(20)], has_next=True)),
        make_response(payload=_orders_page([_order(30)], cursor_prefix="d")),
    ]

    results = await client.fetch_orders(store, date(2024, 11, 1), date(2024, 11, 1))

    assert results[0].sold_orders == 3
    assert results[0].order_value == 60.0

    first, second = mock_session.post.call_args_list
    assert first.kwargs["json"]["variables"]["cursor"] is None
    assert second.kwargs["json"]["variables"]["cursor"] == "c2"


@pytest.mark.asyncio
async def test_fetch_orders_returns_zero_rows_for_empty_days(
    client, mock_session, make_response, store
):
    mock_session.post.side_effect = [
        make_response(payload=_orders_page([])),
        make_response(payload=_orders_page([_order(50, _line_item(1, "p1"))])),
        make_response(payload=_orders_page([])),
    ]

    results = await client.fetch_orders(store, date(2024, 11, 1), date(2024, 11, 3))

    assert [r.date for r in results] == ["2024-11-01", "2024-11-02", "2024-11-03"]
    assert [r.sold_orders for r in results] == [0, 1, 0]
    assert mock_session.post.call_count == 3


@pytest.mark.asyncio
async def test_fetch_orders_without_credentials_skips(client, mock_session):
    store = Store(id="s2", name="No Shopify")

    assert await client.fetch_orders(store, date(2024, 11, 1), date(2024, 11, 1)) == []
    mock_session.post.assert_not_called()


@pytest.mark.asyncio
async def test_root_level_errors_raise(client, mock_session, make_response, store):
    mock_session.post.return_value = make_response(
        payload={"errors": [{"message": "Access denied to resource"}]}
    )

    with pytest.raises(ShopifyGraphQLError) as exc_info:
        await client.fetch_orders(store, date(2024, 11, 1), date(2024, 11, 1))

    assert "Access denied" in str(exc_info.value)


@pytest.mark.asyncio
@pytest.mark.parametrize("payload", [{"data": None}, {"data": {"orders": None}}, {}])
async def test_missing_orders_connection_raises_vendor_error(
    client, mock_session, make_response, store, payload
):
    mock_session.post.return_value = make_response(payload=payload)

    with pytest.raises(VendorApiError) as exc_info:
        await client.fetch_orders(store, date(2024, 11, 1), date(2024, 11, 1))

    assert exc_info.value.vendor == "shopify"
    assert "Malformed orders response" in str(exc_info.value)


@pytest.mark.asyncio
async def test_http_error_raises_vendor_error_and_audits_failure(
    mock_session, make_response, store
):
    audit = MagicMock()
    client = ShopifyClient(mock_session, audit=audit)
    mock_session.post.return_value = make_response(status=503, text="Service Unavailable")

    with pytest.raises(VendorApiError) as exc_info:
        await client.fetch_orders(store, date(2024, 11, 1), date(2024, 11, 1))

    assert exc_info.value.status == 503
    assert exc_info.value.vendor == "shopify"

    entries = [call.args[0] for call in audit.fire.call_args_list]
    assert [e.action for e in entries] == [
        AuditAction.SHOPIFY_SYNC_STARTED,
        AuditAction.SHOPIFY_SYNC_FAILED,
    ]
    assert entries[0].status == AuditStatus.PENDING
    assert entries[1].status == AuditStatus.FAILURE
    assert entries[1].error_details["status"] == 503


@pytest.mark.asyncio
async def test_fetch_product_sales_allocates_revenue_by_quantity(
    client, mock_session, make_response, store
):
    mock_session.post.return_value = make_response(
        payload=_orders_page(
            [
                _order(100, _line_item(1, "p1", "Mug"), _line_item(3, "p2", "Cap")),
                _order(40, _line_item(1, "p1", "Mug"), _line_item(1)),
            ]
        )
    )

    results = await client.fetch_product_sales(store)

    by_id = {product.product_id: product for product in results}
    assert set(by_id) == {"p1", "p2"}
    assert by_id["p1"].quantity_sold == 2
    assert by_id["p1"].revenue == pytest.approx(45.0)
    assert by_id["p2"].quantity_sold == 3
    assert by_id["p2"].revenue == pytest.approx(75.0)
    assert by_id["p1"].product_image == "https://cdn.example/p1.jpg"
    assert mock_session.post.call_args.kwargs["json"]["variables"]["queryString"] == ""


@pytest.mark.asyncio
async def test_fetch_product_sales_zero_quantity_order(client, mock_session, make_response, store):
    mock_session.post.return_value = make_response(
        payload=_orders_page([_order(25, _line_item(0, "p1"))])
    )

    [product] = await client.fetch_product_sales(store)

    assert product.quantity_sold == 0
    assert product.revenue == 0.0


@pytest.mark.asyncio
async def test_fetch_traffic_analytics_maps_rows(client, mock_session, make_response, store):
    columns = [
        {"name": name, "dataType": "STRING", "displayName": name}
        for name in (
            "landing_page_type",
            "landing_page_path",
            "online_store_visitors",
            "sessions",
            "sessions_with_cart_additions",
            "sessions_that_reached_checkout",
        )
    ]
    mock_session.post.return_value = make_response(
        payload={
            "data": {
                "shopifyqlQuery": {
                    "tableData": {
                        "columns": columns,
                        "rows": [
                            ["Product", "/products/mug", "90", "120", "30", "12"],
                            {"landing_page_path": None, "sessions": "7"},
                        ],
                    },
                    "parseErrors": [],
                }
            }
        }
    )

    pages = await client.fetch_traffic_analytics(store, days_back=7, limit=10)

    assert pages[0].landing_page_type == "Product"
    assert pages[0].landing_page_path == "/products/mug"
    assert pages[0].sessions == 120
    assert pages[0].sessions_that_reached_checkout == 12
    assert pages[1].landing_page_type == "Unknown"
    assert pages[1].landing_page_path == "/"
    assert pages[1].sessions == 7
    assert pages[1].online_store_visitors == 0

    url = mock_session.post.call_args.args[0]
    assert "/admin/api/2025-10/graphql.json" in url


@pytest.mark.asyncio
async def test_fetch_traffic_analytics_parse_errors(client, mock_session, make_response, store):
    mock_session.post.return_value = make_response(
        payload={"data": {"shopifyqlQuery": {"tableData": None, "parseErrors": ["bad token"]}}}
    )

    with pytest.raises(ShopifyGraphQLError) as exc_info:
        await client.fetch_traffic_analytics(store)

    assert "parse errors" in str(exc_info.value)


def test_build_traffic_query_is_single_line():
    query = build_traffic_query(30, 50)

    assert "\n" not in query
    assert "SINCE startOfDay(-30d)" in query
    assert query.endswith("LIMIT 50")


def test_store_url_scheme_is_stripped():
    assert _shop_domain("https://scheme-shop.myshopify.com/") == "scheme-shop.myshopify.com"
    assert _shop_domain("plain-shop.myshopify.com") == "plain-shop.myshopify.com"
