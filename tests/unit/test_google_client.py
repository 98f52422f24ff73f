"""Unit tests for the Google Ads client and the OAuth connect/refresh flows."""
from datetime import date, datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock
from urllib.parse import parse_qs, urlparse

import pytest

from spendboard_core.audit import AuditAction
from spendboard_core.exceptions import GoogleAuthError, VendorApiError
from spendboard_core.integrations.google_client import (
    ADWORDS_SCOPE,
    TOKEN_URL,
    GoogleAdsClient,
    GoogleOAuthClient,
    build_spend_query,
)
from spendboard_core.schemas.stores import Store


def _stream(*rows):
    return [
        {
            "results": [
                {"segments": {"date": day}, "metrics": {"costMicros": str(micros)}}
                for day, micros in rows
            ]
        }
    ]


@pytest.fixture
def oauth():
    refresher = MagicMock()
    refresher.refresh_access_token = AsyncMock(return_value="ya29.fresh")
    return refresher


@pytest.fixture
def connected_store():
    return Store(
        id="s1",
        name="Test Store",
        google_access_token="ya29.cached",
        google_refresh_token="refresh",
        google_customer_id="123-456-7890",
        google_token_expiry=datetime.now(timezone.utc) + timedelta(hours=1),
    )


@pytest.mark.asyncio
async def test_fetch_ad_spend_sums_micros_per_day(
    mock_session, make_response, oauth, connected_store
):
    client = GoogleAdsClient(mock_session, oauth, developer_token="dev-token")
    mock_session.post.return_value = make_response(
        payload=_stream(
            ("2024-11-02", 1_500_000),
            ("2024-11-01", 10_000_000),
            ("2024-11-01", 2_250_000),
        )
    )

    spend = await client.fetch_ad_spend(connected_store, date(2024, 11, 1), date(2024, 11, 2))

    assert [(row.date, row.spend) for row in spend] == [
        ("2024-11-01", 12.25),
        ("2024-11-02", 1.5),
    ]
    oauth.refresh_access_token.assert_not_called()

    call = mock_session.post.call_args
    assert call.args[0] == (
        "https://googleads.googleapis.com/v16/customers/1234567890/googleAds:searchStream"
    )
    assert call.kwargs["headers"]["Authorization"] == "Bearer ya29.cached"
    assert call.kwargs["headers"]["developer-token"] == "dev-token"
    assert "BETWEEN '2024-11-01' AND '2024-11-02'" in call.kwargs["json"]["query"]


@pytest.mark.asyncio
async def test_fetch_ad_spend_without_customer_id(mock_session, oauth, store):
    client = GoogleAdsClient(mock_session, oauth)
    store = store.model_copy(update={"google_customer_id": None})

    assert await client.fetch_ad_spend(store, date(2024, 11, 1), date(2024, 11, 1)) == []
    mock_session.post.assert_not_called()


@pytest.mark.asyncio
async def test_fetch_ad_spend_without_refresh_token(mock_session, oauth):
    client = GoogleAdsClient(mock_session, oauth)
    store = Store(id="s2", name="Disconnected", google_customer_id="111")

    assert await client.fetch_ad_spend(store, date(2024, 11, 1), date(2024, 11, 1)) == []
    oauth.refresh_access_token.assert_not_called()


@pytest.mark.asyncio
async def test_expired_token_is_refreshed_and_persisted(oauth, connected_store):
    stores = MagicMock()
    audit = MagicMock()
    client = GoogleAdsClient(MagicMock(), oauth, stores=stores, audit=audit)
    connected_store.google_token_expiry = datetime.now(timezone.utc) + timedelta(minutes=2)

    token = await client.get_valid_access_token(connected_store)

    assert token == "ya29.fresh"
    assert connected_store.google_access_token == "ya29.fresh"
    oauth.refresh_access_token.assert_awaited_once_with("refresh")

    store_id, saved_token, expiry = stores.update_google_tokens.call_args.args
    assert (store_id, saved_token) == ("s1", "ya29.fresh")
    assert expiry > datetime.now(timezone.utc) + timedelta(minutes=55)

    entry = audit.fire.call_args.args[0]
    assert entry.action == AuditAction.GOOGLE_TOKEN_REFRESHED


@pytest.mark.asyncio
async def test_naive_expiry_is_treated_as_utc(oauth, connected_store):
    client = GoogleAdsClient(MagicMock(), oauth)
    connected_store.google_token_expiry = (
        datetime.now(timezone.utc) + timedelta(hours=2)
    ).replace(tzinfo=None)

    assert await client.get_valid_access_token(connected_store) == "ya29.cached"
    oauth.refresh_access_token.assert_not_called()


@pytest.mark.asyncio
async def test_missing_access_token_is_refreshed(oauth, connected_store):
    client = GoogleAdsClient(MagicMock(), oauth)
    connected_store.google_access_token = None

    assert await client.get_valid_access_token(connected_store) == "ya29.fresh"


@pytest.mark.asyncio
async def test_search_stream_error_raises_and_audits(
    mock_session, make_response, oauth, connected_store
):
    audit = MagicMock()
    client = GoogleAdsClient(mock_session, oauth, audit=audit)
    mock_session.post.return_value = make_response(status=403, text="PERMISSION_DENIED")

    with pytest.raises(VendorApiError) as exc_info:
        await client.fetch_ad_spend(connected_store, date(2024, 11, 1), date(2024, 11, 1))

    assert exc_info.value.vendor == "google"
    assert exc_info.value.status == 403
    actions = [call.args[0].action for call in audit.fire.call_args_list]
    assert actions == [AuditAction.GOOGLE_SYNC_STARTED, AuditAction.GOOGLE_SYNC_FAILED]


@pytest.mark.asyncio
async def test_oauth_refresh_posts_form(mock_session, make_response):
    oauth = GoogleOAuthClient(mock_session, "client-id", "client-secret")
    mock_session.post.return_value = make_response(payload={"access_token": "ya29.new"})

    assert await oauth.refresh_access_token("refresh") == "ya29.new"

    call = mock_session.post.call_args
    assert call.args[0] == TOKEN_URL
    assert call.kwargs["data"]["grant_type"] == "refresh_token"
    assert call.kwargs["data"]["refresh_token"] == "refresh"


@pytest.mark.asyncio
async def test_oauth_refresh_rejected(mock_session, make_response):
    oauth = GoogleOAuthClient(mock_session, "client-id", "client-secret")
    mock_session.post.return_value = make_response(status=400, text='{"error": "invalid_grant"}')

    with pytest.raises(GoogleAuthError) as exc_info:
        await oauth.refresh_access_token("revoked")

    assert exc_info.value.status == 400


def test_build_spend_query_orders_by_date():
    query = build_spend_query(date(2024, 11, 1), date(2024, 11, 30))

    assert query.startswith("SELECT segments.date, metrics.cost_micros FROM campaign")
    assert query.endswith("ORDER BY segments.date ASC")


@pytest.fixture
def web_oauth(mock_session):
    return GoogleOAuthClient(
        mock_session,
        "client-id",
        "client-secret",
        redirect_uri="https://api.example.com/api/v1/integrations/google/callback",
        developer_token="dev-token",
    )


def test_authorization_url_requests_offline_consent(web_oauth):
    url = web_oauth.get_authorization_url("s1.signature")

    parsed = urlparse(url)
    query = parse_qs(parsed.query)
    assert f"{parsed.scheme}://{parsed.netloc}{parsed.path}" == (
        "https://accounts.google.com/o/oauth2/v2/auth"
    )
    assert query["scope"] == [ADWORDS_SCOPE]
    assert query["access_type"] == ["offline"]
    assert query["prompt"] == ["consent"]
    assert query["state"] == ["s1.signature"]
    assert query["redirect_uri"] == [
        "https://api.example.com/api/v1/integrations/google/callback"
    ]


def test_oauth_client_configuration_requires_redirect_uri(mock_session):
    assert not GoogleOAuthClient(mock_session, "client-id", "client-secret").is_configured


@pytest.mark.asyncio
async def test_exchange_code_returns_tokens(web_oauth, mock_session, make_response):
    mock_session.post.return_value = make_response(
        payload={"access_token": "ya29.a", "refresh_token": "1//r", "expires_in": 1800}
    )

    tokens = await web_oauth.exchange_code("auth-code")

    assert (tokens.access_token, tokens.refresh_token) == ("ya29.a", "1//r")
    remaining = tokens.expiry - datetime.now(timezone.utc)
    assert timedelta(minutes=29) < remaining <= timedelta(minutes=30)

    data = mock_session.post.call_args.kwargs["data"]
    assert data["grant_type"] == "authorization_code"
    assert data["code"] == "auth-code"
    assert data["redirect_uri"].endswith("/integrations/google/callback")


@pytest.mark.asyncio
async def test_exchange_code_without_refresh_token(web_oauth, mock_session, make_response):
    mock_session.post.return_value = make_response(payload={"access_token": "ya29.a"})

    with pytest.raises(GoogleAuthError) as exc_info:
        await web_oauth.exchange_code("auth-code")

    assert "Failed to obtain tokens" in str(exc_info.value)


@pytest.mark.asyncio
async def test_exchange_code_rejected(web_oauth, mock_session, make_response):
    mock_session.post.return_value = make_response(status=400, text='{"error": "invalid_grant"}')

    with pytest.raises(GoogleAuthError) as exc_info:
        await web_oauth.exchange_code("used-code")

    assert "Invalid authorization code" in str(exc_info.value)
    assert exc_info.value.status == 400


@pytest.mark.asyncio
async def test_list_accessible_customers_strips_resource_prefix(
    web_oauth, mock_session, make_response
):
    mock_session.get.return_value = make_response(
        payload={"resourceNames": ["customers/1234567890", "customers/5550001111"]}
    )

    assert await web_oauth.list_accessible_customers("ya29.a") == ["1234567890", "5550001111"]

    call = mock_session.get.call_args
    assert call.args[0] == (
        "https://googleads.googleapis.com/v16/customers:listAccessibleCustomers"
    )
    assert call.kwargs["headers"] == {
        "Authorization": "Bearer ya29.a",
        "developer-token": "dev-token",
    }


@pytest.mark.asyncio
async def test_validate_customer_access_ignores_dashes(web_oauth, mock_session, make_response):
    mock_session.get.return_value = make_response(payload={"resourceNames": ["customers/1234567890"]})

    assert await web_oauth.validate_customer_access("ya29.a", "123-456-7890") is True
    assert await web_oauth.validate_customer_access("ya29.a", "999-999-9999") is False


@pytest.mark.asyncio
async def test_validate_customer_access_false_on_api_error(
    web_oauth, mock_session, make_response
):
    mock_session.get.return_value = make_response(status=401, text="UNAUTHENTICATED")

    assert await web_oauth.validate_customer_access("ya29.expired", "1234567890") is False
