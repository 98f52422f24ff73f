"""Unit tests for the Google Ads OAuth connect routes."""
import json
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock
from urllib.parse import parse_qs, quote, urlparse

import pytest
from fastapi.testclient import TestClient

from spendboard_core.api.auth import sign_oauth_state, verify_oauth_state
from spendboard_core.audit import AuditAction, AuditStatus
from spendboard_core.exceptions import GoogleAuthError
from spendboard_core.integrations.google_client import GoogleOAuthClient, GoogleTokens
from spendboard_core.main import create_app


HEADERS = {"X-SPENDBOARD-API-KEY": "test-api-key"}
BASE = "/api/v1/integrations/google"
FRONTEND = "https://app.example.com"


@pytest.fixture
def oauth():
    client = GoogleOAuthClient(
        MagicMock(),
        "client-id",
        "client-secret",
        redirect_uri="https://api.example.com/api/v1/integrations/google/callback",
    )
    client.exchange_code = AsyncMock(
        return_value=GoogleTokens(
            access_token="ya29.new",
            refresh_token="1//new-refresh",
            expiry=datetime.now(timezone.utc) + timedelta(hours=1),
        )
    )
    client.list_accessible_customers = AsyncMock(return_value=["1234567890", "5550001111"])
    client.validate_customer_access = AsyncMock(return_value=True)
    return client


@pytest.fixture
def google():
    ads = MagicMock()
    ads.get_valid_access_token = AsyncMock(return_value="ya29.valid")
    return ads


@pytest.fixture
def client(monkeypatch, store_repo, store, audit, oauth, google):
    monkeypatch.setenv("SPENDBOARD_API_KEY", "test-api-key")
    monkeypatch.setenv("FRONTEND_URL", f"{FRONTEND}/")
    store_repo.create(store)
    runtime = SimpleNamespace(stores=store_repo, audit=audit, google_oauth=oauth, google=google)
    with TestClient(create_app(runtime=runtime)) as client:
        yield client


def _actions(audit):
    logs, _ = audit.find_all()
    return [log.action for log in logs]


def test_oauth_state_round_trip(monkeypatch):
    monkeypatch.setenv("SPENDBOARD_API_KEY", "test-api-key")

    state = sign_oauth_state("s1")

    assert verify_oauth_state(state) == "s1"
    assert verify_oauth_state("s1.forged") is None
    assert verify_oauth_state(state.replace("s1.", "s2.")) is None
    assert verify_oauth_state(None) is None

    monkeypatch.setenv("SPENDBOARD_API_KEY", "rotated-key")
    assert verify_oauth_state(state) is None


def test_routes_require_api_key(client):
    response = client.get(f"{BASE}/stores/s1/status")

    assert response.status_code == 401


def test_start_authorization_returns_signed_state(client):
    response = client.get(f"{BASE}/auth/s1", headers=HEADERS)

    assert response.status_code == 200
    body = response.json()
    assert body["storeId"] == "s1"
    state = parse_qs(urlparse(body["authUrl"]).query)["state"][0]
    assert verify_oauth_state(state) == "s1"


def test_start_authorization_unconfigured(client, oauth):
    oauth.redirect_uri = None

    response = client.get(f"{BASE}/auth/s1", headers=HEADERS)

    assert response.status_code == 503


def test_start_authorization_unknown_store(client):
    response = client.get(f"{BASE}/auth/missing", headers=HEADERS)

    assert response.status_code == 404


def test_callback_saves_tokens_and_redirects_to_selection(client, oauth, store_repo, audit):
    response = client.get(
        f"{BASE}/callback",
        params={"code": "auth-code", "state": sign_oauth_state("s1")},
        follow_redirects=False,
    )

    assert response.status_code == 302
    accounts = quote(json.dumps(["1234567890", "5550001111"]))
    assert response.headers["location"] == (
        f"{FRONTEND}/stores/s1/google-ads/select?accounts={accounts}"
    )
    oauth.exchange_code.assert_awaited_once_with("auth-code")
    oauth.list_accessible_customers.assert_awaited_once_with("ya29.new")

    saved = store_repo.find_one("s1")
    assert saved.google_access_token == "ya29.new"
    assert saved.google_refresh_token == "1//new-refresh"
    assert _actions(audit) == [AuditAction.GOOGLE_CONNECTED]


def test_callback_rejects_forged_state(client, oauth, audit):
    response = client.get(
        f"{BASE}/callback",
        params={"code": "auth-code", "state": "s1.not-a-signature"},
        follow_redirects=False,
    )

    assert response.status_code == 302
    assert response.headers["location"].startswith(f"{FRONTEND}/google-ads/error?message=")
    oauth.exchange_code.assert_not_awaited()

    logs, _ = audit.find_all()
    assert logs[0].action == AuditAction.GOOGLE_CONNECT_FAILED
    assert logs[0].status == AuditStatus.FAILURE


def test_callback_consent_denied(client, oauth):
    response = client.get(
        f"{BASE}/callback",
        params={"error": "access_denied", "state": sign_oauth_state("s1")},
        follow_redirects=False,
    )

    location = response.headers["location"]
    assert location.startswith(f"{FRONTEND}/stores/s1/google-ads/error?message=")
    assert "access_denied" in parse_qs(urlparse(location).query)["message"][0]
    oauth.exchange_code.assert_not_awaited()


def test_callback_without_accounts_keeps_existing_tokens(client, oauth, store_repo, audit):
    oauth.list_accessible_customers.return_value = []

    response = client.get(
        f"{BASE}/callback",
        params={"code": "auth-code", "state": sign_oauth_state("s1")},
        follow_redirects=False,
    )

    message = parse_qs(urlparse(response.headers["location"]).query)["message"][0]
    assert "No Google Ads accounts found" in message
    assert store_repo.find_one("s1").google_refresh_token == "google-refresh"
    assert _actions(audit) == [AuditAction.GOOGLE_CONNECT_FAILED]


def test_callback_code_exchange_failure(client, oauth, store_repo):
    oauth.exchange_code.side_effect = GoogleAuthError("Invalid authorization code", status=400)

    response = client.get(
        f"{BASE}/callback",
        params={"code": "used-code", "state": sign_oauth_state("s1")},
        follow_redirects=False,
    )

    assert "/stores/s1/google-ads/error" in response.headers["location"]
    assert store_repo.find_one("s1").google_access_token is None


def test_select_account_links_customer(client, oauth, google, store_repo, audit):
    response = client.post(
        f"{BASE}/stores/s1/select-account",
        json={"customerId": "555-000-1111"},
        headers=HEADERS,
    )

    assert response.status_code == 200
    assert response.json() == {
        "message": "Google Ads account linked successfully",
        "storeId": "s1",
        "storeName": "Test Store",
        "customerId": "555-000-1111",
    }
    oauth.validate_customer_access.assert_awaited_once_with("ya29.valid", "555-000-1111")
    assert store_repo.find_one("s1").google_customer_id == "555-000-1111"
    assert _actions(audit) == [AuditAction.GOOGLE_ACCOUNT_SELECTED]


def test_select_account_without_access(client, oauth, store_repo):
    oauth.validate_customer_access.return_value = False

    response = client.post(
        f"{BASE}/stores/s1/select-account",
        json={"customerId": "5550001111"},
        headers=HEADERS,
    )

    assert response.status_code == 400
    assert response.json()["detail"] == "You do not have access to this Google Ads account"
    assert store_repo.find_one("s1").google_customer_id == "123-456-7890"


def test_select_account_requires_authorization(client, store_repo, google):
    store_repo.disconnect_google("s1")

    response = client.post(
        f"{BASE}/stores/s1/select-account",
        json={"customerId": "5550001111"},
        headers=HEADERS,
    )

    assert response.status_code == 400
    assert response.json()["detail"] == (
        "Store not authenticated with Google. Please authorize first."
    )
    google.get_valid_access_token.assert_not_awaited()


def test_select_account_validates_customer_id_format(client, oauth):
    response = client.post(
        f"{BASE}/stores/s1/select-account",
        json={"customerId": "acct-42"},
        headers=HEADERS,
    )

    assert response.status_code == 422
    oauth.validate_customer_access.assert_not_awaited()


def test_accessible_accounts(client):
    response = client.get(f"{BASE}/stores/s1/accounts", headers=HEADERS)

    assert response.status_code == 200
    assert response.json() == {
        "accounts": ["1234567890", "5550001111"],
        "currentCustomerId": "123-456-7890",
    }


def test_disconnect_then_status(client, store_repo, audit):
    store_repo.update_google_tokens(
        "s1", "ya29.cached", datetime.now(timezone.utc) + timedelta(minutes=30)
    )

    status = client.get(f"{BASE}/stores/s1/status", headers=HEADERS).json()
    assert status == {"connected": True, "customerId": "123-456-7890", "hasValidToken": True}

    response = client.post(f"{BASE}/stores/s1/disconnect", headers=HEADERS)
    assert response.status_code == 200
    assert response.json()["storeName"] == "Test Store"
    assert _actions(audit) == [AuditAction.GOOGLE_DISCONNECTED]

    status = client.get(f"{BASE}/stores/s1/status", headers=HEADERS).json()
    assert status == {"connected": False, "customerId": None, "hasValidToken": False}


def test_status_with_expired_token_stays_connected(client, store_repo):
    store_repo.update_google_tokens(
        "s1", "ya29.stale", datetime.now(timezone.utc) - timedelta(minutes=1)
    )

    status = client.get(f"{BASE}/stores/s1/status", headers=HEADERS).json()

    assert status["connected"] is True
    assert status["hasValidToken"] is False
