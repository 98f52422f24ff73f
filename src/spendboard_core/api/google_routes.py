"""FastAPI routes for connecting a store to Google Ads via OAuth."""
import json
import logging
import os
from typing import Any, Optional
from urllib.parse import quote

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import RedirectResponse
from pydantic import Field

from ..audit import AuditAction, AuditLogEntry, AuditStatus
from ..exceptions import GoogleAuthError, SpendboardError
from ..integrations.google_client import has_fresh_access_token
from ..schemas.base import CamelModel
from ..schemas.stores import Store
from .auth import require_api_key, sign_oauth_state, verify_oauth_state
from .dependencies import get_runtime


logger = logging.getLogger(__name__)

PREFIX = "/api/v1/integrations/google"

router = APIRouter(prefix=PREFIX, tags=["google"], dependencies=[Depends(require_api_key)])

# Google redirects the browser here; the signed state stands in for the API key.
callback_router = APIRouter(prefix=PREFIX, tags=["google"])

NOT_AUTHORIZED = "Store not authenticated with Google. Please authorize first."


class AuthorizationUrl(CamelModel):
    auth_url: str
    store_id: str
    message: str = "Redirect user to authUrl to authorize Google Ads access"


class SelectAccountRequest(CamelModel):
    customer_id: str = Field(
        ..., pattern=r"^\d{3}-?\d{3}-?\d{4}$", description="Google Ads customer ID"
    )


class AccountLinked(CamelModel):
    message: str
    store_id: str
    store_name: str
    customer_id: str


class AccessibleAccounts(CamelModel):
    accounts: list[str]
    current_customer_id: Optional[str] = None


class Disconnected(CamelModel):
    message: str
    store_id: str
    store_name: str


class ConnectionStatus(CamelModel):
    connected: bool
    customer_id: Optional[str] = None
    has_valid_token: bool


def _frontend_url() -> str:
    return os.getenv("FRONTEND_URL", "http://localhost:3000").rstrip("/")


async def _audit(
    runtime,
    action: AuditAction,
    status_: AuditStatus,
    store_id: Optional[str],
    **fields: Any,
) -> None:
    await runtime.audit.log(
        AuditLogEntry(action=action, status=status_, store_id=store_id, **fields)
    )


async def _access_token(runtime, store: Store) -> str:
    if not store.google_refresh_token:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=NOT_AUTHORIZED)
    return await runtime.google.get_valid_access_token(store)


@router.get("/auth/{store_id}", response_model=AuthorizationUrl, summary="Start Google Ads OAuth")
async def start_authorization(store_id: str, runtime=Depends(get_runtime)) -> AuthorizationUrl:
    store = runtime.stores.find_one(store_id)
    if not runtime.google_oauth.is_configured:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Google OAuth is not configured",
        )

    auth_url = runtime.google_oauth.get_authorization_url(sign_oauth_state(store.id))
    logger.info("Generated Google OAuth URL for store: %s", store.id)
    return AuthorizationUrl(auth_url=auth_url, store_id=store.id)


@callback_router.get("/callback", summary="Google OAuth redirect target")
async def oauth_callback(
    code: Optional[str] = None,
    state: Optional[str] = None,
    error: Optional[str] = None,
    runtime=Depends(get_runtime),
) -> RedirectResponse:
    """Exchange the code, store the tokens and send the browser to account selection."""
    store_id = verify_oauth_state(state)
    frontend = _frontend_url()
    base = f"{frontend}/stores/{store_id}/google-ads" if store_id else f"{frontend}/google-ads"

    try:
        if error:
            raise GoogleAuthError(f"Authorization denied: {error}")
        if not code or not store_id:
            raise GoogleAuthError("Missing or invalid code or state parameter")

        store = runtime.stores.find_one(store_id)
        tokens = await runtime.google_oauth.exchange_code(code)
        customers = await runtime.google_oauth.list_accessible_customers(tokens.access_token)
        if not customers:
            raise GoogleAuthError("No Google Ads accounts found for this user")

        runtime.stores.save_google_connection(
            store.id, tokens.access_token, tokens.refresh_token, tokens.expiry
        )
    except SpendboardError as exc:
        logger.warning("Google OAuth callback failed for store %s: %s", store_id, exc)
        await _audit(
            runtime,
            AuditAction.GOOGLE_CONNECT_FAILED,
            AuditStatus.FAILURE,
            store_id,
            error_message=str(exc),
        )
        return RedirectResponse(
            f"{base}/error?message={quote(str(exc))}", status_code=status.HTTP_302_FOUND
        )

    await _audit(
        runtime,
        AuditAction.GOOGLE_CONNECTED,
        AuditStatus.SUCCESS,
        store.id,
        store_name=store.name,
        metadata={"accessibleAccounts": len(customers)},
    )
    return RedirectResponse(
        f"{base}/select?accounts={quote(json.dumps(customers))}",
        status_code=status.HTTP_302_FOUND,
    )


@router.post(
    "/stores/{store_id}/select-account",
    response_model=AccountLinked,
    summary="Link a Google Ads customer to the store",
)
async def select_account(
    store_id: str,
    payload: SelectAccountRequest,
    runtime=Depends(get_runtime),
) -> AccountLinked:
    store = runtime.stores.find_one(store_id)
    access_token = await _access_token(runtime, store)

    if not await runtime.google_oauth.validate_customer_access(access_token, payload.customer_id):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="You do not have access to this Google Ads account",
        )

    runtime.stores.set_google_customer_id(store.id, payload.customer_id)
    await _audit(
        runtime,
        AuditAction.GOOGLE_ACCOUNT_SELECTED,
        AuditStatus.SUCCESS,
        store.id,
        store_name=store.name,
        metadata={"customerId": payload.customer_id},
    )
    return AccountLinked(
        message="Google Ads account linked successfully",
        store_id=store.id,
        store_name=store.name,
        customer_id=payload.customer_id,
    )


@router.get(
    "/stores/{store_id}/accounts",
    response_model=AccessibleAccounts,
    summary="Google Ads accounts reachable with the store's grant",
)
async def accessible_accounts(store_id: str, runtime=Depends(get_runtime)) -> AccessibleAccounts:
    store = runtime.stores.find_one(store_id)
    access_token = await _access_token(runtime, store)

    return AccessibleAccounts(
        accounts=await runtime.google_oauth.list_accessible_customers(access_token),
        current_customer_id=store.google_customer_id,
    )


@router.post(
    "/stores/{store_id}/disconnect",
    response_model=Disconnected,
    summary="Remove Google Ads credentials from the store",
)
async def disconnect(store_id: str, runtime=Depends(get_runtime)) -> Disconnected:
    store = runtime.stores.find_one(store_id)
    runtime.stores.disconnect_google(store.id)
    await _audit(
        runtime,
        AuditAction.GOOGLE_DISCONNECTED,
        AuditStatus.SUCCESS,
        store.id,
        store_name=store.name,
    )
    return Disconnected(
        message="Google Ads disconnected successfully",
        store_id=store.id,
        store_name=store.name,
    )


@router.get(
    "/stores/{store_id}/status",
    response_model=ConnectionStatus,
    summary="Google Ads connection status",
)
async def connection_status(store_id: str, runtime=Depends(get_runtime)) -> ConnectionStatus:
    store = runtime.stores.find_one(store_id)
    has_valid_token = bool(store.google_refresh_token) and has_fresh_access_token(store)

    return ConnectionStatus(
        connected=bool(store.google_customer_id and store.google_refresh_token),
        customer_id=store.google_customer_id,
        has_valid_token=has_valid_token,
    )
