"""Google Ads client (searchStream) and the OAuth connect/refresh flows."""
import asyncio
import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from time import monotonic
from typing import Any, Optional
from urllib.parse import urlencode

import aiohttp

from ..audit import AuditAction, AuditLogEntry, AuditService, AuditStatus, error_details
from ..exceptions import GoogleAuthError, VendorApiError
from ..schemas.metrics import DailyAdSpend
from ..schemas.stores import Store
from ..stores.repository import StoreRepository
from .archive import RawPayloadArchive
from .common import elapsed_ms, redact, safe_int


logger = logging.getLogger(__name__)


AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
TOKEN_URL = "https://oauth2.googleapis.com/token"
ADWORDS_SCOPE = "https://www.googleapis.com/auth/adwords"
TOKEN_REFRESH_BUFFER = timedelta(minutes=5)
TOKEN_LIFETIME = timedelta(hours=1)
MICROS_PER_UNIT = 1_000_000


def build_spend_query(from_date: date, to_date: date) -> str:
    return (
        "SELECT segments.date, metrics.cost_micros "
        "FROM campaign "
        f"WHERE segments.date BETWEEN '{from_date.isoformat()}' AND '{to_date.isoformat()}' "
        "ORDER BY segments.date ASC"
    )


def normalize_customer_id(customer_id: str) -> str:
    return customer_id.replace("-", "").strip()


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def has_fresh_access_token(store: Store, buffer: timedelta = timedelta(0)) -> bool:
    """True when the cached access token outlives now + buffer."""
    return bool(
        store.google_access_token
        and store.google_token_expiry
        and _as_utc(store.google_token_expiry) > datetime.now(timezone.utc) + buffer
    )


@dataclass
class GoogleTokens:
    """Tokens returned by the authorization code exchange."""

    access_token: str
    refresh_token: str
    expiry: datetime


class GoogleOAuthClient:
    """Google OAuth 2.0 web flow: consent URL, code exchange, refresh, account listing."""

    def __init__(
        self,
        session: aiohttp.ClientSession,
        client_id: Optional[str],
        client_secret: Optional[str],
        redirect_uri: Optional[str] = None,
        developer_token: Optional[str] = None,
        api_version: str = "v16",
    ) -> None:
        self.session = session
        self.client_id = client_id
        self._client_secret = client_secret
        self.redirect_uri = redirect_uri
        self._developer_token = developer_token
        self.api_version = api_version

    @property
    def is_configured(self) -> bool:
        return bool(self.client_id and self._client_secret and self.redirect_uri)

    def get_authorization_url(self, state: str) -> str:
        """Consent screen URL requesting offline access to the Ads API.

        `prompt=consent` makes Google issue a refresh token on every grant.
        """
        params = {
            "client_id": self.client_id or "",
            "redirect_uri": self.redirect_uri or "",
            "response_type": "code",
            "scope": ADWORDS_SCOPE,
            "access_type": "offline",
            "prompt": "consent",
            "state": state,
        }
        return f"{AUTH_URL}?{urlencode(params)}"

    async def _post_token(self, data: dict[str, str], failure: str, secret: str) -> dict[str, Any]:
        form = {
            "client_id": self.client_id or "",
            "client_secret": self._client_secret or "",
            **data,
        }
        try:
            async with self.session.post(TOKEN_URL, data=form) as response:
                if response.status != 200:
                    error_body = await response.text()
                    logger.error(
                        "Google token endpoint rejected request (%s): %s",
                        response.status,
                        redact(error_body[:500], [secret, self._client_secret]),
                    )
                    raise GoogleAuthError(failure, status=response.status)
                return await response.json()
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            logger.error("Google token request failed: %s", exc)
            raise GoogleAuthError(f"{failure}: {exc}") from exc

    async def exchange_code(self, code: str) -> GoogleTokens:
        """Trade an authorization code for access and refresh tokens.

        Raises:
            GoogleAuthError: If the code is rejected or no refresh token is issued
        """
        result = await self._post_token(
            {
                "code": code,
                "redirect_uri": self.redirect_uri or "",
                "grant_type": "authorization_code",
            },
            "Invalid authorization code",
            code,
        )

        access_token = result.get("access_token")
        refresh_token = result.get("refresh_token")
        if not access_token or not refresh_token:
            raise GoogleAuthError("Failed to obtain tokens from Google")

        expires_in = safe_int(result.get("expires_in"))
        lifetime = timedelta(seconds=expires_in) if expires_in else TOKEN_LIFETIME

        logger.info("Obtained Google OAuth tokens")
        return GoogleTokens(
            access_token=access_token,
            refresh_token=refresh_token,
            expiry=datetime.now(timezone.utc) + lifetime,
        )

    async def refresh_access_token(self, refresh_token: str) -> str:
        """Return a new access token.

        Raises:
            GoogleAuthError: If the token endpoint rejects the request
        """
        result = await self._post_token(
            {"refresh_token": refresh_token, "grant_type": "refresh_token"},
            "Failed to refresh access token",
            refresh_token,
        )

        access_token = result.get("access_token")
        if not access_token:
            raise GoogleAuthError("No access token in refresh response")

        logger.info("Refreshed Google access token")
        return access_token

    async def list_accessible_customers(self, access_token: str) -> list[str]:
        """Customer ids (digits only) the token's user can reach.

        Raises:
            VendorApiError: If the Ads API call fails
        """
        url = (
            f"https://googleads.googleapis.com/{self.api_version}"
            "/customers:listAccessibleCustomers"
        )
        headers = {"Authorization": f"Bearer {access_token}"}
        if self._developer_token:
            headers["developer-token"] = self._developer_token

        try:
            async with self.session.get(url, headers=headers) as response:
                if response.status != 200:
                    error_body = await response.text()
                    logger.error(
                        "listAccessibleCustomers failed (%s): %s",
                        response.status,
                        redact(error_body[:500], [access_token, self._developer_token]),
                    )
                    raise VendorApiError(
                        "google",
                        "Failed to fetch Google Ads accounts",
                        status=response.status,
                    )
                result = await response.json()
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise VendorApiError("google", str(exc) or type(exc).__name__) from exc

        customer_ids = [
            name.split("/", 1)[-1] for name in (result or {}).get("resourceNames") or []
        ]
        logger.info("Found %s accessible Google Ads accounts", len(customer_ids))
        return customer_ids

    async def validate_customer_access(self, access_token: str, customer_id: str) -> bool:
        """Whether customer_id (dashes allowed) is among the accessible accounts."""
        try:
            accessible = await self.list_accessible_customers(access_token)
        except VendorApiError as exc:
            logger.warning("Could not validate Google Ads customer %s: %s", customer_id, exc)
            return False
        return normalize_customer_id(customer_id) in accessible


class GoogleAdsClient:
    """Daily Google Ads spend per store."""

    def __init__(
        self,
        session: aiohttp.ClientSession,
        oauth: GoogleOAuthClient,
        stores: Optional[StoreRepository] = None,
        audit: Optional[AuditService] = None,
        developer_token: Optional[str] = None,
        api_version: str = "v16",
        archive: Optional[RawPayloadArchive] = None,
    ) -> None:
        """Initialize Google Ads client.

        Args:
            session: Shared aiohttp session
            oauth: Token refresher
            stores: Repository used to persist refreshed tokens
            audit: Audit service
            developer_token: Google Ads developer token header value
            api_version: Google Ads API version (e.g. 'v16')
            archive: Optional raw payload archive
        """
        self.session = session
        self.oauth = oauth
        self.stores = stores
        self.audit = audit
        self._developer_token = developer_token
        self.api_version = api_version
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

    async def get_valid_access_token(self, store: Store) -> str:
        """Cached access token, refreshed when missing or within 5 minutes of expiry."""
        if has_fresh_access_token(store, TOKEN_REFRESH_BUFFER):
            return store.google_access_token

        logger.info("Refreshing Google access token for store: %s", store.name)
        access_token = await self.oauth.refresh_access_token(store.google_refresh_token)
        expiry = datetime.now(timezone.utc) + TOKEN_LIFETIME

        store.google_access_token = access_token
        store.google_token_expiry = expiry
        if self.stores is not None:
            self.stores.update_google_tokens(store.id, access_token, expiry)

        self._record(
            AuditAction.GOOGLE_TOKEN_REFRESHED,
            AuditStatus.SUCCESS,
            store,
            metadata={"expiresAt": expiry.isoformat()},
        )
        return access_token

    async def fetch_ad_spend(
        self,
        store: Store,
        from_date: date,
        to_date: date,
    ) -> list[DailyAdSpend]:
        """Spend per day (micros converted to currency units), ascending by date."""
        if not store.google_customer_id:
            logger.warning("Store %s has no Google Ads customer ID configured", store.name)
            return []
        if not store.google_refresh_token:
            logger.warning("Store %s is not connected to Google Ads", store.name)
            return []

        started = monotonic()
        self._record(
            AuditAction.GOOGLE_SYNC_STARTED,
            AuditStatus.PENDING,
            store,
            metadata={"from": from_date.isoformat(), "to": to_date.isoformat()},
        )

        try:
            access_token = await self.get_valid_access_token(store)
            customer_id = normalize_customer_id(store.google_customer_id)
            url = (
                f"https://googleads.googleapis.com/{self.api_version}"
                f"/customers/{customer_id}/googleAds:searchStream"
            )
            headers = {
                "Authorization": f"Bearer {access_token}",
                "Content-Type": "application/json",
            }
            if self._developer_token:
                headers["developer-token"] = self._developer_token

            logger.info(
                "Fetching Google Ads spend for %s: %s to %s",
                store.name,
                from_date.isoformat(),
                to_date.isoformat(),
            )

            try:
                async with self.session.post(
                    url,
                    json={"query": build_spend_query(from_date, to_date)},
                    headers=headers,
                ) as response:
                    if response.status != 200:
                        error_body = await response.text()
                        logger.error(
                            "Google Ads API error (%s) for %s: %s",
                            response.status,
                            store.name,
                            redact(error_body[:500], [access_token, self._developer_token]),
                        )
                        raise VendorApiError(
                            "google",
                            f"searchStream request failed: {response.status}",
                            status=response.status,
                        )
                    batches = await response.json()
            except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
                raise VendorApiError("google", str(exc) or type(exc).__name__) from exc

            if not isinstance(batches, list):
                batches = [batches] if batches else []

            if self.archive and batches:
                await self.archive.write("google", "ad_spend", store.id, batches)

            spend_by_date: dict[str, float] = defaultdict(float)
            for batch in batches:
                for result in batch.get("results") or []:
                    day = (result.get("segments") or {}).get("date")
                    if not day:
                        continue
                    micros = safe_int((result.get("metrics") or {}).get("costMicros")) or 0
                    spend_by_date[day] += micros / MICROS_PER_UNIT

            daily_spend = [
                DailyAdSpend(date=day, spend=spend)
                for day, spend in sorted(spend_by_date.items())
            ]

            logger.info(
                "Retrieved %s days of Google Ads spend for %s", len(daily_spend), store.name
            )
            self._record(
                AuditAction.GOOGLE_AD_SPEND_FETCHED,
                AuditStatus.SUCCESS,
                store,
                duration=elapsed_ms(started),
                metadata={"daysProcessed": len(daily_spend)},
            )
            return daily_spend

        except Exception as exc:
            logger.error("Google Ads sync failed for %s: %s", store.name, exc)
            self._record(
                AuditAction.GOOGLE_SYNC_FAILED,
                AuditStatus.FAILURE,
                store,
                error_message=str(exc),
                error_details=error_details(exc),
            )
            raise
