"""Shared-secret API key check for the /api/v1 routers, and OAuth state signing."""
import hashlib
import hmac
import logging
import os
import secrets
from typing import Annotated, Optional

from fastapi import HTTPException, Security, status
from fastapi.security import APIKeyHeader


logger = logging.getLogger(__name__)

API_KEY_HEADER = "X-SPENDBOARD-API-KEY"
API_KEY_ENV = "SPENDBOARD_API_KEY"

api_key_header = APIKeyHeader(
    name=API_KEY_HEADER,
    auto_error=False,
    description=f"Shared secret configured through {API_KEY_ENV}",
)


def _keys_match(provided: str, expected: str) -> bool:
    return secrets.compare_digest(provided.encode("utf-8"), expected.encode("utf-8"))


async def require_api_key(
    api_key: Annotated[Optional[str], Security(api_key_header)] = None
) -> str:
    """Router dependency: the request must carry the configured key.

    Raises:
        HTTPException: 503 when the service has no key configured,
            401 when the header is missing or wrong
    """
    expected_key = os.getenv(API_KEY_ENV)
    if not expected_key:
        logger.error("%s is not set; rejecting API request", API_KEY_ENV)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="API key not configured",
        )

    if not api_key or not _keys_match(api_key, expected_key):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid API key",
            headers={"WWW-Authenticate": "API-Key"},
        )

    return api_key


def _state_mac(store_id: str, key: str) -> str:
    return hmac.new(key.encode("utf-8"), store_id.encode("utf-8"), hashlib.sha256).hexdigest()


def sign_oauth_state(store_id: str) -> str:
    """OAuth `state` value `{store_id}.{hmac}` keyed with the API key.

    The callback arrives from Google's redirect without the API key header,
    so the signature is what ties it back to an authorized request.
    """
    key = os.getenv(API_KEY_ENV)
    if not key:
        raise RuntimeError(f"{API_KEY_ENV} environment variable not configured")
    return f"{store_id}.{_state_mac(store_id, key)}"


def verify_oauth_state(state: Optional[str]) -> Optional[str]:
    """Store id carried by a state produced by sign_oauth_state, else None."""
    key = os.getenv(API_KEY_ENV)
    if not key or not state:
        return None

    store_id, _, mac = state.rpartition(".")
    if not store_id or not _keys_match(mac, _state_mac(store_id, key)):
        return None
    return store_id
