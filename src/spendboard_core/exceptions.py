"""Custom exceptions for Spendboard."""
from typing import Optional


class SpendboardError(Exception):
    """Base exception for all Spendboard errors."""


class VendorApiError(SpendboardError):
    """Raised for vendor API failures (HTTP 4xx/5xx, transport, bad payload)."""

    def __init__(self, vendor: str, message: str, status: Optional[int] = None):
        self.vendor = vendor
        self.status = status
        super().__init__(f"{vendor} API error: {message}")


class ShopifyGraphQLError(VendorApiError):
    """Raised when Shopify returns root-level GraphQL errors or ShopifyQL parse errors."""

    def __init__(self, errors: object):
        self.errors = errors
        if isinstance(errors, str):
            message = errors
        else:
            message = f"GraphQL errors: {errors}"
        super().__init__("shopify", message)


class FacebookApiError(VendorApiError):
    """Raised when the Graph API returns an error payload."""

    def __init__(self, message: str, code: Optional[int] = None, status: Optional[int] = None):
        self.code = code
        super().__init__("facebook", message, status=status)


class FacebookRateLimitError(FacebookApiError):
    """Raised when the rate limit error persists after all retries."""

    def __init__(self, attempts: int, message: str):
        self.attempts = attempts
        super().__init__(
            f"Rate limit still hit after {attempts} attempts: {message}",
            code=17,
        )


class GoogleAuthError(VendorApiError):
    """Raised when a Google OAuth access token cannot be refreshed."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__("google", message, status=status)


class StoreNotFoundError(SpendboardError):
    """Raised when a store lookup misses."""

    def __init__(self, store_id: str):
        self.store_id = store_id
        super().__init__(f"Store not found: {store_id}")


class InvalidDateRangeError(SpendboardError):
    """Raised for unparseable or inverted date ranges."""
