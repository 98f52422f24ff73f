"""Vendor API clients: Shopify, Facebook and Google Ads."""
from .archive import RawPayloadArchive
from .facebook_client import VALID_BREAKDOWNS, FacebookClient, calculate_metrics
from .google_client import GoogleAdsClient, GoogleOAuthClient, GoogleTokens
from .shopify_client import ShopifyClient

__all__ = [
    "FacebookClient",
    "GoogleAdsClient",
    "GoogleOAuthClient",
    "GoogleTokens",
    "RawPayloadArchive",
    "ShopifyClient",
    "VALID_BREAKDOWNS",
    "calculate_metrics",
]
