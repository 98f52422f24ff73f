"""Store record with per-vendor credentials."""
from datetime import datetime
from typing import Optional

from pydantic import Field

from .base import CamelModel


class Store(CamelModel):
    """One tenant's shop plus its Shopify, Facebook and Google credentials.

    Every credential is optional. A missing credential disables that vendor's
    sync for the store (the client returns an empty result).
    """

    id: str = Field(..., description="Store identifier")
    name: str
    shopify_token: Optional[str] = None
    shopify_store_url: Optional[str] = Field(
        None, description="Shop domain, e.g. mystore.myshopify.com"
    )
    fb_ad_spend_token: Optional[str] = None
    fb_account_id: Optional[str] = Field(
        None, description="Ad account ID (with or without 'act_' prefix)"
    )
    google_access_token: Optional[str] = None
    google_refresh_token: Optional[str] = None
    google_customer_id: Optional[str] = None
    google_token_expiry: Optional[datetime] = None

    @property
    def has_shopify(self) -> bool:
        return bool(self.shopify_store_url and self.shopify_token)

    @property
    def has_facebook(self) -> bool:
        return bool(self.fb_ad_spend_token and self.fb_account_id)
