"""Spendboard HTTP API for the dashboard frontend."""
from .auth import require_api_key
from .facebook_routes import router as facebook_router
from .google_routes import callback_router as google_callback_router
from .google_routes import router as google_router
from .routes import router

__all__ = [
    "facebook_router",
    "google_callback_router",
    "google_router",
    "require_api_key",
    "router",
]
