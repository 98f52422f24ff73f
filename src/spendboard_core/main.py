"""Spendboard FastAPI application entry point."""
import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from .api.facebook_routes import router as facebook_router
from .api.google_routes import callback_router as google_callback_router
from .api.google_routes import router as google_router
from .api.routes import router as api_router
from .exceptions import InvalidDateRangeError, StoreNotFoundError, VendorApiError
from .jobs.scheduler import SyncScheduler
from .runtime import SpendboardRuntime


logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

logger = logging.getLogger(__name__)


def _scheduler_enabled() -> bool:
    return os.getenv("SCHEDULER_ENABLED", "true").lower() in ("1", "true", "yes")


async def _store_not_found(request: Request, exc: StoreNotFoundError) -> JSONResponse:
    return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content={"detail": str(exc)})


async def _invalid_date_range(request: Request, exc: InvalidDateRangeError) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"error": str(exc), "status": status.HTTP_400_BAD_REQUEST},
    )


async def _vendor_error(request: Request, exc: VendorApiError) -> JSONResponse:
    logger.error("Vendor call failed during %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(
        status_code=status.HTTP_502_BAD_GATEWAY,
        content={"detail": str(exc), "vendor": exc.vendor},
    )


def create_app(runtime: Optional[SpendboardRuntime] = None) -> FastAPI:
    """Create and configure FastAPI application.

    Args:
        runtime: Pre-built runtime (owned by the caller). When omitted, the
            app opens its own runtime on startup and closes it on shutdown.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = runtime is None
        active = runtime or SpendboardRuntime()
        if owned:
            await active.open()
        app.state.runtime = active

        scheduler: Optional[SyncScheduler] = None
        if owned and _scheduler_enabled():
            scheduler = SyncScheduler(active)
            scheduler.start()

        try:
            yield
        finally:
            if scheduler is not None:
                scheduler.shutdown()
            if owned:
                await active.close()

    app = FastAPI(
        title="Spendboard API",
        version="0.1.0",
        description="Ad spend dashboard backend: Shopify, Facebook and Google Ads sync",
        lifespan=lifespan,
    )
    app.state.runtime = runtime

    app.add_exception_handler(StoreNotFoundError, _store_not_found)
    app.add_exception_handler(InvalidDateRangeError, _invalid_date_range)
    app.add_exception_handler(VendorApiError, _vendor_error)

    app.include_router(api_router)
    app.include_router(facebook_router)
    app.include_router(google_router)
    app.include_router(google_callback_router)

    return app


app = create_app()
