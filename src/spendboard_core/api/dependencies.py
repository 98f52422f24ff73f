"""Request-scoped access to the application runtime."""
from datetime import date, datetime
from typing import TYPE_CHECKING, Optional

from fastapi import HTTPException, Request, status

if TYPE_CHECKING:
    from ..runtime import SpendboardRuntime


def get_runtime(request: Request) -> "SpendboardRuntime":
    runtime = getattr(request.app.state, "runtime", None)
    if runtime is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Runtime not initialized",
        )
    return runtime


def parse_query_date(value: Optional[str], name: str) -> Optional[date]:
    """Parse an optional YYYY-MM-DD query value, 400 on bad input."""
    if not value:
        return None
    try:
        return datetime.strptime(value, "%Y-%m-%d").date()
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid {name}. Use YYYY-MM-DD",
        )
