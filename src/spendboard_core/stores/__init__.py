"""Store records consumed by the sync jobs."""
from .repository import StoreRepository

__all__ = ["StoreRepository"]
