"""Audit sink for sync and admin events."""
from .service import AuditAction, AuditLogEntry, AuditService, AuditStatus, error_details

__all__ = [
    "AuditAction",
    "AuditLogEntry",
    "AuditService",
    "AuditStatus",
    "error_details",
]
