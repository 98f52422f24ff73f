"""Spendboard: multi-tenant ad spend dashboard backend."""

__version__ = "0.1.0"
