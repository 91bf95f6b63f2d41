"""Core package for the Diamond Store storefront service."""

from __future__ import annotations

from typing import Any

from .database import Database, resolve_database_path
from .exceptions import InsufficientFundsError, NotFoundError, OrderAlreadyCompletedError
from .ledger import Ledger


def create_app(*args: Any, **kwargs: Any):
    """Factory function that returns the storefront API application."""

    from .service import create_app as _create_app

    return _create_app(*args, **kwargs)


__all__ = [
    "Database",
    "Ledger",
    "InsufficientFundsError",
    "NotFoundError",
    "OrderAlreadyCompletedError",
    "resolve_database_path",
    "create_app",
]
