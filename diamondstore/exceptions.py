"""Error types raised by the storefront core."""

from __future__ import annotations


class StoreError(Exception):
    """Base class for failures of a storefront operation."""


class NotFoundError(StoreError, LookupError):
    """Raised when a referenced user, product or order does not exist."""

    def __init__(self, kind: str, identifier: object) -> None:
        super().__init__(f"{kind.capitalize()} not found")
        self.kind = kind
        self.identifier = identifier


class InsufficientFundsError(StoreError, ValueError):
    """Raised when a debit would drive a diamond balance below zero."""

    def __init__(self, user_id: int, balance: int, requested: int) -> None:
        super().__init__("Insufficient diamonds")
        self.user_id = user_id
        self.balance = balance
        self.requested = requested


class OrderAlreadyCompletedError(StoreError):
    """Raised when completing an order that is no longer pending."""

    def __init__(self, order_id: int) -> None:
        super().__init__("Order has already been completed")
        self.order_id = order_id


__all__ = [
    "StoreError",
    "NotFoundError",
    "InsufficientFundsError",
    "OrderAlreadyCompletedError",
]
