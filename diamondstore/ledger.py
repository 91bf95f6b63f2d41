"""Diamond balance ledger and order fulfillment."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict

from .database import Database
from .exceptions import InsufficientFundsError, NotFoundError, OrderAlreadyCompletedError
from .models import Order, User

logger = logging.getLogger("diamondstore.ledger")


@dataclass(frozen=True)
class PurchaseResult:
    order: Order
    user: User


def balance_update_event(user: User) -> Dict[str, Any]:
    return {
        "type": "balance_update",
        "userId": user.id,
        "newBalance": user.diamond_balance,
    }


def order_update_event(order: Order) -> Dict[str, Any]:
    return {
        "type": "order_update",
        "orderId": order.id,
        "status": order.status.value,
    }


def _require_int(value: object, name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeError(f"{name} must be an integer")
    return value


class Ledger:
    """Balance-changing operations on top of :class:`Database`.

    The database runs each operation as one serialized write transaction, so
    callers may invoke these methods from any number of threads.
    """

    def __init__(self, database: Database) -> None:
        self._database = database

    @property
    def database(self) -> Database:
        return self._database

    def adjust(self, user_id: int, delta: int) -> User:
        """Credit (positive ``delta``) or debit (negative) a user's balance."""

        _require_int(delta, "delta")
        try:
            user = self._database.adjust_balance(user_id, delta)
        except InsufficientFundsError as exc:
            logger.warning(
                "Rejected adjustment of %+d for user %s (balance %d)",
                delta,
                user_id,
                exc.balance,
            )
            raise
        except NotFoundError:
            logger.warning("Rejected adjustment of %+d for unknown user %s", delta, user_id)
            raise
        except ValueError as exc:
            logger.warning("Rejected adjustment of %+d for user %s: %s", delta, user_id, exc)
            raise

        logger.info(
            "Adjusted balance of user %s by %+d to %d",
            user.id,
            delta,
            user.diamond_balance,
        )
        return user

    def purchase(self, user_id: int, product_id: int) -> PurchaseResult:
        """Buy one unit of ``product_id`` for ``user_id``."""

        try:
            order, user = self._database.purchase(user_id, product_id)
        except InsufficientFundsError as exc:
            logger.warning(
                "User %s cannot afford product %s (balance %d, price %d)",
                user_id,
                product_id,
                exc.balance,
                exc.requested,
            )
            raise
        except NotFoundError as exc:
            logger.warning("Purchase by user %s failed: %s %s not found", user_id, exc.kind, exc.identifier)
            raise

        logger.info(
            "User %s bought product %s for %d diamonds (order %s, balance %d)",
            user.id,
            order.product_id,
            order.price,
            order.id,
            user.diamond_balance,
        )
        return PurchaseResult(order=order, user=user)

    def complete_order(self, order_id: int) -> Order:
        """Mark a pending order as completed. Completed orders are terminal."""

        try:
            order = self._database.complete_order(order_id)
        except OrderAlreadyCompletedError:
            logger.warning("Order %s was already completed", order_id)
            raise
        except NotFoundError:
            logger.warning("Cannot complete unknown order %s", order_id)
            raise

        logger.info("Completed order %s for user %s", order.id, order.user_id)
        return order


__all__ = [
    "Ledger",
    "PurchaseResult",
    "balance_update_event",
    "order_update_event",
]
