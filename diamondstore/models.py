"""Domain models for the diamond storefront."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional


class OrderStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"


@dataclass(frozen=True)
class User:
    """Represents a storefront account and its diamond balance."""

    id: int
    email: str
    first_name: Optional[str]
    last_name: Optional[str]
    profile_image_url: Optional[str]
    is_admin: bool
    diamond_balance: int
    created_at: datetime
    updated_at: datetime

    @property
    def display_name(self) -> str:
        parts = [part for part in (self.first_name, self.last_name) if part]
        return " ".join(parts) or self.email


@dataclass(frozen=True)
class Product:
    id: int
    name: str
    description: Optional[str]
    price: int
    image_url: Optional[str]
    created_at: datetime


@dataclass(frozen=True)
class Order:
    """A purchase of one product, debited at ``price`` diamonds."""

    id: int
    user_id: int
    product_id: int
    price: int
    status: OrderStatus
    created_at: datetime
    completed_at: Optional[datetime] = None


@dataclass(frozen=True)
class OrderDetails:
    """An order joined with the records it references."""

    order: Order
    product: Optional[Product]
    user: Optional[User] = None


__all__ = ["OrderStatus", "User", "Product", "Order", "OrderDetails"]
