"""Configuration and seed catalog handling for the storefront."""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import yaml

from .database import MAX_DIAMONDS, Database, resolve_database_path

logger = logging.getLogger("diamondstore.config")

_PROJECT_ROOT = Path(__file__).resolve().parent.parent


def _env_flag(value: Optional[str], default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _optional_str(data: Dict[str, object], key: str) -> Optional[str]:
    value = data.get(key)
    if value is None:
        return None
    return str(value)


def _require_fields(data: Dict[str, object], required: set[str], kind: str) -> None:
    missing = required - data.keys()
    if missing:
        raise ValueError(f"Missing required {kind} fields: {', '.join(sorted(missing))}")


@dataclass(frozen=True)
class Settings:
    """Runtime settings resolved from the environment."""

    database_path: Path
    catalog_path: Path
    session_ttl: timedelta = timedelta(hours=8)
    secure_cookies: bool = False


@dataclass(frozen=True)
class SeedUser:
    email: str
    password: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    is_admin: bool = False
    diamond_balance: int = 0

    @staticmethod
    def from_dict(data: Dict[str, object]) -> "SeedUser":
        _require_fields(data, {"email", "password"}, "user")
        email = str(data["email"]).strip()
        if not email or not data["password"]:
            raise ValueError("Seed users need a non-empty email and password")
        balance = data.get("diamond_balance", 0)
        if isinstance(balance, bool) or not isinstance(balance, int):
            raise ValueError(f"Seed user {email} must have an integer diamond balance")
        if not 0 <= balance <= MAX_DIAMONDS:
            raise ValueError(f"Seed user {email} has an out-of-range diamond balance")
        is_admin = data.get("is_admin", False)
        if not isinstance(is_admin, bool):
            raise ValueError(f"Seed user {email} must use true or false for is_admin")
        return SeedUser(
            email=email,
            password=str(data["password"]),
            first_name=_optional_str(data, "first_name"),
            last_name=_optional_str(data, "last_name"),
            is_admin=is_admin,
            diamond_balance=balance,
        )


@dataclass(frozen=True)
class SeedProduct:
    name: str
    price: int
    description: Optional[str] = None
    image_url: Optional[str] = None

    @staticmethod
    def from_dict(data: Dict[str, object]) -> "SeedProduct":
        _require_fields(data, {"name", "price"}, "product")
        name = str(data["name"]).strip()
        if not name:
            raise ValueError("Seed products need a non-empty name")
        price = data["price"]
        if isinstance(price, bool) or not isinstance(price, int) or not 0 < price <= MAX_DIAMONDS:
            raise ValueError(f"Seed product {name} must have a positive integer price")
        return SeedProduct(
            name=name,
            price=price,
            description=_optional_str(data, "description"),
            image_url=_optional_str(data, "image_url"),
        )


@dataclass(frozen=True)
class SeedCatalog:
    users: List[SeedUser] = field(default_factory=list)
    products: List[SeedProduct] = field(default_factory=list)

    def check_unique_emails(self) -> None:
        seen: set[str] = set()
        for user in self.users:
            email = user.email.strip().lower()
            if email in seen:
                raise ValueError(f"Seed catalog lists {email} more than once")
            seen.add(email)


def load_settings() -> Settings:
    """Build :class:`Settings` from ``DIAMONDSTORE_*`` environment variables."""

    ttl_hours = float(os.getenv("DIAMONDSTORE_SESSION_TTL_HOURS", "8"))
    if ttl_hours <= 0:
        raise ValueError("DIAMONDSTORE_SESSION_TTL_HOURS must be positive")

    return Settings(
        database_path=resolve_database_path(os.getenv("DIAMONDSTORE_DB_PATH")),
        catalog_path=resolve_catalog_path(os.getenv("DIAMONDSTORE_CATALOG")),
        session_ttl=timedelta(hours=ttl_hours),
        secure_cookies=_env_flag(os.getenv("DIAMONDSTORE_SESSION_SECURE"), False),
    )


def resolve_catalog_path(env_value: Optional[str]) -> Path:
    """Resolve the path to the YAML seed catalog."""
    if env_value:
        return Path(env_value).expanduser().resolve(strict=False)
    return (_PROJECT_ROOT / "config" / "catalog.yaml").resolve(strict=False)


def load_seed_catalog(path: Path) -> SeedCatalog:
    """Load default users and products from a YAML file."""
    with path.open("r", encoding="utf-8") as handle:
        raw = yaml.safe_load(handle) or {}

    if not isinstance(raw, dict):
        raise ValueError("Seed catalog must be a mapping with 'users' and 'products' keys")

    users = [SeedUser.from_dict(item) for item in raw.get("users") or []]
    products = [SeedProduct.from_dict(item) for item in raw.get("products") or []]
    catalog = SeedCatalog(users=users, products=products)
    catalog.check_unique_emails()
    return catalog


def seed_database(database: Database, catalog: SeedCatalog) -> Tuple[int, int]:
    """Insert the catalog into empty tables and return (users, products) added.

    The catalog is checked as a whole first so a bad entry never leaves the
    tables half seeded.
    """

    catalog.check_unique_emails()

    users_added = 0
    if database.count_users() == 0:
        for user in catalog.users:
            database.create_user(
                user.email,
                user.password,
                first_name=user.first_name,
                last_name=user.last_name,
                is_admin=user.is_admin,
                diamond_balance=user.diamond_balance,
            )
            users_added += 1
    else:
        logger.info("Users already exist, skipping user seed")

    products_added = 0
    if database.count_products() == 0:
        for product in catalog.products:
            database.create_product(
                product.name,
                product.price,
                description=product.description,
                image_url=product.image_url,
            )
            products_added += 1
    else:
        logger.info("Products already exist, skipping product seed")

    return users_added, products_added


__all__ = [
    "Settings",
    "SeedUser",
    "SeedProduct",
    "SeedCatalog",
    "load_settings",
    "resolve_catalog_path",
    "load_seed_catalog",
    "seed_database",
]
