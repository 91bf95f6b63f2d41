from __future__ import annotations

from datetime import timedelta
from pathlib import Path

import pytest

from diamondstore.config import (
    SeedCatalog,
    SeedUser,
    load_seed_catalog,
    load_settings,
    resolve_catalog_path,
    seed_database,
)
from diamondstore.database import Database

CATALOG = """
users:
  - email: admin@example.com
    password: admin123
    is_admin: true
    diamond_balance: 10000
  - email: user@example.com
    password: user123
products:
  - name: Premium Luxury Chair
    price: 500
    description: Handcrafted
  - name: Starter Pack
    price: 100
"""


def _write(tmp_path: Path, content: str) -> Path:
    path = tmp_path / "catalog.yaml"
    path.write_text(content, encoding="utf-8")
    return path


def test_load_seed_catalog(tmp_path: Path) -> None:
    catalog = load_seed_catalog(_write(tmp_path, CATALOG))

    assert [user.email for user in catalog.users] == ["admin@example.com", "user@example.com"]
    assert catalog.users[0].is_admin is True
    assert catalog.users[1].diamond_balance == 0
    assert [product.price for product in catalog.products] == [500, 100]
    assert catalog.products[0].description == "Handcrafted"
    assert catalog.products[1].image_url is None


def test_missing_fields_are_reported(tmp_path: Path) -> None:
    path = _write(tmp_path, "products:\n  - description: nameless\n")
    with pytest.raises(ValueError, match="name, price"):
        load_seed_catalog(path)


@pytest.mark.parametrize("price", ["0", "-3", "'12'", "2.5"])
def test_invalid_product_price(tmp_path: Path, price: str) -> None:
    path = _write(tmp_path, f"products:\n  - name: Bad\n    price: {price}\n")
    with pytest.raises(ValueError):
        load_seed_catalog(path)


def test_seed_only_fills_empty_tables(tmp_path: Path) -> None:
    database = Database(tmp_path / "seed.sqlite3")
    database.initialize()
    catalog = load_seed_catalog(_write(tmp_path, CATALOG))

    assert seed_database(database, catalog) == (2, 2)
    assert seed_database(database, catalog) == (0, 0)

    admin = database.authenticate_user("admin@example.com", "admin123")
    assert admin is not None
    assert admin.is_admin
    assert admin.diamond_balance == 10000
    assert database.count_products() == 2


def test_bundled_catalog_is_valid() -> None:
    catalog = load_seed_catalog(resolve_catalog_path(None))
    assert any(user.is_admin for user in catalog.users)
    assert catalog.products


def test_load_settings_from_environment(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("DIAMONDSTORE_DB_PATH", str(tmp_path / "store.sqlite3"))
    monkeypatch.setenv("DIAMONDSTORE_SESSION_TTL_HOURS", "2")
    monkeypatch.setenv("DIAMONDSTORE_SESSION_SECURE", "yes")
    monkeypatch.delenv("DIAMONDSTORE_CATALOG", raising=False)

    settings = load_settings()

    assert settings.database_path == (tmp_path / "store.sqlite3").resolve()
    assert settings.session_ttl == timedelta(hours=2)
    assert settings.secure_cookies is True
    assert settings.catalog_path.name == "catalog.yaml"


def test_load_settings_rejects_non_positive_ttl(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("DIAMONDSTORE_SESSION_TTL_HOURS", "0")
    with pytest.raises(ValueError):
        load_settings()


@pytest.mark.parametrize("flag", ['"false"', "1", "'yes'"])
def test_is_admin_must_be_boolean(tmp_path: Path, flag: str) -> None:
    path = _write(tmp_path, f"users:\n  - email: a@example.com\n    password: secret1\n    is_admin: {flag}\n")
    with pytest.raises(ValueError, match="is_admin"):
        load_seed_catalog(path)


def test_duplicate_emails_are_rejected_on_load(tmp_path: Path) -> None:
    content = (
        "users:\n"
        "  - email: twin@example.com\n    password: secret1\n"
        "  - email: TWIN@example.com\n    password: secret2\n"
    )
    with pytest.raises(ValueError, match="more than once"):
        load_seed_catalog(_write(tmp_path, content))


def test_seed_with_duplicate_emails_inserts_nothing(tmp_path: Path) -> None:
    database = Database(tmp_path / "seed.sqlite3")
    database.initialize()
    catalog = SeedCatalog(
        users=[
            SeedUser(email="first@example.com", password="secret1"),
            SeedUser(email="twin@example.com", password="secret2"),
            SeedUser(email="twin@example.com", password="secret3"),
        ]
    )

    with pytest.raises(ValueError):
        seed_database(database, catalog)
    assert database.count_users() == 0
