"""SQLite-backed persistence for users, products and orders."""
from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Optional, Tuple

from passlib.context import CryptContext

from .exceptions import InsufficientFundsError, NotFoundError, OrderAlreadyCompletedError
from .models import Order, OrderDetails, OrderStatus, Product, User


def _ensure_directory(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)


def resolve_database_path(env_value: Optional[str]) -> Path:
    """Resolve the on-disk path for the storefront database."""

    if env_value:
        return Path(env_value).expanduser().resolve(strict=False)
    base_dir = Path(__file__).resolve().parent.parent / "data"
    return (base_dir / "diamondstore.sqlite3").resolve(strict=False)


def _current_timestamp() -> datetime:
    return datetime.now(timezone.utc)


def _serialize_datetime(value: datetime) -> str:
    return value.isoformat()


def _parse_datetime(value: str) -> datetime:
    return datetime.fromisoformat(value)


def _normalize_email(email: str) -> str:
    return email.strip().lower()


def _clean_optional(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    stripped = value.strip()
    return stripped or None


# New hashes use PBKDF2; bcrypt hashes carried over from older stores still verify.
_pwd_context = CryptContext(schemes=["pbkdf2_sha256", "bcrypt"], deprecated="auto")


def _hash_password(password: str) -> str:
    return _pwd_context.hash(password)


def _verify_password(password: str, hashed: str) -> bool:
    try:
        return _pwd_context.verify(password, hashed)
    except ValueError:
        return False


# SQLite stores INTEGER columns as signed 64-bit values.
MAX_DIAMONDS = 2**63 - 1


def _validate_price(price: object) -> int:
    if isinstance(price, bool) or not isinstance(price, int):
        raise ValueError("Price must be an integer number of diamonds")
    if price <= 0:
        raise ValueError("Price must be positive")
    if price > MAX_DIAMONDS:
        raise ValueError(f"Price must not exceed {MAX_DIAMONDS}")
    return price


class Database:
    """Wrapper around SQLite for the storefront tables.

    Every balance-changing operation runs inside a ``BEGIN IMMEDIATE``
    transaction. SQLite grants the reserved lock to one connection at a time,
    so the read of the current balance and the write of the new one cannot
    interleave with another adjustment against the same file, whichever
    thread or process issues it.
    """

    def __init__(self, path: Path, *, timeout: float = 30.0) -> None:
        _ensure_directory(path)
        self._path = path
        self._timeout = timeout

    @property
    def path(self) -> Path:
        return self._path

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._path, timeout=self._timeout, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    @contextmanager
    def _reading(self) -> Iterator[sqlite3.Connection]:
        conn = self._connect()
        try:
            yield conn
        finally:
            conn.close()

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        conn = self._connect()
        try:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except BaseException:
                conn.rollback()
                raise
            conn.commit()
        finally:
            conn.close()

    def initialize(self) -> None:
        """Create the required tables if they do not already exist."""

        with self._reading() as conn:
            conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS users (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    email TEXT NOT NULL UNIQUE,
                    password_hash TEXT NOT NULL,
                    first_name TEXT,
                    last_name TEXT,
                    profile_image_url TEXT,
                    is_admin INTEGER NOT NULL DEFAULT 0,
                    diamond_balance INTEGER NOT NULL DEFAULT 0 CHECK (diamond_balance >= 0),
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS products (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL,
                    description TEXT,
                    price INTEGER NOT NULL CHECK (price > 0),
                    image_url TEXT,
                    created_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS orders (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
                    product_id INTEGER NOT NULL REFERENCES products(id) ON DELETE RESTRICT,
                    price INTEGER NOT NULL,
                    status TEXT NOT NULL DEFAULT 'pending'
                        CHECK (status IN ('pending', 'completed')),
                    created_at TEXT NOT NULL,
                    completed_at TEXT
                );

                CREATE INDEX IF NOT EXISTS idx_orders_user_id ON orders(user_id);
                CREATE INDEX IF NOT EXISTS idx_orders_status ON orders(status);
                """
            )

    # ------------------------------------------------------------------
    # User management
    # ------------------------------------------------------------------
    def create_user(
        self,
        email: str,
        password: str,
        *,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
        profile_image_url: Optional[str] = None,
        is_admin: bool = False,
        diamond_balance: int = 0,
    ) -> User:
        """Create a new user account."""

        normalized_email = _normalize_email(email)
        if not normalized_email:
            raise ValueError("Email must not be empty")
        if not password:
            raise ValueError("Password must not be empty")
        if diamond_balance < 0:
            raise ValueError("Diamond balance must not be negative")
        if diamond_balance > MAX_DIAMONDS:
            raise ValueError(f"Diamond balance must not exceed {MAX_DIAMONDS}")

        created_at = _serialize_datetime(_current_timestamp())
        with self._transaction() as conn:
            try:
                cursor = conn.execute(
                    """
                    INSERT INTO users (
                        email,
                        password_hash,
                        first_name,
                        last_name,
                        profile_image_url,
                        is_admin,
                        diamond_balance,
                        created_at,
                        updated_at
                    )
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        normalized_email,
                        _hash_password(password),
                        _clean_optional(first_name),
                        _clean_optional(last_name),
                        _clean_optional(profile_image_url),
                        int(bool(is_admin)),
                        int(diamond_balance),
                        created_at,
                        created_at,
                    ),
                )
            except sqlite3.IntegrityError as exc:
                raise ValueError("A user with that email already exists") from exc
            row = self._fetch_user_row(conn, cursor.lastrowid)

        return self._row_to_user(row)

    def get_user(self, user_id: int) -> Optional[User]:
        with self._reading() as conn:
            row = self._fetch_user_row(conn, user_id)
        if row is None:
            return None
        return self._row_to_user(row)

    def authenticate_user(self, email: str, password: str) -> Optional[User]:
        with self._reading() as conn:
            row = conn.execute(
                "SELECT * FROM users WHERE email = ?",
                (_normalize_email(email),),
            ).fetchone()
        if row is None:
            return None
        stored_hash = row["password_hash"]
        if not stored_hash or not _verify_password(password, stored_hash):
            return None
        return self._row_to_user(row)

    def set_user_password(self, user_id: int, password: str) -> None:
        if not password:
            raise ValueError("Password must not be empty")
        with self._transaction() as conn:
            cursor = conn.execute(
                "UPDATE users SET password_hash = ?, updated_at = ? WHERE id = ?",
                (
                    _hash_password(password),
                    _serialize_datetime(_current_timestamp()),
                    user_id,
                ),
            )
            if cursor.rowcount == 0:
                raise NotFoundError("user", user_id)

    def list_users(self) -> List[User]:
        with self._reading() as conn:
            rows = conn.execute("SELECT * FROM users ORDER BY id").fetchall()
        return [self._row_to_user(row) for row in rows]

    def count_users(self) -> int:
        with self._reading() as conn:
            return int(conn.execute("SELECT COUNT(*) FROM users").fetchone()[0])

    def delete_user(self, user_id: int) -> bool:
        """Delete a user together with their orders."""

        with self._transaction() as conn:
            cursor = conn.execute("DELETE FROM users WHERE id = ?", (user_id,))
            return cursor.rowcount > 0

    # ------------------------------------------------------------------
    # Balance ledger
    # ------------------------------------------------------------------
    def adjust_balance(self, user_id: int, delta: int) -> User:
        """Apply ``delta`` to the user's balance, rejecting overdrafts whole."""

        with self._transaction() as conn:
            row = self._fetch_user_row(conn, user_id)
            if row is None:
                raise NotFoundError("user", user_id)

            balance = int(row["diamond_balance"])
            new_balance = balance + delta
            if new_balance < 0:
                raise InsufficientFundsError(user_id, balance, -delta)
            if new_balance > MAX_DIAMONDS:
                raise ValueError(f"Diamond balance must not exceed {MAX_DIAMONDS}")

            conn.execute(
                "UPDATE users SET diamond_balance = ?, updated_at = ? WHERE id = ?",
                (new_balance, _serialize_datetime(_current_timestamp()), user_id),
            )
            row = self._fetch_user_row(conn, user_id)

        return self._row_to_user(row)

    def purchase(self, user_id: int, product_id: int) -> Tuple[Order, User]:
        """Debit the product price and record a pending order atomically."""

        with self._transaction() as conn:
            user_row = self._fetch_user_row(conn, user_id)
            if user_row is None:
                raise NotFoundError("user", user_id)
            product_row = self._fetch_product_row(conn, product_id)
            if product_row is None:
                raise NotFoundError("product", product_id)

            balance = int(user_row["diamond_balance"])
            price = int(product_row["price"])
            if balance < price:
                raise InsufficientFundsError(user_id, balance, price)

            now = _serialize_datetime(_current_timestamp())
            conn.execute(
                "UPDATE users SET diamond_balance = ?, updated_at = ? WHERE id = ?",
                (balance - price, now, user_id),
            )
            cursor = conn.execute(
                """
                INSERT INTO orders (user_id, product_id, price, status, created_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (user_id, product_id, price, OrderStatus.PENDING.value, now),
            )
            order_row = self._fetch_order_row(conn, cursor.lastrowid)
            user_row = self._fetch_user_row(conn, user_id)

        return self._row_to_order(order_row), self._row_to_user(user_row)

    # ------------------------------------------------------------------
    # Orders
    # ------------------------------------------------------------------
    def complete_order(self, order_id: int) -> Order:
        """Move a pending order to ``completed``."""

        with self._transaction() as conn:
            row = self._fetch_order_row(conn, order_id)
            if row is None:
                raise NotFoundError("order", order_id)
            if row["status"] != OrderStatus.PENDING.value:
                raise OrderAlreadyCompletedError(order_id)

            conn.execute(
                "UPDATE orders SET status = ?, completed_at = ? WHERE id = ?",
                (
                    OrderStatus.COMPLETED.value,
                    _serialize_datetime(_current_timestamp()),
                    order_id,
                ),
            )
            row = self._fetch_order_row(conn, order_id)

        return self._row_to_order(row)

    def get_order(self, order_id: int) -> Optional[Order]:
        with self._reading() as conn:
            row = self._fetch_order_row(conn, order_id)
        if row is None:
            return None
        return self._row_to_order(row)

    def list_orders_for_user(self, user_id: int) -> List[OrderDetails]:
        with self._reading() as conn:
            rows = conn.execute(
                "SELECT * FROM orders WHERE user_id = ? ORDER BY created_at DESC, id DESC",
                (user_id,),
            ).fetchall()
            return self._attach_details(conn, rows, include_user=False)

    def list_orders(self, status: Optional[OrderStatus] = None) -> List[OrderDetails]:
        query = "SELECT * FROM orders"
        params: Tuple[object, ...] = ()
        if status is not None:
            query += " WHERE status = ?"
            params = (OrderStatus(status).value,)
        query += " ORDER BY created_at DESC, id DESC"

        with self._reading() as conn:
            rows = conn.execute(query, params).fetchall()
            return self._attach_details(conn, rows, include_user=True)

    # ------------------------------------------------------------------
    # Products
    # ------------------------------------------------------------------
    def create_product(
        self,
        name: str,
        price: int,
        *,
        description: Optional[str] = None,
        image_url: Optional[str] = None,
    ) -> Product:
        normalized_name = name.strip()
        if not normalized_name:
            raise ValueError("Name must not be empty")
        _validate_price(price)

        with self._transaction() as conn:
            cursor = conn.execute(
                """
                INSERT INTO products (name, description, price, image_url, created_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (
                    normalized_name,
                    _clean_optional(description),
                    price,
                    _clean_optional(image_url),
                    _serialize_datetime(_current_timestamp()),
                ),
            )
            row = self._fetch_product_row(conn, cursor.lastrowid)

        return self._row_to_product(row)

    def get_product(self, product_id: int) -> Optional[Product]:
        with self._reading() as conn:
            row = self._fetch_product_row(conn, product_id)
        if row is None:
            return None
        return self._row_to_product(row)

    def list_products(self) -> List[Product]:
        with self._reading() as conn:
            rows = conn.execute("SELECT * FROM products ORDER BY created_at, id").fetchall()
        return [self._row_to_product(row) for row in rows]

    def count_products(self) -> int:
        with self._reading() as conn:
            return int(conn.execute("SELECT COUNT(*) FROM products").fetchone()[0])

    def update_product(self, product_id: int, **fields: object) -> Optional[Product]:
        if not fields:
            return self.get_product(product_id)

        updates: List[str] = []
        values: List[object] = []
        nullable_columns = {"description", "image_url"}
        for column in ("name", "description", "price", "image_url"):
            if column not in fields:
                continue
            value = fields[column]
            if value is None and column not in nullable_columns:
                continue
            if column == "name":
                value = str(value).strip()
                if not value:
                    raise ValueError("Name must not be empty")
            elif column == "price":
                value = _validate_price(value)
            else:
                value = _clean_optional(value)  # type: ignore[arg-type]
            updates.append(f"{column} = ?")
            values.append(value)

        if not updates:
            return self.get_product(product_id)

        values.append(product_id)
        query = f"UPDATE products SET {', '.join(updates)} WHERE id = ?"

        with self._transaction() as conn:
            cursor = conn.execute(query, values)
            if cursor.rowcount == 0:
                return None
            row = self._fetch_product_row(conn, product_id)

        return self._row_to_product(row)

    def delete_product(self, product_id: int) -> bool:
        with self._transaction() as conn:
            try:
                cursor = conn.execute("DELETE FROM products WHERE id = ?", (product_id,))
            except sqlite3.IntegrityError as exc:
                raise ValueError("Product is referenced by existing orders") from exc
            return cursor.rowcount > 0

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    @staticmethod
    def _fetch_user_row(conn: sqlite3.Connection, user_id: Optional[int]) -> Optional[sqlite3.Row]:
        return conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()

    @staticmethod
    def _fetch_product_row(conn: sqlite3.Connection, product_id: Optional[int]) -> Optional[sqlite3.Row]:
        return conn.execute("SELECT * FROM products WHERE id = ?", (product_id,)).fetchone()

    @staticmethod
    def _fetch_order_row(conn: sqlite3.Connection, order_id: Optional[int]) -> Optional[sqlite3.Row]:
        return conn.execute("SELECT * FROM orders WHERE id = ?", (order_id,)).fetchone()

    def _fetch_by_ids(
        self,
        conn: sqlite3.Connection,
        table: str,
        ids: Iterable[int],
    ) -> Dict[int, sqlite3.Row]:
        unique_ids = sorted(set(ids))
        if not unique_ids:
            return {}
        placeholders = ", ".join("?" for _ in unique_ids)
        rows = conn.execute(
            f"SELECT * FROM {table} WHERE id IN ({placeholders})",
            unique_ids,
        ).fetchall()
        return {int(row["id"]): row for row in rows}

    def _attach_details(
        self,
        conn: sqlite3.Connection,
        rows: List[sqlite3.Row],
        *,
        include_user: bool,
    ) -> List[OrderDetails]:
        products = self._fetch_by_ids(conn, "products", (int(row["product_id"]) for row in rows))
        users: Dict[int, sqlite3.Row] = {}
        if include_user:
            users = self._fetch_by_ids(conn, "users", (int(row["user_id"]) for row in rows))

        details: List[OrderDetails] = []
        for row in rows:
            product_row = products.get(int(row["product_id"]))
            user_row = users.get(int(row["user_id"]))
            details.append(
                OrderDetails(
                    order=self._row_to_order(row),
                    product=self._row_to_product(product_row) if product_row is not None else None,
                    user=self._row_to_user(user_row) if user_row is not None else None,
                )
            )
        return details

    def _row_to_user(self, row: sqlite3.Row) -> User:
        return User(
            id=int(row["id"]),
            email=str(row["email"]),
            first_name=row["first_name"],
            last_name=row["last_name"],
            profile_image_url=row["profile_image_url"],
            is_admin=bool(row["is_admin"]),
            diamond_balance=int(row["diamond_balance"]),
            created_at=_parse_datetime(str(row["created_at"])),
            updated_at=_parse_datetime(str(row["updated_at"])),
        )

    def _row_to_product(self, row: sqlite3.Row) -> Product:
        return Product(
            id=int(row["id"]),
            name=str(row["name"]),
            description=row["description"],
            price=int(row["price"]),
            image_url=row["image_url"],
            created_at=_parse_datetime(str(row["created_at"])),
        )

    def _row_to_order(self, row: sqlite3.Row) -> Order:
        completed_at = row["completed_at"]
        return Order(
            id=int(row["id"]),
            user_id=int(row["user_id"]),
            product_id=int(row["product_id"]),
            price=int(row["price"]),
            status=OrderStatus(row["status"]),
            created_at=_parse_datetime(str(row["created_at"])),
            completed_at=_parse_datetime(str(completed_at)) if completed_at else None,
        )


__all__ = ["Database", "MAX_DIAMONDS", "resolve_database_path"]
