"""Behavioural tests for balance adjustments, purchases and fulfillment."""

from __future__ import annotations

import random
import threading
from pathlib import Path
from typing import List

import pytest

from diamondstore.database import Database
from diamondstore.exceptions import InsufficientFundsError, NotFoundError, OrderAlreadyCompletedError
from diamondstore.ledger import Ledger, balance_update_event, order_update_event
from diamondstore.models import OrderStatus


@pytest.fixture()
def database(tmp_path: Path) -> Database:
    db = Database(tmp_path / "ledger.sqlite3")
    db.initialize()
    return db


@pytest.fixture()
def ledger(database: Database) -> Ledger:
    return Ledger(database)


def test_credit_then_debit_restores_balance(ledger: Ledger, database: Database) -> None:
    user = database.create_user("alice@example.com", "password", diamond_balance=250)

    credited = ledger.adjust(user.id, 75)
    assert credited.diamond_balance == 325

    restored = ledger.adjust(user.id, -75)
    assert restored.diamond_balance == 250


def test_debit_below_zero_is_rejected_whole(ledger: Ledger, database: Database) -> None:
    user = database.create_user("bob@example.com", "password", diamond_balance=40)

    with pytest.raises(InsufficientFundsError) as excinfo:
        ledger.adjust(user.id, -41)

    assert excinfo.value.balance == 40
    assert excinfo.value.requested == 41
    assert database.get_user(user.id).diamond_balance == 40

    emptied = ledger.adjust(user.id, -40)
    assert emptied.diamond_balance == 0


def test_adjust_unknown_user(ledger: Ledger) -> None:
    with pytest.raises(NotFoundError):
        ledger.adjust(404, 10)


def test_adjust_requires_integer_delta(ledger: Ledger, database: Database) -> None:
    user = database.create_user("carol@example.com", "password", diamond_balance=10)
    with pytest.raises(TypeError):
        ledger.adjust(user.id, 1.5)  # type: ignore[arg-type]
    with pytest.raises(TypeError):
        ledger.adjust(user.id, True)  # type: ignore[arg-type]


def test_balance_never_negative_over_random_sequence(ledger: Ledger, database: Database) -> None:
    rng = random.Random(1234)
    user = database.create_user("random@example.com", "password", diamond_balance=100)
    product = database.create_product("Trinket", 35)
    expected = 100

    for _ in range(150):
        if rng.random() < 0.3:
            try:
                ledger.purchase(user.id, product.id)
            except InsufficientFundsError:
                assert expected < 35
            else:
                expected -= 35
        else:
            delta = rng.randint(-80, 60)
            try:
                ledger.adjust(user.id, delta)
            except InsufficientFundsError:
                assert expected + delta < 0
            else:
                expected += delta

        balance = database.get_user(user.id).diamond_balance
        assert balance >= 0
        assert balance == expected


def test_purchase_debits_price_and_creates_pending_order(ledger: Ledger, database: Database) -> None:
    user = database.create_user("dave@example.com", "password", diamond_balance=1200)
    product = database.create_product("Chair", 500)

    result = ledger.purchase(user.id, product.id)

    assert result.user.diamond_balance == 700
    assert result.order.status is OrderStatus.PENDING
    assert result.order.price == 500
    assert result.order.user_id == user.id
    assert result.order.product_id == product.id
    assert result.order.completed_at is None

    orders = database.list_orders_for_user(user.id)
    assert len(orders) == 1
    assert orders[0].order == result.order


def test_purchase_records_price_paid_at_time_of_sale(ledger: Ledger, database: Database) -> None:
    user = database.create_user("erin@example.com", "password", diamond_balance=1000)
    product = database.create_product("Lamp", 200)

    result = ledger.purchase(user.id, product.id)
    database.update_product(product.id, price=900)

    assert database.get_order(result.order.id).price == 200


def test_unaffordable_purchase_changes_nothing(ledger: Ledger, database: Database) -> None:
    user = database.create_user("frank@example.com", "password", diamond_balance=499)
    product = database.create_product("Chair", 500)

    with pytest.raises(InsufficientFundsError):
        ledger.purchase(user.id, product.id)

    assert database.get_user(user.id).diamond_balance == 499
    assert database.list_orders() == []


def test_purchase_of_missing_records(ledger: Ledger, database: Database) -> None:
    user = database.create_user("gina@example.com", "password", diamond_balance=100)
    product = database.create_product("Pack", 10)

    with pytest.raises(NotFoundError) as missing_product:
        ledger.purchase(user.id, product.id + 100)
    assert missing_product.value.kind == "product"

    with pytest.raises(NotFoundError) as missing_user:
        ledger.purchase(user.id + 100, product.id)
    assert missing_user.value.kind == "user"

    assert database.get_user(user.id).diamond_balance == 100


def test_complete_order_is_one_way(ledger: Ledger, database: Database) -> None:
    user = database.create_user("hank@example.com", "password", diamond_balance=100)
    product = database.create_product("Pack", 60)
    order = ledger.purchase(user.id, product.id).order

    completed = ledger.complete_order(order.id)
    assert completed.status is OrderStatus.COMPLETED
    assert completed.completed_at is not None

    with pytest.raises(OrderAlreadyCompletedError):
        ledger.complete_order(order.id)

    stored = database.get_order(order.id)
    assert stored.completed_at == completed.completed_at
    # Completion never touches the ledger.
    assert database.get_user(user.id).diamond_balance == 40


def test_complete_unknown_order(ledger: Ledger) -> None:
    with pytest.raises(NotFoundError):
        ledger.complete_order(31337)


def test_concurrent_purchases_only_one_affordable(ledger: Ledger, database: Database) -> None:
    user = database.create_user("racer@example.com", "password", diamond_balance=500)
    product = database.create_product("Chair", 500)

    workers = 8
    barrier = threading.Barrier(workers)
    successes: List[int] = []
    failures: List[BaseException] = []
    lock = threading.Lock()

    def attempt() -> None:
        barrier.wait()
        try:
            result = ledger.purchase(user.id, product.id)
        except InsufficientFundsError as exc:
            with lock:
                failures.append(exc)
        else:
            with lock:
                successes.append(result.order.id)

    threads = [threading.Thread(target=attempt) for _ in range(workers)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=60)

    assert len(successes) == 1
    assert len(failures) == workers - 1
    assert database.get_user(user.id).diamond_balance == 0
    assert len(database.list_orders()) == 1


def test_concurrent_adjustments_are_not_lost(ledger: Ledger, database: Database) -> None:
    user = database.create_user("counter@example.com", "password", diamond_balance=0)

    def credit() -> None:
        for _ in range(10):
            ledger.adjust(user.id, 1)

    threads = [threading.Thread(target=credit) for _ in range(5)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=60)

    assert database.get_user(user.id).diamond_balance == 50


def test_event_payloads(ledger: Ledger, database: Database) -> None:
    user = database.create_user("ivy@example.com", "password", diamond_balance=90)
    product = database.create_product("Pack", 30)
    result = ledger.purchase(user.id, product.id)

    assert balance_update_event(result.user) == {
        "type": "balance_update",
        "userId": user.id,
        "newBalance": 60,
    }
    assert order_update_event(result.order) == {
        "type": "order_update",
        "orderId": result.order.id,
        "status": "pending",
    }
