"""Command-line interface for the Diamond Store service."""

from __future__ import annotations
import argparse
import logging
import sys
from getpass import getpass
from pathlib import Path
from typing import Callable, Optional, Sequence

from diamondstore.config import Settings, load_seed_catalog, load_settings, seed_database
from diamondstore.database import Database
from diamondstore.exceptions import InsufficientFundsError, NotFoundError, OrderAlreadyCompletedError
from diamondstore.ledger import Ledger
from diamondstore.models import OrderStatus

logger = logging.getLogger("diamondstore.main")

PASSWORD_MIN_LENGTH = 6


def _parse_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Diamond Store utilities")
    subparsers = parser.add_subparsers(dest="command")

    parser.set_defaults(command="serve")

    subparsers.add_parser("init-db", help="Initialise the storefront database")

    seed_parser = subparsers.add_parser("seed", help="Insert default users and products")
    seed_parser.add_argument(
        "--catalog",
        default=None,
        help="Path to the YAML seed catalog (default: DIAMONDSTORE_CATALOG or config/catalog.yaml)",
    )

    serve_parser = subparsers.add_parser("serve", help="Start the HTTP storefront API")
    serve_parser.add_argument("--host", default="0.0.0.0", help="Bind address for the API")
    serve_parser.add_argument(
        "--port",
        type=int,
        default=5000,
        help="Port for the HTTP API (default: 5000)",
    )
    serve_parser.add_argument(
        "--ssl-certfile",
        default=None,
        help="Path to the TLS certificate chain in PEM format",
    )
    serve_parser.add_argument(
        "--ssl-keyfile",
        default=None,
        help="Path to the TLS private key in PEM format",
    )

    subparsers.add_parser("admin", help="Launch the interactive administration console")

    args_list = list(argv) if argv is not None else sys.argv[1:]
    known_commands = {"serve", "admin", "init-db", "seed"}

    if not args_list:
        args_list = ["serve"]
    else:
        first = args_list[0]
        if first in ("-h", "--help"):
            return parser.parse_args(args_list)
        if first not in known_commands:
            if any(flag in args_list for flag in ("-h", "--help")):
                return parser.parse_args(args_list)
            args_list = ["serve", *args_list]

    return parser.parse_args(args_list)


def _initialise_database(settings: Settings) -> Database:
    database = Database(settings.database_path)
    database.initialize()
    logger.info("Database initialised at %s", settings.database_path)
    return database


def _seed(database: Database, catalog_path: Path) -> None:
    catalog = load_seed_catalog(catalog_path)
    users_added, products_added = seed_database(database, catalog)
    print(f"Seeded {users_added} user(s) and {products_added} product(s) from {catalog_path}.")


def _serve(
    *,
    database: Database,
    settings: Settings,
    host: str,
    port: int,
    ssl_certfile: str | None,
    ssl_keyfile: str | None,
) -> None:
    from diamondstore.service import create_app
    import uvicorn

    if bool(ssl_certfile) ^ bool(ssl_keyfile):
        raise SystemExit("Both --ssl-certfile and --ssl-keyfile must be provided together.")

    protocol = "https" if ssl_certfile and ssl_keyfile else "http"
    logger.info("Starting storefront API on %s://%s:%s", protocol, host, port)

    app = create_app(database=database, settings=settings)
    uvicorn.run(
        app,
        host=host,
        port=port,
        log_level="info",
        ssl_certfile=ssl_certfile,
        ssl_keyfile=ssl_keyfile,
    )


def _run_admin_cli(database: Database) -> None:
    """Provide an interactive back-office console for administrators."""

    ledger = Ledger(database)
    actions: dict[str, Callable[[], None]] = {
        "1": lambda: _list_users(database),
        "2": lambda: _add_user(database),
        "3": lambda: _adjust_diamonds(ledger),
        "4": lambda: _list_pending_orders(database),
        "5": lambda: _complete_order(ledger),
        "6": lambda: _list_products(database),
        "7": lambda: _add_product(database),
        "8": lambda: _reset_password(database),
    }

    print("Diamond Store Administration Console")
    print("Press Ctrl+C at any time to exit.\n")

    try:
        while True:
            print("Select an option:")
            print("  1) List all users")
            print("  2) Add a new user")
            print("  3) Grant or deduct diamonds")
            print("  4) Show pending orders")
            print("  5) Complete an order")
            print("  6) List products")
            print("  7) Add a product")
            print("  8) Reset a user's password")
            print("  9) Exit")

            choice = input("Enter choice [1-9]: ").strip()

            if choice == "9":
                print("Goodbye!")
                return
            action = actions.get(choice)
            if action is None:
                print("Invalid selection. Please choose a number from the menu.\n")
                continue
            action()
            print()
    except KeyboardInterrupt:
        print("\nExiting administration console.")


def _prompt_int(label: str) -> Optional[int]:
    raw = input(label).strip()
    try:
        return int(raw)
    except ValueError:
        print(f"'{raw}' is not a whole number.")
        return None


def _list_users(database: Database) -> None:
    users = database.list_users()
    if not users:
        print("No users are currently registered.")
        return

    print(f"{len(users)} user(s) found:")
    print(f"{'ID':>4}  {'Email':<32}  {'Role':<6}  {'Diamonds':>9}  Created")
    print("-" * 80)
    for user in users:
        created = user.created_at.strftime("%Y-%m-%d %H:%M:%S %Z")
        role = "admin" if user.is_admin else "user"
        print(f"{user.id:>4}  {user.email:<32}  {role:<6}  {user.diamond_balance:>9}  {created}")


def _add_user(database: Database) -> None:
    print("\nCreate a new user (leave the email blank to cancel).")
    email = input("Email address: ").strip()
    if not email:
        print("User creation cancelled.")
        return

    first_name = input("First name (optional): ").strip() or None
    last_name = input("Last name (optional): ").strip() or None
    is_admin = input("Administrator? [y/N]: ").strip().lower() in {"y", "yes"}

    password = _prompt_for_password()
    if password is None:
        print("Aborted creating user.")
        return

    try:
        user = database.create_user(
            email,
            password,
            first_name=first_name,
            last_name=last_name,
            is_admin=is_admin,
        )
    except ValueError as exc:
        print(f"Failed to create user: {exc}")
        return

    print(f"Created user #{user.id}: {user.display_name} <{user.email}>")


def _reset_password(database: Database) -> None:
    user_id = _prompt_int("User ID: ")
    if user_id is None:
        return

    password = _prompt_for_password()
    if password is None:
        print("Password unchanged.")
        return

    try:
        database.set_user_password(user_id, password)
    except NotFoundError:
        print(f"User #{user_id} does not exist.")
        return

    print(f"Password updated for user #{user_id}.")


def _prompt_for_password() -> str | None:
    for _ in range(3):
        password = getpass(f"Password (min {PASSWORD_MIN_LENGTH} characters): ")
        if len(password) < PASSWORD_MIN_LENGTH:
            print("Password is too short. Please try again.")
            continue
        confirmation = getpass("Confirm password: ")
        if password != confirmation:
            print("Passwords do not match. Please try again.")
            continue
        return password
    return None


def _adjust_diamonds(ledger: Ledger) -> None:
    user_id = _prompt_int("User ID: ")
    if user_id is None:
        return
    amount = _prompt_int("Amount (negative to deduct): ")
    if amount is None:
        return

    try:
        user = ledger.adjust(user_id, amount)
    except NotFoundError:
        print(f"User #{user_id} does not exist.")
        return
    except InsufficientFundsError as exc:
        print(f"Cannot deduct {-amount} diamonds: user #{user_id} only has {exc.balance}.")
        return
    except ValueError as exc:
        print(f"Cannot adjust user #{user_id}: {exc}")
        return

    print(f"User #{user.id} now has {user.diamond_balance} diamonds.")


def _list_pending_orders(database: Database) -> None:
    pending = database.list_orders(OrderStatus.PENDING)
    if not pending:
        print("There are no pending orders.")
        return

    print(f"{len(pending)} pending order(s):")
    for details in pending:
        order = details.order
        product = details.product.name if details.product else f"product #{order.product_id}"
        customer = details.user.email if details.user else f"user #{order.user_id}"
        placed = order.created_at.strftime("%Y-%m-%d %H:%M")
        print(f"- #{order.id}: {product} for {customer} ({order.price} diamonds, placed {placed})")


def _complete_order(ledger: Ledger) -> None:
    order_id = _prompt_int("Order ID: ")
    if order_id is None:
        return

    try:
        order = ledger.complete_order(order_id)
    except NotFoundError:
        print(f"Order #{order_id} does not exist.")
        return
    except OrderAlreadyCompletedError:
        print(f"Order #{order_id} was already completed.")
        return

    print(f"Order #{order.id} marked as completed.")


def _list_products(database: Database) -> None:
    products = database.list_products()
    if not products:
        print("The catalog is empty.")
        return

    for product in products:
        print(f"- #{product.id}: {product.name} ({product.price} diamonds)")


def _add_product(database: Database) -> None:
    name = input("Product name (leave blank to cancel): ").strip()
    if not name:
        print("Product creation cancelled.")
        return
    price = _prompt_int("Price in diamonds: ")
    if price is None:
        return
    description = input("Description (optional): ").strip() or None

    try:
        product = database.create_product(name, price, description=description)
    except ValueError as exc:
        print(f"Failed to create product: {exc}")
        return

    print(f"Created product #{product.id}: {product.name} ({product.price} diamonds)")


def main(argv: Sequence[str] | None = None) -> None:
    """Entry point for CLI usage."""

    logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(message)s")

    args = _parse_args(argv)
    settings = load_settings()
    database = _initialise_database(settings)

    if args.command == "serve":
        _serve(
            database=database,
            settings=settings,
            host=args.host,
            port=args.port,
            ssl_certfile=args.ssl_certfile,
            ssl_keyfile=args.ssl_keyfile,
        )
    elif args.command == "admin":
        _run_admin_cli(database)
    elif args.command == "seed":
        catalog_path = Path(args.catalog).expanduser() if args.catalog else settings.catalog_path
        _seed(database, catalog_path)
    elif args.command == "init-db":
        print("Database initialisation complete.")


if __name__ == "__main__":
    main()
