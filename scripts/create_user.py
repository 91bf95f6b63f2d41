import argparse
import getpass
import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from diamondstore.database import Database, resolve_database_path


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Create a Diamond Store user")
    parser.add_argument("email", help="Unique email address for login")
    parser.add_argument("--first-name", default=None, help="Optional first name")
    parser.add_argument("--last-name", default=None, help="Optional last name")
    parser.add_argument("--admin", action="store_true", help="Grant administrator rights")
    parser.add_argument(
        "--diamonds",
        type=int,
        default=0,
        help="Starting diamond balance (default: 0)",
    )
    parser.add_argument(
        "--db",
        dest="db_path",
        default=None,
        help="Path to the SQLite database (defaults to DIAMONDSTORE_DB_PATH or data/diamondstore.sqlite3)",
    )
    return parser.parse_args()


def prompt_for_password() -> str:
    for _ in range(3):
        password = getpass.getpass("Password: ")
        confirm = getpass.getpass("Confirm password: ")
        if password != confirm:
            print("Passwords do not match. Try again.", file=sys.stderr)
            continue
        if len(password) < 6:
            print("Password must be at least 6 characters long.", file=sys.stderr)
            continue
        return password
    raise SystemExit("Failed to set password after three attempts.")


def main() -> int:
    args = parse_args()
    if args.diamonds < 0:
        print("Error: starting balance must not be negative", file=sys.stderr)
        return 1
    password = prompt_for_password()

    db_env = args.db_path or os.getenv("DIAMONDSTORE_DB_PATH")
    database = Database(resolve_database_path(db_env))
    database.initialize()

    try:
        user = database.create_user(
            args.email,
            password,
            first_name=args.first_name,
            last_name=args.last_name,
            is_admin=args.admin,
            diamond_balance=args.diamonds,
        )
    except ValueError as exc:  # duplicates, etc.
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    role = "admin" if user.is_admin else "user"
    print(f"Created {role} #{user.id}: {user.display_name} <{user.email}> with {user.diamond_balance} diamonds")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
