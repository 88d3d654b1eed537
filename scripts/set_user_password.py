"""Create a Boss or Staff login, or reset its password, for local development."""
from __future__ import annotations

import argparse
import sys
from pathlib import Path

from werkzeug.security import generate_password_hash

# Ensure the project root is on sys.path so ``barbershop`` can be imported when the script is executed directly.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from barbershop import create_app
from barbershop.extensions import db
from barbershop.models import AuthAccount, User

ROLES = ["Boss", "Staff"]


def set_password(email: str, password: str, role: str = "Staff", name: str | None = None) -> None:
    app = create_app()
    email = email.strip().lower()

    with app.app_context():
        user = User.query.filter_by(email=email).first()
        if user is None:
            user = User(name=name or f"{role} User", email=email, role=role)
            db.session.add(user)
            db.session.flush()
            app.logger.info("Created new %s user: %s", role, email)
        elif user.role != role:
            app.logger.info("Updating user role from '%s' to '%s'", user.role, role)
            user.role = role

        account = db.session.get(AuthAccount, user.user_id)
        if account is None:
            account = AuthAccount(user_id=user.user_id)
            db.session.add(account)

        account.password_hash = generate_password_hash(password)
        db.session.commit()

        app.logger.info("Password for %s user '%s' has been set", role, email)


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Set a staff password for local testing.")
    parser.add_argument("email", help="User email address")
    parser.add_argument("password", help="Plain-text password to hash and store")
    parser.add_argument("--role", choices=ROLES, default="Staff", help="User role (default: Staff)")
    parser.add_argument("--name", help="Display name for a newly created user")
    return parser.parse_args()


def main() -> None:
    args = parse_args()
    set_password(args.email, args.password, args.role, args.name)


if __name__ == "__main__":
    main()
