"""pytest configuration: app, database and factory fixtures."""
from __future__ import annotations

import sys
from decimal import Decimal
from itertools import count
from pathlib import Path

import pytest
from itsdangerous import URLSafeTimedSerializer
from werkzeug.security import generate_password_hash

# Ensure the project root is available on sys.path so tests can import the barbershop package.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from barbershop import create_app  # noqa: E402
from barbershop.config import TestConfig  # noqa: E402
from barbershop.extensions import db  # noqa: E402
from barbershop.models import (AuthAccount, Client, DiscountCode,  # noqa: E402
                               Package, Product, User)

_sequence = count(1)


@pytest.fixture
def app():
    app = create_app(TestConfig)
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def make_user(app):
    def _make_user(role="Staff", name=None, commission_rate=40.0, product_commission_rate=5.0,
                   password=None, is_active=True):
        n = next(_sequence)
        user = User(
            name=name or f"{role} {n}",
            email=f"{role.lower()}{n}@barbershop.test",
            role=role,
            is_active=is_active,
            commission_rate=commission_rate,
            product_commission_rate=product_commission_rate,
        )
        db.session.add(user)
        db.session.flush()
        if password:
            db.session.add(AuthAccount(user_id=user.user_id, password_hash=generate_password_hash(password)))
        db.session.commit()
        return user

    return _make_user


@pytest.fixture
def make_client(app):
    def _make_client(full_name="Walk In"):
        n = next(_sequence)
        customer = Client(client_code=f"C{n:05d}", full_name=full_name, phone_number=f"+6012000{n:04d}")
        db.session.add(customer)
        db.session.commit()
        return customer

    return _make_client


@pytest.fixture
def make_package(app):
    def _make_package(name="Haircut", price="50.00"):
        package = Package(name=name, price=Decimal(price))
        db.session.add(package)
        db.session.commit()
        return package

    return _make_package


@pytest.fixture
def make_code(app):
    def _make_code(code="SAVE10", discount_type="percentage", percent=10.0, amount=None,
                   applicable_packages=None, is_active=True):
        discount_code = DiscountCode(
            code=code,
            discount_type=discount_type,
            discount_percent=percent if discount_type == "percentage" else None,
            discount_amount=Decimal(amount) if amount is not None else None,
            applicable_packages=applicable_packages or [],
            is_active=is_active,
        )
        db.session.add(discount_code)
        db.session.commit()
        return discount_code

    return _make_code


@pytest.fixture
def make_product(app):
    def _make_product(name="Pomade", price="18.00", stock=10, is_active=True):
        product = Product(name=name, price=Decimal(price), stock=stock, is_active=is_active)
        db.session.add(product)
        db.session.commit()
        return product

    return _make_product


@pytest.fixture
def auth_headers(app):
    """Sign a bearer token the same way the login endpoint does."""
    def _auth_headers(user):
        serializer = URLSafeTimedSerializer(app.config["SECRET_KEY"], salt="auth-token")
        token = serializer.dumps({"user_id": user.user_id, "role": user.role})
        return {"Authorization": f"Bearer {token}"}

    return _auth_headers
