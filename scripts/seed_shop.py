#!/usr/bin/env python3
"""Seed the database with the shop's packages, retail products and a few discount codes."""
import sys
from decimal import Decimal
from pathlib import Path

# Add the parent directory to the path so we can import the app
sys.path.insert(0, str(Path(__file__).parent.parent))

from barbershop import create_app
from barbershop.extensions import db
from barbershop.models import DiscountCode, Package, Product

PACKAGES = [
    {"name": "Haircut", "description": "Classic cut and style", "price": Decimal("50.00"), "duration": 30},
    {"name": "Beard Trim", "description": "Shape and line-up", "price": Decimal("30.00"), "duration": 20},
    {"name": "Hot Towel Shave", "description": "Straight razor shave", "price": Decimal("40.00"), "duration": 30},
    {"name": "Hair Wash", "description": "Shampoo and scalp massage", "price": Decimal("15.00"), "duration": 15},
]

PRODUCTS = [
    {"name": "Styling Pomade", "price": Decimal("18.00"), "stock": 40},
    {"name": "Beard Oil", "price": Decimal("22.00"), "stock": 25},
    {"name": "Shampoo", "price": Decimal("12.00"), "stock": None},
]


def seed_shop():
    """Add packages, products and discount codes that are not there yet."""
    app = create_app()

    with app.app_context():
        db.create_all()

        packages = {}
        for data in PACKAGES:
            package = Package.query.filter_by(name=data["name"]).first()
            if package is None:
                package = Package(**data)
                db.session.add(package)
            packages[data["name"]] = package

        for data in PRODUCTS:
            if Product.query.filter_by(name=data["name"]).first() is None:
                db.session.add(Product(**data))

        db.session.flush()

        codes = [
            {"code": "SAVE10", "description": "10% off everything", "discount_type": "percentage",
             "discount_percent": 10.0, "applicable_packages": []},
            {"code": "BEARD5", "description": "$5 off a beard trim", "discount_type": "fixed_amount",
             "discount_amount": Decimal("5.00"), "applicable_packages": [packages["Beard Trim"].package_id]},
        ]
        for data in codes:
            if DiscountCode.query.filter_by(code=data["code"]).first() is None:
                db.session.add(DiscountCode(**data))

        db.session.commit()
        app.logger.info(
            "Seeded %d packages, %d products and %d discount codes",
            Package.query.count(),
            Product.query.count(),
            DiscountCode.query.count(),
        )


if __name__ == "__main__":
    seed_shop()
