"""Product sales with the seller's commission frozen at sale time."""
from __future__ import annotations

import logging

from flask import current_app

from .errors import NotFoundError, PermissionDenied, ValidationError
from .extensions import db
from .models import STAFF_ROLES, Client, Product, ProductSale, User
from .pricing import quantize, to_decimal
from .validators import parse_id, parse_optional_id, parse_rate, parse_text

logger = logging.getLogger(__name__)


def _seller_for(acting_user: User, staff_id: int | None) -> User:
    """Sales default to the logged-in user; a valid staff id credits someone else."""
    if staff_id is None or staff_id == acting_user.user_id:
        return acting_user
    target = db.session.get(User, staff_id)
    if target is None or target.role not in STAFF_ROLES:
        return acting_user
    return target


def record_sale(acting_user: User, payload: dict) -> ProductSale:
    if acting_user.role not in STAFF_ROLES:
        raise PermissionDenied("Only Boss and Staff can sell products")

    if not payload.get("productId") or not payload.get("quantity"):
        raise ValidationError("Product ID and quantity are required", error="missing_fields")

    product_id = parse_id(payload.get("productId"), "productId")
    quantity = parse_id(payload.get("quantity"), "quantity")
    client_id = parse_optional_id(payload.get("clientId"), "clientId")
    seller = _seller_for(acting_user, parse_optional_id(payload.get("staffId"), "staffId"))

    product = db.session.get(Product, product_id)
    if product is None:
        raise NotFoundError("Product", "No product found with the specified ID")
    if not product.is_active:
        raise ValidationError("This product is not active", error="product_not_available")

    # Zero stock usually means the count is not maintained, so only a known shortfall blocks
    if product.stock is not None and 0 < product.stock < quantity:
        raise ValidationError(f"Only {product.stock} units available in stock", error="insufficient_stock")

    if client_id is not None and db.session.get(Client, client_id) is None:
        raise NotFoundError("Client", "No client found with the specified ID")

    if payload.get("commissionRate") not in (None, ""):
        rate = parse_rate(payload.get("commissionRate"), "commissionRate")
    elif seller.product_commission_rate is not None:
        rate = seller.product_commission_rate
    else:
        rate = current_app.config.get("DEFAULT_PRODUCT_COMMISSION_RATE", 5.0)

    unit_price = to_decimal(product.price)
    total_price = quantize(unit_price * quantity)
    commission_amount = quantize(total_price * to_decimal(rate) / 100)

    sale = ProductSale(
        product_id=product.product_id,
        staff_id=seller.user_id,
        client_id=client_id,
        quantity=quantity,
        unit_price=unit_price,
        total_price=total_price,
        commission_rate=rate,
        commission_amount=commission_amount,
        notes=parse_text(payload.get("notes"), "notes"),
    )
    db.session.add(sale)

    if product.stock is not None:
        product.stock = product.stock - quantity

    db.session.flush()
    logger.info(
        "Sale %s: %d x product %s by staff %s, commission %s",
        sale.sale_id,
        quantity,
        product.product_id,
        seller.user_id,
        commission_amount,
    )
    return sale


def list_sales(acting_user: User, staff_id: int | None = None) -> list[ProductSale]:
    if acting_user.role not in STAFF_ROLES:
        raise PermissionDenied("Only Boss and Staff can view product sales")

    query = ProductSale.query
    if acting_user.role == "Staff":
        query = query.filter(ProductSale.staff_id == acting_user.user_id)
    elif staff_id is not None:
        query = query.filter(ProductSale.staff_id == staff_id)
    return query.order_by(ProductSale.created_at.desc()).all()


def delete_sale(acting_user: User, sale_id: int) -> None:
    if acting_user.role not in STAFF_ROLES:
        raise PermissionDenied("Only Boss and Staff can delete product sales")

    sale = db.session.get(ProductSale, sale_id)
    if sale is None:
        raise NotFoundError("Sale", "No product sale found with the specified ID")
    if acting_user.role == "Staff" and sale.staff_id != acting_user.user_id:
        raise PermissionDenied("You can only delete your own sales")

    if sale.product is not None and sale.product.stock is not None:
        sale.product.stock = sale.product.stock + sale.quantity

    db.session.delete(sale)
    db.session.flush()
    logger.info("Sale %s deleted by user %s", sale_id, acting_user.user_id)
