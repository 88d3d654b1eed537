"""Database models for the barbershop backend."""
from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal

from .extensions import db

STAFF_ROLES = ("Boss", "Staff")

APPOINTMENT_STATUSES = ("pending", "confirmed", "completed", "cancelled")

DISCOUNT_TYPES = ("percentage", "fixed_amount")


def utc_now() -> datetime:
    """Return a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def money(value: Decimal | float | None) -> float | None:
    """Serialise a money column as a JSON number."""
    if value is None:
        return None
    return float(value)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


class User(db.Model):
    __tablename__ = "users"

    user_id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    email = db.Column(db.String(255), unique=True, nullable=False)
    role = db.Column(
        db.Enum(
            "Boss",
            "Staff",
            "Client",
            name="user_role",
            native_enum=False,
            validate_strings=True,
        ),
        nullable=False,
        server_default="Client",
    )
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    commission_rate = db.Column(db.Float, nullable=True, default=40.0)
    product_commission_rate = db.Column(db.Float, nullable=True, default=5.0)
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)
    updated_at = db.Column(
        db.DateTime,
        nullable=False,
        default=utc_now,
        onupdate=utc_now,
    )

    auth_account = db.relationship("AuthAccount", back_populates="user", uselist=False)

    def to_dict_basic(self) -> dict[str, object]:
        return {
            "id": self.user_id,
            "name": self.name,
            "email": self.email,
            "role": self.role,
            "isActive": bool(self.is_active),
            "commissionRate": self.commission_rate,
            "productCommissionRate": self.product_commission_rate,
        }


class AuthAccount(db.Model):
    __tablename__ = "auth_accounts"

    user_id = db.Column(db.Integer, db.ForeignKey("users.user_id"), primary_key=True)
    password_hash = db.Column(db.String(255), nullable=False)
    last_login_at = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)
    updated_at = db.Column(db.DateTime, nullable=False, default=utc_now, onupdate=utc_now)

    user = db.relationship("User", back_populates="auth_account")


class Client(db.Model):
    """Walk-in or booking customers, identified by phone number."""

    __tablename__ = "clients"

    client_id = db.Column(db.Integer, primary_key=True)
    client_code = db.Column(db.String(50), unique=True, nullable=False)
    full_name = db.Column(db.String(150), nullable=False)
    phone_number = db.Column(db.String(30), unique=True, nullable=False)
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)
    updated_at = db.Column(db.DateTime, nullable=False, default=utc_now, onupdate=utc_now)

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.client_id,
            "clientId": self.client_code,
            "fullName": self.full_name,
            "phoneNumber": self.phone_number,
        }


class Package(db.Model):
    """Bookable services. Appointment prices are copied from here at booking time."""

    __tablename__ = "packages"

    package_id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(150), nullable=False)
    description = db.Column(db.Text)
    price = db.Column(db.Numeric(10, 2), nullable=False)
    duration = db.Column(db.Integer, nullable=False, default=30)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)
    updated_at = db.Column(db.DateTime, nullable=False, default=utc_now, onupdate=utc_now)

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.package_id,
            "name": self.name,
            "description": self.description,
            "price": money(self.price),
            "duration": self.duration,
            "isActive": bool(self.is_active),
        }


class DiscountCode(db.Model):
    __tablename__ = "discount_codes"

    discount_code_id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(50), unique=True, nullable=False)
    description = db.Column(db.Text)
    discount_type = db.Column(
        db.Enum(
            *DISCOUNT_TYPES,
            name="discount_type",
            native_enum=False,
            validate_strings=True,
        ),
        nullable=False,
        server_default="percentage",
    )
    discount_percent = db.Column(db.Float)
    discount_amount = db.Column(db.Numeric(10, 2))
    # Empty list means the code applies to every package
    applicable_packages = db.Column(db.JSON, nullable=False, default=list)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_by = db.Column(db.Integer, db.ForeignKey("users.user_id"), nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)
    updated_at = db.Column(db.DateTime, nullable=False, default=utc_now, onupdate=utc_now)

    creator = db.relationship("User")
    usages = db.relationship("DiscountCodeUsage", back_populates="discount_code")

    @property
    def applicable_package_ids(self) -> set[int]:
        return {int(pid) for pid in (self.applicable_packages or [])}

    def terms(self) -> dict[str, object]:
        return {
            "id": self.discount_code_id,
            "code": self.code,
            "description": self.description,
            "discountType": self.discount_type,
            "discountPercent": self.discount_percent,
            "discountAmount": money(self.discount_amount),
            "applicablePackages": sorted(self.applicable_package_ids),
        }

    def to_dict(self) -> dict[str, object]:
        payload = self.terms()
        payload.update({
            "isActive": bool(self.is_active),
            "createdBy": self.created_by,
            "usageCount": len(self.usages),
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
        })
        return payload


class Appointment(db.Model):
    __tablename__ = "appointments"

    appointment_id = db.Column(db.Integer, primary_key=True)
    client_id = db.Column(db.Integer, db.ForeignKey("clients.client_id"), nullable=False)
    package_id = db.Column(db.Integer, db.ForeignKey("packages.package_id"), nullable=False)
    barber_id = db.Column(
        db.Integer,
        db.ForeignKey("users.user_id", ondelete="SET NULL"),
        nullable=True,
    )
    status = db.Column(
        db.Enum(
            *APPOINTMENT_STATUSES,
            name="appointment_status",
            native_enum=False,
            validate_strings=True,
        ),
        nullable=False,
        server_default="pending",
    )
    # Null means walk-in; reports fall back to created_at
    appointment_date = db.Column(db.DateTime, nullable=True)
    notes = db.Column(db.Text)
    additional_packages = db.Column(db.JSON, nullable=False, default=list)
    original_price = db.Column(db.Numeric(10, 2))
    discount_code_id = db.Column(
        db.Integer,
        db.ForeignKey("discount_codes.discount_code_id"),
        nullable=True,
    )
    discount_amount = db.Column(db.Numeric(10, 2))
    final_price = db.Column(db.Numeric(10, 2))
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)
    updated_at = db.Column(
        db.DateTime,
        nullable=False,
        default=utc_now,
        onupdate=utc_now,
    )

    client = db.relationship("Client")
    package = db.relationship("Package")
    barber = db.relationship("User")
    discount_code = db.relationship("DiscountCode")
    discounts = db.relationship(
        "AppointmentDiscount",
        back_populates="appointment",
        cascade="all, delete-orphan",
    )

    @property
    def additional_package_ids(self) -> list[int]:
        return [int(pid) for pid in (self.additional_packages or [])]

    @property
    def commission_base(self) -> Decimal:
        """Price commission is earned on; rows from before original_price existed use final_price."""
        if self.original_price is not None:
            return Decimal(self.original_price)
        return Decimal(self.final_price or 0)

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.appointment_id,
            "clientId": self.client_id,
            "client": self.client.to_dict() if self.client else None,
            "packageId": self.package_id,
            "package": self.package.to_dict() if self.package else None,
            "barberId": self.barber_id,
            "barber": {
                "id": self.barber.user_id,
                "name": self.barber.name,
                "role": self.barber.role,
                "commissionRate": self.barber.commission_rate,
            } if self.barber else None,
            "additionalPackages": self.additional_package_ids,
            "status": self.status,
            "appointmentDate": _iso(self.appointment_date),
            "notes": self.notes,
            "originalPrice": money(self.original_price),
            "discountCodeId": self.discount_code_id,
            "discountCode": self.discount_code.code if self.discount_code else None,
            "discountAmount": money(self.discount_amount),
            "appliedDiscounts": [d.to_dict() for d in self.discounts],
            "finalPrice": money(self.final_price),
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
        }


class AppointmentDiscount(db.Model):
    """One row per code when several discounts are stacked on an appointment."""

    __tablename__ = "appointment_discounts"
    __table_args__ = (
        db.UniqueConstraint("appointment_id", "discount_code_id", name="uq_appointment_discount_code"),
    )

    appointment_discount_id = db.Column(db.Integer, primary_key=True)
    appointment_id = db.Column(
        db.Integer,
        db.ForeignKey("appointments.appointment_id", ondelete="CASCADE"),
        nullable=False,
    )
    discount_code_id = db.Column(
        db.Integer,
        db.ForeignKey("discount_codes.discount_code_id"),
        nullable=False,
    )
    applied_to_packages = db.Column(db.JSON, nullable=False, default=list)
    discount_amount = db.Column(db.Numeric(10, 2), nullable=False)
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)

    appointment = db.relationship("Appointment", back_populates="discounts")
    discount_code = db.relationship("DiscountCode")

    def to_dict(self) -> dict[str, object]:
        return {
            "discountCodeId": self.discount_code_id,
            "code": self.discount_code.code if self.discount_code else None,
            "appliedToPackages": [int(pid) for pid in (self.applied_to_packages or [])],
            "discountAmount": money(self.discount_amount),
        }


class DiscountCodeUsage(db.Model):
    """Single-use ledger: one row per (code, client)."""

    __tablename__ = "discount_code_usages"
    __table_args__ = (
        db.UniqueConstraint("discount_code_id", "client_id", name="uq_discount_usage_code_client"),
    )

    usage_id = db.Column(db.Integer, primary_key=True)
    discount_code_id = db.Column(
        db.Integer,
        db.ForeignKey("discount_codes.discount_code_id"),
        nullable=False,
    )
    client_id = db.Column(db.Integer, db.ForeignKey("clients.client_id"), nullable=False)
    appointment_id = db.Column(
        db.Integer,
        db.ForeignKey("appointments.appointment_id", ondelete="CASCADE"),
        nullable=True,
    )
    used_at = db.Column(db.DateTime, nullable=False, default=utc_now)

    discount_code = db.relationship("DiscountCode", back_populates="usages")
    client = db.relationship("Client")


class Product(db.Model):
    __tablename__ = "products"

    product_id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text)
    price = db.Column(db.Numeric(10, 2), nullable=False)
    # Null stock means the shop does not track inventory for this product
    stock = db.Column(db.Integer, nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)
    updated_at = db.Column(db.DateTime, nullable=False, default=utc_now, onupdate=utc_now)

    sales = db.relationship("ProductSale", back_populates="product")

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.product_id,
            "name": self.name,
            "description": self.description,
            "price": money(self.price),
            "stock": self.stock,
            "isActive": bool(self.is_active),
        }


class ProductSale(db.Model):
    __tablename__ = "product_sales"

    sale_id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.product_id"), nullable=False)
    staff_id = db.Column(db.Integer, db.ForeignKey("users.user_id"), nullable=False)
    client_id = db.Column(db.Integer, db.ForeignKey("clients.client_id"), nullable=True)
    quantity = db.Column(db.Integer, nullable=False)
    unit_price = db.Column(db.Numeric(10, 2), nullable=False)
    total_price = db.Column(db.Numeric(10, 2), nullable=False)
    commission_rate = db.Column(db.Float, nullable=False)
    commission_amount = db.Column(db.Numeric(10, 2), nullable=False)
    notes = db.Column(db.Text)
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)

    product = db.relationship("Product", back_populates="sales")
    staff = db.relationship("User")
    client = db.relationship("Client")

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.sale_id,
            "productId": self.product_id,
            "product": self.product.to_dict() if self.product else None,
            "staffId": self.staff_id,
            "staff": {"id": self.staff.user_id, "name": self.staff.name} if self.staff else None,
            "clientId": self.client_id,
            "quantity": self.quantity,
            "unitPrice": money(self.unit_price),
            "totalPrice": money(self.total_price),
            "commissionRate": self.commission_rate,
            "commissionAmount": money(self.commission_amount),
            "notes": self.notes,
            "createdAt": _iso(self.created_at),
        }


class Expense(db.Model):
    __tablename__ = "expenses"

    expense_id = db.Column(db.Integer, primary_key=True)
    category = db.Column(db.String(100), nullable=False)
    description = db.Column(db.Text, nullable=False)
    amount = db.Column(db.Numeric(10, 2), nullable=False)
    date = db.Column(db.DateTime, nullable=False, default=utc_now)
    created_by = db.Column(db.Integer, db.ForeignKey("users.user_id"), nullable=False)
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)

    creator = db.relationship("User")

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.expense_id,
            "category": self.category,
            "description": self.description,
            "amount": money(self.amount),
            "date": _iso(self.date),
            "createdBy": self.creator.name if self.creator else None,
        }
