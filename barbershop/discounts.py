"""Discount codes and the usage ledger.

Two policies share the same discount codes:

* ``DiscountMode.SINGLE_USE`` is the original single-code path. Each client
  may redeem a code once; redemptions are rows in ``discount_code_usages``
  guarded by a unique (code, client) constraint.
* ``DiscountMode.MULTI_CODE`` stacks several codes on one appointment. Rows
  live in ``appointment_discounts`` and the same client may reuse a code on
  later appointments.

Validation always runs before anything is written, so a rejected code never
leaves a partial discount behind.
"""
from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Sequence

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError

from .errors import (ConflictError, DiscountAlreadyUsed, DiscountNotFound,
                     NotFoundError, ValidationError)
from .extensions import db
from .models import (DISCOUNT_TYPES, Appointment, AppointmentDiscount, Client,
                     DiscountCode, DiscountCodeUsage, Package, User)
from .pricing import (DiscountBreakdown, compute_discount, compute_final_price,
                      quantize, resolve_packages, to_decimal)
from .validators import parse_decimal, parse_id, parse_id_list, parse_text

logger = logging.getLogger(__name__)


class DiscountMode(str, enum.Enum):
    SINGLE_USE = "single_use"
    MULTI_CODE = "multi_code"


@dataclass
class DiscountRequest:
    """A code requested in multi-code mode, optionally aimed at specific packages."""

    code: str
    applied_to_packages: list[int] | None = None

    @classmethod
    def from_payload(cls, item: object) -> "DiscountRequest":
        if isinstance(item, str):
            return cls(code=item)
        if not isinstance(item, dict) or not item.get("code"):
            raise ValidationError("Each discount entry needs a code")
        applied = item.get("appliedToPackages")
        return cls(
            code=str(item["code"]),
            applied_to_packages=None if applied is None else parse_id_list(applied, "appliedToPackages"),
        )


@dataclass
class PreparedDiscount:
    discount_code: DiscountCode
    breakdown: DiscountBreakdown


def normalize_code(code: object) -> str:
    if not isinstance(code, str) or not code.strip():
        raise ValidationError("Discount code is required")
    return code.strip().upper()


def find_discount_code(
    code: str | None = None,
    discount_code_id: int | None = None,
    *,
    allow_inactive: bool = False,
) -> DiscountCode:
    """Look up an active discount code by its text or id.

    ``allow_inactive`` is for codes already applied to an appointment, which
    stay in effect when the appointment is repriced after deactivation.
    """
    if discount_code_id is not None:
        discount_code = db.session.get(DiscountCode, discount_code_id)
    else:
        discount_code = DiscountCode.query.filter_by(code=normalize_code(code)).first()

    if discount_code is None:
        raise DiscountNotFound("The discount code you entered is not valid")
    if not discount_code.is_active and not allow_inactive:
        raise DiscountNotFound("This discount code is no longer active")
    return discount_code


def has_used(discount_code_id: int, client_id: int, exclude_appointment_id: int | None = None) -> bool:
    """True when the client already holds a single-use redemption of the code.

    A redemption attached to ``exclude_appointment_id`` does not count, so an
    appointment can be repriced with the code it already carries.
    """
    query = DiscountCodeUsage.query.filter_by(discount_code_id=discount_code_id, client_id=client_id)
    if exclude_appointment_id is not None:
        query = query.filter(
            or_(
                DiscountCodeUsage.appointment_id.is_(None),
                DiscountCodeUsage.appointment_id != exclude_appointment_id,
            )
        )
    return query.first() is not None


def ensure_not_used(
    discount_code: DiscountCode,
    client_id: int,
    exclude_appointment_id: int | None = None,
) -> None:
    if has_used(discount_code.discount_code_id, client_id, exclude_appointment_id):
        logger.warning(
            "Rejected reuse of discount code %s by client %s",
            discount_code.code,
            client_id,
        )
        raise DiscountAlreadyUsed(f"Client has already used discount code {discount_code.code}")


def _set_prices(appointment: Appointment, original_price: Decimal, discount_amount: Decimal | None) -> None:
    original_price = quantize(to_decimal(original_price))
    if discount_amount is None:
        appointment.original_price = original_price
        appointment.discount_amount = None
        appointment.final_price = original_price
        return
    # Stacked or fixed discounts never push the bill below zero
    discount_amount = min(quantize(to_decimal(discount_amount)), original_price)
    appointment.original_price = original_price
    appointment.discount_amount = discount_amount
    appointment.final_price = compute_final_price(original_price, discount_amount)


def clear_discount_prices(appointment: Appointment, original_price: Decimal) -> None:
    appointment.discount_code_id = None
    _set_prices(appointment, original_price, None)


# --- Single-use path ---------------------------------------------------------

def prepare_discount(
    code: str | None,
    client_id: int,
    original_price: Decimal,
    packages: Sequence[Package],
    *,
    discount_code_id: int | None = None,
    exclude_appointment_id: int | None = None,
    allow_inactive: bool = False,
) -> PreparedDiscount:
    discount_code = find_discount_code(
        code=code, discount_code_id=discount_code_id, allow_inactive=allow_inactive
    )
    ensure_not_used(discount_code, client_id, exclude_appointment_id)
    breakdown = compute_discount(discount_code, original_price, packages)
    return PreparedDiscount(discount_code=discount_code, breakdown=breakdown)


def record_discount(
    appointment: Appointment,
    prepared: PreparedDiscount,
    client_id: int,
    original_price: Decimal,
) -> DiscountCodeUsage:
    """Write the usage row and discounted prices. The appointment must already be flushed."""
    # The session is unusable after a failed flush, so read the code up front
    code_text = prepared.discount_code.code
    discount_code_id = prepared.discount_code.discount_code_id
    appointment.discount_code_id = discount_code_id
    _set_prices(appointment, original_price, prepared.breakdown.discount_amount)

    usage = DiscountCodeUsage(
        discount_code_id=discount_code_id,
        client_id=client_id,
        appointment_id=appointment.appointment_id,
    )
    db.session.add(usage)
    try:
        db.session.flush()
    except IntegrityError:
        # A concurrent request redeemed the same code between our check and insert
        db.session.rollback()
        logger.warning("Duplicate usage insert for discount code %s and client %s", code_text, client_id)
        raise DiscountAlreadyUsed(f"Client has already used discount code {code_text}") from None

    logger.info(
        "Applied discount %s to appointment %s: -%s",
        code_text,
        appointment.appointment_id,
        appointment.discount_amount,
    )
    return usage


def apply_discount(
    code: str,
    client_id: int,
    appointment: Appointment,
    packages: Sequence[Package],
) -> DiscountCodeUsage:
    prepared = prepare_discount(code, client_id, appointment.original_price, packages)
    return record_discount(appointment, prepared, client_id, appointment.original_price)


# --- Multi-code path ---------------------------------------------------------

def prepare_multiple_discounts(
    requests: Sequence[DiscountRequest],
    original_price: Decimal,
    base_package: Package,
    additional_packages: Sequence[Package],
    *,
    allow_inactive: bool = False,
) -> list[PreparedDiscount]:
    """Validate every requested code; nothing is written if any one fails."""
    packages = [base_package, *additional_packages]
    involved_ids = {pkg.package_id for pkg in packages}
    prepared: list[PreparedDiscount] = []
    seen: set[int] = set()

    for request_item in requests:
        discount_code = find_discount_code(code=request_item.code, allow_inactive=allow_inactive)
        if discount_code.discount_code_id in seen:
            raise ValidationError(
                f"Discount code {discount_code.code} is listed more than once",
                error="duplicate_discount_code",
            )
        seen.add(discount_code.discount_code_id)

        subset = request_item.applied_to_packages
        if subset is not None:
            unknown = set(subset) - involved_ids
            if unknown:
                raise ValidationError(
                    f"Discount code {discount_code.code} targets packages not on this appointment: "
                    f"{sorted(unknown)}"
                )
        breakdown = compute_discount(discount_code, original_price, packages, subset)
        prepared.append(PreparedDiscount(discount_code=discount_code, breakdown=breakdown))

    return prepared


def record_multiple_discounts(
    appointment: Appointment,
    prepared: Sequence[PreparedDiscount],
    original_price: Decimal,
) -> tuple[list[AppointmentDiscount], Decimal]:
    applied: list[AppointmentDiscount] = []
    total = Decimal("0")
    for item in prepared:
        row = AppointmentDiscount(
            discount_code_id=item.discount_code.discount_code_id,
            applied_to_packages=item.breakdown.applied_to_packages,
            discount_amount=item.breakdown.discount_amount,
        )
        appointment.discounts.append(row)
        applied.append(row)
        total += item.breakdown.discount_amount

    appointment.discount_code_id = None
    _set_prices(appointment, original_price, total if prepared else None)
    db.session.flush()

    logger.info(
        "Applied %d stacked discount(s) to appointment %s: -%s",
        len(applied),
        appointment.appointment_id,
        appointment.discount_amount,
    )
    return applied, total


def apply_multiple_discounts(
    appointment: Appointment,
    requests: Sequence[DiscountRequest],
    client_id: int,
    base_package: Package,
    additional_packages: Sequence[Package],
) -> tuple[list[AppointmentDiscount], Decimal]:
    """Stack several codes on one appointment, all or nothing.

    ``client_id`` is accepted for symmetry with the single-use path; multi-code
    mode deliberately does not consult the per-client ledger.
    """
    prepared = prepare_multiple_discounts(
        requests, appointment.original_price, base_package, additional_packages
    )
    logger.debug("Client %s stacking codes %s", client_id, [p.discount_code.code for p in prepared])
    return record_multiple_discounts(appointment, prepared, appointment.original_price)


# --- Removal -----------------------------------------------------------------

def remove_discount(appointment: Appointment) -> int:
    """Drop every ledger row tied to the appointment and clear its discount fields.

    Returns the number of rows removed. Prices are left for the caller to
    recompute.
    """
    removed = 0
    if appointment.appointment_id is not None:
        usages = DiscountCodeUsage.query.filter_by(appointment_id=appointment.appointment_id).all()
        for usage in usages:
            db.session.delete(usage)
            removed += 1

    removed += len(appointment.discounts)
    appointment.discounts.clear()
    appointment.discount_code_id = None
    appointment.discount_amount = None

    # Deletes must reach the database before a replacement row for the same
    # (code, client) pair is inserted
    db.session.flush()
    if removed:
        logger.info("Removed %d discount record(s) from appointment %s", removed, appointment.appointment_id)
    return removed


# --- Public validation -------------------------------------------------------

def validate_code(code: object, client_id: object) -> dict[str, object]:
    """Check a code for a client without consuming it."""
    if not code or not client_id:
        raise ValidationError("Code and client ID are required", error="missing_fields")
    parsed_client_id = parse_id(client_id, "clientId")
    if db.session.get(Client, parsed_client_id) is None:
        raise NotFoundError("Client", "No client found with the specified ID")

    discount_code = find_discount_code(code=str(code))
    payload = discount_code.terms()
    payload["alreadyUsed"] = has_used(discount_code.discount_code_id, parsed_client_id)
    return payload


# --- Administration ----------------------------------------------------------

def _validate_terms(discount_type: str, percent: object, amount: object) -> tuple[float | None, Decimal | None]:
    if discount_type not in DISCOUNT_TYPES:
        raise ValidationError(
            'Discount type must be either "percentage" or "fixed_amount"',
            error="invalid_discount_type",
        )
    if discount_type == "percentage":
        if percent is None:
            raise ValidationError("Discount percentage must be between 0 and 100", error="invalid_discount_percent")
        value = parse_decimal(percent, "discountPercent")
        if value <= 0 or value > 100:
            raise ValidationError("Discount percentage must be between 0 and 100", error="invalid_discount_percent")
        return float(value), None

    if amount is None:
        raise ValidationError("Discount amount must be greater than 0", error="invalid_discount_amount")
    value = parse_decimal(amount, "discountAmount")
    if value <= 0:
        raise ValidationError("Discount amount must be greater than 0", error="invalid_discount_amount")
    return None, quantize(value)


def _validate_applicable(value: object) -> list[int]:
    package_ids = parse_id_list(value, "applicablePackages")
    unique_ids = list(dict.fromkeys(package_ids))
    resolve_packages(unique_ids)
    return unique_ids


def _ensure_code_free(code: str, exclude_id: int | None = None) -> None:
    existing = DiscountCode.query.filter_by(code=code).first()
    if existing is not None and existing.discount_code_id != exclude_id:
        raise ConflictError("A discount code with this name already exists", error="code_exists")


def list_discount_codes() -> list[DiscountCode]:
    return DiscountCode.query.order_by(DiscountCode.created_at.desc()).all()


def get_discount_code(discount_code_id: int) -> DiscountCode:
    discount_code = db.session.get(DiscountCode, discount_code_id)
    if discount_code is None:
        raise NotFoundError("Discount code", "No discount code found with the specified ID")
    return discount_code


def create_discount_code(payload: dict, creator: User) -> DiscountCode:
    code = normalize_code(payload.get("code"))
    discount_type = payload.get("discountType") or "percentage"
    percent, amount = _validate_terms(discount_type, payload.get("discountPercent"), payload.get("discountAmount"))
    applicable = _validate_applicable(payload.get("applicablePackages"))
    _ensure_code_free(code)

    discount_code = DiscountCode(
        code=code,
        description=parse_text(payload.get("description"), "description"),
        discount_type=discount_type,
        discount_percent=percent,
        discount_amount=amount,
        applicable_packages=applicable,
        created_by=creator.user_id,
    )
    db.session.add(discount_code)
    db.session.flush()
    logger.info("Discount code %s created by user %s", code, creator.user_id)
    return discount_code


def update_discount_code(discount_code_id: int, payload: dict) -> DiscountCode:
    discount_code = get_discount_code(discount_code_id)

    if payload.get("code"):
        code = normalize_code(payload["code"])
        _ensure_code_free(code, exclude_id=discount_code.discount_code_id)
        discount_code.code = code

    if "description" in payload:
        discount_code.description = parse_text(payload.get("description"), "description")

    touches_terms = any(key in payload for key in ("discountType", "discountPercent", "discountAmount"))
    if touches_terms:
        discount_type = payload.get("discountType") or discount_code.discount_type
        percent = payload.get("discountPercent", discount_code.discount_percent)
        amount = payload.get("discountAmount", discount_code.discount_amount)
        discount_code.discount_type = discount_type
        discount_code.discount_percent, discount_code.discount_amount = _validate_terms(
            discount_type, percent, amount
        )

    if "applicablePackages" in payload:
        discount_code.applicable_packages = _validate_applicable(payload.get("applicablePackages"))

    if "isActive" in payload:
        discount_code.is_active = bool(payload.get("isActive"))

    db.session.flush()
    return discount_code


def toggle_discount_code(discount_code_id: int) -> DiscountCode:
    discount_code = get_discount_code(discount_code_id)
    discount_code.is_active = not discount_code.is_active
    db.session.flush()
    logger.info(
        "Discount code %s %s",
        discount_code.code,
        "activated" if discount_code.is_active else "deactivated",
    )
    return discount_code


def delete_discount_code(discount_code_id: int) -> None:
    discount_code = get_discount_code(discount_code_id)
    used = len(discount_code.usages) + AppointmentDiscount.query.filter_by(
        discount_code_id=discount_code_id
    ).count()
    if used:
        raise ConflictError(
            "This discount code has been used and cannot be deleted. You can deactivate it instead.",
            error="discount_code_in_use",
        )
    db.session.delete(discount_code)
    db.session.flush()
