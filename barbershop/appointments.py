"""Appointment lifecycle: booking, status changes, edits and deletion.

Prices are never patched by callers. Every change to the package set or to
the discounts recomputes ``original_price``, ``discount_amount`` and
``final_price`` from the packages and reconciles the discount ledger in the
same database transaction.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal

from .discounts import (DiscountMode, DiscountRequest, PreparedDiscount,
                        clear_discount_prices, prepare_discount,
                        prepare_multiple_discounts, record_discount,
                        record_multiple_discounts, remove_discount)
from .errors import (InvalidTransition, NotFoundError, PermissionDenied,
                     ValidationError)
from .extensions import db
from .models import (APPOINTMENT_STATUSES, STAFF_ROLES, Appointment, Client,
                     Package, User)
from .pricing import compute_original_price
from .validators import (parse_datetime, parse_id, parse_id_list,
                         parse_optional_id, parse_text)

logger = logging.getLogger(__name__)

# Walk-ins go straight from pending to completed
ALLOWED_TRANSITIONS: dict[str, frozenset[str]] = {
    "pending": frozenset({"confirmed", "completed", "cancelled"}),
    "confirmed": frozenset({"completed", "cancelled"}),
    "completed": frozenset(),
    "cancelled": frozenset(),
}


class _Unset:
    def __repr__(self) -> str:
        return "UNSET"

    def __bool__(self) -> bool:
        return False


UNSET = _Unset()


@dataclass
class DiscountSelection:
    """Which discounts an appointment should carry. ``mode=None`` means none.

    ``carried`` marks discounts read back from an existing appointment rather
    than requested by the caller.
    """

    mode: DiscountMode | None = None
    code: str | None = None
    discount_code_id: int | None = None
    requests: list[DiscountRequest] = field(default_factory=list)
    carried: bool = False

    @classmethod
    def from_payload(cls, payload: dict) -> "DiscountSelection | _Unset":
        single_keys = [key for key in ("discountCode", "discountCodeId") if key in payload]
        multi_key = next((key for key in ("multipleDiscountCodes", "discountCodes") if key in payload), None)

        if payload.get("removeDiscount"):
            return cls()
        if not single_keys and multi_key is None:
            return UNSET

        single_value = next((payload[key] for key in single_keys if payload[key] not in (None, "")), None)
        multi_value = payload.get(multi_key) if multi_key else None

        if single_value is not None and multi_value:
            raise ValidationError(
                "Use either a single discount code or multiple discount codes, not both",
                error="conflicting_discounts",
            )

        if multi_value:
            if not isinstance(multi_value, list):
                raise ValidationError(f"{multi_key} must be a list")
            return cls(
                mode=DiscountMode.MULTI_CODE,
                requests=[DiscountRequest.from_payload(item) for item in multi_value],
            )

        if single_value is not None:
            if "discountCode" in single_keys and payload.get("discountCode") not in (None, ""):
                return cls(mode=DiscountMode.SINGLE_USE, code=str(payload["discountCode"]))
            return cls(
                mode=DiscountMode.SINGLE_USE,
                discount_code_id=parse_id(payload["discountCodeId"], "discountCodeId"),
            )

        # Keys present but empty: clear the discount
        return cls()

    @classmethod
    def from_appointment(cls, appointment: Appointment, package_ids: set[int]) -> "DiscountSelection":
        """The discounts an appointment already carries, for repricing after a package change.

        Codes deactivated since they were applied stay on the appointment.
        """
        if appointment.discount_code_id is not None:
            return cls(mode=DiscountMode.SINGLE_USE, discount_code_id=appointment.discount_code_id, carried=True)
        if appointment.discounts:
            requests = []
            for row in appointment.discounts:
                kept = [pid for pid in (row.applied_to_packages or []) if pid in package_ids]
                requests.append(DiscountRequest(code=row.discount_code.code, applied_to_packages=kept or None))
            return cls(mode=DiscountMode.MULTI_CODE, requests=requests, carried=True)
        return cls()


@dataclass
class CreateAppointmentInput:
    client_id: int
    package_id: int
    barber_id: int | None = None
    additional_packages: list[int] = field(default_factory=list)
    appointment_date: datetime | None = None
    notes: str | None = None
    discount: DiscountSelection = field(default_factory=DiscountSelection)

    @classmethod
    def from_payload(cls, payload: dict) -> "CreateAppointmentInput":
        if not payload.get("clientId") or not payload.get("packageId"):
            raise ValidationError("Client ID and Package ID are required", error="missing_fields")

        discount = DiscountSelection.from_payload(payload)
        return cls(
            client_id=parse_id(payload.get("clientId"), "clientId"),
            package_id=parse_id(payload.get("packageId"), "packageId"),
            barber_id=parse_optional_id(payload.get("barberId"), "barberId"),
            additional_packages=parse_id_list(payload.get("additionalPackages"), "additionalPackages"),
            appointment_date=parse_datetime(payload.get("appointmentDate"), "appointmentDate"),
            notes=parse_text(payload.get("notes"), "notes"),
            discount=discount if isinstance(discount, DiscountSelection) else DiscountSelection(),
        )


@dataclass
class UpdateAppointmentInput:
    """Body of ``PUT /appointments/<id>``: status, barber, notes, date and discounts."""

    status: str | None = None
    barber_id: int | None | _Unset = UNSET
    appointment_date: datetime | None | _Unset = UNSET
    notes: str | None | _Unset = UNSET
    discount: DiscountSelection | _Unset = UNSET

    @classmethod
    def from_payload(cls, payload: dict) -> "UpdateAppointmentInput":
        status = payload.get("status") or None
        if status is not None and status not in APPOINTMENT_STATUSES:
            raise ValidationError(
                f"Status must be one of: {', '.join(APPOINTMENT_STATUSES)}",
                error="invalid_status",
            )
        return cls(
            status=status,
            barber_id=parse_optional_id(payload["barberId"], "barberId") if "barberId" in payload else UNSET,
            appointment_date=(
                parse_datetime(payload["appointmentDate"], "appointmentDate")
                if payload.get("appointmentDate")
                else UNSET
            ),
            notes=parse_text(payload["notes"], "notes") if "notes" in payload else UNSET,
            discount=DiscountSelection.from_payload(payload),
        )


@dataclass
class EditAppointmentInput(UpdateAppointmentInput):
    """Body of ``PATCH /appointments/<id>``: everything a full edit may change."""

    package_id: int | _Unset = UNSET
    additional_packages: list[int] | _Unset = UNSET

    @classmethod
    def from_payload(cls, payload: dict) -> "EditAppointmentInput":
        base = UpdateAppointmentInput.from_payload(payload)
        return cls(
            status=base.status,
            barber_id=base.barber_id,
            appointment_date=base.appointment_date,
            notes=base.notes,
            discount=base.discount,
            package_id=parse_id(payload["packageId"], "packageId") if "packageId" in payload else UNSET,
            additional_packages=(
                parse_id_list(payload["additionalPackages"], "additionalPackages")
                if "additionalPackages" in payload
                else UNSET
            ),
        )


# --- Lookups -----------------------------------------------------------------

def get_appointment(appointment_id: int) -> Appointment:
    appointment = db.session.get(Appointment, appointment_id)
    if appointment is None:
        raise NotFoundError("Appointment", "No appointment found with the specified ID")
    return appointment


def list_appointments() -> list[Appointment]:
    return Appointment.query.order_by(Appointment.created_at.desc()).all()


def list_client_appointments(client_id: int) -> list[Appointment]:
    return (
        Appointment.query.filter_by(client_id=client_id)
        .order_by(Appointment.created_at.desc())
        .all()
    )


def _get_client(client_id: int) -> Client:
    client = db.session.get(Client, client_id)
    if client is None:
        raise NotFoundError("Client", "No client found with the specified ID")
    return client


def _get_package(package_id: int) -> Package:
    package = db.session.get(Package, package_id)
    if package is None:
        raise NotFoundError("Package", "No package found with the specified ID")
    return package


def _get_barber(barber_id: int) -> User:
    barber = User.query.filter(
        User.user_id == barber_id,
        User.role.in_(STAFF_ROLES),
        User.is_active.is_(True),
    ).first()
    if barber is None:
        raise NotFoundError("Barber", "No active barber found with the specified ID")
    return barber


def _require_staff(acting_user: User | None, message: str) -> User:
    if acting_user is None or acting_user.role not in STAFF_ROLES:
        raise PermissionDenied(message)
    return acting_user


# --- Pricing -----------------------------------------------------------------

@dataclass
class _PricePlan:
    base_package: Package
    additional_ids: list[int]
    original_price: Decimal
    additional: list[Package]
    selection: DiscountSelection
    single: PreparedDiscount | None = None
    multi: list[PreparedDiscount] = field(default_factory=list)


def _plan_prices(
    base_package: Package,
    additional_ids: list[int],
    selection: DiscountSelection,
    client_id: int,
    appointment_id: int | None = None,
) -> _PricePlan:
    """Resolve packages and validate discounts without writing anything."""
    original_price, additional = compute_original_price(base_package, additional_ids)
    plan = _PricePlan(
        base_package=base_package,
        additional_ids=additional_ids,
        original_price=original_price,
        additional=additional,
        selection=selection,
    )
    packages = [base_package, *additional]

    if selection.mode is DiscountMode.SINGLE_USE:
        plan.single = prepare_discount(
            selection.code,
            client_id,
            original_price,
            packages,
            discount_code_id=selection.discount_code_id,
            exclude_appointment_id=appointment_id,
            allow_inactive=selection.carried,
        )
    elif selection.mode is DiscountMode.MULTI_CODE:
        plan.multi = prepare_multiple_discounts(
            selection.requests, original_price, base_package, additional, allow_inactive=selection.carried
        )
    return plan


def _apply_plan(appointment: Appointment, plan: _PricePlan) -> None:
    """Write a validated price plan onto a flushed appointment."""
    remove_discount(appointment)
    appointment.package_id = plan.base_package.package_id
    appointment.additional_packages = list(plan.additional_ids)

    if plan.single is not None:
        record_discount(appointment, plan.single, appointment.client_id, plan.original_price)
    elif plan.multi:
        record_multiple_discounts(appointment, plan.multi, plan.original_price)
    else:
        clear_discount_prices(appointment, plan.original_price)


# --- Operations --------------------------------------------------------------

def create_appointment(data: CreateAppointmentInput) -> Appointment:
    client = _get_client(data.client_id)
    package = _get_package(data.package_id)
    if data.barber_id is not None:
        _get_barber(data.barber_id)

    plan = _plan_prices(package, data.additional_packages, data.discount, client.client_id)

    appointment = Appointment(
        client_id=client.client_id,
        package_id=package.package_id,
        barber_id=data.barber_id,
        appointment_date=data.appointment_date,
        notes=data.notes,
        additional_packages=list(data.additional_packages),
        status="pending",
    )
    db.session.add(appointment)
    db.session.flush()

    _apply_plan(appointment, plan)
    logger.info(
        "Appointment %s booked for client %s: original=%s final=%s",
        appointment.appointment_id,
        client.client_id,
        appointment.original_price,
        appointment.final_price,
    )
    return appointment


def _check_transition(appointment: Appointment, new_status: str) -> None:
    if new_status not in APPOINTMENT_STATUSES:
        raise ValidationError(
            f"Status must be one of: {', '.join(APPOINTMENT_STATUSES)}",
            error="invalid_status",
        )
    current = appointment.status
    if new_status == current:
        return
    if new_status not in ALLOWED_TRANSITIONS[current]:
        raise InvalidTransition(f"Cannot change status of a {current} appointment to {new_status}")


def _apply_changes(
    appointment: Appointment,
    data: UpdateAppointmentInput,
    acting_user: User | None,
    plan: _PricePlan | None,
) -> Appointment:
    if data.status is not None:
        _check_transition(appointment, data.status)

    new_barber_id: int | None | _Unset = UNSET
    if data.barber_id is not UNSET:
        _require_staff(acting_user, "Only Boss and Staff can change barber assignments")
        if data.barber_id is not None:
            _get_barber(data.barber_id)
        new_barber_id = data.barber_id

    # Validation is complete; everything below writes
    if plan is not None:
        _apply_plan(appointment, plan)

    if new_barber_id is not UNSET:
        appointment.barber_id = new_barber_id

    if data.appointment_date is not UNSET:
        appointment.appointment_date = data.appointment_date
    if data.notes is not UNSET:
        appointment.notes = data.notes

    if data.status is not None and data.status != appointment.status:
        completing = data.status == "completed"
        appointment.status = data.status
        # The barber on a completed job is whoever completed it, unless one was already set
        if (
            completing
            and appointment.barber_id is None
            and acting_user is not None
            and acting_user.role in STAFF_ROLES
        ):
            appointment.barber_id = acting_user.user_id
            logger.info(
                "Auto-assigned user %s as barber of appointment %s on completion",
                acting_user.user_id,
                appointment.appointment_id,
            )
        logger.info("Appointment %s is now %s", appointment.appointment_id, appointment.status)

    db.session.flush()
    return appointment


def update_appointment(
    appointment_id: int,
    data: UpdateAppointmentInput,
    acting_user: User | None,
) -> Appointment:
    appointment = get_appointment(appointment_id)

    plan = None
    if isinstance(data.discount, DiscountSelection):
        plan = _plan_prices(
            appointment.package,
            appointment.additional_package_ids,
            data.discount,
            appointment.client_id,
            appointment.appointment_id,
        )
    return _apply_changes(appointment, data, acting_user, plan)


def edit_appointment(
    appointment_id: int,
    data: EditAppointmentInput,
    acting_user: User | None,
) -> Appointment:
    _require_staff(acting_user, "Only Boss and Staff can edit appointments")
    appointment = get_appointment(appointment_id)

    packages_changed = data.package_id is not UNSET or data.additional_packages is not UNSET
    plan = None
    if packages_changed or isinstance(data.discount, DiscountSelection):
        base_package = (
            _get_package(data.package_id) if data.package_id is not UNSET else appointment.package
        )
        additional_ids = (
            list(data.additional_packages)
            if data.additional_packages is not UNSET
            else appointment.additional_package_ids
        )
        if isinstance(data.discount, DiscountSelection):
            selection = data.discount
        else:
            selection = DiscountSelection.from_appointment(
                appointment, {base_package.package_id, *additional_ids}
            )
        plan = _plan_prices(
            base_package,
            additional_ids,
            selection,
            appointment.client_id,
            appointment.appointment_id,
        )
    return _apply_changes(appointment, data, acting_user, plan)


def delete_appointment(appointment_id: int, acting_user: User | None) -> None:
    if acting_user is None or acting_user.role != "Boss":
        raise PermissionDenied("Only Boss can delete appointments")
    appointment = get_appointment(appointment_id)
    remove_discount(appointment)
    db.session.delete(appointment)
    db.session.flush()
    logger.info("Appointment %s deleted by user %s", appointment_id, acting_user.user_id)
