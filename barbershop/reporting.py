"""Financial reporting over completed appointments, product sales and expenses.

Commission on services is always earned on an appointment's original price,
so discounts come out of the shop's share and not the barber's. When an
appointment bundles several packages, revenue and commission are split
between them in proportion to their list prices.
"""
from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal

from flask import current_app
from sqlalchemy import and_, or_
from sqlalchemy.orm import joinedload

from .errors import NotFoundError, PermissionDenied, ValidationError
from .extensions import db
from .models import (STAFF_ROLES, Appointment, Expense, Package, ProductSale,
                     User)
from .pricing import ZERO, quantize, split_by_list_price, to_decimal
from .validators import parse_datetime, parse_decimal, parse_rate, parse_text

logger = logging.getLogger(__name__)

RECENT_APPOINTMENT_LIMIT = 10


@dataclass(frozen=True)
class DateRange:
    """Inclusive bounds as naive UTC datetimes, matching how timestamps are stored."""

    start: datetime
    end: datetime

    def to_dict(self) -> dict[str, str]:
        return {
            "startDate": self.start.replace(tzinfo=timezone.utc).isoformat(),
            "endDate": self.end.replace(tzinfo=timezone.utc).isoformat(),
        }


def business_tz() -> timezone:
    return timezone(timedelta(hours=current_app.config.get("BUSINESS_UTC_OFFSET_HOURS", 8.0)))


def _parse_day(value: str, field: str) -> date:
    try:
        return date.fromisoformat(value[:10])
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be a date in YYYY-MM-DD format", error="invalid_date") from None


def parse_date_range(start_date: str | None, end_date: str | None, *, required: bool = False) -> DateRange | None:
    """Turn two calendar days in the shop's timezone into a UTC range covering both days entirely."""
    if not start_date and not end_date:
        if required:
            raise ValidationError("Start date and end date are required", error="missing_fields")
        return None
    if not start_date or not end_date:
        raise ValidationError("Start date and end date must be given together", error="invalid_date")

    first = _parse_day(start_date, "startDate")
    last = _parse_day(end_date, "endDate")
    if last < first:
        raise ValidationError("endDate must not be before startDate", error="invalid_date")

    tz = business_tz()
    start = datetime.combine(first, time.min, tzinfo=tz).astimezone(timezone.utc)
    end = datetime.combine(last, time.max, tzinfo=tz).astimezone(timezone.utc)
    return DateRange(start=start.replace(tzinfo=None), end=end.replace(tzinfo=None))


def local_day(value: datetime) -> date:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(business_tz()).date()


def appointment_in_range(date_range: DateRange):
    """Scheduled appointments count on their date; walk-ins count on the day they were created."""
    return or_(
        and_(
            Appointment.appointment_date.isnot(None),
            Appointment.appointment_date >= date_range.start,
            Appointment.appointment_date <= date_range.end,
        ),
        and_(
            Appointment.appointment_date.is_(None),
            Appointment.created_at >= date_range.start,
            Appointment.created_at <= date_range.end,
        ),
    )


def completed_appointments(date_range: DateRange | None, barber_id: int | None = None) -> list[Appointment]:
    query = Appointment.query.options(
        joinedload(Appointment.package),
        joinedload(Appointment.barber),
        joinedload(Appointment.client),
    ).filter(
        Appointment.status == "completed",
        Appointment.final_price.isnot(None),
    )
    if date_range is not None:
        query = query.filter(appointment_in_range(date_range))
    if barber_id is not None:
        query = query.filter(Appointment.barber_id == barber_id)
    return query.order_by(Appointment.created_at.desc()).all()


def product_sales(date_range: DateRange | None, staff_id: int | None = None) -> list[ProductSale]:
    query = ProductSale.query.options(joinedload(ProductSale.product))
    if date_range is not None:
        query = query.filter(ProductSale.created_at >= date_range.start, ProductSale.created_at <= date_range.end)
    if staff_id is not None:
        query = query.filter(ProductSale.staff_id == staff_id)
    return query.all()


def expenses_in(date_range: DateRange | None, category: str | None = None) -> list[Expense]:
    query = Expense.query
    if date_range is not None:
        query = query.filter(Expense.date >= date_range.start, Expense.date <= date_range.end)
    if category:
        query = query.filter(Expense.category == category)
    return query.order_by(Expense.date.desc()).all()


def _bundles(appointments: list[Appointment]) -> dict[int, list[Package]]:
    """Base package followed by additional packages, per appointment, with one lookup query."""
    extra_ids = {pid for appt in appointments for pid in appt.additional_package_ids}
    extras = {}
    if extra_ids:
        extras = {pkg.package_id: pkg for pkg in Package.query.filter(Package.package_id.in_(extra_ids)).all()}

    bundles = {}
    for appt in appointments:
        bundle = [appt.package] if appt.package else []
        bundle.extend(extras[pid] for pid in appt.additional_package_ids if pid in extras)
        bundles[appt.appointment_id] = bundle
    return bundles


def appointment_commission(appointment: Appointment, rate: float | None = None) -> Decimal:
    if rate is None:
        rate = appointment.barber.commission_rate if appointment.barber else 0
    return appointment.commission_base * to_decimal(rate or 0) / Decimal(100)


def _amount(value: Decimal) -> float:
    return float(quantize(to_decimal(value)))


def _new_staff_row(user: User) -> dict[str, object]:
    return {
        "id": user.user_id,
        "name": user.name,
        "role": user.role,
        "commissionRate": user.commission_rate or 0,
        "productCommissionRate": user.product_commission_rate or 0,
        "appointmentCount": 0,
        "clients": set(),
        "totalSales": ZERO,
        "serviceCommission": ZERO,
        "productSales": ZERO,
        "productCommission": ZERO,
    }


def _finish_staff_row(row: dict[str, object]) -> dict[str, object]:
    commission = row["serviceCommission"] + row["productCommission"]
    return {
        "id": row["id"],
        "name": row["name"],
        "role": row["role"],
        "commissionRate": row["commissionRate"],
        "productCommissionRate": row["productCommissionRate"],
        "appointmentCount": row["appointmentCount"],
        "customerCount": len(row["clients"]),
        "totalSales": _amount(row["totalSales"]),
        "serviceCommission": _amount(row["serviceCommission"]),
        "productSales": _amount(row["productSales"]),
        "productCommission": _amount(row["productCommission"]),
        "commissionPaid": _amount(commission),
    }


def financial_overview(date_range: DateRange | None) -> dict[str, object]:
    appointments = completed_appointments(date_range)
    bundles = _bundles(appointments)
    sales = product_sales(date_range)
    expenses = expenses_in(date_range)

    staff_rows: dict[int, dict[str, object]] = {}
    for user in User.query.filter(User.role.in_(STAFF_ROLES), User.is_active.is_(True)).all():
        staff_rows[user.user_id] = _new_staff_row(user)

    service_rows: dict[int, dict[str, object]] = {}
    service_revenue = ZERO
    service_commission = ZERO

    for appt in appointments:
        final_price = to_decimal(appt.final_price)
        commission = appointment_commission(appt)
        service_revenue += final_price
        service_commission += commission

        if appt.barber is not None:
            row = staff_rows.setdefault(appt.barber.user_id, _new_staff_row(appt.barber))
            row["appointmentCount"] += 1
            row["clients"].add(appt.client_id)
            row["totalSales"] += final_price
            row["serviceCommission"] += commission

        bundle = bundles[appt.appointment_id]
        revenue_split = split_by_list_price(final_price, bundle)
        commission_split = split_by_list_price(commission, bundle)
        for (pkg, revenue), (_, pkg_commission) in zip(revenue_split, commission_split):
            service = service_rows.setdefault(
                pkg.package_id,
                {"id": pkg.package_id, "name": pkg.name, "count": 0, "totalRevenue": ZERO, "commission": ZERO},
            )
            service["count"] += 1
            service["totalRevenue"] += revenue
            service["commission"] += pkg_commission

    product_rows: dict[int, dict[str, object]] = {}
    product_revenue = ZERO
    product_commission = ZERO
    for sale in sales:
        total = to_decimal(sale.total_price)
        commission = to_decimal(sale.commission_amount)
        product_revenue += total
        product_commission += commission

        if sale.staff is not None:
            row = staff_rows.setdefault(sale.staff.user_id, _new_staff_row(sale.staff))
            row["productSales"] += total
            row["productCommission"] += commission

        product = product_rows.setdefault(
            sale.product_id,
            {
                "id": sale.product_id,
                "name": sale.product.name if sale.product else None,
                "quantity": 0,
                "totalRevenue": ZERO,
                "commission": ZERO,
            },
        )
        product["quantity"] += sale.quantity
        product["totalRevenue"] += total
        product["commission"] += commission

    total_revenue = service_revenue + product_revenue
    total_commission = service_commission + product_commission
    total_expenses = sum((to_decimal(exp.amount) for exp in expenses), ZERO)
    net_profit = total_revenue - total_commission - total_expenses

    services = sorted(service_rows.values(), key=lambda row: row["totalRevenue"], reverse=True)
    products = sorted(product_rows.values(), key=lambda row: row["totalRevenue"], reverse=True)

    logger.debug(
        "Overview: %d appointments, %d sales, %d expenses in range %s",
        len(appointments),
        len(sales),
        len(expenses),
        date_range,
    )

    return {
        "overview": {
            "totalRevenue": _amount(total_revenue),
            "serviceRevenue": _amount(service_revenue),
            "productRevenue": _amount(product_revenue),
            "totalCommissionPaid": _amount(total_commission),
            "totalExpenses": _amount(total_expenses),
            "netProfit": _amount(net_profit),
            "totalCustomers": len({appt.client_id for appt in appointments}),
        },
        "perStaffBreakdown": [_finish_staff_row(row) for row in staff_rows.values()],
        "perServiceBreakdown": [
            {**row, "totalRevenue": _amount(row["totalRevenue"]), "commission": _amount(row["commission"])}
            for row in services
        ],
        "perProductBreakdown": [
            {**row, "totalRevenue": _amount(row["totalRevenue"]), "commission": _amount(row["commission"])}
            for row in products
        ],
        "expenses": [exp.to_dict() for exp in expenses],
    }


def staff_report(user: User, date_range: DateRange | None) -> dict[str, object]:
    """Earnings report for one barber over their own completed appointments."""
    if user.role not in STAFF_ROLES:
        raise PermissionDenied("Only Boss or Staff can access this report")

    appointments = completed_appointments(date_range, barber_id=user.user_id)
    bundles = _bundles(appointments)
    sales = product_sales(date_range, staff_id=user.user_id)
    rate = user.commission_rate or 0

    services: dict[int, dict[str, object]] = {}
    daily: dict[date, dict[str, object]] = defaultdict(
        lambda: {"customers": 0, "totalEarnings": ZERO, "totalRevenue": ZERO}
    )
    total_revenue = ZERO
    service_earnings = ZERO
    recent = []

    for appt in appointments:
        final_price = to_decimal(appt.final_price)
        earnings = appointment_commission(appt, rate)
        total_revenue += final_price
        service_earnings += earnings

        bundle = bundles[appt.appointment_id]
        for (pkg, revenue), (_, share) in zip(
            split_by_list_price(final_price, bundle), split_by_list_price(earnings, bundle)
        ):
            service = services.setdefault(
                pkg.package_id,
                {"name": pkg.name, "count": 0, "totalRevenue": ZERO, "barberShare": ZERO},
            )
            service["count"] += 1
            service["totalRevenue"] += revenue
            service["barberShare"] += share

        day = local_day(appt.appointment_date or appt.created_at)
        daily[day]["customers"] += 1
        daily[day]["totalEarnings"] += earnings
        daily[day]["totalRevenue"] += final_price

        if len(recent) < RECENT_APPOINTMENT_LIMIT:
            recent.append({
                "id": appt.appointment_id,
                "date": (appt.appointment_date or appt.created_at).isoformat(),
                "client": appt.client.full_name if appt.client else None,
                "services": [pkg.name for pkg in bundle],
                "originalPrice": _amount(appt.commission_base),
                "totalPrice": _amount(final_price),
                "earnings": _amount(earnings),
            })

    product_total = sum((to_decimal(sale.total_price) for sale in sales), ZERO)
    product_commission = sum((to_decimal(sale.commission_amount) for sale in sales), ZERO)

    return {
        "summary": {
            "totalCustomers": len({appt.client_id for appt in appointments}),
            "totalServices": len(appointments),
            "commissionRate": rate,
            "totalRevenue": _amount(total_revenue),
            "serviceEarnings": _amount(service_earnings),
            "productSales": _amount(product_total),
            "productCommission": _amount(product_commission),
            "totalEarnings": _amount(service_earnings + product_commission),
        },
        "serviceBreakdown": [
            {
                "name": row["name"],
                "count": row["count"],
                "totalRevenue": _amount(row["totalRevenue"]),
                "barberShare": _amount(row["barberShare"]),
            }
            for row in services.values()
        ],
        "earningsHistory": [
            {
                "date": day.isoformat(),
                "customers": row["customers"],
                "totalRevenue": _amount(row["totalRevenue"]),
                "totalEarnings": _amount(row["totalEarnings"]),
            }
            for day, row in sorted(daily.items(), reverse=True)
        ],
        "recentAppointments": recent,
    }


def update_commission_rates(staff_id: int, payload: dict) -> User:
    staff = User.query.filter(User.user_id == staff_id, User.role.in_(STAFF_ROLES)).first()
    if staff is None:
        raise NotFoundError("Staff member", "No staff member found with the specified ID")

    if "commissionRate" not in payload and "productCommissionRate" not in payload:
        raise ValidationError("commissionRate or productCommissionRate is required", error="missing_fields")
    if "commissionRate" in payload:
        staff.commission_rate = parse_rate(payload["commissionRate"], "Commission rate")
    if "productCommissionRate" in payload:
        staff.product_commission_rate = parse_rate(payload["productCommissionRate"], "Product commission rate")

    db.session.flush()
    logger.info(
        "Commission rates for user %s set to %s%% service / %s%% product",
        staff.user_id,
        staff.commission_rate,
        staff.product_commission_rate,
    )
    return staff


def add_expense(payload: dict, creator: User) -> Expense:
    category = parse_text(payload.get("category"), "category")
    description = parse_text(payload.get("description"), "description")
    if not category or not description or payload.get("amount") in (None, ""):
        raise ValidationError("Category, description, and amount are required", error="missing_fields")

    amount = parse_decimal(payload.get("amount"), "amount")
    if amount <= 0:
        raise ValidationError("amount must be greater than 0")

    expense = Expense(
        category=category,
        description=description,
        amount=quantize(amount),
        created_by=creator.user_id,
    )
    expense_date = parse_datetime(payload.get("date"), "date")
    if expense_date is not None:
        expense.date = expense_date.replace(tzinfo=None)
    db.session.add(expense)
    db.session.flush()
    return expense


def delete_expense(expense_id: int) -> None:
    expense = db.session.get(Expense, expense_id)
    if expense is None:
        raise NotFoundError("Expense", "No expense found with the specified ID")
    db.session.delete(expense)
    db.session.flush()


def reset_period(date_range: DateRange) -> dict[str, int]:
    """Send a period's appointments back to pending and drop its expenses, atomically.

    Prices are kept so the appointments stay consistent if they are completed
    again; only completed appointments are counted in reports.
    """
    reset_count = (
        Appointment.query.filter(appointment_in_range(date_range))
        .filter(Appointment.status != "pending")
        .update({Appointment.status: "pending"}, synchronize_session=False)
    )
    deleted_expenses = (
        Expense.query.filter(Expense.date >= date_range.start, Expense.date <= date_range.end)
        .delete(synchronize_session=False)
    )
    logger.info(
        "Monthly reset %s: %d appointment(s) set to pending, %d expense(s) deleted",
        date_range,
        reset_count,
        deleted_expenses,
    )
    return {"appointmentsReset": reset_count, "expensesDeleted": deleted_expenses}
