"""Financial reporting, expense and product sale routes."""
from __future__ import annotations

from flask import Blueprint, request
from sqlalchemy.exc import SQLAlchemyError

from . import reporting, sales
from .errors import NotFoundError
from .extensions import db
from .models import STAFF_ROLES, User
from .routes import _database_error, _json_body, _ok, current_user, require_role
from .validators import parse_id, parse_optional_id

bp_fin = Blueprint("api_fin", __name__)


def _range_from_args():
    return reporting.parse_date_range(request.args.get("startDate"), request.args.get("endDate"))


@bp_fin.get("/financial/overview")
def financial_overview() -> tuple[dict[str, object], int]:
    """Revenue, commission, expenses and profit for the shop (Boss only).
    ---
    tags:
      - Financial
    parameters:
      - name: startDate
        in: query
        type: string
        format: date
      - name: endDate
        in: query
        type: string
        format: date
    responses:
      200:
        description: Overview with per-staff, per-service and per-product breakdowns
      400:
        description: Invalid date range
      403:
        description: Boss role required
      500:
        description: Database error
    """
    require_role("Boss")
    date_range = _range_from_args()
    try:
        report = reporting.financial_overview(date_range)
    except SQLAlchemyError as exc:
        return _database_error(exc, "build financial overview")

    report["dateRange"] = date_range.to_dict() if date_range else None
    return _ok(report)


@bp_fin.get("/financial/staff-report")
def staff_report() -> tuple[dict[str, object], int]:
    """Earnings report for the logged-in barber. Boss may pass staffId to view someone else's.
    ---
    tags:
      - Financial
    parameters:
      - name: startDate
        in: query
        type: string
        format: date
      - name: endDate
        in: query
        type: string
        format: date
      - name: staffId
        in: query
        type: integer
    responses:
      200:
        description: Summary, service breakdown, daily earnings and recent appointments
      403:
        description: Boss or Staff role required
      404:
        description: Staff member not found
    """
    user = require_role(*STAFF_ROLES)
    date_range = _range_from_args()
    staff_id = parse_optional_id(request.args.get("staffId"), "staffId")

    try:
        target = user
        if staff_id is not None and staff_id != user.user_id and user.role == "Boss":
            target = db.session.get(User, staff_id)
            if target is None or target.role not in STAFF_ROLES:
                raise NotFoundError("Staff member", "No staff member found with the specified ID")
        report = reporting.staff_report(target, date_range)
    except SQLAlchemyError as exc:
        return _database_error(exc, "build staff report")

    report["staff"] = target.to_dict_basic()
    return _ok(report)


@bp_fin.patch("/financial/commission/<staff_id>")
def update_commission(staff_id: str) -> tuple[dict[str, object], int]:
    """Set a staff member's service and/or product commission rate (Boss only).
    ---
    tags:
      - Financial
    parameters:
      - in: body
        name: body
        required: true
        schema:
          properties:
            commissionRate:
              type: number
              minimum: 0
              maximum: 100
            productCommissionRate:
              type: number
              minimum: 0
              maximum: 100
    responses:
      200:
        description: Rates updated
      400:
        description: Rate outside 0-100
      404:
        description: Staff member not found
    """
    require_role("Boss")
    staff_id = parse_id(staff_id, "staffId")
    payload = _json_body()
    try:
        staff = reporting.update_commission_rates(staff_id, payload)
        db.session.commit()
    except SQLAlchemyError as exc:
        return _database_error(exc, "update commission rate")

    return _ok(staff.to_dict_basic(), "Commission rate updated successfully")


@bp_fin.get("/financial/expenses")
def list_expenses() -> tuple[dict[str, object], int]:
    """List expenses, optionally within a date range or category (Boss only).
    ---
    tags:
      - Financial
    parameters:
      - name: startDate
        in: query
        type: string
      - name: endDate
        in: query
        type: string
      - name: category
        in: query
        type: string
    responses:
      200:
        description: Expenses, newest first
    """
    require_role("Boss")
    date_range = _range_from_args()
    try:
        expenses = reporting.expenses_in(date_range, request.args.get("category"))
    except SQLAlchemyError as exc:
        return _database_error(exc, "fetch expenses")

    return _ok([expense.to_dict() for expense in expenses])


@bp_fin.post("/financial/expenses")
def add_expense() -> tuple[dict[str, object], int]:
    """Record an expense (Boss only).
    ---
    tags:
      - Financial
    parameters:
      - in: body
        name: body
        required: true
        schema:
          required:
            - category
            - description
            - amount
          properties:
            category:
              type: string
            description:
              type: string
            amount:
              type: number
            date:
              type: string
              format: date-time
    responses:
      201:
        description: Expense recorded
      400:
        description: Missing fields or invalid amount
    """
    user = require_role("Boss")
    payload = _json_body()
    try:
        expense = reporting.add_expense(payload, user)
        db.session.commit()
    except SQLAlchemyError as exc:
        return _database_error(exc, "add expense")

    return _ok(expense.to_dict(), "Expense added successfully", 201)


@bp_fin.delete("/financial/expenses/<expense_id>")
def delete_expense(expense_id: str) -> tuple[dict[str, object], int]:
    """Delete an expense (Boss only).
    ---
    tags:
      - Financial
    responses:
      200:
        description: Expense deleted
      404:
        description: Expense not found
    """
    require_role("Boss")
    expense_id = parse_id(expense_id, "expenseId")
    try:
        reporting.delete_expense(expense_id)
        db.session.commit()
    except SQLAlchemyError as exc:
        return _database_error(exc, "delete expense")

    return _ok(None, "Expense deleted successfully")


@bp_fin.post("/financial/reset-monthly")
def reset_monthly() -> tuple[dict[str, object], int]:
    """Return a period's appointments to pending and delete its expenses (Boss only).

    Both changes are committed together or not at all.
    ---
    tags:
      - Financial
    parameters:
      - in: body
        name: body
        required: true
        schema:
          required:
            - startDate
            - endDate
          properties:
            startDate:
              type: string
              format: date
            endDate:
              type: string
              format: date
    responses:
      200:
        description: Counts of reset appointments and deleted expenses
      400:
        description: Missing or invalid dates
      500:
        description: Database error, nothing was changed
    """
    require_role("Boss")
    payload = _json_body()
    date_range = reporting.parse_date_range(payload.get("startDate"), payload.get("endDate"), required=True)
    try:
        result = reporting.reset_period(date_range)
        db.session.commit()
    except SQLAlchemyError as exc:
        return _database_error(exc, "reset monthly data")

    return _ok(result, "Monthly data reset successfully")


# --- Product sales ------------------------------------------------------------

@bp_fin.post("/products/sell")
def sell_product() -> tuple[dict[str, object], int]:
    """Record a product sale with the seller's commission (Boss or Staff).
    ---
    tags:
      - Products
    parameters:
      - in: body
        name: body
        required: true
        schema:
          required:
            - productId
            - quantity
          properties:
            productId:
              type: integer
            quantity:
              type: integer
            clientId:
              type: integer
            staffId:
              type: integer
            commissionRate:
              type: number
            notes:
              type: string
    responses:
      201:
        description: Sale recorded
      400:
        description: Inactive product or insufficient stock
      404:
        description: Product or client not found
    """
    user = current_user()
    payload = _json_body()
    try:
        sale = sales.record_sale(user, payload)
        db.session.commit()
    except SQLAlchemyError as exc:
        return _database_error(exc, "record product sale")

    return _ok(sale.to_dict(), "Product sold successfully", 201)


@bp_fin.get("/products/sales")
def list_product_sales() -> tuple[dict[str, object], int]:
    """Product sales; Staff only see their own.
    ---
    tags:
      - Products
    parameters:
      - name: staffId
        in: query
        type: integer
    responses:
      200:
        description: Sales, newest first
    """
    user = current_user()
    staff_id = parse_optional_id(request.args.get("staffId"), "staffId")
    try:
        rows = sales.list_sales(user, staff_id)
    except SQLAlchemyError as exc:
        return _database_error(exc, "fetch product sales")

    return _ok([sale.to_dict() for sale in rows])


@bp_fin.delete("/products/sales/<sale_id>")
def delete_product_sale(sale_id: str) -> tuple[dict[str, object], int]:
    """Delete a sale and put its quantity back in stock.
    ---
    tags:
      - Products
    responses:
      200:
        description: Sale deleted
      403:
        description: Staff may only delete their own sales
      404:
        description: Sale not found
    """
    user = current_user()
    sale_id = parse_id(sale_id, "saleId")
    try:
        sales.delete_sale(user, sale_id)
        db.session.commit()
    except SQLAlchemyError as exc:
        return _database_error(exc, "delete product sale")

    return _ok(None, "Sale deleted successfully")
