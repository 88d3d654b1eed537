from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from barbershop.extensions import db
from barbershop.models import Appointment, Expense


def _today() -> str:
    # Report ranges are calendar days in the shop's timezone
    return datetime.now(timezone(timedelta(hours=8))).date().isoformat()


@pytest.fixture
def shop(make_user, make_client, make_package, make_product):
    return {
        "boss": make_user(role="Boss", commission_rate=0.0),
        "staff": make_user(role="Staff", name="Ali", commission_rate=40.0, product_commission_rate=5.0),
        "customer": make_client(),
        "haircut": make_package("Haircut", "50.00"),
        "beard": make_package("Beard Trim", "30.00"),
        "pomade": make_product("Pomade", "18.00", stock=10),
    }


def _complete(client, shop, auth_headers, **extra):
    payload = {
        "clientId": shop["customer"].client_id,
        "packageId": shop["haircut"].package_id,
        "additionalPackages": [shop["beard"].package_id],
    }
    payload.update(extra)
    appointment_id = client.post("/appointments", json=payload).get_json()["data"]["id"]
    client.put(
        f"/appointments/{appointment_id}",
        json={"status": "completed"},
        headers=auth_headers(shop["staff"]),
    )
    return appointment_id


def _overview(client, shop, auth_headers, start=None, end=None):
    today = _today()
    response = client.get(
        "/financial/overview",
        query_string={"startDate": start or today, "endDate": end or today},
        headers=auth_headers(shop["boss"]),
    )
    assert response.status_code == 200
    return response.get_json()["data"]


def test_commission_is_earned_on_original_price(client, shop, make_code, auth_headers):
    make_code("SAVE10", percent=10.0)
    _complete(client, shop, auth_headers, discountCode="SAVE10")

    data = _overview(client, shop, auth_headers)
    staff_row = next(row for row in data["perStaffBreakdown"] if row["id"] == shop["staff"].user_id)

    assert data["overview"]["serviceRevenue"] == 72.0
    assert data["overview"]["totalCommissionPaid"] == 32.0
    assert staff_row["serviceCommission"] == 32.0
    assert staff_row["appointmentCount"] == 1


def test_service_revenue_split_by_list_price(client, shop, make_code, auth_headers):
    make_code("LESS16", discount_type="fixed_amount", amount="16.00")
    _complete(client, shop, auth_headers, discountCode="LESS16")

    services = {row["name"]: row for row in _overview(client, shop, auth_headers)["perServiceBreakdown"]}

    assert services["Haircut"]["totalRevenue"] == 40.0
    assert services["Beard Trim"]["totalRevenue"] == 24.0
    assert services["Haircut"]["commission"] == 20.0
    assert services["Beard Trim"]["commission"] == 12.0


def test_walk_in_counted_and_other_periods_excluded(client, shop, auth_headers):
    _complete(client, shop, auth_headers)
    _complete(client, shop, auth_headers, appointmentDate="2020-01-15T10:00:00Z")

    data = _overview(client, shop, auth_headers)

    assert data["overview"]["serviceRevenue"] == 80.0
    assert data["overview"]["totalCustomers"] == 1


def test_pending_appointments_are_not_revenue(client, shop, auth_headers):
    client.post(
        "/appointments",
        json={"clientId": shop["customer"].client_id, "packageId": shop["haircut"].package_id},
    )

    data = _overview(client, shop, auth_headers)

    assert data["overview"]["serviceRevenue"] == 0.0


def test_overview_totals_with_products_and_expenses(client, shop, make_code, auth_headers):
    make_code("SAVE10", percent=10.0)
    _complete(client, shop, auth_headers, discountCode="SAVE10")
    client.post(
        "/products/sell",
        json={"productId": shop["pomade"].product_id, "quantity": 2},
        headers=auth_headers(shop["staff"]),
    )
    client.post(
        "/financial/expenses",
        json={"category": "Supplies", "description": "Towels", "amount": 10},
        headers=auth_headers(shop["boss"]),
    )

    data = _overview(client, shop, auth_headers)
    overview = data["overview"]

    assert overview["productRevenue"] == 36.0
    assert overview["totalRevenue"] == 108.0
    assert overview["totalCommissionPaid"] == 33.8
    assert overview["totalExpenses"] == 10.0
    assert overview["netProfit"] == 64.2
    assert data["perProductBreakdown"][0]["quantity"] == 2
    assert data["expenses"][0]["description"] == "Towels"


def test_overview_requires_boss(client, shop, auth_headers):
    response = client.get("/financial/overview", headers=auth_headers(shop["staff"]))

    assert response.status_code == 403


def test_overview_rejects_half_open_range(client, shop, auth_headers):
    response = client.get(
        "/financial/overview",
        query_string={"startDate": "2024-01-01"},
        headers=auth_headers(shop["boss"]),
    )

    assert response.status_code == 400
    assert response.get_json()["error"] == "invalid_date"


def test_staff_report(client, shop, make_code, auth_headers):
    make_code("SAVE10", percent=10.0)
    _complete(client, shop, auth_headers, discountCode="SAVE10")
    client.post(
        "/products/sell",
        json={"productId": shop["pomade"].product_id, "quantity": 2},
        headers=auth_headers(shop["staff"]),
    )

    response = client.get(
        "/financial/staff-report",
        query_string={"startDate": _today(), "endDate": _today()},
        headers=auth_headers(shop["staff"]),
    )
    data = response.get_json()["data"]
    breakdown = {row["name"]: row for row in data["serviceBreakdown"]}

    assert response.status_code == 200
    assert data["summary"]["totalServices"] == 1
    assert data["summary"]["serviceEarnings"] == 32.0
    assert data["summary"]["productCommission"] == 1.8
    assert data["summary"]["totalEarnings"] == 33.8
    assert breakdown["Haircut"]["barberShare"] == 20.0
    assert breakdown["Beard Trim"]["barberShare"] == 12.0
    assert data["earningsHistory"] == [
        {"date": _today(), "customers": 1, "totalRevenue": 72.0, "totalEarnings": 32.0}
    ]
    assert data["recentAppointments"][0]["originalPrice"] == 80.0


def test_boss_can_view_another_staff_report(client, shop, auth_headers):
    _complete(client, shop, auth_headers)

    response = client.get(
        "/financial/staff-report",
        query_string={"staffId": shop["staff"].user_id},
        headers=auth_headers(shop["boss"]),
    )

    assert response.get_json()["data"]["staff"]["id"] == shop["staff"].user_id
    assert response.get_json()["data"]["summary"]["totalServices"] == 1


def test_staff_report_forbidden_for_clients(client, make_user, auth_headers):
    response = client.get("/financial/staff-report", headers=auth_headers(make_user(role="Client")))

    assert response.status_code == 403


def test_update_commission_rate(client, shop, auth_headers):
    response = client.patch(
        f"/financial/commission/{shop['staff'].user_id}",
        json={"commissionRate": 50, "productCommissionRate": 8},
        headers=auth_headers(shop["boss"]),
    )
    data = response.get_json()["data"]

    assert response.status_code == 200
    assert data["commissionRate"] == 50.0
    assert data["productCommissionRate"] == 8.0


def test_update_commission_rate_out_of_range(client, shop, auth_headers):
    response = client.patch(
        f"/financial/commission/{shop['staff'].user_id}",
        json={"commissionRate": 120},
        headers=auth_headers(shop["boss"]),
    )

    assert response.status_code == 400


def test_expenses_list_and_delete(client, shop, auth_headers):
    headers = auth_headers(shop["boss"])
    created = client.post(
        "/financial/expenses",
        json={"category": "Rent", "description": "March rent", "amount": "1200.50", "date": "2020-03-01"},
        headers=headers,
    )
    expense_id = created.get_json()["data"]["id"]

    listed = client.get(
        "/financial/expenses",
        query_string={"startDate": "2020-03-01", "endDate": "2020-03-31", "category": "Rent"},
        headers=headers,
    )
    deleted = client.delete(f"/financial/expenses/{expense_id}", headers=headers)
    missing = client.delete(f"/financial/expenses/{expense_id}", headers=headers)

    assert created.status_code == 201
    assert listed.get_json()["data"][0]["amount"] == 1200.5
    assert deleted.status_code == 200
    assert missing.status_code == 404


def test_expense_requires_positive_amount(client, shop, auth_headers):
    response = client.post(
        "/financial/expenses",
        json={"category": "Rent", "description": "x", "amount": -5},
        headers=auth_headers(shop["boss"]),
    )

    assert response.status_code == 400


def test_monthly_reset(client, shop, auth_headers):
    appointment_id = _complete(client, shop, auth_headers)
    client.post(
        "/financial/expenses",
        json={"category": "Supplies", "description": "Towels", "amount": 10},
        headers=auth_headers(shop["boss"]),
    )

    response = client.post(
        "/financial/reset-monthly",
        json={"startDate": _today(), "endDate": _today()},
        headers=auth_headers(shop["boss"]),
    )
    appointment = db.session.get(Appointment, appointment_id)

    assert response.status_code == 200
    assert response.get_json()["data"] == {"appointmentsReset": 1, "expensesDeleted": 1}
    assert appointment.status == "pending"
    assert float(appointment.final_price) == 80.0
    assert Expense.query.count() == 0
    assert _overview(client, shop, auth_headers)["overview"]["serviceRevenue"] == 0.0


def test_monthly_reset_requires_dates(client, shop, auth_headers):
    response = client.post("/financial/reset-monthly", json={}, headers=auth_headers(shop["boss"]))

    assert response.status_code == 400
    assert response.get_json()["error"] == "missing_fields"
