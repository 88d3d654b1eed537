"""Every failure reaches the client as a JSON envelope."""
from __future__ import annotations

from unittest.mock import patch

import pytest

from barbershop.models import Appointment


@pytest.fixture
def boss_headers(make_user, auth_headers):
    return auth_headers(make_user(role="Boss"))


def test_non_object_body_rejected(client, boss_headers):
    booking = client.post("/appointments", json=[1, 1])
    login = client.post("/auth/login", json="boss@barbershop.test")
    expense = client.post("/financial/expenses", json=[{"amount": 10}], headers=boss_headers)

    for response in (booking, login, expense):
        assert response.status_code == 400
        assert response.get_json()["success"] is False
        assert response.get_json()["error"] == "invalid_payload"
    assert Appointment.query.count() == 0


def test_non_string_notes_rejected(client, make_client, make_package):
    payload = {
        "clientId": make_client().client_id,
        "packageId": make_package().package_id,
        "notes": 123,
    }

    response = client.post("/appointments", json=payload)

    assert response.status_code == 400
    assert response.get_json() == {
        "success": False,
        "error": "invalid_payload",
        "message": "notes must be a string",
    }
    assert Appointment.query.count() == 0


def test_non_string_expense_fields_rejected(client, boss_headers):
    response = client.post(
        "/financial/expenses",
        json={"category": 5, "description": "Clippers", "amount": 120},
        headers=boss_headers,
    )

    assert response.status_code == 400
    assert response.get_json()["message"] == "category must be a string"


def test_non_string_credentials_rejected(client):
    response = client.post("/auth/login", json={"email": 42, "password": "secret"})

    assert response.status_code == 400
    assert response.get_json()["error"] == "invalid_payload"


@pytest.mark.parametrize(
    "method, path",
    [
        ("get", "/appointments/abc"),
        ("put", "/appointments/abc"),
        ("patch", "/appointments/1.5"),
        ("delete", "/appointments/-3"),
        ("put", "/discounts/abc"),
        ("patch", "/discounts/abc/toggle-status"),
        ("delete", "/discounts/abc"),
        ("patch", "/financial/commission/abc"),
        ("delete", "/financial/expenses/abc"),
        ("delete", "/products/sales/abc"),
    ],
)
def test_malformed_path_id_is_invalid_id(client, boss_headers, method, path):
    response = getattr(client, method)(path, json={}, headers=boss_headers)

    assert response.status_code == 400
    assert response.is_json
    assert response.get_json()["success"] is False
    assert response.get_json()["error"] == "invalid_id"


def test_unknown_route_returns_json_404(client):
    response = client.get("/no-such-route")

    assert response.status_code == 404
    assert response.is_json
    assert response.get_json()["success"] is False
    assert response.get_json()["error"] == "not_found"


def test_wrong_method_returns_json_405(client):
    response = client.delete("/health")

    assert response.status_code == 405
    assert response.get_json()["error"] == "method_not_allowed"


def test_unexpected_error_is_generic_internal_error(client, boss_headers):
    with patch("barbershop.appointments.list_appointments", side_effect=RuntimeError("boom")):
        response = client.get("/appointments", headers=boss_headers)

    assert response.status_code == 500
    assert response.get_json() == {
        "success": False,
        "error": "internal_error",
        "message": "Internal server error",
    }
