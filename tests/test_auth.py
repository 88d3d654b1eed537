from __future__ import annotations

from itsdangerous import URLSafeTimedSerializer


def test_login_returns_token_and_user(client, make_user):
    boss = make_user(role="Boss", password="s3cret")

    response = client.post("/auth/login", json={"email": boss.email.upper(), "password": "s3cret"})
    data = response.get_json()

    assert response.status_code == 200
    assert data["success"] is True
    assert data["data"]["user"]["role"] == "Boss"
    assert data["data"]["token"]


def test_login_token_authenticates_requests(client, make_user):
    staff = make_user(role="Staff", password="pw")
    token = client.post("/auth/login", json={"email": staff.email, "password": "pw"}).get_json()["data"]["token"]

    response = client.get("/appointments", headers={"Authorization": f"Bearer {token}"})

    assert response.status_code == 200


def test_login_wrong_password_401(client, make_user):
    staff = make_user(role="Staff", password="right")

    response = client.post("/auth/login", json={"email": staff.email, "password": "wrong"})

    assert response.status_code == 401
    assert response.get_json()["error"] == "unauthorized"


def test_login_missing_fields_400(client):
    response = client.post("/auth/login", json={"email": "someone@barbershop.test"})

    assert response.status_code == 400
    assert response.get_json()["error"] == "invalid_payload"


def test_login_inactive_account_403(client, make_user):
    staff = make_user(role="Staff", password="pw", is_active=False)

    response = client.post("/auth/login", json={"email": staff.email, "password": "pw"})

    assert response.status_code == 403


def test_protected_route_without_token_401(client):
    response = client.get("/appointments")

    assert response.status_code == 401
    assert response.get_json() == {
        "success": False,
        "error": "unauthorized",
        "message": "Invalid or missing token",
    }


def test_token_signed_with_other_key_rejected(client, make_user):
    staff = make_user(role="Staff")
    forged = URLSafeTimedSerializer("not-the-key", salt="auth-token").dumps({"user_id": staff.user_id})

    response = client.get("/appointments", headers={"Authorization": f"Bearer {forged}"})

    assert response.status_code == 401
