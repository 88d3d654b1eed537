from __future__ import annotations

from barbershop.extensions import db
from barbershop.models import Product, ProductSale


def test_sell_product_freezes_commission_and_updates_stock(client, make_user, make_product, auth_headers):
    staff = make_user(role="Staff", product_commission_rate=10.0)
    product = make_product("Beard Oil", "22.00", stock=5)

    response = client.post(
        "/products/sell",
        json={"productId": product.product_id, "quantity": 2, "notes": "gift wrap"},
        headers=auth_headers(staff),
    )
    data = response.get_json()["data"]

    assert response.status_code == 201
    assert data["totalPrice"] == 44.0
    assert data["commissionRate"] == 10.0
    assert data["commissionAmount"] == 4.4
    assert db.session.get(Product, product.product_id).stock == 3


def test_explicit_commission_rate_overrides_staff_rate(client, make_user, make_product, auth_headers):
    staff = make_user(role="Staff", product_commission_rate=10.0)
    product = make_product(stock=None)

    response = client.post(
        "/products/sell",
        json={"productId": product.product_id, "quantity": 1, "commissionRate": 20},
        headers=auth_headers(staff),
    )

    assert response.get_json()["data"]["commissionAmount"] == 3.6


def test_insufficient_stock_rejected(client, make_user, make_product, auth_headers):
    product = make_product(stock=1)

    response = client.post(
        "/products/sell",
        json={"productId": product.product_id, "quantity": 3},
        headers=auth_headers(make_user(role="Staff")),
    )

    assert response.status_code == 400
    assert response.get_json()["error"] == "insufficient_stock"
    assert ProductSale.query.count() == 0


def test_inactive_product_rejected(client, make_user, make_product, auth_headers):
    product = make_product(is_active=False)

    response = client.post(
        "/products/sell",
        json={"productId": product.product_id, "quantity": 1},
        headers=auth_headers(make_user(role="Boss")),
    )

    assert response.get_json()["error"] == "product_not_available"


def test_clients_cannot_sell(client, make_user, make_product, auth_headers):
    product = make_product()

    response = client.post(
        "/products/sell",
        json={"productId": product.product_id, "quantity": 1},
        headers=auth_headers(make_user(role="Client")),
    )

    assert response.status_code == 403


def test_staff_only_see_and_delete_own_sales(client, make_user, make_product, auth_headers):
    product = make_product(stock=10)
    first, second = make_user(role="Staff"), make_user(role="Staff")
    boss = make_user(role="Boss")
    for seller in (first, second):
        client.post(
            "/products/sell",
            json={"productId": product.product_id, "quantity": 1},
            headers=auth_headers(seller),
        )

    own = client.get("/products/sales", headers=auth_headers(first)).get_json()["data"]
    everything = client.get("/products/sales", headers=auth_headers(boss)).get_json()["data"]
    other_sale = next(sale for sale in everything if sale["staffId"] == second.user_id)
    blocked = client.delete(f"/products/sales/{other_sale['id']}", headers=auth_headers(first))
    removed = client.delete(f"/products/sales/{other_sale['id']}", headers=auth_headers(boss))

    assert [sale["staffId"] for sale in own] == [first.user_id]
    assert len(everything) == 2
    assert blocked.status_code == 403
    assert removed.status_code == 200
    assert db.session.get(Product, product.product_id).stock == 9
