"""Tests for the FastAPI routes."""

import json

import pytest
import requests
from fastapi.testclient import TestClient

from payments import sign

from .conftest import KEY2, FakeHttp, order_payload, stock_of


def place_order(client, headers, *lines, **overrides):
    response = client.post("/api/orders", json=order_payload(*lines, **overrides), headers=headers)
    assert response.status_code == 201, response.text
    return response.json()["data"]


class TestRoot:
    def test_root(self, client):
        assert client.get("/").json() == {"message": "E-Commerce API running"}

    def test_startup_seeds_demo_catalog(self, app, db, monkeypatch):
        monkeypatch.setattr("config.SEED_DEMO_DATA", True)
        with TestClient(app) as seeded:
            data = seeded.get("/api/products", params={"limit": 50}).json()["data"]

        assert data["total_count"] == 4
        mobiles = db["category"].find_one({"slug": "mobiles"})
        assert mobiles["product_count"] == 2
        assert "slug_1" in db["product"].index_information()

    def test_database_diagnostics(self, client, category):
        data = client.get("/test").json()
        assert data["connection_status"] == "Connected"
        assert "category" in data["collections"]


class TestAuth:
    def test_register_and_profile(self, client):
        response = client.post(
            "/api/auth/register",
            json={"name": "Ann", "email": "ann@example.com", "password": "secret1"},
        )
        assert response.status_code == 201
        token = response.json()["data"]["token"]

        me = client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})
        assert me.status_code == 200
        user = me.json()["data"]["user"]
        assert user["email"] == "ann@example.com"
        assert user["role"] == "customer"
        assert "password_hash" not in user

    def test_duplicate_email(self, client, customer):
        response = client.post(
            "/api/auth/register",
            json={"name": "Jane", "email": "jane@example.com", "password": "secret1"},
        )
        assert response.status_code == 409
        assert response.json() == {"status": "error", "message": "Email already registered"}

    def test_login(self, client, customer):
        response = client.post("/api/auth/login", json={"email": "jane@example.com", "password": "secret1"})
        assert response.status_code == 200
        assert response.json()["data"]["user"]["name"] == "Jane"

    def test_login_bad_password(self, client, customer):
        response = client.post("/api/auth/login", json={"email": "jane@example.com", "password": "wrong!!"})
        assert response.status_code == 401

    def test_missing_token(self, client):
        response = client.get("/api/auth/me")
        assert response.status_code == 401
        assert response.json()["status"] == "error"

    def test_garbage_token(self, client):
        response = client.get("/api/auth/me", headers={"Authorization": "Bearer nope"})
        assert response.status_code == 401

    def test_inactive_user(self, client, db, customer, customer_headers):
        db["user"].update_one({"email": "jane@example.com"}, {"$set": {"status": "inactive"}})
        assert client.get("/api/auth/me", headers=customer_headers).status_code == 403

    def test_update_profile(self, client, customer_headers):
        response = client.patch("/api/auth/me", json={"phone": "0909"}, headers=customer_headers)
        assert response.status_code == 200
        assert response.json()["data"]["user"]["phone"] == "0909"

    def test_update_password(self, client, customer_headers):
        wrong = client.post(
            "/api/auth/me/password",
            json={"current_password": "bad-one", "new_password": "secret9"},
            headers=customer_headers,
        )
        assert wrong.status_code == 400

        response = client.post(
            "/api/auth/me/password",
            json={"current_password": "secret1", "new_password": "secret9"},
            headers=customer_headers,
        )
        assert response.status_code == 200
        login = client.post("/api/auth/login", json={"email": "jane@example.com", "password": "secret9"})
        assert login.status_code == 200


class TestCatalogRoutes:
    def test_admin_creates_category_and_product(self, client, admin_headers):
        category = client.post(
            "/api/categories", json={"name": "Roses", "slug": "roses"}, headers=admin_headers
        ).json()["data"]["category"]

        response = client.post(
            "/api/products",
            json={"name": "Rose", "slug": "rose", "category_id": category["id"], "price": 12, "stock": 4},
            headers=admin_headers,
        )
        assert response.status_code == 201
        product = response.json()["data"]["product"]
        assert product["category_id"] == category["id"]

        fetched = client.get(f"/api/categories/{category['id']}").json()["data"]["category"]
        assert fetched["product_count"] == 1

    def test_customer_cannot_create_category(self, client, customer_headers):
        response = client.post("/api/categories", json={"name": "X", "slug": "x"}, headers=customer_headers)
        assert response.status_code == 403

    def test_duplicate_slug_conflict(self, client, admin_headers, category):
        response = client.post("/api/categories", json={"name": "F", "slug": "flowers"}, headers=admin_headers)
        assert response.status_code == 409

    def test_public_listing(self, client, product_a, product_b):
        response = client.get("/api/products", params={"max_price": 50})
        assert response.status_code == 200
        data = response.json()["data"]
        assert data["total_count"] == 1
        assert data["data"][0]["slug"] == "tulip"

    def test_product_by_slug(self, client, product_a):
        response = client.get("/api/products/slug/red-rose")
        assert response.json()["data"]["product"]["category"]["slug"] == "flowers"

    def test_bad_product_id(self, client):
        assert client.get("/api/products/not-an-id").status_code == 400

    def test_search_by_image(self, client, recognition_http, product_a, product_b):
        response = client.post(
            "/api/products/search-by-image", files={"file": ("rose.jpg", b"\xff\xd8jpeg", "image/jpeg")}
        )

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["name"] == "Rose"
        assert [p["slug"] for p in data["products"]] == ["red-rose"]
        assert recognition_http.calls[0]["files"]["file"][0] == "rose.jpg"

    def test_search_by_image_no_match(self, client, recognition_http, product_b):
        response = client.post(
            "/api/products/search-by-image", files={"file": ("rose.jpg", b"jpeg", "image/jpeg")}
        )
        assert response.status_code == 404
        assert response.json()["message"] == "No product found for flower: Rose"

    def test_search_by_image_requires_file(self, client):
        assert client.post("/api/products/search-by-image").status_code == 422

    def test_variants(self, client, admin_headers, product_a):
        created = client.post(
            f"/api/products/{product_a['_id']}/variants",
            json={"size": "L", "price": 150, "stock_quantity": 2},
            headers=admin_headers,
        )
        assert created.status_code == 201
        listed = client.get(f"/api/products/{product_a['_id']}/variants").json()["data"]
        assert len(listed["variants"]) == 1


class TestOrderRoutes:
    def test_create_cash_order(self, client, db, customer_headers, product_a, product_b):
        data = place_order(client, customer_headers, (product_a, 2), (product_b, 1))
        assert data["order"]["status"] == "pending"
        assert stock_of(db, product_a) == 3
        assert stock_of(db, product_b) == 2

    def test_create_bank_transfer_requests_payment(self, client, http, customer_headers, product_a):
        data = place_order(client, customer_headers, (product_a, 1), payment_method="bank_transfer")
        assert data["payment_data"]["return_code"] == 1
        assert len(http.calls) == 1
        embed = json.loads(http.calls[0]["data"]["embed_data"])
        assert embed["orderId"] == data["order"]["order_id"]

    def test_bank_transfer_keeps_order_when_provider_fails(self, client, db, gateway, customer_headers, product_a):
        gateway.http = FakeHttp(error=requests.ConnectionError("down"))

        response = client.post(
            "/api/orders",
            json=order_payload((product_a, 1), payment_method="bank_transfer", order_id="PAY-DOWN"),
            headers=customer_headers,
        )

        assert response.status_code == 201
        data = response.json()["data"]
        assert data["payment_data"] is None
        assert data["payment_error"] == "Failed to create payment"
        assert data["order"]["order_id"] == "PAY-DOWN"
        assert stock_of(db, product_a) == 4

        # still addressable: the owner can cancel it and get the stock back
        response = client.patch(
            "/api/orders/PAY-DOWN/status", json={"status": "cancelled"}, headers=customer_headers
        )
        assert response.status_code == 200
        assert stock_of(db, product_a) == 5

    def test_duplicate_order_code(self, client, customer_headers, product_a):
        place_order(client, customer_headers, (product_a, 1), order_id="ORD-DUP")
        response = client.post(
            "/api/orders", json=order_payload((product_a, 1), order_id="ORD-DUP"), headers=customer_headers
        )
        assert response.status_code == 409
        assert response.json() == {"status": "error", "message": "Order with this order ID already exists"}

    def test_insufficient_stock(self, client, db, customer_headers, product_b):
        response = client.post("/api/orders", json=order_payload((product_b, 9)), headers=customer_headers)
        assert response.status_code == 400
        assert response.json()["message"] == "Not enough stock for product: Tulip"
        assert stock_of(db, product_b) == 3

    def test_empty_order(self, client, customer_headers):
        response = client.post("/api/orders", json=order_payload(), headers=customer_headers)
        assert response.status_code == 400

    def test_requires_login(self, client, product_a):
        assert client.post("/api/orders", json=order_payload((product_a, 1))).status_code == 401

    def test_owner_views_by_id_and_code(self, client, customer_headers, product_a):
        order = place_order(client, customer_headers, (product_a, 1), order_id="ORD-100")["order"]

        by_id = client.get(f"/api/orders/{order['id']}", headers=customer_headers)
        by_code = client.get("/api/orders/ORD-100", headers=customer_headers)

        assert by_id.status_code == 200
        assert by_code.status_code == 200
        assert by_code.json()["data"]["order"]["id"] == order["id"]
        assert len(by_id.json()["data"]["items"]) == 1

    def test_other_customer_forbidden(self, client, customer_headers, other_headers, product_a):
        order = place_order(client, customer_headers, (product_a, 1))["order"]
        assert client.get(f"/api/orders/{order['id']}", headers=other_headers).status_code == 403

    def test_admin_views_any(self, client, customer_headers, admin_headers, product_a):
        order = place_order(client, customer_headers, (product_a, 1))["order"]
        assert client.get(f"/api/orders/{order['id']}", headers=admin_headers).status_code == 200

    def test_unknown_order(self, client, admin_headers):
        assert client.get("/api/orders/GHOST", headers=admin_headers).status_code == 404

    def test_my_orders(self, client, customer_headers, other_headers, product_a):
        place_order(client, customer_headers, (product_a, 1))
        place_order(client, other_headers, (product_a, 1))
        data = client.get("/api/orders/me", headers=customer_headers).json()["data"]
        assert data["total_count"] == 1

    def test_list_all_admin_only(self, client, customer_headers, admin_headers, product_a):
        place_order(client, customer_headers, (product_a, 1))
        assert client.get("/api/orders", headers=customer_headers).status_code == 403
        assert client.get("/api/orders", headers=admin_headers).json()["data"]["total_count"] == 1

    def test_owner_cancels_and_stock_returns(self, client, db, customer_headers, product_a, product_b):
        order = place_order(client, customer_headers, (product_a, 2), (product_b, 1))["order"]

        response = client.patch(
            f"/api/orders/{order['id']}/status", json={"status": "cancelled"}, headers=customer_headers
        )

        assert response.status_code == 200
        assert response.json()["data"]["order"]["payment_status"] == "failed"
        assert stock_of(db, product_a) == 5
        assert stock_of(db, product_b) == 3

    def test_owner_cannot_deliver(self, client, customer_headers, product_a):
        order = place_order(client, customer_headers, (product_a, 1))["order"]
        response = client.patch(
            f"/api/orders/{order['id']}/status", json={"status": "delivered"}, headers=customer_headers
        )
        assert response.status_code == 403

    def test_other_customer_cannot_cancel(self, client, customer_headers, other_headers, product_a):
        order = place_order(client, customer_headers, (product_a, 1))["order"]
        response = client.patch(
            f"/api/orders/{order['id']}/status", json={"status": "cancelled"}, headers=other_headers
        )
        assert response.status_code == 403

    def test_admin_delivers(self, client, customer_headers, admin_headers, product_a):
        order = place_order(client, customer_headers, (product_a, 1))["order"]
        response = client.patch(
            f"/api/orders/{order['order_id']}/status", json={"status": "delivered"}, headers=admin_headers
        )
        assert response.status_code == 200
        assert response.json()["data"]["order"]["payment_status"] == "paid"

    def test_invalid_status_rejected_by_schema(self, client, admin_headers, customer_headers, product_a):
        order = place_order(client, customer_headers, (product_a, 1))["order"]
        response = client.patch(
            f"/api/orders/{order['id']}/status", json={"status": "lost"}, headers=admin_headers
        )
        assert response.status_code == 422

    def test_delete_admin_only(self, client, db, customer_headers, admin_headers, product_a):
        order = place_order(client, customer_headers, (product_a, 2))["order"]

        assert client.delete(f"/api/orders/{order['id']}", headers=customer_headers).status_code == 403

        response = client.delete(f"/api/orders/{order['id']}", headers=admin_headers)
        assert response.status_code == 200
        assert stock_of(db, product_a) == 5
        assert client.get(f"/api/orders/{order['id']}", headers=admin_headers).status_code == 404


class TestPaymentCallbackRoute:
    def test_success(self, client, db, customer_headers, product_a):
        order = place_order(
            client, customer_headers, (product_a, 1), payment_method="bank_transfer", order_id="PAY-9"
        )["order"]
        data = json.dumps({"embed_data": json.dumps({"orderId": "PAY-9"})})

        response = client.post("/api/orders/callback", json={"data": data, "mac": sign(KEY2, data)})

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "success"
        assert body["data"]["order"]["id"] == order["id"]
        assert body["data"]["order"]["payment_status"] == "paid"
        assert body["data"]["order"]["status"] == "processing"

    def test_bad_mac(self, client, db, customer_headers, product_a):
        place_order(client, customer_headers, (product_a, 1), payment_method="bank_transfer", order_id="PAY-10")
        data = json.dumps({"embed_data": json.dumps({"orderId": "PAY-10"})})

        response = client.post("/api/orders/callback", json={"data": data, "mac": "forged"})

        assert response.status_code == 200
        assert response.json() == {"return_code": 0, "return_message": "MAC not equal"}
        stored = db["order"].find_one({"order_id": "PAY-10"})
        assert stored["payment_status"] == "pending"
        assert stored["status"] == "pending"

    def test_empty_body(self, client):
        response = client.post("/api/orders/callback", json={})
        assert response.status_code == 200
        assert response.json()["return_code"] == 0

    def test_non_string_data(self, client):
        response = client.post("/api/orders/callback", json={"data": 123, "mac": "x"})
        assert response.status_code == 200
        assert response.json() == {"return_code": 0, "return_message": "Invalid callback payload"}

    def test_non_ascii_mac(self, client):
        response = client.post("/api/orders/callback", json={"data": "{}", "mac": "ü"})
        assert response.status_code == 200
        assert response.json() == {"return_code": 0, "return_message": "MAC not equal"}

    @pytest.mark.parametrize("content", [b"not json", b"[1, 2]", b""])
    def test_body_not_an_object(self, client, content):
        response = client.post(
            "/api/orders/callback", content=content, headers={"Content-Type": "application/json"}
        )
        assert response.status_code == 200
        assert response.json()["return_code"] == 0


class TestDashboardRoutes:
    def test_admin_only(self, client, customer_headers):
        for path in ("overview", "recent-orders", "statistics"):
            assert client.get(f"/api/dashboard/{path}", headers=customer_headers).status_code == 403

    def test_overview_after_delivery(self, client, customer_headers, admin_headers, product_a):
        order = place_order(client, customer_headers, (product_a, 1))["order"]
        client.patch(f"/api/orders/{order['id']}/status", json={"status": "delivered"}, headers=admin_headers)

        overview = client.get("/api/dashboard/overview", headers=admin_headers).json()["data"]

        assert overview["total_orders"] == 1
        assert overview["total_pending_orders"] == 0
        assert overview["total_income"] == 100
        assert overview["total_users"] == 2

    def test_recent_and_statistics(self, client, customer_headers, admin_headers, product_a):
        place_order(client, customer_headers, (product_a, 1))

        recent = client.get("/api/dashboard/recent-orders", headers=admin_headers).json()["data"]
        stats = client.get("/api/dashboard/statistics", headers=admin_headers).json()["data"]

        assert len(recent["orders"]) == 1
        assert stats["total_products"] == 1
        assert stats["products_per_category"] == [{"category": "Flowers", "count": 1}]
