"""Pytest fixtures for the e-commerce API tests."""

from datetime import datetime, timezone

import mongomock
import pytest
from fastapi.testclient import TestClient

from catalog import CategoryService, ProductService
from main import create_app
from orders import OrderService
from payments import PaymentGateway
from recognition import ImageRecognizer
from security import create_token
from users import UserService

KEY1 = "test-key1"
KEY2 = "test-key2"
FIXED_NOW = datetime(2024, 5, 15, 12, 0, tzinfo=timezone.utc)


class FakeResponse:
    def __init__(self, payload, status_code=200):
        self.payload = payload
        self.status_code = status_code

    def raise_for_status(self):
        pass

    def json(self):
        return self.payload


class FakeHttp:
    """Records provider requests instead of sending them."""

    def __init__(self, payload=None, error=None):
        self.payload = payload or {"return_code": 1, "order_url": "https://pay.example.com/o/1"}
        self.error = error
        self.calls = []

    def post(self, url, data=None, files=None, timeout=None):
        self.calls.append({"url": url, "data": data, "files": files, "timeout": timeout})
        if self.error is not None:
            raise self.error
        return FakeResponse(self.payload)


@pytest.fixture
def db():
    """A fresh in-memory MongoDB database."""
    return mongomock.MongoClient().db


@pytest.fixture
def http():
    return FakeHttp()


@pytest.fixture
def gateway(http):
    return PaymentGateway(app_id="2553", key1=KEY1, endpoint="https://provider.test/v2/create", http=http)


@pytest.fixture
def recognition_http():
    return FakeHttp(payload={"label": "rose", "name": "Rose"})


@pytest.fixture
def recognizer(recognition_http):
    return ImageRecognizer("https://recognizer.test/predict", http=recognition_http)


@pytest.fixture
def order_service(db):
    return OrderService(db)


@pytest.fixture
def category(db):
    return CategoryService(db).create_category({"name": "Flowers", "slug": "flowers"})


@pytest.fixture
def product_a(db, category):
    return ProductService(db).create_product({
        "name": "Red Rose",
        "slug": "red-rose",
        "category_id": str(category["_id"]),
        "price": 100,
        "stock": 5,
        "images": ["https://img.example.com/rose.png"],
    })


@pytest.fixture
def product_b(db, category):
    return ProductService(db).create_product({
        "name": "Tulip",
        "slug": "tulip",
        "category_id": str(category["_id"]),
        "price": 40,
        "stock": 3,
    })


def stock_of(db, product):
    return db["product"].find_one({"_id": product["_id"]})["stock"]


def order_payload(*lines, **overrides):
    """Build a create-order payload from (product, quantity) pairs."""
    items = [
        {"product_id": str(product["_id"]), "quantity": quantity, "price": product["price"]}
        for product, quantity in lines
    ]
    subtotal = sum(item["price"] * item["quantity"] for item in items)
    payload = {
        "items": items,
        "customer_name": "Jane Doe",
        "customer_email": "jane@example.com",
        "customer_phone": "0901234567",
        "shipping_address": "1 Main St",
        "payment_method": "cash",
        "subtotal": subtotal,
        "shipping_fee": 0,
        "discount": 0,
        "total": subtotal,
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def app(db, gateway, recognizer, monkeypatch):
    monkeypatch.setattr("config.PAYMENT_KEY2", KEY2)
    return create_app(db=db, gateway=gateway, clock=lambda: FIXED_NOW, recognizer=recognizer)


@pytest.fixture
def client(app):
    return TestClient(app)


@pytest.fixture
def admin(db):
    user = UserService(db).ensure_admin("admin@example.com", "admin-pass")
    return user


@pytest.fixture
def customer(db):
    return UserService(db).register({"name": "Jane", "email": "jane@example.com", "password": "secret1"})


@pytest.fixture
def other_customer(db):
    return UserService(db).register({"name": "Bob", "email": "bob@example.com", "password": "secret2"})


def auth(token):
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def admin_headers(admin):
    return auth(create_token(admin))


@pytest.fixture
def customer_headers(customer):
    return auth(customer["token"])


@pytest.fixture
def other_headers(other_customer):
    return auth(other_customer["token"])
