# tests/conftest.py
from datetime import timedelta
from unittest.mock import MagicMock

import mongomock
import pytest
from fastapi.testclient import TestClient

from config import Settings, get_settings
from database import get_db, now_utc
from main import app
from payments import CheckoutClient, get_checkout_client

CHECKOUT_URL = "https://checkout.stripe.test/c/pay/cs_test_123"

ADDRESS = {
    "first_name": "Ada",
    "last_name": "Lovelace",
    "address": "12 Analytical Row",
    "city": "London",
    "postal_code": "N1 9GU",
    "province": "Greater London",
    "country": "UK",
    "phone": "+44 20 7946 0000",
}


@pytest.fixture
def settings():
    return Settings(JWT_SECRET="test-secret", STRIPE_WEBHOOK_SECRET="whsec_test")


@pytest.fixture
def db():
    """A fresh in-memory Mongo database per test."""
    return mongomock.MongoClient()["ecommerce_test"]


@pytest.fixture
def checkout(settings):
    """Checkout client with the Stripe call mocked out."""
    client = MagicMock(spec=CheckoutClient)
    client.create_session.return_value = CHECKOUT_URL
    return client


@pytest.fixture
def client(db, checkout, settings):
    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_checkout_client] = lambda: checkout
    app.dependency_overrides[get_settings] = lambda: settings
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


def _register(client, name, email, password="secret123"):
    resp = client.post("/users/register", json={"name": name, "email": email, "password": password})
    assert resp.status_code == 201, resp.text
    resp = client.post("/users/login", json={"email": email, "password": password})
    assert resp.status_code == 200, resp.text
    return {"Authorization": f"Bearer {resp.json()['token']}"}


@pytest.fixture
def user_headers(client):
    return _register(client, "Ada", "ada@example.com")


@pytest.fixture
def shipped_headers(client, user_headers):
    """Headers of a user that has a shipping address on file."""
    resp = client.put("/users/update/shipping", json=ADDRESS, headers=user_headers)
    assert resp.status_code == 200, resp.text
    return user_headers


@pytest.fixture
def admin_headers(client, db):
    headers = _register(client, "Admin", "admin@example.com")
    db["user"].update_one({"email": "admin@example.com"}, {"$set": {"is_admin": True}})
    return headers


@pytest.fixture
def make_coupon(db):
    def _make(code="SAVE10", discount=10, expired=False):
        now = now_utc()
        end = now - timedelta(days=1) if expired else now + timedelta(days=10)
        db["coupon"].insert_one({
            "code": code.upper(),
            "discount": discount,
            "start_date": now - timedelta(days=30),
            "end_date": end,
        })
    return _make
