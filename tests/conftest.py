import mongomock
import pytest
from fastapi.testclient import TestClient

import security
from config import Settings
from main import create_app


@pytest.fixture(autouse=True, scope="session")
def fast_hashing():
    # minimum bcrypt cost keeps the suite quick
    security.pwd_context.update(bcrypt__rounds=4)


@pytest.fixture
def settings():
    return Settings(jwt_secret="test-secret", database_name="storefront_test", environment="test")


@pytest.fixture
def db():
    return mongomock.MongoClient()["storefront_test"]


@pytest.fixture
def client(settings, db):
    app = create_app(settings, db)
    with TestClient(app) as c:
        yield c


def register(client, email="jane@example.com", password="secret123", name="Jane"):
    res = client.post(
        "/api/auth/register",
        json={"name": name, "email": email, "password": password, "phone": "9999999999", "address": "1 Main St"},
    )
    assert res.status_code == 200, res.text
    return res.json()["data"]


def auth_header(token):
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def user(client):
    data = register(client)
    return {"id": data["user"]["id"], "headers": auth_header(data["token"])}


@pytest.fixture
def admin(client, db):
    data = register(client, email="admin@example.com", name="Admin")
    db["user"].update_one({"email": "admin@example.com"}, {"$set": {"role": "admin"}})
    return {"id": data["user"]["id"], "headers": auth_header(data["token"])}


@pytest.fixture
def category(client, admin):
    res = client.post("/api/products/categories", json={"name": "Kurtis"}, headers=admin["headers"])
    assert res.status_code == 201, res.text
    return res.json()["data"]["id"]


@pytest.fixture
def make_product(client, admin, category):
    def _make(**overrides):
        body = {
            "name": "Silk Kurti",
            "description": "Soft silk",
            "price": 500,
            "category": category,
            "stock_quantity": 3,
            "sizes": ["M"],
            "colors": ["Red"],
        }
        body.update(overrides)
        res = client.post("/api/products", json=body, headers=admin["headers"])
        assert res.status_code == 201, res.text
        return res.json()["data"]

    return _make
