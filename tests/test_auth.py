from datetime import timedelta

from conftest import auth_header, register
from security import create_access_token


def test_register_returns_token_and_user_without_hash(client):
    data = register(client, email="Mixed@Example.com")
    assert data["token"]
    assert data["user"]["email"] == "mixed@example.com"
    assert data["user"]["role"] == "user"
    assert "password_hash" not in data["user"]


def test_register_duplicate_email(client):
    register(client)
    res = client.post(
        "/api/auth/register",
        json={"name": "Other", "email": "jane@example.com", "password": "secret123", "phone": "1", "address": "x"},
    )
    assert res.status_code == 400
    assert res.json() == {"success": False, "message": "User already exists with this email"}


def test_register_validation_errors(client):
    res = client.post("/api/auth/register", json={"name": "A", "email": "not-an-email", "password": "123"})
    assert res.status_code == 400
    body = res.json()
    assert body["success"] is False
    fields = {e["field"] for e in body["errors"]}
    assert {"email", "password", "phone", "address"} <= fields


def test_login_records_event(client, db):
    register(client)
    res = client.post("/api/auth/login", json={"email": "jane@example.com", "password": "secret123"})
    assert res.status_code == 200
    assert res.json()["data"]["token"]
    assert db["loginevent"].count_documents({}) == 1


def test_login_bad_password(client, db):
    register(client)
    res = client.post("/api/auth/login", json={"email": "jane@example.com", "password": "wrong-one"})
    assert res.status_code == 400
    assert res.json()["message"] == "Invalid credentials"
    assert db["loginevent"].count_documents({}) == 0


def test_current_user_requires_token(client):
    assert client.get("/api/auth/user").status_code == 401
    res = client.get("/api/auth/user", headers=auth_header("garbage"))
    assert res.status_code == 401
    assert res.json()["success"] is False


def test_current_user(client, user):
    res = client.get("/api/auth/user", headers=user["headers"])
    assert res.status_code == 200
    assert res.json()["data"]["id"] == user["id"]


def test_expired_token_rejected(client, settings, user):
    token = create_access_token(settings, {"sub": user["id"]}, timedelta(minutes=-1))
    assert client.get("/api/auth/user", headers=auth_header(token)).status_code == 401


def test_token_for_deleted_user_rejected(client, db, user):
    db["user"].delete_many({})
    assert client.get("/api/auth/user", headers=user["headers"]).status_code == 401


def test_update_profile(client, user):
    res = client.put("/api/auth/profile", json={"name": "Janet", "address": "2 High St"}, headers=user["headers"])
    assert res.status_code == 200
    assert res.json()["data"]["name"] == "Janet"
    assert res.json()["data"]["address"] == "2 High St"
    assert res.json()["data"]["phone"] == "9999999999"


def test_change_password(client, user):
    res = client.put(
        "/api/auth/password",
        json={"currentPassword": "wrong", "newPassword": "another1"},
        headers=user["headers"],
    )
    assert res.status_code == 400
    res = client.put(
        "/api/auth/password",
        json={"currentPassword": "secret123", "newPassword": "another1"},
        headers=user["headers"],
    )
    assert res.status_code == 200
    login = client.post("/api/auth/login", json={"email": "jane@example.com", "password": "another1"})
    assert login.status_code == 200


def test_password_reset_flow(client, user):
    assert client.post("/api/auth/forgot-password", json={"email": "nobody@example.com"}).status_code == 404
    res = client.post("/api/auth/forgot-password", json={"email": "jane@example.com"})
    token = res.json()["data"]["reset_token"]

    res = client.post("/api/auth/reset-password", json={"token": token, "newPassword": "fresh123"})
    assert res.status_code == 200
    assert client.post("/api/auth/login", json={"email": "jane@example.com", "password": "fresh123"}).status_code == 200

    # reset tokens are not single use
    res = client.post("/api/auth/reset-password", json={"token": token, "newPassword": "again123"})
    assert res.status_code == 200


def test_reset_token_is_not_an_access_token(client, user):
    token = client.post("/api/auth/forgot-password", json={"email": "jane@example.com"}).json()["data"]["reset_token"]
    assert client.get("/api/auth/user", headers=auth_header(token)).status_code == 401


def test_reset_rejects_access_token_and_garbage(client, user):
    login = client.post("/api/auth/login", json={"email": "jane@example.com", "password": "secret123"})
    access = login.json()["data"]["token"]
    for token in (access, "garbage"):
        res = client.post("/api/auth/reset-password", json={"token": token, "newPassword": "fresh123"})
        assert res.status_code == 400
        assert res.json()["message"] == "Invalid reset token"


def test_login_events_admin_only(client, user, admin):
    client.post("/api/auth/login", json={"email": "jane@example.com", "password": "secret123"})
    assert client.get("/api/auth/login-events", headers=user["headers"]).status_code == 403
    res = client.get("/api/auth/login-events", headers=admin["headers"])
    assert res.status_code == 200
    events = res.json()["data"]
    assert len(events) == 1
    assert events[0]["user"]["email"] == "jane@example.com"


def test_logout_and_verify(client, user):
    assert client.get("/api/auth/verify", headers=user["headers"]).json()["message"] == "Token is valid"
    assert client.post("/api/auth/logout", headers=user["headers"]).json()["success"] is True
