import time
import uuid

from jose import jwt

from finance_tracker.config import settings
from finance_tracker.core.jwt import create_refresh_token

from conftest import PASSWORD, login, register


def test_register_returns_user_without_password(client):
    r = register(client, email="Ana@Example.com")
    assert r.status_code == 201
    body = r.json()
    assert body["success"] is True
    user = body["data"]
    assert user["email"] == "ana@example.com"
    assert user["default_currency"] == "USD"
    assert "hashed_password" not in user
    assert "password" not in user


def test_register_normalizes_default_currency(client):
    r = register(client, default_currency=" eur ")
    assert r.json()["data"]["default_currency"] == "EUR"

    r = register(client, email="bo@example.com", default_currency="e1r")
    assert r.status_code == 400


def test_register_duplicate_email_conflicts(client):
    assert register(client).status_code == 201
    r = register(client)
    assert r.status_code == 409
    assert r.json() == {"success": False, "message": "Email already registered"}


def test_register_rejects_weak_passwords(client):
    for password in ("short1!", "NoDigitsHere!", "NoSpecial123", "has space1!"):
        r = register(client, password=password)
        assert r.status_code == 400, password
        assert r.json()["success"] is False


def test_register_missing_fields_is_validation_error(client):
    r = client.post("/api/auth/register", json={"email": "x@example.com", "password": PASSWORD})
    assert r.status_code == 400
    body = r.json()
    assert body["message"] == "Validation error"
    assert any(e.startswith("first_name") for e in body["errors"])


def test_login_sets_refresh_cookie_and_returns_access_token(client):
    register(client)
    r = login(client)
    assert r.status_code == 200
    data = r.json()["data"]
    assert data["token_type"] == "bearer"
    assert data["user"]["email"] == "ana@example.com"
    assert data["user"]["last_login"] is not None
    assert "refresh_token" in r.cookies
    set_cookie = r.headers["set-cookie"].lower()
    assert "httponly" in set_cookie

    me = client.get("/api/auth/me", headers={"Authorization": f"Bearer {data['access_token']}"})
    assert me.status_code == 200
    assert me.json()["data"]["id"] == data["user"]["id"]


def test_login_with_wrong_password(client):
    register(client)
    r = login(client, password="Wrong123!")
    assert r.status_code == 401
    assert r.json()["message"] == "Invalid email or password"


def test_request_without_token_is_rejected(client):
    r = client.get("/api/auth/me")
    assert r.status_code == 401
    assert r.json() == {"success": False, "message": "Authentication required"}


def test_invalid_and_expired_tokens_are_rejected(client, auth_headers, user_id):
    r = client.get("/api/auth/me", headers={"Authorization": "Bearer not-a-jwt"})
    assert r.status_code == 401

    expired = jwt.encode(
        {"sub": user_id, "type": "access", "exp": int(time.time()) - 60},
        settings.jwt_secret,
        algorithm=settings.jwt_algorithm,
    )
    r = client.get("/api/auth/me", headers={"Authorization": f"Bearer {expired}"})
    assert r.status_code == 401
    assert r.json()["message"] == "Token expired"

    forged = jwt.encode(
        {"sub": user_id, "type": "access", "exp": int(time.time()) + 60},
        "some-other-secret",
        algorithm=settings.jwt_algorithm,
    )
    r = client.get("/api/auth/me", headers={"Authorization": f"Bearer {forged}"})
    assert r.status_code == 401


def test_refresh_token_cannot_be_used_as_access_token(client, user_id):
    refresh = create_refresh_token({"sub": user_id})
    r = client.get("/api/auth/me", headers={"Authorization": f"Bearer {refresh}"})
    assert r.status_code == 401


def test_token_for_unknown_user_is_rejected(client):
    token = jwt.encode(
        {"sub": str(uuid.uuid4()), "type": "access", "exp": int(time.time()) + 60},
        settings.jwt_secret,
        algorithm=settings.jwt_algorithm,
    )
    r = client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert r.status_code == 401


def test_refresh_rotates_cookie_and_issues_access_token(client):
    register(client)
    login(client)
    r = client.post("/api/auth/refresh")
    assert r.status_code == 200
    token = r.json()["data"]["access_token"]
    assert "refresh_token" in r.cookies
    assert client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"}).status_code == 200


def test_refresh_without_cookie(client):
    r = client.post("/api/auth/refresh")
    assert r.status_code == 401
    assert r.json()["message"] == "Refresh token required"


def test_refresh_with_access_token_in_cookie(client, user_id):
    client.cookies.clear()
    access = jwt.encode(
        {"sub": user_id, "type": "access", "exp": int(time.time()) + 60},
        settings.jwt_secret,
        algorithm=settings.jwt_algorithm,
    )
    client.cookies.set("refresh_token", access)
    r = client.post("/api/auth/refresh")
    assert r.status_code == 401


def test_logout_clears_cookie(client):
    register(client)
    login(client)
    r = client.post("/api/auth/logout")
    assert r.status_code == 200
    assert "refresh_token=" in r.headers["set-cookie"]
    assert client.post("/api/auth/refresh").status_code == 401


def test_oauth2_token_form(client):
    register(client)
    r = client.post("/api/auth/token", data={"username": "ana@example.com", "password": PASSWORD})
    assert r.status_code == 200
    body = r.json()
    assert body["token_type"] == "bearer"
    assert client.get("/api/auth/me", headers={"Authorization": f"Bearer {body['access_token']}"}).status_code == 200


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}
