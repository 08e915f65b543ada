import os

# keep the app's module-level engine off the real database file
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("LOG_LEVEL", "WARNING")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

from finance_tracker.database import get_session
from finance_tracker.main import app
from finance_tracker.models import budget, category, transaction, user  # noqa: F401


PASSWORD = "Secret123!"


@pytest.fixture(name="engine")
def engine_fixture():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    SQLModel.metadata.drop_all(engine)


@pytest.fixture(name="session")
def session_fixture(engine):
    with Session(engine) as session:
        yield session


@pytest.fixture(name="client")
def client_fixture(engine):
    def get_session_override():
        with Session(engine) as session:
            yield session

    app.dependency_overrides[get_session] = get_session_override
    client = TestClient(app)
    yield client
    app.dependency_overrides.clear()


def register(client, email="ana@example.com", password=PASSWORD, **extra):
    payload = {
        "email": email,
        "password": password,
        "first_name": "Ana",
        "last_name": "Lopez",
        **extra,
    }
    return client.post("/api/auth/register", json=payload)


def login(client, email="ana@example.com", password=PASSWORD):
    return client.post("/api/auth/login", json={"email": email, "password": password})


def _headers_for(client, email):
    r = register(client, email=email)
    assert r.status_code == 201, r.text
    r = login(client, email=email)
    assert r.status_code == 200, r.text
    token = r.json()["data"]["access_token"]
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def auth_headers(client):
    return _headers_for(client, "ana@example.com")


@pytest.fixture
def other_headers(client):
    return _headers_for(client, "bob@example.com")


@pytest.fixture
def user_id(client, auth_headers):
    return client.get("/api/auth/me", headers=auth_headers).json()["data"]["id"]


@pytest.fixture
def make_category(client, auth_headers):
    def _make(name, parent_id=None, headers=None, **extra):
        payload = {"name": name, "parent_id": parent_id, **extra}
        r = client.post("/api/categories", json=payload, headers=headers or auth_headers)
        assert r.status_code == 201, r.text
        return r.json()["data"]

    return _make


@pytest.fixture
def make_transaction(client, auth_headers):
    def _make(category_id, amount=10.0, type="expense", date="2026-03-10T12:00:00", headers=None, **extra):
        payload = {
            "title": extra.pop("title", f"{type} {amount}"),
            "amount": amount,
            "type": type,
            "category_id": category_id,
            "payment_method": "debit_card",
            "date": date,
            **extra,
        }
        r = client.post("/api/transactions", json=payload, headers=headers or auth_headers)
        assert r.status_code == 201, r.text
        return r.json()["data"]

    return _make
