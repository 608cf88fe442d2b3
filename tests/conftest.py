"""Shared fixtures: an in-memory database and an app client wired to it."""

import os

os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("REVIEW_MODE", "strict")

import pytest
from httpx import ASGITransport, AsyncClient

import config
from database import get_db
from main import app
from schemas import utcnow
from security import create_access_token
from tests.fakes import make_database


@pytest.fixture
def db():
    return make_database()


@pytest.fixture
async def client(db):
    app.dependency_overrides[get_db] = lambda: db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def guest_mode(monkeypatch):
    monkeypatch.setattr(config, "REVIEW_MODE", "guest")


@pytest.fixture
def make_user(db):
    """Insert a user directly and return (actor, auth headers)."""

    async def _make(name="Ada Lovelace", email=None):
        email = email or f"{name.split()[0].lower()}@example.com"
        doc = await db.users.create(
            {"name": name, "email": email, "password_hash": "x", "created_at": utcnow()}
        )
        uid = str(doc["_id"])
        token = create_access_token({"sub": uid, "email": email, "name": name})
        return {"id": uid, "email": email, "name": name}, {"Authorization": f"Bearer {token}"}

    return _make


@pytest.fixture
def make_product(client):
    async def _make(headers, **fields):
        body = {"title": "Desk Lamp", "price": 25.0, "category": "home", **fields}
        res = await client.post("/products", json=body, headers=headers)
        assert res.status_code == 201, res.text
        return res.json()

    return _make
