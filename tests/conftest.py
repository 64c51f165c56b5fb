from datetime import datetime, timedelta, timezone

import mongomock
import pytest
from fastapi.testclient import TestClient

import database


@pytest.fixture
def db(monkeypatch):
    mock_db = mongomock.MongoClient().db
    monkeypatch.setattr(database, "db", mock_db)
    return mock_db


@pytest.fixture
def client(db):
    from main import app
    return TestClient(app)


@pytest.fixture
def register(client):
    """Sign a user up over HTTP; returns id, token and auth headers."""

    def _register(name, email, password="secret123", address="12 Baker St", phone_number="555-0100"):
        resp = client.post("/api/auth/register", json={
            "name": name,
            "email": email,
            "password": password,
            "address": address,
            "phone_number": phone_number,
        })
        assert resp.status_code == 201, resp.text
        body = resp.json()
        return {
            "id": body["user"]["id"],
            "name": name,
            "token": body["token"],
            "headers": {"Authorization": f"Bearer {body['token']}"},
        }

    return _register


@pytest.fixture
def list_food(client):
    def _list_food(user, title="Bread", **fields):
        payload = {
            "title": title,
            "description": fields.pop("description", "Fresh sourdough loaves"),
            "quantity": fields.pop("quantity", "3 loaves"),
            "expiry_date": fields.pop("expiry_date", (datetime.now(timezone.utc) + timedelta(days=2)).isoformat()),
            "category": fields.pop("category", "fresh"),
            "location": fields.pop("location", "12 Baker St"),
            **fields,
        }
        resp = client.post("/api/food-items", json=payload, headers=user["headers"])
        assert resp.status_code == 201, resp.text
        return resp.json()

    return _list_food
