from pathlib import Path
from typing import Dict, Tuple

import mongomock
import pytest
from bson import ObjectId
from fastapi.testclient import TestClient

import database
import main
import security
from config import get_settings


@pytest.fixture(autouse=True)
def _test_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("JWT_SECRET", "test-secret-that-is-definitely-long-enough")
    monkeypatch.setenv("SESSION_FILE", str(tmp_path / "session.sqlite"))
    monkeypatch.setenv("CACHE_FILE", str(tmp_path / "cache.sqlite"))
    monkeypatch.setenv("API_BASE_URL", "http://novels.test/api")
    for name in ("ADMIN_USERNAME", "ADMIN_EMAIL", "ADMIN_PASSWORD"):
        monkeypatch.delenv(name, raising=False)
    # hashing cost is irrelevant to behaviour under test
    monkeypatch.setattr(security, "PBKDF2_ITERATIONS", 1000)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def mongo(monkeypatch: pytest.MonkeyPatch):
    db = mongomock.MongoClient().novels_test
    monkeypatch.setattr(database, "db", db)
    return db


@pytest.fixture
def client(mongo) -> TestClient:
    return TestClient(main.app)


def register(client: TestClient, username: str, password: str = "secret123") -> Tuple[str, Dict[str, str]]:
    r = client.post("/api/users/register", json={
        "username": username,
        "email": f"{username}@example.com",
        "password": password,
    })
    assert r.status_code == 201, r.text
    r = client.post("/api/users/login", json={"usernameOrEmail": username, "password": password})
    assert r.status_code == 200, r.text
    data = r.json()["data"]
    return data["user"]["id"], {"Authorization": f"Bearer {data['token']}"}


def make_admin(mongo, user_id: str) -> None:
    mongo["user"].update_one({"_id": ObjectId(user_id)}, {"$set": {"roles": ["USER", "ADMIN"]}})


@pytest.fixture
def alice(client: TestClient) -> Tuple[str, Dict[str, str]]:
    return register(client, "alice")


@pytest.fixture
def bob(client: TestClient) -> Tuple[str, Dict[str, str]]:
    return register(client, "bob")
