from datetime import datetime, timedelta, timezone

import jwt
from bson import ObjectId
from fastapi.testclient import TestClient

import database
import main
from config import get_settings
from conftest import make_admin, register


def test_health(client):
    r = client.get("/api/health")
    assert r.status_code == 200
    body = r.json()
    assert body["success"] is True
    assert body["data"] == {"status": "UP"}
    assert body["errors"] is None


def test_register_hides_password_and_rejects_duplicates(client, mongo):
    r = client.post("/api/users/register", json={"username": "carol", "email": "Carol@Example.com", "password": "secret123"})
    assert r.status_code == 201
    user = r.json()["data"]
    assert user["username"] == "carol"
    assert user["email"] == "carol@example.com"
    assert "password" not in user
    assert user["roles"] == ["USER"]
    stored = mongo["user"].find_one({"_id": ObjectId(user["id"])})
    assert stored["password"] != "secret123"

    r = client.post("/api/users/register", json={"username": "carol", "email": "other@example.com", "password": "secret123"})
    assert r.status_code == 409
    assert r.json()["success"] is False


def test_register_validation_error_is_400(client):
    r = client.post("/api/users/register", json={"username": "dan", "email": "dan@example.com", "password": "123"})
    assert r.status_code == 400
    body = r.json()
    assert body["message"] == "Validation failed"
    assert any(e.startswith("password") for e in body["errors"])


def test_login_with_email_and_bad_password(client, alice):
    r = client.post("/api/users/login", json={"usernameOrEmail": "alice@example.com", "password": "secret123"})
    assert r.status_code == 200
    data = r.json()["data"]
    assert data["token"] and data["refreshToken"]
    assert data["user"]["username"] == "alice"

    r = client.post("/api/users/login", json={"usernameOrEmail": "alice", "password": "wrong-password"})
    assert r.status_code == 400


def test_me_requires_bearer_token(client, alice):
    _, headers = alice
    r = client.get("/api/users/me")
    assert r.status_code == 401
    assert r.headers["WWW-Authenticate"] == "Bearer"

    r = client.get("/api/users/me", headers=headers)
    assert r.status_code == 200
    assert r.json()["data"]["username"] == "alice"


def test_expired_access_token_is_401(client, alice):
    user_id, _ = alice
    past = datetime.now(timezone.utc) - timedelta(minutes=5)
    token = jwt.encode(
        {"sub": "alice", "typ": "access", "userId": user_id, "iat": past - timedelta(hours=1), "exp": past},
        "test-secret-that-is-definitely-long-enough",
        algorithm="HS256",
    )
    r = client.get("/api/users/me", headers={"Authorization": f"Bearer {token}"})
    assert r.status_code == 401
    assert r.json()["message"] == "Token has expired"


def test_refresh_issues_new_pair(client):
    client.post("/api/users/register", json={"username": "erin", "email": "erin@example.com", "password": "secret123"})
    login = client.post("/api/users/login", json={"usernameOrEmail": "erin", "password": "secret123"}).json()["data"]

    r = client.post("/api/users/refresh", params={"refreshToken": login["refreshToken"]})
    assert r.status_code == 200
    fresh = r.json()["data"]
    assert fresh["token"] != login["token"]
    assert fresh["refreshToken"] != login["refreshToken"]
    assert fresh["user"]["id"] == login["user"]["id"]

    me = client.get("/api/users/me", headers={"Authorization": f"Bearer {fresh['token']}"})
    assert me.status_code == 200


def test_refresh_rejects_garbage_and_access_tokens(client):
    client.post("/api/users/register", json={"username": "finn", "email": "finn@example.com", "password": "secret123"})
    login = client.post("/api/users/login", json={"usernameOrEmail": "finn", "password": "secret123"}).json()["data"]

    assert client.post("/api/users/refresh", params={"refreshToken": "not-a-jwt"}).status_code == 400
    r = client.post("/api/users/refresh", params={"refreshToken": login["token"]})
    assert r.status_code == 400
    assert r.json()["message"] == "Invalid refresh token"


def test_list_users_is_admin_only(client, mongo, alice, bob):
    alice_id, alice_headers = alice
    assert client.get("/api/users", headers=alice_headers).status_code == 403

    make_admin(mongo, alice_id)
    r = client.get("/api/users", headers=alice_headers, params={"q": "bo"})
    assert r.status_code == 200
    page = r.json()["data"]
    assert page["totalElements"] == 1
    assert page["content"][0]["username"] == "bob"


def test_update_user_cannot_touch_roles_unless_admin(client, alice, bob):
    alice_id, alice_headers = alice
    bob_id, _ = bob

    r = client.put(f"/api/users/{alice_id}", headers=alice_headers, json={"bio": "reader"})
    assert r.status_code == 200
    assert r.json()["data"]["bio"] == "reader"

    assert client.put(f"/api/users/{alice_id}", headers=alice_headers, json={"roles": ["ADMIN"]}).status_code == 403
    assert client.put(f"/api/users/{bob_id}", headers=alice_headers, json={"bio": "x"}).status_code == 403


def test_change_password(client, alice):
    user_id, headers = alice
    r = client.put(f"/api/users/{user_id}/change-password", headers=headers, json={
        "current_password": "wrong-one",
        "new_password": "newsecret",
        "confirm_password": "newsecret",
    })
    assert r.status_code == 400

    r = client.put(f"/api/users/{user_id}/change-password", headers=headers, json={
        "current_password": "secret123",
        "new_password": "newsecret",
        "confirm_password": "newsecret",
    })
    assert r.status_code == 200
    r = client.post("/api/users/login", json={"usernameOrEmail": "alice", "password": "newsecret"})
    assert r.status_code == 200


def test_become_author_returns_tokens_with_new_role(client, alice):
    user_id, headers = alice
    r = client.post(f"/api/users/{user_id}/become-author", headers=headers, json={"author_name": "A. Writer"})
    assert r.status_code == 200
    data = r.json()["data"]
    assert "AUTHOR" in data["user"]["roles"]
    claims = jwt.decode(data["token"], options={"verify_signature": False})
    assert "AUTHOR" in claims["roles"]


def test_banned_user_is_forbidden(client, mongo, alice):
    user_id, headers = alice
    mongo["user"].update_one({"_id": ObjectId(user_id)}, {"$set": {"status": "BANNED"}})
    assert client.get("/api/users/me", headers=headers).status_code == 403
    r = client.post("/api/users/login", json={"usernameOrEmail": "alice", "password": "secret123"})
    assert r.status_code == 403


def test_invalid_object_id_is_400(client):
    r = client.get("/api/users/not-an-id")
    assert r.status_code == 400
    assert r.json()["message"] == "Invalid ID format"


def test_admin_deletes_user(client, mongo, alice, bob):
    alice_id, alice_headers = alice
    bob_id, _ = bob
    make_admin(mongo, alice_id)
    assert client.delete(f"/api/users/{bob_id}", headers=alice_headers).status_code == 200
    assert client.get(f"/api/users/{bob_id}").status_code == 404


def test_database_unavailable_is_503(monkeypatch):
    monkeypatch.setattr(database, "db", None)
    r = TestClient(main.app).get("/api/users/by-username/alice")
    assert r.status_code == 503


def test_register_helper_roundtrip(client):
    user_id, headers = register(client, "gina")
    assert client.get("/api/users/me", headers=headers).json()["data"]["id"] == user_id


def test_database_diagnostics(client):
    r = client.get("/test")
    assert r.status_code == 200
    body = r.json()
    assert body["backend"] == "✅ Running"
    assert body["connection_status"] == "Connected"
    assert body["database_name"] == "novels_test"


def test_admin_is_bootstrapped_on_startup(mongo, monkeypatch):
    monkeypatch.setenv("ADMIN_USERNAME", "root")
    monkeypatch.setenv("ADMIN_PASSWORD", "adminpass")
    get_settings.cache_clear()

    with TestClient(main.app) as c:
        r = c.post("/api/users/login", json={"usernameOrEmail": "root", "password": "adminpass"})
        assert r.status_code == 200
        assert "ADMIN" in r.json()["data"]["user"]["roles"]
        assert r.json()["data"]["user"]["email"] == "root@localhost"


def test_update_user_rejects_null_for_required_fields(client, mongo, alice):
    user_id, headers = alice
    r = client.put(f"/api/users/{user_id}", headers=headers, json={"email": None})
    assert r.status_code == 400
    assert any(e.startswith("email") for e in r.json()["errors"])
    assert mongo["user"].find_one({"_id": ObjectId(user_id)})["email"] == "alice@example.com"

    r = client.put(f"/api/users/{user_id}", headers=headers, json={"bio": None})
    assert r.status_code == 200
    assert r.json()["data"]["bio"] is None
