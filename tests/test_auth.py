import smtplib

import pytest

from routers import auth
from utils import mails
from utils.security import create_access_token

from conftest import PASSWORD

pytestmark = pytest.mark.asyncio


async def test_signup_sends_verification_and_returns_token(client, outbox):
    r = await client.post(
        "/api/auth/signup",
        json={"username": "carol", "email": "carol@mail.com", "password": PASSWORD},
    )
    assert r.status_code == 201
    assert r.json()["accessToken"]
    assert outbox[0]["to"] == "carol@mail.com"
    assert "/verify-email/" in outbox[0]["html"]


async def test_signup_rejects_weak_password(client):
    r = await client.post(
        "/api/auth/signup",
        json={"username": "carol", "email": "carol@mail.com", "password": "onlyletters"},
    )
    assert r.status_code == 400
    assert r.json()["success"] is False


async def test_signup_rejects_taken_username_and_email(client, alice):
    r = await client.post(
        "/api/auth/signup",
        json={"username": "alice", "email": "other@mail.com", "password": PASSWORD},
    )
    assert r.status_code == 409

    r = await client.post(
        "/api/auth/signup",
        json={"username": "other", "email": "alice@mail.com", "password": PASSWORD},
    )
    assert r.status_code == 409


async def test_signup_creates_default_preferences(client, alice):
    r = await client.get("/api/settings/preferences", headers=alice)
    assert r.status_code == 200
    prefs = r.json()["preferences"]
    assert prefs["upvotes"] is True
    assert prefs["username"] == "alice"


async def test_login(client, alice):
    r = await client.post("/api/auth/login", json={"username": "alice", "password": PASSWORD})
    assert r.status_code == 200
    assert r.json()["accessToken"]

    r = await client.post("/api/auth/login", json={"username": "alice", "password": "wrongpass1"})
    assert r.status_code == 401

    r = await client.post("/api/auth/login", json={"username": "nobody", "password": PASSWORD})
    assert r.status_code == 404


async def test_username_available(client, alice):
    assert (await client.get("/api/auth/username_available/alice")).status_code == 409
    assert (await client.get("/api/auth/username_available/free_name")).status_code == 200


async def test_auth_required(client):
    r = await client.get("/api/settings/v1/me")
    assert r.status_code == 401
    assert r.json() == {"success": False, "message": "Authentication required"}

    r = await client.get("/api/settings/v1/me", headers={"Authorization": "Bearer garbage"})
    assert r.status_code == 401


async def test_me(client, alice):
    r = await client.get("/api/settings/v1/me", headers=alice)
    assert r.status_code == 200
    body = r.json()
    assert body["user"]["username"] == "alice"
    assert body["user"]["is_verified"] is False
    assert "password" not in body["user"]


async def test_verify_email(client, db, alice):
    user = await db.users.find_one({"username": "alice"})
    token = create_access_token(user["_id"], purpose="verify_email")

    r = await client.patch(f"/api/auth/verify_email/{token}")
    assert r.status_code == 200
    assert (await db.users.find_one({"_id": user["_id"]}))["is_verified"] is True


async def test_access_token_cannot_verify_email(client, db, alice):
    user = await db.users.find_one({"username": "alice"})
    r = await client.patch(f"/api/auth/verify_email/{create_access_token(user['_id'])}")
    assert r.status_code == 401


async def test_forgot_and_reset_password(client, db, alice, outbox):
    r = await client.post("/api/auth/password", json={"username": "alice", "email": "alice@mail.com"})
    assert r.status_code == 200
    assert "/reset-password/" in outbox[-1]["html"]

    user = await db.users.find_one({"username": "alice"})
    token = create_access_token(user["_id"], purpose="reset_password")

    r = await client.post(f"/api/auth/reset_password/{token}", json={"password": PASSWORD})
    assert r.status_code == 400

    r = await client.post(f"/api/auth/reset_password/{token}", json={"password": "newpass456"})
    assert r.status_code == 200
    r = await client.post("/api/auth/login", json={"username": "alice", "password": "newpass456"})
    assert r.status_code == 200


async def test_forgot_password_unknown_user(client, alice):
    r = await client.post("/api/auth/password", json={"username": "alice", "email": "wrong@mail.com"})
    assert r.status_code == 404


async def test_recovery_mail_failures(client, alice, monkeypatch):
    async def broken_send_mail(to, subject, html):
        raise smtplib.SMTPServerDisconnected("relay down")

    monkeypatch.setattr(mails, "send_mail", broken_send_mail)
    r = await client.post("/api/auth/password", json={"username": "alice", "email": "alice@mail.com"})
    assert r.status_code == 503
    assert r.json()["success"] is False

    r = await client.post("/api/auth/username", json={"email": "alice@mail.com"})
    assert r.status_code == 200


async def test_change_password(client, alice):
    r = await client.patch(
        "/api/auth/change_password",
        json={"old_password": "wrongpass1", "password": "newpass456"},
        headers=alice,
    )
    assert r.status_code == 400

    r = await client.patch(
        "/api/auth/change_password",
        json={"old_password": PASSWORD, "password": "newpass456"},
        headers=alice,
    )
    assert r.status_code == 200


async def test_change_email_resets_verification(client, db, alice, bob, outbox):
    await db.users.update_one({"username": "alice"}, {"$set": {"is_verified": True}})

    r = await client.patch(
        "/api/auth/change_email",
        json={"email": "bob@mail.com", "password": PASSWORD},
        headers=alice,
    )
    assert r.status_code == 409

    r = await client.patch(
        "/api/auth/change_email",
        json={"email": "alice2@mail.com", "password": PASSWORD},
        headers=alice,
    )
    assert r.status_code == 200
    user = await db.users.find_one({"username": "alice"})
    assert user["email"] == "alice2@mail.com"
    assert user["is_verified"] is False
    assert outbox[-1]["to"] == "alice2@mail.com"


async def test_google_login_creates_user(client, db, monkeypatch):
    async def fake_verify(access_token):
        return {"sub": "google-123", "email": "gina@mail.com"}

    monkeypatch.setattr(auth, "verify_google_token", fake_verify)

    r = await client.post("/api/auth/google", json={"access_token": "tok"})
    assert r.status_code == 200
    user = await db.users.find_one({"google_id": "google-123"})
    assert user["email"] == "gina@mail.com"
    assert user["is_verified"] is True
    assert await db.user_preferences.find_one({"user_id": user["_id"]})

    # Second login reuses the same account
    r = await client.post("/api/auth/google", json={"access_token": "tok"})
    assert r.status_code == 200
    assert await db.users.count_documents({"google_id": "google-123"}) == 1
