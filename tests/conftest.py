import os

os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["JWT_SECRET"] = "test-secret"

import pytest
from httpx import ASGITransport, AsyncClient
from mongomock_motor import AsyncMongoMockClient

from database import get_db, init_indexes
from main import app
from utils import mails

PASSWORD = "password123"


@pytest.fixture(autouse=True)
def outbox(monkeypatch):
    """Capture outgoing mail instead of talking to SMTP."""
    sent = []

    async def fake_send_mail(to, subject, html):
        sent.append({"to": to, "subject": subject, "html": html})
        return True

    monkeypatch.setattr(mails, "send_mail", fake_send_mail)
    return sent


@pytest.fixture
async def db():
    database = AsyncMongoMockClient()["threadit_test"]
    await init_indexes(database)
    return database


@pytest.fixture
async def client(db):
    app.dependency_overrides[get_db] = lambda: db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest.fixture
def signup(client):
    async def _signup(username: str, password: str = PASSWORD) -> dict:
        r = await client.post(
            "/api/auth/signup",
            json={"username": username, "email": f"{username.lower()}@mail.com", "password": password},
        )
        assert r.status_code == 201, r.text
        return {"Authorization": f"Bearer {r.json()['accessToken']}"}

    return _signup


@pytest.fixture
async def alice(signup):
    return await signup("alice")


@pytest.fixture
async def bob(signup):
    return await signup("bob")


@pytest.fixture
def create_subreddit(client):
    async def _create(headers: dict, name: str = "python", **fields) -> dict:
        r = await client.post("/api/subreddits", json={"name": name, **fields}, headers=headers)
        assert r.status_code == 201, r.text
        return r.json()["subreddit"]

    return _create


@pytest.fixture
def submit(client):
    async def _submit(headers: dict, title: str = "Hello world", **fields) -> str:
        r = await client.post("/api/submit", json={"title": title, **fields}, headers=headers)
        assert r.status_code == 201, r.text
        return r.json()["post_id"]

    return _submit
