import pytest

pytestmark = pytest.mark.asyncio


def compose_body(recipient, **fields):
    return {"recipient": recipient, "subject": "Hello", "message": "How are you?", **fields}


async def test_compose_and_inbox(client, alice, bob):
    r = await client.post("/api/message/compose", json=compose_body("bob"), headers=alice)
    assert r.status_code == 201

    r = await client.get("/api/message/inbox/all", headers=bob)
    messages = r.json()["messages"]
    assert len(messages) == 1
    assert messages[0]["sender_name"] == "alice"
    assert messages[0]["is_read"] is False

    r = await client.get("/api/message/inbox/unread", headers=bob)
    assert len(r.json()["messages"]) == 1
    r = await client.get("/api/message/sent", headers=alice)
    assert len(r.json()["messages"]) == 1


async def test_compose_errors(client, alice):
    r = await client.post("/api/message/compose", json=compose_body("ghost"), headers=alice)
    assert r.status_code == 404
    r = await client.post("/api/message/compose", json=compose_body("alice"), headers=alice)
    assert r.status_code == 400
    r = await client.get("/api/message/inbox/weird", headers=alice)
    assert r.status_code == 400


async def test_blocked_sender_cannot_message(client, alice, bob):
    await client.post("/api/User/block", json={"username": "alice"}, headers=bob)
    r = await client.post("/api/message/compose", json=compose_body("bob"), headers=alice)
    assert r.status_code == 403


async def test_message_to_subreddit_reaches_moderators(client, alice, bob, create_subreddit):
    await create_subreddit(alice)
    r = await client.post("/api/message/compose", json=compose_body("python", send_to_subreddit=True), headers=bob)
    assert r.status_code == 201
    r = await client.get("/api/message/inbox/messages", headers=alice)
    assert r.json()["messages"][0]["recipient_subreddit"] == "python"


async def test_muted_user_cannot_message_subreddit(client, alice, bob, create_subreddit):
    await create_subreddit(alice)
    await client.post("/api/r/python/mute", json={"username": "bob"}, headers=alice)
    r = await client.post("/api/message/compose", json=compose_body("python", send_to_subreddit=True), headers=bob)
    assert r.status_code == 403


async def test_send_as_subreddit_requires_moderator(client, alice, bob, create_subreddit):
    await create_subreddit(alice)
    r = await client.post("/api/message/compose", json=compose_body("alice", from_subreddit="python"), headers=bob)
    assert r.status_code == 403
    r = await client.post("/api/message/compose", json=compose_body("bob", from_subreddit="python"), headers=alice)
    assert r.status_code == 201
    r = await client.get("/api/message/inbox/all", headers=bob)
    assert r.json()["messages"][0]["sender_subreddit"] == "python"


async def test_read_unread_and_delete(client, alice, bob):
    await client.post("/api/message/compose", json=compose_body("bob"), headers=alice)
    message_id = (await client.get("/api/message/inbox/all", headers=bob)).json()["messages"][0]["id"]

    r = await client.patch(f"/api/message/unread/{message_id}", headers=bob)
    assert r.status_code == 400

    r = await client.post("/api/message/readAll", headers=bob)
    assert r.json()["count"] == 1
    r = await client.patch(f"/api/message/unread/{message_id}", headers=bob)
    assert r.status_code == 200

    # Deleting only hides it for the caller
    assert (await client.delete(f"/api/message/delete/{message_id}", headers=bob)).status_code == 200
    assert (await client.delete(f"/api/message/delete/{message_id}", headers=bob)).status_code == 400
    assert (await client.get("/api/message/inbox/all", headers=bob)).json()["messages"] == []
    assert len((await client.get("/api/message/sent", headers=alice)).json()["messages"]) == 1


async def test_unread_by_stranger(client, alice, bob, signup):
    carol = await signup("carol")
    await client.post("/api/message/compose", json=compose_body("bob"), headers=alice)
    message_id = (await client.get("/api/message/inbox/all", headers=bob)).json()["messages"][0]["id"]
    assert (await client.patch(f"/api/message/unread/{message_id}", headers=carol)).status_code == 404
