import pytest

pytestmark = pytest.mark.asyncio


async def test_create_subreddit(client, alice, create_subreddit):
    subreddit = await create_subreddit(alice, "python", description="All things Python")
    assert subreddit["name"] == "python"
    assert subreddit["creator"] == "alice"
    assert subreddit["moderators"] == ["alice"]
    assert subreddit["members_count"] == 1
    assert subreddit["role"] == "creator"


async def test_subreddit_names_are_unique_case_insensitively(client, alice, create_subreddit):
    await create_subreddit(alice, "python")
    r = await client.post("/api/subreddits", json={"name": "Python"}, headers=alice)
    assert r.status_code == 409


async def test_subreddit_name_validation(client, alice):
    r = await client.post("/api/subreddits", json={"name": "no spaces"}, headers=alice)
    assert r.status_code == 400
    r = await client.post("/api/subreddits", json={"name": "ab"}, headers=alice)
    assert r.status_code == 400


async def test_get_subreddit(client, alice, bob, create_subreddit):
    await create_subreddit(alice)
    r = await client.get("/api/r/PYTHON", headers=bob)
    assert r.status_code == 200
    assert r.json()["subreddit"]["role"] is None

    assert (await client.get("/api/r/missing")).status_code == 404


async def test_join_and_leave(client, alice, bob, create_subreddit):
    await create_subreddit(alice)
    r = await client.post("/api/r/python/join", headers=bob)
    assert r.status_code == 200
    # Joining twice is harmless
    await client.post("/api/r/python/join", headers=bob)
    r = await client.get("/api/r/python", headers=bob)
    assert r.json()["subreddit"]["members_count"] == 2
    assert r.json()["subreddit"]["role"] == "member"

    assert (await client.post("/api/r/python/leave", headers=bob)).status_code == 200
    assert (await client.post("/api/r/python/leave", headers=bob)).status_code == 400


async def test_creator_cannot_leave(client, alice, create_subreddit):
    await create_subreddit(alice)
    r = await client.post("/api/r/python/leave", headers=alice)
    assert r.status_code == 400


async def test_moderator_invitation_flow(client, db, alice, bob, create_subreddit):
    await create_subreddit(alice)
    r = await client.post("/api/r/python/moderators/invite", json={"username": "bob"}, headers=alice)
    assert r.status_code == 201
    invitation_id = r.json()["invitation_id"]
    assert await db.notifications.find_one({"type": "invitation", "recipient": "bob"})

    r = await client.post("/api/r/python/moderators/invite", json={"username": "bob"}, headers=alice)
    assert r.status_code == 409

    # Only the invitee can answer
    r = await client.post(f"/api/invitations/{invitation_id}/accept", headers=alice)
    assert r.status_code == 403

    r = await client.post(f"/api/invitations/{invitation_id}/accept", headers=bob)
    assert r.status_code == 200
    r = await client.get("/api/r/python", headers=bob)
    assert r.json()["subreddit"]["role"] == "moderator"

    r = await client.get("/api/subreddits/moderated", headers=bob)
    assert [s["name"] for s in r.json()["subreddits"]] == ["python"]


async def test_only_creator_removes_moderators(client, db, alice, bob, signup, create_subreddit):
    carol = await signup("carol")
    await create_subreddit(alice)
    for headers, name in ((bob, "bob"), (carol, "carol")):
        r = await client.post("/api/r/python/moderators/invite", json={"username": name}, headers=alice)
        await client.post(f"/api/invitations/{r.json()['invitation_id']}/accept", headers=headers)

    r = await client.delete("/api/r/python/moderators/carol", headers=bob)
    assert r.status_code == 403
    r = await client.delete("/api/r/python/moderators/alice", headers=alice)
    assert r.status_code == 400
    r = await client.delete("/api/r/python/moderators/carol", headers=alice)
    assert r.status_code == 200


async def test_non_moderator_cannot_invite(client, alice, bob, create_subreddit):
    await create_subreddit(alice)
    r = await client.post("/api/r/python/moderators/invite", json={"username": "alice"}, headers=bob)
    assert r.status_code == 403


async def test_ban_blocks_participation(client, db, alice, bob, submit, create_subreddit):
    await create_subreddit(alice)
    post_id = await submit(alice, destination="subreddit", subreddit="python")
    await client.post("/api/r/python/join", headers=bob)

    r = await client.post("/api/r/python/ban", json={"username": "bob", "reason": "spam"}, headers=alice)
    assert r.status_code == 200
    r = await client.get("/api/r/python/banned", headers=alice)
    assert r.json()["users"] == ["bob"]

    r = await client.post("/api/r/python/join", headers=bob)
    assert r.status_code == 403
    r = await client.post(
        "/api/submit",
        json={"title": "hi", "destination": "subreddit", "subreddit": "python"},
        headers=bob,
    )
    assert r.status_code == 403
    r = await client.post("/api/comments", json={"post_id": post_id, "content": "hi"}, headers=bob)
    assert r.status_code == 403
    r = await client.post("/api/vote", json={"item_id": post_id, "item_type": "post", "direction": 1}, headers=bob)
    assert r.status_code == 403

    r = await client.post("/api/r/python/unban", json={"username": "bob"}, headers=alice)
    assert r.status_code == 200
    assert (await client.post("/api/r/python/join", headers=bob)).status_code == 200


async def test_cannot_ban_moderator(client, alice, bob, create_subreddit):
    await create_subreddit(alice)
    r = await client.post("/api/r/python/ban", json={"username": "alice"}, headers=alice)
    assert r.status_code == 400


async def test_mute_and_unmute(client, alice, bob, create_subreddit):
    await create_subreddit(alice)
    r = await client.post("/api/r/python/mute", json={"username": "bob"}, headers=alice)
    assert r.status_code == 200
    r = await client.get("/api/r/python/muted", headers=alice)
    assert r.json()["users"] == ["bob"]
    r = await client.get("/api/r/python/muted", headers=bob)
    assert r.status_code == 403
    assert (await client.post("/api/r/python/unmute", json={"username": "bob"}, headers=alice)).status_code == 200
    assert (await client.post("/api/r/python/unmute", json={"username": "bob"}, headers=alice)).status_code == 400


async def test_rules(client, alice, bob, create_subreddit):
    await create_subreddit(alice)
    rule = {"title": "Be kind", "description": "No insults"}
    assert (await client.post("/api/r/python/rules", json=rule, headers=bob)).status_code == 403
    assert (await client.post("/api/r/python/rules", json=rule, headers=alice)).status_code == 201
    assert (await client.post("/api/r/python/rules", json=rule, headers=alice)).status_code == 409

    r = await client.get("/api/r/python/rules")
    assert [x["title"] for x in r.json()["rules"]] == ["Be kind"]


async def test_settings(client, alice, bob, create_subreddit):
    await create_subreddit(alice)
    assert (await client.get("/api/r/python/settings", headers=bob)).status_code == 403

    r = await client.patch(
        "/api/r/python/settings",
        json={"privacy_mode": "private", "allow_polls": False},
        headers=alice,
    )
    assert r.status_code == 200
    assert r.json()["settings"]["privacy_mode"] == "private"

    r = await client.patch("/api/r/python/settings", json={"privacy_mode": "secret"}, headers=alice)
    assert r.status_code == 400


async def test_null_settings_are_ignored(client, db, alice, submit, create_subreddit):
    await create_subreddit(alice)
    r = await client.patch("/api/r/python/settings", json={"allow_text": None, "privacy_mode": None}, headers=alice)
    assert r.status_code == 400

    r = await client.patch("/api/r/python/settings", json={"allow_text": None, "allow_polls": False}, headers=alice)
    assert r.status_code == 200
    assert r.json()["settings"]["allow_text"] is True
    assert (await db.subreddits.find_one({"name": "python"}))["allow_text"] is True
    await submit(alice, destination="subreddit", subreddit="python")


async def test_private_subreddit_rejects_outsiders(client, alice, bob, create_subreddit):
    await create_subreddit(alice, privacy_mode="private")
    assert (await client.post("/api/r/python/join", headers=bob)).status_code == 403
    assert (await client.get("/api/r/python/new", headers=bob)).status_code == 403


async def test_member_invitation_opens_private_subreddit(client, db, alice, bob, submit, create_subreddit):
    await create_subreddit(alice, "secret", privacy_mode="private")
    r = await client.post("/api/r/secret/members/invite", json={"username": "bob"}, headers=bob)
    assert r.status_code == 403

    r = await client.post("/api/r/secret/members/invite", json={"username": "bob"}, headers=alice)
    assert r.status_code == 201
    invitation_id = r.json()["invitation_id"]
    r = await client.post(f"/api/invitations/{invitation_id}/accept", headers=bob)
    assert r.status_code == 200

    subreddit = await db.subreddits.find_one({"name": "secret"})
    bob_doc = await db.users.find_one({"username": "bob"})
    assert bob_doc["_id"] in subreddit["members"]
    assert bob_doc["_id"] not in subreddit["moderators"]

    assert (await client.get("/api/r/secret/new", headers=bob)).status_code == 200
    await submit(bob, title="member post", destination="subreddit", subreddit="secret")

    r = await client.post("/api/r/secret/members/invite", json={"username": "bob"}, headers=alice)
    assert r.status_code == 400


async def test_top_and_category_listings(client, alice, bob, create_subreddit):
    await create_subreddit(alice, "python", category="Tech")
    await create_subreddit(alice, "cooking", category="Food")
    await client.post("/api/r/cooking/join", headers=bob)

    r = await client.get("/api/subreddits/top")
    assert [s["name"] for s in r.json()["subreddits"]] == ["cooking", "python"]
    assert r.json()["total_pages"] == 1

    r = await client.get("/api/subreddits/category/Tech")
    assert [s["name"] for s in r.json()["subreddits"]] == ["python"]

    r = await client.get("/api/subreddits/random_category")
    assert r.status_code == 200
    assert r.json()["category"] in ("Tech", "Food")
