import pytest

from utils.serialization import oid

pytestmark = pytest.mark.asyncio


@pytest.fixture
async def reported_post(client, alice, bob, submit, create_subreddit):
    await create_subreddit(alice)
    post_id = await submit(bob, title="spammy", destination="subreddit", subreddit="python")
    return post_id


async def test_report_user(client, alice, bob):
    body = {"reported_username": "bob", "report_type": "username", "reason": "harassment"}
    assert (await client.post("/api/report_user", json=body, headers=alice)).status_code == 201
    assert (await client.post("/api/report_user", json={**body, "reported_username": "alice"}, headers=alice)).status_code == 400
    assert (await client.post("/api/report_user", json={**body, "report_type": "shoes"}, headers=alice)).status_code == 400


async def test_report_content_and_moderator_queue(client, alice, bob, signup, reported_post):
    carol = await signup("carol")
    body = {"item_id": reported_post, "item_type": "post", "reason": "spam"}

    assert (await client.post("/api/report", json=body, headers=bob)).status_code == 400
    assert (await client.post("/api/report", json=body, headers=carol)).status_code == 201
    assert (await client.post("/api/report", json=body, headers=carol)).status_code == 409

    assert (await client.get("/api/r/python/about/reports", headers=carol)).status_code == 403
    r = await client.get("/api/r/python/about/reports", headers=alice)
    reports = r.json()["reports"]
    assert len(reports) == 1
    assert reports[0]["reported_username"] == "bob"

    report_id = reports[0]["id"]
    assert (await client.post(f"/api/reports/{report_id}/ignore", headers=carol)).status_code == 403
    assert (await client.post(f"/api/reports/{report_id}/ignore", headers=alice)).status_code == 200
    r = await client.get("/api/r/python/about/reports", headers=alice)
    assert r.json()["reports"] == []


async def test_admin_reports_gate(client, db, alice, bob):
    await client.post(
        "/api/report_user",
        json={"reported_username": "bob", "report_type": "bio", "reason": "spam"},
        headers=alice,
    )
    r = await client.get("/api/admin/reports", headers=alice)
    assert r.status_code == 403
    assert r.json()["message"] == "Forbidden, you must be an admin!"

    await db.users.update_one({"username": "alice"}, {"$set": {"access": "admin"}})
    r = await client.get("/api/admin/reports", headers=alice)
    assert len(r.json()["reports"]) == 1


async def test_remove_and_approve(client, db, alice, bob, reported_post):
    body = {"item_id": reported_post, "item_type": "post"}
    assert (await client.post("/api/remove", json=body, headers=bob)).status_code == 403
    assert (await client.post("/api/remove", json=body, headers=alice)).status_code == 200
    assert (await client.post("/api/remove", json=body, headers=alice)).status_code == 400
    assert await db.notifications.find_one({"type": "removal", "recipient": "bob"})

    r = await client.get("/api/r/python/about/removed", headers=alice)
    assert [p["id"] for p in r.json()["posts"]] == [reported_post]

    # Removed posts stay visible to their author only
    assert (await client.get(f"/api/posts/{reported_post}")).status_code == 404
    assert (await client.get(f"/api/posts/{reported_post}", headers=bob)).status_code == 200

    assert (await client.post("/api/approve", json=body, headers=alice)).status_code == 200
    post = await db.posts.find_one({"_id": oid(reported_post)})
    assert post["is_removed"] is False
    assert post["is_approved"] is True


async def test_remove_comment(client, db, alice, bob, reported_post):
    r = await client.post("/api/comments", json={"post_id": reported_post, "content": "bad"}, headers=bob)
    comment_id = r.json()["comment_id"]
    r = await client.post("/api/remove", json={"item_id": comment_id, "item_type": "comment"}, headers=alice)
    assert r.status_code == 200
    r = await client.get(f"/api/posts/{reported_post}/comments")
    assert r.json()["comments"] == []


async def test_edited_queue(client, alice, bob, reported_post):
    await client.patch(f"/api/posts/{reported_post}", json={"title": "edited title"}, headers=bob)
    r = await client.post("/api/comments", json={"post_id": reported_post, "content": "x"}, headers=bob)
    await client.patch(f"/api/comments/{r.json()['comment_id']}", json={"content": "y"}, headers=bob)

    r = await client.get("/api/r/python/about/edited", headers=alice)
    assert sorted(i["item_type"] for i in r.json()["items"]) == ["comment", "post"]
    r = await client.get("/api/r/python/about/edited", params={"only": "post"}, headers=alice)
    assert [i["item_type"] for i in r.json()["items"]] == ["post"]
    assert (await client.get("/api/r/python/about/edited", params={"only": "x"}, headers=alice)).status_code == 400
    assert (await client.get("/api/r/python/about/edited", headers=bob)).status_code == 403
