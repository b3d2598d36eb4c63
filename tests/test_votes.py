import pytest

from utils.votes import resolve_direction


@pytest.mark.parametrize(
    "current,requested,expected",
    [
        (0, 1, 1),
        (0, -1, -1),
        (0, 0, 0),
        (1, 1, 0),
        (1, -1, -1),
        (1, 0, 0),
        (-1, -1, 0),
        (-1, 1, 1),
    ],
)
def test_resolve_direction(current, requested, expected):
    assert resolve_direction(current, requested) == expected


async def vote(client, headers, item_id, direction, item_type="post"):
    r = await client.post(
        "/api/vote",
        json={"item_id": item_id, "item_type": item_type, "direction": direction},
        headers=headers,
    )
    assert r.status_code == 200, r.text
    return r.json()


async def karma(db, username):
    user = await db.users.find_one({"username": username})
    return user["post_karma"], user["comment_karma"]


@pytest.mark.asyncio
async def test_upvote_toggle_and_switch(client, db, alice, bob, submit):
    post_id = await submit(alice)

    body = await vote(client, bob, post_id, 1)
    assert body["status"] == "added"
    assert (body["upvotes"], body["downvotes"], body["score"]) == (1, 0, 1)
    assert await karma(db, "alice") == (1, 0)

    # Same direction again removes the vote
    body = await vote(client, bob, post_id, 1)
    assert body["status"] == "removed"
    assert (body["upvotes"], body["downvotes"]) == (0, 0)
    assert await karma(db, "alice") == (0, 0)

    await vote(client, bob, post_id, 1)
    body = await vote(client, bob, post_id, -1)
    assert body["status"] == "changed"
    assert (body["upvotes"], body["downvotes"], body["score"]) == (0, 1, -1)
    assert await karma(db, "alice") == (-1, 0)

    body = await vote(client, bob, post_id, 0)
    assert body["status"] == "removed"
    assert await karma(db, "alice") == (0, 0)
    assert await db.votes.count_documents({}) == 0


@pytest.mark.asyncio
async def test_clearing_without_vote_is_noop(client, alice, bob, submit):
    post_id = await submit(alice)
    body = await vote(client, bob, post_id, 0)
    assert body["status"] == "unchanged"
    assert body["direction"] == 0


@pytest.mark.asyncio
async def test_one_vote_record_per_user(client, db, alice, bob, submit):
    post_id = await submit(alice)
    await vote(client, bob, post_id, 1)
    await vote(client, bob, post_id, -1)
    assert await db.votes.count_documents({"item_type": "post"}) == 1


@pytest.mark.asyncio
async def test_self_vote_does_not_change_karma_or_notify(client, db, alice, submit):
    post_id = await submit(alice)
    body = await vote(client, alice, post_id, 1)
    assert body["upvotes"] == 1
    assert await karma(db, "alice") == (0, 0)
    assert await db.notifications.count_documents({}) == 0


@pytest.mark.asyncio
async def test_upvote_notifies_author(client, db, alice, bob, submit):
    post_id = await submit(alice)
    await vote(client, bob, post_id, 1)
    notification = await db.notifications.find_one({"type": "upvote"})
    assert notification["recipient"] == "alice"

    # Downvotes are silent
    await vote(client, bob, post_id, -1)
    assert await db.notifications.count_documents({"type": "upvote"}) == 1


@pytest.mark.asyncio
async def test_upvote_notification_respects_preferences(client, db, alice, bob, submit):
    post_id = await submit(alice)
    r = await client.patch("/api/settings/preferences", json={"upvotes": False}, headers=alice)
    assert r.status_code == 200

    await vote(client, bob, post_id, 1)
    assert await db.notifications.count_documents({}) == 0
    assert await karma(db, "alice") == (1, 0)


@pytest.mark.asyncio
async def test_upvote_notification_respects_disabled_post(client, db, alice, bob, submit):
    post_id = await submit(alice)
    r = await client.post("/api/notifications/settings/disable", json={"post_id": post_id}, headers=alice)
    assert r.status_code == 200

    await vote(client, bob, post_id, 1)
    assert await db.notifications.count_documents({}) == 0


@pytest.mark.asyncio
async def test_upvote_notification_skips_blocked_actor(client, db, alice, bob, submit):
    post_id = await submit(alice)
    r = await client.post("/api/User/block", json={"username": "bob"}, headers=alice)
    assert r.status_code == 200

    await vote(client, bob, post_id, 1)
    assert await db.notifications.count_documents({}) == 0


@pytest.mark.asyncio
async def test_comment_vote_moves_comment_karma(client, db, alice, bob, submit):
    post_id = await submit(alice)
    r = await client.post("/api/comments", json={"post_id": post_id, "content": "nice"}, headers=bob)
    comment_id = r.json()["comment_id"]

    body = await vote(client, alice, comment_id, 1, item_type="comment")
    assert body["upvotes"] == 1
    assert await karma(db, "bob") == (0, 1)


@pytest.mark.asyncio
async def test_vote_on_locked_post(client, db, alice, bob, submit, create_subreddit):
    await create_subreddit(alice)
    post_id = await submit(alice, destination="subreddit", subreddit="python")
    r = await client.post("/api/lock", json={"post_id": post_id}, headers=alice)
    assert r.status_code == 200

    r = await client.post("/api/vote", json={"item_id": post_id, "item_type": "post", "direction": 1}, headers=bob)
    assert r.status_code == 403


@pytest.mark.asyncio
async def test_vote_rejects_bad_direction_and_id(client, alice):
    r = await client.post("/api/vote", json={"item_id": "abc", "item_type": "post", "direction": 1}, headers=alice)
    assert r.status_code == 400
    assert r.json()["message"] == "Invalid id"

    r = await client.post(
        "/api/vote",
        json={"item_id": "64b000000000000000000000", "item_type": "post", "direction": 2},
        headers=alice,
    )
    assert r.status_code == 400
