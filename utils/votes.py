"""Vote casting on posts and comments.

A user holds at most one vote per item, stored in the `votes` collection
(unique on user_id + item_id + item_type). Item counters and author karma
move with `$inc` so concurrent votes never lose updates.
"""

import logging
from datetime import datetime, timezone

from fastapi import HTTPException
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from utils.notifications import notify

logger = logging.getLogger(__name__)

COLLECTION_FOR_ITEM = {"post": "posts", "comment": "comments"}
KARMA_FIELD_FOR_ITEM = {"post": "post_karma", "comment": "comment_karma"}
COUNTER_FOR_DIRECTION = {1: "upvotes", -1: "downvotes"}


def resolve_direction(current: int, requested: int) -> int:
    """Vote state after a request.

    0 clears, repeating the current direction toggles it off, anything else
    replaces the current vote.
    """
    if requested == 0 or requested == current:
        return 0
    return requested


async def current_vote(db, user_id, item_type: str, item_id) -> int:
    vote = await db.votes.find_one({"user_id": user_id, "item_id": item_id, "item_type": item_type})
    return vote["direction"] if vote else 0


async def cast_vote(db, user: dict, item_type: str, item: dict, direction: int) -> dict:
    """Apply `direction` (-1, 0, 1) from `user` on `item` and return the new state."""
    user_id = user["_id"]
    item_id = item["_id"]
    query = {"user_id": user_id, "item_id": item_id, "item_type": item_type}

    existing = await db.votes.find_one(query)
    current = existing["direction"] if existing else 0
    new = resolve_direction(current, direction)

    if new == current:
        return {
            "status": "unchanged",
            "direction": current,
            "upvotes": item.get("upvotes", 0),
            "downvotes": item.get("downvotes", 0),
            "score": item.get("upvotes", 0) - item.get("downvotes", 0),
        }

    now = datetime.now(timezone.utc)
    if new == 0:
        await db.votes.delete_one({"_id": existing["_id"]})
    elif existing:
        await db.votes.update_one({"_id": existing["_id"]}, {"$set": {"direction": new, "updated_at": now}})
    else:
        try:
            await db.votes.insert_one({**query, "direction": new, "created_at": now, "updated_at": now})
        except DuplicateKeyError:
            raise HTTPException(status_code=409, detail="Vote already recorded, retry")

    # Remove the previous vote before applying the new one
    inc = {}
    if current:
        inc[COUNTER_FOR_DIRECTION[current]] = -1
    if new:
        inc[COUNTER_FOR_DIRECTION[new]] = inc.get(COUNTER_FOR_DIRECTION[new], 0) + 1

    collection = db[COLLECTION_FOR_ITEM[item_type]]
    updated = await collection.find_one_and_update(
        {"_id": item_id},
        {"$inc": inc},
        return_document=ReturnDocument.AFTER,
    )

    author_id = item.get("author_id")
    karma_delta = new - current
    if author_id is not None and author_id != user_id:
        await db.users.update_one({"_id": author_id}, {"$inc": {KARMA_FIELD_FOR_ITEM[item_type]: karma_delta}})

    if new == 1:
        if item_type == "post":
            await notify(
                db,
                author_id,
                "upvote",
                "New upvote",
                f'{user["username"]} upvoted your post "{item.get("title", "")}"',
                actor_id=user_id,
                post_id=item_id,
                subreddit_id=item.get("subreddit_id"),
            )
        else:
            await notify(
                db,
                author_id,
                "upvote",
                "New upvote",
                f"{user['username']} upvoted your comment",
                actor_id=user_id,
                post_id=item.get("post_id"),
                comment_id=item_id,
                subreddit_id=item.get("subreddit_id"),
            )

    if new == 0:
        status = "removed"
    elif current:
        status = "changed"
    else:
        status = "added"
    logger.info("vote %s on %s %s by %s", status, item_type, item_id, user["username"])

    upvotes = (updated or item).get("upvotes", 0)
    downvotes = (updated or item).get("downvotes", 0)
    return {
        "status": status,
        "direction": new,
        "upvotes": upvotes,
        "downvotes": downvotes,
        "score": upvotes - downvotes,
    }
