"""Shared document lookups and permission checks used across routers."""

import re

from fastapi import HTTPException

from utils.serialization import oid, serialize


##########
# Fetch or 404
##########
async def get_post_or_404(db, post_id):
    post = await db.posts.find_one({"_id": oid(post_id)})
    if not post:
        raise HTTPException(status_code=404, detail="Post not found")
    return post


async def get_comment_or_404(db, comment_id):
    comment = await db.comments.find_one({"_id": oid(comment_id)})
    if not comment:
        raise HTTPException(status_code=404, detail="Comment not found")
    return comment


async def get_subreddit_or_404(db, name: str):
    # Names are unique case-insensitively
    subreddit = await db.subreddits.find_one({"name": {"$regex": f"^{re.escape(name)}$", "$options": "i"}})
    if not subreddit:
        raise HTTPException(status_code=404, detail="Subreddit not found")
    return subreddit


async def get_user_or_404(db, username: str, detail: str = "User not found"):
    user = await db.users.find_one({"username": username})
    if not user:
        raise HTTPException(status_code=404, detail=detail)
    return user


##########
# Subreddit roles
##########
def is_creator(subreddit: dict, user_id) -> bool:
    return subreddit.get("creator_id") == user_id


def is_moderator(subreddit: dict, user_id) -> bool:
    return user_id in subreddit.get("moderators", [])


def is_member(subreddit: dict, user_id) -> bool:
    return user_id in subreddit.get("members", [])


def is_banned(subreddit: dict, user_id) -> bool:
    return user_id in subreddit.get("banned_users", [])


def is_muted(subreddit: dict, user_id) -> bool:
    return user_id in subreddit.get("muted_users", [])


def role_in(subreddit: dict, user_id) -> str | None:
    if is_creator(subreddit, user_id):
        return "creator"
    if is_moderator(subreddit, user_id):
        return "moderator"
    if is_member(subreddit, user_id):
        return "member"
    return None


def require_moderator(subreddit: dict, user: dict, action: str = "moderate this subreddit"):
    if not is_moderator(subreddit, user["_id"]):
        raise HTTPException(status_code=403, detail=f"You are not authorized to {action}")


async def post_subreddit(db, post: dict):
    if not post.get("subreddit_id"):
        return None
    return await db.subreddits.find_one({"_id": post["subreddit_id"]})


async def require_post_moderator(db, post: dict, user: dict, action: str):
    """Moderator/creator of the post's subreddit, checked before any mutation."""
    subreddit = await post_subreddit(db, post)
    if not subreddit or not is_moderator(subreddit, user["_id"]):
        raise HTTPException(status_code=403, detail=f"User is not authorized to {action} in this subreddit")
    return subreddit


def require_not_banned(subreddit: dict | None, user: dict):
    if subreddit and is_banned(subreddit, user["_id"]):
        raise HTTPException(status_code=403, detail="You are banned from this subreddit")


##########
# Aggregates
##########
async def usernames_for(db, user_ids) -> list:
    if not user_ids:
        return []
    users = await db.users.find({"_id": {"$in": list(user_ids)}}, {"username": 1}).to_list(None)
    names = {u["_id"]: u["username"] for u in users}
    return [names[uid] for uid in user_ids if uid in names]


async def subreddit_details(db, subreddit: dict, viewer: dict | None = None) -> dict:
    """Public view of a subreddit, with the viewer's role when known."""
    moderators = await usernames_for(db, subreddit.get("moderators", []))
    creator = await usernames_for(db, [subreddit["creator_id"]]) if subreddit.get("creator_id") else []
    posts_count = await db.posts.count_documents({"subreddit_id": subreddit["_id"], "is_removed": {"$ne": True}})
    details = {
        "id": str(subreddit["_id"]),
        "name": subreddit["name"],
        "description": subreddit.get("description", ""),
        "category": subreddit.get("category"),
        "language": subreddit.get("language"),
        "privacy_mode": subreddit.get("privacy_mode", "public"),
        "is_nsfw": subreddit.get("is_nsfw", False),
        "icon": subreddit.get("icon"),
        "banner": subreddit.get("banner"),
        "welcome_message": subreddit.get("welcome_message"),
        "rules": serialize(subreddit.get("rules", [])),
        "suggested_sort": subreddit.get("suggested_sort"),
        "created_at": serialize(subreddit.get("created_at")),
        "creator": creator[0] if creator else None,
        "moderators": moderators,
        "members_count": len(subreddit.get("members", [])),
        "posts_count": posts_count,
    }
    if viewer is not None:
        details["role"] = role_in(subreddit, viewer["_id"])
        details["is_banned"] = is_banned(subreddit, viewer["_id"])
        details["is_muted"] = is_muted(subreddit, viewer["_id"])
    return details


async def with_vote_state(db, user: dict | None, items: list, item_type: str) -> list:
    """Serialize items, adding `score` and the viewer's `vote` (-1, 0, 1)."""
    votes = {}
    if user and items:
        cursor = db.votes.find({
            "user_id": user["_id"],
            "item_type": item_type,
            "item_id": {"$in": [i["_id"] for i in items]},
        })
        votes = {v["item_id"]: v["direction"] for v in await cursor.to_list(None)}
    out = []
    for item in items:
        data = serialize(item)
        data["score"] = item.get("upvotes", 0) - item.get("downvotes", 0)
        data["vote"] = votes.get(item["_id"], 0)
        out.append(data)
    return out


async def private_subreddit_ids(db) -> list:
    subreddits = await db.subreddits.find({"privacy_mode": "private"}, {"_id": 1}).to_list(None)
    return [s["_id"] for s in subreddits]


def filter_hidden(posts: list, user: dict | None) -> list:
    if not user:
        return posts
    hidden = set(user.get("hidden_posts", []))
    return [p for p in posts if p["_id"] not in hidden]


async def present_posts(db, user: dict | None, posts: list) -> list:
    """Posts as returned to clients: vote state added, poll voters reduced to the viewer's choice."""
    out = await with_vote_state(db, user, posts, "post")
    for post, data in zip(posts, out):
        if post.get("type") != "poll":
            continue
        data["options"] = [{"text": o["text"], "votes": o.get("votes", 0)} for o in post.get("options", [])]
        data["voted_option"] = None
        if user:
            for index, option in enumerate(post.get("options", [])):
                if user["_id"] in option.get("voters", []):
                    data["voted_option"] = index
    return out
