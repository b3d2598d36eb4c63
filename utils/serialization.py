from datetime import datetime, timezone

from bson import ObjectId
from bson.errors import InvalidId
from fastapi import HTTPException


def oid(id_str) -> ObjectId:
    """Parse a path/body id into an ObjectId, 400 on garbage."""
    if isinstance(id_str, ObjectId):
        return id_str
    try:
        return ObjectId(id_str)
    except (InvalidId, TypeError):
        raise HTTPException(status_code=400, detail="Invalid id")


def serialize(value):
    """Make a Mongo document JSON friendly: `_id` -> `id`, ObjectIds -> str, datetimes -> ISO."""
    if isinstance(value, dict):
        out = {}
        for k, v in value.items():
            if k == "_id":
                out["id"] = serialize(v)
            else:
                out[k] = serialize(v)
        return out
    if isinstance(value, list):
        return [serialize(v) for v in value]
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    return value


def public_user(user: dict) -> dict:
    """Strip credentials and private lists from a user document."""
    return {
        "id": str(user["_id"]),
        "username": user["username"],
        "display_name": user.get("display_name"),
        "about": user.get("about"),
        "avatar": user.get("avatar"),
        "banner": user.get("banner"),
        "post_karma": user.get("post_karma", 0),
        "comment_karma": user.get("comment_karma", 0),
        "karma": user.get("post_karma", 0) + user.get("comment_karma", 0),
        "followers": len(user.get("followers", [])),
        "followings": len(user.get("followings", [])),
        "is_over_18": user.get("is_over_18", False),
        "cake_day": serialize(user.get("created_at")),
    }


def as_utc(dt: datetime) -> datetime:
    """Mongo hands back naive UTC datetimes; make them comparable to aware ones."""
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)
