import logging

from fastapi import APIRouter, Depends, HTTPException

from database import get_db
from schemas import ModerationAction
from utils.lookups import (
    get_comment_or_404,
    get_post_or_404,
    get_subreddit_or_404,
    require_moderator,
    require_post_moderator,
    with_vote_state,
)
from utils.notifications import notify
from utils.security import get_current_user_required

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["moderation"])

EDITED_TYPES = ("post", "comment", "all")
EDITED_SORTS = ("new", "old")


async def moderated_item(db, payload: ModerationAction, user: dict, action: str):
    """The targeted post/comment, after checking the caller moderates its subreddit."""
    if payload.item_type == "post":
        item = await get_post_or_404(db, payload.item_id)
        post = item
    else:
        item = await get_comment_or_404(db, payload.item_id)
        post = await get_post_or_404(db, item["post_id"])
    await require_post_moderator(db, post, user, action)
    return item, post


@router.post("/remove")
async def remove_item(payload: ModerationAction, user=Depends(get_current_user_required), db=Depends(get_db)):
    item, post = await moderated_item(db, payload, user, "remove items")
    if item.get("is_removed"):
        raise HTTPException(status_code=400, detail=f"{payload.item_type.capitalize()} is already removed")

    collection = db.posts if payload.item_type == "post" else db.comments
    await collection.update_one({"_id": item["_id"]}, {"$set": {"is_removed": True, "is_approved": False}})
    await db.reports.update_many({"item_id": item["_id"]}, {"$set": {"is_viewed": True}})
    await notify(
        db,
        item["author_id"],
        "removal",
        "Content removed",
        f"Your {payload.item_type} in r/{post.get('subreddit_name')} was removed by the moderators",
        actor_id=user["_id"],
        subreddit_id=post.get("subreddit_id"),
    )
    logger.info("%s removed %s %s", user["username"], payload.item_type, item["_id"])
    return {"success": True, "message": f"{payload.item_type.capitalize()} removed successfully"}


@router.post("/approve")
async def approve_item(payload: ModerationAction, user=Depends(get_current_user_required), db=Depends(get_db)):
    item, _ = await moderated_item(db, payload, user, "approve items")
    if item.get("is_approved"):
        raise HTTPException(status_code=400, detail=f"{payload.item_type.capitalize()} is already approved")

    collection = db.posts if payload.item_type == "post" else db.comments
    await collection.update_one({"_id": item["_id"]}, {"$set": {"is_removed": False, "is_approved": True}})
    await db.reports.update_many({"item_id": item["_id"]}, {"$set": {"is_ignored": True}})
    return {"success": True, "message": f"{payload.item_type.capitalize()} approved successfully"}


@router.get("/r/{name}/about/edited")
async def edited_queue(
    name: str,
    only: str = "all",
    sort: str = "new",
    user=Depends(get_current_user_required),
    db=Depends(get_db),
):
    """Edited posts and comments of a subreddit"""
    if only not in EDITED_TYPES or sort not in EDITED_SORTS:
        raise HTTPException(status_code=400, detail="Invalid edited queue filter")
    subreddit = await get_subreddit_or_404(db, name)
    require_moderator(subreddit, user, "view the edited queue")

    query = {"subreddit_id": subreddit["_id"], "is_edited": True}
    direction = -1 if sort == "new" else 1
    items = []
    if only in ("post", "all"):
        posts = await db.posts.find(query).to_list(None)
        items += [{**p, "item_type": "post"} for p in await with_vote_state(db, user, posts, "post")]
    if only in ("comment", "all"):
        comments = await db.comments.find(query).to_list(None)
        items += [{**c, "item_type": "comment"} for c in await with_vote_state(db, user, comments, "comment")]

    items.sort(key=lambda i: i.get("updated_at") or "", reverse=direction == -1)
    return {"success": True, "items": items}


@router.get("/r/{name}/about/removed")
async def removed_queue(name: str, user=Depends(get_current_user_required), db=Depends(get_db)):
    subreddit = await get_subreddit_or_404(db, name)
    require_moderator(subreddit, user, "view removed items")

    query = {"subreddit_id": subreddit["_id"], "is_removed": True}
    posts = await db.posts.find(query).sort("created_at", -1).to_list(None)
    comments = await db.comments.find(query).sort("created_at", -1).to_list(None)
    return {
        "success": True,
        "posts": await with_vote_state(db, user, posts, "post"),
        "comments": await with_vote_state(db, user, comments, "comment"),
    }
