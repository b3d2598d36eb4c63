import logging
import re
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, status

from database import get_db
from schemas import CommentCreate, CommentUpdate
from utils.lookups import (
    get_comment_or_404,
    get_post_or_404,
    post_subreddit,
    require_not_banned,
    with_vote_state,
)
from utils.markdown_utils import convert_markdown
from utils.notifications import notify
from utils.security import get_current_user, get_current_user_required
from utils.serialization import oid

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["comments"])

MENTION_RE = re.compile(r"(?<![\w/])u/([A-Za-z0-9_-]{3,20})")

SORTS = ("new", "old", "top")


async def notify_mentions(db, comment: dict, post: dict, author: dict):
    """Send a mention message and notification to every `u/name` in a comment."""
    names = {m for m in MENTION_RE.findall(comment["content"]) if m != author["username"]}
    if not names:
        return
    mentioned = await db.users.find({"username": {"$in": sorted(names)}}).to_list(None)
    now = datetime.now(timezone.utc)
    for target in mentioned:
        await db.messages.insert_one({
            "sender_id": author["_id"],
            "sender_name": author["username"],
            "sender_subreddit": None,
            "recipient_id": target["_id"],
            "recipient_name": target["username"],
            "subject": f"username mention: {post['title']}",
            "message": comment["content"],
            "kind": "mention",
            "post_id": post["_id"],
            "comment_id": comment["_id"],
            "is_read": False,
            "deleted_by": [],
            "created_at": now,
        })
        await notify(
            db,
            target["_id"],
            "mention",
            "You were mentioned",
            f"{author['username']} mentioned you in a comment",
            actor_id=author["_id"],
            post_id=post["_id"],
            comment_id=comment["_id"],
            subreddit_id=post.get("subreddit_id"),
        )


@router.post("/comments", status_code=status.HTTP_201_CREATED)
async def create_comment(payload: CommentCreate, user=Depends(get_current_user_required), db=Depends(get_db)):
    """Comment on a post, or reply to a comment when parent_id is given"""
    post = await get_post_or_404(db, payload.post_id)
    if post.get("is_removed"):
        raise HTTPException(status_code=404, detail="Post not found")
    if post.get("is_locked"):
        raise HTTPException(status_code=403, detail="Post is locked, comments are disabled")
    require_not_banned(await post_subreddit(db, post), user)

    parent = None
    if payload.parent_id:
        parent = await get_comment_or_404(db, payload.parent_id)
        if parent["post_id"] != post["_id"]:
            raise HTTPException(status_code=400, detail="Parent comment belongs to another post")

    now = datetime.now(timezone.utc)
    comment = {
        "content": payload.content,
        "content_html": convert_markdown(payload.content),
        "author_id": user["_id"],
        "author_name": user["username"],
        "post_id": post["_id"],
        "parent_id": parent["_id"] if parent else None,
        "subreddit_id": post.get("subreddit_id"),
        "created_at": now,
        "updated_at": now,
        "upvotes": 0,
        "downvotes": 0,
        "is_edited": False,
        "is_removed": False,
        "is_approved": False,
    }
    res = await db.comments.insert_one(comment)
    comment["_id"] = res.inserted_id
    await db.posts.update_one({"_id": post["_id"]}, {"$inc": {"comment_count": 1}})

    if parent:
        await notify(
            db,
            parent["author_id"],
            "reply",
            "New reply",
            f"{user['username']} replied to your comment",
            actor_id=user["_id"],
            post_id=post["_id"],
            comment_id=parent["_id"],
            subreddit_id=post.get("subreddit_id"),
        )
    else:
        await notify(
            db,
            post["author_id"],
            "comment",
            "New comment",
            f'{user["username"]} commented on your post "{post["title"]}"',
            actor_id=user["_id"],
            post_id=post["_id"],
            subreddit_id=post.get("subreddit_id"),
        )
    await notify_mentions(db, comment, post, user)

    return {"success": True, "message": "Comment created successfully", "comment_id": str(comment["_id"])}


@router.get("/posts/{post_id}/comments")
async def get_post_comments(post_id: str, sort: str = "new", user=Depends(get_current_user), db=Depends(get_db)):
    if sort not in SORTS:
        raise HTTPException(status_code=400, detail=f"Sort must be one of {', '.join(SORTS)}")
    post = await get_post_or_404(db, post_id)

    comments = await db.comments.find(
        {"post_id": post["_id"], "is_removed": {"$ne": True}}
    ).sort("created_at", 1 if sort == "old" else -1).to_list(None)
    if sort == "top":
        comments.sort(key=lambda c: c.get("upvotes", 0) - c.get("downvotes", 0), reverse=True)

    return {"success": True, "comments": await with_vote_state(db, user, comments, "comment")}


@router.patch("/comments/{comment_id}")
async def edit_comment(
    comment_id: str,
    payload: CommentUpdate,
    user=Depends(get_current_user_required),
    db=Depends(get_db),
):
    comment = await get_comment_or_404(db, comment_id)
    if comment["author_id"] != user["_id"]:
        raise HTTPException(status_code=403, detail="Only the author can edit this comment")

    await db.comments.update_one(
        {"_id": comment["_id"]},
        {"$set": {
            "content": payload.content,
            "content_html": convert_markdown(payload.content),
            "is_edited": True,
            "updated_at": datetime.now(timezone.utc),
        }},
    )
    return {"success": True, "message": "Comment edited successfully"}


@router.delete("/comments/{comment_id}")
async def delete_comment(comment_id: str, user=Depends(get_current_user_required), db=Depends(get_db)):
    comment = await get_comment_or_404(db, comment_id)
    if comment["author_id"] != user["_id"]:
        raise HTTPException(status_code=403, detail="Only the author can delete this comment")

    await db.comments.delete_one({"_id": comment["_id"]})
    await db.votes.delete_many({"item_type": "comment", "item_id": comment["_id"]})
    await db.posts.update_one({"_id": comment["post_id"]}, {"$inc": {"comment_count": -1}})
    await db.users.update_many({"saved_comments": comment["_id"]}, {"$pull": {"saved_comments": oid(comment_id)}})
    return {"success": True, "message": "Comment deleted successfully"}
