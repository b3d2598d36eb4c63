import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile, status

from config import FRONTEND_HOST
from database import get_db
from schemas import PollVote, PostCreate, PostRef, PostUpdate, SaveRequest
from utils.lookups import (
    get_comment_or_404,
    get_post_or_404,
    get_subreddit_or_404,
    is_member,
    is_moderator,
    post_subreddit,
    present_posts,
    require_not_banned,
    require_post_moderator,
    subreddit_details,
    with_vote_state,
)
from utils.markdown_utils import convert_markdown
from utils.security import get_current_user, get_current_user_required
from utils.serialization import as_utc, oid
from utils.storage import media_url, upload_media

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["posts"])

HISTORY_SIZE = 10

# Subreddit setting that must be on for each post type
SETTING_FOR_TYPE = {
    "post": "allow_text",
    "poll": "allow_polls",
    "link": "allow_links",
    "media": "allow_images",
}


##########
# Helpers
##########
async def resolve_destination(db, user: dict, destination: str, subreddit_name: Optional[str], post_type: str):
    """Subreddit a new post goes to (None for the user's profile), after permission checks."""
    if destination == "profile":
        return None
    if not subreddit_name:
        raise HTTPException(status_code=400, detail="Subreddit is required")

    subreddit = await get_subreddit_or_404(db, subreddit_name)
    require_not_banned(subreddit, user)
    if subreddit.get("privacy_mode") in ("private", "restricted") and not (
        is_member(subreddit, user["_id"]) or is_moderator(subreddit, user["_id"])
    ):
        raise HTTPException(status_code=403, detail="Only members can post in this subreddit")
    if not subreddit.get(SETTING_FOR_TYPE[post_type], True):
        raise HTTPException(status_code=400, detail=f"This subreddit does not allow {post_type} posts")
    return subreddit


def new_post(user: dict, subreddit: Optional[dict], **fields) -> dict:
    now = datetime.now(timezone.utc)
    post = {
        "title": fields.pop("title"),
        "content": fields.pop("content", ""),
        "type": fields.pop("type", "post"),
        "author_id": user["_id"],
        "author_name": user["username"],
        "subreddit_id": subreddit["_id"] if subreddit else None,
        "subreddit_name": subreddit["name"] if subreddit else None,
        "created_at": now,
        "updated_at": now,
        "upvotes": 0,
        "downvotes": 0,
        "comment_count": 0,
        "shares": 0,
        "views": 0,
        "search_count": 0,
        "is_locked": False,
        "is_edited": False,
        "is_removed": False,
        "is_approved": False,
        "media_key": None,
        "link": None,
        "options": [],
        "voting_length_days": None,
        "is_nsfw": False,
        "is_spoiler": False,
        "is_oc": False,
    }
    post.update(fields)
    post["content_html"] = convert_markdown(post["content"])
    return post


async def insert_post(db, post: dict) -> dict:
    res = await db.posts.insert_one(post)
    post["_id"] = res.inserted_id
    logger.info("post %s created by %s", post["_id"], post["author_name"])
    return post


def require_author(post: dict, user: dict, action: str):
    if post["author_id"] != user["_id"]:
        raise HTTPException(status_code=403, detail=f"Only the author can {action} this post")


async def require_author_or_moderator(db, post: dict, user: dict, action: str):
    if post["author_id"] == user["_id"]:
        return
    await require_post_moderator(db, post, user, action)


async def set_flag(db, post_id: str, user: dict, field: str, value: bool, action: str):
    post = await get_post_or_404(db, post_id)
    await require_author_or_moderator(db, post, user, action)
    if post.get(field, False) == value:
        raise HTTPException(status_code=400, detail=f"Post is already {'marked' if value else 'unmarked'}")
    await db.posts.update_one({"_id": post["_id"]}, {"$set": {field: value}})
    return post


def poll_closed(post: dict) -> bool:
    deadline = as_utc(post["created_at"]) + timedelta(days=post.get("voting_length_days") or 0)
    return datetime.now(timezone.utc) > deadline


##########
# Submit
##########
@router.post("/submit", status_code=status.HTTP_201_CREATED)
async def submit(payload: PostCreate, user=Depends(get_current_user_required), db=Depends(get_db)):
    """Create a text, poll or link post on the user's profile or in a subreddit"""
    subreddit = await resolve_destination(db, user, payload.destination, payload.subreddit, payload.type)

    extra = {}
    if payload.type == "poll":
        options = [o.strip() for o in payload.options if o.strip()]
        if len(options) < 2:
            raise HTTPException(status_code=400, detail="A poll needs at least two options")
        extra["options"] = [{"text": o, "votes": 0, "voters": []} for o in options]
        extra["voting_length_days"] = payload.voting_length_days
    elif payload.type == "link":
        if not payload.link or not payload.link.startswith(("http://", "https://")):
            raise HTTPException(status_code=400, detail="A link post needs a valid URL")
        extra["link"] = payload.link

    post = await insert_post(db, new_post(
        user,
        subreddit,
        title=payload.title,
        content=payload.content,
        type=payload.type,
        is_nsfw=payload.is_nsfw,
        is_spoiler=payload.is_spoiler,
        is_oc=payload.is_oc,
        **extra,
    ))
    return {"success": True, "message": "Post created successfully", "post_id": str(post["_id"])}


@router.post("/submit/media", status_code=status.HTTP_201_CREATED)
async def submit_media(
    title: str = Form(...),
    destination: str = Form("profile"),
    subreddit: Optional[str] = Form(None),
    is_nsfw: bool = Form(False),
    is_spoiler: bool = Form(False),
    is_oc: bool = Form(False),
    file: UploadFile = File(...),
    user=Depends(get_current_user_required),
    db=Depends(get_db),
):
    if destination not in ("profile", "subreddit"):
        raise HTTPException(status_code=400, detail="Destination must be profile or subreddit")
    if not title.strip():
        raise HTTPException(status_code=400, detail="Title is required")
    target = await resolve_destination(db, user, destination, subreddit, "media")
    key = await upload_media(file)

    post = await insert_post(db, new_post(
        user,
        target,
        title=title,
        type="media",
        media_key=key,
        is_nsfw=is_nsfw,
        is_spoiler=is_spoiler,
        is_oc=is_oc,
    ))
    return {"success": True, "message": "Post created successfully", "post_id": str(post["_id"])}


##########
# Read / Edit / Delete
##########
@router.get("/posts/{post_id}")
async def get_post(post_id: str, user=Depends(get_current_user), db=Depends(get_db)):
    post = await get_post_or_404(db, post_id)
    subreddit = await post_subreddit(db, post)
    if post.get("is_removed"):
        can_see = user and (post["author_id"] == user["_id"] or (subreddit and is_moderator(subreddit, user["_id"])))
        if not can_see:
            raise HTTPException(status_code=404, detail="Post not found")

    await db.posts.update_one({"_id": post["_id"]}, {"$inc": {"views": 1}})
    post["views"] = post.get("views", 0) + 1

    data = (await present_posts(db, user, [post]))[0]
    data["media_url"] = await media_url(post.get("media_key"))
    if subreddit:
        data["subreddit"] = await subreddit_details(db, subreddit, user)
    return {"success": True, "post": data}


@router.patch("/posts/{post_id}")
async def edit_post(post_id: str, payload: PostUpdate, user=Depends(get_current_user_required), db=Depends(get_db)):
    post = await get_post_or_404(db, post_id)
    require_author(post, user, "edit")
    updates = payload.model_dump(exclude_unset=True, exclude_none=True)
    if not updates:
        raise HTTPException(status_code=400, detail="Nothing to update")
    if "content" in updates:
        updates["content_html"] = convert_markdown(updates["content"])

    updates.update({"is_edited": True, "updated_at": datetime.now(timezone.utc)})
    await db.posts.update_one({"_id": post["_id"]}, {"$set": updates})
    return {"success": True, "message": "Post edited successfully"}


@router.delete("/posts/{post_id}")
async def delete_post(post_id: str, user=Depends(get_current_user_required), db=Depends(get_db)):
    """Delete a post with its comments and every vote on either"""
    post = await get_post_or_404(db, post_id)
    require_author(post, user, "delete")

    comment_ids = [c["_id"] for c in await db.comments.find({"post_id": post["_id"]}, {"_id": 1}).to_list(None)]
    await db.votes.delete_many({"item_type": "comment", "item_id": {"$in": comment_ids}})
    await db.votes.delete_many({"item_type": "post", "item_id": post["_id"]})
    await db.comments.delete_many({"post_id": post["_id"]})
    await db.posts.delete_one({"_id": post["_id"]})

    logger.info("post %s deleted by %s", post["_id"], user["username"])
    return {"success": True, "message": "Post deleted successfully"}


##########
# Hide / Save
##########
@router.post("/hide")
async def hide_post(payload: PostRef, user=Depends(get_current_user_required), db=Depends(get_db)):
    post = await get_post_or_404(db, payload.post_id)
    if post["_id"] in user.get("hidden_posts", []):
        raise HTTPException(status_code=400, detail="Post is already hidden")
    await db.users.update_one({"_id": user["_id"]}, {"$addToSet": {"hidden_posts": post["_id"]}})
    return {"success": True, "message": "Post hidden successfully"}


@router.post("/unhide")
async def unhide_post(payload: PostRef, user=Depends(get_current_user_required), db=Depends(get_db)):
    post_id = oid(payload.post_id)
    if post_id not in user.get("hidden_posts", []):
        raise HTTPException(status_code=400, detail="Post is not hidden")
    await db.users.update_one({"_id": user["_id"]}, {"$pull": {"hidden_posts": post_id}})
    return {"success": True, "message": "Post unhidden successfully"}


@router.get("/hidden")
async def hidden_posts(user=Depends(get_current_user_required), db=Depends(get_db)):
    posts = await db.posts.find({"_id": {"$in": user.get("hidden_posts", [])}}).to_list(None)
    return {"success": True, "posts": await present_posts(db, user, posts)}


@router.post("/save")
async def save_item(payload: SaveRequest, user=Depends(get_current_user_required), db=Depends(get_db)):
    if payload.category == "post":
        item = await get_post_or_404(db, payload.id)
        field = "saved_posts"
    else:
        item = await get_comment_or_404(db, payload.id)
        field = "saved_comments"
    if item["_id"] in user.get(field, []):
        raise HTTPException(status_code=400, detail=f"{payload.category.capitalize()} is already saved")

    await db.users.update_one({"_id": user["_id"]}, {"$addToSet": {field: item["_id"]}})
    return {"success": True, "message": f"{payload.category.capitalize()} saved successfully"}


@router.post("/unsave")
async def unsave_item(payload: SaveRequest, user=Depends(get_current_user_required), db=Depends(get_db)):
    field = "saved_posts" if payload.category == "post" else "saved_comments"
    item_id = oid(payload.id)
    if item_id not in user.get(field, []):
        raise HTTPException(status_code=400, detail=f"{payload.category.capitalize()} is not saved")

    await db.users.update_one({"_id": user["_id"]}, {"$pull": {field: item_id}})
    return {"success": True, "message": f"{payload.category.capitalize()} unsaved successfully"}


@router.get("/saved_categories")
async def saved_items(user=Depends(get_current_user_required), db=Depends(get_db)):
    posts = await db.posts.find({"_id": {"$in": user.get("saved_posts", [])}}).to_list(None)
    comments = await db.comments.find({"_id": {"$in": user.get("saved_comments", [])}}).to_list(None)
    return {
        "success": True,
        "posts": await present_posts(db, user, posts),
        "comments": await with_vote_state(db, user, comments, "comment"),
    }


##########
# Flags
##########
@router.post("/spoil")
async def spoil(payload: PostRef, user=Depends(get_current_user_required), db=Depends(get_db)):
    await set_flag(db, payload.post_id, user, "is_spoiler", True, "mark spoilers")
    return {"success": True, "message": "Post marked as spoiler"}


@router.post("/unspoil")
async def unspoil(payload: PostRef, user=Depends(get_current_user_required), db=Depends(get_db)):
    await set_flag(db, payload.post_id, user, "is_spoiler", False, "unmark spoilers")
    return {"success": True, "message": "Post unmarked as spoiler"}


@router.post("/nsfw")
async def mark_nsfw(payload: PostRef, user=Depends(get_current_user_required), db=Depends(get_db)):
    await set_flag(db, payload.post_id, user, "is_nsfw", True, "mark posts NSFW")
    return {"success": True, "message": "Post marked as NSFW"}


@router.post("/unnsfw")
async def unmark_nsfw(payload: PostRef, user=Depends(get_current_user_required), db=Depends(get_db)):
    await set_flag(db, payload.post_id, user, "is_nsfw", False, "unmark posts NSFW")
    return {"success": True, "message": "Post unmarked as NSFW"}


@router.post("/lock")
async def lock_post(payload: PostRef, user=Depends(get_current_user_required), db=Depends(get_db)):
    post = await get_post_or_404(db, payload.post_id)
    await require_post_moderator(db, post, user, "lock posts")
    if post.get("is_locked"):
        raise HTTPException(status_code=400, detail="Post is already locked")
    await db.posts.update_one({"_id": post["_id"]}, {"$set": {"is_locked": True}})
    return {"success": True, "message": "Post locked successfully"}


@router.post("/unlock")
async def unlock_post(payload: PostRef, user=Depends(get_current_user_required), db=Depends(get_db)):
    post = await get_post_or_404(db, payload.post_id)
    await require_post_moderator(db, post, user, "unlock posts")
    if not post.get("is_locked"):
        raise HTTPException(status_code=400, detail="Post is not locked")
    await db.posts.update_one({"_id": post["_id"]}, {"$set": {"is_locked": False}})
    return {"success": True, "message": "Post unlocked successfully"}


@router.post("/share")
async def share_post(payload: PostRef, db=Depends(get_db)):
    post = await get_post_or_404(db, payload.post_id)
    await db.posts.update_one({"_id": post["_id"]}, {"$inc": {"shares": 1}})
    return {"success": True, "link": f"{FRONTEND_HOST}/posts/{post['_id']}"}


##########
# History
##########
@router.post("/history")
async def add_history(payload: PostRef, user=Depends(get_current_user_required), db=Depends(get_db)):
    post = await get_post_or_404(db, payload.post_id)
    recent = [p for p in user.get("recent_posts", []) if p != post["_id"]]
    recent = [post["_id"], *recent][:HISTORY_SIZE]
    await db.users.update_one({"_id": user["_id"]}, {"$set": {"recent_posts": recent}})
    return {"success": True, "message": "Post added to history"}


@router.get("/getHistory")
async def get_history(user=Depends(get_current_user_required), db=Depends(get_db)):
    recent = user.get("recent_posts", [])
    posts = await db.posts.find({"_id": {"$in": recent}}).to_list(None)
    by_id = {p["_id"]: p for p in posts}
    ordered = [by_id[p] for p in recent if p in by_id]
    return {"success": True, "posts": await present_posts(db, user, ordered)}


@router.delete("/history")
async def clear_history(user=Depends(get_current_user_required), db=Depends(get_db)):
    await db.users.update_one({"_id": user["_id"]}, {"$set": {"recent_posts": []}})
    return {"success": True, "message": "History cleared"}


##########
# Polls
##########
@router.post("/pollVote")
async def poll_vote(payload: PollVote, user=Depends(get_current_user_required), db=Depends(get_db)):
    post = await get_post_or_404(db, payload.post_id)
    if post.get("type") != "poll":
        raise HTTPException(status_code=400, detail="Post is not a poll")
    options = post.get("options", [])
    if payload.option >= len(options):
        raise HTTPException(status_code=400, detail="Option does not exist")
    if poll_closed(post):
        raise HTTPException(status_code=400, detail="Poll voting has ended")
    if any(user["_id"] in o.get("voters", []) for o in options):
        raise HTTPException(status_code=400, detail="You have already voted on this poll")

    await db.posts.update_one(
        {"_id": post["_id"]},
        {
            "$inc": {f"options.{payload.option}.votes": 1},
            "$push": {f"options.{payload.option}.voters": user["_id"]},
        },
    )
    return {"success": True, "message": "Vote recorded"}


##########
# Item info
##########
@router.get("/info")
async def item_info(objectID: str, objectType: str, user=Depends(get_current_user), db=Depends(get_db)):
    if objectType == "post":
        post = await get_post_or_404(db, objectID)
        return {"success": True, "item": (await present_posts(db, user, [post]))[0]}
    if objectType == "comment":
        comment = await get_comment_or_404(db, objectID)
        return {"success": True, "item": (await with_vote_state(db, user, [comment], "comment"))[0]}
    if objectType == "subreddit":
        subreddit = await db.subreddits.find_one({"_id": oid(objectID)})
        if not subreddit:
            raise HTTPException(status_code=404, detail="Subreddit not found")
        return {"success": True, "item": await subreddit_details(db, subreddit, user)}
    raise HTTPException(status_code=400, detail="Object type must be post, comment or subreddit")
