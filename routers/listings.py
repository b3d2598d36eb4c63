import random
from datetime import datetime, timedelta, timezone

from fastapi import APIRouter, Depends, HTTPException

from database import get_db
from schemas import SuggestedSort
from utils.lookups import (
    filter_hidden,
    get_subreddit_or_404,
    is_member,
    is_moderator,
    present_posts,
    private_subreddit_ids,
    require_moderator,
)
from utils.ranking import best_score, hot_score
from utils.security import get_current_user, get_current_user_required

router = APIRouter(prefix="/api", tags=["listings"])

PAGE_SIZE = 25

TIME_WINDOWS = {
    "hour": timedelta(hours=1),
    "day": timedelta(days=1),
    "week": timedelta(weeks=1),
    "month": timedelta(days=30),
    "year": timedelta(days=365),
    "all": None,
}


##########
# Helpers
##########
async def subreddit_posts(db, name: str, user, extra: dict | None = None) -> list:
    """Visible posts of a subreddit, minus what the viewer has hidden."""
    subreddit = await get_subreddit_or_404(db, name)
    if subreddit.get("privacy_mode") == "private":
        if not user or not (is_member(subreddit, user["_id"]) or is_moderator(subreddit, user["_id"])):
            raise HTTPException(status_code=403, detail="This subreddit is private")

    query = {"subreddit_id": subreddit["_id"], "is_removed": {"$ne": True}}
    query.update(extra or {})
    posts = await db.posts.find(query).sort("created_at", -1).to_list(None)
    return filter_hidden(posts, user)


def paginate(posts: list, page: int) -> list:
    if page < 1:
        raise HTTPException(status_code=400, detail="Page must be a positive number")
    start = (page - 1) * PAGE_SIZE
    return posts[start:start + PAGE_SIZE]


async def listing(db, user, posts: list, page: int) -> dict:
    return {"success": True, "page": page, "posts": await present_posts(db, user, paginate(posts, page))}


##########
# Subreddit listings
##########
@router.get("/r/{name}/new")
async def new_posts(name: str, page: int = 1, user=Depends(get_current_user), db=Depends(get_db)):
    posts = await subreddit_posts(db, name, user)
    return await listing(db, user, posts, page)


@router.get("/r/{name}/hot")
async def hot_posts(name: str, page: int = 1, user=Depends(get_current_user), db=Depends(get_db)):
    posts = await subreddit_posts(db, name, user)
    posts.sort(key=hot_score, reverse=True)
    return await listing(db, user, posts, page)


@router.get("/r/{name}/top")
async def top_posts(name: str, t: str = "all", page: int = 1, user=Depends(get_current_user), db=Depends(get_db)):
    if t not in TIME_WINDOWS:
        raise HTTPException(status_code=400, detail=f"Time must be one of {', '.join(TIME_WINDOWS)}")
    extra = {}
    if TIME_WINDOWS[t]:
        extra["created_at"] = {"$gte": datetime.now(timezone.utc) - TIME_WINDOWS[t]}
    posts = await subreddit_posts(db, name, user, extra)
    posts.sort(key=lambda p: p.get("upvotes", 0) - p.get("downvotes", 0), reverse=True)
    return await listing(db, user, posts, page)


@router.get("/r/{name}/most_comments")
async def most_commented(name: str, page: int = 1, user=Depends(get_current_user), db=Depends(get_db)):
    posts = await subreddit_posts(db, name, user)
    posts.sort(key=lambda p: p.get("comment_count", 0), reverse=True)
    return await listing(db, user, posts, page)


@router.get("/r/{name}/random")
async def random_post(name: str, user=Depends(get_current_user), db=Depends(get_db)):
    posts = await subreddit_posts(db, name, user)
    if not posts:
        raise HTTPException(status_code=404, detail="No posts found")
    return {"success": True, "post": (await present_posts(db, user, [random.choice(posts)]))[0]}


@router.post("/r/{name}/suggestedSort")
async def set_suggested_sort(name: str, payload: SuggestedSort, user=Depends(get_current_user_required), db=Depends(get_db)):
    subreddit = await get_subreddit_or_404(db, name)
    require_moderator(subreddit, user, "change the suggested sort")
    sort = None if payload.sort == "none" else payload.sort
    await db.subreddits.update_one({"_id": subreddit["_id"]}, {"$set": {"suggested_sort": sort}})
    return {"success": True, "message": "Suggested sort updated", "suggested_sort": sort}


##########
# Front page
##########
@router.get("/best")
async def best_posts(page: int = 1, user=Depends(get_current_user), db=Depends(get_db)):
    """Posts from public subreddits and profiles ranked by upvote ratio"""
    private_ids = await private_subreddit_ids(db)
    query = {"is_removed": {"$ne": True}}
    if private_ids:
        query["subreddit_id"] = {"$nin": private_ids}
    posts = filter_hidden(await db.posts.find(query).sort("created_at", -1).to_list(None), user)
    posts.sort(key=lambda p: (best_score(p), p.get("upvotes", 0)), reverse=True)
    return await listing(db, user, posts, page)
