import re

from fastapi import APIRouter, Depends, HTTPException

from database import get_db
from utils.lookups import filter_hidden, present_posts, private_subreddit_ids
from utils.security import get_current_user
from utils.serialization import public_user

router = APIRouter(prefix="/api", tags=["search"])

RESULT_LIMIT = 25
TRENDING_SIZE = 5


@router.get("/search")
async def search(q: str = "", user=Depends(get_current_user), db=Depends(get_db)):
    """Case-insensitive match on usernames, subreddit names and post titles"""
    q = q.strip()
    if not q:
        raise HTTPException(status_code=400, detail="Search query is required")
    pattern = {"$regex": re.escape(q), "$options": "i"}

    users = await db.users.find({"username": pattern}).limit(RESULT_LIMIT).to_list(None)
    subreddits = await db.subreddits.find(
        {"name": pattern, "privacy_mode": {"$ne": "private"}}
    ).limit(RESULT_LIMIT).to_list(None)
    post_query = {"title": pattern, "is_removed": {"$ne": True}}
    private_ids = await private_subreddit_ids(db)
    if private_ids:
        post_query["subreddit_id"] = {"$nin": private_ids}
    posts = await db.posts.find(post_query).sort("created_at", -1).limit(RESULT_LIMIT).to_list(None)
    posts = filter_hidden(posts, user)

    if not users and not subreddits and not posts:
        raise HTTPException(status_code=404, detail="No results found")

    if posts:
        await db.posts.update_many({"_id": {"$in": [p["_id"] for p in posts]}}, {"$inc": {"search_count": 1}})

    return {
        "success": True,
        "users": [public_user(u) for u in users],
        "subreddits": [
            {"id": str(s["_id"]), "name": s["name"], "description": s.get("description", ""),
             "members_count": len(s.get("members", []))}
            for s in subreddits
        ],
        "posts": await present_posts(db, user, posts),
    }


@router.get("/trendingSearches")
async def trending(db=Depends(get_db)):
    query = {"search_count": {"$gt": 0}, "is_removed": {"$ne": True}}
    private_ids = await private_subreddit_ids(db)
    if private_ids:
        query["subreddit_id"] = {"$nin": private_ids}
    posts = await db.posts.find(query).sort([("search_count", -1), ("created_at", -1)]).limit(TRENDING_SIZE).to_list(None)
    return {
        "success": True,
        "trending": [
            {"id": str(p["_id"]), "title": p["title"], "subreddit": p.get("subreddit_name"),
             "search_count": p["search_count"]}
            for p in posts
        ],
    }
