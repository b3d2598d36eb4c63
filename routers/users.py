import logging
from datetime import datetime, timedelta, timezone

from fastapi import APIRouter, Depends, HTTPException

from database import get_db
from schemas import PreferencesUpdate, UsernameBody
from utils.lookups import get_user_or_404, with_vote_state
from utils.notifications import notify
from utils.security import get_current_user, get_current_user_required
from utils.serialization import as_utc, public_user, serialize

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["users"])

REBLOCK_COOLDOWN = timedelta(hours=24)

# Preference fields mirrored on the user document
PROFILE_FIELDS = ("display_name", "about")


##########
# Friends
##########
@router.post("/me/friends")
async def follow_user(payload: UsernameBody, user=Depends(get_current_user_required), db=Depends(get_db)):
    friend = await get_user_or_404(db, payload.username)
    if friend["_id"] == user["_id"]:
        raise HTTPException(status_code=400, detail="You cannot follow yourself")

    prefs = await db.user_preferences.find_one({"user_id": friend["_id"]})
    if prefs and not prefs.get("allow_follow", True):
        raise HTTPException(status_code=403, detail="This user does not allow followers")

    res = await db.users.update_one({"_id": user["_id"]}, {"$addToSet": {"followings": friend["_id"]}})
    await db.users.update_one({"_id": friend["_id"]}, {"$addToSet": {"followers": user["_id"]}})

    if res.modified_count:
        await notify(
            db,
            friend["_id"],
            "follow",
            "New follower",
            f"{user['username']} started following you",
            actor_id=user["_id"],
        )
    return {"success": True, "message": "User followed successfully"}


@router.delete("/me/friends")
async def unfollow_user(payload: UsernameBody, user=Depends(get_current_user_required), db=Depends(get_db)):
    friend = await get_user_or_404(db, payload.username)
    if friend["_id"] not in user.get("followings", []):
        raise HTTPException(status_code=400, detail="You are not following this user")

    await db.users.update_one({"_id": user["_id"]}, {"$pull": {"followings": friend["_id"]}})
    await db.users.update_one({"_id": friend["_id"]}, {"$pull": {"followers": user["_id"]}})
    return {"success": True, "message": "User unfollowed successfully"}


@router.get("/me/friends/{username}")
async def get_user_info(username: str, db=Depends(get_db)):
    friend = await get_user_or_404(db, username)
    return {
        "success": True,
        "user": {
            "id": str(friend["_id"]),
            "username": friend["username"],
            "about": friend.get("about"),
            "avatar": friend.get("avatar"),
        },
    }


##########
# Blocking
##########
@router.post("/User/block")
async def block_user(payload: UsernameBody, user=Depends(get_current_user_required), db=Depends(get_db)):
    target = await get_user_or_404(db, payload.username)
    if target["_id"] == user["_id"]:
        raise HTTPException(status_code=400, detail="You cannot block yourself")

    now = datetime.now(timezone.utc)
    existing = await db.blocks.find_one({"blocker_id": user["_id"], "blocked_id": target["_id"]})
    if existing:
        if not existing.get("unblocked_at"):
            raise HTTPException(status_code=409, detail="User is already blocked")
        if now - as_utc(existing["unblocked_at"]) < REBLOCK_COOLDOWN:
            raise HTTPException(status_code=403, detail="You can't block this user within 24 hours of unblocking")
        await db.blocks.update_one({"_id": existing["_id"]}, {"$set": {"created_at": now, "unblocked_at": None}})
    else:
        await db.blocks.insert_one({
            "blocker_id": user["_id"],
            "blocked_id": target["_id"],
            "blocked_username": target["username"],
            "created_at": now,
            "unblocked_at": None,
        })

    logger.info("%s blocked %s", user["username"], target["username"])
    return {"success": True, "message": "User blocked successfully"}


@router.post("/User/unblock")
async def unblock_user(payload: UsernameBody, user=Depends(get_current_user_required), db=Depends(get_db)):
    target = await get_user_or_404(db, payload.username)
    block = await db.blocks.find_one({"blocker_id": user["_id"], "blocked_id": target["_id"]})
    if not block or block.get("unblocked_at"):
        raise HTTPException(status_code=409, detail="User is not blocked")

    await db.blocks.update_one({"_id": block["_id"]}, {"$set": {"unblocked_at": datetime.now(timezone.utc)}})
    return {"success": True, "message": "User unblocked successfully"}


##########
# Profile
##########
@router.get("/user/{username}/about")
async def user_about(username: str, db=Depends(get_db)):
    target = await get_user_or_404(db, username)
    return {"success": True, "user": public_user(target)}


@router.get("/user/{username}/submitted")
async def user_submitted(username: str, viewer=Depends(get_current_user), db=Depends(get_db)):
    target = await get_user_or_404(db, username)
    posts = await db.posts.find(
        {"author_id": target["_id"], "is_removed": {"$ne": True}}
    ).sort("created_at", -1).to_list(None)
    return {"success": True, "posts": await with_vote_state(db, viewer, posts, "post")}


@router.get("/user/{username}/comments")
async def user_comments(username: str, viewer=Depends(get_current_user), db=Depends(get_db)):
    target = await get_user_or_404(db, username)
    comments = await db.comments.find(
        {"author_id": target["_id"], "is_removed": {"$ne": True}}
    ).sort("created_at", -1).to_list(None)
    return {"success": True, "comments": await with_vote_state(db, viewer, comments, "comment")}


async def voted_posts(db, user, direction: int):
    votes = await db.votes.find(
        {"user_id": user["_id"], "item_type": "post", "direction": direction}
    ).sort("created_at", -1).to_list(None)
    ids = [v["item_id"] for v in votes]
    posts = await db.posts.find({"_id": {"$in": ids}}).to_list(None)
    by_id = {p["_id"]: p for p in posts}
    return await with_vote_state(db, user, [by_id[i] for i in ids if i in by_id], "post")


@router.get("/user/{username}/upvoted")
async def user_upvoted(username: str, user=Depends(get_current_user_required), db=Depends(get_db)):
    if username != user["username"]:
        raise HTTPException(status_code=403, detail="You can only view your own votes")
    return {"success": True, "posts": await voted_posts(db, user, 1)}


@router.get("/user/{username}/downvoted")
async def user_downvoted(username: str, user=Depends(get_current_user_required), db=Depends(get_db)):
    if username != user["username"]:
        raise HTTPException(status_code=403, detail="You can only view your own votes")
    return {"success": True, "posts": await voted_posts(db, user, -1)}


##########
# Preferences
##########
@router.get("/settings/preferences")
async def get_preferences(user=Depends(get_current_user_required), db=Depends(get_db)):
    prefs = await db.user_preferences.find_one({"user_id": user["_id"]}, {"_id": 0, "user_id": 0})
    if not prefs:
        raise HTTPException(status_code=404, detail="Preferences not found")
    return {"success": True, "preferences": serialize(prefs)}


@router.patch("/settings/preferences")
async def update_preferences(payload: PreferencesUpdate, user=Depends(get_current_user_required), db=Depends(get_db)):
    """Only fields present in the body are changed"""
    updates = payload.model_dump(exclude_unset=True, exclude_none=True)
    if not updates:
        raise HTTPException(status_code=400, detail="No preferences to update")

    await db.user_preferences.update_one({"user_id": user["_id"]}, {"$set": updates}, upsert=True)
    profile = {k: v for k, v in updates.items() if k in PROFILE_FIELDS}
    if "nsfw" in updates:
        profile["is_over_18"] = updates["nsfw"]
    if profile:
        await db.users.update_one({"_id": user["_id"]}, {"$set": profile})

    prefs = await db.user_preferences.find_one({"user_id": user["_id"]}, {"_id": 0, "user_id": 0})
    return {"success": True, "message": "Preferences updated successfully", "preferences": serialize(prefs)}
