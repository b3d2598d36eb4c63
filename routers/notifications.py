import random

from fastapi import APIRouter, Depends, HTTPException

from database import get_db
from schemas import NotificationRef, NotificationSettings
from utils.lookups import get_comment_or_404, get_post_or_404, get_subreddit_or_404
from utils.notifications import notifications_disabled
from utils.security import get_current_user_required
from utils.serialization import oid, serialize

router = APIRouter(prefix="/api/notifications", tags=["notifications"])


##########
# Helpers
##########
def visible(user: dict) -> dict:
    return {
        "recipient_id": user["_id"],
        "is_disabled": {"$ne": True},
        "_id": {"$nin": user.get("hidden_notifications", [])},
    }


async def owned_notification(db, notification_id: str, user: dict):
    notification = await db.notifications.find_one({"_id": oid(notification_id)})
    if not notification:
        raise HTTPException(status_code=404, detail="Notification not found")
    if notification["recipient_id"] != user["_id"]:
        raise HTTPException(status_code=403, detail="This notification does not belong to you")
    return notification


async def resolve_targets(db, payload: NotificationSettings, user: dict) -> dict:
    """Map the request onto notification_settings lists and the ids to add/remove."""
    targets = {}
    if payload.subreddit:
        subreddit = await get_subreddit_or_404(db, payload.subreddit)
        targets["disabled_subreddits"] = [subreddit["_id"]]
    if payload.post_id:
        post = await get_post_or_404(db, payload.post_id)
        targets.setdefault("disabled_posts", []).append(post["_id"])
    if payload.comment_id:
        comment = await get_comment_or_404(db, payload.comment_id)
        targets.setdefault("disabled_comments", []).append(comment["_id"])
    if payload.type == "posts":
        posts = await db.posts.find({"author_id": user["_id"]}, {"_id": 1}).to_list(None)
        targets.setdefault("disabled_posts", []).extend(p["_id"] for p in posts)
    elif payload.type == "comments":
        comments = await db.comments.find({"author_id": user["_id"]}, {"_id": 1}).to_list(None)
        targets.setdefault("disabled_comments", []).extend(c["_id"] for c in comments)
    if not targets:
        raise HTTPException(status_code=400, detail="Provide a subreddit, post_id, comment_id or type")
    return targets


# notification_settings list -> notification field it matches on
MATCH_FIELD = {
    "disabled_subreddits": "subreddit_id",
    "disabled_posts": "post_id",
    "disabled_comments": "comment_id",
}


async def apply_settings(db, user: dict, targets: dict, disable: bool):
    for key, ids in targets.items():
        field = f"notification_settings.{key}"
        if disable:
            await db.users.update_one({"_id": user["_id"]}, {"$addToSet": {field: {"$each": ids}}})
        else:
            await db.users.update_one({"_id": user["_id"]}, {"$pull": {field: {"$in": ids}}})

    matches = [{MATCH_FIELD[key]: {"$in": ids}} for key, ids in targets.items()]
    query = {"recipient_id": user["_id"], "$or": matches}
    if disable:
        await db.notifications.update_many(query, {"$set": {"is_disabled": True}})
        return

    # Only re-enable what no remaining setting still covers
    updated = await db.users.find_one({"_id": user["_id"]})
    cleared = [
        n["_id"]
        for n in await db.notifications.find(query).to_list(None)
        if not notifications_disabled(
            updated,
            post_id=n.get("post_id"),
            comment_id=n.get("comment_id"),
            subreddit_id=n.get("subreddit_id"),
        )
    ]
    if cleared:
        await db.notifications.update_many({"_id": {"$in": cleared}}, {"$set": {"is_disabled": False}})


##########
# Listing
##########
@router.get("/history")
async def history(user=Depends(get_current_user_required), db=Depends(get_db)):
    """All visible notifications, newest first"""
    notifications = await db.notifications.find(visible(user)).sort("created_at", -1).to_list(None)
    response = {"success": True, "notifications": serialize(notifications)}

    if not await db.subreddits.find_one({"members": user["_id"]}):
        candidates = await db.subreddits.find({"privacy_mode": {"$ne": "private"}}, {"name": 1}).to_list(None)
        if candidates:
            response["suggested_subreddit"] = random.choice(candidates)["name"]
    return response


@router.get("/unsent")
async def unsent(user=Depends(get_current_user_required), db=Depends(get_db)):
    """Notifications not yet delivered; fetching them marks them sent"""
    query = {**visible(user), "is_sent": False}
    notifications = await db.notifications.find(query).sort("created_at", -1).to_list(None)
    if notifications:
        await db.notifications.update_many(
            {"_id": {"$in": [n["_id"] for n in notifications]}},
            {"$set": {"is_sent": True}},
        )
    return {"success": True, "notifications": serialize(notifications)}


@router.get("/unread")
async def unread(user=Depends(get_current_user_required), db=Depends(get_db)):
    notifications = await db.notifications.find({**visible(user), "is_read": False}).sort("created_at", -1).to_list(None)
    return {"success": True, "count": len(notifications), "notifications": serialize(notifications)}


@router.get("/read")
async def read(user=Depends(get_current_user_required), db=Depends(get_db)):
    notifications = await db.notifications.find({**visible(user), "is_read": True}).sort("created_at", -1).to_list(None)
    unread_count = await db.notifications.count_documents({**visible(user), "is_read": False})
    return {
        "success": True,
        "read_count": len(notifications),
        "unread_count": unread_count,
        "notifications": serialize(notifications),
    }


##########
# State changes
##########
@router.patch("/read/{notification_id}")
async def read_one(notification_id: str, user=Depends(get_current_user_required), db=Depends(get_db)):
    notification = await owned_notification(db, notification_id, user)
    if notification.get("is_read"):
        raise HTTPException(status_code=400, detail="Notification is already read")
    await db.notifications.update_one({"_id": notification["_id"]}, {"$set": {"is_read": True, "is_viewed": True}})
    return {"success": True, "message": "Notification marked as read"}


@router.post("/readAll")
async def read_all(user=Depends(get_current_user_required), db=Depends(get_db)):
    res = await db.notifications.update_many(
        {"recipient_id": user["_id"], "is_read": False},
        {"$set": {"is_read": True, "is_viewed": True}},
    )
    return {"success": True, "message": "All notifications marked as read", "count": res.modified_count}


@router.post("/markAllViewed")
async def mark_all_viewed(user=Depends(get_current_user_required), db=Depends(get_db)):
    res = await db.notifications.update_many(
        {"recipient_id": user["_id"], "is_viewed": False},
        {"$set": {"is_viewed": True}},
    )
    return {"success": True, "message": "All notifications marked as viewed", "count": res.modified_count}


@router.post("/hide")
async def hide(payload: NotificationRef, user=Depends(get_current_user_required), db=Depends(get_db)):
    notification = await owned_notification(db, payload.notification_id, user)
    if notification["_id"] in user.get("hidden_notifications", []):
        raise HTTPException(status_code=400, detail="Notification is already hidden")
    await db.users.update_one({"_id": user["_id"]}, {"$addToSet": {"hidden_notifications": notification["_id"]}})
    return {"success": True, "message": "Notification hidden successfully"}


@router.post("/unhide")
async def unhide(payload: NotificationRef, user=Depends(get_current_user_required), db=Depends(get_db)):
    notification = await owned_notification(db, payload.notification_id, user)
    if notification["_id"] not in user.get("hidden_notifications", []):
        raise HTTPException(status_code=400, detail="Notification is not hidden")
    await db.users.update_one({"_id": user["_id"]}, {"$pull": {"hidden_notifications": notification["_id"]}})
    return {"success": True, "message": "Notification unhidden successfully"}


##########
# Settings
##########
@router.post("/settings/disable")
async def disable(payload: NotificationSettings, user=Depends(get_current_user_required), db=Depends(get_db)):
    targets = await resolve_targets(db, payload, user)
    await apply_settings(db, user, targets, disable=True)
    return {"success": True, "message": "Notifications disabled"}


@router.post("/settings/enable")
async def enable(payload: NotificationSettings, user=Depends(get_current_user_required), db=Depends(get_db)):
    targets = await resolve_targets(db, payload, user)
    await apply_settings(db, user, targets, disable=False)
    return {"success": True, "message": "Notifications enabled"}
