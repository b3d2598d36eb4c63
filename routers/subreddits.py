import logging
import random
from datetime import datetime, timezone

from bson import ObjectId
from fastapi import APIRouter, Depends, HTTPException, status
from pymongo.errors import DuplicateKeyError

from database import get_db
from schemas import (
    MemberInvite,
    ModeratorInvite,
    RuleCreate,
    SubredditCreate,
    SubredditSettingsUpdate,
    SubredditUserAction,
)
from utils.lookups import (
    get_subreddit_or_404,
    get_user_or_404,
    is_banned,
    is_creator,
    is_member,
    is_moderator,
    require_moderator,
    subreddit_details,
    usernames_for,
)
from utils.notifications import notify
from utils.security import get_current_user, get_current_user_required
from utils.serialization import oid, serialize

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["subreddits"])

TOP_PAGE_SIZE = 10
RANDOM_CATEGORY_SIZE = 5

DEFAULT_SETTINGS = {
    "welcome_message": None,
    "allow_images": True,
    "allow_polls": True,
    "allow_links": True,
    "allow_text": True,
    "allow_crossposting": True,
    "archive_posts": False,
}
SETTINGS_FIELDS = (
    "description",
    "privacy_mode",
    "category",
    "language",
    "is_nsfw",
    *DEFAULT_SETTINGS,
)


##########
# Helpers
##########
def summaries(subreddits: list) -> list:
    return [
        {
            "id": str(s["_id"]),
            "name": s["name"],
            "description": s.get("description", ""),
            "category": s.get("category"),
            "icon": s.get("icon"),
            "members_count": len(s.get("members", [])),
        }
        for s in subreddits
    ]


async def top_by_members(db, query: dict, skip: int = 0, limit: int = TOP_PAGE_SIZE) -> list:
    """Subreddits matching `query`, most members first."""
    subreddits = await db.subreddits.find(query).to_list(None)
    subreddits.sort(key=lambda s: len(s.get("members", [])), reverse=True)
    return subreddits[skip:skip + limit]


##########
# Create / Read
##########
@router.post("/subreddits", status_code=status.HTTP_201_CREATED)
async def create_subreddit(payload: SubredditCreate, user=Depends(get_current_user_required), db=Depends(get_db)):
    """Create a community; the creator is its first moderator and member"""
    if await db.subreddits.find_one({"name": {"$regex": f"^{payload.name}$", "$options": "i"}}):
        raise HTTPException(status_code=409, detail="Subreddit name is already taken")

    subreddit = {
        **payload.model_dump(),
        "creator_id": user["_id"],
        "moderators": [user["_id"]],
        "members": [user["_id"]],
        "banned_users": [],
        "muted_users": [],
        "rules": [],
        "suggested_sort": None,
        "icon": None,
        "banner": None,
        "created_at": datetime.now(timezone.utc),
        **DEFAULT_SETTINGS,
    }
    try:
        res = await db.subreddits.insert_one(subreddit)
    except DuplicateKeyError:
        raise HTTPException(status_code=409, detail="Subreddit name is already taken")
    subreddit["_id"] = res.inserted_id

    logger.info("subreddit r/%s created by %s", payload.name, user["username"])
    return {
        "success": True,
        "message": "Subreddit created successfully",
        "subreddit": await subreddit_details(db, subreddit, user),
    }


@router.get("/r/{name}")
async def get_subreddit(name: str, user=Depends(get_current_user), db=Depends(get_db)):
    subreddit = await get_subreddit_or_404(db, name)
    return {"success": True, "subreddit": await subreddit_details(db, subreddit, user)}


@router.get("/subreddits/moderated")
async def moderated_subreddits(user=Depends(get_current_user_required), db=Depends(get_db)):
    subreddits = await db.subreddits.find({"moderators": user["_id"]}).sort("name", 1).to_list(None)
    return {"success": True, "subreddits": summaries(subreddits)}


@router.get("/subreddits/top")
async def top_communities(page: int = 1, db=Depends(get_db)):
    if page < 1:
        raise HTTPException(status_code=400, detail="Page must be a positive number")
    subreddits = await top_by_members(db, {}, skip=(page - 1) * TOP_PAGE_SIZE)
    total = await db.subreddits.count_documents({})
    return {
        "success": True,
        "subreddits": summaries(subreddits),
        "page": page,
        "total_pages": max(1, -(-total // TOP_PAGE_SIZE)),
    }


@router.get("/subreddits/random_category")
async def random_category(db=Depends(get_db)):
    categories = sorted({s.get("category") for s in await db.subreddits.find({}, {"category": 1}).to_list(None)} - {None})
    if not categories:
        raise HTTPException(status_code=404, detail="No communities found")
    category = random.choice(categories)
    subreddits = await db.subreddits.find({"category": category}).to_list(None)
    picked = random.sample(subreddits, min(RANDOM_CATEGORY_SIZE, len(subreddits)))
    return {"success": True, "category": category, "subreddits": summaries(picked)}


@router.get("/subreddits/category/{category}")
async def by_category(category: str, db=Depends(get_db)):
    subreddits = await top_by_members(db, {"category": category}, limit=100)
    return {"success": True, "category": category, "subreddits": summaries(subreddits)}


##########
# Membership
##########
@router.post("/r/{name}/join")
async def join_subreddit(name: str, user=Depends(get_current_user_required), db=Depends(get_db)):
    subreddit = await get_subreddit_or_404(db, name)
    if user["_id"] in subreddit.get("banned_users", []):
        raise HTTPException(status_code=403, detail="You are banned from this subreddit")
    if subreddit.get("privacy_mode") == "private" and not is_moderator(subreddit, user["_id"]):
        raise HTTPException(status_code=403, detail="This subreddit is private, membership is by invitation")

    await db.subreddits.update_one({"_id": subreddit["_id"]}, {"$addToSet": {"members": user["_id"]}})
    return {"success": True, "message": "Joined subreddit successfully"}


@router.post("/r/{name}/leave")
async def leave_subreddit(name: str, user=Depends(get_current_user_required), db=Depends(get_db)):
    subreddit = await get_subreddit_or_404(db, name)
    if is_creator(subreddit, user["_id"]):
        raise HTTPException(status_code=400, detail="The creator cannot leave the subreddit")
    if user["_id"] not in subreddit.get("members", []):
        raise HTTPException(status_code=400, detail="You are not a member of this subreddit")

    await db.subreddits.update_one(
        {"_id": subreddit["_id"]},
        {"$pull": {"members": user["_id"], "moderators": user["_id"]}},
    )
    return {"success": True, "message": "Left subreddit successfully"}


##########
# Moderators
##########
async def create_invitation(db, subreddit: dict, sender: dict, invitee: dict, role: str, permissions: dict | None = None):
    pending = await db.invitations.find_one(
        {"subreddit_id": subreddit["_id"], "recipient_id": invitee["_id"], "status": "pending"}
    )
    if pending:
        raise HTTPException(status_code=409, detail="User already has a pending invitation")

    invitation = {
        "sender_id": sender["_id"],
        "sender_name": sender["username"],
        "recipient_id": invitee["_id"],
        "recipient_name": invitee["username"],
        "subreddit_id": subreddit["_id"],
        "subreddit_name": subreddit["name"],
        "role": role,
        "permissions": permissions or {},
        "status": "pending",
        "created_at": datetime.now(timezone.utc),
    }
    res = await db.invitations.insert_one(invitation)
    action = "moderate" if role == "moderator" else "join"
    await notify(
        db,
        invitee["_id"],
        "invitation",
        f"{role.capitalize()} invitation",
        f"{sender['username']} invited you to {action} r/{subreddit['name']}",
        actor_id=sender["_id"],
        subreddit_id=subreddit["_id"],
    )
    return res.inserted_id


@router.post("/r/{name}/moderators/invite", status_code=status.HTTP_201_CREATED)
async def invite_moderator(
    name: str,
    payload: ModeratorInvite,
    user=Depends(get_current_user_required),
    db=Depends(get_db),
):
    subreddit = await get_subreddit_or_404(db, name)
    require_moderator(subreddit, user, "invite moderators")
    invitee = await get_user_or_404(db, payload.username)
    if is_moderator(subreddit, invitee["_id"]):
        raise HTTPException(status_code=400, detail="User is already a moderator")

    invitation_id = await create_invitation(
        db, subreddit, user, invitee, "moderator", payload.model_dump(exclude={"username"})
    )
    return {"success": True, "message": "Invitation sent successfully", "invitation_id": str(invitation_id)}


@router.post("/r/{name}/members/invite", status_code=status.HTTP_201_CREATED)
async def invite_member(name: str, payload: MemberInvite, user=Depends(get_current_user_required), db=Depends(get_db)):
    """Invite a user into the subreddit; the only way into a private one"""
    subreddit = await get_subreddit_or_404(db, name)
    require_moderator(subreddit, user, "invite members")
    invitee = await get_user_or_404(db, payload.username)
    if is_member(subreddit, invitee["_id"]):
        raise HTTPException(status_code=400, detail="User is already a member")
    if is_banned(subreddit, invitee["_id"]):
        raise HTTPException(status_code=400, detail="User is banned from this subreddit")

    invitation_id = await create_invitation(db, subreddit, user, invitee, "member")
    return {"success": True, "message": "Invitation sent successfully", "invitation_id": str(invitation_id)}


async def pending_invitation_for(db, invitation_id: str, user: dict):
    invitation = await db.invitations.find_one({"_id": oid(invitation_id)})
    if not invitation:
        raise HTTPException(status_code=404, detail="Invitation not found")
    if invitation["recipient_id"] != user["_id"]:
        raise HTTPException(status_code=403, detail="This invitation is not for you")
    if invitation["status"] != "pending":
        raise HTTPException(status_code=400, detail="Invitation is no longer pending")
    return invitation


@router.post("/invitations/{invitation_id}/accept")
async def accept_invitation(invitation_id: str, user=Depends(get_current_user_required), db=Depends(get_db)):
    invitation = await pending_invitation_for(db, invitation_id, user)
    role = invitation.get("role", "moderator")
    added = {"members": user["_id"]}
    if role == "moderator":
        added["moderators"] = user["_id"]
    await db.subreddits.update_one({"_id": invitation["subreddit_id"]}, {"$addToSet": added})
    await db.invitations.update_one({"_id": invitation["_id"]}, {"$set": {"status": "accepted"}})
    return {"success": True, "message": f"You are now a {role} of r/{invitation['subreddit_name']}"}


@router.post("/invitations/{invitation_id}/decline")
async def decline_invitation(invitation_id: str, user=Depends(get_current_user_required), db=Depends(get_db)):
    invitation = await pending_invitation_for(db, invitation_id, user)
    await db.invitations.update_one({"_id": invitation["_id"]}, {"$set": {"status": "declined"}})
    return {"success": True, "message": "Invitation declined"}


@router.delete("/r/{name}/moderators/{username}")
async def remove_moderator(name: str, username: str, user=Depends(get_current_user_required), db=Depends(get_db)):
    subreddit = await get_subreddit_or_404(db, name)
    if not is_creator(subreddit, user["_id"]):
        raise HTTPException(status_code=403, detail="Only the creator can remove moderators")
    target = await get_user_or_404(db, username)
    if is_creator(subreddit, target["_id"]):
        raise HTTPException(status_code=400, detail="The creator cannot be removed")
    if not is_moderator(subreddit, target["_id"]):
        raise HTTPException(status_code=400, detail="User is not a moderator")

    await db.subreddits.update_one({"_id": subreddit["_id"]}, {"$pull": {"moderators": target["_id"]}})
    return {"success": True, "message": "Moderator removed successfully"}


##########
# Mute / Ban
##########
async def moderate_user(db, name: str, payload: SubredditUserAction, user: dict, action: str):
    subreddit = await get_subreddit_or_404(db, name)
    require_moderator(subreddit, user, f"{action} users in this subreddit")
    target = await get_user_or_404(db, payload.username)
    if action in ("ban", "mute") and is_moderator(subreddit, target["_id"]):
        raise HTTPException(status_code=400, detail=f"You cannot {action} a moderator")
    return subreddit, target


@router.post("/r/{name}/mute")
async def mute_user(name: str, payload: SubredditUserAction, user=Depends(get_current_user_required), db=Depends(get_db)):
    subreddit, target = await moderate_user(db, name, payload, user, "mute")
    if target["_id"] in subreddit.get("muted_users", []):
        raise HTTPException(status_code=400, detail="User is already muted")
    await db.subreddits.update_one({"_id": subreddit["_id"]}, {"$addToSet": {"muted_users": target["_id"]}})
    return {"success": True, "message": "User muted successfully"}


@router.post("/r/{name}/unmute")
async def unmute_user(name: str, payload: SubredditUserAction, user=Depends(get_current_user_required), db=Depends(get_db)):
    subreddit, target = await moderate_user(db, name, payload, user, "unmute")
    if target["_id"] not in subreddit.get("muted_users", []):
        raise HTTPException(status_code=400, detail="User is not muted")
    await db.subreddits.update_one({"_id": subreddit["_id"]}, {"$pull": {"muted_users": target["_id"]}})
    return {"success": True, "message": "User unmuted successfully"}


@router.post("/r/{name}/ban")
async def ban_user(name: str, payload: SubredditUserAction, user=Depends(get_current_user_required), db=Depends(get_db)):
    subreddit, target = await moderate_user(db, name, payload, user, "ban")
    if target["_id"] in subreddit.get("banned_users", []):
        raise HTTPException(status_code=400, detail="User is already banned")
    await db.subreddits.update_one(
        {"_id": subreddit["_id"]},
        {"$addToSet": {"banned_users": target["_id"]}, "$pull": {"members": target["_id"]}},
    )
    await notify(
        db,
        target["_id"],
        "ban",
        "Banned",
        f"You have been banned from r/{subreddit['name']}" + (f": {payload.reason}" if payload.reason else ""),
        actor_id=user["_id"],
        subreddit_id=subreddit["_id"],
    )
    logger.info("%s banned %s from r/%s", user["username"], target["username"], subreddit["name"])
    return {"success": True, "message": "User banned successfully"}


@router.post("/r/{name}/unban")
async def unban_user(name: str, payload: SubredditUserAction, user=Depends(get_current_user_required), db=Depends(get_db)):
    subreddit, target = await moderate_user(db, name, payload, user, "unban")
    if target["_id"] not in subreddit.get("banned_users", []):
        raise HTTPException(status_code=400, detail="User is not banned")
    await db.subreddits.update_one({"_id": subreddit["_id"]}, {"$pull": {"banned_users": target["_id"]}})
    return {"success": True, "message": "User unbanned successfully"}


@router.get("/r/{name}/banned")
async def banned_users(name: str, user=Depends(get_current_user_required), db=Depends(get_db)):
    subreddit = await get_subreddit_or_404(db, name)
    require_moderator(subreddit, user, "view banned users")
    return {"success": True, "users": await usernames_for(db, subreddit.get("banned_users", []))}


@router.get("/r/{name}/muted")
async def muted_users(name: str, user=Depends(get_current_user_required), db=Depends(get_db)):
    subreddit = await get_subreddit_or_404(db, name)
    require_moderator(subreddit, user, "view muted users")
    return {"success": True, "users": await usernames_for(db, subreddit.get("muted_users", []))}


##########
# Rules & Settings
##########
@router.get("/r/{name}/rules")
async def list_rules(name: str, db=Depends(get_db)):
    subreddit = await get_subreddit_or_404(db, name)
    return {"success": True, "rules": serialize(subreddit.get("rules", []))}


@router.post("/r/{name}/rules", status_code=status.HTTP_201_CREATED)
async def add_rule(name: str, payload: RuleCreate, user=Depends(get_current_user_required), db=Depends(get_db)):
    subreddit = await get_subreddit_or_404(db, name)
    require_moderator(subreddit, user, "add rules")
    if any(r["title"].lower() == payload.title.lower() for r in subreddit.get("rules", [])):
        raise HTTPException(status_code=409, detail="A rule with this title already exists")

    rule = {"_id": ObjectId(), **payload.model_dump(), "created_at": datetime.now(timezone.utc)}
    await db.subreddits.update_one({"_id": subreddit["_id"]}, {"$push": {"rules": rule}})
    return {"success": True, "message": "Rule added successfully", "rule": serialize(rule)}


@router.get("/r/{name}/settings")
async def get_settings(name: str, user=Depends(get_current_user_required), db=Depends(get_db)):
    subreddit = await get_subreddit_or_404(db, name)
    require_moderator(subreddit, user, "view settings")
    return {"success": True, "settings": {k: subreddit.get(k, DEFAULT_SETTINGS.get(k)) for k in SETTINGS_FIELDS}}


@router.patch("/r/{name}/settings")
async def update_settings(
    name: str,
    payload: SubredditSettingsUpdate,
    user=Depends(get_current_user_required),
    db=Depends(get_db),
):
    subreddit = await get_subreddit_or_404(db, name)
    require_moderator(subreddit, user, "change settings")
    updates = payload.model_dump(exclude_unset=True, exclude_none=True)
    if not updates:
        raise HTTPException(status_code=400, detail="No settings to update")

    await db.subreddits.update_one({"_id": subreddit["_id"]}, {"$set": updates})
    subreddit.update(updates)
    return {
        "success": True,
        "message": "Settings updated successfully",
        "settings": {k: subreddit.get(k, DEFAULT_SETTINGS.get(k)) for k in SETTINGS_FIELDS},
    }
