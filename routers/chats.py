"""
One-to-one chats.

A chat between users who don't follow each other starts as a pending
request: only the initiator can write until the recipient accepts it.
New messages are pushed to the other participant over the websocket.
"""

import logging
from datetime import datetime, timezone

from bson import ObjectId
from fastapi import APIRouter, Depends, File, HTTPException, UploadFile, status

from database import get_db
from realtime import manager
from schemas import ChatManage, ChatSend, UsernameBody
from utils.lookups import get_user_or_404
from utils.notifications import is_blocked, notify
from utils.security import get_current_user_required
from utils.serialization import oid, serialize
from utils.storage import upload_media

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/chats", tags=["chats"])


##########
# Helpers
##########
def mutual_followers(a: dict, b: dict) -> bool:
    return b["_id"] in a.get("followings", []) and a["_id"] in b.get("followings", [])


async def chat_for_participant(db, chat_id: str, user: dict):
    chat = await db.chats.find_one({"_id": oid(chat_id)})
    if not chat:
        raise HTTPException(status_code=404, detail="Chat not found")
    if user["_id"] not in chat["participants"]:
        raise HTTPException(status_code=403, detail="You are not a participant of this chat")
    return chat


async def can_chat(db, user: dict, target: dict):
    if target["_id"] == user["_id"]:
        raise HTTPException(status_code=400, detail="You cannot chat with yourself")
    if await is_blocked(db, target["_id"], user["_id"]) or await is_blocked(db, user["_id"], target["_id"]):
        raise HTTPException(status_code=403, detail="You cannot chat with this user")


def other_participant(chat: dict, user_id):
    return next(p for p in chat["participants"] if p != user_id)


async def require_accepts_requests(db, user: dict, target: dict):
    prefs = await db.user_preferences.find_one({"user_id": target["_id"]})
    if prefs and not prefs.get("chat_requests", True) and not mutual_followers(user, target):
        raise HTTPException(status_code=403, detail="This user does not accept chat requests")


async def require_can_send(db, chat: dict, user: dict):
    if chat.get("is_pending_request") and chat["initiator_id"] != user["_id"]:
        raise HTTPException(status_code=403, detail="Accept the chat request before replying")
    await can_chat(db, user, {"_id": other_participant(chat, user["_id"])})


async def deliver(db, chat: dict, user: dict, text: str, media_key=None):
    message = {
        "_id": ObjectId(),
        "sender_id": user["_id"],
        "sender_name": user["username"],
        "message": text,
        "media_key": media_key,
        "created_at": datetime.now(timezone.utc),
        "status": "sent",
    }
    await db.chats.update_one(
        {"_id": chat["_id"]},
        {"$push": {"messages": message}, "$set": {"updated_at": message["created_at"]}},
    )

    recipient_id = other_participant(chat, user["_id"])
    delivered = await manager.send_to(recipient_id, "new-message", {"chat_id": str(chat["_id"]), **serialize(message)})
    if delivered:
        await db.chats.update_one(
            {"_id": chat["_id"], "messages._id": message["_id"]},
            {"$set": {"messages.$.status": "delivered"}},
        )
        message["status"] = "delivered"
    return message


##########
# Routes
##########
@router.post("/create", status_code=status.HTTP_201_CREATED)
async def create_chat(payload: UsernameBody, user=Depends(get_current_user_required), db=Depends(get_db)):
    target = await get_user_or_404(db, payload.username)
    await can_chat(db, user, target)
    await require_accepts_requests(db, user, target)

    existing = await db.chats.find_one({"participants": {"$all": [user["_id"], target["_id"]]}})
    if existing:
        raise HTTPException(status_code=400, detail="Chat already exists")

    pending = not mutual_followers(user, target)
    now = datetime.now(timezone.utc)
    chat = {
        "participants": [user["_id"], target["_id"]],
        "initiator_id": user["_id"],
        "recipient_id": target["_id"],
        "is_pending_request": pending,
        "messages": [],
        "created_at": now,
        "updated_at": now,
    }
    res = await db.chats.insert_one(chat)
    if pending:
        await notify(
            db,
            target["_id"],
            "chat",
            "New chat request",
            f"{user['username']} wants to chat with you",
            actor_id=user["_id"],
        )
    return {"success": True, "message": "Chat created successfully", "chat_id": str(res.inserted_id), "pending": pending}


@router.get("/requests")
async def chat_requests(user=Depends(get_current_user_required), db=Depends(get_db)):
    chats = await db.chats.find(
        {"recipient_id": user["_id"], "is_pending_request": True}
    ).sort("created_at", -1).to_list(None)
    return {"success": True, "requests": serialize(chats)}


@router.get("/overview")
async def chats_overview(user=Depends(get_current_user_required), db=Depends(get_db)):
    """Caller's chats with the other participant and the last message"""
    chats = await db.chats.find({"participants": user["_id"]}).sort("updated_at", -1).to_list(None)
    others = {
        u["_id"]: u["username"]
        for u in await db.users.find(
            {"_id": {"$in": [other_participant(c, user["_id"]) for c in chats]}}, {"username": 1}
        ).to_list(None)
    }
    overview = []
    for chat in chats:
        if chat["is_pending_request"] and chat["recipient_id"] == user["_id"]:
            continue
        other_id = other_participant(chat, user["_id"])
        overview.append({
            "id": str(chat["_id"]),
            "with": others.get(other_id),
            "is_pending_request": chat["is_pending_request"],
            "last_message": serialize(chat["messages"][-1]) if chat["messages"] else None,
            "online": manager.is_online(other_id),
        })
    return {"success": True, "chats": overview}


@router.get("/checkUsername/{username}")
async def check_username(username: str, user=Depends(get_current_user_required), db=Depends(get_db)):
    target = await get_user_or_404(db, username)
    await can_chat(db, user, target)
    await require_accepts_requests(db, user, target)
    return {"success": True, "message": "User is available to chat", "user_id": str(target["_id"])}


@router.post("/manage")
async def manage_chat(payload: ChatManage, user=Depends(get_current_user_required), db=Depends(get_db)):
    """Accept or decline a pending request; declining deletes the chat"""
    chat = await chat_for_participant(db, payload.chat_id, user)
    if chat["recipient_id"] != user["_id"]:
        raise HTTPException(status_code=403, detail="Only the recipient can manage this request")
    if not chat["is_pending_request"]:
        raise HTTPException(status_code=400, detail="Chat is not a pending request")

    if payload.accept:
        await db.chats.update_one({"_id": chat["_id"]}, {"$set": {"is_pending_request": False}})
        return {"success": True, "message": "Chat request accepted"}

    await db.chats.delete_one({"_id": chat["_id"]})
    return {"success": True, "message": "Chat request declined"}


@router.get("/{chat_id}")
async def get_chat(chat_id: str, user=Depends(get_current_user_required), db=Depends(get_db)):
    chat = await chat_for_participant(db, chat_id, user)
    return {"success": True, "chat": serialize(chat)}


@router.post("/{chat_id}/send", status_code=status.HTTP_201_CREATED)
async def send_message(chat_id: str, payload: ChatSend, user=Depends(get_current_user_required), db=Depends(get_db)):
    chat = await chat_for_participant(db, chat_id, user)
    await require_can_send(db, chat, user)
    message = await deliver(db, chat, user, payload.message)
    return {"success": True, "message": serialize(message)}


@router.post("/{chat_id}/media", status_code=status.HTTP_201_CREATED)
async def send_media(
    chat_id: str,
    file: UploadFile = File(...),
    user=Depends(get_current_user_required),
    db=Depends(get_db),
):
    chat = await chat_for_participant(db, chat_id, user)
    await require_can_send(db, chat, user)
    key = await upload_media(file)
    message = await deliver(db, chat, user, "", media_key=key)
    return {"success": True, "message": serialize(message)}
