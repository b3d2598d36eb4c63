import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, status

from database import get_db
from schemas import MessageCompose
from utils.lookups import get_subreddit_or_404, get_user_or_404, is_moderator, is_muted
from utils.notifications import is_blocked, notify
from utils.security import get_current_user_required
from utils.serialization import oid, serialize

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/message", tags=["messages"])

INBOX_FILTERS = {
    "all": {},
    "unread": {"is_read": False},
    "messages": {"kind": "message"},
    "mentions": {"kind": "mention"},
}


async def recipients_for(db, payload: MessageCompose, user: dict):
    """Users who receive the message, and the subreddit name when sent to one."""
    if payload.send_to_subreddit:
        subreddit = await get_subreddit_or_404(db, payload.recipient)
        if is_muted(subreddit, user["_id"]):
            raise HTTPException(status_code=403, detail="You are muted in this subreddit")
        moderators = await db.users.find({"_id": {"$in": subreddit.get("moderators", [])}}).to_list(None)
        return moderators, subreddit["name"]

    recipient = await get_user_or_404(db, payload.recipient, "Recipient not found")
    if recipient["_id"] == user["_id"]:
        raise HTTPException(status_code=400, detail="You cannot message yourself")
    if await is_blocked(db, recipient["_id"], user["_id"]):
        raise HTTPException(status_code=403, detail="You cannot message this user")
    return [recipient], None


@router.post("/compose", status_code=status.HTTP_201_CREATED)
async def compose(payload: MessageCompose, user=Depends(get_current_user_required), db=Depends(get_db)):
    """Send a private message to a user or to a subreddit's moderators"""
    sender_subreddit = None
    if payload.from_subreddit:
        subreddit = await get_subreddit_or_404(db, payload.from_subreddit)
        if not is_moderator(subreddit, user["_id"]):
            raise HTTPException(status_code=403, detail="Only moderators can send messages as the subreddit")
        sender_subreddit = subreddit["name"]

    recipients, recipient_subreddit = await recipients_for(db, payload, user)
    sender_label = f"r/{sender_subreddit}" if sender_subreddit else user["username"]
    now = datetime.now(timezone.utc)
    for recipient in recipients:
        await db.messages.insert_one({
            "sender_id": user["_id"],
            "sender_name": user["username"],
            "sender_subreddit": sender_subreddit,
            "recipient_id": recipient["_id"],
            "recipient_name": recipient["username"],
            "recipient_subreddit": recipient_subreddit,
            "subject": payload.subject,
            "message": payload.message,
            "kind": "message",
            "is_read": False,
            "deleted_by": [],
            "created_at": now,
        })
        await notify(
            db,
            recipient["_id"],
            "message",
            "New message",
            f"{sender_label}: {payload.subject}",
            actor_id=user["_id"],
        )

    logger.info("message from %s to %d recipient(s)", user["username"], len(recipients))
    return {"success": True, "message": "Message sent successfully"}


@router.get("/inbox/{kind}")
async def inbox(kind: str, user=Depends(get_current_user_required), db=Depends(get_db)):
    if kind not in INBOX_FILTERS:
        raise HTTPException(status_code=400, detail=f"Inbox type must be one of {', '.join(INBOX_FILTERS)}")
    query = {"recipient_id": user["_id"], "deleted_by": {"$ne": user["_id"]}, **INBOX_FILTERS[kind]}
    messages = await db.messages.find(query).sort("created_at", -1).to_list(None)
    return {"success": True, "messages": serialize(messages)}


@router.get("/sent")
async def sent(user=Depends(get_current_user_required), db=Depends(get_db)):
    query = {"sender_id": user["_id"], "kind": "message", "deleted_by": {"$ne": user["_id"]}}
    messages = await db.messages.find(query).sort("created_at", -1).to_list(None)
    return {"success": True, "messages": serialize(messages)}


@router.post("/readAll")
async def read_all(user=Depends(get_current_user_required), db=Depends(get_db)):
    res = await db.messages.update_many({"recipient_id": user["_id"], "is_read": False}, {"$set": {"is_read": True}})
    return {"success": True, "message": "All messages marked as read", "count": res.modified_count}


@router.patch("/unread/{message_id}")
async def mark_unread(message_id: str, user=Depends(get_current_user_required), db=Depends(get_db)):
    message = await db.messages.find_one({"_id": oid(message_id)})
    if not message or message["recipient_id"] != user["_id"]:
        raise HTTPException(status_code=404, detail="Message not found")
    if not message.get("is_read"):
        raise HTTPException(status_code=400, detail="Message is already unread")
    await db.messages.update_one({"_id": message["_id"]}, {"$set": {"is_read": False}})
    return {"success": True, "message": "Message marked as unread"}


@router.delete("/delete/{message_id}")
async def delete_message(message_id: str, user=Depends(get_current_user_required), db=Depends(get_db)):
    """Hide a message for the caller only; the other side keeps it"""
    message = await db.messages.find_one({"_id": oid(message_id)})
    if not message or user["_id"] not in (message["sender_id"], message["recipient_id"]):
        raise HTTPException(status_code=404, detail="Message not found")
    if user["_id"] in message.get("deleted_by", []):
        raise HTTPException(status_code=400, detail="Message is already deleted")
    await db.messages.update_one({"_id": message["_id"]}, {"$addToSet": {"deleted_by": user["_id"]}})
    return {"success": True, "message": "Message deleted successfully"}
