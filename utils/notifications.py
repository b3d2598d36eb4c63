"""Notification fan-out.

Every notification goes through `notify`, which drops it when the recipient
would be notifying themselves, has disabled notifications for the item (post,
comment or subreddit), has switched the category off in their preferences,
or has blocked the actor.
"""

import logging
from datetime import datetime, timezone

from realtime import manager
from utils.serialization import serialize

logger = logging.getLogger(__name__)

# Notification type -> user_preferences flag that controls it
PREFERENCE_FOR_TYPE = {
    "upvote": "upvotes",
    "comment": "comments",
    "reply": "replies",
    "follow": "new_followers",
    "mention": "mentions",
    "chat": "chat_requests",
}

DEFAULT_NOTIFICATION_SETTINGS = {
    "disabled_subreddits": [],
    "disabled_posts": [],
    "disabled_comments": [],
}


def notifications_disabled(user: dict, post_id=None, comment_id=None, subreddit_id=None) -> bool:
    """True when the user muted notifications for any of the given items."""
    settings = user.get("notification_settings") or DEFAULT_NOTIFICATION_SETTINGS
    if post_id is not None and post_id in settings.get("disabled_posts", []):
        return True
    if comment_id is not None and comment_id in settings.get("disabled_comments", []):
        return True
    if subreddit_id is not None and subreddit_id in settings.get("disabled_subreddits", []):
        return True
    return False


async def is_blocked(db, blocker_id, blocked_id) -> bool:
    """Active block from `blocker_id` against `blocked_id`."""
    block = await db.blocks.find_one({"blocker_id": blocker_id, "blocked_id": blocked_id})
    return bool(block and not block.get("unblocked_at"))


async def notify(
    db,
    recipient_id,
    notification_type: str,
    title: str,
    message: str,
    actor_id=None,
    post_id=None,
    comment_id=None,
    subreddit_id=None,
):
    """Create a notification for `recipient_id` unless it is suppressed.

    Returns the stored document, or None when suppressed.
    """
    if recipient_id is None:
        return None
    if actor_id is not None and actor_id == recipient_id:
        return None

    recipient = await db.users.find_one({"_id": recipient_id})
    if not recipient:
        return None
    if notifications_disabled(recipient, post_id=post_id, comment_id=comment_id, subreddit_id=subreddit_id):
        logger.debug("notification %s to %s suppressed by item settings", notification_type, recipient["username"])
        return None

    pref_key = PREFERENCE_FOR_TYPE.get(notification_type)
    if pref_key:
        prefs = await db.user_preferences.find_one({"user_id": recipient_id})
        if prefs and not prefs.get(pref_key, True):
            logger.debug("notification %s to %s suppressed by preferences", notification_type, recipient["username"])
            return None

    if actor_id is not None and await is_blocked(db, recipient_id, actor_id):
        return None

    doc = {
        "recipient_id": recipient_id,
        "recipient": recipient["username"],
        "type": notification_type,
        "title": title,
        "message": message,
        "actor_id": actor_id,
        "post_id": post_id,
        "comment_id": comment_id,
        "subreddit_id": subreddit_id,
        "created_at": datetime.now(timezone.utc),
        "is_read": False,
        "is_sent": False,
        "is_viewed": False,
        "is_disabled": False,
    }
    res = await db.notifications.insert_one(doc)
    doc["_id"] = res.inserted_id
    await manager.send_to(recipient_id, "notification", serialize(doc))
    return doc
