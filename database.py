import logging

# MongoDB
from motor.motor_asyncio import AsyncIOMotorClient
from pymongo import ASCENDING, DESCENDING

from config import DATABASE_NAME, MONGODB_URI

logger = logging.getLogger(__name__)


######################
# Database Connection
######################
client = AsyncIOMotorClient(MONGODB_URI)
db = client[DATABASE_NAME]


def get_db():
    """FastAPI dependency returning the active database handle."""
    return db


async def init_indexes(database):
    """Create unique constraints and sort indexes."""
    # Unique constraints
    await database.users.create_index("username", unique=True)
    await database.users.create_index("email", unique=True)
    await database.subreddits.create_index("name", unique=True)
    await database.user_preferences.create_index("user_id", unique=True)

    # One vote per user per item
    await database.votes.create_index(
        [("user_id", ASCENDING), ("item_id", ASCENDING), ("item_type", ASCENDING)],
        unique=True,
    )
    await database.blocks.create_index([("blocker_id", ASCENDING), ("blocked_id", ASCENDING)], unique=True)

    # Sorting & query optimization
    await database.posts.create_index([("created_at", DESCENDING)])
    await database.posts.create_index([("subreddit_id", ASCENDING), ("created_at", DESCENDING)])
    await database.posts.create_index([("author_id", ASCENDING)])
    await database.comments.create_index([("post_id", ASCENDING), ("created_at", ASCENDING)])
    await database.notifications.create_index([("recipient_id", ASCENDING), ("created_at", DESCENDING)])
    await database.messages.create_index([("recipient_id", ASCENDING), ("created_at", DESCENDING)])
    logger.info("database indexes ensured")
