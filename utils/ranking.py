import math
from datetime import datetime, timezone

from utils.serialization import as_utc

# Reddit's epoch for the hot ranking
HOT_EPOCH = datetime(2005, 12, 8, 7, 46, 43, tzinfo=timezone.utc)


def hot_score(post: dict) -> float:
    """Log-scaled score with time decay: newer posts need fewer votes to rank."""
    score = post.get("upvotes", 0) - post.get("downvotes", 0)
    order = math.log10(max(abs(score), 1))
    sign = 1 if score > 0 else -1 if score < 0 else 0
    created_at = as_utc(post.get("created_at") or datetime.now(timezone.utc))
    seconds = (created_at - HOT_EPOCH).total_seconds()
    return round(sign * order + seconds / 45000, 7)


def best_score(post: dict) -> float:
    """Proportion of upvotes among all votes, 0 for non-positive karma."""
    upvotes = post.get("upvotes", 0)
    downvotes = post.get("downvotes", 0)
    karma = upvotes - downvotes
    if karma <= 0:
        return 0.0
    return karma / (karma + downvotes)
