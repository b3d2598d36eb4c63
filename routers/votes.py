from fastapi import APIRouter, Depends, HTTPException

from database import get_db
from schemas import VoteRequest
from utils.lookups import get_comment_or_404, get_post_or_404, post_subreddit, require_not_banned
from utils.security import get_current_user_required
from utils.votes import cast_vote

router = APIRouter(prefix="/api", tags=["votes"])


@router.post("/vote")
async def vote(payload: VoteRequest, user=Depends(get_current_user_required), db=Depends(get_db)):
    """Upvote (1), downvote (-1) or clear (0) a vote on a post or comment.

    Repeating the current direction removes the vote.
    """
    if payload.item_type == "post":
        item = await get_post_or_404(db, payload.item_id)
        post = item
    else:
        item = await get_comment_or_404(db, payload.item_id)
        post = await db.posts.find_one({"_id": item["post_id"]})
        if not post:
            raise HTTPException(status_code=404, detail="Post not found")

    if item.get("is_removed"):
        raise HTTPException(status_code=404, detail=f"{payload.item_type.capitalize()} not found")
    if post.get("is_locked"):
        raise HTTPException(status_code=403, detail="Post is locked, voting is disabled")
    require_not_banned(await post_subreddit(db, post), user)

    result = await cast_vote(db, user, payload.item_type, item, payload.direction)
    return {"success": True, **result}
