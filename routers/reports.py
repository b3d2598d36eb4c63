import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, status

from database import get_db
from schemas import ContentReport, UserReport
from utils.lookups import (
    get_comment_or_404,
    get_post_or_404,
    get_subreddit_or_404,
    get_user_or_404,
    is_moderator,
    require_moderator,
)
from utils.security import get_current_user_required, require_admin
from utils.serialization import oid, serialize

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["reports"])


def new_report(user: dict, **fields) -> dict:
    return {
        "reporter_id": user["_id"],
        "reporter_name": user["username"],
        "reported_username": None,
        "report_type": None,
        "item_id": None,
        "item_type": None,
        "subreddit_id": None,
        "details": None,
        "is_ignored": False,
        "is_viewed": False,
        "created_at": datetime.now(timezone.utc),
        **fields,
    }


@router.post("/report_user", status_code=status.HTTP_201_CREATED)
async def report_user(payload: UserReport, user=Depends(get_current_user_required), db=Depends(get_db)):
    target = await get_user_or_404(db, payload.reported_username)
    if target["_id"] == user["_id"]:
        raise HTTPException(status_code=400, detail="You cannot report yourself")

    report = new_report(
        user,
        reported_username=target["username"],
        report_type=payload.report_type,
        reason=payload.reason,
        details=payload.details,
    )
    res = await db.reports.insert_one(report)
    logger.info("%s reported user %s for %s", user["username"], target["username"], payload.reason)
    return {"success": True, "message": "User reported successfully", "report_id": str(res.inserted_id)}


@router.post("/report", status_code=status.HTTP_201_CREATED)
async def report_content(payload: ContentReport, user=Depends(get_current_user_required), db=Depends(get_db)):
    if payload.item_type == "post":
        item = await get_post_or_404(db, payload.item_id)
    else:
        item = await get_comment_or_404(db, payload.item_id)
    if item["author_id"] == user["_id"]:
        raise HTTPException(status_code=400, detail=f"You cannot report your own {payload.item_type}")
    duplicate = await db.reports.find_one(
        {"reporter_id": user["_id"], "item_id": item["_id"], "item_type": payload.item_type}
    )
    if duplicate:
        raise HTTPException(status_code=409, detail=f"You have already reported this {payload.item_type}")

    report = new_report(
        user,
        reported_username=item["author_name"],
        item_id=item["_id"],
        item_type=payload.item_type,
        subreddit_id=item.get("subreddit_id"),
        reason=payload.reason,
        details=payload.details,
    )
    res = await db.reports.insert_one(report)
    return {"success": True, "message": "Report submitted successfully", "report_id": str(res.inserted_id)}


@router.get("/r/{name}/about/reports")
async def subreddit_reports(name: str, user=Depends(get_current_user_required), db=Depends(get_db)):
    """Open reports on posts and comments of a subreddit"""
    subreddit = await get_subreddit_or_404(db, name)
    require_moderator(subreddit, user, "view reports")
    reports = await db.reports.find(
        {"subreddit_id": subreddit["_id"], "is_ignored": False}
    ).sort("created_at", -1).to_list(None)
    await db.reports.update_many({"_id": {"$in": [r["_id"] for r in reports]}}, {"$set": {"is_viewed": True}})
    return {"success": True, "reports": serialize(reports)}


@router.post("/reports/{report_id}/ignore")
async def ignore_report(report_id: str, user=Depends(get_current_user_required), db=Depends(get_db)):
    report = await db.reports.find_one({"_id": oid(report_id)})
    if not report:
        raise HTTPException(status_code=404, detail="Report not found")

    if report.get("subreddit_id"):
        subreddit = await db.subreddits.find_one({"_id": report["subreddit_id"]})
        allowed = subreddit and is_moderator(subreddit, user["_id"])
    else:
        allowed = user.get("access") == "admin"
    if not allowed:
        raise HTTPException(status_code=403, detail="You are not authorized to manage this report")
    if report.get("is_ignored"):
        raise HTTPException(status_code=400, detail="Report is already ignored")

    await db.reports.update_one({"_id": report["_id"]}, {"$set": {"is_ignored": True}})
    return {"success": True, "message": "Report ignored"}


@router.get("/admin/reports")
async def admin_reports(user=Depends(require_admin), db=Depends(get_db)):
    reports = await db.reports.find({"is_ignored": False}).sort("created_at", -1).to_list(None)
    return {"success": True, "reports": serialize(reports)}
