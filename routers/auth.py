import logging
import secrets
from datetime import datetime, timezone

import httpx
from fastapi import APIRouter, Depends, HTTPException, status
from pymongo.errors import DuplicateKeyError

from config import (
    EMAIL_TOKEN_EXPIRE_HOURS,
    GOOGLE_CLIENT_ID,
    GOOGLE_TOKENINFO_URL,
    RESET_TOKEN_EXPIRE_HOURS,
)
from database import get_db
from schemas import (
    EmailChange,
    ForgotPassword,
    ForgotUsername,
    GoogleLogin,
    PasswordChange,
    PasswordReset,
    UserCreate,
    UserLogin,
)
from utils import mails
from utils.security import (
    create_access_token,
    get_current_user_required,
    hash_password,
    user_id_from_payload,
    validate_password,
    verify_password,
    verify_token,
)
from utils.serialization import public_user, serialize
from utils.usernames import generate_unique_username

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["auth"])

DEFAULT_PREFERENCES = {
    "gender": None,
    "language": "English(us)",
    "display_name": None,
    "about": None,
    "nsfw": False,
    "allow_follow": True,
    "content_visibility": True,
    "mentions": True,
    "comments": True,
    "upvotes": True,
    "replies": True,
    "new_followers": True,
    "chat_requests": True,
    "new_follower_email": True,
    "chat_request_email": True,
    "unsubscribe_from_all_emails": False,
}


##########
# Helpers
##########
async def create_user(db, username: str, email: str, password: str, **extra):
    """Insert a user with a hashed password and its default preferences."""
    now = datetime.now(timezone.utc)
    user_doc = {
        "username": username,
        "email": email.lower(),
        "password": hash_password(password),
        "google_id": None,
        "is_verified": False,
        "access": "user",
        "created_at": now,
        "display_name": None,
        "about": None,
        "avatar": None,
        "banner": None,
        "is_over_18": False,
        "post_karma": 0,
        "comment_karma": 0,
        "followers": [],
        "followings": [],
        "hidden_posts": [],
        "saved_posts": [],
        "saved_comments": [],
        "recent_posts": [],
        "hidden_notifications": [],
        "notification_settings": {
            "disabled_subreddits": [],
            "disabled_posts": [],
            "disabled_comments": [],
        },
    }
    user_doc.update(extra)
    try:
        res = await db.users.insert_one(user_doc)
    except DuplicateKeyError:
        raise HTTPException(status_code=409, detail="Username or email already exists")
    user_doc["_id"] = res.inserted_id

    await db.user_preferences.insert_one({"user_id": res.inserted_id, "username": username, **DEFAULT_PREFERENCES})
    logger.info("created user %s", username)
    return user_doc


async def send_verification(user: dict):
    token = create_access_token(user["_id"], purpose="verify_email", expires_hours=EMAIL_TOKEN_EXPIRE_HOURS)
    try:
        await mails.send_verification_mail(user["email"], token)
    except OSError:
        # Account state is already committed; the user can ask for a resend
        logger.exception("could not send verification mail to %s", user["email"])
        return False
    return True


async def user_from_token(db, token: str, purpose: str):
    payload = verify_token(token, purpose=purpose)
    user_id = user_id_from_payload(payload) if payload else None
    if user_id is None:
        raise HTTPException(status_code=401, detail="Invalid or expired token")
    user = await db.users.find_one({"_id": user_id})
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return user


async def verify_google_token(access_token: str) -> dict:
    """Resolve a Google OAuth2 access token into its profile claims."""
    async with httpx.AsyncClient(timeout=10) as client:
        response = await client.get(GOOGLE_TOKENINFO_URL, params={"access_token": access_token})
    if response.status_code != 200:
        raise HTTPException(status_code=401, detail="Invalid Google token")
    claims = response.json()
    if GOOGLE_CLIENT_ID and claims.get("aud") != GOOGLE_CLIENT_ID:
        raise HTTPException(status_code=401, detail="Google token issued for another client")
    if not claims.get("email"):
        raise HTTPException(status_code=401, detail="Google account has no email")
    return claims


##########
# Sign up / Login
##########
@router.post("/auth/signup", status_code=status.HTTP_201_CREATED)
async def sign_up(payload: UserCreate, db=Depends(get_db)):
    """Register a user and email a verification link"""
    if not validate_password(payload.password):
        raise HTTPException(
            status_code=400,
            detail="Password must be at least 8 characters and contain a letter and a digit",
        )
    if await db.users.find_one({"email": payload.email.lower()}):
        raise HTTPException(status_code=409, detail="Email already exists")
    if await db.users.find_one({"username": payload.username}):
        raise HTTPException(status_code=409, detail="Username already exists")

    user = await create_user(db, payload.username, payload.email, payload.password)
    await send_verification(user)

    return {
        "success": True,
        "message": "User created successfully",
        "accessToken": create_access_token(user["_id"]),
    }


@router.post("/auth/login")
async def login(payload: UserLogin, db=Depends(get_db)):
    user = await db.users.find_one({"username": payload.username})
    if not user:
        raise HTTPException(status_code=404, detail="Invalid credentials, check username or password")
    if not verify_password(payload.password, user["password"]):
        raise HTTPException(status_code=401, detail="Invalid credentials, check username or password")

    return {"success": True, "message": "Login successful", "accessToken": create_access_token(user["_id"])}


@router.post("/auth/google")
async def google_login(payload: GoogleLogin, db=Depends(get_db)):
    """Log in with a Google account, creating the user on first sight"""
    claims = await verify_google_token(payload.access_token)
    google_id = claims.get("sub")
    email = claims["email"].lower()

    user = await db.users.find_one({"google_id": google_id}) if google_id else None
    if not user:
        user = await db.users.find_one({"email": email})
        if user:
            await db.users.update_one({"_id": user["_id"]}, {"$set": {"google_id": google_id}})
        else:
            username = await generate_unique_username(db)
            user = await create_user(
                db,
                username,
                email,
                secrets.token_urlsafe(16),
                google_id=google_id,
                is_verified=True,
            )

    return {"success": True, "message": "Login successful", "accessToken": create_access_token(user["_id"])}


@router.get("/auth/username_available/{username}")
async def username_available(username: str, db=Depends(get_db)):
    if await db.users.find_one({"username": username}):
        raise HTTPException(status_code=409, detail="Username already exists")
    return {"success": True, "message": "Username is available"}


##########
# Recovery
##########
@router.post("/auth/password")
async def forgot_password(payload: ForgotPassword, db=Depends(get_db)):
    user = await db.users.find_one({"username": payload.username, "email": payload.email.lower()})
    if not user:
        raise HTTPException(status_code=404, detail="User not found")

    token = create_access_token(user["_id"], purpose="reset_password", expires_hours=RESET_TOKEN_EXPIRE_HOURS)
    try:
        await mails.send_reset_password_mail(user["email"], token)
    except OSError:
        logger.exception("could not send reset mail to %s", user["email"])
        raise HTTPException(status_code=503, detail="Reset email could not be sent")
    return {
        "success": True,
        "message": "You'll get an email with a link to reset your password if the address you provided has been verified.",
    }


@router.post("/auth/username")
async def forgot_username(payload: ForgotUsername, db=Depends(get_db)):
    user = await db.users.find_one({"email": payload.email.lower()})
    if user:
        try:
            await mails.send_username_mail(user["email"], user["username"])
        except OSError:
            # The response never reveals whether the address exists
            logger.exception("could not send username mail to %s", user["email"])
    return {
        "success": True,
        "message": "You'll get an email with your username if the address you provided has been verified.",
    }


@router.post("/auth/reset_password/{token}")
async def reset_password(token: str, payload: PasswordReset, db=Depends(get_db)):
    user = await user_from_token(db, token, "reset_password")
    if not validate_password(payload.password):
        raise HTTPException(
            status_code=400,
            detail="Password must be at least 8 characters and contain a letter and a digit",
        )
    if verify_password(payload.password, user["password"]):
        raise HTTPException(status_code=400, detail="New password cannot be the same as the old password")

    await db.users.update_one({"_id": user["_id"]}, {"$set": {"password": hash_password(payload.password)}})
    return {"success": True, "message": "Password reset successful"}


##########
# Account
##########
@router.patch("/auth/change_password")
async def change_password(payload: PasswordChange, user=Depends(get_current_user_required), db=Depends(get_db)):
    if not verify_password(payload.old_password, user["password"]):
        raise HTTPException(status_code=400, detail="Old password is incorrect")
    if not validate_password(payload.password):
        raise HTTPException(
            status_code=400,
            detail="Password must be at least 8 characters and contain a letter and a digit",
        )

    await db.users.update_one({"_id": user["_id"]}, {"$set": {"password": hash_password(payload.password)}})
    return {"success": True, "message": "Password change successful"}


@router.patch("/auth/change_email")
async def change_email(payload: EmailChange, user=Depends(get_current_user_required), db=Depends(get_db)):
    if not verify_password(payload.password, user["password"]):
        raise HTTPException(status_code=400, detail="Password is incorrect")
    email = payload.email.lower()
    other = await db.users.find_one({"email": email})
    if other and other["_id"] != user["_id"]:
        raise HTTPException(status_code=409, detail="Email already exists")

    await db.users.update_one({"_id": user["_id"]}, {"$set": {"email": email, "is_verified": False}})
    await send_verification({**user, "email": email})
    return {"success": True, "message": "Email change successful, please verify your new email address"}


@router.patch("/auth/verify_email/{token}")
async def verify_email(token: str, db=Depends(get_db)):
    user = await user_from_token(db, token, "verify_email")
    await db.users.update_one({"_id": user["_id"]}, {"$set": {"is_verified": True}})
    return {"success": True, "message": "Email verified successfully"}


@router.patch("/auth/resend_verification")
async def resend_verification(user=Depends(get_current_user_required)):
    if user.get("is_verified"):
        raise HTTPException(status_code=400, detail="Email is already verified")
    if not await send_verification(user):
        raise HTTPException(status_code=503, detail="Verification email could not be sent")
    return {"success": True, "message": "Verification email sent successfully"}


@router.get("/settings/v1/me")
async def get_me(user=Depends(get_current_user_required), db=Depends(get_db)):
    """Current user's profile, email state and preferences"""
    preferences = await db.user_preferences.find_one({"user_id": user["_id"]}, {"_id": 0, "user_id": 0})
    return {
        "success": True,
        "user": {
            **public_user(user),
            "email": user["email"],
            "is_verified": user.get("is_verified", False),
            "access": user.get("access", "user"),
        },
        "preferences": serialize(preferences or {}),
    }
