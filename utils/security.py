import re
from datetime import datetime, timedelta, timezone

import bcrypt
import jwt
from bson import ObjectId
from bson.errors import InvalidId
from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from config import ACCESS_TOKEN_EXPIRE_HOURS, BCRYPT_ROUNDS, JWT_ALGORITHM, JWT_SECRET
from database import get_db

# HTTP Bearer token dependency
security = HTTPBearer(auto_error=False)

PASSWORD_RE = re.compile(r"^(?=.*[A-Za-z])(?=.*\d).{8,}$")


##########
# JWT Token
##########
def create_access_token(user_id, purpose: str = "access", expires_hours: float = ACCESS_TOKEN_EXPIRE_HOURS):
    """Create a signed token for a user, scoped to one purpose."""
    expire = datetime.now(timezone.utc) + timedelta(hours=expires_hours)
    to_encode = {"user_id": str(user_id), "purpose": purpose, "exp": expire}
    return jwt.encode(to_encode, JWT_SECRET, algorithm=JWT_ALGORITHM)


def verify_token(token: str, purpose: str = "access"):
    """Verify a token, return its payload or None if invalid, expired or issued for another purpose."""
    try:
        payload = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        return None
    except jwt.PyJWTError:
        return None
    if payload.get("purpose", "access") != purpose:
        return None
    return payload


def user_id_from_payload(payload) -> ObjectId | None:
    try:
        return ObjectId(payload.get("user_id"))
    except (InvalidId, TypeError):
        return None


##########
# Passwords
##########
def hash_password(password: str):
    """Hash password using bcrypt"""
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=BCRYPT_ROUNDS)).decode("utf-8")


def verify_password(password: str, hashed: str):
    """Verify password against hashed value"""
    if not password or not hashed:
        return False
    return bcrypt.checkpw(password.encode("utf-8"), hashed.encode("utf-8"))


def validate_password(password: str) -> bool:
    """At least 8 characters with one letter and one digit."""
    return bool(password and PASSWORD_RE.match(password))


##########
# Current User
##########
async def get_current_user(credentials: HTTPAuthorizationCredentials = Depends(security), db=Depends(get_db)):
    """Return current user if token is valid, else None"""
    if not credentials:
        return None

    payload = verify_token(credentials.credentials)
    if not payload:
        return None

    user_id = user_id_from_payload(payload)
    if user_id is None:
        return None
    return await db.users.find_one({"_id": user_id})


async def get_current_user_required(credentials: HTTPAuthorizationCredentials = Depends(security), db=Depends(get_db)):
    """Return current user or raise 401/404"""
    if not credentials:
        raise HTTPException(status_code=401, detail="Authentication required")

    payload = verify_token(credentials.credentials)
    if not payload:
        raise HTTPException(status_code=401, detail="Unauthorized")

    user_id = user_id_from_payload(payload)
    if user_id is None:
        raise HTTPException(status_code=401, detail="Unauthorized")

    user = await db.users.find_one({"_id": user_id})
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return user


async def require_admin(user=Depends(get_current_user_required)):
    """Gate a route on the user's `access` field."""
    if user.get("access") != "admin":
        raise HTTPException(status_code=403, detail="Forbidden, you must be an admin!")
    return user
