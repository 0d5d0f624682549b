import logging

from bson import ObjectId
from bson.errors import InvalidId
from fastapi import Depends, HTTPException, Request, status
import jwt
from jwt.exceptions import InvalidTokenError as JWTError

from app.config import settings
from app.database import get_db

logger = logging.getLogger("pronofoot.auth")

ALGORITHM = "HS256"


def decode_jwt(token: str) -> dict:
    """Decode a JWT, trying the current secret first, then the old one.

    This allows zero-downtime rotation of JWT_SECRET: set JWT_SECRET to the
    new value and JWT_SECRET_OLD to the previous one, then drop
    JWT_SECRET_OLD once the old tokens have expired.
    """
    try:
        return jwt.decode(token, settings.JWT_SECRET, algorithms=[ALGORITHM])
    except JWTError:
        if settings.JWT_SECRET_OLD:
            return jwt.decode(token, settings.JWT_SECRET_OLD, algorithms=[ALGORITHM])
        raise


async def get_current_user(request: Request, db=Depends(get_db)) -> dict:
    """FastAPI dependency: extract and validate user from access token cookie.

    Tokens are issued by the session provider; this service only verifies them.
    """
    token = request.cookies.get("access_token")
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
        )

    try:
        payload = decode_jwt(token)
    except JWTError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token",
        )

    if payload.get("type", "access") != "access":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token type",
        )

    user_id = payload.get("sub")
    try:
        oid = ObjectId(user_id)
    except (InvalidId, TypeError):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token",
        )

    user = await db.users.find_one({"_id": oid, "is_deleted": {"$ne": True}})
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found",
        )
    return user


async def get_admin_user(request: Request, db=Depends(get_db)) -> dict:
    """FastAPI dependency: requires an authenticated admin user."""
    user = await get_current_user(request, db)
    if not user.get("is_admin"):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required",
        )
    return user
