import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from bson import ObjectId
from fastapi import Depends, Header, Request
from jose import JWTError, jwt
from passlib.context import CryptContext
from pymongo.database import Database

from config import Settings
from database import serialize_doc
from errors import AuthError, AuthorizationError

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

RESET_PURPOSE = "reset"


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_db(request: Request) -> Database:
    return request.app.state.db


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    if not hashed_password:
        return False
    return pwd_context.verify(plain_password, hashed_password)


def create_access_token(settings: Settings, data: dict, expires_delta: Optional[timedelta] = None) -> str:
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=settings.access_token_expire_minutes))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def create_reset_token(settings: Settings, user_id: str) -> str:
    """Short-lived token for password resets. Valid for its whole TTL, even after use."""
    return create_access_token(
        settings,
        {"sub": user_id, "purpose": RESET_PURPOSE},
        timedelta(minutes=settings.reset_token_expire_minutes),
    )


def decode_token(settings: Settings, token: str) -> dict:
    try:
        return jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except JWTError:
        raise AuthError("Invalid or expired token. Authorization denied.")


def public_user(user: Dict[str, Any]) -> Dict[str, Any]:
    user = serialize_doc(user)
    # Never send password hash
    user.pop("password_hash", None)
    return user


def find_user(db: Database, user_id: str) -> Optional[Dict[str, Any]]:
    if not ObjectId.is_valid(user_id):
        return None
    return db["user"].find_one({"_id": ObjectId(user_id)})


# Dependency to get current user

def get_current_user(
    authorization: Optional[str] = Header(default=None),
    db: Database = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> Dict[str, Any]:
    if not authorization or not authorization.startswith("Bearer "):
        raise AuthError("No token provided. Authorization denied.")
    token = authorization.split(" ", 1)[1]
    payload = decode_token(settings, token)
    user_id = payload.get("sub")
    if not user_id or payload.get("purpose") == RESET_PURPOSE:
        raise AuthError("Invalid token")
    user = find_user(db, user_id)
    if not user:
        raise AuthError("User not found. Authorization denied.")
    return public_user(user)


def require_admin(current_user: Dict[str, Any] = Depends(get_current_user)) -> Dict[str, Any]:
    if current_user.get("role") != "admin":
        logger.warning(f"Admin route refused for user {current_user['id']}")
        raise AuthorizationError("Access denied. Admins only.")
    return current_user
