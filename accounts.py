import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Request
from pydantic import EmailStr, Field
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from config import Settings
from database import create_document, now, serialize_doc
from errors import AuthError, BusinessRuleError, NotFoundError, ValidationError, envelope
from schemas import LoginEvent, RequestModel, User as UserSchema
from security import (
    RESET_PURPOSE,
    create_access_token,
    create_reset_token,
    decode_token,
    find_user,
    get_current_user,
    get_db,
    get_settings,
    hash_password,
    public_user,
    require_admin,
    verify_password,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])


# Auth models
class RegisterInput(RequestModel):
    name: str = Field(..., min_length=1)
    email: EmailStr
    password: str = Field(..., min_length=6)
    phone: str = Field(..., min_length=1)
    address: str = Field(..., min_length=1)


class LoginInput(RequestModel):
    email: EmailStr
    password: str


class ProfileInput(RequestModel):
    name: Optional[str] = Field(None, min_length=1)
    phone: Optional[str] = Field(None, min_length=1)
    address: Optional[str] = Field(None, min_length=1)


class PasswordChangeInput(RequestModel):
    current_password: str
    new_password: str = Field(..., min_length=6)


class ForgotPasswordInput(RequestModel):
    email: EmailStr


class ResetPasswordInput(RequestModel):
    token: str
    new_password: str = Field(..., min_length=6)


def client_ip(request: Request) -> Optional[str]:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


def auth_payload(settings: Settings, user: Dict[str, Any]) -> Dict[str, Any]:
    user = public_user(user)
    token = create_access_token(settings, {"sub": user["id"]})
    return {"token": token, "user": user}


@router.post("/register")
def register(payload: RegisterInput, db: Database = Depends(get_db), settings: Settings = Depends(get_settings)):
    email = payload.email.lower()
    if db["user"].find_one({"email": email}):
        raise BusinessRuleError("User already exists with this email")
    user_model = UserSchema(
        name=payload.name,
        email=email,
        password_hash=hash_password(payload.password),
        phone=payload.phone,
        address=payload.address,
    )
    try:
        user_id = create_document(db, "user", user_model.model_dump())
    except DuplicateKeyError:
        raise BusinessRuleError("User already exists with this email")
    logger.info(f"New user registered with ID: {user_id}")
    user = find_user(db, user_id)
    return envelope(auth_payload(settings, user), "User registered successfully")


@router.post("/login")
def login(payload: LoginInput, request: Request, db: Database = Depends(get_db), settings: Settings = Depends(get_settings)):
    user = db["user"].find_one({"email": payload.email.lower()})
    if not user or not verify_password(payload.password, user.get("password_hash", "")):
        logger.warning(f"Failed login for {payload.email.lower()}")
        raise BusinessRuleError("Invalid credentials")
    event = LoginEvent(user_id=str(user["_id"]), timestamp=now(), ip=client_ip(request))
    db["loginevent"].insert_one(event.model_dump())
    return envelope(auth_payload(settings, user), "Login successful")


@router.get("/user")
def me(current_user: dict = Depends(get_current_user)):
    return envelope(current_user)


@router.get("/verify")
def verify(current_user: dict = Depends(get_current_user)):
    return envelope(current_user, "Token is valid")


@router.post("/logout")
def logout(current_user: dict = Depends(get_current_user)):
    # tokens are stateless; the client discards its copy
    return envelope(message="Logged out successfully")


@router.put("/profile")
def update_profile(payload: ProfileInput, current_user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    update_dict = payload.model_dump(exclude_unset=True, exclude_none=True)
    if not update_dict:
        raise ValidationError("No fields to update")
    update_dict["updated_at"] = now()
    user = find_user(db, current_user["id"])
    if not user:
        raise NotFoundError("User not found")
    db["user"].update_one({"_id": user["_id"]}, {"$set": update_dict})
    return envelope(public_user(find_user(db, current_user["id"])), "Profile updated successfully")


@router.put("/password")
def change_password(payload: PasswordChangeInput, current_user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    user = find_user(db, current_user["id"])
    if not user:
        raise NotFoundError("User not found")
    if not verify_password(payload.current_password, user.get("password_hash", "")):
        raise BusinessRuleError("Current password is incorrect")
    db["user"].update_one(
        {"_id": user["_id"]},
        {"$set": {"password_hash": hash_password(payload.new_password), "updated_at": now()}},
    )
    logger.info(f"Password changed for user {current_user['id']}")
    return envelope(message="Password changed successfully")


@router.post("/forgot-password")
def forgot_password(payload: ForgotPasswordInput, db: Database = Depends(get_db), settings: Settings = Depends(get_settings)):
    user = db["user"].find_one({"email": payload.email.lower()})
    if not user:
        raise NotFoundError("User not found with this email")
    # No mail delivery: the token is handed straight back to the caller.
    reset_token = create_reset_token(settings, str(user["_id"]))
    return envelope({"reset_token": reset_token}, "Password reset link sent to your email")


@router.post("/reset-password")
def reset_password(payload: ResetPasswordInput, db: Database = Depends(get_db), settings: Settings = Depends(get_settings)):
    try:
        claims = decode_token(settings, payload.token)
    except AuthError:
        raise BusinessRuleError("Invalid reset token")
    if claims.get("purpose") != RESET_PURPOSE:
        raise BusinessRuleError("Invalid reset token")
    user = find_user(db, claims.get("sub", ""))
    if not user:
        raise BusinessRuleError("Invalid reset token")
    db["user"].update_one(
        {"_id": user["_id"]},
        {"$set": {"password_hash": hash_password(payload.new_password), "updated_at": now()}},
    )
    logger.info(f"Password reset for user {user['_id']}")
    return envelope(message="Password reset successfully")


@router.get("/login-events")
def login_events(admin: dict = Depends(require_admin), db: Database = Depends(get_db)):
    events = list(db["loginevent"].find().sort("timestamp", -1))
    users = {}
    out = []
    for event in events:
        uid = event.get("user_id")
        if uid not in users:
            found = find_user(db, uid or "")
            users[uid] = {"id": uid, "name": found.get("name"), "email": found.get("email")} if found else None
        item = serialize_doc(event)
        item["user"] = users[uid]
        out.append(item)
    return envelope(out)
