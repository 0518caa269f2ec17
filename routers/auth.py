import logging
from datetime import timedelta
from typing import Optional

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, EmailStr, Field
from pymongo.database import Database

from config import settings
from database import as_utc, create_document, get_db, parse_object_id, serialize_doc, utcnow
from errors import ErrorKind, StoreError
from schemas import Role, User
from security import (
    check_rate_limit,
    client_ip,
    create_access_token,
    get_current_user,
    hash_password,
    hash_reset_token,
    new_reset_token,
    public_user,
    verify_password,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])


class RegisterPayload(BaseModel):
    first_name: str = Field(..., min_length=1)
    last_name: str = Field(..., min_length=1)
    email: EmailStr
    password: str = Field(..., min_length=6)
    phone: Optional[str] = None


class LoginPayload(BaseModel):
    email: EmailStr
    password: str


class ForgotPasswordPayload(BaseModel):
    email: EmailStr


class ResetPasswordPayload(BaseModel):
    password: str = Field(..., min_length=6)


def _auth_response(user: dict) -> dict:
    token = create_access_token(str(user["_id"]), user.get("role", Role.USER.value))
    return {"success": True, "token": token, "user": serialize_doc(public_user(user))}


@router.post("/register", status_code=201)
def register(payload: RegisterPayload, db: Database = Depends(get_db)):
    email = payload.email.lower()
    if db["user"].find_one({"email": email}):
        raise StoreError(ErrorKind.CONFLICT, "Email already registered")
    user = User(
        first_name=payload.first_name,
        last_name=payload.last_name,
        email=email,
        password_hash=hash_password(payload.password),
        phone=payload.phone,
    )
    user_id = create_document(db, "user", user)
    return _auth_response(db["user"].find_one({"_id": parse_object_id(user_id)}))


@router.post("/login")
def login(payload: LoginPayload, request: Request, db: Database = Depends(get_db)):
    check_rate_limit(client_ip(request))

    doc = db["user"].find_one({"email": payload.email.lower()})
    if not doc or not verify_password(payload.password, doc.get("password_hash", "")):
        raise StoreError(ErrorKind.UNAUTHORIZED, "Invalid credentials")
    if not doc.get("is_active", True):
        raise StoreError(ErrorKind.UNAUTHORIZED, "This account has been deactivated.")
    return _auth_response(doc)


@router.get("/me")
def me(user: dict = Depends(get_current_user)):
    return {"success": True, "user": serialize_doc(public_user(user))}


@router.post("/forgot-password")
def forgot_password(payload: ForgotPasswordPayload, db: Database = Depends(get_db)):
    user = db["user"].find_one({"email": payload.email.lower()})
    if user:
        raw, digest = new_reset_token()
        expires = utcnow() + timedelta(minutes=settings.PASSWORD_RESET_EXPIRE_MIN)
        db["user"].update_one(
            {"_id": user["_id"]},
            {"$set": {"reset_password_token": digest, "reset_password_expire": expires}},
        )
        # mail delivery happens outside this service
        logger.info("Password reset link for %s: %s/reset-password/%s", user["email"], settings.FRONTEND_URL, raw)
    return {"success": True, "message": "If that email is registered, a reset link has been sent"}


@router.post("/reset-password/{token}")
def reset_password(token: str, payload: ResetPasswordPayload, db: Database = Depends(get_db)):
    user = db["user"].find_one({"reset_password_token": hash_reset_token(token)})
    expires = user.get("reset_password_expire") if user else None
    if not user or expires is None or as_utc(expires) < utcnow():
        raise StoreError(ErrorKind.BAD_REQUEST, "Invalid or expired reset token")

    db["user"].update_one(
        {"_id": user["_id"]},
        {
            "$set": {
                "password_hash": hash_password(payload.password),
                # one second back so the token issued below is not already stale
                "password_changed_at": utcnow() - timedelta(seconds=1),
                "updated_at": utcnow(),
            },
            "$unset": {"reset_password_token": "", "reset_password_expire": ""},
        },
    )
    return _auth_response(db["user"].find_one({"_id": user["_id"]}))
