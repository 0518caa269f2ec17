import hashlib
import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import ExpiredSignatureError, JWTError, jwt
from passlib.context import CryptContext
from pymongo.database import Database

from config import settings
from database import as_utc, get_db, parse_object_id
from errors import ErrorKind, StoreError
from schemas import Role

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
auth_scheme = HTTPBearer(auto_error=False)

# Fixed-window login limiter (per-IP)
rate_store: Dict[str, List[float]] = {}


def check_rate_limit(ip: str):
    now = datetime.now().timestamp()
    bucket = rate_store.get(ip, [])
    # drop old timestamps
    bucket = [t for t in bucket if now - t <= settings.LOGIN_RATE_LIMIT_WINDOW_SEC]
    if len(bucket) >= settings.LOGIN_RATE_LIMIT_MAX:
        raise StoreError(
            ErrorKind.RATE_LIMITED,
            "Too many login attempts from this IP, please try again after 15 minutes",
        )
    bucket.append(now)
    rate_store[ip] = bucket


def verify_password(plain: str, hashed: str) -> bool:
    return pwd_context.verify(plain, hashed)


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def create_access_token(user_id: str, role: str, expires_minutes: Optional[int] = None) -> str:
    now = datetime.now(timezone.utc)
    expire = now + timedelta(minutes=expires_minutes or settings.TOKEN_EXPIRE_MIN)
    to_encode = {"sub": user_id, "role": role, "iat": int(now.timestamp()), "exp": expire}
    return jwt.encode(to_encode, settings.JWT_SECRET, algorithm=settings.JWT_ALG)


def decode_token(token: str) -> dict:
    try:
        return jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALG])
    except ExpiredSignatureError:
        raise StoreError(ErrorKind.UNAUTHORIZED, "Token expired")
    except JWTError:
        raise StoreError(ErrorKind.UNAUTHORIZED, "Not authorized, token failed")


def new_reset_token():
    """Return (raw token for the user, sha256 digest to store)."""
    raw = secrets.token_hex(20)
    return raw, hash_reset_token(raw)


def hash_reset_token(raw: str) -> str:
    return hashlib.sha256(raw.encode()).hexdigest()


def is_admin(user: dict) -> bool:
    return Role(user.get("role", Role.USER.value)) is Role.ADMIN


def public_user(user: dict) -> dict:
    hidden = {"password_hash", "reset_password_token", "reset_password_expire"}
    return {k: v for k, v in user.items() if k not in hidden}


def authenticate(token: str, db: Database) -> dict:
    payload = decode_token(token)
    user_id = payload.get("sub")
    if user_id is None:
        raise StoreError(ErrorKind.UNAUTHORIZED, "Not authorized, token failed")

    user = db["user"].find_one({"_id": parse_object_id(user_id)})
    if not user:
        raise StoreError(ErrorKind.UNAUTHORIZED, "The user belonging to this token no longer exists.")
    if not user.get("is_active", True):
        raise StoreError(ErrorKind.UNAUTHORIZED, "This account has been deactivated.")

    changed_at = user.get("password_changed_at")
    if changed_at is not None:
        issued_at = int(payload.get("iat", 0))
        if issued_at < int(as_utc(changed_at).timestamp()):
            raise StoreError(ErrorKind.UNAUTHORIZED, "User recently changed password. Please log in again.")
    return user


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(auth_scheme),
    db: Database = Depends(get_db),
) -> dict:
    if credentials is None:
        raise StoreError(ErrorKind.UNAUTHORIZED, "Not authorized to access this route")
    return authenticate(credentials.credentials, db)


async def get_optional_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(auth_scheme),
    db: Database = Depends(get_db),
) -> Optional[dict]:
    if credentials is None:
        return None
    return authenticate(credentials.credentials, db)


async def require_admin(user: dict = Depends(get_current_user)):
    if not is_admin(user):
        raise StoreError(
            ErrorKind.FORBIDDEN,
            f"User role ({user.get('role')}) is not authorized to access this route",
        )
    return user


def client_ip(request: Request) -> str:
    return request.client.host if request.client else "unknown"
