import hashlib
import hmac
import logging
import secrets
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import jwt
from bson import ObjectId
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

import database
from config import get_settings

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"
PBKDF2_ITERATIONS = 600_000

bearer_scheme = HTTPBearer(auto_error=False)


class TokenError(Exception):
    pass


def hash_password(password: str) -> str:
    salt = secrets.token_bytes(16)
    key = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, PBKDF2_ITERATIONS)
    return f"{salt.hex()}${key.hex()}"


def verify_password(password: str, password_hash: str) -> bool:
    try:
        salt_hex, key_hex = password_hash.split("$", 1)
        salt = bytes.fromhex(salt_hex)
        key = bytes.fromhex(key_hex)
    except ValueError:
        return False
    candidate = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, PBKDF2_ITERATIONS)
    return hmac.compare_digest(candidate, key)


def _secret() -> str:
    return get_settings().jwt_secret.get_secret_value()


def _encode(claims: Dict[str, Any], expires_delta: timedelta) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        **claims,
        "iat": now,
        "exp": now + expires_delta,
        # two tokens minted in the same second must still differ
        "jti": uuid.uuid4().hex,
    }
    return jwt.encode(payload, _secret(), algorithm=ALGORITHM)


def create_access_token(user: Dict[str, Any]) -> str:
    settings = get_settings()
    claims = {
        "sub": user["username"],
        "typ": "access",
        "userId": str(user["_id"]),
        "username": user["username"],
        "email": user["email"],
        "roles": list(user.get("roles") or []),
    }
    return _encode(claims, timedelta(minutes=settings.access_token_expire_minutes))


def create_refresh_token(user: Dict[str, Any]) -> str:
    settings = get_settings()
    claims = {
        "sub": user["username"],
        "typ": "refresh",
        "userId": str(user["_id"]),
        "username": user["username"],
    }
    return _encode(claims, timedelta(days=settings.refresh_token_expire_days))


def decode_token(token: str, expected_type: str) -> Dict[str, Any]:
    """Decode and validate a token; raises TokenError on any problem."""
    try:
        payload = jwt.decode(token, _secret(), algorithms=[ALGORITHM])
    except jwt.ExpiredSignatureError as e:
        raise TokenError("Token has expired") from e
    except jwt.PyJWTError as e:
        raise TokenError("Invalid token") from e
    if payload.get("typ") != expected_type:
        raise TokenError(f"Expected a {expected_type} token")
    if not payload.get("userId"):
        raise TokenError("Token is missing userId")
    return payload


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def _load_user(user_id: str) -> Optional[Dict[str, Any]]:
    if not ObjectId.is_valid(user_id):
        return None
    return database.db["user"].find_one({"_id": ObjectId(user_id)})


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> Dict[str, Any]:
    if credentials is None or not credentials.credentials:
        raise _unauthorized("Authentication required")
    try:
        payload = decode_token(credentials.credentials, "access")
    except TokenError as e:
        logger.info("Rejected access token: %s", e)
        raise _unauthorized(str(e))
    user = _load_user(payload["userId"])
    if not user:
        raise _unauthorized("User no longer exists")
    if user.get("status") == "BANNED":
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Account is banned")
    return user


def require_admin(user: Dict[str, Any] = Depends(get_current_user)) -> Dict[str, Any]:
    if "ADMIN" not in (user.get("roles") or []):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin role required")
    return user


def is_admin(user: Dict[str, Any]) -> bool:
    return "ADMIN" in (user.get("roles") or [])


def ensure_self_or_admin(user: Dict[str, Any], user_id: str) -> None:
    if str(user["_id"]) != user_id and not is_admin(user):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not allowed for this user")
