from datetime import datetime, timedelta
from typing import Any

import bcrypt
from jose import JWTError, jwt

from marketplace.core.config import get_settings


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    if not password_hash:
        return False
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        return False


def create_access_token(payload: dict[str, Any], expires_minutes: int | None = None) -> str:
    """Sign a bearer token; payload carries sub, role and the user's session version."""
    settings = get_settings()
    minutes = expires_minutes if expires_minutes is not None else settings.jwt_expire_minutes
    to_encode = dict(payload)
    to_encode["exp"] = datetime.utcnow() + timedelta(minutes=minutes)
    to_encode["iat"] = datetime.utcnow()
    return jwt.encode(to_encode, settings.jwt_signing_key, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str) -> dict[str, Any] | None:
    settings = get_settings()
    try:
        return jwt.decode(token, settings.jwt_signing_key, algorithms=[settings.jwt_algorithm])
    except JWTError:
        return None
