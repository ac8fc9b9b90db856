"""
Authentication utilities: password hashing and JWT access tokens
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import jwt
from passlib.context import CryptContext

from app.settings import settings

logger = logging.getLogger(__name__)

# pbkdf2 needs no native backend
pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")

ALGORITHM = "HS256"


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, password_hash: Optional[str]) -> bool:
    """Verify a password against its hash. Users without a hash never match."""
    if not password_hash:
        return False
    return pwd_context.verify(password, password_hash)


def create_access_token(user_id: int, region: str, now: Optional[datetime] = None) -> str:
    """Create a bearer token carrying the user id and region"""
    if not settings.JWT_SECRET_KEY:
        raise ValueError("JWT_SECRET_KEY is not set. Cannot create JWT token.")

    issued_at = now or datetime.now(timezone.utc)
    payload = {
        "sub": str(user_id),
        "region": region,
        "iat": issued_at,
        "exp": issued_at + timedelta(days=settings.JWT_EXPIRE_DAYS),
    }
    return jwt.encode(payload, settings.JWT_SECRET_KEY, algorithm=ALGORITHM)


def decode_access_token(token: str) -> Optional[Dict[str, Any]]:
    """Decode a bearer token. Returns None if it is invalid, expired or has no user id."""
    if not settings.JWT_SECRET_KEY:
        raise ValueError("JWT_SECRET_KEY is not set. Cannot decode JWT token.")

    try:
        payload = jwt.decode(token, settings.JWT_SECRET_KEY, algorithms=[ALGORITHM])
    except jwt.ExpiredSignatureError:
        logger.info("Rejected expired access token")
        return None
    except jwt.InvalidTokenError:
        return None

    try:
        payload["user_id"] = int(payload["sub"])
    except (KeyError, TypeError, ValueError):
        return None
    return payload
