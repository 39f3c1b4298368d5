"""
Password hashing and JWTs.

Passwords are hashed with bcrypt through passlib. Tokens are signed with
settings.secret_key and carry `sub` (the user id as a string), `exp` and a
`type` claim of "access" or "refresh"; a token is only accepted where its
type is expected.

    hashed = hash_password("Secret123")
    verify_password("Secret123", hashed)       # True
    token = create_access_token({"sub": "42"})
    verify_token_type(token, "access")         # {"sub": "42", ...}
"""

import logging
from datetime import UTC, datetime, timedelta
from typing import Any, Literal

from jose import JWTError, jwt
from passlib.context import CryptContext

from bookreview.config import get_settings

logger = logging.getLogger(__name__)
settings = get_settings()

TokenType = Literal["access", "refresh"]

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def _encode(claims: dict[str, Any], token_type: TokenType, lifetime: timedelta) -> str:
    payload = {**claims, "exp": datetime.now(UTC) + lifetime, "type": token_type}
    return jwt.encode(payload, settings.secret_key, algorithm=settings.jwt_algorithm)


def create_access_token(claims: dict[str, Any], expires_delta: timedelta | None = None) -> str:
    """Short-lived bearer token; lifetime defaults to access_token_expire_minutes."""
    lifetime = expires_delta or timedelta(minutes=settings.access_token_expire_minutes)
    return _encode(claims, "access", lifetime)


def create_refresh_token(claims: dict[str, Any], expires_delta: timedelta | None = None) -> str:
    lifetime = expires_delta or timedelta(days=settings.refresh_token_expire_days)
    return _encode(claims, "refresh", lifetime)


def decode_token(token: str) -> dict[str, Any] | None:
    """Verified payload, or None for a bad signature, malformed or expired token."""
    try:
        return jwt.decode(token, settings.secret_key, algorithms=[settings.jwt_algorithm])
    except JWTError as exc:
        logger.debug(f"Rejected token: {exc}")
        return None


def verify_token_type(token: str, expected_type: TokenType) -> dict[str, Any] | None:
    payload = decode_token(token)
    if payload is None:
        return None
    if payload.get("type") != expected_type:
        logger.warning(f"Expected a {expected_type} token, got {payload.get('type')!r}")
        return None
    return payload
