"""
Security Module
===============

Authentication and security utilities including:
- Password hashing with bcrypt
- JWT access/refresh token generation and validation
- Constant-time comparison of pre-shared API keys
"""

import hmac
from datetime import datetime, timedelta, timezone
from typing import Any, Iterable, Optional
import uuid

from jose import JWTError, jwt
from passlib.context import CryptContext

from tasktracker.config import settings

# Password hashing context using bcrypt
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def hash_password(password: str) -> str:
    """Hash a password using bcrypt."""
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a password against its hash."""
    return pwd_context.verify(plain_password, hashed_password)


def _encode(data: dict[str, Any], token_type: str, expires_delta: timedelta) -> str:
    now = datetime.now(timezone.utc)
    to_encode = data.copy()
    to_encode.update({
        "exp": now + expires_delta,
        "iat": now,
        "type": token_type,
    })
    return jwt.encode(
        to_encode,
        settings.JWT_SECRET,
        algorithm=settings.JWT_ALGORITHM,
    )


def create_access_token(
    data: dict[str, Any],
    expires_delta: Optional[timedelta] = None,
) -> str:
    """
    Create a JWT access token.

    Args:
        data: Payload data to encode
        expires_delta: Custom expiration time (optional)

    Returns:
        Encoded JWT token string
    """
    return _encode(
        data,
        "access",
        expires_delta or timedelta(minutes=settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES),
    )


def create_refresh_token(
    data: dict[str, Any],
    expires_delta: Optional[timedelta] = None,
) -> str:
    """Create a JWT refresh token (longer TTL, ``type=refresh``)."""
    return _encode(
        data,
        "refresh",
        expires_delta or timedelta(days=settings.JWT_REFRESH_TOKEN_EXPIRE_DAYS),
    )


def decode_token(token: str) -> Optional[dict[str, Any]]:
    """
    Decode and validate a JWT token.

    Returns:
        Decoded payload if valid, None otherwise
    """
    try:
        return jwt.decode(
            token,
            settings.JWT_SECRET,
            algorithms=[settings.JWT_ALGORITHM],
        )
    except JWTError:
        return None


def create_tokens_for_user(
    user_id: uuid.UUID,
    email: str,
    roles: Iterable[str] = (),
) -> dict[str, Any]:
    """
    Create both access and refresh tokens for a user.

    Returns:
        Dictionary with access_token, refresh_token, token_type and expires_in
    """
    token_data = {
        "sub": str(user_id),
        "email": email,
        "roles": sorted(roles),
    }

    return {
        "access_token": create_access_token(token_data),
        "refresh_token": create_refresh_token(token_data),
        "token_type": "bearer",
        "expires_in": settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES * 60,  # seconds
    }


def api_key_matches(provided: Optional[str], expected: str) -> bool:
    """Compare a pre-shared key in constant time. An unset key never matches."""
    if not provided or not expected:
        return False
    return hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8"))
