"""
Token utilities for the API boundary.

Sessions are issued elsewhere; this service only verifies bearer JWTs whose
``sub`` claim is a profile id, and the shared secret used by cron callers.
"""

from datetime import UTC, datetime, timedelta
import secrets
from typing import Any

from jose import JWTError, jwt

from nest.core.config import settings
from nest.core.logging_config import get_logger

logger = get_logger(__name__)


def create_access_token(
    data: dict, expires_delta: timedelta | None = None
) -> str:
    """
    Create a JWT access token.

    Args:
        data: Payload data to encode in the token
        expires_delta: Optional expiration time delta

    Returns:
        Encoded JWT token string
    """
    to_encode = data.copy()

    if expires_delta:
        expire = datetime.now(UTC) + expires_delta
    else:
        expire = datetime.now(UTC) + timedelta(
            minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES
        )

    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def decode_access_token(token: str) -> dict[str, Any] | None:
    """
    Decode and verify a JWT access token.

    Args:
        token: JWT token string

    Returns:
        Decoded token payload or None if invalid
    """
    try:
        return jwt.decode(
            token, settings.SECRET_KEY, algorithms=[settings.JWT_ALGORITHM]
        )
    except JWTError:
        return None


def verify_cron_authorization(authorization: str | None) -> bool:
    """
    Check an ``Authorization`` header against ``CRON_SECRET``.

    An unset secret leaves cron endpoints open.
    """
    if not settings.CRON_SECRET:
        return True
    if not authorization:
        return False
    expected = f"Bearer {settings.CRON_SECRET}"
    return secrets.compare_digest(authorization, expected)
