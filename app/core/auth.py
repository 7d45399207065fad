"""JWT verification for dashboard sessions."""

from datetime import datetime, timedelta
from typing import Any

from jose import JWTError, jwt

from app.settings import settings

_DEFAULT_SECRET = "dev-secret-key-change-in-production"

if settings.environment == "production" and settings.jwt_secret_key == _DEFAULT_SECRET:
    raise RuntimeError(
        "SECURITY ERROR: JWT_SECRET_KEY environment variable must be set in production. "
        "Cannot use default secret key."
    )


def create_access_token(data: dict[str, Any], expires_delta: timedelta | None = None) -> str:
    """Create a JWT access token.

    Session issuance lives in the account service; this is used by scripts
    and tests that need a valid dashboard token.

    Args:
        data: Claims to encode (``sub`` is the user id)
        expires_delta: Optional expiration time delta

    Returns:
        Encoded JWT token
    """
    to_encode = data.copy()
    expire = datetime.utcnow() + (
        expires_delta or timedelta(minutes=settings.jwt_access_token_expire_minutes)
    )
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str) -> dict[str, Any] | None:
    """Decode and verify a JWT access token.

    Returns:
        Decoded token payload or None if invalid
    """
    try:
        return jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
    except JWTError:
        return None


def user_id_from_token(token: str) -> int | None:
    """Extract the numeric user id (``sub``) from a token, or None if invalid."""
    payload = decode_access_token(token)
    if payload is None:
        return None
    try:
        return int(payload.get("sub"))
    except (ValueError, TypeError):
        return None
