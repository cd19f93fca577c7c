"""Security utilities for caller authentication.

Bearer tokens are minted by the identity provider after proof-of-personhood
verification. This service only verifies them and reads the subject.
"""

import hmac
from datetime import datetime, timedelta, timezone
from typing import Any

from jose import JWTError, jwt

from core.config import settings


def create_access_token(
    subject: str,
    expires_delta: timedelta | None = None,
) -> str:
    """Create a signed access token for a subject (local tooling and tests)."""
    now = datetime.now(timezone.utc)
    to_encode: dict[str, Any] = {
        "sub": subject,
        "iat": now,
        "exp": now + (expires_delta or timedelta(hours=1)),
    }
    if settings.JWT_AUDIENCE:
        to_encode["aud"] = settings.JWT_AUDIENCE
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def decode_token(token: str) -> dict[str, Any] | None:
    """
    Decode and validate a bearer token.

    Returns the payload, or None when the token is invalid or expired.
    """
    try:
        return jwt.decode(
            token,
            settings.SECRET_KEY,
            algorithms=[settings.JWT_ALGORITHM],
            audience=settings.JWT_AUDIENCE,
            options={"verify_aud": settings.JWT_AUDIENCE is not None},
        )
    except JWTError:
        return None


def verify_admin_key(provided: str | None) -> bool:
    """Constant-time comparison of the operator key."""
    expected = settings.ADMIN_API_KEY
    if not expected or not provided:
        return False
    return hmac.compare_digest(provided.encode(), expected.encode())
