"""
Shared dependencies for API endpoints.

Includes:
- Bearer token authentication for voters
- Admin key check for sweep and lifecycle endpoints
- Access to the external adapters created at startup
"""

from typing import Annotated, Optional

import structlog
from fastapi import Depends, Header, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from core.exceptions import Unauthorized
from core.security import decode_token, verify_admin_key
from db.session import get_db
from models.user import User
from repositories.user_repository import UserRepository
from services.polymarket_client import OutcomeOracle
from services.vocdoni_client import AnonymousTallyAdapter

logger = structlog.get_logger(__name__)

security = HTTPBearer(auto_error=False)


# =============================================================================
# User Authentication (JWT-based)
# =============================================================================


async def get_current_user(
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(security)],
    db: AsyncSession = Depends(get_db),
) -> User:
    """
    Resolve the caller from the identity provider's bearer token.

    The token subject is the user's auth_uid.

    Raises:
        Unauthorized: If the token is missing, invalid, or unknown.
    """
    if credentials is None:
        raise Unauthorized("Not authenticated")

    payload = decode_token(credentials.credentials)
    if payload is None:
        raise Unauthorized("Invalid or expired token")

    auth_uid = payload.get("sub")
    if not auth_uid:
        raise Unauthorized("Invalid token payload")

    user = await UserRepository(db).get_by_auth_uid(str(auth_uid))
    if not user:
        raise Unauthorized("User not found")

    return user


# =============================================================================
# Admin Authentication (shared key)
# =============================================================================


async def require_admin(
    x_admin_key: Annotated[Optional[str], Header(alias="X-Admin-Key")] = None,
) -> None:
    """Reject the request unless it carries the configured admin key."""
    if not verify_admin_key(x_admin_key):
        logger.warning("admin_key_rejected", key_present=x_admin_key is not None)
        raise Unauthorized("Invalid admin key")


# =============================================================================
# External adapters
# =============================================================================


def get_tally_adapter(request: Request) -> Optional[AnonymousTallyAdapter]:
    return getattr(request.app.state, "tally", None)


def get_outcome_oracle(request: Request) -> Optional[OutcomeOracle]:
    return getattr(request.app.state, "oracle", None)
