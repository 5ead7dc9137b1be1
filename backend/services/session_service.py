"""Login, refresh and logout over the access/refresh token pair.

Each identity holds at most one refresh token (`refresh_token` on its
document). Login and refresh overwrite it, logout removes it, and a refresh
is accepted only when the presented token still equals the stored one.
Access tokens are stateless: logging out does not revoke an access token that
was already handed out, it just expires on its own.
"""
from typing import Optional
import logging

from starlette.concurrency import run_in_threadpool

from core.security import (
    InvalidTokenError,
    create_access_token,
    create_refresh_token,
    decode_refresh_token,
    verify_password,
)
from db.identity_store import IdentityStore, IdentityId
from schemas.user_schema import LoginResult, TokenPair, User
from utils.errors import NotFoundError, UnauthorizedError, ValidationError

logger = logging.getLogger(__name__)


def _issue_pair(identity: dict) -> TokenPair:
    return TokenPair(
        access_token=create_access_token(identity),
        refresh_token=create_refresh_token(identity),
    )


async def login_user(store: IdentityStore, password: str, username: Optional[str] = None, email: Optional[str] = None) -> LoginResult:
    """Check credentials and start a session, replacing any earlier refresh token."""
    if not (username or "").strip() and not (email or "").strip():
        raise ValidationError("username or email is required")

    identity = await store.find_by_username_or_email(username, email)
    if not identity:
        raise NotFoundError("User does not exist")

    # bcrypt is deliberately slow; keep it off the event loop
    if not await run_in_threadpool(verify_password, password or "", identity["password_hash"]):
        logger.info(f"Login rejected for user {identity.get('username')}: wrong password")
        raise UnauthorizedError("Invalid user credentials")

    tokens = _issue_pair(identity)
    if not await store.update_refresh_token(identity["_id"], tokens.refresh_token):
        # Deleted between lookup and write
        raise NotFoundError("User does not exist")

    public = await store.find_public_by_id(identity["_id"])
    logger.info(f"User {identity.get('username')} logged in")
    return LoginResult(
        user=User.from_document(public or identity),
        access_token=tokens.access_token,
        refresh_token=tokens.refresh_token,
    )


async def refresh_session(store: IdentityStore, incoming_refresh_token: Optional[str]) -> TokenPair:
    """Exchange a refresh token for a new pair; the presented token is spent."""
    if not incoming_refresh_token:
        raise UnauthorizedError("Unauthorized request")

    try:
        claims = decode_refresh_token(incoming_refresh_token)
    except InvalidTokenError as e:
        logger.warning(f"Refresh token rejected: {e.__cause__ or e}")
        raise UnauthorizedError("Invalid refresh token") from e

    identity = await store.find_by_id(claims["id"])
    if not identity:
        raise UnauthorizedError("Invalid refresh token")

    if incoming_refresh_token != identity.get("refresh_token"):
        logger.warning(f"Stale refresh token presented for user {identity.get('username')}")
        raise UnauthorizedError("Refresh token is expired or used")

    tokens = _issue_pair(identity)
    # Conditional write: of two concurrent refreshes with the same token only one wins
    rotated = await store.rotate_refresh_token(identity["_id"], incoming_refresh_token, tokens.refresh_token)
    if not rotated:
        logger.warning(f"Refresh token for user {identity.get('username')} was rotated concurrently")
        raise UnauthorizedError("Refresh token is expired or used")

    logger.info(f"Rotated refresh token for user {identity.get('username')}")
    return tokens


async def logout_user(store: IdentityStore, identity_id: IdentityId) -> None:
    """End the session: the stored refresh token is removed, not just expired."""
    await store.update_refresh_token(identity_id, None)
    logger.info(f"User {identity_id} logged out")
