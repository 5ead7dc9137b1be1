from typing import Optional
from fastapi import Depends, Request
from core.config import settings
from core.security import InvalidTokenError, decode_access_token
from db.identity_store import IdentityStore
from db.mongodb import get_mongo_db
from schemas.user_schema import User as UserSchema
from services.media_service import CloudinaryUploader, MediaHostConfig
from utils.errors import InternalError, UnauthorizedError
import logging

logger = logging.getLogger(__name__)

ACCESS_TOKEN_COOKIE = "accessToken"
REFRESH_TOKEN_COOKIE = "refreshToken"


def get_identity_store() -> IdentityStore:
    db = get_mongo_db()
    if db is None:
        raise InternalError("Database not available")
    return IdentityStore(db.users)


def get_media_host() -> CloudinaryUploader:
    return CloudinaryUploader(MediaHostConfig.from_settings(settings))


def extract_access_token(request: Request) -> Optional[str]:
    """Access token from the `accessToken` cookie, else from `Authorization: Bearer <token>`."""
    token = request.cookies.get(ACCESS_TOKEN_COOKIE)
    if token:
        return token
    auth_header = request.headers.get("authorization")
    if auth_header and auth_header.startswith("Bearer "):
        return auth_header[len("Bearer "):].strip() or None
    return None


async def get_current_user(request: Request, store: IdentityStore = Depends(get_identity_store)) -> UserSchema:
    token = extract_access_token(request)
    if not token:
        raise UnauthorizedError("Unauthorized request")

    try:
        claims = decode_access_token(token)
    except InvalidTokenError as e:
        logger.warning(f"Access token rejected: {e.__cause__ or e}")
        raise UnauthorizedError(e.message if e.expired else "Invalid access token") from e

    doc = await store.find_public_by_id(claims["id"])
    if not doc:
        raise UnauthorizedError("Invalid access token")

    user = UserSchema.from_document(doc)
    request.state.user = user
    return user
