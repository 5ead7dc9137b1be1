from typing import Any, Dict, List, Mapping, Optional
import logging

from starlette.concurrency import run_in_threadpool

from core.security import get_password_hash, verify_password
from db.identity_store import IdentityStore, IdentityId
from schemas.user_schema import User
from utils.errors import ConflictError, InternalError, UnauthorizedError, ValidationError

logger = logging.getLogger(__name__)

REGISTRATION_FIELDS = ("fullName", "email", "username", "password")


def validate_registration(fields: Mapping[str, Optional[str]]) -> List[Dict[str, str]]:
    """Return one error per required registration field that is missing or blank."""
    errors = []
    for name in REGISTRATION_FIELDS:
        value = fields.get(name)
        if value is None or not str(value).strip():
            errors.append({"field": name, "message": f"{name} is required"})
    return errors


async def set_password(plaintext: str) -> str:
    """Hash a new password. Always hashes; there is no "only if modified" shortcut."""
    return await run_in_threadpool(get_password_hash, plaintext)


async def register_user(
    store: IdentityStore,
    media: Any,
    *,
    full_name: Optional[str],
    email: Optional[str],
    username: Optional[str],
    password: Optional[str],
    avatar_path: Optional[str],
    cover_image_path: Optional[str] = None,
) -> User:
    """Create an identity with hosted avatar (required) and cover image (optional)."""
    errors = validate_registration({
        "fullName": full_name,
        "email": email,
        "username": username,
        "password": password,
    })
    if errors:
        raise ValidationError("All fields are required.", errors=errors)

    if await store.exists_username_or_email(username, email):
        raise ConflictError("User with email or username already exists.")

    if not avatar_path:
        raise ValidationError("Avatar file is required.")

    password_hash = await set_password(password)

    avatar = await media.upload(avatar_path)
    if not avatar:
        logger.warning("Avatar upload failed during registration")
        raise ValidationError("Avatar file is required.")
    cover_image = await media.upload(cover_image_path)

    identity_id = await store.create(
        username=username,
        email=email,
        full_name=full_name,
        password_hash=password_hash,
        avatar=avatar["url"],
        cover_image=(cover_image or {}).get("url") or "",
    )

    created = await store.find_public_by_id(identity_id)
    if not created:
        raise InternalError("Something went wrong while registering the user.")
    logger.info(f"Registered user {created.get('username')}")
    return User.from_document(created)


async def change_password(store: IdentityStore, identity_id: IdentityId, old_password: str, new_password: str) -> None:
    """Replace the password of an authenticated identity after checking the old one.

    Tokens issued before the change stay valid until they expire or the
    session is logged out.
    """
    identity = await store.find_by_id(identity_id)
    if not identity:
        raise UnauthorizedError("Invalid access token")
    if not await run_in_threadpool(verify_password, old_password, identity["password_hash"]):
        raise UnauthorizedError("Invalid old password")
    await store.set_password_hash(identity["_id"], await set_password(new_password))
    logger.info(f"Password changed for user {identity.get('username')}")
