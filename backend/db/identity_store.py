import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Union
from bson import ObjectId
from bson.errors import InvalidId
from motor.motor_asyncio import AsyncIOMotorCollection
from pymongo.errors import DuplicateKeyError
from utils.errors import ConflictError

logger = logging.getLogger(__name__)

# Response-facing reads never load these fields
PUBLIC_PROJECTION = {"password_hash": 0, "refresh_token": 0}

IdentityId = Union[str, ObjectId]


def normalize_handle(value: Optional[str]) -> str:
    """Usernames and emails are unique case-insensitively, after trimming."""
    return (value or "").strip().lower()


def _as_object_id(value: IdentityId) -> Optional[ObjectId]:
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(str(value))
    except (InvalidId, TypeError):
        return None


def _now() -> datetime:
    return datetime.now(timezone.utc)


class IdentityStore:
    """Persistence for identities in the `users` collection."""

    def __init__(self, collection: AsyncIOMotorCollection):
        self.collection = collection

    async def find_by_username_or_email(self, username: Optional[str] = None, email: Optional[str] = None) -> Optional[Dict[str, Any]]:
        clauses = []
        if normalize_handle(username):
            clauses.append({"username": normalize_handle(username)})
        if normalize_handle(email):
            clauses.append({"email": normalize_handle(email)})
        if not clauses:
            return None
        return await self.collection.find_one({"$or": clauses})

    async def exists_username_or_email(self, username: str, email: str) -> bool:
        return await self.find_by_username_or_email(username, email) is not None

    async def find_by_id(self, identity_id: IdentityId) -> Optional[Dict[str, Any]]:
        oid = _as_object_id(identity_id)
        if oid is None:
            return None
        return await self.collection.find_one({"_id": oid})

    async def find_public_by_id(self, identity_id: IdentityId) -> Optional[Dict[str, Any]]:
        oid = _as_object_id(identity_id)
        if oid is None:
            return None
        return await self.collection.find_one({"_id": oid}, PUBLIC_PROJECTION)

    async def create(self, *, username: str, email: str, full_name: str, password_hash: str,
                     avatar: str, cover_image: str = "") -> ObjectId:
        now = _now()
        doc = {
            "username": normalize_handle(username),
            "email": normalize_handle(email),
            "full_name": full_name.strip(),
            "password_hash": password_hash,
            "avatar": avatar,
            "cover_image": cover_image or "",
            "created_at": now,
            "updated_at": now,
        }
        try:
            result = await self.collection.insert_one(doc)
        except DuplicateKeyError as e:
            # Lost a race with a concurrent registration for the same handle
            raise ConflictError("User with email or username already exists.") from e
        logger.info(f"Created identity {result.inserted_id}")
        return result.inserted_id

    async def set_password_hash(self, identity_id: IdentityId, password_hash: str) -> bool:
        result = await self.collection.update_one(
            {"_id": _as_object_id(identity_id)},
            {"$set": {"password_hash": password_hash, "updated_at": _now()}},
        )
        return result.matched_count == 1

    async def update_refresh_token(self, identity_id: IdentityId, token: Optional[str]) -> bool:
        """Overwrite the stored refresh token, or remove it when `token` is None."""
        if token is None:
            update = {"$unset": {"refresh_token": ""}, "$set": {"updated_at": _now()}}
        else:
            update = {"$set": {"refresh_token": token, "updated_at": _now()}}
        result = await self.collection.update_one({"_id": _as_object_id(identity_id)}, update)
        return result.matched_count == 1

    async def rotate_refresh_token(self, identity_id: IdentityId, expected: str, token: str) -> bool:
        """Replace the stored refresh token only if it still equals `expected`."""
        result = await self.collection.update_one(
            {"_id": _as_object_id(identity_id), "refresh_token": expected},
            {"$set": {"refresh_token": token, "updated_at": _now()}},
        )
        return result.matched_count == 1
