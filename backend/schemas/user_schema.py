from datetime import datetime
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from typing import Any, Mapping, Optional


class CamelModel(BaseModel):
    """Wire models speak camelCase; Python code uses snake_case."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class User(CamelModel):
    """Public profile: never carries the password hash or refresh token."""

    id: str
    username: str
    email: str
    full_name: str
    avatar: str
    cover_image: str = ""
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_document(cls, doc: Mapping[str, Any]) -> "User":
        return cls(
            id=str(doc["_id"]),
            username=doc.get("username", ""),
            email=doc.get("email", ""),
            full_name=doc.get("full_name", ""),
            avatar=doc.get("avatar", ""),
            cover_image=doc.get("cover_image") or "",
            created_at=doc.get("created_at"),
            updated_at=doc.get("updated_at"),
        )

    def to_response(self) -> dict:
        return self.model_dump(by_alias=True, mode="json")


class UserLogin(CamelModel):
    username: Optional[str] = None
    email: Optional[str] = None
    password: str


class RefreshTokenRequest(CamelModel):
    refresh_token: Optional[str] = None


class ChangePasswordRequest(CamelModel):
    old_password: str = Field(min_length=1)
    new_password: str = Field(min_length=1)


class TokenPair(CamelModel):
    access_token: str
    refresh_token: str


class LoginResult(TokenPair):
    user: User
