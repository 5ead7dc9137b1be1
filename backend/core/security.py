from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Mapping
import uuid
from jose import ExpiredSignatureError, JWTError, jwt
from passlib.context import CryptContext
from core.config import settings
# Password hashing
pwd_context = CryptContext(
    schemes=["bcrypt"],
    deprecated="auto",
    bcrypt__rounds=settings.PASSWORD_HASH_ROUNDS,
)

# Registered claims added by create_token and stripped again by decode_token
_REGISTERED_CLAIMS = ("exp", "iat", "jti")


class InvalidTokenError(Exception):
    """Raised when a presented token is malformed, forged or expired."""

    def __init__(self, message: str = "Invalid token", expired: bool = False):
        super().__init__(message)
        self.message = message
        self.expired = expired


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a password against its hash"""
    return pwd_context.verify(plain_password, hashed_password)

def get_password_hash(password: str) -> str:
    """Generate password hash"""
    return pwd_context.hash(password)

def create_token(claims: Mapping[str, Any], secret: str, ttl: timedelta) -> str:
    """Sign `claims` with `secret`, expiring `ttl` from now."""
    now = datetime.now(timezone.utc)
    to_encode = dict(claims)
    # jti keeps two tokens minted in the same second distinct
    to_encode.update({"iat": now, "exp": now + ttl, "jti": uuid.uuid4().hex})
    return jwt.encode(to_encode, secret, algorithm=settings.ALGORITHM)

def decode_token(token: str, secret: str) -> Dict[str, Any]:
    """Check signature and expiry of `token` against `secret` and return its claims.

    The caller picks the secret for the token's purpose; nothing in the token
    itself says whether it is an access or a refresh token.
    """
    if not token or not isinstance(token, str):
        raise InvalidTokenError("Token is missing")
    try:
        payload = jwt.decode(token, secret, algorithms=[settings.ALGORITHM])
    except ExpiredSignatureError as e:
        raise InvalidTokenError("Token has expired", expired=True) from e
    except JWTError as e:
        raise InvalidTokenError("Invalid token") from e
    if not payload.get("id"):
        raise InvalidTokenError("Invalid token")
    return {k: v for k, v in payload.items() if k not in _REGISTERED_CLAIMS}

def identity_claims(identity: Mapping[str, Any]) -> Dict[str, Any]:
    """Public claims embedded in both token kinds."""
    return {
        "id": str(identity["_id"]),
        "email": identity.get("email"),
        "username": identity.get("username"),
        "fullName": identity.get("full_name"),
    }

def create_access_token(identity: Mapping[str, Any]) -> str:
    """Create JWT access token"""
    return create_token(
        identity_claims(identity),
        settings.ACCESS_TOKEN_SECRET,
        timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES),
    )

def create_refresh_token(identity: Mapping[str, Any]) -> str:
    """Create JWT refresh token"""
    return create_token(
        identity_claims(identity),
        settings.REFRESH_TOKEN_SECRET,
        timedelta(days=settings.REFRESH_TOKEN_EXPIRE_DAYS),
    )

def decode_access_token(token: str) -> Dict[str, Any]:
    return decode_token(token, settings.ACCESS_TOKEN_SECRET)

def decode_refresh_token(token: str) -> Dict[str, Any]:
    return decode_token(token, settings.REFRESH_TOKEN_SECRET)
