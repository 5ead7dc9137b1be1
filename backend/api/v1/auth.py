from typing import Optional
from fastapi import APIRouter, Depends, Request
from api.dependencies import (
    ACCESS_TOKEN_COOKIE,
    REFRESH_TOKEN_COOKIE,
    get_current_user,
    get_identity_store,
)
from core.config import settings
from db.identity_store import IdentityStore
from schemas.user_schema import RefreshTokenRequest, TokenPair, User as UserSchema, UserLogin
from services.session_service import login_user, logout_user, refresh_session
from utils.responses import api_json

router = APIRouter()

def _cookie_options() -> dict:
    return {"httponly": True, "secure": settings.COOKIE_SECURE}

def _set_token_cookies(response, tokens: TokenPair) -> None:
    response.set_cookie(ACCESS_TOKEN_COOKIE, tokens.access_token, **_cookie_options())
    response.set_cookie(REFRESH_TOKEN_COOKIE, tokens.refresh_token, **_cookie_options())

@router.post("/login")
async def login(credentials: UserLogin, store: IdentityStore = Depends(get_identity_store)):
    result = await login_user(store, credentials.password, username=credentials.username, email=credentials.email)
    response = api_json(200, result.model_dump(by_alias=True, mode="json"), "User logged in successfully")
    _set_token_cookies(response, result)
    return response

@router.post("/logout")
async def logout(current_user: UserSchema = Depends(get_current_user), store: IdentityStore = Depends(get_identity_store)):
    await logout_user(store, current_user.id)
    response = api_json(200, {}, "User logged out")
    response.delete_cookie(ACCESS_TOKEN_COOKIE, **_cookie_options())
    response.delete_cookie(REFRESH_TOKEN_COOKIE, **_cookie_options())
    return response

@router.post("/refresh-token")
async def refresh_token(request: Request, payload: Optional[RefreshTokenRequest] = None, store: IdentityStore = Depends(get_identity_store)):
    incoming = request.cookies.get(REFRESH_TOKEN_COOKIE) or (payload.refresh_token if payload else None)
    tokens = await refresh_session(store, incoming)
    response = api_json(200, tokens.model_dump(by_alias=True), "Access token refreshed")
    _set_token_cookies(response, tokens)
    return response
