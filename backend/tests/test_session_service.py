"""
Unit tests for login, refresh rotation and logout against the identity store.
"""
import asyncio
import time
from unittest.mock import AsyncMock, patch

import pytest
from passlib.context import CryptContext

import core.security as security

from core.security import decode_refresh_token
from schemas.user_schema import TokenPair
from services.session_service import login_user, logout_user, refresh_session
from utils.errors import NotFoundError, UnauthorizedError, ValidationError


async def _stored_token(store, user_id):
    doc = await store.find_by_id(user_id)
    return doc.get("refresh_token")


class TestLogin:

    @pytest.mark.asyncio
    async def test_login_by_username_persists_returned_refresh_token(self, store, registered_user):
        user = registered_user["user"]
        result = await login_user(store, registered_user["password"], username=user.username)

        assert result.access_token and result.refresh_token
        assert await _stored_token(store, user.id) == result.refresh_token
        assert result.user.id == user.id

    @pytest.mark.asyncio
    async def test_login_by_email_is_case_insensitive(self, store, registered_user):
        user = registered_user["user"]
        result = await login_user(store, registered_user["password"], email=f"  {user.email.upper()} ")
        assert result.user.email == user.email

    @pytest.mark.asyncio
    async def test_login_profile_excludes_secrets(self, store, registered_user):
        user = registered_user["user"]
        result = await login_user(store, registered_user["password"], username=user.username)
        dumped = result.user.to_response()
        assert "password" not in dumped and "passwordHash" not in dumped
        assert "refreshToken" not in dumped

    @pytest.mark.asyncio
    async def test_login_requires_username_or_email(self, store):
        with pytest.raises(ValidationError):
            await login_user(store, "whatever", username="  ", email=None)

    @pytest.mark.asyncio
    async def test_login_unknown_user(self, store):
        with pytest.raises(NotFoundError):
            await login_user(store, "whatever", username="nobody")

    @pytest.mark.asyncio
    async def test_wrong_password_leaves_stored_token_untouched(self, store, registered_user):
        user = registered_user["user"]
        first = await login_user(store, registered_user["password"], username=user.username)

        with pytest.raises(UnauthorizedError):
            await login_user(store, "wrong-password", username=user.username)

        assert await _stored_token(store, user.id) == first.refresh_token

    @pytest.mark.asyncio
    async def test_identity_deleted_before_token_write(self, store, registered_user):
        user = registered_user["user"]
        with patch.object(store, "update_refresh_token", AsyncMock(return_value=False)):
            with pytest.raises(NotFoundError):
                await login_user(store, registered_user["password"], username=user.username)

    @pytest.mark.asyncio
    async def test_password_check_does_not_block_event_loop(self, store, registered_user):
        user = registered_user["user"]
        slow_context = CryptContext(schemes=["bcrypt"], bcrypt__rounds=12)
        await store.set_password_hash(user.id, slow_context.hash("slow-password"))

        gaps = []
        done = asyncio.Event()

        async def ticker():
            last = time.perf_counter()
            while not done.is_set():
                await asyncio.sleep(0.001)
                now = time.perf_counter()
                gaps.append(now - last)
                last = now

        task = asyncio.create_task(ticker())
        try:
            with patch.object(security, "pwd_context", slow_context):
                for _ in range(3):
                    await login_user(store, "slow-password", username=user.username)
        finally:
            done.set()
            await task

        assert gaps
        assert max(gaps) < 0.1

    @pytest.mark.asyncio
    async def test_second_login_invalidates_first_refresh_token(self, store, registered_user):
        user = registered_user["user"]
        first = await login_user(store, registered_user["password"], username=user.username)
        await login_user(store, registered_user["password"], username=user.username)

        with pytest.raises(UnauthorizedError) as exc_info:
            await refresh_session(store, first.refresh_token)
        assert exc_info.value.message == "Refresh token is expired or used"


class TestRefresh:

    @pytest.mark.asyncio
    async def test_refresh_rotates_and_is_single_use(self, store, registered_user):
        user = registered_user["user"]
        t1 = (await login_user(store, registered_user["password"], username=user.username)).refresh_token

        pair = await refresh_session(store, t1)
        assert pair.refresh_token != t1
        assert await _stored_token(store, user.id) == pair.refresh_token
        assert decode_refresh_token(pair.refresh_token)["id"] == user.id

        with pytest.raises(UnauthorizedError) as exc_info:
            await refresh_session(store, t1)
        assert exc_info.value.message == "Refresh token is expired or used"
        assert await _stored_token(store, user.id) == pair.refresh_token

    @pytest.mark.asyncio
    async def test_missing_token(self, store):
        with pytest.raises(UnauthorizedError) as exc_info:
            await refresh_session(store, None)
        assert exc_info.value.message == "Unauthorized request"

    @pytest.mark.asyncio
    async def test_forged_token(self, store, registered_user):
        with pytest.raises(UnauthorizedError) as exc_info:
            await refresh_session(store, "not.a.token")
        assert exc_info.value.message == "Invalid refresh token"

    @pytest.mark.asyncio
    async def test_access_token_is_not_a_refresh_token(self, store, registered_user):
        user = registered_user["user"]
        result = await login_user(store, registered_user["password"], username=user.username)
        with pytest.raises(UnauthorizedError) as exc_info:
            await refresh_session(store, result.access_token)
        assert exc_info.value.message == "Invalid refresh token"

    @pytest.mark.asyncio
    async def test_token_of_deleted_identity(self, store, registered_user):
        user = registered_user["user"]
        result = await login_user(store, registered_user["password"], username=user.username)
        await store.collection.delete_one({"_id": (await store.find_by_id(user.id))["_id"]})

        with pytest.raises(UnauthorizedError) as exc_info:
            await refresh_session(store, result.refresh_token)
        assert exc_info.value.message == "Invalid refresh token"

    @pytest.mark.asyncio
    async def test_concurrent_refresh_with_same_token_has_one_winner(self, store, registered_user):
        user = registered_user["user"]
        t1 = (await login_user(store, registered_user["password"], username=user.username)).refresh_token

        results = await asyncio.gather(
            refresh_session(store, t1),
            refresh_session(store, t1),
            return_exceptions=True,
        )

        winners = [r for r in results if isinstance(r, TokenPair)]
        losers = [r for r in results if isinstance(r, UnauthorizedError)]
        assert len(winners) == 1 and len(losers) == 1
        assert await _stored_token(store, user.id) == winners[0].refresh_token

    @pytest.mark.asyncio
    async def test_rotation_is_conditional_on_expected_token(self, store, registered_user):
        user = registered_user["user"]
        t1 = (await login_user(store, registered_user["password"], username=user.username)).refresh_token

        assert not await store.rotate_refresh_token(user.id, "some-other-token", "new")
        assert await _stored_token(store, user.id) == t1
        assert await store.rotate_refresh_token(user.id, t1, "new")
        assert await _stored_token(store, user.id) == "new"


class TestLogout:

    @pytest.mark.asyncio
    async def test_logout_clears_token_and_blocks_refresh(self, store, registered_user):
        user = registered_user["user"]
        result = await login_user(store, registered_user["password"], username=user.username)

        await logout_user(store, user.id)

        doc = await store.find_by_id(user.id)
        assert "refresh_token" not in doc
        with pytest.raises(UnauthorizedError) as exc_info:
            await refresh_session(store, result.refresh_token)
        assert exc_info.value.message == "Refresh token is expired or used"

    @pytest.mark.asyncio
    async def test_login_after_logout_starts_new_session(self, store, registered_user):
        user = registered_user["user"]
        await login_user(store, registered_user["password"], username=user.username)
        await logout_user(store, user.id)

        result = await login_user(store, registered_user["password"], username=user.username)
        pair = await refresh_session(store, result.refresh_token)
        assert await _stored_token(store, user.id) == pair.refresh_token
