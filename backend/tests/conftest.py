"""
Pytest configuration and fixtures for the backend tests.
"""
import os
import tempfile

# Settings are read at import time; provide them before the app is imported
_TMP_DIR = tempfile.mkdtemp(prefix="accounts-tests-")
os.environ.setdefault("ACCESS_TOKEN_SECRET", "test-access-secret")
os.environ.setdefault("REFRESH_TOKEN_SECRET", "test-refresh-secret")
os.environ.setdefault("PASSWORD_HASH_ROUNDS", "4")
os.environ.setdefault("LOG_DIR", os.path.join(_TMP_DIR, "logs"))
os.environ.setdefault("UPLOAD_TEMP_DIR", os.path.join(_TMP_DIR, "uploads"))
os.environ.setdefault("LOG_LEVEL", "WARNING")

from pathlib import Path
from typing import AsyncGenerator

import pytest
from faker import Faker
from httpx import ASGITransport, AsyncClient
from mongomock_motor import AsyncMongoMockClient

from main import app
from api.dependencies import get_identity_store, get_media_host
from db.identity_store import IdentityStore
from db.mongodb import ensure_user_indexes
from services.user_service import register_user

# Initialize Faker for test data generation
fake = Faker()


class StubMediaHost:
    """Stands in for the Cloudinary uploader; removes the local file like the real one."""

    def __init__(self):
        self.uploaded = []
        self.attempted = []
        self.fail = False

    async def upload(self, local_path):
        if not local_path:
            return None
        self.attempted.append(local_path)
        try:
            if self.fail:
                return None
            self.uploaded.append(local_path)
            return {"url": f"https://media.test/{Path(local_path).name}"}
        finally:
            if os.path.exists(local_path):
                os.remove(local_path)


@pytest.fixture
async def mongo_db():
    db = AsyncMongoMockClient()["accounts_test"]
    await ensure_user_indexes(db)
    return db


@pytest.fixture
def store(mongo_db) -> IdentityStore:
    return IdentityStore(mongo_db.users)


@pytest.fixture
def media() -> StubMediaHost:
    return StubMediaHost()


@pytest.fixture
async def async_client(store: IdentityStore, media: StubMediaHost) -> AsyncGenerator[AsyncClient, None]:
    """Async client against the ASGI app with store and media overridden."""
    app.dependency_overrides[get_identity_store] = lambda: store
    app.dependency_overrides[get_media_host] = lambda: media

    # https so Secure cookies are sent back on later requests
    async with AsyncClient(transport=ASGITransport(app=app), base_url="https://testserver") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def sample_user_data():
    """Sample registration fields for testing."""
    return {
        "fullName": fake.name(),
        "email": fake.unique.email(),
        "username": fake.unique.user_name(),
        "password": "testpassword123",
    }


@pytest.fixture
async def registered_user(store: IdentityStore, media: StubMediaHost, sample_user_data):
    """A registered identity plus the plaintext password it was created with."""
    user = await register_user(
        store,
        media,
        full_name=sample_user_data["fullName"],
        email=sample_user_data["email"],
        username=sample_user_data["username"],
        password=sample_user_data["password"],
        avatar_path=os.path.join(_TMP_DIR, "avatar.png"),
    )
    return {"user": user, "password": sample_user_data["password"]}
