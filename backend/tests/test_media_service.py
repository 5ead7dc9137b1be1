"""
Unit tests for the media host uploader and temp-file handling.
"""
import hashlib
import io
from unittest.mock import AsyncMock, patch

import pytest
from fastapi import UploadFile

from services.media_service import CloudinaryUploader, MediaHostConfig, save_upload_to_temp, sign_params

CONFIG = MediaHostConfig(cloud_name="demo", api_key="key", api_secret="shh")


@pytest.fixture
def local_file(tmp_path):
    path = tmp_path / "avatar.png"
    path.write_bytes(b"image bytes")
    return path


def test_sign_params_sorts_and_appends_secret():
    expected = hashlib.sha1(b"public_id=sample&timestamp=1315060510shh").hexdigest()
    assert sign_params({"timestamp": 1315060510, "public_id": "sample"}, "shh") == expected


def test_endpoint_uses_cloud_name():
    assert CloudinaryUploader(CONFIG).endpoint == "https://api.cloudinary.com/v1_1/demo/auto/upload"


class TestUpload:

    @pytest.mark.asyncio
    async def test_success_returns_url_and_removes_file(self, local_file):
        uploader = CloudinaryUploader(CONFIG)
        with patch.object(uploader, "_post", AsyncMock(return_value={"secure_url": "https://cdn/x.png", "url": "http://cdn/x.png"})):
            result = await uploader.upload(str(local_file))
        assert result["url"] == "https://cdn/x.png"
        assert not local_file.exists()

    @pytest.mark.asyncio
    async def test_failure_returns_none_and_removes_file(self, local_file):
        uploader = CloudinaryUploader(CONFIG)
        with patch.object(uploader, "_post", AsyncMock(side_effect=RuntimeError("boom"))):
            assert await uploader.upload(str(local_file)) is None
        assert not local_file.exists()

    @pytest.mark.asyncio
    async def test_response_without_url_is_a_failure(self, local_file):
        uploader = CloudinaryUploader(CONFIG)
        with patch.object(uploader, "_post", AsyncMock(return_value={"error": {"message": "bad"}})):
            assert await uploader.upload(str(local_file)) is None

    @pytest.mark.asyncio
    async def test_unconfigured_host_does_not_call_out(self, local_file):
        uploader = CloudinaryUploader(MediaHostConfig())
        with patch.object(uploader, "_post", AsyncMock()) as post:
            assert await uploader.upload(str(local_file)) is None
        post.assert_not_called()
        assert not local_file.exists()

    @pytest.mark.asyncio
    async def test_nothing_to_upload(self):
        assert await CloudinaryUploader(CONFIG).upload(None) is None


@pytest.mark.asyncio
async def test_save_upload_to_temp(tmp_path):
    upload = UploadFile(file=io.BytesIO(b"hello"), filename="../evil/avatar.png")
    path = await save_upload_to_temp(upload, str(tmp_path / "temp"))
    assert path.startswith(str(tmp_path / "temp"))
    assert path.endswith("-avatar.png")
    with open(path, "rb") as fh:
        assert fh.read() == b"hello"


@pytest.mark.asyncio
async def test_save_upload_without_file(tmp_path):
    assert await save_upload_to_temp(None, str(tmp_path)) is None
