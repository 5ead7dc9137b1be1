import hashlib
import logging
import os
import shutil
import time
import uuid
from pathlib import Path
from typing import Any, Dict, Optional

import aiohttp
from fastapi import UploadFile
from pydantic import BaseModel
from starlette.concurrency import run_in_threadpool

from core.config import Settings

logger = logging.getLogger(__name__)


class MediaHostConfig(BaseModel):
    cloud_name: Optional[str] = None
    api_key: Optional[str] = None
    api_secret: Optional[str] = None
    upload_url: str = "https://api.cloudinary.com/v1_1"
    timeout: int = 60

    @classmethod
    def from_settings(cls, settings: Settings) -> "MediaHostConfig":
        return cls(
            cloud_name=settings.CLOUDINARY_CLOUD_NAME,
            api_key=settings.CLOUDINARY_API_KEY,
            api_secret=settings.CLOUDINARY_API_SECRET,
            upload_url=settings.CLOUDINARY_UPLOAD_URL,
            timeout=settings.MEDIA_UPLOAD_TIMEOUT,
        )

    @property
    def configured(self) -> bool:
        return bool(self.cloud_name and self.api_key and self.api_secret)


def sign_params(params: Dict[str, Any], api_secret: str) -> str:
    """Cloudinary request signature: sha1 over the sorted `k=v` pairs plus the secret."""
    to_sign = "&".join(f"{k}={params[k]}" for k in sorted(params) if params[k] not in (None, ""))
    return hashlib.sha1(f"{to_sign}{api_secret}".encode("utf-8")).hexdigest()


def _remove_local_file(local_path: str) -> None:
    try:
        os.remove(local_path)
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning(f"Could not remove temp upload {local_path}: {e}")


class CloudinaryUploader:
    """Uploads local files to Cloudinary and returns the hosted asset description."""

    def __init__(self, config: MediaHostConfig):
        self.config = config

    @property
    def endpoint(self) -> str:
        return f"{self.config.upload_url.rstrip('/')}/{self.config.cloud_name}/auto/upload"

    def _signed_fields(self) -> Dict[str, Any]:
        params = {"timestamp": int(time.time())}
        params["signature"] = sign_params(params, self.config.api_secret)
        params["api_key"] = self.config.api_key
        return params

    async def _post(self, local_path: str) -> Dict[str, Any]:
        form = aiohttp.FormData()
        for key, value in self._signed_fields().items():
            form.add_field(key, str(value))
        timeout = aiohttp.ClientTimeout(total=self.config.timeout)
        with open(local_path, "rb") as fh:
            form.add_field("file", fh, filename=Path(local_path).name)
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.post(self.endpoint, data=form) as resp:
                    data = await resp.json(content_type=None)
                    if resp.status >= 400:
                        message = (data.get("error") or {}).get("message") if isinstance(data, dict) else data
                        raise RuntimeError(f"upload rejected with {resp.status}: {message}")
                    return data

    async def upload(self, local_path: Optional[str]) -> Optional[Dict[str, Any]]:
        """Upload `local_path`; returns None when there is nothing to upload or the upload fails.

        The local file is removed afterwards either way.
        """
        if not local_path:
            return None
        try:
            if not self.config.configured:
                logger.error("Media hosting is not configured; skipping upload")
                return None
            data = await self._post(local_path)
            if not isinstance(data, dict) or not (data.get("secure_url") or data.get("url")):
                logger.error(f"Media upload returned no url for {Path(local_path).name}")
                return None
            data["url"] = data.get("secure_url") or data["url"]
            logger.info(f"File uploaded to media host: {data['url']}")
            return data
        except Exception as e:
            logger.error(f"Error uploading {Path(local_path).name}: {e}")
            return None
        finally:
            _remove_local_file(local_path)


def discard_local_files(*paths: Optional[str]) -> None:
    for path in paths:
        if path:
            _remove_local_file(path)


def _copy_to_disk(upload: UploadFile, destination: Path) -> None:
    with destination.open("wb") as out:
        shutil.copyfileobj(upload.file, out)


async def save_upload_to_temp(upload: Optional[UploadFile], temp_dir: str) -> Optional[str]:
    """Spool a multipart upload to `temp_dir` and return its local path."""
    if upload is None or not upload.filename:
        return None
    directory = Path(temp_dir)
    directory.mkdir(parents=True, exist_ok=True)
    destination = directory / f"{uuid.uuid4().hex}-{Path(upload.filename).name}"
    await run_in_threadpool(_copy_to_disk, upload, destination)
    return str(destination)
