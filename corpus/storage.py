"""Object storage for recorded audio (S3-compatible).

The moderation pipelines only need two calls: ``upload`` for a freshly
recorded file and ``delete`` for best-effort cleanup. Both run the blocking
boto3 client in a worker thread under a hard timeout so a slow store turns
into a ``StorageError`` instead of a hung request.
"""
from __future__ import annotations

import asyncio
import logging
import uuid
import wave
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Protocol

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from .config import StorageSettings, settings
from .errors import StorageError

logger = logging.getLogger(__name__)


@dataclass
class StoredObject:
    """Result of an upload."""
    url: str
    object_id: str
    duration: float | None = None


class ObjectStorage(Protocol):
    async def upload(self, local_path: str | Path) -> StoredObject:
        ...

    async def delete(self, object_id: str) -> None:
        ...

    def object_id_from_url(self, url: str) -> str | None:
        ...


def wav_duration(path: str | Path) -> float | None:
    """Duration in seconds of a WAV file, or None for other formats."""
    try:
        with wave.open(str(path), "rb") as wf:
            frames = wf.getnframes()
            rate = wf.getframerate()
    except (wave.Error, EOFError, OSError):
        return None
    if rate <= 0:
        return None
    return frames / float(rate)


class S3ObjectStorage:
    """Audio storage backed by an S3 bucket."""

    def __init__(self, config: StorageSettings | None = None, client=None):
        self.config = config or settings.storage
        self._client = client or boto3.client(
            "s3",
            endpoint_url=self.config.endpoint_url,
            region_name=self.config.region,
            aws_access_key_id=self.config.access_key,
            aws_secret_access_key=self.config.secret_key,
            config=Config(
                signature_version="s3v4",
                connect_timeout=self.config.timeout_seconds,
                read_timeout=self.config.timeout_seconds,
                retries={"max_attempts": 1},
            ),
        )

    @property
    def base_url(self) -> str:
        if self.config.public_base_url:
            return self.config.public_base_url.rstrip("/")
        if self.config.endpoint_url:
            return f"{self.config.endpoint_url.rstrip('/')}/{self.config.bucket}"
        return f"https://{self.config.bucket}.s3.{self.config.region}.amazonaws.com"

    def object_id_from_url(self, url: str) -> str | None:
        prefix = self.base_url + "/"
        if url and url.startswith(prefix):
            return url[len(prefix):]
        return None

    async def _run(self, func, *args, **kwargs):
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(func, *args, **kwargs),
                timeout=self.config.timeout_seconds,
            )
        except asyncio.TimeoutError as e:
            raise StorageError(f"Object storage timed out after {self.config.timeout_seconds}s") from e
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"Object storage request failed: {e}") from e

    async def upload(self, local_path: str | Path) -> StoredObject:
        """Upload a local audio file and return its public location."""
        path = Path(local_path)
        if not path.is_file():
            raise StorageError(f"Audio file not found: {path}")

        key = f"{self.config.folder}/{uuid.uuid4().hex}-{path.name}"

        @retry(
            stop=stop_after_attempt(self.config.upload_attempts),
            wait=wait_exponential(multiplier=1, min=1, max=8),
            retry=retry_if_exception_type(StorageError),
            reraise=True,
        )
        async def _put() -> None:
            await self._run(
                self._client.upload_file,
                str(path),
                self.config.bucket,
                key,
                ExtraArgs={"ContentType": "audio/wav"},
            )

        await _put()
        logger.info(f"Uploaded audio {path.name} as {key}")
        return StoredObject(
            url=f"{self.base_url}/{key}",
            object_id=key,
            duration=wav_duration(path),
        )

    async def delete(self, object_id: str) -> None:
        """Delete an object; raises StorageError on failure."""
        await self._run(self._client.delete_object, Bucket=self.config.bucket, Key=object_id)
        logger.info(f"Deleted audio object {object_id}")


@lru_cache(maxsize=1)
def get_object_storage() -> ObjectStorage:
    """Cached storage client; overridable as a FastAPI dependency."""
    return S3ObjectStorage()
