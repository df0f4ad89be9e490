"""Durable object storage for finished videos and reference images."""

import asyncio
import logging
import secrets
import time
from abc import ABC, abstractmethod
from functools import partial
from typing import Dict, Tuple

from supabase import Client

from videogen.errors import StorageError

logger = logging.getLogger(__name__)


def video_key(job_id: str, remote_job_id: str, ext: str = "mp4") -> str:
    """Deterministic key: repeated migrations of one job land on one object."""
    return f"{job_id}/{remote_job_id}.{ext}"


def reference_image_key(filename: str, prefix: str = "uploads/") -> str:
    """Fresh random key for every reference image upload."""
    ext = filename.rsplit(".", 1)[1].lower() if "." in filename else "png"
    token = secrets.token_hex(4)
    return f"{prefix}{int(time.time() * 1000)}-{token}.{ext}"


class ArtifactStore(ABC):
    """Abstract interface for binary storage (Supabase Storage or in-memory)."""

    @abstractmethod
    async def put_video(
        self, key: str, data: bytes, content_type: str = "video/mp4"
    ) -> str:
        """Upload (overwriting) a finished video. Returns its public URL."""
        ...

    @abstractmethod
    async def put_reference_image(
        self, key: str, data: bytes, content_type: str
    ) -> str:
        """Upload a reference image. Fails if the key already exists."""
        ...


class SupabaseArtifactStore(ArtifactStore):
    """Supabase Storage backend: one bucket for videos, one for images."""

    def __init__(self, client: Client, video_bucket: str, image_bucket: str):
        self._client = client
        self._video_bucket = video_bucket
        self._image_bucket = image_bucket

    def _upload(
        self, bucket: str, key: str, data: bytes, content_type: str, upsert: bool
    ) -> str:
        bucket_api = self._client.storage.from_(bucket)
        try:
            bucket_api.upload(
                key,
                data,
                file_options={
                    "content-type": content_type,
                    "upsert": "true" if upsert else "false",
                },
            )
        except Exception as exc:
            raise StorageError(f"Failed to upload {bucket}/{key}: {exc}") from exc
        return bucket_api.get_public_url(key)

    async def _run(self, *args) -> str:
        loop = asyncio.get_event_loop()
        return await loop.run_in_executor(None, partial(self._upload, *args))

    async def put_video(
        self, key: str, data: bytes, content_type: str = "video/mp4"
    ) -> str:
        logger.info("Uploading %d bytes to %s/%s", len(data), self._video_bucket, key)
        return await self._run(self._video_bucket, key, data, content_type, True)

    async def put_reference_image(
        self, key: str, data: bytes, content_type: str
    ) -> str:
        logger.info("Uploading reference image to %s/%s", self._image_bucket, key)
        return await self._run(self._image_bucket, key, data, content_type, False)


class InMemoryArtifactStore(ArtifactStore):
    """Dict-backed store for local development and tests.

    Counts uploads so callers can check that migration happened once.
    """

    def __init__(self, base_url: str = "memory://storage"):
        self._base_url = base_url.rstrip("/")
        self.objects: Dict[Tuple[str, str], Tuple[bytes, str]] = {}
        self.video_uploads = 0
        self.image_uploads = 0

    def _url(self, bucket: str, key: str) -> str:
        return f"{self._base_url}/{bucket}/{key}"

    async def put_video(
        self, key: str, data: bytes, content_type: str = "video/mp4"
    ) -> str:
        self.objects[("videos", key)] = (data, content_type)
        self.video_uploads += 1
        return self._url("videos", key)

    async def put_reference_image(
        self, key: str, data: bytes, content_type: str
    ) -> str:
        if ("images", key) in self.objects:
            raise StorageError(f"Object already exists: images/{key}")
        self.objects[("images", key)] = (data, content_type)
        self.image_uploads += 1
        return self._url("images", key)
