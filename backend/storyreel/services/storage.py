"""Artifact Store implementations.

Binary artifacts (scene images, scene videos, final videos) are addressed by
deterministic paths so that a retried upload overwrites the previous object
instead of creating a duplicate.

Backends:
- LocalArtifactStore: filesystem directory served by the API under /artifacts
- SupabaseArtifactStore: Supabase Storage REST API over httpx
"""

import asyncio
import logging
import uuid
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional
from urllib.parse import quote, unquote

import httpx

from storyreel.config import Settings
from storyreel.errors import StorageError

logger = logging.getLogger(__name__)


def scene_image_path(chat_id, scene_number: int, timestamp: int) -> str:
    return f"scene_{chat_id}_{scene_number}_{timestamp}.png"


def scene_video_path(user_id: str, chat_id, timestamp: int) -> str:
    return f"{user_id}/{chat_id}/scene_video_{timestamp}.mp4"


def final_video_path(user_id: str, chat_id, timestamp: int) -> str:
    return f"{user_id}/{chat_id}/final_video_{timestamp}.mp4"


class ArtifactStore(ABC):
    """Durable binary object storage with public URL issuance."""

    @abstractmethod
    async def upload(
        self,
        path: str,
        data: bytes,
        content_type: str,
        overwrite: bool = True,
    ) -> None:
        """Store ``data`` at ``path``; raises StorageError on failure."""
        ...

    @abstractmethod
    def public_url(self, path: str) -> str:
        """Public URL under which ``path`` is readable."""
        ...

    def local_path(self, url: str) -> Optional[Path]:
        """Filesystem path backing ``url`` when this store serves it locally."""
        return None

    async def close(self) -> None:
        return None


class LocalArtifactStore(ArtifactStore):
    """
    Filesystem-backed artifact store.

    Objects live at {root}/{path}; nested path segments (user/chat) become
    directories. Implements path traversal protection to prevent directory
    escape through crafted user or chat identifiers.
    """

    def __init__(self, root: str | Path, public_base_url: str):
        self.root = Path(root).resolve()
        self.root.mkdir(parents=True, exist_ok=True)
        self.public_base_url = public_base_url.rstrip("/")

    def resolve(self, path: str) -> Path:
        """
        Map an artifact path to a file under the root.

        Raises:
            StorageError: If the path escapes the root directory
        """
        target = (self.root / path).resolve()
        if not target.is_relative_to(self.root) or target == self.root:
            raise StorageError(f"Invalid artifact path: {path!r}")
        return target

    async def upload(
        self,
        path: str,
        data: bytes,
        content_type: str,
        overwrite: bool = True,
    ) -> None:
        target = self.resolve(path)
        if target.exists() and not overwrite:
            raise StorageError(f"Artifact already exists: {path}")
        try:
            await asyncio.to_thread(self._write, target, data)
        except OSError as e:
            raise StorageError(f"Failed to write artifact {path}: {e}") from e
        logger.info(f"Stored {len(data)} bytes ({content_type}) at {path}")

    @staticmethod
    def _write(target: Path, data: bytes) -> None:
        target.parent.mkdir(parents=True, exist_ok=True)
        # Write to a private sibling then rename so readers never see a partial
        # file; concurrent writers to one path each get their own sibling
        tmp = target.with_name(f"{target.name}.{uuid.uuid4().hex}.part")
        try:
            tmp.write_bytes(data)
            tmp.replace(target)
        finally:
            tmp.unlink(missing_ok=True)

    def public_url(self, path: str) -> str:
        self.resolve(path)
        return f"{self.public_base_url}/{quote(path)}"

    def local_path(self, url: str) -> Optional[Path]:
        prefix = self.public_base_url + "/"
        if not url.startswith(prefix):
            return None
        try:
            target = self.resolve(unquote(url[len(prefix):]))
        except StorageError:
            return None
        return target if target.is_file() else None


class SupabaseArtifactStore(ArtifactStore):
    """Supabase Storage bucket accessed through its REST API.

    The bucket must be public-readable; ensure_bucket() creates it or flips
    an existing private bucket to public.
    """

    def __init__(
        self,
        base_url: str,
        service_key: str,
        bucket: str,
        timeout: float = 120.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.bucket = bucket
        self._transport = transport
        self._service_key = service_key
        self._timeout = timeout
        self._client: Optional[httpx.AsyncClient] = None
        self._bucket_checked = False

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=f"{self.base_url}/storage/v1",
                headers={
                    "Authorization": f"Bearer {self._service_key}",
                    "apikey": self._service_key,
                },
                timeout=httpx.Timeout(self._timeout, connect=30.0),
                transport=self._transport,
            )
        return self._client

    async def ensure_bucket(self) -> None:
        """Create the bucket as public, or make an existing one public."""
        try:
            response = await self.client.get("/bucket")
            response.raise_for_status()
            buckets = {b.get("name"): b for b in response.json()}
            existing = buckets.get(self.bucket)

            if existing is None:
                logger.info(f"Creating public storage bucket {self.bucket}")
                response = await self.client.post(
                    "/bucket",
                    json={"id": self.bucket, "name": self.bucket, "public": True},
                )
                response.raise_for_status()
            elif not existing.get("public"):
                logger.info(f"Making storage bucket {self.bucket} public")
                response = await self.client.put(
                    f"/bucket/{self.bucket}",
                    json={"id": self.bucket, "name": self.bucket, "public": True},
                )
                response.raise_for_status()
        except (httpx.HTTPError, ValueError) as e:
            raise StorageError(f"Failed to prepare bucket {self.bucket}: {e}") from e

        self._bucket_checked = True

    async def upload(
        self,
        path: str,
        data: bytes,
        content_type: str,
        overwrite: bool = True,
    ) -> None:
        if not self._bucket_checked:
            await self.ensure_bucket()

        logger.info(
            "POST %s/storage/v1/object/%s/%s size=%d bytes",
            self.base_url, self.bucket, path, len(data),
        )
        try:
            response = await self.client.post(
                f"/object/{self.bucket}/{quote(path)}",
                content=data,
                headers={
                    "Content-Type": content_type,
                    "x-upsert": "true" if overwrite else "false",
                },
            )
        except httpx.HTTPError as e:
            raise StorageError(f"Upload of {path} failed: {e}") from e

        logger.info("  upload response: HTTP %d", response.status_code)
        if response.is_error:
            raise StorageError(
                f"Upload of {path} rejected: HTTP {response.status_code} {response.text[:300]}"
            )

    def public_url(self, path: str) -> str:
        return f"{self.base_url}/storage/v1/object/public/{self.bucket}/{quote(path)}"

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None


def get_artifact_store(settings: Settings) -> ArtifactStore:
    """Build the configured artifact store backend."""
    storage = settings.storage
    if storage.artifact_backend == "supabase":
        if not storage.supabase_url or not storage.supabase_service_key:
            raise ValueError(
                "Supabase artifact backend requires storage.supabase_url and "
                "storage.supabase_service_key"
            )
        return SupabaseArtifactStore(
            storage.supabase_url,
            storage.supabase_service_key,
            storage.bucket,
            timeout=settings.pipeline.http_timeout_seconds,
        )
    return LocalArtifactStore(storage.local_root, storage.public_base_url)
