"""
Inbound media download from the WhatsApp Cloud API.

Two steps: resolve the media id to a short-lived URL on the Graph API, then
stream the file with the same bearer token. Type and size are checked before
anything is kept on disk.
"""
import hashlib
import logging
import os
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import httpx
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from incident_intake.core.config import settings
from incident_intake.core.exceptions import (
    MediaDownloadError,
    MediaTooLargeError,
    UnsupportedMediaTypeError,
)

from .meta_cloud import GRAPH_API_BASE

logger = logging.getLogger(__name__)

MIME_EXTENSIONS = {
    "image/jpeg": "jpg",
    "image/png": "png",
    "image/webp": "webp",
    "audio/ogg": "ogg",
    "audio/mpeg": "mp3",
    "audio/mp4": "m4a",
    "video/mp4": "mp4",
    "video/3gpp": "3gp",
    "application/pdf": "pdf",
    "text/plain": "txt",
}
ALLOWED_MIME_TYPES = frozenset(MIME_EXTENSIONS)

CHUNK_SIZE = 64 * 1024


def base_mime_type(mime_type: Optional[str]) -> str:
    """'audio/ogg; codecs=opus' -> 'audio/ogg'."""
    return (mime_type or "").split(";")[0].strip().lower()


def file_extension(mime_type: Optional[str]) -> str:
    return MIME_EXTENSIONS.get(base_mime_type(mime_type), "bin")


def is_supported_mime_type(mime_type: Optional[str]) -> bool:
    return base_mime_type(mime_type) in ALLOWED_MIME_TYPES


@dataclass(frozen=True)
class StoredMedia:
    local_path: str
    sha256: str
    size: int
    mime_type: str


class MediaFetcher:
    """
    Downloads WhatsApp media into a local directory.

    Args:
        access_token: Graph API bearer token
        api_version: Graph API version (v21.0)
        storage_dir: target directory, created on demand
        max_bytes: size ceiling; larger files are rejected, never truncated
        retry_wait: tenacity wait strategy for transport errors
        max_attempts: attempts per HTTP step
    """

    def __init__(
        self,
        access_token: Optional[str] = None,
        api_version: Optional[str] = None,
        storage_dir: Optional[str] = None,
        max_bytes: Optional[int] = None,
        retry_wait=None,
        max_attempts: int = 3,
        timeout: float = 30,
    ):
        self.access_token = access_token if access_token is not None else settings.WHATSAPP_ACCESS_TOKEN
        self.api_version = api_version or settings.META_GRAPH_API_VERSION
        self.storage_dir = Path(storage_dir or settings.MEDIA_STORAGE_DIR)
        self.max_bytes = max_bytes or settings.MEDIA_MAX_BYTES
        self.retry_wait = retry_wait or wait_exponential(multiplier=1, min=1, max=10)
        self.max_attempts = max_attempts
        self.timeout = timeout

    @property
    def headers(self) -> dict:
        return {"Authorization": f"Bearer {self.access_token}"}

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=self.retry_wait,
            retry=retry_if_exception_type(httpx.TransportError),
            reraise=True,
        )

    async def download(self, media_id: str, mime_type: Optional[str]) -> StoredMedia:
        """
        Fetch and store one media file.

        Raises:
            UnsupportedMediaTypeError: MIME type not allowed (no network call made)
            MediaTooLargeError: declared or streamed size above max_bytes
            MediaDownloadError: network/HTTP failure (retryable)
        """
        if not is_supported_mime_type(mime_type):
            raise UnsupportedMediaTypeError(mime_type or "unknown")

        try:
            info = await self._lookup(media_id)
            url = info.get("url")
            if not url:
                raise MediaDownloadError(
                    f"No download URL for media {media_id}", retryable=False, details=info
                )

            declared = info.get("file_size")
            if declared is not None and int(declared) > self.max_bytes:
                raise MediaTooLargeError(int(declared), self.max_bytes)

            stored = await self._fetch(media_id, url, info.get("mime_type") or mime_type)
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            raise MediaDownloadError(
                f"Media request failed with HTTP {status}",
                retryable=status >= 500 or status == 429,
                details={"media_id": media_id, "status": status},
                original_error=e,
            ) from e
        except httpx.HTTPError as e:
            raise MediaDownloadError(
                f"Media download failed: {e}",
                details={"media_id": media_id},
                original_error=e,
            ) from e

        logger.info(
            f"[Media] Stored {media_id} ({stored.size} bytes, {stored.mime_type}) at {stored.local_path}"
        )
        return stored

    async def _lookup(self, media_id: str) -> dict:
        """GET /{version}/{media_id} -> {url, mime_type, file_size, ...}"""
        from incident_intake.services.http_client import get_http_client

        client = await get_http_client()
        async for attempt in self._retrying():
            with attempt:
                response = await client.get(
                    f"{GRAPH_API_BASE}/{self.api_version}/{media_id}",
                    headers=self.headers,
                    timeout=self.timeout,
                )
                response.raise_for_status()
                return response.json()

    async def _fetch(self, media_id: str, url: str, mime_type: str) -> StoredMedia:
        from incident_intake.services.http_client import get_http_client

        client = await get_http_client()
        async for attempt in self._retrying():
            with attempt:
                async with client.stream("GET", url, headers=self.headers, timeout=self.timeout) as response:
                    response.raise_for_status()
                    return await self._write(media_id, response, mime_type)

    async def _write(self, media_id: str, response: httpx.Response, mime_type: str) -> StoredMedia:
        length = response.headers.get("content-length")
        if length and length.isdigit() and int(length) > self.max_bytes:
            raise MediaTooLargeError(int(length), self.max_bytes)

        self.storage_dir.mkdir(parents=True, exist_ok=True)
        filename = f"{media_id}_{int(time.time() * 1000)}.{file_extension(mime_type)}"
        path = self.storage_dir / filename
        partial = path.with_suffix(path.suffix + ".part")

        digest = hashlib.sha256()
        size = 0
        try:
            with open(partial, "wb") as fh:
                async for chunk in response.aiter_bytes(CHUNK_SIZE):
                    size += len(chunk)
                    if size > self.max_bytes:
                        raise MediaTooLargeError(size, self.max_bytes)
                    digest.update(chunk)
                    fh.write(chunk)
            os.replace(partial, path)
        finally:
            if partial.exists():
                partial.unlink()

        return StoredMedia(
            local_path=str(path),
            sha256=digest.hexdigest(),
            size=size,
            mime_type=base_mime_type(mime_type),
        )
