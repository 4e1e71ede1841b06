"""
Object Store
============

Contract for the fast, renderer-co-located storage every asset must live in
before rendering. Keys are content-addressed, so writing the same bytes twice
yields the same URI.
"""

import hashlib
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional, Union

import aiofiles

logger = logging.getLogger(__name__)


CONTENT_TYPE_EXTENSIONS = {
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/png": "png",
    "image/webp": "webp",
    "image/gif": "gif",
    "video/mp4": "mp4",
    "video/webm": "webm",
    "video/quicktime": "mov",
    "audio/mpeg": "mp3",
    "audio/mp3": "mp3",
    "audio/wav": "wav",
    "audio/x-wav": "wav",
    "audio/wave": "wav",
    "audio/ogg": "ogg",
    "audio/aac": "aac",
    "audio/mp4": "m4a",
}

DEFAULT_EXTENSIONS = {
    "image": "jpg",
    "video": "mp4",
    "audio": "mp3",
}


def extension_for(content_type: Optional[str], media_type: str) -> str:
    """File extension for a content type, falling back to the media type's default."""
    if content_type:
        base = content_type.split(";")[0].strip().lower()
        if base in CONTENT_TYPE_EXTENSIONS:
            return CONTENT_TYPE_EXTENSIONS[base]
    return DEFAULT_EXTENSIONS.get(media_type, "bin")


def content_key(
    data: bytes,
    prefix: str,
    folder: str,
    content_type: Optional[str] = None,
    media_type: str = "image",
) -> str:
    """Derive a content-addressed object key: ``<prefix>/<folder>/<sha256[:32]>.<ext>``."""
    digest = hashlib.sha256(data).hexdigest()[:32]
    return f"{prefix.strip('/')}/{folder}/{digest}.{extension_for(content_type, media_type)}"


class ObjectStore(ABC):
    """Async object store addressed by key on write and by URI on read."""

    backend = "abstract"

    @abstractmethod
    async def put(self, data: bytes, key: str, content_type: Optional[str] = None) -> str:
        """Store bytes under `key` and return the object's URI."""

    @abstractmethod
    async def get(self, uri: str) -> bytes:
        """Read an object this store owns."""

    @abstractmethod
    def uri_for(self, key: str) -> str:
        """URI the renderer will use for `key`."""

    @abstractmethod
    def is_resident(self, uri: str) -> bool:
        """Whether `uri` already points into this store."""

    @abstractmethod
    async def exists(self, key: str) -> bool:
        """Whether an object is stored under `key`."""

    async def put_file(self, path: Union[str, Path], key: str, content_type: Optional[str] = None) -> str:
        """Upload a local file."""
        async with aiofiles.open(path, "rb") as f:
            data = await f.read()
        return await self.put(data, key, content_type)

    async def download_to(self, uri: str, path: Union[str, Path]) -> Path:
        """Copy an object to a local file."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        data = await self.get(uri)
        async with aiofiles.open(path, "wb") as f:
            await f.write(data)
        return path

    async def close(self) -> None:
        """Release any client resources."""
