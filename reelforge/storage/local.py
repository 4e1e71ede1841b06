"""
Local Object Store
==================

Filesystem-backed store for development and tests. Objects are addressed by
``file://`` URIs below a single root directory.
"""

import logging
from pathlib import Path
from typing import Optional, Union
from urllib.parse import urlparse, unquote

import aiofiles
import aiofiles.os

from ..core.exceptions import StorageError, SecurityError
from ..core.security import PathValidator
from .base import ObjectStore

logger = logging.getLogger(__name__)


class LocalObjectStore(ObjectStore):
    """Object store rooted at a local directory."""

    backend = "local"

    def __init__(self, root: Union[str, Path] = "./output/store"):
        self._validator = PathValidator(root)
        self.root = self._validator.root
        self._root_uri = self.root.as_uri().rstrip("/") + "/"

    def _path_for_key(self, key: str) -> Path:
        try:
            return self._validator.validate(key.lstrip("/"))
        except SecurityError as e:
            raise StorageError(f"Invalid object key: {e.message}", key=key, backend=self.backend)

    def _path_for_uri(self, uri: str) -> Path:
        if not self.is_resident(uri):
            raise StorageError(f"URI is not in this store: {uri[:120]}", backend=self.backend)
        return self._path_for_key(str(Path(unquote(urlparse(uri).path)).relative_to(self.root)))

    def uri_for(self, key: str) -> str:
        return self._path_for_key(key).as_uri()

    def is_resident(self, uri: str) -> bool:
        return bool(uri) and uri.startswith(self._root_uri)

    async def exists(self, key: str) -> bool:
        return await aiofiles.os.path.exists(self._path_for_key(key))

    async def put(self, data: bytes, key: str, content_type: Optional[str] = None) -> str:
        path = self._path_for_key(key)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            async with aiofiles.open(path, "wb") as f:
                await f.write(data)
        except OSError as e:
            raise StorageError(f"Failed to write object: {e}", key=key, backend=self.backend)

        logger.debug(f"Stored {len(data)} bytes at {path}")
        return path.as_uri()

    async def get(self, uri: str) -> bytes:
        path = self._path_for_uri(uri)
        try:
            async with aiofiles.open(path, "rb") as f:
                return await f.read()
        except FileNotFoundError:
            raise StorageError(f"Object not found: {path.name}", key=str(path), backend=self.backend)
        except OSError as e:
            raise StorageError(f"Failed to read object: {e}", key=str(path), backend=self.backend)
