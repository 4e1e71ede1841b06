"""
Storage Module
==============

Object stores and the asset cache that fills them.
"""

from typing import Optional

from ..core.config import StorageConfig
from .base import ObjectStore, content_key, extension_for
from .local import LocalObjectStore
from .s3 import S3ObjectStore
from .asset_cache import AssetCache


def create_store(config: Optional[StorageConfig] = None) -> ObjectStore:
    """Build the object store selected by ``storage.backend``."""
    config = config or StorageConfig()
    if config.backend == "s3":
        return S3ObjectStore.from_config(config)
    return LocalObjectStore(config.local_path)


__all__ = [
    "ObjectStore",
    "LocalObjectStore",
    "S3ObjectStore",
    "AssetCache",
    "content_key",
    "extension_for",
    "create_store",
]
