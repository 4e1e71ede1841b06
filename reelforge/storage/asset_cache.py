"""
Asset Cache
===========

Copies provider-hosted assets into the object store so the renderer never
fetches from a slow or expiring provider CDN.

``ensure_ready`` is idempotent and knows nothing about scenes: it takes an
Asset and returns an Asset. Download failures are retried, then reported by
returning the asset with ``ready=False`` and recording a ``CacheFailure``;
object store failures propagate because no smaller unit can absorb them.
"""

import asyncio
import base64
import binascii
import logging
from dataclasses import replace
from typing import Optional, Dict, List, Tuple
from urllib.parse import urlparse

import httpx

from ..core.config import CacheConfig
from ..core.exceptions import CacheFailure, StorageError, SecurityError, OperationTimeoutError
from ..core.security import validate_url, redact_api_key
from ..project.models import Asset, AssetOrigin
from .base import ObjectStore, content_key

logger = logging.getLogger(__name__)


def host_matches(host: str, pattern: str) -> bool:
    """Exact host or subdomain match; S3 patterns also cover regional endpoints."""
    pattern = pattern.lower().lstrip(".")
    if host == pattern or host.endswith("." + pattern):
        return True
    if pattern == "s3.amazonaws.com" and host.endswith(".amazonaws.com"):
        return any(label == "s3" or label.startswith("s3-") for label in host.split(".")[:-2])
    return False


class AssetCache:
    """Makes assets resolvable from fast storage."""

    def __init__(
        self,
        store: ObjectStore,
        config: Optional[CacheConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.store = store
        self.config = config or CacheConfig()
        self._transport = transport

        self._client: Optional[httpx.AsyncClient] = None
        self._client_lock = asyncio.Lock()

        # source uri -> store uri, for assets cached during this cache's lifetime
        self._cached: Dict[str, str] = {}
        self._failures: Dict[str, List[CacheFailure]] = {}
        self.downloads = 0

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def is_fast(self, uri: str) -> bool:
        """Whether the renderer can already fetch `uri` at low latency."""
        if self.store.is_resident(uri):
            return True
        host = (urlparse(uri).hostname or "").lower()
        return bool(host) and any(host_matches(host, pattern) for pattern in self.config.fast_hosts)

    async def ensure_ready(self, asset: Asset) -> Asset:
        """
        Return an equivalent asset whose URI lives in fast storage.

        Returns:
            The asset unchanged (marked ready) when already fast; a new,
            ready asset pointing into the store after a copy; or the asset
            with ``ready=False`` when every download attempt failed

        Raises:
            StorageError: If the object store rejects the upload
        """
        if self.is_fast(asset.uri):
            return asset if asset.ready else replace(asset, ready=True)

        if asset.uri in self._cached:
            return self._cached_copy(asset, self._cached[asset.uri], asset.content_type)

        timeout = self.config.timeout_for(asset.media_type)
        attempts = self.config.download_retries + 1
        last_error: Optional[Exception] = None

        for attempt in range(1, attempts + 1):
            try:
                data, content_type = await self._fetch(asset.uri, timeout)
                break
            except (httpx.HTTPError, OperationTimeoutError, SecurityError, CacheFailure) as e:
                last_error = e
                logger.warning(
                    f"Download of {asset.kind.value} asset failed "
                    f"(attempt {attempt}/{attempts}): {redact_api_key(str(e))}"
                )
                if attempt < attempts:
                    await asyncio.sleep(self.config.retry_delay)
        else:
            failure = CacheFailure(
                f"Could not cache {asset.kind.value} asset: {last_error}",
                uri=asset.uri,
                asset_kind=asset.kind.value,
                attempts=attempts,
            )
            self._failures.setdefault(asset.uri, []).append(failure)
            return replace(asset, ready=False)

        content_type = content_type or asset.content_type
        key = content_key(data, self.config.key_prefix, asset.kind.value, content_type, asset.media_type)
        try:
            uri = await asyncio.wait_for(self.store.put(data, key, content_type), timeout=timeout)
        except asyncio.TimeoutError:
            raise StorageError(f"Upload of {key} timed out after {timeout}s", key=key, backend=self.store.backend)

        self._cached[asset.uri] = uri
        logger.info(f"Cached {asset.kind.value} asset ({len(data)} bytes) as {key}")
        return self._cached_copy(asset, uri, content_type)

    def failures_for(self, uri: str) -> List[CacheFailure]:
        """Cache failures recorded for a source URI."""
        return list(self._failures.get(uri, []))

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _cached_copy(self, asset: Asset, uri: str, content_type: Optional[str]) -> Asset:
        return replace(
            asset,
            uri=uri,
            ready=True,
            origin=AssetOrigin.CACHED_EXTERNAL if asset.origin is AssetOrigin.GENERATED else asset.origin,
            content_type=content_type,
            source_uri=asset.source_uri or asset.uri,
        )

    async def _fetch(self, uri: str, timeout: float) -> Tuple[bytes, Optional[str]]:
        if uri.startswith("data:"):
            return self._decode_data_uri(uri)

        if self.config.block_private_hosts:
            validate_url(uri)

        client = await self._get_client()
        self.downloads += 1
        try:
            response = await asyncio.wait_for(client.get(uri, timeout=timeout), timeout=timeout)
        except asyncio.TimeoutError:
            raise OperationTimeoutError(
                f"Download exceeded {timeout}s",
                operation="asset_download",
                timeout_seconds=timeout,
            )
        response.raise_for_status()

        if not response.content:
            raise CacheFailure("Downloaded asset is empty", uri=uri)
        return response.content, response.headers.get("content-type")

    @staticmethod
    def _decode_data_uri(uri: str) -> Tuple[bytes, Optional[str]]:
        header, _, payload = uri.partition(",")
        content_type = header[len("data:"):].split(";")[0] or None
        try:
            if ";base64" in header:
                data = base64.b64decode(payload, validate=True)
            else:
                data = payload.encode("utf-8")
        except (binascii.Error, ValueError) as e:
            raise CacheFailure(f"Malformed data URI: {e}")
        if not data:
            raise CacheFailure("Data URI is empty")
        return data, content_type

    async def _get_client(self) -> httpx.AsyncClient:
        async with self._client_lock:
            if self._client is None:
                self._client = httpx.AsyncClient(follow_redirects=True, transport=self._transport)
            return self._client

    async def close(self) -> None:
        async with self._client_lock:
            if self._client:
                await self._client.aclose()
                self._client = None
