"""
S3 Object Store
===============

S3-backed store co-located with the remote render function. boto3 is
blocking, so every call runs in a worker thread under an explicit timeout.
"""

import asyncio
import logging
from pathlib import Path
from typing import Optional, Union
from urllib.parse import urlparse, unquote

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from ..core.config import StorageConfig
from ..core.exceptions import StorageError, OperationTimeoutError
from .base import ObjectStore

logger = logging.getLogger(__name__)


def boto3_config() -> BotoConfig:
    """Client config with retries for transient S3 errors."""
    return BotoConfig(
        retries={"max_attempts": 10, "mode": "standard"},
        connect_timeout=10,
        read_timeout=300,
    )


class S3ObjectStore(ObjectStore):
    """Object store backed by one S3 bucket."""

    backend = "s3"

    def __init__(
        self,
        bucket: str,
        region: str = "us-east-1",
        public_base_url: Optional[str] = None,
        operation_timeout: float = 120.0,
        client=None,
    ):
        self.bucket = bucket
        self.region = region
        self.base_url = (public_base_url or f"https://{bucket}.s3.{region}.amazonaws.com").rstrip("/")
        self.operation_timeout = operation_timeout
        self._client = client

    @classmethod
    def from_config(cls, config: StorageConfig) -> "S3ObjectStore":
        return cls(
            bucket=config.bucket,
            region=config.region,
            public_base_url=config.public_base_url,
            operation_timeout=config.operation_timeout,
        )

    @property
    def client(self):
        if self._client is None:
            self._client = boto3.client("s3", region_name=self.region, config=boto3_config())
        return self._client

    def uri_for(self, key: str) -> str:
        return f"{self.base_url}/{key.lstrip('/')}"

    def is_resident(self, uri: str) -> bool:
        if not uri:
            return False
        return (
            uri.startswith(self.base_url + "/")
            or uri.startswith(f"s3://{self.bucket}/")
            or uri.startswith(f"https://{self.bucket}.s3.amazonaws.com/")
            or uri.startswith(f"https://s3.{self.region}.amazonaws.com/{self.bucket}/")
        )

    def key_for(self, uri: str) -> str:
        """Object key addressed by a URI this store owns."""
        if not self.is_resident(uri):
            raise StorageError(f"URI is not in bucket {self.bucket}: {uri[:120]}", backend=self.backend)
        if uri.startswith(self.base_url + "/"):
            return unquote(uri[len(self.base_url) + 1:].split("?")[0])
        if uri.startswith("s3://"):
            return uri[len(f"s3://{self.bucket}/"):]
        path = unquote(urlparse(uri).path).lstrip("/")
        if uri.startswith(f"https://s3.{self.region}.amazonaws.com/"):
            # Path-style URL: bucket is the first segment
            path = path[len(self.bucket) + 1:]
        return path

    async def _call(self, operation: str, func, **kwargs):
        try:
            return await asyncio.wait_for(asyncio.to_thread(func, **kwargs), timeout=self.operation_timeout)
        except asyncio.TimeoutError:
            raise OperationTimeoutError(
                f"S3 {operation} timed out",
                operation=f"s3.{operation}",
                timeout_seconds=self.operation_timeout,
            )
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"S3 {operation} failed: {e}", key=kwargs.get("Key"), backend=self.backend)

    async def put(self, data: bytes, key: str, content_type: Optional[str] = None) -> str:
        extra = {"ContentType": content_type} if content_type else {}
        await self._call("put_object", self.client.put_object, Bucket=self.bucket, Key=key, Body=data, **extra)
        logger.debug(f"Uploaded {len(data)} bytes to s3://{self.bucket}/{key}")
        return self.uri_for(key)

    async def put_file(self, path: Union[str, Path], key: str, content_type: Optional[str] = None) -> str:
        extra = {"ExtraArgs": {"ContentType": content_type}} if content_type else {}
        await self._call(
            "upload_file",
            self.client.upload_file,
            Filename=str(path),
            Bucket=self.bucket,
            Key=key,
            **extra,
        )
        return self.uri_for(key)

    async def get(self, uri: str) -> bytes:
        key = self.key_for(uri)
        response = await self._call("get_object", self.client.get_object, Bucket=self.bucket, Key=key)
        return await asyncio.to_thread(response["Body"].read)

    async def exists(self, key: str) -> bool:
        try:
            await asyncio.to_thread(self.client.head_object, Bucket=self.bucket, Key=key)
            return True
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") in ("404", "NoSuchKey", "NotFound"):
                return False
            raise StorageError(f"S3 head_object failed: {e}", key=key, backend=self.backend)
