"""Tests for the asset cache and object stores."""

import base64

import httpx
import pytest

from reelforge.core.config import CacheConfig
from reelforge.core.exceptions import StorageError
from reelforge.project.models import Asset, AssetKind, AssetOrigin
from reelforge.storage.asset_cache import AssetCache
from reelforge.storage.base import content_key, extension_for
from reelforge.storage.s3 import S3ObjectStore

from conftest import png_bytes, run

SLOW_URL = "https://provider.example.com/outputs/frame.png"


def _transport(handler_calls, status=200, body=None, content_type="image/png"):
    body = body if body is not None else png_bytes()

    def handler(request):
        handler_calls.append(str(request.url))
        return httpx.Response(status, content=body, headers={"content-type": content_type})

    return httpx.MockTransport(handler)


def test_content_key_is_deterministic():
    data = b"same bytes"
    first = content_key(data, "video-assets", "image", "image/png", "image")
    assert first == content_key(data, "video-assets/", "image", "image/png", "image")
    assert first.startswith("video-assets/image/")
    assert first.endswith(".png")
    assert extension_for("audio/mpeg; charset=binary", "audio") == "mp3"
    assert extension_for(None, "video") == "mp4"


def test_slow_asset_is_copied_into_store(store):
    calls = []
    cache = AssetCache(store, CacheConfig(retry_delay=0), transport=_transport(calls))
    asset = Asset(uri=SLOW_URL, kind=AssetKind.IMAGE, provider="fal")

    cached = run(cache.ensure_ready(asset))

    assert cached.ready
    assert store.is_resident(cached.uri)
    assert cached.source_uri == SLOW_URL
    assert cached.origin is AssetOrigin.CACHED_EXTERNAL
    assert cached.provider == "fal"
    assert calls == [SLOW_URL]
    assert run(store.get(cached.uri)) == png_bytes()


def test_ensure_ready_is_idempotent(store):
    calls = []
    cache = AssetCache(store, CacheConfig(retry_delay=0), transport=_transport(calls))

    async def scenario():
        first = await cache.ensure_ready(Asset(uri=SLOW_URL, kind=AssetKind.IMAGE))
        second = await cache.ensure_ready(first)
        third = await cache.ensure_ready(Asset(uri=SLOW_URL, kind=AssetKind.IMAGE))
        return first, second, third

    first, second, third = run(scenario())

    assert second.uri == first.uri
    assert third.uri == first.uri
    assert cache.downloads == 1
    assert len(calls) == 1


def test_fast_host_is_not_downloaded(store):
    calls = []
    cache = AssetCache(store, CacheConfig(fast_hosts=["storage.googleapis.com"]), transport=_transport(calls))
    asset = Asset(uri="https://storage.googleapis.com/bucket/a.png", kind=AssetKind.IMAGE)

    cached = run(cache.ensure_ready(asset))

    assert cached.ready
    assert cached.uri == asset.uri
    assert calls == []


def test_third_party_cdn_is_cached(store):
    calls = []
    cache = AssetCache(store, CacheConfig(retry_delay=0), transport=_transport(calls, content_type="video/mp4"))
    signed = "https://cdn.provider-outputs.example/tmp/signed.mp4?expires=600"

    cached = run(cache.ensure_ready(Asset(uri=signed, kind=AssetKind.VIDEO)))

    assert store.is_resident(cached.uri)
    assert cached.source_uri == signed
    assert cache.downloads == 1


def test_fast_host_matching(store):
    cache = AssetCache(store, CacheConfig(fast_hosts=["s3.amazonaws.com", "media.example.com"]))

    assert cache.is_fast("https://renders.s3.amazonaws.com/out.mp4")
    assert cache.is_fast("https://renders.s3.eu-west-1.amazonaws.com/out.mp4")
    assert cache.is_fast("https://img.media.example.com/a.png")
    assert not cache.is_fast("https://s3.provider.example/a.png")
    assert not cache.is_fast("https://lambda-url.us-east-1.on.aws/a.png")
    assert not cache.is_fast("https://notmedia.example.com/a.png")


def test_download_failure_marks_asset_not_ready(store):
    calls = []
    cache = AssetCache(
        store,
        CacheConfig(download_retries=1, retry_delay=0),
        transport=_transport(calls, status=503),
    )
    asset = Asset(uri=SLOW_URL, kind=AssetKind.IMAGE)

    cached = run(cache.ensure_ready(asset))

    assert not cached.ready
    assert cached.uri == SLOW_URL
    assert len(calls) == 2
    failures = cache.failures_for(SLOW_URL)
    assert len(failures) == 1
    assert failures[0].details["attempts"] == 2


def test_private_hosts_are_refused(store):
    calls = []
    cache = AssetCache(store, CacheConfig(download_retries=0), transport=_transport(calls))

    cached = run(cache.ensure_ready(Asset(uri="http://169.254.169.254/latest", kind=AssetKind.IMAGE)))

    assert not cached.ready
    assert calls == []


def test_data_uri_is_decoded(store):
    payload = base64.b64encode(b"ID3 voice bytes").decode()
    cache = AssetCache(store, CacheConfig())
    asset = Asset(uri=f"data:audio/mpeg;base64,{payload}", kind=AssetKind.VOICE)

    cached = run(cache.ensure_ready(asset))

    assert cached.ready
    assert cached.uri.endswith(".mp3")
    assert run(store.get(cached.uri)) == b"ID3 voice bytes"


def test_store_failure_propagates(store):
    class BrokenStore(type(store)):
        async def put(self, data, key, content_type=None):
            raise StorageError("disk full", key=key, backend="local")

    broken = BrokenStore(store.root)
    cache = AssetCache(broken, CacheConfig(retry_delay=0), transport=_transport([]))

    with pytest.raises(StorageError):
        run(cache.ensure_ready(Asset(uri=SLOW_URL, kind=AssetKind.IMAGE)))


def test_local_store_rejects_traversal(store):
    with pytest.raises(StorageError):
        run(store.put(b"x", "../escape.txt"))


def test_s3_store_uri_mapping():
    s3 = S3ObjectStore(bucket="reels", region="eu-west-1", client=object())

    uri = s3.uri_for("video-assets/image/abc.png")

    assert uri == "https://reels.s3.eu-west-1.amazonaws.com/video-assets/image/abc.png"
    assert s3.is_resident(uri)
    assert s3.key_for(uri) == "video-assets/image/abc.png"
    assert s3.key_for("s3://reels/renders/final.mp4") == "renders/final.mp4"
    assert not s3.is_resident("https://other.s3.amazonaws.com/x.png")


def test_s3_store_put_and_get():
    class FakeBody:
        def read(self):
            return b"stored"

    class FakeS3Client:
        def __init__(self):
            self.puts = []

        def put_object(self, **kwargs):
            self.puts.append(kwargs)

        def get_object(self, **kwargs):
            return {"Body": FakeBody()}

    client = FakeS3Client()
    s3 = S3ObjectStore(bucket="reels", client=client)

    async def scenario():
        uri = await s3.put(b"stored", "video-assets/voice/abc.mp3", "audio/mpeg")
        return uri, await s3.get(uri)

    uri, data = run(scenario())

    assert client.puts[0]["ContentType"] == "audio/mpeg"
    assert client.puts[0]["Key"] == "video-assets/voice/abc.mp3"
    assert data == b"stored"
