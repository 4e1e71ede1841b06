"""Tests for provider clients against mocked HTTP transports."""

import asyncio
import json

import httpx
import pytest

from reelforge.api import get_provider, list_providers, providers_for
from reelforge.api.base import GenerationRequest, ResultStatus, classify_error, JobStatus
from reelforge.api.fal import FalProvider
from reelforge.api.openai import OpenAIProvider
from reelforge.api.piapi import PiAPIProvider
from reelforge.api.runway import RunwayProvider
from reelforge.core.exceptions import (
    ConfigurationError,
    ProviderError,
    PromptRejected,
    RateLimitError,
)
from reelforge.project.models import AssetKind

from conftest import run


def _router(routes, seen=None):
    """MockTransport answering (method, path) pairs; values are a response or a list consumed in order."""

    def handler(request):
        if seen is not None:
            seen.append(request)
        answer = routes[(request.method, request.url.path)]
        if isinstance(answer, list):
            answer = answer.pop(0) if len(answer) > 1 else answer[0]
        return answer

    return httpx.MockTransport(handler)


def _json(status, payload):
    return httpx.Response(status, json=payload)


def test_registry_lists_builtin_providers():
    assert {"fal", "piapi", "runway", "openai"} <= set(list_providers())
    assert "openai" in providers_for(AssetKind.VOICE)
    assert "piapi" in providers_for(AssetKind.MUSIC)
    with pytest.raises(ConfigurationError):
        get_provider("nope")


def test_fal_image_queue_roundtrip():
    seen = []
    transport = _router({
        ("POST", "/fal-ai/flux/dev"): _json(200, {
            "request_id": "req-1",
            "status_url": "https://queue.fal.run/fal-ai/flux/requests/req-1/status",
            "response_url": "https://queue.fal.run/fal-ai/flux/requests/req-1",
        }),
        ("GET", "/fal-ai/flux/requests/req-1/status"): [
            _json(200, {"status": "IN_QUEUE"}),
            _json(200, {"status": "COMPLETED"}),
        ],
        ("GET", "/fal-ai/flux/requests/req-1"): _json(200, {
            "images": [{"url": "https://fal.media/files/out.jpg", "content_type": "image/jpeg"}],
        }),
    }, seen)
    provider = FalProvider(api_key="fal-test-key", poll_interval=0, transport=transport)

    result = run(provider.generate(GenerationRequest(prompt="a lighthouse", asset_kind=AssetKind.IMAGE)))

    assert result.status is ResultStatus.SUCCESS
    assert result.asset_uri == "https://fal.media/files/out.jpg"
    assert result.job_id == "req-1"
    assert result.asset_kind is AssetKind.IMAGE
    submit = seen[0]
    assert submit.headers["authorization"] == "Key fal-test-key"
    assert json.loads(submit.content)["image_size"] == "landscape_16_9"


def test_fal_uses_image_to_video_with_first_frame():
    seen = []
    transport = _router({
        ("POST", "/fal-ai/kling-video/v2.5-turbo/pro/image-to-video"): _json(200, {
            "video": {"url": "https://fal.media/files/clip.mp4"},
        }),
    }, seen)
    provider = FalProvider(api_key="fal-test-key", poll_interval=0, transport=transport)
    request = GenerationRequest(
        prompt="slow push-in",
        asset_kind=AssetKind.VIDEO,
        duration_seconds=8,
        image_url="https://cdn.example.com/still.png",
    )

    result = run(provider.generate(request))

    assert result.ok
    assert result.duration_seconds == 10.0
    assert json.loads(seen[0].content)["image_url"] == "https://cdn.example.com/still.png"


def test_piapi_video_task_completes():
    transport = _router({
        ("POST", "/api/v1/task"): _json(200, {"code": 200, "data": {"task_id": "t-9", "status": "pending"}}),
        ("GET", "/api/v1/task/t-9"): _json(200, {
            "code": 200,
            "data": {"task_id": "t-9", "status": "completed", "output": {"video_url": "https://piapi.example/v.mp4"}},
        }),
    })
    provider = PiAPIProvider(api_key="pi-key", poll_interval=0, transport=transport)

    result = run(provider.generate(GenerationRequest(prompt="waves", asset_kind=AssetKind.VIDEO)))

    assert result.ok
    assert result.asset_uri == "https://piapi.example/v.mp4"
    assert result.duration_seconds == 5.0


def test_content_policy_failure_is_permanent():
    transport = _router({
        ("POST", "/api/v1/task"): _json(200, {"code": 200, "data": {"task_id": "t-1"}}),
        ("GET", "/api/v1/task/t-1"): _json(200, {
            "code": 200,
            "data": {"task_id": "t-1", "status": "failed", "error": {"message": "Blocked by content policy"}},
        }),
    })
    provider = PiAPIProvider(api_key="pi-key", poll_interval=0, transport=transport)

    result = run(provider.generate(GenerationRequest(prompt="x", asset_kind=AssetKind.MUSIC)))

    assert result.status is ResultStatus.PERMANENT
    assert result.error_class == "invalid_request"


def test_generic_job_failure_is_retryable():
    transport = _router({
        ("POST", "/api/v1/task"): _json(200, {"code": 200, "data": {"task_id": "t-2"}}),
        ("GET", "/api/v1/task/t-2"): _json(200, {
            "code": 200,
            "data": {"task_id": "t-2", "status": "failed", "error": {"message": "GPU worker crashed"}},
        }),
    })
    provider = PiAPIProvider(api_key="pi-key", poll_interval=0, transport=transport)

    result = run(provider.generate(GenerationRequest(prompt="x", asset_kind=AssetKind.VIDEO)))

    assert result.status is ResultStatus.RETRYABLE
    assert result.error_class == "generation_failed"


def test_runway_video_without_first_frame_falls_through():
    provider = RunwayProvider(api_key="rw-key", transport=_router({}))

    result = run(provider.generate(GenerationRequest(prompt="clouds", asset_kind=AssetKind.VIDEO)))

    assert result.status is ResultStatus.RETRYABLE
    assert result.error_class == "unsupported_request"


def test_runway_image_to_video_polls_task():
    seen = []
    transport = _router({
        ("POST", "/v1/image_to_video"): _json(200, {"id": "task-3"}),
        ("GET", "/v1/tasks/task-3"): _json(200, {"id": "task-3", "status": "SUCCEEDED", "output": ["https://rw.example/o.mp4"]}),
    }, seen)
    provider = RunwayProvider(api_key="rw-key", poll_interval=0, transport=transport)
    request = GenerationRequest(
        prompt="clouds drifting",
        asset_kind=AssetKind.VIDEO,
        duration_seconds=12,
        image_url="https://cdn.example.com/first.png",
    )

    result = run(provider.generate(request))

    assert result.ok
    assert result.asset_uri == "https://rw.example/o.mp4"
    assert result.duration_seconds == 10.0
    assert seen[0].headers["x-runway-version"]


def test_openai_voice_returns_inline_bytes():
    transport = _router({
        ("POST", "/v1/audio/speech"): httpx.Response(200, content=b"ID3-mp3-bytes"),
    })
    provider = OpenAIProvider(api_key="sk-test", transport=transport)

    result = run(provider.generate(GenerationRequest(prompt="Hello there.", asset_kind=AssetKind.VOICE)))

    assert result.ok
    assert result.asset_bytes == b"ID3-mp3-bytes"
    assert result.asset_uri is None
    assert result.content_type == "audio/mpeg"


@pytest.mark.parametrize("status, expected", [
    (400, (ResultStatus.PERMANENT, "invalid_request")),
    (401, (ResultStatus.PERMANENT, "auth")),
    (429, (ResultStatus.RETRYABLE, "rate_limit")),
    (503, (ResultStatus.RETRYABLE, "provider_unavailable")),
])
def test_http_errors_are_classified(status, expected):
    transport = _router({("POST", "/v1/images/generations"): _json(status, {"error": {"message": "nope"}})})
    provider = OpenAIProvider(api_key="sk-test", transport=transport)

    result = run(provider.generate(GenerationRequest(prompt="a cat", asset_kind=AssetKind.IMAGE)))

    assert (result.status, result.error_class) == expected


def test_unsupported_kind_and_missing_key(monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    provider = OpenAIProvider(transport=_router({}))

    unsupported = run(provider.generate(GenerationRequest(prompt="x", asset_kind=AssetKind.MUSIC)))
    missing_key = run(provider.generate(GenerationRequest(prompt="x", asset_kind=AssetKind.VOICE)))

    assert unsupported.error_class == "unsupported_kind"
    assert missing_key.status is ResultStatus.PERMANENT
    assert missing_key.error_class == "auth"


def test_overall_timeout_is_retryable():
    transport = _router({
        ("POST", "/api/v1/task"): _json(200, {"code": 200, "data": {"task_id": "slow"}}),
        ("GET", "/api/v1/task/slow"): _json(200, {"code": 200, "data": {"task_id": "slow", "status": "processing"}}),
    })
    provider = PiAPIProvider(api_key="pi-key", poll_interval=0.01, timeout=0.1, transport=transport)

    result = run(provider.generate(GenerationRequest(prompt="x", asset_kind=AssetKind.VIDEO)))

    assert result.status is ResultStatus.RETRYABLE
    assert result.error_class == "timeout"


def test_classify_error():
    assert classify_error(asyncio.TimeoutError()) == (ResultStatus.RETRYABLE, "timeout")
    assert classify_error(RateLimitError("slow down")) == (ResultStatus.RETRYABLE, "rate_limit")
    assert classify_error(PromptRejected("bad")) == (ResultStatus.PERMANENT, "invalid_request")
    assert classify_error(ProviderError("forbidden", status_code=403)) == (ResultStatus.PERMANENT, "auth")
    assert classify_error(httpx.ConnectError("refused")) == (ResultStatus.RETRYABLE, "provider_unavailable")
    assert classify_error(KeyError("output")) == (ResultStatus.RETRYABLE, "malformed_response")


def test_job_status_normalization():
    assert JobStatus.from_provider_status("SUCCEEDED") is JobStatus.COMPLETED
    assert JobStatus.from_provider_status("IN_QUEUE") is JobStatus.PENDING
    assert JobStatus.from_provider_status("canceled") is JobStatus.CANCELLED
    assert JobStatus.from_provider_status("RUNNING") is JobStatus.PROCESSING
