"""Shared fakes and fixtures."""

import asyncio
import io
import json

import pytest
from PIL import Image

from reelforge.api.base import ProviderResult, ResultStatus
from reelforge.core.config import Config
from reelforge.core.exceptions import ChunkRenderFailure, ConcatFailure
from reelforge.project.models import AssetKind, Scene
from reelforge.project.tracker import ProjectTracker
from reelforge.render.remote import RenderFunction
from reelforge.storage.local import LocalObjectStore
from reelforge.quality.vision import VisionClient


def png_bytes(color=(200, 120, 40), size=(64, 36)) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", size, color).save(buffer, "PNG")
    return buffer.getvalue()


CONTENT_TYPES = {
    AssetKind.IMAGE: "image/png",
    AssetKind.VIDEO: "video/mp4",
    AssetKind.VOICE: "audio/mpeg",
    AssetKind.MUSIC: "audio/mpeg",
    AssetKind.SOUND_EFFECT: "audio/wav",
}


class FakeProvider:
    """
    Scripted provider client.

    Each call consumes one entry of `script` ("ok", "retryable", "auth"
    or "permanent"); once the script runs out every call succeeds. Successful
    calls return inline bytes unless `uri_base` is set.
    """

    def __init__(self, name, kinds, script=None, uri_base=None, voice_duration=None, delay=0.0):
        self.provider_name = name
        self.kinds = tuple(kinds)
        self.script = list(script or [])
        self.uri_base = uri_base
        self.voice_duration = voice_duration
        self.delay = delay
        self.requests = []
        self.closed = False

    def supports(self, kind):
        return kind in self.kinds

    async def generate(self, request):
        self.requests.append(request)
        call = len(self.requests)
        if self.delay:
            await asyncio.sleep(self.delay)

        step = self.script.pop(0) if self.script else "ok"
        if step == "retryable":
            return ProviderResult.failure(
                self.provider_name, ResultStatus.RETRYABLE, "provider_unavailable",
                f"{self.provider_name} is down", request.asset_kind,
            )
        if step == "auth":
            return ProviderResult.failure(
                self.provider_name, ResultStatus.PERMANENT, "auth",
                f"{self.provider_name} rejected the credentials", request.asset_kind,
            )
        if step == "permanent":
            return ProviderResult.failure(
                self.provider_name, ResultStatus.PERMANENT, "invalid_request",
                f"{self.provider_name} rejected the prompt", request.asset_kind,
            )

        kind = request.asset_kind
        result = ProviderResult(
            status=ResultStatus.SUCCESS,
            provider=self.provider_name,
            asset_kind=kind,
            content_type=CONTENT_TYPES[kind],
            duration_seconds=self.voice_duration if kind is AssetKind.VOICE else None,
        )
        if self.uri_base:
            result.asset_uri = f"{self.uri_base}/{self.provider_name}/{kind.value}/{call}"
        elif kind is AssetKind.IMAGE:
            result.asset_bytes = png_bytes(color=(call * 40 % 256, 90, 160))
        else:
            result.asset_bytes = f"{self.provider_name}-{kind.value}-{call}".encode()
        return result

    async def close(self):
        self.closed = True


def verdict(score=90, issues=None, improved_prompt=None):
    """Vision reply with every sub-score set to `score`."""
    return json.dumps({
        "scores": {
            "technical": score,
            "content_match": score,
            "compliance": score,
            "composition": score,
        },
        "issues": issues or [],
        "improved_prompt": improved_prompt,
        "summary": f"scored {score}",
    })


class FakeVisionClient(VisionClient):
    """Replies from a list; the last reply repeats."""

    model = "fake-vision"

    def __init__(self, replies=None):
        self.replies = list(replies or [verdict(90)])
        self.calls = []

    async def describe(self, images, prompt):
        self.calls.append((images, prompt))
        reply = self.replies.pop(0) if len(self.replies) > 1 else self.replies[0]
        if isinstance(reply, Exception):
            raise reply
        return reply


class FakeRenderFunction(RenderFunction):
    """Renders instantly; `failures` maps a chunk index to how many attempts fail (-1 for all)."""

    def __init__(self, failures=None, delay=0.0):
        self.failures = dict(failures or {})
        self.delay = delay
        self.calls = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def render(self, composition_id, input_props, start_frame, end_frame):
        index = input_props["chunkIndex"]
        self.calls.append((index, start_frame, end_frame))
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            remaining = self.failures.get(index, 0)
            if remaining:
                if remaining > 0:
                    self.failures[index] = remaining - 1
                raise ChunkRenderFailure(f"chunk {index} crashed", chunk_index=index)
            return f"https://renders.example.com/{composition_id}/chunk_{index}.mp4"
        finally:
            self.in_flight -= 1

    def attempts_for(self, index):
        return sum(1 for call in self.calls if call[0] == index)


class FakeConcatenator:
    def __init__(self, fail=False):
        self.fail = fail
        self.calls = []

    async def concat(self, chunk_uris, project_id):
        self.calls.append(list(chunk_uris))
        if self.fail:
            raise ConcatFailure("ffmpeg concat failed with exit code 1", stderr="moov atom not found")
        return f"https://renders.example.com/final/{project_id}.mp4"


@pytest.fixture
def store(tmp_path):
    return LocalObjectStore(tmp_path / "store")


@pytest.fixture
def tracker():
    return ProjectTracker()


@pytest.fixture
def config():
    return Config.from_dict({
        "generation": {
            "fit_duration_to_narration": False,
            "provider_preferences": {
                "image": ["alpha", "beta", "gamma"],
                "video": ["alpha"],
                "voice": ["voicer"],
                "music": ["alpha"],
                "sound_effect": ["alpha"],
            },
        },
        "cache": {"retry_delay": 0},
        "render": {"retry_delay": 0, "chunk_threshold_seconds": 50},
        "quality": {"analyzed_kinds": ["image"]},
    })


def make_scenes(*durations, **overrides):
    return [
        Scene(
            scene_id=f"s{i}",
            order=i,
            duration=duration,
            narration=overrides.get("narration", f"Narration for scene {i}"),
            visual_direction=f"Visual direction {i}",
        )
        for i, duration in enumerate(durations, start=1)
    ]


def run(coro):
    return asyncio.run(coro)
