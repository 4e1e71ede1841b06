"""Tests for the provider fallback chain."""

import asyncio

import pytest

from reelforge.api import get_provider
from reelforge.api.factory import build_providers
from reelforge.core.config import GenerationConfig
from reelforge.core.exceptions import ProviderExhausted, PromptRejected, StorageError
from reelforge.storage.local import LocalObjectStore
from reelforge.project.models import Asset, AssetKind, Scene
from reelforge.workflow.orchestrator import ProviderOrchestrator, derive_prompt

from conftest import FakeProvider, run


def _orchestrator(store, providers, **config):
    config.setdefault("provider_preferences", {"image": ["a", "b", "c"], "video": ["a", "b", "c"]})
    return ProviderOrchestrator(
        {p.provider_name: p for p in providers},
        GenerationConfig(**config),
        store,
    )


def _scene(**kwargs):
    kwargs.setdefault("visual_direction", "A lighthouse at dusk")
    return Scene(scene_id="s1", narration="The light never sleeps.", **kwargs)


def test_falls_back_until_a_provider_succeeds(store):
    a = FakeProvider("a", [AssetKind.IMAGE], script=["retryable"])
    b = FakeProvider("b", [AssetKind.IMAGE], script=["retryable"])
    c = FakeProvider("c", [AssetKind.IMAGE])
    scene = _scene()

    outcome = run(_orchestrator(store, [a, b, c]).generate(scene, AssetKind.IMAGE))

    assert outcome.ok
    assert len(scene.attempts) == 3
    assert [attempt.provider for attempt in scene.attempts] == ["a", "b", "c"]
    assert [attempt.success for attempt in scene.attempts] == [False, False, True]
    assert outcome.asset.provider == "c"
    assert outcome.asset.ready
    assert store.is_resident(outcome.asset.uri)
    assert scene.assets == {}


def test_permanent_failure_stops_the_chain(store):
    a = FakeProvider("a", [AssetKind.IMAGE], script=["permanent"])
    b = FakeProvider("b", [AssetKind.IMAGE])
    scene = _scene()

    outcome = run(_orchestrator(store, [a, b]).generate(scene, AssetKind.IMAGE))

    assert not outcome.ok
    assert isinstance(outcome.error, PromptRejected)
    assert b.requests == []
    assert len(scene.attempts) == 1


def test_exhausted_chain_reports_every_provider(store):
    providers = [FakeProvider(name, [AssetKind.IMAGE], script=["retryable"]) for name in "abc"]
    scene = _scene()

    outcome = run(_orchestrator(store, providers).generate(scene, AssetKind.IMAGE))

    assert isinstance(outcome.error, ProviderExhausted)
    assert outcome.error.details["providers"] == ["a", "b", "c"]
    assert "a: provider_unavailable" in outcome.reason


def test_chain_is_capped_and_filtered(store):
    a = FakeProvider("a", [AssetKind.VOICE])
    b = FakeProvider("b", [AssetKind.IMAGE], script=["retryable"])
    c = FakeProvider("c", [AssetKind.IMAGE])
    orchestrator = _orchestrator(store, [a, b, c], max_provider_fallbacks=1)

    assert orchestrator.preferences(_scene(), AssetKind.IMAGE) == ["b"]
    outcome = run(orchestrator.generate(_scene(), AssetKind.IMAGE))
    assert isinstance(outcome.error, ProviderExhausted)
    assert c.requests == []


def test_scene_preferences_override_config(store):
    a = FakeProvider("a", [AssetKind.IMAGE])
    c = FakeProvider("c", [AssetKind.IMAGE])
    scene = _scene(provider_preferences={AssetKind.IMAGE: ["c"]})

    outcome = run(_orchestrator(store, [a, c]).generate(scene, AssetKind.IMAGE))

    assert outcome.asset.provider == "c"
    assert a.requests == []


def test_no_capable_provider(store):
    outcome = run(_orchestrator(store, []).generate(_scene(), AssetKind.MUSIC))
    assert isinstance(outcome.error, ProviderExhausted)


def test_uri_results_are_not_ready(store):
    a = FakeProvider("a", [AssetKind.IMAGE], uri_base="https://provider.example.com")
    outcome = run(_orchestrator(store, [a]).generate(_scene(), AssetKind.IMAGE))
    assert outcome.asset.uri == "https://provider.example.com/a/image/1"
    assert not outcome.asset.ready


def test_video_request_carries_ready_first_frame(store):
    a = FakeProvider("a", [AssetKind.VIDEO], uri_base="https://provider.example.com")
    scene = _scene(visual_kind=AssetKind.VIDEO)
    scene.assets[AssetKind.IMAGE] = Asset(uri="https://cdn.example.com/still.png", kind=AssetKind.IMAGE, ready=True)

    run(_orchestrator(store, [a]).generate(scene, AssetKind.VIDEO, regeneration_round=1, negative_prompt="blurry"))

    request = a.requests[0]
    assert request.image_url == "https://cdn.example.com/still.png"
    assert request.negative_prompt == "blurry"
    assert request.duration_seconds == scene.duration
    assert scene.attempts[0].regeneration_round == 1


def test_derive_prompt_per_kind():
    scene = Scene(
        narration="Start tomorrow.",
        visual_direction="Sunrise over rooftops",
        scene_type="cta",
        sound_effect_direction="Birdsong",
    )
    assert derive_prompt(scene, AssetKind.IMAGE) == "Sunrise over rooftops"
    assert derive_prompt(scene, AssetKind.VOICE) == "Start tomorrow."
    assert "confident" in derive_prompt(scene, AssetKind.MUSIC)
    assert derive_prompt(scene, AssetKind.SOUND_EFFECT) == "Birdsong"


def test_missing_api_key_falls_through_to_next_provider(store, monkeypatch):
    monkeypatch.delenv("FAL_KEY", raising=False)
    fal = get_provider("fal")
    beta = FakeProvider("beta", [AssetKind.IMAGE])
    scene = _scene()
    orchestrator = ProviderOrchestrator(
        {"fal": fal, "beta": beta},
        GenerationConfig(provider_preferences={"image": ["fal", "beta"]}),
        store,
    )

    outcome = run(orchestrator.generate(scene, AssetKind.IMAGE))

    assert outcome.ok
    assert outcome.asset.provider == "beta"
    assert [(a.provider, a.error_class) for a in scene.attempts] == [("fal", "auth"), ("beta", None)]


def test_rejected_credentials_do_not_stop_the_chain(store):
    a = FakeProvider("a", [AssetKind.IMAGE], script=["auth"])
    b = FakeProvider("b", [AssetKind.IMAGE])

    outcome = run(_orchestrator(store, [a, b]).generate(_scene(), AssetKind.IMAGE))

    assert outcome.asset.provider == "b"
    assert len(b.requests) == 1


def test_build_providers_skips_keyless_clients(monkeypatch):
    for name in ("FAL_KEY", "RUNWAYML_API_SECRET"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")

    clients = build_providers(GenerationConfig(provider_preferences={"image": ["fal", "openai", "runway"]}))

    assert list(clients) == ["openai"]


def test_inline_upload_times_out(tmp_path):
    class SlowStore(LocalObjectStore):
        async def put(self, data, key, content_type=None):
            await asyncio.sleep(1)
            return await super().put(data, key, content_type)

    a = FakeProvider("a", [AssetKind.IMAGE])
    orchestrator = _orchestrator(SlowStore(tmp_path / "slow"), [a], upload_timeout=0.01)

    with pytest.raises(StorageError) as excinfo:
        run(orchestrator.generate(_scene(), AssetKind.IMAGE))
    assert "timed out" in excinfo.value.message
