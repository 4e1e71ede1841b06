"""End-to-end pipeline tests with fake providers, vision model and renderer."""

import asyncio

import pytest

from reelforge.core.config import Config
from reelforge.core.exceptions import ResourceNotFoundError, StorageError, ValidationError
from reelforge.project.models import AssetKind, ProjectStatus, RenderJobStatus, SceneStatus
from reelforge.storage.local import LocalObjectStore
from reelforge.workflow.events import EventType
from reelforge.workflow.pipeline import MediaPipeline, STATIC_BACKGROUND

from conftest import (
    FakeConcatenator,
    FakeProvider,
    FakeRenderFunction,
    FakeVisionClient,
    run,
    verdict,
)

STORYBOARD = [
    {"scene_id": "hook", "scene_type": "hook", "duration": 20, "narration": "Most mornings start in a rush.",
     "visual_direction": "Alarm clock at dawn", "music_direction": "Light acoustic guitar"},
    {"scene_id": "problem", "scene_type": "problem", "duration": 25, "visual_kind": "video",
     "narration": "Coffee goes cold.", "visual_direction": "Cluttered kitchen counter"},
    {"scene_id": "cta", "scene_type": "cta", "duration": 20, "narration": "Start tomorrow.",
     "visual_direction": "Sunrise over rooftops"},
]


def _providers(**overrides):
    providers = {
        "alpha": FakeProvider("alpha", [AssetKind.IMAGE, AssetKind.VIDEO, AssetKind.MUSIC, AssetKind.SOUND_EFFECT]),
        "beta": FakeProvider("beta", [AssetKind.IMAGE]),
        "gamma": FakeProvider("gamma", [AssetKind.IMAGE]),
        "voicer": FakeProvider("voicer", [AssetKind.VOICE]),
    }
    providers.update(overrides)
    return providers


def _pipeline(config, store, tracker, providers=None, replies=None, render_function=None, concat=None):
    return MediaPipeline(
        config=config,
        providers=providers or _providers(),
        store=store,
        vision=FakeVisionClient(replies or [verdict(92)]),
        render_function=render_function or FakeRenderFunction(),
        concatenator=concat or FakeConcatenator(),
        tracker=tracker,
    )


def test_storyboard_to_rendered_video(config, store, tracker):
    concat = FakeConcatenator()
    pipeline = _pipeline(config, store, tracker, concat=concat)

    async def scenario():
        project_id = pipeline.create_project(STORYBOARD)
        events = [event async for event in pipeline.generate_assets(project_id)]
        job = await pipeline.render_and_wait(project_id)
        await pipeline.close()
        return project_id, events, job

    project_id, events, job = run(scenario())
    project = pipeline.get_project(project_id)
    types = [event.type for event in events]

    assert types[-1] is EventType.PROJECT_READY
    assert types.count(EventType.SCENE_CACHED) == 7
    assert types.count(EventType.SCENE_ANALYZED) == 2
    assert EventType.SCENE_FAILED not in types

    assert all(scene.status is SceneStatus.READY for scene in project.scenes)
    hook = project.get_scene("hook")
    assert set(hook.ready_assets()) == {AssetKind.IMAGE, AssetKind.VOICE, AssetKind.MUSIC}
    assert all(store.is_resident(asset.uri) for asset in hook.assets.values())

    assert job.status is RenderJobStatus.COMPLETE
    assert len(job.chunks) == 2
    assert len(concat.calls) == 1
    assert abs(job.duration_seconds - project.total_duration) <= 1 / config.render.fps
    assert project.status is ProjectStatus.COMPLETE
    assert project.output_uri == job.output_uri
    assert project.order_locked


def test_low_scores_queue_scene_for_review_but_project_is_ready(config, store, tracker):
    pipeline = _pipeline(config, store, tracker, replies=[verdict(62)])

    async def scenario():
        project_id = pipeline.create_project(STORYBOARD[:1])
        return await pipeline.run_generation(project_id)

    project = run(scenario())
    scene = project.scenes[0]

    assert project.status is ProjectStatus.READY
    assert scene.status is SceneStatus.NEEDS_MANUAL_REVIEW
    assert project.review_queue == ["hook"]
    assert len(scene.attempts_for(AssetKind.IMAGE)) == 3


def test_fallback_chain_per_scene(config, store, tracker):
    providers = _providers(
        alpha=FakeProvider("alpha", [AssetKind.IMAGE], script=["retryable"]),
        beta=FakeProvider("beta", [AssetKind.IMAGE], script=["retryable"]),
    )
    config.quality.enabled = False
    pipeline = _pipeline(config, store, tracker, providers=providers)

    project = run(pipeline.run_generation(pipeline.create_project([STORYBOARD[2]])))
    scene = project.scenes[0]

    assert [a.provider for a in scene.attempts_for(AssetKind.IMAGE)] == ["alpha", "beta", "gamma"]
    assert scene.primary_visual.provider == "gamma"


def test_failed_video_degrades_to_still(config, store, tracker):
    config.generation.provider_preferences["video"] = ["reel"]
    providers = _providers(reel=FakeProvider("reel", [AssetKind.VIDEO], script=["retryable"]))
    pipeline = _pipeline(config, store, tracker, providers=providers)

    project = run(pipeline.run_generation(pipeline.create_project([STORYBOARD[1]])))
    scene = project.scenes[0]

    assert scene.visual_kind is AssetKind.IMAGE
    assert AssetKind.VIDEO not in scene.assets
    assert scene.primary_visual.ready
    assert scene.fallback is None
    assert any("video unavailable" in failure.error for failure in scene.failures)


def test_missing_visual_falls_back_to_static_background(config, store, tracker):
    providers = {
        "voicer": FakeProvider("voicer", [AssetKind.VOICE]),
        "alpha": FakeProvider("alpha", [AssetKind.IMAGE], script=["permanent"]),
    }
    pipeline = _pipeline(config, store, tracker, providers=providers)

    async def scenario():
        project_id = pipeline.create_project([STORYBOARD[2]])
        events = [event async for event in pipeline.generate_assets(project_id)]
        return pipeline.get_project(project_id), events

    project, events = run(scenario())
    scene = project.scenes[0]

    assert project.status is ProjectStatus.READY
    assert scene.status is SceneStatus.FAILED
    assert scene.fallback == STATIC_BACKGROUND
    assert scene.primary_visual is None
    assert scene.assets[AssetKind.VOICE].ready
    failed = [event for event in events if event.type is EventType.SCENE_FAILED]
    assert failed and failed[0].data["sceneIndex"] == 1
    assert scene.failures[0].error.startswith("Scene 1:")


def test_unready_audio_is_dropped(config, store, tracker):
    config.quality.enabled = False
    providers = _providers(voicer=FakeProvider("voicer", [AssetKind.VOICE], uri_base="http://127.0.0.1:9000"))
    pipeline = _pipeline(config, store, tracker, providers=providers)

    project = run(pipeline.run_generation(pipeline.create_project([STORYBOARD[2]])))
    scene = project.scenes[0]

    assert AssetKind.VOICE not in scene.assets
    assert scene.status is SceneStatus.READY
    assert any(failure.kind is AssetKind.VOICE for failure in scene.failures)


def test_durations_fit_narration_and_voice(store, tracker):
    config = Config.from_dict({
        "generation": {
            "words_per_second": 2.5,
            "narration_padding_seconds": 0.5,
            "provider_preferences": {"image": ["alpha"], "voice": ["voicer"]},
        },
        "quality": {"enabled": False},
    })
    providers = {
        "alpha": FakeProvider("alpha", [AssetKind.IMAGE]),
        "voicer": FakeProvider("voicer", [AssetKind.VOICE], voice_duration=12.0),
    }
    pipeline = _pipeline(config, store, tracker, providers=providers)
    words = " ".join(["word"] * 20)

    async def scenario():
        short = pipeline.create_project([{"duration": 2, "narration": words, "visual_direction": "x"}])
        project = await pipeline.run_generation(short)
        return project

    project = run(scenario())

    assert project.scenes[0].duration == 12.5


def test_cancel_during_generation(config, store, tracker):
    config.quality.enabled = False
    providers = {name: FakeProvider(name, p.kinds, delay=0.05) for name, p in _providers().items()}
    pipeline = _pipeline(config, store, tracker, providers=providers)

    async def scenario():
        project_id = pipeline.create_project(STORYBOARD)
        task = asyncio.create_task(pipeline.run_generation(project_id))
        await asyncio.sleep(0.01)
        assert pipeline.cancel(project_id)
        return await task

    project = run(scenario())

    assert project.status is ProjectStatus.CANCELLED
    assert all(not scene.assets for scene in project.scenes)


def test_cancel_without_active_run(config, store, tracker):
    pipeline = _pipeline(config, store, tracker)
    project_id = pipeline.create_project(STORYBOARD)

    assert pipeline.cancel(project_id)
    assert pipeline.get_project(project_id).status is ProjectStatus.CANCELLED
    with pytest.raises(ValidationError):
        run(pipeline.run_generation(project_id))


def test_render_requires_ready_project(config, store, tracker):
    pipeline = _pipeline(config, store, tracker)
    project_id = pipeline.create_project(STORYBOARD)

    with pytest.raises(ValidationError):
        run(pipeline.render(project_id))


def test_failed_render_marks_project_error(config, store, tracker):
    config.quality.enabled = False
    render_function = FakeRenderFunction(failures={2: -1})
    pipeline = _pipeline(config, store, tracker, render_function=render_function)

    async def scenario():
        project_id = pipeline.create_project(STORYBOARD)
        await pipeline.run_generation(project_id)
        return project_id, await pipeline.render_and_wait(project_id)

    project_id, job = run(scenario())

    assert job.status is RenderJobStatus.FAILED
    assert job.failed_chunk_indices == [2]
    assert pipeline.get_project(project_id).status is ProjectStatus.ERROR
    assert pipeline.get_status(job.job_id)["failed_chunk_indices"] == [2]


def test_storage_failure_fails_generation(config, tracker, tmp_path):
    class FullDisk(LocalObjectStore):
        async def put(self, data, key, content_type=None):
            raise StorageError("disk full", key=key, backend="local")

    config.quality.enabled = False
    pipeline = _pipeline(config, FullDisk(tmp_path / "full"), tracker)
    project_id = pipeline.create_project(STORYBOARD[:1])

    with pytest.raises(StorageError):
        run(pipeline.run_generation(project_id))
    assert pipeline.get_project(project_id).status is ProjectStatus.ERROR


def test_status_snapshots(config, store, tracker):
    config.quality.enabled = False
    pipeline = _pipeline(config, store, tracker)
    project_id = pipeline.create_project(STORYBOARD)
    run(pipeline.run_generation(project_id))

    status = pipeline.get_status(project_id)

    assert status["status"] == "ready"
    assert [s["index"] for s in status["scenes"]] == [1, 2, 3]
    assert "image" in status["scenes"][0]["assets"]
    with pytest.raises(ResourceNotFoundError):
        pipeline.get_status("proj_missing")


def test_create_project_validation(config, store, tracker):
    pipeline = _pipeline(config, store, tracker)
    with pytest.raises(ValidationError):
        pipeline.create_project([])
    with pytest.raises(ValidationError):
        pipeline.create_project(STORYBOARD, aspect_ratio="3:2")
    with pytest.raises(ValidationError):
        pipeline.create_project([STORYBOARD[0], STORYBOARD[0]])
    with pytest.raises(ValidationError):
        pipeline.create_project([{"duration": 0}])


def test_storage_failure_stops_sibling_scenes(config, tracker, tmp_path):
    class ImageOutage(LocalObjectStore):
        async def put(self, data, key, content_type=None):
            if "/image/" in key:
                raise StorageError("bucket unavailable", key=key, backend="local")
            return await super().put(data, key, content_type)

    config.quality.enabled = False
    providers = _providers(voicer=FakeProvider("voicer", [AssetKind.VOICE], delay=0.2))
    pipeline = _pipeline(config, ImageOutage(tmp_path / "outage"), tracker, providers=providers)

    async def scenario():
        project_id = pipeline.create_project(STORYBOARD[:2])
        with pytest.raises(StorageError):
            await pipeline.run_generation(project_id)
        await asyncio.sleep(0.3)
        return pipeline.get_project(project_id), pipeline.get_status(project_id)

    project, status = run(scenario())
    sibling = project.scenes[1]

    assert project.status is ProjectStatus.ERROR
    assert not status["active"]
    assert sibling.status is not SceneStatus.READY
    assert AssetKind.VOICE not in sibling.assets


def test_render_events_reach_the_caller(config, store, tracker):
    config.quality.enabled = False
    pipeline = _pipeline(config, store, tracker)

    async def scenario():
        project_id = pipeline.create_project(STORYBOARD)
        await pipeline.run_generation(project_id)
        job_id = await pipeline.render(project_id)
        events = [event async for event in pipeline.render_events(job_id)]
        return pipeline.tracker.get_job(job_id), events

    job, events = run(scenario())
    rendered = [event.data["index"] for event in events if event.type is EventType.CHUNK_RENDERED]

    assert sorted(rendered) == [1, 2]
    assert events[-1].type is EventType.JOB_COMPLETE
    assert events[-1].data["outputUri"] == job.output_uri


def test_failed_render_events_name_the_chunk(config, store, tracker):
    config.quality.enabled = False
    pipeline = _pipeline(config, store, tracker, render_function=FakeRenderFunction(failures={2: -1}))

    async def scenario():
        project_id = pipeline.create_project(STORYBOARD)
        await pipeline.run_generation(project_id)
        job_id = await pipeline.render(project_id)
        live = [event async for event in pipeline.render_events(job_id)]
        replay = [event async for event in pipeline.render_events(job_id)]
        return live, replay

    live, replay = run(scenario())

    assert [e.data["index"] for e in live if e.type is EventType.CHUNK_RENDERED] == [1]
    assert live[-1].type is EventType.JOB_FAILED
    assert live[-1].data["failedChunkIndices"] == [2]
    assert [e.type for e in replay] == [e.type for e in live]


def test_render_events_for_unknown_job(config, store, tracker):
    pipeline = _pipeline(config, store, tracker)

    async def drain():
        return [event async for event in pipeline.render_events("render_missing")]

    with pytest.raises(ResourceNotFoundError):
        run(drain())
