"""Tests for chunk planning and composition props."""

import pytest

from reelforge.core.exceptions import ValidationError
from reelforge.project.models import Asset, AssetKind, Project, RenderChunk
from reelforge.render.composition import build_composition_props, assert_assets_ready
from reelforge.render.planner import plan_chunks, validate_chunks, scene_frames, build_chunk_props

from conftest import make_scenes


def test_short_composition_is_one_chunk():
    chunks = plan_chunks(make_scenes(10, 15, 20), chunk_threshold_seconds=90, fps=30)
    assert len(chunks) == 1
    assert chunks[0].scene_ids == ["s1", "s2", "s3"]
    assert (chunks[0].start_frame, chunks[0].end_frame) == (0, 1350)


def test_scenes_group_until_threshold():
    chunks = plan_chunks(make_scenes(20, 25, 20), chunk_threshold_seconds=50, fps=30)

    assert [c.index for c in chunks] == [1, 2]
    assert chunks[0].scene_ids == ["s1", "s2"]
    assert chunks[0].duration_seconds(30) == 45
    assert chunks[1].scene_ids == ["s3"]
    assert chunks[1].duration_seconds(30) == 20


def test_overlong_scene_gets_its_own_chunk():
    chunks = plan_chunks(make_scenes(10, 70, 10), chunk_threshold_seconds=30, fps=30)
    assert [c.scene_ids for c in chunks] == [["s1"], ["s2"], ["s3"]]


def test_fractional_durations_stay_contiguous():
    scenes = make_scenes(*([3.337] * 40))
    chunks = plan_chunks(scenes, chunk_threshold_seconds=20, fps=30)

    validate_chunks(chunks)
    for previous, current in zip(chunks, chunks[1:]):
        assert current.start_frame == previous.end_frame
    assert chunks[-1].end_frame == round(3.337 * 40 * 30)
    assert sum(c.frame_count for c in chunks) == chunks[-1].end_frame


def test_chunk_boundaries_match_scene_frames():
    scenes = make_scenes(7.2, 11.9, 4.45, 30.1, 8.8)
    chunks = plan_chunks(scenes, chunk_threshold_seconds=25, fps=24)
    frames = scene_frames(scenes, 24)

    for chunk in chunks:
        assert frames[chunk.scene_ids[0]][0] == chunk.start_frame
        assert frames[chunk.scene_ids[-1]][1] == chunk.end_frame


def test_validate_rejects_gaps():
    chunks = [
        RenderChunk(index=1, scene_ids=["a"], start_frame=0, end_frame=300),
        RenderChunk(index=2, scene_ids=["b"], start_frame=301, end_frame=600),
    ]
    with pytest.raises(ValidationError):
        validate_chunks(chunks)


def test_validate_rejects_misnumbered_chunks():
    chunks = [RenderChunk(index=0, scene_ids=["a"], start_frame=0, end_frame=300)]
    with pytest.raises(ValidationError):
        validate_chunks(chunks)


def test_no_scenes_no_chunks():
    assert plan_chunks([], chunk_threshold_seconds=50) == []


def _project_with_assets():
    scenes = make_scenes(20, 25, 20)
    scenes[0].set_asset(Asset(uri="https://cdn.example.com/a.png", kind=AssetKind.IMAGE, ready=True))
    scenes[1].set_asset(Asset(uri="https://cdn.example.com/b.png", kind=AssetKind.IMAGE, ready=True))
    scenes[1].set_asset(Asset(uri="https://slow.example.com/b.mp3", kind=AssetKind.VOICE, ready=False))
    scenes[2].fallback = "static_background"
    return Project(scenes=scenes)


def test_composition_props_only_reference_ready_assets():
    props = build_composition_props(_project_with_assets(), fps=30, composition_id="UniversalVideo")

    assert props["durationInFrames"] == 1950
    first, second, third = props["scenes"]
    assert first["visual"]["uri"] == "https://cdn.example.com/a.png"
    assert "voice" not in second
    assert third["visual"] is None
    assert third["fallback"] == "static_background"
    assert second["startFrame"] == 600
    assert_assets_ready(props)


def test_assert_assets_ready_rejects_unready_asset():
    props = build_composition_props(_project_with_assets(), fps=30, composition_id="UniversalVideo")
    props["scenes"][0]["visual"]["ready"] = False
    with pytest.raises(ValidationError):
        assert_assets_ready(props)


def test_chunk_props_disable_sound_design_when_split():
    project = _project_with_assets()
    props = build_composition_props(project, fps=30, composition_id="UniversalVideo")
    chunks = plan_chunks(project.scenes, chunk_threshold_seconds=50, fps=30)

    second = build_chunk_props(props, chunks[1], len(chunks))

    assert [s["sceneId"] for s in second["scenes"]] == ["s3"]
    assert second["isChunk"] is True
    assert second["startFrame"] == 1350
    assert second["durationInFrames"] == 600
    assert second["soundDesign"] == {"enabled": False}
    assert props["soundDesign"] == {"enabled": True}
