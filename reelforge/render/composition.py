"""
Composition Props
=================

Builds the input props the renderer receives for a project. Only ready
assets are included, and frame ranges come from the same cumulative rounding
the chunk planner uses.
"""

from typing import Dict, Any, Iterator

from ..core.exceptions import ValidationError
from ..project.models import Project, Scene, Asset, AssetKind
from .planner import scene_frames

_AUDIO_PROPS = {
    AssetKind.VOICE: "voice",
    AssetKind.MUSIC: "music",
    AssetKind.SOUND_EFFECT: "soundEffect",
}


def _asset_props(asset: Asset) -> Dict[str, Any]:
    props = {
        "uri": asset.uri,
        "kind": asset.kind.value,
        "ready": asset.ready,
    }
    if asset.content_type:
        props["contentType"] = asset.content_type
    if asset.duration_seconds is not None:
        props["durationSeconds"] = asset.duration_seconds
    return props


def _scene_props(scene: Scene, start_frame: int, end_frame: int) -> Dict[str, Any]:
    ready = scene.ready_assets()
    visual = ready.get(scene.visual_kind)

    props: Dict[str, Any] = {
        "sceneId": scene.scene_id,
        "order": scene.order,
        "sceneType": scene.scene_type,
        "narration": scene.narration,
        "durationSeconds": scene.duration,
        "startFrame": start_frame,
        "durationInFrames": end_frame - start_frame,
        "visual": _asset_props(visual) if visual else None,
        "fallback": scene.fallback if visual is None else None,
    }
    for kind, name in _AUDIO_PROPS.items():
        if kind in ready:
            props[name] = _asset_props(ready[kind])
    return props


def build_composition_props(project: Project, fps: int, composition_id: str) -> Dict[str, Any]:
    """Input props for rendering the whole project."""
    frames = scene_frames(project.scenes, fps)
    scenes = [_scene_props(scene, *frames[scene.scene_id]) for scene in project.scenes]
    total_frames = frames[project.scenes[-1].scene_id][1] if project.scenes else 0

    return {
        "projectId": project.project_id,
        "compositionId": composition_id,
        "fps": fps,
        "aspectRatio": project.aspect_ratio,
        "durationInFrames": total_frames,
        "scenes": scenes,
        "soundDesign": {"enabled": True},
    }


def _iter_assets(input_props: Dict[str, Any]) -> Iterator[Dict[str, Any]]:
    for scene in input_props.get("scenes", []):
        for name in ("visual", *_AUDIO_PROPS.values()):
            asset = scene.get(name)
            if asset:
                yield asset


def assert_assets_ready(input_props: Dict[str, Any]) -> None:
    """Raise ValidationError if the props reference any asset that is not ready."""
    for asset in _iter_assets(input_props):
        if not asset.get("ready"):
            raise ValidationError(
                f"Asset is not ready for rendering: {asset.get('uri')}",
                field="ready",
                value=asset.get("uri"),
            )
