"""
Chunk Planner
=============

Splits a composition into scene-aligned chunks that can be rendered
independently and joined without re-encoding.

Frame numbers come from cumulative scene durations, so rounding never opens a
gap or an overlap between chunks: each chunk's ``end_frame`` (exclusive) is the
next chunk's ``start_frame``.
"""

import logging
from typing import Optional, List, Dict, Any, Sequence, Tuple

from ..core.config import RenderConfig
from ..core.exceptions import ValidationError
from ..project.models import Scene, RenderChunk

logger = logging.getLogger(__name__)


def _group_scenes(
    scenes: Sequence[Scene],
    chunk_threshold_seconds: float,
    max_chunk_seconds: float,
) -> List[List[Scene]]:
    total = sum(scene.duration for scene in scenes)
    if total <= chunk_threshold_seconds:
        return [list(scenes)]

    groups: List[List[Scene]] = []
    current: List[Scene] = []
    current_duration = 0.0

    for scene in scenes:
        # A scene longer than the limit still gets a chunk of its own
        if current and current_duration + scene.duration > max_chunk_seconds:
            groups.append(current)
            current = []
            current_duration = 0.0
        current.append(scene)
        current_duration += scene.duration

    if current:
        groups.append(current)
    return groups


def plan_chunks(
    scenes: Sequence[Scene],
    chunk_threshold_seconds: float,
    max_chunk_seconds: Optional[float] = None,
    fps: int = 30,
) -> List[RenderChunk]:
    """
    Plan render chunks for scenes in playback order.

    Args:
        scenes: Scenes in playback order
        chunk_threshold_seconds: Compositions up to this long render as one chunk
        max_chunk_seconds: Upper bound for a multi-scene chunk (defaults to the threshold)
        fps: Frame rate used to convert seconds to frames

    Returns:
        Contiguous chunks with 1-based indices
    """
    if not scenes:
        return []
    if fps <= 0:
        raise ValidationError(f"fps must be positive, got {fps}", field="fps", value=fps)

    limit = max_chunk_seconds if max_chunk_seconds is not None else chunk_threshold_seconds
    groups = _group_scenes(scenes, chunk_threshold_seconds, limit)

    chunks: List[RenderChunk] = []
    elapsed = 0.0
    start_frame = 0
    for index, group in enumerate(groups, start=1):
        elapsed += sum(scene.duration for scene in group)
        end_frame = round(elapsed * fps)
        chunks.append(
            RenderChunk(
                index=index,
                scene_ids=[scene.scene_id for scene in group],
                start_frame=start_frame,
                end_frame=end_frame,
            )
        )
        start_frame = end_frame

    validate_chunks(chunks)
    logger.info(
        f"Planned {len(chunks)} chunk(s) for {len(scenes)} scenes "
        f"({elapsed:.1f}s, {start_frame} frames at {fps}fps)"
    )
    return chunks


def validate_chunks(chunks: Sequence[RenderChunk]) -> None:
    """Raise ValidationError unless chunks are non-empty, contiguous and start at frame 0."""
    expected_start = 0
    for position, chunk in enumerate(chunks, start=1):
        if chunk.index != position:
            raise ValidationError(
                f"Chunk indices must be 1..n in order, got {chunk.index} at position {position}",
                field="index",
            )
        if chunk.start_frame != expected_start:
            raise ValidationError(
                f"Chunk {chunk.index} starts at frame {chunk.start_frame}, expected {expected_start}",
                field="start_frame",
                constraint="contiguous",
            )
        if chunk.end_frame <= chunk.start_frame:
            raise ValidationError(
                f"Chunk {chunk.index} has no frames",
                field="end_frame",
            )
        if not chunk.scene_ids:
            raise ValidationError(f"Chunk {chunk.index} has no scenes", field="scene_ids")
        expected_start = chunk.end_frame


def scene_frames(scenes: Sequence[Scene], fps: int) -> Dict[str, Tuple[int, int]]:
    """Absolute (start, end) frame range of each scene, using the same rounding as the planner."""
    ranges: Dict[str, Tuple[int, int]] = {}
    elapsed = 0.0
    start = 0
    for scene in scenes:
        elapsed += scene.duration
        end = round(elapsed * fps)
        ranges[scene.scene_id] = (start, end)
        start = end
    return ranges


def build_chunk_props(input_props: Dict[str, Any], chunk: RenderChunk, total_chunks: int) -> Dict[str, Any]:
    """
    Input props for rendering one chunk of a composition.

    Only the chunk's scenes are passed. Sound design that spans the whole
    composition is disabled for multi-chunk renders, since each chunk would
    otherwise restart it.
    """
    scene_ids = set(chunk.scene_ids)
    props = dict(input_props)
    props["scenes"] = [scene for scene in input_props.get("scenes", []) if scene["sceneId"] in scene_ids]
    props["isChunk"] = total_chunks > 1
    props["chunkIndex"] = chunk.index
    props["totalChunks"] = total_chunks
    props["startFrame"] = chunk.start_frame
    props["endFrame"] = chunk.end_frame
    props["durationInFrames"] = chunk.frame_count
    if total_chunks > 1:
        props["soundDesign"] = {"enabled": False}
    return props


class ChunkPlanner:
    """Planner bound to render configuration."""

    def __init__(self, config: Optional[RenderConfig] = None):
        self.config = config or RenderConfig()

    def plan(self, scenes: Sequence[Scene]) -> List[RenderChunk]:
        return plan_chunks(
            scenes,
            chunk_threshold_seconds=self.config.chunk_threshold_seconds,
            max_chunk_seconds=self.config.max_chunk_seconds,
            fps=self.config.fps,
        )
