"""
Project Models
==============

Core data models for projects, scenes, assets and render jobs.

A Project is owned by the pipeline for its lifetime. Scenes carry an
append-only history of provider attempts and quality analyses next to at most
one active asset per kind; a regeneration replaces the asset in its slot.
"""

import asyncio
import uuid
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, List, Dict, Any

from ..core.exceptions import ValidationError

logger = logging.getLogger(__name__)


# =============================================================================
# Enums
# =============================================================================


class ProjectStatus(Enum):
    """Status of a project."""

    DRAFT = "draft"
    GENERATING = "generating"
    READY = "ready"
    RENDERING = "rendering"
    COMPLETE = "complete"
    ERROR = "error"
    CANCELLED = "cancelled"


class SceneStatus(Enum):
    """Status of a scene."""

    PENDING = "pending"
    GENERATING = "generating"
    GENERATED = "generated"
    ANALYZING = "analyzing"
    READY = "ready"
    NEEDS_REVIEW = "needs_review"
    NEEDS_MANUAL_REVIEW = "needs_manual_review"
    FAILED = "failed"


class AssetKind(Enum):
    """Asset slot on a scene."""

    IMAGE = "image"
    VIDEO = "video"
    VOICE = "voice"
    MUSIC = "music"
    SOUND_EFFECT = "sound_effect"

    @property
    def media_type(self) -> str:
        if self in (AssetKind.IMAGE, AssetKind.VIDEO):
            return self.value
        return "audio"

    @property
    def is_visual(self) -> bool:
        return self in (AssetKind.IMAGE, AssetKind.VIDEO)


class AssetOrigin(Enum):
    """Where an asset's bytes came from."""

    GENERATED = "generated"
    CACHED_EXTERNAL = "cached_external"
    UPLOADED = "uploaded"


class Recommendation(Enum):
    """Quality verdict derived from the weighted score."""

    APPROVED = "approved"
    NEEDS_REVIEW = "needs_review"
    REGENERATE = "regenerate"
    CRITICAL_FAIL = "critical_fail"


class RegenerationState(Enum):
    """Per scene and asset kind quality state."""

    PENDING = "pending"
    ANALYZED = "analyzed"
    APPROVED = "approved"
    NEEDS_REVIEW = "needs_review"
    REGENERATING = "regenerating"
    EXHAUSTED = "exhausted"


class ChunkStatus(Enum):
    """Status of a render chunk."""

    PENDING = "pending"
    RENDERING = "rendering"
    DONE = "done"
    FAILED = "failed"


class RenderJobStatus(Enum):
    """Status of a render job."""

    PENDING = "pending"
    RENDERING = "rendering"
    COMPLETE = "complete"
    FAILED = "failed"
    CANCELLED = "cancelled"


def _parse_time(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def _short_id() -> str:
    return str(uuid.uuid4())[:8]


# =============================================================================
# Assets and history records
# =============================================================================


@dataclass
class Asset:
    """A generated or sourced binary referenced by URI."""

    uri: str
    kind: AssetKind
    origin: AssetOrigin = AssetOrigin.GENERATED
    ready: bool = False
    content_type: Optional[str] = None
    duration_seconds: Optional[float] = None
    provider: Optional[str] = None
    source_uri: Optional[str] = None
    created_at: datetime = field(default_factory=datetime.now)

    @property
    def media_type(self) -> str:
        return self.kind.media_type

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "uri": self.uri,
            "kind": self.kind.value,
            "origin": self.origin.value,
            "ready": self.ready,
            "content_type": self.content_type,
            "duration_seconds": self.duration_seconds,
            "provider": self.provider,
            "source_uri": self.source_uri,
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Asset":
        return cls(
            uri=data["uri"],
            kind=AssetKind(data["kind"]),
            origin=AssetOrigin(data.get("origin", "generated")),
            ready=data.get("ready", False),
            content_type=data.get("content_type"),
            duration_seconds=data.get("duration_seconds"),
            provider=data.get("provider"),
            source_uri=data.get("source_uri"),
            created_at=_parse_time(data.get("created_at")) or datetime.now(),
        )


@dataclass
class ProviderAttempt:
    """One call to one provider for one asset kind."""

    provider: str
    kind: AssetKind
    prompt: str
    success: bool
    duration_seconds: Optional[float] = None
    error_class: Optional[str] = None
    error_message: Optional[str] = None
    latency_seconds: float = 0.0
    regeneration_round: int = 0
    started_at: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "provider": self.provider,
            "kind": self.kind.value,
            "prompt": self.prompt,
            "success": self.success,
            "duration_seconds": self.duration_seconds,
            "error_class": self.error_class,
            "error_message": self.error_message,
            "latency_seconds": round(self.latency_seconds, 3),
            "regeneration_round": self.regeneration_round,
            "started_at": self.started_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ProviderAttempt":
        return cls(
            provider=data["provider"],
            kind=AssetKind(data["kind"]),
            prompt=data.get("prompt", ""),
            success=data.get("success", False),
            duration_seconds=data.get("duration_seconds"),
            error_class=data.get("error_class"),
            error_message=data.get("error_message"),
            latency_seconds=data.get("latency_seconds", 0.0),
            regeneration_round=data.get("regeneration_round", 0),
            started_at=_parse_time(data.get("started_at")) or datetime.now(),
        )


@dataclass
class AnalysisIssue:
    """A single problem reported by the quality analyzer."""

    category: str
    severity: str = "minor"
    description: str = ""
    suggestion: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "category": self.category,
            "severity": self.severity,
            "description": self.description,
            "suggestion": self.suggestion,
        }


@dataclass
class AnalysisResult:
    """Quality verdict for one asset at one point in time."""

    asset_uri: str
    kind: AssetKind
    score: float
    recommendation: Recommendation
    sub_scores: Dict[str, float] = field(default_factory=dict)
    issues: List[AnalysisIssue] = field(default_factory=list)
    improved_prompt: Optional[str] = None
    summary: Optional[str] = None
    failed: bool = False
    model: Optional[str] = None
    analyzed_at: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "asset_uri": self.asset_uri,
            "kind": self.kind.value,
            "score": self.score,
            "recommendation": self.recommendation.value,
            "sub_scores": dict(self.sub_scores),
            "issues": [issue.to_dict() for issue in self.issues],
            "improved_prompt": self.improved_prompt,
            "summary": self.summary,
            "failed": self.failed,
            "model": self.model,
            "analyzed_at": self.analyzed_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AnalysisResult":
        return cls(
            asset_uri=data["asset_uri"],
            kind=AssetKind(data["kind"]),
            score=data["score"],
            recommendation=Recommendation(data["recommendation"]),
            sub_scores=data.get("sub_scores", {}),
            issues=[AnalysisIssue(**issue) for issue in data.get("issues", [])],
            improved_prompt=data.get("improved_prompt"),
            summary=data.get("summary"),
            failed=data.get("failed", False),
            model=data.get("model"),
            analyzed_at=_parse_time(data.get("analyzed_at")) or datetime.now(),
        )


@dataclass
class QualityTrack:
    """Regeneration bookkeeping for one scene and asset kind."""

    kind: AssetKind
    state: RegenerationState = RegenerationState.PENDING
    attempts: int = 0
    last_score: Optional[float] = None
    last_prompt: Optional[str] = None
    reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "state": self.state.value,
            "attempts": self.attempts,
            "last_score": self.last_score,
            "last_prompt": self.last_prompt,
            "reason": self.reason,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "QualityTrack":
        return cls(
            kind=AssetKind(data["kind"]),
            state=RegenerationState(data.get("state", "pending")),
            attempts=data.get("attempts", 0),
            last_score=data.get("last_score"),
            last_prompt=data.get("last_prompt"),
            reason=data.get("reason"),
        )


@dataclass
class SceneFailure:
    """Human-readable record of something that went wrong for a scene."""

    error: str
    reason: str
    kind: Optional[AssetKind] = None
    recorded_at: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": self.error,
            "reason": self.reason,
            "kind": self.kind.value if self.kind else None,
            "recorded_at": self.recorded_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SceneFailure":
        return cls(
            error=data["error"],
            reason=data["reason"],
            kind=AssetKind(data["kind"]) if data.get("kind") else None,
            recorded_at=_parse_time(data.get("recorded_at")) or datetime.now(),
        )


# =============================================================================
# Scene
# =============================================================================


@dataclass
class Scene:
    """
    One timed unit of the storyboard.

    Mutations that span several fields (swapping the primary visual, recording
    a degradation) are applied under ``scene.lock`` so concurrent generation
    and analysis tasks never observe a half-updated scene.
    """

    scene_id: str = field(default_factory=_short_id)
    order: int = 0
    duration: float = 5.0
    scene_type: str = "content"
    narration: str = ""
    visual_direction: str = ""
    content_type: Optional[str] = None
    visual_kind: AssetKind = AssetKind.IMAGE
    music_direction: Optional[str] = None
    sound_effect_direction: Optional[str] = None
    provider_preferences: Dict[AssetKind, List[str]] = field(default_factory=dict)

    assets: Dict[AssetKind, Asset] = field(default_factory=dict)
    attempts: List[ProviderAttempt] = field(default_factory=list)
    analyses: List[AnalysisResult] = field(default_factory=list)
    quality: Dict[AssetKind, QualityTrack] = field(default_factory=dict)
    failures: List[SceneFailure] = field(default_factory=list)

    status: SceneStatus = SceneStatus.PENDING
    fallback: Optional[str] = None

    _lock: Optional[asyncio.Lock] = field(default=None, init=False, repr=False, compare=False)

    def __post_init__(self):
        if self.duration <= 0:
            raise ValidationError(
                f"Scene duration must be positive, got {self.duration}",
                field="duration",
                value=self.duration,
            )
        if not self.visual_kind.is_visual:
            raise ValidationError(
                f"visual_kind must be image or video, got {self.visual_kind.value}",
                field="visual_kind",
            )

    @property
    def lock(self) -> asyncio.Lock:
        if self._lock is None:
            self._lock = asyncio.Lock()
        return self._lock

    # -------------------------------------------------------------------------
    # Asset slots
    # -------------------------------------------------------------------------

    @property
    def primary_visual(self) -> Optional[Asset]:
        return self.assets.get(self.visual_kind)

    def required_kinds(self) -> List[AssetKind]:
        """Asset kinds this scene needs, primary visual first."""
        kinds = [self.visual_kind]
        if self.narration.strip():
            kinds.append(AssetKind.VOICE)
        if self.music_direction:
            kinds.append(AssetKind.MUSIC)
        if self.sound_effect_direction:
            kinds.append(AssetKind.SOUND_EFFECT)
        return kinds

    def set_asset(self, asset: Asset) -> Optional[Asset]:
        """Put an asset in its slot, returning whatever it replaced."""
        previous = self.assets.get(asset.kind)
        self.assets[asset.kind] = asset
        if asset.kind.is_visual and asset.kind is not self.visual_kind:
            # Only one primary visual may be active
            self.assets.pop(self.visual_kind, None)
            self.visual_kind = asset.kind
        return previous

    def clear_asset(self, kind: AssetKind) -> Optional[Asset]:
        return self.assets.pop(kind, None)

    def ready_assets(self) -> Dict[AssetKind, Asset]:
        return {kind: asset for kind, asset in self.assets.items() if asset.ready}

    # -------------------------------------------------------------------------
    # History
    # -------------------------------------------------------------------------

    def record_attempt(self, attempt: ProviderAttempt) -> None:
        self.attempts.append(attempt)

    def record_analysis(self, analysis: AnalysisResult) -> None:
        self.analyses.append(analysis)

    def record_failure(self, error: str, reason: str, kind: Optional[AssetKind] = None) -> SceneFailure:
        failure = SceneFailure(error=error, reason=reason, kind=kind)
        self.failures.append(failure)
        logger.warning(f"Scene {self.order} ({self.scene_id}): {error}: {reason}")
        return failure

    def quality_track(self, kind: AssetKind) -> QualityTrack:
        if kind not in self.quality:
            self.quality[kind] = QualityTrack(kind=kind)
        return self.quality[kind]

    def attempts_for(self, kind: AssetKind) -> List[ProviderAttempt]:
        return [attempt for attempt in self.attempts if attempt.kind is kind]

    def latest_analysis(self, kind: AssetKind) -> Optional[AnalysisResult]:
        for analysis in reversed(self.analyses):
            if analysis.kind is kind:
                return analysis
        return None

    # -------------------------------------------------------------------------
    # Durations
    # -------------------------------------------------------------------------

    def narration_seconds(self, words_per_second: float, padding: float = 0.0) -> float:
        words = len(self.narration.split())
        if not words:
            return 0.0
        return words / words_per_second + padding

    def fit_duration(self, seconds: float) -> bool:
        """Extend the scene so `seconds` of audio fits; never shortens."""
        if seconds > self.duration:
            self.duration = round(seconds, 3)
            return True
        return False

    # -------------------------------------------------------------------------
    # Serialization
    # -------------------------------------------------------------------------

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "scene_id": self.scene_id,
            "order": self.order,
            "duration": self.duration,
            "scene_type": self.scene_type,
            "narration": self.narration,
            "visual_direction": self.visual_direction,
            "content_type": self.content_type,
            "visual_kind": self.visual_kind.value,
            "music_direction": self.music_direction,
            "sound_effect_direction": self.sound_effect_direction,
            "provider_preferences": {kind.value: list(ids) for kind, ids in self.provider_preferences.items()},
            "assets": {kind.value: asset.to_dict() for kind, asset in self.assets.items()},
            "attempts": [attempt.to_dict() for attempt in self.attempts],
            "analyses": [analysis.to_dict() for analysis in self.analyses],
            "quality": {kind.value: track.to_dict() for kind, track in self.quality.items()},
            "failures": [failure.to_dict() for failure in self.failures],
            "status": self.status.value,
            "fallback": self.fallback,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Scene":
        """Build a scene from a storyboard entry or a persisted snapshot."""
        scene = cls(
            scene_id=data.get("scene_id") or _short_id(),
            order=data.get("order", 0),
            duration=float(data.get("duration", 5.0)),
            scene_type=data.get("scene_type", "content"),
            narration=data.get("narration") or "",
            visual_direction=data.get("visual_direction") or "",
            content_type=data.get("content_type"),
            visual_kind=AssetKind(data.get("visual_kind", "image")),
            music_direction=data.get("music_direction"),
            sound_effect_direction=data.get("sound_effect_direction"),
            provider_preferences={
                AssetKind(kind): list(ids) for kind, ids in (data.get("provider_preferences") or {}).items()
            },
            status=SceneStatus(data.get("status", "pending")),
            fallback=data.get("fallback"),
        )
        scene.assets = {AssetKind(kind): Asset.from_dict(a) for kind, a in (data.get("assets") or {}).items()}
        scene.attempts = [ProviderAttempt.from_dict(a) for a in data.get("attempts", [])]
        scene.analyses = [AnalysisResult.from_dict(a) for a in data.get("analyses", [])]
        scene.quality = {AssetKind(k): QualityTrack.from_dict(t) for k, t in (data.get("quality") or {}).items()}
        scene.failures = [SceneFailure.from_dict(f) for f in data.get("failures", [])]
        return scene


# =============================================================================
# Project
# =============================================================================


@dataclass
class Project:
    """An ordered storyboard of scenes owned by the pipeline."""

    project_id: str = field(default_factory=lambda: f"proj_{uuid.uuid4().hex[:12]}")
    scenes: List[Scene] = field(default_factory=list)
    target_duration: Optional[float] = None
    aspect_ratio: str = "16:9"
    composition_id: Optional[str] = None
    status: ProjectStatus = ProjectStatus.DRAFT
    order_locked: bool = False
    output_uri: Optional[str] = None
    error_message: Optional[str] = None
    review_queue: List[str] = field(default_factory=list)
    render_job_ids: List[str] = field(default_factory=list)
    created_at: datetime = field(default_factory=datetime.now)
    updated_at: datetime = field(default_factory=datetime.now)

    def __post_init__(self):
        self.scenes.sort(key=lambda s: s.order)
        seen = set()
        for scene in self.scenes:
            if scene.scene_id in seen:
                raise ValidationError(
                    f"Duplicate scene id: {scene.scene_id}",
                    field="scene_id",
                    value=scene.scene_id,
                )
            seen.add(scene.scene_id)

    @property
    def total_duration(self) -> float:
        return sum(scene.duration for scene in self.scenes)

    def get_scene(self, scene_id: str) -> Scene:
        for scene in self.scenes:
            if scene.scene_id == scene_id:
                return scene
        raise ValidationError(f"Scene not found: {scene_id}", field="scene_id", value=scene_id)

    def scene_index(self, scene: Scene) -> int:
        """1-based position of a scene in playback order."""
        return self.scenes.index(scene) + 1

    def reorder_scenes(self, scene_ids: List[str]) -> None:
        if self.order_locked:
            raise ValidationError(
                "Scene order is locked once rendering starts",
                field="order",
                constraint="immutable after render",
            )
        if sorted(scene_ids) != sorted(s.scene_id for s in self.scenes):
            raise ValidationError("Reorder must list every scene exactly once", field="scene_ids")
        by_id = {scene.scene_id: scene for scene in self.scenes}
        self.scenes = [by_id[scene_id] for scene_id in scene_ids]
        for position, scene in enumerate(self.scenes):
            scene.order = position
        self.touch()

    def lock_order(self) -> None:
        self.order_locked = True

    def queue_for_review(self, scene: Scene) -> None:
        if scene.scene_id not in self.review_queue:
            self.review_queue.append(scene.scene_id)

    def touch(self) -> None:
        self.updated_at = datetime.now()

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "project_id": self.project_id,
            "status": self.status.value,
            "target_duration": self.target_duration,
            "total_duration": self.total_duration,
            "aspect_ratio": self.aspect_ratio,
            "composition_id": self.composition_id,
            "order_locked": self.order_locked,
            "output_uri": self.output_uri,
            "error_message": self.error_message,
            "review_queue": list(self.review_queue),
            "render_job_ids": list(self.render_job_ids),
            "scenes": [scene.to_dict() for scene in self.scenes],
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Project":
        return cls(
            project_id=data["project_id"],
            scenes=[Scene.from_dict(s) for s in data.get("scenes", [])],
            target_duration=data.get("target_duration"),
            aspect_ratio=data.get("aspect_ratio", "16:9"),
            composition_id=data.get("composition_id"),
            status=ProjectStatus(data.get("status", "draft")),
            order_locked=data.get("order_locked", False),
            output_uri=data.get("output_uri"),
            error_message=data.get("error_message"),
            review_queue=list(data.get("review_queue", [])),
            render_job_ids=list(data.get("render_job_ids", [])),
            created_at=_parse_time(data.get("created_at")) or datetime.now(),
            updated_at=_parse_time(data.get("updated_at")) or datetime.now(),
        )


# =============================================================================
# Rendering
# =============================================================================


@dataclass
class RenderChunk:
    """A contiguous, scene-aligned frame range rendered on its own.

    ``end_frame`` is exclusive: it is the ``start_frame`` of the next chunk.
    """

    index: int
    scene_ids: List[str]
    start_frame: int
    end_frame: int
    status: ChunkStatus = ChunkStatus.PENDING
    output_uri: Optional[str] = None
    attempts: int = 0
    error_message: Optional[str] = None

    @property
    def frame_count(self) -> int:
        return self.end_frame - self.start_frame

    def duration_seconds(self, fps: int) -> float:
        return self.frame_count / fps

    def to_dict(self) -> Dict[str, Any]:
        return {
            "index": self.index,
            "scene_ids": list(self.scene_ids),
            "start_frame": self.start_frame,
            "end_frame": self.end_frame,
            "status": self.status.value,
            "output_uri": self.output_uri,
            "attempts": self.attempts,
            "error_message": self.error_message,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RenderChunk":
        return cls(
            index=data["index"],
            scene_ids=list(data["scene_ids"]),
            start_frame=data["start_frame"],
            end_frame=data["end_frame"],
            status=ChunkStatus(data.get("status", "pending")),
            output_uri=data.get("output_uri"),
            attempts=data.get("attempts", 0),
            error_message=data.get("error_message"),
        )


@dataclass
class RenderJob:
    """One render of a project, split into chunks."""

    project_id: str
    composition_id: str
    fps: int
    chunks: List[RenderChunk] = field(default_factory=list)
    job_id: str = field(default_factory=lambda: f"render_{uuid.uuid4().hex[:12]}")
    status: RenderJobStatus = RenderJobStatus.PENDING
    output_uri: Optional[str] = None
    failed_chunk_indices: List[int] = field(default_factory=list)
    error_message: Optional[str] = None
    created_at: datetime = field(default_factory=datetime.now)
    completed_at: Optional[datetime] = None

    @property
    def total_frames(self) -> int:
        return self.chunks[-1].end_frame if self.chunks else 0

    @property
    def duration_seconds(self) -> float:
        return self.total_frames / self.fps

    @property
    def is_chunked(self) -> bool:
        return len(self.chunks) > 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            "job_id": self.job_id,
            "project_id": self.project_id,
            "composition_id": self.composition_id,
            "fps": self.fps,
            "status": self.status.value,
            "output_uri": self.output_uri,
            "failed_chunk_indices": list(self.failed_chunk_indices),
            "error_message": self.error_message,
            "duration_seconds": self.duration_seconds,
            "chunks": [chunk.to_dict() for chunk in self.chunks],
            "created_at": self.created_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RenderJob":
        return cls(
            project_id=data["project_id"],
            composition_id=data["composition_id"],
            fps=data["fps"],
            chunks=[RenderChunk.from_dict(c) for c in data.get("chunks", [])],
            job_id=data["job_id"],
            status=RenderJobStatus(data.get("status", "pending")),
            output_uri=data.get("output_uri"),
            failed_chunk_indices=list(data.get("failed_chunk_indices", [])),
            error_message=data.get("error_message"),
            created_at=_parse_time(data.get("created_at")) or datetime.now(),
            completed_at=_parse_time(data.get("completed_at")),
        )
