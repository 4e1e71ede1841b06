"""
Regeneration Loop
=================

Per scene and asset kind quality state machine::

    pending -> analyzed -> approved
                        -> needs_review
                        -> regenerating -> pending (attempt + 1)
                        -> exhausted

A failing verdict triggers a regeneration with an adjusted prompt until the
asset passes or ``max_regeneration_attempts`` is used up. A regenerated asset
replaces the current one only once it is ready. Scenes that run out of
attempts, or whose analysis failed, go to the project's manual review queue;
the project still proceeds to rendering.
"""

import asyncio
import logging
from typing import Optional, Dict, Any, Callable, Awaitable

from ..core.config import QualityConfig
from ..project.models import (
    Project,
    Scene,
    AssetKind,
    AnalysisResult,
    QualityTrack,
    Recommendation,
    RegenerationState,
    SceneStatus,
)
from ..storage.asset_cache import AssetCache
from ..workflow.orchestrator import ProviderOrchestrator, derive_prompt
from .analyzer import QualityAnalyzer, SceneContext
from .prompts import PromptAdjuster, NEGATIVE_PROMPT

logger = logging.getLogger(__name__)

EmitFn = Callable[[str, Dict[str, Any]], Awaitable[None]]


async def _no_emit(event_type: str, data: Dict[str, Any]) -> None:
    return None


class RegenerationLoop:
    """Analyzes a scene's visual asset and regenerates it while the verdict fails."""

    def __init__(
        self,
        analyzer: QualityAnalyzer,
        orchestrator: ProviderOrchestrator,
        cache: AssetCache,
        config: Optional[QualityConfig] = None,
        adjuster: Optional[PromptAdjuster] = None,
        emit: Optional[EmitFn] = None,
    ):
        self.analyzer = analyzer
        self.orchestrator = orchestrator
        self.cache = cache
        self.config = config or QualityConfig()
        self.adjuster = adjuster or PromptAdjuster()
        self.emit = emit or _no_emit
        self._scene_locks: Dict[str, asyncio.Lock] = {}

    def _analysis_lock(self, scene: Scene) -> asyncio.Lock:
        if scene.scene_id not in self._scene_locks:
            self._scene_locks[scene.scene_id] = asyncio.Lock()
        return self._scene_locks[scene.scene_id]

    async def run(
        self,
        project: Project,
        scene: Scene,
        kind: AssetKind,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> QualityTrack:
        """Drive one scene/kind through analysis and regeneration; serialized per scene."""
        async with self._analysis_lock(scene):
            return await self._run(project, scene, kind, cancel_event or asyncio.Event())

    async def _run(
        self,
        project: Project,
        scene: Scene,
        kind: AssetKind,
        cancel_event: asyncio.Event,
    ) -> QualityTrack:
        track = scene.quality_track(kind)
        context = SceneContext.from_scene(scene, self.config.compliance_guidance)
        base_prompt = derive_prompt(scene, kind)
        previous_prompt = track.last_prompt or self._last_prompt(scene, kind) or base_prompt

        while not cancel_event.is_set():
            asset = scene.assets.get(kind)
            if asset is None or not asset.ready:
                track.reason = "no ready asset to analyze"
                return track

            scene.status = SceneStatus.ANALYZING
            analysis = await self.analyzer.analyze_asset(asset, context)
            scene.record_analysis(analysis)
            track.state = RegenerationState.ANALYZED
            track.last_score = analysis.score
            await self.emit(
                "scene.analyzed",
                {
                    "sceneId": scene.scene_id,
                    "kind": kind.value,
                    "score": analysis.score,
                    "recommendation": analysis.recommendation.value,
                },
            )

            if analysis.failed:
                self._manual_review(project, scene, track, RegenerationState.NEEDS_REVIEW,
                                    f"analysis failed: {analysis.summary}")
                return track

            if analysis.recommendation is Recommendation.APPROVED:
                track.state = RegenerationState.APPROVED
                track.reason = None
                return track

            if analysis.recommendation is Recommendation.NEEDS_REVIEW:
                track.state = RegenerationState.NEEDS_REVIEW
                track.reason = f"score {analysis.score:.1f} needs review"
                return track

            regenerated = await self._regenerate(project, scene, kind, track, analysis, base_prompt,
                                                 previous_prompt, cancel_event)
            if not regenerated:
                return track
            previous_prompt = track.last_prompt
            track.state = RegenerationState.PENDING

        return track

    async def _regenerate(
        self,
        project: Project,
        scene: Scene,
        kind: AssetKind,
        track: QualityTrack,
        analysis: AnalysisResult,
        base_prompt: str,
        previous_prompt: str,
        cancel_event: asyncio.Event,
    ) -> bool:
        """Try regenerations until one yields a ready asset; False once attempts are exhausted."""
        max_attempts = self.config.max_regeneration_attempts

        while track.attempts < max_attempts:
            if cancel_event.is_set():
                return False

            attempt = track.attempts + 1
            prompt = self.adjuster.adjust(base_prompt, analysis, attempt, previous_prompt)
            if prompt is None:
                self._manual_review(project, scene, track, RegenerationState.EXHAUSTED,
                                    "no different prompt could be derived")
                return False

            track.state = RegenerationState.REGENERATING
            track.attempts = attempt
            track.last_prompt = prompt
            previous_prompt = prompt
            logger.info(
                f"Scene {scene.order} {kind.value}: regeneration {attempt}/{max_attempts} "
                f"after {analysis.recommendation.value} ({analysis.score:.1f})"
            )
            await self.emit(
                "scene.regenerating",
                {"sceneId": scene.scene_id, "kind": kind.value, "attempt": attempt},
            )

            outcome = await self.orchestrator.generate(
                scene,
                kind,
                prompt=prompt,
                regeneration_round=attempt,
                negative_prompt=NEGATIVE_PROMPT,
                aspect_ratio=project.aspect_ratio,
            )
            if cancel_event.is_set():
                return False
            if not outcome.ok:
                scene.record_failure("Regeneration failed", outcome.reason, kind)
                continue

            cached = await self.cache.ensure_ready(outcome.asset)
            if not cached.ready:
                scene.record_failure("Regenerated asset could not be cached", cached.uri, kind)
                continue

            async with scene.lock:
                scene.set_asset(cached)
            return True

        self._manual_review(
            project, scene, track, RegenerationState.EXHAUSTED,
            f"still {analysis.recommendation.value} ({analysis.score:.1f}) after {max_attempts} regeneration(s)",
        )
        return False

    @staticmethod
    def _manual_review(
        project: Project,
        scene: Scene,
        track: QualityTrack,
        state: RegenerationState,
        reason: str,
    ) -> None:
        track.state = state
        track.reason = reason
        scene.status = SceneStatus.NEEDS_MANUAL_REVIEW
        project.queue_for_review(scene)
        scene.record_failure("Needs manual review", reason, track.kind)

    @staticmethod
    def _last_prompt(scene: Scene, kind: AssetKind) -> Optional[str]:
        for attempt in reversed(scene.attempts_for(kind)):
            if attempt.success:
                return attempt.prompt
        return None
