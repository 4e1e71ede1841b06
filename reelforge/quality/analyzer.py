"""
Quality Analyzer
================

Scores a visual asset against its scene with a vision model.

The model returns four sub-scores and a list of issues; the overall score is
always recomputed locally from the configured weights, so a model that
"rounds up" its own total cannot push an asset past a threshold. Any failure
of the analysis itself produces a ``critical_fail`` verdict marked
``failed=True``, never a pass.
"""

import asyncio
import json
import logging
import re
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, List, Dict, Any

from ..core.config import QualityConfig
from ..core.exceptions import AnalysisFailure, ValidationError, StorageError
from ..project.models import (
    Asset,
    AssetKind,
    Scene,
    AnalysisIssue,
    AnalysisResult,
    Recommendation,
)
from ..storage.base import ObjectStore
from ..utils.media import extract_frames, downscale_image
from .vision import VisionClient, ImageInput

logger = logging.getLogger(__name__)

JSON_OBJECT = re.compile(r"\{[\s\S]*\}")

ISSUE_CATEGORIES = ("ai_artifacts", "content_match", "technical", "composition", "compliance")
SEVERITIES = ("critical", "major", "minor")


@dataclass
class SceneContext:
    """What the analyzer knows about the scene an asset belongs to."""

    narration: str = ""
    scene_type: str = "content"
    visual_direction: str = ""
    content_type: Optional[str] = None
    compliance_guidance: str = ""

    @classmethod
    def from_scene(cls, scene: Scene, compliance_guidance: str = "") -> "SceneContext":
        return cls(
            narration=scene.narration,
            scene_type=scene.scene_type,
            visual_direction=scene.visual_direction,
            content_type=scene.content_type,
            compliance_guidance=compliance_guidance,
        )


class ScoringPolicy:
    """Weighted score and threshold mapping."""

    def __init__(
        self,
        weights: Dict[str, float],
        approve_threshold: float = 85.0,
        review_threshold: float = 70.0,
        regenerate_threshold: float = 50.0,
    ):
        self.weights = dict(weights)
        self.approve_threshold = approve_threshold
        self.review_threshold = review_threshold
        self.regenerate_threshold = regenerate_threshold

    @classmethod
    def from_config(cls, config: QualityConfig) -> "ScoringPolicy":
        return cls(
            weights=config.weights,
            approve_threshold=config.approve_threshold,
            review_threshold=config.review_threshold,
            regenerate_threshold=config.regenerate_threshold,
        )

    def score(self, sub_scores: Dict[str, float]) -> float:
        total = sum(sub_scores[key] * weight for key, weight in self.weights.items())
        return round(total / 100.0, 2)

    def recommend(self, score: float) -> Recommendation:
        if score >= self.approve_threshold:
            return Recommendation.APPROVED
        if score >= self.review_threshold:
            return Recommendation.NEEDS_REVIEW
        if score >= self.regenerate_threshold:
            return Recommendation.REGENERATE
        return Recommendation.CRITICAL_FAIL


def build_analysis_prompt(context: SceneContext, media_type: str, frame_count: int = 1) -> str:
    """Prompt asking the model for sub-scores and issues as JSON."""
    subject = "this image" if media_type == "image" else f"these {frame_count} frames from one video clip"
    narration = context.narration[:300]
    return f"""Evaluate {subject} for use in a professional video. Be critical but fair.

SCENE CONTEXT:
- Scene type: {context.scene_type}
- Expected content: {context.content_type or "not specified"}
- Visual direction: "{context.visual_direction[:300]}"
- Narration: "{narration}"

COMPLIANCE GUIDANCE:
{context.compliance_guidance or "None."}

Rate each aspect 0-100:
- technical: sharpness, resolution, no blur or compression artifacts
- content_match: does the visual match the narration and expected content?
- compliance: follows the guidance above, no garbled AI text, no fake UI elements
- composition: clear subject, balanced layout, room for overlays

Respond with a JSON object in this EXACT format:
{{
  "scores": {{
    "technical": <0-100>,
    "content_match": <0-100>,
    "compliance": <0-100>,
    "composition": <0-100>
  }},
  "issues": [
    {{
      "category": "{' | '.join(ISSUE_CATEGORIES)}",
      "severity": "{' | '.join(SEVERITIES)}",
      "description": "Specific description of the issue",
      "suggestion": "How the generation prompt should change"
    }}
  ],
  "improved_prompt": "A rewritten generation prompt that avoids the issues, or null",
  "summary": "Brief overall assessment"
}}

Garbled or misspelled text anywhere in the frame is a critical ai_artifacts issue.

Return ONLY the JSON object."""


def _clamp(value: Any) -> float:
    return max(0.0, min(100.0, float(value)))


def parse_verdict(text: str, weight_keys) -> Dict[str, Any]:
    """
    Extract the JSON verdict from a model reply.

    Raises:
        AnalysisFailure: If there is no JSON object or a sub-score is missing
    """
    match = JSON_OBJECT.search(text or "")
    if not match:
        raise AnalysisFailure("No JSON found in vision response")
    try:
        parsed = json.loads(match.group(0))
    except json.JSONDecodeError as e:
        raise AnalysisFailure(f"Invalid JSON in vision response: {e}")

    scores = parsed.get("scores") if isinstance(parsed, dict) else None
    if not isinstance(scores, dict):
        raise AnalysisFailure("Vision response has no scores object")

    try:
        sub_scores = {key: _clamp(scores[key]) for key in weight_keys}
    except (KeyError, TypeError, ValueError) as e:
        raise AnalysisFailure(f"Vision response has a missing or invalid sub-score: {e}")

    issues = []
    for raw in parsed.get("issues") or []:
        if not isinstance(raw, dict):
            continue
        category = raw.get("category") or "technical"
        severity = raw.get("severity") if raw.get("severity") in SEVERITIES else "minor"
        issues.append(
            AnalysisIssue(
                category=category if category in ISSUE_CATEGORIES else "technical",
                severity=severity,
                description=str(raw.get("description") or ""),
                suggestion=raw.get("suggestion"),
            )
        )

    improved = parsed.get("improved_prompt")
    return {
        "sub_scores": sub_scores,
        "issues": issues,
        "improved_prompt": improved.strip() if isinstance(improved, str) and improved.strip() else None,
        "summary": parsed.get("summary"),
    }


class QualityAnalyzer:
    """
    Scores images and videos with a vision model.

    Example:
        analyzer = QualityAnalyzer(AnthropicVisionClient(), config.quality, store)
        result = await analyzer.analyze_asset(scene.primary_visual, SceneContext.from_scene(scene))
    """

    def __init__(
        self,
        vision: VisionClient,
        config: Optional[QualityConfig] = None,
        store: Optional[ObjectStore] = None,
        ffmpeg_path: str = "ffmpeg",
    ):
        self.vision = vision
        self.config = config or QualityConfig()
        self.store = store
        self.ffmpeg_path = ffmpeg_path
        self.policy = ScoringPolicy.from_config(self.config)

    async def analyze(
        self,
        asset_bytes: bytes,
        context: SceneContext,
        media_type: str,
        asset_uri: str = "",
        kind: Optional[AssetKind] = None,
    ) -> AnalysisResult:
        """Analyze raw image or video bytes; never raises for analysis failures."""
        kind = kind or AssetKind(media_type)
        try:
            images = await self._prepare(asset_bytes, media_type)
            prompt = build_analysis_prompt(context, media_type, len(images))
            reply = await asyncio.wait_for(
                self.vision.describe(images, prompt),
                timeout=self.config.analysis_timeout,
            )
            verdict = parse_verdict(reply, self.config.WEIGHT_KEYS)
        except asyncio.TimeoutError:
            return self._failed(asset_uri, kind, f"analysis timed out after {self.config.analysis_timeout}s")
        except (AnalysisFailure, ValidationError) as e:
            return self._failed(asset_uri, kind, e.message)

        score = self.policy.score(verdict["sub_scores"])
        recommendation = self.policy.recommend(score)
        logger.info(f"Analyzed {kind.value} {asset_uri[:80]}: {score:.1f} ({recommendation.value})")

        return AnalysisResult(
            asset_uri=asset_uri,
            kind=kind,
            score=score,
            recommendation=recommendation,
            sub_scores=verdict["sub_scores"],
            issues=verdict["issues"],
            improved_prompt=verdict["improved_prompt"],
            summary=verdict["summary"],
            model=self.vision.model,
        )

    async def analyze_asset(self, asset: Asset, context: SceneContext) -> AnalysisResult:
        """Fetch an asset from the object store and analyze it."""
        if self.store is None:
            return self._failed(asset.uri, asset.kind, "no object store configured for analysis")
        try:
            data = await self.store.get(asset.uri)
        except StorageError as e:
            return self._failed(asset.uri, asset.kind, f"could not fetch asset: {e.message}")
        return await self.analyze(data, context, asset.media_type, asset_uri=asset.uri, kind=asset.kind)

    async def _prepare(self, data: bytes, media_type: str) -> ImageInput:
        max_size = self.config.max_image_dimension
        if media_type == "image":
            return [await asyncio.to_thread(downscale_image, data, max_size)]
        if media_type == "video":
            return await asyncio.to_thread(self._video_frames, data, max_size)
        raise AnalysisFailure(f"Cannot analyze media type: {media_type}")

    def _video_frames(self, data: bytes, max_size: int) -> ImageInput:
        with tempfile.TemporaryDirectory(prefix="reelforge_frames_") as tmp:
            video_path = Path(tmp) / "clip.mp4"
            video_path.write_bytes(data)
            frames = extract_frames(
                video_path,
                Path(tmp) / "frames",
                count=self.config.video_frame_count,
                ffmpeg_path=self.ffmpeg_path,
            )
            if not frames:
                raise AnalysisFailure("Could not extract frames from video")
            return [downscale_image(frame.read_bytes(), max_size) for frame in frames]

    def _failed(self, asset_uri: str, kind: AssetKind, reason: str) -> AnalysisResult:
        logger.warning(f"Analysis failed for {asset_uri[:80]}: {reason}")
        return AnalysisResult(
            asset_uri=asset_uri,
            kind=kind,
            score=0.0,
            recommendation=Recommendation.CRITICAL_FAIL,
            summary=reason,
            failed=True,
            model=getattr(self.vision, "model", None),
        )
