"""
Provider Orchestrator
=====================

Generates one asset for one scene by walking a ranked list of providers.

Each provider call is recorded on the scene as a ProviderAttempt. A rejected
prompt stops the chain; any other failure moves on to the next provider.
The orchestrator never touches the scene's asset slots: callers decide
whether a new asset replaces the current one.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Optional, List, Dict

from ..api.base import ProviderClient, GenerationRequest, ProviderResult
from ..core.config import GenerationConfig
from ..core.exceptions import ReelforgeError, ProviderError, ProviderExhausted, PromptRejected, StorageError
from ..project.models import Scene, Asset, AssetKind, AssetOrigin, ProviderAttempt
from ..storage.base import ObjectStore, content_key

logger = logging.getLogger(__name__)


MOOD_BY_SCENE_TYPE = {
    "hook": "energetic, attention-grabbing",
    "intro": "warm, welcoming",
    "problem": "tense, reflective",
    "solution": "uplifting, hopeful",
    "benefit": "bright, optimistic",
    "testimonial": "sincere, gentle",
    "cta": "confident, motivating",
    "outro": "calm, resolved",
}


def derive_prompt(scene: Scene, kind: AssetKind) -> str:
    """Default generation prompt for a scene's asset kind."""
    if kind.is_visual:
        return scene.visual_direction or scene.narration
    if kind is AssetKind.VOICE:
        return scene.narration
    if kind is AssetKind.MUSIC:
        if scene.music_direction:
            return scene.music_direction
        mood = MOOD_BY_SCENE_TYPE.get(scene.scene_type, "neutral, unobtrusive")
        return f"Instrumental background music, {mood}"
    return scene.sound_effect_direction or ""


@dataclass
class GenerationOutcome:
    """Either a generated asset or the reason there is none."""

    kind: AssetKind
    asset: Optional[Asset] = None
    error: Optional[ReelforgeError] = None
    attempts: List[ProviderAttempt] = field(default_factory=list)
    prompt: str = ""

    @property
    def ok(self) -> bool:
        return self.asset is not None

    @property
    def reason(self) -> str:
        return self.error.message if self.error else ""


class ProviderOrchestrator:
    """
    Fallback chain over provider clients.

    Example:
        orchestrator = ProviderOrchestrator(build_providers(config.generation), config.generation, store)
        outcome = await orchestrator.generate(scene, AssetKind.IMAGE)
    """

    def __init__(
        self,
        providers: Dict[str, ProviderClient],
        config: Optional[GenerationConfig] = None,
        store: Optional[ObjectStore] = None,
        key_prefix: str = "video-assets",
    ):
        self.providers = providers
        self.config = config or GenerationConfig()
        self.store = store
        self.key_prefix = key_prefix

    def preferences(self, scene: Scene, kind: AssetKind) -> List[str]:
        """Ranked provider ids for a scene and kind, limited to capable, configured providers."""
        ranked = scene.provider_preferences.get(kind) or self.config.preferences_for(kind.value)
        usable = [
            name for name in ranked
            if name in self.providers and self.providers[name].supports(kind)
        ]
        return usable[: self.config.max_provider_fallbacks]

    async def generate(
        self,
        scene: Scene,
        kind: AssetKind,
        prompt: Optional[str] = None,
        regeneration_round: int = 0,
        negative_prompt: Optional[str] = None,
        aspect_ratio: Optional[str] = None,
    ) -> GenerationOutcome:
        """
        Generate one asset of `kind` for `scene`.

        Every provider call is appended to ``scene.attempts``. Inline payloads
        are uploaded to the object store and come back ready.

        Raises:
            StorageError: If an inline payload could not be stored
        """
        prompt = prompt if prompt is not None else derive_prompt(scene, kind)
        outcome = GenerationOutcome(kind=kind, prompt=prompt)
        chain = self.preferences(scene, kind)

        if not chain:
            outcome.error = ProviderExhausted(
                f"No configured provider supports {kind.value}",
                scene_id=scene.scene_id,
                asset_kind=kind.value,
                providers=[],
            )
            return outcome

        request = GenerationRequest(
            prompt=prompt,
            asset_kind=kind,
            duration_seconds=scene.duration,
            aspect_ratio=aspect_ratio or self.config.aspect_ratio,
            negative_prompt=negative_prompt,
            image_url=self._first_frame(scene, kind),
        )

        failures = []
        for name in chain:
            client = self.providers[name]
            started = time.monotonic()
            result = await client.generate(request)
            attempt = self._record(scene, request, result, regeneration_round, time.monotonic() - started)
            outcome.attempts.append(attempt)

            if result.ok:
                outcome.asset = await self._to_asset(result, kind, name)
                logger.info(f"Scene {scene.order} {kind.value}: generated by {name} in {attempt.latency_seconds:.1f}s")
                return outcome

            failures.append(f"{name}: {result.error_class}")
            logger.warning(
                f"Scene {scene.order} {kind.value}: {name} failed "
                f"({result.error_class}): {result.error_message}"
            )

            if result.stops_chain:
                outcome.error = PromptRejected(result.error_message or "Prompt rejected", provider=result.provider)
                return outcome

        outcome.error = ProviderExhausted(
            f"All providers failed for {kind.value} ({'; '.join(failures)})",
            scene_id=scene.scene_id,
            asset_kind=kind.value,
            providers=chain,
        )
        return outcome

    def _record(
        self,
        scene: Scene,
        request: GenerationRequest,
        result: ProviderResult,
        regeneration_round: int,
        elapsed: float,
    ) -> ProviderAttempt:
        attempt = ProviderAttempt(
            provider=result.provider,
            kind=request.asset_kind,
            prompt=request.prompt,
            success=result.ok,
            duration_seconds=request.duration_seconds,
            error_class=result.error_class,
            error_message=result.error_message,
            latency_seconds=result.latency_seconds or elapsed,
            regeneration_round=regeneration_round,
        )
        scene.record_attempt(attempt)
        return attempt

    @staticmethod
    def _first_frame(scene: Scene, kind: AssetKind) -> Optional[str]:
        if kind is not AssetKind.VIDEO:
            return None
        image = scene.assets.get(AssetKind.IMAGE)
        return image.uri if image and image.ready else None

    async def _to_asset(self, result: ProviderResult, kind: AssetKind, provider: str) -> Asset:
        if result.asset_bytes is not None:
            if self.store is None:
                raise ProviderError(
                    f"{provider} returned an inline payload but no object store is configured",
                    provider=provider,
                )
            key = content_key(
                result.asset_bytes,
                self.key_prefix,
                kind.value,
                result.content_type,
                kind.media_type,
            )
            try:
                uri = await asyncio.wait_for(
                    self.store.put(result.asset_bytes, key, result.content_type),
                    timeout=self.config.upload_timeout,
                )
            except asyncio.TimeoutError:
                raise StorageError(
                    f"Upload of {kind.value} from {provider} timed out after {self.config.upload_timeout}s",
                    key=key,
                    backend=self.store.backend,
                )
            return Asset(
                uri=uri,
                kind=kind,
                origin=AssetOrigin.GENERATED,
                ready=True,
                content_type=result.content_type,
                duration_seconds=result.duration_seconds,
                provider=provider,
            )

        return Asset(
            uri=result.asset_uri,
            kind=kind,
            origin=AssetOrigin.GENERATED,
            ready=False,
            content_type=result.content_type,
            duration_seconds=result.duration_seconds,
            provider=provider,
        )
