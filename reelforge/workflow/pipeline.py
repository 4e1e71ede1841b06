"""
Media Pipeline
==============

Job submission facade: owns projects for their lifetime and drives
generation, caching, quality control and chunked rendering.

Usage:
    pipeline = MediaPipeline()
    project_id = pipeline.create_project(storyboard["scenes"])
    async for event in pipeline.generate_assets(project_id):
        print(event.type.value, event.data)
    job = await pipeline.render_and_wait(project_id)
    print(job.output_uri)
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Optional, List, Dict, Any, Union, AsyncIterator

from ..api.base import ProviderClient
from ..api.factory import build_providers
from ..core.config import Config, GenerationConfig, get_config
from ..core.exceptions import (
    ConfigurationError,
    ValidationError,
    StorageError,
    RenderFailed,
    ConcatFailure,
    PipelineCancelled,
    ResourceNotFoundError,
)
from ..project.models import (
    Project,
    Scene,
    AssetKind,
    ProjectStatus,
    SceneStatus,
    RegenerationState,
    RenderJob,
    RenderJobStatus,
)
from ..project.tracker import ProjectTracker
from ..quality.analyzer import QualityAnalyzer
from ..quality.regeneration import RegenerationLoop
from ..quality.vision import VisionClient, AnthropicVisionClient
from ..render.composition import build_composition_props
from ..render.concat import ChunkConcatenator
from ..render.coordinator import RenderCoordinator
from ..render.planner import ChunkPlanner
from ..render.remote import RenderFunction, HttpRenderFunction
from ..storage import create_store
from ..storage.asset_cache import AssetCache
from ..storage.base import ObjectStore
from .events import EventStream, EventType, ProgressEvent
from .orchestrator import ProviderOrchestrator

logger = logging.getLogger(__name__)

STATIC_BACKGROUND = "static_background"

AUDIO_KINDS = (AssetKind.VOICE, AssetKind.MUSIC, AssetKind.SOUND_EFFECT)


@dataclass
class RunContext:
    """State scoped to one generation or render run of one project."""

    project: Project
    events: EventStream
    cancel_event: asyncio.Event = field(default_factory=asyncio.Event)
    semaphore: Optional[asyncio.Semaphore] = None
    task: Optional[asyncio.Task] = None

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()


class MediaPipeline:
    """
    Media-generation pipeline orchestrator.

    Handles:
    - Provider fallback per scene and asset kind
    - Caching every asset into fast storage
    - Quality analysis with bounded regeneration
    - Graceful degradation of scenes whose assets failed
    - Chunked rendering and lossless concatenation
    """

    def __init__(
        self,
        config: Optional[Config] = None,
        providers: Optional[Dict[str, ProviderClient]] = None,
        store: Optional[ObjectStore] = None,
        vision: Optional[VisionClient] = None,
        render_function: Optional[RenderFunction] = None,
        concatenator: Optional[ChunkConcatenator] = None,
        tracker: Optional[ProjectTracker] = None,
        cache: Optional[AssetCache] = None,
    ):
        """
        Initialize the pipeline.

        Args:
            config: Configuration (defaults to the global config)
            providers: Provider clients by id (defaults to those the preferences name)
            store: Object store (defaults to ``storage.backend``)
            vision: Vision client for quality analysis (defaults to Anthropic)
            render_function: Remote chunk renderer (defaults to ``render.function_url``)
            concatenator: Chunk joiner (defaults to ffmpeg on the local machine)
            tracker: Project persistence (defaults to ``database_path``)
            cache: Asset cache (defaults to one over `store`)
        """
        self.config = config or get_config()
        self.store = store or create_store(self.config.storage)
        self.providers = providers if providers is not None else build_providers(self.config.generation)
        self.cache = cache or AssetCache(self.store, self.config.cache)
        self.orchestrator = ProviderOrchestrator(
            self.providers,
            self.config.generation,
            self.store,
            key_prefix=self.config.cache.key_prefix,
        )
        self.analyzer = self._build_analyzer(vision)
        self.render_function = render_function
        self.concatenator = concatenator or ChunkConcatenator(
            self.store,
            ffmpeg_path=self.config.render.ffmpeg_path,
            output_prefix=self.config.render.output_prefix,
            work_dir=self.config.render.work_dir,
        )
        self.tracker = tracker or ProjectTracker(self.config.database_path)
        self.planner = ChunkPlanner(self.config.render)

        self._runs: Dict[str, RunContext] = {}
        self._render_tasks: Dict[str, asyncio.Task] = {}
        self._render_streams: Dict[str, EventStream] = {}

        logger.info("MediaPipeline initialized")
        logger.info(f"  Providers: {', '.join(sorted(self.providers)) or 'none'}")
        logger.info(f"  Store: {self.store.backend}")
        logger.info(f"  Quality analysis: {'on' if self.analyzer else 'off'}")

    def _build_analyzer(self, vision: Optional[VisionClient]) -> Optional[QualityAnalyzer]:
        quality = self.config.quality
        if not quality.enabled:
            return None
        if vision is None:
            try:
                vision = AnthropicVisionClient(model=quality.model, max_tokens=quality.max_tokens)
            except ConfigurationError as e:
                logger.warning(f"Quality analysis disabled: {e.message}")
                return None
        return QualityAnalyzer(vision, quality, self.store, ffmpeg_path=self.config.render.ffmpeg_path)

    # -------------------------------------------------------------------------
    # Projects
    # -------------------------------------------------------------------------

    def create_project(
        self,
        scenes: List[Union[Scene, Dict[str, Any]]],
        target_duration: Optional[float] = None,
        aspect_ratio: Optional[str] = None,
        composition_id: Optional[str] = None,
    ) -> str:
        """
        Create a project from an ordered storyboard.

        Args:
            scenes: Scene objects or storyboard dicts, in playback order
            target_duration: Intended total duration in seconds
            aspect_ratio: Output aspect ratio (defaults to ``generation.aspect_ratio``)
            composition_id: Renderer composition (defaults to ``render.composition_id``)

        Returns:
            The new project id
        """
        if not scenes:
            raise ValidationError("A project needs at least one scene", field="scenes")

        aspect_ratio = aspect_ratio or self.config.generation.aspect_ratio
        if aspect_ratio not in GenerationConfig.VALID_ASPECT_RATIOS:
            raise ValidationError(f"Invalid aspect ratio: {aspect_ratio}", field="aspect_ratio", value=aspect_ratio)

        built = []
        for position, entry in enumerate(scenes):
            if isinstance(entry, Scene):
                built.append(entry)
                continue
            data = dict(entry)
            data.setdefault("order", position)
            built.append(Scene.from_dict(data))

        project = Project(
            scenes=built,
            target_duration=target_duration,
            aspect_ratio=aspect_ratio,
            composition_id=composition_id or self.config.render.composition_id,
        )
        self.tracker.save_project(project)
        logger.info(f"Created project {project.project_id} with {len(built)} scenes ({project.total_duration:.1f}s)")
        return project.project_id

    def get_project(self, project_id: str) -> Project:
        return self.tracker.get_project(project_id)

    # -------------------------------------------------------------------------
    # Generation
    # -------------------------------------------------------------------------

    async def generate_assets(self, project_id: str) -> AsyncIterator[ProgressEvent]:
        """Generate every scene's assets, yielding progress events as they happen."""
        run = self._start_generation(project_id)
        async for event in run.events:
            yield event
        await run.task

    async def run_generation(self, project_id: str) -> Project:
        """Generate every scene's assets and return the project when done."""
        run = self._start_generation(project_id)
        await run.task
        return run.project

    def _start_generation(self, project_id: str) -> RunContext:
        project = self.tracker.get_project(project_id)
        if project_id in self._runs:
            raise ValidationError(f"Project {project_id} already has an active run", field="project_id")
        if project.status not in (ProjectStatus.DRAFT, ProjectStatus.ERROR):
            raise ValidationError(
                f"Cannot generate assets for a project in status {project.status.value}",
                field="status",
                value=project.status.value,
            )

        run = RunContext(
            project=project,
            events=EventStream(project_id),
            semaphore=asyncio.Semaphore(self.config.generation.max_concurrent_scenes),
        )
        self._runs[project_id] = run
        run.task = asyncio.create_task(self._generate(run))
        return run

    async def _generate(self, run: RunContext) -> None:
        project = run.project
        project.status = ProjectStatus.GENERATING
        project.error_message = None
        self.tracker.save_project(project)

        generation = self.config.generation
        regeneration = self._regeneration_loop(run)

        try:
            if generation.fit_duration_to_narration:
                for scene in project.scenes:
                    scene.fit_duration(
                        scene.narration_seconds(generation.words_per_second, generation.narration_padding_seconds)
                    )

            await self._run_scenes(run, regeneration)

            if run.cancelled:
                project.status = ProjectStatus.CANCELLED
                await run.events.publish(EventType.PROJECT_CANCELLED, {"stage": "generation"})
                logger.info(f"Project {project.project_id}: generation cancelled")
            else:
                project.status = ProjectStatus.READY
                await run.events.publish(
                    EventType.PROJECT_READY,
                    {
                        "totalDuration": project.total_duration,
                        "reviewQueue": list(project.review_queue),
                    },
                )
                logger.info(
                    f"Project {project.project_id} ready: {len(project.scenes)} scenes, "
                    f"{len(project.review_queue)} queued for review"
                )
        except StorageError as e:
            project.status = ProjectStatus.ERROR
            project.error_message = e.message
            logger.error(f"Project {project.project_id}: storage failure during generation: {e.message}")
            raise
        finally:
            project.touch()
            self.tracker.save_project(project)
            run.events.close()
            self._runs.pop(project.project_id, None)

    async def _run_scenes(self, run: RunContext, regeneration: Optional[RegenerationLoop]) -> None:
        tasks = [asyncio.create_task(self._process_scene(run, scene, regeneration)) for scene in run.project.scenes]
        try:
            await asyncio.gather(*tasks)
        except BaseException:
            # Abort the run: no sibling may touch the project after it fails
            run.cancel_event.set()
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

    def _regeneration_loop(self, run: RunContext) -> Optional[RegenerationLoop]:
        if self.analyzer is None:
            return None
        return RegenerationLoop(
            self.analyzer,
            self.orchestrator,
            self.cache,
            self.config.quality,
            emit=run.events.emit,
        )

    async def _process_scene(
        self,
        run: RunContext,
        scene: Scene,
        regeneration: Optional[RegenerationLoop],
    ) -> None:
        async with run.semaphore:
            if run.cancelled:
                return

            scene.status = SceneStatus.GENERATING
            kinds = scene.required_kinds()
            await asyncio.gather(*(self._generate_asset(run, scene, kind) for kind in kinds))
            if run.cancelled:
                return
            scene.status = SceneStatus.GENERATED

            if regeneration is not None:
                analyzed = [k for k in kinds if k.is_visual and k.value in self.config.quality.analyzed_kinds]
                for kind in analyzed:
                    await regeneration.run(run.project, scene, kind, run.cancel_event)
                if run.cancelled:
                    return

            await self._degrade(run, scene)
            scene.status = self._final_status(scene)
            logger.info(f"Scene {run.project.scene_index(scene)} ({scene.scene_id}): {scene.status.value}")

    async def _generate_asset(self, run: RunContext, scene: Scene, kind: AssetKind) -> None:
        outcome = await self.orchestrator.generate(scene, kind, aspect_ratio=run.project.aspect_ratio)
        if run.cancelled:
            return

        index = run.project.scene_index(scene)
        if not outcome.ok:
            async with scene.lock:
                scene.clear_asset(kind)
                scene.record_failure(f"Scene {index}: {kind.value} generation failed", outcome.reason, kind)
            await run.events.publish(
                EventType.SCENE_FAILED,
                {"sceneId": scene.scene_id, "sceneIndex": index, "kind": kind.value, "reason": outcome.reason},
            )
            return

        await run.events.publish(
            EventType.SCENE_GENERATED,
            {
                "sceneId": scene.scene_id,
                "sceneIndex": index,
                "kind": kind.value,
                "provider": outcome.asset.provider,
            },
        )

        asset = await self.cache.ensure_ready(outcome.asset)
        if run.cancelled:
            return

        async with scene.lock:
            scene.set_asset(asset)
            if kind is AssetKind.VOICE and asset.duration_seconds:
                padding = self.config.generation.narration_padding_seconds
                if scene.fit_duration(asset.duration_seconds + padding):
                    logger.info(f"Scene {index}: extended to {scene.duration:.2f}s to fit voice")

        if asset.ready:
            await run.events.publish(
                EventType.SCENE_CACHED,
                {"sceneId": scene.scene_id, "sceneIndex": index, "kind": kind.value, "uri": asset.uri},
            )
        else:
            failures = self.cache.failures_for(asset.uri)
            reason = failures[-1].message if failures else "asset is not in fast storage"
            async with scene.lock:
                scene.record_failure(f"Scene {index}: {kind.value} could not be cached", reason, kind)

    async def _degrade(self, run: RunContext, scene: Scene) -> None:
        """Substitute what can be substituted for assets that never became ready."""
        index = run.project.scene_index(scene)
        visual = scene.primary_visual

        if scene.visual_kind is AssetKind.VIDEO and (visual is None or not visual.ready):
            outcome = await self.orchestrator.generate(scene, AssetKind.IMAGE, aspect_ratio=run.project.aspect_ratio)
            if outcome.ok and not run.cancelled:
                image = await self.cache.ensure_ready(outcome.asset)
                if image.ready:
                    async with scene.lock:
                        scene.set_asset(image)
                        scene.record_failure(
                            f"Scene {index}: video unavailable",
                            "replaced with a still image",
                            AssetKind.VIDEO,
                        )

        async with scene.lock:
            visual = scene.primary_visual
            if visual is None or not visual.ready:
                scene.clear_asset(scene.visual_kind)
                scene.fallback = STATIC_BACKGROUND
                scene.record_failure(
                    f"Scene {index}: no usable visual",
                    f"using {STATIC_BACKGROUND}",
                    scene.visual_kind,
                )
                degraded = True
            else:
                degraded = False

            for kind in AUDIO_KINDS:
                asset = scene.assets.get(kind)
                if asset is not None and not asset.ready:
                    scene.clear_asset(kind)
                    scene.record_failure(f"Scene {index}: {kind.value} dropped", "asset was never ready", kind)

        if degraded:
            await run.events.publish(
                EventType.SCENE_FAILED,
                {
                    "sceneId": scene.scene_id,
                    "sceneIndex": index,
                    "kind": scene.visual_kind.value,
                    "reason": f"no usable visual, using {STATIC_BACKGROUND}",
                },
            )

    @staticmethod
    def _final_status(scene: Scene) -> SceneStatus:
        if scene.status is SceneStatus.NEEDS_MANUAL_REVIEW:
            return scene.status
        if scene.fallback:
            return SceneStatus.FAILED
        if any(track.state is RegenerationState.NEEDS_REVIEW for track in scene.quality.values()):
            return SceneStatus.NEEDS_REVIEW
        return SceneStatus.READY

    # -------------------------------------------------------------------------
    # Rendering
    # -------------------------------------------------------------------------

    async def render(self, project_id: str) -> str:
        """
        Start rendering a ready project in the background.

        Returns:
            The render job id
        """
        project = self.tracker.get_project(project_id)
        if project.status is not ProjectStatus.READY:
            raise ValidationError(
                f"Only ready projects can be rendered (status: {project.status.value})",
                field="status",
                value=project.status.value,
            )
        if project_id in self._runs:
            raise ValidationError(f"Project {project_id} already has an active run", field="project_id")

        render_function = self._get_render_function()
        render = self.config.render
        composition_id = project.composition_id or render.composition_id

        project.lock_order()
        input_props = build_composition_props(project, render.fps, composition_id)
        job = RenderJob(
            project_id=project_id,
            composition_id=composition_id,
            fps=render.fps,
            chunks=self.planner.plan(project.scenes),
        )

        project.status = ProjectStatus.RENDERING
        project.output_uri = None
        project.render_job_ids.append(job.job_id)
        project.touch()
        self.tracker.save_project(project)
        self.tracker.save_job(job)

        run = RunContext(project=project, events=EventStream(project_id))
        self._runs[project_id] = run
        coordinator = RenderCoordinator(render_function, self.concatenator, render, emit=run.events.emit)
        run.task = asyncio.create_task(self._render(run, coordinator, job, input_props))
        self._render_tasks[job.job_id] = run.task
        self._render_streams[job.job_id] = run.events

        logger.info(f"Project {project_id}: render {job.job_id} started ({len(job.chunks)} chunk(s))")
        return job.job_id

    async def render_events(self, job_id: str) -> AsyncIterator[ProgressEvent]:
        """
        Progress events of a render job: ``chunk.rendered`` per chunk, then
        ``job.complete`` or ``job.failed`` (or ``project.cancelled``).

        The stream ends when the job finishes; a finished job replays its events.
        """
        stream = self._render_streams.get(job_id)
        if stream is None:
            raise ResourceNotFoundError(
                f"No render job with id {job_id}",
                resource_type="render_job",
                resource_id=job_id,
            )
        async for event in stream:
            yield event

    async def render_and_wait(self, project_id: str) -> RenderJob:
        """Render a ready project and return the finished job."""
        job_id = await self.render(project_id)
        await self._render_tasks[job_id]
        return self.tracker.get_job(job_id)

    async def _render(
        self,
        run: RunContext,
        coordinator: RenderCoordinator,
        job: RenderJob,
        input_props: Dict[str, Any],
    ) -> None:
        project = run.project
        try:
            output_uri = await coordinator.render(job, input_props, run.cancel_event)
            project.status = ProjectStatus.COMPLETE
            project.output_uri = output_uri
        except PipelineCancelled:
            project.status = ProjectStatus.CANCELLED
            await run.events.publish(EventType.PROJECT_CANCELLED, {"stage": "render", "jobId": job.job_id})
        except (RenderFailed, ConcatFailure, StorageError, ValidationError) as e:
            if job.status is not RenderJobStatus.FAILED:
                job.status = RenderJobStatus.FAILED
                job.error_message = e.message
            project.status = ProjectStatus.ERROR
            project.error_message = e.message
            logger.error(f"Project {project.project_id}: render {job.job_id} failed: {e.message}")
        finally:
            project.touch()
            self.tracker.save_project(project)
            self.tracker.save_job(job)
            run.events.close()
            self._runs.pop(project.project_id, None)
            self._render_tasks.pop(job.job_id, None)

    def _get_render_function(self) -> RenderFunction:
        if self.render_function is None:
            self.render_function = HttpRenderFunction(
                function_url=self.config.render.function_url,
                poll_interval=self.config.render.poll_interval,
            )
        return self.render_function

    # -------------------------------------------------------------------------
    # Status and control
    # -------------------------------------------------------------------------

    def get_status(self, resource_id: str) -> Dict[str, Any]:
        """Snapshot of a project or a render job."""
        if self.tracker.has_job(resource_id):
            return self.tracker.get_job(resource_id).to_dict()
        if not self.tracker.has_project(resource_id):
            raise ResourceNotFoundError(
                f"No project or render job with id {resource_id}",
                resource_type="project",
                resource_id=resource_id,
            )

        project = self.tracker.get_project(resource_id)
        return {
            "project_id": project.project_id,
            "status": project.status.value,
            "active": resource_id in self._runs,
            "total_duration": project.total_duration,
            "output_uri": project.output_uri,
            "error_message": project.error_message,
            "review_queue": list(project.review_queue),
            "render_job_ids": list(project.render_job_ids),
            "scenes": [
                {
                    "scene_id": scene.scene_id,
                    "index": position,
                    "status": scene.status.value,
                    "duration": scene.duration,
                    "fallback": scene.fallback,
                    "assets": {kind.value: asset.uri for kind, asset in scene.ready_assets().items()},
                    "failures": [failure.to_dict() for failure in scene.failures],
                }
                for position, scene in enumerate(project.scenes, start=1)
            ],
        }

    def cancel(self, project_id: str) -> bool:
        """
        Cancel a project's active run.

        In-flight provider calls and chunk renders are allowed to finish but
        their results are discarded. A project without an active run that has
        not completed is marked cancelled directly.

        Returns:
            True if anything was cancelled
        """
        run = self._runs.get(project_id)
        if run is not None:
            run.cancel_event.set()
            logger.info(f"Project {project_id}: cancellation requested")
            return True

        project = self.tracker.get_project(project_id)
        if project.status in (ProjectStatus.COMPLETE, ProjectStatus.CANCELLED):
            return False
        project.status = ProjectStatus.CANCELLED
        project.touch()
        self.tracker.save_project(project)
        return True

    async def close(self) -> None:
        """Cancel active runs and release every client."""
        for run in list(self._runs.values()):
            run.cancel_event.set()
        tasks = [run.task for run in self._runs.values() if run.task is not None]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        for client in self.providers.values():
            await client.close()
        await self.cache.close()
        if self.render_function is not None:
            await self.render_function.close()
        if self.analyzer is not None:
            await self.analyzer.vision.close()
        await self.store.close()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
