"""
Reelforge
=========

Media-generation pipeline orchestrator: turns a storyboard of scenes into a
rendered video by driving generative providers, caching every asset into fast
storage, scoring visuals with a vision model, and rendering long compositions
in independently rendered chunks.

Features:
- Multi-provider fallback (fal.ai, PiAPI, Runway, OpenAI) behind one contract
- Asset cache that copies slow external URLs into the object store (local or S3)
- Quality scoring with bounded, prompt-adjusted regeneration
- Scene-aligned chunked rendering with lossless ffmpeg concatenation
- Progress events, cancellation, and an HTTP surface (FastAPI)

Quick Start:
    from reelforge import MediaPipeline

    async with MediaPipeline() as pipeline:
        project_id = pipeline.create_project([
            {"narration": "Mornings start slow.", "visual_direction": "sunrise over a quiet kitchen", "duration": 6},
            {"narration": "Then the day takes off.", "visual_direction": "busy city crosswalk", "visual_kind": "video"},
        ])
        async for event in pipeline.generate_assets(project_id):
            print(event.type.value, event.data)
        job = await pipeline.render_and_wait(project_id)
        print(job.output_uri)
"""

__version__ = "0.3.0"
__author__ = "Reelforge"

# Core Utilities
from .core.config import Config, get_config, set_config
from .core.exceptions import (
    ReelforgeError,
    ConfigurationError,
    ValidationError,
    SecurityError,
    ProviderError,
    ProviderExhausted,
    StorageError,
    CacheFailure,
    RenderFailed,
    ConcatFailure,
    AnalysisFailure,
    PipelineCancelled,
)
from .core.logging_config import setup_logging

# Data model
from .project.models import (
    Project,
    ProjectStatus,
    Scene,
    SceneStatus,
    Asset,
    AssetKind,
    RenderChunk,
    RenderJob,
    RenderJobStatus,
)
from .project.tracker import ProjectTracker

# Providers and storage
from .api import get_provider, list_providers
from .storage import ObjectStore, LocalObjectStore, S3ObjectStore, AssetCache, create_store

# Pipeline (pulls in render and quality)
from .workflow import MediaPipeline, ProviderOrchestrator, EventType, ProgressEvent
from .render import ChunkPlanner, plan_chunks, RenderCoordinator
from .quality import QualityAnalyzer, RegenerationLoop

__all__ = [
    # Version
    "__version__",

    # Core
    "Config",
    "get_config",
    "set_config",
    "setup_logging",

    # Exceptions
    "ReelforgeError",
    "ConfigurationError",
    "ValidationError",
    "SecurityError",
    "ProviderError",
    "ProviderExhausted",
    "StorageError",
    "CacheFailure",
    "RenderFailed",
    "ConcatFailure",
    "AnalysisFailure",
    "PipelineCancelled",

    # Models
    "Project",
    "ProjectStatus",
    "Scene",
    "SceneStatus",
    "Asset",
    "AssetKind",
    "RenderChunk",
    "RenderJob",
    "RenderJobStatus",
    "ProjectTracker",

    # Components
    "get_provider",
    "list_providers",
    "ObjectStore",
    "LocalObjectStore",
    "S3ObjectStore",
    "AssetCache",
    "create_store",
    "MediaPipeline",
    "ProviderOrchestrator",
    "EventType",
    "ProgressEvent",
    "ChunkPlanner",
    "plan_chunks",
    "RenderCoordinator",
    "QualityAnalyzer",
    "RegenerationLoop",
]
