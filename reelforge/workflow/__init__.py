"""
Workflow Orchestration
======================

High-level orchestration for storyboard-to-video production.

Components:
- ProviderOrchestrator: Provider fallback chain for one scene asset
- EventStream: Progress events for one project run
- MediaPipeline: Main entry point for generation and rendering
"""

from .events import EventType, ProgressEvent, EventStream
from .orchestrator import ProviderOrchestrator, GenerationOutcome, derive_prompt
from .pipeline import MediaPipeline, RunContext

__all__ = [
    "EventType",
    "ProgressEvent",
    "EventStream",
    "ProviderOrchestrator",
    "GenerationOutcome",
    "derive_prompt",
    "MediaPipeline",
    "RunContext",
]
