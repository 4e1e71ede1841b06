"""
Render Module
=============

Chunk planning, remote chunk rendering and lossless concatenation.
"""

from .planner import ChunkPlanner, plan_chunks, validate_chunks, scene_frames, build_chunk_props
from .composition import build_composition_props, assert_assets_ready
from .remote import RenderFunction, HttpRenderFunction
from .concat import ChunkConcatenator
from .coordinator import RenderCoordinator

__all__ = [
    "ChunkPlanner",
    "plan_chunks",
    "validate_chunks",
    "scene_frames",
    "build_chunk_props",
    "build_composition_props",
    "assert_assets_ready",
    "RenderFunction",
    "HttpRenderFunction",
    "ChunkConcatenator",
    "RenderCoordinator",
]
