"""
Project Module
==============

Data model and persistence for storyboard projects and their render jobs.
"""

from .models import (
    Project,
    ProjectStatus,
    Scene,
    SceneStatus,
    SceneFailure,
    Asset,
    AssetKind,
    AssetOrigin,
    ProviderAttempt,
    AnalysisIssue,
    AnalysisResult,
    Recommendation,
    QualityTrack,
    RegenerationState,
    RenderChunk,
    ChunkStatus,
    RenderJob,
    RenderJobStatus,
)
from .tracker import ProjectTracker

__all__ = [
    "Project",
    "ProjectStatus",
    "Scene",
    "SceneStatus",
    "SceneFailure",
    "Asset",
    "AssetKind",
    "AssetOrigin",
    "ProviderAttempt",
    "AnalysisIssue",
    "AnalysisResult",
    "Recommendation",
    "QualityTrack",
    "RegenerationState",
    "RenderChunk",
    "ChunkStatus",
    "RenderJob",
    "RenderJobStatus",
    "ProjectTracker",
]
