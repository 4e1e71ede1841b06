"""
Utilities
=========

Media helpers shared by rendering and quality analysis.
"""

from .media import probe_duration, extract_frames, concat_videos, downscale_image

__all__ = [
    "probe_duration",
    "extract_frames",
    "concat_videos",
    "downscale_image",
]
