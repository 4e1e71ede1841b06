"""
Quality Module
==============

Vision-model scoring of generated visuals and the bounded regeneration loop.
"""

from .vision import VisionClient, AnthropicVisionClient
from .analyzer import QualityAnalyzer, SceneContext, ScoringPolicy, build_analysis_prompt, parse_verdict
from .prompts import PromptAdjuster, strip_flagged
from .regeneration import RegenerationLoop

__all__ = [
    "VisionClient",
    "AnthropicVisionClient",
    "QualityAnalyzer",
    "SceneContext",
    "ScoringPolicy",
    "build_analysis_prompt",
    "parse_verdict",
    "PromptAdjuster",
    "strip_flagged",
    "RegenerationLoop",
]
