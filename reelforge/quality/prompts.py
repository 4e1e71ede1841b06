"""
Prompt Adjustment
=================

Rewrites a generation prompt after a failing quality verdict.
"""

import re
import logging
from typing import Optional, List, Dict, Tuple

from ..project.models import AnalysisResult, AnalysisIssue

logger = logging.getLogger(__name__)


CATEGORY_FIXES: Dict[str, str] = {
    "ai_artifacts": "photorealistic, no text overlays, no UI elements, clean image",
    "content_match": "focus on the main subject clearly visible",
    "technical": "high resolution, sharp focus, professional quality",
    "composition": "balanced composition, clear subject, uncluttered background",
}

# Keyword in a compliance issue -> fix
COMPLIANCE_FIXES: List[Tuple[str, str]] = [
    ("lighting", "warm natural lighting, soft shadows"),
    ("color", "natural, harmonious color palette"),
    ("clinical", "inviting real-world environment, natural textures"),
    ("corporate", "inviting real-world environment, natural textures"),
]

# (minimum attempt, fix)
ESCALATIONS: List[Tuple[int, str]] = [
    (2, "simple composition, single clear subject"),
    (3, "minimalist, clean, professional photography style"),
]

AVOID_SUFFIX = "Avoid: garbled text, fake UI, distorted features"

NEGATIVE_PROMPT = "blurry, low quality, distorted, garbled text, fake UI, watermark"

# Directives that produce the artifacts an issue category reports
STRIP_TERMS: Dict[str, Tuple[str, ...]] = {
    "ai_artifacts": (
        "text", "caption", "words", "lettering", "sign", "label", "logo",
        "ui", "interface", "screen", "dashboard", "chart", "graph",
    ),
    "composition": ("collage", "split screen", "many", "crowd", "busy"),
}

_CLAUSE_SPLIT = re.compile(r"\s*[,.;]\s*")


def strip_flagged(prompt: str, issues: List[AnalysisIssue]) -> str:
    """Drop prompt clauses containing terms associated with the reported issue categories."""
    terms = {term for issue in issues for term in STRIP_TERMS.get(issue.category, ())}
    if not terms:
        return prompt

    pattern = re.compile(r"\b(" + "|".join(re.escape(t) for t in sorted(terms)) + r")\b", re.IGNORECASE)
    clauses = [c for c in _CLAUSE_SPLIT.split(prompt) if c]
    kept = [c for c in clauses if not pattern.search(c)]
    if not kept:
        return prompt
    return ", ".join(kept)


def _issue_fixes(issues: List[AnalysisIssue]) -> List[str]:
    fixes = []
    for issue in issues:
        if issue.category == "compliance":
            text = f"{issue.description} {issue.suggestion or ''}".lower()
            fixes.extend(fix for keyword, fix in COMPLIANCE_FIXES if keyword in text)
        elif issue.category in CATEGORY_FIXES:
            fixes.append(CATEGORY_FIXES[issue.category])
    return fixes


class PromptAdjuster:
    """
    Builds the prompt for a regeneration attempt.

    The model's own improved prompt is used on the first attempt. Later
    attempts go back to the base prompt and add stronger simplification.
    """

    def build(self, base_prompt: str, analysis: AnalysisResult, attempt: int, escalation: int) -> str:
        prompt = base_prompt
        if attempt == 1 and analysis.improved_prompt:
            prompt = analysis.improved_prompt
        prompt = strip_flagged(prompt, analysis.issues)

        fixes = _issue_fixes(analysis.issues)
        fixes.extend(fix for level, fix in ESCALATIONS if escalation >= level)
        unique_fixes = list(dict.fromkeys(fixes))

        prompt = prompt.strip().rstrip(".")
        if unique_fixes:
            prompt = f"{prompt}. {', '.join(unique_fixes)}"
        return f"{prompt}. {AVOID_SUFFIX}"

    def adjust(
        self,
        base_prompt: str,
        analysis: AnalysisResult,
        attempt: int,
        previous_prompt: Optional[str] = None,
    ) -> Optional[str]:
        """
        Prompt for regeneration `attempt` (1-based), or None if nothing new can be produced.

        The result never equals `previous_prompt`: when the natural adjustment
        repeats it, simplification is escalated until the text changes.
        """
        highest = max(level for level, _ in ESCALATIONS)
        for escalation in range(attempt, max(attempt, highest) + 1):
            candidate = self.build(base_prompt, analysis, attempt, escalation)
            if candidate != previous_prompt:
                if escalation > attempt:
                    logger.debug(f"Escalated prompt adjustment to level {escalation} to avoid a repeat")
                return candidate
        return None
