"""
Security Utilities
==================

Storage-key validation, prompt sanitization, URL checks and secret redaction.
"""

import re
import logging
from pathlib import Path
from typing import Optional, Union, Set
from urllib.parse import urlparse

from .exceptions import SecurityError

logger = logging.getLogger(__name__)


class PathValidator:
    """
    Keeps object-store keys inside the store root.

    Usage:
        validator = PathValidator(root="/var/reelforge/store")
        path = validator.validate("video-assets/image/ab12.png")  # OK
        validator.validate("../../etc/passwd")  # Raises SecurityError
    """

    DANGEROUS_PATTERNS = [
        r"\.\./",
        r"\.\.\\",
        r"^~",
        r"\x00",
        r"%2e%2e",
        r"%252e",
    ]

    def __init__(self, root: Union[str, Path]):
        self.root = Path(root).resolve()
        self.root.mkdir(parents=True, exist_ok=True)
        self._compiled_patterns = [re.compile(p, re.IGNORECASE) for p in self.DANGEROUS_PATTERNS]

    def validate(self, key: Union[str, Path]) -> Path:
        """
        Resolve a key to a path below the root.

        Raises:
            SecurityError: If the key tries to escape the root
        """
        key_str = str(key)

        for pattern in self._compiled_patterns:
            if pattern.search(key_str):
                logger.warning(f"Blocked dangerous key pattern: {pattern.pattern}")
                raise SecurityError(
                    "Key contains dangerous pattern",
                    attempted_path=key_str,
                    security_type="path_traversal",
                )

        try:
            candidate = Path(key_str)
            resolved = candidate.resolve() if candidate.is_absolute() else (self.root / candidate).resolve()
        except (ValueError, OSError) as e:
            raise SecurityError(
                f"Invalid key: {e}",
                attempted_path=key_str,
                security_type="invalid_path",
            )

        try:
            resolved.relative_to(self.root)
        except ValueError:
            logger.warning(f"Blocked key outside store root: {resolved}")
            raise SecurityError(
                "Key resolves outside the store root",
                attempted_path=key_str,
                security_type="path_traversal",
            )

        return resolved


def sanitize_filename(filename: str, max_length: int = 255) -> str:
    """Reduce an arbitrary identifier to a filesystem/object-key friendly name."""
    if not filename:
        return "unnamed"

    sanitized = re.sub(r"[^\w\-. ]", "_", filename)
    sanitized = re.sub(r"[_\s]+", "_", sanitized)
    sanitized = sanitized.strip("._- ")

    if len(sanitized) > max_length:
        name = Path(sanitized).stem
        ext = Path(sanitized).suffix
        sanitized = name[: max_length - len(ext)] + ext

    if not sanitized or sanitized in (".", ".."):
        sanitized = "unnamed"

    return sanitized


def sanitize_prompt(prompt: str, max_length: int = 2000) -> str:
    """
    Strip control characters and model-steering markers from a generation prompt.

    Args:
        prompt: Prompt text (from a storyboard or a prompt adjustment)
        max_length: Maximum allowed length

    Returns:
        Sanitized prompt string
    """
    if not prompt:
        return ""

    sanitized = "".join(char for char in prompt if char.isprintable() or char in "\n\t")

    injection_patterns = [
        r"ignore previous instructions",
        r"disregard above",
        r"\[INST\]",
        r"\[/INST\]",
        r"<\|im_start\|>",
        r"<\|im_end\|>",
    ]
    for pattern in injection_patterns:
        sanitized = re.sub(pattern, "", sanitized, flags=re.IGNORECASE)

    if len(sanitized) > max_length:
        sanitized = sanitized[:max_length]
        logger.warning(f"Prompt truncated from {len(prompt)} to {max_length} characters")

    return sanitized.strip()


def redact_api_key(text: str) -> str:
    """Redact API keys and bearer tokens before text reaches logs or errors."""
    if not text:
        return text

    patterns = [
        (r"Bearer\s+[A-Za-z0-9_\-\.]+", "Bearer ***REDACTED***"),
        (r"Key\s+[A-Za-z0-9_\-:]{16,}", "Key ***REDACTED***"),
        (r"sk-ant-[A-Za-z0-9_\-]+", "sk-ant-***REDACTED***"),
        (r"sk-[A-Za-z0-9_\-]{16,}", "sk-***REDACTED***"),
        (r"key_[A-Za-z0-9]{32,}", "key_***REDACTED***"),
        (r"api[_-]?key['\"]?\s*[:=]\s*['\"]?[A-Za-z0-9_\-]+", "api_key: ***REDACTED***"),
        (
            r"(FAL_KEY|PIAPI_API_KEY|RUNWAYML_API_SECRET|OPENAI_API_KEY|ANTHROPIC_API_KEY)=[^\s]+",
            r"\1=***REDACTED***",
        ),
    ]

    result = text
    for pattern, replacement in patterns:
        result = re.sub(pattern, replacement, result, flags=re.IGNORECASE)
    return result


def validate_url(url: str, allowed_schemes: Optional[Set[str]] = None) -> str:
    """
    Refuse URLs that would make the asset cache fetch from the local network.

    Raises:
        SecurityError: If the URL scheme or host is not allowed
    """
    if not url:
        raise SecurityError("Empty URL", security_type="invalid_url")

    try:
        parsed = urlparse(url)
    except ValueError as e:
        raise SecurityError(f"Invalid URL format: {e}", security_type="invalid_url")

    schemes = allowed_schemes or {"http", "https"}
    if parsed.scheme not in schemes:
        raise SecurityError(
            f"Invalid URL scheme: {parsed.scheme}",
            security_type="invalid_url_scheme",
        )

    hostname = (parsed.hostname or "").lower()
    if hostname in {"localhost", "127.0.0.1", "0.0.0.0", "::1"}:
        raise SecurityError(
            "URLs to local addresses are not allowed",
            security_type="blocked_host",
        )
    if re.match(r"^(10\.|192\.168\.|172\.(1[6-9]|2\d|3[01])\.|169\.254\.)", hostname):
        raise SecurityError(
            "URLs to private IP addresses are not allowed",
            security_type="blocked_host",
        )

    return url
