"""
Configuration System
====================

Centralized, validated configuration management with typed dataclasses.

Every section validates itself on construction, so a bad YAML value fails at
load time with the offending key instead of deep inside a pipeline run.
"""

import os
import re
import logging
from dataclasses import dataclass, field, asdict
from pathlib import Path
from typing import Optional, Dict, Any, List, Union
import yaml

from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)


ASSET_KINDS = ("image", "video", "voice", "music", "sound_effect")


def _default_provider_preferences() -> Dict[str, List[str]]:
    return {
        "image": ["fal", "openai", "runway"],
        "video": ["piapi", "runway", "fal"],
        "voice": ["openai"],
        "music": ["piapi"],
        "sound_effect": ["fal"],
    }


def _default_fast_hosts() -> List[str]:
    return ["s3.amazonaws.com"]


# =============================================================================
# Configuration Dataclasses
# =============================================================================


@dataclass
class GenerationConfig:
    """Provider fan-out settings."""

    aspect_ratio: str = "16:9"
    max_provider_fallbacks: int = 3
    max_concurrent_scenes: int = 4
    provider_timeout: float = 300.0
    upload_timeout: float = 60.0
    poll_interval: float = 5.0

    # Fit scene durations to narration before generating
    fit_duration_to_narration: bool = True
    words_per_second: float = 2.5
    narration_padding_seconds: float = 0.5

    provider_preferences: Dict[str, List[str]] = field(default_factory=_default_provider_preferences)

    # Provider-specific settings (base_url, model overrides, ...)
    provider_settings: Dict[str, Dict[str, Any]] = field(default_factory=dict)

    VALID_ASPECT_RATIOS = {"16:9", "9:16", "4:3", "1:1", "21:9"}

    def __post_init__(self):
        self.validate()

    def validate(self) -> None:
        """Validate configuration values."""
        if self.aspect_ratio not in self.VALID_ASPECT_RATIOS:
            raise ConfigurationError(
                f"Invalid aspect ratio: {self.aspect_ratio}",
                config_key="generation.aspect_ratio",
            )
        if not 1 <= self.max_provider_fallbacks <= 10:
            raise ConfigurationError(
                f"max_provider_fallbacks must be 1-10, got {self.max_provider_fallbacks}",
                config_key="generation.max_provider_fallbacks",
            )
        if self.max_concurrent_scenes < 1:
            raise ConfigurationError(
                f"max_concurrent_scenes must be >= 1, got {self.max_concurrent_scenes}",
                config_key="generation.max_concurrent_scenes",
            )
        if self.provider_timeout <= 0:
            raise ConfigurationError(
                "provider_timeout must be positive",
                config_key="generation.provider_timeout",
            )
        if self.upload_timeout <= 0:
            raise ConfigurationError(
                "upload_timeout must be positive",
                config_key="generation.upload_timeout",
            )
        if self.words_per_second <= 0:
            raise ConfigurationError(
                "words_per_second must be positive",
                config_key="generation.words_per_second",
            )
        for kind in self.provider_preferences:
            if kind not in ASSET_KINDS:
                raise ConfigurationError(
                    f"Unknown asset kind in provider_preferences: {kind}",
                    config_key=f"generation.provider_preferences.{kind}",
                )

    def preferences_for(self, kind: str) -> List[str]:
        return list(self.provider_preferences.get(kind, []))


@dataclass
class CacheConfig:
    """Asset cache settings (download timeouts are per media type)."""

    image_timeout: float = 30.0
    video_timeout: float = 90.0
    audio_timeout: float = 60.0
    download_retries: int = 1
    retry_delay: float = 1.0
    key_prefix: str = "video-assets"
    fast_hosts: List[str] = field(default_factory=_default_fast_hosts)
    block_private_hosts: bool = True

    def __post_init__(self):
        self.validate()

    def validate(self) -> None:
        """Validate configuration values."""
        for name in ("image_timeout", "video_timeout", "audio_timeout"):
            if getattr(self, name) <= 0:
                raise ConfigurationError(
                    f"{name} must be positive",
                    config_key=f"cache.{name}",
                )
        if not 0 <= self.download_retries <= 5:
            raise ConfigurationError(
                f"download_retries must be 0-5, got {self.download_retries}",
                config_key="cache.download_retries",
            )

    def timeout_for(self, media_type: str) -> float:
        return {
            "image": self.image_timeout,
            "video": self.video_timeout,
        }.get(media_type, self.audio_timeout)


@dataclass
class StorageConfig:
    """Object store settings."""

    backend: str = "local"
    local_path: str = "./output/store"
    bucket: Optional[str] = None
    region: str = "us-east-1"
    public_base_url: Optional[str] = None
    operation_timeout: float = 120.0

    VALID_BACKENDS = {"local", "s3"}

    def __post_init__(self):
        self.validate()

    def validate(self) -> None:
        """Validate configuration values."""
        if self.backend not in self.VALID_BACKENDS:
            raise ConfigurationError(
                f"Invalid storage backend: {self.backend}",
                config_key="storage.backend",
            )
        if self.backend == "s3" and not self.bucket:
            raise ConfigurationError(
                "storage.bucket is required for the s3 backend",
                config_key="storage.bucket",
            )


@dataclass
class RenderConfig:
    """Chunked rendering settings."""

    fps: int = 30
    composition_id: str = "UniversalVideo"
    chunk_threshold_seconds: float = 90.0
    # None means "same as chunk_threshold_seconds"
    max_chunk_seconds: Optional[float] = None
    max_concurrent_chunks: int = 2
    chunk_retries: int = 2
    chunk_timeout: float = 900.0
    retry_delay: float = 5.0
    poll_interval: float = 5.0
    function_url: Optional[str] = None
    ffmpeg_path: str = "ffmpeg"
    work_dir: Optional[str] = None
    output_prefix: str = "renders/chunked"

    def __post_init__(self):
        self.validate()

    def validate(self) -> None:
        """Validate configuration values."""
        if not 1 <= self.fps <= 120:
            raise ConfigurationError(
                f"fps must be 1-120, got {self.fps}",
                config_key="render.fps",
            )
        if self.chunk_threshold_seconds <= 0:
            raise ConfigurationError(
                "chunk_threshold_seconds must be positive",
                config_key="render.chunk_threshold_seconds",
            )
        if self.max_chunk_seconds is not None and self.max_chunk_seconds <= 0:
            raise ConfigurationError(
                "max_chunk_seconds must be positive",
                config_key="render.max_chunk_seconds",
            )
        if self.max_concurrent_chunks < 1:
            raise ConfigurationError(
                f"max_concurrent_chunks must be >= 1, got {self.max_concurrent_chunks}",
                config_key="render.max_concurrent_chunks",
            )
        if not 0 <= self.chunk_retries <= 10:
            raise ConfigurationError(
                f"chunk_retries must be 0-10, got {self.chunk_retries}",
                config_key="render.chunk_retries",
            )

    @property
    def effective_max_chunk_seconds(self) -> float:
        return self.max_chunk_seconds if self.max_chunk_seconds is not None else self.chunk_threshold_seconds


def _default_weights() -> Dict[str, float]:
    return {
        "technical": 20.0,
        "content_match": 30.0,
        "compliance": 30.0,
        "composition": 20.0,
    }


@dataclass
class QualityConfig:
    """Quality scoring and regeneration settings."""

    enabled: bool = True
    model: str = "claude-sonnet-4-20250514"
    max_tokens: int = 1500
    analysis_timeout: float = 60.0
    weights: Dict[str, float] = field(default_factory=_default_weights)
    approve_threshold: float = 85.0
    review_threshold: float = 70.0
    regenerate_threshold: float = 50.0
    max_regeneration_attempts: int = 2
    analyzed_kinds: List[str] = field(default_factory=lambda: ["image", "video"])
    video_frame_count: int = 3
    max_image_dimension: int = 1024
    compliance_guidance: str = (
        "Imagery must be professional and trustworthy: no garbled text, "
        "no fake user interfaces, no distorted anatomy, no competitor branding."
    )

    WEIGHT_KEYS = ("technical", "content_match", "compliance", "composition")

    def __post_init__(self):
        self.validate()

    def validate(self) -> None:
        """Validate weights and threshold ordering."""
        if set(self.weights) != set(self.WEIGHT_KEYS):
            raise ConfigurationError(
                f"weights must define exactly {', '.join(self.WEIGHT_KEYS)}",
                config_key="quality.weights",
            )
        total = sum(self.weights.values())
        if abs(total - 100.0) > 1e-6:
            raise ConfigurationError(
                f"weights must sum to 100, got {total}",
                config_key="quality.weights",
            )
        if not (0 <= self.regenerate_threshold <= self.review_threshold <= self.approve_threshold <= 100):
            raise ConfigurationError(
                "thresholds must satisfy 0 <= regenerate <= review <= approve <= 100",
                config_key="quality.approve_threshold",
            )
        if not 0 <= self.max_regeneration_attempts <= 10:
            raise ConfigurationError(
                f"max_regeneration_attempts must be 0-10, got {self.max_regeneration_attempts}",
                config_key="quality.max_regeneration_attempts",
            )
        if self.video_frame_count < 1:
            raise ConfigurationError(
                "video_frame_count must be >= 1",
                config_key="quality.video_frame_count",
            )
        for kind in self.analyzed_kinds:
            if kind not in ("image", "video"):
                raise ConfigurationError(
                    f"Only visual kinds can be analyzed, got {kind}",
                    config_key="quality.analyzed_kinds",
                )


@dataclass
class LoggingConfig:
    """Logging settings."""

    level: str = "INFO"
    structured: bool = False

    VALID_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}

    def __post_init__(self):
        self.level = self.level.upper()
        if self.level not in self.VALID_LEVELS:
            raise ConfigurationError(
                f"Invalid log level: {self.level}",
                config_key="logging.level",
            )


# =============================================================================
# Main Configuration Class
# =============================================================================


SECTIONS = {
    "generation": GenerationConfig,
    "cache": CacheConfig,
    "storage": StorageConfig,
    "render": RenderConfig,
    "quality": QualityConfig,
    "logging": LoggingConfig,
}


@dataclass
class Config:
    """
    Main configuration container with validation and loading.

    Provides a unified interface to all configuration settings with:
    - Type-safe access to configuration values
    - Validation on load
    - Environment variable interpolation
    - Sensible defaults for all values
    """

    generation: GenerationConfig = field(default_factory=GenerationConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    render: RenderConfig = field(default_factory=RenderConfig)
    quality: QualityConfig = field(default_factory=QualityConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    # Database path for project persistence (None keeps projects in memory)
    database_path: Optional[str] = None

    _raw: Dict[str, Any] = field(default_factory=dict, repr=False)

    @classmethod
    def load(cls, path: Optional[Union[str, Path]] = None) -> "Config":
        """
        Load configuration from file with environment variable interpolation.

        Args:
            path: Path to a YAML config file, searched before the defaults

        Returns:
            Validated Config instance
        """
        search_paths = [
            Path("./config/defaults.yaml"),
            Path("./defaults.yaml"),
            Path.home() / ".reelforge" / "config.yaml",
        ]

        if path:
            explicit = Path(path)
            if not explicit.exists():
                raise ConfigurationError(
                    f"Config file not found: {explicit}",
                    config_key=str(explicit),
                )
            search_paths.insert(0, explicit)

        config_data = {}

        for search_path in search_paths:
            if search_path.exists():
                logger.info(f"Loading config from: {search_path}")
                try:
                    with open(search_path, "r") as f:
                        config_data = yaml.safe_load(f) or {}
                    break
                except yaml.YAMLError as e:
                    raise ConfigurationError(
                        f"Invalid YAML in config file: {e}",
                        config_key=str(search_path),
                    )
        else:
            logger.info("No config file found, using defaults")

        config_data = cls._interpolate_env_vars(config_data)

        return cls.from_dict(config_data)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Config":
        """Create Config from dictionary with validation."""
        if not isinstance(data, dict):
            raise ConfigurationError("Configuration root must be a mapping")
        try:
            sections = {name: section_cls(**(data.get(name) or {})) for name, section_cls in SECTIONS.items()}
            return cls(
                database_path=data.get("database_path"),
                _raw=data,
                **sections,
            )
        except TypeError as e:
            raise ConfigurationError(f"Invalid configuration: {e}")

    @staticmethod
    def _interpolate_env_vars(data: Any) -> Any:
        """Recursively interpolate ${VAR} and ${VAR:-default} patterns."""
        if isinstance(data, str):
            pattern = r"\$\{([^}:]+)(?::-([^}]*))?\}"

            def replace(match):
                var_name = match.group(1)
                default = match.group(2) or ""
                return os.environ.get(var_name, default)

            return re.sub(pattern, replace, data)
        elif isinstance(data, dict):
            return {k: Config._interpolate_env_vars(v) for k, v in data.items()}
        elif isinstance(data, list):
            return [Config._interpolate_env_vars(item) for item in data]
        return data

    def to_dict(self) -> Dict[str, Any]:
        """Convert config to dictionary."""
        result = {section: asdict(getattr(self, section)) for section in SECTIONS}
        result["database_path"] = self.database_path
        return result


# =============================================================================
# Convenience Functions
# =============================================================================


_global_config: Optional[Config] = None


def get_config() -> Config:
    """Get the global configuration instance (lazily loaded)."""
    global _global_config
    if _global_config is None:
        _global_config = Config.load()
    return _global_config


def set_config(config: Config) -> None:
    """Set the global configuration instance."""
    global _global_config
    _global_config = config


def reset_config() -> None:
    """Reset global configuration to None (forces reload on next access)."""
    global _global_config
    _global_config = None
