"""
Core Module
===========

Configuration, exceptions, logging and security helpers shared by the pipeline.
"""

from .config import (
    Config,
    GenerationConfig,
    CacheConfig,
    StorageConfig,
    RenderConfig,
    QualityConfig,
    LoggingConfig,
    get_config,
    set_config,
    reset_config,
)
from .exceptions import (
    ReelforgeError,
    ConfigurationError,
    ValidationError,
    SecurityError,
    ProviderError,
    RateLimitError,
    PromptRejected,
    OperationTimeoutError,
    ProviderExhausted,
    StorageError,
    CacheFailure,
    ChunkRenderFailure,
    RenderFailed,
    ConcatFailure,
    AnalysisFailure,
    ResourceNotFoundError,
    PipelineCancelled,
)
from .logging_config import setup_logging, StructuredFormatter
from .security import PathValidator, sanitize_filename, sanitize_prompt

__all__ = [
    # Configuration
    "Config",
    "GenerationConfig",
    "CacheConfig",
    "StorageConfig",
    "RenderConfig",
    "QualityConfig",
    "LoggingConfig",
    "get_config",
    "set_config",
    "reset_config",
    # Exceptions
    "ReelforgeError",
    "ConfigurationError",
    "ValidationError",
    "SecurityError",
    "ProviderError",
    "RateLimitError",
    "PromptRejected",
    "OperationTimeoutError",
    "ProviderExhausted",
    "StorageError",
    "CacheFailure",
    "ChunkRenderFailure",
    "RenderFailed",
    "ConcatFailure",
    "AnalysisFailure",
    "ResourceNotFoundError",
    "PipelineCancelled",
    # Logging
    "setup_logging",
    "StructuredFormatter",
    # Security
    "PathValidator",
    "sanitize_filename",
    "sanitize_prompt",
]
