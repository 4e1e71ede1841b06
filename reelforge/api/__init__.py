"""
API Module
==========

Generative provider clients behind one request/result contract.
"""

from .base import (
    ProviderClient,
    GenerationRequest,
    ProviderResult,
    ResultStatus,
    JobStatus,
    classify_error,
)
from .factory import register_provider, get_provider, list_providers, providers_for, build_providers

# Provider modules register themselves on import
from .fal import FalProvider
from .piapi import PiAPIProvider
from .runway import RunwayProvider
from .openai import OpenAIProvider

__all__ = [
    "ProviderClient",
    "GenerationRequest",
    "ProviderResult",
    "ResultStatus",
    "JobStatus",
    "classify_error",
    "register_provider",
    "get_provider",
    "list_providers",
    "providers_for",
    "build_providers",
    "FalProvider",
    "PiAPIProvider",
    "RunwayProvider",
    "OpenAIProvider",
]
