"""
Provider Factory
================

Registry of provider client classes keyed by provider id.

Provider modules register themselves with ``@register_provider``; importing
``reelforge.api`` loads all of them, so orchestration code only ever deals in
ids and never branches on a provider's name.
"""

import logging
from typing import Optional, List, Dict, Type, Iterable

from ..core.config import GenerationConfig
from ..core.exceptions import ConfigurationError
from ..project.models import AssetKind
from .base import ProviderClient

logger = logging.getLogger(__name__)

_PROVIDERS: Dict[str, Type[ProviderClient]] = {}


def register_provider(name: str):
    """Decorator to register a provider class."""
    def decorator(cls: Type[ProviderClient]):
        _PROVIDERS[name.lower()] = cls
        return cls
    return decorator


def get_provider(
    name: str,
    api_key: Optional[str] = None,
    **kwargs,
) -> ProviderClient:
    """
    Create a provider client by id.

    Args:
        name: Provider id (e.g. 'fal', 'piapi', 'runway', 'openai')
        api_key: Optional API key (otherwise read from environment)
        **kwargs: Additional client arguments (base_url, timeout, ...)

    Raises:
        ConfigurationError: If the provider id is not registered
    """
    provider_class = _PROVIDERS.get(name.lower())
    if provider_class is None:
        raise ConfigurationError(
            f"Unknown provider: {name}. Available: {', '.join(list_providers())}",
            config_key="generation.provider_preferences",
        )
    return provider_class(api_key=api_key, **kwargs)


def list_providers() -> List[str]:
    """List registered provider ids."""
    return sorted(_PROVIDERS.keys())


def providers_for(kind: AssetKind) -> List[str]:
    """Provider ids whose client class can generate `kind`."""
    return [
        name
        for name, cls in sorted(_PROVIDERS.items())
        if kind in getattr(cls, "SUPPORTED_KINDS", ())
    ]


def build_providers(
    config: GenerationConfig,
    names: Optional[Iterable[str]] = None,
) -> Dict[str, ProviderClient]:
    """
    Instantiate every provider referenced by the preference lists.

    Providers without an API key are left out so fallback chains go
    straight to the ones that can answer.

    Provider-specific settings (api_key, base_url, model overrides) come from
    ``generation.provider_settings.<id>``.
    """
    if names is None:
        wanted = []
        for ids in config.provider_preferences.values():
            wanted.extend(i for i in ids if i not in wanted)
        names = wanted

    clients: Dict[str, ProviderClient] = {}
    for name in names:
        settings = dict(config.provider_settings.get(name, {}))
        settings.setdefault("timeout", config.provider_timeout)
        settings.setdefault("poll_interval", config.poll_interval)
        client = get_provider(name, **settings)
        if not client.api_key:
            logger.warning(f"Skipping provider {name}: no API key (set {client.env_key_name})")
            continue
        clients[name] = client
        logger.debug(f"Configured provider client: {name}")
    return clients
