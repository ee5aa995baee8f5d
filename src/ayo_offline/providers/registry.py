"""
Provider Registry — factory function to get the right remote backend by id.

Add a new provider? Add a ProviderConfig and an elif. No plugin systems.
"""

from __future__ import annotations

import httpx

import ayo_offline.core.config as config_module
from ayo_offline.core.config import RouterConfig
from ayo_offline.core.errors import ConfigurationError
from ayo_offline.providers.base import LLMBackend


def get_remote_backend(
    provider_id: str,
    api_key: str,
    http_client: httpx.AsyncClient | None = None,
    router_config: RouterConfig | None = None,
) -> LLMBackend:
    cfg = router_config or config_module.config.router
    provider = cfg.provider(provider_id)
    if provider is None:
        raise ConfigurationError(f"Unknown provider: {provider_id}")
    if not api_key:
        raise ConfigurationError(f"No API key configured for {provider.name}")

    if provider_id in ("openai", "openrouter"):
        from ayo_offline.providers.openai_compat import OpenAICompatibleBackend

        return OpenAICompatibleBackend(
            provider, api_key, http_client=http_client, timeout=cfg.http_timeout
        )
    elif provider_id == "anthropic":
        from ayo_offline.providers.anthropic import AnthropicBackend

        return AnthropicBackend(
            provider, api_key, http_client=http_client, timeout=cfg.http_timeout
        )
    raise ConfigurationError(f"No backend implementation for provider: {provider_id}")
