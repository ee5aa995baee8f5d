"""
OpenAI-compatible backend — OpenAI, OpenRouter, anything that speaks
POST {base_url}/chat/completions with stream=true.

The SDK does the SSE work (``data: <json>`` lines, ``data: [DONE]``); we
pull choices[0].delta.content out of each chunk.

Retries are off: the router's fallback loop moves on to the next provider
instead of hammering this one.
"""

from __future__ import annotations

import logging
from typing import AsyncGenerator

import httpx
import openai
from openai import AsyncOpenAI

from ayo_offline.core.cancellation import CancelToken, check
from ayo_offline.core.config import ProviderConfig
from ayo_offline.core.errors import ConfigurationError, TransportError
from ayo_offline.core.metrics import metrics
from ayo_offline.providers.base import LLMBackend
from ayo_offline.router.types import BackendKind, GenerationRequest

logger = logging.getLogger(__name__)


class OpenAICompatibleBackend(LLMBackend):
    kind = BackendKind.REMOTE

    def __init__(
        self,
        provider: ProviderConfig,
        api_key: str,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = 60.0,
    ) -> None:
        self.provider = provider
        self.id = provider.id
        self.client = AsyncOpenAI(
            api_key=api_key,
            base_url=provider.base_url,
            http_client=http_client,
            timeout=timeout,
            max_retries=0,
        )

    def model_for(self, request: GenerationRequest) -> str | None:
        return self.provider.pick_model(request.model)

    async def generate_stream(
        self,
        request: GenerationRequest,
        cancel: CancelToken | None = None,
    ) -> AsyncGenerator[str, None]:
        model = self.model_for(request)
        if not model:
            raise ConfigurationError(f"{self.provider.name}: no model specified")

        check(cancel)
        metrics.inc("provider.requests", labels={"provider": self.id})
        try:
            stream = await self.client.chat.completions.create(
                model=model,
                messages=request.message_dicts(),
                temperature=request.temperature,
                max_tokens=request.max_tokens,
                stream=True,
            )
        except openai.APIStatusError as e:
            metrics.inc("provider.errors", labels={"provider": self.id})
            raise TransportError(
                self.id, f"API error: {e.status_code} {e.message}", e.status_code
            ) from e
        except openai.APIError as e:
            metrics.inc("provider.errors", labels={"provider": self.id})
            raise TransportError(self.id, f"request failed: {e}") from e

        try:
            check(cancel)
            async for chunk in stream:
                check(cancel)
                if not chunk.choices:
                    continue  # keep-alive / usage-only chunk
                delta = chunk.choices[0].delta
                if delta is not None and delta.content:
                    yield delta.content
        except (openai.APIError, httpx.HTTPError) as e:
            metrics.inc("provider.errors", labels={"provider": self.id})
            raise TransportError(self.id, f"stream failed: {e}") from e
        except ValueError as e:
            metrics.inc("provider.errors", labels={"provider": self.id})
            raise TransportError(self.id, f"malformed stream: {e}") from e
        finally:
            await stream.close()

    async def health_check(self) -> dict:
        return {
            "backend": self.id,
            "kind": self.kind.value,
            "base_url": self.provider.base_url,
            "model": self.provider.default_model,
            "status": "configured",
        }
