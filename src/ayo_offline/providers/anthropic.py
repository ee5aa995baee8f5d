"""
Anthropic backend — Messages API over plain httpx.

REST API: POST {base_url}/messages with stream=true.
Streams SSE events; text arrives in ``content_block_delta`` events as
delta.text. System messages don't go in the message array: they're joined
into the top-level ``system`` field.
"""

from __future__ import annotations

import json
import logging
from typing import AsyncGenerator

import httpx

from ayo_offline.core.cancellation import CancelToken, check
from ayo_offline.core.config import ProviderConfig
from ayo_offline.core.errors import ConfigurationError, TransportError
from ayo_offline.core.metrics import metrics
from ayo_offline.providers.base import LLMBackend
from ayo_offline.providers.sse import iter_sse
from ayo_offline.router.types import BackendKind, GenerationRequest

logger = logging.getLogger(__name__)

ANTHROPIC_VERSION = "2023-06-01"


def _error_detail(response: httpx.Response) -> str:
    try:
        body = response.json()
        message = body.get("error", {}).get("message")
    except (ValueError, AttributeError):
        message = None
    return message or f"API error: {response.status_code}"


class AnthropicBackend(LLMBackend):
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
        self._api_key = api_key
        self._owns_client = http_client is None
        self.client = http_client or httpx.AsyncClient(timeout=httpx.Timeout(timeout))

    async def stop(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    def model_for(self, request: GenerationRequest) -> str | None:
        return self.provider.pick_model(request.model)

    def build_body(self, request: GenerationRequest, model: str) -> dict:
        system = "\n\n".join(m.content for m in request.messages if m.role == "system")
        body: dict = {
            "model": model,
            "max_tokens": request.max_tokens,
            "messages": [m.to_dict() for m in request.messages if m.role != "system"],
            "temperature": request.temperature,
            "stream": True,
        }
        if system:
            body["system"] = system
        return body

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
            async with self.client.stream(
                "POST",
                f"{self.provider.base_url}/messages",
                json=self.build_body(request, model),
                headers={
                    "x-api-key": self._api_key,
                    "anthropic-version": ANTHROPIC_VERSION,
                    "Content-Type": "application/json",
                },
            ) as response:
                check(cancel)
                if not response.is_success:
                    await response.aread()
                    raise TransportError(
                        self.id, _error_detail(response), response.status_code
                    )

                async for event in iter_sse(response.aiter_lines(), cancel):
                    try:
                        data = json.loads(event.data)
                    except json.JSONDecodeError as e:
                        raise TransportError(self.id, f"malformed event: {e}") from e

                    event_type = data.get("type") if isinstance(data, dict) else None
                    if event_type == "content_block_delta":
                        text = (data.get("delta") or {}).get("text")
                        if text:
                            yield text
                    elif event_type == "error":
                        message = (data.get("error") or {}).get("message", "stream error")
                        raise TransportError(self.id, message)
                    elif event_type == "message_stop":
                        break
        except TransportError:
            metrics.inc("provider.errors", labels={"provider": self.id})
            raise
        except httpx.HTTPError as e:
            metrics.inc("provider.errors", labels={"provider": self.id})
            raise TransportError(self.id, f"request failed: {e}") from e

    async def health_check(self) -> dict:
        return {
            "backend": self.id,
            "kind": self.kind.value,
            "base_url": self.provider.base_url,
            "model": self.provider.default_model,
            "status": "configured",
        }
