"""
Local engine backend — llama.cpp via llama-cpp-python.

Two flavors share one class:
- accelerated-local: every layer offloaded to the GPU, chat API
  (create_chat_completion → choices[0].delta.content)
- cpu-local: no offload, ChatML prompt + raw completion
  (create_completion → choices[0].text), trailing stop tokens trimmed

llama-cpp-python is an optional extra ([local]); it's imported only when an
engine is actually built. Everything blocking (engine construction, each
token step) runs in a worker thread so the event loop keeps serving frames.
A llama.cpp context is not thread-safe, so one backend streams one request
at a time; concurrent requests queue on the backend's lock.
"""

from __future__ import annotations

import asyncio
import logging
import os
from pathlib import Path
from typing import Any, AsyncGenerator, Callable

import httpx

from ayo_offline.core.cancellation import CancelToken, check
from ayo_offline.core.errors import TransportError
from ayo_offline.providers.base import LLMBackend
from ayo_offline.router.types import (
    BackendKind,
    GenerationRequest,
    LoadProgress,
    ModelDescriptor,
    ProgressCallback,
)

logger = logging.getLogger(__name__)

STOP_TOKENS = ("<|im_end|>", "<|endoftext|>", "</s>")

# (model_path, kind) -> engine object
EngineFactory = Callable[[str, BackendKind], Any]

_END = object()


def build_chatml_prompt(request: GenerationRequest) -> str:
    prompt = ""
    for msg in request.messages:
        prompt += f"<|im_start|>{msg.role}\n{msg.content}<|im_end|>\n"
    return prompt + "<|im_start|>assistant\n"


def trim_stop_tokens(text: str) -> str:
    for token in STOP_TOKENS:
        if text.endswith(token):
            return text[: -len(token)]
    return text


def create_llama_engine(
    model_path: str,
    kind: BackendKind,
    context_size: int = 4096,
    threads: int = 0,
) -> Any:
    """Build a llama_cpp.Llama for the given backend kind. Blocking."""
    from llama_cpp import Llama

    kwargs: dict[str, Any] = {
        "model_path": model_path,
        "n_ctx": context_size,
        "verbose": False,
    }
    if kind == BackendKind.ACCELERATED_LOCAL:
        kwargs["n_gpu_layers"] = -1
    else:
        kwargs["n_gpu_layers"] = 0
        kwargs["n_threads"] = threads or os.cpu_count() or 1
    return Llama(**kwargs)


# ─── Download ─────────────────────────────────────────────────


class ModelDownloader:
    """Fetches GGUF files into models_dir, reporting byte progress."""

    CHUNK_SIZE = 1 << 20

    def __init__(
        self,
        models_dir: str | Path,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = 60.0,
    ) -> None:
        self.models_dir = Path(models_dir)
        self._client = http_client
        self._timeout = timeout

    def path_for(self, model: ModelDescriptor) -> Path:
        filename = model.source_url.rsplit("/", 1)[-1] or f"{model.id}.gguf"
        return self.models_dir / filename

    async def download(
        self,
        model: ModelDescriptor,
        on_progress: ProgressCallback | None = None,
    ) -> Path:
        path = self.path_for(model)
        stage = f"Downloading {model.name}..."
        if path.exists():
            logger.debug(f"Model {model.id} already on disk at {path}")
            if on_progress:
                on_progress(LoadProgress(stage=stage, fraction=1.0))
            return path

        self.models_dir.mkdir(parents=True, exist_ok=True)
        partial = path.with_suffix(path.suffix + ".part")
        client = self._client or httpx.AsyncClient(
            timeout=httpx.Timeout(self._timeout), follow_redirects=True
        )
        try:
            async with client.stream("GET", model.source_url) as response:
                if not response.is_success:
                    raise TransportError(
                        "download",
                        f"{model.id}: HTTP {response.status_code}",
                        response.status_code,
                    )
                total = int(response.headers.get("content-length") or 0)
                loaded = 0
                with partial.open("wb") as f:
                    async for data in response.aiter_bytes(self.CHUNK_SIZE):
                        f.write(data)
                        loaded += len(data)
                        if on_progress:
                            fraction = loaded / total if total > 0 else 0.0
                            on_progress(LoadProgress(stage=stage, fraction=fraction))
            partial.replace(path)
        except httpx.HTTPError as e:
            raise TransportError("download", f"{model.id}: {e}") from e
        finally:
            if partial.exists():
                partial.unlink()
            if self._client is None:
                await client.aclose()

        logger.info(f"Downloaded {model.id} to {path}")
        return path


# ─── Backend ──────────────────────────────────────────────────


class LocalEngineBackend(LLMBackend):
    """A loaded local model. Built by the router once the engine exists."""

    def __init__(self, kind: BackendKind, model: ModelDescriptor, engine: Any) -> None:
        self.kind = kind
        self.id = kind.value
        self.model = model
        self.engine = engine
        self._lock = asyncio.Lock()

    def model_for(self, request: GenerationRequest) -> str | None:
        return self.model.id

    async def stop(self) -> None:
        async with self._lock:
            close = getattr(self.engine, "close", None)
            if close is not None:
                await asyncio.to_thread(close)
            self.engine = None

    def _open_stream(self, request: GenerationRequest):
        if self.kind == BackendKind.ACCELERATED_LOCAL:
            return self.engine.create_chat_completion(
                messages=request.message_dicts(),
                temperature=request.temperature,
                max_tokens=request.max_tokens,
                stream=True,
            )
        return self.engine.create_completion(
            build_chatml_prompt(request),
            temperature=request.temperature,
            max_tokens=request.max_tokens,
            top_k=40,
            top_p=0.9,
            stop=list(STOP_TOKENS),
            stream=True,
        )

    def _delta(self, chunk: dict) -> str:
        choices = chunk.get("choices") or []
        if not choices:
            return ""
        if self.kind == BackendKind.ACCELERATED_LOCAL:
            return (choices[0].get("delta") or {}).get("content") or ""
        return choices[0].get("text") or ""

    async def generate_stream(
        self,
        request: GenerationRequest,
        cancel: CancelToken | None = None,
    ) -> AsyncGenerator[str, None]:
        async with self._lock:
            if self.engine is None:
                raise RuntimeError(f"{self.kind.value} engine is not loaded")

            check(cancel)
            iterator = iter(await asyncio.to_thread(self._open_stream, request))
            # Hold back anything that might be the start of a stop token
            pending = ""
            while True:
                check(cancel)
                chunk = await asyncio.to_thread(next, iterator, _END)
                check(cancel)
                if chunk is _END:
                    break
                delta = self._delta(chunk)
                if not delta:
                    continue
                if self.kind == BackendKind.ACCELERATED_LOCAL:
                    yield delta
                    continue
                pending += delta
                safe = _safe_prefix_len(pending)
                if safe:
                    yield pending[:safe]
                    pending = pending[safe:]

            tail = trim_stop_tokens(pending)
            if tail:
                yield tail

    async def health_check(self) -> dict:
        return {
            "backend": self.id,
            "kind": self.kind.value,
            "model": self.model.id,
            "status": "ready" if self.engine is not None else "unloaded",
        }


def _safe_prefix_len(text: str) -> int:
    """Length of text that can't be part of a trailing stop token."""
    for i in range(len(text)):
        tail = text[i:]
        if any(token.startswith(tail) or tail.startswith(token) for token in STOP_TOKENS):
            return i
    return len(text)
