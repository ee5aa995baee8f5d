"""
Generation router — picks a backend for each request and streams it.

Selection, first match wins:
  1. a READY local model
  2. the store's activeLocalModel, loaded on demand (accelerated if the id is
     in the accelerated catalog and the GPU probe passes, else CPU)
  3. remote providers, in the order their API keys were stored

A TransportError moves on to the next provider, including after the failing
provider already streamed some text; the caller then sees the next
provider's chunks follow the partial ones, and the result carries only the
answering provider's text. Cancellation never falls back.

Every successful generation ends with one GenerationChunk(done=True) and
returns a CompletionResult with the accumulated text.
"""

from __future__ import annotations

import asyncio
import functools
import inspect
import logging
import time
from contextlib import aclosing
from typing import Callable

import httpx

import ayo_offline.core.config as config_module
from ayo_offline.core.cancellation import CancelToken, check
from ayo_offline.core.config import RouterConfig
from ayo_offline.core.errors import (
    AlreadyLoadingError,
    AvailabilityError,
    ConfigurationError,
    GenerationCancelled,
    NoBackendAvailableError,
    TransportError,
)
from ayo_offline.core.metrics import metrics
from ayo_offline.providers.base import LLMBackend
from ayo_offline.providers.local import (
    EngineFactory,
    LocalEngineBackend,
    ModelDownloader,
    create_llama_engine,
)
from ayo_offline.providers.registry import get_remote_backend
from ayo_offline.router.catalog import find_model
from ayo_offline.router.registry import BackendRegistry
from ayo_offline.router.slot import LocalModelSlot, SlotState
from ayo_offline.router.types import (
    BackendDescriptor,
    BackendKind,
    ChunkCallback,
    CompletionResult,
    GenerationChunk,
    GenerationRequest,
    LoadProgress,
    ProgressCallback,
)
from ayo_offline.storage.credentials import (
    ACTIVE_LOCAL_MODEL,
    API_KEY_PREFIX,
    MODEL_PREFIX,
    model_record,
)
from ayo_offline.storage.store import ConfigStore

logger = logging.getLogger(__name__)

# (provider_id, api_key, http_client, router_config) -> backend
BackendFactory = Callable[..., LLMBackend]


class _Attempt:
    """Per-backend bookkeeping for the fallback decision."""

    def __init__(self, backend: LLMBackend) -> None:
        self.backend = backend
        self.emitted = False


async def _emit(on_chunk: ChunkCallback | None, chunk: GenerationChunk) -> None:
    if on_chunk is None:
        return
    result = on_chunk(chunk)
    if inspect.isawaitable(result):
        await result


class GenerationRouter:
    def __init__(
        self,
        store: ConfigStore,
        *,
        registry: BackendRegistry | None = None,
        router_config: RouterConfig | None = None,
        http_client: httpx.AsyncClient | None = None,
        engine_factory: EngineFactory | None = None,
        downloader: ModelDownloader | None = None,
        backend_factory: BackendFactory | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> None:
        self.store = store
        self.config = router_config or config_module.config.router
        self.registry = registry or BackendRegistry(store, router_config=self.config)
        self.on_progress = on_progress

        self._owns_client = http_client is None
        self.http_client = http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(self.config.http_timeout)
        )
        self._engine_factory = engine_factory or functools.partial(
            create_llama_engine,
            context_size=self.config.context_size,
            threads=self.config.cpu_threads,
        )
        self._downloader = downloader or ModelDownloader(
            self.config.models_dir, timeout=self.config.http_timeout
        )
        self._backend_factory = backend_factory or get_remote_backend
        self.slot = LocalModelSlot()

    # ─── Lifecycle ────────────────────────────────────────────────

    async def init(self) -> list[BackendDescriptor]:
        backends = await self.registry.refresh()
        logger.info("Router initialized")
        return backends

    async def close(self) -> None:
        if self.slot.state == SlotState.READY:
            await self.unload_model()
        if self._owns_client:
            await self.http_client.aclose()

    # ─── Queries ──────────────────────────────────────────────────

    async def list_backends(self) -> list[BackendDescriptor]:
        return await self.registry.refresh()

    async def preferred_local_kind(self) -> BackendKind | None:
        if await self.registry.is_available(BackendKind.ACCELERATED_LOCAL):
            return BackendKind.ACCELERATED_LOCAL
        if await self.registry.is_available(BackendKind.CPU_LOCAL):
            return BackendKind.CPU_LOCAL
        return None

    async def is_available(self) -> bool:
        """True if a generate() call has something to try."""
        if self.slot.ready:
            return True
        if await self._active_local_kind() is not None:
            return True
        return bool(await self.registry.configured_providers())

    @property
    def active_model(self) -> dict | None:
        if self.slot.state == SlotState.UNLOADED:
            return None
        return {
            "kind": self.slot.kind.value,
            "model_id": self.slot.model_id,
            "state": self.slot.state.value,
        }

    # ─── Local models ─────────────────────────────────────────────

    async def load_model(
        self,
        kind: BackendKind,
        model_id: str,
        on_progress: ProgressCallback | None = None,
    ) -> LLMBackend:
        """Download (if needed) and load a catalog model into the slot."""
        model = find_model(kind, model_id)
        if model is None:
            raise ConfigurationError(f"Unknown {kind.value} model: {model_id}")

        report = await self.registry.capability(kind)
        if not report.available:
            raise AvailabilityError(
                f"{kind.value} is not available: {report.reason or 'unknown reason'}"
            )

        if self.slot.state == SlotState.LOADING:
            raise AlreadyLoadingError(
                f"Already loading {self.slot.model_id}; wait for it to finish"
            )
        if self.slot.ready:
            if self.slot.kind == kind and self.slot.model_id == model_id:
                return self.slot.backend
            await self.unload_model()

        self.slot.begin_load(kind, model_id)

        def progress(event: LoadProgress) -> None:
            if on_progress:
                on_progress(event)
            if self.on_progress:
                self.on_progress(event)

        t0 = time.monotonic()
        try:
            path = await self._downloader.download(model, progress)
            progress(LoadProgress(stage=f"Loading {model.name}...", fraction=0.0))
            engine = await asyncio.to_thread(self._engine_factory, str(path), kind)
            size = path.stat().st_size if path.exists() else 0
            await self.store.set_value(
                f"{MODEL_PREFIX}{model.id}", model_record(model.id, str(path), size)
            )
            backend = LocalEngineBackend(kind, model, engine)
        except BaseException:
            self.slot.fail_load()
            raise

        self.slot.finish_load(backend)
        progress(LoadProgress(stage="Ready", fraction=1.0))
        metrics.observe(
            "router.load_ms", (time.monotonic() - t0) * 1000, labels={"backend": kind.value}
        )
        return backend

    async def unload_model(self) -> None:
        backend = self.slot.release()
        if backend is not None:
            await backend.stop()
            logger.info(f"Unloaded {backend.kind.value} model")

    async def _active_local_kind(self) -> BackendKind | None:
        model_id = await self.store.get_value(ACTIVE_LOCAL_MODEL)
        if not model_id:
            return None
        if find_model(BackendKind.ACCELERATED_LOCAL, model_id) and (
            await self.registry.is_available(BackendKind.ACCELERATED_LOCAL)
        ):
            return BackendKind.ACCELERATED_LOCAL
        if find_model(BackendKind.CPU_LOCAL, model_id) and (
            await self.registry.is_available(BackendKind.CPU_LOCAL)
        ):
            return BackendKind.CPU_LOCAL
        return None

    async def _local_backend(self) -> LLMBackend | None:
        if self.slot.ready:
            return self.slot.backend
        kind = await self._active_local_kind()
        if kind is None:
            return None
        model_id = await self.store.get_value(ACTIVE_LOCAL_MODEL)
        return await self.load_model(kind, model_id)

    # ─── Generation ───────────────────────────────────────────────

    async def generate(
        self,
        request: GenerationRequest,
        on_chunk: ChunkCallback | None = None,
        cancel: CancelToken | None = None,
    ) -> CompletionResult:
        check(cancel)
        metrics.inc("router.requests")

        local = await self._local_backend()
        if local is not None:
            return await self._run(_Attempt(local), request, on_chunk, cancel)

        failures: list[TransportError] = []
        for provider_id in await self.registry.configured_providers():
            check(cancel)
            api_key = await self.store.get_value(f"{API_KEY_PREFIX}{provider_id}")
            if not api_key:
                continue
            attempt = _Attempt(
                self._backend_factory(
                    provider_id, api_key, self.http_client, self.config
                )
            )
            try:
                return await self._run(attempt, request, on_chunk, cancel)
            except TransportError as e:
                failures.append(e)
                metrics.inc("router.fallbacks", labels={"provider": provider_id})
                partial = " after partial output" if attempt.emitted else ""
                logger.warning(
                    f"Provider {provider_id} failed{partial}, trying next: {e}",
                    extra={"request_id": request.id, "provider": provider_id},
                )

        if len(failures) == 1:
            raise failures[0]
        if failures:
            raise NoBackendAvailableError(
                f"all {len(failures)} providers failed", failures
            )
        raise NoBackendAvailableError("no local model loaded and no API key configured")

    async def _run(
        self,
        attempt: _Attempt,
        request: GenerationRequest,
        on_chunk: ChunkCallback | None,
        cancel: CancelToken | None,
    ) -> CompletionResult:
        backend = attempt.backend
        labels = {"backend": backend.id}
        parts: list[str] = []
        t0 = time.monotonic()

        try:
            async with aclosing(backend.generate_stream(request, cancel)) as stream:
                async for delta in stream:
                    check(cancel)
                    if not attempt.emitted:
                        metrics.observe(
                            "router.ttfc_ms", (time.monotonic() - t0) * 1000, labels=labels
                        )
                    attempt.emitted = True
                    parts.append(delta)
                    await _emit(on_chunk, GenerationChunk(request.id, delta))
            check(cancel)
        except GenerationCancelled:
            metrics.inc("router.cancellations", labels=labels)
            logger.info(
                f"Request {request.id} cancelled on {backend.id}",
                extra={"request_id": request.id, "backend": backend.id, "status": "cancelled"},
            )
            raise

        await _emit(on_chunk, GenerationChunk(request.id, "", done=True))

        duration_ms = (time.monotonic() - t0) * 1000
        metrics.observe("router.latency_ms", duration_ms, labels=labels)
        logger.info(
            f"Request {request.id} done on {backend.id} ({duration_ms:.0f}ms)",
            extra={
                "request_id": request.id,
                "backend": backend.id,
                "model": backend.model_for(request),
                "duration_ms": round(duration_ms, 1),
                "status": "done",
            },
        )
        return CompletionResult(
            request_id=request.id,
            content="".join(parts),
            backend_id=backend.id,
            model=backend.model_for(request),
        )
