"""Tests for the generation router: selection, fallback, cancellation, loading."""

import asyncio
import threading
import time
from pathlib import Path
from typing import AsyncGenerator
from unittest.mock import MagicMock

import pytest

from ayo_offline.core.cancellation import CancelToken
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
from ayo_offline.router.registry import BackendRegistry
from ayo_offline.router.router import GenerationRouter
from ayo_offline.router.slot import SlotState
from ayo_offline.router.types import (
    BackendKind,
    CapabilityReport,
    ChatMessage,
    GenerationRequest,
    LoadProgress,
)
from ayo_offline.storage.store import MemoryConfigStore

CPU_MODEL = "smollm2-360m-instruct-q8_0"
GPU_MODEL = "llama-3.2-1b-instruct-q4_k_m"


# ─── Fakes ────────────────────────────────────────────────────


class FakeRemote(LLMBackend):
    """Remote backend scripted with deltas and an optional failure."""

    kind = BackendKind.REMOTE

    def __init__(self, provider_id, deltas=(), error=None, on_delta=None):
        self.id = provider_id
        self.deltas = list(deltas)
        self.error = error
        self.on_delta = on_delta
        self.calls = 0

    async def generate_stream(self, request, cancel=None) -> AsyncGenerator[str, None]:
        self.calls += 1
        for delta in self.deltas:
            if cancel is not None:
                cancel.raise_if_cancelled()
            yield delta
            if self.on_delta:
                self.on_delta(delta)
        if self.error is not None:
            raise self.error


class FakeFactory:
    def __init__(self, backends: dict):
        self.backends = backends
        self.requested = []

    def __call__(self, provider_id, api_key, http_client=None, router_config=None):
        self.requested.append((provider_id, api_key))
        return self.backends[provider_id]


class FakeEngine:
    """Stands in for llama_cpp.Llama."""

    def __init__(self, pieces=("Hi", " there")):
        self.pieces = pieces
        self.close = MagicMock()

    def create_chat_completion(self, messages, **kwargs):
        yield {"choices": [{"delta": {"role": "assistant"}}]}
        for piece in self.pieces:
            yield {"choices": [{"delta": {"content": piece}}]}

    def create_completion(self, prompt, **kwargs):
        for piece in self.pieces:
            yield {"choices": [{"text": piece}]}


class FakeDownloader:
    def __init__(self, tmp_path: Path, gate: asyncio.Event | None = None, error=None):
        self.tmp_path = tmp_path
        self.gate = gate
        self.error = error
        self.downloads = []

    async def download(self, model, on_progress=None):
        self.downloads.append(model.id)
        if on_progress:
            on_progress(LoadProgress(stage=f"Downloading {model.name}...", fraction=0.5))
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        path = self.tmp_path / f"{model.id}.gguf"
        path.write_bytes(b"GGUF")
        return path


def _probe(available: bool):
    return lambda: CapabilityReport(available=available, reason=None if available else "nope")


def _request(request_id=1):
    return GenerationRequest(id=request_id, messages=(ChatMessage("user", "hello"),))


def _router(store, *, gpu=False, cpu=False, factory=None, engine=None, downloader=None,
            tmp_path=None, on_progress=None):
    registry = BackendRegistry(store, accelerator_probe=_probe(gpu), cpu_probe=_probe(cpu))
    engine = engine or FakeEngine()
    return GenerationRouter(
        store,
        registry=registry,
        backend_factory=factory,
        engine_factory=lambda path, kind: engine,
        downloader=downloader or FakeDownloader(tmp_path or Path(".")),
        on_progress=on_progress,
    )


@pytest.fixture
def store():
    return MemoryConfigStore()


# ─── Remote selection & fallback ──────────────────────────────


@pytest.mark.asyncio
async def test_no_backend_at_all_gives_actionable_error(store, tmp_path):
    router = _router(store, tmp_path=tmp_path)
    with pytest.raises(NoBackendAvailableError) as exc:
        await router.generate(_request())
    assert "API key" in str(exc.value)
    assert exc.value.failures == []
    await router.close()


@pytest.mark.asyncio
async def test_remote_success_streams_and_finishes(store, tmp_path):
    await store.set_value("apikey:openai", "sk-1")
    factory = FakeFactory({"openai": FakeRemote("openai", ["Hel", "lo"])})
    router = _router(store, factory=factory, tmp_path=tmp_path)
    chunks = []

    result = await router.generate(_request(5), on_chunk=chunks.append)

    assert result.content == "Hello"
    assert result.backend_id == "openai"
    assert result.request_id == 5
    assert [(c.content, c.done) for c in chunks] == [("Hel", False), ("lo", False), ("", True)]
    assert factory.requested == [("openai", "sk-1")]
    await router.close()


@pytest.mark.asyncio
async def test_async_chunk_callback_awaited(store, tmp_path):
    await store.set_value("apikey:openai", "sk-1")
    router = _router(
        store, factory=FakeFactory({"openai": FakeRemote("openai", ["a", "b"])}), tmp_path=tmp_path
    )
    seen = []

    async def on_chunk(chunk):
        await asyncio.sleep(0)
        seen.append(chunk.content)

    await router.generate(_request(), on_chunk=on_chunk)
    assert seen == ["a", "b", ""]
    await router.close()


@pytest.mark.asyncio
async def test_providers_tried_in_credential_order(store, tmp_path):
    await store.set_value("apikey:anthropic", "sk-ant")
    await store.set_value("apikey:openai", "sk-1")
    factory = FakeFactory({
        "anthropic": FakeRemote("anthropic", ["from anthropic"]),
        "openai": FakeRemote("openai", ["from openai"]),
    })
    router = _router(store, factory=factory, tmp_path=tmp_path)

    result = await router.generate(_request())
    assert result.backend_id == "anthropic"
    assert [p for p, _ in factory.requested] == ["anthropic"]
    await router.close()


@pytest.mark.asyncio
async def test_failure_falls_back_to_next_provider(store, tmp_path):
    await store.set_value("apikey:openai", "sk-1")
    await store.set_value("apikey:anthropic", "sk-ant")
    factory = FakeFactory({
        "openai": FakeRemote("openai", error=TransportError("openai", "API error: 500", 500)),
        "anthropic": FakeRemote("anthropic", ["ok"]),
    })
    router = _router(store, factory=factory, tmp_path=tmp_path)

    result = await router.generate(_request())
    assert result.content == "ok"
    assert result.backend_id == "anthropic"
    assert metrics.counter("router.fallbacks", labels={"provider": "openai"}) == 1
    await router.close()


@pytest.mark.asyncio
async def test_single_provider_failure_is_reraised(store, tmp_path):
    await store.set_value("apikey:openai", "sk-1")
    error = TransportError("openai", "API error: 500", 500)
    router = _router(
        store, factory=FakeFactory({"openai": FakeRemote("openai", error=error)}), tmp_path=tmp_path
    )
    with pytest.raises(TransportError) as exc:
        await router.generate(_request())
    assert exc.value is error
    assert exc.value.provider == "openai"
    await router.close()


@pytest.mark.asyncio
async def test_all_providers_failing_aggregates(store, tmp_path):
    await store.set_value("apikey:openai", "sk-1")
    await store.set_value("apikey:openrouter", "sk-or")
    factory = FakeFactory({
        "openai": FakeRemote("openai", error=TransportError("openai", "down")),
        "openrouter": FakeRemote("openrouter", error=TransportError("openrouter", "down")),
    })
    router = _router(store, factory=factory, tmp_path=tmp_path)
    with pytest.raises(NoBackendAvailableError) as exc:
        await router.generate(_request())
    assert [f.provider for f in exc.value.failures] == ["openai", "openrouter"]
    await router.close()


@pytest.mark.asyncio
async def test_fallback_after_partial_output(store, tmp_path):
    await store.set_value("apikey:openai", "sk-1")
    await store.set_value("apikey:anthropic", "sk-ant")
    second = FakeRemote("anthropic", ["full answer"])
    factory = FakeFactory({
        "openai": FakeRemote("openai", ["half"], error=TransportError("openai", "reset")),
        "anthropic": second,
    })
    router = _router(store, factory=factory, tmp_path=tmp_path)
    chunks = []

    result = await router.generate(_request(), on_chunk=chunks.append)

    assert second.calls == 1
    assert result.content == "full answer"
    assert result.backend_id == "anthropic"
    assert [c.content for c in chunks] == ["half", "full answer", ""]
    assert chunks[-1].done
    assert metrics.counter("router.fallbacks", labels={"provider": "openai"}) == 1
    await router.close()


# ─── Cancellation ─────────────────────────────────────────────


@pytest.mark.asyncio
async def test_cancelled_before_start(store, tmp_path):
    await store.set_value("apikey:openai", "sk-1")
    factory = FakeFactory({"openai": FakeRemote("openai", ["x"])})
    router = _router(store, factory=factory, tmp_path=tmp_path)
    token = CancelToken()
    token.cancel()
    with pytest.raises(GenerationCancelled):
        await router.generate(_request(), cancel=token)
    assert factory.requested == []
    await router.close()


@pytest.mark.asyncio
async def test_cancel_mid_stream_stops_without_fallback(store, tmp_path):
    await store.set_value("apikey:openai", "sk-1")
    await store.set_value("apikey:anthropic", "sk-ant")
    token = CancelToken()
    second = FakeRemote("anthropic", ["never"])
    factory = FakeFactory({
        "openai": FakeRemote("openai", ["a", "b", "c"], on_delta=lambda d: token.cancel()),
        "anthropic": second,
    })
    router = _router(store, factory=factory, tmp_path=tmp_path)
    chunks = []

    with pytest.raises(GenerationCancelled):
        await router.generate(_request(), on_chunk=chunks.append, cancel=token)

    assert [c.content for c in chunks] == ["a"]
    assert not any(c.done for c in chunks)
    assert second.calls == 0
    assert metrics.counter("router.cancellations", labels={"backend": "openai"}) == 1
    await router.close()


# ─── Local models ─────────────────────────────────────────────


@pytest.mark.asyncio
async def test_ready_local_model_preferred_over_remote(store, tmp_path):
    await store.set_value("apikey:openai", "sk-1")
    factory = FakeFactory({"openai": FakeRemote("openai", ["remote"])})
    router = _router(store, cpu=True, factory=factory, tmp_path=tmp_path)

    await router.load_model(BackendKind.CPU_LOCAL, CPU_MODEL)
    result = await router.generate(_request())

    assert result.backend_id == "cpu-local"
    assert result.content == "Hi there"
    assert result.model == CPU_MODEL
    assert factory.requested == []
    await router.close()


class OverlapEngine(FakeEngine):
    """Records how many threads are inside a token step at once."""

    def __init__(self, pieces=("a", "b", "c")):
        super().__init__(pieces)
        self._guard = threading.Lock()
        self.active = 0
        self.max_active = 0

    def create_completion(self, prompt, **kwargs):
        for piece in self.pieces:
            with self._guard:
                self.active += 1
                self.max_active = max(self.max_active, self.active)
            time.sleep(0.01)
            with self._guard:
                self.active -= 1
            yield {"choices": [{"text": piece}]}


@pytest.mark.asyncio
async def test_concurrent_requests_take_turns_on_local_engine(store, tmp_path):
    engine = OverlapEngine()
    router = _router(store, cpu=True, engine=engine, tmp_path=tmp_path)
    await router.load_model(BackendKind.CPU_LOCAL, CPU_MODEL)

    first, second = await asyncio.gather(
        router.generate(_request(1)), router.generate(_request(2))
    )

    assert engine.max_active == 1
    assert (first.content, second.content) == ("abc", "abc")
    await router.close()


@pytest.mark.asyncio
async def test_active_local_model_loaded_on_demand(store, tmp_path):
    await store.set_value("activeLocalModel", GPU_MODEL)
    router = _router(store, gpu=True, cpu=True, tmp_path=tmp_path)

    result = await router.generate(_request())

    assert result.backend_id == "accelerated-local"
    assert router.active_model == {
        "kind": "accelerated-local",
        "model_id": GPU_MODEL,
        "state": "ready",
    }
    record = await store.get_value(f"model:{GPU_MODEL}")
    assert record["size"] == 4
    await router.close()


@pytest.mark.asyncio
async def test_active_model_without_capability_falls_through_to_remote(store, tmp_path):
    await store.set_value("activeLocalModel", GPU_MODEL)
    await store.set_value("apikey:openai", "sk-1")
    factory = FakeFactory({"openai": FakeRemote("openai", ["remote"])})
    router = _router(store, gpu=False, cpu=True, factory=factory, tmp_path=tmp_path)

    result = await router.generate(_request())
    assert result.backend_id == "openai"
    assert router.active_model is None
    await router.close()


@pytest.mark.asyncio
async def test_load_reports_progress_to_both_callbacks(store, tmp_path):
    router_events, call_events = [], []
    router = _router(store, cpu=True, tmp_path=tmp_path, on_progress=router_events.append)

    await router.load_model(BackendKind.CPU_LOCAL, CPU_MODEL, on_progress=call_events.append)

    assert call_events == router_events
    assert call_events[0].stage.startswith("Downloading")
    assert call_events[-1] == LoadProgress(stage="Ready", fraction=1.0)
    await router.close()


@pytest.mark.asyncio
async def test_concurrent_load_is_rejected(store, tmp_path):
    gate = asyncio.Event()
    router = _router(
        store, cpu=True, tmp_path=tmp_path, downloader=FakeDownloader(tmp_path, gate=gate)
    )

    first = asyncio.create_task(router.load_model(BackendKind.CPU_LOCAL, CPU_MODEL))
    while router.slot.state != SlotState.LOADING:
        await asyncio.sleep(0)

    with pytest.raises(AlreadyLoadingError):
        await router.load_model(BackendKind.CPU_LOCAL, "qwen2.5-0.5b-instruct-q8_0")

    gate.set()
    await first
    assert router.slot.state == SlotState.READY
    assert router.slot.model_id == CPU_MODEL
    await router.close()


@pytest.mark.asyncio
async def test_failed_load_returns_to_unloaded(store, tmp_path):
    downloader = FakeDownloader(tmp_path, error=TransportError("download", "HTTP 404", 404))
    router = _router(store, cpu=True, tmp_path=tmp_path, downloader=downloader)

    with pytest.raises(TransportError):
        await router.load_model(BackendKind.CPU_LOCAL, CPU_MODEL)
    assert router.slot.state == SlotState.UNLOADED
    assert router.active_model is None
    await router.close()


@pytest.mark.asyncio
async def test_loading_other_kind_unloads_first(store, tmp_path):
    engine = FakeEngine()
    router = _router(store, gpu=True, cpu=True, engine=engine, tmp_path=tmp_path)

    await router.load_model(BackendKind.CPU_LOCAL, CPU_MODEL)
    await router.load_model(BackendKind.ACCELERATED_LOCAL, GPU_MODEL)

    engine.close.assert_called_once()
    assert router.slot.kind == BackendKind.ACCELERATED_LOCAL
    await router.close()


@pytest.mark.asyncio
async def test_loading_same_model_twice_is_noop(store, tmp_path):
    downloader = FakeDownloader(tmp_path)
    router = _router(store, cpu=True, tmp_path=tmp_path, downloader=downloader)
    first = await router.load_model(BackendKind.CPU_LOCAL, CPU_MODEL)
    second = await router.load_model(BackendKind.CPU_LOCAL, CPU_MODEL)
    assert first is second
    assert downloader.downloads == [CPU_MODEL]
    await router.close()


@pytest.mark.asyncio
async def test_unknown_model_rejected(store, tmp_path):
    router = _router(store, cpu=True, tmp_path=tmp_path)
    with pytest.raises(ConfigurationError):
        await router.load_model(BackendKind.CPU_LOCAL, GPU_MODEL)
    await router.close()


@pytest.mark.asyncio
async def test_unavailable_kind_rejected(store, tmp_path):
    router = _router(store, gpu=False, tmp_path=tmp_path)
    with pytest.raises(AvailabilityError):
        await router.load_model(BackendKind.ACCELERATED_LOCAL, GPU_MODEL)
    await router.close()


@pytest.mark.asyncio
async def test_unload_resets_slot(store, tmp_path):
    engine = FakeEngine()
    router = _router(store, cpu=True, engine=engine, tmp_path=tmp_path)
    await router.load_model(BackendKind.CPU_LOCAL, CPU_MODEL)
    await router.unload_model()
    assert router.slot.state == SlotState.UNLOADED
    engine.close.assert_called_once()
    await router.close()


# ─── Queries ──────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_preferred_local_kind(store, tmp_path):
    cases = [
        ({"gpu": True, "cpu": True}, BackendKind.ACCELERATED_LOCAL),
        ({"cpu": True}, BackendKind.CPU_LOCAL),
        ({}, None),
    ]
    for probes, expected in cases:
        router = _router(store, tmp_path=tmp_path, **probes)
        assert await router.preferred_local_kind() == expected
        await router.close()


@pytest.mark.asyncio
async def test_is_available(store, tmp_path):
    router = _router(store, tmp_path=tmp_path)
    assert not await router.is_available()
    await store.set_value("apikey:openrouter", "sk-or")
    assert await router.is_available()
    await router.close()
