"""Tests for capability probes and the backend registry."""

import pytest

from ayo_offline.router.catalog import ACCELERATED_MODELS, CPU_MODELS
from ayo_offline.router.registry import BackendRegistry
from ayo_offline.router.types import BackendKind, CapabilityReport
from ayo_offline.storage.store import MemoryConfigStore


def _available(**details):
    return lambda: CapabilityReport(available=True, details=details)


def _missing(code="engine_missing"):
    return lambda: CapabilityReport(available=False, reason="not here", reason_code=code)


def _registry(store=None, accelerator=None, cpu=None):
    return BackendRegistry(
        store or MemoryConfigStore(),
        accelerator_probe=accelerator or _missing(),
        cpu_probe=cpu or _missing(),
    )


@pytest.mark.asyncio
async def test_lists_local_then_remote_backends():
    backends = await _registry().refresh()
    assert [b.id for b in backends] == [
        "accelerated-local",
        "cpu-local",
        "openai",
        "anthropic",
        "openrouter",
    ]
    assert not any(b.available for b in backends)


@pytest.mark.asyncio
async def test_local_models_only_listed_when_available():
    registry = _registry(accelerator=_available(), cpu=_missing())
    accelerated = await registry.get("accelerated-local")
    cpu = await registry.get("cpu-local")
    assert accelerated.available
    assert accelerated.models == list(ACCELERATED_MODELS)
    assert not cpu.available
    assert cpu.models == []
    assert cpu.reason_code == "engine_missing"


@pytest.mark.asyncio
async def test_cpu_reports_multi_threading():
    registry = _registry(cpu=_available(multi_threaded=True))
    cpu = await registry.get("cpu-local")
    assert cpu.available
    assert cpu.multi_threaded
    assert cpu.models == list(CPU_MODELS)


@pytest.mark.asyncio
async def test_async_probe_supported():
    async def probe():
        return CapabilityReport(available=True)

    registry = _registry(accelerator=probe)
    assert await registry.is_available(BackendKind.ACCELERATED_LOCAL)


@pytest.mark.asyncio
async def test_probe_exception_means_unavailable():
    def probe():
        raise RuntimeError("driver exploded")

    registry = _registry(accelerator=probe)
    report = await registry.capability(BackendKind.ACCELERATED_LOCAL)
    assert not report.available
    assert report.reason_code == "probe_failed"
    assert "driver exploded" in report.reason


@pytest.mark.asyncio
async def test_remote_available_iff_key_present():
    store = MemoryConfigStore({"apikey:anthropic": "sk-ant-1", "apikey:openai": ""})
    registry = _registry(store)
    anthropic = await registry.get("anthropic")
    openai = await registry.get("openai")
    assert anthropic.available
    assert "claude-3-5-haiku-20241022" in anthropic.models
    assert not openai.available
    assert openai.models == []
    assert openai.reason_code == "no_api_key"


@pytest.mark.asyncio
async def test_configured_providers_follow_store_order():
    store = MemoryConfigStore()
    await store.set_value("apikey:openrouter", "sk-or-1")
    await store.set_value("apikey:mystery", "x")
    await store.set_value("apikey:openai", "sk-1")
    await store.set_value("apikey:anthropic", "")
    registry = _registry(store)
    assert await registry.configured_providers() == ["openrouter", "openai"]


@pytest.mark.asyncio
async def test_refresh_sees_new_credentials():
    store = MemoryConfigStore()
    registry = _registry(store)
    assert not (await registry.get("openai")).available

    await store.set_value("apikey:openai", "sk-1")
    await registry.refresh()
    assert (await registry.get("openai")).available
