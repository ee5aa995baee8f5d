"""Tests for the config store, secret box and OfflineStorage."""

import tempfile
from pathlib import Path

import pytest
import pytest_asyncio

from ayo_offline.core.errors import ConfigurationError
from ayo_offline.storage.credentials import OfflineStorage
from ayo_offline.storage.crypto import SecretBox, derive_fernet_key
from ayo_offline.storage.store import MemoryConfigStore, SQLiteConfigStore


# ─── Fixtures ─────────────────────────────────────────────────


@pytest_asyncio.fixture
async def sqlite_store():
    with tempfile.TemporaryDirectory() as tmpdir:
        s = SQLiteConfigStore(db_path=Path(tmpdir) / "config.db")
        await s.start()
        yield s
        await s.stop()


@pytest.fixture
def box():
    return SecretBox("correct horse battery staple")


# ─── MemoryConfigStore ────────────────────────────────────────


@pytest.mark.asyncio
async def test_memory_store_roundtrip():
    store = MemoryConfigStore()
    assert await store.get_value("missing") is None
    await store.set_value("a", {"x": 1})
    assert await store.get_value("a") == {"x": 1}
    await store.delete_value("a")
    await store.delete_value("a")
    assert await store.get_value("a") is None


@pytest.mark.asyncio
async def test_memory_store_prefix_listing_keeps_insertion_order():
    store = MemoryConfigStore({"apikey:openai": "k1", "other": 1})
    await store.set_value("apikey:anthropic", "k2")
    assert await store.list_keys_with_prefix("apikey:") == ["apikey:openai", "apikey:anthropic"]


# ─── SQLiteConfigStore ────────────────────────────────────────


@pytest.mark.asyncio
async def test_sqlite_store_values_are_json(sqlite_store):
    await sqlite_store.set_value("activeLocalModel", "smollm2-360m-instruct-q8_0")
    await sqlite_store.set_value("model:x", {"id": "x", "size": 10})
    assert await sqlite_store.get_value("activeLocalModel") == "smollm2-360m-instruct-q8_0"
    assert await sqlite_store.get_value("model:x") == {"id": "x", "size": 10}
    assert await sqlite_store.get_value("nope") is None


@pytest.mark.asyncio
async def test_sqlite_store_upsert_keeps_original_order(sqlite_store):
    await sqlite_store.set_value("apikey:openrouter", "a")
    await sqlite_store.set_value("apikey:openai", "b")
    await sqlite_store.set_value("apikey:openrouter", "c")
    assert await sqlite_store.list_keys_with_prefix("apikey:") == [
        "apikey:openrouter",
        "apikey:openai",
    ]
    assert await sqlite_store.get_value("apikey:openrouter") == "c"


@pytest.mark.asyncio
async def test_sqlite_prefix_is_literal(sqlite_store):
    await sqlite_store.set_value("a_b", 1)
    await sqlite_store.set_value("axb", 2)
    assert await sqlite_store.list_keys_with_prefix("a_") == ["a_b"]


@pytest.mark.asyncio
async def test_sqlite_delete(sqlite_store):
    await sqlite_store.set_value("k", 1)
    await sqlite_store.delete_value("k")
    assert await sqlite_store.get_value("k") is None


@pytest.mark.asyncio
async def test_sqlite_store_requires_start():
    store = SQLiteConfigStore(db_path=Path("unused.db"))
    with pytest.raises(RuntimeError):
        await store.get_value("k")


# ─── SecretBox ────────────────────────────────────────────────


def test_key_derivation_is_deterministic():
    assert derive_fernet_key("s") == derive_fernet_key("s")
    assert derive_fernet_key("s") != derive_fernet_key("t")


def test_secret_box_encrypts(box):
    token = box.encrypt("sk-abc123")
    assert token != "sk-abc123"
    assert box.decrypt(token) == "sk-abc123"


def test_secret_box_passes_legacy_plaintext_through(box):
    assert box.decrypt("sk-legacy") == "sk-legacy"


def test_secret_box_without_secret_is_plaintext():
    box = SecretBox("")
    assert not box.enabled
    assert box.encrypt("sk-1") == "sk-1"


# ─── OfflineStorage ───────────────────────────────────────────


@pytest.mark.asyncio
async def test_api_keys_encrypted_at_rest(box):
    backend = MemoryConfigStore()
    storage = OfflineStorage(backend, box)
    await storage.set_api_key("openai", "sk-secret")

    raw = await backend.get_value("apikey:openai")
    assert raw != "sk-secret"
    assert await storage.get_api_key("openai") == "sk-secret"
    # The ConfigStore surface decrypts too
    assert await storage.get_value("apikey:openai") == "sk-secret"


@pytest.mark.asyncio
async def test_list_and_delete_api_keys(box):
    storage = OfflineStorage(MemoryConfigStore(), box)
    await storage.set_api_key("anthropic", "sk-ant-1")
    await storage.set_api_key("openai", "sk-1")
    assert await storage.list_api_key_providers() == ["anthropic", "openai"]

    await storage.delete_api_key("anthropic")
    assert await storage.get_api_key("anthropic") is None
    assert await storage.list_api_key_providers() == ["openai"]


@pytest.mark.asyncio
async def test_api_key_must_match_provider_prefix(box):
    backend = MemoryConfigStore()
    storage = OfflineStorage(backend, box)

    with pytest.raises(ConfigurationError, match="sk-ant-"):
        await storage.set_api_key("anthropic", "sk-1")
    with pytest.raises(ConfigurationError, match="empty"):
        await storage.set_api_key("openai", "")
    assert await backend.list_keys_with_prefix("apikey:") == []

    await storage.set_api_key("openrouter", "sk-or-v1-abc")
    assert await storage.get_api_key("openrouter") == "sk-or-v1-abc"


@pytest.mark.asyncio
async def test_active_local_model(box):
    storage = OfflineStorage(MemoryConfigStore(), box)
    assert await storage.get_active_local_model() is None
    await storage.set_active_local_model("qwen2.5-0.5b-instruct-q8_0")
    assert await storage.get_active_local_model() == "qwen2.5-0.5b-instruct-q8_0"
    await storage.set_active_local_model(None)
    assert await storage.get_active_local_model() is None


@pytest.mark.asyncio
async def test_model_records(box):
    storage = OfflineStorage(MemoryConfigStore(), box)
    await storage.record_model("m1", "/models/m1.gguf", 100)
    await storage.record_model("m2", "/models/m2.gguf", 200)

    record = await storage.get_model_record("m1")
    assert record["path"] == "/models/m1.gguf"
    assert record["size"] == 100
    assert "downloadedAt" in record
    assert [r["id"] for r in await storage.list_model_records()] == ["m1", "m2"]

    await storage.delete_model_record("m1")
    assert await storage.get_model_record("m1") is None
