"""
OfflineStorage — credentials, preferences and model bookkeeping on top of
a ConfigStore.

It is itself a ConfigStore: the router reads ``apikey:<provider>`` through
it and always gets the decrypted key. Ciphertext never leaves this module.

Keys:
    apikey:<provider>   encrypted API key
    activeLocalModel    model id the router should load on demand
    model:<model_id>    {"id", "path", "size", "downloadedAt"}
"""

from __future__ import annotations

import logging
import time
from typing import Any

import ayo_offline.core.config as config_module
from ayo_offline.core.config import RouterConfig
from ayo_offline.core.errors import ConfigurationError
from ayo_offline.storage.crypto import SecretBox
from ayo_offline.storage.store import ConfigStore

logger = logging.getLogger(__name__)

API_KEY_PREFIX = "apikey:"
MODEL_PREFIX = "model:"
ACTIVE_LOCAL_MODEL = "activeLocalModel"


def model_record(model_id: str, path: str, size: int) -> dict:
    return {"id": model_id, "path": path, "size": size, "downloadedAt": time.time()}


class OfflineStorage(ConfigStore):
    def __init__(
        self,
        backend: ConfigStore,
        secret_box: SecretBox | None = None,
        router_config: RouterConfig | None = None,
    ) -> None:
        self._backend = backend
        self._box = secret_box or SecretBox(config_module.config.storage.secret)
        self._router_config = router_config or config_module.config.router

    async def start(self) -> None:
        await self._backend.start()

    async def stop(self) -> None:
        await self._backend.stop()

    # ─── ConfigStore surface ──────────────────────────────────────

    async def get_value(self, key: str) -> Any:
        value = await self._backend.get_value(key)
        if key.startswith(API_KEY_PREFIX) and isinstance(value, str):
            return self._box.decrypt(value)
        return value

    async def set_value(self, key: str, value: Any) -> None:
        if key.startswith(API_KEY_PREFIX) and isinstance(value, str):
            value = self._box.encrypt(value)
        await self._backend.set_value(key, value)

    async def delete_value(self, key: str) -> None:
        await self._backend.delete_value(key)

    async def list_keys_with_prefix(self, prefix: str) -> list[str]:
        return await self._backend.list_keys_with_prefix(prefix)

    # ─── API keys ─────────────────────────────────────────────────

    async def set_api_key(self, provider: str, api_key: str) -> None:
        """Store a key. Keys for known providers must carry their prefix."""
        if not api_key:
            raise ConfigurationError(f"API key for {provider} is empty")
        provider_config = self._router_config.provider(provider)
        if provider_config and not api_key.startswith(provider_config.key_prefix):
            raise ConfigurationError(
                f"{provider_config.name} keys start with '{provider_config.key_prefix}'"
            )
        await self.set_value(f"{API_KEY_PREFIX}{provider}", api_key)
        logger.info(f"API key saved for {provider}")

    async def get_api_key(self, provider: str) -> str | None:
        value = await self.get_value(f"{API_KEY_PREFIX}{provider}")
        return value or None

    async def delete_api_key(self, provider: str) -> None:
        await self.delete_value(f"{API_KEY_PREFIX}{provider}")

    async def list_api_key_providers(self) -> list[str]:
        keys = await self.list_keys_with_prefix(API_KEY_PREFIX)
        return [k[len(API_KEY_PREFIX):] for k in keys]

    # ─── Preferences ──────────────────────────────────────────────

    async def get_active_local_model(self) -> str | None:
        return await self.get_value(ACTIVE_LOCAL_MODEL)

    async def set_active_local_model(self, model_id: str | None) -> None:
        if model_id is None:
            await self.delete_value(ACTIVE_LOCAL_MODEL)
        else:
            await self.set_value(ACTIVE_LOCAL_MODEL, model_id)

    # ─── Model bookkeeping ────────────────────────────────────────

    async def record_model(self, model_id: str, path: str, size: int) -> None:
        await self.set_value(f"{MODEL_PREFIX}{model_id}", model_record(model_id, path, size))

    async def get_model_record(self, model_id: str) -> dict | None:
        return await self.get_value(f"{MODEL_PREFIX}{model_id}")

    async def delete_model_record(self, model_id: str) -> None:
        await self.delete_value(f"{MODEL_PREFIX}{model_id}")

    async def list_model_records(self) -> list[dict]:
        records = []
        for key in await self.list_keys_with_prefix(MODEL_PREFIX):
            record = await self.get_value(key)
            if record:
                records.append(record)
        return records
