"""
Backend registry — what can run on this machine, right now.

Local kinds are answered by capability probes (injected; defaults in
probes.py). Remote providers are available iff the config store holds a
non-empty ``apikey:<provider>``. Nothing is cached between refresh() calls
except the last descriptor list: credentials can change at runtime.
"""

from __future__ import annotations

import inspect
import logging
from typing import Awaitable, Callable, Union

import ayo_offline.core.config as config_module
from ayo_offline.core.config import RouterConfig
from ayo_offline.router import probes
from ayo_offline.router.catalog import CATALOGS
from ayo_offline.router.types import BackendDescriptor, BackendKind, CapabilityReport
from ayo_offline.storage.credentials import API_KEY_PREFIX
from ayo_offline.storage.store import ConfigStore

logger = logging.getLogger(__name__)

Probe = Callable[[], Union[CapabilityReport, Awaitable[CapabilityReport]]]

_LOCAL_NAMES = {
    BackendKind.ACCELERATED_LOCAL: ("GPU (llama.cpp)", "Fast"),
    BackendKind.CPU_LOCAL: ("CPU (llama.cpp)", "Slower, works everywhere"),
}


class BackendRegistry:
    def __init__(
        self,
        store: ConfigStore,
        router_config: RouterConfig | None = None,
        accelerator_probe: Probe | None = None,
        cpu_probe: Probe | None = None,
    ) -> None:
        self.store = store
        self.router_config = router_config or config_module.config.router
        self._probes: dict[BackendKind, Probe] = {
            BackendKind.ACCELERATED_LOCAL: accelerator_probe or probes.probe_accelerator,
            BackendKind.CPU_LOCAL: cpu_probe or probes.probe_cpu,
        }
        self._capabilities: dict[BackendKind, CapabilityReport] = {}
        self._backends: list[BackendDescriptor] = []

    async def refresh(self) -> list[BackendDescriptor]:
        """Re-run the probes and re-read credentials."""
        for kind in self._probes:
            self._capabilities[kind] = await self._run_probe(kind)

        backends = [self._local_descriptor(kind) for kind in self._probes]
        backends.extend(await self._remote_descriptors())
        self._backends = backends

        available = [b.id for b in backends if b.available]
        logger.info(f"Backends available: {', '.join(available) or 'none'}")
        return list(backends)

    async def list_backends(self) -> list[BackendDescriptor]:
        if not self._backends:
            await self.refresh()
        return list(self._backends)

    async def capability(self, kind: BackendKind) -> CapabilityReport:
        if kind not in self._capabilities:
            self._capabilities[kind] = await self._run_probe(kind)
        return self._capabilities[kind]

    async def is_available(self, kind: BackendKind) -> bool:
        return (await self.capability(kind)).available

    async def configured_providers(self) -> list[str]:
        """Credentialed, known provider ids, in the order keys were stored."""
        known = set(self.router_config.provider_order)
        configured = []
        for key in await self.store.list_keys_with_prefix(API_KEY_PREFIX):
            provider_id = key[len(API_KEY_PREFIX):]
            if provider_id not in known:
                logger.debug(f"Ignoring credential for unknown provider {provider_id}")
                continue
            if await self.store.get_value(key):
                configured.append(provider_id)
        return configured

    async def get(self, backend_id: str) -> BackendDescriptor | None:
        for backend in await self.list_backends():
            if backend.id == backend_id:
                return backend
        return None

    # ─── Internals ────────────────────────────────────────────────

    async def _run_probe(self, kind: BackendKind) -> CapabilityReport:
        try:
            report = self._probes[kind]()
            if inspect.isawaitable(report):
                report = await report
            return report
        except Exception as e:
            logger.error(f"{kind.value} probe failed: {e}", exc_info=True)
            return CapabilityReport(
                available=False, reason=f"Probe failed: {e}", reason_code="probe_failed"
            )

    def _local_descriptor(self, kind: BackendKind) -> BackendDescriptor:
        report = self._capabilities[kind]
        name, performance = _LOCAL_NAMES[kind]
        return BackendDescriptor(
            kind=kind,
            id=kind.value,
            display_name=name,
            available=report.available,
            unavailable_reason=report.reason,
            reason_code=report.reason_code,
            models=list(CATALOGS[kind]) if report.available else [],
            performance=performance,
            multi_threaded=bool(report.details.get("multi_threaded", False)),
        )

    async def _remote_descriptors(self) -> list[BackendDescriptor]:
        descriptors = []
        for provider in self.router_config.providers:
            key = await self.store.get_value(f"{API_KEY_PREFIX}{provider.id}")
            available = bool(key)
            descriptors.append(
                BackendDescriptor(
                    kind=BackendKind.REMOTE,
                    id=provider.id,
                    display_name=provider.name,
                    available=available,
                    unavailable_reason=None if available else "API key not configured",
                    reason_code=None if available else "no_api_key",
                    models=list(provider.models) if available else [],
                    performance="Depends on network",
                )
            )
        return descriptors
