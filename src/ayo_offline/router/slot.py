"""
Local model slot — the UNLOADED → LOADING → READY → UNLOADED state machine.

At most one local model is loaded at a time, of either kind. A load while
another is in flight is rejected, not queued.
"""

from __future__ import annotations

import logging
from enum import Enum

from ayo_offline.core.errors import AlreadyLoadingError
from ayo_offline.providers.base import LLMBackend
from ayo_offline.router.types import BackendKind

logger = logging.getLogger(__name__)


class SlotState(str, Enum):
    UNLOADED = "unloaded"
    LOADING = "loading"
    READY = "ready"


class SlotStateError(RuntimeError):
    """Illegal slot transition."""


class LocalModelSlot:
    def __init__(self) -> None:
        self.state = SlotState.UNLOADED
        self.kind: BackendKind | None = None
        self.model_id: str | None = None
        self.backend: LLMBackend | None = None

    @property
    def ready(self) -> bool:
        return self.state == SlotState.READY

    def begin_load(self, kind: BackendKind, model_id: str) -> None:
        if self.state == SlotState.LOADING:
            raise AlreadyLoadingError(
                f"Already loading {self.model_id}; wait for it to finish"
            )
        if self.state == SlotState.READY:
            raise SlotStateError("unload the current model before loading another")
        self.state = SlotState.LOADING
        self.kind = kind
        self.model_id = model_id
        logger.info(f"Loading {kind.value} model {model_id}")

    def finish_load(self, backend: LLMBackend) -> None:
        if self.state != SlotState.LOADING:
            raise SlotStateError(f"finish_load in state {self.state.value}")
        self.backend = backend
        self.state = SlotState.READY
        logger.info(f"{self.kind.value} model {self.model_id} ready")

    def fail_load(self) -> None:
        if self.state != SlotState.LOADING:
            raise SlotStateError(f"fail_load in state {self.state.value}")
        logger.warning(f"Loading {self.model_id} failed")
        self._reset()

    def release(self) -> LLMBackend | None:
        """Go back to UNLOADED, handing the old backend to the caller to stop."""
        if self.state == SlotState.LOADING:
            raise AlreadyLoadingError("cannot unload while a model is loading")
        backend = self.backend
        self._reset()
        return backend

    def _reset(self) -> None:
        self.state = SlotState.UNLOADED
        self.kind = None
        self.model_id = None
        self.backend = None

    def __repr__(self) -> str:
        return f"<LocalModelSlot {self.state.value} {self.kind} {self.model_id}>"
