"""
Request correlator — matches terminal messages to the call that sent them.

Each outstanding request id owns one asyncio.Future. The entry is removed
exactly once: on resolve, reject, or cancel. Anything arriving for an id
that's already gone is ignored, so a duplicated llm:done is harmless.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable

logger = logging.getLogger(__name__)

ChunkCallback = Callable[[str], Any]


@dataclass
class PendingRequest:
    id: int
    future: asyncio.Future
    on_chunk: ChunkCallback | None = None
    created_at: float = field(default_factory=time.time)


class RequestCorrelator:
    def __init__(self) -> None:
        self._next_id = 1
        self._pending: dict[int, PendingRequest] = {}

    def generate_id(self) -> int:
        """Next request id. Starts at 1, strictly increasing, per instance."""
        request_id = self._next_id
        self._next_id += 1
        return request_id

    def register(
        self, request_id: int, on_chunk: ChunkCallback | None = None
    ) -> asyncio.Future:
        """Track a request; the returned future settles on its terminal message."""
        if request_id in self._pending:
            raise ValueError(f"request {request_id} is already pending")
        future = asyncio.get_running_loop().create_future()
        self._pending[request_id] = PendingRequest(
            id=request_id, future=future, on_chunk=on_chunk
        )
        return future

    def resolve(self, request_id: int, value: Any = None) -> bool:
        entry = self._pending.pop(request_id, None)
        if entry is None:
            logger.debug("resolve for unknown request %s ignored", request_id)
            return False
        if not entry.future.done():
            entry.future.set_result(value)
        return True

    def reject(self, request_id: int, error: BaseException) -> bool:
        entry = self._pending.pop(request_id, None)
        if entry is None:
            logger.debug("reject for unknown request %s ignored", request_id)
            return False
        if not entry.future.done():
            entry.future.set_exception(error)
        return True

    def cancel(self, request_id: int) -> asyncio.Future | None:
        """Forget a request without settling it.

        The future is handed back untouched; telling the waiting caller
        is the cancel initiator's job.
        """
        entry = self._pending.pop(request_id, None)
        return entry.future if entry else None

    def deliver_chunk(self, request_id: int, delta: str) -> bool:
        """Pass a streamed delta to the request's chunk callback, if any."""
        entry = self._pending.get(request_id)
        if entry is None:
            return False
        if entry.on_chunk is not None:
            entry.on_chunk(delta)
        return True

    def get(self, request_id: int) -> PendingRequest | None:
        return self._pending.get(request_id)

    def pending_ids(self) -> list[int]:
        return list(self._pending)

    def clear(self, error: BaseException) -> None:
        """Reject everything still pending (connection closed)."""
        for request_id in list(self._pending):
            self.reject(request_id, error)

    def __contains__(self, request_id: object) -> bool:
        return request_id in self._pending

    def __len__(self) -> int:
        return len(self._pending)
