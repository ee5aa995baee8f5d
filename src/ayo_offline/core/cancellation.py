"""Cooperative cancellation token, checked at every suspension point."""

from __future__ import annotations

import asyncio

from ayo_offline.core.errors import GenerationCancelled


class CancelToken:
    """
    A one-shot cancel flag.

    The token never interrupts anything by itself. Backends call
    raise_if_cancelled() before each unit of work and after each I/O wait,
    so cancellation lands at the next checkpoint.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: str = ""

    def cancel(self, reason: str = "cancelled") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise GenerationCancelled(self.reason)

    async def wait(self) -> None:
        await self._event.wait()

    def __repr__(self) -> str:
        return f"<CancelToken cancelled={self.cancelled}>"


def check(token: CancelToken | None) -> None:
    """raise_if_cancelled() that tolerates a missing token."""
    if token is not None:
        token.raise_if_cancelled()
