"""
Console bridge — one guest, one terminal, one RPC host.

  guest output ─▶ host.process_output() ─▶ terminal sink (frames removed)
  keystrokes   ─▶ engine.send_input()
  host frames  ─▶ engine.send_input()

Keystrokes and host frames share the guest's input; each write is one
complete unit, so they interleave but never split each other.
"""

from __future__ import annotations

import inspect
import logging
from typing import Awaitable, Callable, Union

from ayo_offline.emulator.engine import EngineStatus, ExecutionEngine
from ayo_offline.router.router import GenerationRouter
from ayo_offline.rpc.host import RPCHost

logger = logging.getLogger(__name__)

TerminalSink = Callable[[str], Union[None, Awaitable[None]]]


class ConsoleBridge:
    def __init__(
        self,
        engine: ExecutionEngine,
        router: GenerationRouter,
        terminal: TerminalSink,
    ) -> None:
        self.engine = engine
        self.terminal = terminal
        self.host = RPCHost(router, write=engine.send_input)

    async def start(self) -> None:
        await self.engine.init(self._on_output)
        await self.engine.start()
        logger.info(f"Console bridge started on {self.engine.name} engine")

    async def stop(self) -> None:
        await self.host.close()
        await self.engine.stop()
        tail = self.host.demux.flush()
        if tail:
            await self._to_terminal(tail)

    def status(self) -> EngineStatus:
        return self.engine.status()

    async def send_keys(self, data: str | bytes) -> None:
        """User keystrokes, straight to the guest."""
        if isinstance(data, str):
            data = data.encode("utf-8")
        await self.engine.send_input(data)

    async def _on_output(self, data: bytes) -> None:
        text = self.host.process_output(data)
        if text:
            await self._to_terminal(text)

    async def _to_terminal(self, text: str) -> None:
        result = self.terminal(text)
        if inspect.isawaitable(result):
            await result
