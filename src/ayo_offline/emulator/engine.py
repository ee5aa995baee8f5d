"""
Execution engine interface — whatever runs the guest program.

The bridge only needs four things from an engine: start it, stop it, push
bytes into its console, and get called back with bytes it prints.
SubprocessEngine runs a local command under asyncio; other engines (a VM,
a container) implement the same interface.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)

OutputCallback = Callable[[bytes], Awaitable[None]]


class EngineStatus(str, Enum):
    NOT_INITIALIZED = "not_initialized"
    READY = "ready"
    RUNNING = "running"
    STOPPED = "stopped"


class ExecutionEngine(ABC):
    """Base class for guest runtimes."""

    name: str = "base"

    def __init__(self):
        self._output_callback: Optional[OutputCallback] = None
        self._status = EngineStatus.NOT_INITIALIZED

    async def init(self, output_callback: OutputCallback) -> None:
        """
        Register the console output callback.

        Args:
            output_callback: Awaited with every chunk of guest output, in order
        """
        self._output_callback = output_callback
        self._status = EngineStatus.READY

    @abstractmethod
    async def start(self) -> None:
        """Boot the guest. Output starts flowing to the callback."""
        pass

    @abstractmethod
    async def stop(self) -> None:
        """Stop the guest and release its resources."""
        pass

    @abstractmethod
    async def send_input(self, data: bytes) -> None:
        """Write bytes to the guest's console input."""
        pass

    def status(self) -> EngineStatus:
        return self._status

    @property
    def running(self) -> bool:
        return self._status == EngineStatus.RUNNING

    async def _emit(self, data: bytes) -> None:
        if self._output_callback is None:
            logger.debug(f"{self.name}: dropping {len(data)} bytes, no output callback")
            return
        await self._output_callback(data)


class SubprocessEngine(ExecutionEngine):
    """Runs a command with piped stdin/stdout; stderr is merged into stdout."""

    name = "subprocess"
    READ_SIZE = 4096

    def __init__(self, *argv: str, cwd: str | None = None, env: dict | None = None):
        super().__init__()
        if not argv:
            raise ValueError("SubprocessEngine needs a command")
        self.argv = argv
        self.cwd = cwd
        self.env = env
        self._process: asyncio.subprocess.Process | None = None
        self._reader: asyncio.Task | None = None

    @property
    def returncode(self) -> int | None:
        return self._process.returncode if self._process else None

    async def start(self) -> None:
        if self._status == EngineStatus.NOT_INITIALIZED:
            raise RuntimeError("call init() before start()")
        if self.running:
            return
        self._process = await asyncio.create_subprocess_exec(
            *self.argv,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
            cwd=self.cwd,
            env=self.env,
        )
        self._status = EngineStatus.RUNNING
        self._reader = asyncio.create_task(self._read_loop())
        logger.info(f"Started guest process {self.argv[0]} (pid {self._process.pid})")

    async def _read_loop(self) -> None:
        assert self._process is not None and self._process.stdout is not None
        try:
            while True:
                data = await self._process.stdout.read(self.READ_SIZE)
                if not data:
                    break
                await self._emit(data)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Guest output reader failed: {e}", exc_info=True)
        finally:
            if self._status == EngineStatus.RUNNING:
                self._status = EngineStatus.STOPPED

    async def wait(self) -> int:
        """Wait for the guest to exit and its output to drain."""
        if self._process is None:
            raise RuntimeError("engine not started")
        code = await self._process.wait()
        if self._reader is not None:
            await self._reader
        return code

    async def send_input(self, data: bytes) -> None:
        if self._process is None or self._process.stdin is None:
            raise RuntimeError("engine not started")
        self._process.stdin.write(data)
        await self._process.stdin.drain()

    async def stop(self) -> None:
        process = self._process
        if process is None:
            return
        if process.returncode is None:
            if process.stdin is not None:
                process.stdin.close()
            process.terminate()
            try:
                await asyncio.wait_for(process.wait(), timeout=5.0)
            except asyncio.TimeoutError:
                logger.warning("Guest process ignored SIGTERM, killing")
                process.kill()
                await process.wait()
        if self._reader is not None:
            self._reader.cancel()
            try:
                await self._reader
            except asyncio.CancelledError:
                pass
        self._status = EngineStatus.STOPPED
        logger.info(f"Guest process exited with {process.returncode}")
