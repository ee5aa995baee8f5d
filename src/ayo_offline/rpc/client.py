"""
RPC client — the guest side of the console protocol.

Sends llm:request frames and correlates the host's replies by id:
llm:chunk → on_chunk, llm:done → outcome, llm:error → RemoteGenerationError.
A call the caller cancels resolves with a CANCELLED outcome carrying the
text streamed so far; anything the host sends for it afterwards is ignored.
"""

from __future__ import annotations

import asyncio
import functools
import inspect
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, AsyncIterator, Awaitable, Callable, Union

from ayo_offline.core.errors import RemoteGenerationError
from ayo_offline.protocol.codec import encode
from ayo_offline.protocol.correlator import RequestCorrelator
from ayo_offline.protocol.demux import StreamDemultiplexer
from ayo_offline.protocol.messages import (
    ChunkMessage,
    DoneMessage,
    ErrorMessage,
    Message,
    MessageType,
    PongMessage,
    ResponseMessage,
)

logger = logging.getLogger(__name__)

Writer = Callable[[bytes], Union[None, Awaitable[None]]]
DeltaCallback = Callable[[str], Union[None, Awaitable[None]]]

_END = object()


class OutcomeStatus(str, Enum):
    DONE = "done"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class GenerationOutcome:
    request_id: int
    status: OutcomeStatus
    content: str = ""

    @property
    def cancelled(self) -> bool:
        return self.status == OutcomeStatus.CANCELLED


class RPCClient:
    def __init__(
        self,
        write: Writer,
        demux: StreamDemultiplexer | None = None,
        correlator: RequestCorrelator | None = None,
    ) -> None:
        self._write = write
        self.demux = demux or StreamDemultiplexer()
        self.correlator = correlator or RequestCorrelator()
        self._parts: dict[int, list[str]] = {}
        # Tail of each request's async on_chunk chain
        self._callbacks: dict[int, asyncio.Task] = {}
        self.last_request_id: int | None = None

    # ─── Calls ────────────────────────────────────────────────────

    async def submit(
        self, params: dict[str, Any], on_chunk: DeltaCallback | None = None
    ) -> tuple[int, asyncio.Future]:
        """Send a request; returns its id and the future its outcome lands in."""
        request_id = self.correlator.generate_id()
        parts: list[str] = []

        def deliver(delta: str) -> None:
            parts.append(delta)
            if on_chunk is None:
                return
            try:
                result = on_chunk(delta)
            except Exception as e:
                logger.error(f"on_chunk for request {request_id} raised: {e}", exc_info=True)
                return
            if inspect.isawaitable(result):
                self._chain_callback(request_id, result)

        future = self.correlator.register(request_id, deliver)
        self._parts[request_id] = parts
        self.last_request_id = request_id

        try:
            await self._send(
                MessageType.LLM_REQUEST,
                {"id": request_id, "method": "generate", "params": params},
            )
        except Exception as e:
            self._parts.pop(request_id, None)
            self.correlator.reject(request_id, e)
            raise
        return request_id, future

    async def generate(
        self, params: dict[str, Any], on_chunk: DeltaCallback | None = None
    ) -> GenerationOutcome:
        request_id, future = await self.submit(params, on_chunk)
        outcome = await future
        await self._drain_callbacks(request_id)
        return outcome

    async def generate_streaming(self, params: dict[str, Any]) -> AsyncIterator[str]:
        """Yield deltas as they arrive. Leaving the loop early cancels the request."""
        queue: asyncio.Queue = asyncio.Queue()
        request_id, future = await self.submit(params, queue.put_nowait)
        future.add_done_callback(lambda _: queue.put_nowait(_END))
        try:
            while True:
                item = await queue.get()
                if item is _END:
                    break
                yield item
            future.result()  # re-raise RemoteGenerationError
        finally:
            if not future.done():
                await self.cancel(request_id)

    async def cancel(self, request_id: int) -> bool:
        """Stop waiting for a request and tell the host to stop generating."""
        future = self.correlator.cancel(request_id)
        if future is None:
            return False
        parts = self._parts.pop(request_id, [])
        if not future.done():
            future.set_result(
                GenerationOutcome(request_id, OutcomeStatus.CANCELLED, "".join(parts))
            )
        await self._send(MessageType.LLM_CANCEL, {"id": request_id})
        logger.info(f"Cancelled request {request_id}")
        return True

    async def ping(self, timeout: float | None = None) -> float:
        """Round-trip time to the host, in milliseconds."""
        ping_id = self.correlator.generate_id()
        future = self.correlator.register(ping_id)
        t0 = time.monotonic()
        await self._send(MessageType.PING, {"id": ping_id})
        try:
            await asyncio.wait_for(future, timeout)
        except asyncio.TimeoutError:
            self.correlator.cancel(ping_id)
            raise
        return (time.monotonic() - t0) * 1000

    # ─── Inbound ──────────────────────────────────────────────────

    def process_input(self, data: bytes | str) -> str:
        """Feed console input from the host; returns the non-frame text."""
        result = self.demux.parse(data)
        for msg in result.messages:
            self.handle_message(msg)
        return result.output

    def handle_message(self, msg: Message) -> None:
        if isinstance(msg, ChunkMessage):
            if msg.chunk:
                self.correlator.deliver_chunk(msg.id, msg.chunk)
            if msg.done:
                self._finish(msg.id)
        elif isinstance(msg, DoneMessage):
            self._finish(msg.id)
        elif isinstance(msg, ResponseMessage):
            if msg.content:
                self.correlator.deliver_chunk(msg.id, msg.content)
            self._finish(msg.id)
        elif isinstance(msg, ErrorMessage):
            self._parts.pop(msg.id, None)
            self.correlator.reject(msg.id, RemoteGenerationError(msg.id, msg.error))
        elif isinstance(msg, PongMessage):
            self.correlator.resolve(msg.id)
        else:
            logger.debug(f"Ignoring {msg.type} frame from host")

    def _finish(self, request_id: int) -> None:
        parts = self._parts.pop(request_id, [])
        self.correlator.resolve(
            request_id,
            GenerationOutcome(request_id, OutcomeStatus.DONE, "".join(parts)),
        )

    # ─── Async chunk callbacks ────────────────────────────────────

    def _chain_callback(self, request_id: int, awaitable: Awaitable) -> None:
        """Run an async on_chunk after the previous one for the same request."""
        previous = self._callbacks.get(request_id)
        task = asyncio.ensure_future(self._after(previous, awaitable))
        task.add_done_callback(functools.partial(self._callback_done, request_id))
        self._callbacks[request_id] = task

    @staticmethod
    async def _after(previous: asyncio.Task | None, awaitable: Awaitable) -> None:
        if previous is not None:
            await asyncio.wait([previous])
        await awaitable

    def _callback_done(self, request_id: int, task: asyncio.Task) -> None:
        if self._callbacks.get(request_id) is task:
            del self._callbacks[request_id]
        if task.cancelled():
            return
        e = task.exception()
        if e is not None:
            logger.error(f"on_chunk for request {request_id} raised: {e}", exc_info=e)

    async def _drain_callbacks(self, request_id: int) -> None:
        pending = self._callbacks.get(request_id)
        if pending is not None:
            await asyncio.wait([pending])

    # ─── Plumbing ─────────────────────────────────────────────────

    async def _send(self, type: MessageType, payload: dict) -> None:
        result = self._write(encode(type, payload))
        if inspect.isawaitable(result):
            await result

    def close(self) -> None:
        """Fail every pending call."""
        self._parts.clear()
        self.correlator.clear(ConnectionResetError("RPC client closed"))
