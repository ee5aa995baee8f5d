"""
RPC host — serves llm:request frames found in the guest's console output.

Wiring:
  engine output ─▶ process_output() ─▶ terminal text (returned)
                           │
                           └─▶ handle_message() ─▶ router.generate()
                                                        │
  engine input  ◀── write(llm:chunk ... llm:done | llm:error)

Each request runs in its own asyncio task with a CancelToken keyed by id.
Per id the host writes any number of llm:chunk frames and then exactly one
llm:done or llm:error. A cancelled request goes silent: no terminal frame.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Awaitable, Callable, Union

from ayo_offline.core.cancellation import CancelToken
from ayo_offline.core.errors import AyoError, GenerationCancelled
from ayo_offline.core.metrics import metrics
from ayo_offline.protocol.codec import encode
from ayo_offline.protocol.demux import StreamDemultiplexer
from ayo_offline.protocol.messages import (
    CancelMessage,
    FilesystemMessage,
    Message,
    MessageType,
    PingMessage,
    RequestMessage,
)
from ayo_offline.router.router import GenerationRouter
from ayo_offline.router.types import GenerationChunk, GenerationRequest

logger = logging.getLogger(__name__)

Writer = Callable[[bytes], Union[None, Awaitable[None]]]


class RPCHost:
    def __init__(
        self,
        router: GenerationRouter,
        write: Writer,
        demux: StreamDemultiplexer | None = None,
    ) -> None:
        self.router = router
        self._write = write
        self.demux = demux or StreamDemultiplexer()
        self._active: dict[int, CancelToken] = {}
        self._tasks: set[asyncio.Task] = set()

    @property
    def active_ids(self) -> list[int]:
        return list(self._active)

    # ─── Inbound ──────────────────────────────────────────────────

    def process_output(self, data: bytes | str) -> str:
        """Feed guest console output; returns the part meant for the terminal."""
        result = self.demux.parse(data)
        for msg in result.messages:
            self.handle_message(msg)
        return result.output

    def handle_message(self, msg: Message) -> None:
        if isinstance(msg, RequestMessage):
            self._start_request(msg)
        elif isinstance(msg, CancelMessage):
            self._cancel_request(msg.id)
        elif isinstance(msg, PingMessage):
            self._spawn(self._send(MessageType.PONG, {"id": msg.id}))
        elif isinstance(msg, FilesystemMessage):
            logger.debug(f"Ignoring {msg.type.value} frame (no filesystem handler)")
        else:
            logger.warning(f"Unhandled message type from guest: {msg.type}")

    def _start_request(self, msg: RequestMessage) -> None:
        if msg.id in self._active:
            logger.warning(f"Duplicate request id {msg.id} while still active")
            self._spawn(self._send_error(msg.id, f"Request {msg.id} is already in progress"))
            return
        if msg.method != "generate":
            self._spawn(self._send_error(msg.id, f"Unknown method: {msg.method}"))
            return

        # Registered before the task runs so a cancel in the same chunk finds it
        token = CancelToken()
        self._active[msg.id] = token
        self._spawn(self._serve(msg, token))

    def _cancel_request(self, request_id: int) -> None:
        token = self._active.pop(request_id, None)
        if token is None:
            logger.debug(f"Cancel for unknown request {request_id} ignored")
            return
        token.cancel(f"request {request_id} cancelled by guest")
        metrics.inc("rpc.host.cancelled")
        logger.info(f"Request {request_id} cancelled", extra={"request_id": request_id})

    # ─── Serving ──────────────────────────────────────────────────

    async def _serve(self, msg: RequestMessage, token: CancelToken) -> None:
        request_id = msg.id
        metrics.gauge_inc("rpc.host.in_flight")

        async def on_chunk(chunk: GenerationChunk) -> None:
            if chunk.done or token.cancelled:
                return
            await self._send(
                MessageType.LLM_CHUNK,
                {"id": request_id, "chunk": chunk.content, "done": False},
            )

        try:
            request = GenerationRequest.from_params(
                request_id, msg.params, self.router.config
            )
            await self.router.generate(request, on_chunk=on_chunk, cancel=token)
            if not token.cancelled:
                await self._send(MessageType.LLM_DONE, {"id": request_id})
        except GenerationCancelled:
            logger.debug(f"Request {request_id} stopped after cancel")
        except AyoError as e:
            if not token.cancelled:
                logger.warning(
                    f"Request {request_id} failed: {e}",
                    extra={"request_id": request_id, "status": "error"},
                )
                await self._send_error(request_id, str(e))
        except Exception as e:
            logger.error(f"Request {request_id} crashed: {e}", exc_info=True)
            if not token.cancelled:
                await self._send_error(request_id, f"Internal error: {e}")
        finally:
            if self._active.get(request_id) is token:
                del self._active[request_id]
            metrics.gauge_dec("rpc.host.in_flight")

    # ─── Outbound ─────────────────────────────────────────────────

    async def _send(self, type: MessageType, payload: dict) -> None:
        result = self._write(encode(type, payload))
        if inspect.isawaitable(result):
            await result

    async def _send_error(self, request_id: int, error: str) -> None:
        try:
            await self._send(MessageType.LLM_ERROR, {"id": request_id, "error": error})
        except Exception as e:
            logger.error(f"Could not report error for request {request_id}: {e}")

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    # ─── Shutdown ─────────────────────────────────────────────────

    async def close(self) -> None:
        """Cancel every active request and wait for the tasks to wind down."""
        for request_id in list(self._active):
            self._cancel_request(request_id)
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("RPC host closed")
