"""Minimal server-sent-events reader for streaming HTTP providers."""

from __future__ import annotations

from dataclasses import dataclass
from typing import AsyncGenerator, AsyncIterator

from ayo_offline.core.cancellation import CancelToken, check


@dataclass
class SSEEvent:
    event: str = "message"
    data: str = ""


async def iter_sse(
    lines: AsyncIterator[str], cancel: CancelToken | None = None
) -> AsyncGenerator[SSEEvent, None]:
    """Group ``event:``/``data:`` lines into events, one per blank line.

    The cancel token is checked after every line read.
    """
    event = "message"
    data: list[str] = []

    async for line in lines:
        check(cancel)
        line = line.rstrip("\r")

        if not line:
            if data:
                yield SSEEvent(event=event, data="\n".join(data))
            event, data = "message", []
            continue
        if line.startswith(":"):
            continue  # comment / keep-alive

        name, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]
        if name == "event":
            event = value
        elif name == "data":
            data.append(value)

    if data:
        yield SSEEvent(event=event, data="\n".join(data))
