"""
Stream demultiplexer — pulls frames out of a chunked console stream.

The console delivers bytes in whatever pieces the engine felt like
producing. A frame can be cut anywhere, including inside START itself or
inside a multi-byte UTF-8 character. The demultiplexer keeps a single
buffer across calls and only ever emits:

- terminal text that is definitely not part of a frame, in order
- fully received frames, decoded

Feeding a stream in one call or in a thousand pieces produces the same
concatenated output and the same messages.

``max_frame_chars`` is a hard limit on a whole frame, START and END
included. A frame over it is released as text whether it arrives complete
or in pieces; an unterminated one is released as soon as the buffered part
alone proves it would be too long.
"""

from __future__ import annotations

import codecs
import logging
from dataclasses import dataclass, field

import ayo_offline.core.config as config_module
from ayo_offline.core.metrics import metrics
from ayo_offline.protocol.codec import END, START, decode
from ayo_offline.protocol.messages import DecodeError, Message

logger = logging.getLogger(__name__)


@dataclass
class ParseResult:
    output: str = ""
    messages: list[Message] = field(default_factory=list)


def _partial_start_len(buffer: str) -> int:
    """Length of the longest proper prefix of START that ends the buffer."""
    for k in range(min(len(START) - 1, len(buffer)), 0, -1):
        if buffer.endswith(START[:k]):
            return k
    return 0


class StreamDemultiplexer:
    """Incremental frame extractor. One instance per stream direction."""

    def __init__(self, max_frame_chars: int | None = None) -> None:
        self._buffer = ""
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._max_frame_chars = (
            max_frame_chars
            if max_frame_chars is not None
            else config_module.config.protocol.max_frame_chars
        )

    @property
    def buffered(self) -> str:
        """Text held back waiting for the rest of a frame."""
        return self._buffer

    def parse(self, chunk: bytes | str) -> ParseResult:
        """Feed one chunk; return the text and messages it completes."""
        if isinstance(chunk, (bytes, bytearray, memoryview)):
            self._buffer += self._decoder.decode(bytes(chunk))
        else:
            self._buffer += chunk

        output: list[str] = []
        messages: list[Message] = []

        while True:
            start = self._buffer.find(START)

            if start == -1:
                # Hold back a possible START cut in half by the chunking
                keep = _partial_start_len(self._buffer)
                if keep:
                    output.append(self._buffer[:-keep])
                    self._buffer = self._buffer[-keep:]
                else:
                    output.append(self._buffer)
                    self._buffer = ""
                break

            if start:
                output.append(self._buffer[:start])

            body_start = start + len(START)
            end = self._buffer.find(END, body_start)

            # Smallest size this frame can end up with, START and END included
            if end == -1:
                frame_len = len(self._buffer) - start + len(END)
            else:
                frame_len = end + len(END) - start

            if frame_len > self._max_frame_chars:
                # Oversized, or not a frame at all. Give START back to the
                # terminal and keep scanning after it.
                logger.warning("Abandoning frame of at least %d chars", frame_len)
                metrics.inc("protocol.frames.abandoned")
                output.append(START)
                self._buffer = self._buffer[body_start:]
                continue

            if end == -1:
                self._buffer = self._buffer[start:]
                break

            body = self._buffer[body_start:end]
            result = decode(body)
            if isinstance(result, DecodeError):
                logger.warning(
                    "Dropping malformed frame: %s (%.80r)", result.reason, body
                )
                metrics.inc("protocol.frames.dropped")
            else:
                messages.append(result)
                metrics.inc("protocol.frames.decoded")

            self._buffer = self._buffer[end + len(END):]

        return ParseResult(output="".join(output), messages=messages)

    def flush(self) -> str:
        """End of stream: hand back anything still buffered as plain text."""
        tail = self._buffer + self._decoder.decode(b"", final=True)
        self._buffer = ""
        return tail

    def reset(self) -> None:
        self._buffer = ""
        self._decoder.reset()
