"""
Frame codec — JSON messages embedded in a terminal byte stream.

Uses OSC (Operating System Command) escape sequences so frames ride
along with ordinary console output:

    ESC ] AYO ; <json> BEL
    \\x1b]AYO;{"type": "ping", "id": 1, "ts": 1700000000000}\\x07

A terminal that doesn't know the AYO command swallows the whole sequence,
so a stray frame never garbles what the user sees.

The body is not escaped. It doesn't need to be: END is BEL (0x07), JSON
must escape every C0 control character inside strings, and json.dumps
never emits one outside a string. An encoded body therefore cannot contain
END. encode() still checks, so a future change to the delimiters can't
silently break framing.
"""

from __future__ import annotations

import json
import time
from typing import Any

from ayo_offline.core.errors import ProtocolError
from ayo_offline.protocol.messages import DecodeError, Message, MessageType, from_wire

ESC = "\x1b"
BEL = "\x07"
START = f"{ESC}]AYO;"
END = BEL

START_BYTES = START.encode("ascii")
END_BYTES = END.encode("ascii")


def now_ms() -> int:
    return int(time.time() * 1000)


def encode_text(type: MessageType | str, payload: dict[str, Any] | None = None) -> str:
    """Encode a message as an OSC frame (str)."""
    type_name = type.value if isinstance(type, MessageType) else type
    body = json.dumps(
        {"type": type_name, **(payload or {}), "ts": now_ms()},
        separators=(",", ":"),
    )
    if END in body:
        raise ProtocolError("encoded frame body contains the end delimiter")
    return f"{START}{body}{END}"


def encode(type: MessageType | str, payload: dict[str, Any] | None = None) -> bytes:
    """Encode a message as an OSC frame, ready to write to the channel."""
    return encode_text(type, payload).encode("utf-8")


def encode_message(msg: Message) -> bytes:
    """Encode one of the message variants."""
    return encode(msg.type, msg.payload())


def decode(text: str) -> Message | DecodeError:
    """Decode the text between START and END.

    Never raises: a bad frame comes back as a DecodeError so the caller can
    log it and keep reading the stream.
    """
    try:
        data = json.loads(text)
    except (json.JSONDecodeError, RecursionError) as e:
        return DecodeError(reason=f"invalid JSON: {e}", raw=text)

    if not isinstance(data, dict):
        return DecodeError(reason="frame body is not a JSON object", raw=text)

    try:
        return from_wire(data)
    except (ValueError, TypeError) as e:
        return DecodeError(reason=str(e), raw=text)


def decode_or_raise(text: str) -> Message:
    """decode() for callers that want an exception instead of a marker."""
    result = decode(text)
    if isinstance(result, DecodeError):
        raise ProtocolError(result.reason)
    return result
