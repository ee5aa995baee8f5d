"""
Console protocol messages — a closed tagged union keyed by ``type``.

Every frame decodes into exactly one of the variants below. Types we know
about are validated field by field; anything else becomes an
UnrecognizedMessage instead of blowing up the stream.

Direction:
    guest -> host   llm:request, llm:cancel, ping
    host  -> guest  llm:chunk, llm:done, llm:error, llm:response, pong
    both            fs:* (payload owned by the filesystem collaborator)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar, Union


class MessageType(str, Enum):
    # Requests (guest -> host)
    LLM_REQUEST = "llm:request"
    LLM_CANCEL = "llm:cancel"

    # Responses (host -> guest)
    LLM_RESPONSE = "llm:response"
    LLM_CHUNK = "llm:chunk"
    LLM_ERROR = "llm:error"
    LLM_DONE = "llm:done"

    # Filesystem (both directions, reserved)
    FS_READ = "fs:read"
    FS_WRITE = "fs:write"
    FS_LIST = "fs:list"
    FS_RESPONSE = "fs:response"

    # System
    PING = "ping"
    PONG = "pong"


FS_TYPES = frozenset(
    {
        MessageType.FS_READ,
        MessageType.FS_WRITE,
        MessageType.FS_LIST,
        MessageType.FS_RESPONSE,
    }
)


def _require_id(data: dict) -> int:
    value = data.get("id")
    # bool is an int subclass; true/false is never a valid id
    if not isinstance(value, int) or isinstance(value, bool):
        raise ValueError(f"'id' must be an integer, got {value!r}")
    return value


def _ts(data: dict) -> int:
    value = data.get("ts", 0)
    return value if isinstance(value, int) and not isinstance(value, bool) else 0


@dataclass(frozen=True)
class RequestMessage:
    type: ClassVar[MessageType] = MessageType.LLM_REQUEST

    id: int
    params: dict[str, Any]
    method: str = "generate"
    ts: int = 0

    @classmethod
    def from_wire(cls, data: dict) -> RequestMessage:
        params = data.get("params", {})
        if not isinstance(params, dict):
            raise ValueError("'params' must be an object")
        method = data.get("method", "generate")
        if not isinstance(method, str):
            raise ValueError("'method' must be a string")
        return cls(id=_require_id(data), params=params, method=method, ts=_ts(data))

    def payload(self) -> dict:
        return {"id": self.id, "method": self.method, "params": self.params}


@dataclass(frozen=True)
class CancelMessage:
    type: ClassVar[MessageType] = MessageType.LLM_CANCEL

    id: int
    ts: int = 0

    @classmethod
    def from_wire(cls, data: dict) -> CancelMessage:
        return cls(id=_require_id(data), ts=_ts(data))

    def payload(self) -> dict:
        return {"id": self.id}


@dataclass(frozen=True)
class ResponseMessage:
    """Non-streamed full response. Reserved; the host always streams."""

    type: ClassVar[MessageType] = MessageType.LLM_RESPONSE

    id: int
    content: str = ""
    ts: int = 0

    @classmethod
    def from_wire(cls, data: dict) -> ResponseMessage:
        content = data.get("content", "")
        if not isinstance(content, str):
            raise ValueError("'content' must be a string")
        return cls(id=_require_id(data), content=content, ts=_ts(data))

    def payload(self) -> dict:
        return {"id": self.id, "content": self.content}


@dataclass(frozen=True)
class ChunkMessage:
    type: ClassVar[MessageType] = MessageType.LLM_CHUNK

    id: int
    chunk: str
    done: bool = False
    ts: int = 0

    @classmethod
    def from_wire(cls, data: dict) -> ChunkMessage:
        chunk = data.get("chunk", "")
        if chunk is None:
            chunk = ""
        if not isinstance(chunk, str):
            raise ValueError("'chunk' must be a string")
        return cls(
            id=_require_id(data),
            chunk=chunk,
            done=bool(data.get("done", False)),
            ts=_ts(data),
        )

    def payload(self) -> dict:
        return {"id": self.id, "chunk": self.chunk, "done": self.done}


@dataclass(frozen=True)
class DoneMessage:
    type: ClassVar[MessageType] = MessageType.LLM_DONE

    id: int
    ts: int = 0

    @classmethod
    def from_wire(cls, data: dict) -> DoneMessage:
        return cls(id=_require_id(data), ts=_ts(data))

    def payload(self) -> dict:
        return {"id": self.id}


@dataclass(frozen=True)
class ErrorMessage:
    type: ClassVar[MessageType] = MessageType.LLM_ERROR

    id: int
    error: str = "Unknown error"
    ts: int = 0

    @classmethod
    def from_wire(cls, data: dict) -> ErrorMessage:
        error = data.get("error") or "Unknown error"
        return cls(id=_require_id(data), error=str(error), ts=_ts(data))

    def payload(self) -> dict:
        return {"id": self.id, "error": self.error}


@dataclass(frozen=True)
class PingMessage:
    type: ClassVar[MessageType] = MessageType.PING

    id: int
    ts: int = 0

    @classmethod
    def from_wire(cls, data: dict) -> PingMessage:
        return cls(id=_require_id(data), ts=_ts(data))

    def payload(self) -> dict:
        return {"id": self.id}


@dataclass(frozen=True)
class PongMessage:
    type: ClassVar[MessageType] = MessageType.PONG

    id: int
    ts: int = 0

    @classmethod
    def from_wire(cls, data: dict) -> PongMessage:
        return cls(id=_require_id(data), ts=_ts(data))

    def payload(self) -> dict:
        return {"id": self.id}


@dataclass(frozen=True)
class FilesystemMessage:
    """fs:* frames. The body is passed through untouched."""

    fs_type: MessageType
    body: dict[str, Any] = field(default_factory=dict)
    ts: int = 0

    @property
    def type(self) -> MessageType:
        return self.fs_type

    def payload(self) -> dict:
        return dict(self.body)


@dataclass(frozen=True)
class UnrecognizedMessage:
    """A well-formed frame whose type this side doesn't understand."""

    type_name: str
    body: dict[str, Any] = field(default_factory=dict)
    ts: int = 0

    @property
    def type(self) -> str:
        return self.type_name


@dataclass(frozen=True)
class DecodeError:
    """Returned (not raised) when a frame body can't be decoded."""

    reason: str
    raw: str = ""


Message = Union[
    RequestMessage,
    CancelMessage,
    ResponseMessage,
    ChunkMessage,
    DoneMessage,
    ErrorMessage,
    PingMessage,
    PongMessage,
    FilesystemMessage,
    UnrecognizedMessage,
]

VARIANTS: dict[MessageType, type] = {
    MessageType.LLM_REQUEST: RequestMessage,
    MessageType.LLM_CANCEL: CancelMessage,
    MessageType.LLM_RESPONSE: ResponseMessage,
    MessageType.LLM_CHUNK: ChunkMessage,
    MessageType.LLM_DONE: DoneMessage,
    MessageType.LLM_ERROR: ErrorMessage,
    MessageType.PING: PingMessage,
    MessageType.PONG: PongMessage,
}


def from_wire(data: dict) -> Message:
    """Build a variant from an already-parsed JSON object.

    Raises ValueError if a known type carries a malformed payload.
    """
    type_name = data.get("type")
    if not isinstance(type_name, str) or not type_name:
        raise ValueError("frame has no 'type'")

    try:
        msg_type = MessageType(type_name)
    except ValueError:
        body = {k: v for k, v in data.items() if k not in ("type", "ts")}
        return UnrecognizedMessage(type_name=type_name, body=body, ts=_ts(data))

    if msg_type in FS_TYPES:
        body = {k: v for k, v in data.items() if k not in ("type", "ts")}
        return FilesystemMessage(fs_type=msg_type, body=body, ts=_ts(data))

    return VARIANTS[msg_type].from_wire(data)
