"""
Console protocol — framing, demultiplexing and request correlation.

Frames ride inside the guest's terminal stream; see codec.py for the
wire format.
"""

from ayo_offline.protocol.codec import END, START, decode, encode, encode_message
from ayo_offline.protocol.correlator import PendingRequest, RequestCorrelator
from ayo_offline.protocol.demux import ParseResult, StreamDemultiplexer
from ayo_offline.protocol.messages import (
    CancelMessage,
    ChunkMessage,
    DecodeError,
    DoneMessage,
    ErrorMessage,
    FilesystemMessage,
    Message,
    MessageType,
    PingMessage,
    PongMessage,
    RequestMessage,
    ResponseMessage,
    UnrecognizedMessage,
)

__all__ = [
    "START",
    "END",
    "encode",
    "encode_message",
    "decode",
    "StreamDemultiplexer",
    "ParseResult",
    "RequestCorrelator",
    "PendingRequest",
    "MessageType",
    "Message",
    "DecodeError",
    "RequestMessage",
    "CancelMessage",
    "ResponseMessage",
    "ChunkMessage",
    "DoneMessage",
    "ErrorMessage",
    "PingMessage",
    "PongMessage",
    "FilesystemMessage",
    "UnrecognizedMessage",
]
