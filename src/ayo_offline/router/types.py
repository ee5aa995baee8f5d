"""
Router contracts — what goes into and comes out of a generation.

A GenerationRequest is immutable once built. Every backend, whatever its
native wire format, reports progress as GenerationChunks and finishes with
a CompletionResult.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Union

import ayo_offline.core.config as config_module
from ayo_offline.core.config import RouterConfig
from ayo_offline.core.errors import ConfigurationError

ROLES = ("system", "user", "assistant")


class BackendKind(str, Enum):
    ACCELERATED_LOCAL = "accelerated-local"
    CPU_LOCAL = "cpu-local"
    REMOTE = "remote"


@dataclass(frozen=True)
class ModelDescriptor:
    """Static catalog entry for a downloadable local model."""

    id: str
    name: str
    size: str
    min_resource: str
    source_url: str
    description: str = ""


@dataclass
class BackendDescriptor:
    kind: BackendKind
    id: str
    display_name: str
    available: bool
    unavailable_reason: str | None = None
    reason_code: str | None = None
    models: list[Any] = field(default_factory=list)  # ModelDescriptor or remote model ids
    performance: str = ""
    multi_threaded: bool = False


@dataclass(frozen=True)
class CapabilityReport:
    """Result of a capability probe."""

    available: bool
    reason: str | None = None
    reason_code: str | None = None
    details: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ChatMessage:
    role: str
    content: str

    def to_dict(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}


@dataclass(frozen=True)
class GenerationRequest:
    id: int
    messages: tuple[ChatMessage, ...]
    temperature: float = 0.7
    max_tokens: int = 1000
    model: str | None = None

    @classmethod
    def from_params(
        cls,
        request_id: int,
        params: dict[str, Any],
        defaults: RouterConfig | None = None,
    ) -> GenerationRequest:
        """Validate the ``params`` object of an llm:request frame.

        Missing temperature/maxTokens come from ``defaults`` (the global
        router config when None). Raises ConfigurationError when the shape
        is wrong.
        """
        defaults = defaults or config_module.config.router
        raw_messages = params.get("messages")
        if not isinstance(raw_messages, list) or not raw_messages:
            raise ConfigurationError("'messages' must be a non-empty list")

        messages = []
        for i, raw in enumerate(raw_messages):
            if not isinstance(raw, dict):
                raise ConfigurationError(f"message {i} is not an object")
            role = raw.get("role")
            content = raw.get("content")
            if role not in ROLES:
                raise ConfigurationError(f"message {i} has invalid role {role!r}")
            if not isinstance(content, str):
                raise ConfigurationError(f"message {i} content must be a string")
            messages.append(ChatMessage(role=role, content=content))

        temperature = params.get("temperature", defaults.default_temperature)
        max_tokens = params.get(
            "maxTokens", params.get("max_tokens", defaults.default_max_tokens)
        )
        model = params.get("model")
        if not isinstance(temperature, (int, float)) or isinstance(temperature, bool):
            raise ConfigurationError("'temperature' must be a number")
        if not isinstance(max_tokens, int) or isinstance(max_tokens, bool) or max_tokens <= 0:
            raise ConfigurationError("'maxTokens' must be a positive integer")
        if model is not None and not isinstance(model, str):
            raise ConfigurationError("'model' must be a string")

        return cls(
            id=request_id,
            messages=tuple(messages),
            temperature=float(temperature),
            max_tokens=max_tokens,
            model=model or None,
        )

    def to_params(self) -> dict[str, Any]:
        """The wire ``params`` object (inverse of from_params)."""
        params: dict[str, Any] = {
            "messages": self.message_dicts(),
            "temperature": self.temperature,
            "maxTokens": self.max_tokens,
        }
        if self.model:
            params["model"] = self.model
        return params

    def message_dicts(self) -> list[dict[str, str]]:
        return [m.to_dict() for m in self.messages]


@dataclass(frozen=True)
class GenerationChunk:
    """One streamed delta. done=True with empty content marks completion."""

    request_id: int
    content: str = ""
    done: bool = False


@dataclass(frozen=True)
class CompletionResult:
    request_id: int
    content: str
    backend_id: str
    model: str | None = None


@dataclass(frozen=True)
class LoadProgress:
    stage: str
    fraction: float


ChunkCallback = Callable[[GenerationChunk], Union[None, Awaitable[None]]]
ProgressCallback = Callable[[LoadProgress], None]
