"""
Backend base class — the one contract every inference backend honors.

A backend turns a GenerationRequest into a stream of text deltas. What the
deltas look like on the wire (SSE lines, JSON chunks, a local iterator) is
the backend's problem; the router only ever sees strings.

Backends must call check(cancel) before each unit of work and after each
I/O wait, and must raise TransportError (never a library exception) when a
remote call fails.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import AsyncGenerator

from ayo_offline.core.cancellation import CancelToken
from ayo_offline.router.types import BackendKind, GenerationRequest


class LLMBackend(ABC):
    """Streaming text-generation backend."""

    kind: BackendKind
    id: str = "base"

    async def start(self) -> None:
        """Acquire resources. No-op by default."""

    async def stop(self) -> None:
        """Release resources. No-op by default."""

    @abstractmethod
    def generate_stream(
        self,
        request: GenerationRequest,
        cancel: CancelToken | None = None,
    ) -> AsyncGenerator[str, None]:
        """Stream response deltas. Yields strings as they arrive."""
        ...  # pragma: no cover
        yield  # type: ignore[misc]

    def model_for(self, request: GenerationRequest) -> str | None:
        """The model id this backend will use for the request."""
        return request.model

    async def health_check(self) -> dict:
        return {"backend": self.id, "kind": self.kind.value, "status": "unknown"}

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} {self.id}>"
