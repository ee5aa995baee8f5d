"""
Error taxonomy.

ConfigurationError and AvailabilityError are surfaced immediately.
TransportError is caught per provider by the router's fallback loop.
GenerationCancelled is not a failure: it stops fallback and suppresses
the error frame on the wire.
"""

from __future__ import annotations


class AyoError(Exception):
    """Base class for everything raised by ayo_offline."""


class ConfigurationError(AyoError):
    """Missing credential, unknown provider, or unknown model id."""


class AvailabilityError(AyoError):
    """The requested backend kind has no capability on this machine."""


class AlreadyLoadingError(AvailabilityError):
    """A local model load is already in progress."""


class TransportError(AyoError):
    """A remote provider failed: non-2xx, network error, or malformed body."""

    def __init__(
        self, provider: str, message: str, status_code: int | None = None
    ) -> None:
        self.provider = provider
        self.status_code = status_code
        super().__init__(f"{provider}: {message}")


class ProtocolError(AyoError):
    """A frame body could not be decoded."""


class GenerationCancelled(AyoError):
    """The caller cancelled the generation."""


class NoBackendAvailableError(AyoError):
    """Every backend was unavailable or failed."""

    def __init__(
        self, reason: str, failures: list[TransportError] | None = None
    ) -> None:
        self.reason = reason
        self.failures = list(failures or [])
        super().__init__(
            f"No LLM backend available ({reason}). "
            "Download a local model or configure an API key in Settings."
        )


class RemoteGenerationError(AyoError):
    """The host reported an llm:error for a request."""

    def __init__(self, request_id: int, message: str) -> None:
        self.request_id = request_id
        super().__init__(message)
