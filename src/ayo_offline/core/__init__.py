"""Ambient plumbing: config, logging, metrics, errors, cancellation."""

from ayo_offline.core.cancellation import CancelToken
from ayo_offline.core.errors import (
    AlreadyLoadingError,
    AvailabilityError,
    AyoError,
    ConfigurationError,
    GenerationCancelled,
    NoBackendAvailableError,
    ProtocolError,
    RemoteGenerationError,
    TransportError,
)

__all__ = [
    "CancelToken",
    "AyoError",
    "ConfigurationError",
    "AvailabilityError",
    "AlreadyLoadingError",
    "TransportError",
    "ProtocolError",
    "GenerationCancelled",
    "NoBackendAvailableError",
    "RemoteGenerationError",
]
