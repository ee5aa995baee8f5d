"""
Router package — backend discovery, local model lifecycle, generation.

Only the contracts are re-exported here; import GenerationRouter and
BackendRegistry from their modules (providers depend on these types, so
this package must stay import-light).
"""

from ayo_offline.router.catalog import ACCELERATED_MODELS, CPU_MODELS, find_model
from ayo_offline.router.types import (
    BackendDescriptor,
    BackendKind,
    CapabilityReport,
    ChatMessage,
    CompletionResult,
    GenerationChunk,
    GenerationRequest,
    LoadProgress,
    ModelDescriptor,
)

__all__ = [
    "BackendKind",
    "BackendDescriptor",
    "CapabilityReport",
    "ChatMessage",
    "GenerationRequest",
    "GenerationChunk",
    "CompletionResult",
    "LoadProgress",
    "ModelDescriptor",
    "ACCELERATED_MODELS",
    "CPU_MODELS",
    "find_model",
]
