"""
Local model catalogs.

Accelerated models are offloaded entirely to the GPU; CPU models are
smaller quantizations that stay usable without one. Both are GGUF files
pulled from Hugging Face.
"""

from __future__ import annotations

from ayo_offline.router.types import BackendKind, ModelDescriptor


def hf_url(repo: str, filename: str) -> str:
    return f"https://huggingface.co/{repo}/resolve/main/{filename}"


ACCELERATED_MODELS: tuple[ModelDescriptor, ...] = (
    ModelDescriptor(
        id="llama-3.2-1b-instruct-q4_k_m",
        name="Llama 3.2 1B",
        size="810MB",
        min_resource="1GB VRAM",
        source_url=hf_url(
            "bartowski/Llama-3.2-1B-Instruct-GGUF", "Llama-3.2-1B-Instruct-Q4_K_M.gguf"
        ),
    ),
    ModelDescriptor(
        id="llama-3.2-3b-instruct-q4_k_m",
        name="Llama 3.2 3B",
        size="2.0GB",
        min_resource="3GB VRAM",
        source_url=hf_url(
            "bartowski/Llama-3.2-3B-Instruct-GGUF", "Llama-3.2-3B-Instruct-Q4_K_M.gguf"
        ),
    ),
    ModelDescriptor(
        id="qwen2.5-1.5b-instruct-q4_k_m",
        name="Qwen2.5 1.5B",
        size="1.1GB",
        min_resource="2GB VRAM",
        source_url=hf_url(
            "Qwen/Qwen2.5-1.5B-Instruct-GGUF", "qwen2.5-1.5b-instruct-q4_k_m.gguf"
        ),
    ),
    ModelDescriptor(
        id="phi-3.5-mini-instruct-q4_k_m",
        name="Phi 3.5 Mini",
        size="2.4GB",
        min_resource="4GB VRAM",
        source_url=hf_url(
            "bartowski/Phi-3.5-mini-instruct-GGUF", "Phi-3.5-mini-instruct-Q4_K_M.gguf"
        ),
    ),
)

CPU_MODELS: tuple[ModelDescriptor, ...] = (
    ModelDescriptor(
        id="smollm2-360m-instruct-q8_0",
        name="SmolLM2 360M",
        size="390MB",
        min_resource="1GB RAM",
        source_url=hf_url(
            "HuggingFaceTB/SmolLM2-360M-Instruct-GGUF", "smollm2-360m-instruct-q8_0.gguf"
        ),
        description="Tiny but capable. Good for simple tasks.",
    ),
    ModelDescriptor(
        id="smollm2-1.7b-instruct-q4_k_m",
        name="SmolLM2 1.7B",
        size="1GB",
        min_resource="2GB RAM",
        source_url=hf_url(
            "HuggingFaceTB/SmolLM2-1.7B-Instruct-GGUF",
            "smollm2-1.7b-instruct-q4_k_m.gguf",
        ),
        description="Best balance of size and quality.",
    ),
    ModelDescriptor(
        id="qwen2.5-0.5b-instruct-q8_0",
        name="Qwen2.5 0.5B",
        size="530MB",
        min_resource="1GB RAM",
        source_url=hf_url(
            "Qwen/Qwen2.5-0.5B-Instruct-GGUF", "qwen2.5-0.5b-instruct-q8_0.gguf"
        ),
        description="Fast responses, good for chat.",
    ),
    ModelDescriptor(
        id="tinyllama-1.1b-chat-v1.0-q4_k_m",
        name="TinyLlama 1.1B",
        size="670MB",
        min_resource="1GB RAM",
        source_url=hf_url(
            "TheBloke/TinyLlama-1.1B-Chat-v1.0-GGUF", "tinyllama-1.1b-chat-v1.0.Q4_K_M.gguf"
        ),
        description="Classic small model, well-tested.",
    ),
)

CATALOGS: dict[BackendKind, tuple[ModelDescriptor, ...]] = {
    BackendKind.ACCELERATED_LOCAL: ACCELERATED_MODELS,
    BackendKind.CPU_LOCAL: CPU_MODELS,
}


def find_model(kind: BackendKind, model_id: str) -> ModelDescriptor | None:
    for model in CATALOGS.get(kind, ()):
        if model.id == model_id:
            return model
    return None
