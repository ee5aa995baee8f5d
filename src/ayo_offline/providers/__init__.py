from ayo_offline.providers.base import LLMBackend
from ayo_offline.providers.registry import get_remote_backend

__all__ = ["LLMBackend", "get_remote_backend"]
