"""
Ayo Configuration — single source of truth for all settings.

Reads from environment variables with sensible defaults.
No config files, no YAML. Just env vars (and an optional .env).

Remote provider credentials are NOT read from here. They live in the
config store (see ayo_offline.storage) so the user can add them at runtime.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()


@dataclass(frozen=True)
class ProtocolConfig:
    """Console framing settings."""

    # Partial frames longer than this are given back to the terminal as text
    max_frame_chars: int = 1_048_576

    @classmethod
    def from_env(cls) -> ProtocolConfig:
        return cls(
            max_frame_chars=int(os.getenv("AYO_MAX_FRAME_CHARS", "1048576")),
        )


@dataclass(frozen=True)
class ProviderConfig:
    """A remote LLM provider."""

    id: str
    name: str
    base_url: str
    models: tuple[str, ...] = ()
    key_prefix: str = ""
    # Open catalog: any model id the caller names is passed through
    open_catalog: bool = False

    @property
    def default_model(self) -> str | None:
        return self.models[0] if self.models else None

    def pick_model(self, hint: str | None) -> str | None:
        """The caller's model hint if this provider serves it, else the default."""
        if hint and (self.open_catalog or hint in self.models):
            return hint
        return self.default_model


def _default_providers() -> tuple[ProviderConfig, ...]:
    return (
        ProviderConfig(
            id="openai",
            name="OpenAI",
            base_url=os.getenv("AYO_OPENAI_BASE_URL", "https://api.openai.com/v1"),
            models=("gpt-4o", "gpt-4o-mini", "gpt-4-turbo", "gpt-3.5-turbo"),
            key_prefix="sk-",
        ),
        ProviderConfig(
            id="anthropic",
            name="Anthropic",
            base_url=os.getenv(
                "AYO_ANTHROPIC_BASE_URL", "https://api.anthropic.com/v1"
            ),
            models=(
                "claude-3-5-sonnet-20241022",
                "claude-3-5-haiku-20241022",
                "claude-3-opus-20240229",
            ),
            key_prefix="sk-ant-",
        ),
        ProviderConfig(
            id="openrouter",
            name="OpenRouter",
            base_url=os.getenv(
                "AYO_OPENROUTER_BASE_URL", "https://openrouter.ai/api/v1"
            ),
            models=(
                "openai/gpt-4o-mini",
                "anthropic/claude-3.5-haiku",
                "meta-llama/llama-3.1-8b-instruct",
            ),
            key_prefix="sk-or-",
            open_catalog=True,
        ),
    )


@dataclass(frozen=True)
class RouterConfig:
    """Generation router settings."""

    default_temperature: float = 0.7
    default_max_tokens: int = 1000
    http_timeout: float = 60.0
    models_dir: str = str(Path.home() / ".cache" / "ayo" / "models")
    context_size: int = 4096
    cpu_threads: int = 0  # 0 = auto (os.cpu_count())
    providers: tuple[ProviderConfig, ...] = field(default_factory=_default_providers)

    @classmethod
    def from_env(cls) -> RouterConfig:
        return cls(
            default_temperature=float(os.getenv("AYO_DEFAULT_TEMPERATURE", "0.7")),
            default_max_tokens=int(os.getenv("AYO_DEFAULT_MAX_TOKENS", "1000")),
            http_timeout=float(os.getenv("AYO_HTTP_TIMEOUT", "60.0")),
            models_dir=os.getenv(
                "AYO_MODELS_DIR", str(Path.home() / ".cache" / "ayo" / "models")
            ),
            context_size=int(os.getenv("AYO_CONTEXT_SIZE", "4096")),
            cpu_threads=int(os.getenv("AYO_CPU_THREADS", "0")),
            providers=_default_providers(),
        )

    @property
    def provider_order(self) -> tuple[str, ...]:
        """Provider ids in registration order."""
        return tuple(p.id for p in self.providers)

    def provider(self, provider_id: str) -> ProviderConfig | None:
        for p in self.providers:
            if p.id == provider_id:
                return p
        return None


@dataclass(frozen=True)
class StorageConfig:
    """Config store settings."""

    db_path: str = "ayo_offline.db"
    secret: str = ""

    @classmethod
    def from_env(cls) -> StorageConfig:
        return cls(
            db_path=os.getenv("AYO_DB_PATH", "ayo_offline.db"),
            secret=os.getenv("AYO_STORAGE_SECRET", ""),
        )


@dataclass(frozen=True)
class AyoConfig:
    """Root configuration."""

    protocol: ProtocolConfig = field(default_factory=ProtocolConfig)
    router: RouterConfig = field(default_factory=RouterConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)

    @classmethod
    def from_env(cls) -> AyoConfig:
        return cls(
            protocol=ProtocolConfig.from_env(),
            router=RouterConfig.from_env(),
            storage=StorageConfig.from_env(),
        )


# Singleton — import the module (not the name) if you need reload_config()
config = AyoConfig.from_env()


def reload_config() -> AyoConfig:
    """Re-read the environment and replace the module-level config."""
    global config
    config = AyoConfig.from_env()
    return config
