"""
chatdeck Configuration — single source of truth for all settings.

Reads from environment variables with sensible defaults.
No config files, no YAML. Just env vars (and an optional .env).
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field

from dotenv import load_dotenv

load_dotenv()


DEFAULT_SYSTEM_PROMPT = (
    "You are a helpful, concise assistant. Answer clearly and use plain text."
)


@dataclass(frozen=True)
class BackendConfig:
    """Generative-response backend settings."""

    provider: str = "openai"
    api_key: str = ""
    model: str = "gpt-4o-mini"
    base_url: str = ""
    max_tokens: int = 1024
    temperature: float = 0.7
    max_history_turns: int = 20
    system_prompt: str = DEFAULT_SYSTEM_PROMPT

    @classmethod
    def from_env(cls) -> BackendConfig:
        return cls(
            provider=os.getenv("CHATDECK_BACKEND", "openai"),
            api_key=os.getenv("OPENAI_API_KEY", ""),
            model=os.getenv("CHATDECK_MODEL", "gpt-4o-mini"),
            base_url=os.getenv("CHATDECK_BASE_URL", ""),
            max_tokens=int(os.getenv("CHATDECK_MAX_TOKENS", "1024")),
            temperature=float(os.getenv("CHATDECK_TEMPERATURE", "0.7")),
            max_history_turns=int(os.getenv("CHATDECK_MAX_HISTORY_TURNS", "20")),
            system_prompt=os.getenv("CHATDECK_SYSTEM_PROMPT", DEFAULT_SYSTEM_PROMPT),
        )


@dataclass(frozen=True)
class StorageConfig:
    """Local session persistence settings."""

    db_path: str = "chatdeck_sessions.db"
    storage_key: str = "chat_sessions"

    @classmethod
    def from_env(cls) -> StorageConfig:
        return cls(
            db_path=os.getenv("CHATDECK_DB_PATH", "chatdeck_sessions.db"),
            storage_key=os.getenv("CHATDECK_STORAGE_KEY", "chat_sessions"),
        )


@dataclass(frozen=True)
class ChatConfig:
    """Conversation behaviour settings."""

    title_max_chars: int = 40

    @classmethod
    def from_env(cls) -> ChatConfig:
        return cls(
            title_max_chars=int(os.getenv("CHATDECK_TITLE_MAX_CHARS", "40")),
        )


@dataclass(frozen=True)
class ChatDeckConfig:
    """Root configuration."""

    backend: BackendConfig = field(default_factory=BackendConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    chat: ChatConfig = field(default_factory=ChatConfig)

    @classmethod
    def from_env(cls) -> ChatDeckConfig:
        return cls(
            backend=BackendConfig.from_env(),
            storage=StorageConfig.from_env(),
            chat=ChatConfig.from_env(),
        )


# Singleton: import the module and read `config_module.config` so
# reload_config() is picked up everywhere.
config = ChatDeckConfig.from_env()


def reload_config() -> ChatDeckConfig:
    """Re-read the environment and replace the module-level singleton."""
    global config
    config = ChatDeckConfig.from_env()
    return config
