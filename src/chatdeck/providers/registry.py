"""
Provider Registry — factory function to get the right backend by config.

Add a new backend? Just add an elif.
"""

from __future__ import annotations

import chatdeck.core.config as config_module
from chatdeck.providers.base import ResponseBackend


def get_response_backend() -> ResponseBackend:
    provider = config_module.config.backend.provider.lower()
    if provider == "openai":
        from chatdeck.providers.openai_llm import OpenAIResponseBackend

        return OpenAIResponseBackend(config_module.config.backend)
    raise ValueError(f"Unknown response backend: {provider}")
