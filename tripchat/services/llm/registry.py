from __future__ import annotations

from functools import lru_cache

from tripchat.config import get_settings

from .base import LLMProvider
from .gemini_provider import GeminiProvider
from .openai_provider import OpenAIProvider

_PROVIDERS: dict[str, type[LLMProvider]] = {
    "gemini": GeminiProvider,
    "openai": OpenAIProvider,
}


@lru_cache()
def get_provider() -> LLMProvider:
    settings = get_settings()
    provider_key = settings.llm_provider.lower()
    if provider_key not in _PROVIDERS:
        raise ValueError(f"Unsupported LLM provider: {provider_key}")
    return _PROVIDERS[provider_key]()
