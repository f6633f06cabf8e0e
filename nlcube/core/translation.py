# nlcube/core/translation.py
"""
Translation capability: question + schema text -> raw model text.

Backends are chosen once at startup; the pipeline only sees `translate()`.
`translate` may be a plain blocking method (run on the worker pool) or a
coroutine function (awaited directly).
"""
from __future__ import annotations
from abc import ABC, abstractmethod

from nlcube.core.errors import ConfigurationError


class SqlTranslator(ABC):
    name: str = "base"

    @abstractmethod
    def translate(self, question: str, schema_text: str) -> str:
        """Return the model's raw output; raise on transport failure."""


def build_translator(settings) -> SqlTranslator:
    backend = (settings.LLM_BACKEND or "").lower()
    if backend == "gemini":
        if not settings.LLM_API_KEY:
            raise ConfigurationError("LLM_API_KEY (or GEMINI_API_KEY) is required for the gemini backend")
        from nlcube.core.gemini_client import GeminiTranslator
        return GeminiTranslator(api_key=settings.LLM_API_KEY, model=settings.LLM_MODEL)
    if backend == "ollama":
        from nlcube.core.ollama_client import OllamaTranslator
        return OllamaTranslator(
            model=settings.LLM_MODEL,
            api_url=settings.LLM_API_URL or OllamaTranslator.DEFAULT_URL,
            timeout=settings.TRANSLATION_TIMEOUT_S,
        )
    if backend == "remote":
        if not (settings.LLM_API_URL and settings.LLM_API_KEY):
            raise ConfigurationError("LLM_API_URL and LLM_API_KEY are required for the remote backend")
        from nlcube.core.remote_client import RemoteTranslator
        return RemoteTranslator(
            api_url=settings.LLM_API_URL,
            api_key=settings.LLM_API_KEY,
            model=settings.LLM_MODEL,
            timeout=settings.TRANSLATION_TIMEOUT_S,
        )
    raise ConfigurationError(f"Unsupported LLM backend: {settings.LLM_BACKEND}")
