# nlcube/core/ollama_client.py
from __future__ import annotations
import logging

import requests
from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception_type

from nlcube.core.errors import TranslationUnavailable
from nlcube.core.redact import redact
from nlcube.core.translation import SqlTranslator
from nlcube.prompts.versioned.v1.sql_writer import render_sql_prompt

logger = logging.getLogger(__name__)


class OllamaTranslator(SqlTranslator):
    name = "ollama"
    DEFAULT_URL = "http://localhost:11434/api/generate"

    def __init__(self, model: str = "sqlcoder", api_url: str = DEFAULT_URL,
                 timeout: float = 60.0, temperature: float = 0.1):
        """
        Ollama generate-API translator.

        Args:
            model: Ollama model tag (e.g. sqlcoder, llama3)
            api_url: Full URL of the /api/generate endpoint
            timeout: Per-request timeout (seconds)
            temperature: Sampling temperature
        """
        self.model = model
        self.api_url = api_url
        self.timeout = timeout
        self.temperature = temperature

    @retry(
        reraise=True,
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
        retry=retry_if_exception_type((requests.ConnectionError, requests.Timeout)),
    )
    def _post(self, payload: dict) -> requests.Response:
        return requests.post(self.api_url, json=payload, timeout=self.timeout)

    def translate(self, question: str, schema_text: str) -> str:
        payload = {
            "model": self.model,
            "prompt": render_sql_prompt(question, schema_text),
            "stream": False,
            "options": {"temperature": self.temperature},
        }
        try:
            r = self._post(payload)
            r.raise_for_status()
            return r.json().get("response", "") or ""
        except (requests.RequestException, ValueError) as e:
            logger.error("Ollama request failed: %s", redact(str(e)))
            raise TranslationUnavailable(f"Ollama request failed: {redact(str(e))}") from e
