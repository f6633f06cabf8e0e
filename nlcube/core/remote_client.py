# nlcube/core/remote_client.py
from __future__ import annotations
import logging

import requests
from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception_type

from nlcube.core.errors import TranslationUnavailable
from nlcube.core.redact import redact
from nlcube.core.translation import SqlTranslator
from nlcube.prompts.versioned.v1.sql_writer import render_sql_prompt

logger = logging.getLogger(__name__)


class RemoteTranslator(SqlTranslator):
    """OpenAI-compatible chat-completions endpoint."""

    name = "remote"

    def __init__(self, api_url: str, api_key: str, model: str,
                 timeout: float = 60.0, temperature: float = 0.1, max_tokens: int = 2000):
        self.api_url = api_url
        self.api_key = api_key
        self.model = model
        self.timeout = timeout
        self.temperature = temperature
        self.max_tokens = max_tokens

    @retry(
        reraise=True,
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
        retry=retry_if_exception_type((requests.ConnectionError, requests.Timeout)),
    )
    def _post(self, payload: dict) -> requests.Response:
        return requests.post(
            self.api_url,
            json=payload,
            headers={"Authorization": f"Bearer {self.api_key}"},
            timeout=self.timeout,
        )

    def translate(self, question: str, schema_text: str) -> str:
        payload = {
            "model": self.model,
            "messages": [{"role": "user", "content": render_sql_prompt(question, schema_text)}],
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
        }
        try:
            r = self._post(payload)
            r.raise_for_status()
            choices = r.json().get("choices") or []
        except (requests.RequestException, ValueError) as e:
            logger.error("Remote LLM request failed: %s", redact(str(e)))
            raise TranslationUnavailable(f"Remote LLM request failed: {redact(str(e))}") from e
        if not choices:
            raise TranslationUnavailable("Remote LLM returned no choices")
        return (choices[0].get("message") or {}).get("content", "") or ""
