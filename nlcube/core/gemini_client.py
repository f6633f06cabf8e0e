# nlcube/core/gemini_client.py
from __future__ import annotations
import logging
from dataclasses import dataclass

import google.generativeai as genai
from google.api_core.exceptions import ResourceExhausted

from nlcube.core.errors import TranslationUnavailable
from nlcube.core.redact import redact
from nlcube.core.translation import SqlTranslator
from nlcube.prompts.versioned.v1.sql_writer import render_sql_prompt

logger = logging.getLogger(__name__)


@dataclass
class GeminiTranslator(SqlTranslator):
    api_key: str
    model: str = "gemini-1.5-pro"
    # Fallback model used when rate limited or quota-exhausted.
    fallback_model: str = "gemini-1.5-flash"
    temperature: float = 0.0

    name = "gemini"

    def __post_init__(self) -> None:
        genai.configure(api_key=self.api_key)
        self._primary = genai.GenerativeModel(self.model)
        self._fallback = (
            genai.GenerativeModel(self.fallback_model)
            if self.fallback_model and self.fallback_model != self.model
            else self._primary
        )

    def _generate(self, model, prompt: str):
        return model.generate_content(prompt, generation_config={"temperature": self.temperature})

    def _try_generate(self, prompt: str):
        """Try primary model; on quota (429) fall back once to fallback model."""
        try:
            return self._generate(self._primary, prompt)
        except ResourceExhausted:
            if self._fallback is self._primary:
                raise
            logger.warning("Gemini quota exhausted on %s; falling back to %s", self.model, self.fallback_model)
            return self._generate(self._fallback, prompt)

    def translate(self, question: str, schema_text: str) -> str:
        prompt = render_sql_prompt(question, schema_text)
        try:
            resp = self._try_generate(prompt)
        except Exception as e:
            logger.error("Gemini request failed: %s", redact(str(e)))
            raise TranslationUnavailable(f"Gemini request failed: {redact(str(e))}") from e

        # Prefer .text, fall back to first candidate if needed
        try:
            if getattr(resp, "text", None):
                return resp.text
        except ValueError:
            # .text raises when the candidate has no text parts (e.g. blocked)
            pass
        try:
            return resp.candidates[0].content.parts[0].text
        except (AttributeError, IndexError):
            return ""
