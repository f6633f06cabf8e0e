"""Provider clients, with the network mocked out."""

from unittest.mock import MagicMock, Mock, patch

import pytest
import requests

from nlcube.core.errors import TranslationUnavailable
from nlcube.core.ollama_client import OllamaTranslator
from nlcube.core.redact import redact
from nlcube.core.remote_client import RemoteTranslator
from nlcube.prompts.versioned.v1.sql_writer import render_sql_prompt

SCHEMA = 'CREATE TABLE "orders" (\n    "amount" DOUBLE\n);'


def _response(payload):
    r = Mock()
    r.json.return_value = payload
    r.raise_for_status.return_value = None
    return r


def test_prompt_contains_question_and_schema():
    prompt = render_sql_prompt("  total amount?  ", SCHEMA)
    assert "`total amount?`" in prompt
    assert SCHEMA in prompt
    assert prompt.rstrip().endswith("```sql")


def test_redact_masks_credentials():
    out = redact("GET /v1?key=abc123 failed; Authorization: Bearer tok_xyz")
    assert "abc123" not in out
    assert "tok_xyz" not in out


class TestOllama:
    def test_translate(self):
        t = OllamaTranslator(model="sqlcoder", api_url="http://ollama:11434/api/generate", timeout=3)
        with patch("nlcube.core.ollama_client.requests.post",
                   return_value=_response({"response": "SELECT 1;"})) as post:
            assert t.translate("q?", SCHEMA) == "SELECT 1;"

        args, kwargs = post.call_args
        assert args[0] == "http://ollama:11434/api/generate"
        assert kwargs["json"]["model"] == "sqlcoder"
        assert kwargs["json"]["stream"] is False
        assert SCHEMA in kwargs["json"]["prompt"]
        assert kwargs["timeout"] == 3

    def test_http_error_is_unavailable(self):
        t = OllamaTranslator()
        resp = Mock()
        resp.raise_for_status.side_effect = requests.HTTPError("500 Server Error")
        with patch("nlcube.core.ollama_client.requests.post", return_value=resp):
            with pytest.raises(TranslationUnavailable):
                t.translate("q?", SCHEMA)

    def test_connection_errors_retried(self):
        t = OllamaTranslator()
        ok = _response({"response": "SELECT 2;"})
        with patch("nlcube.core.ollama_client.requests.post",
                   side_effect=[requests.ConnectionError("refused"), ok]) as post, \
                patch("time.sleep"):
            assert t.translate("q?", SCHEMA) == "SELECT 2;"
        assert post.call_count == 2


class TestRemote:
    def test_translate(self):
        t = RemoteTranslator(api_url="http://llm/v1/chat/completions", api_key="secret", model="m")
        payload = {"choices": [{"message": {"content": "SELECT 3;"}}]}
        with patch("nlcube.core.remote_client.requests.post", return_value=_response(payload)) as post:
            assert t.translate("q?", SCHEMA) == "SELECT 3;"

        kwargs = post.call_args.kwargs
        assert kwargs["headers"]["Authorization"] == "Bearer secret"
        assert kwargs["json"]["messages"][0]["role"] == "user"

    def test_no_choices(self):
        t = RemoteTranslator(api_url="http://llm", api_key="k", model="m")
        with patch("nlcube.core.remote_client.requests.post", return_value=_response({"choices": []})):
            with pytest.raises(TranslationUnavailable):
                t.translate("q?", SCHEMA)


class TestGemini:
    def test_translate_and_quota_fallback(self):
        from google.api_core.exceptions import ResourceExhausted
        from nlcube.core import gemini_client

        primary, fallback = MagicMock(), MagicMock()
        primary.generate_content.side_effect = ResourceExhausted("quota")
        fallback.generate_content.return_value = MagicMock(text="SELECT 4;")

        with patch.object(gemini_client.genai, "configure") as configure, \
                patch.object(gemini_client.genai, "GenerativeModel", side_effect=[primary, fallback]):
            t = gemini_client.GeminiTranslator(api_key="k", model="pro", fallback_model="flash")
            assert t.translate("q?", SCHEMA) == "SELECT 4;"

        configure.assert_called_once_with(api_key="k")
        assert fallback.generate_content.call_count == 1

    def test_failure_is_unavailable(self):
        from nlcube.core import gemini_client

        model = MagicMock()
        model.generate_content.side_effect = RuntimeError("boom")
        with patch.object(gemini_client.genai, "configure"), \
                patch.object(gemini_client.genai, "GenerativeModel", return_value=model):
            t = gemini_client.GeminiTranslator(api_key="k", model="pro", fallback_model="pro")
            with pytest.raises(TranslationUnavailable):
                t.translate("q?", SCHEMA)
