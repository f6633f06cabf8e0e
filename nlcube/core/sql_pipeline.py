# nlcube/core/sql_pipeline.py
from __future__ import annotations
import asyncio
import inspect
import logging
import re
import time
from concurrent.futures import Executor
from dataclasses import dataclass
from typing import Optional

from nlcube.core.errors import InvalidQuestion, MalformedResponse, NlCubeError, TranslationUnavailable
from nlcube.core.redact import redact
from nlcube.core.schema_cache import SchemaCache
from nlcube.core.sql_guard import STRING_LIT
from nlcube.core.sql_validation import analyze_sql, ensure_safe
from nlcube.core.translation import SqlTranslator

logger = logging.getLogger(__name__)

SQL_FENCE = re.compile(r"```sql\s*(.*?)(?:```|$)", flags=re.S | re.I)
# A statement begins at the start of a line...
LINE_START = re.compile(
    r"^[ \t(]*(select|with|from|values|show|describe|summarize|explain|pivot|unpivot|insert|update|"
    r"delete|merge|create|drop|alter|truncate|copy|attach|detach|grant|revoke|set|pragma|call)\b",
    flags=re.I | re.M,
)
# ...or, in chatty output, at the first SELECT/WITH anywhere.
INLINE_START = re.compile(r"\b(select|with)\b", flags=re.I)


@dataclass(frozen=True)
class TranslationRequest:
    question: str
    schema_text: str


@dataclass(frozen=True)
class TranslationResult:
    sql_text: str
    # Kept for audit only; never re-parsed downstream.
    raw_model_output: str
    schema_empty: bool = False


def _statement_end(body: str) -> int:
    """
    Index of the `;` closing the statement that starts `body`: the first one
    outside string literals that is not directly followed by another
    statement. -1 if there is none.
    """
    quoted = [m.span() for m in STRING_LIT.finditer(body)]
    end = -1
    for semi in re.finditer(";", body):
        pos = semi.start()
        if any(a <= pos < b for a, b in quoted):
            continue
        end = pos
        if LINE_START.match(body[pos + 1:].lstrip()) is None:
            break
    return end


def extract_statement(raw_text: str) -> str:
    """Pull the `;`-terminated statement span out of model output."""
    if not raw_text or not raw_text.strip():
        raise MalformedResponse("The model returned an empty response", raw_model_output=raw_text)

    fenced = SQL_FENCE.search(raw_text)
    text = fenced.group(1) if fenced else raw_text.replace("```", " ")

    start = LINE_START.search(text) or INLINE_START.search(text)
    if start is None:
        raise MalformedResponse("No SQL statement found in the model response", raw_model_output=raw_text)
    body = text[start.start():]
    # Trailing prose after the statement is dropped; a second statement is
    # kept so validation can reject the pair.
    end = _statement_end(body)
    if end < 0:
        raise MalformedResponse(
            "No ';'-terminated SQL statement found in the model response",
            raw_model_output=raw_text,
        )
    return body[:end + 1].strip()


class SqlPipeline:
    def __init__(
        self,
        schema_cache: SchemaCache,
        translator: SqlTranslator,
        executor: Optional[Executor] = None,
        timeout_s: float = 60.0,
        allow_writes: bool = False,
    ):
        self.schema_cache = schema_cache
        self.translator = translator
        self.executor = executor
        self.timeout_s = timeout_s
        self.allow_writes = allow_writes

    async def generate(self, subject: str, question: str) -> TranslationResult:
        if not question or not question.strip():
            raise InvalidQuestion("The question is empty")

        snapshot = await self.schema_cache.get_current(subject)
        if snapshot.is_empty:
            logger.warning("Subject %s has no tables; translation result will be unreliable", subject)
        request = TranslationRequest(question=question.strip(), schema_text=snapshot.render())

        t0 = time.perf_counter()
        raw = await self._translate(request)
        logger.info("Translation for subject %s took %d ms",
                    subject, int((time.perf_counter() - t0) * 1000))

        sql = extract_statement(raw)
        ensure_safe(
            sql,
            target_subject=subject,
            known_subjects=self.schema_cache.list_subjects(),
            allow_writes=self.allow_writes,
            local_tables=snapshot.table_names(),
            raw_model_output=raw,
        )
        if logger.isEnabledFor(logging.DEBUG):
            logger.debug("Generated SQL for subject %s: %s", subject, analyze_sql(sql))
        return TranslationResult(sql_text=sql, raw_model_output=raw, schema_empty=snapshot.is_empty)

    async def _translate(self, request: TranslationRequest) -> str:
        fn = self.translator.translate
        if inspect.iscoroutinefunction(fn):
            pending = fn(request.question, request.schema_text)
        else:
            loop = asyncio.get_running_loop()
            pending = loop.run_in_executor(self.executor, fn, request.question, request.schema_text)

        try:
            raw = await asyncio.wait_for(pending, self.timeout_s)
        except asyncio.TimeoutError:
            logger.warning("Translation timed out after %.1fs (%s)", self.timeout_s, self._backend_name())
            raise TranslationUnavailable(
                f"The translation service did not answer within {self.timeout_s:.1f}s"
            ) from None
        except NlCubeError:
            raise
        except Exception as e:
            logger.error("Translation failed (%s): %s", self._backend_name(), redact(str(e)))
            raise TranslationUnavailable(f"The translation service failed: {redact(str(e))}") from e

        if not isinstance(raw, str):
            raise MalformedResponse(f"Translator returned {type(raw).__name__}, expected text")
        return raw

    def _backend_name(self) -> str:
        return getattr(self.translator, "name", type(self.translator).__name__)
