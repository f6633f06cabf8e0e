# nlcube/core/query_service.py
from __future__ import annotations
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from tenacity import (
    AsyncRetrying, before_sleep_log, retry_if_exception_type, stop_after_attempt, wait_exponential,
)

from nlcube.core.errors import PoolConnectionError, PoolExhausted, TranslationUnavailable, UnknownSubject
from nlcube.core.query_coordinator import QueryCoordinator, QueryResult
from nlcube.core.schema_cache import SchemaCache
from nlcube.core.sql_pipeline import SqlPipeline, TranslationResult
from nlcube.core.sql_validation import ensure_safe
from nlcube.core.subject_registry import Subject, SubjectRegistry

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RequestContext:
    # Per-request selection; never process-global.
    current_subject: Optional[str] = None


@dataclass(frozen=True)
class QueryResponse:
    subject: str
    sql: str
    columns: List[str]
    row_count: int
    elapsed_ms: int
    columnar_payload: bytes
    raw_model_output: Optional[str] = None
    schema_empty: bool = False

    def metadata(self) -> Dict[str, Any]:
        return {
            "subject": self.subject,
            "sql": self.sql,
            "columns": self.columns,
            "row_count": self.row_count,
            "elapsed_ms": self.elapsed_ms,
            "schema_empty": self.schema_empty,
        }


@dataclass
class QueryService:
    """What the transport layer sees: NL and raw queries, schema text, subject lifecycle."""

    registry: SubjectRegistry
    schema_cache: SchemaCache
    pipeline: SqlPipeline
    coordinator: QueryCoordinator
    query_retry_attempts: int = 3
    retry_wait_s: float = 0.2
    started_at: float = field(default_factory=time.time)

    # === Queries ===
    async def execute_natural_language_query(self, subject: str, question: str) -> QueryResponse:
        self.registry.get(subject)
        translation = await self._translate(subject, question)
        result = await self._execute(subject, translation.sql_text)
        return self._response(subject, translation.sql_text, result,
                              raw_model_output=translation.raw_model_output,
                              schema_empty=translation.schema_empty)

    async def execute_raw_query(self, subject: str, sql: str) -> QueryResponse:
        self.registry.get(subject)
        snapshot = self.schema_cache.get_snapshot(subject)
        ensure_safe(
            sql,
            target_subject=subject,
            known_subjects=self.registry.names(),
            allow_writes=self.pipeline.allow_writes,
            local_tables=snapshot.table_names() if snapshot else (),
        )
        result = await self._execute(subject, sql)
        return self._response(subject, sql, result)

    async def _translate(self, subject: str, question: str) -> TranslationResult:
        # Exactly one automatic retry, with a fresh request.
        async for attempt in AsyncRetrying(
            reraise=True,
            stop=stop_after_attempt(2),
            retry=retry_if_exception_type(TranslationUnavailable),
            before_sleep=before_sleep_log(logger, logging.WARNING),
        ):
            with attempt:
                return await self.pipeline.generate(subject, question)

    async def _execute(self, subject: str, sql: str) -> QueryResult:
        async for attempt in AsyncRetrying(
            reraise=True,
            stop=stop_after_attempt(self.query_retry_attempts),
            wait=wait_exponential(multiplier=self.retry_wait_s, min=0, max=2),
            retry=retry_if_exception_type((PoolConnectionError, PoolExhausted)),
            before_sleep=before_sleep_log(logger, logging.WARNING),
        ):
            with attempt:
                return await self.coordinator.execute(subject, sql)

    @staticmethod
    def _response(subject: str, sql: str, result: QueryResult, raw_model_output: Optional[str] = None,
                  schema_empty: bool = False) -> QueryResponse:
        return QueryResponse(
            subject=subject,
            sql=sql,
            columns=result.columns,
            row_count=result.row_count,
            elapsed_ms=result.elapsed_ms,
            columnar_payload=result.columnar_payload,
            raw_model_output=raw_model_output,
            schema_empty=schema_empty,
        )

    # === Schema ===
    async def get_schema(self, subject: str) -> str:
        return await self.schema_cache.get_schema_text(subject)

    async def refresh_schema(self, subject: str) -> str:
        snapshot = await self.schema_cache.refresh(subject)
        return snapshot.render()

    # === Subjects ===
    def list_subjects(self) -> List[str]:
        return self.schema_cache.list_subjects()

    def create_subject(self, name: str) -> Subject:
        return self.registry.register(name)

    async def delete_subject(self, name: str) -> None:
        await self.registry.remove(name)
        self.schema_cache.invalidate(name)

    def select_current_subject(self, name: str) -> RequestContext:
        self.registry.get(name)
        return RequestContext(current_subject=name)

    def resolve_subject(self, ctx: Optional[RequestContext], explicit: Optional[str] = None) -> str:
        name = explicit or (ctx.current_subject if ctx else None)
        if not name:
            raise UnknownSubject("No subject given and none selected")
        self.registry.get(name)
        return name

    def status(self) -> Dict[str, Any]:
        names = self.registry.names()
        pools = {}
        for n in names:
            s = self.registry.stats(n)
            pools[n] = {"size": s.size, "idle": s.idle, "in_use": s.in_use, "free": s.free, "waiters": s.waiters}
        tables = 0
        for n in names:
            snap = self.schema_cache.get_snapshot(n)
            tables += len(snap.tables) if snap else 0
        return {
            "uptime_seconds": int(time.time() - self.started_at),
            "subject_count": len(names),
            "table_count": tables,
            "pools": pools,
        }
