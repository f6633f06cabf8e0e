# nlcube/core/query_coordinator.py
from __future__ import annotations
import asyncio
import logging
import time
import uuid
from concurrent.futures import Executor
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Set

import duckdb

from nlcube.core import duckdb_store
from nlcube.core.connection_pool import PooledConnection
from nlcube.core.errors import ExecutionError, ExecutionTimeout, NlCubeError, SerializationError
from nlcube.core.subject_registry import SubjectRegistry

logger = logging.getLogger(__name__)


class JobState(str, Enum):
    QUEUED = "queued"
    ACQUIRING = "acquiring"
    EXECUTING = "executing"
    SERIALIZING = "serializing"
    COMPLETED = "completed"
    FAILED = "failed"


_NEXT = {
    JobState.QUEUED: {JobState.ACQUIRING},
    JobState.ACQUIRING: {JobState.EXECUTING},
    JobState.EXECUTING: {JobState.SERIALIZING},
    JobState.SERIALIZING: {JobState.COMPLETED},
}


@dataclass
class QueryJob:
    subject: str
    sql: str
    submitted_at: float = field(default_factory=time.time)
    job_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    state: JobState = JobState.QUEUED
    failure_kind: Optional[str] = None

    def advance(self, state: JobState) -> None:
        if self.state is JobState.FAILED:
            return  # abandoned job; its worker may still be finishing
        if state not in _NEXT.get(self.state, set()):
            raise RuntimeError(f"Illegal job transition {self.state.value} -> {state.value}")
        logger.debug("job %s [%s]: %s -> %s", self.job_id, self.subject, self.state.value, state.value)
        self.state = state

    def fail(self, kind: str) -> None:
        if self.state in (JobState.COMPLETED, JobState.FAILED):
            return
        logger.debug("job %s [%s]: %s -> failed(%s)", self.job_id, self.subject, self.state.value, kind)
        self.state = JobState.FAILED
        self.failure_kind = kind


@dataclass(frozen=True)
class QueryResult:
    columns: List[str]
    row_count: int
    elapsed_ms: int
    columnar_payload: bytes


class QueryCoordinator:
    """
    Runs one statement against one subject. The blocking DuckDB call is
    offloaded to the worker pool; the connection goes back to the pool on
    every exit path, including abandoned (timed out / cancelled) work.
    """

    def __init__(
        self,
        registry: SubjectRegistry,
        executor: Optional[Executor] = None,
        acquire_timeout: Optional[float] = None,
        execution_timeout: float = 30.0,
    ):
        self.registry = registry
        self.executor = executor or registry.executor
        self.acquire_timeout = acquire_timeout
        self.execution_timeout = execution_timeout
        self._abandoned: Set[asyncio.Future] = set()
        self._pending_releases: Set[asyncio.Task] = set()

    @contextmanager
    def _step(self, job: QueryJob, name: str):
        t0 = time.perf_counter()
        try:
            yield
        finally:
            dt = int((time.perf_counter() - t0) * 1000)
            logger.debug("job %s step %s took %d ms", job.job_id, name, dt)

    async def execute(self, subject: str, sql: str) -> QueryResult:
        job = QueryJob(subject=subject, sql=sql)
        t0 = time.perf_counter()

        job.advance(JobState.ACQUIRING)
        try:
            with self._step(job, "acquire"):
                conn = await self.registry.acquire(subject, timeout=self.acquire_timeout)
        except NlCubeError as e:
            job.fail(e.kind)
            raise
        except asyncio.CancelledError:
            job.fail("Cancelled")
            raise

        job.advance(JobState.EXECUTING)
        loop = asyncio.get_running_loop()
        work = loop.run_in_executor(self.executor, self._run, job, conn.handle)
        handed_off = False
        try:
            with self._step(job, "execute"):
                columnar = await asyncio.wait_for(asyncio.shield(work), self.execution_timeout)
        except asyncio.TimeoutError:
            handed_off = self._release_when_done(work, conn, job)
            job.fail(ExecutionTimeout.kind)
            logger.warning("job %s on %s exceeded %.1fs; abandoning wait", job.job_id, subject, self.execution_timeout)
            raise ExecutionTimeout(
                f"The query did not finish within {self.execution_timeout:.1f}s", sql=sql
            ) from None
        except asyncio.CancelledError:
            handed_off = self._release_when_done(work, conn, job)
            job.fail("Cancelled")
            raise
        except NlCubeError as e:
            job.fail(e.kind)
            raise
        except Exception:
            job.fail("InternalError")
            raise
        finally:
            if not handed_off:
                await self.registry.release(conn)

        job.advance(JobState.COMPLETED)
        elapsed_ms = int((time.perf_counter() - t0) * 1000)
        logger.info("job %s on %s: %d row(s) in %d ms", job.job_id, subject, columnar.row_count, elapsed_ms)
        return QueryResult(
            columns=columnar.columns,
            row_count=columnar.row_count,
            elapsed_ms=elapsed_ms,
            columnar_payload=columnar.payload,
        )

    def _run(self, job: QueryJob, handle) -> duckdb_store.ColumnarResult:
        # Worker thread.
        try:
            table = duckdb_store.execute(handle, job.sql)
        except duckdb.Error as e:
            raise ExecutionError(str(e), sql=job.sql) from e

        job.advance(JobState.SERIALIZING)
        try:
            return duckdb_store.to_columnar(table)
        except Exception as e:
            logger.exception("job %s: result serialization failed for SQL: %s", job.job_id, job.sql)
            raise SerializationError(f"Result serialization failed: {e}") from e

    def _release_when_done(self, work: asyncio.Future, conn: PooledConnection, job: QueryJob) -> bool:
        """The native call keeps running; reclaim its connection when it lands."""
        loop = asyncio.get_running_loop()

        def _reclaim(done: asyncio.Future) -> None:
            self._abandoned.discard(done)
            if not done.cancelled() and done.exception() is not None:
                logger.debug("job %s: abandoned work ended with %r (discarded)", job.job_id, done.exception())
            task = loop.create_task(self.registry.release(conn))
            self._pending_releases.add(task)
            task.add_done_callback(self._pending_releases.discard)

        self._abandoned.add(work)
        work.add_done_callback(_reclaim)
        return True

    async def wait_for_abandoned(self) -> None:
        """Wait until connections held by abandoned work are back in their pools."""
        while self._abandoned or self._pending_releases:
            await asyncio.gather(*self._abandoned, *self._pending_releases, return_exceptions=True)
            await asyncio.sleep(0)
