# nlcube/deps.py
from __future__ import annotations
import logging
from concurrent.futures import ThreadPoolExecutor
from functools import lru_cache
from typing import Optional

from fastapi import Request

from nlcube.settings import Settings, load_settings
from nlcube.core.query_coordinator import QueryCoordinator
from nlcube.core.query_service import QueryService, RequestContext
from nlcube.core.schema_cache import SchemaCache
from nlcube.core.sql_pipeline import SqlPipeline
from nlcube.core.subject_registry import SubjectRegistry
from nlcube.core.translation import SqlTranslator, build_translator

logger = logging.getLogger(__name__)

SUBJECT_COOKIE = "nlcube_subject"
SUBJECT_HEADER = "X-NLCube-Subject"


@lru_cache(maxsize=1)
def settings() -> Settings:
    return load_settings()


@lru_cache(maxsize=1)
def executor() -> ThreadPoolExecutor:
    s = settings()
    return ThreadPoolExecutor(max_workers=s.WORKER_THREADS, thread_name_prefix="nlcube-worker")


@lru_cache(maxsize=1)
def translator() -> SqlTranslator:
    return build_translator(settings())


@lru_cache(maxsize=1)
def service() -> QueryService:
    return build_service(settings(), translator=translator(), pool=executor())


def build_service(
    s: Settings,
    translator: SqlTranslator,
    pool: Optional[ThreadPoolExecutor] = None,
) -> QueryService:
    """Wire registry, cache, pipeline and coordinator around one worker pool."""
    pool = pool or ThreadPoolExecutor(max_workers=s.WORKER_THREADS, thread_name_prefix="nlcube-worker")
    registry = SubjectRegistry(
        data_dir=s.DATA_DIR,
        executor=pool,
        pool_size=s.POOL_SIZE,
        acquire_timeout=s.ACQUIRE_TIMEOUT_S,
        connect_retries=s.CONNECT_RETRIES,
        remove_timeout=s.REMOVE_TIMEOUT_S,
        duckdb_threads=s.DUCKDB_THREADS,
        duckdb_memory_limit=s.DUCKDB_MEMORY_LIMIT,
    )
    cache = SchemaCache(registry, stale_after_s=s.SCHEMA_STALE_AFTER_S)
    pipeline = SqlPipeline(
        schema_cache=cache,
        translator=translator,
        executor=pool,
        timeout_s=s.TRANSLATION_TIMEOUT_S,
        allow_writes=s.ALLOW_WRITE_QUERIES,
    )
    coordinator = QueryCoordinator(
        registry,
        executor=pool,
        acquire_timeout=s.ACQUIRE_TIMEOUT_S,
        execution_timeout=s.EXECUTION_TIMEOUT_S,
    )
    return QueryService(
        registry=registry,
        schema_cache=cache,
        pipeline=pipeline,
        coordinator=coordinator,
        query_retry_attempts=s.QUERY_RETRY_ATTEMPTS,
    )


async def shutdown(svc: QueryService) -> None:
    await svc.schema_cache.close()
    await svc.coordinator.wait_for_abandoned()
    await svc.registry.close()
    svc.registry.executor.shutdown(wait=False)
    logger.info("Service shut down")


# --- request-scoped dependencies ---

def get_service(request: Request) -> QueryService:
    return request.app.state.service


def request_context(request: Request) -> RequestContext:
    current = request.headers.get(SUBJECT_HEADER) or request.cookies.get(SUBJECT_COOKIE)
    return RequestContext(current_subject=current or None)
