"""Pytest configuration and fixtures."""

import asyncio
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

import duckdb
import pytest

from nlcube.core import duckdb_store
from nlcube.core.schema_cache import SchemaCache
from nlcube.core.sql_pipeline import SqlPipeline
from nlcube.core.subject_registry import SubjectRegistry
from nlcube.core.translation import SqlTranslator
from nlcube.deps import build_service
from nlcube.settings import load_settings


class FixedTranslator(SqlTranslator):
    """Replays canned outputs in order; an Exception entry is raised instead."""

    name = "fixed"

    def __init__(self, *outputs):
        self.outputs = list(outputs)
        self.calls = []

    def translate(self, question, schema_text):
        self.calls.append((question, schema_text))
        out = self.outputs[min(len(self.calls), len(self.outputs)) - 1]
        if isinstance(out, Exception):
            raise out
        return out


class SlowTranslator(SqlTranslator):
    name = "slow"

    def __init__(self, delay, output="SELECT 1;"):
        self.delay = delay
        self.output = output
        self.calls = 0

    async def translate(self, question, schema_text):
        self.calls += 1
        await asyncio.sleep(self.delay)
        return self.output


def seed_subject(data_dir: Path, name: str, *statements: str) -> Path:
    """Create a subject directory and run setup statements against its store."""
    (Path(data_dir) / name).mkdir(parents=True, exist_ok=True)
    path = duckdb_store.store_path(data_dir, name)
    conn = duckdb.connect(str(path))
    try:
        for sql in statements:
            conn.execute(sql)
    finally:
        conn.close()
    return path


SALES_SETUP = (
    "CREATE TABLE orders (id INTEGER NOT NULL, region VARCHAR, amount DOUBLE)",
    "INSERT INTO orders VALUES (1, 'north', 10.0), (2, 'north', 5.5), (3, 'south', 7.0)",
)


@pytest.fixture
def executor():
    pool = ThreadPoolExecutor(max_workers=8, thread_name_prefix="test-worker")
    yield pool
    pool.shutdown(wait=True)


@pytest.fixture
def data_dir(tmp_path):
    d = tmp_path / "data"
    d.mkdir()
    return d


@pytest.fixture
def registry(data_dir, executor):
    return SubjectRegistry(
        data_dir=data_dir,
        executor=executor,
        pool_size=2,
        acquire_timeout=2.0,
        connect_retries=2,
        remove_timeout=0.2,
    )


@pytest.fixture
def sales(data_dir, registry):
    seed_subject(data_dir, "sales", *SALES_SETUP)
    registry.discover()
    return "sales"


@pytest.fixture
def schema_cache(registry):
    return SchemaCache(registry, stale_after_s=300.0)


@pytest.fixture
def make_pipeline(schema_cache, executor):
    def _make(translator, timeout_s=2.0):
        return SqlPipeline(schema_cache, translator, executor=executor, timeout_s=timeout_s)
    return _make


@pytest.fixture
def settings(data_dir, monkeypatch):
    for var in ("LLM_API_KEY", "GEMINI_API_KEY", "LLM_API_URL", "LLM_BACKEND"):
        monkeypatch.delenv(var, raising=False)
    return load_settings(
        DATA_DIR=data_dir,
        LLM_BACKEND="ollama",
        POOL_SIZE=2,
        ACQUIRE_TIMEOUT_S=2.0,
        REMOVE_TIMEOUT_S=0.2,
        TRANSLATION_TIMEOUT_S=2.0,
        EXECUTION_TIMEOUT_S=5.0,
    )


@pytest.fixture
def make_service(settings, executor):
    def _make(translator):
        svc = build_service(settings, translator=translator, pool=executor)
        svc.retry_wait_s = 0.0
        return svc
    return _make
