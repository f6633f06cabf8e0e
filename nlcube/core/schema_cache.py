# nlcube/core/schema_cache.py
"""
Per-subject schema snapshots used as translation context.

Snapshots are immutable and swapped in with a single dict assignment, so a
reader holds either the old snapshot or the new one, never a mix. Stale
snapshots are served immediately while one background refresh per subject
rebuilds them (stale-while-revalidate).
"""
from __future__ import annotations
import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from nlcube.core import duckdb_store
from nlcube.core.subject_registry import SubjectRegistry

logger = logging.getLogger(__name__)

EMPTY_SCHEMA_TEXT = "-- (no tables found; ingest data into this subject first)"


@dataclass(frozen=True)
class ColumnInfo:
    name: str
    type: str
    nullable: bool = True


@dataclass(frozen=True)
class SchemaSnapshot:
    subject: str
    tables: Tuple[Tuple[str, Tuple[ColumnInfo, ...]], ...]
    captured_at: float = field(default_factory=time.time)

    @property
    def is_empty(self) -> bool:
        return not self.tables

    def table_names(self) -> List[str]:
        return [name for name, _ in self.tables]

    def columns(self, table: str) -> Optional[Tuple[ColumnInfo, ...]]:
        for name, cols in self.tables:
            if name == table:
                return cols
        return None

    def age(self, now: Optional[float] = None) -> float:
        return (now if now is not None else time.time()) - self.captured_at

    def render(self) -> str:
        """DDL-like, deterministic text for prompts."""
        if not self.tables:
            return EMPTY_SCHEMA_TEXT
        blocks: List[str] = []
        for table, cols in self.tables:
            qualified = ".".join(f'"{p}"' for p in table.split(".", 1))
            lines = [f'    "{c.name}" {c.type}{"" if c.nullable else " NOT NULL"}' for c in cols]
            blocks.append(f"CREATE TABLE {qualified} (\n" + ",\n".join(lines) + "\n);")
        return "\n\n".join(blocks)


def build_snapshot(subject: str, introspected) -> SchemaSnapshot:
    tables = tuple(
        (table, tuple(ColumnInfo(name=n, type=t, nullable=nullable) for n, t, nullable in cols))
        for table, cols in introspected
    )
    return SchemaSnapshot(subject=subject, tables=tables)


class SchemaCache:
    def __init__(self, registry: SubjectRegistry, stale_after_s: float = 300.0):
        self.registry = registry
        self.stale_after_s = stale_after_s
        self._snapshots: Dict[str, SchemaSnapshot] = {}
        self._refreshing: Dict[str, asyncio.Task] = {}

    def list_subjects(self) -> List[str]:
        return self.registry.names()

    def get_snapshot(self, subject: str) -> Optional[SchemaSnapshot]:
        return self._snapshots.get(subject)

    async def get_schema_text(self, subject: str) -> str:
        snapshot = await self.get_current(subject)
        return snapshot.render()

    async def get_current(self, subject: str) -> SchemaSnapshot:
        self.registry.get(subject)  # UnknownSubject for unregistered names
        snapshot = self._snapshots.get(subject)
        if snapshot is None:
            # Nothing to serve yet: the first load is synchronous.
            return await self.refresh(subject)
        if snapshot.age() > self.stale_after_s:
            self._schedule_refresh(subject)
        return snapshot

    def _schedule_refresh(self, subject: str) -> None:
        running = self._refreshing.get(subject)
        if running is not None and not running.done():
            return
        task = asyncio.get_running_loop().create_task(self._background_refresh(subject))
        self._refreshing[subject] = task

    async def _background_refresh(self, subject: str) -> None:
        try:
            await self.refresh(subject)
        except Exception as e:
            # Readers keep the prior snapshot; the next stale read retries.
            logger.debug("Background schema refresh for %s gave up: %r", subject, e)
        finally:
            if self._refreshing.get(subject) is asyncio.current_task():
                del self._refreshing[subject]

    async def refresh(self, subject: str) -> SchemaSnapshot:
        """Introspect and swap in a new snapshot; on failure the prior one stays."""
        t0 = time.perf_counter()
        try:
            conn = await self.registry.acquire(subject)
            try:
                loop = asyncio.get_running_loop()
                introspected = await loop.run_in_executor(
                    self.registry.executor, duckdb_store.introspect_schema, conn.handle
                )
            finally:
                await self.registry.release(conn)
            snapshot = build_snapshot(subject, introspected)
        except Exception as e:
            logger.error("Schema refresh failed for subject %s; keeping prior snapshot: %s", subject, e)
            raise

        if subject in self.registry:
            self._snapshots[subject] = snapshot
        dt = int((time.perf_counter() - t0) * 1000)
        logger.info("Schema refreshed for subject %s: %d table(s) in %d ms", subject, len(snapshot.tables), dt)
        return snapshot

    def invalidate(self, subject: str) -> None:
        self._snapshots.pop(subject, None)
        task = self._refreshing.pop(subject, None)
        if task is not None and not task.done():
            task.cancel()

    async def close(self) -> None:
        tasks = [t for t in self._refreshing.values() if not t.done()]
        for t in tasks:
            t.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._refreshing.clear()
