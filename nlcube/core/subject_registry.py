# nlcube/core/subject_registry.py
from __future__ import annotations
import asyncio
import functools
import logging
import re
import shutil
from concurrent.futures import Executor
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Set

from nlcube.core import duckdb_store
from nlcube.core.connection_pool import PooledConnection, PoolStats, SubjectPool
from nlcube.core.errors import AlreadyExists, Busy, InvalidName, UnknownSubject

logger = logging.getLogger(__name__)

SUBJECT_NAME_RE = re.compile(r"[A-Za-z0-9_]+")


@dataclass
class Subject:
    name: str
    storage_path: Path
    attached: bool = False


def validate_subject_name(name: str) -> str:
    if not isinstance(name, str) or not SUBJECT_NAME_RE.fullmatch(name):
        raise InvalidName(f"Subject name must use letters, digits and underscores only (got {name!r})")
    return name


class SubjectRegistry:
    """Known subjects and their connection pools. One pool per subject, one store per subject."""

    def __init__(
        self,
        data_dir: Path,
        executor: Executor,
        pool_size: int = 5,
        acquire_timeout: Optional[float] = None,
        connect_retries: int = 3,
        remove_timeout: float = 5.0,
        duckdb_threads: Optional[int] = None,
        duckdb_memory_limit: Optional[str] = None,
        connection_factory: Optional[Callable[[Path], Any]] = None,
    ):
        self.data_dir = Path(data_dir)
        self.executor = executor
        self.pool_size = pool_size
        self.acquire_timeout = acquire_timeout
        self.connect_retries = connect_retries
        self.remove_timeout = remove_timeout
        self._connection_factory = connection_factory or functools.partial(
            _open_store, threads=duckdb_threads, memory_limit=duckdb_memory_limit
        )
        self._subjects: Dict[str, Subject] = {}
        self._pools: Dict[str, SubjectPool] = {}
        self._removing: Set[str] = set()

    # === Registration ===
    def register(self, name: str) -> Subject:
        validate_subject_name(name)
        subject_dir = self.data_dir / name
        if name in self._subjects or subject_dir.exists():
            raise AlreadyExists(f"Subject '{name}' already exists")
        subject_dir.mkdir(parents=True)
        subject = self._attach(name)
        logger.info("Registered subject %s at %s", name, subject.storage_path)
        return subject

    def discover(self) -> List[str]:
        """Attach every subject directory already present under the data dir."""
        self.data_dir.mkdir(parents=True, exist_ok=True)
        found: List[str] = []
        for entry in sorted(self.data_dir.iterdir()):
            if not entry.is_dir() or entry.name in self._subjects:
                continue
            if not SUBJECT_NAME_RE.fullmatch(entry.name):
                logger.warning("Skipping directory with invalid subject name: %s", entry)
                continue
            self._attach(entry.name)
            found.append(entry.name)
        if found:
            logger.info("Discovered %d subject(s): %s", len(found), ", ".join(found))
        return found

    def _attach(self, name: str) -> Subject:
        path = duckdb_store.store_path(self.data_dir, name)
        subject = Subject(name=name, storage_path=path, attached=True)
        self._pools[name] = SubjectPool(
            subject=name,
            open_fn=functools.partial(self._connection_factory, path),
            executor=self.executor,
            size=self.pool_size,
            validate_fn=duckdb_store.probe,
            close_fn=duckdb_store.close_quietly,
            connect_retries=self.connect_retries,
        )
        self._subjects[name] = subject
        return subject

    # === Lookup ===
    def get(self, name: str) -> Subject:
        subject = self._subjects.get(name)
        if subject is None or name in self._removing:
            raise UnknownSubject(f"Unknown subject '{name}'")
        return subject

    def names(self) -> List[str]:
        return sorted(n for n in self._subjects if n not in self._removing)

    def __contains__(self, name: str) -> bool:
        return name in self._subjects and name not in self._removing

    def stats(self, name: str) -> PoolStats:
        return self._pool(name).stats()

    def _pool(self, name: str) -> SubjectPool:
        pool = self._pools.get(name)
        if pool is None or name in self._removing:
            raise UnknownSubject(f"Unknown subject '{name}'")
        return pool

    # === Connections ===
    async def acquire(self, name: str, timeout: Optional[float] = None) -> PooledConnection:
        pool = self._pool(name)
        return await pool.acquire(timeout if timeout is not None else self.acquire_timeout)

    async def release(self, conn: PooledConnection) -> None:
        if conn.pool is None:
            raise ValueError("Connection does not belong to a pool")
        await conn.pool.release(conn)

    # === Removal ===
    async def remove(self, name: str) -> None:
        if name in self._removing:
            raise Busy(f"Subject '{name}' is already being removed")
        pool = self._pool(name)
        subject = self._subjects[name]

        if not await pool.drain(self.remove_timeout):
            raise Busy(
                f"Subject '{name}' still has queries in flight after {self.remove_timeout:.1f}s"
            )

        self._removing.add(name)
        try:
            await pool.close()
            subject.attached = False
            del self._pools[name]
            del self._subjects[name]
            loop = asyncio.get_running_loop()
            subject_dir = self.data_dir / name
            if subject_dir.exists():
                await loop.run_in_executor(self.executor, shutil.rmtree, subject_dir)
        finally:
            self._removing.discard(name)
        logger.info("Removed subject %s", name)

    async def close(self) -> None:
        for name, pool in list(self._pools.items()):
            await pool.close()
            self._subjects[name].attached = False
        logger.info("Closed %d subject pool(s)", len(self._pools))


def _open_store(path: Path, threads: Optional[int] = None, memory_limit: Optional[str] = None):
    return duckdb_store.open_connection(path, threads=threads, memory_limit=memory_limit)
