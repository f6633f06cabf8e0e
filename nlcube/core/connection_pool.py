# nlcube/core/connection_pool.py
"""
Bounded, FIFO, validate-on-release connection pool for a single subject.

Slot accounting is the only shared mutable state. At every observation point:

    in_use + validating + idle + broken + creating + unopened == size

`unopened` slots have no connection yet; `creating` slots are reserved by an
acquirer that is opening a connection for them. `validating` connections have
been handed back and are being checked before they return to idle.
"""
from __future__ import annotations
import asyncio
import logging
import time
from collections import deque
from concurrent.futures import Executor
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Deque, Optional, Set

from tenacity import Retrying, stop_after_attempt, wait_exponential, retry_if_exception_type

from nlcube.core.errors import PoolConnectionError, PoolExhausted, UnknownSubject

logger = logging.getLogger(__name__)

# Handed to a waiter instead of a connection: "you own an empty slot, open one".
_SLOT = object()


class ConnState(str, Enum):
    IDLE = "idle"
    IN_USE = "in_use"
    VALIDATING = "validating"
    BROKEN = "broken"


@dataclass(eq=False)
class PooledConnection:
    subject: str
    handle: Any
    state: ConnState = ConnState.IDLE
    created_at: float = field(default_factory=time.time)
    uses: int = 0
    pool: Optional["SubjectPool"] = field(default=None, repr=False)


@dataclass(frozen=True)
class PoolStats:
    size: int
    idle: int
    in_use: int
    broken: int
    creating: int
    unopened: int
    waiters: int = 0
    validating: int = 0

    @property
    def free(self) -> int:
        return self.idle + self.unopened

    @property
    def consistent(self) -> bool:
        return (
            min(self.idle, self.in_use, self.validating, self.broken, self.creating, self.unopened) >= 0
            and self.in_use + self.validating + self.idle + self.broken + self.creating + self.unopened == self.size
        )


class SubjectPool:
    def __init__(
        self,
        subject: str,
        open_fn: Callable[[], Any],
        executor: Executor,
        size: int,
        validate_fn: Optional[Callable[[Any], None]] = None,
        close_fn: Optional[Callable[[Any], Optional[Exception]]] = None,
        connect_retries: int = 3,
        retry_wait_s: float = 0.1,
    ):
        if size < 1:
            raise ValueError("pool size must be >= 1")
        self.subject = subject
        self.size = size
        self._open_fn = open_fn
        self._validate_fn = validate_fn
        self._close_fn = close_fn
        self._executor = executor
        self._connect_retries = max(1, connect_retries)
        self._retry_wait_s = retry_wait_s

        self._idle: Deque[PooledConnection] = deque()
        self._in_use: Set[PooledConnection] = set()
        self._validating: Set[PooledConnection] = set()
        self._broken = 0
        self._creating = 0
        self._waiters: Deque[asyncio.Future] = deque()
        self._draining = False
        self._closed = False
        self._quiet = asyncio.Event()
        self._quiet.set()

    # === Accounting ===
    @property
    def _unopened(self) -> int:
        return (self.size - len(self._idle) - len(self._in_use) - len(self._validating)
                - self._broken - self._creating)

    def stats(self) -> PoolStats:
        return PoolStats(
            size=self.size,
            idle=len(self._idle),
            in_use=len(self._in_use),
            broken=self._broken,
            creating=self._creating,
            unopened=self._unopened,
            waiters=sum(1 for w in self._waiters if not w.done()),
            validating=len(self._validating),
        )

    @property
    def closed(self) -> bool:
        return self._closed

    def _has_capacity(self) -> bool:
        return bool(self._idle) or self._unopened > 0

    def _take(self):
        """Grant an idle connection or reserve an empty slot. Caller checked capacity."""
        if self._idle:
            conn = self._idle.popleft()
            conn.state = ConnState.IN_USE
            self._in_use.add(conn)
            return conn
        self._creating += 1
        return _SLOT

    def _dispatch(self) -> None:
        """Serve waiters in arrival order while capacity lasts."""
        while self._waiters and self._has_capacity():
            fut = self._waiters.popleft()
            if fut.done():
                continue
            fut.set_result(self._take())
        self._update_quiet()

    def _update_quiet(self) -> None:
        busy = self._in_use or self._validating or self._creating or any(not w.done() for w in self._waiters)
        if busy:
            self._quiet.clear()
        else:
            self._quiet.set()

    # === Acquire ===
    async def acquire(self, timeout: Optional[float] = None) -> PooledConnection:
        if self._closed or self._draining:
            raise UnknownSubject(f"Subject '{self.subject}' is being removed")

        if not self._waiters and self._has_capacity():
            grant = self._take()
            self._update_quiet()
        else:
            fut = asyncio.get_running_loop().create_future()
            self._waiters.append(fut)
            self._update_quiet()
            try:
                if timeout is None:
                    grant = await fut
                else:
                    grant = await asyncio.wait_for(fut, timeout)
            except asyncio.TimeoutError:
                self._abandon(fut)
                raise PoolExhausted(
                    f"No connection for subject '{self.subject}' within {timeout:.1f}s "
                    f"(pool size {self.size})"
                ) from None
            except asyncio.CancelledError:
                self._abandon(fut)
                raise

        if grant is _SLOT:
            return await self._create()
        return grant

    def _abandon(self, fut: asyncio.Future) -> None:
        """A waiter gave up; put back whatever it may already have been handed."""
        try:
            self._waiters.remove(fut)
        except ValueError:
            pass
        if fut.done() and not fut.cancelled():
            grant = fut.result()
            if grant is _SLOT:
                self._creating -= 1
            else:
                self._in_use.discard(grant)
                grant.state = ConnState.IDLE
                self._idle.append(grant)
        self._dispatch()

    async def _create(self) -> PooledConnection:
        loop = asyncio.get_running_loop()
        opening = loop.run_in_executor(self._executor, self._open_with_retries)
        try:
            handle = await asyncio.shield(opening)
        except asyncio.CancelledError:
            # The open keeps running in its worker; free the slot once it lands.
            opening.add_done_callback(self._discard_abandoned_open)
            raise
        except Exception as e:
            self._creating -= 1
            self._dispatch()
            logger.error("Could not open connection for subject %s after %d attempts: %s",
                         self.subject, self._connect_retries, e)
            raise PoolConnectionError(
                f"Could not open a connection for subject '{self.subject}': {e}"
            ) from e

        self._creating -= 1
        conn = PooledConnection(subject=self.subject, handle=handle, state=ConnState.IN_USE, pool=self)
        self._in_use.add(conn)
        self._update_quiet()
        logger.debug("Opened connection for subject %s (%s)", self.subject, self.stats())
        return conn

    def _open_with_retries(self) -> Any:
        retrying = Retrying(
            reraise=True,
            stop=stop_after_attempt(self._connect_retries),
            wait=wait_exponential(multiplier=self._retry_wait_s, min=0, max=2),
            retry=retry_if_exception_type(Exception),
        )
        return retrying(self._open_and_validate)

    def _open_and_validate(self) -> Any:
        handle = self._open_fn()
        if self._validate_fn is not None:
            try:
                self._validate_fn(handle)
            except Exception:
                self._close_handle(handle)
                raise
        return handle

    def _discard_abandoned_open(self, opening: asyncio.Future) -> None:
        if not opening.cancelled() and opening.exception() is None:
            self._executor.submit(self._close_handle, opening.result())
        self._creating -= 1
        self._dispatch()

    def _close_handle(self, handle: Any) -> None:
        if self._close_fn is None:
            return
        err = self._close_fn(handle)
        if err is not None:
            logger.warning("Error closing connection for subject %s: %s", self.subject, err)

    # === Release ===
    async def release(self, conn: PooledConnection) -> None:
        if conn not in self._in_use:
            raise ValueError(f"Connection is not checked out from pool '{self.subject}'")
        # Claimed before the first await: a second release of the same
        # connection fails the membership check above.
        self._in_use.discard(conn)
        self._validating.add(conn)
        conn.state = ConnState.VALIDATING
        # Shielded so a cancelled caller can never strand the slot.
        await asyncio.shield(self._release(conn))

    async def _release(self, conn: PooledConnection) -> None:
        loop = asyncio.get_running_loop()
        healthy = not (self._closed or self._draining)
        if healthy and self._validate_fn is not None:
            try:
                await loop.run_in_executor(self._executor, self._validate_fn, conn.handle)
            except Exception as e:
                logger.warning("Discarding connection for subject %s: validation failed: %s", self.subject, e)
                healthy = False

        self._validating.discard(conn)
        conn.uses += 1
        if healthy:
            conn.state = ConnState.IDLE
            self._idle.append(conn)
            self._dispatch()
            return

        conn.state = ConnState.BROKEN
        self._broken += 1
        try:
            await loop.run_in_executor(self._executor, self._close_handle, conn.handle)
        finally:
            self._broken -= 1
            self._dispatch()

    # === Drain / close ===
    async def drain(self, timeout: float) -> bool:
        """
        Block new acquisitions and wait for in-flight ones to finish.
        Returns False (and re-opens the pool) if they did not finish in time.
        """
        self._draining = True
        self._update_quiet()
        if self._quiet.is_set():
            return True
        try:
            await asyncio.wait_for(self._quiet.wait(), timeout)
        except asyncio.TimeoutError:
            self._draining = False
            return False
        return True

    async def close(self) -> None:
        self._closed = True
        loop = asyncio.get_running_loop()
        while self._idle:
            conn = self._idle.popleft()
            conn.state = ConnState.BROKEN
            await loop.run_in_executor(self._executor, self._close_handle, conn.handle)
        for fut in list(self._waiters):
            if not fut.done():
                fut.set_exception(UnknownSubject(f"Subject '{self.subject}' was removed"))
        self._waiters.clear()
        self._update_quiet()
