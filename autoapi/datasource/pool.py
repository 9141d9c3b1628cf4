"""
Bounded connection pool for one data source.

Connections are handed out LIFO from the idle set. Idle connections beyond
``min_size`` are evicted after ``idle_timeout`` seconds and every connection
is retired once it is older than ``max_lifetime``. ``release`` validates the
connection and drops it if the check fails.
"""
import logging
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Callable, Dict, Iterator, List, Optional

from autoapi.datasource.connection import DataSourceConnection
from autoapi.datasource.errors import DataSourceConnectionError, PoolExhausted

logger = logging.getLogger(__name__)


@dataclass
class PoolStatus:
    name: str
    active: int
    idle: int
    max_size: int
    min_size: int
    healthy: bool


@dataclass
class _PooledConnection:
    connection: DataSourceConnection
    created_at: float
    last_used: float


class ConnectionPool:
    def __init__(
        self,
        name: str,
        creator: Callable[[], DataSourceConnection],
        min_size: int = 1,
        max_size: int = 10,
        idle_timeout: float = 600.0,
        max_lifetime: float = 1800.0,
        acquire_timeout: float = 30.0,
        health_check_timeout: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        if min_size < 0 or min_size > max_size:
            raise ValueError("min_size must be between 0 and max_size")
        self.name = name
        self._creator = creator
        self.min_size = min_size
        self.max_size = max_size
        self.idle_timeout = idle_timeout
        self.max_lifetime = max_lifetime
        self.acquire_timeout = acquire_timeout
        self.health_check_timeout = health_check_timeout
        self._clock = clock
        self._cond = threading.Condition()
        self._idle: List[_PooledConnection] = []
        self._active: Dict[int, _PooledConnection] = {}
        self._opening = 0
        self._closed = False

    @property
    def total(self) -> int:
        return len(self._idle) + len(self._active) + self._opening

    def _expired(self, entry: _PooledConnection, now: float) -> bool:
        return now - entry.created_at >= self.max_lifetime

    def _evict_locked(self, now: float) -> List[DataSourceConnection]:
        doomed = []
        kept = []
        for entry in self._idle:
            idle_for = now - entry.last_used
            if self._expired(entry, now):
                doomed.append(entry.connection)
            elif idle_for >= self.idle_timeout and len(kept) + len(self._active) + self._opening >= self.min_size:
                doomed.append(entry.connection)
            else:
                kept.append(entry)
        self._idle = kept
        return doomed

    @staticmethod
    def _discard(connections: List[DataSourceConnection]) -> None:
        for connection in connections:
            connection.close()

    def _open(self) -> DataSourceConnection:
        try:
            return self._creator()
        except Exception:
            with self._cond:
                self._opening -= 1
                self._cond.notify()
            raise

    def acquire(self, timeout: Optional[float] = None) -> DataSourceConnection:
        timeout = self.acquire_timeout if timeout is None else timeout
        deadline = self._clock() + timeout
        doomed: List[DataSourceConnection] = []
        with self._cond:
            while True:
                if self._closed:
                    raise DataSourceConnectionError(f"Connection pool '{self.name}' is closed")
                now = self._clock()
                doomed.extend(self._evict_locked(now))
                if self._idle:
                    entry = self._idle.pop()
                    entry.last_used = now
                    self._active[id(entry.connection)] = entry
                    self._discard(doomed)
                    return entry.connection
                if self.total < self.max_size:
                    self._opening += 1
                    break
                remaining = deadline - now
                if remaining <= 0:
                    logger.warning(f"Pool {self.name} exhausted: {len(self._active)} active, max {self.max_size}")
                    self._discard(doomed)
                    raise PoolExhausted(self.name, timeout)
                self._cond.wait(remaining)

        self._discard(doomed)
        connection = self._open()
        now = self._clock()
        with self._cond:
            self._opening -= 1
            self._active[id(connection)] = _PooledConnection(connection, created_at=now, last_used=now)
        return connection

    def release(self, connection: DataSourceConnection) -> None:
        with self._cond:
            entry = self._active.pop(id(connection), None)
        if entry is None:
            logger.warning(f"Connection released to pool {self.name} was not checked out from it")
            connection.close()
            return

        now = self._clock()
        keep = not self._closed and not self._expired(entry, now) and connection.is_valid()
        with self._cond:
            if keep and not self._closed:
                entry.last_used = now
                self._idle.append(entry)
            else:
                keep = False
            self._cond.notify()
        if not keep:
            logger.info(f"Discarding connection from pool {self.name}")
            connection.close()
            self._fill_to_min()

    def _fill_to_min(self) -> None:
        while True:
            with self._cond:
                if self._closed or self.total >= self.min_size:
                    return
                self._opening += 1
            try:
                connection = self._open()
            except Exception as e:
                logger.warning(f"Could not replace connection in pool {self.name}: {e}")
                return
            now = self._clock()
            with self._cond:
                self._opening -= 1
                self._idle.append(_PooledConnection(connection, created_at=now, last_used=now))
                self._cond.notify()

    @contextmanager
    def connection(self, timeout: Optional[float] = None) -> Iterator[DataSourceConnection]:
        conn = self.acquire(timeout)
        try:
            yield conn
        finally:
            self.release(conn)

    def status(self) -> PoolStatus:
        healthy = False
        if not self._closed:
            try:
                with self.connection(timeout=self.health_check_timeout):
                    healthy = True
            except DataSourceConnectionError as e:
                logger.info(f"Health check failed for pool {self.name}: {e}")
        with self._cond:
            return PoolStatus(
                name=self.name,
                active=len(self._active),
                idle=len(self._idle),
                max_size=self.max_size,
                min_size=self.min_size,
                healthy=healthy,
            )

    def close(self) -> None:
        with self._cond:
            self._closed = True
            idle = [entry.connection for entry in self._idle]
            self._idle = []
            self._cond.notify_all()
        self._discard(idle)
