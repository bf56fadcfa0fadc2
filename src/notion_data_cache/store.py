"""
In-memory stores shared between the refresh loops and request handlers.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Iterable, Iterator, Mapping
from contextlib import contextmanager

from .records import Record, normalized_database_id

logger = logging.getLogger(__name__)

IGNORE_DATABASE_SECONDS = 300  # 5 minutes


class ReadWriteLock:
    """Many concurrent readers or one writer. Waiting writers block new readers."""

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    @contextmanager
    def read(self) -> Iterator[None]:
        with self._cond:
            while self._writer or self._writers_waiting:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextmanager
    def write(self) -> Iterator[None]:
        with self._cond:
            self._writers_waiting += 1
            try:
                while self._writer or self._readers:
                    self._cond.wait()
            finally:
                self._writers_waiting -= 1
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


class CacheStore:
    """Database id -> records of its last successful fetch."""

    def __init__(self) -> None:
        self._lock = ReadWriteLock()
        self._databases: dict[str, list[Record]] = {}

    def get(self, database_id: str) -> list[Record] | None:
        with self._lock.read():
            return self._databases.get(database_id)

    def put(self, database_id: str, records: list[Record]) -> None:
        with self._lock.write():
            self._databases[database_id] = records

    def replace_all(self, databases: Mapping[str, list[Record]]) -> None:
        """Swap the whole map in one step; readers see either the old or the new map."""
        replacement = dict(databases)
        with self._lock.write():
            self._databases = replacement

    def list_keys(self) -> list[str]:
        with self._lock.read():
            return list(self._databases)

    def __len__(self) -> int:
        with self._lock.read():
            return len(self._databases)


class IgnoreList:
    """
    Normalized database id -> time of the last failed on-demand fetch.

    A database stays ignored for `window_seconds` after its failure. Known
    databases are never ignored so they are always retried.
    """

    def __init__(
        self,
        known_databases: Iterable[str] = (),
        window_seconds: float = IGNORE_DATABASE_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        self._known = frozenset(normalized_database_id(db) for db in known_databases)
        self._window_seconds = window_seconds
        self._clock = clock
        self._lock = ReadWriteLock()
        self._entries: dict[str, float] = {}

    @property
    def window_seconds(self) -> float:
        return self._window_seconds

    def is_ignored(self, database_id: str) -> bool:
        normalized = normalized_database_id(database_id)
        with self._lock.read():
            failed_at = self._entries.get(normalized)
        if failed_at is None:
            return False
        return self._clock() < failed_at + self._window_seconds

    def mark_ignored(self, database_id: str) -> bool:
        """Record a failure now. Returns False when the id is a known database."""
        normalized = normalized_database_id(database_id)
        if normalized in self._known:
            return False
        with self._lock.write():
            self._entries[normalized] = self._clock()
        logger.info("The %s database added to ignored set", database_id)
        return True

    def sweep(self) -> list[str]:
        """Drop expired entries and return their normalized ids."""
        removed: list[str] = []
        with self._lock.write():
            now = self._clock()
            for normalized, failed_at in list(self._entries.items()):
                if failed_at + self._window_seconds > now:
                    continue
                del self._entries[normalized]
                removed.append(normalized)
        for normalized in removed:
            logger.info("Removing %s database from ignored databases", normalized)
        return removed

    def snapshot(self) -> dict[str, float]:
        with self._lock.read():
            return dict(self._entries)
