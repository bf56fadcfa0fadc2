"""
Notion data service: cached database reads with scheduled refresh.

Reads are served from an in-memory cache first. A cache miss fetches the
database from Notion on demand, one fetch at a time process-wide, and a
database whose on-demand fetch failed is ignored for a few minutes so a
broken id is not hammered by repeated requests.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Iterable
from typing import Any, Protocol

from .notion_api import PAGE_SIZE
from .records import Record, normalize_page
from .store import IGNORE_DATABASE_SECONDS, CacheStore, IgnoreList

logger = logging.getLogger(__name__)

DEFAULT_POLL_SECONDS = 300.0  # 5 minutes
CLEANUP_INTERVAL_SECONDS = 120.0  # 2 minutes


class RemoteSource(Protocol):
    def query_database(
        self, database_id: str, cursor: str = "", page_size: int = PAGE_SIZE
    ) -> tuple[list[dict[str, Any]], str]: ...

    def list_accessible_databases(self) -> dict[str, str]: ...


class DatabaseQueryError(RuntimeError):
    """Raised when a database could not be fetched from Notion."""

    code = "database_query_failed"

    def __init__(self, database_id: str, message: str):
        super().__init__(message)
        self.database_id = database_id
        self.message = message


class DatabaseIgnoredError(DatabaseQueryError):
    """Raised instead of fetching a database whose recent fetch failed."""

    code = "database_ignored"


class DataService:
    """Owns the cache, the ignore list and the two background loops."""

    def __init__(
        self,
        source: RemoteSource,
        poll_interval_seconds: float = DEFAULT_POLL_SECONDS,
        known_databases: Iterable[str] = (),
        ignore_window_seconds: float = IGNORE_DATABASE_SECONDS,
        cleanup_interval_seconds: float = CLEANUP_INTERVAL_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        self._source = source
        self._poll_interval_seconds = poll_interval_seconds
        self._cleanup_interval_seconds = cleanup_interval_seconds
        self._known_databases = tuple(known_databases)
        self._clock = clock

        self._cache = CacheStore()
        self._ignored = IgnoreList(
            self._known_databases, window_seconds=ignore_window_seconds, clock=clock
        )
        # Serializes every on-demand fetch, including the network call.
        self._fetch_lock = threading.Lock()

        self._state_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._running = False
        self._threads: list[threading.Thread] = []
        self._last_refresh_at: float | None = None
        self._last_refresh_failures: list[str] = []

    @property
    def cache(self) -> CacheStore:
        return self._cache

    @property
    def ignored(self) -> IgnoreList:
        return self._ignored

    @property
    def known_databases(self) -> tuple[str, ...]:
        return self._known_databases

    def start(self) -> None:
        with self._state_lock:
            if self._running:
                logger.warning("Notion data service already running")
                return
            self._running = True
            self._stop_event = threading.Event()
            stop_event = self._stop_event

        logger.info("Notion data service started")
        self._cache.replace_all({})
        self._safe_refresh()

        threads = [
            threading.Thread(
                target=self._run_every,
                args=(self._poll_interval_seconds, self._safe_refresh, stop_event),
                daemon=True,
                name="notion-refresh",
            ),
            threading.Thread(
                target=self._run_every,
                args=(self._cleanup_interval_seconds, self._safe_cleanup, stop_event),
                daemon=True,
                name="notion-ignore-cleanup",
            ),
        ]
        for thread in threads:
            thread.start()
        with self._state_lock:
            # A stop() during startup already set this event; the loops exit on their own.
            if self._stop_event is stop_event:
                self._threads = threads

    def stop(self, timeout: float = 1.0) -> None:
        with self._state_lock:
            self._running = False
            self._stop_event.set()
            threads = self._threads
            self._threads = []
        for thread in threads:
            if thread is not threading.current_thread():
                thread.join(timeout=timeout)
        logger.info("Notion data service stopped")

    def is_running(self) -> bool:
        with self._state_lock:
            return self._running

    @staticmethod
    def _run_every(interval: float, task: Callable[[], None], stop_event: threading.Event) -> None:
        while not stop_event.wait(interval):
            task()

    def _safe_refresh(self) -> None:
        try:
            self.refresh()
        except Exception:
            logger.exception("Notion data refresh failed")

    def _safe_cleanup(self) -> None:
        try:
            self._ignored.sweep()
        except Exception:
            logger.exception("Ignored database cleanup failed")

    def refresh(self) -> None:
        """Rebuild the whole cache from the databases currently in it."""
        logger.info("Begin update of Notion.so data")

        database_ids = self._cache.list_keys()
        if not database_ids:
            logger.info(
                "Service currently does not manage any notion database. "
                "Database is added when queried for a first time"
            )
            return

        refreshed: dict[str, list[Record]] = {}
        failures: list[str] = []
        for database_id in database_ids:
            logger.info("Querying Notion.so for database %s", database_id)
            try:
                refreshed[database_id] = self.query_database(database_id, False)
            except Exception as exc:
                logger.error("Failed to query notion database %s during update: %s", database_id, exc)
                failures.append(database_id)

        self._cache.replace_all(refreshed)
        with self._state_lock:
            self._last_refresh_at = self._clock()
            self._last_refresh_failures = failures

        logger.info("Completed update of Notion.so data")

    def list_known_databases(self) -> list[str]:
        """Ids currently cached; the set grows as new databases are queried."""
        return self._cache.list_keys()

    def list_accessible_databases(self) -> dict[str, str]:
        """Databases Notion reports as shared with the token, or {} if unsupported."""
        try:
            return self._source.list_accessible_databases()
        except Exception as exc:
            logger.warning("Listing accessible Notion databases is unavailable: %s", exc)
            return {}

    def query_cached(self, database_id: str) -> list[Record]:
        records = self._cache.get(database_id)
        if records is not None:
            logger.info("The database %s fetched from cache", database_id)
            return records

        with self._fetch_lock:
            if self._ignored.is_ignored(database_id):
                logger.warning(
                    "The database %s cannot be fetched: database is ignored. Try again later",
                    database_id,
                )
                raise DatabaseIgnoredError(database_id, f"the {database_id} database is ignored")

            # Another caller may have fetched it while we waited.
            records = self._cache.get(database_id)
            if records is not None:
                return records

            logger.warning("Cannot find database with ID %s in cache, trying to query it", database_id)
            try:
                return self.query_database(database_id, True)
            except Exception as exc:
                self._ignored.mark_ignored(database_id)
                raise DatabaseQueryError(
                    database_id, f"failed to query database {database_id}: {exc}"
                ) from exc

    def query_database(self, database_id: str, update_cache_on_success: bool) -> list[Record]:
        """Fetch every page of a database; a failed page fails the whole fetch."""
        records: list[Record] = []
        cursor = ""
        while True:
            try:
                pages, cursor = self._source.query_database(database_id, cursor, PAGE_SIZE)
            except Exception:
                logger.error(
                    "Failed to query notion database %s via API for cursor: %r", database_id, cursor
                )
                raise
            records.extend(normalize_page(page) for page in pages)
            if not cursor:
                break

        if update_cache_on_success:
            self._cache.put(database_id, records)

        logger.info("Found and processed %d data items for %s database", len(records), database_id)
        return records

    def get_health(self) -> dict[str, Any]:
        with self._state_lock:
            last_refresh_at = self._last_refresh_at
            last_refresh_failures = list(self._last_refresh_failures)
        return {
            "running": self.is_running(),
            "cachedDatabases": len(self._cache),
            "ignoredDatabases": sorted(self._ignored.snapshot()),
            "knownDatabases": list(self._known_databases),
            "lastRefreshAt": last_refresh_at,
            "lastRefreshFailures": last_refresh_failures,
            "pollIntervalSeconds": self._poll_interval_seconds,
            "ignoreWindowSeconds": self._ignored.window_seconds,
        }
