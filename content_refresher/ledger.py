# content_refresher/ledger.py

import logging
import sqlite3
import threading
import time
from pathlib import Path
from typing import Callable, List, Optional, Union

from .models import Page

logger = logging.getLogger(__name__)

LAST_PROCESSED = "lastProcessed:"
FAIL_COUNT = "failCount:"
PRIORITY_PROCESSED = "priorityProcessed:"


class SqliteStore:
    """
    Tiny persistent string -> string store on SQLite.

    No TTL is enforced here; callers compute freshness from stored timestamps.
    WAL mode + autocommit, safe to share across asyncio tasks in one process.
    """

    def __init__(
        self,
        db_path: Union[str, Path] = "cache/ledger.sqlite3",
        *,
        sqlite_timeout: float = 5.0,
        wal: bool = True,
    ):
        self.path = Path(db_path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

        self._conn = sqlite3.connect(
            str(self.path),
            timeout=float(sqlite_timeout),
            isolation_level=None,         # autocommit mode
            check_same_thread=False,
        )
        self._conn.execute("PRAGMA synchronous = NORMAL;")
        if wal:
            try:
                self._conn.execute("PRAGMA journal_mode = WAL;")
            except sqlite3.OperationalError:
                pass
        self._conn.execute(
            """
            CREATE TABLE IF NOT EXISTS kv (
                k TEXT PRIMARY KEY,
                v TEXT NOT NULL,
                updated_at REAL NOT NULL
            )
            """
        )

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            row = self._conn.execute("SELECT v FROM kv WHERE k = ?", (key,)).fetchone()
        return row[0] if row else None

    def set(self, key: str, value: str) -> None:
        with self._lock:
            self._conn.execute(
                "INSERT INTO kv (k, v, updated_at) VALUES (?, ?, ?) "
                "ON CONFLICT(k) DO UPDATE SET v = excluded.v, updated_at = excluded.updated_at",
                (key, str(value), time.time()),
            )

    def delete(self, key: str) -> None:
        with self._lock:
            self._conn.execute("DELETE FROM kv WHERE k = ?", (key,))

    def keys(self, prefix: str = "") -> List[str]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT k FROM kv WHERE substr(k, 1, ?) = ? ORDER BY k", (len(prefix), prefix)
            ).fetchall()
        return [r[0] for r in rows]

    def close(self) -> None:
        with self._lock:
            try:
                self._conn.close()
            except sqlite3.Error:
                pass

    def __enter__(self) -> "SqliteStore":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


class Ledger:
    """
    Idempotency ledger on top of a string key/value store.

    Keys:
      lastProcessed:<pageId>    epoch seconds. Without a fail counter it marks the start
                                of a cooldown; with one it is the retry-not-before deadline.
      failCount:<pageId>        consecutive publish failures, removed on success.
      priorityProcessed:<url>   epoch seconds of the last priority pass.
    """

    def __init__(
        self,
        store,
        *,
        cooldown_seconds: float = 24 * 3600.0,
        retry_window_seconds: float = 30 * 60.0,
        fail_escalation_threshold: int = 3,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.cooldown_seconds = float(cooldown_seconds)
        self.retry_window_seconds = float(retry_window_seconds)
        self.fail_escalation_threshold = int(fail_escalation_threshold)
        self.clock = clock

    # ------------------------------ reads ------------------------------------
    def _float(self, key: str) -> Optional[float]:
        raw = self.store.get(key)
        if raw is None:
            return None
        try:
            return float(raw)
        except ValueError:
            logger.warning("Ledger value for %s is not a timestamp: %r (ignored)", key, raw)
            return None

    def last_processed(self, page_id: str) -> Optional[float]:
        return self._float(LAST_PROCESSED + page_id)

    def fail_count(self, page_id: str) -> int:
        raw = self.store.get(FAIL_COUNT + page_id)
        try:
            return int(raw) if raw is not None else 0
        except ValueError:
            return 0

    def locked_until(self, page_id: str) -> Optional[float]:
        last = self.last_processed(page_id)
        if last is None:
            return None
        if self.fail_count(page_id) > 0:
            return last
        return last + self.cooldown_seconds

    def is_locked(self, page_id: str) -> bool:
        until = self.locked_until(page_id)
        return until is not None and self.clock() < until

    def priority_recent(self, url: str) -> bool:
        last = self._float(PRIORITY_PROCESSED + url)
        return last is not None and self.clock() - last < self.cooldown_seconds

    # ------------------------------ writes -----------------------------------
    def _lock_key(self, page: Page) -> str:
        if page.is_priority:
            return PRIORITY_PROCESSED + (page.url or page.id)
        return LAST_PROCESSED + page.identity

    def lock(self, page: Page) -> None:
        """Write the processing marker before any expensive work starts."""
        stamp = self.clock()
        if not page.is_priority and self.fail_count(page.identity) > 0:
            # with a fail counter the stored value is read as a deadline
            stamp += self.cooldown_seconds
        self.store.set(self._lock_key(page), repr(stamp))

    mark_processed = lock

    def release(self, page: Page) -> None:
        self.store.delete(self._lock_key(page))

    def commit_success(self, page_id: str) -> None:
        self.store.set(LAST_PROCESSED + page_id, repr(self.clock()))
        self.store.delete(FAIL_COUNT + page_id)

    def record_failure(self, page_id: str) -> int:
        """Bump the fail counter and push the retry deadline out. Returns the new count."""
        count = self.fail_count(page_id) + 1
        window = self.cooldown_seconds if count >= self.fail_escalation_threshold else self.retry_window_seconds
        self.store.set(FAIL_COUNT + page_id, str(count))
        self.store.set(LAST_PROCESSED + page_id, repr(self.clock() + window))
        return count
