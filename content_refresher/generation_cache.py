# content_refresher/generation_cache.py

import hashlib
import json
import logging
import random
import sqlite3
import threading
import time
import zlib
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Sequence, Union

logger = logging.getLogger(__name__)


def stable_json(obj: Any) -> str:
    return json.dumps(obj, sort_keys=True, ensure_ascii=False, separators=(",", ":"), default=str)


def fingerprint(prompt_key: str, args: Sequence[Any], fmt: str = "", *, model: str = "", version: str = "v1") -> str:
    """SHA256 over the prompt identifier and its arguments; identical requests share a key."""
    base = f"{version}|{model}|{fmt}|{prompt_key}\n{stable_json(list(args))}"
    return hashlib.sha256(base.encode("utf-8")).hexdigest()


class GenerationCache:
    """
    SQLite cache for generation responses keyed by request fingerprint.

      • TTL per entry (expiry on read, lazy cleanup every ~32 writes) with optional
        jitter so entries written together do not all expire together.
      • Optional max_rows with LRU-style pruning (by last_access).
      • Transparent zlib compression above ``compress_threshold`` bytes.
    """

    def __init__(
        self,
        db_path: Union[str, Path] = "cache/generation_cache.sqlite3",
        *,
        default_ttl: Optional[float] = 3600.0,       # seconds; None => no expiry
        ttl_jitter_fraction: float = 0.0,            # 0.1 => ±10%
        max_rows: Optional[int] = 20_000,
        compress_threshold: int = 512,
        sqlite_timeout: float = 5.0,
        clock: Callable[[], float] = time.time,
    ):
        self.path = Path(db_path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.default_ttl = default_ttl
        self.ttl_jitter_fraction = max(0.0, float(ttl_jitter_fraction))
        self.max_rows = max_rows
        self.compress_threshold = max(0, int(compress_threshold))
        self._clock = clock
        self._ops_since_housekeep = 0
        self._lock = threading.Lock()

        self._conn = sqlite3.connect(
            str(self.path),
            timeout=float(sqlite_timeout),
            isolation_level=None,         # autocommit mode
            check_same_thread=False,
        )
        self._conn.execute("PRAGMA synchronous = NORMAL;")
        try:
            self._conn.execute("PRAGMA journal_mode = WAL;")
        except sqlite3.OperationalError:
            pass
        self._conn.execute(
            """
            CREATE TABLE IF NOT EXISTS cache (
                k TEXT PRIMARY KEY,
                prompt_key TEXT NOT NULL,
                created_at REAL NOT NULL,
                last_access REAL NOT NULL,
                ttl REAL,                       -- NULL => no expiry
                response BLOB NOT NULL,
                compressed INTEGER NOT NULL DEFAULT 0
            )
            """
        )
        self._conn.execute("CREATE INDEX IF NOT EXISTS idx_cache_last_access ON cache(last_access);")
        self._conn.execute("CREATE INDEX IF NOT EXISTS idx_cache_prompt_key ON cache(prompt_key);")

    # ------------------------------ core API ---------------------------------

    def _jittered_ttl(self, ttl: Optional[float]) -> Optional[float]:
        if ttl is None or self.ttl_jitter_fraction <= 0:
            return ttl
        spread = (random.random() * 2 - 1) * self.ttl_jitter_fraction
        return max(0.0, ttl * (1.0 + spread))

    def get(self, key: str) -> Optional[str]:
        now = self._clock()
        with self._lock:
            row = self._conn.execute(
                "SELECT response, compressed, created_at, ttl FROM cache WHERE k=?", (key,)
            ).fetchone()
            if not row:
                return None
            blob, compressed, created_at, ttl = row
            if ttl is not None and now > float(created_at) + float(ttl):
                self._conn.execute("DELETE FROM cache WHERE k=?", (key,))
                return None
            self._conn.execute("UPDATE cache SET last_access=? WHERE k=?", (now, key))

        try:
            raw = zlib.decompress(blob) if compressed else bytes(blob)
            return raw.decode("utf-8")
        except (zlib.error, UnicodeDecodeError):
            logger.warning("Dropping corrupted cache entry %s", key[:12])
            with self._lock:
                self._conn.execute("DELETE FROM cache WHERE k=?", (key,))
            return None

    def put(self, key: str, prompt_key: str, response_text: str, *, ttl: Optional[float] = None) -> None:
        now = self._clock()
        ttl_val = self._jittered_ttl(ttl if ttl is not None else self.default_ttl)
        raw = response_text.encode("utf-8")
        compressed = 0
        if self.compress_threshold and len(raw) >= self.compress_threshold:
            raw = zlib.compress(raw, level=6)
            compressed = 1

        with self._lock:
            self._conn.execute(
                """
                INSERT OR REPLACE INTO cache (k, prompt_key, created_at, last_access, ttl, response, compressed)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (key, prompt_key, now, now, ttl_val, sqlite3.Binary(raw), compressed),
            )

        self._ops_since_housekeep += 1
        if self._ops_since_housekeep >= 32 or random.random() < 0.02:
            self._ops_since_housekeep = 0
            self._housekeep()

    # ---------------------------- maintenance --------------------------------

    def _housekeep(self) -> None:
        with self._lock:
            self._conn.execute(
                "DELETE FROM cache WHERE ttl IS NOT NULL AND (created_at + ttl) < ?", (self._clock(),)
            )
            if self.max_rows:
                (count,) = self._conn.execute("SELECT COUNT(*) FROM cache").fetchone()
                excess = int(count) - int(self.max_rows)
                if excess > 0:
                    self._conn.execute(
                        "DELETE FROM cache WHERE k IN (SELECT k FROM cache ORDER BY last_access ASC LIMIT ?)",
                        (excess,),
                    )

    def purge_prompt(self, prompt_key: str) -> int:
        with self._lock:
            cur = self._conn.execute("DELETE FROM cache WHERE prompt_key=?", (prompt_key,))
            return cur.rowcount or 0

    def stats(self) -> Dict[str, Any]:
        with self._lock:
            count, bytes_sum = self._conn.execute(
                "SELECT COUNT(*), IFNULL(SUM(LENGTH(response)),0) FROM cache"
            ).fetchone()
        return {"rows": int(count), "bytes": int(bytes_sum), "path": str(self.path)}

    def close(self) -> None:
        with self._lock:
            try:
                self._conn.close()
            except sqlite3.Error:
                pass

    def __enter__(self) -> "GenerationCache":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
