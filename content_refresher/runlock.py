# content_refresher/runlock.py

import json
import logging
import os
import socket
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, Optional, Tuple, Union

logger = logging.getLogger(__name__)


class RunLock:
    """
    One maintenance process per lock file.

      * atomic creation (O_CREAT|O_EXCL)
      * TTL expiry, measured from the file mtime and the recorded start time
      * PID liveness check, so a crashed run does not block the next one
      * ``force=True`` (LOCK_FORCE=1) steals a live lock

    The file holds {"pid": ..., "started": <iso8601>, "hostname": ...}.
    A busy lock raises SystemExit.
    """

    def __init__(self, lock_path: Union[str, Path], ttl_minutes: int = 24 * 60, force: bool = False):
        self.lock_path = Path(lock_path)
        self.ttl = timedelta(minutes=int(ttl_minutes))
        self.force = bool(force)
        self._acquired = False

    @staticmethod
    def _is_pid_alive(pid: int) -> bool:
        if pid <= 0:
            return False
        try:
            os.kill(pid, 0)
        except ProcessLookupError:
            return False
        except PermissionError:
            # exists, owned by someone else
            return True
        except OSError:
            return Path(f"/proc/{pid}").exists()
        return True

    def _read_state(self) -> Optional[Dict[str, Any]]:
        try:
            data = json.loads(self.lock_path.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            return None
        return data if isinstance(data, dict) else None

    def _is_stale(self, state: Optional[Dict[str, Any]]) -> Tuple[bool, str]:
        now = datetime.now(timezone.utc)
        try:
            age = now - datetime.fromtimestamp(self.lock_path.stat().st_mtime, tz=timezone.utc)
        except OSError:
            return True, "lock file unreadable"
        if age > self.ttl:
            return True, f"TTL expired (age {age})"

        state = state or {}
        try:
            pid = int(state.get("pid", 0))
        except (TypeError, ValueError):
            pid = 0
        if pid and not self._is_pid_alive(pid):
            return True, f"PID {pid} not alive"

        try:
            started = datetime.fromisoformat(str(state["started"]))
        except (KeyError, ValueError):
            return False, ""
        if started.tzinfo is None:
            started = started.replace(tzinfo=timezone.utc)
        if now - started > self.ttl:
            return True, f"TTL expired (started {started.isoformat()})"
        return False, ""

    def _create(self) -> None:
        fd = os.open(self.lock_path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        payload = {
            "pid": os.getpid(),
            "started": datetime.now(timezone.utc).isoformat(),
            "hostname": socket.gethostname(),
        }
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(payload, f)
        self._acquired = True

    def acquire(self) -> None:
        self.lock_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            self._create()
            logger.debug("RunLock acquired: %s", self.lock_path)
            return
        except FileExistsError:
            pass

        stale, reason = self._is_stale(self._read_state())
        if self.force:
            logger.warning("LOCK_FORCE=1: taking over %s", self.lock_path)
        elif stale:
            logger.warning("Stale lock detected (%s); removing it", reason)
        else:
            raise SystemExit(f"Another maintenance run holds {self.lock_path}. Use LOCK_FORCE=1 or wait.")

        self.lock_path.unlink(missing_ok=True)
        self._create()
        logger.debug("RunLock acquired after cleanup: %s", self.lock_path)

    def release(self) -> None:
        if self._acquired:
            self.lock_path.unlink(missing_ok=True)
            self._acquired = False

    def __enter__(self) -> "RunLock":
        self.acquire()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()
