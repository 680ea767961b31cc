import json
import os
import time

import pytest

from content_refresher.runlock import RunLock


def test_acquire_and_release(tmp_path):
    path = tmp_path / "run.lock"
    with RunLock(path):
        state = json.loads(path.read_text())
        assert state["pid"] == os.getpid()
    assert not path.exists()


def test_live_lock_blocks_second_run(tmp_path):
    path = tmp_path / "run.lock"
    with RunLock(path):
        with pytest.raises(SystemExit):
            RunLock(path).acquire()
        assert path.exists()


def test_dead_pid_is_stale(tmp_path):
    path = tmp_path / "run.lock"
    path.write_text(json.dumps({"pid": 2**22 + 12345, "started": "2026-01-01T00:00:00+00:00"}))
    with RunLock(path, ttl_minutes=10**6):
        assert json.loads(path.read_text())["pid"] == os.getpid()


def test_expired_lock_is_replaced(tmp_path):
    path = tmp_path / "run.lock"
    path.write_text(json.dumps({"pid": os.getpid()}))
    old = time.time() - 3600
    os.utime(path, (old, old))
    with RunLock(path, ttl_minutes=30):
        assert path.exists()


def test_force_steals_live_lock(tmp_path):
    path = tmp_path / "run.lock"
    holder = RunLock(path)
    holder.acquire()
    with RunLock(path, force=True):
        assert path.exists()
    holder.release()
