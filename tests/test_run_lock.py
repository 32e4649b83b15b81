import json
import os
import subprocess
import sys
from pathlib import Path

from deploy.run_lock import RunLock


def test_run_lock_exclusive(tmp_path: Path) -> None:
    lock_path = tmp_path / "deploy_run.lock"
    lock = RunLock(lock_path)

    ok, reason, payload = lock.acquire(run_id="run-a", pid=os.getpid())
    assert ok and reason is None
    assert payload and payload.get("run_id") == "run-a"

    # Simulate another alive process holding the lock.
    proc = subprocess.Popen([sys.executable, "-c", "import time; time.sleep(3)"])
    try:
        lock_path.write_text(json.dumps({"pid": proc.pid, "run_id": "other"}), encoding="utf-8")
        ok2, reason2, holder = lock.acquire(run_id="run-b", pid=os.getpid())
        assert not ok2
        assert reason2 == "already_running"
        assert holder and holder.get("run_id") == "other"
        assert not lock.release(run_id="run-b")
    finally:
        proc.terminate()
        proc.wait(timeout=3)


def test_run_lock_stale_recovery(tmp_path: Path) -> None:
    lock_path = tmp_path / "deploy_run.lock"
    lock = RunLock(lock_path)
    lock_path.write_text(json.dumps({"pid": 9999999, "run_id": "stale"}), encoding="utf-8")
    ok, reason, payload = lock.acquire(run_id="fresh", pid=os.getpid())
    assert ok and reason is None
    assert payload and payload.get("run_id") == "fresh"
    assert payload.get("recovered") is True


def test_run_lock_release(tmp_path: Path) -> None:
    lock_path = tmp_path / "nested" / "deploy_run.lock"
    lock = RunLock(lock_path)
    ok, _, _ = lock.acquire(run_id="r1")
    assert ok and lock_path.exists()
    assert not lock.release(run_id="other")
    assert lock.release(run_id="r1")
    assert not lock_path.exists()
    assert lock.release(run_id="r1")
