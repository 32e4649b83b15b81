from __future__ import annotations

import json
import os
import time
from pathlib import Path
from typing import Any, Dict, Optional, Tuple


def _is_pid_alive(pid: int) -> bool:
    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
        return True
    except PermissionError:
        return True
    except OSError:
        return False


class RunLock:
    """One deployment per output directory.

    The lock file holds {"pid", "run_id", "started_at_ms"}. A lock left by a
    dead process is taken over and marked "recovered".
    """

    def __init__(self, path: Path) -> None:
        self.path = Path(path)

    def _read(self) -> Optional[Dict[str, Any]]:
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            return None
        return raw if isinstance(raw, dict) else None

    def _create(self, payload: Dict[str, Any]) -> None:
        fd = os.open(str(self.path), os.O_CREAT | os.O_EXCL | os.O_WRONLY)
        try:
            os.write(fd, json.dumps(payload).encode("utf-8"))
        finally:
            os.close(fd)

    def acquire(self, *, run_id: str, pid: Optional[int] = None) -> Tuple[bool, Optional[str], Optional[Dict[str, Any]]]:
        pid = int(os.getpid() if pid is None else pid)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload: Dict[str, Any] = {"pid": pid, "run_id": str(run_id), "started_at_ms": int(time.time() * 1000)}

        try:
            self._create(payload)
            return True, None, payload
        except FileExistsError:
            pass
        except OSError as exc:
            return False, f"lock_error:{exc}", None

        existing = self._read() or {}
        existing_pid = int(existing.get("pid") or 0)
        if existing_pid == pid:
            return True, None, existing
        if existing_pid and _is_pid_alive(existing_pid):
            return False, "already_running", existing

        # Stale lock: replace
        self.path.unlink(missing_ok=True)
        payload["recovered"] = True
        try:
            self._create(payload)
            return True, None, payload
        except OSError as exc:
            return False, f"lock_error:{exc}", None

    def release(self, *, run_id: Optional[str] = None, pid: Optional[int] = None) -> bool:
        pid = int(os.getpid() if pid is None else pid)
        existing = self._read()
        if not existing:
            return True
        if run_id is not None and str(existing.get("run_id") or "") != str(run_id):
            return False
        if pid and int(existing.get("pid") or 0) not in (0, pid):
            return False
        self.path.unlink(missing_ok=True)
        return True
