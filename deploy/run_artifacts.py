from __future__ import annotations

import json
import logging
import os
import time
from pathlib import Path
from typing import Any, Dict, Optional

from deploy.models import DeploymentRecord


LOGGER_NAME = "deploy"


def init_run_dir(base_dir: Path, meta: Optional[Dict[str, Any]] = None) -> Path:
    base = Path(base_dir)
    base.mkdir(parents=True, exist_ok=True)
    ts = time.strftime("%Y%m%d_%H%M%S")
    run_dir = base / f"{ts}_{os.getpid()}"
    run_dir.mkdir(parents=True, exist_ok=True)
    if meta:
        write_meta(run_dir, meta)
    return run_dir


def configure_logging(run_dir: Optional[Path] = None, *, level: int = logging.INFO) -> logging.Logger:
    """`deploy` logger (modules log via getLogger(__name__)): stderr + <run_dir>/logs/run.log."""
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)
    logger.handlers.clear()
    logger.propagate = False

    fmt = logging.Formatter("%(asctime)s %(levelname)s %(message)s")

    if run_dir is not None:
        log_dir = Path(run_dir) / "logs"
        log_dir.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_dir / "run.log", encoding="utf-8")
        file_handler.setFormatter(fmt)
        logger.addHandler(file_handler)

    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(fmt)
    logger.addHandler(stream_handler)

    # infra.* logs under the same handlers
    infra_logger = logging.getLogger("infra")
    infra_logger.setLevel(level)
    infra_logger.handlers[:] = logger.handlers
    infra_logger.propagate = False

    return logger


def write_meta(run_dir: Path, meta: Dict[str, Any]) -> None:
    path = Path(run_dir) / "run_meta.json"
    path.write_text(json.dumps(meta, indent=2), encoding="utf-8")


def append_jsonl(run_dir: Path, name: str, obj: Dict[str, Any]) -> None:
    path = Path(run_dir) / name
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("a", encoding="utf-8") as fh:
        fh.write(json.dumps(obj) + "\n")


def ledger_writer(run_dir: Path, name: str = "deployments.jsonl"):
    """on_record hook: one line per creation tx as it lands.

    A tx that was sent but never confirmed is written with confirmed=false.
    """

    def _write(contract: str, kind: str, record: DeploymentRecord) -> None:
        entry = {"ts": int(time.time() * 1000), "contract": contract, "kind": kind}
        entry.update(record.to_dict())
        append_jsonl(run_dir, name, entry)

    return _write
