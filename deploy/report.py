from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict

from deploy.orchestrator import DeploymentOutcome


def build_summary(outcome: DeploymentOutcome) -> Dict[str, Any]:
    summary: Dict[str, Any] = {"status": outcome.status}
    summary.update(outcome.result.to_dict())
    report = outcome.verification
    if report is not None:
        rep = report.to_dict()
        summary["versions"] = rep["versions"]
        summary["links"] = rep["links"]
        summary["verification"] = {"ok": rep["ok"], "checks": rep["checks"], "failures": rep["failures"]}
    else:
        summary["verification"] = None
    summary["transactions"] = {
        name: {kind: rec.transaction_hash for kind, rec in kinds.items()} for name, kinds in outcome.records.items()
    }
    summary["error"] = str(outcome.error) if outcome.error is not None else None
    if outcome.error is not None:
        summary["error_type"] = type(outcome.error).__name__
        if getattr(outcome.error, "tx_hash", None):
            summary["error_tx_hash"] = outcome.error.tx_hash
    return summary


def log_outcome(logger: logging.Logger, outcome: DeploymentOutcome) -> None:
    for name in outcome.order:
        impl = outcome.result.implementations.get(name)
        proxy = outcome.result.proxies.get(name)
        if impl or proxy:
            logger.info("%-12s proxy=%s implementation=%s", name, proxy or "-", impl or "-")
    if not outcome.completed:
        logger.error("deployment %s: %s", outcome.status, outcome.error)
        return
    report = outcome.verification
    if report is None:
        logger.warning("verification skipped")
        return
    if report.versions:
        logger.info("versions: %s", report.versions)
    if report.links:
        logger.info("links: %s", report.links)
    for failure in report.failures:
        logger.error("VERIFICATION FAILED [%s] %s", failure.kind, failure)
    if report.ok:
        logger.info("verification ok (%d checks)", report.checks)


def write_summary(path: Path, summary: Dict[str, Any]) -> Path:
    out = Path(path)
    out.parent.mkdir(parents=True, exist_ok=True)
    out.write_text(json.dumps(summary, indent=2), encoding="utf-8")
    return out
