from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import uuid
from pathlib import Path
from typing import Any, Dict, List, Optional

from deploy import config
from deploy.artifacts import PROJECT_ROOT, FileArtifactProvider
from deploy.chain_config import ChainConfig, available_chains, load_chain_config
from deploy.deployer import ContractDeployer
from deploy.errors import PlanError
from deploy.orchestrator import DeploymentOrchestrator
from deploy.plan import DeploymentPlan, default_plan, load_plan
from deploy.report import build_summary, log_outcome, write_summary
from deploy.run_artifacts import configure_logging, init_run_dir, ledger_writer, write_meta
from deploy.run_lock import RunLock
from infra.chain import RpcChainClient
from infra.metrics import METRICS
from infra.rpc import AsyncRPC, RPCError


EXIT_OK = 0
EXIT_ABORTED = 1
EXIT_VERIFICATION_FAILED = 3


def _parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Deploy the upgradeable Identity/Reputation/Validation registries")
    parser.add_argument("--chain", default=os.getenv("CHAIN_NAME", config.DEFAULT_CHAIN), help="chain config name")
    parser.add_argument("--rpc", default=os.getenv("RPC_URL", ""), help="RPC URL (overrides chain config)")
    parser.add_argument("--private-key", default="", help="deployer private key (default: env from chain config)")
    parser.add_argument("--plan", default="", help="plan JSON (default: built-in identity/reputation/validation)")
    parser.add_argument("--artifacts", action="append", default=[], help="artifact search dir (repeatable)")
    parser.add_argument("--out", default=str(PROJECT_ROOT / config.RUNS_DIR), help="runs output dir")
    parser.add_argument("--confirm-timeout", type=float, default=config.CONFIRM_TIMEOUT_S, help="seconds per receipt wait")
    parser.add_argument("--confirm-retries", type=int, default=config.CONFIRM_RETRIES, help="extra waits after a timeout")
    parser.add_argument("--poll-interval", type=float, default=config.CONFIRM_POLL_INTERVAL_S, help="receipt poll interval")
    parser.add_argument("--confirmations", type=int, default=config.CONFIRMATIONS, help="blocks deep before confirmed")
    parser.add_argument("--no-verify", action="store_true", help="skip post-deployment checks")
    parser.add_argument("--verbose", "-v", action="store_true", help="debug logging")
    return parser.parse_args(argv)


def _resolve_chain(args: argparse.Namespace) -> ChainConfig:
    cfg = load_chain_config(args.chain)
    if cfg is None:
        raise SystemExit(f"unknown chain {args.chain!r} (known: {', '.join(available_chains())})")
    return cfg


def _resolve_rpc(args: argparse.Namespace, cfg: ChainConfig) -> str:
    rpc_url = str(args.rpc or "").strip()
    if not rpc_url and cfg.rpc_urls:
        rpc_url = cfg.rpc_urls[0]
    if not rpc_url:
        raise SystemExit(f"missing --rpc (or RPC_URL); chain {cfg.name} has no default rpc_urls")
    return rpc_url


def _resolve_key(args: argparse.Namespace, cfg: ChainConfig) -> str:
    key = str(args.private_key or "").strip()
    if not key:
        key = str(os.getenv(cfg.private_key_env) or os.getenv("PRIVATE_KEY") or "").strip()
    if not key:
        raise SystemExit(f"missing --private-key (or {cfg.private_key_env} / PRIVATE_KEY)")
    return key


def _resolve_plan(args: argparse.Namespace) -> DeploymentPlan:
    if not args.plan:
        return default_plan()
    try:
        return load_plan(Path(args.plan))
    except PlanError as exc:
        raise SystemExit(f"invalid plan: {exc}")


async def _deploy(
    args: argparse.Namespace,
    cfg: ChainConfig,
    plan: DeploymentPlan,
    run_dir: Path,
    logger: logging.Logger,
    *,
    rpc_url: str,
    private_key: str,
) -> int:
    artifacts = FileArtifactProvider([Path(a) for a in args.artifacts] if args.artifacts else None)
    async with AsyncRPC(rpc_url) as rpc:
        chain = RpcChainClient(
            rpc,
            private_key,
            chain_id=cfg.chain_id,
            poll_interval_s=args.poll_interval,
            confirmations=args.confirmations,
        )
        try:
            chain_id = await chain.check_chain(cfg.chain_id)
        except RPCError as exc:
            logger.error("rpc check failed: %s", exc)
            return EXIT_ABORTED
        logger.info("Deploying %d contract(s) to %s (chain %s)", len(plan.specs), cfg.name, chain_id)
        logger.info("Deployer address: %s", chain.address)

        orchestrator = DeploymentOrchestrator(
            plan,
            artifacts,
            chain,
            deployer=ContractDeployer(chain, confirm_timeout_s=args.confirm_timeout, confirm_retries=args.confirm_retries),
            verify=not args.no_verify,
            on_record=ledger_writer(run_dir),
        )
        outcome = await orchestrator.run()

    log_outcome(logger, outcome)
    summary = build_summary(outcome)
    summary["chain"] = {"name": cfg.name, "chain_id": chain_id, "explorer_url": cfg.explorer_url}
    summary["deployer"] = chain.address
    write_summary(run_dir / "summary.json", summary)

    if not outcome.completed:
        logger.error("partial result written to %s", run_dir / "summary.json")
        return EXIT_ABORTED
    print(json.dumps({"proxies": summary["proxies"], "implementations": summary["implementations"]}, indent=2))
    if outcome.verification is not None and not outcome.verification.ok:
        return EXIT_VERIFICATION_FAILED
    return EXIT_OK


def main(argv: Optional[List[str]] = None) -> int:
    args = _parse_args(argv)
    cfg = _resolve_chain(args)
    plan = _resolve_plan(args)
    rpc_url = _resolve_rpc(args, cfg)
    private_key = _resolve_key(args, cfg)

    out_dir = Path(args.out) / cfg.name
    run_id = uuid.uuid4().hex[:12]
    lock = RunLock(out_dir / config.LOCK_NAME)
    ok, reason, holder = lock.acquire(run_id=run_id)
    if not ok:
        raise SystemExit(f"another deployment holds {lock.path}: {reason} {holder or ''}")

    try:
        meta: Dict[str, Any] = {
            "run_id": run_id,
            "chain": cfg.name,
            "chain_id": cfg.chain_id,
            "order": plan.order(),
            "proxy_artifact": plan.proxy_artifact,
            "confirm_timeout_s": args.confirm_timeout,
            "confirm_retries": args.confirm_retries,
            "confirmations": args.confirmations,
        }
        run_dir = init_run_dir(out_dir, meta)
        logger = configure_logging(run_dir, level=logging.DEBUG if args.verbose else logging.INFO)
        logger.info("run %s -> %s", run_id, run_dir)
        code = asyncio.run(_deploy(args, cfg, plan, run_dir, logger, rpc_url=rpc_url, private_key=private_key))
        meta["exit_code"] = code
        meta["metrics"] = METRICS.snapshot()
        write_meta(run_dir, meta)
        return code
    finally:
        lock.release(run_id=run_id)
