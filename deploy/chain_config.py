from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional


CHAINS_DIR = Path(__file__).resolve().parents[1] / "configs" / "chains"


@dataclass(frozen=True)
class ChainConfig:
    chain_id: Optional[int]
    name: str
    rpc_urls: list[str]
    private_key_env: str
    explorer_url: Optional[str]
    testnet: bool


def _read_json(path: Path) -> Optional[Dict[str, Any]]:
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError):
        return None


def available_chains(base_dir: Optional[Path] = None) -> list[str]:
    base = Path(base_dir) if base_dir else CHAINS_DIR
    if not base.is_dir():
        return []
    return sorted(p.stem for p in base.glob("*.json"))


def load_chain_config(
    chain_name: Optional[str] = None,
    chain_id: Optional[int] = None,
    *,
    base_dir: Optional[Path] = None,
) -> Optional[ChainConfig]:
    base = Path(base_dir) if base_dir else CHAINS_DIR
    name = str(chain_name or os.getenv("CHAIN_NAME") or "").strip().lower()
    cid = chain_id
    chain_id_env = os.getenv("CHAIN_ID")
    if cid is None and chain_id_env:
        try:
            cid = int(chain_id_env)
        except ValueError:
            cid = None

    candidates: list[Path] = []
    if name:
        candidates.append(base / f"{name}.json")
    if cid is not None:
        candidates.append(base / f"{cid}.json")
        candidates.extend(p for p in sorted(base.glob("*.json")) if p not in candidates)

    data: Optional[Dict[str, Any]] = None
    for path in candidates:
        if not path.exists():
            continue
        raw = _read_json(path)
        if not isinstance(raw, dict):
            continue
        if not name and cid is not None and raw.get("chain_id") != cid:
            continue
        data = raw
        break
    if not data:
        return None

    chain_id_val = None
    try:
        if data.get("chain_id") is not None:
            chain_id_val = int(data.get("chain_id"))
    except (TypeError, ValueError):
        chain_id_val = None

    return ChainConfig(
        chain_id=chain_id_val,
        name=str(data.get("name") or name or "unknown").strip().lower(),
        rpc_urls=[str(x).strip() for x in (data.get("rpc_urls") or []) if str(x).strip()],
        private_key_env=str(data.get("private_key_env") or "PRIVATE_KEY").strip(),
        explorer_url=str(data["explorer_url"]).strip() if data.get("explorer_url") else None,
        testnet=bool(data.get("testnet", False)),
    )
