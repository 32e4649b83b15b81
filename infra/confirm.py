from __future__ import annotations

import asyncio
import time
from typing import Any, Dict, Optional

from deploy.errors import ConfirmationTimeout
from infra.metrics import METRICS


async def fetch_receipt(rpc: Any, tx_hash: str, *, timeout_s: float = 5.0) -> Optional[Dict[str, Any]]:
    """Receipt dict once the tx is mined, else None."""
    receipt = await rpc.call("eth_getTransactionReceipt", [tx_hash], timeout_s=timeout_s)
    if not receipt or not isinstance(receipt, dict):
        return None
    if not receipt.get("blockNumber"):
        return None
    return receipt


def _block_number(receipt: Dict[str, Any]) -> Optional[int]:
    raw = receipt.get("blockNumber")
    if raw is None:
        return None
    try:
        return int(raw, 16) if isinstance(raw, str) else int(raw)
    except ValueError:
        return None


async def wait_for_receipt(
    rpc: Any,
    tx_hash: str,
    *,
    timeout_s: float,
    poll_interval_s: float = 2.0,
    confirmations: int = 1,
) -> Dict[str, Any]:
    """Poll until the tx is mined `confirmations` blocks deep.

    Raises ConfirmationTimeout when `timeout_s` elapses first. Transient RPC
    errors while polling count against the same deadline.
    """
    t0 = time.monotonic()
    deadline = t0 + float(timeout_s)
    need = max(1, int(confirmations))
    while True:
        try:
            receipt = await fetch_receipt(rpc, tx_hash)
            if receipt is not None:
                mined_at = _block_number(receipt)
                if need == 1 or mined_at is None:
                    METRICS.observe("confirm_latency_ms", (time.monotonic() - t0) * 1000.0)
                    return receipt
                head = await rpc.get_block_number()
                if head - mined_at + 1 >= need:
                    METRICS.observe("confirm_latency_ms", (time.monotonic() - t0) * 1000.0)
                    return receipt
        except RuntimeError:
            METRICS.inc_reason("confirm_poll_errors", "rpc", 1)
        if time.monotonic() >= deadline:
            METRICS.inc("confirm_timeouts_total", 1)
            raise ConfirmationTimeout(tx_hash, timeout_s)
        await asyncio.sleep(max(0.0, min(float(poll_interval_s), deadline - time.monotonic())))
