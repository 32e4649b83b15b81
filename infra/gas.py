from __future__ import annotations

from typing import Any, Dict, Iterable, Optional


def _to_hex(value: Optional[int]) -> Optional[str]:
    if value is None:
        return None
    try:
        return hex(int(value))
    except (TypeError, ValueError):
        return None


def _as_int(value: Any) -> int:
    return int(value, 16) if isinstance(value, str) else int(value)


def _median(values: Iterable[int]) -> int:
    vals = sorted(int(v) for v in values if v is not None)
    if not vals:
        return 0
    mid = len(vals) // 2
    if len(vals) % 2:
        return vals[mid]
    return int((vals[mid - 1] + vals[mid]) / 2)


async def get_fee_params(
    rpc: Any,
    *,
    block_count: int = 10,
    reward_percentile: int = 50,
    timeout_s: float = 5.0,
) -> Dict[str, int]:
    """Return tx fee fields: EIP-1559 from eth_feeHistory, legacy gasPrice otherwise.

    Result keys are ready to merge into a tx dict: either
    {"maxFeePerGas", "maxPriorityFeePerGas"} or {"gasPrice"}. Empty when the
    node answers neither call.
    """
    try:
        res = await rpc.call(
            "eth_feeHistory",
            [hex(int(block_count)), "latest", [int(reward_percentile)]],
            timeout_s=timeout_s,
        )
        base_fees = [int(x, 16) for x in (res.get("baseFeePerGas") or []) if isinstance(x, str)]
        priority_vals = []
        for row in res.get("reward") or []:
            if isinstance(row, (list, tuple)) and row and isinstance(row[0], str):
                priority_vals.append(int(row[0], 16))
        if base_fees:
            max_priority = _median(priority_vals) if priority_vals else 0
            base_fee = int(base_fees[-1])
            return {
                "maxFeePerGas": int(base_fee * 2 + max_priority),
                "maxPriorityFeePerGas": int(max_priority),
            }
    except Exception:
        pass

    try:
        gp = await rpc.call("eth_gasPrice", [], timeout_s=timeout_s)
        return {"gasPrice": _as_int(gp)}
    except Exception:
        return {}


async def estimate_gas(
    rpc: Any,
    tx_params: Dict[str, Any],
    *,
    timeout_s: float = 10.0,
) -> int:
    """Estimate gas via eth_estimateGas; 0 when the node refuses to estimate."""
    if not isinstance(tx_params, dict):
        return 0
    payload = {k: v for k, v in tx_params.items() if k not in ("nonce", "chainId", "gas")}
    for key in ("value", "maxFeePerGas", "maxPriorityFeePerGas", "gasPrice"):
        if key in payload:
            hx = _to_hex(payload.get(key))
            if hx is not None:
                payload[key] = hx
    try:
        res = await rpc.call("eth_estimateGas", [payload], timeout_s=timeout_s)
        return _as_int(res)
    except Exception:
        return 0


def gas_limit(estimate: int, *, multiplier: float, fallback: int) -> int:
    if estimate <= 0:
        return int(fallback)
    return int(estimate * float(multiplier))
