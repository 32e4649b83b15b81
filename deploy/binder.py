from __future__ import annotations

from typing import Any, Dict, List, Optional

from eth_abi import decode as abi_decode
from eth_abi import encode as abi_encode
from eth_utils import function_abi_to_4byte_selector, to_checksum_address
from eth_utils.abi import collapse_if_tuple

from deploy import config
from deploy.errors import ReadCallFailure, TransactionReverted


def _types(params: Optional[List[Dict[str, Any]]]) -> List[str]:
    return [collapse_if_tuple(p) for p in params or []]


def _checksum_outputs(types: List[str], values: tuple) -> tuple:
    out = []
    for t, v in zip(types, values):
        if t == "address" and isinstance(v, str):
            out.append(to_checksum_address(v))
        else:
            out.append(v)
    return tuple(out)


class BoundContract:
    """An ABI pinned to one address. For a proxy, the ABI is the implementation's."""

    def __init__(self, chain: Any, abi: List[Dict[str, Any]], address: str, *, label: str = "") -> None:
        self.chain = chain
        self.abi = list(abi)
        self.address = to_checksum_address(address)
        self.label = label or self.address

    def function_abi(self, fn_name: str, n_args: int) -> Dict[str, Any]:
        candidates = [e for e in self.abi if e.get("type") == "function" and e.get("name") == fn_name]
        for entry in candidates:
            if len(entry.get("inputs") or []) == n_args:
                return entry
        if candidates:
            raise ValueError(f"{self.label}: no {fn_name} overload takes {n_args} argument(s)")
        raise ValueError(f"{self.label}: function {fn_name} not in ABI")

    def encode(self, fn_name: str, *args: Any) -> bytes:
        fn = self.function_abi(fn_name, len(args))
        types = _types(fn.get("inputs"))
        values = [to_checksum_address(v) if t == "address" else v for t, v in zip(types, args)]
        return bytes(function_abi_to_4byte_selector(fn)) + (abi_encode(types, values) if types else b"")

    async def call(self, fn_name: str, *args: Any) -> Any:
        try:
            fn = self.function_abi(fn_name, len(args))
            data = self.encode(fn_name, *args)
            raw = await self.chain.call(self.address, data)
        except (RuntimeError, ValueError) as exc:
            raise ReadCallFailure(self.label, fn_name, str(exc)) from exc
        out_types = _types(fn.get("outputs"))
        if not out_types:
            return None
        try:
            values = _checksum_outputs(out_types, tuple(abi_decode(out_types, raw)))
        except Exception as exc:
            raise ReadCallFailure(self.label, fn_name, f"cannot decode {len(raw)} byte(s): {exc}") from exc
        return values[0] if len(values) == 1 else values

    async def transact(self, fn_name: str, *args: Any, timeout_s: float = config.CONFIRM_TIMEOUT_S) -> Dict[str, Any]:
        data = self.encode(fn_name, *args)
        tx_hash = await self.chain.send_transaction(self.address, data)
        receipt = await self.chain.wait_for_receipt(tx_hash, timeout_s=timeout_s)
        status = receipt.get("status")
        if status is not None and (int(status, 16) if isinstance(status, str) else int(status)) == 0:
            raise TransactionReverted(self.label, fn_name, tx_hash)
        return receipt


class ProxyBinder:
    def __init__(self, chain: Any) -> None:
        self.chain = chain

    def bind(self, abi: List[Dict[str, Any]], proxy_address: str, *, label: str = "") -> BoundContract:
        return BoundContract(self.chain, abi, proxy_address, label=label)
