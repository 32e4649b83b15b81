from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Protocol

from eth_abi import decode as abi_decode
from web3 import Account, Web3

from deploy import config
from infra import confirm, gas
from infra.metrics import METRICS
from infra.rpc import AsyncRPC, RPCError


logger = logging.getLogger(__name__)

_SELECTOR_ERROR = b"\x08\xc3\x79\xa0"
_SELECTOR_PANIC = b"\x4e\x48\x7b\x71"


def decode_revert_reason(data_hex: Optional[str]) -> Optional[str]:
    if not data_hex or data_hex == "0x":
        return None
    hx = data_hex[2:] if data_hex.startswith("0x") else data_hex
    try:
        raw = bytes.fromhex(hx)
    except ValueError:
        return None
    if raw.startswith(_SELECTOR_ERROR):
        try:
            reason = abi_decode(["string"], raw[4:])[0]
            return f"revert:{reason}"
        except Exception:
            return "revert:error"
    if raw.startswith(_SELECTOR_PANIC):
        try:
            code = abi_decode(["uint256"], raw[4:])[0]
            return f"panic:0x{int(code):x}"
        except Exception:
            return "panic"
    if len(raw) >= 4:
        # custom error, e.g. InvalidInitialization() = 0xf92ee8a9
        return f"custom_error:0x{raw[:4].hex()}"
    return None


class SubmitFailed(RuntimeError):
    """eth_sendRawTransaction failed. `tx_hash` is computed locally; the node
    may still have accepted the tx."""

    def __init__(self, tx_hash: str, reason: str) -> None:
        self.tx_hash = tx_hash
        self.reason = reason
        super().__init__(f"send of {tx_hash} failed: {reason}")


_ALREADY_KNOWN = ("already known", "known transaction", "already imported")


def _already_known(exc: RPCError) -> bool:
    text = str(exc).lower()
    return any(marker in text for marker in _ALREADY_KNOWN)


def _is_revert(exc: RPCError) -> bool:
    return bool(exc.data) or "revert" in str(exc).lower()


class CallReverted(RuntimeError):
    def __init__(self, to: str, reason: str) -> None:
        self.to = to
        self.reason = reason
        super().__init__(f"eth_call to {to} failed: {reason}")


class ChainClient(Protocol):
    """What the deployment core needs from a chain: submit, confirm, read."""

    @property
    def address(self) -> str:
        ...

    async def send_creation(self, data: bytes) -> str:
        ...

    async def send_transaction(self, to: str, data: bytes) -> str:
        ...

    async def wait_for_receipt(self, tx_hash: str, *, timeout_s: float) -> Dict[str, Any]:
        ...

    async def call(self, to: str, data: bytes) -> bytes:
        ...

    async def get_storage_at(self, address: str, slot: int) -> bytes:
        ...


class RpcChainClient:
    """ChainClient over JSON-RPC, signing locally with one private key."""

    def __init__(
        self,
        rpc: AsyncRPC,
        private_key: str,
        *,
        chain_id: Optional[int] = None,
        poll_interval_s: float = config.CONFIRM_POLL_INTERVAL_S,
        confirmations: int = config.CONFIRMATIONS,
        gas_multiplier: float = config.GAS_LIMIT_MULTIPLIER,
        gas_fallback: int = config.GAS_LIMIT_FALLBACK,
    ) -> None:
        self.rpc = rpc
        self._account = Account.from_key(private_key)
        self._chain_id = int(chain_id) if chain_id else None
        self._nonce: Optional[int] = None
        self.poll_interval_s = float(poll_interval_s)
        self.confirmations = int(confirmations)
        self.gas_multiplier = float(gas_multiplier)
        self.gas_fallback = int(gas_fallback)

    @property
    def address(self) -> str:
        return self._account.address

    async def chain_id(self) -> int:
        if self._chain_id is None:
            self._chain_id = await self.rpc.chain_id()
        return self._chain_id

    async def check_chain(self, expected: Optional[int]) -> int:
        actual = await self.rpc.chain_id()
        if expected is not None and actual != int(expected):
            raise RPCError(f"chain id mismatch: endpoint reports {actual}, configured {expected}", retryable=False)
        self._chain_id = actual
        return actual

    async def _next_nonce(self) -> int:
        if self._nonce is None:
            res = await self.rpc.call("eth_getTransactionCount", [self.address, "pending"])
            self._nonce = int(res, 16) if isinstance(res, str) else int(res)
        return self._nonce

    async def _send(self, tx: Dict[str, Any]) -> str:
        tx = dict(tx)
        tx["from"] = self.address
        tx.setdefault("value", 0)
        fees = await gas.get_fee_params(self.rpc)
        if not fees:
            raise RPCError("no fee data from eth_feeHistory / eth_gasPrice", retryable=False)
        tx.update(fees)
        estimate = await gas.estimate_gas(self.rpc, tx)
        tx["gas"] = gas.gas_limit(estimate, multiplier=self.gas_multiplier, fallback=self.gas_fallback)
        tx["chainId"] = await self.chain_id()
        tx["nonce"] = await self._next_nonce()
        tx.pop("from", None)

        signed = self._account.sign_transaction(tx)
        raw = getattr(signed, "raw_transaction", None) or signed.rawTransaction
        tx_hash = Web3.to_hex(signed.hash)
        try:
            # single attempt; the hash is already known locally
            await self.rpc.call("eth_sendRawTransaction", [Web3.to_hex(raw)], retries=0)
        except RPCError as exc:
            if not _already_known(exc):
                self._nonce = None
                METRICS.inc_reason("tx_send_fail_by_reason", "retryable" if exc.retryable else "rejected", 1)
                raise SubmitFailed(tx_hash, str(exc)) from exc
            logger.warning("node already has tx %s; treating as sent", tx_hash)
        self._nonce = int(tx["nonce"]) + 1
        METRICS.inc("tx_sent_total", 1)
        logger.debug("sent tx %s nonce=%s gas=%s", tx_hash, tx["nonce"], tx["gas"])
        return str(tx_hash)

    async def send_creation(self, data: bytes) -> str:
        return await self._send({"data": Web3.to_hex(data)})

    async def send_transaction(self, to: str, data: bytes) -> str:
        return await self._send({"to": Web3.to_checksum_address(to), "data": Web3.to_hex(data)})

    async def wait_for_receipt(self, tx_hash: str, *, timeout_s: float) -> Dict[str, Any]:
        return await confirm.wait_for_receipt(
            self.rpc,
            tx_hash,
            timeout_s=timeout_s,
            poll_interval_s=self.poll_interval_s,
            confirmations=self.confirmations,
        )

    async def call(self, to: str, data: bytes) -> bytes:
        try:
            res = await self.rpc.eth_call(Web3.to_checksum_address(to), Web3.to_hex(data), from_addr=self.address)
        except RPCError as exc:
            if exc.retryable or not _is_revert(exc):
                raise
            raise CallReverted(to, decode_revert_reason(exc.data) or str(exc)) from exc
        if not isinstance(res, str):
            raise CallReverted(to, f"unexpected eth_call result {res!r}")
        return bytes.fromhex(res[2:] if res.startswith("0x") else res)

    async def get_storage_at(self, address: str, slot: int) -> bytes:
        res = await self.rpc.call("eth_getStorageAt", [Web3.to_checksum_address(address), hex(int(slot)), "latest"])
        hx = str(res or "0x")
        return bytes.fromhex(hx[2:].rjust(64, "0"))
