from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Sequence

from eth_abi import encode as abi_encode
from eth_abi.exceptions import EncodingError
from eth_utils import to_checksum_address

from deploy import config
from deploy.errors import ConfirmationTimeout, DeploymentFailure
from deploy.models import ContractArtifact, DeploymentRecord, is_zero_address
from infra.metrics import METRICS


logger = logging.getLogger(__name__)


def _int_field(receipt: Dict[str, Any], key: str) -> Optional[int]:
    raw = receipt.get(key)
    if raw is None:
        return None
    try:
        return int(raw, 16) if isinstance(raw, str) else int(raw)
    except ValueError:
        return None


def encode_constructor_args(artifact: ContractArtifact, args: Sequence[Any]) -> bytes:
    types = artifact.constructor_types()
    args = list(args or [])
    if len(types) != len(args):
        raise ValueError(f"{artifact.name} constructor takes {len(types)} argument(s), got {len(args)}")
    if not types:
        return b""
    values = [to_checksum_address(v) if t == "address" else v for t, v in zip(types, args)]
    return abi_encode(types, values)


class ContractDeployer:
    """Sends contract-creation txs and waits for them to land.

    Each wait is bounded by `confirm_timeout_s`. On timeout the same tx hash
    is waited on again, `confirm_retries` more times. The tx is never
    resubmitted.
    """

    def __init__(
        self,
        chain: Any,
        *,
        confirm_timeout_s: float = config.CONFIRM_TIMEOUT_S,
        confirm_retries: int = config.CONFIRM_RETRIES,
    ) -> None:
        self.chain = chain
        self.confirm_timeout_s = float(confirm_timeout_s)
        self.confirm_retries = max(0, int(confirm_retries))

    async def _confirm(self, name: str, tx_hash: str) -> Dict[str, Any]:
        attempts = 0
        while True:
            attempts += 1
            try:
                return await self.chain.wait_for_receipt(tx_hash, timeout_s=self.confirm_timeout_s)
            except ConfirmationTimeout:
                if attempts > self.confirm_retries:
                    METRICS.inc_reason("deploy_fail_by_reason", "confirmation_timeout", 1)
                    raise ConfirmationTimeout(tx_hash, self.confirm_timeout_s, attempts=attempts) from None
                logger.warning(
                    "%s: tx %s not confirmed within %.0fs, waiting again (%d/%d)",
                    name,
                    tx_hash,
                    self.confirm_timeout_s,
                    attempts,
                    self.confirm_retries,
                )

    async def deploy(self, artifact: ContractArtifact, constructor_args: Sequence[Any] = ()) -> DeploymentRecord:
        try:
            data = bytes(artifact.bytecode) + encode_constructor_args(artifact, constructor_args)
        except (EncodingError, TypeError, ValueError) as exc:
            raise DeploymentFailure(artifact.name, f"bad constructor arguments: {exc}") from exc
        try:
            tx_hash = await self.chain.send_creation(data)
        except RuntimeError as exc:
            METRICS.inc_reason("deploy_fail_by_reason", "submit_error", 1)
            raise DeploymentFailure(
                artifact.name, f"submit failed: {exc}", tx_hash=getattr(exc, "tx_hash", None)
            ) from exc
        METRICS.inc("deploy_tx_total", 1)
        logger.info("%s: creation tx %s submitted", artifact.name, tx_hash)

        try:
            with METRICS.timer("deploy_confirm_ms"):
                receipt = await self._confirm(artifact.name, tx_hash)
        except RuntimeError as exc:
            METRICS.inc_reason("deploy_fail_by_reason", "receipt_error", 1)
            raise DeploymentFailure(artifact.name, f"receipt unavailable: {exc}", tx_hash=tx_hash) from exc

        status = _int_field(receipt, "status")
        if status == 0:
            METRICS.inc_reason("deploy_fail_by_reason", "reverted", 1)
            raise DeploymentFailure(artifact.name, "creation reverted (status 0)", tx_hash=tx_hash)
        address = receipt.get("contractAddress")
        if is_zero_address(address):
            METRICS.inc_reason("deploy_fail_by_reason", "no_contract_address", 1)
            raise DeploymentFailure(artifact.name, "no contract address in receipt", tx_hash=tx_hash)

        record = DeploymentRecord(
            contract_address=to_checksum_address(address),
            transaction_hash=str(tx_hash),
            confirmed=True,
            block_number=_int_field(receipt, "blockNumber"),
            gas_used=_int_field(receipt, "gasUsed"),
        )
        METRICS.inc("deploy_confirmed_total", 1)
        logger.info(
            "%s: deployed at %s (block %s, gas %s)",
            artifact.name,
            record.contract_address,
            record.block_number,
            record.gas_used,
        )
        return record
