import asyncio

import pytest

from deploy.errors import ConfirmationTimeout
from infra import confirm


class FakeRPC:
    """Receipt appears after `pending` polls; head block advances per eth_blockNumber."""

    def __init__(self, receipt, *, pending=0, head=10, flaky=0):
        self.receipt = receipt
        self.pending = pending
        self.head = head
        self.flaky = flaky
        self.polls = 0

    async def call(self, method, params, timeout_s=None):
        assert method == "eth_getTransactionReceipt"
        self.polls += 1
        if self.flaky > 0:
            self.flaky -= 1
            raise RuntimeError("rpc down")
        if self.pending > 0:
            self.pending -= 1
            return None
        return self.receipt

    async def get_block_number(self, timeout_s=None):
        self.head += 1
        return self.head


RECEIPT = {"transactionHash": "0xaa", "blockNumber": "0xa", "status": "0x1", "contractAddress": "0x" + "11" * 20}


def test_wait_returns_once_mined() -> None:
    rpc = FakeRPC(RECEIPT, pending=2)
    res = asyncio.run(confirm.wait_for_receipt(rpc, "0xaa", timeout_s=5, poll_interval_s=0.01))
    assert res == RECEIPT
    assert rpc.polls == 3


def test_wait_survives_transient_errors() -> None:
    rpc = FakeRPC(RECEIPT, flaky=2)
    res = asyncio.run(confirm.wait_for_receipt(rpc, "0xaa", timeout_s=5, poll_interval_s=0.01))
    assert res["status"] == "0x1"


def test_wait_times_out() -> None:
    rpc = FakeRPC(RECEIPT, pending=10_000)
    with pytest.raises(ConfirmationTimeout) as exc_info:
        asyncio.run(confirm.wait_for_receipt(rpc, "0xaa", timeout_s=0.05, poll_interval_s=0.01))
    assert exc_info.value.tx_hash == "0xaa"


def test_wait_for_confirmations() -> None:
    # mined at 10, head starts at 10 and grows by one per check
    rpc = FakeRPC(RECEIPT, head=9)
    res = asyncio.run(confirm.wait_for_receipt(rpc, "0xaa", timeout_s=5, poll_interval_s=0.01, confirmations=3))
    assert res == RECEIPT
    assert rpc.head >= 12


def test_unmined_receipt_is_none() -> None:
    rpc = FakeRPC({"transactionHash": "0xaa", "blockNumber": None})
    assert asyncio.run(confirm.fetch_receipt(rpc, "0xaa")) is None
