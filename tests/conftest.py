from typing import Any, Dict, List, Optional, Set

import pytest
from eth_abi import decode as abi_decode
from eth_abi import encode as abi_encode
from eth_utils import to_checksum_address

from deploy import config
from deploy.artifacts import StaticArtifactProvider
from deploy.calldata import selector_for
from deploy.errors import ConfirmationTimeout
from deploy.models import ContractArtifact, ZERO_ADDRESS
from infra.chain import CallReverted


DEPLOYER = to_checksum_address("0x" + "d0" * 20)

_VERSION_FN = {
    "type": "function",
    "name": "getVersion",
    "inputs": [],
    "outputs": [{"name": "", "type": "string"}],
    "stateMutability": "pure",
}

IDENTITY_ABI = [
    {"type": "function", "name": "initialize", "inputs": [], "outputs": [], "stateMutability": "nonpayable"},
    _VERSION_FN,
]

REGISTRY_ABI = [
    {
        "type": "function",
        "name": "initialize",
        "inputs": [{"name": "identityRegistry_", "type": "address"}],
        "outputs": [],
        "stateMutability": "nonpayable",
    },
    {
        "type": "function",
        "name": "getIdentityRegistry",
        "inputs": [],
        "outputs": [{"name": "", "type": "address"}],
        "stateMutability": "view",
    },
    _VERSION_FN,
]

PROXY_ABI = [
    {
        "type": "constructor",
        "inputs": [
            {"name": "implementation", "type": "address"},
            {"name": "_data", "type": "bytes"},
        ],
        "stateMutability": "payable",
    },
    {"type": "fallback", "stateMutability": "payable"},
]

SEL_INIT = selector_for("initialize()")
SEL_INIT_ADDR = selector_for("initialize(address)")
SEL_VERSION = selector_for("getVersion()")
SEL_IDENTITY = selector_for("getIdentityRegistry()")


def make_artifact(name: str, abi: List[Dict[str, Any]]) -> ContractArtifact:
    return ContractArtifact(name=name, abi=abi, bytecode=bytes.fromhex("6080604052") + name.encode())


def registry_artifacts(extra: Optional[Dict[str, List[Dict[str, Any]]]] = None) -> Dict[str, ContractArtifact]:
    arts = {
        "IdentityRegistryUpgradeable": make_artifact("IdentityRegistryUpgradeable", IDENTITY_ABI),
        "ReputationRegistryUpgradeable": make_artifact("ReputationRegistryUpgradeable", REGISTRY_ABI),
        "ValidationRegistryUpgradeable": make_artifact("ValidationRegistryUpgradeable", REGISTRY_ABI),
        config.PROXY_ARTIFACT: make_artifact(config.PROXY_ARTIFACT, PROXY_ABI),
    }
    for name, abi in (extra or {}).items():
        arts[name] = make_artifact(name, abi)
    return arts


class FakeChain:
    """In-memory chain: creations, ERC-1967 style proxies, OZ-style initializers.

    Knobs:
      fail_creation_at   creation indices (1-based) whose receipt has no contractAddress
      revert_creation_at creation indices whose receipt has status 0
      stalls             number of receipt waits that time out before succeeding
      versions           artifact name -> getVersion() result
      broken_reads       artifact names whose getVersion() reverts
      reinitializable    artifact names whose initializer has no guard
      wrong_backref      artifact names that store a bogus identity address
    """

    def __init__(self, artifacts: Dict[str, ContractArtifact]) -> None:
        self._address = DEPLOYER
        self.artifacts = artifacts
        self.contracts: Dict[str, Dict[str, Any]] = {}
        self.receipts: Dict[str, Dict[str, Any]] = {}
        self.log: List[tuple] = []
        self.waits: List[str] = []
        self.fail_creation_at: Set[int] = set()
        self.revert_creation_at: Set[int] = set()
        self.stalls = 0
        self.versions: Dict[str, str] = {}
        self.broken_reads: Set[str] = set()
        self.reinitializable: Set[str] = set()
        self.wrong_backref: Set[str] = set()
        self._n = 0

    @property
    def address(self) -> str:
        return self._address

    async def check_chain(self, expected: Optional[int]) -> int:
        return int(expected) if expected is not None else 31337

    @property
    def creations(self) -> int:
        return sum(1 for entry in self.log if entry[0] == "create")

    def _next(self) -> tuple:
        self._n += 1
        return "0x%064x" % self._n, to_checksum_address("0x%040x" % (0x1000 + self._n)), self._n

    def _match(self, data: bytes) -> ContractArtifact:
        best = None
        for art in self.artifacts.values():
            if data.startswith(art.bytecode) and (best is None or len(art.bytecode) > len(best.bytecode)):
                best = art
        if best is None:
            raise AssertionError("unknown bytecode")
        return best

    def _code_of(self, state: Dict[str, Any]) -> str:
        if state.get("impl"):
            return self.contracts[state["impl"]]["artifact"]
        return state["artifact"]

    def _execute(self, state: Dict[str, Any], data: bytes, *, static: bool) -> bytes:
        code = self._code_of(state)
        storage = state["storage"] if not static else dict(state["storage"])
        sel = bytes(data[:4])
        if sel in (SEL_INIT, SEL_INIT_ADDR):
            if storage.get("initialized") and code not in self.reinitializable:
                raise CallReverted(state["address"], "custom_error:0xf92ee8a9")
            storage["initialized"] = True
            if sel == SEL_INIT_ADDR:
                ident = abi_decode(["address"], bytes(data[4:]))[0]
                if code in self.wrong_backref:
                    ident = "0x" + "ee" * 20
                storage["identity"] = ident
            return b""
        if sel == SEL_VERSION:
            if code in self.broken_reads:
                raise CallReverted(state["address"], "revert:boom")
            return abi_encode(["string"], [self.versions.get(code, "1.0.0")])
        if sel == SEL_IDENTITY:
            return abi_encode(["address"], [storage.get("identity") or ZERO_ADDRESS])
        raise CallReverted(state["address"], "unknown selector 0x" + sel.hex())

    async def send_creation(self, data: bytes) -> str:
        art = self._match(bytes(data))
        tx_hash, address, n = self._next()
        self.log.append(("create", art.name, address))
        receipt: Dict[str, Any] = {"transactionHash": tx_hash, "blockNumber": hex(n), "gasUsed": hex(21000 + n)}
        if n in self.fail_creation_at:
            receipt.update({"status": "0x1", "contractAddress": None})
        elif n in self.revert_creation_at:
            receipt.update({"status": "0x0", "contractAddress": address})
        else:
            state: Dict[str, Any] = {"address": address, "artifact": art.name, "impl": None, "storage": {}}
            if art.name == config.PROXY_ARTIFACT:
                impl, init = abi_decode(["address", "bytes"], bytes(data[len(art.bytecode):]))
                state["impl"] = impl.lower()
                try:
                    if init:
                        self._execute(state, init, static=False)
                except CallReverted:
                    receipt.update({"status": "0x0", "contractAddress": None})
                    self.receipts[tx_hash] = receipt
                    return tx_hash
            else:
                # implementation constructors lock their initializers
                state["storage"]["initialized"] = True
            self.contracts[address.lower()] = state
            receipt.update({"status": "0x1", "contractAddress": address})
        self.receipts[tx_hash] = receipt
        return tx_hash

    async def send_transaction(self, to: str, data: bytes) -> str:
        tx_hash, _, n = self._next()
        self.log.append(("tx", to, bytes(data[:4]).hex()))
        status = "0x1"
        try:
            self._execute(self.contracts[to.lower()], bytes(data), static=False)
        except CallReverted:
            status = "0x0"
        self.receipts[tx_hash] = {"transactionHash": tx_hash, "blockNumber": hex(n), "status": status}
        return tx_hash

    async def wait_for_receipt(self, tx_hash: str, *, timeout_s: float) -> Dict[str, Any]:
        self.waits.append(tx_hash)
        if self.stalls > 0:
            self.stalls -= 1
            raise ConfirmationTimeout(tx_hash, timeout_s)
        return self.receipts[tx_hash]

    async def call(self, to: str, data: bytes) -> bytes:
        state = self.contracts.get(str(to).lower())
        if state is None:
            raise CallReverted(to, "no code")
        return self._execute(state, bytes(data), static=True)

    async def get_storage_at(self, address: str, slot: int) -> bytes:
        state = self.contracts.get(str(address).lower())
        if state and state.get("impl") and slot == config.ERC1967_IMPLEMENTATION_SLOT:
            return bytes(12) + bytes.fromhex(state["impl"][2:])
        return bytes(32)


@pytest.fixture
def artifacts() -> Dict[str, ContractArtifact]:
    return registry_artifacts()


@pytest.fixture
def provider(artifacts) -> StaticArtifactProvider:
    return StaticArtifactProvider(artifacts)


@pytest.fixture
def chain(artifacts) -> FakeChain:
    return FakeChain(artifacts)
