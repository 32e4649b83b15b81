from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional

from eth_utils.abi import collapse_if_tuple


ZERO_ADDRESS = "0x" + "00" * 20


def is_zero_address(addr: Optional[str]) -> bool:
    if not addr:
        return True
    try:
        return int(str(addr), 16) == 0
    except ValueError:
        return True


@dataclass(frozen=True)
class ContractArtifact:
    name: str
    abi: List[Dict[str, Any]]
    bytecode: bytes
    source: Optional[str] = None

    def constructor_types(self) -> List[str]:
        for entry in self.abi:
            if entry.get("type") == "constructor":
                return [collapse_if_tuple(i) for i in entry.get("inputs") or []]
        return []


@dataclass(frozen=True)
class DeploymentRecord:
    contract_address: Optional[str]
    transaction_hash: str
    confirmed: bool
    block_number: Optional[int] = None
    gas_used: Optional[int] = None

    def __post_init__(self) -> None:
        if self.confirmed and is_zero_address(self.contract_address):
            raise ValueError(f"confirmed record without contract address (tx {self.transaction_hash})")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "address": self.contract_address,
            "tx_hash": self.transaction_hash,
            "confirmed": bool(self.confirmed),
            "block_number": self.block_number,
            "gas_used": self.gas_used,
        }


@dataclass(frozen=True)
class ProxyInitSpec:
    selector: bytes
    encoded_args: bytes = b""

    def __post_init__(self) -> None:
        if len(self.selector) != 4:
            raise ValueError(f"selector must be 4 bytes, got {len(self.selector)}")

    @property
    def calldata(self) -> bytes:
        return bytes(self.selector) + bytes(self.encoded_args)


@dataclass(frozen=True)
class DeploymentResult:
    implementations: Mapping[str, str] = field(default_factory=dict)
    proxies: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "implementations", MappingProxyType(dict(self.implementations)))
        object.__setattr__(self, "proxies", MappingProxyType(dict(self.proxies)))

    @property
    def empty(self) -> bool:
        return not self.implementations and not self.proxies

    def to_dict(self) -> Dict[str, Dict[str, str]]:
        return {
            "proxies": dict(self.proxies),
            "implementations": dict(self.implementations),
        }
