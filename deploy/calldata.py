from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Sequence, Tuple

from eth_abi import encode as abi_encode
from eth_utils import function_signature_to_4byte_selector, is_address, to_checksum_address

from deploy import config
from deploy.models import ProxyInitSpec


def selector_for(signature: str) -> bytes:
    """First 4 bytes of keccak256(signature)."""
    return bytes(function_signature_to_4byte_selector(signature))


@dataclass(frozen=True)
class InitStyle:
    name: str
    signature: str
    arg_types: Tuple[str, ...] = ()

    @property
    def selector(self) -> bytes:
        return selector_for(self.signature)


NO_ARG_INIT = InitStyle("no_arg", config.INIT_NO_ARG_SIGNATURE)
SINGLE_ADDRESS_INIT = InitStyle("single_address", config.INIT_SINGLE_ADDRESS_SIGNATURE, ("address",))

INIT_STYLES = {s.name: s for s in (NO_ARG_INIT, SINGLE_ADDRESS_INIT)}


def init_style(name: str) -> InitStyle:
    key = str(name or "").strip().lower()
    if key not in INIT_STYLES:
        raise ValueError(f"unknown init style: {name!r} (known: {sorted(INIT_STYLES)})")
    return INIT_STYLES[key]


def _normalize_arg(abi_type: str, value: Any) -> Any:
    if abi_type == "address":
        if not isinstance(value, str) or not is_address(value):
            raise ValueError(f"invalid address argument: {value!r}")
        return to_checksum_address(value)
    return value


def init_spec(style: InitStyle, args: Sequence[Any] = ()) -> ProxyInitSpec:
    args = list(args or [])
    if len(args) != len(style.arg_types):
        raise ValueError(f"{style.signature} takes {len(style.arg_types)} argument(s), got {len(args)}")
    if not style.arg_types:
        return ProxyInitSpec(selector=style.selector)
    values = [_normalize_arg(t, v) for t, v in zip(style.arg_types, args)]
    return ProxyInitSpec(selector=style.selector, encoded_args=abi_encode(list(style.arg_types), values))


def build_init_calldata(style: InitStyle, args: Sequence[Any] = ()) -> bytes:
    return init_spec(style, args).calldata
