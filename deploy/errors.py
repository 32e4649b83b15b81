from __future__ import annotations

from typing import Any, Optional


class DeployError(Exception):
    """Base class for everything the deployment core raises on purpose."""


class PlanError(DeployError, ValueError):
    pass


class ArtifactNotFound(DeployError):
    def __init__(self, name: str, detail: str = "") -> None:
        self.name = name
        self.detail = detail
        msg = f"artifact not found: {name}"
        if detail:
            msg = f"{msg} ({detail})"
        super().__init__(msg)


class DeploymentFailure(DeployError):
    """A creation tx confirmed (or failed to submit) without producing a contract."""

    def __init__(self, contract: str, reason: str, *, tx_hash: Optional[str] = None) -> None:
        self.contract = contract
        self.reason = reason
        self.tx_hash = tx_hash
        msg = f"deployment of {contract} failed: {reason}"
        if tx_hash:
            msg = f"{msg} (tx {tx_hash})"
        super().__init__(msg)


class ConfirmationTimeout(DeployError):
    def __init__(self, tx_hash: str, timeout_s: float, *, attempts: int = 1) -> None:
        self.tx_hash = tx_hash
        self.timeout_s = float(timeout_s)
        self.attempts = int(attempts)
        super().__init__(f"tx {tx_hash} not confirmed after {attempts} wait(s) of {self.timeout_s:.1f}s")


class VerificationError(DeployError):
    """Post-deployment check failure. Reported, never rolled back."""

    kind = "verification"

    def __init__(self, contract: str, check: str, message: str) -> None:
        self.contract = contract
        self.check = check
        super().__init__(f"{contract}.{check}: {message}")

    def to_dict(self) -> dict:
        return {"kind": self.kind, "contract": self.contract, "check": self.check, "message": str(self)}


class VerificationMismatch(VerificationError):
    kind = "mismatch"

    def __init__(self, contract: str, check: str, *, expected: Any, actual: Any) -> None:
        self.expected = expected
        self.actual = actual
        super().__init__(contract, check, f"expected {expected!r}, got {actual!r}")

    def to_dict(self) -> dict:
        out = super().to_dict()
        out["expected"] = _jsonable(self.expected)
        out["actual"] = _jsonable(self.actual)
        return out


class ReadCallFailure(VerificationError):
    kind = "read_failure"

    def __init__(self, contract: str, check: str, reason: str) -> None:
        self.reason = reason
        super().__init__(contract, check, reason)


class TransactionReverted(DeployError):
    def __init__(self, contract: str, fn_name: str, tx_hash: str) -> None:
        self.contract = contract
        self.fn_name = fn_name
        self.tx_hash = tx_hash
        super().__init__(f"{contract}.{fn_name} reverted (tx {tx_hash})")


def _jsonable(value: Any) -> Any:
    if isinstance(value, (bytes, bytearray)):
        return "0x" + bytes(value).hex()
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    return str(value)
