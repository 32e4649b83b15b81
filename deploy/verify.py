from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping

from eth_utils import to_checksum_address

from deploy import config
from deploy.binder import BoundContract
from deploy.errors import ReadCallFailure, VerificationError, VerificationMismatch
from deploy.models import DeploymentResult
from deploy.plan import ContractSpec, DeploymentPlan
from infra.chain import CallReverted


logger = logging.getLogger(__name__)


@dataclass
class VerificationReport:
    versions: Dict[str, Any] = field(default_factory=dict)
    links: Dict[str, Dict[str, str]] = field(default_factory=dict)
    failures: List[VerificationError] = field(default_factory=list)
    checks: int = 0

    @property
    def ok(self) -> bool:
        return not self.failures

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ok": self.ok,
            "checks": self.checks,
            "versions": {k: _plain(v) for k, v in self.versions.items()},
            "links": {k: dict(v) for k, v in self.links.items()},
            "failures": [f.to_dict() for f in self.failures],
        }


def _plain(value: Any) -> Any:
    if isinstance(value, (bytes, bytearray)):
        return "0x" + bytes(value).hex()
    return value


def _same_address(a: Any, b: Any) -> bool:
    return isinstance(a, str) and isinstance(b, str) and a.lower() == b.lower()


class _Verifier:
    def __init__(
        self,
        result: DeploymentResult,
        proxies: Mapping[str, BoundContract],
        implementations: Mapping[str, BoundContract],
        init_calldata: Mapping[str, bytes],
        chain: Any,
    ) -> None:
        self.result = result
        self.proxies = proxies
        self.implementations = implementations
        self.init_calldata = init_calldata
        self.chain = chain
        self.report = VerificationReport()

    def _fail(self, err: VerificationError) -> None:
        self.report.failures.append(err)

    async def _read(self, bound: BoundContract, name: str, check: str, fn_name: str) -> Any:
        self.report.checks += 1
        try:
            return await bound.call(fn_name)
        except ReadCallFailure as exc:
            self._fail(ReadCallFailure(name, check, exc.reason))
            raise

    async def versions(self, spec: ContractSpec) -> None:
        acc = spec.version_accessor
        if not acc:
            return
        try:
            first = await self._read(self.proxies[spec.name], spec.name, "version", acc)
            again = await self._read(self.proxies[spec.name], spec.name, "version", acc)
        except ReadCallFailure:
            return
        self.report.versions[spec.name] = first
        if first != again:
            self._fail(VerificationMismatch(spec.name, "version_unstable", expected=first, actual=again))
        if spec.expected_version is not None and str(first) != spec.expected_version:
            self._fail(VerificationMismatch(spec.name, "expected_version", expected=spec.expected_version, actual=first))
        impl = self.implementations.get(spec.name)
        if impl is None:
            return
        try:
            declared = await self._read(impl, spec.name, "implementation_version", acc)
        except ReadCallFailure:
            return
        if declared != first:
            self._fail(VerificationMismatch(spec.name, "version_mismatch", expected=declared, actual=first))

    async def back_refs(self, spec: ContractSpec) -> None:
        for accessor, target in spec.back_refs:
            try:
                actual = await self._read(self.proxies[spec.name], spec.name, "backref", accessor)
            except ReadCallFailure:
                continue
            self.report.links.setdefault(spec.name, {})[accessor] = actual
            expected = self.result.proxies.get(target)
            if not _same_address(actual, expected):
                self._fail(VerificationMismatch(spec.name, f"backref:{accessor}", expected=expected, actual=actual))

    async def implementation_slot(self, spec: ContractSpec) -> None:
        proxy = self.result.proxies[spec.name]
        expected = self.result.implementations.get(spec.name)
        self.report.checks += 1
        try:
            raw = await self.chain.get_storage_at(proxy, config.ERC1967_IMPLEMENTATION_SLOT)
        except RuntimeError as exc:
            self._fail(ReadCallFailure(spec.name, "implementation_slot", str(exc)))
            return
        actual = to_checksum_address("0x" + bytes(raw)[-20:].hex())
        if not _same_address(actual, expected):
            self._fail(VerificationMismatch(spec.name, "implementation_slot", expected=expected, actual=actual))

    async def initializer_locked(self, spec: ContractSpec) -> None:
        data = self.init_calldata.get(spec.name)
        if not data:
            return
        self.report.checks += 1
        try:
            await self.chain.call(self.result.proxies[spec.name], data)
        except CallReverted:
            return
        except RuntimeError as exc:
            self._fail(ReadCallFailure(spec.name, "initializer_locked", str(exc)))
            return
        self._fail(VerificationMismatch(spec.name, "initializer_not_locked", expected="revert", actual="success"))


async def verify_deployment(
    plan: DeploymentPlan,
    result: DeploymentResult,
    *,
    proxies: Mapping[str, BoundContract],
    implementations: Mapping[str, BoundContract],
    init_calldata: Mapping[str, bytes],
    chain: Any,
) -> VerificationReport:
    """Read back every deployed proxy and check the cross-contract invariants.

    Nothing here raises for a failed check: mismatches and failed reads are
    collected on the report, since the contracts are live either way.
    """
    v = _Verifier(result, proxies, implementations, init_calldata, chain)
    for name in plan.order():
        spec = plan.spec(name)
        await v.versions(spec)
        await v.back_refs(spec)
        await v.implementation_slot(spec)
        await v.initializer_locked(spec)
    report = v.report
    logger.info("verification: %d check(s), %d failure(s)", report.checks, len(report.failures))
    return report
