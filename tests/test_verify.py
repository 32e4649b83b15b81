import asyncio

import pytest
from conftest import SEL_INIT, SEL_INIT_ADDR

from deploy.errors import ReadCallFailure, VerificationMismatch
from deploy.orchestrator import COMPLETED, DeploymentOrchestrator
from deploy.plan import ContractSpec, DeploymentPlan, default_plan
from infra.rpc import RPCError


def _run(plan, provider, chain):
    return asyncio.run(DeploymentOrchestrator(plan, provider, chain).run())


def _checks(report):
    return {(f.contract, f.check) for f in report.failures}


def test_wrong_back_reference_is_reported_not_aborted(chain, provider) -> None:
    chain.wrong_backref = {"ValidationRegistryUpgradeable"}
    outcome = _run(default_plan(), provider, chain)
    assert outcome.status == COMPLETED
    report = outcome.verification
    assert not report.ok
    assert _checks(report) == {("validation", "backref:getIdentityRegistry")}
    failure = report.failures[0]
    assert isinstance(failure, VerificationMismatch)
    assert failure.expected == outcome.result.proxies["identity"]
    assert len(outcome.result.proxies) == 3


def test_failed_version_read_is_collected(chain, provider) -> None:
    chain.broken_reads = {"ReputationRegistryUpgradeable"}
    outcome = _run(default_plan(), provider, chain)
    assert outcome.status == COMPLETED
    report = outcome.verification
    assert ("reputation", "version") in _checks(report)
    assert all(isinstance(f, ReadCallFailure) for f in report.failures)
    assert "reputation" not in report.versions
    assert report.versions["identity"] == "1.0.0"


def test_reinitializable_proxy_is_flagged(chain, provider) -> None:
    chain.reinitializable = {"IdentityRegistryUpgradeable"}
    outcome = _run(default_plan(), provider, chain)
    assert _checks(outcome.verification) == {("identity", "initializer_not_locked")}


def test_expected_version_mismatch(chain, provider) -> None:
    base = default_plan()
    specs = [
        ContractSpec(
            name=s.name,
            artifact=s.artifact,
            depends_on=s.depends_on,
            init_style=s.init_style,
            back_refs=s.back_refs,
            expected_version="2.0.0" if s.name == "identity" else None,
        )
        for s in base.specs
    ]
    outcome = _run(DeploymentPlan(specs=specs), provider, chain)
    failures = outcome.verification.failures
    assert [(f.contract, f.check) for f in failures] == [("identity", "expected_version")]
    assert failures[0].to_dict()["expected"] == "2.0.0"


def test_implementation_slot_mismatch(chain, provider, monkeypatch) -> None:
    async def _empty_slot(address, slot):
        return bytes(32)

    monkeypatch.setattr(chain, "get_storage_at", _empty_slot)
    outcome = _run(default_plan(), provider, chain)
    assert {c for _, c in _checks(outcome.verification)} == {"implementation_slot"}
    assert len(outcome.verification.failures) == 3


def test_report_serializes(chain, provider) -> None:
    chain.wrong_backref = {"ReputationRegistryUpgradeable"}
    outcome = _run(default_plan(), provider, chain)
    data = outcome.verification.to_dict()
    assert data["ok"] is False
    assert data["checks"] > 0
    assert data["failures"][0]["kind"] == "mismatch"
    assert data["failures"][0]["contract"] == "reputation"


@pytest.mark.asyncio
async def test_bound_contract_unknown_function(chain, provider) -> None:
    outcome = await DeploymentOrchestrator(default_plan(), provider, chain, verify=False).run()
    with pytest.raises(ReadCallFailure):
        await outcome.proxies["identity"].call("getIdentityRegistry")


def test_node_error_on_initializer_check_is_not_a_pass(chain, provider, monkeypatch) -> None:
    real_call = chain.call

    async def _call(to, data):
        if bytes(data[:4]) in (SEL_INIT, SEL_INIT_ADDR):
            raise RPCError("rpc_error:eth_call:method handler crashed", retryable=False)
        return await real_call(to, data)

    monkeypatch.setattr(chain, "call", _call)
    outcome = _run(default_plan(), provider, chain)
    failures = outcome.verification.failures
    assert {(f.contract, f.check) for f in failures} == {
        ("identity", "initializer_locked"),
        ("reputation", "initializer_locked"),
        ("validation", "initializer_locked"),
    }
    assert all(isinstance(f, ReadCallFailure) for f in failures)
