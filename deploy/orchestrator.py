from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

from deploy.artifacts import ArtifactProvider
from deploy.binder import BoundContract, ProxyBinder
from deploy.calldata import build_init_calldata
from deploy.deployer import ContractDeployer
from deploy.errors import DeployError, PlanError
from deploy.models import ContractArtifact, DeploymentRecord, DeploymentResult
from deploy.plan import ContractSpec, DeploymentPlan
from deploy.verify import VerificationReport, verify_deployment
from infra.metrics import METRICS


logger = logging.getLogger(__name__)

COMPLETED = "completed"
ABORTED = "aborted"

# (node name, "implementation" | "proxy", record)
RecordHook = Callable[[str, str, DeploymentRecord], None]


@dataclass
class DeploymentOutcome:
    status: str
    result: DeploymentResult
    order: List[str] = field(default_factory=list)
    records: Dict[str, Dict[str, DeploymentRecord]] = field(default_factory=dict)
    verification: Optional[VerificationReport] = None
    error: Optional[DeployError] = None
    proxies: Dict[str, BoundContract] = field(default_factory=dict)

    @property
    def completed(self) -> bool:
        return self.status == COMPLETED

    @property
    def verified(self) -> bool:
        return self.verification is not None and self.verification.ok


class DeploymentOrchestrator:
    """Deploys a DeploymentPlan node by node, in topological order.

    Per node: implementation, init calldata from the dependencies' proxies,
    proxy(implementation, calldata), bind. The proxy constructor runs the
    initializer, so there is no window with an uninitialized proxy.

    One orchestrator is one run; its accumulators are not shared.
    """

    def __init__(
        self,
        plan: DeploymentPlan,
        artifacts: ArtifactProvider,
        chain: Any,
        *,
        deployer: Optional[ContractDeployer] = None,
        binder: Optional[ProxyBinder] = None,
        verify: bool = True,
        on_record: Optional[RecordHook] = None,
    ) -> None:
        self.plan = plan
        self.artifacts = artifacts
        self.chain = chain
        self.deployer = deployer or ContractDeployer(chain)
        self.binder = binder or ProxyBinder(chain)
        self.verify = bool(verify)
        self.on_record = on_record
        self._used = False

        self._implementations: Dict[str, str] = {}
        self._proxies: Dict[str, str] = {}
        self._records: Dict[str, Dict[str, DeploymentRecord]] = {}
        self._bound: Dict[str, BoundContract] = {}
        self._impl_bound: Dict[str, BoundContract] = {}
        self._init_calldata: Dict[str, bytes] = {}
        self._inflight: Optional[Tuple[str, str]] = None

    def _snapshot(self) -> DeploymentResult:
        return DeploymentResult(implementations=self._implementations, proxies=self._proxies)

    def _record(self, name: str, kind: str, record: DeploymentRecord) -> None:
        self._records.setdefault(name, {})[kind] = record
        if self.on_record is not None:
            self.on_record(name, kind, record)

    def _resolve_artifacts(self) -> Dict[str, ContractArtifact]:
        return {name: self.artifacts.get(name) for name in self.plan.artifact_names()}

    def _init_args(self, spec: ContractSpec) -> List[str]:
        args: List[str] = []
        for dep in spec.init_sources():
            addr = self._proxies.get(dep)
            if not addr:
                raise PlanError(f"{spec.name}: dependency {dep} has no proxy yet")
            args.append(addr)
        return args

    async def _deploy_node(self, spec: ContractSpec, artifacts: Dict[str, ContractArtifact]) -> None:
        for dep in spec.depends_on:
            if dep not in self._proxies:
                raise PlanError(f"{spec.name} scheduled before its dependency {dep}")

        artifact = artifacts[spec.artifact]
        self._inflight = (spec.name, "implementation")
        impl = await self.deployer.deploy(artifact)
        self._implementations[spec.name] = impl.contract_address
        self._record(spec.name, "implementation", impl)
        logger.info("%s implementation: %s", spec.name, impl.contract_address)

        calldata = build_init_calldata(spec.init_style, self._init_args(spec))
        self._init_calldata[spec.name] = calldata

        self._inflight = (spec.name, "proxy")
        proxy = await self.deployer.deploy(artifacts[self.plan.proxy_artifact], [impl.contract_address, calldata])
        self._bound[spec.name] = self.binder.bind(artifact.abi, proxy.contract_address, label=spec.name)
        self._impl_bound[spec.name] = self.binder.bind(artifact.abi, impl.contract_address, label=f"{spec.name}:impl")
        self._proxies[spec.name] = proxy.contract_address
        self._record(spec.name, "proxy", proxy)
        self._inflight = None
        logger.info("%s proxy: %s", spec.name, proxy.contract_address)

    def _record_unconfirmed(self, exc: DeployError) -> None:
        # the tx may still land; keep its hash next to the partial result
        tx_hash = getattr(exc, "tx_hash", None)
        if not tx_hash or self._inflight is None:
            return
        name, kind = self._inflight
        self._record(name, kind, DeploymentRecord(contract_address=None, transaction_hash=tx_hash, confirmed=False))

    def _outcome(self, status: str, order: List[str], **kwargs: Any) -> DeploymentOutcome:
        return DeploymentOutcome(
            status=status,
            result=self._snapshot(),
            order=order,
            records={k: dict(v) for k, v in self._records.items()},
            proxies=dict(self._bound),
            **kwargs,
        )

    async def run(self) -> DeploymentOutcome:
        if self._used:
            raise RuntimeError("DeploymentOrchestrator.run() may only be called once")
        self._used = True
        order = self.plan.order()
        logger.info("deployment order: %s", " -> ".join(order))

        try:
            artifacts = self._resolve_artifacts()
            for name in order:
                await self._deploy_node(self.plan.spec(name), artifacts)
        except DeployError as exc:
            METRICS.inc("deploy_runs_aborted", 1)
            logger.error("deployment aborted: %s", exc)
            self._record_unconfirmed(exc)
            if self._implementations:
                logger.error("already on-chain (not rolled back): %s", self._snapshot().to_dict())
            return self._outcome(ABORTED, order, error=exc)

        report: Optional[VerificationReport] = None
        if self.verify:
            report = await verify_deployment(
                self.plan,
                self._snapshot(),
                proxies=self._bound,
                implementations=self._impl_bound,
                init_calldata=self._init_calldata,
                chain=self.chain,
            )
        METRICS.inc("deploy_runs_completed", 1)
        return self._outcome(COMPLETED, order, verification=report)
