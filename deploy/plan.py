from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from deploy import config
from deploy.calldata import NO_ARG_INIT, SINGLE_ADDRESS_INIT, InitStyle, init_style
from deploy.errors import PlanError


@dataclass(frozen=True)
class ContractSpec:
    name: str
    artifact: str
    depends_on: Tuple[str, ...] = ()
    init_style: InitStyle = NO_ARG_INIT
    init_args_from: Optional[Tuple[str, ...]] = None
    version_accessor: Optional[str] = config.VERSION_ACCESSOR
    back_refs: Tuple[Tuple[str, str], ...] = ()
    expected_version: Optional[str] = None

    def init_sources(self) -> Tuple[str, ...]:
        """Dependencies whose proxy addresses become initializer arguments."""
        if self.init_args_from is not None:
            return tuple(self.init_args_from)
        return tuple(self.depends_on)


@dataclass
class DeploymentPlan:
    """Contracts to deploy plus the dependency edges between them.

    Validated on construction: unique names, known dependencies, no cycles,
    initializer arity matching the number of init sources.
    """

    specs: List[ContractSpec] = field(default_factory=list)
    proxy_artifact: str = config.PROXY_ARTIFACT

    def __post_init__(self) -> None:
        self.specs = list(self.specs)
        self._by_name: Dict[str, ContractSpec] = {}
        for spec in self.specs:
            if not spec.name:
                raise PlanError("contract spec without a name")
            if spec.name in self._by_name:
                raise PlanError(f"duplicate contract name: {spec.name}")
            self._by_name[spec.name] = spec
        for spec in self.specs:
            self._validate_spec(spec)
        self._order = self._toposort()

    def _validate_spec(self, spec: ContractSpec) -> None:
        for dep in spec.depends_on:
            if dep == spec.name:
                raise PlanError(f"{spec.name} depends on itself")
            if dep not in self._by_name:
                raise PlanError(f"{spec.name} depends on unknown contract {dep}")
        sources = spec.init_sources()
        for src in sources:
            if src not in spec.depends_on:
                raise PlanError(f"{spec.name} init argument {src} is not a dependency")
        if len(sources) != len(spec.init_style.arg_types):
            raise PlanError(
                f"{spec.name}: {spec.init_style.signature} takes {len(spec.init_style.arg_types)} "
                f"argument(s) but {len(sources)} init source(s) given"
            )
        for accessor, target in spec.back_refs:
            if not accessor:
                raise PlanError(f"{spec.name}: empty back-reference accessor")
            if target not in spec.depends_on:
                raise PlanError(f"{spec.name}: back-reference target {target} is not a dependency")

    def _toposort(self) -> List[str]:
        # Kahn's algorithm; ties resolved by declaration order.
        indegree = {s.name: len(set(s.depends_on)) for s in self.specs}
        dependents: Dict[str, List[str]] = {s.name: [] for s in self.specs}
        for spec in self.specs:
            for dep in set(spec.depends_on):
                dependents[dep].append(spec.name)
        position = {s.name: i for i, s in enumerate(self.specs)}
        ready = sorted((n for n, d in indegree.items() if d == 0), key=position.__getitem__)
        order: List[str] = []
        while ready:
            name = ready.pop(0)
            order.append(name)
            for child in dependents[name]:
                indegree[child] -= 1
                if indegree[child] == 0:
                    ready.append(child)
            ready.sort(key=position.__getitem__)
        if len(order) != len(self.specs):
            stuck = sorted(n for n, d in indegree.items() if d > 0)
            raise PlanError(f"dependency cycle among: {', '.join(stuck)}")
        return order

    def order(self) -> List[str]:
        return list(self._order)

    def spec(self, name: str) -> ContractSpec:
        try:
            return self._by_name[name]
        except KeyError:
            raise PlanError(f"unknown contract: {name}") from None

    def names(self) -> List[str]:
        return [s.name for s in self.specs]

    def artifact_names(self) -> List[str]:
        out: List[str] = []
        for name in self._order:
            art = self._by_name[name].artifact
            if art not in out:
                out.append(art)
        if self.proxy_artifact not in out:
            out.append(self.proxy_artifact)
        return out

    def edges(self) -> Iterable[Tuple[str, str]]:
        for spec in self.specs:
            for dep in spec.depends_on:
                yield spec.name, dep


def default_plan() -> DeploymentPlan:
    """Identity registry plus the two registries that point back at it."""
    backref = ((config.IDENTITY_BACKREF_ACCESSOR, "identity"),)
    return DeploymentPlan(
        specs=[
            ContractSpec(name="identity", artifact="IdentityRegistryUpgradeable"),
            ContractSpec(
                name="reputation",
                artifact="ReputationRegistryUpgradeable",
                depends_on=("identity",),
                init_style=SINGLE_ADDRESS_INIT,
                back_refs=backref,
            ),
            ContractSpec(
                name="validation",
                artifact="ValidationRegistryUpgradeable",
                depends_on=("identity",),
                init_style=SINGLE_ADDRESS_INIT,
                back_refs=backref,
            ),
        ]
    )


def _as_tuple(raw: Any) -> Tuple[str, ...]:
    if raw is None:
        return ()
    if isinstance(raw, str):
        return (raw,)
    return tuple(str(x) for x in raw)


def _spec_from_dict(raw: Dict[str, Any]) -> ContractSpec:
    name = str(raw.get("name") or "").strip()
    if not name:
        raise PlanError(f"contract entry without a name: {raw!r}")
    try:
        style = init_style(raw.get("init_style") or "no_arg")
    except ValueError as exc:
        raise PlanError(f"{name}: {exc}") from None
    init_from = raw.get("init_args_from")
    back_refs: List[Tuple[str, str]] = []
    for item in raw.get("back_refs") or []:
        if isinstance(item, dict):
            back_refs.append((str(item.get("accessor") or ""), str(item.get("target") or "")))
        elif isinstance(item, Sequence) and len(item) == 2:
            back_refs.append((str(item[0]), str(item[1])))
        else:
            raise PlanError(f"{name}: bad back_refs entry {item!r}")
    version_accessor = raw.get("version_accessor", config.VERSION_ACCESSOR)
    return ContractSpec(
        name=name,
        artifact=str(raw.get("artifact") or name),
        depends_on=_as_tuple(raw.get("depends_on")),
        init_style=style,
        init_args_from=_as_tuple(init_from) if init_from is not None else None,
        version_accessor=str(version_accessor) if version_accessor else None,
        back_refs=tuple(back_refs),
        expected_version=str(raw["expected_version"]) if raw.get("expected_version") is not None else None,
    )


def plan_from_dict(data: Dict[str, Any]) -> DeploymentPlan:
    contracts = data.get("contracts")
    if not isinstance(contracts, list) or not contracts:
        raise PlanError("plan has no contracts")
    for i, entry in enumerate(contracts):
        if not isinstance(entry, dict):
            raise PlanError(f"contracts[{i}] is not an object: {entry!r}")
    return DeploymentPlan(
        specs=[_spec_from_dict(c) for c in contracts],
        proxy_artifact=str(data.get("proxy_artifact") or config.PROXY_ARTIFACT),
    )


def load_plan(path: Path) -> DeploymentPlan:
    try:
        data = json.loads(Path(path).read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        raise PlanError(f"cannot read plan {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise PlanError(f"plan {path} is not a JSON object")
    return plan_from_dict(data)
