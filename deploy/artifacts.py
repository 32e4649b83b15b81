from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Protocol

from deploy import config
from deploy.errors import ArtifactNotFound
from deploy.models import ContractArtifact


PROJECT_ROOT = Path(__file__).resolve().parents[1]


class ArtifactProvider(Protocol):
    def get(self, name: str) -> ContractArtifact:
        ...


def _bytecode_hex(raw: Any) -> str:
    # Hardhat: "0x60..."; Foundry: {"object": "0x60...", ...}
    if isinstance(raw, dict):
        raw = raw.get("object")
    return str(raw or "").strip()


def artifact_from_json(name: str, data: Dict[str, Any], *, source: Optional[str] = None) -> ContractArtifact:
    abi = data.get("abi")
    if not isinstance(abi, list):
        raise ArtifactNotFound(name, f"no abi in {source or 'artifact'}")
    hx = _bytecode_hex(data.get("bytecode"))
    if hx.startswith("0x"):
        hx = hx[2:]
    if not hx:
        raise ArtifactNotFound(name, f"empty bytecode in {source or 'artifact'} (abstract contract or interface?)")
    if "__" in hx:
        raise ArtifactNotFound(name, f"unlinked library placeholder in {source or 'artifact'}")
    try:
        bytecode = bytes.fromhex(hx)
    except ValueError:
        raise ArtifactNotFound(name, f"bytecode is not hex in {source or 'artifact'}") from None
    return ContractArtifact(name=name, abi=abi, bytecode=bytecode, source=source)


class FileArtifactProvider:
    """Reads compiled Hardhat / Foundry JSON artifacts from disk.

    Candidate paths per search root, first hit wins:
      <root>/<Name>.json
      <root>/<Name>.sol/<Name>.json          (foundry out/)
      <root>/contracts/**/<Name>.json        (hardhat artifacts/)
    """

    def __init__(self, roots: Optional[Iterable[Path]] = None) -> None:
        if roots is None:
            roots = [PROJECT_ROOT / d for d in config.ARTIFACT_DIRS]
        self.roots: List[Path] = [Path(r) for r in roots]
        self._cache: Dict[str, ContractArtifact] = {}

    def _candidates(self, name: str) -> List[Path]:
        out: List[Path] = []
        for root in self.roots:
            if not root.is_dir():
                continue
            out.append(root / f"{name}.json")
            out.append(root / f"{name}.sol" / f"{name}.json")
            out.extend(sorted(p for p in root.rglob(f"{name}.json") if not p.name.endswith(".dbg.json")))
        return out

    def get(self, name: str) -> ContractArtifact:
        if name in self._cache:
            return self._cache[name]
        for path in self._candidates(name):
            if not path.is_file():
                continue
            try:
                data = json.loads(path.read_text(encoding="utf-8"))
            except (OSError, ValueError) as exc:
                raise ArtifactNotFound(name, f"unreadable {path}: {exc}") from exc
            if not isinstance(data, dict):
                continue
            artifact = artifact_from_json(name, data, source=str(path))
            self._cache[name] = artifact
            return artifact
        searched = ", ".join(str(r) for r in self.roots) or "<no roots>"
        raise ArtifactNotFound(name, f"searched {searched}")


class StaticArtifactProvider:
    def __init__(self, artifacts: Mapping[str, ContractArtifact]) -> None:
        self._artifacts = dict(artifacts)

    def get(self, name: str) -> ContractArtifact:
        try:
            return self._artifacts[name]
        except KeyError:
            raise ArtifactNotFound(name) from None
