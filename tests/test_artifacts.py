import json
from pathlib import Path

import pytest

from deploy.artifacts import FileArtifactProvider, StaticArtifactProvider, artifact_from_json
from deploy.errors import ArtifactNotFound


ABI = [{"type": "constructor", "inputs": [{"name": "implementation", "type": "address"}, {"name": "_data", "type": "bytes"}]}]


def _write(path: Path, data) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data), encoding="utf-8")
    return path


def test_hardhat_layout(tmp_path: Path) -> None:
    _write(
        tmp_path / "contracts" / "Proxy.sol" / "ERC1967Proxy.json",
        {"contractName": "ERC1967Proxy", "abi": ABI, "bytecode": "0x6080604052"},
    )
    _write(tmp_path / "contracts" / "Proxy.sol" / "ERC1967Proxy.dbg.json", {"buildInfo": "x"})
    art = FileArtifactProvider([tmp_path]).get("ERC1967Proxy")
    assert art.bytecode == bytes.fromhex("6080604052")
    assert art.constructor_types() == ["address", "bytes"]
    assert art.source.endswith("ERC1967Proxy.json")


def test_foundry_layout(tmp_path: Path) -> None:
    _write(
        tmp_path / "ERC1967Proxy.sol" / "ERC1967Proxy.json",
        {"abi": ABI, "bytecode": {"object": "0x6080", "linkReferences": {}}},
    )
    provider = FileArtifactProvider([tmp_path / "missing", tmp_path])
    art = provider.get("ERC1967Proxy")
    assert art.bytecode == b"\x60\x80"
    assert provider.get("ERC1967Proxy") is art


def test_missing_artifact(tmp_path: Path) -> None:
    with pytest.raises(ArtifactNotFound) as exc_info:
        FileArtifactProvider([tmp_path]).get("IdentityRegistryUpgradeable")
    assert exc_info.value.name == "IdentityRegistryUpgradeable"
    with pytest.raises(ArtifactNotFound):
        StaticArtifactProvider({}).get("IdentityRegistryUpgradeable")


@pytest.mark.parametrize(
    "data",
    [
        {"bytecode": "0x6080"},
        {"abi": [], "bytecode": "0x"},
        {"abi": [], "bytecode": {"object": ""}},
        {"abi": [], "bytecode": "0x6080__$1234567890abcdef$__6080"},
        {"abi": [], "bytecode": "0xnothex"},
    ],
)
def test_unusable_artifacts_rejected(data) -> None:
    with pytest.raises(ArtifactNotFound):
        artifact_from_json("Broken", data)


def test_unreadable_json(tmp_path: Path) -> None:
    (tmp_path / "Broken.json").write_text("{not json", encoding="utf-8")
    with pytest.raises(ArtifactNotFound, match="unreadable"):
        FileArtifactProvider([tmp_path]).get("Broken")
