"""
Artifacts - normalized ABI + bytecode units ready for deployment.

Artifacts come from three places: a forge output file, an inline
Solidity snippet compiled on the fly, or raw bytecode supplied by the
caller. Bytecode is kept as 0x-hex text because unlinked bytecode
contains ``__$...$__`` library placeholders that are not valid hex.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any, Optional, Union

from ..chain.abi import AbiLike, Interface
from ..errors import BlocksmithError, UnresolvedLibraryError
from ..utils import from_hex, to_address, to_checksum_address

if TYPE_CHECKING:
    from .project import FoundryBase

_BYTECODE_RE = re.compile(r"^0x[0-9a-fA-F_$]*$")

LinkReferences = dict[str, dict[str, list[dict[str, int]]]]


@dataclass
class Artifact:
    abi: Interface
    bytecode: str
    contract: str
    origin: str
    deployed_bytecode: Optional[str] = None
    file: Optional[Path] = None
    sol: Optional[str] = None
    link_references: LinkReferences = field(default_factory=dict)

    @property
    def cid(self) -> str:
        """``origin:contract``, unique per compiled unit."""
        return f"{self.origin}:{self.contract}"

    @property
    def libraries(self) -> list[str]:
        return sorted({lib for entries in self.link_references.values() for lib in entries})

    @property
    def is_empty(self) -> bool:
        return len(self.bytecode) <= 2

    def __repr__(self) -> str:
        return f"<Artifact {self.cid} {len(self.bytecode) // 2 - 1} bytes>"


def _bytecode_text(value: Any) -> str:
    if isinstance(value, dict):
        value = value.get("object", "")
    if isinstance(value, (bytes, bytearray)):
        return "0x" + bytes(value).hex()
    text = str(value or "").strip()
    if not text.startswith("0x"):
        text = "0x" + text
    return text


def is_bytecode(value: str) -> bool:
    return bool(_BYTECODE_RE.match(value.strip()))


def load_artifact_json(data: dict[str, Any], contract: str, origin: str, file: Optional[Path] = None) -> Artifact:
    """Build an ``Artifact`` from forge output (file or ``--format-json`` entry)."""
    evm = data.get("evm", {})
    bytecode = data.get("bytecode", evm.get("bytecode", {}))
    deployed = data.get("deployedBytecode", evm.get("deployedBytecode", {}))
    links = bytecode.get("linkReferences", {}) if isinstance(bytecode, dict) else {}
    return Artifact(
        abi=Interface.from_abi(data.get("abi")),
        bytecode=_bytecode_text(bytecode),
        contract=contract,
        origin=origin,
        deployed_bytecode=_bytecode_text(deployed) if deployed else None,
        file=file,
        link_references=links,
    )


def load_artifact_file(path: Path) -> Artifact:
    """
    Load a forge output file (``out/<File>.sol/<Contract>.json``).

    The origin is the source path recorded in the artifact metadata,
    falling back to the output directory name.
    """
    with path.open("r", encoding="utf-8") as f:
        data = json.load(f)
    origin = source_path(data) or path.parent.name
    return load_artifact_json(data, path.stem, origin, file=path)


def source_path(data: dict[str, Any]) -> Optional[str]:
    metadata = data.get("metadata")
    if isinstance(metadata, str):
        try:
            metadata = json.loads(metadata)
        except ValueError:
            metadata = None
    if isinstance(metadata, dict):
        target = metadata.get("settings", {}).get("compilationTarget") or {}
        if target:
            return next(iter(target))
    ast = data.get("ast")
    if isinstance(ast, dict) and ast.get("absolutePath"):
        return ast["absolutePath"]
    return None


def link_bytecode(artifact: Artifact, libs: dict[str, Any]) -> tuple[str, dict[str, str]]:
    """
    Substitute library addresses into ``artifact.bytecode``.

    Args:
        artifact: Artifact whose ``link_references`` name the placeholders
        libs: Library name (or ``file:name``) -> address, wallet or contract

    Returns:
        (linked bytecode, {library: address} actually linked)

    Raises:
        UnresolvedLibraryError: If any referenced library was not supplied
    """
    code = artifact.bytecode[2:]
    linked: dict[str, str] = {}
    missing: list[str] = []
    for file, entries in artifact.link_references.items():
        for lib, spots in entries.items():
            target = libs.get(lib, libs.get(f"{file}:{lib}"))
            if target is None:
                missing.append(lib)
                continue
            address = to_address(target)
            hex_address = address[2:].lower()
            for spot in spots:
                start = spot["start"] * 2
                length = spot["length"] * 2
                code = code[:start] + hex_address + code[start + length :]
            linked[lib] = to_checksum_address(address)
    if missing:
        raise UnresolvedLibraryError(
            "unresolved library link",
            contract=artifact.contract,
            missing=sorted(set(missing)),
        )
    if "__$" in code:
        raise UnresolvedLibraryError(
            "unlinked placeholder in bytecode",
            contract=artifact.contract,
            missing=[],
        )
    return "0x" + code, linked


ArtifactLike = Union[Artifact, str, bytes, list, tuple, dict]


async def resolve_artifact(
    base: Optional[FoundryBase],
    reference: Optional[ArtifactLike] = None,
    *,
    sol: Optional[Union[str, list[str]]] = None,
    file: Optional[str] = None,
    bytecode: Optional[Union[str, bytes]] = None,
    abi: Optional[AbiLike] = None,
    contract: Optional[str] = None,
    optimize: Optional[Union[bool, int]] = None,
) -> Artifact:
    """
    Turn a contract reference into an ``Artifact``.

    ``reference`` may be an ``Artifact`` (returned as is), raw bytecode
    (``bytes`` or 0x-hex), inline Solidity (a string or list of lines) or
    a dict of the keyword arguments.
    """
    if isinstance(reference, Artifact):
        return reference
    if isinstance(reference, dict):
        return await resolve_artifact(base, **reference)
    if isinstance(reference, (bytes, bytearray)):
        bytecode = bytes(reference)
    elif isinstance(reference, (list, tuple)):
        sol = list(reference)
    elif isinstance(reference, str):
        if is_bytecode(reference):
            bytecode = reference
        else:
            sol = reference
    elif reference is not None:
        raise BlocksmithError("unknown artifact reference", reference=reference)

    if sol is not None:
        from .compile import compile_sol

        return await compile_sol(sol, contract=contract, base=base, optimize=optimize)
    if bytecode is not None:
        text = _bytecode_text(bytecode)
        if "$" not in text:
            from_hex(text)  # validate
        return Artifact(
            abi=Interface.from_abi(abi),
            bytecode=text,
            contract=contract or "Unnamed",
            origin="Bytecode",
        )
    if file is not None:
        if base is None:
            raise BlocksmithError("file artifacts need a project", file=file)
        return await base.file_artifact(file, contract)
    raise BlocksmithError("unknown artifact reference", reference=reference)


__all__ = [
    "Artifact",
    "ArtifactLike",
    "is_bytecode",
    "link_bytecode",
    "load_artifact_file",
    "load_artifact_json",
    "resolve_artifact",
    "source_path",
]
