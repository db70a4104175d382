"""
Inline Solidity compilation.

A snippet is written to its own throwaway forge project under the
system temp dir and compiled with the owning project's remappings, so
inline code can import project files::

    artifact = await compile_sol('''
        import "@src/Counter.sol";
        contract Probe { function f() external pure returns (uint) { return 1; } }
    ''', base=project)
"""

from __future__ import annotations

import logging
import re
import shutil
import tempfile
from pathlib import Path, PurePosixPath
from typing import TYPE_CHECKING, Any, Optional, Union

from ..errors import BuildError, UnknownContractError
from ..utils import id_hash
from .artifacts import Artifact, load_artifact_json
from .runner import parse_build_output, run_forge

if TYPE_CHECKING:
    from .project import FoundryBase

logger = logging.getLogger(__name__)

TMP_DIR = Path(tempfile.gettempdir()) / "blocksmith"

SPDX_LINE = "// SPDX-License-Identifier: UNLICENSED"
PRAGMA_LINE = "pragma solidity >=0.0.0;"

_CONTRACT_RE = re.compile(r"^\s*(?:abstract\s+)?contract\s+([A-Za-z_$][\w$]*)", re.MULTILINE)
_LIBRARY_RE = re.compile(r"^\s*library\s+([A-Za-z_$][\w$]*)", re.MULTILINE)


def prepare_source(sol: Union[str, list[str]], smart: bool = True) -> str:
    """Join lines and add the license/pragma header when missing."""
    if isinstance(sol, (list, tuple)):
        sol = "\n".join(sol)
    if not smart:
        return sol
    header = []
    if not re.search(r"^\s*// SPDX-License-Identifier:", sol, re.MULTILINE):
        header.append(SPDX_LINE)
    if not re.search(r"^\s*pragma\s+solidity\b", sol, re.MULTILINE):
        header.append(PRAGMA_LINE)
    if header:
        sol = "\n".join(header) + "\n" + sol
    return sol


def detect_contract(sol: str) -> Optional[str]:
    """Last declared contract, else the last library."""
    contracts = _CONTRACT_RE.findall(sol)
    if contracts:
        return contracts[-1]
    libraries = _LIBRARY_RE.findall(sol)
    if libraries:
        return libraries[-1]
    return None


def _entry(value: Any) -> dict[str, Any]:
    # forge nests each contract as [{"contract": {...}, "version": ...}]
    if isinstance(value, list):
        value = value[0] if value else {}
    if isinstance(value, dict) and "contract" in value:
        value = value["contract"]
    return value


def find_compiled(contracts: dict[str, Any], file_name: str, contract: str) -> dict[str, Any]:
    """
    Pick ``contract`` from the ``contracts`` map of ``forge --format-json``.

    Raises:
        UnknownContractError: If the compiled output has no such contract
    """
    available = []
    for source, entries in contracts.items():
        for name, value in entries.items():
            available.append(f"{source}:{name}")
            if name == contract and PurePosixPath(source).name == file_name:
                return _entry(value)
    raise UnknownContractError("expected contract", contract=contract, available=available)


async def compile_sol(
    sol: Union[str, list[str]],
    *,
    contract: Optional[str] = None,
    base: Optional[FoundryBase] = None,
    optimize: Optional[Union[bool, int]] = None,
    smart: bool = True,
    forge: Optional[str] = None,
) -> Artifact:
    """
    Compile inline Solidity with forge.

    Args:
        sol: Source text or list of lines
        contract: Contract to return (default: last contract, else last library)
        base: Project whose remappings and lib paths are used
        optimize: ``True`` to enable the optimizer, or the optimizer run count
        smart: Add SPDX/pragma lines when missing
        forge: ``forge`` executable (default: the base's, else config)

    Returns:
        Artifact with origin ``InlineCode{<hash>}``

    Raises:
        BuildError: On compile errors, or when no contract name can be found
    """
    source = prepare_source(sol, smart)
    contract = contract or detect_contract(source)
    if not contract:
        raise BuildError("no contract found", diagnostics=[])

    digest = id_hash(source).hex()[:16]
    # one project dir per call; concurrent compiles of a snippet share the digest
    (TMP_DIR / digest).mkdir(parents=True, exist_ok=True)
    root = Path(tempfile.mkdtemp(prefix=f"{contract}-", dir=TMP_DIR / digest))
    src_dir = root / "src"
    src_dir.mkdir()
    file_name = f"{contract}.sol"
    (src_dir / file_name).write_text(source, encoding="utf-8")

    args = ["build", "--format-json", "--root", str(root)]
    if base is not None:
        for remap in base.absolute_remappings():
            args += ["--remappings", remap]
        for lib in base.lib_paths():
            args += ["--lib-paths", lib]
    if optimize:
        args.append("--optimize")
        if not isinstance(optimize, bool):
            args += ["--optimizer-runs", str(int(optimize))]

    forge = forge or (base.forge if base is not None else None)
    try:
        output = parse_build_output(await run_forge(args, forge, cwd=root))
    finally:
        for name in ("out", "cache"):
            shutil.rmtree(root / name, ignore_errors=True)
    data = find_compiled(output.get("contracts") or {}, file_name, contract)
    artifact = load_artifact_json(data, contract, f"InlineCode{{{digest}}}", file=src_dir / file_name)
    artifact.sol = source
    logger.debug("compiled %s (%d bytes)", artifact.cid, len(artifact.bytecode) // 2 - 1)
    return artifact


__all__ = [
    "PRAGMA_LINE",
    "SPDX_LINE",
    "TMP_DIR",
    "compile_sol",
    "detect_contract",
    "find_compiled",
    "prepare_source",
]
