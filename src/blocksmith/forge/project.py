"""
Project base - locates a Foundry project and its compiled output.

Single source of truth: ``<root>/<out>/<File>.sol/<Contract>.json``
(forge compilation artifacts). The project is compiled once per
``FoundryBase`` unless ``build(force=True)`` is requested.
"""

from __future__ import annotations

import logging
import os
import time
import tomllib
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path, PurePosixPath
from typing import Any, Optional, Union

from ..chain.abi import AbiLike
from ..config import CONFIG_NAME, get_forge_path, get_profile, load_project_env
from ..errors import ConfigError, UnknownContractError
from .artifacts import Artifact, ArtifactLike, load_artifact_file, resolve_artifact
from .runner import parse_build_output, run_forge

logger = logging.getLogger(__name__)

DEFAULT_CONFIG: dict[str, Any] = {
    "src": "src",
    "out": "out",
    "libs": ["lib"],
    "remappings": [],
}


@dataclass(frozen=True)
class BuildInfo:
    date: datetime
    duration: float


@dataclass
class ProjectConfig:
    src: str = "src"
    out: str = "out"
    libs: list[str] = field(default_factory=lambda: ["lib"])
    remappings: list[str] = field(default_factory=list)
    raw: dict[str, Any] = field(default_factory=dict)


def find_root(start: Optional[Path] = None) -> Path:
    """
    Locate the nearest directory containing ``foundry.toml``.

    Searches from ``start`` (default: cwd) upward.

    Raises:
        ConfigError: If no ancestor holds a project config
    """
    current = Path(start or Path.cwd()).resolve()
    for parent in [current, *current.parents]:
        if (parent / CONFIG_NAME).is_file():
            return parent
    raise ConfigError(f"Cannot find {CONFIG_NAME}", start=str(current))


def read_config(root: Path, profile: str) -> ProjectConfig:
    """
    Read ``[profile.<profile>]`` over ``[profile.default]`` and built-in defaults.

    Raises:
        ConfigError: If the profile does not exist or the file is not valid TOML
    """
    path = root / CONFIG_NAME
    try:
        with path.open("rb") as f:
            data = tomllib.load(f)
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"Invalid {CONFIG_NAME}", path=str(path), reason=str(exc)) from exc
    profiles = data.get("profile", {})
    if profile != "default" and profile not in profiles:
        raise ConfigError("unknown profile", profile=profile, available=sorted(profiles))
    merged = {**DEFAULT_CONFIG, **profiles.get("default", {}), **profiles.get(profile, {})}
    remappings = list(merged.get("remappings") or [])
    remap_file = root / "remappings.txt"
    if remap_file.is_file():
        for line in remap_file.read_text(encoding="utf-8").splitlines():
            line = line.strip()
            if line and not line.startswith("#") and line not in remappings:
                remappings.append(line)
    return ProjectConfig(
        src=str(merged["src"]),
        out=str(merged["out"]),
        libs=[str(x) for x in merged.get("libs") or []],
        remappings=remappings,
        raw=merged,
    )


class FoundryBase:
    """
    A Foundry project (or none, for inline and bytecode artifacts only).

    Args:
        root: Project root holding ``foundry.toml``; ``None`` for project-less use
        profile: Foundry profile name
        config: Parsed project config
        forge: Path to the ``forge`` executable
    """

    def __init__(
        self,
        root: Optional[Path],
        profile: str = "default",
        config: Optional[ProjectConfig] = None,
        forge: Optional[str] = None,
    ) -> None:
        self.root = root
        self.profile = profile
        self.config = config or ProjectConfig()
        self.forge = forge or get_forge_path()
        self.built: Optional[BuildInfo] = None

    @classmethod
    def load(
        cls,
        root: Optional[Union[str, Path]] = None,
        *,
        profile: Optional[str] = None,
        forge: Optional[str] = None,
    ) -> FoundryBase:
        """Open the project at (or above) ``root``; defaults to the cwd."""
        project_root = find_root(Path(root) if root else None)
        load_project_env(project_root)
        profile = profile or get_profile()
        return cls(project_root, profile, read_config(project_root, profile), forge)

    @classmethod
    def detached(cls, *, forge: Optional[str] = None) -> FoundryBase:
        """A base without a project: inline and bytecode artifacts only."""
        return cls(None, forge=forge)

    # ============ Paths ============

    def _require_root(self) -> Path:
        if self.root is None:
            raise ConfigError("no project root (file artifacts need foundry.toml)")
        return self.root

    @property
    def out_dir(self) -> Path:
        return self._require_root() / self.config.out

    @property
    def src_dir(self) -> Path:
        return self._require_root() / self.config.src

    def absolute_remappings(self) -> list[str]:
        """Remappings with targets made absolute, for compiling outside the project."""
        if self.root is None:
            return []
        out = []
        for remap in self.config.remappings:
            prefix, sep, target = remap.partition("=")
            if not sep:
                continue
            path = Path(target)
            if not path.is_absolute():
                path = self.root / target
            text = str(path)
            if target.endswith("/") and not text.endswith("/"):
                text += "/"
            out.append(f"{prefix}={text}")
        return out

    def lib_paths(self) -> list[str]:
        if self.root is None:
            return []
        return [str(self.root / lib) for lib in self.config.libs]

    # ============ Build ============

    async def build(self, force: bool = False) -> BuildInfo:
        """
        Compile the project with ``forge build`` (once, unless ``force``).

        Raises:
            BuildError: If forge reports any error-severity diagnostic
        """
        if self.built is not None and not force:
            return self.built
        root = self._require_root()
        env = {**os.environ, "FOUNDRY_PROFILE": self.profile}
        started = time.monotonic()
        args = ["build", "--format-json", "--root", str(root)]
        if force:
            args.append("--force")
        parse_build_output(await run_forge(args, self.forge, cwd=root, env=env))
        self.built = BuildInfo(date=datetime.now(), duration=time.monotonic() - started)
        logger.info("built %s in %.2fs", root, self.built.duration)
        return self.built

    # ============ Artifacts ============

    def find(self, file: str, contract: Optional[str] = None) -> Path:
        """
        Locate ``<out>/<file>.sol/<contract>.json``.

        ``file`` may be a partial path (``Foo``, ``sub/Foo``, ``src/sub/Foo.sol``);
        leading directories are dropped one at a time until a compiled
        output matches.

        Raises:
            UnknownContractError: If nothing matches up to the out root
        """
        name = file[:-4] if file.endswith(".sol") else file
        wanted = PurePosixPath(name + ".sol")
        contract = contract or PurePosixPath(name).name
        out = self.out_dir
        parts = wanted.parts
        for i in range(len(parts)):
            candidate = out.joinpath(*parts[i:], f"{contract}.json")
            if candidate.is_file():
                return candidate
        raise UnknownContractError("unknown contract", file=file, contract=contract, out=str(out))

    async def file_artifact(self, file: str, contract: Optional[str] = None) -> Artifact:
        await self.build()
        artifact = load_artifact_file(self.find(file, contract))
        logger.debug("resolved %s -> %s", file, artifact.cid)
        return artifact

    def artifacts(self) -> list[Artifact]:
        """Every compiled contract in the out dir (build info excluded)."""
        out = self.out_dir
        found = []
        for path in sorted(out.rglob("*.json")):
            if "build-info" in path.relative_to(out).parts:
                continue
            found.append(load_artifact_file(path))
        return found

    async def resolve_artifact(
        self,
        reference: Optional[ArtifactLike] = None,
        *,
        sol: Optional[Union[str, list[str]]] = None,
        file: Optional[str] = None,
        bytecode: Optional[Union[str, bytes]] = None,
        abi: Optional[AbiLike] = None,
        contract: Optional[str] = None,
        optimize: Optional[Union[bool, int]] = None,
    ) -> Artifact:
        return await resolve_artifact(
            self,
            reference,
            sol=sol,
            file=file,
            bytecode=bytecode,
            abi=abi,
            contract=contract,
            optimize=optimize,
        )

    async def compile(
        self,
        sol: Union[str, list[str]],
        *,
        contract: Optional[str] = None,
        optimize: Optional[Union[bool, int]] = None,
    ) -> Artifact:
        from .compile import compile_sol

        return await compile_sol(sol, contract=contract, base=self, optimize=optimize)

    def __repr__(self) -> str:
        return f"<{type(self).__name__} root={self.root} profile={self.profile}>"
