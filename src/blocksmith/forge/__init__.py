"""
Forge integration - project discovery, builds, inline compiles and artifacts.
"""

from .artifacts import Artifact, link_bytecode, resolve_artifact
from .compile import compile_sol
from .project import BuildInfo, FoundryBase, ProjectConfig, find_root

__all__ = [
    "Artifact",
    "BuildInfo",
    "FoundryBase",
    "ProjectConfig",
    "compile_sol",
    "find_root",
    "link_bytecode",
    "resolve_artifact",
]
