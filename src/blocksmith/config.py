"""
Runtime configuration.

Values come from the environment (optionally seeded from a project
``.env`` file); explicit launch options always win over these defaults.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

DEFAULT_ANVIL = "anvil"
DEFAULT_FORGE = "forge"
DEFAULT_PROFILE = "default"
DEFAULT_LAUNCH_TIMEOUT = 30.0
DEFAULT_RPC_TIMEOUT = 30.0

CONFIG_NAME = "foundry.toml"

# Mainnet ENS registry, also present on forks
ENS_REGISTRY = "0x00000000000C2E074eC69A0dFb2997BA6C7d2e1e"


def load_project_env(root: Optional[Path]) -> bool:
    """Load ``<root>/.env`` without overriding variables already set."""
    if root is None:
        return False
    env_path = Path(root) / ".env"
    if not env_path.is_file():
        return False
    return load_dotenv(env_path, override=False)


def get_anvil_path() -> str:
    return os.environ.get("BLOCKSMITH_ANVIL", DEFAULT_ANVIL)


def get_forge_path() -> str:
    return os.environ.get("BLOCKSMITH_FORGE", DEFAULT_FORGE)


def get_profile() -> str:
    return os.environ.get("FOUNDRY_PROFILE", DEFAULT_PROFILE)


def get_launch_timeout() -> Optional[float]:
    """Seconds to wait for the anvil banner; ``None`` waits forever."""
    return _get_seconds("BLOCKSMITH_LAUNCH_TIMEOUT", DEFAULT_LAUNCH_TIMEOUT)


def get_rpc_timeout() -> Optional[float]:
    return _get_seconds("BLOCKSMITH_RPC_TIMEOUT", DEFAULT_RPC_TIMEOUT)


def _get_seconds(name: str, default: float) -> Optional[float]:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    if raw.strip().lower() in ("0", "none", "off"):
        return None
    return float(raw)
