"""Tests for environment configuration and the error hierarchy."""

from __future__ import annotations

import os
from pathlib import Path
from unittest.mock import patch

import pytest

from blocksmith.config import (
    DEFAULT_LAUNCH_TIMEOUT,
    get_anvil_path,
    get_forge_path,
    get_launch_timeout,
    get_profile,
    get_rpc_timeout,
    load_project_env,
)
from blocksmith.errors import (
    BlocksmithError,
    BuildError,
    DeploymentError,
    Diagnostic,
    LaunchError,
    RpcError,
    TransactionError,
    UnknownWalletError,
    UnownedWalletError,
)


class TestEnvironment:
    def test_defaults(self) -> None:
        with patch.dict(os.environ, {}, clear=True):
            assert get_anvil_path() == "anvil"
            assert get_forge_path() == "forge"
            assert get_profile() == "default"
            assert get_launch_timeout() == DEFAULT_LAUNCH_TIMEOUT

    def test_overrides(self) -> None:
        env = {
            "BLOCKSMITH_ANVIL": "/opt/anvil",
            "BLOCKSMITH_FORGE": "/opt/forge",
            "FOUNDRY_PROFILE": "ci",
            "BLOCKSMITH_RPC_TIMEOUT": "2.5",
        }
        with patch.dict(os.environ, env):
            assert get_anvil_path() == "/opt/anvil"
            assert get_forge_path() == "/opt/forge"
            assert get_profile() == "ci"
            assert get_rpc_timeout() == 2.5

    @pytest.mark.parametrize("value", ["0", "none", "OFF"])
    def test_unbounded_timeout(self, value: str) -> None:
        with patch.dict(os.environ, {"BLOCKSMITH_LAUNCH_TIMEOUT": value}):
            assert get_launch_timeout() is None

    def test_blank_timeout_uses_default(self) -> None:
        with patch.dict(os.environ, {"BLOCKSMITH_LAUNCH_TIMEOUT": "  "}):
            assert get_launch_timeout() == DEFAULT_LAUNCH_TIMEOUT

    def test_project_env_does_not_override(self, tmp_path: Path) -> None:
        (tmp_path / ".env").write_text("BLOCKSMITH_FORGE=/from/dotenv\n", encoding="utf-8")
        with patch.dict(os.environ, {"BLOCKSMITH_FORGE": "/from/shell"}):
            assert load_project_env(tmp_path)
            assert get_forge_path() == "/from/shell"

    def test_project_env_missing(self, tmp_path: Path) -> None:
        assert load_project_env(tmp_path) is False
        assert load_project_env(None) is False


class TestErrors:
    def test_context_attributes(self) -> None:
        exc = LaunchError("launch failed", stderr="boom", init=["a"])
        assert exc.stderr == "boom"
        assert exc.init == ["a"]
        assert exc.exit_code == 3
        assert str(exc) == "launch failed (stderr='boom', init=['a'])"

    def test_plain_message(self) -> None:
        assert str(BlocksmithError("plain")) == "plain"

    def test_hierarchy(self) -> None:
        assert issubclass(DeploymentError, TransactionError)
        assert issubclass(UnownedWalletError, UnknownWalletError)
        assert issubclass(BlocksmithError, RuntimeError)

    def test_build_error_filters_warnings(self) -> None:
        exc = BuildError("compile error", diagnostics=[Diagnostic("warning", "w"), Diagnostic("Error", "e")])
        assert [d.message for d in exc.errors] == ["e"]

    def test_revert_data(self) -> None:
        assert RpcError("reverted", data="0x1234").revert_data == b"\x12\x34"
        assert RpcError("reverted", data={"data": "0xab"}).revert_data == b"\xab"
        assert RpcError("reverted", data="Reverted").revert_data is None
        assert RpcError("other").revert_data is None

    def test_long_context_is_shortened(self) -> None:
        text = str(BlocksmithError("x", blob="y" * 500))
        assert text.endswith("...)")
        assert len(text) < 200
