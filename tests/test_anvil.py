"""
Launcher tests.

A small Python script stands in for anvil: depending on
FAKE_ANVIL_MODE it prints a banner and serves JSON-RPC, writes to
stderr, exits early, or hangs.
"""

from __future__ import annotations

import asyncio
import stat
import sys
from pathlib import Path

import pytest

from blocksmith.anvil import INFINITE_GAS, BannerInfo, LaunchOptions, launch_anvil
from blocksmith.errors import LaunchError
from blocksmith.foundry import Foundry, FoundryState

pytestmark = pytest.mark.skipif(sys.platform == "win32", reason="fake anvil is a shebang script")

FAKE_ANVIL = """\
import json
import os
import sys
import time
from http.server import BaseHTTPRequestHandler, HTTPServer

mode = os.environ.get("FAKE_ANVIL_MODE", "ok")
argv = sys.argv[1:]
chain_id = int(argv[argv.index("--chain-id") + 1]) if "--chain-id" in argv else 31337

if mode == "stderr":
    sys.stderr.write("error: address already in use\\n")
    sys.stderr.flush()
    time.sleep(30)
    sys.exit(1)
if mode in ("exit", "hang"):
    print("starting", flush=True)
    if mode == "hang":
        time.sleep(30)
    sys.exit(2)


class Handler(BaseHTTPRequestHandler):
    def do_POST(self):
        body = json.loads(self.rfile.read(int(self.headers["Content-Length"])))
        if body["method"] == "eth_blockNumber":
            print("eth_blockNumber", flush=True)
            print("    console.log:", flush=True)
            print("        hello from solidity", flush=True)
            print("", flush=True)
        result = {"eth_chainId": hex(chain_id), "anvil_getAutomine": True, "eth_blockNumber": "0x1"}.get(body["method"])
        payload = json.dumps({"jsonrpc": "2.0", "id": body["id"], "result": result}).encode()
        self.send_response(200)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(payload)))
        self.end_headers()
        self.wfile.write(payload)

    def log_message(self, *args):
        pass


server = HTTPServer(("127.0.0.1", 0), Handler)
print("Available Accounts", flush=True)
print("Mnemonic:          test test test junk", flush=True)
print("Derivation path:   m/44'/60'/0'/0/", flush=True)
print(f"Listening on 127.0.0.1:{server.server_port}", flush=True)
server.serve_forever()
"""


@pytest.fixture()
def fake_anvil(tmp_path: Path) -> str:
    script = tmp_path / "anvil"
    script.write_text(f"#!{sys.executable}\n{FAKE_ANVIL}", encoding="utf-8")
    script.chmod(script.stat().st_mode | stat.S_IEXEC)
    return str(script)


class TestLaunchOptions:
    def test_default_argv(self) -> None:
        argv = LaunchOptions(anvil="anvil").argv()
        assert argv == ["anvil", "--port", "0", "--accounts", "0"]

    def test_full_argv(self) -> None:
        options = LaunchOptions(
            anvil="anvil",
            port=8545,
            chain_id=1,
            block_sec=2,
            infinite_call_gas=True,
            fork_url="http://x",
            anvil_args=["--silent"],
        )
        assert options.argv() == [
            "anvil", "--port", "8545", "--accounts", "0",
            "--chain-id", "1", "--block-time", "2",
            "--gas-limit", INFINITE_GAS, "--fork-url", "http://x", "--silent",
        ]

    def test_explicit_gas_limit_wins(self) -> None:
        argv = LaunchOptions(anvil="anvil", gas_limit=30_000_000, infinite_call_gas=True).argv()
        assert argv[-2:] == ["--gas-limit", "30000000"]

    def test_timeout_from_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("BLOCKSMITH_LAUNCH_TIMEOUT", "5")
        assert LaunchOptions().timeout == 5.0
        monkeypatch.setenv("BLOCKSMITH_LAUNCH_TIMEOUT", "none")
        assert LaunchOptions().timeout is None


class TestBannerInfo:
    def test_parse(self) -> None:
        info = BannerInfo.parse("127.0.0.1:8545", ["Mnemonic: a b c", "Derivation path:   m/44'/60'/0'/0/"])
        assert info.endpoint == "http://127.0.0.1:8545"
        assert info.mnemonic == "a b c"
        assert info.derivation_path == "m/44'/60'/0'/0/"


class TestLaunch:
    @pytest.mark.asyncio
    async def test_ready(self, fake_anvil: str, monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
        monkeypatch.setenv("FAKE_ANVIL_MODE", "ok")
        log = tmp_path / "logs" / "anvil.log"
        node = await launch_anvil(anvil=fake_anvil, chain_id=1337, proc_log=log, timeout=10)
        try:
            assert node.running
            assert node.chain_id == 1337
            assert node.automine is True
            assert node.endpoint.startswith("http://127.0.0.1:")
            assert node.banner.mnemonic == "test test test junk"
            assert await node.client.chain_id() == 1337
        finally:
            await node.shutdown()
        assert not node.running
        assert await node.shutdown() == node.proc.returncode
        assert "Listening on 127.0.0.1:" in log.read_text(encoding="utf-8")

    @pytest.mark.asyncio
    async def test_chain_id_queried(self, fake_anvil: str, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("FAKE_ANVIL_MODE", "ok")
        node = await launch_anvil(anvil=fake_anvil, timeout=10)
        try:
            assert node.chain_id == 31337
        finally:
            await node.shutdown()

    @pytest.mark.asyncio
    async def test_stderr_first(self, fake_anvil: str, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("FAKE_ANVIL_MODE", "stderr")
        with pytest.raises(LaunchError, match="launch failed") as info:
            await launch_anvil(anvil=fake_anvil, timeout=10)
        assert "address already in use" in info.value.stderr
        assert info.value.argv[0] == fake_anvil

    @pytest.mark.asyncio
    async def test_exit_before_listening(self, fake_anvil: str, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("FAKE_ANVIL_MODE", "exit")
        with pytest.raises(LaunchError, match="launch failed") as info:
            await launch_anvil(anvil=fake_anvil, timeout=10)
        assert info.value.init == ["starting"]

    @pytest.mark.asyncio
    async def test_timeout(self, fake_anvil: str, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("FAKE_ANVIL_MODE", "hang")
        with pytest.raises(LaunchError, match="launch timed out") as info:
            await launch_anvil(anvil=fake_anvil, timeout=0.5)
        assert info.value.init == ["starting"]

    @pytest.mark.asyncio
    async def test_missing_executable(self, tmp_path: Path) -> None:
        with pytest.raises(LaunchError, match="anvil not found"):
            await launch_anvil(anvil=str(tmp_path / "no-such-anvil"))

    @pytest.mark.asyncio
    async def test_options_and_kwargs_conflict(self) -> None:
        with pytest.raises(TypeError):
            await launch_anvil(LaunchOptions(), port=1)


class TestFoundryLaunch:
    @pytest.mark.asyncio
    async def test_launch_detached(self, fake_anvil: str, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("FAKE_ANVIL_MODE", "ok")
        lines: list[str] = []
        foundry = await Foundry.launch(root=False, anvil=fake_anvil, timeout=10, info_log=False)
        foundry.on("console", lines.append)
        try:
            assert await foundry.client.block_number() == 1
            assert foundry.state is FoundryState.READY
            assert foundry.node is not None and foundry.node.running
            assert foundry.root is None
            for _ in range(50):
                if lines:
                    break
                await asyncio.sleep(0.05)
            assert lines == ["hello from solidity"]
        finally:
            await foundry.shutdown()
        assert not foundry.node.running

    @pytest.mark.asyncio
    async def test_failed_launch_marks_shutdown(self, fake_anvil: str, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("FAKE_ANVIL_MODE", "stderr")
        with pytest.raises(LaunchError):
            await Foundry.launch(root=False, anvil=fake_anvil, timeout=10, info_log=False)
