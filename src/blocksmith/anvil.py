"""
Anvil launcher - spawn a local chain and wait until it is listening.

The launch is a race between two event sources on the child process:
a ``Listening on <host:port>`` line on stdout (success) and any data on
stderr (failure). The first to arrive decides. After success both
streams keep being drained so the child never blocks on a full pipe.
"""

from __future__ import annotations

import asyncio
import atexit
import logging
import os
import re
import signal
from dataclasses import dataclass, field
from typing import Optional

from .chain.rpc import RpcClient
from .config import get_anvil_path, get_launch_timeout
from .errors import LaunchError
from .sinks import LineSink, SinkSpec

logger = logging.getLogger(__name__)

LISTENING_RE = re.compile(r"Listening on (.*)")
MNEMONIC_RE = re.compile(r"^Mnemonic:\s*(.*)$")
DERIVATION_RE = re.compile(r"^Derivation path:\s*(.*)$")

INFINITE_GAS = "99999999999999999999999"
STREAM_LIMIT = 1 << 20


@dataclass
class LaunchOptions:
    """
    How to start anvil.

    Args:
        port: TCP port (0 picks a free one)
        chain_id: Chain id; queried after launch when not given
        block_sec: Interval mining period; ``None`` keeps automine
        gas_limit: Block gas limit
        infinite_call_gas: Use an effectively unbounded block gas limit
        fork_url: RPC endpoint to fork from
        anvil_args: Extra arguments appended verbatim
        proc_log: Sink for the child's output
        auto_close: Kill the child when this interpreter exits
        anvil: Executable (default from ``BLOCKSMITH_ANVIL``)
        timeout: Seconds to wait for the banner; ``None`` waits forever
    """

    port: int = 0
    chain_id: Optional[int] = None
    block_sec: Optional[int] = None
    gas_limit: Optional[int] = None
    infinite_call_gas: bool = False
    fork_url: Optional[str] = None
    anvil_args: list[str] = field(default_factory=list)
    proc_log: SinkSpec = None
    auto_close: bool = True
    anvil: Optional[str] = None
    timeout: Optional[float] = field(default_factory=get_launch_timeout)

    def argv(self) -> list[str]:
        args = [self.anvil or get_anvil_path(), "--port", str(self.port), "--accounts", "0"]
        if self.chain_id is not None:
            args += ["--chain-id", str(self.chain_id)]
        if self.block_sec:
            args += ["--block-time", str(self.block_sec)]
        if self.gas_limit is not None:
            args += ["--gas-limit", str(self.gas_limit)]
        elif self.infinite_call_gas:
            args += ["--gas-limit", INFINITE_GAS]
        if self.fork_url:
            args += ["--fork-url", self.fork_url]
        args += [str(x) for x in self.anvil_args]
        return args


@dataclass
class BannerInfo:
    host: str
    lines: list[str] = field(default_factory=list)
    mnemonic: Optional[str] = None
    derivation_path: Optional[str] = None

    @property
    def endpoint(self) -> str:
        return f"http://{self.host}"

    @classmethod
    def parse(cls, host: str, lines: list[str]) -> BannerInfo:
        info = cls(host=host, lines=list(lines))
        for line in lines:
            m = MNEMONIC_RE.match(line)
            if m:
                info.mnemonic = m.group(1).strip()
                continue
            m = DERIVATION_RE.match(line)
            if m:
                info.derivation_path = m.group(1).strip()
        return info


class AnvilNode:
    """A running anvil child plus its RPC connection."""

    def __init__(
        self,
        proc: asyncio.subprocess.Process,
        client: RpcClient,
        banner: BannerInfo,
        options: LaunchOptions,
        argv: list[str],
        chain_id: int,
        automine: bool,
        sink: LineSink,
        pumps: list[asyncio.Task],
    ) -> None:
        self.proc = proc
        self.client = client
        self.banner = banner
        self.options = options
        self.argv = argv
        self.chain_id = chain_id
        self.automine = automine
        self._sink = sink
        self._pumps = pumps
        self._closed = False
        self._atexit = None
        if options.auto_close:
            self._atexit = _exit_hook(proc)
            atexit.register(self._atexit)

    @property
    def endpoint(self) -> str:
        return self.banner.endpoint

    @property
    def pid(self) -> int:
        return self.proc.pid

    @property
    def running(self) -> bool:
        return self.proc.returncode is None

    async def shutdown(self) -> Optional[int]:
        """Kill the child, close the connection and wait for exit."""
        if self._closed:
            return self.proc.returncode
        self._closed = True
        if self._atexit is not None:
            atexit.unregister(self._atexit)
        _kill(self.proc)
        await self.client.aclose()
        code = await self.proc.wait()
        await asyncio.gather(*self._pumps, return_exceptions=True)
        self._sink.close()
        logger.info("anvil %s exited (%s)", self.pid, code)
        return code

    def __repr__(self) -> str:
        return f"<AnvilNode pid={self.pid} {self.endpoint} chain={self.chain_id}>"


def _kill(proc: asyncio.subprocess.Process) -> None:
    if proc.returncode is not None:
        return
    try:
        proc.kill()
    except ProcessLookupError:
        pass


def _exit_hook(proc: asyncio.subprocess.Process):
    pid = proc.pid

    def kill_at_exit() -> None:
        # the event loop may already be closed here
        if proc.returncode is not None:
            return
        try:
            os.kill(pid, getattr(signal, "SIGKILL", signal.SIGTERM))
        except (ProcessLookupError, PermissionError):
            pass

    return kill_at_exit


async def _pump(stream: asyncio.StreamReader, sink: LineSink) -> None:
    while True:
        raw = await stream.readline()
        if not raw:
            return
        sink(raw.decode("utf-8", errors="replace").rstrip("\r\n"))


async def _read_banner(stream: asyncio.StreamReader, lines: list[str], sink: LineSink) -> Optional[str]:
    while True:
        raw = await stream.readline()
        if not raw:
            return None
        line = raw.decode("utf-8", errors="replace").rstrip("\r\n")
        lines.append(line)
        sink(line)
        m = LISTENING_RE.search(line)
        if m:
            return m.group(1).strip()


async def await_banner(
    proc: asyncio.subprocess.Process,
    sink: LineSink,
    timeout: Optional[float],
) -> tuple[Optional[str], list[str], str, bool]:
    """
    Race the listening line against stderr output.

    Returns:
        (host, stdout lines seen, stderr text, timed out). ``host`` is
        None when stderr spoke first, the child exited, or the deadline
        passed
    """
    lines: list[str] = []
    banner = asyncio.ensure_future(_read_banner(proc.stdout, lines, sink))
    error = asyncio.ensure_future(proc.stderr.read(4096))
    pending = {banner, error}
    loop = asyncio.get_running_loop()
    deadline = None if timeout is None else loop.time() + timeout
    try:
        while pending:
            remaining = None if deadline is None else max(0.0, deadline - loop.time())
            done, pending = await asyncio.wait(
                pending, timeout=remaining, return_when=asyncio.FIRST_COMPLETED
            )
            if not done:
                return None, lines, "", True
            if error in done:
                data = error.result()
                if data:
                    return None, lines, data.decode("utf-8", errors="replace"), False
                # stderr closed without data; the child is exiting
            if banner in done:
                return banner.result(), lines, "", False
        return None, lines, "", False
    finally:
        for task in (banner, error):
            if not task.done():
                task.cancel()
        await asyncio.gather(banner, error, return_exceptions=True)


async def launch_anvil(options: Optional[LaunchOptions] = None, **kwargs) -> AnvilNode:
    """
    Start anvil and connect to it.

    Args:
        options: Launch options (or pass their fields as keyword arguments)

    Returns:
        AnvilNode with a live ``RpcClient``, chain id and automine flag

    Raises:
        LaunchError: If stderr spoke first, the child exited, or the banner wait timed out
    """
    if options is None:
        options = LaunchOptions(**kwargs)
    elif kwargs:
        raise TypeError("pass either options or keyword arguments")
    argv = options.argv()
    logger.info("launching %s", " ".join(argv))
    try:
        proc = await asyncio.create_subprocess_exec(
            *argv,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            limit=STREAM_LIMIT,
        )
    except FileNotFoundError as exc:
        raise LaunchError("anvil not found", argv=argv, stderr="", init=[]) from exc

    sink = LineSink(options.proc_log)
    try:
        host, lines, stderr, timed_out = await await_banner(proc, sink, options.timeout)
    except BaseException:
        _kill(proc)
        await proc.wait()
        sink.close()
        raise
    if host is None:
        _kill(proc)
        code = await proc.wait()
        sink.close()
        message = "launch timed out" if timed_out else "launch failed"
        raise LaunchError(message, argv=argv, stderr=stderr.strip(), init=lines, returncode=code)

    banner = BannerInfo.parse(host, lines)
    pumps = [
        asyncio.ensure_future(_pump(proc.stdout, sink)),
        asyncio.ensure_future(_pump(proc.stderr, sink)),
    ]
    client = RpcClient(banner.endpoint, chain_id=options.chain_id)
    try:
        chain_id = options.chain_id if options.chain_id is not None else await client.chain_id()
        automine = await client.get_automine()
    except BaseException:
        _kill(proc)
        await client.aclose()
        await proc.wait()
        await asyncio.gather(*pumps, return_exceptions=True)
        sink.close()
        raise
    node = AnvilNode(proc, client, banner, options, argv, chain_id, automine, sink, pumps)
    logger.info("anvil %s listening on %s (chain %s, automine=%s)", node.pid, host, chain_id, automine)
    return node


__all__ = [
    "AnvilNode",
    "BannerInfo",
    "INFINITE_GAS",
    "LaunchOptions",
    "await_banner",
    "launch_anvil",
]
