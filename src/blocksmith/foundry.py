"""
Foundry - a launched (or attached) anvil node plus a registry of the
wallets and contracts created on it.

Every entity is tracked by address in ``accounts``; wallet names live
in ``wallets``. Pretty output replaces known addresses with their
display names::

    async with await Foundry.launch() as foundry:
        c = await foundry.deploy(sol="contract C { uint256 public x; function set(uint256 v) external { x = v; } }")
        await foundry.confirm(c.set(2))
        assert await c.x() == 2
"""

from __future__ import annotations

import asyncio
import enum
import inspect
import logging
import weakref
from collections import defaultdict
from typing import Any, Callable, ClassVar, Iterable, Optional, Union

import click

from .anvil import AnvilNode, LaunchOptions, launch_anvil
from .chain.abi import AbiLike, Fragment, Indexed, Interface, ParsedLog, decode_log
from .chain.contract import Contract
from .chain.rpc import RpcClient
from .chain.tx import CREATE2_DEPLOYER, PendingTransaction, create2_address, receipt_gas_used, receipt_status
from .errors import (
    BlocksmithError,
    ConfigError,
    DeploymentError,
    EmptyBytecodeError,
    NotReadyError,
    TransactionError,
    UnknownWalletError,
    UnownedWalletError,
)
from .forge.artifacts import Artifact, ArtifactLike, link_bytecode
from .forge.project import FoundryBase, find_root
from .sinks import LineSink, SinkSpec
from .utils import (
    from_hex,
    is_address,
    keccak256,
    parse_ether,
    take_hash,
    to_address,
    to_bytes32,
    to_checksum_address,
    to_hex,
)
from .wallets import DevWallet, ImpersonatedWallet

logger = logging.getLogger(__name__)

DEFAULT_WALLET = "admin"
DEFAULT_ETHER = 10000

TAG_DEPLOY = click.style("DEPLOY", fg="magenta")
TAG_TX = click.style("TX", fg="yellow")
TAG_LOG = click.style("LOG", fg="cyan")

EVENTS = ("deploy", "tx", "console", "shutdown")

WalletLike = Union[str, DevWallet]


class FoundryState(enum.Enum):
    UNSTARTED = "unstarted"
    LAUNCHING = "launching"
    READY = "ready"
    SHUTDOWN = "shutdown"


class DeployedContract(Contract):
    """A contract deployed through a ``Foundry``; ``str()`` gives its display name."""

    def __init__(
        self,
        address: str,
        abi: AbiLike,
        runner: Any,
        *,
        display_name: str,
        artifact: Artifact,
        receipt: dict[str, Any],
        code: bytes,
        libs: Optional[dict[str, str]] = None,
    ) -> None:
        super().__init__(address, abi, runner)
        self.display_name = display_name
        self.artifact = artifact
        self.receipt = receipt
        self.code = code
        self.libs = libs or {}

    @property
    def info(self) -> dict[str, Any]:
        return {
            "contract": self.artifact.contract,
            "origin": self.artifact.origin,
            "address": self.address,
            "gas": receipt_gas_used(self.receipt),
            "size": len(self.code),
        }

    def __str__(self) -> str:
        return self.display_name

    def __repr__(self) -> str:
        return f"<DeployedContract {self.display_name} {self.address}>"


class Named:
    """Stand-in for a known entity inside pretty-printed values."""

    def __init__(self, name: str, color: str = "green") -> None:
        self.name = name
        self.color = color

    def __str__(self) -> str:
        return click.style(self.name, fg=self.color)

    def __repr__(self) -> str:
        return str(self)


def render(value: Any, nested: bool = False) -> str:
    if isinstance(value, Named):
        return str(value)
    if isinstance(value, Indexed):
        return click.style(repr(to_hex(value.hash)), fg="cyan")
    if isinstance(value, dict):
        if not value:
            return "{}"
        return "{ " + ", ".join(f"{k}: {render(v, True)}" for k, v in value.items()) + " }"
    if isinstance(value, (list, tuple)):
        return "[ " + ", ".join(render(v, True) for v in value) + " ]"
    if isinstance(value, (bytes, bytearray)):
        text = to_hex(value)
        return repr(text) if nested else text
    if isinstance(value, str) and nested:
        return repr(value)
    return str(value)


class _ConsoleFilter:
    """Pick ``console.log`` output out of anvil's trace lines."""

    def __init__(self, emit: Callable[[str], None]) -> None:
        self._emit = emit
        self._active = False

    def __call__(self, line: str) -> None:
        text = line.strip()
        if text == "console.log:":
            self._active = True
        elif self._active and text and line[:1].isspace():
            self._emit(text)
        else:
            self._active = False


class Foundry(FoundryBase):
    """
    Deployment registry bound to one node.

    Create with ``Foundry.launch()`` (spawns anvil) or ``Foundry.connect()``
    (attaches to a running node); ``shutdown()`` ends either.
    """

    _live: ClassVar[weakref.WeakSet] = weakref.WeakSet()

    def __init__(self, base: Optional[FoundryBase] = None, *, info_log: SinkSpec = True) -> None:
        base = base or FoundryBase.detached()
        super().__init__(base.root, base.profile, base.config, base.forge)
        self.built = base.built
        self.state = FoundryState.UNSTARTED
        self.node: Optional[AnvilNode] = None
        self.client: Optional[RpcClient] = None
        self.endpoint: Optional[str] = None
        self.chain_id: Optional[int] = None
        self.automine = True
        self.accounts: dict[str, Union[DevWallet, DeployedContract]] = {}
        self.wallets: dict[str, DevWallet] = {}
        self.event_map: dict[bytes, Fragment] = {}
        self.info_log = LineSink(info_log)
        self._proc_log: Optional[LineSink] = None
        self._console = _ConsoleFilter(lambda line: self._emit("console", line))
        self._listeners: dict[str, list[Callable[..., Any]]] = defaultdict(list)
        self._wallet_counter = 0
        Foundry._live.add(self)

    # ============ Lifecycle ============

    @staticmethod
    def _open_base(root: Any, profile: Optional[str], forge: Optional[str]) -> FoundryBase:
        if root is False:
            return FoundryBase.detached(forge=forge)
        if root is None:
            try:
                root = find_root()
            except ConfigError:
                logger.debug("no foundry.toml above cwd; inline and bytecode artifacts only")
                return FoundryBase.detached(forge=forge)
        return FoundryBase.load(root, profile=profile, forge=forge)

    @classmethod
    async def launch(
        cls,
        *,
        root: Any = None,
        profile: Optional[str] = None,
        forge: Optional[str] = None,
        wallets: Iterable[str] = (DEFAULT_WALLET,),
        info_log: SinkSpec = True,
        proc_log: SinkSpec = None,
        **launch_options: Any,
    ) -> Foundry:
        """
        Build the project (when there is one), start anvil and create wallets.

        Args:
            root: Project root; ``None`` searches from the cwd, ``False`` skips the project
            profile: Foundry profile (default ``FOUNDRY_PROFILE``)
            forge: ``forge`` executable
            wallets: Names of wallets to create and fund
            info_log: Sink for DEPLOY/TX/LOG lines
            proc_log: Sink for anvil's own output
            **launch_options: ``LaunchOptions`` fields (port, chain_id, block_sec, ...)

        Raises:
            BuildError: If the project does not compile (anvil is not started)
            LaunchError: If anvil fails to start
        """
        self = cls(cls._open_base(root, profile, forge), info_log=info_log)
        self.state = FoundryState.LAUNCHING
        try:
            if self.root is not None:
                await self.build()
            self._proc_log = LineSink(proc_log)
            options = LaunchOptions(proc_log=self._on_proc_line, **launch_options)
            node = await launch_anvil(options)
        except BaseException:
            self._close_sinks()
            self.state = FoundryState.SHUTDOWN
            raise
        self.node = node
        self._attach(node.client, node.endpoint, node.chain_id, node.automine)
        await self._ready(wallets)
        return self

    @classmethod
    async def connect(
        cls,
        endpoint: str,
        *,
        root: Any = False,
        profile: Optional[str] = None,
        forge: Optional[str] = None,
        wallets: Iterable[str] = (DEFAULT_WALLET,),
        info_log: SinkSpec = True,
        chain_id: Optional[int] = None,
        client: Optional[RpcClient] = None,
    ) -> Foundry:
        """Attach to a running node; ``shutdown()`` then only closes the connection."""
        self = cls(cls._open_base(root, profile, forge), info_log=info_log)
        self.state = FoundryState.LAUNCHING
        client = client or RpcClient(endpoint, chain_id=chain_id)
        try:
            chain_id = await client.chain_id()
            automine = await client.get_automine()
        except BaseException:
            await client.aclose()
            self._close_sinks()
            self.state = FoundryState.SHUTDOWN
            raise
        self._attach(client, endpoint, chain_id, automine)
        await self._ready(wallets)
        return self

    def _attach(self, client: RpcClient, endpoint: str, chain_id: int, automine: bool) -> None:
        self.client = client
        self.endpoint = endpoint
        self.chain_id = chain_id
        self.automine = automine

    async def _ready(self, wallets: Iterable[str]) -> None:
        try:
            created = [await self.ensure_wallet(name) for name in wallets]
        except BaseException:
            await self.shutdown()
            raise
        self.state = FoundryState.READY
        self._log("Anvil", self.pretty({"chain": self.chain_id, "endpoint": self.endpoint, "wallets": created}))

    def _on_proc_line(self, line: str) -> None:
        if self._proc_log is not None:
            self._proc_log(line)
        self._console(line)

    def _close_sinks(self) -> None:
        if self._proc_log is not None:
            self._proc_log.close()
        self.info_log.close()

    async def shutdown(self) -> None:
        """Stop the node (or drop the connection); later calls do nothing."""
        if self.state is FoundryState.SHUTDOWN:
            return
        self.state = FoundryState.SHUTDOWN
        try:
            if self.node is not None:
                await self.node.shutdown()
            elif self.client is not None:
                await self.client.aclose()
        finally:
            self._emit("shutdown")
            self._close_sinks()
            Foundry._live.discard(self)

    async def __aenter__(self) -> Foundry:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.shutdown()

    def _require_ready(self) -> RpcClient:
        if self.state is not FoundryState.READY or self.client is None:
            raise NotReadyError("foundry is not ready", state=self.state.value)
        return self.client

    def _require_client(self) -> RpcClient:
        if self.client is None or self.state is FoundryState.SHUTDOWN:
            raise NotReadyError("foundry is not connected", state=self.state.value)
        return self.client

    # ============ Events ============

    def on(self, event: str, handler: Callable[..., Any]) -> Callable[..., Any]:
        """Register ``handler`` for ``deploy``, ``tx``, ``console`` or ``shutdown``."""
        if event not in EVENTS:
            raise ValueError(f"Unknown event: {event!r}")
        self._listeners[event].append(handler)
        return handler

    def off(self, event: str, handler: Callable[..., Any]) -> None:
        if handler in self._listeners.get(event, []):
            self._listeners[event].remove(handler)

    def _emit(self, event: str, *args: Any) -> None:
        for handler in list(self._listeners.get(event, [])):
            handler(*args)

    # ============ Ownership ============

    def owns(self, entity: Any) -> bool:
        address = getattr(entity, "address", None)
        if not is_address(address):
            return False
        return self.accounts.get(to_checksum_address(address)) is entity

    @classmethod
    def of(cls, entity: Any) -> Optional[Foundry]:
        """The live registry that created ``entity``, if any."""
        for foundry in list(cls._live):
            if foundry.owns(entity):
                return foundry
        return None

    def _track(self, entity: Union[DevWallet, DeployedContract]) -> None:
        previous = self.accounts.get(entity.address)
        if previous is not None and previous is not entity:
            logger.debug("replacing %s at %s", previous, entity.address)
        self.accounts[entity.address] = entity

    # ============ Wallets ============

    async def ensure_wallet(self, wallet: WalletLike, *, ether: Union[int, str, float] = DEFAULT_ETHER) -> DevWallet:
        """
        Get or create a named wallet.

        Args:
            wallet: Wallet name, or a wallet owned by this registry
            ether: Balance to fund a new wallet with (0 skips funding)

        Raises:
            UnownedWalletError: If given a wallet from another registry
            UnknownWalletError: If given an address or a non-string
        """
        if isinstance(wallet, DevWallet):
            if self.owns(wallet):
                return wallet
            raise UnownedWalletError("unowned wallet", wallet=wallet.address)
        if not isinstance(wallet, str) or not wallet or is_address(wallet):
            raise UnknownWalletError("expected wallet name", name=wallet)
        existing = self.wallets.get(wallet)
        if existing is not None:
            return existing
        client = self._require_client()
        created = DevWallet.from_name(wallet, client, self.automine)
        if ether:
            await client.set_balance(created.address, parse_ether(ether))
        existing = self.wallets.get(wallet)
        if existing is not None:
            return existing
        self.wallets[wallet] = created
        self._track(created)
        logger.debug("wallet %s = %s", wallet, created.address)
        return created

    async def create_wallet(self, *, prefix: str = "random", ether: Union[int, str, float] = DEFAULT_ETHER) -> DevWallet:
        while True:
            self._wallet_counter += 1
            name = f"{prefix}{self._wallet_counter}"
            if name not in self.wallets:
                return await self.ensure_wallet(name, ether=ether)

    def require_wallet(self, wallet: Any, backup: Any = None) -> DevWallet:
        """
        Look up an existing wallet by handle, address or name.

        Raises:
            UnownedWalletError: If the handle belongs to another registry
            UnknownWalletError: If nothing matches
        """
        if isinstance(wallet, DevWallet):
            if self.owns(wallet):
                return wallet
            raise UnownedWalletError("unowned wallet", wallet=wallet.address)
        if is_address(wallet):
            found = self.accounts.get(to_checksum_address(wallet))
            if isinstance(found, DevWallet):
                return found
            raise UnknownWalletError("unknown wallet", address=wallet)
        if isinstance(wallet, str) and wallet:
            found = self.wallets.get(wallet)
            if found is not None:
                return found
            raise UnknownWalletError("unknown wallet", name=wallet)
        if backup is not None:
            return self.require_wallet(backup)
        raise UnknownWalletError("expected wallet", wallet=wallet)

    async def impersonate_wallet(self, address: str) -> ImpersonatedWallet:
        client = self._require_client()
        address = to_checksum_address(to_address(address))
        existing = self.accounts.get(address)
        if isinstance(existing, ImpersonatedWallet):
            return existing
        await client.impersonate_account(address)
        wallet = ImpersonatedWallet(address, client, self.automine)
        self._track(wallet)
        return wallet

    # ============ Deploy ============

    @staticmethod
    def _library_map(libs: Union[None, dict[str, Any], Iterable[Any]]) -> dict[str, Any]:
        if not libs:
            return {}
        if isinstance(libs, dict):
            return dict(libs)
        return {lib.artifact.contract: lib for lib in libs}

    async def deploy(
        self,
        reference: Optional[ArtifactLike] = None,
        *,
        wallet: Optional[WalletLike] = None,
        args: Iterable[Any] = (),
        libs: Union[None, dict[str, Any], Iterable[Any]] = None,
        salt: Union[None, int, bytes, str] = None,
        value: int = 0,
        gas: Optional[int] = None,
        silent: bool = False,
        **artifact_like: Any,
    ) -> DeployedContract:
        """
        Resolve, link and deploy a contract.

        Args:
            reference: Artifact, inline Solidity, bytecode, or a dict of artifact fields
            wallet: Deployer (name or wallet; default ``admin``)
            args: Constructor arguments
            libs: Library name -> deployed contract or address
            salt: Deploy through the CREATE2 factory with this salt
            value: Wei sent to the constructor
            gas: Gas limit (estimated when omitted)
            silent: Skip the DEPLOY/LOG output
            **artifact_like: ``sol``, ``file``, ``bytecode``, ``abi``, ``contract``, ``optimize``

        Raises:
            EmptyBytecodeError: If the artifact has no bytecode
            UnresolvedLibraryError: If a linked library was not supplied
            DeploymentError: If the creation transaction reverted
        """
        client = self._require_ready()
        deployer = await self.ensure_wallet(wallet or DEFAULT_WALLET)
        artifact = await self.resolve_artifact(reference, **artifact_like)
        if artifact.is_empty:
            raise EmptyBytecodeError("empty bytecode", contract=artifact.contract, origin=artifact.origin)
        bytecode, linked = link_bytecode(artifact, self._library_map(libs))
        initcode = from_hex(bytecode) + artifact.abi.encode_deploy(list(args))

        if salt is None:
            tx = await deployer.send_transaction({"to": None, "data": initcode, "value": value, "gas": gas})
            receipt = await tx.wait()
            address = receipt.get("contractAddress")
        else:
            address = create2_address(CREATE2_DEPLOYER, salt, initcode)
            tx = await deployer.send_transaction(
                {"to": CREATE2_DEPLOYER, "data": to_bytes32(salt) + initcode, "value": value, "gas": gas}
            )
            receipt = await tx.wait()
        if receipt_status(receipt) == 0 or not address:
            raise DeploymentError("deployment reverted", contract=artifact.contract, tx=tx.hash)

        address = to_checksum_address(address)
        code = await client.get_code(address)
        if not code:
            raise DeploymentError("no code at deployed address", contract=artifact.contract, address=address)
        contract = DeployedContract(
            address,
            artifact.abi,
            deployer,
            display_name=f"{artifact.contract}<{take_hash(address)}>",
            artifact=artifact,
            receipt=receipt,
            code=code,
            libs=linked,
        )
        self._track(contract)
        self._index_events(artifact.abi)
        self._emit("deploy", contract)
        if not silent:
            self._log(
                TAG_DEPLOY,
                self.pretty(deployer),
                artifact.origin,
                self.pretty(contract),
                {"address": address, "gas": receipt_gas_used(receipt), "size": len(code)},
            )
            self._dump_logs(artifact.abi, receipt)
        return contract

    def _index_events(self, abi: Interface) -> None:
        for frag in abi.events:
            if not frag.anonymous:
                self.event_map.setdefault(frag.topic, frag)

    # ============ Transactions ============

    async def confirm(self, tx: Any, *, silent: bool = False, **extra: Any) -> dict[str, Any]:
        """
        Wait for a transaction and print what it did.

        Args:
            tx: ``PendingTransaction`` or an awaitable producing one
            silent: Skip the TX/LOG output
            **extra: Extra fields shown alongside the decoded arguments

        Returns:
            The receipt

        Raises:
            TransactionError: If the transaction reverted
        """
        self._require_ready()
        if inspect.isawaitable(tx):
            tx = await tx
        receipt = await tx.wait()
        if receipt_status(receipt) == 0:
            raise TransactionError("transaction reverted", tx=tx.hash)
        self._emit("tx", tx, receipt)
        if silent:
            return receipt
        fields: dict[str, Any] = {"gas": receipt_gas_used(receipt), **extra}
        to = receipt.get("to")
        target = self.accounts.get(to_checksum_address(to)) if to else None
        if isinstance(target, DeployedContract):
            call = target.interface.parse_transaction(getattr(tx, "data", b""))
            if call is not None:
                fields.update(call.args)
                label = f"{target.display_name}.{call.signature}"
            else:
                label = f"{target.display_name}.<unknown>"
            self._log(TAG_TX, self.pretty(receipt.get("from")), label, self.pretty(fields))
            self._dump_logs(target.interface, receipt)
        else:
            self._log(TAG_TX, self.pretty(receipt.get("from")), ">>", self.pretty(to), self.pretty(fields))
        return receipt

    def parse_log(self, log: dict[str, Any], abi: Optional[Interface] = None) -> Optional[ParsedLog]:
        """Decode with ``abi`` first, then with any event seen in a deployment."""
        if abi is not None:
            parsed = abi.parse_log(log)
            if parsed is not None:
                return parsed
        topics = log.get("topics") or []
        if not topics:
            return None
        frag = self.event_map.get(from_hex(topics[0]))
        if frag is None:
            return None
        return decode_log(frag, log)

    def _dump_logs(self, abi: Optional[Interface], receipt: dict[str, Any]) -> None:
        for log in receipt.get("logs") or []:
            parsed = self.parse_log(log, abi)
            if parsed is not None:
                self._log(TAG_LOG, parsed.signature, self.pretty(parsed.args))

    def find_event(self, key: Union[str, bytes, Fragment]) -> Fragment:
        """
        Find a known event by name, signature, topic or fragment.

        Raises:
            BlocksmithError: If no event (or more than one, by name) matches
        """
        if isinstance(key, Fragment):
            return key
        if isinstance(key, (bytes, bytearray)):
            topic = bytes(key)
        elif key.startswith("0x") and len(key) == 66:
            topic = from_hex(key)
        else:
            topic = None
        if topic is not None:
            frag = self.event_map.get(topic)
            if frag is None:
                raise BlocksmithError("unknown event", topic=to_hex(topic))
            return frag
        if "(" in key:
            frag = self.event_map.get(keccak256(key.replace(" ", "").encode()))
            if frag is None:
                raise BlocksmithError("unknown event", signature=key)
            return frag
        matches = [f for f in self.event_map.values() if f.name == key]
        if len(matches) != 1:
            raise BlocksmithError(
                "unknown event" if not matches else "ambiguous event",
                name=key,
                matches=[f.signature for f in matches],
            )
        return matches[0]

    def get_event_results(self, source: Any, event: Union[str, bytes, Fragment]) -> list[ParsedLog]:
        """
        Decode every ``event`` log in ``source``.

        Args:
            source: DeployedContract (its deployment receipt), receipt, or list of logs
            event: Anything ``find_event`` accepts; a contract's own ABI is tried first
        """
        frag: Optional[Fragment] = None
        if isinstance(source, DeployedContract):
            logs = source.receipt.get("logs") or []
            if isinstance(event, str) and not event.startswith("0x"):
                try:
                    frag = source.interface.get_event(event)
                except ValueError:
                    frag = None
        elif isinstance(source, dict):
            logs = source.get("logs") or []
        else:
            logs = list(source)
        if frag is None:
            frag = self.find_event(event)
        results = []
        for log in logs:
            topics = log.get("topics") or []
            if not frag.anonymous and (not topics or from_hex(topics[0]) != frag.topic):
                continue
            parsed = decode_log(frag, log)
            if parsed is not None:
                results.append(parsed)
        return results

    # ============ Chain helpers ============

    async def next_block(self, blocks: int = 1) -> None:
        await self._require_client().mine(blocks)

    async def set_storage_value(self, target: Any, slot: Union[int, bytes], value: Union[int, bytes, str]) -> None:
        await self._require_client().set_storage_at(to_address(target), slot, to_bytes32(value))

    async def set_storage_bytes(self, target: Any, slot: Union[int, bytes], value: Union[bytes, str]) -> None:
        """Write ``value`` with Solidity's ``bytes``/``string`` storage layout."""
        client = self._require_client()
        address = to_address(target)
        if isinstance(value, str):
            data = from_hex(value) if value.startswith("0x") else value.encode("utf-8")
        else:
            data = bytes(value)
        size = len(data)
        if size < 32:
            await client.set_storage_at(address, slot, data.ljust(31, b"\x00") + bytes([size * 2]))
            return
        await client.set_storage_at(address, slot, size * 2 + 1)
        base = int.from_bytes(keccak256(to_bytes32(slot)), "big")
        writes = []
        for i in range(0, size, 32):
            writes.append(client.set_storage_at(address, base + i // 32, data[i : i + 32].ljust(32, b"\x00")))
        await asyncio.gather(*writes)

    # ============ Output ============

    def pretty(self, value: Any) -> Any:
        """Replace known entities (and their addresses) with display names, recursively."""
        if isinstance(value, DeployedContract) and self.owns(value):
            return Named(value.display_name)
        if isinstance(value, DevWallet) and self.owns(value):
            return Named(value.name)
        if isinstance(value, PendingTransaction):
            return value.hash
        if isinstance(value, dict):
            return {k: self.pretty(v) for k, v in value.items()}
        if isinstance(value, (list, tuple)):
            return [self.pretty(v) for v in value]
        if is_address(value):
            entity = self.accounts.get(to_checksum_address(value))
            if entity is not None:
                return self.pretty(entity)
        return value

    def _log(self, *parts: Any) -> None:
        if self.info_log.enabled:
            self.info_log(" ".join(render(part) for part in parts))

    def __repr__(self) -> str:
        return f"<Foundry {self.state.value} {self.endpoint} chain={self.chain_id}>"


__all__ = [
    "DEFAULT_ETHER",
    "DEFAULT_WALLET",
    "DeployedContract",
    "Foundry",
    "FoundryState",
    "Named",
    "render",
]
