"""
Registry tests against the in-process fake node.

Covers wallets, deployments (plain, linked, CREATE2), confirmations,
event decoding, pretty output and storage helpers.
"""

from __future__ import annotations

import click
import pytest

from blocksmith.chain.abi import Interface
from blocksmith.chain.tx import CREATE2_DEPLOYER, create2_address
from blocksmith.errors import (
    BlocksmithError,
    DeploymentError,
    EmptyBytecodeError,
    NotReadyError,
    TransactionError,
    UnknownWalletError,
    UnownedWalletError,
    UnresolvedLibraryError,
)
from blocksmith.forge.artifacts import Artifact
from blocksmith.foundry import DeployedContract, Foundry, FoundryState, _ConsoleFilter, render
from blocksmith.utils import WEI_PER_ETHER, from_hex, keccak256, to_bytes32, to_checksum_address
from blocksmith.wallets import DevWallet, ImpersonatedWallet
from fakes import COUNTER_ABI, COUNTER_BYTECODE, FORWARDER_BYTECODE, FakeChain, Forwarder

OTHER = "0x4000000000000000000000000000000000000004"
PLACEHOLDER = "__$" + "a" * 34 + "$__"


def _unstyled(lines: list[str]) -> list[str]:
    return [click.unstyle(line) for line in lines]


async def _counter(foundry: Foundry, start: int = 5, **kwargs) -> DeployedContract:
    return await foundry.deploy(
        bytecode=COUNTER_BYTECODE, abi=COUNTER_ABI, contract="Counter", args=[start], **kwargs
    )


def _linked_artifact() -> Artifact:
    return Artifact(
        abi=Interface([]),
        bytecode="0x6080" + PLACEHOLDER + "6000",
        contract="Uses",
        origin="src/Uses.sol",
        link_references={"src/ExtLib.sol": {"ExtLib": [{"start": 2, "length": 20}]}},
    )


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_connect_creates_admin(self, foundry: Foundry, chain: FakeChain, info_lines: list[str]) -> None:
        admin = foundry.wallets["admin"]
        assert foundry.state is FoundryState.READY
        assert foundry.chain_id == 31337
        assert chain.balances[admin.address.lower()] == 10000 * WEI_PER_ETHER
        assert _unstyled(info_lines)[0].startswith("Anvil { chain: 31337")
        assert "wallets: [ admin ]" in _unstyled(info_lines)[0]

    @pytest.mark.asyncio
    async def test_shutdown_is_idempotent(self, foundry: Foundry) -> None:
        seen = []
        foundry.on("shutdown", lambda: seen.append(True))
        await foundry.shutdown()
        await foundry.shutdown()
        assert seen == [True]
        assert foundry.state is FoundryState.SHUTDOWN
        assert Foundry.of(foundry.wallets["admin"]) is None

    @pytest.mark.asyncio
    async def test_operations_after_shutdown(self, foundry: Foundry) -> None:
        await foundry.shutdown()
        with pytest.raises(NotReadyError):
            await _counter(foundry)
        with pytest.raises(NotReadyError):
            await foundry.next_block()

    @pytest.mark.asyncio
    async def test_context_manager(self, chain: FakeChain) -> None:
        async with await Foundry.connect("http://fake", client=chain.client(), info_log=False) as f:
            assert f.state is FoundryState.READY
        assert f.state is FoundryState.SHUTDOWN

    @pytest.mark.asyncio
    async def test_unknown_event_name(self, foundry: Foundry) -> None:
        with pytest.raises(ValueError, match="Unknown event"):
            foundry.on("mined", print)


class TestWallets:
    @pytest.mark.asyncio
    async def test_ensure_is_idempotent(self, foundry: Foundry, chain: FakeChain) -> None:
        first = await foundry.ensure_wallet("alice", ether=1)
        second = await foundry.ensure_wallet("alice")
        assert first is second
        assert chain.balances[first.address.lower()] == WEI_PER_ETHER
        assert foundry.accounts[first.address] is first

    @pytest.mark.asyncio
    async def test_named_wallets_are_deterministic(self, foundry: Foundry) -> None:
        wallet = await foundry.ensure_wallet("bob")
        assert wallet.address == DevWallet.from_name("bob", foundry.client).address

    @pytest.mark.asyncio
    async def test_owned_handle_passes_through(self, foundry: Foundry) -> None:
        admin = foundry.wallets["admin"]
        assert await foundry.ensure_wallet(admin) is admin
        assert foundry.require_wallet(admin) is admin

    @pytest.mark.asyncio
    async def test_address_is_not_a_name(self, foundry: Foundry) -> None:
        with pytest.raises(UnknownWalletError):
            await foundry.ensure_wallet(OTHER)
        with pytest.raises(UnknownWalletError):
            await foundry.ensure_wallet(123)  # type: ignore[arg-type]

    @pytest.mark.asyncio
    async def test_foreign_wallet_rejected(self, foundry: Foundry, chain: FakeChain) -> None:
        other = await Foundry.connect("http://fake", client=chain.client(), info_log=False)
        try:
            theirs = other.wallets["admin"]
            assert not foundry.owns(theirs)
            assert Foundry.of(theirs) is other
            with pytest.raises(UnownedWalletError):
                await foundry.ensure_wallet(theirs)
            with pytest.raises(UnownedWalletError):
                foundry.require_wallet(theirs)
        finally:
            await other.shutdown()

    @pytest.mark.asyncio
    async def test_create_wallet_numbers_names(self, foundry: Foundry) -> None:
        a = await foundry.create_wallet()
        b = await foundry.create_wallet()
        assert (a.name, b.name) == ("random1", "random2")

    @pytest.mark.asyncio
    async def test_require_wallet(self, foundry: Foundry) -> None:
        admin = foundry.wallets["admin"]
        assert foundry.require_wallet(admin.address) is admin
        assert foundry.require_wallet("admin") is admin
        assert foundry.require_wallet(None, "admin") is admin
        with pytest.raises(UnknownWalletError):
            foundry.require_wallet("nobody")
        with pytest.raises(UnknownWalletError):
            foundry.require_wallet(OTHER)

    @pytest.mark.asyncio
    async def test_impersonate(self, foundry: Foundry, chain: FakeChain) -> None:
        wallet = await foundry.impersonate_wallet(OTHER)
        assert isinstance(wallet, ImpersonatedWallet)
        assert OTHER.lower() in chain.impersonated
        assert await foundry.impersonate_wallet(OTHER) is wallet
        receipt = await foundry.confirm(wallet.send_transaction({"to": foundry.wallets["admin"], "value": 0}))
        assert receipt["from"] == to_checksum_address(OTHER)


class TestDeploy:
    @pytest.mark.asyncio
    async def test_deploy_and_call(self, foundry: Foundry, info_lines: list[str]) -> None:
        counter = await _counter(foundry, 5)
        assert await counter.get() == 5
        assert str(counter) == f"Counter<{counter.address[2:6]}>"
        assert foundry.owns(counter)
        assert Foundry.of(counter) is foundry
        assert counter.info["contract"] == "Counter"
        assert counter.info["origin"] == "Bytecode"
        deploy_line = _unstyled(info_lines)[-1]
        assert deploy_line.startswith(f"DEPLOY admin Bytecode {counter}")

    @pytest.mark.asyncio
    async def test_deploy_event(self, foundry: Foundry) -> None:
        deployed = []
        handler = foundry.on("deploy", deployed.append)
        counter = await _counter(foundry, silent=True)
        foundry.off("deploy", handler)
        await _counter(foundry, silent=True)
        assert deployed == [counter]

    @pytest.mark.asyncio
    async def test_silent(self, foundry: Foundry, info_lines: list[str]) -> None:
        before = len(info_lines)
        await _counter(foundry, silent=True)
        assert len(info_lines) == before

    @pytest.mark.asyncio
    async def test_other_wallet(self, foundry: Foundry) -> None:
        counter = await _counter(foundry, wallet="deployer")
        assert counter.runner is foundry.wallets["deployer"]

    @pytest.mark.asyncio
    async def test_empty_bytecode(self, foundry: Foundry, chain: FakeChain) -> None:
        with pytest.raises(EmptyBytecodeError):
            await foundry.deploy(bytecode="0x", contract="Nothing")
        assert chain.sent() == []

    @pytest.mark.asyncio
    async def test_missing_library_sends_nothing(self, foundry: Foundry, chain: FakeChain) -> None:
        with pytest.raises(UnresolvedLibraryError) as info:
            await foundry.deploy(_linked_artifact())
        assert info.value.missing == ["ExtLib"]
        assert chain.sent() == []

    @pytest.mark.asyncio
    async def test_linked_library(self, foundry: Foundry, chain: FakeChain) -> None:
        lib = await foundry.deploy(bytecode="0x60016002", contract="ExtLib")
        uses = await foundry.deploy(_linked_artifact(), libs=[lib])
        assert uses.libs == {"ExtLib": lib.address}
        assert uses.code == from_hex("0x6080" + lib.address[2:].lower() + "6000")

    @pytest.mark.asyncio
    async def test_library_by_qualified_name(self, foundry: Foundry) -> None:
        uses = await foundry.deploy(_linked_artifact(), libs={"src/ExtLib.sol:ExtLib": OTHER})
        assert uses.libs == {"ExtLib": to_checksum_address(OTHER)}

    @pytest.mark.asyncio
    async def test_redeploy_same_address_replaces_entry(self, foundry: Foundry, chain: FakeChain) -> None:
        chain.forced_addresses = [OTHER, OTHER]
        first = await _counter(foundry, 1)
        second = await _counter(foundry, 2)
        assert first.address == second.address
        assert foundry.accounts[second.address] is second
        assert not foundry.owns(first)
        assert foundry.owns(second)

    @pytest.mark.asyncio
    async def test_create2(self, foundry: Foundry) -> None:
        counter = await _counter(foundry, 3, salt=7)
        initcode = from_hex(COUNTER_BYTECODE) + Interface(COUNTER_ABI).encode_deploy([3])
        assert counter.address == create2_address(CREATE2_DEPLOYER, 7, initcode)
        assert await counter.get() == 3

    @pytest.mark.asyncio
    async def test_create2_collision(self, foundry: Foundry) -> None:
        await _counter(foundry, 3, salt=7)
        with pytest.raises(DeploymentError):
            await _counter(foundry, 3, salt=7)

    @pytest.mark.asyncio
    async def test_reverted_deploy(self, foundry: Foundry, chain: FakeChain) -> None:
        chain.revert_next = True
        with pytest.raises(DeploymentError) as info:
            await _counter(foundry)
        assert isinstance(info.value, TransactionError)

    @pytest.mark.asyncio
    async def test_unknown_reference(self, foundry: Foundry) -> None:
        with pytest.raises(BlocksmithError, match="unknown artifact reference"):
            await foundry.deploy(42)  # type: ignore[arg-type]


class TestConfirm:
    @pytest.mark.asyncio
    async def test_tracked_call(self, foundry: Foundry, info_lines: list[str]) -> None:
        counter = await _counter(foundry, 0)
        seen = []
        foundry.on("tx", lambda tx, receipt: seen.append(receipt))
        receipt = await foundry.confirm(counter.set(2))
        assert await counter.get() == 2
        assert seen == [receipt]
        lines = _unstyled(info_lines)
        assert lines[-2].startswith(f"TX admin {counter}.set(uint256)")
        assert "a0: 2" in lines[-2]
        assert lines[-1] == f"LOG Changed(address,uint256) {{ who: admin, value: 2 }}"

    @pytest.mark.asyncio
    async def test_untracked_receiver(self, foundry: Foundry, info_lines: list[str]) -> None:
        admin = foundry.wallets["admin"]
        receipt = await foundry.confirm(admin.send_transaction({"to": OTHER, "value": 1}))
        assert receipt["to"] == to_checksum_address(OTHER)
        assert _unstyled(info_lines)[-1].startswith(f"TX admin >> {to_checksum_address(OTHER)}")

    @pytest.mark.asyncio
    async def test_extra_fields(self, foundry: Foundry, info_lines: list[str]) -> None:
        counter = await _counter(foundry)
        await foundry.confirm(counter.set(9), note="hello")
        assert "note: 'hello'" in _unstyled(info_lines)[-2]

    @pytest.mark.asyncio
    async def test_revert(self, foundry: Foundry, chain: FakeChain) -> None:
        counter = await _counter(foundry)
        chain.revert_next = True
        with pytest.raises(TransactionError):
            await foundry.confirm(counter.set(1))

    @pytest.mark.asyncio
    async def test_log_from_inner_contract(self, foundry: Foundry, chain: FakeChain, info_lines: list[str]) -> None:
        chain.template(FORWARDER_BYTECODE, lambda ctor_args: Forwarder())
        counter = await _counter(foundry)
        forwarder = await foundry.deploy(bytecode=FORWARDER_BYTECODE, abi=Forwarder.ABI, contract="Forwarder")
        receipt = await foundry.confirm(forwarder.poke(counter.address, 7))
        assert await counter.get() == 7
        lines = _unstyled(info_lines)
        assert lines[-2].startswith(f"TX admin {forwarder}.poke(address,uint256)")
        assert lines[-1] == "LOG Changed(address,uint256) { who: admin, value: 7 }"
        (log,) = receipt["logs"]
        assert log["address"] == counter.address
        assert forwarder.interface.parse_log(log) is None
        parsed = foundry.parse_log(log, Interface([]))
        assert parsed.signature == "Changed(address,uint256)"
        assert parsed.args == {"who": foundry.wallets["admin"].address, "value": 7}


class TestEvents:
    @pytest.mark.asyncio
    async def test_results_from_receipt(self, foundry: Foundry) -> None:
        counter = await _counter(foundry)
        receipt = await foundry.confirm(counter.set(4), silent=True)
        results = foundry.get_event_results(receipt, "Changed")
        assert len(results) == 1
        assert results[0].args["value"] == 4
        assert results[0].args["who"] == foundry.wallets["admin"].address
        assert foundry.get_event_results(receipt["logs"], "Changed(address,uint256)") == results

    @pytest.mark.asyncio
    async def test_deploy_receipt_has_no_events(self, foundry: Foundry) -> None:
        counter = await _counter(foundry)
        assert foundry.get_event_results(counter, "Changed") == []

    @pytest.mark.asyncio
    async def test_find_event(self, foundry: Foundry) -> None:
        await _counter(foundry)
        frag = foundry.find_event("Changed")
        assert foundry.find_event(frag.topic) is frag
        assert foundry.find_event("0x" + frag.topic.hex()) is frag
        assert foundry.find_event("Changed(address, uint256)") is frag
        assert frag.topic == keccak256(b"Changed(address,uint256)")

    @pytest.mark.asyncio
    async def test_find_unknown_event(self, foundry: Foundry) -> None:
        with pytest.raises(BlocksmithError, match="unknown event"):
            foundry.find_event("Nope")
        with pytest.raises(BlocksmithError, match="unknown event"):
            foundry.find_event(b"\x00" * 32)

    def test_console_filter(self) -> None:
        seen: list[str] = []
        console = _ConsoleFilter(seen.append)
        for line in ["eth_call", "    console.log:", "        hello", "        world", "", "  indented but not logged"]:
            console(line)
        assert seen == ["hello", "world"]


class TestPretty:
    @pytest.mark.asyncio
    async def test_replaces_known_entities(self, foundry: Foundry) -> None:
        admin = foundry.wallets["admin"]
        counter = await _counter(foundry, silent=True)
        value = foundry.pretty({"from": admin.address, "to": [counter, OTHER], "n": 1})
        assert click.unstyle(render(value)) == f"{{ from: admin, to: [ {counter}, '{OTHER}' ], n: 1 }}"

    def test_render_bytes(self) -> None:
        assert render(b"\x01\x02") == "0x0102"
        assert render([b"\x01"]) == "[ '0x01' ]"
        assert render({}) == "{}"


class TestChainHelpers:
    @pytest.mark.asyncio
    async def test_next_block(self, foundry: Foundry, chain: FakeChain) -> None:
        block = chain.block
        await foundry.next_block(3)
        assert chain.block == block + 3

    @pytest.mark.asyncio
    async def test_storage_value(self, foundry: Foundry, chain: FakeChain) -> None:
        await foundry.set_storage_value(OTHER, 1, 7)
        assert chain.storage[(OTHER.lower(), 1)] == to_bytes32(7)

    @pytest.mark.asyncio
    async def test_short_bytes(self, foundry: Foundry, chain: FakeChain) -> None:
        await foundry.set_storage_bytes(OTHER, 0, "abc")
        assert chain.storage[(OTHER.lower(), 0)] == b"abc" + b"\x00" * 28 + bytes([6])

    @pytest.mark.asyncio
    async def test_long_bytes(self, foundry: Foundry, chain: FakeChain) -> None:
        data = bytes(range(40))
        await foundry.set_storage_bytes(OTHER, 2, data)
        base = int.from_bytes(keccak256(to_bytes32(2)), "big")
        assert chain.storage[(OTHER.lower(), 2)] == to_bytes32(81)
        assert chain.storage[(OTHER.lower(), base)] == data[:32]
        assert chain.storage[(OTHER.lower(), base + 1)] == data[32:].ljust(32, b"\x00")
