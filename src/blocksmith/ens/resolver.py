"""
Resolver - find the authoritative resolver for a name and query records.

The lookup walks from the queried node towards the root asking the
registry for a resolver. The first registration wins, but a resolver
found above the queried node only counts if it supports wildcard
resolution (ENSIP-10). Resolvers that also speak the TOR lensing
protocol can answer several records in one multicall.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional

import click
from eth_abi.exceptions import DecodingError

from ..chain.abi import Interface
from ..chain.ccip import ccip_call
from ..chain.contract import Contract
from ..chain.rpc import RpcClient
from ..config import ENS_REGISTRY
from ..errors import RpcError
from ..utils import ZERO_ADDRESS, to_hex
from .node import Node
from .records import (
    RecordQuery,
    RecordResult,
    add_tor_prefix,
    decode_record_result,
    encode_record_call,
    encode_resolve_call,
    record_params,
    record_signature,
)

logger = logging.getLogger(__name__)

IFACE_ENSIP_10 = bytes.fromhex("9061b923")
IFACE_TOR = bytes.fromhex("73302a25")


def _fn(name: str, inputs: list[tuple[str, str]], outputs: list[tuple[str, str]], mutability: str = "view") -> dict:
    return {
        "type": "function",
        "name": name,
        "inputs": [{"name": n, "type": t} for n, t in inputs],
        "outputs": [{"name": n, "type": t} for n, t in outputs],
        "stateMutability": mutability,
    }


REGISTRY_ABI = [
    _fn("resolver", [("node", "bytes32")], [("", "address")]),
    _fn("owner", [("node", "bytes32")], [("", "address")]),
]

RESOLVER_ABI = [
    _fn("supportsInterface", [("interfaceID", "bytes4")], [("", "bool")], "pure"),
    _fn("resolve", [("name", "bytes"), ("data", "bytes")], [("", "bytes")]),
    _fn("addr", [("node", "bytes32"), ("coinType", "uint256")], [("", "bytes")]),
    _fn("addr", [("node", "bytes32")], [("", "address")]),
    _fn("text", [("node", "bytes32"), ("key", "string")], [("", "string")]),
    _fn("contenthash", [("node", "bytes32")], [("", "bytes")]),
    _fn("pubkey", [("node", "bytes32")], [("x", "bytes32"), ("y", "bytes32")]),
    _fn("name", [("node", "bytes32")], [("", "string")]),
    _fn("multicall", [("data", "bytes[]")], [("results", "bytes[]")], "nonpayable"),
]

DEFAULT_PROFILE: tuple[RecordQuery, ...] = (
    RecordQuery("text", "name"),
    RecordQuery("text", "avatar"),
    RecordQuery("text", "description"),
    RecordQuery("text", "url"),
    RecordQuery("addr", 60),
    RecordQuery("addr", 0),
    RecordQuery("contenthash"),
)


def registry_contract(client: RpcClient, address: str = ENS_REGISTRY) -> Contract:
    return Contract(address, REGISTRY_ABI, client)


@dataclass
class Profile:
    values: dict[str, Any] = field(default_factory=dict)
    errors: dict[str, BaseException] = field(default_factory=dict)
    multicalled: bool = False

    def __getitem__(self, key: str) -> Any:
        return self.values[key]

    def get(self, key: str, default: Any = None) -> Any:
        return self.values.get(key, default)


class Resolver:
    ABI = Interface(RESOLVER_ABI)

    def __init__(
        self,
        node: Node,
        contract: Contract,
        *,
        base: Optional[Node] = None,
        drop: int = 0,
        wild: bool = False,
        tor: bool = False,
    ) -> None:
        self.node = node
        self.contract = contract
        self.base = base or node
        self.drop = drop
        self.wild = wild
        self.tor = tor

    @property
    def address(self) -> str:
        return self.contract.address

    @property
    def info(self) -> dict[str, Any]:
        return {"wild": self.wild, "tor": self.tor, "drop": self.drop}

    @classmethod
    async def get(cls, registry: Contract, node: Node) -> Optional[Resolver]:
        """
        Walk from ``node`` towards the root to the authoritative resolver.

        Returns:
            Resolver, or None if no registration applies to ``node``
        """
        base: Optional[Node] = node
        drop = 0
        while base is not None:
            address = await registry.call("resolver", base.namehash)
            if address.lower() == ZERO_ADDRESS:
                base = base.parent
                drop += 1
                continue
            contract = Contract(address, cls.ABI, registry.client)
            wild = await _supports(contract, IFACE_ENSIP_10)
            if drop and not wild:
                logger.debug("%s: resolver at %s is not wildcard", node.name, base.name)
                return None
            tor = wild and await _supports(contract, IFACE_TOR)
            return cls(node, contract, base=base, drop=drop, wild=wild, tor=tor)
        return None

    @staticmethod
    async def dump(registry: Contract, node: Node) -> None:
        nodes = node.flat()
        owners = await asyncio.gather(*(registry.call("owner", x.namehash) for x in nodes))
        resolvers = await asyncio.gather(*(registry.call("resolver", x.namehash) for x in nodes))
        width = len(str(len(nodes)))
        for i, x in enumerate(nodes):
            click.echo(f"{str(i).rjust(width)} {owners[i]} {resolvers[i]} {x.name}")

    # ---- queries ----

    async def records(
        self,
        recs: Iterable[RecordQuery | tuple | dict | str],
        *,
        multi: bool = True,
        tor: Optional[str] = None,
        ccip: bool = True,
    ) -> tuple[list[RecordResult], bool]:
        """
        Fetch several records.

        Returns:
            (results in request order, whether one multicall was used)
        """
        queries = [RecordQuery.parse(r) for r in recs]
        add_tor_prefix(b"", tor)  # reject unknown prefixes up front
        if multi and len(queries) > 1 and self.wild and self.tor:
            return await self._multicall(queries, tor, ccip), True
        results = await asyncio.gather(*(self._fetch_one(q, tor, ccip) for q in queries))
        return list(results), False

    async def record(self, rec: RecordQuery | tuple | dict | str, **options: Any) -> Any:
        results, _ = await self.records([rec], **options)
        return results[0].unwrap()

    async def text(self, key: str, **options: Any) -> str:
        return await self.record(RecordQuery("text", key), **options)

    async def addr(self, coin_type: Optional[int] = None, **options: Any) -> str:
        value = await self.record(RecordQuery("addr", coin_type), **options)
        if isinstance(value, (bytes, bytearray)):
            return to_hex(value)
        return value

    async def contenthash(self, **options: Any) -> bytes:
        return await self.record(RecordQuery("contenthash"), **options)

    async def profile(
        self,
        recs: Optional[Iterable[RecordQuery | tuple | dict | str]] = None,
        **options: Any,
    ) -> Profile:
        results, multicalled = await self.records(recs or DEFAULT_PROFILE, **options)
        profile = Profile(multicalled=multicalled)
        for result in results:
            if result.ok:
                profile.values[result.rec.key] = result.res
            else:
                profile.errors[result.rec.key] = result.err
        return profile

    # ---- wire ----

    async def _resolve(self, call: bytes, ccip: bool) -> bytes:
        data = encode_resolve_call(self.ABI, self.node.name, call)
        raw = await ccip_call(self.contract.client, self.address, data, enabled=ccip)
        (answer,) = self.ABI.decode_function_result("resolve", raw)
        return answer

    async def _fetch_one(self, rec: RecordQuery, tor: Optional[str], ccip: bool) -> RecordResult:
        try:
            if self.wild:
                call = add_tor_prefix(encode_record_call(self.ABI, self.node.namehash, rec), tor)
                res = decode_record_result(self.ABI, rec, await self._resolve(call, ccip))
            else:
                res = await self.contract.call(
                    record_signature(rec), *record_params(self.node.namehash, rec)
                )
            return RecordResult(rec, res)
        except Exception as exc:
            return RecordResult(rec, err=exc)

    async def _multicall(self, queries: list[RecordQuery], tor: Optional[str], ccip: bool) -> list[RecordResult]:
        encoded = [encode_record_call(self.ABI, self.node.namehash, q) for q in queries]
        call = add_tor_prefix(self.ABI.encode_function_data("multicall", [encoded]), tor)
        (answers,) = self.ABI.decode_function_result("multicall", await self._resolve(call, ccip))
        results = []
        for i, rec in enumerate(queries):
            try:
                results.append(RecordResult(rec, decode_record_result(self.ABI, rec, answers[i])))
            except Exception as exc:
                results.append(RecordResult(rec, err=exc))
        return results

    def __repr__(self) -> str:
        return f"<Resolver {self.address} node={self.node.name} base={self.base.name} {self.info}>"


async def _supports(contract: Contract, interface_id: bytes) -> bool:
    # reverts and empty/garbage returns mean "no"; transport errors propagate
    try:
        return bool(await contract.call("supportsInterface", interface_id))
    except (RpcError, DecodingError) as exc:
        logger.debug("supportsInterface(%s) on %s failed: %s", interface_id.hex(), contract.address, exc)
        return False
