"""
Record codec - maps typed record requests to resolver calldata and back.

Pure functions, no I/O.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

from ..chain.abi import Interface
from ..chain.contract import unwrap
from ..utils import from_hex
from .node import dns_encode

RECORD_TYPES = ("addr", "text", "contenthash", "pubkey", "name")

# off-chain routing tags understood by TOR-lensing resolvers
TOR_PREFIXES = {
    "off": bytes.fromhex("000000FF"),
    "on": bytes.fromhex("FFFFFF00"),
}


@dataclass(frozen=True)
class RecordQuery:
    type: str
    arg: Any = None

    def __post_init__(self) -> None:
        if self.type not in RECORD_TYPES:
            raise ValueError(f"Unknown record type: {self.type!r}")

    @property
    def key(self) -> str:
        """Stable key used when records are collected into a profile."""
        if self.arg is None:
            return self.type
        return f"{self.type}:{self.arg}"

    @classmethod
    def parse(cls, value: RecordQuery | tuple | dict | str) -> RecordQuery:
        if isinstance(value, RecordQuery):
            return value
        if isinstance(value, dict):
            return cls(value["type"], value.get("arg"))
        if isinstance(value, tuple):
            return cls(*value)
        kind, _, arg = value.partition(":")
        if not arg:
            return cls(kind)
        return cls(kind, int(arg) if kind == "addr" else arg)


@dataclass
class RecordResult:
    rec: RecordQuery
    res: Any = None
    err: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.err is None

    def unwrap(self) -> Any:
        if self.err is not None:
            raise self.err
        return self.res


def record_signature(rec: RecordQuery) -> str:
    """Resolver function for a record; ``addr`` picks its overload by coin type."""
    if rec.type == "addr":
        return "addr(bytes32)" if rec.arg is None else "addr(bytes32,uint256)"
    return rec.type


def record_params(node_hash: bytes, rec: RecordQuery) -> list[Any]:
    params: list[Any] = [node_hash]
    if rec.arg is not None:
        params.append(rec.arg)
    return params


def encode_record_call(abi: Interface, node_hash: bytes, rec: RecordQuery) -> bytes:
    return abi.encode_function_data(record_signature(rec), record_params(node_hash, rec))


def decode_record_result(abi: Interface, rec: RecordQuery, data: bytes | str) -> Any:
    return unwrap(abi.decode_function_result(record_signature(rec), from_hex(data)))


def add_tor_prefix(call: bytes, prefix: Optional[str]) -> bytes:
    """Tag calldata for off-chain routing; an unknown prefix is a programming error."""
    if prefix is None:
        return call
    try:
        return TOR_PREFIXES[prefix] + call
    except KeyError:
        raise ValueError(f"unknown prefix: {prefix}") from None


def encode_resolve_call(abi: Interface, name: str, call: bytes) -> bytes:
    """Wrap record calldata in the wildcard ``resolve(name, data)`` envelope."""
    return abi.encode_function_data("resolve", [dns_encode(name), call])


__all__ = [
    "RECORD_TYPES",
    "TOR_PREFIXES",
    "RecordQuery",
    "RecordResult",
    "add_tor_prefix",
    "decode_record_result",
    "dns_encode",
    "encode_record_call",
    "encode_resolve_call",
    "record_params",
    "record_signature",
]
