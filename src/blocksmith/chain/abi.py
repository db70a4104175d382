"""
ABI handling - fragments, selectors, calldata and log decoding.

Works directly on Foundry-style JSON ABIs (a list of dicts) and uses
eth-abi for the actual encoding.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable, Optional, Union

from eth_abi import decode, encode

from ..utils import from_hex, keccak256, to_checksum_address, to_hex

AbiLike = Union["Interface", Iterable[dict[str, Any]]]

# Error(string) and Panic(uint256)
ERROR_SELECTOR = bytes.fromhex("08c379a0")
PANIC_SELECTOR = bytes.fromhex("4e487b71")


def canonical_type(param: dict[str, Any]) -> str:
    """Collapse tuple components into the canonical ``(a,b)[]`` form."""
    kind = param["type"]
    if kind.startswith("tuple"):
        inner = ",".join(canonical_type(c) for c in param.get("components", []))
        return f"({inner}){kind[len('tuple'):]}"
    return kind


def is_dynamic_type(kind: str) -> bool:
    return kind in ("string", "bytes") or kind.endswith("]") or kind.startswith("(")


def split_tuple_type(kind: str) -> list[str]:
    """Component types of a canonical ``(a,b)`` tuple type."""
    parts: list[str] = []
    depth = 0
    start = 1
    for i, char in enumerate(kind[1:-1], start=1):
        if char == "(":
            depth += 1
        elif char == ")":
            depth -= 1
        elif char == "," and depth == 0:
            parts.append(kind[start:i])
            start = i + 1
    if len(kind) > 2:
        parts.append(kind[start:-1])
    return parts


def checksum_addresses(kind: str, value: Any) -> Any:
    """Checksum every ``address`` inside a decoded value of type ``kind``."""
    if kind == "address":
        return to_checksum_address(value)
    if kind.endswith("]"):
        element = kind[: kind.rindex("[")]
        return tuple(checksum_addresses(element, v) for v in value)
    if kind.startswith("("):
        return tuple(checksum_addresses(k, v) for k, v in zip(split_tuple_type(kind), value))
    return value


def decode_values(types: list[str], data: bytes) -> tuple[Any, ...]:
    """
    eth-abi ``decode`` with checksummed addresses.

    eth-abi releases disagree on the case of decoded addresses.
    """
    return tuple(checksum_addresses(k, v) for k, v in zip(types, decode(types, data)))


def _named(params: Iterable[dict[str, Any]], values: Iterable[Any]) -> dict[str, Any]:
    result: dict[str, Any] = {}
    for i, (param, value) in enumerate(zip(params, values)):
        key = param.get("name") or f"_{i}"
        result[key] = _named_value(param, value)
    return result


def _named_value(param: dict[str, Any], value: Any) -> Any:
    kind = param["type"]
    if not kind.startswith("tuple"):
        return value
    components = param.get("components", [])
    if kind == "tuple":
        return _named(components, value)
    element = dict(param, type=kind[: kind.rindex("[")])
    return [_named_value(element, v) for v in value]


@dataclass(frozen=True, eq=False)
class Fragment:
    kind: str
    name: str
    inputs: tuple[dict[str, Any], ...] = ()
    outputs: tuple[dict[str, Any], ...] = ()
    state_mutability: str = "nonpayable"
    anonymous: bool = False

    @classmethod
    def from_entry(cls, entry: dict[str, Any]) -> Fragment:
        mutability = entry.get("stateMutability")
        if mutability is None:
            # pre-0.5 ABI shape
            if entry.get("constant"):
                mutability = "view"
            elif entry.get("payable"):
                mutability = "payable"
            else:
                mutability = "nonpayable"
        return cls(
            kind=entry.get("type", "function"),
            name=entry.get("name", ""),
            inputs=tuple(entry.get("inputs", [])),
            outputs=tuple(entry.get("outputs", [])),
            state_mutability=mutability,
            anonymous=bool(entry.get("anonymous", False)),
        )

    @property
    def input_types(self) -> list[str]:
        return [canonical_type(p) for p in self.inputs]

    @property
    def output_types(self) -> list[str]:
        return [canonical_type(p) for p in self.outputs]

    @property
    def signature(self) -> str:
        return f"{self.name}({','.join(self.input_types)})"

    @property
    def selector(self) -> bytes:
        return keccak256(self.signature.encode("utf-8"))[:4]

    @property
    def topic(self) -> bytes:
        return keccak256(self.signature.encode("utf-8"))

    @property
    def is_view(self) -> bool:
        return self.state_mutability in ("view", "pure")

    def format(self) -> str:
        def fmt(params: Iterable[dict[str, Any]]) -> str:
            parts = []
            for p in params:
                text = canonical_type(p)
                if p.get("indexed"):
                    text += " indexed"
                if p.get("name"):
                    text += f" {p['name']}"
                parts.append(text)
            return ", ".join(parts)

        head = f"{self.kind} {self.name}" if self.name else self.kind
        text = f"{head}({fmt(self.inputs)})"
        if self.kind == "function":
            if self.state_mutability != "nonpayable":
                text += f" {self.state_mutability}"
            if self.outputs:
                text += f" returns ({fmt(self.outputs)})"
        return text

    def __repr__(self) -> str:
        return f"<Fragment {self.format()}>"


@dataclass(frozen=True)
class Indexed:
    """An indexed dynamic event argument; only its hash is recoverable."""

    hash: bytes

    def __repr__(self) -> str:
        return f"Indexed({to_hex(self.hash)})"


@dataclass(frozen=True)
class ParsedCall:
    fragment: Fragment
    values: tuple[Any, ...]
    args: dict[str, Any]

    @property
    def signature(self) -> str:
        return self.fragment.signature


@dataclass(frozen=True)
class ParsedLog:
    fragment: Fragment
    values: tuple[Any, ...]
    args: dict[str, Any]
    address: Optional[str] = None
    log_index: Optional[int] = None

    @property
    def name(self) -> str:
        return self.fragment.name

    @property
    def signature(self) -> str:
        return self.fragment.signature


@dataclass
class Interface:
    """A parsed contract ABI."""

    abi: list[dict[str, Any]] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.abi = list(self.abi)
        self.functions: list[Fragment] = []
        self.events: list[Fragment] = []
        self.errors: list[Fragment] = []
        self.constructor: Optional[Fragment] = None
        for entry in self.abi:
            kind = entry.get("type", "function")
            if kind == "function":
                self.functions.append(Fragment.from_entry(entry))
            elif kind == "event":
                self.events.append(Fragment.from_entry(entry))
            elif kind == "error":
                self.errors.append(Fragment.from_entry(entry))
            elif kind == "constructor":
                self.constructor = Fragment.from_entry(entry)

    @classmethod
    def from_abi(cls, abi: Optional[AbiLike]) -> Interface:
        if isinstance(abi, Interface):
            return abi
        return cls(list(abi or []))

    # ---- lookup ----

    def get_function(self, key: Union[str, Fragment]) -> Fragment:
        return _lookup(self.functions, key, "function", by_selector=True)

    def get_event(self, key: Union[str, Fragment]) -> Fragment:
        return _lookup(self.events, key, "event", by_selector=False)

    def get_error(self, key: Union[str, Fragment]) -> Fragment:
        return _lookup(self.errors, key, "error", by_selector=True)

    def has_function(self, name: str) -> bool:
        return any(f.name == name or f.signature == name for f in self.functions)

    # ---- calldata ----

    def encode_function_data(self, key: Union[str, Fragment], args: Iterable[Any] = ()) -> bytes:
        frag = self.get_function(key)
        args = list(args)
        if len(args) != len(frag.inputs):
            raise ValueError(
                f"{frag.signature} expects {len(frag.inputs)} arguments, got {len(args)}"
            )
        encoded = encode(frag.input_types, args) if frag.inputs else b""
        return frag.selector + encoded

    def decode_function_data(self, key: Union[str, Fragment], data: bytes | str) -> tuple[Any, ...]:
        frag = self.get_function(key)
        raw = from_hex(data)
        if raw[:4] != frag.selector:
            raise ValueError(f"Calldata selector does not match {frag.signature}")
        return decode_values(frag.input_types, raw[4:])

    def decode_function_result(self, key: Union[str, Fragment], data: bytes | str) -> tuple[Any, ...]:
        frag = self.get_function(key)
        if not frag.outputs:
            return ()
        return decode_values(frag.output_types, from_hex(data))

    def encode_function_result(self, key: Union[str, Fragment], values: Iterable[Any]) -> bytes:
        frag = self.get_function(key)
        return encode(frag.output_types, list(values))

    def encode_deploy(self, args: Iterable[Any] = ()) -> bytes:
        args = list(args)
        if self.constructor is None:
            if args:
                raise ValueError("Constructor not found in ABI, but constructor args were provided.")
            return b""
        if len(args) != len(self.constructor.inputs):
            raise ValueError(
                f"constructor expects {len(self.constructor.inputs)} arguments, got {len(args)}"
            )
        return encode(self.constructor.input_types, args)

    def parse_transaction(self, data: bytes | str) -> Optional[ParsedCall]:
        raw = from_hex(data)
        if len(raw) < 4:
            return None
        for frag in self.functions:
            if frag.selector == raw[:4]:
                try:
                    values = decode_values(frag.input_types, raw[4:])
                except Exception:
                    return None
                return ParsedCall(frag, values, _named(frag.inputs, values))
        return None

    # ---- logs ----

    def parse_log(self, log: dict[str, Any]) -> Optional[ParsedLog]:
        topics = [from_hex(t) for t in log.get("topics", [])]
        if not topics:
            return None
        for frag in self.events:
            if not frag.anonymous and frag.topic == topics[0]:
                return decode_log(frag, log)
        return None

    # ---- errors ----

    def parse_error(self, data: bytes | str) -> Optional[ParsedCall]:
        raw = from_hex(data)
        if len(raw) < 4:
            return None
        for frag in self.errors:
            if frag.selector == raw[:4]:
                try:
                    values = decode_values(frag.input_types, raw[4:])
                except Exception:
                    return None
                return ParsedCall(frag, values, _named(frag.inputs, values))
        return None


def decode_log(frag: Fragment, log: dict[str, Any]) -> Optional[ParsedLog]:
    """Decode ``log`` against an event fragment; ``None`` if it does not fit."""
    topics = [from_hex(t) for t in log.get("topics", [])]
    if not frag.anonymous:
        topics = topics[1:]
    indexed = [p for p in frag.inputs if p.get("indexed")]
    if len(indexed) != len(topics):
        return None
    plain = [p for p in frag.inputs if not p.get("indexed")]
    try:
        plain_values = iter(decode_values([canonical_type(p) for p in plain], from_hex(log.get("data"))))
        topic_values = iter(topics)
        values = []
        for param in frag.inputs:
            if param.get("indexed"):
                topic = next(topic_values)
                kind = canonical_type(param)
                if is_dynamic_type(kind):
                    values.append(Indexed(topic))
                else:
                    values.append(decode_values([kind], topic)[0])
            else:
                values.append(next(plain_values))
    except Exception:
        return None
    values_t = tuple(values)
    return ParsedLog(
        fragment=frag,
        values=values_t,
        args=_named(frag.inputs, values_t),
        address=log.get("address"),
        log_index=_maybe_int(log.get("logIndex")),
    )


def decode_revert(data: bytes | str | None) -> Optional[str]:
    """Human readable reason for a standard ``Error``/``Panic`` revert."""
    raw = from_hex(data)
    if raw[:4] == ERROR_SELECTOR:
        try:
            return decode(["string"], raw[4:])[0]
        except Exception:
            return None
    if raw[:4] == PANIC_SELECTOR:
        try:
            return f"panic(0x{decode(['uint256'], raw[4:])[0]:02x})"
        except Exception:
            return None
    return None


def _lookup(fragments: list[Fragment], key: Union[str, Fragment], kind: str, by_selector: bool) -> Fragment:
    if isinstance(key, Fragment):
        return key
    key = key.replace(" ", "")
    if "(" in key:
        for frag in fragments:
            if frag.signature == key:
                return frag
    elif key.startswith("0x"):
        raw = from_hex(key)
        for frag in fragments:
            if (by_selector and frag.selector == raw) or frag.topic == raw:
                return frag
    else:
        matches = [f for f in fragments if f.name == key]
        if len(matches) == 1:
            return matches[0]
        if len(matches) > 1:
            options = ", ".join(f.signature for f in matches)
            raise ValueError(f"Ambiguous {kind} {key!r}: {options}")
    raise ValueError(f"{kind.capitalize()} {key} not found in ABI")


def _maybe_int(value: Any) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, int):
        return value
    return int(value, 16)
