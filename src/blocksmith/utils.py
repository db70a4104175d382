from __future__ import annotations

import re
from decimal import Decimal
from typing import Any

from eth_hash.auto import keccak

ZERO_ADDRESS = "0x" + "0" * 40
ZERO_HASH = b"\x00" * 32
WEI_PER_ETHER = 10**18

_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")


def keccak256(data: bytes) -> bytes:
    # NOTE: Keccak-256 != SHA3-256 (NIST). Never use hashlib.sha3_256 here.
    return keccak(data)


def id_hash(text: str) -> bytes:
    """keccak256 of the UTF-8 encoding of ``text``."""
    return keccak256(text.encode("utf-8"))


def is_address(value: Any) -> bool:
    return isinstance(value, str) and bool(_ADDRESS_RE.match(value))


def to_checksum_address(address: str) -> str:
    """Convert an address to EIP-55 checksummed format."""
    addr = address.lower().replace("0x", "")
    addr_hash = keccak256(addr.encode("utf-8")).hex()
    result = "0x"
    for i, c in enumerate(addr):
        if c in "abcdef":
            result += c.upper() if int(addr_hash[i], 16) >= 8 else c
        else:
            result += c
    return result


def to_address(value: Any) -> str:
    """Extract a checksummed address from a string, wallet or contract."""
    if is_address(value):
        return to_checksum_address(value)
    address = getattr(value, "address", None)
    if is_address(address):
        return to_checksum_address(address)
    if not value:
        return ZERO_ADDRESS
    raise ValueError(f"Unable to coerce address from {value!r}")


def take_hash(address: str) -> str:
    """Short tag used to tell apart repeated deployments of one contract."""
    return address[2:6]


def to_hex(data: bytes | bytearray) -> str:
    return "0x" + bytes(data).hex()


def from_hex(value: str | bytes | bytearray | None) -> bytes:
    if value is None:
        return b""
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    if value.startswith(("0x", "0X")):
        value = value[2:]
    if len(value) % 2:
        value = "0" + value
    return bytes.fromhex(value)


def hex_to_int(value: str | int | None) -> int:
    if value is None:
        return 0
    if isinstance(value, int):
        return value
    return int(value, 16)


def to_quantity(value: int) -> str:
    """Encode an integer as a JSON-RPC quantity."""
    return hex(int(value))


def parse_ether(value: int | float | str | Decimal) -> int:
    """Convert an ether amount to wei."""
    return int(Decimal(str(value)) * WEI_PER_ETHER)


def to_bytes32(value: int | str | bytes) -> bytes:
    if isinstance(value, int):
        return value.to_bytes(32, "big")
    raw = from_hex(value) if isinstance(value, str) else bytes(value)
    if len(raw) > 32:
        raise ValueError(f"Value does not fit in 32 bytes: {len(raw)}")
    return raw.rjust(32, b"\x00")
