"""
Transaction Builder - Build, sign, and send transactions.

Uses eth-account for signing and the async JSON-RPC client for sending.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional

from eth_account.signers.local import LocalAccount

from ..utils import from_hex, hex_to_int, keccak256, to_address, to_bytes32, to_checksum_address, to_hex
from .rpc import RpcClient

# Deterministic deployment proxy predeployed by anvil
CREATE2_DEPLOYER = "0x4e59b44847b379578588920cA78FbF26c0B4956C"


@dataclass
class PendingTransaction:
    """A submitted transaction; ``wait()`` resolves its receipt once."""

    hash: str
    client: RpcClient = field(repr=False)
    sender: str
    to: Optional[str]
    data: bytes = b""
    value: int = 0
    nonce: Optional[int] = None
    _receipt: Optional[dict] = field(default=None, repr=False)

    async def wait(self, timeout: float = 120.0) -> dict:
        if self._receipt is None:
            self._receipt = await self.client.wait_for_receipt(self.hash, timeout=timeout)
        return self._receipt


def normalize_tx(tx: dict[str, Any]) -> dict[str, Any]:
    """Coerce ``to`` (wallet, contract or address), ``data`` and ``value``."""
    out = dict(tx)
    to = out.get("to")
    out["to"] = to_address(to) if to is not None else None
    out["data"] = from_hex(out.get("data"))
    out["value"] = int(out.get("value") or 0)
    return out


async def fill_transaction(
    client: RpcClient,
    sender: str,
    tx: dict[str, Any],
    nonce: int,
) -> dict[str, Any]:
    """
    Fill in chain id, gas and gas price for a normalized transaction.

    Args:
        client: Connection used for estimates
        sender: Checksummed sender address
        tx: Output of ``normalize_tx``
        nonce: Nonce chosen by the caller

    Returns:
        Unsigned transaction dict accepted by eth-account
    """
    request = {"from": sender, "to": tx["to"], "data": tx["data"], "value": tx["value"]}
    gas = tx.get("gas") or await client.estimate_gas(request)
    gas_price = tx.get("gasPrice") or await client.gas_price()

    filled: dict[str, Any] = {
        "data": to_hex(tx["data"]),
        "value": tx["value"],
        "nonce": nonce,
        "gas": gas,
        "gasPrice": gas_price,
        "chainId": await client.chain_id(),
    }
    if tx["to"] is not None:
        filled["to"] = to_checksum_address(tx["to"])
    return filled


async def sign_and_send(account: LocalAccount, client: RpcClient, tx: dict[str, Any]) -> str:
    """Sign a filled transaction and submit it. Returns the tx hash."""
    signed = account.sign_transaction(tx)
    return await client.send_raw_transaction(signed.raw_transaction)


def receipt_status(receipt: dict[str, Any]) -> int:
    return hex_to_int(receipt.get("status", "0x1"))


def receipt_gas_used(receipt: dict[str, Any]) -> int:
    return hex_to_int(receipt.get("gasUsed"))


def create2_address(deployer: str, salt: int | bytes | str, initcode: bytes) -> str:
    """Address produced by CREATE2 for ``(deployer, salt, keccak(initcode))``."""
    digest = keccak256(
        b"\xff" + from_hex(deployer) + to_bytes32(salt) + keccak256(initcode)
    )
    return to_checksum_address(to_hex(digest[12:]))
