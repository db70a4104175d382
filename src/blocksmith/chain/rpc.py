"""
Async JSON-RPC client for a local (or forked) node.

Lightweight alternative to web3.py: uses httpx for HTTP + eth-abi for
encoding. Covers only what the harness needs: raw requests, balances,
code, storage, receipts, and the anvil cheat methods.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import time
from typing import Any, Optional

import httpx

from ..config import get_rpc_timeout
from ..errors import RpcError
from ..utils import from_hex, hex_to_int, to_bytes32, to_hex, to_quantity

logger = logging.getLogger(__name__)


class RpcClient:
    """
    Connection to a JSON-RPC endpoint.

    Args:
        url: HTTP endpoint, e.g. ``http://127.0.0.1:8545``
        chain_id: Known chain id (skips the ``eth_chainId`` round trip)
        timeout: Per-request timeout in seconds (``None`` = unbounded)
        client: Pre-built ``httpx.AsyncClient`` (tests inject a mock transport)
    """

    def __init__(
        self,
        url: str,
        *,
        chain_id: Optional[int] = None,
        timeout: Optional[float] = None,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.url = url
        self._chain_id = chain_id
        self._ids = itertools.count(1)
        self._client = client or httpx.AsyncClient(
            timeout=timeout if timeout is not None else get_rpc_timeout()
        )
        self._closed = False

    async def __aenter__(self) -> RpcClient:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if not self._closed:
            self._closed = True
            await self._client.aclose()

    @property
    def closed(self) -> bool:
        return self._closed

    async def send(self, method: str, params: Optional[list] = None) -> Any:
        """
        Make a JSON-RPC call.

        Returns:
            Result field from the RPC response

        Raises:
            RpcError: If the node answers with an error object
        """
        payload = {
            "jsonrpc": "2.0",
            "method": method,
            "params": params or [],
            "id": next(self._ids),
        }
        logger.debug("-> %s %s", method, payload["params"])
        response = await self._client.post(self.url, json=payload)
        response.raise_for_status()
        data = response.json()

        if "error" in data and data["error"] is not None:
            error = data["error"]
            raise RpcError(
                error.get("message", "RPC error"),
                method=method,
                code=error.get("code"),
                data=error.get("data"),
            )

        return data.get("result")

    # ---- chain ----

    async def chain_id(self) -> int:
        if self._chain_id is None:
            self._chain_id = hex_to_int(await self.send("eth_chainId"))
        return self._chain_id

    async def block_number(self) -> int:
        return hex_to_int(await self.send("eth_blockNumber"))

    async def gas_price(self) -> int:
        return hex_to_int(await self.send("eth_gasPrice"))

    async def get_automine(self) -> bool:
        return bool(await self.send("anvil_getAutomine"))

    async def mine(self, blocks: int = 1) -> None:
        await self.send("anvil_mine", [to_quantity(blocks)])

    # ---- accounts ----

    async def get_balance(self, address: str, block: str = "latest") -> int:
        return hex_to_int(await self.send("eth_getBalance", [address, block]))

    async def set_balance(self, address: str, wei: int) -> None:
        await self.send("anvil_setBalance", [address, to_quantity(wei)])

    async def get_transaction_count(self, address: str, block: str = "pending") -> int:
        return hex_to_int(await self.send("eth_getTransactionCount", [address, block]))

    async def set_nonce(self, address: str, nonce: int) -> None:
        await self.send("anvil_setNonce", [address, to_quantity(nonce)])

    async def impersonate_account(self, address: str) -> None:
        await self.send("anvil_impersonateAccount", [address])

    async def get_code(self, address: str, block: str = "latest") -> bytes:
        return from_hex(await self.send("eth_getCode", [address, block]))

    async def get_storage_at(self, address: str, slot: int, block: str = "latest") -> bytes:
        return from_hex(await self.send("eth_getStorageAt", [address, to_quantity(slot), block]))

    async def set_storage_at(self, address: str, slot: int | bytes, value: int | bytes) -> None:
        await self.send(
            "anvil_setStorageAt",
            [address, to_hex(to_bytes32(slot)), to_hex(to_bytes32(value))],
        )

    # ---- transactions ----

    async def call(self, tx: dict[str, Any], block: str = "latest") -> bytes:
        return from_hex(await self.send("eth_call", [_rpc_tx(tx), block]))

    async def estimate_gas(self, tx: dict[str, Any]) -> int:
        return hex_to_int(await self.send("eth_estimateGas", [_rpc_tx(tx)]))

    async def send_raw_transaction(self, raw_tx: bytes | str) -> str:
        if isinstance(raw_tx, (bytes, bytearray)):
            raw_tx = to_hex(raw_tx)
        return await self.send("eth_sendRawTransaction", [raw_tx])

    async def send_transaction(self, tx: dict[str, Any]) -> str:
        """Unsigned send; only valid for unlocked/impersonated accounts."""
        return await self.send("eth_sendTransaction", [_rpc_tx(tx)])

    async def get_transaction_receipt(self, tx_hash: str) -> Optional[dict]:
        return await self.send("eth_getTransactionReceipt", [tx_hash])

    async def wait_for_receipt(
        self,
        tx_hash: str,
        timeout: float = 120.0,
        poll_interval: float = 0.1,
    ) -> dict:
        """
        Wait for a transaction receipt.

        Raises:
            TimeoutError: If receipt not found within timeout
        """
        start = time.monotonic()
        while time.monotonic() - start < timeout:
            receipt = await self.get_transaction_receipt(tx_hash)
            if receipt is not None:
                return receipt
            await asyncio.sleep(poll_interval)

        raise TimeoutError(f"Transaction {tx_hash} not confirmed within {timeout}s")


def _rpc_tx(tx: dict[str, Any]) -> dict[str, Any]:
    """Convert python-typed transaction fields into JSON-RPC shapes."""
    out: dict[str, Any] = {}
    for key, value in tx.items():
        if value is None:
            continue
        if key == "data" or key == "input":
            out["data"] = value if isinstance(value, str) else to_hex(value)
        elif key in ("value", "gas", "gasPrice", "nonce", "maxFeePerGas", "maxPriorityFeePerGas"):
            out[key] = value if isinstance(value, str) else to_quantity(value)
        else:
            out[key] = value
    return out
