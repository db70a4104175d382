"""
Development wallets.

Wallets are created by name: the private key is ``keccak256(name)``, so
the same name yields the same address on every launch. Impersonated
wallets wrap an arbitrary address unlocked on the node and send
unsigned transactions.

Dependencies: eth-account (no full web3.py needed)
"""

from __future__ import annotations

import asyncio
from typing import Any, Optional

from eth_account import Account
from eth_account.signers.local import LocalAccount

from .chain.rpc import RpcClient
from .chain.tx import PendingTransaction, fill_transaction, normalize_tx, sign_and_send
from .utils import id_hash, to_checksum_address, to_hex


def derive_private_key(name: str) -> str:
    """0x-prefixed private key for a named dev wallet."""
    return to_hex(id_hash(name))


def get_account(private_key: str) -> LocalAccount:
    return Account.from_key(private_key)


class DevWallet:
    """
    A named, locally signing account connected to a node.

    Args:
        name: Display name (also the key derivation seed for named wallets)
        account: eth-account signer
        client: Connection used for nonces, estimates and sending
        automine: Whether the node mines on every transaction
    """

    def __init__(
        self,
        name: str,
        account: Optional[LocalAccount],
        client: RpcClient,
        automine: bool = True,
        address: Optional[str] = None,
    ) -> None:
        self.name = name
        self.account = account
        self.client = client
        self.automine = automine
        self.address = to_checksum_address(address or account.address)
        self._next_nonce: Optional[int] = None
        # held from nonce lookup until the node has the transaction
        self._send_lock = asyncio.Lock()

    @classmethod
    def from_name(cls, name: str, client: RpcClient, automine: bool = True) -> DevWallet:
        return cls(name, get_account(derive_private_key(name)), client, automine)

    @property
    def private_key(self) -> Optional[str]:
        if self.account is None:
            return None
        return to_hex(self.account.key)

    async def get_balance(self) -> int:
        return await self.client.get_balance(self.address)

    async def get_nonce(self) -> int:
        return await self.client.get_transaction_count(self.address, "pending")

    async def set_nonce(self, nonce: int) -> None:
        await self.client.set_nonce(self.address, nonce)
        self._next_nonce = None

    async def _take_nonce(self) -> int:
        nonce = await self.get_nonce()
        if not self.automine and self._next_nonce is not None:
            # interval mining: queued transactions may not be visible yet
            nonce = max(nonce, self._next_nonce)
        self._next_nonce = nonce + 1
        return nonce

    async def send_transaction(self, tx: dict[str, Any]) -> PendingTransaction:
        """
        Sign and submit a transaction from this wallet.

        Args:
            tx: ``to`` (address, wallet or contract; omitted for creation),
                ``data``, ``value``, optional ``gas``/``gasPrice``/``nonce``

        Returns:
            PendingTransaction whose ``wait()`` yields the receipt
        """
        request = normalize_tx(tx)
        async with self._send_lock:
            nonce = request.get("nonce")
            if nonce is None:
                nonce = await self._take_nonce()
            filled = await fill_transaction(self.client, self.address, request, nonce)
            tx_hash = await sign_and_send(self.account, self.client, filled)
        return PendingTransaction(
            hash=tx_hash,
            client=self.client,
            sender=self.address,
            to=request["to"],
            data=request["data"],
            value=request["value"],
            nonce=nonce,
        )

    def __str__(self) -> str:
        return self.name

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name} {self.address}>"


class ImpersonatedWallet(DevWallet):
    """An address unlocked with ``anvil_impersonateAccount``."""

    def __init__(self, address: str, client: RpcClient, automine: bool = True) -> None:
        super().__init__(address, None, client, automine, address=address)

    async def send_transaction(self, tx: dict[str, Any]) -> PendingTransaction:
        request = normalize_tx(tx)
        fields: dict[str, Any] = {
            "from": self.address,
            "to": request["to"],
            "data": request["data"],
            "value": request["value"],
            "gas": request.get("gas"),
            "nonce": request.get("nonce"),
        }
        tx_hash = await self.client.send_transaction(fields)
        return PendingTransaction(
            hash=tx_hash,
            client=self.client,
            sender=self.address,
            to=request["to"],
            data=request["data"],
            value=request["value"],
            nonce=request.get("nonce"),
        )
