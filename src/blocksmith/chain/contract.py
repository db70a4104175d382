"""
Contract handle - an address bound to an ABI and a runner.

The runner is either an ``RpcClient`` (read-only) or a wallet, which adds
the ability to send transactions::

    value = await contract.get()             # view -> decoded value
    tx = await contract.set(2)               # mutating -> PendingTransaction
    raw = await contract["addr(bytes32)"].call(node)
"""

from __future__ import annotations

from typing import Any, Optional, Union

from ..utils import to_checksum_address
from .abi import AbiLike, Fragment, Interface
from .rpc import RpcClient
from .tx import PendingTransaction


def unwrap(values: tuple[Any, ...]) -> Any:
    """Single return values come back bare, none as ``None``."""
    if not values:
        return None
    if len(values) == 1:
        return values[0]
    return values


class Contract:
    def __init__(self, address: str, abi: AbiLike, runner: Any) -> None:
        self.address = to_checksum_address(address)
        self.interface = Interface.from_abi(abi)
        self.runner = runner

    @property
    def client(self) -> RpcClient:
        if isinstance(self.runner, RpcClient):
            return self.runner
        return self.runner.client

    @property
    def can_send(self) -> bool:
        return hasattr(self.runner, "send_transaction")

    def connect(self, runner: Any) -> Contract:
        return Contract(self.address, self.interface, runner)

    async def call_raw(self, data: bytes, block: str = "latest") -> bytes:
        tx: dict[str, Any] = {"to": self.address, "data": data}
        sender = getattr(self.runner, "address", None)
        if sender:
            tx["from"] = sender
        return await self.client.call(tx, block)

    async def call(self, key: Union[str, Fragment], *args: Any, block: str = "latest") -> Any:
        frag = self.interface.get_function(key)
        data = self.interface.encode_function_data(frag, args)
        raw = await self.call_raw(data, block)
        return unwrap(self.interface.decode_function_result(frag, raw))

    async def transact(
        self,
        key: Union[str, Fragment],
        *args: Any,
        value: int = 0,
        gas: Optional[int] = None,
    ) -> PendingTransaction:
        if not self.can_send:
            raise TypeError(f"Contract {self.address} is read-only (no wallet runner)")
        data = self.interface.encode_function_data(key, args)
        return await self.runner.send_transaction(
            {"to": self.address, "data": data, "value": value, "gas": gas}
        )

    def function(self, key: str) -> ContractFunction:
        return ContractFunction(self, self.interface.get_function(key))

    def __getitem__(self, key: str) -> ContractFunction:
        return self.function(key)

    def __getattr__(self, name: str) -> ContractFunction:
        if name.startswith("_") or "interface" not in self.__dict__:
            raise AttributeError(name)
        if not self.interface.has_function(name):
            raise AttributeError(f"{type(self).__name__} has no function {name!r}")
        return self.function(name)

    def __str__(self) -> str:
        return self.address

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.address}>"


class ContractFunction:
    """Bound function; calling it reads for view/pure, transacts otherwise."""

    def __init__(self, contract: Contract, fragment: Fragment) -> None:
        self.contract = contract
        self.fragment = fragment

    def __call__(self, *args: Any, **overrides: Any):
        if self.fragment.is_view:
            return self.call(*args, **overrides)
        return self.transact(*args, **overrides)

    async def call(self, *args: Any, block: str = "latest") -> Any:
        return await self.contract.call(self.fragment, *args, block=block)

    async def transact(self, *args: Any, value: int = 0, gas: Optional[int] = None) -> PendingTransaction:
        return await self.contract.transact(self.fragment, *args, value=value, gas=gas)

    def encode(self, *args: Any) -> bytes:
        return self.contract.interface.encode_function_data(self.fragment, args)

    def __repr__(self) -> str:
        return f"<ContractFunction {self.fragment.signature} @ {self.contract.address}>"
