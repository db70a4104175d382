"""
Error hierarchy for blocksmith.

Every fatal condition carries machine-readable context so test code can
assert on the cause rather than on message substrings::

    with pytest.raises(UnresolvedLibraryError) as info:
        await foundry.deploy(file="Uses", libs={})
    assert info.value.missing == ["ExtLib"]
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any


class BlocksmithError(RuntimeError):
    exit_code: int = 1

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.context: dict[str, Any] = context
        for key, value in context.items():
            # never shadow Exception.args or subclass properties
            if not hasattr(type(self), key):
                setattr(self, key, value)

    def __str__(self) -> str:
        message = super().__str__()
        if not self.context:
            return message
        detail = ", ".join(f"{k}={_short(v)}" for k, v in self.context.items())
        return f"{message} ({detail})"


class ConfigError(BlocksmithError):
    exit_code = 2


class LaunchError(BlocksmithError):
    """Anvil wrote to stderr, exited, or timed out before it was listening."""

    exit_code = 3


@dataclass(frozen=True)
class Diagnostic:
    severity: str
    message: str

    @property
    def is_error(self) -> bool:
        return self.severity.lower() == "error"


class BuildError(BlocksmithError):
    exit_code = 4

    @property
    def errors(self) -> list[Diagnostic]:
        return [d for d in getattr(self, "diagnostics", []) if d.is_error]


class UnknownContractError(BlocksmithError):
    exit_code = 5


class UnknownWalletError(BlocksmithError):
    exit_code = 6


class UnownedWalletError(UnknownWalletError):
    pass


class EmptyBytecodeError(BlocksmithError):
    exit_code = 7


class UnresolvedLibraryError(BlocksmithError):
    exit_code = 7


class TransactionError(BlocksmithError):
    """A mined transaction reverted (receipt status 0)."""

    exit_code = 8


class DeploymentError(TransactionError):
    pass


class NotReadyError(BlocksmithError):
    exit_code = 9


class RpcError(BlocksmithError):
    """JSON-RPC error object returned by the node (``code``, ``data``)."""

    exit_code = 10

    @property
    def revert_data(self) -> bytes | None:
        data = getattr(self, "data", None)
        if isinstance(data, dict):
            data = data.get("data")
        if isinstance(data, str) and data.startswith("0x"):
            try:
                return bytes.fromhex(data[2:])
            except ValueError:
                return None
        return None


def _short(value: Any, limit: int = 120) -> str:
    text = repr(value)
    if len(text) > limit:
        text = text[: limit - 3] + "..."
    return text
