"""
End-to-end tests against a real anvil and forge.

Skipped unless both executables are on PATH. Each test launches its
own node without a project (inline Solidity only).
"""

from __future__ import annotations

import shutil
from typing import AsyncIterator

import pytest
import pytest_asyncio

from blocksmith import Foundry
from blocksmith.errors import TransactionError, UnresolvedLibraryError

pytestmark = pytest.mark.skipif(
    shutil.which("anvil") is None or shutil.which("forge") is None,
    reason="anvil and forge are required",
)

COUNTER = """
contract Counter {
    event Changed(address indexed who, uint256 value);
    uint256 public value;
    function set(uint256 v) external {
        require(v != 13, "unlucky");
        value = v;
        emit Changed(msg.sender, v);
    }
}
"""

LINKED = """
library ExtLib {
    function twice(uint256 x) external pure returns (uint256) { return x * 2; }
}
contract Uses {
    function run(uint256 x) external pure returns (uint256) { return ExtLib.twice(x); }
}
"""


@pytest_asyncio.fixture
async def foundry() -> AsyncIterator[Foundry]:
    f = await Foundry.launch(root=False, info_log=False)
    yield f
    await f.shutdown()


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_deploy_set_get(self, foundry: Foundry) -> None:
        counter = await foundry.deploy(sol=COUNTER)
        receipt = await foundry.confirm(counter.set(2))
        assert await counter.value() == 2
        events = foundry.get_event_results(receipt, "Changed")
        assert events[0].args["who"] == foundry.wallets["admin"].address

    @pytest.mark.asyncio
    async def test_revert(self, foundry: Foundry) -> None:
        counter = await foundry.deploy(sol=COUNTER)
        with pytest.raises(TransactionError):
            await foundry.confirm(counter.set(13, gas=100_000))

    @pytest.mark.asyncio
    async def test_libraries(self, foundry: Foundry) -> None:
        with pytest.raises(UnresolvedLibraryError):
            await foundry.deploy(sol=LINKED)
        lib = await foundry.deploy(sol=LINKED, contract="ExtLib")
        uses = await foundry.deploy(sol=LINKED, libs=[lib])
        assert await uses.run(21) == 42

    @pytest.mark.asyncio
    async def test_create2_is_deterministic(self, foundry: Foundry) -> None:
        a = await foundry.deploy(sol=COUNTER, salt=1)
        b = await foundry.deploy(sol=COUNTER, salt=2)
        assert a.address != b.address
