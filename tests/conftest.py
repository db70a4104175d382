"""Shared fixtures: an in-process fake node and a registry attached to it."""

from __future__ import annotations

from typing import AsyncIterator

import pytest
import pytest_asyncio

from blocksmith.foundry import Foundry
from fakes import COUNTER_BYTECODE, FakeChain, counter_factory


@pytest.fixture()
def chain() -> FakeChain:
    fake = FakeChain()
    fake.template(COUNTER_BYTECODE, counter_factory)
    return fake


@pytest.fixture()
def info_lines() -> list[str]:
    return []


@pytest_asyncio.fixture
async def foundry(chain: FakeChain, info_lines: list[str]) -> AsyncIterator[Foundry]:
    f = await Foundry.connect("http://fake", client=chain.client(), info_log=info_lines.append)
    yield f
    await f.shutdown()
