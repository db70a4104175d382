"""
CCIP-Read (EIP-3668) support for ``eth_call``.

A contract that wants its answer fetched off-chain reverts with
``OffchainLookup(sender, urls, callData, callbackFunction, extraData)``.
The client asks one of the gateways for the response and calls the
callback with ``(response, extraData)``.
"""

from __future__ import annotations

import logging
from typing import Optional

import httpx
from eth_abi import encode

from ..errors import BlocksmithError, RpcError
from ..utils import from_hex, to_hex
from .abi import decode_values
from .rpc import RpcClient

logger = logging.getLogger(__name__)

OFFCHAIN_LOOKUP_SELECTOR = bytes.fromhex("556f1830")
OFFCHAIN_LOOKUP_TYPES = ["address", "string[]", "bytes", "bytes4", "bytes"]
MAX_REDIRECTS = 4


class CcipError(BlocksmithError):
    pass


def parse_offchain_lookup(revert: Optional[bytes]) -> Optional[tuple[str, list[str], bytes, bytes, bytes]]:
    if not revert or revert[:4] != OFFCHAIN_LOOKUP_SELECTOR:
        return None
    sender, urls, call_data, callback, extra = decode_values(OFFCHAIN_LOOKUP_TYPES, revert[4:])
    return sender, list(urls), call_data, callback, extra


async def fetch_gateway(
    urls: list[str],
    sender: str,
    call_data: bytes,
    http: Optional[httpx.AsyncClient] = None,
) -> bytes:
    """
    Ask each gateway in turn until one answers.

    Client errors (4xx) are final, server errors fall through to the next URL.
    """
    owned = http is None
    http = http or httpx.AsyncClient(timeout=30)
    errors: list[str] = []
    try:
        for url in urls:
            href = url.replace("{sender}", sender.lower()).replace("{data}", to_hex(call_data))
            if "{data}" in url:
                response = await http.get(href)
            else:
                response = await http.post(href, json={"data": to_hex(call_data), "sender": sender})
            if response.status_code >= 500:
                errors.append(f"{href}: {response.status_code}")
                logger.debug("gateway %s failed with %s", href, response.status_code)
                continue
            if response.status_code >= 400:
                raise CcipError("gateway rejected request", url=href, status=response.status_code)
            return from_hex(response.json()["data"])
    finally:
        if owned:
            await http.aclose()
    raise CcipError("all gateways failed", sender=sender, errors=errors)


async def ccip_call(
    client: RpcClient,
    to: str,
    data: bytes,
    *,
    enabled: bool = True,
    http: Optional[httpx.AsyncClient] = None,
) -> bytes:
    """``eth_call`` that follows ``OffchainLookup`` reverts when ``enabled``."""
    for _ in range(MAX_REDIRECTS + 1):
        try:
            return await client.call({"to": to, "data": data})
        except RpcError as exc:
            lookup = parse_offchain_lookup(exc.revert_data) if enabled else None
            if lookup is None:
                raise
        sender, urls, call_data, callback, extra = lookup
        if sender.lower() != to.lower():
            raise CcipError("OffchainLookup sender mismatch", sender=sender, to=to)
        response = await fetch_gateway(urls, sender, call_data, http=http)
        data = callback + encode(["bytes", "bytes"], [response, extra])
    raise CcipError("too many CCIP redirects", to=to, limit=MAX_REDIRECTS)
