"""
Chain - thin on-chain interaction layer.

Provides the async JSON-RPC client, ABI handling, contract handles and
transaction utilities used by the launcher, registry and resolver.

Uses httpx + eth-account + eth-abi instead of the heavyweight web3.py.
"""
