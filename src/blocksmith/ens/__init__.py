"""
ENS - name trees, record encoding and wildcard resolver lookups.
"""

from .node import Node, dns_encode, namehash
from .records import RecordQuery, RecordResult
from .resolver import Profile, Resolver, registry_contract

__all__ = [
    "Node",
    "Profile",
    "RecordQuery",
    "RecordResult",
    "Resolver",
    "dns_encode",
    "namehash",
    "registry_contract",
]
