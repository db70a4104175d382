"""
Node - in-memory tree of hierarchical names and their namehashes.

Children are created on demand and cached, so walking to the same name
twice yields the same object::

    root = Node.root()
    a = root.create("a.b.eth")
    assert root.find("b.eth").child("a") is a
"""

from __future__ import annotations

from typing import Callable, Iterator, Optional

import click

from ..utils import ZERO_HASH, id_hash, keccak256, to_hex

MAX_DNS_LABEL = 255


class Node:
    def __init__(
        self,
        parent: Optional[Node],
        namehash: bytes,
        label: str,
        labelhash: Optional[bytes] = None,
    ) -> None:
        self.parent = parent
        self.namehash = namehash
        self.label = label
        self.labelhash = labelhash
        self._children: dict[str, Node] = {}

    @classmethod
    def root(cls, tag: str = "[root]") -> Node:
        return cls(None, ZERO_HASH, tag)

    @classmethod
    def from_name(cls, name: str) -> Node:
        return cls.root().create(name)

    # ---- mapping over children ----

    def __getitem__(self, label: str) -> Node:
        return self._children[label]

    def __contains__(self, label: object) -> bool:
        return label in self._children

    def __iter__(self) -> Iterator[str]:
        return iter(self._children)

    def __len__(self) -> int:
        return len(self._children)

    def get(self, label: str) -> Optional[Node]:
        return self._children.get(label)

    def children(self) -> list[Node]:
        return list(self._children.values())

    # ---- derived properties ----

    @property
    def is_root(self) -> bool:
        return self.parent is None

    @property
    def name(self) -> str:
        return ".".join(node.label for node in self.path())

    @property
    def dns(self) -> bytes:
        """DNS wire encoding of ``name`` (length-prefixed labels, 0 terminated)."""
        return dns_encode(self.name)

    @property
    def depth(self) -> int:
        return len(self.path())

    @property
    def is_eth_2ld(self) -> bool:
        return self.depth == 2 and self.parent is not None and self.parent.label == "eth"

    @property
    def node_count(self) -> int:
        return sum(node.node_count for node in self._children.values()) + 1

    @property
    def root_node(self) -> Node:
        node = self
        while node.parent is not None:
            node = node.parent
        return node

    def path(self, include_root: bool = False) -> list[Node]:
        """Nodes from this one up to (optionally including) the root."""
        nodes = []
        node: Optional[Node] = self
        while node is not None and node.parent is not None:
            nodes.append(node)
            node = node.parent
        if include_root and node is not None:
            nodes.append(node)
        return nodes

    # ---- traversal / creation ----

    def find(self, name: str) -> Optional[Node]:
        if not name:
            return self
        node: Optional[Node] = self
        for label in reversed(name.split(".")):
            node = node.get(label)
            if node is None:
                return None
        return node

    def create(self, name: str) -> Node:
        if not name:
            return self
        node = self
        for label in reversed(name.split(".")):
            node = node.child(label)
        return node

    def child(self, label: str) -> Node:
        node = self._children.get(label)
        if node is None:
            labelhash = id_hash(label)
            namehash = keccak256(self.namehash + labelhash)
            node = type(self)(self, namehash, label, labelhash)
            self._children[label] = node
        return node

    def unique(self, prefix: str = "u") -> Node:
        i = 1
        while f"{prefix}{i}" in self._children:
            i += 1
        return self.child(f"{prefix}{i}")

    def scan(self, fn: Callable[[Node, int], None], level: int = 0) -> None:
        fn(self, level)
        for node in self._children.values():
            node.scan(fn, level + 1)

    def flat(self) -> list[Node]:
        nodes: list[Node] = []
        self.scan(lambda node, _: nodes.append(node))
        return nodes

    def print(self, format: Callable[[Node], str] = lambda node: node.label) -> None:
        self.scan(lambda node, level: click.echo("  " * level + format(node)))

    def __str__(self) -> str:
        return self.name

    def __repr__(self) -> str:
        return f"<Node {self.name or self.label} {to_hex(self.namehash)}>"


def dns_encode(name: str) -> bytes:
    """Encode a dotted name as a DNS wire-format name."""
    out = bytearray()
    if name:
        for label in name.split("."):
            raw = label.encode("utf-8")
            if not raw:
                raise ValueError(f"Invalid empty label in {name!r}")
            if len(raw) > MAX_DNS_LABEL:
                raise ValueError(f"Label exceeds {MAX_DNS_LABEL} bytes: {label[:16]}...")
            out.append(len(raw))
            out.extend(raw)
    out.append(0)
    return bytes(out)


def namehash(name: str) -> bytes:
    """Namehash of ``name`` without keeping a tree around."""
    node = ZERO_HASH
    if name:
        for label in reversed(name.split(".")):
            node = keccak256(node + id_hash(label))
    return node
