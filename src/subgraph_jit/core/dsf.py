# Copyright (c) 2025.
# This file is part of subgraph-jit, released under the MIT License.
"""
Disjoint-set forest (union-find) keyed by variable identifiers.

Used by :func:`optimization.subgraph_solver.split_graph` to run a
Kruskal-style spanning-forest pass over the binary factors of a graph.
Keys are registered lazily: an unseen key is its own representative.
"""

from __future__ import annotations
from typing import Dict, Hashable, Set


class DSFMap:
    """Union-find over hashable keys with path compression and union by rank."""

    def __init__(self) -> None:
        self._parent: Dict[Hashable, Hashable] = {}
        self._rank: Dict[Hashable, int] = {}

    def __contains__(self, key: Hashable) -> bool:
        return key in self._parent

    def __len__(self) -> int:
        return len(self._parent)

    def _add(self, key: Hashable) -> None:
        self._parent[key] = key
        self._rank[key] = 0

    def find(self, key: Hashable) -> Hashable:
        """Return the representative of the set containing ``key``."""
        if key not in self._parent:
            self._add(key)
            return key

        root = key
        while self._parent[root] != root:
            root = self._parent[root]

        # Path compression
        while self._parent[key] != root:
            nxt = self._parent[key]
            self._parent[key] = root
            key = nxt
        return root

    def merge(self, a: Hashable, b: Hashable) -> Hashable:
        """Union the sets containing ``a`` and ``b``; returns the new root."""
        ra = self.find(a)
        rb = self.find(b)
        if ra == rb:
            return ra

        if self._rank[ra] < self._rank[rb]:
            ra, rb = rb, ra
        self._parent[rb] = ra
        if self._rank[ra] == self._rank[rb]:
            self._rank[ra] += 1
        return ra

    def same_set(self, a: Hashable, b: Hashable) -> bool:
        return self.find(a) == self.find(b)

    def sets(self) -> Dict[Hashable, Set[Hashable]]:
        """Group every registered key by its representative."""
        groups: Dict[Hashable, Set[Hashable]] = {}
        for key in list(self._parent):
            groups.setdefault(self.find(key), set()).add(key)
        return groups
