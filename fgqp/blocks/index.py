from __future__ import annotations

from typing import Dict, Hashable, Iterable, List, Tuple

Key = Hashable


class VariableIndex:
    """
    Key → ordered list of factor positions in one graph.

    Built once from a fixed graph; there is no incremental update, so any change to
    the graph requires a rebuild. Looking up a key the graph never touches returns an
    empty list instead of raising.
    """

    def __init__(self, graph: Iterable = ()):
        self._index: Dict[Key, List[int]] = {}
        self.n_factors = 0
        for position, factor in enumerate(graph):
            for key in factor.keys():
                self._index.setdefault(key, []).append(position)
            self.n_factors = position + 1

    def lookup(self, key: Key) -> Tuple[int, ...]:
        return tuple(self._index.get(key, ()))

    __getitem__ = lookup

    def __contains__(self, key: Key) -> bool:
        return key in self._index

    def __len__(self) -> int:
        return len(self._index)

    def keys(self) -> List[Key]:
        return list(self._index)

    def __repr__(self) -> str:
        return f"VariableIndex({len(self._index)} keys, {self.n_factors} factors)"


def constrained_keys(*graphs) -> List[Key]:
    """Keys touched by any factor of ``graphs``, in first-encounter order."""
    seen: Dict[Key, None] = {}
    for graph in graphs:
        for factor in graph:
            for key in factor.keys():
                seen.setdefault(key, None)
    return list(seen)
