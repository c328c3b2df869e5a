# FILE: causal_search/search/order_scorer.py
# ======================================================================================
# Causal Search Engine (CSE)
# OrderScorer: parent sets and local scores for a variable permutation
# --------------------------------------------------------------------------------------
# For a permutation pi, every node's parents are chosen among its predecessors in pi,
# so the implied graph is acyclic by construction. Per position we keep an entry
# (parents, local score); entries are memoized on (node, set of predecessors), so a
# node whose predecessor *set* is unchanged by a move is never rescored.
#
# Parent selection (grow-shrink, deterministic)
#   start  : knowledge-required parents that precede the node
#   grow   : add the predecessor with the largest strictly positive gain;
#            ties go to the earliest predecessor in pi
#   shrink : drop the parent whose removal scores highest, if that score is >= the
#            current one (ties favour the sparser set); required parents stay
#   depth  : optional cap on the number of non-required parents (-1 = none)
#
# Moves
#   move_to(node, j) : reinsert node at j; rescore only positions between old and new
#   tuck(x, j)       : ancestors of x in (j, index(x)], x included, move in order to j
#
# Bookmarks are immutable snapshots (order, entries) kept under integer keys;
# go_to_bookmark copies back only the positions that differ.
#
# License
# -------
# MIT (c) 2025 Causal Search Engine contributors
# ======================================================================================

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Dict, FrozenSet, List, NamedTuple, Optional, Sequence, Set, Tuple

from ..errors import ConfigurationError
from ..graph import Graph, Node
from ..knowledge import Knowledge
from .meek import dag_to_cpdag
from .scores import Score, ensure_finite_score

DEFAULT_BOOKMARK = -1


class ScoredParents(NamedTuple):
    parents: Tuple[Node, ...]
    score: float


@dataclass(frozen=True)
class _Snapshot:
    order: Tuple[Node, ...]
    entries: Tuple[ScoredParents, ...]


class OrderScorer:
    """
    Parameters
    ----------
    score : Score
        Decomposable score over the variables to order.
    knowledge : Knowledge, optional
        Forbidden parents are never chosen; required parents are always kept when
        they precede the node.
    depth : int
        Maximum number of parents chosen by the search (-1 = unlimited).
    """

    def __init__(self, score: Score, knowledge: Optional[Knowledge] = None, depth: int = -1):
        if depth < -1:
            raise ConfigurationError(f"depth must be >= -1, got {depth}")
        self.oracle = score
        self.knowledge = knowledge
        self.depth = depth
        self._variables: List[Node] = score.variables
        self._col: Dict[Node, int] = {v: score.index_of(v) for v in self._variables}
        self._pi: List[Node] = list(self._variables)
        self._pos: Dict[Node, int] = {v: i for i, v in enumerate(self._pi)}
        self._entries: List[Optional[ScoredParents]] = [None] * len(self._pi)
        self._cache: Dict[Tuple[Node, FrozenSet[Node]], ScoredParents] = {}
        self._bookmarks: Dict[int, _Snapshot] = {}
        self._forbidden: Dict[Node, Set[Node]] = {v: set() for v in self._variables}
        self._required: Dict[Node, Set[Node]] = {v: set() for v in self._variables}
        if knowledge is not None:
            for y in self._variables:
                for z in self._variables:
                    if z == y:
                        continue
                    if knowledge.is_forbidden(z.name, y.name):
                        self._forbidden[y].add(z)
                    elif knowledge.is_required(z.name, y.name):
                        self._required[y].add(z)
        self.cache_hits = 0
        self.cache_misses = 0

    # ------------------------------ scoring ------------------------------------------

    def score(self, order: Optional[Sequence[Node]] = None) -> float:
        """Reset to `order` (if given), rescore every position, return the total."""
        if order is not None:
            self._set_order(order)
            self._update(0, len(self._pi) - 1)
        elif self._pi and self._entries[0] is None:
            self._update(0, len(self._pi) - 1)
        return self.total()

    def total(self) -> float:
        return math.fsum(e.score for e in self._entries if e is not None)

    def _set_order(self, order: Sequence[Node]) -> None:
        order = list(order)
        if len(order) != len(self._variables) or set(order) != set(self._variables):
            raise ConfigurationError("Order must be a permutation of the score's variables.")
        self._pi = order
        self._pos = {v: i for i, v in enumerate(order)}

    def _update(self, lo: int, hi: int) -> None:
        for p in range(lo, hi + 1):
            node = self._pi[p]
            self._pos[node] = p
            self._entries[p] = self._entry(p)

    def _entry(self, p: int) -> ScoredParents:
        node = self._pi[p]
        prefix = self._pi[:p]
        key = (node, frozenset(prefix))
        hit = self._cache.get(key)
        if hit is not None:
            self.cache_hits += 1
            return hit
        self.cache_misses += 1
        entry = self._grow_shrink(node, prefix)
        self._cache[key] = entry
        return entry

    def _local(self, node: Node, parents: Sequence[Node]) -> float:
        cols = [self._col[z] for z in parents]
        col = self._col[node]
        return ensure_finite_score(self.oracle.local_score(col, cols), col, cols)

    def _grow_shrink(self, node: Node, prefix: List[Node]) -> ScoredParents:
        candidates = [z for z in prefix if z not in self._forbidden[node]]
        required = [z for z in candidates if z in self._required[node]]
        parents = list(required)
        current = self._local(node, parents)
        cap = math.inf if self.depth < 0 else self.depth + len(required)

        while len(parents) < cap:
            best_z, best_s = None, current
            for z in candidates:
                if z in parents:
                    continue
                s = self._local(node, parents + [z])
                if s > best_s:
                    best_z, best_s = z, s
            if best_z is None:
                break
            parents.append(best_z)
            current = best_s

        while True:
            best_z, best_s = None, -math.inf
            for z in parents:
                if z in self._required[node]:
                    continue
                s = self._local(node, [w for w in parents if w != z])
                if s > best_s:
                    best_z, best_s = z, s
            if best_z is None or best_s < current:
                break
            parents.remove(best_z)
            current = best_s

        parents.sort(key=self._col.__getitem__)
        return ScoredParents(tuple(parents), current)

    # ------------------------------ moves --------------------------------------------

    def move_to(self, node: Node, index: int) -> float:
        i = self._pos[node]
        if not 0 <= index < len(self._pi):
            raise IndexError(f"index {index} out of range for {len(self._pi)} variables")
        if i == index:
            return self.total()
        self._pi.pop(i)
        self._pi.insert(index, node)
        self._entries.pop(i)
        self._entries.insert(index, None)
        self._update(min(i, index), max(i, index))
        return self.total()

    def tuck(self, x: Node, j: int) -> float:
        """
        Move x, together with its ancestors lying between positions j+1 and
        index(x), to start at position j (relative order kept); the node at j
        and the non-ancestors follow them.
        """
        i = self._pos[x]
        if j >= i:
            return self.total()
        anc = self.ancestors(x)
        window = self._pi[j + 1:i + 1]
        moved = [n for n in window if n in anc]
        stay = [n for n in window if n not in anc]
        self._pi[j:i + 1] = moved + [self._pi[j]] + stay
        self._entries[j:i + 1] = [None] * (i + 1 - j)
        self._update(j, i)
        return self.total()

    # ------------------------------ bookmarks ----------------------------------------

    def bookmark(self, key: int = DEFAULT_BOOKMARK) -> None:
        self.score()
        self._bookmarks[key] = _Snapshot(tuple(self._pi), tuple(self._entries))

    def go_to_bookmark(self, key: int = DEFAULT_BOOKMARK) -> None:
        snap = self._bookmarks.get(key)
        if snap is None:
            raise KeyError(f"No bookmark under key {key}")
        n = len(self._pi)
        lo = 0
        while lo < n and self._pi[lo] is snap.order[lo] and self._entries[lo] is snap.entries[lo]:
            lo += 1
        if lo == n:
            return
        hi = n - 1
        while self._pi[hi] is snap.order[hi] and self._entries[hi] is snap.entries[hi]:
            hi -= 1
        self._pi[lo:hi + 1] = snap.order[lo:hi + 1]
        self._entries[lo:hi + 1] = snap.entries[lo:hi + 1]
        for p in range(lo, hi + 1):
            self._pos[self._pi[p]] = p

    def has_bookmark(self, key: int = DEFAULT_BOOKMARK) -> bool:
        return key in self._bookmarks

    def clear_bookmarks(self) -> None:
        self._bookmarks.clear()

    # ------------------------------ queries ------------------------------------------

    @property
    def pi(self) -> List[Node]:
        return list(self._pi)

    @property
    def variables(self) -> List[Node]:
        return list(self._variables)

    def size(self) -> int:
        return len(self._pi)

    def get(self, i: int) -> Node:
        return self._pi[i]

    def index(self, node: Node) -> int:
        return self._pos[node]

    def _scored(self, node: Node) -> ScoredParents:
        if self._entries[self._pos[node]] is None:
            self.score()
        return self._entries[self._pos[node]]

    def parents(self, node: Node) -> List[Node]:
        return list(self._scored(node).parents)

    def node_score(self, node: Node) -> float:
        return self._scored(node).score

    def adjacent(self, a: Node, b: Node) -> bool:
        return a in self._scored(b).parents or b in self._scored(a).parents

    def ancestors(self, node: Node) -> Set[Node]:
        """Ancestors of `node` in the implied DAG, `node` included."""
        out: Set[Node] = set()
        stack = [node]
        while stack:
            n = stack.pop()
            if n in out:
                continue
            out.add(n)
            stack.extend(self._scored(n).parents)
        return out

    def num_edges(self) -> int:
        return sum(len(self._scored(v).parents) for v in self._pi)

    def get_graph(self, cpdag: bool = True) -> Graph:
        """The implied DAG, or its CPDAG when `cpdag` is true."""
        g = Graph(self._variables)
        for node in self._pi:
            for p in self._scored(node).parents:
                g.add_directed_edge(p, node)
        return dag_to_cpdag(g) if cpdag else g


__all__ = ["OrderScorer", "ScoredParents", "DEFAULT_BOOKMARK"]
