# FILE: causal_search/search/bes.py
# ======================================================================================
# Causal Search Engine (CSE)
# Backward Equivalence Search: greedy edge deletion over a CPDAG
# --------------------------------------------------------------------------------------
# Arrow (candidate deletion of x *-> y)
#   na_yx   : undirected neighbours z of y (z --- y) that are adjacent to x
#   H       : subset of na_yx reoriented away from y (and from x) by the deletion
#   bump    : local_score(y | S) - local_score(y | S + x),
#             S = (na_yx - H) + parents(y) - {x}; the best H is kept per pair
# The heap is ordered by (bump desc, insertion index asc).
#
# Loop
#   pop -> drop if stale (edge gone, edge now points at x, na_yx or parents(y) changed,
#   na_yx - H not a clique, knowledge forbids x --> h or y --> h) -> delete x *-* y,
#   orient y --> h (and x --> h where x --- h) for h in H -> revert to CPDAG with Meek
#   -> re-evaluate pairs around the changed nodes.
# Only deletions with bump >= 0 are queued, so the score never decreases. Pairs whose
# edge is required by knowledge are never queued.
#
# Re-evaluation of pairs is independent per pair; with n_jobs != 1 it runs on a thread
# pool. Workers return immutable candidates and only this thread touches the heap.
#
# License
# -------
# MIT (c) 2025 Causal Search Engine contributors
# ======================================================================================

from __future__ import annotations

import heapq
import itertools
import math
import os
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Dict, FrozenSet, Iterable, List, Optional, Set, Tuple

from ..errors import ConfigurationError
from ..graph import Endpoint, Graph, Node
from ..knowledge import Knowledge
from ..utils.logging_utils import get_logger
from .meek import MeekRules
from .monitor import SearchMonitor
from .scores import Score, ensure_finite_score

log = get_logger("cse.bes")

Pair = Tuple[Node, Node]


@dataclass(frozen=True)
class Arrow:
    bump: float
    a: Node
    b: Node
    h: FrozenSet[Node]
    na_yx: FrozenSet[Node]
    parents: FrozenSet[Node]
    index: int

    def sort_key(self) -> Tuple[float, int]:
        return (-self.bump, self.index)


@dataclass(frozen=True)
class _Task:
    a: Node
    b: Node
    na_yx: FrozenSet[Node]
    parents: FrozenSet[Node]


class Bes:
    """
    Parameters
    ----------
    score : Score
        Decomposable, score-equivalent score over the graph's nodes.
    knowledge : Knowledge, optional
    depth : int
        Largest subset of na_yx kept as conditioning complement (-1 = all).
    n_jobs : int
        Threads for pair re-evaluation (1 = sequential, -1 = all CPUs).
    monitor : SearchMonitor, optional
        Cancellation is checked before every pop; deletions are emitted as events.
    """

    def __init__(
        self,
        score: Score,
        knowledge: Optional[Knowledge] = None,
        depth: int = -1,
        n_jobs: int = 1,
        monitor: Optional[SearchMonitor] = None,
    ):
        if depth < -1:
            raise ConfigurationError(f"depth must be >= -1, got {depth}")
        self.score = score
        self.knowledge = knowledge
        self.depth = depth
        self.n_jobs = (os.cpu_count() or 1) if n_jobs == -1 else max(1, int(n_jobs))
        self.monitor = monitor
        self.deletions: List[Tuple[Node, Node, float]] = []
        self._heap: List[Tuple[float, int, Arrow]] = []
        self._counter = itertools.count()
        self._configs: Dict[Pair, Tuple[FrozenSet[Node], FrozenSet[Node]]] = {}
        self._graph: Optional[Graph] = None

    # ------------------------------ public -------------------------------------------

    def bes(self, graph: Graph) -> Graph:
        """Run BES on `graph` in place and return it."""
        self._graph = graph
        self._heap = []
        self._configs = {}
        self.deletions = []
        self._evaluate_pairs(self._pairs_for_edges(graph.edges))

        while self._heap:
            if self.monitor is not None and self.monitor.check():
                break
            _, _, arrow = heapq.heappop(self._heap)
            x, y = arrow.a, arrow.b
            if not graph.is_adjacent(x, y):
                continue
            if graph.get_edge(x, y).points_towards(x):
                continue
            if self._na_yx(x, y) != arrow.na_yx:
                continue
            if frozenset(graph.parents(y)) != arrow.parents:
                continue
            if not self._valid_delete(x, y, arrow.h, arrow.na_yx):
                continue

            self._delete(x, y, arrow.h)
            self.deletions.append((x, y, arrow.bump))
            log.debug("BES delete %s *-* %s  H=%s  bump=%.6g", x, y,
                      sorted(n.name for n in arrow.h), arrow.bump)
            if self.monitor is not None:
                self.monitor.emit("bes", f"delete {x} *-* {y}", iteration=len(self.deletions),
                                  x=x.name, y=y.name, bump=arrow.bump, graph=graph)

            meek = MeekRules(self.knowledge, aggressively_prevent_cycles=True,
                             revert_to_unshielded_colliders=True)
            touched: Set[Node] = set(meek.orient_implied(graph))
            touched.update((x, y))
            touched.update(graph.adjacent_nodes(x))
            touched.update(graph.adjacent_nodes(y))
            self._reevaluate(touched)
        return graph

    # ------------------------------ evaluation ---------------------------------------

    def _pairs_for_edges(self, edges) -> List[Pair]:
        pairs: List[Pair] = []
        for e in edges:
            x, y = e.node1, e.node2
            if e.points_towards(y):
                pairs.append((x, y))
            elif e.points_towards(x):
                pairs.append((y, x))
            else:
                pairs.extend(((x, y), (y, x)))
        return pairs

    def _reevaluate(self, nodes: Iterable[Node]) -> None:
        g = self._graph
        seen: Set[Pair] = set()
        pairs: List[Pair] = []
        for r in sorted(nodes, key=self.score.index_of):
            for w in g.adjacent_nodes(r):
                for pair in self._pairs_for_edges([g.get_edge(w, r)]):
                    if pair not in seen:
                        seen.add(pair)
                        pairs.append(pair)
        self._evaluate_pairs(pairs)

    def _evaluate_pairs(self, pairs: List[Pair]) -> None:
        g = self._graph
        tasks: List[_Task] = []
        for a, b in pairs:
            if self.knowledge is not None and not self.knowledge.no_edge_required(a.name, b.name):
                continue
            config = (self._na_yx(a, b), frozenset(g.parents(b)))
            if self._configs.get((a, b)) == config:
                continue
            self._configs[(a, b)] = config
            tasks.append(_Task(a, b, *config))
        if not tasks:
            return
        if self.n_jobs > 1 and len(tasks) > 1:
            with ThreadPoolExecutor(max_workers=self.n_jobs) as pool:
                results = list(pool.map(self._best_deletion, tasks))
        else:
            results = [self._best_deletion(t) for t in tasks]
        for task, res in zip(tasks, results):
            if res is None:
                continue
            bump, h = res
            arrow = Arrow(bump, task.a, task.b, h, task.na_yx, task.parents, next(self._counter))
            heapq.heappush(self._heap, (*arrow.sort_key(), arrow))

    def _best_deletion(self, task: _Task) -> Optional[Tuple[float, FrozenSet[Node]]]:
        """Best (bump, H) for deleting task.a *-* task.b, or None if no bump >= 0."""
        na_yx = sorted(task.na_yx, key=self.score.index_of)
        k_max = len(na_yx) if self.depth < 0 else min(self.depth, len(na_yx))
        best_bump, best_complement = -math.inf, None
        for k in range(k_max + 1):
            for complement in itertools.combinations(na_yx, k):
                cond = (set(complement) | task.parents) - {task.a}
                bump = self._delete_eval(task.a, task.b, cond)
                if bump > best_bump:
                    best_bump, best_complement = bump, complement
        if best_complement is None or not best_bump >= 0:
            return None
        return best_bump, task.na_yx - frozenset(best_complement)

    def _delete_eval(self, x: Node, y: Node, cond: Set[Node]) -> float:
        ix, iy = self.score.index_of(x), self.score.index_of(y)
        z = sorted(self.score.index_of(n) for n in cond)
        with_x = ensure_finite_score(self.score.local_score(iy, z + [ix]), iy, z + [ix])
        without = ensure_finite_score(self.score.local_score(iy, z), iy, z)
        return without - with_x

    # ------------------------------ graph ops ----------------------------------------

    def _na_yx(self, x: Node, y: Node) -> FrozenSet[Node]:
        g = self._graph
        return frozenset(
            z for z in g.adjacent_nodes(y)
            if z != x and g.is_undirected_from_to(y, z) and g.is_adjacent(z, x)
        )

    def _valid_delete(self, x: Node, y: Node, h: FrozenSet[Node], na_yx: FrozenSet[Node]) -> bool:
        k = self.knowledge
        if k is not None:
            for n in h:
                if k.is_forbidden(x.name, n.name) or k.is_forbidden(y.name, n.name):
                    return False
        rest = sorted(na_yx - h, key=self.score.index_of)
        g = self._graph
        return all(g.is_adjacent(u, v) for u, v in itertools.combinations(rest, 2))

    def _delete(self, x: Node, y: Node, h: FrozenSet[Node]) -> None:
        g = self._graph
        g.remove_edge(x, y)
        for n in sorted(h, key=self.score.index_of):
            if g.is_parent_of(n, y) or g.is_parent_of(n, x):
                continue
            g.set_edge_marks(y, n, Endpoint.TAIL, Endpoint.ARROW)
            if g.is_undirected_from_to(x, n):
                g.set_edge_marks(x, n, Endpoint.TAIL, Endpoint.ARROW)


def bes(graph: Graph, score: Score, knowledge: Optional[Knowledge] = None,
        depth: int = -1, n_jobs: int = 1, monitor: Optional[SearchMonitor] = None) -> Graph:
    """Functional wrapper around Bes.bes."""
    return Bes(score, knowledge, depth, n_jobs, monitor).bes(graph)


__all__ = ["Arrow", "Bes", "bes"]
