# FILE: causal_search/search/fci_orient.py
# ======================================================================================
# Causal Search Engine (CSE)
# Latent-variable finalization: PAG orientation rules and BOSS-FCI
# --------------------------------------------------------------------------------------
# FciOrient (marks: a *-> b is an arrowhead at b, a *-o b a circle at b)
#   R1  a *-> b o-* c, a and c nonadjacent            => b --> c
#   R2  a --> b *-> c  or  a *-> b --> c, a *-o c      => a *-> c
#   R3  a *-> b <-* c, a *-o d o-* c, a and c nonadj.,
#       d *-o b                                       => d *-> b
#   R4  discriminating path <e, ..., a, b, c> for b, b o-* c:
#         b in sepset(e, c)  => b --> c
#         otherwise          => a <-> b <-> c
#       path search bounded by max_path_length (-1 = unbounded)
#
# BOSS-FCI
#   BOSS CPDAG -> circle marks + its unshielded colliders -> triangle reduction with
#   the OrderScorer -> optional possible-d-sep removal -> keep only colliders that
#   are still unshielded -> FciOrient, sepsets found greedily with the test.
#
# License
# -------
# MIT (c) 2025 Causal Search Engine contributors
# ======================================================================================

from __future__ import annotations

import itertools
from collections import deque
from typing import Dict, FrozenSet, List, Optional, Set, Tuple

from ..errors import ConfigurationError
from ..graph import Endpoint, Graph, Node
from ..knowledge import Knowledge
from ..utils.logging_utils import get_logger
from .boss import Boss, BossConfig
from .monitor import SearchMonitor, SearchResult
from .order_scorer import OrderScorer
from .scores import IndependenceTest, Score

log = get_logger("cse.fci")

_TRIANGLE = 1

Triple = Tuple[Node, Node, Node]


def _check_path_length(max_path_length: int) -> int:
    if max_path_length < -1:
        raise ConfigurationError(f"max_path_length must be >= -1, got {max_path_length}")
    return max_path_length


# --------------------------------------------------------------------------------------
# Sepsets
# --------------------------------------------------------------------------------------

class SepsetFinder:
    """
    Greedy separating-set lookup against the current graph: the first subset of
    adj(a) - {b} or adj(b) - {a} (smallest first, up to `depth`) that renders
    a and b independent. Results are memoized per unordered pair.
    """

    def __init__(self, graph: Graph, test: IndependenceTest, depth: int = -1):
        self.graph = graph
        self.test = test
        self.depth = depth
        self._cache: Dict[FrozenSet[Node], Optional[List[Node]]] = {}

    def get(self, a: Node, b: Node) -> Optional[List[Node]]:
        key = frozenset((a, b))
        if key not in self._cache:
            self._cache[key] = self._search(a, b)
        return self._cache[key]

    def _search(self, a: Node, b: Node) -> Optional[List[Node]]:
        g = self.graph
        for x, y in ((a, b), (b, a)):
            adj = [n for n in g.adjacent_nodes(x) if n != y]
            top = len(adj) if self.depth < 0 else min(self.depth, len(adj))
            for k in range(top + 1):
                for cond in itertools.combinations(adj, k):
                    if self.test.is_independent(a, b, list(cond)):
                        return list(cond)
        return None


def remove_by_possible_dsep(
    graph: Graph,
    test: IndependenceTest,
    sepsets=None,
    depth: int = -1,
    max_path_length: int = -1,
    skip_adjacent_sets: bool = False,
    monitor: Optional[SearchMonitor] = None,
) -> int:
    """
    Remove a *-* b when a subset of Possible-D-Sep(a, b) (or of (b, a))
    separates them. With `skip_adjacent_sets`, subsets lying wholly inside
    adj(a) are skipped (already tried by the adjacency search). Found sets are
    recorded with ``sepsets.set(a, b, cond)`` when `sepsets` is given.
    """
    paths = graph.paths()
    removed = 0
    for e in graph.edges:
        if monitor is not None and monitor.check():
            break
        a, b = e.node1, e.node2
        for x, y in ((a, b), (b, a)):
            pds = sorted(paths.possible_dsep(x, y, max_path_length), key=graph.nodes.index)
            adj = set(graph.adjacent_nodes(x))
            top = len(pds) if depth < 0 else min(depth, len(pds))
            found = None
            for k in range(1, top + 1):
                for cond in itertools.combinations(pds, k):
                    if skip_adjacent_sets and set(cond) <= adj:
                        continue
                    if test.is_independent(x, y, list(cond)):
                        found = list(cond)
                        break
                if found is not None:
                    break
            if found is not None:
                graph.remove_edge(a, b)
                if sepsets is not None:
                    sepsets.set(a, b, found)
                removed += 1
                log.debug("Possible-d-sep removed %s *-* %s given %s", a, b,
                          [n.name for n in found])
                break
    return removed


# --------------------------------------------------------------------------------------
# Orientation rules
# --------------------------------------------------------------------------------------

def orient_pag_knowledge(graph: Graph, knowledge: Knowledge) -> None:
    """forbidden(a, b) puts an arrowhead at a; required(a, b) makes a --> b."""
    for e in graph.edges:
        for a, b in ((e.node1, e.node2), (e.node2, e.node1)):
            if knowledge.is_forbidden(a.name, b.name) and graph.get_endpoint(b, a) == Endpoint.CIRCLE:
                graph.set_endpoint(b, a, Endpoint.ARROW)
            if knowledge.is_required(a.name, b.name):
                graph.set_edge_marks(a, b, Endpoint.TAIL, Endpoint.ARROW)


class FciOrient:
    """
    Final PAG orientation. `sepsets` is anything with ``get(a, b)`` returning a
    list of nodes or None (SepsetMap from the adjacency search, SepsetFinder).
    """

    def __init__(self, sepsets, knowledge: Optional[Knowledge] = None, max_path_length: int = -1):
        self.sepsets = sepsets
        self.knowledge = knowledge
        self.max_path_length = _check_path_length(max_path_length)

    def orient(self, graph: Graph) -> Graph:
        if self.knowledge is not None:
            orient_pag_knowledge(graph, self.knowledge)
        rounds = 0
        while True:
            rounds += 1
            changed = False
            for b in graph.nodes:
                changed |= self._r1(graph, b)
                changed |= self._r2(graph, b)
                changed |= self._r3(graph, b)
                changed |= self._r4(graph, b)
            if not changed:
                break
        log.debug("FCI orientation reached closure after %d round(s).", rounds)
        return graph

    # ---- helpers ----

    def _arrowhead_allowed(self, g: Graph, x: Node, y: Node) -> bool:
        mark = g.get_endpoint(x, y)
        if mark == Endpoint.ARROW:
            return True
        if mark == Endpoint.TAIL:
            return False
        return not (self.knowledge is not None and self.knowledge.is_required(y.name, x.name))

    def _set_arrow(self, g: Graph, x: Node, y: Node) -> bool:
        if g.get_endpoint(x, y) != Endpoint.CIRCLE or not self._arrowhead_allowed(g, x, y):
            return False
        g.set_endpoint(x, y, Endpoint.ARROW)
        return True

    # ---- rules ----

    def _r1(self, g: Graph, b: Node) -> bool:
        changed = False
        adj = g.adjacent_nodes(b)
        for a, c in itertools.permutations(adj, 2):
            if g.is_adjacent(a, c):
                continue
            if g.get_endpoint(a, b) == Endpoint.ARROW and g.get_endpoint(c, b) == Endpoint.CIRCLE:
                if self._arrowhead_allowed(g, b, c):
                    g.set_edge_marks(b, c, Endpoint.TAIL, Endpoint.ARROW)
                    log.debug("R1: %s --> %s", b, c)
                    changed = True
        return changed

    def _r2(self, g: Graph, b: Node) -> bool:
        changed = False
        adj = g.adjacent_nodes(b)
        for a, c in itertools.permutations(adj, 2):
            if not g.is_adjacent(a, c) or g.get_endpoint(a, c) != Endpoint.CIRCLE:
                continue
            first = g.is_parent_of(a, b) and g.get_endpoint(b, c) == Endpoint.ARROW
            second = g.get_endpoint(a, b) == Endpoint.ARROW and g.is_parent_of(b, c)
            if (first or second) and self._set_arrow(g, a, c):
                log.debug("R2: %s *-> %s", a, c)
                changed = True
        return changed

    def _r3(self, g: Graph, b: Node) -> bool:
        changed = False
        adj = g.adjacent_nodes(b)
        for d in adj:
            if g.get_endpoint(d, b) != Endpoint.CIRCLE:
                continue
            for a, c in itertools.combinations(adj, 2):
                if d in (a, c) or g.is_adjacent(a, c):
                    continue
                if not g.is_def_collider(a, b, c):
                    continue
                if not (g.is_adjacent(a, d) and g.is_adjacent(c, d)):
                    continue
                if g.get_endpoint(a, d) != Endpoint.CIRCLE or g.get_endpoint(c, d) != Endpoint.CIRCLE:
                    continue
                if self._set_arrow(g, d, b):
                    log.debug("R3: %s *-> %s", d, b)
                    changed = True
                    break
        return changed

    def _r4(self, g: Graph, b: Node) -> bool:
        changed = False
        for c in g.adjacent_nodes(b):
            if g.get_endpoint(c, b) != Endpoint.CIRCLE:
                continue
            for a in g.adjacent_nodes(b):
                if a == c or not g.is_parent_of(a, c):
                    continue
                if g.get_endpoint(b, a) != Endpoint.ARROW:
                    continue
                if self._discriminating_path(g, a, b, c):
                    changed = True
                    break
        return changed

    def _discriminating_path(self, g: Graph, a: Node, b: Node, c: Node) -> bool:
        """Search <e, ..., a, b, c> backwards from a; orient and return True if found."""
        previous: Dict[Node, Node] = {a: b}
        length: Dict[Node, int] = {a: 3}
        visited: Set[Node] = {a, b, c}
        queue = deque([a])
        while queue:
            t = queue.popleft()
            if self.max_path_length != -1 and length[t] >= self.max_path_length:
                continue
            for d in g.adjacent_nodes(t):
                if d in visited or g.get_endpoint(d, t) != Endpoint.ARROW:
                    continue
                if not g.is_def_collider(d, t, previous[t]):
                    continue
                if not g.is_adjacent(d, c):
                    return self._orient_discriminated(g, d, a, b, c)
                if g.is_parent_of(d, c):
                    visited.add(d)
                    previous[d] = t
                    length[d] = length[t] + 1
                    queue.append(d)
        return False

    def _orient_discriminated(self, g: Graph, e: Node, a: Node, b: Node, c: Node) -> bool:
        sepset = self.sepsets.get(e, c)
        if sepset is None:
            return False
        if b in sepset:
            if not self._arrowhead_allowed(g, b, c):
                return False
            g.set_edge_marks(b, c, Endpoint.TAIL, Endpoint.ARROW)
            log.debug("R4: %s --> %s (discriminated by %s)", b, c, e)
        else:
            if not (self._arrowhead_allowed(g, a, b) and self._arrowhead_allowed(g, c, b)
                    and self._arrowhead_allowed(g, b, c)):
                return False
            g.set_edge_marks(a, b, Endpoint.ARROW, Endpoint.ARROW)
            g.set_edge_marks(b, c, Endpoint.ARROW, Endpoint.ARROW)
            log.debug("R4: %s <-> %s <-> %s (discriminated by %s)", a, b, c, e)
        return True


# --------------------------------------------------------------------------------------
# BOSS-FCI
# --------------------------------------------------------------------------------------

def _unshielded_colliders(graph: Graph) -> Set[Triple]:
    out: Set[Triple] = set()
    for b in graph.nodes:
        for a, c in itertools.combinations(graph.adjacent_nodes(b), 2):
            if graph.is_unshielded_collider(a, b, c):
                out.add((a, b, c))
    return out


def triangle_reduce(
    pag: Graph,
    scorer: OrderScorer,
    depth: int = -1,
    monitor: Optional[SearchMonitor] = None,
) -> Set[Triple]:
    """
    For each edge a *-* b lying in triangles, move a, b and then a subset C of
    their common neighbours to the end of the order; if a and b are no longer
    adjacent in the implied DAG, drop the edge and record a *-> c <-* b for c in C.
    Returns the colliders recorded.
    """
    colliders: Set[Triple] = set()
    for e in pag.edges:
        if monitor is not None and monitor.check():
            break
        a, b = e.node1, e.node2
        if not pag.is_adjacent(a, b):
            continue
        common = [n for n in pag.adjacent_nodes(a) if pag.is_adjacent(n, b)]
        if not common:
            continue
        top = len(common) if depth < 0 else min(depth, len(common))
        scorer.bookmark(_TRIANGLE)
        removed = False
        for k in range(1, top + 1):
            for subset in itertools.combinations(common, k):
                for n in (a, b) + subset:
                    scorer.move_to(n, scorer.size() - 1)
                if not scorer.adjacent(a, b):
                    pag.remove_edge(a, b)
                    for c in subset:
                        pag.set_endpoint(a, c, Endpoint.ARROW)
                        pag.set_endpoint(b, c, Endpoint.ARROW)
                        colliders.add((a, c, b))
                    log.debug("Triangle reduction removed %s *-* %s; colliders at %s",
                              a, b, [c.name for c in subset])
                    removed = True
                scorer.go_to_bookmark(_TRIANGLE)
                if removed:
                    break
            if removed:
                break
    return colliders


def bfci(
    score: Score,
    test: IndependenceTest,
    knowledge: Optional[Knowledge] = None,
    monitor: Optional[SearchMonitor] = None,
    depth: int = -1,
    max_path_length: int = -1,
    possible_dsep: bool = True,
    **boss_params,
) -> SearchResult:
    """BOSS followed by latent-variable finalization; returns a PAG."""
    _check_path_length(max_path_length)
    monitor = monitor or SearchMonitor()
    fields = BossConfig.__dataclass_fields__
    cfg = BossConfig(**{k: v for k, v in boss_params.items() if k in fields})
    cfg.depth = depth
    cfg.cpdag = True
    boss = Boss(score, knowledge, cfg, monitor)
    result = boss.search()
    reference = result.graph

    pag = reference.copy()
    pag.reorient_all_with(Endpoint.CIRCLE)
    colliders = _unshielded_colliders(reference)
    for a, b, c in colliders:
        pag.set_endpoint(a, b, Endpoint.ARROW)
        pag.set_endpoint(c, b, Endpoint.ARROW)

    if result.order:
        scorer = OrderScorer(score, knowledge, depth)
        scorer.score(result.order)
        colliders |= triangle_reduce(pag, scorer, depth, monitor)
    if possible_dsep:
        remove_by_possible_dsep(pag, test, None, depth, max_path_length, monitor=monitor)

    pag.reorient_all_with(Endpoint.CIRCLE)
    kept = 0
    for a, b, c in sorted(colliders, key=lambda t: tuple(n.name for n in t)):
        if (pag.is_adjacent(a, b) and pag.is_adjacent(c, b) and not pag.is_adjacent(a, c)):
            pag.set_endpoint(a, b, Endpoint.ARROW)
            pag.set_endpoint(c, b, Endpoint.ARROW)
            kept += 1
    log.info("BFCI kept %d unshielded collider(s) of %d recorded.", kept, len(colliders))

    FciOrient(SepsetFinder(pag, test, depth), knowledge, max_path_length).orient(pag)
    pag.attributes["score"] = result.score
    monitor.emit("bfci", "PAG finalized", score=result.score, graph=pag)
    return SearchResult(
        graph=pag,
        order=result.order,
        score=result.score,
        status=monitor.status,
        elapsed=monitor.elapsed,
        algorithm="bfci",
        info=dict(result.info, colliders_kept=kept),
    )


__all__ = [
    "FciOrient",
    "SepsetFinder",
    "bfci",
    "orient_pag_knowledge",
    "remove_by_possible_dsep",
    "triangle_reduce",
]
