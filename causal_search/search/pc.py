# FILE: causal_search/search/pc.py
# ======================================================================================
# Causal Search Engine (CSE)
# Constraint-based family: FAS adjacency search, PC and FCI
# --------------------------------------------------------------------------------------
# FAS (PC-stable)
#   start from the complete undirected graph (pairs forbidden in both directions by
#   Knowledge are never connected); for l = 0, 1, ... test x _||_ y | S for every
#   size-l subset S of the adjacencies of x frozen at the start of the level; the first
#   independence removes the edge and records S as the pair's sepset. Edges required by
#   Knowledge are never tested. Stops when no pair has enough adjacencies or at `depth`.
#
# PC   : FAS -> background knowledge -> colliders from sepsets -> Meek rules
# FCI  : FAS -> circle marks -> colliders -> possible-d-sep removal -> circle marks ->
#        colliders -> FciOrient (R1-R4, bounded discriminating paths)
#
# License
# -------
# MIT (c) 2025 Causal Search Engine contributors
# ======================================================================================

from __future__ import annotations

import itertools
from typing import Dict, FrozenSet, Iterator, List, Optional, Sequence, Tuple

from ..errors import ConfigurationError
from ..graph import Endpoint, Graph, Node
from ..knowledge import Knowledge
from ..utils.logging_utils import get_logger
from .fci_orient import FciOrient, remove_by_possible_dsep
from .meek import meek_orient
from .monitor import SearchMonitor, SearchResult
from .orientation import orient_background_knowledge, orient_colliders
from .scores import IndependenceTest

log = get_logger("cse.pc")


class SepsetMap:
    """Separating sets keyed by unordered node pair."""

    def __init__(self) -> None:
        self._sets: Dict[FrozenSet[Node], Tuple[Node, ...]] = {}

    def set(self, a: Node, b: Node, sepset: Sequence[Node]) -> None:
        self._sets[frozenset((a, b))] = tuple(sepset)

    def get(self, a: Node, b: Node) -> Optional[List[Node]]:
        s = self._sets.get(frozenset((a, b)))
        return None if s is None else list(s)

    def __contains__(self, pair) -> bool:
        return frozenset(pair) in self._sets

    def __len__(self) -> int:
        return len(self._sets)

    def items(self) -> Iterator[Tuple[Tuple[Node, Node], List[Node]]]:
        for key, s in self._sets.items():
            a, b = sorted(key, key=lambda n: n.name)
            yield (a, b), list(s)

    def to_dict(self) -> Dict[str, List[str]]:
        return {f"{a.name}|{b.name}": [n.name for n in s] for (a, b), s in sorted(
            self.items(), key=lambda kv: (kv[0][0].name, kv[0][1].name))}


def _protected(knowledge: Optional[Knowledge], a: Node, b: Node) -> bool:
    return knowledge is not None and not knowledge.no_edge_required(a.name, b.name)


def fas(
    test: IndependenceTest,
    knowledge: Optional[Knowledge] = None,
    depth: int = -1,
    monitor: Optional[SearchMonitor] = None,
) -> Tuple[Graph, SepsetMap]:
    """Adjacency search; returns the undirected skeleton and the sepsets found."""
    if depth < -1:
        raise ConfigurationError(f"depth must be >= -1, got {depth}")
    nodes = test.variables
    graph = Graph(nodes)
    sepsets = SepsetMap()
    for a, b in itertools.combinations(nodes, 2):
        if (knowledge is not None and knowledge.is_forbidden(a.name, b.name)
                and knowledge.is_forbidden(b.name, a.name)):
            continue
        graph.add_undirected_edge(a, b)

    level = 0
    while depth < 0 or level <= depth:
        if monitor is not None and monitor.check():
            break
        adj = {v: graph.adjacent_nodes(v) for v in nodes}
        more = False
        removed = 0
        for x in nodes:
            for y in adj[x]:
                if not graph.is_adjacent(x, y) or _protected(knowledge, x, y):
                    continue
                cand = [z for z in adj[x] if z != y]
                if len(cand) < level:
                    continue
                more = True
                for cond in itertools.combinations(cand, level):
                    if test.is_independent(x, y, list(cond)):
                        graph.remove_edge(x, y)
                        sepsets.set(x, y, cond)
                        removed += 1
                        log.debug("sep(%s, %s) | %s  (l=%d)", x, y, [n.name for n in cond], level)
                        break
        log.debug("FAS level %d removed %d edge(s).", level, removed)
        if monitor is not None:
            monitor.emit("fas", f"level {level}", iteration=level, removed=removed)
        if not more:
            break
        level += 1
    return graph, sepsets


def pc(
    test: IndependenceTest,
    knowledge: Optional[Knowledge] = None,
    monitor: Optional[SearchMonitor] = None,
    depth: int = -1,
    **_unused,
) -> SearchResult:
    monitor = (monitor or SearchMonitor()).start()
    if knowledge is not None:
        knowledge.validate(test.variables)
    graph, sepsets = fas(test, knowledge, depth, monitor)
    if knowledge is not None:
        orient_background_knowledge(graph, knowledge)
    n_colliders = orient_colliders(graph, sepsets, knowledge)
    for e in graph.edges:
        if e.is_bidirected():
            graph.set_edge_marks(e.node1, e.node2, Endpoint.TAIL, Endpoint.TAIL)
    meek_orient(graph, knowledge)
    log.info("PC finished: %d edges, %d collider(s).", graph.num_edges(), n_colliders)
    return SearchResult(
        graph=graph,
        order=list(test.variables),
        score=None,
        status=monitor.status,
        elapsed=monitor.elapsed,
        algorithm="pc",
        info={"sepsets": sepsets.to_dict(), "depth": depth},
    )


def fci(
    test: IndependenceTest,
    knowledge: Optional[Knowledge] = None,
    monitor: Optional[SearchMonitor] = None,
    depth: int = -1,
    max_path_length: int = -1,
    possible_dsep: bool = True,
    **_unused,
) -> SearchResult:
    monitor = (monitor or SearchMonitor()).start()
    orienter = FciOrient(None, knowledge, max_path_length)
    if knowledge is not None:
        knowledge.validate(test.variables)
    graph, sepsets = fas(test, knowledge, depth, monitor)
    graph.reorient_all_with(Endpoint.CIRCLE)
    orient_colliders(graph, sepsets, knowledge)
    if possible_dsep:
        removed = remove_by_possible_dsep(graph, test, sepsets, depth, max_path_length,
                                          skip_adjacent_sets=True, monitor=monitor)
        if removed:
            graph.reorient_all_with(Endpoint.CIRCLE)
            orient_colliders(graph, sepsets, knowledge)
    orienter.sepsets = sepsets
    orienter.orient(graph)
    log.info("FCI finished: %d edges.", graph.num_edges())
    return SearchResult(
        graph=graph,
        order=list(test.variables),
        score=None,
        status=monitor.status,
        elapsed=monitor.elapsed,
        algorithm="fci",
        info={"sepsets": sepsets.to_dict(), "depth": depth, "max_path_length": max_path_length},
    )


__all__ = ["SepsetMap", "fas", "pc", "fci"]
