# FILE: causal_search/search/meek.py
# ======================================================================================
# Causal Search Engine (CSE)
# Meek orientation rules, DAG -> CPDAG and CPDAG -> DAG conversion
# --------------------------------------------------------------------------------------
# Rules (orient the undirected edge a --- b as a --> b when):
#   R1  c --> a and c, b nonadjacent
#   R2  a --> c --> b
#   R3  a --- c --> b, a --- d --> b, c and d nonadjacent
#   R4  a --- c --> d --> b, a adjacent to d, c and b nonadjacent
# Existing arrowheads are never removed, so colliders are kept; orientations
# forbidden by Knowledge are skipped; with aggressively_prevent_cycles an
# orientation that would close a directed cycle is skipped.
#
# revert_to_unshielded_colliders=True first undirects every directed edge that
# is not part of an unshielded collider (used after BES deletions and for
# DAG -> CPDAG). With False the rules only propagate (used for final output).
#
# License
# -------
# MIT (c) 2025 Causal Search Engine contributors
# ======================================================================================

from __future__ import annotations

from typing import List, Optional, Set, Tuple

from ..graph import Endpoint, Graph, Node
from ..knowledge import Knowledge
from ..utils.logging_utils import get_logger

log = get_logger("cse.meek")


class MeekRules:
    def __init__(
        self,
        knowledge: Optional[Knowledge] = None,
        aggressively_prevent_cycles: bool = False,
        revert_to_unshielded_colliders: bool = True,
    ):
        self.knowledge = knowledge
        self.aggressively_prevent_cycles = aggressively_prevent_cycles
        self.revert_to_unshielded_colliders = revert_to_unshielded_colliders

    def orient_implied(self, graph: Graph) -> Set[Node]:
        """Orient `graph` in place; return the nodes whose edges changed."""
        changed: Set[Node] = set()
        if self.revert_to_unshielded_colliders:
            changed |= self._revert(graph)
        while True:
            progress = False
            for e in graph.edges:
                if not e.is_undirected():
                    continue
                for a, b in ((e.node1, e.node2), (e.node2, e.node1)):
                    if self._implied(graph, a, b) and self._direct(graph, a, b):
                        changed.update((a, b))
                        progress = True
                        break
            if not progress:
                break
        return changed

    # ---- rules ----

    @staticmethod
    def _implied(g: Graph, a: Node, b: Node) -> bool:
        adj_a = g.adjacent_nodes(a)
        # R1
        for c in g.parents(a):
            if c != b and not g.is_adjacent(c, b):
                return True
        # R2
        for c in g.children(a):
            if g.is_parent_of(c, b):
                return True
        undirected_a = [c for c in adj_a if c != b and g.is_undirected_from_to(a, c)]
        # R3
        into_b = [c for c in undirected_a if g.is_parent_of(c, b)]
        for i, c in enumerate(into_b):
            for d in into_b[i + 1:]:
                if not g.is_adjacent(c, d):
                    return True
        # R4
        for c in undirected_a:
            if g.is_adjacent(c, b):
                continue
            for d in g.children(c):
                if d != a and g.is_parent_of(d, b) and g.is_adjacent(a, d):
                    return True
        return False

    def _direct(self, g: Graph, a: Node, b: Node) -> bool:
        k = self.knowledge
        if k is not None and (k.is_forbidden(a.name, b.name) or k.is_required(b.name, a.name)):
            return False
        if self.aggressively_prevent_cycles and g.paths().has_directed_path(b, a):
            return False
        g.set_edge_marks(a, b, Endpoint.TAIL, Endpoint.ARROW)
        log.debug("Meek: %s --> %s", a, b)
        return True

    # ---- revert ----

    def _revert(self, g: Graph) -> Set[Node]:
        k = self.knowledge
        to_undirect: List[Tuple[Node, Node]] = []
        for y in g.nodes:
            parents = g.parents(y)
            for x in parents:
                if any(z != x and not g.is_adjacent(x, z) for z in parents):
                    continue
                if k is not None and (k.is_required(x.name, y.name) or k.is_forbidden(y.name, x.name)):
                    continue
                to_undirect.append((x, y))
        changed: Set[Node] = set()
        for x, y in to_undirect:
            g.set_edge_marks(x, y, Endpoint.TAIL, Endpoint.TAIL)
            changed.update((x, y))
        return changed


def meek_orient(graph: Graph, knowledge: Optional[Knowledge] = None) -> Graph:
    """Propagate implied orientations in place (closure; idempotent)."""
    MeekRules(knowledge, revert_to_unshielded_colliders=False).orient_implied(graph)
    return graph


def dag_to_cpdag(dag: Graph) -> Graph:
    """CPDAG of a DAG: keep unshielded colliders, undirect the rest, apply Meek."""
    g = dag.copy()
    MeekRules(revert_to_unshielded_colliders=True).orient_implied(g)
    return g


def pdag_to_dag(pdag: Graph) -> Graph:
    """
    A consistent DAG extension of a PDAG (Dor & Tarsi). Raises ValueError if
    no extension exists.
    """
    out = pdag.copy()
    work = pdag.copy()
    while work.num_nodes():
        sink = None
        for x in work.nodes:
            if work.children(x):
                continue
            nbrs = work.adjacent_nodes(x)
            undirected = [y for y in nbrs if work.is_undirected_from_to(x, y)]
            if any(e.is_bidirected() or e.endpoint_at(x) == Endpoint.CIRCLE
                   for e in (work.get_edge(x, y) for y in nbrs)):
                continue
            if all(work.is_adjacent(y, z) for y in undirected for z in nbrs if z != y):
                sink = x
                break
        if sink is None:
            raise ValueError("PDAG has no consistent DAG extension.")
        for y in work.adjacent_nodes(sink):
            if work.is_undirected_from_to(sink, y):
                out.set_edge_marks(y, sink, Endpoint.TAIL, Endpoint.ARROW)
        work.remove_node(sink)
    return out


__all__ = ["MeekRules", "meek_orient", "dag_to_cpdag", "pdag_to_dag"]
