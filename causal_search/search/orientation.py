"""
Background-knowledge orientation, collider orientation and compliance checks.

All functions take the graph by reference; the orient_* functions mutate it in
place (single writer: the search phase that owns the graph).
"""
from __future__ import annotations

import itertools
from typing import List, Optional

from ..graph import Endpoint, Graph, Node
from ..knowledge import Knowledge
from ..utils.logging_utils import get_logger

log = get_logger("cse.orientation")


def _arrow_into(graph: Graph, tail: Node, head: Node) -> None:
    """Put an arrowhead at `head`; a directed head --> tail edge is turned around."""
    if graph.is_parent_of(head, tail):
        graph.set_edge_marks(tail, head, Endpoint.TAIL, Endpoint.ARROW)
    else:
        graph.set_endpoint(tail, head, Endpoint.ARROW)


def orient_background_knowledge(graph: Graph, knowledge: Knowledge) -> Graph:
    """
    Apply knowledge to existing edges: for forbidden(a, b) the endpoint at a
    becomes an arrowhead; then for required(a, b) the endpoint at b does.
    Raises KnowledgeConflictError for contradictory knowledge.
    """
    knowledge.validate()
    n_forbidden = n_required = 0
    for e in graph.edges:
        a, b = e.node1, e.node2
        fab, fba = knowledge.is_forbidden(a.name, b.name), knowledge.is_forbidden(b.name, a.name)
        if fab and fba:
            graph.set_edge_marks(a, b, Endpoint.ARROW, Endpoint.ARROW)
        elif fab and graph.get_endpoint(b, a) != Endpoint.ARROW:
            _arrow_into(graph, b, a)
        elif fba and graph.get_endpoint(a, b) != Endpoint.ARROW:
            _arrow_into(graph, a, b)
        else:
            continue
        n_forbidden += 1
    for e in graph.edges:
        for a, b in ((e.node1, e.node2), (e.node2, e.node1)):
            if knowledge.is_required(a.name, b.name) and not graph.is_parent_of(a, b):
                _arrow_into(graph, a, b)
                n_required += 1
    log.debug("Background knowledge oriented %d forbidden and %d required edges.",
              n_forbidden, n_required)
    return graph


def orient_colliders(graph: Graph, sepsets, knowledge: Optional[Knowledge] = None) -> int:
    """
    For every unshielded triple a *-* b *-* c whose separating set (looked up
    with ``sepsets.get(a, c)``) exists and excludes b, put arrowheads at b.
    Returns the number of colliders oriented.
    """
    count = 0
    for b in graph.nodes:
        adj = graph.adjacent_nodes(b)
        for a, c in itertools.combinations(adj, 2):
            if graph.is_adjacent(a, c):
                continue
            sepset = sepsets.get(a, c)
            if sepset is None or b in sepset:
                continue
            if knowledge is not None and (knowledge.is_required(b.name, a.name)
                                          or knowledge.is_required(b.name, c.name)):
                continue
            graph.set_endpoint(a, b, Endpoint.ARROW)
            graph.set_endpoint(c, b, Endpoint.ARROW)
            count += 1
            log.debug("Collider %s *-> %s <-* %s", a, b, c)
    return count


def knowledge_violations(graph: Graph, knowledge: Knowledge) -> List[str]:
    """Human-readable list of knowledge relations the graph breaks."""
    out: List[str] = []
    for e in graph.edges:
        if not e.is_directed():
            continue
        a, b = (e.node1, e.node2) if e.points_towards(e.node2) else (e.node2, e.node1)
        if knowledge.is_forbidden(a.name, b.name):
            out.append(f"forbidden {a} --> {b} present")
    names = set(graph.node_names)
    for src, dst in knowledge.required_edges():
        if src not in names or dst not in names:
            continue
        if not graph.is_parent_of(graph.get_node(src), graph.get_node(dst)):
            out.append(f"required {src} --> {dst} missing")
    return out


__all__ = ["orient_background_knowledge", "orient_colliders", "knowledge_violations"]
