from __future__ import annotations

from causal_search.graph import Graph, nodes_from_names
from causal_search.knowledge import Knowledge
from causal_search.search.meek import MeekRules, dag_to_cpdag, meek_orient, pdag_to_dag


def _graph(*names: str) -> Graph:
    return Graph(nodes_from_names(names))


def test_r1_away_from_collider():
    g = _graph("A", "B", "C")
    a, b, c = g.nodes
    g.add_directed_edge(a, b)
    g.add_undirected_edge(b, c)
    meek_orient(g)
    assert g.is_parent_of(b, c)


def test_r2_avoids_cycles():
    g = _graph("A", "B", "C")
    a, b, c = g.nodes
    g.add_directed_edge(a, b)
    g.add_directed_edge(b, c)
    g.add_undirected_edge(a, c)
    meek_orient(g)
    assert g.is_parent_of(a, c)


def test_r3():
    g = _graph("A", "B", "C", "D")
    a, b, c, d = g.nodes
    g.add_undirected_edge(a, b)
    g.add_undirected_edge(a, c)
    g.add_undirected_edge(a, d)
    g.add_directed_edge(b, d)
    g.add_directed_edge(c, d)
    meek_orient(g)
    assert g.is_parent_of(a, d)


def test_orientation_is_idempotent():
    g = _graph("A", "B", "C", "D")
    a, b, c, d = g.nodes
    g.add_directed_edge(a, c)
    g.add_directed_edge(b, c)
    g.add_undirected_edge(c, d)
    meek_orient(g)
    once = g.copy()
    meek_orient(g)
    assert g == once
    assert g.is_parent_of(c, d)


def test_knowledge_blocks_orientation():
    g = _graph("A", "B", "C")
    a, b, c = g.nodes
    g.add_directed_edge(a, b)
    g.add_undirected_edge(b, c)
    k = Knowledge(g.node_names)
    k.set_forbidden("B", "C")
    MeekRules(k, revert_to_unshielded_colliders=False).orient_implied(g)
    assert g.get_edge(b, c).is_undirected()
    assert g.is_parent_of(a, b)


def test_dag_to_cpdag_chain_and_collider():
    chain = _graph("A", "B", "C")
    a, b, c = chain.nodes
    chain.add_directed_edge(a, b)
    chain.add_directed_edge(b, c)
    cp = dag_to_cpdag(chain)
    assert all(e.is_undirected() for e in cp.edges)

    col = _graph("A", "B", "C")
    a, b, c = col.nodes
    col.add_directed_edge(a, b)
    col.add_directed_edge(c, b)
    cp = dag_to_cpdag(col)
    assert cp.is_parent_of(a, b) and cp.is_parent_of(c, b)


def test_pdag_to_dag_extension():
    g = _graph("A", "B", "C", "D")
    a, b, c, d = g.nodes
    g.add_directed_edge(a, c)
    g.add_directed_edge(b, c)
    g.add_undirected_edge(a, d)
    dag = pdag_to_dag(g)
    assert all(e.is_directed() for e in dag.edges)
    assert dag.paths().is_acyclic()
    assert dag.is_parent_of(a, c) and dag.is_parent_of(b, c)
    assert dag_to_cpdag(dag) == g
