from __future__ import annotations

import pytest

from causal_search.errors import ConfigurationError
from causal_search.graph import Edge, Endpoint, Graph, Node, nodes_from_names
from causal_search.knowledge import Knowledge
from causal_search.search import run_algorithm
from causal_search.search.fci_orient import FciOrient, SepsetFinder, bfci
from causal_search.search.monitor import SearchMonitor
from causal_search.search.pc import SepsetMap, fas, fci, pc
from causal_search.search.scores import FisherZTest, SemBicScore

from conftest import CHAIN, COLLIDER, simulate

# A -> X <- L -> Y <- B with L unobserved
LATENT = {
    "A": [],
    "B": [],
    "L": [],
    "X": [("A", 0.8), ("L", 0.8)],
    "Y": [("B", 0.8), ("L", 0.8)],
}


def _test(model, seed, n=1000):
    df = simulate(model, n=n, seed=seed)
    return FisherZTest(df.to_numpy(), list(df.columns), alpha=0.01)


def _score(model, seed, n=1000):
    df = simulate(model, n=n, seed=seed)
    return SemBicScore(df.to_numpy(), list(df.columns), penalty_discount=2.0)


def _adjacencies(g: Graph):
    return {frozenset((e.node1.name, e.node2.name)) for e in g.edges}


@pytest.fixture(scope="module")
def chain_test():
    return _test(CHAIN, seed=41)


@pytest.fixture(scope="module")
def collider_test():
    return _test(COLLIDER, seed=42)


@pytest.fixture(scope="module")
def latent_test():
    df = simulate(LATENT, n=2000, seed=43).drop(columns=["L"])
    return FisherZTest(df.to_numpy(), list(df.columns), alpha=0.01)


# ---- adjacency search ----

def test_fas_records_sepsets(chain_test):
    graph, sepsets = fas(chain_test)
    assert _adjacencies(graph) == {frozenset("AB"), frozenset("BC")}
    a, b, c = chain_test.variables
    assert sepsets.get(a, c) == [b]
    assert sepsets.get(c, a) == [b]
    assert (a, c) in sepsets and len(sepsets) == 1
    assert sepsets.to_dict() == {"A|C": ["B"]}


def test_fas_depth_limits_conditioning(chain_test):
    graph, sepsets = fas(chain_test, depth=0)
    assert graph.num_edges() == 3
    assert len(sepsets) == 0
    with pytest.raises(ConfigurationError):
        fas(chain_test, depth=-2)


def test_fas_knowledge(chain_test):
    k = Knowledge(["A", "B", "C"])
    k.set_forbidden("A", "B")
    k.set_forbidden("B", "A")
    graph, _ = fas(chain_test, k)
    assert frozenset("AB") not in _adjacencies(graph)


def test_sepset_map():
    m = SepsetMap()
    a, b = Node("A"), Node("B")
    m.set(b, a, [])
    assert m.get(a, b) == []
    assert m.get(a, Node("C")) is None
    assert list(m.items()) == [((a, b), [])]


# ---- PC ----

def test_pc_chain_is_unoriented(chain_test):
    result = pc(chain_test)
    assert result.algorithm == "pc"
    assert result.score is None
    assert _adjacencies(result.graph) == {frozenset("AB"), frozenset("BC")}
    assert all(e.is_undirected() for e in result.graph.edges)


def test_pc_orients_collider(collider_test):
    g = pc(collider_test).graph
    x, y, z = g.get_node("X"), g.get_node("Y"), g.get_node("Z")
    assert g.is_parent_of(x, z) and g.is_parent_of(y, z)
    assert not g.is_adjacent(x, y)


def test_pc_with_required_edge(chain_test):
    k = Knowledge(["A", "B", "C"])
    k.set_required("A", "B")
    g = pc(chain_test, knowledge=k).graph
    a, b, c = g.get_node("A"), g.get_node("B"), g.get_node("C")
    assert g.is_parent_of(a, b)
    assert g.is_parent_of(b, c)


# ---- FCI ----

def test_fci_collider_pag(collider_test):
    g = fci(collider_test).graph
    x, y, z = g.get_node("X"), g.get_node("Y"), g.get_node("Z")
    assert g.get_endpoint(x, z) == Endpoint.ARROW
    assert g.get_endpoint(y, z) == Endpoint.ARROW
    assert g.get_endpoint(z, x) == Endpoint.CIRCLE
    assert g.get_endpoint(z, y) == Endpoint.CIRCLE


def test_fci_chain_stays_circle(chain_test):
    g = fci(chain_test).graph
    assert _adjacencies(g) == {frozenset("AB"), frozenset("BC")}
    assert all(e.is_nondirected() for e in g.edges)


def test_fci_detects_latent_confounder(latent_test):
    result = run_algorithm("fci", test=latent_test)
    g = result.graph
    assert _adjacencies(g) == {frozenset("AX"), frozenset("XY"), frozenset("BY")}
    x, y = g.get_node("X"), g.get_node("Y")
    assert g.get_edge(x, y).is_bidirected()
    a, b = g.get_node("A"), g.get_node("B")
    assert g.get_edge(a, x).is_partially_oriented()
    assert g.get_edge(b, y).is_partially_oriented()


def test_fci_rejects_bad_path_length(chain_test):
    with pytest.raises(ConfigurationError):
        fci(chain_test, max_path_length=-5)


def test_sepset_finder(chain_test):
    graph, _ = fas(chain_test)
    a, b, c = chain_test.variables
    finder = SepsetFinder(graph, chain_test)
    assert finder.get(a, c) == [b]
    assert finder.get(a, b) is None


def test_fci_orient_r1():
    # A *-> B o-o C with A, C nonadjacent gives B --> C
    g = Graph(nodes_from_names("ABC"))
    a, b, c = g.nodes
    g.add_edge(Edge(a, b, Endpoint.CIRCLE, Endpoint.ARROW))
    g.add_nondirected_edge(b, c)
    sepsets = SepsetMap()
    sepsets.set(a, c, [b])
    FciOrient(sepsets).orient(g)
    assert g.is_parent_of(b, c)


# ---- BFCI ----

def test_bfci_collider():
    score = _score(COLLIDER, seed=44)
    df = simulate(COLLIDER, n=1000, seed=44)
    test = FisherZTest(df.to_numpy(), list(df.columns))
    result = bfci(score, test, seed=1)
    g = result.graph
    assert result.algorithm == "bfci"
    x, y, z = g.get_node("X"), g.get_node("Y"), g.get_node("Z")
    assert _adjacencies(g) == {frozenset("XZ"), frozenset("YZ")}
    assert g.get_endpoint(x, z) == Endpoint.ARROW
    assert g.get_endpoint(y, z) == Endpoint.ARROW
    assert result.info["colliders_kept"] == 1
    assert g.attributes["score"] == result.score


def test_bfci_chain_through_registry():
    score = _score(CHAIN, seed=45)
    df = simulate(CHAIN, n=1000, seed=45)
    test = FisherZTest(df.to_numpy(), list(df.columns))
    stages = []
    monitor = SearchMonitor(on_event=lambda ev: stages.append(ev.stage))
    result = run_algorithm("boss-fci", score=score, test=test, monitor=monitor, seed=2)
    assert _adjacencies(result.graph) == {frozenset("AB"), frozenset("BC")}
    assert all(e.is_nondirected() for e in result.graph.edges)
    assert stages[-1] == "bfci"
