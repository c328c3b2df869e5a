from __future__ import annotations

import itertools

import pytest

from causal_search.graph import Graph
from causal_search.knowledge import Knowledge
from causal_search.search.bes import Bes, bes
from causal_search.search.meek import pdag_to_dag
from causal_search.search.monitor import SearchMonitor
from causal_search.search.scores import SemBicScore, score_dag

from conftest import CHAIN, DIAMOND, simulate


def _complete(score: SemBicScore) -> Graph:
    g = Graph(score.variables)
    for a, b in itertools.combinations(score.variables, 2):
        g.add_undirected_edge(a, b)
    return g


@pytest.fixture(scope="module")
def chain_score():
    df = simulate(CHAIN, n=1000, seed=21)
    return SemBicScore(df.to_numpy(), list(df.columns), penalty_discount=2.0)


@pytest.fixture(scope="module")
def diamond_score():
    df = simulate(DIAMOND, n=2000, seed=22)
    return SemBicScore(df.to_numpy(), list(df.columns), penalty_discount=2.0)


def test_bes_removes_the_shortcut(chain_score):
    g = _complete(chain_score)
    a, b, c = g.nodes
    runner = Bes(chain_score)
    runner.bes(g)
    assert not g.is_adjacent(a, c)
    assert g.is_adjacent(a, b) and g.is_adjacent(b, c)
    assert all(e.is_undirected() for e in g.edges)
    assert [(x.name, y.name) for x, y, _ in runner.deletions] in (
        [("A", "C")], [("C", "A")]
    )


def test_bumps_non_negative_and_scores_non_decreasing(diamond_score):
    g = _complete(diamond_score)
    start = score_dag(diamond_score, pdag_to_dag(g))
    seen = []

    def _record(ev):
        if ev.stage == "bes":
            seen.append((ev.payload["bump"], score_dag(diamond_score, pdag_to_dag(ev.payload["graph"]))))

    runner = Bes(diamond_score, monitor=SearchMonitor(on_event=_record))
    runner.bes(g)

    assert runner.deletions
    assert all(bump >= 0 for _, _, bump in runner.deletions)
    scores = [start] + [s for _, s in seen]
    assert all(later >= earlier - 1e-6 for earlier, later in zip(scores, scores[1:]))

    names = {frozenset((e.node1.name, e.node2.name)) for e in g.edges}
    assert names == {frozenset(p) for p in (("A", "B"), ("A", "C"), ("B", "D"), ("C", "D"))}
    b, d, c = g.get_node("B"), g.get_node("D"), g.get_node("C")
    assert g.is_parent_of(b, d) and g.is_parent_of(c, d)


def test_required_edge_is_kept(chain_score):
    g = _complete(chain_score)
    a, _, c = g.nodes
    k = Knowledge(g.node_names)
    k.set_required("A", "C")
    bes(g, chain_score, knowledge=k)
    assert g.is_adjacent(a, c)


def test_threaded_matches_sequential(diamond_score):
    g1 = bes(_complete(diamond_score), diamond_score, n_jobs=1)
    g2 = bes(_complete(diamond_score), diamond_score, n_jobs=4)
    assert g1 == g2


def test_cancelled_monitor_stops_before_deleting(chain_score):
    monitor = SearchMonitor()
    monitor.cancel()
    g = _complete(chain_score)
    runner = Bes(chain_score, monitor=monitor)
    runner.bes(g)
    assert runner.deletions == []
    assert g.num_edges() == 3
