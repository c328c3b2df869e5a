from __future__ import annotations

import math

import pytest

from causal_search.errors import ConfigurationError
from causal_search.knowledge import Knowledge
from causal_search.search.order_scorer import OrderScorer
from causal_search.search.scores import SemBicScore, score_dag

from conftest import CHAIN, DIAMOND, simulate


@pytest.fixture(scope="module")
def diamond_score():
    df = simulate(DIAMOND, n=2000, seed=5)
    return SemBicScore(df.to_numpy(), list(df.columns), penalty_discount=2.0)


def _by_name(scorer, *names):
    return [next(v for v in scorer.variables if v.name == n) for n in names]


def test_parents_only_come_from_prefix(diamond_score):
    scorer = OrderScorer(diamond_score)
    a, b, c, d = _by_name(scorer, "A", "B", "C", "D")
    scorer.score([d, c, b, a])
    assert scorer.parents(d) == []
    for node in (c, b, a):
        prefix = scorer.pi[:scorer.index(node)]
        assert set(scorer.parents(node)) <= set(prefix)


def test_true_order_recovers_diamond(diamond_score):
    scorer = OrderScorer(diamond_score)
    a, b, c, d = _by_name(scorer, "A", "B", "C", "D")
    scorer.score([a, b, c, d])
    assert scorer.parents(b) == [a]
    assert scorer.parents(c) == [a]
    assert set(scorer.parents(d)) == {b, c}
    assert scorer.num_edges() == 4
    assert scorer.ancestors(d) == {a, b, c, d}


def test_total_matches_dag_score(diamond_score):
    scorer = OrderScorer(diamond_score)
    total = scorer.score()
    dag = scorer.get_graph(cpdag=False)
    assert dag.paths().is_acyclic()
    assert total == pytest.approx(score_dag(diamond_score, dag))
    assert total == pytest.approx(math.fsum(scorer.node_score(v) for v in scorer.pi))


def test_bookmark_round_trip(diamond_score):
    scorer = OrderScorer(diamond_score)
    a, b, c, d = _by_name(scorer, "A", "B", "C", "D")
    base = scorer.score([a, b, c, d])
    scorer.bookmark(3)
    scorer.move_to(a, 3)
    scorer.tuck(d, 0)
    assert scorer.pi != [a, b, c, d]
    scorer.go_to_bookmark(3)
    assert scorer.pi == [a, b, c, d]
    assert scorer.total() == pytest.approx(base)
    assert [scorer.index(n) for n in (a, b, c, d)] == [0, 1, 2, 3]
    with pytest.raises(KeyError):
        scorer.go_to_bookmark(99)


def test_move_to_keeps_a_permutation(diamond_score):
    scorer = OrderScorer(diamond_score)
    a, b, c, d = _by_name(scorer, "A", "B", "C", "D")
    scorer.score([a, b, c, d])
    scorer.move_to(d, 0)
    assert scorer.pi == [d, a, b, c]
    scorer.move_to(d, 2)
    assert scorer.pi == [a, b, d, c]
    with pytest.raises(IndexError):
        scorer.move_to(d, 4)


def test_tuck_moves_ancestors_along(diamond_score):
    scorer = OrderScorer(diamond_score)
    a, b, c, d = _by_name(scorer, "A", "B", "C", "D")
    scorer.score([a, b, c, d])
    # ancestors of C in the window (B, C] are just C itself
    scorer.tuck(c, 1)
    assert scorer.pi == [a, c, b, d]
    # no-op when j is not before x
    scorer.tuck(a, 2)
    assert scorer.pi == [a, c, b, d]


def test_cache_is_reused(diamond_score):
    scorer = OrderScorer(diamond_score)
    order = scorer.pi
    scorer.score(order)
    misses = scorer.cache_misses
    scorer.score(list(order))
    assert scorer.cache_misses == misses
    assert scorer.cache_hits >= len(order)


def test_depth_caps_parents(diamond_score):
    scorer = OrderScorer(diamond_score, depth=1)
    a, b, c, d = _by_name(scorer, "A", "B", "C", "D")
    scorer.score([a, b, c, d])
    assert len(scorer.parents(d)) == 1
    with pytest.raises(ConfigurationError):
        OrderScorer(diamond_score, depth=-2)


def test_knowledge_forbidden_and_required_parents():
    df = simulate(CHAIN, n=1000, seed=6)
    score = SemBicScore(df.to_numpy(), list(df.columns), penalty_discount=2.0)
    k = Knowledge(list(df.columns))
    k.set_forbidden("A", "B")
    k.set_required("A", "C")
    scorer = OrderScorer(score, k)
    a, b, c = _by_name(scorer, "A", "B", "C")
    scorer.score([a, b, c])
    assert a not in scorer.parents(b)
    assert a in scorer.parents(c)


def test_bad_order_rejected(diamond_score):
    scorer = OrderScorer(diamond_score)
    with pytest.raises(ConfigurationError):
        scorer.score(scorer.pi[:2])
