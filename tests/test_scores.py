from __future__ import annotations

import math

import numpy as np
import pytest

from causal_search.errors import ConfigurationError, ScoreError
from causal_search.graph import Graph
from causal_search.search import make_score, make_test
from causal_search.search.scores import FisherZTest, SemBicScore, ensure_finite_score, score_dag

from conftest import CHAIN, simulate


@pytest.fixture(scope="module")
def chain():
    df = simulate(CHAIN, n=1000, seed=11)
    return df.to_numpy(), list(df.columns)


def test_true_parent_improves_bic(chain):
    X, names = chain
    s = SemBicScore(X, names, penalty_discount=2.0)
    a, b, c = 0, 1, 2
    assert s.local_score(b, [a]) > s.local_score(b, [])
    assert s.local_score_diff(a, b, []) > 0
    # A adds nothing to C once B is a parent
    assert s.local_score_diff(a, c, [b]) < 0


def test_parent_order_does_not_matter(chain):
    X, names = chain
    s = SemBicScore(X, names)
    assert s.local_score(2, [0, 1]) == s.local_score(2, [1, 0])


def test_score_equivalence(chain):
    X, names = chain
    s = SemBicScore(X, names)
    a, b = s.variables[0], s.variables[1]
    g1 = Graph(s.variables)
    g1.add_directed_edge(a, b)
    g2 = Graph(s.variables)
    g2.add_directed_edge(b, a)
    assert score_dag(s, g1) == pytest.approx(score_dag(s, g2))


def test_duplicate_column_stays_finite():
    rng = np.random.default_rng(0)
    x = rng.normal(size=500)
    X = np.column_stack([x, x.copy(), rng.normal(size=500)])
    s = SemBicScore(X, ["A", "A2", "B"])
    value = s.local_score(1, [0])
    assert value > s.local_score(1, [])
    assert value != math.inf and not math.isnan(value)


def test_default_names_and_lookup(chain):
    X, _ = chain
    s = SemBicScore(X)
    assert [v.name for v in s.variables] == ["X0", "X1", "X2"]
    assert s.index_of(s.variable("X2")) == 2
    assert s.sample_size == 1000
    with pytest.raises(KeyError):
        s.variable("nope")


def test_bad_inputs():
    with pytest.raises(ConfigurationError):
        SemBicScore(np.array([[1.0, np.nan], [2.0, 3.0]]))
    with pytest.raises(ConfigurationError):
        SemBicScore(np.zeros((5, 2)), ["A"])
    with pytest.raises(ConfigurationError):
        SemBicScore(np.zeros((5, 2)), ["A", "A"])
    with pytest.raises(ConfigurationError):
        SemBicScore(np.zeros((5, 2)), penalty_discount=0)
    with pytest.raises(ConfigurationError):
        FisherZTest(np.zeros((5, 2)), alpha=1.5)


def test_ensure_finite_score():
    assert ensure_finite_score(-math.inf, 0, []) == -math.inf
    with pytest.raises(ScoreError):
        ensure_finite_score(float("nan"), 0, [1])
    with pytest.raises(ScoreError):
        ensure_finite_score(math.inf, 0, [1])


def test_fisher_z_chain(chain):
    X, names = chain
    t = FisherZTest(X, names, alpha=0.01)
    assert not t.check_independence(0, 1, []).independent
    assert not t.check_independence(0, 2, []).independent
    res = t.check_independence(0, 2, [1])
    assert res.independent
    assert 0.0 <= res.p_value <= 1.0
    assert t.check_independence(2, 0, [1]) == res

    a, b, c = t.variables
    assert t.is_independent(a, c, [b])


def test_registry_builders(chain):
    X, names = chain
    s = make_score("sem_bic", X, names, penalty_discount=2.0)
    assert isinstance(s, SemBicScore) and s.penalty_discount == 2.0
    t = make_test("fisher-z", X, names, alpha=0.05)
    assert isinstance(t, FisherZTest) and t.alpha == 0.05
    with pytest.raises(ConfigurationError):
        make_score("bdeu", X, names)
    with pytest.raises(ConfigurationError):
        make_test("chi_square", X, names)
