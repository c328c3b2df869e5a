# FILE: causal_search/search/scores.py
# ======================================================================================
# Causal Search Engine (CSE)
# Scores & independence tests: the numeric oracles consumed by every search
# --------------------------------------------------------------------------------------
# Contracts
# ---------
# Score
#   local_score(node, parents)        -> float   (higher is better; -inf = not scoreable)
#   local_score_diff(x, y, z)         -> float   local_score(y, z + [x]) - local_score(y, z)
#   variables / sample_size / index_of(node)
# IndependenceTest
#   check_independence(x, y, z)       -> IndependenceResult(independent, p_value, statistic)
#
# Indices are column positions in the data matrix. Implementations here memoize
# results behind a lock so that one oracle can be shared across parallel restarts.
#
# SemBicScore
#   lik   = -(n/2) * ln(residual variance of node | parents)
#   score = lik - c * (k/2) * ln(n) - structure_prior(k)
#   A singular parent covariance is absorbed as -inf (logged at DEBUG).
#
# FisherZTest
#   Partial correlation via least-squares residuals on standardized data,
#   two-sided p-value from the Fisher z transform (scipy.stats.norm).
#
# License
# -------
# MIT (c) 2025 Causal Search Engine contributors
# ======================================================================================

from __future__ import annotations

import math
import threading
from abc import ABC, abstractmethod
from typing import Dict, List, NamedTuple, Optional, Sequence, Tuple

import numpy as np
from scipy.stats import norm

from ..errors import ConfigurationError, ScoreError
from ..graph import Graph, Node, nodes_from_names
from ..utils.logging_utils import get_logger

log = get_logger("cse.scores")

# Floor for residual variances; perfectly collinear data stays finite and tied.
_MIN_VARIANCE = 1e-12


def _as_matrix(data) -> np.ndarray:
    X = np.asarray(data, dtype=float)
    if X.ndim != 2:
        raise ConfigurationError(f"Data must be 2D [N, D], got shape {X.shape}.")
    if X.size and not np.all(np.isfinite(X)):
        raise ConfigurationError("Data contains NaN or infinite values.")
    return X


def _as_nodes(variables: Optional[Sequence], d: int) -> List[Node]:
    if variables is None:
        return nodes_from_names(f"X{i}" for i in range(d))
    nodes = [v if isinstance(v, Node) else Node(str(v)) for v in variables]
    if len(nodes) != d:
        raise ConfigurationError(f"Expected {d} variable names, got {len(nodes)}.")
    if len({n.name for n in nodes}) != len(nodes):
        raise ConfigurationError("Variable names must be unique.")
    return nodes


def ensure_finite_score(value: float, node: int, parents: Sequence[int]) -> float:
    """Raise ScoreError for NaN or +inf; -inf passes through as 'not scoreable'."""
    if math.isnan(value) or value == math.inf:
        raise ScoreError(f"Score oracle returned {value} for node {node} | parents {list(parents)}")
    return value


# --------------------------------------------------------------------------------------
# Score
# --------------------------------------------------------------------------------------

class Score(ABC):
    """Decomposable score over a fixed variable list."""

    def __init__(self, variables: Sequence[Node], sample_size: int):
        self._variables = list(variables)
        self._sample_size = int(sample_size)
        self._index = {v: i for i, v in enumerate(self._variables)}

    @property
    def variables(self) -> List[Node]:
        return list(self._variables)

    @property
    def sample_size(self) -> int:
        return self._sample_size

    def index_of(self, node: Node) -> int:
        return self._index[node]

    def variable(self, name: str) -> Node:
        for v in self._variables:
            if v.name == name:
                return v
        raise KeyError(f"Unknown variable: {name}")

    @abstractmethod
    def local_score(self, node: int, parents: Sequence[int]) -> float:
        ...

    def local_score_diff(self, x: int, y: int, z: Sequence[int]) -> float:
        return self.local_score(y, list(z) + [x]) - self.local_score(y, z)


class SemBicScore(Score):
    """
    Linear-Gaussian BIC.

    Parameters
    ----------
    data : array-like [N, D]
        Continuous data, rows are samples.
    variables : sequence of Node or str, optional
        Column names; defaults to X0..X{D-1}.
    penalty_discount : float
        Multiplier c on the BIC penalty (1.0 = standard BIC).
    structure_prior : float
        Expected number of parents per node; 0 disables the prior.
    """

    def __init__(
        self,
        data,
        variables: Optional[Sequence] = None,
        penalty_discount: float = 1.0,
        structure_prior: float = 0.0,
    ):
        X = _as_matrix(data)
        super().__init__(_as_nodes(variables, X.shape[1]), X.shape[0])
        if penalty_discount <= 0:
            raise ConfigurationError("penalty_discount must be > 0.")
        if structure_prior < 0:
            raise ConfigurationError("structure_prior must be >= 0.")
        self.penalty_discount = float(penalty_discount)
        self.structure_prior = float(structure_prior)
        d = X.shape[1]
        if d and X.shape[0] > 1:
            self._cov = np.atleast_2d(np.cov(X, rowvar=False, bias=True))
        else:
            self._cov = np.zeros((d, d))
        self._log_n = math.log(self._sample_size) if self._sample_size > 0 else 0.0
        self._cache: Dict[Tuple[int, Tuple[int, ...]], float] = {}
        self._lock = threading.Lock()

    def _structure_prior(self, k: int) -> float:
        if self.structure_prior <= 0:
            return 0.0
        d = len(self._variables)
        p = self.structure_prior / d
        return -(k * math.log(p) + (d - k) * math.log(1.0 - p))

    def _residual_variance(self, i: int, parents: Tuple[int, ...]) -> float:
        var_y = float(self._cov[i, i])
        if not parents:
            return var_y
        idx = list(parents)
        sxx = self._cov[np.ix_(idx, idx)]
        sxy = self._cov[idx, i]
        beta = np.linalg.solve(sxx, sxy)
        if not np.all(np.isfinite(beta)):
            raise np.linalg.LinAlgError("non-finite regression coefficients")
        return var_y - float(sxy @ beta)

    def local_score(self, node: int, parents: Sequence[int]) -> float:
        key = (int(node), tuple(sorted(int(p) for p in parents)))
        with self._lock:
            hit = self._cache.get(key)
        if hit is not None:
            return hit
        try:
            var = self._residual_variance(*key)
        except np.linalg.LinAlgError:
            log.debug("Singular covariance scoring %s | %s; treating as not scoreable.",
                      self._variables[key[0]], [self._variables[p].name for p in key[1]])
            value = -math.inf
        else:
            k = len(key[1])
            lik = -0.5 * self._sample_size * math.log(max(var, _MIN_VARIANCE))
            value = lik - self.penalty_discount * (k / 2.0) * self._log_n - self._structure_prior(k)
        with self._lock:
            self._cache[key] = value
        return value


def score_dag(score: Score, dag: Graph) -> float:
    """Sum of local scores of a DAG (each node given its parents in `dag`)."""
    total = 0.0
    for node in dag.nodes:
        pa = [score.index_of(p) for p in dag.parents(node)]
        total += score.local_score(score.index_of(node), pa)
    return total


# --------------------------------------------------------------------------------------
# Independence tests
# --------------------------------------------------------------------------------------

class IndependenceResult(NamedTuple):
    independent: bool
    p_value: float
    statistic: float


class IndependenceTest(ABC):
    """Conditional independence oracle over a fixed variable list."""

    def __init__(self, variables: Sequence[Node], sample_size: int, alpha: float):
        if not 0.0 < alpha < 1.0:
            raise ConfigurationError(f"alpha must lie in (0, 1), got {alpha}")
        self._variables = list(variables)
        self._sample_size = int(sample_size)
        self._index = {v: i for i, v in enumerate(self._variables)}
        self.alpha = float(alpha)

    @property
    def variables(self) -> List[Node]:
        return list(self._variables)

    @property
    def sample_size(self) -> int:
        return self._sample_size

    def index_of(self, node: Node) -> int:
        return self._index[node]

    @abstractmethod
    def check_independence(self, x: int, y: int, z: Sequence[int]) -> IndependenceResult:
        ...

    def is_independent(self, x: Node, y: Node, z: Sequence[Node]) -> bool:
        """Node-level convenience used by the constraint-based searches."""
        return self.check_independence(
            self._index[x], self._index[y], [self._index[n] for n in z]
        ).independent


def _standardize(X: np.ndarray) -> np.ndarray:
    mu = X.mean(axis=0, keepdims=True)
    sd = X.std(axis=0, ddof=1, keepdims=True) if X.shape[0] > 1 else np.ones((1, X.shape[1]))
    sd = np.where(sd < 1e-12, 1.0, sd)
    return (X - mu) / sd


def _residual(y: np.ndarray, Z: np.ndarray) -> np.ndarray:
    if Z.size == 0:
        return y
    beta, *_ = np.linalg.lstsq(Z, y, rcond=None)
    return y - Z @ beta


class FisherZTest(IndependenceTest):
    """
    Fisher-Z partial-correlation test. Independent when p >= alpha.
    """

    def __init__(self, data, variables: Optional[Sequence] = None, alpha: float = 0.01):
        X = _as_matrix(data)
        super().__init__(_as_nodes(variables, X.shape[1]), X.shape[0], alpha)
        self._Xz = _standardize(X) if X.size else X
        self._cache: Dict[Tuple[int, int, Tuple[int, ...]], IndependenceResult] = {}
        self._lock = threading.Lock()

    def partial_correlation(self, i: int, j: int, cond: Sequence[int]) -> float:
        yi, yj = self._Xz[:, i], self._Xz[:, j]
        if not cond:
            r = float(np.corrcoef(yi, yj)[0, 1])
        else:
            Z = self._Xz[:, list(cond)]
            ri, rj = _residual(yi, Z), _residual(yj, Z)
            denom = float(np.linalg.norm(ri) * np.linalg.norm(rj))
            r = 0.0 if denom < 1e-12 else float(ri.dot(rj) / denom)
        return float(np.clip(r, -0.999999, 0.999999)) if np.isfinite(r) else 0.0

    def check_independence(self, x: int, y: int, z: Sequence[int]) -> IndependenceResult:
        a, b = (x, y) if x < y else (y, x)
        key = (a, b, tuple(sorted(z)))
        with self._lock:
            hit = self._cache.get(key)
        if hit is not None:
            return hit
        r = self.partial_correlation(a, b, key[2])
        dof = max(1, self._sample_size - len(key[2]) - 3)
        stat = 0.5 * math.log((1 + r) / (1 - r)) * math.sqrt(dof)
        p = float(2.0 * norm.sf(abs(stat)))
        result = IndependenceResult(p >= self.alpha, p, stat)
        with self._lock:
            self._cache[key] = result
        return result


__all__ = [
    "Score",
    "SemBicScore",
    "IndependenceTest",
    "IndependenceResult",
    "FisherZTest",
    "ensure_finite_score",
    "score_dag",
]
