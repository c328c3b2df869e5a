"""
Search algorithms and the registry that dispatches to them.

Each algorithm is a free runner function returning a SearchResult. The
registry records what each one consumes (a Score, an IndependenceTest,
Knowledge) so callers can build only what is needed:

    from causal_search.search import run_algorithm, make_score

    score = make_score("sem_bic", X, names, penalty_discount=2.0)
    result = run_algorithm("boss", score=score, num_starts=4, seed=1)
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, List, Optional, Sequence

from ..errors import ConfigurationError
from ..knowledge import Knowledge
from .boss import Boss, BossConfig, run_boss, run_grasp
from .fci_orient import bfci
from .monitor import SearchEvent, SearchMonitor, SearchResult, SearchStatus
from .pc import fci, pc
from .scores import FisherZTest, IndependenceTest, Score, SemBicScore


class Algorithm(str, Enum):
    PC = "pc"
    FCI = "fci"
    BOSS = "boss"
    GRASP = "grasp"
    BFCI = "bfci"


@dataclass(frozen=True)
class AlgorithmSpec:
    algorithm: Algorithm
    runner: Callable[..., SearchResult]
    uses_score: bool
    uses_test: bool
    has_knowledge: bool = True
    output: str = "cpdag"
    description: str = ""


ALGORITHMS: Dict[Algorithm, AlgorithmSpec] = {
    Algorithm.PC: AlgorithmSpec(Algorithm.PC, pc, False, True,
                                description="PC-stable adjacency search + Meek rules"),
    Algorithm.FCI: AlgorithmSpec(Algorithm.FCI, fci, False, True, output="pag",
                                 description="FCI with possible-d-sep and R1-R4"),
    Algorithm.BOSS: AlgorithmSpec(Algorithm.BOSS, run_boss, True, False,
                                  description="permutation search, relocate moves + BES"),
    Algorithm.GRASP: AlgorithmSpec(Algorithm.GRASP, run_grasp, True, False,
                                   description="permutation search, tuck moves + BES"),
    Algorithm.BFCI: AlgorithmSpec(Algorithm.BFCI, bfci, True, True, output="pag",
                                  description="BOSS + latent-variable finalization"),
}

ALIASES: Dict[str, Algorithm] = {
    "pc-stable": Algorithm.PC,
    "boss-fci": Algorithm.BFCI,
    "boss_fci": Algorithm.BFCI,
    "grasp-tuck": Algorithm.GRASP,
}

SCORES = ("sem_bic",)
TESTS = ("fisher_z",)


def get_algorithm(name) -> AlgorithmSpec:
    if isinstance(name, Algorithm):
        return ALGORITHMS[name]
    key = str(name).strip().lower()
    if key in ALIASES:
        return ALGORITHMS[ALIASES[key]]
    try:
        return ALGORITHMS[Algorithm(key)]
    except ValueError:
        known = ", ".join(a.value for a in Algorithm)
        raise ConfigurationError(f"Unknown algorithm {name!r}; expected one of: {known}") from None


def list_algorithms() -> List[AlgorithmSpec]:
    return list(ALGORITHMS.values())


def make_score(kind: str, data, variables: Optional[Sequence] = None, **params) -> Score:
    kind = str(kind).lower()
    if kind in ("sem_bic", "sem-bic", "bic"):
        return SemBicScore(
            data,
            variables,
            penalty_discount=float(params.get("penalty_discount", 1.0)),
            structure_prior=float(params.get("structure_prior", 0.0)),
        )
    raise ConfigurationError(f"Unknown score {kind!r}; expected one of: {', '.join(SCORES)}")


def make_test(kind: str, data, variables: Optional[Sequence] = None, **params) -> IndependenceTest:
    kind = str(kind).lower()
    if kind in ("fisher_z", "fisher-z", "fisherz"):
        return FisherZTest(data, variables, alpha=float(params.get("alpha", 0.01)))
    raise ConfigurationError(f"Unknown test {kind!r}; expected one of: {', '.join(TESTS)}")


def run_algorithm(
    algorithm,
    *,
    score: Optional[Score] = None,
    test: Optional[IndependenceTest] = None,
    knowledge: Optional[Knowledge] = None,
    monitor: Optional[SearchMonitor] = None,
    **params,
) -> SearchResult:
    """Run a registered algorithm with whichever oracles it consumes."""
    spec = get_algorithm(algorithm)
    args = []
    if spec.uses_score:
        if score is None:
            raise ConfigurationError(f"{spec.algorithm.value} needs a score.")
        args.append(score)
    if spec.uses_test:
        if test is None:
            raise ConfigurationError(f"{spec.algorithm.value} needs an independence test.")
        args.append(test)
    kn = knowledge if spec.has_knowledge else None
    return spec.runner(*args, knowledge=kn, monitor=monitor, **params)


__all__ = [
    "ALGORITHMS",
    "Algorithm",
    "AlgorithmSpec",
    "Boss",
    "BossConfig",
    "SearchEvent",
    "SearchMonitor",
    "SearchResult",
    "SearchStatus",
    "get_algorithm",
    "list_algorithms",
    "make_score",
    "make_test",
    "run_algorithm",
]
