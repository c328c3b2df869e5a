# FILE: causal_search/search/boss.py
# ======================================================================================
# Causal Search Engine (CSE)
# Permutation search: BOSS (relocate moves) and GRaSP-style tucks, alternated with BES
# --------------------------------------------------------------------------------------
# One start
#   order   <- data order (start 0, if use_data_order) or a seeded shuffle
#   order   <- stable reorder satisfying knowledge precedence
#   repeat
#       local moves to a fixed point   (relocate: best slot per node; tuck: GRaSP)
#       BES on the implied CPDAG, new order <- causal order of the BES graph
#   until the order stops changing or a round no longer improves the best score
#
# Restarts are independent (own OrderScorer each) and may run on joblib threads;
# the best score wins, ties go to the earliest restart.
#
# Tie-breaks
#   relocate : among equally good legal slots the last one scanned (highest index)
#   tuck     : a tuck is kept when its score is >= the best so far
#   passes   : another pass only when the previous one strictly improved the score
#
# Typical usage
# -------------
#   from causal_search.search.boss import Boss, BossConfig
#   from causal_search.search.scores import SemBicScore
#
#   score = SemBicScore(X, names, penalty_discount=2.0)
#   result = Boss(score, config=BossConfig(num_starts=4, seed=7)).search()
#   print(result.graph)
#
# License
# -------
# MIT (c) 2025 Causal Search Engine contributors
# ======================================================================================

from __future__ import annotations

import itertools
import math
import random
from dataclasses import asdict, dataclass
from typing import Dict, List, Optional, Sequence, Set, Tuple

from joblib import Parallel, delayed

from ..errors import ConfigurationError, KnowledgeConflictError
from ..graph import Graph, Node
from ..knowledge import Knowledge
from ..utils.logging_utils import get_logger
from .bes import Bes
from .meek import meek_orient
from .monitor import SearchMonitor, SearchResult
from .order_scorer import OrderScorer
from .orientation import orient_background_knowledge
from .scores import Score

log = get_logger("cse.boss")

_TRIAL = 0

MOVES = ("relocate", "tuck")


@dataclass
class BossConfig:
    num_starts: int = 1
    depth: int = -1
    use_bes: bool = True
    use_data_order: bool = True
    move: str = "relocate"
    seed: Optional[int] = None
    max_iterations: int = 1000
    n_jobs: int = 1
    cpdag: bool = True

    def validate(self) -> "BossConfig":
        if self.num_starts < 1:
            raise ConfigurationError(f"num_starts must be >= 1, got {self.num_starts}")
        if self.depth < -1:
            raise ConfigurationError(f"depth must be >= -1, got {self.depth}")
        if self.move not in MOVES:
            raise ConfigurationError(f"move must be one of {MOVES}, got {self.move!r}")
        if self.max_iterations < 1:
            raise ConfigurationError(f"max_iterations must be >= 1, got {self.max_iterations}")
        return self


@dataclass
class _StartResult:
    restart: int
    order: List[Node]
    score: float
    rounds: int


# --------------------------------------------------------------------------------------
# Order helpers
# --------------------------------------------------------------------------------------

def precedence_pairs(variables: Sequence[Node], knowledge: Optional[Knowledge]) -> List[Tuple[Node, Node]]:
    """(a, b) pairs such that a must come before b in any legal order."""
    if knowledge is None or knowledge.is_empty():
        return []
    return [(a, b) for a, b in itertools.permutations(variables, 2)
            if knowledge.must_precede(a.name, b.name)]


def violates_knowledge(order: Sequence[Node], pairs: Sequence[Tuple[Node, Node]]) -> bool:
    pos = {n: i for i, n in enumerate(order)}
    return any(pos[a] > pos[b] for a, b in pairs)


def make_valid_knowledge_order(order: Sequence[Node], pairs: Sequence[Tuple[Node, Node]]) -> List[Node]:
    """
    Stable reorder: repeatedly take the first remaining node whose required
    predecessors are all placed. Raises KnowledgeConflictError on a cycle.
    """
    if not pairs:
        return list(order)
    preds: Dict[Node, Set[Node]] = {n: set() for n in order}
    for a, b in pairs:
        preds[b].add(a)
    remaining = list(order)
    placed: Set[Node] = set()
    out: List[Node] = []
    while remaining:
        for n in remaining:
            if preds[n] <= placed:
                break
        else:
            raise KnowledgeConflictError(
                "Knowledge ordering constraints are cyclic among: "
                + ", ".join(n.name for n in remaining)
            )
        remaining.remove(n)
        placed.add(n)
        out.append(n)
    return out


def causal_order(initial_order: Sequence[Node], graph: Graph) -> List[Node]:
    """
    Order consistent with the directed edges of `graph`, staying as close to
    `initial_order` as possible.
    """
    found: List[Node] = []
    placed: Set[Node] = set()
    progress = True
    while progress and len(found) < len(initial_order):
        progress = False
        for n in initial_order:
            if n not in placed and all(p in placed for p in graph.parents(n)):
                found.append(n)
                placed.add(n)
                progress = True
    if len(found) < len(initial_order):
        log.warning("Directed cycle in BES graph; appending %d unordered nodes.",
                    len(initial_order) - len(found))
        found.extend(n for n in initial_order if n not in placed)
    return found


# --------------------------------------------------------------------------------------
# Search
# --------------------------------------------------------------------------------------

class Boss:
    """
    Permutation search over variable orders.

    Parameters
    ----------
    score : Score
    knowledge : Knowledge, optional
    config : BossConfig, optional
    monitor : SearchMonitor, optional
        Event sink, cancellation and time budget; a fresh one is made if omitted.
    """

    name = "boss"

    def __init__(
        self,
        score: Score,
        knowledge: Optional[Knowledge] = None,
        config: Optional[BossConfig] = None,
        monitor: Optional[SearchMonitor] = None,
    ):
        self.score = score
        self.knowledge = knowledge
        self.config = (config or BossConfig()).validate()
        self.monitor = monitor or SearchMonitor()
        self.variables = score.variables
        if knowledge is not None:
            knowledge.validate(self.variables)
        self._pairs = precedence_pairs(self.variables, knowledge)
        self.best_score: float = 0.0
        self.restarts_completed = 0

    # ---- public ----

    def best_order(self, order: Optional[Sequence[Node]] = None) -> List[Node]:
        base = list(order) if order is not None else list(self.variables)
        if not base:
            self.best_score = 0.0
            return []
        cfg = self.config
        if cfg.n_jobs != 1 and cfg.num_starts > 1:
            runs = Parallel(n_jobs=cfg.n_jobs, prefer="threads")(
                delayed(self._run_start)(r, base) for r in range(cfg.num_starts)
            )
        else:
            runs = []
            for r in range(cfg.num_starts):
                if self.monitor.check():
                    break
                runs.append(self._run_start(r, base))

        best: Optional[_StartResult] = None
        for res in runs:
            if res is not None and (best is None or res.score > best.score):
                best = res
        self.restarts_completed = sum(1 for res in runs if res is not None)
        if best is None:
            best = _StartResult(-1, make_valid_knowledge_order(base, self._pairs), -math.inf, 0)
            best.score = OrderScorer(self.score, self.knowledge, cfg.depth).score(best.order)
        self.best_score = best.score
        log.info("Best order from restart %d: score=%.6g", best.restart, best.score)
        return best.order

    def search(self, order: Optional[Sequence[Node]] = None) -> SearchResult:
        self.monitor.start()
        best = self.best_order(order)
        graph = self.get_graph(best, cpdag=self.config.cpdag)
        return SearchResult(
            graph=graph,
            order=best,
            score=self.best_score,
            status=self.monitor.status,
            elapsed=self.monitor.elapsed,
            algorithm="grasp" if self.config.move == "tuck" else self.name,
            info={"restarts_completed": self.restarts_completed, "config": asdict(self.config)},
        )

    def get_graph(self, order: Sequence[Node], cpdag: bool = True) -> Graph:
        """Implied graph of `order`, with knowledge orientation and Meek propagation."""
        scorer = OrderScorer(self.score, self.knowledge, self.config.depth)
        total = scorer.score(order) if order else 0.0
        graph = scorer.get_graph(cpdag)
        if self.knowledge is not None:
            orient_background_knowledge(graph, self.knowledge)
        meek_orient(graph, self.knowledge)
        graph.attributes["score"] = total
        return graph

    # ---- one start ----

    def _violates(self, scorer: OrderScorer) -> bool:
        return any(scorer.index(a) > scorer.index(b) for a, b in self._pairs)

    def _run_start(self, r: int, base: Sequence[Node]) -> Optional[_StartResult]:
        if self.monitor.check():
            return None
        cfg = self.config
        rng = random.Random(None if cfg.seed is None else cfg.seed + r)
        order = list(base)
        if r > 0 or not cfg.use_data_order:
            rng.shuffle(order)
        order = make_valid_knowledge_order(order, self._pairs)

        scorer = OrderScorer(self.score, self.knowledge, cfg.depth)
        best_score = scorer.score(order)
        best_order = list(order)
        rounds = 0
        while not self.monitor.check():
            if rounds >= cfg.max_iterations:
                self.monitor.hit_iteration_cap(f"restart {r}", cfg.max_iterations)
                break
            rounds += 1
            round_start = best_score

            if cfg.move == "tuck":
                self._tuck_passes(scorer)
            else:
                self._relocate_passes(scorer)
            pi1, s1 = scorer.pi, scorer.total()
            if s1 > best_score and not self._violates(scorer):
                best_score, best_order = s1, pi1
            self.monitor.emit("moves", f"restart {r} round {rounds}", rounds, s1, restart=r)

            if not cfg.use_bes:
                break
            pi2 = self._bes_order(scorer)
            s2 = scorer.score(pi2)
            if s2 > best_score and not self._violates(scorer):
                best_score, best_order = s2, pi2
            self.monitor.emit("round", f"restart {r} round {rounds}", rounds, s2, restart=r)
            log.debug("restart %d round %d: moves=%.6g bes=%.6g", r, rounds, s1, s2)

            if pi2 == pi1 or best_score <= round_start:
                break

        log.info("Restart %d finished after %d round(s): score=%.6g", r, rounds, best_score)
        return _StartResult(r, best_order, best_score, rounds)

    # ---- moves ----

    def _relocate_passes(self, scorer: OrderScorer) -> None:
        while not self.monitor.check():
            start = scorer.total()
            for k in scorer.pi:
                self._relocate(scorer, k)
            if scorer.total() <= start:
                break

    def _relocate(self, scorer: OrderScorer, k: Node) -> None:
        scorer.bookmark(_TRIAL)
        best = -math.inf
        for j in range(scorer.size()):
            s = scorer.move_to(k, j)
            if s >= best and not self._violates(scorer):
                best = s
                scorer.bookmark(_TRIAL)
        scorer.go_to_bookmark(_TRIAL)

    def _tuck_passes(self, scorer: OrderScorer) -> None:
        while not self.monitor.check():
            start = best = scorer.total()
            scorer.bookmark(_TRIAL)
            for x in scorer.pi:
                for j in range(scorer.index(x) - 1, -1, -1):
                    if j >= scorer.index(x) or not scorer.adjacent(x, scorer.get(j)):
                        continue
                    s = scorer.tuck(x, j)
                    if s >= best and not self._violates(scorer):
                        best = s
                        scorer.bookmark(_TRIAL)
                    else:
                        scorer.go_to_bookmark(_TRIAL)
            if best <= start:
                break

    def _bes_order(self, scorer: OrderScorer) -> List[Node]:
        graph = scorer.get_graph(cpdag=True)
        n_jobs = self.config.n_jobs if self.config.num_starts == 1 else 1
        Bes(self.score, self.knowledge, self.config.depth, n_jobs, self.monitor).bes(graph)
        return make_valid_knowledge_order(causal_order(scorer.pi, graph), self._pairs)


def run_boss(
    score: Score,
    knowledge: Optional[Knowledge] = None,
    monitor: Optional[SearchMonitor] = None,
    **params,
) -> SearchResult:
    """Free-function entry used by the algorithm registry."""
    fields = BossConfig.__dataclass_fields__
    cfg = BossConfig(**{k: v for k, v in params.items() if k in fields})
    return Boss(score, knowledge, cfg, monitor).search()


def run_grasp(
    score: Score,
    knowledge: Optional[Knowledge] = None,
    monitor: Optional[SearchMonitor] = None,
    **params,
) -> SearchResult:
    params = dict(params, move="tuck")
    return run_boss(score, knowledge, monitor, **params)


__all__ = [
    "Boss",
    "BossConfig",
    "causal_order",
    "make_valid_knowledge_order",
    "precedence_pairs",
    "violates_knowledge",
    "run_boss",
    "run_grasp",
]
