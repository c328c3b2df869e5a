# FILE: causal_search/knowledge.py
# ======================================================================================
# Causal Search Engine (CSE)
# Knowledge: background constraints for causal search
# --------------------------------------------------------------------------------------
# Relations are over variable *names*:
#   forbidden(a, b) : a may not be a direct cause of b
#   required(a, b)  : a must be a direct cause of b
# Rules may use '*' wildcards, e.g. forbidden("X*", "Y") forbids every X-prefixed
# variable from causing Y.
#
# Tiers encode temporal order: a variable in a later tier may not cause a variable
# in an earlier tier. Per tier you may additionally forbid edges within the tier,
# or restrict the tier to causing only the next tier.
#
# Config form (YAML, see configs/search.yaml):
#   knowledge:
#     forbidden: [[A, B], ["X*", Y]]
#     required:  [[C, B]]
#     tiers:     [[A], [B, C]]
#     forbidden_within_tiers: [1]
#     only_next_tier: []
#
# License
# -------
# MIT (c) 2025 Causal Search Engine contributors
# ======================================================================================

from __future__ import annotations

import itertools
from fnmatch import fnmatchcase
from typing import Any, Dict, Iterable, List, NamedTuple, Optional, Sequence, Set, Tuple

from .errors import ConfigurationError, KnowledgeConflictError


class KnowledgeEdge(NamedTuple):
    source: str
    target: str


def _name(x: Any) -> str:
    return x if isinstance(x, str) else str(getattr(x, "name", x))


class _RuleSet:
    """Ordered-pair rules; plain names in a set, wildcard rules in a list."""

    def __init__(self) -> None:
        self.exact: Set[Tuple[str, str]] = set()
        self.patterns: List[Tuple[str, str]] = []

    def add(self, a: str, b: str) -> None:
        if "*" in a or "*" in b:
            if (a, b) not in self.patterns:
                self.patterns.append((a, b))
        else:
            self.exact.add((a, b))

    def remove(self, a: str, b: str) -> None:
        self.exact.discard((a, b))
        if (a, b) in self.patterns:
            self.patterns.remove((a, b))

    def matches(self, a: str, b: str) -> bool:
        if (a, b) in self.exact:
            return True
        return any(fnmatchcase(a, pa) and fnmatchcase(b, pb) for pa, pb in self.patterns)

    def rules(self) -> List[Tuple[str, str]]:
        return sorted(self.exact) + list(self.patterns)

    def copy(self) -> "_RuleSet":
        out = _RuleSet()
        out.exact = set(self.exact)
        out.patterns = list(self.patterns)
        return out


class Knowledge:
    """
    Background knowledge: forbidden / required direct-cause relations and tiers.

    Read-only for the duration of a search; build it up front.
    """

    def __init__(self, variables: Iterable[Any] = ()):
        self._variables: List[str] = []
        self._forbidden = _RuleSet()
        self._required = _RuleSet()
        self._tiers: List[List[str]] = []
        self._forbidden_within: Set[int] = set()
        self._only_next: Set[int] = set()
        for v in variables:
            self.add_variable(v)

    # ---- variables ----

    def add_variable(self, var: Any) -> None:
        name = _name(var)
        if "*" in name:
            return
        if name not in self._variables:
            self._variables.append(name)

    @property
    def variables(self) -> List[str]:
        return list(self._variables)

    # ---- forbidden / required ----

    def set_forbidden(self, a: Any, b: Any) -> None:
        a, b = _name(a), _name(b)
        self.add_variable(a)
        self.add_variable(b)
        self._forbidden.add(a, b)

    def remove_forbidden(self, a: Any, b: Any) -> None:
        self._forbidden.remove(_name(a), _name(b))

    def set_required(self, a: Any, b: Any) -> None:
        a, b = _name(a), _name(b)
        self.add_variable(a)
        self.add_variable(b)
        self._required.add(a, b)

    def remove_required(self, a: Any, b: Any) -> None:
        self._required.remove(_name(a), _name(b))

    def is_forbidden(self, a: Any, b: Any) -> bool:
        a, b = _name(a), _name(b)
        return self._forbidden.matches(a, b) or self.is_forbidden_by_tiers(a, b)

    def is_required(self, a: Any, b: Any) -> bool:
        return self._required.matches(_name(a), _name(b))

    def no_edge_required(self, a: Any, b: Any) -> bool:
        """True if neither a -> b nor b -> a is required."""
        return not (self.is_required(a, b) or self.is_required(b, a))

    def must_precede(self, a: Any, b: Any) -> bool:
        """
        True if every knowledge-respecting order places a before b: a -> b is
        required, or b -> a is forbidden while a -> b is not.
        """
        if self.is_required(a, b):
            return True
        return self.is_forbidden(b, a) and not self.is_forbidden(a, b)

    # ---- tiers ----

    def add_to_tier(self, tier: int, var: Any) -> None:
        if tier < 0:
            raise ConfigurationError(f"Tier index must be >= 0, got {tier}")
        name = _name(var)
        for members in self._tiers:
            if name in members:
                members.remove(name)
        while len(self._tiers) <= tier:
            self._tiers.append([])
        self._tiers[tier].append(name)
        self.add_variable(name)

    def set_tier(self, tier: int, variables: Iterable[Any]) -> None:
        for v in variables:
            self.add_to_tier(tier, v)

    def tier(self, tier: int) -> List[str]:
        return list(self._tiers[tier]) if tier < len(self._tiers) else []

    def num_tiers(self) -> int:
        return len(self._tiers)

    def tier_of(self, var: Any) -> int:
        name = _name(var)
        for i, members in enumerate(self._tiers):
            if name in members:
                return i
        return -1

    def set_tier_forbidden_within(self, tier: int, forbidden: bool = True) -> None:
        (self._forbidden_within.add if forbidden else self._forbidden_within.discard)(tier)

    def is_tier_forbidden_within(self, tier: int) -> bool:
        return tier in self._forbidden_within

    def set_only_can_cause_next_tier(self, tier: int, only_next: bool = True) -> None:
        (self._only_next.add if only_next else self._only_next.discard)(tier)

    def is_only_can_cause_next_tier(self, tier: int) -> bool:
        return tier in self._only_next

    def is_forbidden_by_tiers(self, a: Any, b: Any) -> bool:
        ta, tb = self.tier_of(a), self.tier_of(b)
        if ta < 0 or tb < 0:
            return False
        if ta > tb:
            return True
        if ta == tb:
            return ta in self._forbidden_within and _name(a) != _name(b)
        return ta in self._only_next and tb > ta + 1

    # ---- listings & checks ----

    def _pairs(self) -> Iterable[Tuple[str, str]]:
        return itertools.permutations(self._variables, 2)

    def forbidden_edges(self) -> List[KnowledgeEdge]:
        return [KnowledgeEdge(a, b) for a, b in self._pairs() if self.is_forbidden(a, b)]

    def required_edges(self) -> List[KnowledgeEdge]:
        return [KnowledgeEdge(a, b) for a, b in self._pairs() if self.is_required(a, b)]

    def is_empty(self) -> bool:
        return not (self._forbidden.rules() or self._required.rules() or any(self._tiers))

    def conflicts(self) -> List[KnowledgeEdge]:
        """Ordered pairs that are both required and forbidden."""
        return [KnowledgeEdge(a, b) for a, b in self._pairs()
                if self.is_required(a, b) and self.is_forbidden(a, b)]

    def validate(self, variables: Optional[Sequence[Any]] = None) -> None:
        """
        Raise KnowledgeConflictError on contradictory relations, or
        ConfigurationError if required relations name variables outside
        `variables` (when given).
        """
        bad = self.conflicts()
        if bad:
            pairs = ", ".join(f"{e.source}->{e.target}" for e in bad)
            raise KnowledgeConflictError(f"Knowledge both requires and forbids: {pairs}")
        for a, b in self._required.exact:
            if self._required.matches(b, a):
                raise KnowledgeConflictError(f"Knowledge requires both {a}->{b} and {b}->{a}")
        if variables is not None:
            known = {_name(v) for v in variables}
            for a, b in self._required.exact:
                if a not in known or b not in known:
                    raise ConfigurationError(
                        f"Required relation {a}->{b} names a variable not in the data "
                        f"({len(known)} variables)."
                    )

    def is_violated_by(self, graph) -> bool:
        """
        True if `graph` has a directed edge a -> b with forbidden(a, b), or lacks a
        directed edge a -> b for some required(a, b).
        """
        for e in graph.edges:
            if not e.is_directed():
                continue
            a, b = (e.node1, e.node2) if e.points_towards(e.node2) else (e.node2, e.node1)
            if self.is_forbidden(a.name, b.name):
                return True
        names = set(graph.node_names)
        for a, b in self.required_edges():
            if a not in names or b not in names:
                continue
            if not graph.is_parent_of(graph.get_node(a), graph.get_node(b)):
                return True
        return False

    # ---- (de)serialization ----

    def copy(self) -> "Knowledge":
        k = Knowledge(self._variables)
        k._forbidden = self._forbidden.copy()
        k._required = self._required.copy()
        k._tiers = [list(t) for t in self._tiers]
        k._forbidden_within = set(self._forbidden_within)
        k._only_next = set(self._only_next)
        return k

    def to_dict(self) -> Dict[str, Any]:
        return {
            "forbidden": [list(p) for p in self._forbidden.rules()],
            "required": [list(p) for p in self._required.rules()],
            "tiers": [list(t) for t in self._tiers],
            "forbidden_within_tiers": sorted(self._forbidden_within),
            "only_next_tier": sorted(self._only_next),
        }

    @classmethod
    def from_dict(cls, spec: Optional[Dict[str, Any]], variables: Iterable[Any] = ()) -> "Knowledge":
        k = cls(variables)
        spec = spec or {}
        for key, setter in (("forbidden", k.set_forbidden), ("required", k.set_required)):
            for pair in spec.get(key) or []:
                if len(pair) != 2:
                    raise ConfigurationError(f"knowledge.{key} entries must be pairs, got {pair!r}")
                setter(str(pair[0]), str(pair[1]))
        for i, members in enumerate(spec.get("tiers") or []):
            k.set_tier(i, [str(m) for m in members])
        for i in spec.get("forbidden_within_tiers") or []:
            k.set_tier_forbidden_within(int(i))
        for i in spec.get("only_next_tier") or []:
            k.set_only_can_cause_next_tier(int(i))
        return k

    def __repr__(self) -> str:
        return (f"Knowledge(forbidden={len(self._forbidden.rules())}, "
                f"required={len(self._required.rules())}, tiers={len(self._tiers)})")


__all__ = ["Knowledge", "KnowledgeEdge"]
