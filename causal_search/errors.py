"""
Error taxonomy for causal_search.

- ConfigurationError: fatal, raised before any search work starts.
- KnowledgeConflictError: background knowledge cannot be satisfied.
- ScoreError: the score oracle produced NaN/+inf for a reachable state.

Numerical trouble inside a score (singular sub-matrices) is not an error; it is
absorbed as a -inf local score. Cancellation and iteration caps are reported via
SearchResult.status.
"""
from __future__ import annotations


class CausalSearchError(Exception):
    """Base class for all package errors."""


class ConfigurationError(CausalSearchError, ValueError):
    """Invalid parameters, data or knowledge supplied to a search."""


class KnowledgeConflictError(ConfigurationError):
    """Knowledge both requires and forbids a relation, or requires a cycle."""


class ScoreError(ConfigurationError):
    """A score oracle returned a non-finite value where a finite one is needed."""


__all__ = [
    "CausalSearchError",
    "ConfigurationError",
    "KnowledgeConflictError",
    "ScoreError",
]
