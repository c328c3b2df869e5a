"""
Causal Search Engine (CSE): Core Python Package

This package learns causal graph structure from tabular data:
1) ingest   → numeric table selection & cleaning
2) discover → causal search (BOSS / GRaSP permutation search, PC, FCI, BOSS-FCI)
3) report   → graph exports (text, DOT, JSON, endpoint matrix) and a Markdown summary

Design goals
------------
- CLI-first: the Typer CLI orchestrates the pipeline.
- Config-driven: everything is controlled via YAML in /configs.
- Reproducible: seeded restarts, deterministic tie-breaks, logged runs, JSON artifacts.

License: MIT
"""
from __future__ import annotations

import os
import random
from pathlib import Path
from typing import Optional

import numpy as np

__version__ = "0.4.0"


def get_version() -> str:
    return os.environ.get("CSE_VERSION", __version__)


def get_package_root() -> Path:
    return Path(__file__).resolve().parent


def set_global_seed(seed: Optional[int]) -> None:
    """Seed Python's and NumPy's global generators (searches use their own seeded RNGs)."""
    if seed is None:
        return
    random.seed(seed)
    np.random.seed(seed)


__all__ = [
    "cli",
    "ingest",
    "discover",
    "report",
    "get_version",
    "get_package_root",
    "set_global_seed",
]
