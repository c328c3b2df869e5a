"""
Shared pytest fixtures for CSE tests.

Creates a minimal search config in a temp folder (outputs and data pointed at
tmp_path), a seeded linear-Gaussian simulator and a CSV drawn from it.
"""
from __future__ import annotations

from pathlib import Path
from typing import Dict, List, Sequence, Tuple

import numpy as np
import pandas as pd
import pytest

from causal_search.utils.config_loader import load_yaml


_MIN_SEARCH_YAML = """\
run:
  output_dir: "{OUT}"
  random_seed: 7

data:
  path: "{DATA}"
  columns: null
  dropna: true

search:
  algorithm: "boss"
  score: {type: "sem_bic", penalty_discount: 2.0}
  test: {type: "fisher_z", alpha: 0.01}
  num_starts: 2
  depth: -1
  n_jobs: 1

knowledge:
  forbidden: []
  required: []
  tiers: []

report:
  formats: ["txt", "dot", "json", "matrix", "md"]

logging:
  level: "INFO"
  to_file: false
"""

# Parent lists in topological order: child -> [(parent, coefficient)].
CHAIN = {"A": [], "B": [("A", 0.8)], "C": [("B", 0.8)]}
COLLIDER = {"X": [], "Y": [], "Z": [("X", 0.8), ("Y", 0.8)]}
DIAMOND = {
    "A": [],
    "B": [("A", 0.7)],
    "C": [("A", 0.7)],
    "D": [("B", 0.6), ("C", 0.6)],
}


def simulate(model: Dict[str, Sequence[Tuple[str, float]]], n: int = 1000, seed: int = 0) -> pd.DataFrame:
    """Draw n rows from a linear SEM with unit-variance Gaussian noise."""
    rng = np.random.default_rng(seed)
    cols: Dict[str, np.ndarray] = {}
    for name, parents in model.items():
        x = rng.normal(size=n)
        for p, coef in parents:
            x = x + coef * cols[p]
        cols[name] = x
    return pd.DataFrame(cols)


def names(df: pd.DataFrame) -> List[str]:
    return [str(c) for c in df.columns]


@pytest.fixture(scope="session")
def chain_df() -> pd.DataFrame:
    return simulate(CHAIN, n=1000, seed=1)


@pytest.fixture(scope="session")
def collider_df() -> pd.DataFrame:
    return simulate(COLLIDER, n=1000, seed=2)


@pytest.fixture(scope="session")
def diamond_df() -> pd.DataFrame:
    return simulate(DIAMOND, n=2000, seed=3)


@pytest.fixture(scope="function")
def data_csv(tmp_path: Path, collider_df: pd.DataFrame) -> Path:
    """The collider sample written as tmp_path/data/sample.csv."""
    p = tmp_path / "data" / "sample.csv"
    p.parent.mkdir(parents=True, exist_ok=True)
    collider_df.to_csv(p, index=False)
    return p


@pytest.fixture(scope="function")
def cfg_path(tmp_path: Path, data_csv: Path) -> Path:
    """Writes a minimal search.yaml into tmp_path/configs/ and returns its path."""
    cfg_dir = tmp_path / "configs"
    cfg_dir.mkdir(parents=True, exist_ok=True)
    out_dir = tmp_path / "outputs"
    text = (_MIN_SEARCH_YAML
            .replace("{OUT}", str(out_dir.as_posix()))
            .replace("{DATA}", str(data_csv.as_posix())))
    p = cfg_dir / "search.yaml"
    p.write_text(text, encoding="utf-8")
    return p


@pytest.fixture(scope="function")
def cfg(tmp_path: Path, cfg_path: Path) -> Dict:
    """Loads the YAML produced by cfg_path for convenience."""
    return load_yaml(cfg_path)
