"""
Config loader & resolver

- load_yaml(path): loads YAML into dict (requires PyYAML)
- resolve_config(path, overrides_json): defaults <- YAML file <- JSON overrides
- search_params(cfg): flattened search hyperparameters with validation

Only PyYAML and the standard library are needed here.
"""
from __future__ import annotations

import copy
import json
from pathlib import Path
from typing import Any, Dict, Optional, Union

try:
    import yaml
except ImportError as e:
    raise ImportError(
        "PyYAML is required to load configs. Install with: pip install pyyaml"
    ) from e

from ..errors import ConfigurationError

DEFAULT_CONFIG: Dict[str, Any] = {
    "run": {"output_dir": "outputs", "random_seed": 42},
    "data": {"path": None, "columns": None, "dropna": True},
    "search": {
        "algorithm": "boss",
        "score": {"type": "sem_bic", "penalty_discount": 1.0, "structure_prior": 0.0},
        "test": {"type": "fisher_z", "alpha": 0.01},
        "num_starts": 1,
        "depth": -1,
        "use_bes": True,
        "use_data_order": True,
        "cpdag": True,
        "n_jobs": 1,
        "max_iterations": 1000,
        "max_seconds": None,
        "max_path_length": -1,
        "possible_dsep": True,
    },
    "knowledge": {
        "forbidden": [],
        "required": [],
        "tiers": [],
        "forbidden_within_tiers": [],
        "only_next_tier": [],
    },
    "report": {"formats": ["txt", "dot", "json", "matrix", "md"]},
    "logging": {"level": "INFO", "to_file": False, "to_json": False, "dir": "logs"},
}


def load_yaml(path: Union[str, Path]) -> Dict[str, Any]:
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"Config not found: {p}")
    return yaml.safe_load(p.read_text(encoding="utf-8")) or {}


def deep_merge(a: Dict, b: Dict) -> Dict:
    """Recursively merge dict b into a (returns a new dict)."""
    out = dict(a)
    for k, v in b.items():
        if isinstance(v, dict) and isinstance(out.get(k), dict):
            out[k] = deep_merge(out[k], v)
        else:
            out[k] = v
    return out


def with_defaults(cfg: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    return deep_merge(copy.deepcopy(DEFAULT_CONFIG), cfg or {})


def resolve_config(path: Optional[Union[str, Path]], overrides_json: Optional[str] = None) -> Dict:
    cfg = with_defaults(load_yaml(path) if path else {})
    if overrides_json:
        # e.g. '{"search": {"algorithm": "grasp", "num_starts": 4}}'
        try:
            overrides = json.loads(overrides_json)
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"--override is not valid JSON: {e}") from e
        cfg = deep_merge(cfg, overrides)
    return cfg


def search_params(cfg: Dict[str, Any]) -> Dict[str, Any]:
    """Search hyperparameters from a resolved config, checked for obvious mistakes."""
    s = dict(cfg.get("search") or {})
    depth = int(s.get("depth", -1))
    if depth < -1:
        raise ConfigurationError(f"search.depth must be >= -1, got {depth}")
    num_starts = int(s.get("num_starts", 1))
    if num_starts < 1:
        raise ConfigurationError(f"search.num_starts must be >= 1, got {num_starts}")
    max_path_length = int(s.get("max_path_length", -1))
    if max_path_length < -1:
        raise ConfigurationError(f"search.max_path_length must be >= -1, got {max_path_length}")
    s.update(depth=depth, num_starts=num_starts, max_path_length=max_path_length)
    s.setdefault("seed", (cfg.get("run") or {}).get("random_seed"))
    return s
