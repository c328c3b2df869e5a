"""
Stage 2 (Discover): dataset + knowledge + config -> searched graph

This stage:
- Loads {output_dir}/dataset.csv written by ingest.
- Builds the Score and/or IndependenceTest the configured algorithm consumes.
- Builds Knowledge from the `knowledge:` config section.
- Runs the search under a SearchMonitor (time budget, event counts).
- Writes {output_dir}/graph.json and {output_dir}/search_result.json.
"""
from __future__ import annotations

import json
from collections import Counter
from pathlib import Path
from typing import Any, Dict, Optional

import numpy as np
import pandas as pd

from .graph import nodes_from_names
from .knowledge import Knowledge
from .search import get_algorithm, make_score, make_test, run_algorithm
from .search.monitor import EventSink, SearchEvent, SearchMonitor, SearchResult
from .search.orientation import knowledge_violations
from .utils.config_loader import search_params
from .utils.graph_io import to_json
from .utils.logging_utils import get_logger

_PASSTHROUGH = (
    "num_starts",
    "depth",
    "use_bes",
    "use_data_order",
    "cpdag",
    "n_jobs",
    "max_iterations",
    "seed",
    "move",
    "max_path_length",
    "possible_dsep",
)


def search_dataframe(
    df: pd.DataFrame,
    search_cfg: Dict[str, Any],
    knowledge: Optional[Knowledge] = None,
    on_event: Optional[EventSink] = None,
    monitor: Optional[SearchMonitor] = None,
) -> SearchResult:
    """Run the configured algorithm on a numeric DataFrame (one column per variable)."""
    names = [str(c) for c in df.columns]
    variables = nodes_from_names(names)
    X = df.to_numpy(dtype=float) if len(names) else np.zeros((len(df), 0))
    spec = get_algorithm(search_cfg.get("algorithm", "boss"))

    score = test = None
    if spec.uses_score:
        sc = dict(search_cfg.get("score") or {})
        score = make_score(sc.pop("type", "sem_bic"), X, variables, **sc)
    if spec.uses_test:
        tc = dict(search_cfg.get("test") or {})
        test = make_test(tc.pop("type", "fisher_z"), X, variables, **tc)

    if knowledge is not None:
        knowledge.validate(names)
    monitor = monitor or SearchMonitor(on_event=on_event, max_seconds=search_cfg.get("max_seconds"))
    params = {k: search_cfg[k] for k in _PASSTHROUGH if k in search_cfg and search_cfg[k] is not None}
    return run_algorithm(spec.algorithm, score=score, test=test, knowledge=knowledge,
                         monitor=monitor, **params)


def run_discover(cfg: Dict, prev: Optional[Dict] = None) -> Dict:
    """Run the discover stage. Returns a simple artifact dict."""
    log = get_logger("cse.discover")
    out_dir = Path(cfg["run"]["output_dir"]).resolve()
    dataset_path = Path((prev or {}).get("dataset_file") or out_dir / "dataset.csv")
    if not dataset_path.exists():
        raise FileNotFoundError(f"Missing {dataset_path}. Run ingest first.")

    df = pd.read_csv(dataset_path)
    params = search_params(cfg)
    knowledge = Knowledge.from_dict(cfg.get("knowledge"), [str(c) for c in df.columns])

    events: Counter = Counter()

    def _count(ev: SearchEvent) -> None:
        events[ev.stage] += 1

    result = search_dataframe(df, params, knowledge, on_event=_count)
    violations = knowledge_violations(result.graph, knowledge)
    if violations:
        log.warning("Output graph breaks %d knowledge relation(s): %s", len(violations), violations)

    graph_path = out_dir / "graph.json"
    graph_path.write_text(json.dumps(to_json(result.graph), indent=2), encoding="utf-8")

    summary = result.summary()
    summary.pop("sepsets", None)
    summary.update(
        knowledge=knowledge.to_dict(),
        knowledge_violations=violations,
        events=dict(events),
    )
    result_path = out_dir / "search_result.json"
    result_path.write_text(json.dumps(summary, indent=2, default=str), encoding="utf-8")

    log.info("Discover (%s) finished with status=%s, %d edges → %s",
             result.algorithm, result.status.value, result.graph.num_edges(), graph_path)
    return {
        "stage": "discover",
        "graph_file": str(graph_path),
        "result_file": str(result_path),
        "algorithm": result.algorithm,
        "status": result.status.value,
        "num_edges": result.graph.num_edges(),
    }
