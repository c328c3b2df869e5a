# FILE: causal_search/report.py
# -------------------------------------------------------------------------------------------------
# Stage 3 (Report): graph exports and a human-readable summary
#
# Responsibilities
# ----------------
# 1) Load the searched graph ({output_dir}/graph.json) and its search summary
#    ({output_dir}/search_result.json) produced by "discover".
# 2) Write the graph in every configured format (report.formats):
#    - Text edge list ..................... outputs/reports/graph.txt
#    - Graphviz DOT ....................... outputs/reports/graph.dot
#    - JSON ............................... outputs/reports/graph.json
#    - Endpoint matrix (CSV) .............. outputs/reports/graph_matrix.csv
#    - Markdown report .................... outputs/reports/report.md
# 3) Write outputs/report_summary.json (edge-type counts, file hashes, search status).
#
# Expected Config (subset)
# ------------------------
# cfg["run"]["output_dir"] : str
# cfg["report"]["formats"] : list[str] (txt | dot | json | matrix | md)
# -------------------------------------------------------------------------------------------------

from __future__ import annotations

import hashlib
import json
from collections import Counter
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from .graph import Edge, Graph
from .utils.graph_io import from_json, to_dot, to_endpoint_matrix, to_json, to_text
from .utils.logging_utils import get_logger

REPORT_FORMATS = ("txt", "dot", "json", "matrix", "md")

_FILE_NAMES = {
    "txt": "graph.txt",
    "dot": "graph.dot",
    "json": "graph.json",
    "matrix": "graph_matrix.csv",
    "md": "report.md",
}


def _utc_iso() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _write_text(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")


def _write_json(path: Path, obj: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(obj, indent=2, ensure_ascii=False, default=str), encoding="utf-8")


def _read_json(path: Path) -> Any:
    return json.loads(path.read_text(encoding="utf-8"))


def _sha256_file(path: Path) -> str:
    h = hashlib.sha256()
    with path.open("rb") as f:
        for chunk in iter(lambda: f.read(1024 * 1024), b""):
            h.update(chunk)
    return "sha256:" + h.hexdigest()


def edge_kind(e: Edge) -> str:
    if e.is_directed():
        return "directed"
    if e.is_undirected():
        return "undirected"
    if e.is_bidirected():
        return "bidirected"
    if e.is_nondirected():
        return "nondirected"
    if e.is_partially_oriented():
        return "partially_oriented"
    return "other"


def edge_counts(graph: Graph) -> Dict[str, int]:
    counts = Counter(edge_kind(e) for e in graph.edges)
    return dict(sorted(counts.items()))


def _md_lines(graph: Graph, search: Dict[str, Any], counts: Dict[str, int]) -> List[str]:
    lines: List[str] = []
    lines.append(f"# Causal Search Report — {search.get('algorithm', 'NA')}")
    lines.append("")
    lines.append("## Search")
    lines.append(f"- Status: {search.get('status', 'NA')}")
    lines.append(f"- Score: {search.get('score', 'NA')}")
    lines.append(f"- Elapsed (s): {search.get('elapsed_sec', 'NA')}")
    order = search.get("order") or []
    lines.append(f"- Order: {' < '.join(order) if order else 'NA'}")
    lines.append("")
    lines.append("## Graph")
    lines.append(f"- Nodes: {graph.num_nodes()}")
    lines.append(f"- Edges: {graph.num_edges()}")
    for kind, n in counts.items():
        lines.append(f"  - {kind}: {n}")
    lines.append("")
    lines.append("| # | Edge |")
    lines.append("|---|------|")
    for i, e in enumerate(graph.edges, 1):
        lines.append(f"| {i} | `{e}` |")
    lines.append("")
    violations = search.get("knowledge_violations") or []
    lines.append("## Knowledge")
    if violations:
        for v in violations:
            lines.append(f"- ⚠ {v}")
    else:
        lines.append("- All knowledge relations respected.")
    lines.append("")
    return lines


def run_report(cfg: Dict[str, Any], prev: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """
    Report stage entrypoint.

    Returns a dict summary of produced artifacts.
    """
    log = get_logger("cse.report")
    out_dir = Path(cfg["run"]["output_dir"]).resolve()
    graph_path = Path((prev or {}).get("graph_file") or out_dir / "graph.json")
    if not graph_path.exists():
        raise FileNotFoundError(f"Missing {graph_path}. Run discover first.")
    result_path = out_dir / "search_result.json"
    search = _read_json(result_path) if result_path.exists() else {}

    graph = from_json(_read_json(graph_path))
    formats = [f for f in (cfg.get("report") or {}).get("formats", REPORT_FORMATS)]
    unknown = sorted(set(formats) - set(REPORT_FORMATS))
    if unknown:
        log.warning("Ignoring unknown report formats: %s", unknown)

    reports_dir = out_dir / "reports"
    counts = edge_counts(graph)
    files: Dict[str, str] = {}
    for fmt in REPORT_FORMATS:
        if fmt not in formats:
            continue
        path = reports_dir / _FILE_NAMES[fmt]
        if fmt == "txt":
            _write_text(path, to_text(graph))
        elif fmt == "dot":
            _write_text(path, to_dot(graph))
        elif fmt == "json":
            _write_json(path, to_json(graph))
        elif fmt == "matrix":
            path.parent.mkdir(parents=True, exist_ok=True)
            to_endpoint_matrix(graph).to_csv(path)
        else:
            _write_text(path, "\n".join(_md_lines(graph, search, counts)))
        files[fmt] = str(path)

    summary = {
        "stage": "report",
        "generated_at": _utc_iso(),
        "algorithm": search.get("algorithm"),
        "status": search.get("status"),
        "score": search.get("score"),
        "num_nodes": graph.num_nodes(),
        "num_edges": graph.num_edges(),
        "edge_counts": counts,
        "reports_dir": str(reports_dir),
        "files": files,
        "files_hashes": {Path(p).name: _sha256_file(Path(p)) for p in files.values()},
    }
    _write_json(out_dir / "report_summary.json", summary)
    log.info("Report complete: %d file(s) → %s", len(files), reports_dir)
    return summary
