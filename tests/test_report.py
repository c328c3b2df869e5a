from __future__ import annotations

import json
from pathlib import Path

import pytest

from causal_search.discover import run_discover
from causal_search.ingest import run_ingest
from causal_search.report import run_report
from causal_search.utils.graph_io import read_graph


def test_report_outputs(tmp_path: Path, cfg):
    cfg["run"]["output_dir"] = str((tmp_path / "outputs").as_posix())
    run_ingest(cfg)
    run_discover(cfg)
    art = run_report(cfg)
    reports_dir = Path(art["reports_dir"])
    summary = Path(tmp_path / "outputs" / "report_summary.json")
    # Existence
    assert reports_dir.exists()
    assert summary.exists()
    for name in ("graph.txt", "graph.dot", "graph.json", "graph_matrix.csv", "report.md"):
        assert (reports_dir / name).exists(), name
    # Structure checks
    s = json.loads(summary.read_text())
    assert s["algorithm"] == "boss"
    assert s["num_edges"] == 2
    assert s["edge_counts"] == {"directed": 2}
    assert set(s["files_hashes"]) == {"graph.txt", "graph.dot", "graph.json", "graph_matrix.csv", "report.md"}
    assert all(h.startswith("sha256:") for h in s["files_hashes"].values())
    g = read_graph(reports_dir / "graph_matrix.csv")
    z = g.get_node("Z")
    assert {p.name for p in g.parents(z)} == {"X", "Y"}
    md = (reports_dir / "report.md").read_text(encoding="utf-8")
    assert "All knowledge relations respected." in md


def test_report_formats_subset(tmp_path: Path, cfg):
    cfg["run"]["output_dir"] = str((tmp_path / "outputs").as_posix())
    cfg["report"] = {"formats": ["txt", "bogus"]}
    run_ingest(cfg)
    run_discover(cfg)
    art = run_report(cfg)
    assert list(art["files"]) == ["txt"]


def test_report_needs_graph(tmp_path: Path, cfg):
    cfg["run"]["output_dir"] = str((tmp_path / "empty").as_posix())
    with pytest.raises(FileNotFoundError):
        run_report(cfg)
