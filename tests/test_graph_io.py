from __future__ import annotations

import json
from pathlib import Path

import pandas as pd
import pytest

from causal_search.graph import Edge, EdgeProperty, Endpoint, Graph, nodes_from_names
from causal_search.utils.graph_io import (
    from_endpoint_matrix,
    from_json,
    from_text,
    read_graph,
    to_dot,
    to_endpoint_matrix,
    to_json,
    to_text,
    write_graph,
)


@pytest.fixture()
def pag() -> Graph:
    g = Graph(nodes_from_names(["A", "B", "C", "D"]))
    a, b, c, d = g.nodes
    g.add_directed_edge(a, b)
    g.add_edge(Edge(c, b, Endpoint.CIRCLE, Endpoint.ARROW))
    g.add_bidirected_edge(c, d)
    g.add_edge(Edge(a, d, Endpoint.CIRCLE, Endpoint.CIRCLE, frozenset({EdgeProperty.PL})))
    g.attributes["score"] = -12.5
    return g


def test_text_layout(pag):
    text = to_text(pag)
    lines = text.splitlines()
    assert lines[0] == "Graph Nodes:"
    assert lines[1] == "A;B;C;D"
    assert "Graph Edges:" in lines
    assert any(line.endswith("A --> B") for line in lines)
    assert any(line.endswith("C o-> B") for line in lines)
    assert from_text(text) == pag
    assert any(line.endswith("A o-o D pl") for line in lines)
    back = from_text(text)
    assert back.get_edge(back.get_node("A"), back.get_node("D")).properties == frozenset({EdgeProperty.PL})


def test_text_without_header_is_rejected():
    with pytest.raises(ValueError):
        from_text("1. A --> B\n")


def test_json_keeps_marks_properties_and_attributes(pag):
    obj = json.loads(json.dumps(to_json(pag)))
    back = from_json(obj)
    assert back == pag
    assert back.attributes["score"] == -12.5
    a, d = back.get_node("A"), back.get_node("D")
    assert back.get_edge(a, d).properties == frozenset({EdgeProperty.PL})


def test_dot_marks(pag):
    dot = to_dot(pag)
    assert dot.startswith("digraph causal_graph {")
    assert '"A" -> "B" [dir=both, arrowtail=none, arrowhead=normal];' in dot
    assert "arrowtail=normal, arrowhead=normal" in dot
    assert "odot" in dot


def test_endpoint_matrix_codes(pag):
    m = to_endpoint_matrix(pag)
    assert list(m.columns) == ["A", "B", "C", "D"]
    assert m.loc["A", "B"] == 2
    assert m.loc["B", "A"] == 3
    assert m.loc["C", "B"] == 2
    assert m.loc["B", "C"] == 1
    assert m.loc["C", "D"] == 2 and m.loc["D", "C"] == 2
    assert m.loc["A", "C"] == 0
    assert from_endpoint_matrix(m) == pag


def test_endpoint_matrix_must_be_symmetric_in_adjacency():
    df = pd.DataFrame([[0, 2], [0, 0]], index=["A", "B"], columns=["A", "B"])
    with pytest.raises(ValueError):
        from_endpoint_matrix(df)
    df = pd.DataFrame([[0, 2], [3, 0]], index=["A", "X"], columns=["A", "B"])
    with pytest.raises(ValueError):
        from_endpoint_matrix(df)


@pytest.mark.parametrize("suffix", [".txt", ".json", ".csv"])
def test_files_by_suffix(tmp_path: Path, pag, suffix):
    p = write_graph(pag, tmp_path / "out" / f"graph{suffix}")
    assert p.exists()
    assert read_graph(p) == pag


def test_dot_is_write_only(tmp_path: Path, pag):
    p = write_graph(pag, tmp_path / "graph.dot")
    with pytest.raises(ValueError):
        read_graph(p)
    with pytest.raises(ValueError):
        write_graph(pag, tmp_path / "graph.xyz")
