"""
Graph serialization

- to_text / from_text        : "Graph Nodes: / Graph Edges:" edge list
- to_json / from_json        : plain dict (nodes, edges with endpoint marks, attributes)
- to_dot                     : Graphviz DOT with arrowhead/arrowtail marks
- to_endpoint_matrix / from_endpoint_matrix :
      pandas DataFrame, M[a, b] = mark at b on edge a *-* b
      (0 none, 1 circle, 2 arrow, 3 tail)
- write_graph / read_graph   : by format name or file suffix

Only the public Graph query surface is used here.
"""
from __future__ import annotations

import json
import re
from pathlib import Path
from typing import Any, Dict, Union

import numpy as np
import pandas as pd

from ..graph import Edge, EdgeProperty, Endpoint, Graph, Node, NodeType, parse_edge_marks

MATRIX_CODES = {Endpoint.CIRCLE: 1, Endpoint.ARROW: 2, Endpoint.TAIL: 3}
_CODE_TO_MARK = {v: k for k, v in MATRIX_CODES.items()}

FORMATS = ("txt", "json", "dot", "matrix")
_SUFFIX = {".txt": "txt", ".json": "json", ".dot": "dot", ".gv": "dot", ".csv": "matrix"}

_EDGE_LINE = re.compile(r"^\s*\d+\.\s+(\S+)\s+(\S{3})\s+(\S+)(?:\s+(.*))?$")


# ---------------------------------------------------------------------------
# Text
# ---------------------------------------------------------------------------

def to_text(graph: Graph) -> str:
    return str(graph) + "\n"


def from_text(text: str) -> Graph:
    lines = [ln.rstrip() for ln in text.splitlines()]
    try:
        i = next(k for k, ln in enumerate(lines) if ln.strip() == "Graph Nodes:")
    except StopIteration:
        raise ValueError("Missing 'Graph Nodes:' section.") from None
    names = [n for n in lines[i + 1].split(";") if n] if i + 1 < len(lines) else []
    graph = Graph([Node(n) for n in names])
    for ln in lines[i + 2:]:
        m = _EDGE_LINE.match(ln)
        if not m:
            continue
        a, token, b, props = m.groups()
        e1, e2 = parse_edge_marks(token)
        properties = frozenset(EdgeProperty(p) for p in (props or "").split())
        graph.add_edge(Edge(graph.get_node(a), graph.get_node(b), e1, e2, properties))
    return graph


# ---------------------------------------------------------------------------
# JSON
# ---------------------------------------------------------------------------

def _jsonable(value: Any) -> Any:
    if isinstance(value, (np.floating, np.integer)):
        return value.item()
    return value


def to_json(graph: Graph) -> Dict[str, Any]:
    return {
        "nodes": [{"name": n.name, "type": n.node_type.value} for n in graph.nodes],
        "edges": [
            {
                "node1": e.node1.name,
                "node2": e.node2.name,
                "endpoint1": e.endpoint1.name,
                "endpoint2": e.endpoint2.name,
                "text": str(e),
                "properties": sorted(p.value for p in e.properties),
            }
            for e in graph.edges
        ],
        "attributes": {k: _jsonable(v) for k, v in graph.attributes.items()},
    }


def from_json(obj: Dict[str, Any]) -> Graph:
    nodes = [Node(d["name"], NodeType(d.get("type", "continuous"))) for d in obj.get("nodes", [])]
    graph = Graph(nodes)
    for d in obj.get("edges", []):
        graph.add_edge(Edge(
            graph.get_node(d["node1"]),
            graph.get_node(d["node2"]),
            Endpoint[d["endpoint1"]],
            Endpoint[d["endpoint2"]],
            frozenset(EdgeProperty(p) for p in d.get("properties", [])),
        ))
    graph.attributes.update(obj.get("attributes") or {})
    return graph


# ---------------------------------------------------------------------------
# DOT
# ---------------------------------------------------------------------------

_DOT_MARK = {Endpoint.TAIL: "none", Endpoint.ARROW: "normal", Endpoint.CIRCLE: "odot"}


def to_dot(graph: Graph, name: str = "causal_graph") -> str:
    lines = [f"digraph {name} {{", "  node [shape=ellipse];"]
    for n in graph.nodes:
        lines.append(f'  "{n.name}";')
    for e in graph.edges:
        lines.append(
            f'  "{e.node1.name}" -> "{e.node2.name}" '
            f'[dir=both, arrowtail={_DOT_MARK[e.endpoint1]}, arrowhead={_DOT_MARK[e.endpoint2]}];'
        )
    lines.append("}")
    return "\n".join(lines) + "\n"


# ---------------------------------------------------------------------------
# Endpoint matrix
# ---------------------------------------------------------------------------

def to_endpoint_matrix(graph: Graph) -> pd.DataFrame:
    names = graph.node_names
    idx = {n: i for i, n in enumerate(names)}
    m = np.zeros((len(names), len(names)), dtype=int)
    for e in graph.edges:
        a, b = idx[e.node1.name], idx[e.node2.name]
        m[a, b] = MATRIX_CODES[e.endpoint2]
        m[b, a] = MATRIX_CODES[e.endpoint1]
    return pd.DataFrame(m, index=names, columns=names)


def from_endpoint_matrix(df: pd.DataFrame) -> Graph:
    names = [str(c) for c in df.columns]
    if [str(i) for i in df.index] != names:
        raise ValueError("Endpoint matrix must have identical row and column labels.")
    m = df.to_numpy(dtype=int)
    graph = Graph([Node(n) for n in names])
    for i in range(len(names)):
        for j in range(i + 1, len(names)):
            if m[i, j] == 0 and m[j, i] == 0:
                continue
            if m[i, j] == 0 or m[j, i] == 0:
                raise ValueError(f"Asymmetric adjacency between {names[i]} and {names[j]}.")
            graph.add_edge(Edge(graph.get_node(names[i]), graph.get_node(names[j]),
                                _CODE_TO_MARK[m[j, i]], _CODE_TO_MARK[m[i, j]]))
    return graph


# ---------------------------------------------------------------------------
# Files
# ---------------------------------------------------------------------------

def _format_for(path: Path, fmt: str | None) -> str:
    fmt = (fmt or _SUFFIX.get(path.suffix.lower(), "")).lower()
    if fmt not in FORMATS:
        raise ValueError(f"Unknown graph format {fmt!r} for {path}; expected one of {FORMATS}")
    return fmt


def write_graph(graph: Graph, path: Union[str, Path], fmt: str | None = None) -> Path:
    p = Path(path)
    fmt = _format_for(p, fmt)
    p.parent.mkdir(parents=True, exist_ok=True)
    if fmt == "txt":
        p.write_text(to_text(graph), encoding="utf-8")
    elif fmt == "json":
        p.write_text(json.dumps(to_json(graph), indent=2), encoding="utf-8")
    elif fmt == "dot":
        p.write_text(to_dot(graph), encoding="utf-8")
    else:
        to_endpoint_matrix(graph).to_csv(p)
    return p


def read_graph(path: Union[str, Path], fmt: str | None = None) -> Graph:
    p = Path(path)
    fmt = _format_for(p, fmt)
    if fmt == "txt":
        return from_text(p.read_text(encoding="utf-8"))
    if fmt == "json":
        return from_json(json.loads(p.read_text(encoding="utf-8")))
    if fmt == "matrix":
        return from_endpoint_matrix(pd.read_csv(p, index_col=0))
    raise ValueError("DOT graphs are write-only.")


__all__ = [
    "MATRIX_CODES",
    "FORMATS",
    "to_text",
    "from_text",
    "to_json",
    "from_json",
    "to_dot",
    "to_endpoint_matrix",
    "from_endpoint_matrix",
    "write_graph",
    "read_graph",
]
