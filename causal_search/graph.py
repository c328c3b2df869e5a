# FILE: causal_search/graph.py
# ======================================================================================
# Causal Search Engine (CSE)
# Graph model: nodes, endpoint-marked edges, adjacency index, reachability helpers
# --------------------------------------------------------------------------------------
# Endpoint marks
# --------------
# Every edge carries one mark at each end:
#   TAIL   '-'  : out of the node
#   ARROW  '>'  : arrowhead into the node
#   CIRCLE 'o'  : undetermined (PAG output)
# Examples (text form):
#   A --> B   directed       (TAIL at A, ARROW at B)
#   A --- B   undirected     (CPDAG, orientation not identified)
#   A <-> B   bidirected     (latent confounding)
#   A o-> B   partially oriented
#   A o-o B   nondirected
#
# Structure
# ---------
# • Graph keeps an adjacency index {node: {neighbor: edge}} so adjacency and
#   endpoint lookups are O(1); at most one edge per node pair, no self-loops.
# • Paths wraps a graph for reachability queries (directed / semidirected
#   paths, ancestors, acyclicity, possible-d-sep).
#
# License
# -------
# MIT (c) 2025 Causal Search Engine contributors
# ======================================================================================

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Set, Tuple


# --------------------------------------------------------------------------------------
# Nodes, endpoints, edges
# --------------------------------------------------------------------------------------

class NodeType(str, Enum):
    CONTINUOUS = "continuous"
    DISCRETE = "discrete"
    ERROR = "error"
    LATENT = "latent"


@dataclass(frozen=True)
class Node:
    """
    A named variable. Identity (equality, hashing) is the name alone.
    """
    name: str
    node_type: NodeType = field(default=NodeType.CONTINUOUS, compare=False)
    num_categories: Optional[int] = field(default=None, compare=False)

    def __str__(self) -> str:
        return self.name


class Endpoint(Enum):
    TAIL = "-"
    ARROW = ">"
    CIRCLE = "o"


class EdgeProperty(str, Enum):
    DD = "dd"  # definitely direct
    NL = "nl"  # no latent confounder
    PD = "pd"  # possibly direct
    PL = "pl"  # possible latent confounder


_LEFT = {Endpoint.TAIL: "-", Endpoint.ARROW: "<", Endpoint.CIRCLE: "o"}
_RIGHT = {Endpoint.TAIL: "-", Endpoint.ARROW: ">", Endpoint.CIRCLE: "o"}


@dataclass(frozen=True, eq=False)
class Edge:
    """
    Edge between node1 and node2; endpoint1 is the mark at node1, endpoint2 at node2.
    Equality ignores the direction the edge happens to be stored in.
    """
    node1: Node
    node2: Node
    endpoint1: Endpoint
    endpoint2: Endpoint
    properties: FrozenSet[EdgeProperty] = frozenset()

    def reversed(self) -> "Edge":
        return Edge(self.node2, self.node1, self.endpoint2, self.endpoint1, self.properties)

    def other(self, node: Node) -> Node:
        if node == self.node1:
            return self.node2
        if node == self.node2:
            return self.node1
        raise ValueError(f"{node} is not an endpoint of {self}")

    def endpoint_at(self, node: Node) -> Endpoint:
        if node == self.node1:
            return self.endpoint1
        if node == self.node2:
            return self.endpoint2
        raise ValueError(f"{node} is not an endpoint of {self}")

    def is_directed(self) -> bool:
        return {self.endpoint1, self.endpoint2} == {Endpoint.TAIL, Endpoint.ARROW}

    def is_undirected(self) -> bool:
        return self.endpoint1 == Endpoint.TAIL and self.endpoint2 == Endpoint.TAIL

    def is_bidirected(self) -> bool:
        return self.endpoint1 == Endpoint.ARROW and self.endpoint2 == Endpoint.ARROW

    def is_nondirected(self) -> bool:
        return self.endpoint1 == Endpoint.CIRCLE and self.endpoint2 == Endpoint.CIRCLE

    def is_partially_oriented(self) -> bool:
        return {self.endpoint1, self.endpoint2} == {Endpoint.CIRCLE, Endpoint.ARROW}

    def points_towards(self, node: Node) -> bool:
        """True for a directed edge whose arrowhead is at `node`."""
        return self.is_directed() and self.endpoint_at(node) == Endpoint.ARROW

    def with_properties(self, *props: EdgeProperty) -> "Edge":
        return Edge(self.node1, self.node2, self.endpoint1, self.endpoint2, frozenset(props))

    def _key(self) -> Tuple[str, str, Endpoint, Endpoint]:
        if self.node1.name <= self.node2.name:
            return (self.node1.name, self.node2.name, self.endpoint1, self.endpoint2)
        return (self.node2.name, self.node1.name, self.endpoint2, self.endpoint1)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Edge):
            return NotImplemented
        return self._key() == other._key()

    def __hash__(self) -> int:
        return hash(self._key())

    def __str__(self) -> str:
        text = f"{self.node1} {_LEFT[self.endpoint1]}-{_RIGHT[self.endpoint2]} {self.node2}"
        if self.properties:
            text += " " + " ".join(sorted(p.value for p in self.properties))
        return text


def parse_edge_marks(token: str) -> Tuple[Endpoint, Endpoint]:
    """Parse a three-character edge token such as '-->' or 'o-o' into endpoint marks."""
    if len(token) != 3 or token[1] != "-":
        raise ValueError(f"Unrecognized edge token: {token!r}")
    left = {v: k for k, v in _LEFT.items()}
    right = {v: k for k, v in _RIGHT.items()}
    if token[0] not in left or token[2] not in right:
        raise ValueError(f"Unrecognized edge token: {token!r}")
    return left[token[0]], right[token[2]]


Triple = Tuple[Node, Node, Node]


def _triple_key(a: Node, b: Node, c: Node) -> Triple:
    return (a, b, c) if a.name <= c.name else (c, b, a)


# --------------------------------------------------------------------------------------
# Graph
# --------------------------------------------------------------------------------------

class Graph:
    """
    Mutable graph over Nodes with endpoint-marked edges.

    The adjacency index maps each node to {neighbor: edge}; the stored edge is
    shared by both entries. `get_edge(a, b)` always returns the edge oriented so
    that node1 == a.
    """

    def __init__(self, nodes: Optional[Iterable[Node]] = None):
        self._nodes: List[Node] = []
        self._index: Dict[Node, int] = {}
        self._by_name: Dict[str, Node] = {}
        self._adj: Dict[Node, Dict[Node, Edge]] = {}
        self._ambiguous: Set[Triple] = set()
        self._underlines: Set[Triple] = set()
        self.attributes: Dict[str, Any] = {}
        for n in nodes or ():
            self.add_node(n)

    # ---- nodes ----

    def add_node(self, node: Node) -> bool:
        if node in self._index:
            return False
        self._index[node] = len(self._nodes)
        self._nodes.append(node)
        self._by_name[node.name] = node
        self._adj[node] = {}
        return True

    def remove_node(self, node: Node) -> None:
        for other in list(self._adj.get(node, {})):
            self.remove_edge(node, other)
        if node not in self._index:
            return
        self._nodes.remove(node)
        self._index = {n: i for i, n in enumerate(self._nodes)}
        del self._by_name[node.name]
        del self._adj[node]
        self._ambiguous = {t for t in self._ambiguous if node not in t}
        self._underlines = {t for t in self._underlines if node not in t}

    @property
    def nodes(self) -> List[Node]:
        return list(self._nodes)

    @property
    def node_names(self) -> List[str]:
        return [n.name for n in self._nodes]

    def get_node(self, name: str) -> Node:
        try:
            return self._by_name[name]
        except KeyError:
            raise KeyError(f"Unknown node: {name}") from None

    def contains_node(self, node: Node) -> bool:
        return node in self._index

    def num_nodes(self) -> int:
        return len(self._nodes)

    def __len__(self) -> int:
        return len(self._nodes)

    # ---- edges ----

    def add_edge(self, edge: Edge) -> None:
        a, b = edge.node1, edge.node2
        if a == b:
            raise ValueError(f"Self-loops are not allowed: {edge}")
        if a not in self._index or b not in self._index:
            raise ValueError(f"Both endpoints of {edge} must be in the graph.")
        if b in self._adj[a]:
            raise ValueError(f"{a} and {b} are already adjacent: {self._adj[a][b]}")
        self._adj[a][b] = edge
        self._adj[b][a] = edge

    def add_directed_edge(self, a: Node, b: Node) -> None:
        self.add_edge(Edge(a, b, Endpoint.TAIL, Endpoint.ARROW))

    def add_undirected_edge(self, a: Node, b: Node) -> None:
        self.add_edge(Edge(a, b, Endpoint.TAIL, Endpoint.TAIL))

    def add_bidirected_edge(self, a: Node, b: Node) -> None:
        self.add_edge(Edge(a, b, Endpoint.ARROW, Endpoint.ARROW))

    def add_nondirected_edge(self, a: Node, b: Node) -> None:
        self.add_edge(Edge(a, b, Endpoint.CIRCLE, Endpoint.CIRCLE))

    def add_partially_oriented_edge(self, a: Node, b: Node) -> None:
        self.add_edge(Edge(a, b, Endpoint.CIRCLE, Endpoint.ARROW))

    def remove_edge(self, a: Node, b: Node) -> bool:
        if b not in self._adj.get(a, {}):
            return False
        del self._adj[a][b]
        del self._adj[b][a]
        return True

    def remove_edges(self, edges: Iterable[Edge]) -> None:
        for e in list(edges):
            self.remove_edge(e.node1, e.node2)

    def get_edge(self, a: Node, b: Node) -> Optional[Edge]:
        e = self._adj.get(a, {}).get(b)
        if e is None:
            return None
        return e if e.node1 == a else e.reversed()

    @property
    def edges(self) -> List[Edge]:
        """All edges, each once, in node order."""
        out: List[Edge] = []
        for a in self._nodes:
            ia = self._index[a]
            for b, e in self._adj[a].items():
                if self._index[b] > ia:
                    out.append(e)
        return out

    def num_edges(self) -> int:
        return sum(len(v) for v in self._adj.values()) // 2

    def is_adjacent(self, a: Node, b: Node) -> bool:
        return b in self._adj.get(a, {})

    def adjacent_nodes(self, node: Node) -> List[Node]:
        return sorted(self._adj[node], key=self._index.__getitem__)

    def degree(self, node: Node) -> int:
        return len(self._adj[node])

    def get_endpoint(self, a: Node, b: Node) -> Optional[Endpoint]:
        """Mark at `b` on the edge a *-* b (None if not adjacent)."""
        e = self._adj.get(a, {}).get(b)
        return None if e is None else e.endpoint_at(b)

    def set_endpoint(self, a: Node, b: Node, endpoint: Endpoint) -> None:
        """Set the mark at `b` on the existing edge a *-* b."""
        e = self.get_edge(a, b)
        if e is None:
            raise ValueError(f"Cannot set endpoint: {a} and {b} are not adjacent.")
        new = Edge(a, b, e.endpoint1, endpoint, e.properties)
        self._adj[a][b] = new
        self._adj[b][a] = new

    def set_edge_marks(self, a: Node, b: Node, at_a: Endpoint, at_b: Endpoint) -> None:
        e = self.get_edge(a, b)
        if e is None:
            raise ValueError(f"Cannot orient: {a} and {b} are not adjacent.")
        new = Edge(a, b, at_a, at_b, e.properties)
        self._adj[a][b] = new
        self._adj[b][a] = new

    def reorient_all_with(self, endpoint: Endpoint) -> None:
        for e in self.edges:
            self.set_edge_marks(e.node1, e.node2, endpoint, endpoint)

    # ---- local structure ----

    def parents(self, node: Node) -> List[Node]:
        return [m for m in self.adjacent_nodes(node) if self._adj[node][m].points_towards(node)]

    def children(self, node: Node) -> List[Node]:
        return [m for m in self.adjacent_nodes(node) if self._adj[node][m].points_towards(m)]

    def is_parent_of(self, a: Node, b: Node) -> bool:
        e = self._adj.get(a, {}).get(b)
        return e is not None and e.points_towards(b)

    def is_child_of(self, a: Node, b: Node) -> bool:
        return self.is_parent_of(b, a)

    def is_directed_from_to(self, a: Node, b: Node) -> bool:
        return self.is_parent_of(a, b)

    def is_undirected_from_to(self, a: Node, b: Node) -> bool:
        e = self._adj.get(a, {}).get(b)
        return e is not None and e.is_undirected()

    def is_def_collider(self, a: Node, b: Node, c: Node) -> bool:
        return self.get_endpoint(a, b) == Endpoint.ARROW and self.get_endpoint(c, b) == Endpoint.ARROW

    def is_def_noncollider(self, a: Node, b: Node, c: Node) -> bool:
        if self.get_endpoint(a, b) == Endpoint.TAIL or self.get_endpoint(c, b) == Endpoint.TAIL:
            return True
        return self.is_underline_triple(a, b, c)

    def is_unshielded_collider(self, a: Node, b: Node, c: Node) -> bool:
        return self.is_def_collider(a, b, c) and not self.is_adjacent(a, c)

    # ---- triple classification ----

    def add_ambiguous_triple(self, a: Node, b: Node, c: Node) -> None:
        self._ambiguous.add(_triple_key(a, b, c))

    def is_ambiguous_triple(self, a: Node, b: Node, c: Node) -> bool:
        return _triple_key(a, b, c) in self._ambiguous

    def add_underline_triple(self, a: Node, b: Node, c: Node) -> None:
        self._underlines.add(_triple_key(a, b, c))

    def is_underline_triple(self, a: Node, b: Node, c: Node) -> bool:
        return _triple_key(a, b, c) in self._underlines

    @property
    def ambiguous_triples(self) -> Set[Triple]:
        return set(self._ambiguous)

    @property
    def underline_triples(self) -> Set[Triple]:
        return set(self._underlines)

    # ---- whole-graph helpers ----

    def paths(self) -> "Paths":
        return Paths(self)

    def copy(self) -> "Graph":
        g = Graph(self._nodes)
        for e in self.edges:
            g.add_edge(e)
        g._ambiguous = set(self._ambiguous)
        g._underlines = set(self._underlines)
        g.attributes = dict(self.attributes)
        return g

    def subgraph(self, nodes: Iterable[Node]) -> "Graph":
        keep = [n for n in self._nodes if n in set(nodes)]
        g = Graph(keep)
        for e in self.edges:
            if g.contains_node(e.node1) and g.contains_node(e.node2):
                g.add_edge(e)
        return g

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Graph):
            return NotImplemented
        return set(self._nodes) == set(other._nodes) and set(self.edges) == set(other.edges)

    def __str__(self) -> str:
        lines = ["Graph Nodes:", ";".join(self.node_names), "", "Graph Edges:"]
        for i, e in enumerate(self.edges, 1):
            lines.append(f"{i}. {e}")
        return "\n".join(lines)

    def __repr__(self) -> str:
        return f"Graph(nodes={len(self._nodes)}, edges={self.num_edges()})"


# --------------------------------------------------------------------------------------
# Reachability
# --------------------------------------------------------------------------------------

class Paths:
    """Reachability queries over a graph. Holds a reference, not a copy."""

    def __init__(self, graph: Graph):
        self.graph = graph

    def has_directed_path(self, a: Node, b: Node) -> bool:
        """True if a ~> b following directed edges (path length >= 1)."""
        g = self.graph
        seen: Set[Node] = set()
        queue = deque(g.children(a))
        while queue:
            n = queue.popleft()
            if n == b:
                return True
            if n in seen:
                continue
            seen.add(n)
            queue.extend(g.children(n))
        return False

    def has_semidirected_path(self, a: Node, b: Node) -> bool:
        """
        Path a ... b on which every edge u *-* w has no arrowhead at u and no tail at w.
        """
        g = self.graph
        seen = {a}
        queue = deque([a])
        while queue:
            u = queue.popleft()
            for w in g.adjacent_nodes(u):
                e = g.get_edge(u, w)
                if e.endpoint1 == Endpoint.ARROW or e.endpoint2 == Endpoint.TAIL:
                    continue
                if w == b:
                    return True
                if w not in seen:
                    seen.add(w)
                    queue.append(w)
        return False

    def ancestors_of(self, nodes: Iterable[Node]) -> Set[Node]:
        """Nodes with a directed path into any of `nodes` (the nodes themselves included)."""
        g = self.graph
        out: Set[Node] = set()
        stack = list(nodes)
        while stack:
            n = stack.pop()
            if n in out:
                continue
            out.add(n)
            stack.extend(g.parents(n))
        return out

    def descendants_of(self, nodes: Iterable[Node]) -> Set[Node]:
        g = self.graph
        out: Set[Node] = set()
        stack = list(nodes)
        while stack:
            n = stack.pop()
            if n in out:
                continue
            out.add(n)
            stack.extend(g.children(n))
        return out

    def is_ancestor_of(self, a: Node, b: Node) -> bool:
        return a in self.ancestors_of([b])

    def is_descendant_of(self, a: Node, b: Node) -> bool:
        return a in self.descendants_of([b])

    def topological_order(self) -> List[Node]:
        """
        Order of nodes consistent with directed edges (ties broken by node order).
        Raises ValueError if the directed part of the graph has a cycle.
        """
        g = self.graph
        indeg = {n: len(g.parents(n)) for n in g.nodes}
        ready = [n for n in g.nodes if indeg[n] == 0]
        order: List[Node] = []
        while ready:
            n = ready.pop(0)
            order.append(n)
            for c in g.children(n):
                indeg[c] -= 1
                if indeg[c] == 0:
                    ready.append(c)
        if len(order) != g.num_nodes():
            raise ValueError("Graph contains a directed cycle.")
        return order

    def is_acyclic(self) -> bool:
        try:
            self.topological_order()
        except ValueError:
            return False
        return True

    def possible_dsep(self, a: Node, b: Node, max_path_length: int = -1) -> Set[Node]:
        """
        Possible-D-Sep(a, b): nodes reachable from `a` along paths on which every
        interior node is a collider or lies in a triangle with its path neighbors.
        `max_path_length` == -1 means unbounded.
        """
        g = self.graph
        out: Set[Node] = set()
        seen: Set[Tuple[Node, Node]] = set()
        queue: deque = deque()
        for n in g.adjacent_nodes(a):
            out.add(n)
            seen.add((a, n))
            queue.append((a, n, 1))
        while queue:
            prev, cur, length = queue.popleft()
            if max_path_length != -1 and length >= max_path_length:
                continue
            for nxt in g.adjacent_nodes(cur):
                if nxt == prev or (cur, nxt) in seen:
                    continue
                if g.is_def_collider(prev, cur, nxt) or g.is_adjacent(prev, nxt):
                    seen.add((cur, nxt))
                    out.add(nxt)
                    queue.append((cur, nxt, length + 1))
        out.discard(a)
        out.discard(b)
        return out


def nodes_from_names(names: Iterable[str]) -> List[Node]:
    return [Node(str(n)) for n in names]


__all__ = [
    "NodeType",
    "Node",
    "Endpoint",
    "EdgeProperty",
    "Edge",
    "Graph",
    "Paths",
    "parse_edge_marks",
    "nodes_from_names",
]
