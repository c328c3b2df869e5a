from __future__ import annotations

import pytest

from causal_search.errors import ConfigurationError, KnowledgeConflictError
from causal_search.graph import Endpoint, Graph, nodes_from_names
from causal_search.knowledge import Knowledge
from causal_search.search.orientation import knowledge_violations, orient_background_knowledge


def test_forbidden_and_required_are_directional():
    k = Knowledge(["A", "B"])
    k.set_forbidden("A", "B")
    k.set_required("B", "A")
    assert k.is_forbidden("A", "B")
    assert not k.is_forbidden("B", "A")
    assert k.is_required("B", "A")
    assert not k.no_edge_required("A", "B")
    k.remove_required("B", "A")
    assert k.no_edge_required("A", "B")


def test_wildcards_match_prefixes():
    k = Knowledge(["X1", "X2", "Y"])
    k.set_forbidden("X*", "Y")
    assert k.is_forbidden("X1", "Y")
    assert k.is_forbidden("X2", "Y")
    assert not k.is_forbidden("Y", "X1")
    assert "X*" not in k.variables


def test_tiers():
    k = Knowledge()
    k.set_tier(0, ["A"])
    k.set_tier(1, ["B", "C"])
    k.set_tier(2, ["D"])
    assert k.num_tiers() == 3
    assert k.tier_of("C") == 1
    assert k.is_forbidden("B", "A")
    assert not k.is_forbidden("A", "B")
    assert not k.is_forbidden("B", "C")
    assert not k.is_forbidden("A", "D")

    k.set_tier_forbidden_within(1)
    assert k.is_forbidden("B", "C")
    k.set_only_can_cause_next_tier(0)
    assert k.is_forbidden("A", "D")
    assert not k.is_forbidden("A", "B")


def test_moving_a_variable_between_tiers():
    k = Knowledge()
    k.add_to_tier(0, "A")
    k.add_to_tier(1, "A")
    assert k.tier(0) == []
    assert k.tier_of("A") == 1
    with pytest.raises(ConfigurationError):
        k.add_to_tier(-1, "B")


def test_must_precede():
    k = Knowledge(["A", "B", "C"])
    k.set_required("A", "B")
    k.set_forbidden("C", "A")
    assert k.must_precede("A", "B")
    assert k.must_precede("A", "C")
    assert not k.must_precede("C", "A")
    # forbidden both ways pins no order
    k.set_forbidden("B", "C")
    k.set_forbidden("C", "B")
    assert not k.must_precede("B", "C")
    assert not k.must_precede("C", "B")


def test_validate_conflicts():
    k = Knowledge(["A", "B"])
    k.set_required("A", "B")
    k.set_forbidden("A", "B")
    with pytest.raises(KnowledgeConflictError):
        k.validate()

    k2 = Knowledge(["A", "B"])
    k2.set_required("A", "B")
    k2.set_required("B", "A")
    with pytest.raises(KnowledgeConflictError):
        k2.validate()

    k3 = Knowledge()
    k3.set_required("A", "Q")
    with pytest.raises(ConfigurationError):
        k3.validate(["A", "B"])


def test_from_dict_and_back():
    spec = {
        "forbidden": [["A", "B"]],
        "required": [["C", "B"]],
        "tiers": [["A"], ["B", "C"]],
        "forbidden_within_tiers": [],
        "only_next_tier": [0],
    }
    k = Knowledge.from_dict(spec, ["A", "B", "C"])
    assert k.is_forbidden("A", "B")
    assert k.is_required("C", "B")
    assert k.tier_of("C") == 1
    assert k.to_dict() == spec

    with pytest.raises(ConfigurationError):
        Knowledge.from_dict({"forbidden": [["A"]]})


def test_empty_knowledge():
    assert Knowledge(["A"]).is_empty()
    assert Knowledge.from_dict(None).is_empty()


def test_orient_background_knowledge():
    g = Graph(nodes_from_names(["A", "B", "C", "D"]))
    a, b, c, d = g.nodes
    g.add_undirected_edge(a, b)
    g.add_directed_edge(b, c)
    g.add_undirected_edge(c, d)
    k = Knowledge(g.node_names)
    k.set_forbidden("A", "B")
    k.set_required("C", "B")
    k.set_forbidden("C", "D")
    k.set_forbidden("D", "C")
    orient_background_knowledge(g, k)

    assert g.is_parent_of(b, a)
    assert g.is_parent_of(c, b)
    assert g.get_edge(c, d).is_bidirected()
    assert not k.is_violated_by(g)
    assert knowledge_violations(g, k) == []


def test_violations_are_reported():
    g = Graph(nodes_from_names(["A", "B", "C"]))
    a, b, c = g.nodes
    g.add_directed_edge(a, b)
    k = Knowledge(g.node_names)
    k.set_forbidden("A", "B")
    k.set_required("B", "C")
    assert k.is_violated_by(g)
    found = knowledge_violations(g, k)
    assert "forbidden A --> B present" in found
    assert "required B --> C missing" in found
    assert g.get_endpoint(a, b) == Endpoint.ARROW
