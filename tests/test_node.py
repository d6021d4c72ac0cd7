import pytest

from vg_manager.api import NodeSelector, NodeSelectorRequirement, NodeSelectorTerm
from vg_manager.node import Node, matches_node

NODE = Node("worker-1", {"role": "storage", "disks": "4"})


def _selector(*terms) -> NodeSelector:
    return NodeSelector(terms=tuple(terms))


def _term(*expressions, fields=()) -> NodeSelectorTerm:
    return NodeSelectorTerm(match_expressions=tuple(expressions), match_fields=tuple(fields))


def _req(key, operator, *values) -> NodeSelectorRequirement:
    return NodeSelectorRequirement(key, operator, tuple(values))


def test_missing_selector_matches_every_node() -> None:
    assert matches_node(None, NODE)


def test_hostname_label_is_implied() -> None:
    assert NODE.labels["kubernetes.io/hostname"] == "worker-1"
    assert matches_node(_selector(_term(_req("kubernetes.io/hostname", "In", "worker-1"))), NODE)


@pytest.mark.parametrize(
    "requirement, expected",
    [
        (_req("role", "In", "storage", "db"), True),
        (_req("role", "NotIn", "storage"), False),
        (_req("zone", "NotIn", "a"), True),
        (_req("role", "Exists"), True),
        (_req("zone", "DoesNotExist"), True),
        (_req("disks", "Gt", "3"), True),
        (_req("disks", "Lt", "3"), False),
        (_req("role", "Gt", "3"), False),
    ],
)
def test_operators(requirement, expected) -> None:
    assert matches_node(_selector(_term(requirement)), NODE) is expected


def test_terms_are_ored_and_requirements_anded() -> None:
    failing = _term(_req("role", "In", "storage"), _req("zone", "Exists"))
    passing = _term(_req("role", "In", "storage"), _req("disks", "Exists"))

    assert not matches_node(_selector(failing), NODE)
    assert matches_node(_selector(failing, passing), NODE)


def test_empty_term_matches_nothing() -> None:
    assert not matches_node(_selector(_term()), NODE)


def test_match_fields_on_node_name() -> None:
    assert matches_node(_selector(_term(fields=[_req("metadata.name", "In", "worker-1")])), NODE)
    assert not matches_node(_selector(_term(fields=[_req("metadata.uid", "In", "worker-1")])), NODE)


def test_unknown_operator_raises() -> None:
    with pytest.raises(ValueError):
        matches_node(_selector(_term(_req("role", "Like", "s"))), NODE)
