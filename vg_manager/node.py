"""Match volume group node selectors against the local node."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Mapping, Optional

from .api import NodeSelector, NodeSelectorRequirement, NodeSelectorTerm

HOSTNAME_LABEL = "kubernetes.io/hostname"


@dataclass
class Node:
    name: str
    labels: Dict[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.labels.setdefault(HOSTNAME_LABEL, self.name)


def _match_requirement(req: NodeSelectorRequirement, values: Mapping[str, str]) -> bool:
    present = req.key in values
    actual = values.get(req.key)
    op = req.operator
    if op == "In":
        return present and actual in req.values
    if op == "NotIn":
        return not present or actual not in req.values
    if op == "Exists":
        return present
    if op == "DoesNotExist":
        return not present
    if op in {"Gt", "Lt"}:
        if not present or len(req.values) != 1:
            return False
        try:
            left = int(str(actual))
            right = int(req.values[0])
        except ValueError:
            return False
        return left > right if op == "Gt" else left < right
    raise ValueError(f"unsupported node selector operator: {op}")


def _match_term(term: NodeSelectorTerm, node: Node) -> bool:
    # An empty term selects nothing.
    if not term.match_expressions and not term.match_fields:
        return False
    fields = {"metadata.name": node.name}
    for req in term.match_fields:
        if req.key != "metadata.name":
            return False
        if not _match_requirement(req, fields):
            return False
    return all(_match_requirement(req, node.labels) for req in term.match_expressions)


def matches_node(selector: Optional[NodeSelector], node: Node) -> bool:
    """Return ``True`` when *node* satisfies *selector*.

    A missing selector matches every node; otherwise at least one term must
    match, and every requirement within that term must hold.
    """

    if selector is None:
        return True
    return any(_match_term(term, node) for term in selector.terms)
