"""Label selector and domain filter matching."""

from __future__ import annotations

from homer_operator.core.errors import SelectorError
from homer_operator.models.dashboard import LabelSelector, LabelSelectorRequirement

_OPERATORS = ("In", "NotIn", "Exists", "DoesNotExist")


def validate_selector(selector: LabelSelector) -> None:
    for req in selector.match_expressions:
        if not req.key:
            raise SelectorError("matchExpressions entry is missing a key")
        if req.operator not in _OPERATORS:
            raise SelectorError(f"{req.key}: unsupported operator {req.operator!r}")
        if req.operator in ("In", "NotIn") and not req.values:
            raise SelectorError(f"{req.key}: operator {req.operator} requires values")
        if req.operator in ("Exists", "DoesNotExist") and req.values:
            raise SelectorError(f"{req.key}: operator {req.operator} takes no values")


def _requirement_matches(req: LabelSelectorRequirement, labels: dict[str, str]) -> bool:
    if req.operator == "In":
        return req.key in labels and labels[req.key] in req.values
    if req.operator == "NotIn":
        return req.key not in labels or labels[req.key] not in req.values
    if req.operator == "Exists":
        return req.key in labels
    return req.key not in labels


def selector_matches(selector: LabelSelector, labels: dict[str, str] | None) -> bool:
    """Evaluate a Kubernetes label selector. An empty selector matches everything."""
    validate_selector(selector)
    labels = labels or {}
    for key, value in selector.match_labels.items():
        if labels.get(key) != value:
            return False
    return all(_requirement_matches(r, labels) for r in selector.match_expressions)


def matches_domain(host: str, filters: list[str] | None) -> bool:
    """True if ``host`` equals a filter or is a subdomain of one."""
    if not filters:
        return True
    for f in filters:
        if host == f or host.endswith("." + f):
            return True
    return False


def matches_any_domain(hosts: list[str], filters: list[str] | None) -> bool:
    if not filters:
        return True
    return any(matches_domain(h, filters) for h in hosts)
