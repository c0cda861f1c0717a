"""Tests for label selector and domain filter matching."""

from __future__ import annotations

import pytest

from homer_operator.core.errors import SelectorError
from homer_operator.core.selectors import (
    matches_any_domain,
    matches_domain,
    selector_matches,
    validate_selector,
)
from homer_operator.models.dashboard import LabelSelector


def _sel(d: dict) -> LabelSelector:
    return LabelSelector.from_dict(d)


class TestSelectorMatches:
    def test_empty_selector_matches_everything(self):
        assert selector_matches(_sel({}), {"app": "x"})
        assert selector_matches(_sel({}), {})

    def test_match_labels(self):
        sel = _sel({"matchLabels": {"app": "web"}})
        assert selector_matches(sel, {"app": "web", "tier": "fe"})
        assert not selector_matches(sel, {"app": "db"})
        assert not selector_matches(sel, None)

    def test_in_and_not_in(self):
        sel = _sel({"matchExpressions": [{"key": "env", "operator": "In", "values": ["prod", "stage"]}]})
        assert selector_matches(sel, {"env": "prod"})
        assert not selector_matches(sel, {"env": "dev"})
        assert not selector_matches(sel, {})

        sel = _sel({"matchExpressions": [{"key": "env", "operator": "NotIn", "values": ["dev"]}]})
        assert selector_matches(sel, {"env": "prod"})
        assert selector_matches(sel, {})
        assert not selector_matches(sel, {"env": "dev"})

    def test_exists_and_does_not_exist(self):
        exists = _sel({"matchExpressions": [{"key": "public", "operator": "Exists"}]})
        absent = _sel({"matchExpressions": [{"key": "public", "operator": "DoesNotExist"}]})
        assert selector_matches(exists, {"public": ""})
        assert not selector_matches(exists, {})
        assert selector_matches(absent, {})
        assert not selector_matches(absent, {"public": "yes"})


class TestValidateSelector:
    @pytest.mark.parametrize("expr", [
        {"key": "a", "operator": "Matches", "values": ["x"]},
        {"key": "", "operator": "Exists"},
        {"key": "a", "operator": "In", "values": []},
        {"key": "a", "operator": "Exists", "values": ["x"]},
    ])
    def test_malformed_expressions_rejected(self, expr):
        with pytest.raises(SelectorError):
            validate_selector(_sel({"matchExpressions": [expr]}))

    def test_selector_error_is_not_retryable(self):
        assert SelectorError.retryable is False


class TestDomainMatching:
    def test_exact_and_subdomain(self):
        assert matches_domain("example.com", ["example.com"])
        assert matches_domain("app.example.com", ["example.com"])
        assert matches_domain("a.b.example.com", ["example.com"])

    def test_suffix_without_dot_does_not_match(self):
        assert not matches_domain("notexample.com", ["example.com"])
        assert not matches_domain("example.com.evil.io", ["example.com"])

    def test_empty_filters_match_all(self):
        assert matches_domain("anything.io", [])
        assert matches_domain("anything.io", None)

    def test_any_host(self):
        assert matches_any_domain(["a.other.io", "b.example.com"], ["example.com"])
        assert not matches_any_domain(["a.other.io"], ["example.com"])
        assert not matches_any_domain([], ["example.com"])
