"""Tests for projecting discovered resources into the dashboard document."""

from __future__ import annotations

import pytest
import yaml
from fakes import FakeCluster, dashboard, httproute, ingress, service

from homer_operator.core.errors import SecretResolutionError
from homer_operator.core.projector import (
    INGRESS_ICON,
    NAMESPACE_ICON,
    SecretResolver,
    apply_resource,
    group_name_for,
    project,
    route_protocol,
    service_url,
)
from homer_operator.models import ResourceKind
from homer_operator.models.dashboard import Dashboard, ServiceGrouping
from homer_operator.models.document import CRD_SOURCE, ConfigDocument, ItemParam, render_document
from homer_operator.models.resource import DiscoveredResource

ITEM = "item.homer.rajsingh.info/"
SVC = "service.homer.rajsingh.info/"
CLUSTER = "homer.rajsingh.info/cluster"


def _dash(spec: dict | None = None) -> Dashboard:
    return Dashboard.from_dict(dashboard(spec=spec))


def _res(kind: ResourceKind, obj: dict) -> DiscoveredResource:
    return DiscoveredResource.from_dict(kind, obj)


def _ing(*args, **kwargs) -> DiscoveredResource:
    return _res(ResourceKind.INGRESS, ingress(*args, **kwargs))


def _svc(*args, **kwargs) -> DiscoveredResource:
    return _res(ResourceKind.SERVICE, service(*args, **kwargs))


def _rendered(doc: ConfigDocument) -> dict:
    return yaml.safe_load(render_document(doc))


class TestEndToEnd:
    def test_ingress_with_name_annotation(self):
        res = _ing("app", hosts=["app.test.com"], annotations={ITEM + "name": "Test App"})
        out = _rendered(project([res], _dash(), None))

        assert len(out["services"]) == 1
        group = out["services"][0]
        assert group["name"] == "default"
        assert group["logo"] == NAMESPACE_ICON
        assert group["items"] == [{
            "name": "Test App",
            "url": "http://app.test.com",
            "subtitle": "app.test.com",
            "logo": INGRESS_ICON,
        }]

    def test_ingress_with_tls_uses_https(self):
        res = _ing("app", hosts=["app.test.com"], tls_hosts=["app.test.com"],
                   annotations={ITEM + "name": "Test App"})
        out = _rendered(project([res], _dash(), None))
        assert out["services"][0]["items"][0]["url"] == "https://app.test.com"

    def test_tls_entry_without_hosts_covers_all(self):
        res = _ing("app", hosts=["app.test.com"], tls_hosts=[])
        out = _rendered(project([res], _dash(), None))
        assert out["services"][0]["items"][0]["url"] == "https://app.test.com"

    def test_service_urls(self):
        plain = _svc("my-app", ports=[{"port": 8080}])
        secure = _svc("my-app", ports=[{"port": 443}])
        named = _svc("my-app", ports=[{"name": "https", "port": 8443}])
        assert service_url(plain) == "http://my-app.default.svc.cluster.local:8080"
        assert service_url(secure) == "https://my-app.default.svc.cluster.local:443"
        assert service_url(named) == "https://my-app.default.svc.cluster.local:8443"
        assert service_url(_svc("bare")) == "http://bare.default.svc.cluster.local"

    def test_service_item(self):
        res = _svc("my-app", ports=[{"port": 8080}])
        doc = project([res], _dash(), None)
        item = doc.groups[0].items[0]
        assert item.name == "my-app"
        assert item.get(ItemParam.URL) == "http://my-app.default.svc.cluster.local:8080"
        assert item.get(ItemParam.SUBTITLE) == "default/my-app"
        assert item.source == "svc/my-app"


class TestIdempotence:
    def _resources(self):
        return [
            _ing("web", "team-a", hosts=["web.example.com"]),
            _ing("api", "team-a", hosts=["api.example.com", "api2.example.com"]),
            _svc("db", "team-b", ports=[{"port": 5432}]),
        ]

    def test_same_input_same_bytes(self):
        dash = _dash({"homerConfig": {"title": "Home"}})
        first = render_document(project(self._resources(), dash, None))
        second = render_document(project(self._resources(), dash, None))
        assert first == second

    def test_removed_resource_removes_only_its_items(self):
        dash = _dash()
        full = project(self._resources(), dash, None)
        fewer = project(self._resources()[1:], dash, None)

        full_names = {i.name for g in full.groups for i in g.items}
        fewer_names = {i.name for g in fewer.groups for i in g.items}
        assert full_names - fewer_names == {"web"}
        for group in fewer.groups:
            names = [i.name.lower() for i in group.items]
            assert names == sorted(names)

    def test_multi_host_items_are_suffixed(self):
        doc = project(self._resources(), _dash(), None)
        names = [i.name for i in doc.find_group("team-a").items]
        assert names == ["api-api.example.com", "api-api2.example.com", "web"]

    def test_reapplying_a_resource_replaces_its_items(self):
        dash = _dash()
        doc = ConfigDocument()
        apply_resource(doc, _ing("web", hosts=["old.example.com"]), dash)
        apply_resource(doc, _ing("web", hosts=["new.example.com"]), dash)
        items = doc.find_group("default").items
        assert len(items) == 1
        assert items[0].get(ItemParam.URL) == "http://new.example.com"


class TestAnnotations:
    def test_hidden_item_omitted(self):
        res = _ing("secret", hosts=["s.example.com"], annotations={ITEM + "hide": "true"})
        doc = project([res], _dash(), None)
        assert doc.groups == []

    def test_nested_and_keywords(self):
        res = _ing("app", hosts=["a.io"], annotations={
            ITEM + "customheaders/x-team": "core",
            ITEM + "keywords": " a, b ,,c ",
        })
        item = project([res], _dash(), None).groups[0].items[0]
        assert item.nested == {"customheaders": {"x-team": "core"}}
        assert item.get(ItemParam.KEYWORDS) == "a,b,c"

    def test_strict_validation_drops_bad_url(self):
        res = _ing("app", hosts=["a.io"], annotations={ITEM + "url": "not a url"})
        strict = project([res], _dash({"validationLevel": "strict"}), None)
        warn = project([res], _dash({"validationLevel": "warn"}), None)
        assert strict.groups[0].items[0].get(ItemParam.URL) == "http://a.io"
        assert warn.groups[0].items[0].get(ItemParam.URL) == "not a url"

    def test_group_annotations(self):
        res = _ing("app", hosts=["a.io"], annotations={
            SVC + "name": "Apps",
            SVC + "icon": "fas fa-rocket",
        })
        group = project([res], _dash(), None).groups[0]
        assert group.name == "Apps"
        assert group.params["icon"] == "fas fa-rocket"


class TestGrouping:
    def test_label_strategy_with_fallback(self):
        grouping = ServiceGrouping.from_dict({"strategy": "label", "labelKey": "team"})
        assert group_name_for(_ing("a", "ns1", labels={"team": "core"}), grouping) == "core"
        assert group_name_for(_ing("a", "ns1"), grouping) == "ns1"

    def test_custom_rules_by_priority(self):
        grouping = ServiceGrouping.from_dict({
            "strategy": "custom",
            "customRules": [
                {"name": "Low", "condition": {"app": "*"}, "priority": 1},
                {"name": "Monitoring", "condition": {"app": "graf*"}, "priority": 10},
            ],
        })
        assert group_name_for(_ing("a", "ns", labels={"app": "grafana"}), grouping) == "Monitoring"
        assert group_name_for(_ing("a", "ns", labels={"app": "wiki"}), grouping) == "Low"
        assert group_name_for(_ing("a", "ns"), grouping) == "ns"

    def test_explicit_annotation_wins(self):
        grouping = ServiceGrouping.from_dict({"strategy": "label", "labelKey": "team"})
        res = _ing("a", "ns", labels={"team": "core"}, annotations={SVC + "name": "Pinned"})
        assert group_name_for(res, grouping) == "Pinned"

    def test_resource_joins_matching_static_group(self):
        dash = _dash({"homerConfig": {"services": [
            {"name": "Media", "items": [{"name": "Plex", "url": "http://plex"}]},
        ]}})
        doc = project([_ing("jellyfin", "media", hosts=["jf.io"])], dash, None)
        assert [g.name for g in doc.groups] == ["Media"]
        assert [i.name for i in doc.groups[0].items] == ["jellyfin", "Plex"]


class TestMerge:
    def test_discovered_item_merges_into_static_one(self):
        dash = _dash({"homerConfig": {"services": [
            {"name": "monitoring", "items": [
                {"name": "Grafana", "url": "http://old", "logo": "custom.png", "subtitle": "Dashboards"},
            ]},
        ]}})
        res = _ing("grafana", "monitoring", hosts=["grafana.io"], annotations={ITEM + "name": "Grafana"})
        items = project([res], dash, None).find_group("monitoring").items
        assert len(items) == 1
        item = items[0]
        assert item.get(ItemParam.URL) == "http://grafana.io"
        assert item.get(ItemParam.SUBTITLE) == "grafana.io"
        assert item.get(ItemParam.LOGO) == "custom.png"
        assert item.source == CRD_SOURCE


class TestRemoteResources:
    def test_suffix_and_tag(self):
        res = _ing("app", hosts=["a.io"],
                   labels={"cluster-name-suffix": " (east)", "cluster-tagstyle": "is-info"},
                   annotations={CLUSTER: "east"})
        item = project([res], _dash(), None).groups[0].items[0]
        assert item.name == "app (east)"
        assert item.get(ItemParam.TAG) == "east"
        assert item.get(ItemParam.TAGSTYLE) == "is-info"
        assert item.source == "app@east"

    def test_dashboard_filters_do_not_apply_to_remote(self):
        dash = _dash({"domainFilters": ["example.com"]})
        local = _ing("a", hosts=["a.example.com", "a.other.io"])
        remote = _ing("b", hosts=["b.other.io"], annotations={CLUSTER: "east"})
        doc = project([local, remote], dash, None)
        names = sorted(i.name for g in doc.groups for i in g.items)
        assert names == ["a", "b"]
        assert doc.groups[0].find_item("a").get(ItemParam.URL) == "http://a.example.com"

    def test_stamped_filters_win(self):
        res = _ing("b", hosts=["b.one.io", "b.two.io"],
                   annotations={CLUSTER: "east", "homer.rajsingh.info/domain-filters": "two.io"})
        item = project([res], _dash(), None).groups[0].items[0]
        assert item.get(ItemParam.URL) == "http://b.two.io"


class TestHTTPRoute:
    def test_protocol_from_listener_name(self):
        tls = _res(ResourceKind.HTTPROUTE, httproute(
            "r", hostnames=["r.io"], parent_refs=[{"name": "gw", "sectionName": "websecure-https"}]))
        plain = _res(ResourceKind.HTTPROUTE, httproute(
            "r", hostnames=["r.io"], parent_refs=[{"name": "gw", "sectionName": "web"}]))
        assert route_protocol(tls) == "https"
        assert route_protocol(plain) == "http"

    def test_route_items(self):
        res = _res(ResourceKind.HTTPROUTE, httproute("r", hostnames=["r.io"]))
        item = project([res], _dash(), None).groups[0].items[0]
        assert item.get(ItemParam.URL) == "http://r.io"


class TestCaps:
    def test_item_and_group_caps(self):
        dash = _dash({"advanced": {"maxItemsPerService": 1, "maxServicesPerGroup": 1}})
        resources = [
            _ing("b", "ns-b", hosts=["b.io"]),
            _ing("a1", "ns-a", hosts=["a1.io"]),
            _ing("a2", "ns-a", hosts=["a2.io"]),
        ]
        doc = project(resources, dash, None)
        assert [g.name for g in doc.groups] == ["ns-a"]
        assert [i.name for i in doc.groups[0].items] == ["a1"]


class TestSmartCardSecrets:
    def _setup(self, secret_data):
        k8s = FakeCluster()
        if secret_data is not None:
            k8s.secrets[("default", "prom-creds")] = secret_data
        dash = _dash({"secrets": {
            "apiKey": {"name": "prom-creds", "key": "apikey"},
            "token": {"name": "prom-creds", "key": "token"},
        }})
        res = _ing("prom", hosts=["prom.io"], annotations={ITEM + "type": "Prometheus"})
        return k8s, dash, res

    def test_resolves_typed_items(self):
        k8s, dash, res = self._setup({"apikey": b"k3y", "token": b"t0k"})
        item = project([res], dash, SecretResolver(k8s)).groups[0].items[0]
        assert item.get(ItemParam.APIKEY) == "k3y"
        assert item.nested["customHeaders"]["Authorization"] == "Bearer t0k"
        assert k8s.calls.count("secret default/prom-creds") == 1

    def test_untyped_items_untouched(self):
        k8s, dash, _ = self._setup({"apikey": b"k3y", "token": b"t0k"})
        plain = _ing("web", hosts=["web.io"])
        item = project([plain], dash, SecretResolver(k8s)).groups[0].items[0]
        assert item.get(ItemParam.APIKEY) == ""

    @pytest.mark.parametrize("data", [None, {}, {"token": b"t0k"}])
    def test_unresolvable_secret_fails(self, data):
        k8s, dash, res = self._setup(data)
        with pytest.raises(SecretResolutionError):
            project([res], dash, SecretResolver(k8s))

    def test_non_utf8_secret_value_fails(self):
        k8s, dash, res = self._setup({"apikey": b"\xff\xfe", "token": b"t0k"})
        with pytest.raises(SecretResolutionError, match="key apikey is not valid UTF-8"):
            project([res], dash, SecretResolver(k8s))
