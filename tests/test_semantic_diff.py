"""Tests for the managed-object comparison."""

from __future__ import annotations

import copy

from homer_operator.core.semantic_diff import compare, normalize
from homer_operator.models.diff import DiffStatus, ReconcileTarget

DESIRED = {
    "apiVersion": "v1",
    "kind": "ConfigMap",
    "metadata": {
        "name": "dash-homer",
        "namespace": "default",
        "labels": {"managed-by": "homer-operator"},
        "ownerReferences": [{"kind": "Dashboard", "name": "dash", "uid": "u1"}],
    },
    "data": {"config.yml": "title: Home\n"},
}


def _live(**changes) -> dict:
    live = copy.deepcopy(DESIRED)
    live["metadata"].update({
        "resourceVersion": "42",
        "uid": "abc",
        "creationTimestamp": "2026-01-01T00:00:00Z",
        "managedFields": [{"manager": "kubectl"}],
        "annotations": {"kubectl.kubernetes.io/last-applied-configuration": "{}"},
    })
    live["metadata"]["labels"]["team"] = "ops"
    live.update(changes)
    return live


def _compare(observed):
    return compare(ReconcileTarget("ConfigMap", "dash-homer", "default", DESIRED, observed))


class TestCompare:
    def test_missing_live(self):
        diff = _compare(None)
        assert diff.status == DiffStatus.MISSING_LIVE
        assert diff.needs_write

    def test_server_fields_and_foreign_labels_ignored(self):
        diff = _compare(_live())
        assert diff.status == DiffStatus.UNCHANGED
        assert not diff.needs_write

    def test_unowned_keys_ignored(self):
        assert _compare(_live(binaryData={"x": "eA=="})).status == DiffStatus.UNCHANGED

    def test_data_change_detected(self):
        diff = _compare(_live(data={"config.yml": "title: Other\n"}))
        assert diff.status == DiffStatus.MODIFIED
        assert any("config.yml" in d for d in diff.details)

    def test_owned_label_change_detected(self):
        live = _live()
        live["metadata"]["labels"]["managed-by"] = "someone-else"
        assert _compare(live).status == DiffStatus.MODIFIED

    def test_fills_target(self):
        target = ReconcileTarget("ConfigMap", "dash-homer", "default", DESIRED, _live())
        compare(target)
        assert target.diff is not None
        assert target.diff.status == DiffStatus.UNCHANGED


class TestNormalize:
    def test_empty_values_dropped(self):
        assert normalize({"metadata": {"name": "x", "labels": {}}, "data": None, "list": []}) == {
            "metadata": {"name": "x"},
        }


def _deployment(replicas=1, image="b9/homer:v1", env=None, volumes=None, resources=None) -> dict:
    container = {"name": "homer", "image": image, "env": env or [], "resources": resources or {}}
    return {
        "apiVersion": "apps/v1",
        "kind": "Deployment",
        "metadata": {"name": "dash-homer", "namespace": "default"},
        "spec": {
            "replicas": replicas,
            "template": {"spec": {"containers": [container], "volumes": volumes or []}},
        },
    }


def _compare_deployment(desired, observed):
    return compare(ReconcileTarget("Deployment", "dash-homer", "default", desired, observed))


class TestWorkloads:
    ENV = [{"name": "A", "value": "1"}, {"name": "B", "value": "2"}]

    def test_replicas_image_resources_and_env_order_ignored(self):
        desired = _deployment(env=self.ENV)
        observed = _deployment(
            replicas=3, image="b9/homer:v2", env=list(reversed(self.ENV)),
            resources={"limits": {"cpu": "100m"}},
        )
        diff = _compare_deployment(desired, observed)
        assert diff.status == DiffStatus.UNCHANGED, diff.details

    def test_volumes_compared_by_name_and_source(self):
        desired = _deployment(volumes=[{"name": "config", "configMap": {"name": "dash-homer"}}])
        same_source = _deployment(volumes=[{"name": "config", "configMap": {"name": "dash-homer", "defaultMode": 420}}])
        other_source = _deployment(volumes=[{"name": "config", "emptyDir": {}}])
        assert _compare_deployment(desired, same_source).status == DiffStatus.UNCHANGED
        assert _compare_deployment(desired, other_source).status == DiffStatus.MODIFIED

    def test_env_value_change_detected(self):
        changed = [{"name": "A", "value": "1"}, {"name": "B", "value": "3"}]
        diff = _compare_deployment(_deployment(env=self.ENV), _deployment(env=changed))
        assert diff.status == DiffStatus.MODIFIED

    def test_configmap_keeps_replicas_like_fields(self):
        obj = {"kind": "ConfigMap", "spec": {"replicas": 2}}
        assert normalize(obj) == obj
