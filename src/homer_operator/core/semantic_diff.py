"""Compare desired managed objects against live ones, ignoring server noise."""

from __future__ import annotations

import logging
from typing import Any

from deepdiff import DeepDiff

from homer_operator.models.diff import DiffStatus, ReconcileTarget, ResourceDiff

logger = logging.getLogger(__name__)

# Fields managed by the server that never count as a difference
IGNORED_FIELDS = {
    "metadata.resourceVersion",
    "metadata.uid",
    "metadata.creationTimestamp",
    "metadata.generation",
    "metadata.managedFields",
    "metadata.selfLink",
    "metadata.finalizers",
    "metadata.annotations.kubectl.kubernetes.io/last-applied-configuration",
    "status",
}

# Fields another actor (autoscaler, image updater) may own on workloads
WORKLOAD_IGNORED_FIELDS = {
    "spec.replicas",
}

WORKLOAD_KINDS = ("Deployment", "StatefulSet", "DaemonSet")


def _strip_server_fields(obj: dict, ignored: set[str], prefix: str = "") -> dict:
    """Remove server-managed fields from a resource dict for comparison."""
    cleaned = {}
    for key, value in obj.items():
        full_key = f"{prefix}.{key}" if prefix else key
        if full_key in ignored:
            continue
        if isinstance(value, dict):
            inner = _strip_server_fields(value, ignored, full_key)
            if inner:
                cleaned[key] = inner
        elif value is None or value == [] or value == "":
            continue
        else:
            cleaned[key] = value
    return cleaned


def _volume_identity(volume: dict) -> dict:
    sources = sorted(k for k in volume if k != "name")
    return {"name": volume.get("name", ""), "source": sources[0] if sources else ""}


def _normalize_container(container: dict) -> dict:
    out = {k: v for k, v in container.items() if k not in ("image", "resources")}
    env = out.pop("env", None) or []
    if env:
        out["env"] = sorted(
            (e.get("name", ""), repr(e.get("value")), repr(e.get("valueFrom"))) for e in env
        )
    return out


def _normalize_workload(obj: dict) -> dict:
    template = ((obj.get("spec") or {}).get("template") or {}).get("spec")
    if not template:
        return obj
    for key in ("containers", "initContainers"):
        if key in template:
            template[key] = [_normalize_container(c) for c in template[key]]
    if "volumes" in template:
        template["volumes"] = sorted(
            (_volume_identity(v) for v in template["volumes"]),
            key=lambda v: (v["name"], v["source"]),
        )
    return obj


def normalize(obj: dict, kind: str = "") -> dict:
    """Strip server noise; workloads also drop fields other controllers own."""
    kind = kind or obj.get("kind", "")
    if kind in WORKLOAD_KINDS:
        return _normalize_workload(_strip_server_fields(obj, IGNORED_FIELDS | WORKLOAD_IGNORED_FIELDS))
    return _strip_server_fields(obj, IGNORED_FIELDS)


def _owned_view(desired: dict, observed: dict) -> dict:
    """Restrict ``observed`` to the keys the desired object declares."""
    view = {k: observed[k] for k in desired if k in observed and k != "metadata"}
    desired_meta = desired.get("metadata") or {}
    observed_meta = observed.get("metadata") or {}
    meta: dict[str, Any] = {}
    for key in ("name", "namespace"):
        if key in observed_meta:
            meta[key] = observed_meta[key]
    for key in ("labels", "annotations"):
        wanted = desired_meta.get(key) or {}
        have = observed_meta.get(key) or {}
        subset = {k: have[k] for k in wanted if k in have}
        if subset:
            meta[key] = subset
    if "ownerReferences" in desired_meta and "ownerReferences" in observed_meta:
        meta["ownerReferences"] = observed_meta["ownerReferences"]
    view["metadata"] = meta
    return view


def compare(target: ReconcileTarget) -> ResourceDiff:
    """Fill ``target.diff`` and return it."""
    if target.observed is None:
        target.diff = ResourceDiff(
            kind=target.kind, name=target.name, namespace=target.namespace,
            status=DiffStatus.MISSING_LIVE, details=["Resource not found in cluster"],
        )
        return target.diff

    desired_clean = normalize(target.desired, target.kind)
    live_clean = normalize(_owned_view(target.desired, target.observed), target.kind)

    diff = DeepDiff(
        desired_clean,
        live_clean,
        ignore_order=True,
        verbose_level=2,
    )
    if diff:
        status, details = DiffStatus.MODIFIED, _format_diff(diff)
        logger.debug("%s %s/%s differs: %s", target.kind, target.namespace, target.name, details)
    else:
        status, details = DiffStatus.UNCHANGED, []
    target.diff = ResourceDiff(
        kind=target.kind, name=target.name, namespace=target.namespace,
        status=status, details=details,
    )
    return target.diff


def _format_diff(diff: DeepDiff) -> list[str]:
    details: list[str] = []

    for path, change in diff.get("values_changed", {}).items():
        old = change.get("old_value", "?")
        new = change.get("new_value", "?")
        details.append(f"Changed {path}: {old!r} -> {new!r}")

    for path in diff.get("dictionary_item_added", {}):
        details.append(f"Added: {path}")

    for path in diff.get("dictionary_item_removed", {}):
        details.append(f"Removed: {path}")

    for path in diff.get("iterable_item_added", {}):
        details.append(f"List item added: {path}")

    for path in diff.get("iterable_item_removed", {}):
        details.append(f"List item removed: {path}")

    for path, change in diff.get("type_changes", {}).items():
        details.append(f"Type changed {path}: {change}")

    return details or ["Differences detected (see raw diff)"]
