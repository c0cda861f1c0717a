"""List and filter Ingress, HTTPRoute and Service objects across clusters."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field

from kubernetes.client import ApiException

from homer_operator.config.settings import settings
from homer_operator.core.cluster_registry import ClusterConnection, ClusterRegistry
from homer_operator.core.errors import ReconcileCancelled, SelectorError
from homer_operator.core.selectors import matches_any_domain, selector_matches, validate_selector
from homer_operator.models import ResourceKind
from homer_operator.models.dashboard import Dashboard, LabelSelector
from homer_operator.models.resource import DiscoveredResource, HTTPRouteResource

logger = logging.getLogger(__name__)

_SELECTOR_ATTRS = {
    ResourceKind.INGRESS: "ingress_selector",
    ResourceKind.HTTPROUTE: "http_route_selector",
    ResourceKind.SERVICE: "service_selector",
}

_INHERITED_PREFIXES = (settings.item_prefix, settings.service_prefix)


@dataclass
class DiscoveryResult:
    kind: ResourceKind
    resources: dict[str, list[DiscoveredResource]] = field(default_factory=dict)
    errors: dict[str, str] = field(default_factory=dict)

    def all(self) -> list[DiscoveredResource]:
        """Every resource, local cluster first, then remotes by name."""
        order = sorted(self.resources, key=lambda n: (n != settings.local_cluster, n))
        return [
            r for name in order
            for r in sorted(self.resources[name], key=lambda r: (r.namespace, r.name))
        ]

    def count(self, cluster: str | None = None) -> int:
        if cluster is not None:
            return len(self.resources.get(cluster, []))
        return sum(len(v) for v in self.resources.values())


def _selector_for(attr: str, conn: ClusterConnection, dashboard: Dashboard) -> LabelSelector | None:
    cfg = conn.cluster_cfg
    if cfg is not None and getattr(cfg, attr) is not None:
        return getattr(cfg, attr)
    if conn.is_local:
        return getattr(dashboard.spec, attr)
    return None


def resolve_selector(
    kind: ResourceKind, conn: ClusterConnection, dashboard: Dashboard,
) -> LabelSelector | None:
    return _selector_for(_SELECTOR_ATTRS[kind], conn, dashboard)


def resolve_domain_filters(conn: ClusterConnection, dashboard: Dashboard) -> list[str]:
    """Per-cluster filters win; dashboard filters apply to the local cluster only."""
    if conn.cluster_cfg is not None and conn.cluster_cfg.domain_filters:
        return list(conn.cluster_cfg.domain_filters)
    if conn.is_local:
        return list(dashboard.spec.domain_filters)
    return []


def discover(
    kind: ResourceKind,
    registry: ClusterRegistry,
    dashboard: Dashboard,
    cancel: threading.Event | None = None,
) -> DiscoveryResult:
    """Discover ``kind`` on every live cluster.

    A failing cluster is recorded in ``errors`` and marked disconnected; the
    others still contribute. A malformed selector fails the whole call.
    """
    result = DiscoveryResult(kind=kind)
    for conn in registry.live_connections():
        if cancel is not None and cancel.is_set():
            raise ReconcileCancelled("discovery cancelled")
        try:
            found = _discover_cluster(kind, conn, dashboard)
        except (SelectorError, ReconcileCancelled):
            raise
        except Exception as e:
            logger.warning("Failed to discover %s on cluster %s: %s", kind.value, conn.name, e)
            logger.debug("Discovery failure detail", exc_info=True)
            result.errors[conn.name] = str(e)
            registry.mark_disconnected(conn.name, f"discovery failed: {e}")
            continue
        if not conn.is_local:
            registry.mark_connected(conn.name)
        result.resources[conn.name] = found
        logger.debug("Discovered %d %s on cluster %s", len(found), kind.value, conn.name)
    return result


def _list_raw(kind: ResourceKind, conn: ClusterConnection) -> list[dict]:
    k8s = conn.client
    list_fn = {
        ResourceKind.INGRESS: k8s.list_ingresses,
        ResourceKind.HTTPROUTE: k8s.list_httproutes,
        ResourceKind.SERVICE: k8s.list_services,
    }[kind]

    namespaces = conn.cluster_cfg.namespace_filter if conn.cluster_cfg is not None else []
    if not namespaces:
        try:
            return list_fn()
        except ApiException as e:
            if e.status == 404 and kind == ResourceKind.HTTPROUTE:
                logger.debug("Gateway API not served by cluster %s", conn.name)
                return []
            raise

    items: list[dict] = []
    for ns in namespaces:
        try:
            items.extend(list_fn(namespace=ns))
        except ApiException as e:
            if e.status == 404:
                logger.debug("Namespace %s not listable on cluster %s", ns, conn.name)
                continue
            raise
    return items


def _discover_cluster(
    kind: ResourceKind, conn: ClusterConnection, dashboard: Dashboard,
) -> list[DiscoveredResource]:
    selector = resolve_selector(kind, conn, dashboard)
    if selector is None and kind == ResourceKind.SERVICE:
        # Services are opt-in only
        return []
    if selector is not None:
        validate_selector(selector)

    gateway_selector = None
    if kind == ResourceKind.HTTPROUTE:
        gateway_selector = _selector_for("gateway_selector", conn, dashboard)
        if gateway_selector is not None:
            validate_selector(gateway_selector)

    filters = resolve_domain_filters(conn, dashboard)
    ns_annotations: dict[str, dict[str, str]] = {}
    kept: list[DiscoveredResource] = []

    for obj in _list_raw(kind, conn):
        res = DiscoveredResource.from_dict(kind, obj)
        if selector is not None and not selector_matches(selector, res.labels):
            continue
        if kind != ResourceKind.SERVICE and filters and not matches_any_domain(res.hostnames, filters):
            logger.debug("%s %s filtered out by domain on %s", kind.value, res.key, conn.name)
            continue
        if gateway_selector is not None and not _matches_gateway(res, conn, gateway_selector):
            continue
        _decorate(res, conn, filters, ns_annotations)
        kept.append(res)
    return kept


def _matches_gateway(
    route: HTTPRouteResource, conn: ClusterConnection, selector: LabelSelector,
) -> bool:
    for ref in route.parent_refs:
        if ref.kind != "Gateway":
            continue
        namespace = ref.namespace or route.namespace
        gateway = conn.client.get_gateway(ref.name, namespace)
        if gateway is None:
            logger.debug("Gateway %s/%s for route %s not found", namespace, ref.name, route.key)
            continue
        labels = (gateway.get("metadata") or {}).get("labels") or {}
        if selector_matches(selector, labels):
            return True
    logger.debug("HTTPRoute %s matched no gateway on %s", route.key, conn.name)
    return False


def _decorate(
    res: DiscoveredResource,
    conn: ClusterConnection,
    filters: list[str],
    ns_cache: dict[str, dict[str, str]],
) -> None:
    if conn.cluster_cfg is not None and conn.cluster_cfg.cluster_labels:
        res.labels.update(conn.cluster_cfg.cluster_labels)
    res.annotations[settings.cluster_annotation] = conn.name
    if filters and res.kind != ResourceKind.SERVICE:
        res.annotations[settings.domain_filters_annotation] = ",".join(filters)

    if not res.namespace:
        return
    if res.namespace not in ns_cache:
        ns_cache[res.namespace] = _namespace_annotations(conn, res.namespace)
    for key, value in ns_cache[res.namespace].items():
        res.annotations.setdefault(key, value)


def _namespace_annotations(conn: ClusterConnection, namespace: str) -> dict[str, str]:
    try:
        ns = conn.client.read_namespace(namespace)
    except Exception:
        logger.debug("Cannot read namespace %s on %s", namespace, conn.name, exc_info=True)
        return {}
    if ns is None:
        return {}
    annotations = (ns.get("metadata") or {}).get("annotations") or {}
    return {k: v for k, v in annotations.items() if k.startswith(_INHERITED_PREFIXES)}
