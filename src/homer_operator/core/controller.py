"""Per-dashboard reconcile loop body."""

from __future__ import annotations

import copy
import logging
import threading
from dataclasses import dataclass

import yaml
from kubernetes.client import ApiException

from homer_operator.config.settings import settings
from homer_operator.core.cluster_registry import ClientFactory, ClusterRegistry
from homer_operator.core.discovery import DiscoveryResult, discover
from homer_operator.core.errors import (
    ConflictError,
    HomerOperatorError,
    MissingDependencyError,
    NotFoundError,
    ReconcileCancelled,
)
from homer_operator.core.k8s_client import K8sClient
from homer_operator.core.projector import SecretResolver, project
from homer_operator.core.retry import RetryPolicy, read_modify_write
from homer_operator.core.semantic_diff import compare
from homer_operator.models import ResourceKind
from homer_operator.models.dashboard import Dashboard, DashboardStatus
from homer_operator.models.diff import DiffStatus, ReconcileTarget
from homer_operator.models.document import ConfigDocument, render_document

logger = logging.getLogger(__name__)


@dataclass
class ReconcileResult:
    requeue: bool = False
    requeue_after: float | None = None


def split_key(key: str) -> tuple[str, str]:
    namespace, _, name = key.partition("/")
    if not name:
        return "default", namespace
    return namespace, name


class DashboardController:
    """Drives Dashboard objects through Active, Finalizing and Removed.

    Holds one :class:`ClusterRegistry` per dashboard. The registries live only
    as long as the process and are rebuilt from the dashboard spec.
    """

    def __init__(
        self,
        k8s: K8sClient,
        retry_policy: RetryPolicy | None = None,
        client_factory: ClientFactory | None = None,
    ):
        self._k8s = k8s
        self._policy = retry_policy or RetryPolicy()
        self._client_factory = client_factory
        self._lock = threading.Lock()
        self._registries: dict[str, ClusterRegistry] = {}
        self._dashboards: dict[str, Dashboard] = {}

    # -- bookkeeping -------------------------------------------------------

    def registry_for(self, key: str) -> ClusterRegistry:
        with self._lock:
            if key not in self._registries:
                self._registries[key] = ClusterRegistry(self._k8s, self._client_factory)
            return self._registries[key]

    def known_dashboards(self) -> list[Dashboard]:
        with self._lock:
            return list(self._dashboards.values())

    def known_keys(self) -> list[str]:
        with self._lock:
            return sorted(self._dashboards)

    def remember(self, dashboard: Dashboard) -> None:
        with self._lock:
            self._dashboards[dashboard.key] = dashboard

    def forget(self, key: str) -> None:
        with self._lock:
            self._registries.pop(key, None)
            self._dashboards.pop(key, None)

    # -- reconcile ---------------------------------------------------------

    def reconcile(self, key: str, cancel: threading.Event | None = None) -> ReconcileResult:
        namespace, name = split_key(key)
        raw = self._k8s.get_dashboard(name, namespace)
        if raw is None:
            logger.info("Dashboard %s no longer exists", key)
            self.forget(key)
            return ReconcileResult()

        dashboard = Dashboard.from_dict(raw)

        if dashboard.is_deleting:
            if dashboard.has_finalizer(settings.finalizer):
                self._finalize(dashboard, cancel)
            self.forget(key)
            return ReconcileResult()

        if not dashboard.has_finalizer(settings.finalizer):
            self._add_finalizer(dashboard, cancel)
            self.remember(dashboard)
            return ReconcileResult(requeue=True)

        self.remember(dashboard)
        return self._converge(dashboard, cancel)

    def _fetch_dashboard(self, dashboard: Dashboard):
        return lambda: self._k8s.get_dashboard(dashboard.name, dashboard.namespace)

    def _add_finalizer(self, dashboard: Dashboard, cancel: threading.Event | None) -> None:
        def mutate(latest: dict) -> dict | None:
            meta = latest.setdefault("metadata", {})
            finalizers = meta.setdefault("finalizers", [])
            if settings.finalizer in finalizers:
                return None
            finalizers.append(settings.finalizer)
            return latest

        read_modify_write(
            self._fetch_dashboard(dashboard), mutate, self._k8s.replace_dashboard,
            policy=self._policy, cancel=cancel,
        )
        logger.info("Added finalizer to dashboard %s", dashboard.key)

    def _finalize(self, dashboard: Dashboard, cancel: threading.Event | None) -> None:
        cm_name = settings.config_map_name(dashboard.name)
        if self._k8s.delete_config_map(cm_name, dashboard.namespace):
            logger.info("Deleted ConfigMap %s/%s", dashboard.namespace, cm_name)

        def mutate(latest: dict) -> dict | None:
            meta = latest.setdefault("metadata", {})
            finalizers = meta.get("finalizers") or []
            if settings.finalizer not in finalizers:
                return None
            meta["finalizers"] = [f for f in finalizers if f != settings.finalizer]
            return latest

        try:
            read_modify_write(
                self._fetch_dashboard(dashboard), mutate, self._k8s.replace_dashboard,
                policy=self._policy, cancel=cancel,
            )
        except NotFoundError:
            logger.debug("Dashboard %s vanished while finalizing", dashboard.key)
            return
        logger.info("Removed finalizer from dashboard %s", dashboard.key)

    def _converge(self, dashboard: Dashboard, cancel: threading.Event | None) -> ReconcileResult:
        registry = self.registry_for(dashboard.key)
        registry.reconcile_connections(dashboard)

        results: dict[ResourceKind, DiscoveryResult] = {}
        try:
            doc = self.build_document(dashboard, registry, cancel, results)
            desired = self.desired_config_map(dashboard, render_document(doc))
            self.apply_config_map(desired, cancel)
        except ReconcileCancelled:
            raise
        except HomerOperatorError as e:
            self._update_status(dashboard, registry, results, str(e))
            raise

        self._update_status(dashboard, registry, results, "")
        return ReconcileResult(requeue_after=settings.resync_seconds)

    def build_document(
        self,
        dashboard: Dashboard,
        registry: ClusterRegistry,
        cancel: threading.Event | None = None,
        results: dict[ResourceKind, DiscoveryResult] | None = None,
    ) -> ConfigDocument:
        """Discover across the registry's clusters and project the document.

        Per-kind discovery results are collected into ``results`` as they
        arrive so callers can report counts even when projection fails.
        """
        if results is None:
            results = {}
        base = self.external_base(dashboard)
        for kind in self.kinds():
            _check_cancel(cancel)
            results[kind] = discover(kind, registry, dashboard, cancel)
            for cluster, error in results[kind].errors.items():
                logger.warning("Cluster %s skipped for %s: %s", cluster, kind.value, error)

        _check_cancel(cancel)
        resources = [r for result in results.values() for r in result.all()]
        return project(resources, dashboard, SecretResolver(self._k8s), base=base)

    @staticmethod
    def kinds() -> list[ResourceKind]:
        kinds = [ResourceKind.INGRESS]
        if settings.enable_gateway_api:
            kinds.append(ResourceKind.HTTPROUTE)
        kinds.append(ResourceKind.SERVICE)
        return kinds

    def external_base(self, dashboard: Dashboard) -> ConfigDocument | None:
        """Load the externally managed base document, if the dashboard names one."""
        ref = dashboard.spec.config_map
        if ref is None:
            return None
        cm = self._k8s.get_config_map(ref.name, dashboard.namespace)
        if cm is None:
            raise MissingDependencyError(f"configmap {dashboard.namespace}/{ref.name} not found")
        key = ref.key or settings.external_config_key
        data = cm.get("data") or {}
        if key not in data:
            raise MissingDependencyError(
                f"configmap {dashboard.namespace}/{ref.name} has no key {key!r}"
            )
        try:
            return ConfigDocument.from_yaml(data[key])
        except (yaml.YAMLError, ValueError) as e:
            raise MissingDependencyError(
                f"configmap {dashboard.namespace}/{ref.name} is not a valid config: {e}"
            ) from e

    @staticmethod
    def desired_config_map(dashboard: Dashboard, rendered: str) -> dict:
        return {
            "apiVersion": "v1",
            "kind": "ConfigMap",
            "metadata": {
                "name": settings.config_map_name(dashboard.name),
                "namespace": dashboard.namespace,
                "labels": {
                    settings.managed_by_label: settings.managed_by_value,
                    settings.dashboard_label: dashboard.name,
                },
                "ownerReferences": [{
                    "apiVersion": settings.group_version,
                    "kind": "Dashboard",
                    "name": dashboard.name,
                    "uid": dashboard.uid,
                    "controller": True,
                    "blockOwnerDeletion": True,
                }],
            },
            "data": {settings.config_key: rendered},
        }

    def apply_config_map(self, desired: dict, cancel: threading.Event | None = None) -> DiffStatus:
        """Create, skip or update the managed ConfigMap. Returns what was found."""
        meta = desired["metadata"]
        name, namespace = meta["name"], meta["namespace"]
        observed = self._k8s.get_config_map(name, namespace)
        target = ReconcileTarget("ConfigMap", name, namespace, desired, observed)
        diff = compare(target)

        if diff.status == DiffStatus.UNCHANGED:
            logger.debug("ConfigMap %s/%s unchanged", namespace, name)
            return diff.status

        if diff.status == DiffStatus.MISSING_LIVE:
            try:
                self._k8s.create_config_map(desired)
                logger.info("Created ConfigMap %s/%s", namespace, name)
                return diff.status
            except ConflictError:
                logger.debug("ConfigMap %s/%s created concurrently, updating", namespace, name)

        read_modify_write(
            lambda: self._k8s.get_config_map(name, namespace),
            owned_fields_mutator(desired),
            self._k8s.replace_config_map,
            policy=self._policy,
            cancel=cancel,
        )
        logger.info("Updated ConfigMap %s/%s", namespace, name)
        return diff.status

    def _update_status(
        self,
        dashboard: Dashboard,
        registry: ClusterRegistry,
        results: dict[ResourceKind, DiscoveryResult],
        error: str,
    ) -> None:
        def count(kind: ResourceKind, cluster: str | None = None) -> int:
            result = results.get(kind)
            return result.count(cluster) if result is not None else 0

        clusters = registry.get_statuses()
        for status in clusters:
            status.discovered_ingresses = count(ResourceKind.INGRESS, status.name)
            status.discovered_http_routes = count(ResourceKind.HTTPROUTE, status.name)
            status.discovered_services = count(ResourceKind.SERVICE, status.name)

        status = DashboardStatus(
            observed_generation=dashboard.generation,
            clusters=clusters,
            discovered_ingresses=count(ResourceKind.INGRESS),
            discovered_http_routes=count(ResourceKind.HTTPROUTE),
            discovered_services=count(ResourceKind.SERVICE),
            last_error=error,
        )
        try:
            self._k8s.patch_dashboard_status(dashboard.name, dashboard.namespace, status.to_dict())
        except (HomerOperatorError, ApiException):
            logger.warning("Failed to update status for dashboard %s", dashboard.key, exc_info=True)


def owned_fields_mutator(desired: dict):
    """Build a mutator that reapplies only the fields this controller owns."""

    def mutate(latest: dict) -> dict | None:
        before = copy.deepcopy(latest)
        meta = latest.setdefault("metadata", {})
        want_meta = desired.get("metadata") or {}
        labels = meta.get("labels") or {}
        labels.update(want_meta.get("labels") or {})
        meta["labels"] = labels
        if not meta.get("ownerReferences") and want_meta.get("ownerReferences"):
            meta["ownerReferences"] = copy.deepcopy(want_meta["ownerReferences"])
        for field_name in ("data", "binaryData"):
            if desired.get(field_name):
                merged = latest.get(field_name) or {}
                merged.update(copy.deepcopy(desired[field_name]))
                latest[field_name] = merged
        if latest == before:
            return None
        return latest

    return mutate


def _check_cancel(cancel: threading.Event | None) -> None:
    if cancel is not None and cancel.is_set():
        raise ReconcileCancelled("reconcile cancelled")
