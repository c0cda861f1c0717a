"""Application configuration and defaults."""

from __future__ import annotations

import os
from dataclasses import dataclass, field


def _env_str(name: str, default: str) -> str:
    return os.environ.get(f"HOMER_OPERATOR_{name}", "") or default


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(f"HOMER_OPERATOR_{name}", "")
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(f"HOMER_OPERATOR_{name}", "")
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(f"HOMER_OPERATOR_{name}", "").strip().lower()
    if not raw:
        return default
    return raw in ("1", "true", "yes", "on")


@dataclass
class Settings:
    # Dashboard custom resource coordinates
    api_group: str = "homer.rajsingh.info"
    api_version: str = "v1alpha1"
    dashboard_plural: str = "dashboards"

    # Annotation and label conventions
    cluster_annotation: str = "homer.rajsingh.info/cluster"
    domain_filters_annotation: str = "homer.rajsingh.info/domain-filters"
    item_prefix: str = "item.homer.rajsingh.info/"
    service_prefix: str = "service.homer.rajsingh.info/"
    finalizer: str = "homer.rajsingh.info/finalizer"
    managed_by_label: str = "managed-by"
    managed_by_value: str = "homer-operator"
    dashboard_label: str = "dashboard.homer.rajsingh.info/name"

    # Produced ConfigMap
    resource_suffix: str = "-homer"
    config_key: str = "config.yml"
    external_config_key: str = "config.yml"
    kubeconfig_key: str = "kubeconfig"

    local_cluster: str = "local"
    cluster_domain: str = field(default_factory=lambda: _env_str("CLUSTER_DOMAIN", "cluster.local"))

    # Timing
    resync_seconds: float = field(default_factory=lambda: _env_float("RESYNC_SECONDS", 300.0))
    request_timeout: int = field(default_factory=lambda: _env_int("REQUEST_TIMEOUT", 30))
    probe_timeout: int = field(default_factory=lambda: _env_int("PROBE_TIMEOUT", 10))
    watch_timeout: int = field(default_factory=lambda: _env_int("WATCH_TIMEOUT", 300))
    failure_base_delay: float = 1.0
    failure_max_delay: float = 300.0

    workers: int = field(default_factory=lambda: _env_int("WORKERS", 2))
    enable_gateway_api: bool = field(default_factory=lambda: _env_bool("ENABLE_GATEWAY_API", True))
    watch_namespace: str = field(default_factory=lambda: _env_str("WATCH_NAMESPACE", ""))

    @property
    def group_version(self) -> str:
        return f"{self.api_group}/{self.api_version}"

    def config_map_name(self, dashboard_name: str) -> str:
        return f"{dashboard_name}{self.resource_suffix}"


# Global singleton
settings = Settings()
