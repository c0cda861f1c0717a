"""Dashboard custom resource models."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

from homer_operator.models import GroupingStrategy, ValidationLevel


@dataclass
class LabelSelectorRequirement:
    key: str = ""
    operator: str = ""
    values: list[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, d: dict) -> LabelSelectorRequirement:
        return cls(
            key=d.get("key", ""),
            operator=d.get("operator", ""),
            values=list(d.get("values") or []),
        )


@dataclass
class LabelSelector:
    match_labels: dict[str, str] = field(default_factory=dict)
    match_expressions: list[LabelSelectorRequirement] = field(default_factory=list)

    @classmethod
    def from_dict(cls, d: dict | None) -> LabelSelector | None:
        if d is None:
            return None
        return cls(
            match_labels=dict(d.get("matchLabels") or {}),
            match_expressions=[
                LabelSelectorRequirement.from_dict(e) for e in d.get("matchExpressions") or []
            ],
        )


@dataclass
class SecretKeyRef:
    name: str = ""
    key: str = ""
    namespace: str = ""

    @classmethod
    def from_dict(cls, d: dict | None) -> SecretKeyRef | None:
        if not d:
            return None
        return cls(
            name=d.get("name", ""),
            key=d.get("key", ""),
            namespace=d.get("namespace", ""),
        )

    def resolved_namespace(self, default: str) -> str:
        return self.namespace or default


@dataclass
class SmartCardSecrets:
    api_key: SecretKeyRef | None = None
    token: SecretKeyRef | None = None
    username: SecretKeyRef | None = None
    password: SecretKeyRef | None = None
    headers: dict[str, SecretKeyRef] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, d: dict | None) -> SmartCardSecrets | None:
        if not d:
            return None
        headers = {}
        for name, ref in (d.get("headers") or {}).items():
            parsed = SecretKeyRef.from_dict(ref)
            if parsed is not None:
                headers[name] = parsed
        return cls(
            api_key=SecretKeyRef.from_dict(d.get("apiKey")),
            token=SecretKeyRef.from_dict(d.get("token")),
            username=SecretKeyRef.from_dict(d.get("username")),
            password=SecretKeyRef.from_dict(d.get("password")),
            headers=headers,
        )

    def references(self) -> list[SecretKeyRef]:
        refs = [r for r in (self.api_key, self.token, self.username, self.password) if r]
        refs.extend(self.headers.values())
        return refs


@dataclass
class RemoteCluster:
    name: str = ""
    enabled: bool = True
    secret_ref: SecretKeyRef = field(default_factory=SecretKeyRef)
    ingress_selector: LabelSelector | None = None
    http_route_selector: LabelSelector | None = None
    gateway_selector: LabelSelector | None = None
    service_selector: LabelSelector | None = None
    domain_filters: list[str] = field(default_factory=list)
    namespace_filter: list[str] = field(default_factory=list)
    cluster_labels: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, d: dict) -> RemoteCluster:
        return cls(
            name=d.get("name", ""),
            enabled=d.get("enabled", True),
            secret_ref=SecretKeyRef.from_dict(d.get("secretRef")) or SecretKeyRef(),
            ingress_selector=LabelSelector.from_dict(d.get("ingressSelector")),
            http_route_selector=LabelSelector.from_dict(d.get("httpRouteSelector")),
            gateway_selector=LabelSelector.from_dict(d.get("gatewaySelector")),
            service_selector=LabelSelector.from_dict(d.get("serviceSelector")),
            domain_filters=list(d.get("domainFilters") or []),
            namespace_filter=list(d.get("namespaceFilter") or []),
            cluster_labels=dict(d.get("clusterLabels") or {}),
        )


@dataclass
class GroupingRule:
    name: str = ""
    condition: dict[str, str] = field(default_factory=dict)
    priority: int = 1

    @classmethod
    def from_dict(cls, d: dict) -> GroupingRule:
        return cls(
            name=d.get("name", ""),
            condition=dict(d.get("condition") or {}),
            priority=int(d.get("priority", 1) or 1),
        )


@dataclass
class ServiceGrouping:
    strategy: GroupingStrategy = GroupingStrategy.NAMESPACE
    label_key: str = ""
    custom_rules: list[GroupingRule] = field(default_factory=list)

    @classmethod
    def from_dict(cls, d: dict | None) -> ServiceGrouping:
        if not d:
            return cls()
        return cls(
            strategy=GroupingStrategy.from_str(d.get("strategy")),
            label_key=d.get("labelKey", ""),
            custom_rules=[GroupingRule.from_dict(r) for r in d.get("customRules") or []],
        )


@dataclass
class ConfigMapRef:
    name: str = ""
    key: str = ""

    @classmethod
    def from_dict(cls, d: dict | None) -> ConfigMapRef | None:
        if not d or not d.get("name"):
            return None
        return cls(name=d.get("name", ""), key=d.get("key", ""))


@dataclass
class AdvancedConfig:
    max_items_per_service: int = 0
    max_services_per_group: int = 0

    @classmethod
    def from_dict(cls, d: dict | None) -> AdvancedConfig:
        if not d:
            return cls()
        return cls(
            max_items_per_service=int(d.get("maxItemsPerService", 0) or 0),
            max_services_per_group=int(d.get("maxServicesPerGroup", 0) or 0),
        )


@dataclass
class DashboardSpec:
    config_map: ConfigMapRef | None = None
    homer_config: dict = field(default_factory=dict)
    secrets: SmartCardSecrets | None = None
    ingress_selector: LabelSelector | None = None
    http_route_selector: LabelSelector | None = None
    gateway_selector: LabelSelector | None = None
    service_selector: LabelSelector | None = None
    domain_filters: list[str] = field(default_factory=list)
    remote_clusters: list[RemoteCluster] = field(default_factory=list)
    service_grouping: ServiceGrouping = field(default_factory=ServiceGrouping)
    advanced: AdvancedConfig = field(default_factory=AdvancedConfig)
    validation_level: ValidationLevel = ValidationLevel.WARN

    @classmethod
    def from_dict(cls, d: dict | None) -> DashboardSpec:
        if not d:
            return cls()
        return cls(
            config_map=ConfigMapRef.from_dict(d.get("configMap")),
            homer_config=dict(d.get("homerConfig") or {}),
            secrets=SmartCardSecrets.from_dict(d.get("secrets")),
            ingress_selector=LabelSelector.from_dict(d.get("ingressSelector")),
            http_route_selector=LabelSelector.from_dict(d.get("httpRouteSelector")),
            gateway_selector=LabelSelector.from_dict(d.get("gatewaySelector")),
            service_selector=LabelSelector.from_dict(d.get("serviceSelector")),
            domain_filters=list(d.get("domainFilters") or []),
            remote_clusters=[RemoteCluster.from_dict(c) for c in d.get("remoteClusters") or []],
            service_grouping=ServiceGrouping.from_dict(d.get("serviceGrouping")),
            advanced=AdvancedConfig.from_dict(d.get("advanced")),
            validation_level=ValidationLevel.from_str(d.get("validationLevel")),
        )


@dataclass
class ClusterConnectionStatus:
    name: str = ""
    connected: bool = False
    last_error: str = ""
    last_connection_time: datetime | None = None
    discovered_ingresses: int = 0
    discovered_http_routes: int = 0
    discovered_services: int = 0

    def to_dict(self) -> dict:
        out: dict = {
            "name": self.name,
            "connected": self.connected,
            "discoveredIngresses": self.discovered_ingresses,
            "discoveredHTTPRoutes": self.discovered_http_routes,
            "discoveredServices": self.discovered_services,
        }
        if self.last_error:
            out["lastError"] = self.last_error
        if self.last_connection_time is not None:
            out["lastConnectionTime"] = self.last_connection_time.strftime("%Y-%m-%dT%H:%M:%SZ")
        return out


@dataclass
class DashboardStatus:
    observed_generation: int = 0
    clusters: list[ClusterConnectionStatus] = field(default_factory=list)
    discovered_ingresses: int = 0
    discovered_http_routes: int = 0
    discovered_services: int = 0
    last_error: str = ""

    def to_dict(self) -> dict:
        out: dict = {
            "observedGeneration": self.observed_generation,
            "clusterStatuses": [c.to_dict() for c in self.clusters],
            "discoveredIngresses": self.discovered_ingresses,
            "discoveredHTTPRoutes": self.discovered_http_routes,
            "discoveredServices": self.discovered_services,
        }
        out["lastError"] = self.last_error or None
        return out


@dataclass
class Dashboard:
    name: str = ""
    namespace: str = ""
    uid: str = ""
    generation: int = 0
    resource_version: str = ""
    deletion_timestamp: str | None = None
    finalizers: list[str] = field(default_factory=list)
    annotations: dict[str, str] = field(default_factory=dict)
    spec: DashboardSpec = field(default_factory=DashboardSpec)
    raw: dict = field(default_factory=dict, repr=False)

    @property
    def key(self) -> str:
        return f"{self.namespace}/{self.name}"

    @property
    def is_deleting(self) -> bool:
        return bool(self.deletion_timestamp)

    def has_finalizer(self, finalizer: str) -> bool:
        return finalizer in self.finalizers

    @classmethod
    def from_dict(cls, d: dict) -> Dashboard:
        meta = d.get("metadata") or {}
        return cls(
            name=meta.get("name", ""),
            namespace=meta.get("namespace", "") or "default",
            uid=meta.get("uid", ""),
            generation=int(meta.get("generation", 0) or 0),
            resource_version=meta.get("resourceVersion", ""),
            deletion_timestamp=meta.get("deletionTimestamp"),
            finalizers=list(meta.get("finalizers") or []),
            annotations=dict(meta.get("annotations") or {}),
            spec=DashboardSpec.from_dict(d.get("spec")),
            raw=d,
        )
