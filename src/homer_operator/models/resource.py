"""Discovered resource models.

Every variant exposes the same accessor set (kind, name, namespace, labels,
annotations, hostnames) so discovery and projection never reach into
kind-specific fields except where a kind owns the behavior (TLS, parent
refs, ports).
"""

from __future__ import annotations

from dataclasses import dataclass, field

from homer_operator.config.settings import settings
from homer_operator.models import ResourceKind


@dataclass
class ParentRef:
    name: str = ""
    namespace: str = ""
    kind: str = "Gateway"
    section_name: str = ""

    @classmethod
    def from_dict(cls, d: dict) -> ParentRef:
        return cls(
            name=d.get("name", ""),
            namespace=d.get("namespace", "") or "",
            kind=d.get("kind", "") or "Gateway",
            section_name=d.get("sectionName", "") or "",
        )


@dataclass
class ServicePort:
    name: str = ""
    port: int = 0

    @classmethod
    def from_dict(cls, d: dict) -> ServicePort:
        return cls(name=d.get("name", "") or "", port=int(d.get("port", 0) or 0))


@dataclass
class DiscoveredResource:
    kind: ResourceKind = ResourceKind.INGRESS
    name: str = ""
    namespace: str = ""
    labels: dict[str, str] = field(default_factory=dict)
    annotations: dict[str, str] = field(default_factory=dict)
    creation_timestamp: str = ""

    @property
    def hostnames(self) -> list[str]:
        return []

    @property
    def cluster(self) -> str:
        return self.annotations.get(settings.cluster_annotation, "") or settings.local_cluster

    @property
    def is_remote(self) -> bool:
        return self.cluster != settings.local_cluster

    @property
    def key(self) -> str:
        return f"{self.namespace}/{self.name}"

    @staticmethod
    def from_dict(kind: ResourceKind, obj: dict) -> DiscoveredResource:
        """Build the variant for ``kind`` from an API-serialized object."""
        meta = obj.get("metadata") or {}
        spec = obj.get("spec") or {}
        common = dict(
            name=meta.get("name", ""),
            namespace=meta.get("namespace", ""),
            labels=dict(meta.get("labels") or {}),
            annotations=dict(meta.get("annotations") or {}),
            creation_timestamp=meta.get("creationTimestamp", "") or "",
        )
        if kind == ResourceKind.INGRESS:
            rules = spec.get("rules") or []
            tls = spec.get("tls") or []
            tls_hosts: list[str] = []
            tls_all = False
            for entry in tls:
                hosts = entry.get("hosts") or []
                if not hosts:
                    tls_all = True
                tls_hosts.extend(hosts)
            return IngressResource(
                rule_hosts=[r.get("host", "") or "" for r in rules],
                tls_hosts=tls_hosts,
                has_tls=bool(tls),
                tls_covers_all=tls_all,
                **common,
            )
        if kind == ResourceKind.HTTPROUTE:
            return HTTPRouteResource(
                route_hostnames=list(spec.get("hostnames") or []),
                parent_refs=[ParentRef.from_dict(p) for p in spec.get("parentRefs") or []],
                **common,
            )
        return ServiceResource(
            ports=[ServicePort.from_dict(p) for p in spec.get("ports") or []],
            **common,
        )


@dataclass
class IngressResource(DiscoveredResource):
    rule_hosts: list[str] = field(default_factory=list)
    tls_hosts: list[str] = field(default_factory=list)
    has_tls: bool = False
    tls_covers_all: bool = False

    def __post_init__(self):
        self.kind = ResourceKind.INGRESS

    @property
    def hostnames(self) -> list[str]:
        return [h for h in self.rule_hosts if h]

    def is_tls_host(self, host: str) -> bool:
        return self.tls_covers_all or host in self.tls_hosts


@dataclass
class HTTPRouteResource(DiscoveredResource):
    route_hostnames: list[str] = field(default_factory=list)
    parent_refs: list[ParentRef] = field(default_factory=list)

    def __post_init__(self):
        self.kind = ResourceKind.HTTPROUTE

    @property
    def hostnames(self) -> list[str]:
        return [h for h in self.route_hostnames if h]


@dataclass
class ServiceResource(DiscoveredResource):
    ports: list[ServicePort] = field(default_factory=list)

    def __post_init__(self):
        self.kind = ResourceKind.SERVICE
