"""Project discovered resources into a Homer configuration document."""

from __future__ import annotations

import copy
import logging
from typing import Iterable

from homer_operator.config.settings import settings
from homer_operator.core.errors import SecretResolutionError
from homer_operator.core.selectors import matches_domain
from homer_operator.models import GroupingStrategy, ResourceKind, ValidationLevel
from homer_operator.models.dashboard import (
    AdvancedConfig,
    Dashboard,
    SecretKeyRef,
    ServiceGrouping,
)
from homer_operator.models.document import (
    ConfigDocument,
    Group,
    Item,
    ItemParam,
)
from homer_operator.models.resource import (
    DiscoveredResource,
    HTTPRouteResource,
    IngressResource,
    ServiceResource,
)

logger = logging.getLogger(__name__)

DEFAULT_GROUP = "default"

_ICON_BASE = "https://raw.githubusercontent.com/kubernetes/community/master/icons/png/resources/labeled/"
NAMESPACE_ICON = _ICON_BASE + "ns-128.png"
INGRESS_ICON = _ICON_BASE + "ing-128.png"
SERVICE_ICON = _ICON_BASE + "svc-128.png"

_LINK_TARGETS = ("_blank", "_self", "_parent", "_top")
_TLS_MARKERS = ("https", "tls", "ssl")

_STATIC_MATCH_THRESHOLD = 30


class SecretResolver:
    """Reads single keys out of Secrets, caching each Secret for one projection."""

    def __init__(self, k8s):
        self._k8s = k8s
        self._cache: dict[tuple[str, str], dict[str, bytes] | None] = {}

    def resolve(self, ref: SecretKeyRef, default_namespace: str) -> str:
        namespace = ref.resolved_namespace(default_namespace)
        cache_key = (namespace, ref.name)
        if cache_key not in self._cache:
            try:
                self._cache[cache_key] = self._k8s.read_secret_data(ref.name, namespace)
            except Exception as e:
                raise SecretResolutionError(f"secret {namespace}/{ref.name}: {e}") from e
        data = self._cache[cache_key]
        if data is None:
            raise SecretResolutionError(f"secret {namespace}/{ref.name}: not found")
        if not data:
            raise SecretResolutionError(f"secret {namespace}/{ref.name}: no data")
        if ref.key not in data:
            raise SecretResolutionError(f"secret {namespace}/{ref.name}: key {ref.key} not found")
        try:
            return data[ref.key].decode("utf-8")
        except UnicodeDecodeError as e:
            raise SecretResolutionError(
                f"secret {namespace}/{ref.name}: key {ref.key} is not valid UTF-8"
            ) from e


# -- annotation parsing ----------------------------------------------------


def _validation_error(field_name: str, value: str) -> str | None:
    if not value:
        return None
    if field_name == "url":
        if not value.startswith(("http://", "https://", "ftp://")):
            return f"url: {value}"
    elif field_name == "target":
        if value not in _LINK_TARGETS:
            return f"target: {value}"
    elif field_name in ("warning_value", "danger_value"):
        try:
            float(value)
        except ValueError:
            return f"{field_name}: {value}"
    return None


def apply_item_annotations(
    item: Item, annotations: dict[str, str], level: ValidationLevel = ValidationLevel.NONE,
) -> None:
    """Fold ``item.homer.rajsingh.info/<field>`` annotations into ``item``."""
    for key in sorted(annotations):
        if not key.startswith(settings.item_prefix):
            continue
        field_name = key[len(settings.item_prefix):].lower()
        value = annotations[key]
        if not field_name:
            continue
        if "/" in field_name:
            obj, prop = field_name.split("/", 1)
            item.set_nested(obj, prop, value)
            continue
        if field_name == "keywords":
            value = ",".join(k.strip() for k in value.split(",") if k.strip())
        elif field_name in ("url", "target", "warning_value", "danger_value") and level != ValidationLevel.NONE:
            problem = _validation_error(field_name, value)
            if problem:
                if level == ValidationLevel.STRICT:
                    logger.warning("Dropping invalid item annotation %s", problem)
                    continue
                logger.warning("Invalid item annotation %s", problem)
        item.set(field_name, value)


def apply_group_annotations(group: Group, annotations: dict[str, str]) -> None:
    for key in sorted(annotations):
        if not key.startswith(settings.service_prefix):
            continue
        field_name = key[len(settings.service_prefix):]
        value = annotations[key]
        if "/" in field_name:
            obj, prop = field_name.split("/", 1)
            group.nested.setdefault(obj, {})[prop] = value
            continue
        if field_name.lower() == "name" and not value:
            continue
        group.params[field_name.lower()] = value


# -- grouping --------------------------------------------------------------


def _pattern_matches(value: str, pattern: str) -> bool:
    if pattern == "*":
        return True
    if "*" in pattern:
        return value.startswith(pattern.rstrip("*"))
    return value == pattern


def _condition_matches(
    condition: dict[str, str], labels: dict[str, str], annotations: dict[str, str],
) -> bool:
    for key, expected in condition.items():
        if key in labels:
            actual = labels[key]
        elif key in annotations:
            actual = annotations[key]
        else:
            return False
        if not _pattern_matches(actual, expected):
            return False
    return True


def explicit_group_name(annotations: dict[str, str]) -> str:
    for key, value in annotations.items():
        if key.startswith(settings.service_prefix):
            if key[len(settings.service_prefix):].lower() == "name" and value:
                return value
    return ""


def group_name_for(res: DiscoveredResource, grouping: ServiceGrouping) -> str:
    """Pick the group for a resource by annotation, then by strategy."""
    explicit = explicit_group_name(res.annotations)
    if explicit:
        return explicit
    fallback = res.namespace or DEFAULT_GROUP
    if grouping.strategy == GroupingStrategy.LABEL:
        if grouping.label_key and res.labels.get(grouping.label_key):
            return res.labels[grouping.label_key]
        return fallback
    if grouping.strategy == GroupingStrategy.CUSTOM:
        rules = sorted(grouping.custom_rules, key=lambda r: -r.priority)
        for rule in rules:
            if _condition_matches(rule.condition, res.labels, res.annotations):
                return rule.name
        return fallback
    return fallback


def _static_group_match(doc: ConfigDocument, namespace: str) -> str:
    """Best static group whose name resembles ``namespace``, if any."""
    best, best_score = "", 0
    ns = namespace.lower()
    if not ns:
        return ""
    for group in doc.groups:
        if not group.has_static_items or not group.name:
            continue
        name = group.name.lower()
        if name == ns:
            score = 100
        elif ns in name or name in ns:
            score = 50
        else:
            score = 0
        if score > best_score and score >= _STATIC_MATCH_THRESHOLD:
            best, best_score = group.name, score
    return best


def _resolve_group(doc: ConfigDocument, res: DiscoveredResource, grouping: ServiceGrouping) -> str:
    if not explicit_group_name(res.annotations) and grouping.strategy == GroupingStrategy.NAMESPACE:
        static = _static_group_match(doc, res.namespace)
        if static:
            return static
    return group_name_for(res, grouping)


# -- item construction -----------------------------------------------------


def source_identity(res: DiscoveredResource) -> str:
    source = f"svc/{res.name}" if res.kind == ResourceKind.SERVICE else res.name
    if res.is_remote:
        source = f"{source}@{res.cluster}"
    return source


def effective_domain_filters(res: DiscoveredResource, dashboard: Dashboard) -> list[str]:
    stamped = res.annotations.get(settings.domain_filters_annotation, "")
    if stamped:
        return [f.strip() for f in stamped.split(",") if f.strip()]
    if res.is_remote:
        return []
    return list(dashboard.spec.domain_filters)


def _base_item(res: DiscoveredResource, name: str) -> Item:
    item = Item(source=source_identity(res), namespace=res.namespace)
    if res.is_remote:
        suffix = res.labels.get("cluster-name-suffix", "")
        if suffix:
            name = name + suffix
    item.set(ItemParam.NAME, name)
    return item


def _tag_cluster(item: Item, res: DiscoveredResource) -> None:
    if not res.is_remote:
        return
    tag_style = res.labels.get("cluster-tagstyle", "")
    if tag_style:
        item.set(ItemParam.TAG, res.cluster)
        item.set(ItemParam.TAGSTYLE, tag_style)


def _ingress_items(res: IngressResource, filters: list[str]) -> list[Item]:
    hosts = [h for h in res.hostnames if matches_domain(h, filters)]
    items = []
    for host in hosts:
        name = f"{res.name}-{host}" if len(hosts) > 1 else res.name
        item = _base_item(res, name)
        item.set(ItemParam.LOGO, INGRESS_ICON)
        item.set(ItemParam.SUBTITLE, host)
        scheme = "https" if res.is_tls_host(host) else "http"
        item.set(ItemParam.URL, f"{scheme}://{host}")
        _tag_cluster(item, res)
        items.append(item)
    return items


def route_protocol(res: HTTPRouteResource) -> str:
    for ref in res.parent_refs:
        section = ref.section_name.lower()
        if any(marker in section for marker in _TLS_MARKERS):
            return "https"
    return "http"


def _httproute_items(res: HTTPRouteResource, filters: list[str]) -> list[Item]:
    hosts = [h for h in res.hostnames if matches_domain(h, filters)]
    protocol = route_protocol(res)
    items = []
    for host in hosts:
        name = f"{res.name}-{host}" if len(hosts) > 1 else res.name
        item = _base_item(res, name)
        item.set(ItemParam.LOGO, SERVICE_ICON)
        item.set(ItemParam.URL, f"{protocol}://{host}")
        item.set(ItemParam.SUBTITLE, host)
        _tag_cluster(item, res)
        items.append(item)
    return items


def service_url(res: ServiceResource) -> str:
    host = f"{res.name}.{res.namespace}.svc.{settings.cluster_domain}"
    if not res.ports:
        return f"http://{host}"
    port = res.ports[0]
    scheme = "https" if port.port == 443 or port.name.lower() == "https" else "http"
    return f"{scheme}://{host}:{port.port}"


def _service_items(res: ServiceResource) -> list[Item]:
    item = _base_item(res, res.name)
    item.set(ItemParam.LOGO, SERVICE_ICON)
    item.set(ItemParam.SUBTITLE, f"{res.namespace}/{res.name}")
    item.set(ItemParam.URL, service_url(res))
    _tag_cluster(item, res)
    return [item]


def build_items(res: DiscoveredResource, dashboard: Dashboard) -> list[Item]:
    """Default items for a resource with its item annotations applied, hidden ones dropped."""
    if isinstance(res, IngressResource):
        items = _ingress_items(res, effective_domain_filters(res, dashboard))
    elif isinstance(res, HTTPRouteResource):
        items = _httproute_items(res, effective_domain_filters(res, dashboard))
    elif isinstance(res, ServiceResource):
        items = _service_items(res)
    else:
        raise TypeError(f"unsupported resource {type(res).__name__}")

    visible = []
    for item in items:
        apply_item_annotations(item, res.annotations, dashboard.spec.validation_level)
        if item.hidden:
            logger.debug("Item %s from %s is hidden", item.name, res.key)
            continue
        visible.append(item)
    return visible


# -- merging ---------------------------------------------------------------


def merge_item(existing: Item, new: Item) -> None:
    """Merge a discovered item into one of the same name already in the group."""
    existing_static = existing.source == "crd"
    new_discovered = new.source not in ("", "crd")
    for key, value in new.params.items():
        if key == ItemParam.NAME:
            if not existing_static:
                existing.params[key] = value
        elif key in (ItemParam.URL, ItemParam.SUBTITLE):
            if new_discovered or not existing.params.get(key) or not existing_static:
                existing.params[key] = value
        else:
            if existing_static and existing.params.get(key):
                continue
            existing.params[key] = value
    for obj, props in new.nested.items():
        existing.nested.setdefault(obj, {}).update(props)
    if new_discovered and not existing_static:
        existing.source = new.source
        existing.namespace = new.namespace


def add_items(doc: ConfigDocument, template: Group, items: list[Item]) -> None:
    group = doc.find_group(template.name)
    if group is None:
        template.items = list(items)
        doc.groups.append(template)
        return
    for item in items:
        current = group.find_item(item.name)
        if current is not None:
            merge_item(current, item)
        else:
            group.items.append(item)


def apply_resource(doc: ConfigDocument, res: DiscoveredResource, dashboard: Dashboard) -> None:
    """Replace whatever ``res`` contributed before with its current items."""
    group = Group(params={
        "name": _resolve_group(doc, res, dashboard.spec.service_grouping),
        "logo": NAMESPACE_ICON,
    })
    apply_group_annotations(group, res.annotations)
    group.params["name"] = group.params.get("name") or DEFAULT_GROUP

    doc.remove_source(source_identity(res), res.namespace)
    items = build_items(res, dashboard)
    if items:
        add_items(doc, group, items)


# -- secrets and caps ------------------------------------------------------


def resolve_smart_cards(doc: ConfigDocument, dashboard: Dashboard, resolver: SecretResolver) -> None:
    secrets = dashboard.spec.secrets
    if secrets is None:
        return
    ns = dashboard.namespace
    for group in doc.groups:
        for item in group.items:
            if not item.get(ItemParam.TYPE):
                continue
            if secrets.api_key is not None:
                item.set(ItemParam.APIKEY, resolver.resolve(secrets.api_key, ns))
            if secrets.token is not None:
                token = resolver.resolve(secrets.token, ns)
                item.set_nested("customHeaders", "Authorization", f"Bearer {token}")
            if secrets.username is not None:
                item.set(ItemParam.USERNAME, resolver.resolve(secrets.username, ns))
            if secrets.password is not None:
                item.set(ItemParam.PASSWORD, resolver.resolve(secrets.password, ns))
            for header in sorted(secrets.headers):
                item.set_nested("customHeaders", header, resolver.resolve(secrets.headers[header], ns))


def apply_caps(doc: ConfigDocument, advanced: AdvancedConfig) -> None:
    if advanced.max_services_per_group > 0:
        doc.groups = doc.groups[:advanced.max_services_per_group]
    if advanced.max_items_per_service > 0:
        for group in doc.groups:
            group.items = group.items[:advanced.max_items_per_service]


def project(
    resources: Iterable[DiscoveredResource],
    dashboard: Dashboard,
    secret_resolver: SecretResolver | None,
    base: ConfigDocument | None = None,
) -> ConfigDocument:
    """Build the dashboard document.

    ``base`` defaults to the dashboard's static configuration. Raises
    :class:`SecretResolutionError` if a smart card secret is unavailable.
    """
    if base is not None:
        doc = copy.deepcopy(base)
    else:
        doc = ConfigDocument.from_homer_config(dashboard.spec.homer_config)

    for res in resources:
        apply_resource(doc, res, dashboard)

    if secret_resolver is not None:
        resolve_smart_cards(doc, dashboard, secret_resolver)

    doc.sort()
    apply_caps(doc, dashboard.spec.advanced)
    return doc
