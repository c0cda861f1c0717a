"""Kubernetes API wrapper."""

from __future__ import annotations

import base64
from typing import Any, Callable

from kubernetes import client, config
from kubernetes.client import ApiException

from homer_operator.config.settings import settings
from homer_operator.core.errors import ConflictError, NotFoundError

GATEWAY_GROUP = "gateway.networking.k8s.io"
GATEWAY_VERSION = "v1"


def _translate(e: ApiException, what: str) -> Exception:
    if e.status == 404:
        return NotFoundError(f"{what} not found")
    if e.status == 409:
        return ConflictError(f"{what}: {e.reason}")
    return e


class K8sClient:
    """Thin wrapper around the Kubernetes Python client.

    All reads return API-serialized dicts (camelCase keys) so callers never
    depend on the generated model classes.
    """

    def __init__(
        self,
        context: str | None = None,
        api_client: client.ApiClient | None = None,
        name: str = "",
    ):
        self.context = context
        self.name = name or settings.local_cluster
        self._api_client = api_client
        self._core_v1: client.CoreV1Api | None = None
        self._networking_v1: client.NetworkingV1Api | None = None
        self._custom: client.CustomObjectsApi | None = None

    @classmethod
    def from_kubeconfig_dict(cls, kubeconfig: dict, context: str) -> K8sClient:
        """Build a client for ``context`` out of parsed kubeconfig material.

        Raises ``config.ConfigException`` when the context is missing or the
        credentials cannot be loaded.
        """
        cfg = client.Configuration()
        config.load_kube_config_from_dict(
            config_dict=kubeconfig,
            context=context,
            client_configuration=cfg,
        )
        # Prevent indefinite hangs on unreachable clusters
        cfg.retries = 1
        if not cfg.connection_pool_maxsize:
            cfg.connection_pool_maxsize = 4
        return cls(context=context, api_client=client.ApiClient(configuration=cfg), name=context)

    def _load_config(self) -> client.ApiClient:
        if self._api_client is not None:
            return self._api_client
        try:
            cfg = client.Configuration()
            config.load_kube_config(
                context=self.context,
                client_configuration=cfg,
            )
            cfg.retries = 1
            if not cfg.connection_pool_maxsize:
                cfg.connection_pool_maxsize = 4
            self._api_client = client.ApiClient(configuration=cfg)
        except config.ConfigException:
            config.load_incluster_config()
            self._api_client = client.ApiClient()
        return self._api_client

    @property
    def core_v1(self) -> client.CoreV1Api:
        if self._core_v1 is None:
            self._core_v1 = client.CoreV1Api(api_client=self._load_config())
        return self._core_v1

    @property
    def networking_v1(self) -> client.NetworkingV1Api:
        if self._networking_v1 is None:
            self._networking_v1 = client.NetworkingV1Api(api_client=self._load_config())
        return self._networking_v1

    @property
    def custom(self) -> client.CustomObjectsApi:
        if self._custom is None:
            self._custom = client.CustomObjectsApi(api_client=self._load_config())
        return self._custom

    def to_dict(self, obj: Any) -> Any:
        return self._load_config().sanitize_for_serialization(obj)

    # -- connectivity -------------------------------------------------------

    def probe(self) -> None:
        """Cheap reachability check: one page of at most one namespace."""
        self.core_v1.list_namespace(limit=1, _request_timeout=settings.probe_timeout)

    # -- discovered resources ---------------------------------------------

    def list_ingresses(self, namespace: str | None = None) -> list[dict]:
        if namespace:
            result = self.networking_v1.list_namespaced_ingress(
                namespace=namespace, _request_timeout=settings.request_timeout,
            )
        else:
            result = self.networking_v1.list_ingress_for_all_namespaces(
                _request_timeout=settings.request_timeout,
            )
        return self.to_dict(result.items)

    def list_services(self, namespace: str | None = None) -> list[dict]:
        if namespace:
            result = self.core_v1.list_namespaced_service(
                namespace=namespace, _request_timeout=settings.request_timeout,
            )
        else:
            result = self.core_v1.list_service_for_all_namespaces(
                _request_timeout=settings.request_timeout,
            )
        return self.to_dict(result.items)

    def list_httproutes(self, namespace: str | None = None) -> list[dict]:
        if namespace:
            result = self.custom.list_namespaced_custom_object(
                group=GATEWAY_GROUP, version=GATEWAY_VERSION, namespace=namespace,
                plural="httproutes", _request_timeout=settings.request_timeout,
            )
        else:
            result = self.custom.list_cluster_custom_object(
                group=GATEWAY_GROUP, version=GATEWAY_VERSION, plural="httproutes",
                _request_timeout=settings.request_timeout,
            )
        return result.get("items", [])

    def get_gateway(self, name: str, namespace: str) -> dict | None:
        try:
            return self.custom.get_namespaced_custom_object(
                group=GATEWAY_GROUP, version=GATEWAY_VERSION, namespace=namespace,
                plural="gateways", name=name, _request_timeout=settings.request_timeout,
            )
        except ApiException as e:
            if e.status == 404:
                return None
            raise

    def read_namespace(self, name: str) -> dict | None:
        try:
            result = self.core_v1.read_namespace(name=name, _request_timeout=settings.request_timeout)
        except ApiException as e:
            if e.status == 404:
                return None
            raise
        return self.to_dict(result)

    def read_secret_data(self, name: str, namespace: str) -> dict[str, bytes] | None:
        """Return the decoded data of a Secret, or None when it does not exist."""
        try:
            result = self.core_v1.read_namespaced_secret(
                name=name, namespace=namespace, _request_timeout=settings.request_timeout,
            )
        except ApiException as e:
            if e.status == 404:
                return None
            raise
        return {k: base64.b64decode(v) for k, v in (result.data or {}).items()}

    # -- managed ConfigMap -------------------------------------------------

    def get_config_map(self, name: str, namespace: str) -> dict | None:
        try:
            result = self.core_v1.read_namespaced_config_map(
                name=name, namespace=namespace, _request_timeout=settings.request_timeout,
            )
        except ApiException as e:
            if e.status == 404:
                return None
            raise
        return self.to_dict(result)

    def create_config_map(self, body: dict) -> dict:
        namespace = body["metadata"]["namespace"]
        try:
            result = self.core_v1.create_namespaced_config_map(
                namespace=namespace, body=body, _request_timeout=settings.request_timeout,
            )
        except ApiException as e:
            raise _translate(e, f"configmap {namespace}/{body['metadata']['name']}") from e
        return self.to_dict(result)

    def replace_config_map(self, body: dict) -> dict:
        """Write ``body`` back; its resourceVersion guards against lost updates."""
        meta = body["metadata"]
        try:
            result = self.core_v1.replace_namespaced_config_map(
                name=meta["name"], namespace=meta["namespace"], body=body,
                _request_timeout=settings.request_timeout,
            )
        except ApiException as e:
            raise _translate(e, f"configmap {meta['namespace']}/{meta['name']}") from e
        return self.to_dict(result)

    def delete_config_map(self, name: str, namespace: str) -> bool:
        try:
            self.core_v1.delete_namespaced_config_map(
                name=name, namespace=namespace, _request_timeout=settings.request_timeout,
            )
        except ApiException as e:
            if e.status == 404:
                return False
            raise
        return True

    # -- Dashboard custom resource -----------------------------------------

    def list_dashboards(self, namespace: str | None = None) -> list[dict]:
        if namespace:
            result = self.custom.list_namespaced_custom_object(
                group=settings.api_group, version=settings.api_version, namespace=namespace,
                plural=settings.dashboard_plural, _request_timeout=settings.request_timeout,
            )
        else:
            result = self.custom.list_cluster_custom_object(
                group=settings.api_group, version=settings.api_version,
                plural=settings.dashboard_plural, _request_timeout=settings.request_timeout,
            )
        return result.get("items", [])

    def get_dashboard(self, name: str, namespace: str) -> dict | None:
        try:
            return self.custom.get_namespaced_custom_object(
                group=settings.api_group, version=settings.api_version, namespace=namespace,
                plural=settings.dashboard_plural, name=name,
                _request_timeout=settings.request_timeout,
            )
        except ApiException as e:
            if e.status == 404:
                return None
            raise

    def replace_dashboard(self, body: dict) -> dict:
        meta = body["metadata"]
        try:
            return self.custom.replace_namespaced_custom_object(
                group=settings.api_group, version=settings.api_version,
                namespace=meta["namespace"], plural=settings.dashboard_plural,
                name=meta["name"], body=body, _request_timeout=settings.request_timeout,
            )
        except ApiException as e:
            raise _translate(e, f"dashboard {meta['namespace']}/{meta['name']}") from e

    def patch_dashboard_status(self, name: str, namespace: str, status: dict) -> dict:
        try:
            return self.custom.patch_namespaced_custom_object_status(
                group=settings.api_group, version=settings.api_version, namespace=namespace,
                plural=settings.dashboard_plural, name=name, body={"status": status},
                _request_timeout=settings.request_timeout,
            )
        except ApiException as e:
            raise _translate(e, f"dashboard {namespace}/{name}") from e

    # -- watches -----------------------------------------------------------

    def watch_target(self, kind: str) -> tuple[Callable[..., Any], dict]:
        """Return the list function and kwargs to stream ``kind`` events from."""
        ns = settings.watch_namespace
        if kind == "Dashboard":
            kwargs = dict(group=settings.api_group, version=settings.api_version,
                          plural=settings.dashboard_plural)
            if ns:
                return self.custom.list_namespaced_custom_object, dict(kwargs, namespace=ns)
            return self.custom.list_cluster_custom_object, kwargs
        if kind in ("HTTPRoute", "Gateway"):
            plural = "httproutes" if kind == "HTTPRoute" else "gateways"
            return self.custom.list_cluster_custom_object, dict(
                group=GATEWAY_GROUP, version=GATEWAY_VERSION, plural=plural,
            )
        targets: dict[str, Callable[..., Any]] = {
            "Ingress": self.networking_v1.list_ingress_for_all_namespaces,
            "Service": self.core_v1.list_service_for_all_namespaces,
            "Secret": self.core_v1.list_secret_for_all_namespaces,
            "Namespace": self.core_v1.list_namespace,
        }
        if kind not in targets:
            raise ValueError(f"no watch target for kind {kind!r}")
        return targets[kind], {}
