"""Watch streams and the mapping from watch events to dashboard keys."""

from __future__ import annotations

import logging
import threading
from typing import Callable

from kubernetes import watch
from kubernetes.client import ApiException

from homer_operator.config.settings import settings
from homer_operator.core.k8s_client import K8sClient
from homer_operator.models.dashboard import Dashboard

logger = logging.getLogger(__name__)

WATCHED_KINDS = ("Dashboard", "Ingress", "HTTPRoute", "Gateway", "Service", "Secret", "Namespace")

EventHandler = Callable[[str, str, dict], None]


def _references_secret(dashboard: Dashboard, name: str, namespace: str) -> bool:
    refs = [rc.secret_ref for rc in dashboard.spec.remote_clusters]
    if dashboard.spec.secrets is not None:
        refs.extend(dashboard.spec.secrets.references())
    return any(
        ref.name == name and ref.resolved_namespace(dashboard.namespace) == namespace
        for ref in refs
    )


class EventMapper:
    """Work out which dashboards a watch event concerns."""

    def __init__(self, dashboards: Callable[[], list[Dashboard]]):
        self._dashboards = dashboards

    def keys_for(self, kind: str, obj: dict) -> list[str]:
        meta = obj.get("metadata") or {}
        name = meta.get("name", "")
        namespace = meta.get("namespace", "")
        if kind == "Dashboard":
            return [f"{namespace or 'default'}/{name}"] if name else []
        known = self._dashboards()
        if kind == "Secret":
            return sorted(d.key for d in known if _references_secret(d, name, namespace))
        return sorted(d.key for d in known)


class ResourceWatcher(threading.Thread):
    """Streams events for one kind until ``stop`` is set, reconnecting on failure."""

    def __init__(
        self,
        k8s: K8sClient,
        kind: str,
        handler: EventHandler,
        stop: threading.Event,
        retry_delay: float = 5.0,
    ):
        super().__init__(name=f"watch-{kind.lower()}", daemon=True)
        self._k8s = k8s
        self.kind = kind
        self._handler = handler
        self._stop_event = stop
        self._retry_delay = retry_delay

    def run(self) -> None:
        while not self._stop_event.is_set():
            w = watch.Watch()
            try:
                func, kwargs = self._k8s.watch_target(self.kind)
                for event in w.stream(func, timeout_seconds=settings.watch_timeout, **kwargs):
                    if self._stop_event.is_set():
                        w.stop()
                        break
                    obj = event.get("object")
                    if not isinstance(obj, dict):
                        obj = self._k8s.to_dict(obj)
                    self._handler(self.kind, event.get("type", ""), obj or {})
            except ApiException as e:
                if e.status == 404:
                    logger.info("%s is not served by the cluster, not watching it", self.kind)
                    return
                logger.warning("Watch for %s failed: %s", self.kind, e.reason)
                self._stop_event.wait(self._retry_delay)
            except Exception:
                logger.warning("Watch for %s broke, restarting", self.kind, exc_info=True)
                self._stop_event.wait(self._retry_delay)
