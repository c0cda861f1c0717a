"""Per-dashboard registry of local and remote cluster connections."""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Callable

import yaml

from homer_operator.config.settings import settings
from homer_operator.core.errors import ConnectivityError
from homer_operator.core.k8s_client import K8sClient
from homer_operator.models.dashboard import ClusterConnectionStatus, Dashboard, RemoteCluster
from homer_operator.utils.locking import RWLock

logger = logging.getLogger(__name__)

ClientFactory = Callable[[dict, str], K8sClient]


def _now() -> datetime:
    return datetime.now(timezone.utc)


def fingerprint(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


@dataclass
class ClusterConnection:
    name: str
    client: K8sClient | None = None
    fingerprint: str = ""
    connected: bool = False
    last_error: str = ""
    last_check: datetime | None = None
    cluster_cfg: RemoteCluster | None = None

    @property
    def is_local(self) -> bool:
        return self.name == settings.local_cluster


class ClusterRegistry:
    """Owns the connection map for one dashboard.

    The map is the only state shared between reconcile workers; every access
    goes through a single reader/writer lock. Network I/O (secret reads,
    client builds, probes) happens while holding the writer side only during
    :meth:`reconcile_connections`, never while discovery is listing.
    """

    def __init__(self, local_client: K8sClient, client_factory: ClientFactory | None = None):
        self._local = local_client
        self._factory = client_factory or K8sClient.from_kubeconfig_dict
        self._lock = RWLock()
        self._connections: dict[str, ClusterConnection] = {
            settings.local_cluster: ClusterConnection(
                name=settings.local_cluster,
                client=local_client,
                connected=True,
                last_check=_now(),
            ),
        }

    def reconcile_connections(self, dashboard: Dashboard) -> None:
        """Bring the connection map in line with the dashboard's remote clusters."""
        with self._lock.write():
            active: set[str] = set()
            for cfg in dashboard.spec.remote_clusters:
                if not cfg.enabled:
                    logger.debug("Skipping disabled cluster %s", cfg.name)
                    continue
                if not cfg.name or cfg.name == settings.local_cluster:
                    logger.warning("Ignoring remote cluster with reserved or empty name %r", cfg.name)
                    continue
                active.add(cfg.name)
                self._reconcile_one(dashboard, cfg)

            for name in list(self._connections):
                if name == settings.local_cluster or name in active:
                    continue
                logger.info("Removing cluster connection %s", name)
                del self._connections[name]

            if settings.local_cluster not in self._connections:
                self._connections[settings.local_cluster] = ClusterConnection(
                    name=settings.local_cluster, client=self._local,
                    connected=True, last_check=_now(),
                )

    def _reconcile_one(self, dashboard: Dashboard, cfg: RemoteCluster) -> None:
        existing = self._connections.get(cfg.name)
        try:
            raw = self._read_kubeconfig(dashboard, cfg)
        except ConnectivityError as e:
            logger.warning("Cannot read credentials for cluster %s: %s", cfg.name, e)
            if existing is None:
                self._connections[cfg.name] = ClusterConnection(
                    name=cfg.name, last_error=str(e), last_check=_now(), cluster_cfg=cfg,
                )
            else:
                # the stale client is kept for when the secret comes back
                existing.connected = False
                existing.last_error = str(e)
                existing.last_check = _now()
                existing.cluster_cfg = cfg
            return

        fp = fingerprint(raw)
        if existing is None:
            self._connections[cfg.name] = self._build(cfg, raw, fp)
            return

        existing.cluster_cfg = cfg
        if existing.fingerprint != fp:
            logger.info("Credentials for cluster %s changed, reconnecting", cfg.name)
            rebuilt = self._build(cfg, raw, fp)
            if rebuilt.connected or existing.client is None:
                self._connections[cfg.name] = rebuilt
            else:
                # keep the stale client; the fingerprint stays old so the next pass retries
                existing.connected = False
                existing.last_error = rebuilt.last_error
                existing.last_check = rebuilt.last_check
            return

        if not existing.connected and existing.client is not None:
            self._probe(existing)

    def _read_kubeconfig(self, dashboard: Dashboard, cfg: RemoteCluster) -> bytes:
        ref = cfg.secret_ref
        namespace = ref.resolved_namespace(dashboard.namespace)
        key = ref.key or settings.kubeconfig_key
        if not ref.name:
            raise ConnectivityError(cfg.name, "no kubeconfig secret configured")
        try:
            data = self._local.read_secret_data(ref.name, namespace)
        except Exception as e:
            raise ConnectivityError(cfg.name, f"failed to get kubeconfig secret: {e}") from e
        if data is None:
            raise ConnectivityError(cfg.name, f"secret {namespace}/{ref.name} not found")
        if key not in data:
            raise ConnectivityError(cfg.name, f"key {key!r} not found in secret {ref.name}")
        return data[key]

    def _build(self, cfg: RemoteCluster, raw: bytes, fp: str) -> ClusterConnection:
        try:
            kubeconfig = yaml.safe_load(raw)
            if not isinstance(kubeconfig, dict):
                raise ValueError("kubeconfig is not a mapping")
            remote = self._factory(kubeconfig, cfg.name)
            remote.probe()
        except Exception as e:
            logger.warning("Failed to connect to cluster %s: %s", cfg.name, e, exc_info=True)
            return ClusterConnection(
                name=cfg.name, last_error=f"failed to connect: {e}",
                last_check=_now(), cluster_cfg=cfg,
            )
        logger.info("Connected to remote cluster %s", cfg.name)
        return ClusterConnection(
            name=cfg.name, client=remote, fingerprint=fp, connected=True,
            last_check=_now(), cluster_cfg=cfg,
        )

    def _probe(self, conn: ClusterConnection) -> None:
        try:
            conn.client.probe()
        except Exception as e:
            logger.debug("Probe for cluster %s still failing", conn.name, exc_info=True)
            conn.last_error = f"failed to connect: {e}"
            conn.last_check = _now()
            return
        logger.info("Cluster %s reachable again", conn.name)
        conn.connected = True
        conn.last_error = ""
        conn.last_check = _now()

    def get(self, name: str) -> ClusterConnection | None:
        with self._lock.read():
            conn = self._connections.get(name)
            return replace(conn) if conn else None

    def names(self) -> list[str]:
        with self._lock.read():
            return sorted(self._connections)

    def live_connections(self) -> list[ClusterConnection]:
        """Snapshot of the local connection plus every connected remote one."""
        with self._lock.read():
            return [
                replace(c) for _, c in sorted(self._connections.items())
                if c.is_local or (c.connected and c.client is not None)
            ]

    def get_statuses(self) -> list[ClusterConnectionStatus]:
        with self._lock.read():
            statuses = []
            for name, conn in sorted(self._connections.items()):
                if conn.is_local:
                    continue
                statuses.append(ClusterConnectionStatus(
                    name=name,
                    connected=conn.connected,
                    last_error=conn.last_error,
                    last_connection_time=conn.last_check if conn.connected else None,
                ))
            return statuses

    def mark_disconnected(self, name: str, error: str) -> None:
        if name == settings.local_cluster:
            return
        with self._lock.write():
            conn = self._connections.get(name)
            if conn is not None:
                conn.connected = False
                conn.last_error = error
                conn.last_check = _now()

    def mark_connected(self, name: str) -> None:
        if name == settings.local_cluster:
            return
        with self._lock.write():
            conn = self._connections.get(name)
            if conn is not None:
                conn.connected = True
                conn.last_error = ""
                conn.last_check = _now()
