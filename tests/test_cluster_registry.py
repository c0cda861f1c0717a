"""Tests for the per-dashboard cluster connection registry."""

from __future__ import annotations

from fakes import KUBECONFIG, FakeCluster, dashboard, remote_cluster

from homer_operator.core.cluster_registry import ClusterRegistry
from homer_operator.models.dashboard import Dashboard


def _dash(*clusters: dict) -> Dashboard:
    return Dashboard.from_dict(dashboard(spec={"remoteClusters": list(clusters)}))


class CountingFactory:
    """Builds a fresh fake per call so rebuilt clients can be told apart."""

    def __init__(self):
        self.builds = 0
        self.fail = False

    def __call__(self, kubeconfig: dict, context: str) -> FakeCluster:
        if self.fail:
            raise ValueError("bad credentials")
        self.builds += 1
        return FakeCluster(context)


def _setup(secret: bytes = KUBECONFIG):
    local = FakeCluster()
    local.secrets[("default", "east-kubeconfig")] = {"kubeconfig": secret}
    factory = CountingFactory()
    return local, factory, ClusterRegistry(local, factory)


class TestMembership:
    def test_local_always_present(self, registry):
        registry.reconcile_connections(_dash())
        assert registry.names() == ["local"]
        assert registry.get("local").connected

    def test_disabled_cluster_absent(self, registry, add_remote):
        add_remote("east")
        registry.reconcile_connections(_dash(remote_cluster("east", enabled=False)))
        assert registry.names() == ["local"]
        assert registry.get_statuses() == []

    def test_reserved_local_name_ignored(self, registry):
        registry.reconcile_connections(_dash(remote_cluster("local")))
        assert registry.get("local").client is not None
        assert registry.get_statuses() == []

    def test_removed_cluster_dropped(self, registry, add_remote):
        add_remote("east")
        registry.reconcile_connections(_dash(remote_cluster("east")))
        assert registry.names() == ["east", "local"]
        registry.reconcile_connections(_dash())
        assert registry.names() == ["local"]


class TestConnections:
    def test_connected_status(self, registry, add_remote):
        add_remote("east")
        registry.reconcile_connections(_dash(remote_cluster("east")))
        (status,) = registry.get_statuses()
        assert status.name == "east"
        assert status.connected
        assert status.last_connection_time is not None
        assert "lastConnectionTime" in status.to_dict()

    def test_missing_secret_recorded(self, registry):
        registry.reconcile_connections(_dash(remote_cluster("east")))
        (status,) = registry.get_statuses()
        assert not status.connected
        assert "not found" in status.last_error
        assert "lastConnectionTime" not in status.to_dict()

    def test_missing_key_recorded(self, local, registry):
        local.secrets[("default", "east-kubeconfig")] = {"other": b"x"}
        registry.reconcile_connections(_dash(remote_cluster("east")))
        (status,) = registry.get_statuses()
        assert "'kubeconfig' not found" in status.last_error

    def test_secret_namespace_override(self, local, registry, add_remote):
        add_remote("east", namespace="infra")
        cfg = remote_cluster("east")
        cfg["secretRef"]["namespace"] = "infra"
        registry.reconcile_connections(_dash(cfg))
        assert registry.get("east").connected

    def test_unreachable_cluster_not_live(self, registry, add_remote):
        add_remote("east").probe_error = RuntimeError("timeout")
        registry.reconcile_connections(_dash(remote_cluster("east")))
        assert [c.name for c in registry.live_connections()] == ["local"]
        assert "timeout" in registry.get("east").last_error


class TestRotation:
    def test_unchanged_secret_keeps_client(self):
        _, factory, registry = _setup()
        dash = _dash(remote_cluster("east"))
        registry.reconcile_connections(dash)
        first = registry.get("east").client
        registry.reconcile_connections(dash)
        assert registry.get("east").client is first
        assert factory.builds == 1

    def test_changed_secret_rebuilds_client(self):
        local, factory, registry = _setup()
        dash = _dash(remote_cluster("east"))
        registry.reconcile_connections(dash)
        first = registry.get("east").client

        local.secrets[("default", "east-kubeconfig")] = {"kubeconfig": KUBECONFIG + b"# rotated\n"}
        registry.reconcile_connections(dash)
        assert registry.get("east").client is not first
        assert registry.get("east").connected
        assert factory.builds == 2

    def test_failed_rebuild_keeps_stale_client_and_retries(self):
        local, factory, registry = _setup()
        dash = _dash(remote_cluster("east"))
        registry.reconcile_connections(dash)
        first = registry.get("east")

        local.secrets[("default", "east-kubeconfig")] = {"kubeconfig": KUBECONFIG + b"# rotated\n"}
        factory.fail = True
        registry.reconcile_connections(dash)
        stale = registry.get("east")
        assert stale.client is first.client
        assert not stale.connected
        assert stale.fingerprint == first.fingerprint
        assert "bad credentials" in stale.last_error

        factory.fail = False
        registry.reconcile_connections(dash)
        assert registry.get("east").connected
        assert registry.get("east").client is not first.client

    def test_unreadable_secret_marks_existing_connection_down(self):
        local, factory, registry = _setup()
        dash = _dash(remote_cluster("east"))
        registry.reconcile_connections(dash)
        first = registry.get("east")
        assert first.connected

        del local.secrets[("default", "east-kubeconfig")]
        registry.reconcile_connections(dash)
        conn = registry.get("east")
        assert not conn.connected
        assert "not found" in conn.last_error
        assert conn.client is first.client
        assert [c.name for c in registry.live_connections()] == ["local"]

        local.secrets[("default", "east-kubeconfig")] = {"kubeconfig": KUBECONFIG}
        registry.reconcile_connections(dash)
        assert registry.get("east").connected
        assert factory.builds == 1


class TestReprobe:
    def test_disconnected_cluster_reprobed(self, registry, add_remote):
        add_remote("east")
        dash = _dash(remote_cluster("east"))
        registry.reconcile_connections(dash)
        registry.mark_disconnected("east", "discovery failed: boom")
        assert not registry.get("east").connected

        registry.reconcile_connections(dash)
        assert registry.get("east").connected
        assert registry.get("east").last_error == ""

    def test_local_never_marked_disconnected(self, registry):
        registry.mark_disconnected("local", "nope")
        assert registry.get("local").connected
