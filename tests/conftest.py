from __future__ import annotations

import pytest

from fakes import KUBECONFIG, FakeCluster, fake_factory

from homer_operator.core.cluster_registry import ClusterRegistry
from homer_operator.core.controller import DashboardController
from homer_operator.core.retry import RetryPolicy


@pytest.fixture()
def local() -> FakeCluster:
    return FakeCluster("local")


@pytest.fixture()
def remotes() -> dict[str, FakeCluster]:
    return {}


@pytest.fixture()
def add_remote(local: FakeCluster, remotes: dict[str, FakeCluster]):
    """Register a reachable remote cluster and its kubeconfig Secret."""

    def _add(name: str, namespace: str = "default") -> FakeCluster:
        remote = FakeCluster(name)
        remotes[name] = remote
        local.secrets[(namespace, f"{name}-kubeconfig")] = {"kubeconfig": KUBECONFIG + b"# " + name.encode() + b"\n"}
        return remote

    return _add


@pytest.fixture()
def registry(local: FakeCluster, remotes: dict[str, FakeCluster]) -> ClusterRegistry:
    return ClusterRegistry(local, fake_factory(remotes))


@pytest.fixture()
def controller(local: FakeCluster, remotes: dict[str, FakeCluster]) -> DashboardController:
    return DashboardController(
        local, retry_policy=RetryPolicy(base_delay=0.0, jitter=0.0), client_factory=fake_factory(remotes),
    )
