"""homer-op run - Start the controller."""

from __future__ import annotations

import signal
from typing import Optional

import typer

from homer_operator.cli.options import ContextOption
from homer_operator.config.settings import settings
from homer_operator.core.controller import DashboardController
from homer_operator.core.k8s_client import K8sClient
from homer_operator.core.runner import ControllerRunner

app = typer.Typer()


@app.callback(invoke_without_command=True)
def run(
    context: Optional[str] = ContextOption,
    workers: Optional[int] = typer.Option(None, "--workers", "-w", help="Number of reconcile workers"),
    namespace: Optional[str] = typer.Option(
        None, "--namespace", "-n", help="Only watch Dashboards in this namespace (default: all)",
    ),
    resync: Optional[float] = typer.Option(None, "--resync", help="Resync interval in seconds"),
) -> None:
    """Watch Dashboards and keep their ConfigMaps up to date."""
    if namespace:
        settings.watch_namespace = namespace
    k8s = K8sClient(context=context)
    controller = DashboardController(k8s)
    runner = ControllerRunner(controller, k8s, workers=workers, resync_seconds=resync)

    def _stop(signum, frame) -> None:
        runner.stopping.set()

    signal.signal(signal.SIGTERM, _stop)
    signal.signal(signal.SIGINT, _stop)
    runner.run_forever()
