"""homer-op clusters <manifest> - Connect declared clusters and report status."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer

from homer_operator.cli.options import ContextOption, ManifestArgument, OutputOption
from homer_operator.core.cluster_registry import ClusterRegistry
from homer_operator.core.k8s_client import K8sClient
from homer_operator.output.formatters import load_dashboard, output_cluster_statuses

app = typer.Typer(context_settings={"allow_interspersed_args": True})


@app.callback(invoke_without_command=True)
def clusters(
    manifest: Path = ManifestArgument,
    output: str = OutputOption,
    context: Optional[str] = ContextOption,
) -> None:
    """Show whether each remote cluster of a Dashboard can be reached."""
    dashboard = load_dashboard(manifest)
    registry = ClusterRegistry(K8sClient(context=context))
    registry.reconcile_connections(dashboard)
    statuses = registry.get_statuses()
    output_cluster_statuses(dashboard, statuses, output)
    if any(not s.connected for s in statuses):
        raise typer.Exit(code=1)
