"""homer-op render <manifest> - Print the document a Dashboard would produce."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer

from homer_operator.cli.options import ContextOption, ManifestArgument
from homer_operator.core.controller import DashboardController
from homer_operator.core.errors import HomerOperatorError
from homer_operator.core.k8s_client import K8sClient
from homer_operator.output.formatters import load_dashboard, output_document

app = typer.Typer(context_settings={"allow_interspersed_args": True})


@app.callback(invoke_without_command=True)
def render(
    manifest: Path = ManifestArgument,
    output: str = typer.Option("yaml", "--output", "-o", help="Output format: yaml, json"),
    context: Optional[str] = ContextOption,
) -> None:
    """Discover resources for a Dashboard manifest and print the result."""
    dashboard = load_dashboard(manifest)
    k8s = K8sClient(context=context)
    controller = DashboardController(k8s)
    registry = controller.registry_for(dashboard.key)
    registry.reconcile_connections(dashboard)
    try:
        doc = controller.build_document(dashboard, registry)
    except HomerOperatorError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1)
    output_document(doc, output)
