"""Table / JSON / YAML output dispatch."""

from __future__ import annotations

import json
from pathlib import Path

import typer
import yaml
from rich.console import Console

from homer_operator.models.dashboard import ClusterConnectionStatus, Dashboard
from homer_operator.models.document import ConfigDocument, render_document
from homer_operator.utils.manifest_parser import first_dashboard

console = Console()


def load_dashboard(path: Path) -> Dashboard:
    try:
        return first_dashboard(path.read_text())
    except (OSError, ValueError) as e:
        typer.echo(f"Cannot load {path}: {e}", err=True)
        raise typer.Exit(code=1)


def output_document(doc: ConfigDocument, fmt: str) -> None:
    if fmt == "json":
        console.print_json(json.dumps(doc.to_dict(), indent=2, default=str))
    else:
        # plain print keeps rich markup out of the YAML
        print(render_document(doc), end="")


def output_cluster_statuses(dashboard: Dashboard, statuses: list[ClusterConnectionStatus], fmt: str) -> None:
    if fmt == "json":
        data = [s.to_dict() for s in statuses]
        console.print_json(json.dumps(data, indent=2))
    elif fmt == "yaml":
        data = [s.to_dict() for s in statuses]
        console.print(yaml.dump(data, default_flow_style=False))
    elif not statuses:
        console.print(f"[dim]Dashboard {dashboard.key} declares no remote clusters.[/dim]")
    else:
        from homer_operator.output.tables import cluster_status_table
        console.print(cluster_status_table(f"Clusters: {dashboard.key}", statuses))
