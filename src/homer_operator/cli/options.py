"""Shared CLI options."""

from __future__ import annotations

import typer

OutputOption = typer.Option("table", "--output", "-o", help="Output format: table, json, yaml")
ContextOption = typer.Option(None, "--context", help="Kubernetes context name")
ManifestArgument = typer.Argument(help="Path to a Dashboard manifest (YAML)")
