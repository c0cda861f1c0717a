"""Root Typer application, mounts sub-commands."""

from __future__ import annotations

import logging

import typer
from rich.console import Console
from rich.logging import RichHandler

app = typer.Typer(
    name="homer-op",
    help="Homer Operator - Build Homer dashboards from cluster resources.",
    no_args_is_help=True,
)


@app.callback()
def _configure(
    log_level: str = typer.Option("INFO", "--log-level", "-l", help="Log level: DEBUG, INFO, WARNING, ERROR"),
) -> None:
    logging.basicConfig(
        level=log_level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), rich_tracebacks=True, show_path=False)],
    )
    # the client logs every request at DEBUG
    logging.getLogger("kubernetes").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)


def _register_commands() -> None:
    from homer_operator.cli.commands.run_cmd import app as run_app
    from homer_operator.cli.commands.render_cmd import app as render_app
    from homer_operator.cli.commands.clusters_cmd import app as clusters_app

    app.add_typer(run_app, name="run", help="Run the controller")
    app.add_typer(render_app, name="render", help="Render a dashboard document without writing it")
    app.add_typer(clusters_app, name="clusters", help="Show remote cluster connection status")


_register_commands()


def main() -> None:
    app()
