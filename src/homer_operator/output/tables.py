"""Rich table builders for each command."""

from __future__ import annotations

from rich.table import Table

from homer_operator.models.dashboard import ClusterConnectionStatus
from homer_operator.output.themes import styled_connected


def cluster_status_table(title: str, statuses: list[ClusterConnectionStatus]) -> Table:
    table = Table(title=title, expand=True, show_lines=False)
    table.add_column("Cluster", style="bold white", no_wrap=True)
    table.add_column("State", no_wrap=True)
    table.add_column("Last Connected", style="dim", no_wrap=True)
    table.add_column("Error", style="red", max_width=60)

    for s in statuses:
        last = s.last_connection_time.strftime("%Y-%m-%d %H:%M:%S") if s.last_connection_time else "-"
        table.add_row(s.name, styled_connected(s.connected), last, s.last_error or "")
    return table
