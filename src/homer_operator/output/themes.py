"""Connection state colors."""


def styled_connected(connected: bool) -> str:
    if connected:
        return "[green]connected[/green]"
    return "[red bold]disconnected[/red bold]"
