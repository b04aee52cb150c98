"""
CLI: ``cispine config`` — configuration inspection.
"""

from __future__ import annotations

import typer

from cispine.cli.utils import console

app = typer.Typer(no_args_is_help=True)


@app.command("show")
def show_config(
    format: str = typer.Option("table", "--format", "-f", help="Output format: table, json, env"),
) -> None:
    """Show current configuration."""
    from cispine.core.config import get_settings

    try:
        settings = get_settings(_force_reload=True)
    except ValueError as e:
        console.print(f"[red]Configuration Error:[/red] {e}")
        raise typer.Exit(code=1) from e

    if format == "json":
        console.print_json(settings.model_dump_json())
        return

    values = settings.model_dump(mode="json")
    if format == "env":
        for key, value in sorted(values.items()):
            typer.echo(f"CISPINE_{key.upper()}={'' if value is None else value}")
        return

    from rich.table import Table

    table = Table(title="Settings")
    table.add_column("Setting")
    table.add_column("Value")
    for key, value in sorted(values.items()):
        table.add_row(key, str(value))
    console.print(table)
