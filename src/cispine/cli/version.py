"""
CLI: ``cispine version`` — release version helpers.
"""

from __future__ import annotations

import typer

from cispine.cli.utils import cli_errors, load_settings
from cispine.triggers import Event, resolve_release_version

app = typer.Typer(no_args_is_help=True)


@app.command("resolve")
def resolve_version(
    tag: str | None = typer.Argument(None, help="Release tag, e.g. v1.2.3 or refs/tags/v1.2.3"),
    dispatch_version: str | None = typer.Option(None, "--dispatch-version", help="Manual dispatch version input"),
) -> None:
    """Print the release version carried by a tag or dispatch input."""
    if tag is None and dispatch_version is None:
        raise typer.BadParameter("Give a TAG or --dispatch-version")
    event = Event.tag(tag) if tag is not None else Event.dispatch(version=dispatch_version)
    with cli_errors():
        load_settings()
        version = resolve_release_version(event)
    typer.echo(version)
