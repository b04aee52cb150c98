"""
Root Typer application for the ci-spine CLI.
"""

from __future__ import annotations

import typer
from typer import Typer

from cispine import __version__

app = Typer(
    name="cispine",
    help="ci-spine — versioned, reusable CI pipelines.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


# ── Version callback ─────────────────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"ci-spine {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(  # noqa: UP007
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
) -> None:
    """ci-spine CLI — list, plan, and run reusable pipelines."""


# ── Sub-command registration ─────────────────────────────────────────────

from cispine.cli.config import app as config_app  # noqa: E402
from cispine.cli.invoke import plan, run  # noqa: E402
from cispine.cli.pipelines import app as pipelines_app  # noqa: E402
from cispine.cli.version import app as version_app  # noqa: E402

app.add_typer(pipelines_app, name="pipelines", help="Pipeline catalog.")
app.add_typer(version_app, name="version", help="Release version helpers.")
app.add_typer(config_app, name="config", help="Configuration management.")
app.command("plan")(plan)
app.command("run")(run)
