"""
CLI utility helpers — registry bootstrap, error handling and output.
"""

from __future__ import annotations

import json
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

import pydantic
import typer
from rich.console import Console
from rich.table import Table

from cispine.catalog import register_catalog
from cispine.core.config import CiSpineSettings, get_settings
from cispine.core.errors import ConfigError, SpineError
from cispine.core.logging import configure_logging
from cispine.loader import load_directory
from cispine.registry import PipelineRegistry

console = Console()
err_console = Console(stderr=True)


# ── Bootstrap ────────────────────────────────────────────────────────────


def load_settings() -> CiSpineSettings:
    """Read settings and configure logging from them.

    Raises:
        ConfigError: If a ``CISPINE_*`` value or env file entry is invalid.
    """
    try:
        settings = get_settings()
    except pydantic.ValidationError as e:
        raise ConfigError(f"Invalid settings: {e}", cause=e) from e
    configure_logging(level=settings.log_level, json_format=settings.json_logs)
    return settings


def build_registry(settings: CiSpineSettings, definitions_dir: str | None = None) -> PipelineRegistry:
    """A fresh registry holding the built-in catalog plus any YAML definitions."""
    registry = PipelineRegistry()
    if settings.load_builtin_catalog:
        register_catalog(registry)
    directory = definitions_dir or settings.definitions_dir
    if directory:
        load_directory(registry, Path(directory))
    return registry


@contextmanager
def cli_errors() -> Iterator[None]:
    """Render :class:`SpineError` as a one-line message and exit 1."""
    try:
        yield
    except SpineError as e:
        err_console.print(f"[bold red]Error[/bold red] ({e.category.value}): {e.message}")
        raise typer.Exit(code=1) from e


# ── Output helpers ───────────────────────────────────────────────────────


def print_json(payload: Any) -> None:
    console.print_json(json.dumps(payload, default=str))


def print_table(rows: list[dict[str, Any]], *, title: str = "") -> None:
    """Render a list of dicts as a Rich table."""
    if not rows:
        console.print("[dim]No items.[/dim]")
        return
    table = Table(title=title or None, show_lines=False, pad_edge=False)
    for col in rows[0]:
        table.add_column(col, overflow="fold")
    for row in rows:
        table.add_row(*(str(v) for v in row.values()))
    console.print(table)


def print_dict(data: dict[str, Any], *, title: str = "") -> None:
    """Render a single dict as key-value pairs."""
    if title:
        console.print(f"[bold]{title}[/bold]")
    for k, v in data.items():
        console.print(f"  [cyan]{k}[/cyan]: {v}")
