"""
CLI: ``cispine pipelines`` — browse and validate pipeline definitions.
"""

from __future__ import annotations

from pathlib import Path

import typer

from cispine.cli.utils import (
    build_registry,
    cli_errors,
    console,
    err_console,
    load_settings,
    print_dict,
    print_json,
    print_table,
)
from cispine.core.errors import SpineError
from cispine.loader import dump_definition, load_file
from cispine.triggers import Event, matching_pipelines

app = typer.Typer(no_args_is_help=True)


@app.command("list")
def list_pipelines(
    definitions: str | None = typer.Option(None, "--definitions", "-d", help="Extra YAML definitions directory"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """List published pipelines and their version refs."""
    with cli_errors():
        registry = build_registry(load_settings(), definitions)
        rows = [
            {"name": name, "versions": ", ".join(registry.list_versions(name))}
            for name in registry.list_pipelines()
        ]
    if json_out:
        print_json(rows)
        return
    print_table(rows, title="Pipelines")


@app.command("show")
def show_pipeline(
    name: str = typer.Argument(..., help="Pipeline name"),
    ref: str = typer.Option("latest", "--ref", "-r", help="Tag, label, or 'latest'"),
    definitions: str | None = typer.Option(None, "--definitions", "-d"),
    yaml_out: bool = typer.Option(False, "--yaml", help="Print as a YAML pipeline document"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Show a pipeline's parameters and stages."""
    with cli_errors():
        registry = build_registry(load_settings(), definitions)
        definition = registry.resolve(name, ref)

    if yaml_out:
        typer.echo(dump_definition(definition), nl=False)
        return
    if json_out:
        print_json(definition.to_dict())
        return

    print_dict(
        {"version": definition.version, "description": definition.description or "-"},
        title=f"Pipeline: {definition.name}",
    )
    print_table(
        [
            {
                "parameter": pname,
                "type": spec.type.value,
                "required": spec.required,
                "default": "-" if not spec.has_default else spec.default,
            }
            for pname, spec in definition.parameters.items()
        ],
        title="Parameters",
    )
    print_table(
        [
            {
                "stage": stage.name,
                "needs": ", ".join(stage.needs) or "-",
                "when": stage.when or "-",
                "on_failure": stage.failure_policy.value,
                "outputs": ", ".join(stage.outputs) or "-",
            }
            for stage in definition.execution_order()
        ],
        title="Stages",
    )


@app.command("validate")
def validate_definitions(
    paths: list[Path] = typer.Argument(..., help="Pipeline YAML files"),
) -> None:
    """Validate pipeline YAML files without publishing them."""
    failed = 0
    for path in paths:
        try:
            definition, versions = load_file(path)
        except (SpineError, OSError) as e:
            failed += 1
            message = e.message if isinstance(e, SpineError) else str(e)
            err_console.print(f"[red]✗[/red] {path}: {message}")
            continue
        refs = ", ".join(versions) or "-"
        console.print(f"[green]✓[/green] {path}: {definition.name} ({len(definition.stages)} stages, versions: {refs})")
    if failed:
        raise typer.Exit(code=1)


@app.command("triggered")
def triggered_pipelines(
    ref: str = typer.Option("main", "--ref", "-r", help="Version ref to consider"),
    git_ref: str | None = typer.Option(None, "--git-ref", help="Branch or refs/tags/... the event concerns"),
    pull_request: str | None = typer.Option(None, "--pull-request", help="Target branch of a pull request"),
    dispatch_version: str | None = typer.Option(None, "--dispatch-version", help="Manual dispatch version input"),
    definitions: str | None = typer.Option(None, "--definitions", "-d"),
) -> None:
    """List pipelines whose triggers fire for an event."""
    if pull_request is not None:
        event = Event.pull_request(pull_request)
    elif dispatch_version is not None:
        event = Event.dispatch(version=dispatch_version)
    elif git_ref is not None:
        event = Event.from_ref(git_ref)
    else:
        err_console.print("[red]Give one of --git-ref, --pull-request, --dispatch-version[/red]")
        raise typer.Exit(code=2)

    with cli_errors():
        registry = build_registry(load_settings(), definitions)
        matched = matching_pipelines(registry, ref, event)
    for definition in matched:
        console.print(definition.name)
