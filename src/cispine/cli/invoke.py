"""
CLI: ``cispine plan`` and ``cispine run`` — invoke a pipeline.
"""

from __future__ import annotations

import typer

from cispine.backends import make_backend
from cispine.cli.utils import (
    build_registry,
    cli_errors,
    console,
    err_console,
    load_settings,
    print_json,
    print_table,
)
from cispine.core.errors import ValidationError
from cispine.executor import ExecutionResult, StageExecutor, StageStatus
from cispine.hooks import HookSet, require_paths
from cispine.resolver import ExecutionPlan, InvocationResolver, coerce_bindings, parse_assignments
from cispine.triggers import Event, resolve_release_version

RELEASE_VERSION_ENV = "CISPINE_VERSION"

_STATUS_STYLE = {
    StageStatus.SUCCEEDED: "green",
    StageStatus.FAILED: "red",
    StageStatus.SKIPPED: "yellow",
}


def _resolve_plan(name: str, ref: str, params: list[str], definitions: str | None) -> ExecutionPlan:
    registry = build_registry(load_settings(), definitions)
    definition = registry.resolve(name, ref)
    values = coerce_bindings(definition, parse_assignments(params))
    return InvocationResolver(registry).plan(name, ref, values)


def _release_env(tag: str | None, dispatch_version: str | None) -> dict[str, str]:
    if tag and dispatch_version:
        raise ValidationError("Give either --tag or --dispatch-version, not both")
    if tag:
        event = Event.tag(tag)
    elif dispatch_version is not None:
        event = Event.dispatch(version=dispatch_version)
    else:
        return {}
    return {RELEASE_VERSION_ENV: resolve_release_version(event)}


def _build_hooks(requirements: list[str], workdir: str) -> HookSet:
    patterns: dict[str, list[str]] = {}
    for item in requirements:
        # One item at a time: a stage may be named more than once.
        for stage, pattern in parse_assignments([item]).items():
            patterns.setdefault(stage, []).append(pattern)
    hooks = HookSet()
    for stage, globs in patterns.items():
        hooks.add(stage, require_paths(*globs, workdir=workdir))
    return hooks


def _print_result(result: ExecutionResult) -> None:
    print_table(
        [
            {
                "stage": s.name,
                "status": f"[{_STATUS_STYLE.get(s.status, 'white')}]{s.status.value}[/]",
                "exit": "-" if s.exit_code is None else s.exit_code,
                "duration": "-" if s.duration_seconds is None else f"{s.duration_seconds:.1f}s",
                "error": s.error or "",
            }
            for s in result.stages
        ],
        title=f"{result.pipeline}@{result.version} ({result.run_id})",
    )
    for key, value in result.outputs.items():
        console.print(f"  [cyan]{key}[/cyan]: {value}")
    style = "green" if result.succeeded else "red"
    console.print(f"[bold {style}]{result.status.value}[/bold {style}]")


def plan(
    name: str = typer.Argument(..., help="Pipeline name"),
    ref: str = typer.Option("v1", "--ref", "-r", help="Tag, label, or 'latest'"),
    params: list[str] = typer.Option([], "--param", "-p", help="Parameter binding key=value"),
    definitions: str | None = typer.Option(None, "--definitions", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Resolve an invocation and show the plan without running it."""
    with cli_errors():
        resolved = _resolve_plan(name, ref, params, definitions)

    if json_out:
        print_json(resolved.to_dict())
        return
    console.print(f"[bold]Plan {resolved.plan_id}[/bold] {resolved.pipeline}@{resolved.version}")
    print_table(
        [{"parameter": b.name, "value": b.value, "source": b.source} for b in resolved.bindings],
        title="Bindings",
    )
    print_table(
        [{"stage": s.name, "command": resolved.render_command(s)} for s in resolved.stages],
        title="Stages",
    )


def run(
    name: str = typer.Argument(..., help="Pipeline name"),
    ref: str = typer.Option("v1", "--ref", "-r", help="Tag, label, or 'latest'"),
    params: list[str] = typer.Option([], "--param", "-p", help="Parameter binding key=value"),
    backend: str | None = typer.Option(None, "--backend", "-b", help="local or docker (default from settings)"),
    timeout: float | None = typer.Option(None, "--timeout", help="Default per-stage timeout in seconds"),
    workdir: str | None = typer.Option(None, "--workdir", "-w"),
    tag: str | None = typer.Option(None, "--tag", help="Release tag that triggered the run, e.g. v1.2.3"),
    dispatch_version: str | None = typer.Option(None, "--dispatch-version", help="Manual dispatch version input"),
    requirements: list[str] = typer.Option([], "--require", help="STAGE=GLOB path that must exist before STAGE"),
    definitions: str | None = typer.Option(None, "--definitions", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Resolve and execute a pipeline."""
    with cli_errors():
        settings = load_settings()
        resolved = _resolve_plan(name, ref, params, definitions)
        env = _release_env(tag, dispatch_version)
        stage_workdir = workdir or settings.workdir
        try:
            executor_backend = make_backend(backend or settings.backend.value, docker_image=settings.docker_image)
        except ValueError as e:
            raise ValidationError(str(e)) from e
        executor = StageExecutor(
            executor_backend,
            hooks=_build_hooks(requirements, stage_workdir),
            default_timeout=timeout or settings.stage_timeout_seconds,
            workdir=stage_workdir,
        )
        result = executor.run(resolved, env=env)

    if json_out:
        print_json(result.to_dict())
    else:
        _print_result(result)
    if not result.succeeded:
        if not json_out:
            err_console.print(f"Stage '{result.error_stage}' failed: {result.error}")
        raise typer.Exit(code=1)
