"""Test helpers — in-memory backends and result assertions.

Lets downstream repositories (and ci-spine's own tests) exercise pipeline
definitions without spawning processes or containers.

Backends
--------
- :class:`StubBackend`: every stage succeeds, optionally emitting outputs.
- :class:`ScriptedBackend`: per-stage :class:`StageOutcome` scripts.

Assertions
----------
- :func:`assert_pipeline_succeeded`
- :func:`assert_pipeline_failed`
- :func:`assert_stage_statuses`

Example::

    from cispine.testing import ScriptedBackend, assert_stage_statuses

    backend = ScriptedBackend({"test": StageOutcome(exit_code=1)})
    result = StageExecutor(backend).run(plan)
    assert_stage_statuses(result, install="succeeded", test="failed")
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from typing import Any

from cispine.backends import StageInvocation, StageOutcome
from cispine.executor import ExecutionResult, PipelineStatus

# ---------------------------------------------------------------------------
# Backends
# ---------------------------------------------------------------------------


class StubBackend:
    """Backend where every stage succeeds.

    Parameters
    ----------
    outputs
        Mapping of ``stage name → outputs`` emitted on success.
    """

    name = "stub"

    def __init__(self, outputs: dict[str, dict[str, str]] | None = None) -> None:
        self._outputs = outputs or {}
        self._lock = threading.Lock()
        self.calls: list[StageInvocation] = []

    def run(self, invocation: StageInvocation, cancel: threading.Event | None = None) -> StageOutcome:
        with self._lock:
            self.calls.append(invocation)
        return StageOutcome(exit_code=0, outputs=dict(self._outputs.get(invocation.stage, {})))

    @property
    def stages_run(self) -> list[str]:
        return [c.stage for c in self.calls]


class ScriptedBackend(StubBackend):
    """Backend that returns pre-configured outcomes per stage.

    A script entry may be a :class:`StageOutcome` or a callable
    ``(invocation, cancel) -> StageOutcome`` for stages that need to
    observe cancellation or inspect the rendered command. Stages without
    a script succeed.
    """

    name = "scripted"

    def __init__(
        self,
        scripts: dict[str, StageOutcome | Callable[[StageInvocation, threading.Event | None], StageOutcome]]
        | None = None,
        outputs: dict[str, dict[str, str]] | None = None,
    ) -> None:
        super().__init__(outputs)
        self._scripts = scripts or {}

    def run(self, invocation: StageInvocation, cancel: threading.Event | None = None) -> StageOutcome:
        script = self._scripts.get(invocation.stage)
        if script is None:
            return super().run(invocation, cancel)
        with self._lock:
            self.calls.append(invocation)
        if callable(script):
            return script(invocation, cancel)
        return script


def failing(exit_code: int = 1, error: str | None = None) -> StageOutcome:
    """Outcome of a command that exited non-zero."""
    return StageOutcome(exit_code=exit_code, error=error or f"Command exited with status {exit_code}")


def timed_out(seconds: float = 1.0) -> StageOutcome:
    """Outcome of a command killed for exceeding its timeout."""
    return StageOutcome(exit_code=-15, timed_out=True, error=f"exceeded timeout of {seconds}s")


# ---------------------------------------------------------------------------
# Assertion helpers
# ---------------------------------------------------------------------------


class PipelineAssertionError(AssertionError):
    """Raised when a pipeline assertion fails; carries the result."""

    def __init__(self, message: str, result: ExecutionResult) -> None:
        self.result = result
        super().__init__(f"{message}\n  Pipeline: {result.pipeline}\n  Status: {result.status.value}")


def assert_pipeline_succeeded(result: ExecutionResult) -> None:
    if result.status != PipelineStatus.SUCCEEDED:
        raise PipelineAssertionError(
            f"Expected succeeded, got {result.status.value}"
            + (f" (error at '{result.error_stage}': {result.error})" if result.error else ""),
            result,
        )


def assert_pipeline_failed(result: ExecutionResult, stage: str | None = None) -> None:
    """Assert the pipeline failed, optionally at a specific stage."""
    if result.status != PipelineStatus.FAILED:
        raise PipelineAssertionError(f"Expected failed, got {result.status.value}", result)
    if stage is not None and result.error_stage != stage:
        raise PipelineAssertionError(f"Expected failure at '{stage}', got '{result.error_stage}'", result)


def assert_stage_statuses(result: ExecutionResult, **expected: Any) -> None:
    """Assert stage statuses by name.

    Stage names with hyphens can be passed through a dict:
    ``assert_stage_statuses(result, **{"build-and-push": "skipped"})``.
    """
    actual = {name: status.value for name, status in result.stage_statuses().items()}
    wanted = {name: getattr(status, "value", status) for name, status in expected.items()}
    mismatched = {k: (v, actual.get(k)) for k, v in wanted.items() if actual.get(k) != v}
    if mismatched:
        detail = ", ".join(f"{k}: expected {e}, got {a}" for k, (e, a) in mismatched.items())
        raise PipelineAssertionError(f"Stage status mismatch: {detail}", result)
