"""Stage Executor — runs a resolved plan's stages on an execution backend.

The executor takes an :class:`~cispine.resolver.ExecutionPlan` and runs
its stages one at a time, in plan order, on a single logical track. It
only sequences, captures exit status, and records declared outputs; what a
stage actually does is up to the :class:`~cispine.backends.ExecutionBackend`.

Per-stage state machine::

    pending ──► running ──► succeeded
       │           └──────► failed
       └──────► skipped            (an earlier stage aborted the pipeline,
                                    or the run was cancelled)

Failure handling:

- ``abort-pipeline``: every later stage becomes ``skipped`` and never runs;
  the pipeline ends ``failed``.
- ``continue``: the failure is recorded and the next stage runs; the
  pipeline still ends ``failed``.
- A stage exceeding its timeout is a failure like any other.
- Cancelling via the ``cancel`` event terminates the running stage, marks
  every non-terminal stage ``skipped``, and ends the pipeline ``aborted``.

Independent plans share nothing but the backend, so :meth:`run_many` can
execute them concurrently.

Example::

    executor = StageExecutor(LocalBackend(), default_timeout=600)
    result = executor.run(plan)

    if result.status == PipelineStatus.SUCCEEDED:
        print(result.outputs["digest"])
    else:
        print(f"Failed at {result.error_stage}: {result.error}")
"""

from __future__ import annotations

import threading
import uuid
from collections.abc import Iterable, Mapping
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from cispine.backends import ExecutionBackend, StageInvocation, StageOutcome
from cispine.core.config import get_settings
from cispine.core.errors import ExecutionError, HookError
from cispine.core.logging import LogContext, get_logger
from cispine.hooks import HookSet
from cispine.models import FailurePolicy, StageSpec
from cispine.resolver import ExecutionPlan

logger = get_logger(__name__)


class StageStatus(str, Enum):
    """Lifecycle status of one stage."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"

    @property
    def is_terminal(self) -> bool:
        return self in (StageStatus.SUCCEEDED, StageStatus.FAILED, StageStatus.SKIPPED)


class PipelineStatus(str, Enum):
    """Overall outcome of a plan execution."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"
    ABORTED = "aborted"  # Externally cancelled


_TRANSITIONS: dict[StageStatus, frozenset[StageStatus]] = {
    StageStatus.PENDING: frozenset({StageStatus.RUNNING, StageStatus.SKIPPED}),
    # running -> skipped only on cancellation
    StageStatus.RUNNING: frozenset({StageStatus.SUCCEEDED, StageStatus.FAILED, StageStatus.SKIPPED}),
}


@dataclass
class StageResult:
    """Result of one stage."""

    name: str
    failure_policy: FailurePolicy = FailurePolicy.ABORT_PIPELINE
    status: StageStatus = StageStatus.PENDING
    exit_code: int | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    outputs: dict[str, str] = field(default_factory=dict)
    error: str | None = None
    timed_out: bool = False
    log: str = ""

    def transition(self, new_status: StageStatus) -> None:
        """Move to *new_status*, enforcing the stage state machine."""
        allowed = _TRANSITIONS.get(self.status, frozenset())
        if new_status not in allowed:
            raise ExecutionError(
                f"Illegal stage transition {self.status.value} -> {new_status.value}"
            ).with_context(stage=self.name)
        self.status = new_status

    @property
    def duration_seconds(self) -> float | None:
        if self.started_at and self.completed_at:
            return (self.completed_at - self.started_at).total_seconds()
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "status": self.status.value,
            "failure_policy": self.failure_policy.value,
            "exit_code": self.exit_code,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "duration_seconds": self.duration_seconds,
            "outputs": dict(self.outputs),
            "error": self.error,
            "timed_out": self.timed_out,
        }


@dataclass
class ExecutionResult:
    """Result of executing a plan."""

    plan_id: str
    pipeline: str
    version: str
    run_id: str
    status: PipelineStatus
    stages: list[StageResult]
    started_at: datetime
    completed_at: datetime | None = None
    outputs: dict[str, str] = field(default_factory=dict)
    error_stage: str | None = None
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.status == PipelineStatus.SUCCEEDED

    @property
    def duration_seconds(self) -> float | None:
        if self.completed_at:
            return (self.completed_at - self.started_at).total_seconds()
        return None

    def stage(self, name: str) -> StageResult:
        for result in self.stages:
            if result.name == name:
                return result
        raise KeyError(name)

    def stage_statuses(self) -> dict[str, StageStatus]:
        return {s.name: s.status for s in self.stages}

    def _names_with(self, status: StageStatus) -> list[str]:
        return [s.name for s in self.stages if s.status == status]

    @property
    def succeeded_stages(self) -> list[str]:
        return self._names_with(StageStatus.SUCCEEDED)

    @property
    def failed_stages(self) -> list[str]:
        return self._names_with(StageStatus.FAILED)

    @property
    def skipped_stages(self) -> list[str]:
        return self._names_with(StageStatus.SKIPPED)

    def to_dict(self) -> dict[str, Any]:
        return {
            "plan_id": self.plan_id,
            "pipeline": self.pipeline,
            "version": self.version,
            "run_id": self.run_id,
            "status": self.status.value,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "duration_seconds": self.duration_seconds,
            "outputs": dict(self.outputs),
            "error_stage": self.error_stage,
            "error": self.error,
            "stages": [s.to_dict() for s in self.stages],
        }


class StageExecutor:
    """Runs execution plans stage by stage on a backend."""

    def __init__(
        self,
        backend: ExecutionBackend,
        *,
        hooks: HookSet | None = None,
        default_timeout: float | None = None,
        workdir: str = ".",
    ) -> None:
        """Initialise the executor.

        Args:
            backend: Where stage commands run.
            hooks: Pre-stage hooks.
            default_timeout: Timeout for stages that declare none.
            workdir: Directory stage commands run in.
        """
        self._backend = backend
        self._hooks = hooks or HookSet()
        self._default_timeout = default_timeout
        self._workdir = workdir

    @property
    def backend(self) -> ExecutionBackend:
        return self._backend

    def run(
        self,
        plan: ExecutionPlan,
        *,
        cancel: threading.Event | None = None,
        env: Mapping[str, str] | None = None,
    ) -> ExecutionResult:
        """
        Execute every stage of *plan* in order.

        Args:
            plan: The resolved plan
            cancel: Set this event from another thread to abort the run
            env: Extra environment variables for every stage (e.g. CISPINE_VERSION)

        Returns:
            ExecutionResult with per-stage status and overall outcome
        """
        run_id = uuid.uuid4().hex[:12]
        started_at = datetime.now(UTC)
        results = [StageResult(name=s.name, failure_policy=s.failure_policy) for s in plan.stages]

        failed = False
        halted = False
        aborted = False
        error_stage: str | None = None
        error_msg: str | None = None

        with LogContext(pipeline=plan.pipeline, plan_id=plan.plan_id, run_id=run_id):
            logger.info(
                "pipeline.start",
                version_ref=plan.version,
                stage_count=len(plan.stages),
                backend=getattr(self._backend, "name", type(self._backend).__name__),
            )

            for stage, result in zip(plan.stages, results):
                if cancel is not None and cancel.is_set():
                    aborted = True
                    break

                outcome = self._execute_stage(plan, stage, result, run_id, cancel, env)

                if outcome.cancelled:
                    result.transition(StageStatus.SKIPPED)
                    aborted = True
                    break

                if outcome.succeeded:
                    result.transition(StageStatus.SUCCEEDED)
                    result.outputs = {k: v for k, v in outcome.outputs.items() if k in stage.outputs}
                else:
                    result.transition(StageStatus.FAILED)
                    result.error = outcome.error or "Stage failed"
                    failed = True
                    if error_stage is None:
                        error_stage, error_msg = stage.name, result.error
                    if stage.failure_policy == FailurePolicy.ABORT_PIPELINE:
                        halted = True
                        logger.warning("pipeline.halted", stage=stage.name, error=result.error)
                        break

            for result in results:
                if not result.status.is_terminal:
                    result.transition(StageStatus.SKIPPED)

            if aborted:
                status = PipelineStatus.ABORTED
                error_msg = error_msg or "Cancelled"
            elif failed:
                status = PipelineStatus.FAILED
            else:
                status = PipelineStatus.SUCCEEDED

            completed_at = datetime.now(UTC)
            outputs = self._pipeline_outputs(plan, results)

            logger.info(
                "pipeline.complete",
                status=status.value,
                halted=halted,
                duration_seconds=(completed_at - started_at).total_seconds(),
                succeeded=sum(1 for r in results if r.status == StageStatus.SUCCEEDED),
                failed=sum(1 for r in results if r.status == StageStatus.FAILED),
                skipped=sum(1 for r in results if r.status == StageStatus.SKIPPED),
            )

        return ExecutionResult(
            plan_id=plan.plan_id,
            pipeline=plan.pipeline,
            version=plan.version,
            run_id=run_id,
            status=status,
            stages=results,
            started_at=started_at,
            completed_at=completed_at,
            outputs=outputs,
            error_stage=error_stage,
            error=error_msg,
        )

    def run_many(
        self,
        plans: Iterable[ExecutionPlan],
        *,
        max_workers: int | None = None,
        cancel: threading.Event | None = None,
        env: Mapping[str, str] | None = None,
    ) -> list[ExecutionResult]:
        """Run independent plans concurrently; results keep the input order.

        *max_workers* defaults to the ``max_concurrent_runs`` setting.
        """
        plans = list(plans)
        if not plans:
            return []
        if max_workers is None:
            max_workers = get_settings().max_concurrent_runs
        with ThreadPoolExecutor(max_workers=max_workers) as pool:
            return list(pool.map(lambda p: self.run(p, cancel=cancel, env=env), plans))

    def _execute_stage(
        self,
        plan: ExecutionPlan,
        stage: StageSpec,
        result: StageResult,
        run_id: str,
        cancel: threading.Event | None,
        env: Mapping[str, str] | None,
    ) -> StageOutcome:
        """Run hooks then the stage command; record timings and exit status."""
        result.transition(StageStatus.RUNNING)
        result.started_at = datetime.now(UTC)
        logger.debug("stage.start", stage=stage.name)

        invocation = StageInvocation(
            stage=stage.name,
            command=plan.render_command(stage),
            env={**(env or {}), **plan.stage_env(stage)},
            workdir=self._workdir,
            timeout_seconds=stage.timeout_seconds or self._default_timeout,
            image=plan.render_image(stage),
            plan_id=plan.plan_id,
            run_id=run_id,
        )

        try:
            self._hooks.run(plan, stage)
            outcome = self._backend.run(invocation, cancel)
        except HookError as e:
            logger.warning("stage.hook_rejected", stage=stage.name, error=e.message)
            outcome = StageOutcome(exit_code=None, error=e.message)
        except Exception as e:
            logger.exception("stage.exception", stage=stage.name, error=str(e))
            outcome = StageOutcome(exit_code=None, error=f"{type(e).__name__}: {e}")

        result.completed_at = datetime.now(UTC)
        result.exit_code = outcome.exit_code
        result.timed_out = outcome.timed_out
        result.log = outcome.log

        logger.debug(
            "stage.complete",
            stage=stage.name,
            exit_code=outcome.exit_code,
            succeeded=outcome.succeeded,
            timed_out=outcome.timed_out,
            cancelled=outcome.cancelled,
            duration_seconds=result.duration_seconds,
        )
        return outcome

    @staticmethod
    def _pipeline_outputs(plan: ExecutionPlan, results: list[StageResult]) -> dict[str, str]:
        by_name = {r.name: r for r in results}
        outputs: dict[str, str] = {}
        for out_name, source in plan.definition.outputs.items():
            stage_name, _, stage_output = source.partition(".")
            stage_result = by_name.get(stage_name)
            if stage_result is not None and stage_output in stage_result.outputs:
                outputs[out_name] = stage_result.outputs[stage_output]
        return outputs
