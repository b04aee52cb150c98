"""Pre-stage hooks — pluggable checks that run before a stage's command.

Some callers need a repository-specific precondition before a generic
stage runs; e.g. a models repository that must have its generated sources
in place before the wheel is built. Rather than hard-coding such checks
into a pipeline, callers attach hooks to stage names::

    hooks = HookSet()
    hooks.add("build", require_paths("src/*/models/*.py", workdir="."))
    executor = StageExecutor(backend, hooks=hooks)

A hook is any callable ``hook(plan, stage) -> None``. To reject the stage
it raises :class:`~cispine.core.errors.HookError`; the executor then marks
the stage ``failed`` without running its command, and the stage's failure
policy applies as usual.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Callable
from pathlib import Path
from typing import TYPE_CHECKING

from cispine.core.errors import HookError

if TYPE_CHECKING:
    from cispine.models import StageSpec
    from cispine.resolver import ExecutionPlan

PreStageHook = Callable[["ExecutionPlan", "StageSpec"], None]

ALL_STAGES = "*"


class HookSet:
    """Pre-stage hooks keyed by stage name (``"*"`` applies to every stage)."""

    def __init__(self) -> None:
        self._hooks: dict[str, list[PreStageHook]] = defaultdict(list)

    def add(self, stage: str, hook: PreStageHook) -> HookSet:
        self._hooks[stage].append(hook)
        return self

    def for_stage(self, stage: str) -> list[PreStageHook]:
        """Hooks for *stage*: wildcard hooks first, then stage-specific ones."""
        return [*self._hooks.get(ALL_STAGES, []), *self._hooks.get(stage, [])]

    def run(self, plan: ExecutionPlan, stage: StageSpec) -> None:
        for hook in self.for_stage(stage.name):
            hook(plan, stage)

    def __len__(self) -> int:
        return sum(len(v) for v in self._hooks.values())


def require_paths(*patterns: str, workdir: str = ".") -> PreStageHook:
    """Hook that fails the stage unless every glob pattern matches something.

    Example::

        hooks.add("build", require_paths("src/models/generated/*.py"))
    """
    if not patterns:
        raise ValueError("require_paths needs at least one pattern")

    def _check(plan: ExecutionPlan, stage: StageSpec) -> None:
        root = Path(workdir)
        missing = [p for p in patterns if not any(root.glob(p))]
        if missing:
            raise HookError(
                f"Required path(s) not found for stage '{stage.name}': {', '.join(missing)}",
                stage=stage.name,
            )

    _check.__name__ = f"require_paths({', '.join(patterns)})"
    return _check
