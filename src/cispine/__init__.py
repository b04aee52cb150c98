"""
ci-spine - versioned, reusable CI pipelines.

Caller repositories invoke centrally-defined pipelines by name and version
ref with a block of typed parameters:

- :mod:`cispine.registry`: publish and resolve versioned definitions
- :mod:`cispine.resolver`: bind parameters into an execution plan
- :mod:`cispine.executor`: run a plan stage by stage on a backend
"""

__version__ = "0.1.0"

from cispine.core.errors import SpineError  # noqa: E402
from cispine.executor import ExecutionResult, PipelineStatus, StageExecutor, StageStatus  # noqa: E402
from cispine.models import (  # noqa: E402
    FailurePolicy,
    ParameterSpec,
    ParameterType,
    PipelineDefinition,
    StageSpec,
)
from cispine.registry import PipelineRegistry, get_registry, reset_registry  # noqa: E402
from cispine.resolver import ExecutionPlan, InvocationResolver  # noqa: E402

__all__ = [
    "__version__",
    "ExecutionPlan",
    "ExecutionResult",
    "FailurePolicy",
    "InvocationResolver",
    "ParameterSpec",
    "ParameterType",
    "PipelineDefinition",
    "PipelineRegistry",
    "PipelineStatus",
    "SpineError",
    "StageExecutor",
    "StageSpec",
    "StageStatus",
    "get_registry",
    "reset_registry",
]
