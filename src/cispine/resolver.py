"""Invocation Resolver — turn a caller's invocation into an execution plan.

A caller names a pipeline, a version ref, and a block of parameter values
(the ``with:`` block of a reusable-workflow call). The resolver looks the
definition up in the registry, checks every binding against the schema,
fills in defaults, and returns a frozen :class:`ExecutionPlan`.

Resolution rules, per schema parameter:

1. supplied → type-checked (:class:`ParameterTypeError` on mismatch)
2. not supplied, has default → default
3. otherwise → :class:`MissingParameterError`

Bindings naming parameters the schema does not declare raise
:class:`UnknownParameterError`.

Resolution is pure: the only I/O is the registry lookup, and the plan id
is a hash of the inputs, so identical invocations give identical plans.

Example::

    resolver = InvocationResolver(registry)
    plan = resolver.plan("docker-image", "v1", {"image-name": "org/app"})
    plan.values["python-version"]   # "3.12" (default)
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

from cispine.core.errors import (
    MissingParameterError,
    ParameterTypeError,
    UnknownParameterError,
    ValidationError,
)
from cispine.core.hashing import canonical_json, compute_hash
from cispine.core.logging import get_logger
from cispine.models import (
    ParameterSpec,
    ParameterType,
    PipelineDefinition,
    StageSpec,
    check_type,
    format_value,
    render_template,
)
from cispine.registry import PipelineRegistry

logger = get_logger(__name__)

_TRUE_STRINGS = {"true", "yes", "on", "1"}
_FALSE_STRINGS = {"false", "no", "off", "0"}


@dataclass(frozen=True)
class ParameterBinding:
    """A concrete value bound to one parameter.

    ``source`` records where the value came from: ``"caller"`` or ``"default"``.
    """

    name: str
    value: Any
    source: str = "caller"


@dataclass(frozen=True)
class ExecutionPlan:
    """
    A resolved pipeline: definition snapshot plus fully bound parameters.

    Attributes:
        plan_id: Deterministic hash of pipeline name, version, and values
        definition: The definition as resolved from the registry
        bindings: One binding per schema parameter, in schema order
        stages: Stages that will run, in execution order (``when`` gates applied)
    """

    plan_id: str
    definition: PipelineDefinition
    bindings: tuple[ParameterBinding, ...]
    stages: tuple[StageSpec, ...]
    values: Mapping[str, Any] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "values", MappingProxyType({b.name: b.value for b in self.bindings})
        )

    @property
    def pipeline(self) -> str:
        return self.definition.name

    @property
    def version(self) -> str:
        return self.definition.version

    def stage_names(self) -> list[str]:
        return [s.name for s in self.stages]

    def render_command(self, stage: StageSpec) -> str:
        """The stage's command with ``${{ inputs.<name> }}`` substituted."""
        return render_template(stage.command, self.values)

    def render_image(self, stage: StageSpec) -> str | None:
        """The stage's image override with placeholders substituted, if any."""
        if stage.image is None:
            return None
        return render_template(stage.image, self.values)

    def stage_env(self, stage: StageSpec) -> dict[str, str]:
        """Environment variables exposing the stage's inputs.

        ``python-version`` becomes ``INPUT_PYTHON_VERSION``.
        """
        return {
            "INPUT_" + name.upper().replace("-", "_"): format_value(self.values[name])
            for name in stage.inputs
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            "plan_id": self.plan_id,
            "pipeline": self.pipeline,
            "version": self.version,
            "bindings": {b.name: b.value for b in self.bindings},
            "defaulted": [b.name for b in self.bindings if b.source == "default"],
            "stages": [
                {"name": s.name, "command": self.render_command(s), "on_failure": s.failure_policy.value}
                for s in self.stages
            ],
        }


class InvocationResolver:
    """Validates invocations against the registry and produces plans."""

    def __init__(self, registry: PipelineRegistry) -> None:
        self._registry = registry

    @property
    def registry(self) -> PipelineRegistry:
        return self._registry

    def plan(
        self,
        name: str,
        version_ref: str,
        bindings: Mapping[str, Any] | None = None,
    ) -> ExecutionPlan:
        """
        Resolve an invocation into an :class:`ExecutionPlan`.

        Args:
            name: Pipeline name
            version_ref: Tag, label, or ``latest``
            bindings: Caller-supplied parameter values

        Raises:
            NotFoundError: Unknown pipeline or ref
            UnknownParameterError: Binding for an undeclared parameter
            ParameterTypeError: Binding of the wrong type
            MissingParameterError: Required parameter not bound
        """
        definition = self._registry.resolve(name, version_ref)
        return build_plan(definition, bindings or {})


def build_plan(definition: PipelineDefinition, supplied: Mapping[str, Any]) -> ExecutionPlan:
    """Bind *supplied* values against *definition* (no registry involved)."""
    unknown = [k for k in supplied if k not in definition.parameters]
    if unknown:
        raise UnknownParameterError(unknown, pipeline=definition.name)

    bound: list[ParameterBinding] = []
    for pname, spec in definition.parameters.items():
        if pname in supplied:
            value = supplied[pname]
            if not check_type(spec.type, value):
                raise ParameterTypeError(pname, spec.type.value, value).with_context(
                    pipeline=definition.name
                )
            bound.append(ParameterBinding(pname, value, "caller"))
        elif spec.has_default:
            bound.append(ParameterBinding(pname, spec.default, "default"))
        else:
            raise MissingParameterError(pname, pipeline=definition.name)

    values = {b.name: b.value for b in bound}
    stages = tuple(
        s for s in definition.execution_order()
        if s.when is None or values[s.when] is True
    )

    plan_id = compute_hash(definition.name, definition.version, canonical_json(values))
    plan = ExecutionPlan(plan_id=plan_id, definition=definition, bindings=tuple(bound), stages=stages)

    logger.debug(
        "plan.resolved",
        pipeline=definition.name,
        version_ref=definition.version,
        plan_id=plan_id,
        stage_count=len(stages),
        defaulted=[b.name for b in bound if b.source == "default"],
    )
    return plan


def coerce_value(name: str, spec: ParameterSpec, raw: str) -> Any:
    """Convert a string (from the CLI or a dispatch form) to the declared type."""
    if spec.type == ParameterType.BOOLEAN:
        lowered = raw.strip().lower()
        if lowered in _TRUE_STRINGS:
            return True
        if lowered in _FALSE_STRINGS:
            return False
        raise ParameterTypeError(name, spec.type.value, raw)
    if spec.type == ParameterType.NUMBER:
        try:
            number = float(raw)
        except ValueError as e:
            raise ParameterTypeError(name, spec.type.value, raw) from e
        return int(number) if number.is_integer() and "." not in raw else number
    return raw


def coerce_bindings(definition: PipelineDefinition, raw: Mapping[str, str]) -> dict[str, Any]:
    """Coerce string values to schema types; unknown names pass through unchanged
    so that :func:`build_plan` reports them."""
    coerced: dict[str, Any] = {}
    for key, value in raw.items():
        spec = definition.parameters.get(key)
        coerced[key] = coerce_value(key, spec, value) if spec is not None else value
    return coerced


def parse_assignments(pairs: list[str]) -> dict[str, str]:
    """Parse ``["key=value", ...]`` into a dict.

    Raises:
        ValidationError: If an item has no ``=``.
    """
    result: dict[str, str] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key.strip():
            raise ValidationError(f"Expected key=value, got {pair!r}")
        result[key.strip()] = value
    return result
