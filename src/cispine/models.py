"""Pipeline data model — parameter schema, stages, definitions.

A :class:`PipelineDefinition` is the blueprint of a reusable pipeline. It
declares **what** a caller may pass (its :class:`ParameterSpec` schema) and
**which** stages run in which order, but never **how** a stage runs (that
is the backend's job, see :mod:`cispine.backends`).

ARCHITECTURE
────────────
::

    PipelineDefinition     ── frozen; validated on construction
      ├── parameters{}       ── name → ParameterSpec(type, default, required)
      ├── stages[]           ── ordered StageSpec (command template, inputs,
      │                         outputs, failure policy, timeout, needs)
      ├── triggers[]         ── events the pipeline reacts to
      └── outputs{}          ── pipeline output → "stage.output"

Stage commands reference parameters with ``${{ inputs.<name> }}``; every
referenced name must be one of the stage's declared inputs, and every input
must be a declared parameter.

Example::

    definition = PipelineDefinition(
        name="docker-image",
        parameters={
            "python-version": ParameterSpec(ParameterType.STRING, default="3.12"),
            "image-name": ParameterSpec(ParameterType.STRING, required=True),
        },
        stages=[
            StageSpec("test", "pytest", inputs=()),
            StageSpec(
                "build-and-push",
                "docker build -t ${{ inputs.image-name }} .",
                inputs=("image-name",),
                outputs=("digest",),
                needs=("test",),
            ),
        ],
    )
"""

from __future__ import annotations

import re
from collections import defaultdict, deque
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from enum import Enum
from types import MappingProxyType
from typing import Any

from cispine.core.errors import ValidationError

_NAME_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")
_TEMPLATE_RE = re.compile(r"\$\{\{\s*inputs\.(?P<name>[A-Za-z0-9_-]+)\s*\}\}")


class ParameterType(str, Enum):
    """Type of a pipeline parameter."""

    BOOLEAN = "boolean"
    STRING = "string"
    NUMBER = "number"


class FailurePolicy(str, Enum):
    """What happens to the rest of the pipeline when a stage fails."""

    ABORT_PIPELINE = "abort-pipeline"  # Skip every later stage (default)
    CONTINUE = "continue"  # Record the failure, keep going


class TriggerEvent(str, Enum):
    """Events that can start a pipeline."""

    PUSH = "push"
    PULL_REQUEST = "pull_request"
    TAG = "tag"
    DISPATCH = "dispatch"


def _enum_value(enum_cls: type[Enum], value: Any, what: str) -> Any:
    """Convert *value* to *enum_cls*, raising :class:`ValidationError` if unknown."""
    try:
        return enum_cls(value)
    except ValueError as e:
        allowed = ", ".join(m.value for m in enum_cls)
        raise ValidationError(f"Unknown {what} {value!r} (expected one of: {allowed})") from e


def check_type(ptype: ParameterType, value: Any) -> bool:
    """Return ``True`` if *value* is a valid instance of *ptype*.

    ``bool`` is not accepted as a number even though it subclasses ``int``.
    """
    if ptype == ParameterType.BOOLEAN:
        return isinstance(value, bool)
    if ptype == ParameterType.NUMBER:
        return isinstance(value, (int, float)) and not isinstance(value, bool)
    return isinstance(value, str)


def template_references(command: str) -> list[str]:
    """Names referenced as ``${{ inputs.<name> }}`` in *command*, in order."""
    return [m.group("name") for m in _TEMPLATE_RE.finditer(command)]


def render_template(command: str, values: Mapping[str, Any]) -> str:
    """Substitute ``${{ inputs.<name> }}`` references from *values*."""

    def _sub(match: re.Match[str]) -> str:
        return format_value(values[match.group("name")])

    return _TEMPLATE_RE.sub(_sub, command)


def format_value(value: Any) -> str:
    """Render a bound value the way it appears in a command or env var."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return ""
    return str(value)


@dataclass(frozen=True)
class ParameterSpec:
    """
    Schema entry for one parameter.

    Attributes:
        type: boolean, string, or number
        default: Value used when the caller supplies none
        required: Caller must supply a value (mutually exclusive with default)
        description: Human-readable help text
    """

    type: ParameterType = ParameterType.STRING
    default: Any = None
    required: bool = False
    description: str = ""

    def __post_init__(self) -> None:
        object.__setattr__(self, "type", _enum_value(ParameterType, self.type, "parameter type"))
        if self.required and self.default is not None:
            raise ValidationError("A required parameter cannot declare a default")
        if self.default is not None and not check_type(self.type, self.default):
            raise ValidationError(f"Default {self.default!r} is not a valid {self.type.value}")

    @property
    def has_default(self) -> bool:
        return self.default is not None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"type": self.type.value}
        if self.required:
            result["required"] = True
        if self.has_default:
            result["default"] = self.default
        if self.description:
            result["description"] = self.description
        return result


@dataclass(frozen=True)
class StageSpec:
    """
    One ordered unit of work within a pipeline.

    Attributes:
        name: Unique stage name within the pipeline
        command: Shell command template (``${{ inputs.<name> }}`` placeholders)
        inputs: Parameters the stage consumes (subset of the schema)
        outputs: Named outputs the stage may emit
        failure_policy: abort-pipeline (default) or continue
        timeout_seconds: Per-stage timeout; ``None`` uses the configured default
        needs: Earlier stages this stage depends on
        when: Boolean parameter gating the stage; the stage is left out of
            the plan when the bound value is false
        image: Container image override for container backends (may use
            ${{ inputs.<name> }} placeholders)
        description: Human-readable description
    """

    name: str
    command: str
    inputs: tuple[str, ...] = ()
    outputs: tuple[str, ...] = ()
    failure_policy: FailurePolicy = FailurePolicy.ABORT_PIPELINE
    timeout_seconds: float | None = None
    needs: tuple[str, ...] = ()
    when: str | None = None
    image: str | None = None
    description: str = ""

    def __post_init__(self) -> None:
        object.__setattr__(self, "inputs", tuple(self.inputs))
        object.__setattr__(self, "outputs", tuple(self.outputs))
        object.__setattr__(self, "needs", tuple(self.needs))
        object.__setattr__(self, "failure_policy", _enum_value(FailurePolicy, self.failure_policy, "failure policy"))

        if not self.name or not _NAME_RE.match(self.name):
            raise ValidationError(f"Invalid stage name: {self.name!r}")
        if self.timeout_seconds is not None and self.timeout_seconds <= 0:
            raise ValidationError(f"Stage '{self.name}' timeout must be positive")
        if len(set(self.outputs)) != len(self.outputs):
            raise ValidationError(f"Stage '{self.name}' declares duplicate outputs")

        referenced = template_references(self.command) + template_references(self.image or "")
        undeclared = [r for r in referenced if r not in self.inputs]
        if undeclared:
            raise ValidationError(
                f"Stage '{self.name}' references undeclared input(s): "
                f"{', '.join(sorted(set(undeclared)))}"
            ).with_context(stage=self.name)

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"name": self.name, "run": self.command}
        if self.inputs:
            result["inputs"] = list(self.inputs)
        if self.outputs:
            result["outputs"] = list(self.outputs)
        if self.failure_policy != FailurePolicy.ABORT_PIPELINE:
            result["on_failure"] = self.failure_policy.value
        if self.timeout_seconds is not None:
            result["timeout_seconds"] = self.timeout_seconds
        if self.needs:
            result["needs"] = list(self.needs)
        if self.when:
            result["when"] = self.when
        if self.image:
            result["image"] = self.image
        if self.description:
            result["description"] = self.description
        return result


@dataclass(frozen=True)
class TriggerSpec:
    """
    An event the pipeline reacts to.

    Attributes:
        event: push, pull_request, tag, or dispatch
        branches: Branch names for push/pull_request (empty = any)
        tags: Glob patterns for tag pushes (e.g. ``v*.*.*``)
        inputs: Inputs a manual dispatch must provide
    """

    event: TriggerEvent
    branches: tuple[str, ...] = ()
    tags: tuple[str, ...] = ()
    inputs: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "event", _enum_value(TriggerEvent, self.event, "trigger event"))
        object.__setattr__(self, "branches", tuple(self.branches))
        object.__setattr__(self, "tags", tuple(self.tags))
        object.__setattr__(self, "inputs", tuple(self.inputs))

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"event": self.event.value}
        if self.branches:
            result["branches"] = list(self.branches)
        if self.tags:
            result["tags"] = list(self.tags)
        if self.inputs:
            result["inputs"] = list(self.inputs)
        return result


@dataclass(frozen=True)
class PipelineDefinition:
    """
    A named, versioned pipeline.

    Attributes:
        name: Pipeline identifier (e.g. "docker-image")
        stages: Ordered stages
        parameters: Parameter schema (name → ParameterSpec)
        version: Version reference it was published under ("" until published)
        description: Human-readable description
        triggers: Events the pipeline reacts to
        outputs: Pipeline outputs mapped to ``"<stage>.<output>"``
    """

    name: str
    stages: tuple[StageSpec, ...]
    parameters: Mapping[str, ParameterSpec] = field(default_factory=dict)
    version: str = ""
    description: str = ""
    triggers: tuple[TriggerSpec, ...] = ()
    outputs: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "stages", tuple(self.stages))
        object.__setattr__(self, "triggers", tuple(self.triggers))
        object.__setattr__(self, "parameters", MappingProxyType(dict(self.parameters)))
        object.__setattr__(self, "outputs", MappingProxyType(dict(self.outputs)))

        if not self.name or not _NAME_RE.match(self.name):
            raise ValidationError(f"Invalid pipeline name: {self.name!r}")
        try:
            self._validate_stages()
            self._validate_needs()
            self._validate_outputs()
        except ValidationError as e:
            e.with_context(pipeline=self.name)
            raise

    def _validate_stages(self) -> None:
        """Stage names are unique; inputs and gates name declared parameters."""
        seen: set[str] = set()
        for stage in self.stages:
            if stage.name in seen:
                raise ValidationError(f"Duplicate stage name: {stage.name}")
            seen.add(stage.name)

            undeclared = [i for i in stage.inputs if i not in self.parameters]
            if undeclared:
                raise ValidationError(
                    f"Stage '{stage.name}' references undeclared parameter(s): "
                    f"{', '.join(undeclared)}"
                ).with_context(stage=stage.name)

            if stage.when is not None:
                gate = self.parameters.get(stage.when)
                if gate is None or gate.type != ParameterType.BOOLEAN:
                    raise ValidationError(
                        f"Stage '{stage.name}' is gated on '{stage.when}', "
                        "which is not a declared boolean parameter"
                    ).with_context(stage=stage.name)

    def _validate_needs(self) -> None:
        """``needs`` name known stages and form an acyclic graph (Kahn's algorithm)."""
        names = {s.name for s in self.stages}
        for stage in self.stages:
            for dep in stage.needs:
                if dep == stage.name:
                    raise ValidationError(f"Stage '{stage.name}' needs itself")
                if dep not in names:
                    raise ValidationError(f"Stage '{stage.name}' needs unknown stage: '{dep}'")

        if len(self._topological_names()) != len(self.stages):
            raise ValidationError("Dependency cycle detected among stages")

    def _validate_outputs(self) -> None:
        stages = {s.name: s for s in self.stages}
        for out_name, source in self.outputs.items():
            stage_name, _, stage_output = source.partition(".")
            stage = stages.get(stage_name)
            if stage is None or stage_output not in stage.outputs:
                raise ValidationError(
                    f"Pipeline output '{out_name}' maps to undeclared stage output '{source}'"
                )

    def _topological_names(self) -> list[str]:
        """Stable Kahn's sort: among ready stages, declared order wins."""
        index = {s.name: i for i, s in enumerate(self.stages)}
        in_degree: dict[str, int] = {s.name: len(set(s.needs)) for s in self.stages}
        dependents: dict[str, list[str]] = defaultdict(list)
        for stage in self.stages:
            for dep in set(stage.needs):
                dependents[dep].append(stage.name)

        ready = deque(s.name for s in self.stages if in_degree[s.name] == 0)
        order: list[str] = []
        while ready:
            node = min(ready, key=index.__getitem__)
            ready.remove(node)
            order.append(node)
            for child in dependents[node]:
                in_degree[child] -= 1
                if in_degree[child] == 0:
                    ready.append(child)
        return order

    # =========================================================================
    # Accessors
    # =========================================================================

    def execution_order(self) -> list[StageSpec]:
        """Stages in run order: declared order, adjusted so ``needs`` come first."""
        by_name = {s.name: s for s in self.stages}
        return [by_name[n] for n in self._topological_names()]

    def get_stage(self, name: str) -> StageSpec | None:
        for stage in self.stages:
            if stage.name == name:
                return stage
        return None

    def stage_names(self) -> list[str]:
        return [s.name for s in self.stages]

    def required_parameters(self) -> list[str]:
        return [name for name, spec in self.parameters.items() if spec.required]

    def with_version(self, version: str) -> PipelineDefinition:
        """Copy of this definition stamped with *version*."""
        return replace(self, version=version)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a plain dict (the ``spec`` section of the YAML form)."""
        result: dict[str, Any] = {"name": self.name}
        if self.version:
            result["version"] = self.version
        if self.description:
            result["description"] = self.description
        if self.parameters:
            result["parameters"] = {k: v.to_dict() for k, v in self.parameters.items()}
        result["stages"] = [s.to_dict() for s in self.stages]
        if self.triggers:
            result["triggers"] = [t.to_dict() for t in self.triggers]
        if self.outputs:
            result["outputs"] = dict(self.outputs)
        return result

    def __repr__(self) -> str:
        return f"PipelineDefinition({self.name!r}, version={self.version!r}, stages={len(self.stages)})"
