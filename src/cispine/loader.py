"""YAML pipeline documents — declarative pipeline definitions.

A pipeline can be written as a YAML document and loaded into the registry.
Documents are validated with pydantic before being converted into frozen
:class:`~cispine.models.PipelineDefinition` objects, so typos in field
names fail fast with a precise location.

Document format::

    apiVersion: cispine.io/v1
    kind: Pipeline
    metadata:
      name: docker-image
      description: Build and push a container image
      versions: [v1.0.0, main]      # refs to publish under
    spec:
      parameters:
        python-version: {type: string, default: "3.12"}
        image-name: {type: string, required: true}
      triggers:
        - {event: push, branches: [main]}
        - {event: tag, tags: ["v*.*.*"]}
      stages:
        - name: test
          run: pytest
        - name: build-and-push
          run: docker build -t ${{ inputs.image-name }} .
          inputs: [image-name]
          outputs: [digest]
          needs: [test]
      outputs:
        digest: build-and-push.digest

Example::

    definitions = load_directory(registry, "pipelines/")

Tags:
    yaml, declarative, pydantic, loader
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from cispine.core.errors import ValidationError
from cispine.core.logging import get_logger
from cispine.models import (
    FailurePolicy,
    ParameterSpec,
    ParameterType,
    PipelineDefinition,
    StageSpec,
    TriggerEvent,
    TriggerSpec,
)
from cispine.registry import PipelineRegistry

logger = get_logger(__name__)

API_VERSION = "cispine.io/v1"
DEFAULT_REF = "main"


class ParameterModel(BaseModel):
    """One entry of ``spec.parameters``."""

    model_config = ConfigDict(extra="forbid")

    type: ParameterType = ParameterType.STRING
    default: Any = None
    required: bool = False
    description: str = ""

    def to_spec(self) -> ParameterSpec:
        return ParameterSpec(
            type=self.type,
            default=self.default,
            required=self.required,
            description=self.description,
        )


class StageModel(BaseModel):
    """One entry of ``spec.stages``."""

    model_config = ConfigDict(extra="forbid")

    name: str = Field(..., min_length=1)
    run: str = Field(..., description="Shell command template")
    inputs: list[str] = Field(default_factory=list)
    outputs: list[str] = Field(default_factory=list)
    on_failure: FailurePolicy = FailurePolicy.ABORT_PIPELINE
    timeout_seconds: float | None = Field(default=None, gt=0)
    needs: list[str] = Field(default_factory=list)
    when: str | None = None
    image: str | None = None
    description: str = ""

    def to_stage(self) -> StageSpec:
        return StageSpec(
            name=self.name,
            command=self.run,
            inputs=tuple(self.inputs),
            outputs=tuple(self.outputs),
            failure_policy=self.on_failure,
            timeout_seconds=self.timeout_seconds,
            needs=tuple(self.needs),
            when=self.when,
            image=self.image,
            description=self.description,
        )


class TriggerModel(BaseModel):
    """One entry of ``spec.triggers``."""

    model_config = ConfigDict(extra="forbid")

    event: TriggerEvent
    branches: list[str] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)
    inputs: list[str] = Field(default_factory=list)

    def to_trigger(self) -> TriggerSpec:
        return TriggerSpec(
            event=self.event,
            branches=tuple(self.branches),
            tags=tuple(self.tags),
            inputs=tuple(self.inputs),
        )


class PipelineMetadataModel(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(..., min_length=1)
    description: str = ""
    versions: list[str] = Field(default_factory=list, description="Refs to publish under")


class PipelineSpecModel(BaseModel):
    model_config = ConfigDict(extra="forbid")

    parameters: dict[str, ParameterModel] = Field(default_factory=dict)
    triggers: list[TriggerModel] = Field(default_factory=list)
    stages: list[StageModel] = Field(..., min_length=1)
    outputs: dict[str, str] = Field(default_factory=dict)


class PipelineDocument(BaseModel):
    """A complete ``kind: Pipeline`` document."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    api_version: Literal["cispine.io/v1"] = Field(default=API_VERSION, alias="apiVersion")
    kind: Literal["Pipeline"] = "Pipeline"
    metadata: PipelineMetadataModel
    spec: PipelineSpecModel

    def to_definition(self) -> PipelineDefinition:
        """Convert to a frozen definition (runs definition-level validation)."""
        return PipelineDefinition(
            name=self.metadata.name,
            description=self.metadata.description,
            parameters={k: v.to_spec() for k, v in self.spec.parameters.items()},
            stages=tuple(s.to_stage() for s in self.spec.stages),
            triggers=tuple(t.to_trigger() for t in self.spec.triggers),
            outputs=dict(self.spec.outputs),
        )

    @classmethod
    def from_data(cls, data: Any, source: str = "<data>") -> PipelineDocument:
        if not isinstance(data, dict):
            raise ValidationError(f"{source}: expected a mapping at the top level")
        try:
            return cls.model_validate(data)
        except PydanticValidationError as e:
            raise ValidationError(f"{source}: invalid pipeline document\n{e}", cause=e) from e

    @classmethod
    def from_yaml(cls, text: str, source: str = "<string>") -> PipelineDocument:
        try:
            data = yaml.safe_load(text)
        except yaml.YAMLError as e:
            raise ValidationError(f"{source}: invalid YAML: {e}", cause=e) from e
        return cls.from_data(data, source)

    @classmethod
    def from_definition(cls, definition: PipelineDefinition, versions: list[str] | None = None) -> PipelineDocument:
        return cls(
            metadata=PipelineMetadataModel(
                name=definition.name,
                description=definition.description,
                versions=list(versions or []),
            ),
            spec=PipelineSpecModel(
                parameters={
                    k: ParameterModel(
                        type=v.type, default=v.default, required=v.required, description=v.description
                    )
                    for k, v in definition.parameters.items()
                },
                triggers=[
                    TriggerModel(
                        event=t.event, branches=list(t.branches), tags=list(t.tags), inputs=list(t.inputs)
                    )
                    for t in definition.triggers
                ],
                stages=[
                    StageModel(
                        name=s.name,
                        run=s.command,
                        inputs=list(s.inputs),
                        outputs=list(s.outputs),
                        on_failure=s.failure_policy,
                        timeout_seconds=s.timeout_seconds,
                        needs=list(s.needs),
                        when=s.when,
                        image=s.image,
                        description=s.description,
                    )
                    for s in definition.stages
                ],
                outputs=dict(definition.outputs),
            ),
        )


def load_definition(text: str, source: str = "<string>") -> PipelineDefinition:
    """Parse a YAML document into a definition."""
    return PipelineDocument.from_yaml(text, source).to_definition()


def load_file(path: str | Path) -> tuple[PipelineDefinition, list[str]]:
    """Load one YAML file. Returns the definition and its declared versions."""
    path = Path(path)
    document = PipelineDocument.from_yaml(path.read_text(encoding="utf-8"), str(path))
    return document.to_definition(), list(document.metadata.versions)


def load_directory(
    registry: PipelineRegistry,
    directory: str | Path,
    *,
    default_ref: str = DEFAULT_REF,
) -> list[PipelineDefinition]:
    """Publish every ``*.yml`` / ``*.yaml`` file in *directory*.

    Each document is published under every ref in ``metadata.versions``, or
    under *default_ref* when it lists none.
    """
    directory = Path(directory)
    if not directory.is_dir():
        raise ValidationError(f"Pipeline definitions directory not found: {directory}")

    files = sorted([*directory.glob("*.yml"), *directory.glob("*.yaml")])
    published: list[PipelineDefinition] = []
    for path in files:
        definition, versions = load_file(path)
        for ref in versions or [default_ref]:
            published.append(registry.publish(definition, ref))

    logger.info("pipelines.loaded", directory=str(directory), files=len(files), published=len(published))
    return published


def dump_definition(definition: PipelineDefinition, versions: list[str] | None = None) -> str:
    """Serialize *definition* to a YAML document."""
    document = PipelineDocument.from_definition(definition, versions)
    data = document.model_dump(mode="json", by_alias=True, exclude_defaults=True)
    data = {"apiVersion": API_VERSION, "kind": "Pipeline", **data}
    return yaml.safe_dump(data, default_flow_style=False, sort_keys=False)
