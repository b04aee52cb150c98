"""
Tests for cispine.loader — YAML pipeline documents.
"""

import textwrap

import pytest
import yaml

from cispine.core.errors import ValidationError
from cispine.loader import (
    PipelineDocument,
    dump_definition,
    load_definition,
    load_directory,
    load_file,
)
from cispine.models import FailurePolicy, ParameterType
from cispine.registry import PipelineRegistry

DOCKER_YAML = textwrap.dedent(
    """\
    apiVersion: cispine.io/v1
    kind: Pipeline
    metadata:
      name: docker-image
      description: Build and push an image
      versions: [v1.0.0, main]
    spec:
      parameters:
        python-version: {type: string, default: "3.12"}
        image-name: {type: string, required: true}
        push: {type: boolean, default: true}
      triggers:
        - {event: push, branches: [main]}
        - {event: tag, tags: ["v*.*.*"]}
      stages:
        - name: test
          run: pytest
          on_failure: continue
          timeout_seconds: 600
        - name: build-and-push
          run: docker build -t ${{ inputs.image-name }} .
          inputs: [image-name]
          outputs: [digest]
          needs: [test]
          when: push
      outputs:
        digest: build-and-push.digest
    """
)


class TestLoadDefinition:
    def test_full_document(self):
        definition = load_definition(DOCKER_YAML)

        assert definition.name == "docker-image"
        assert definition.parameters["image-name"].required
        assert definition.parameters["push"].type == ParameterType.BOOLEAN
        test = definition.get_stage("test")
        assert test.failure_policy == FailurePolicy.CONTINUE
        assert test.timeout_seconds == 600
        build = definition.get_stage("build-and-push")
        assert build.needs == ("test",)
        assert build.when == "push"
        assert definition.outputs == {"digest": "build-and-push.digest"}
        assert len(definition.triggers) == 2

    def test_unknown_field_rejected(self):
        text = DOCKER_YAML.replace("on_failure: continue", "on_fail: continue")
        with pytest.raises(ValidationError, match="invalid pipeline document"):
            load_definition(text)

    def test_wrong_kind(self):
        with pytest.raises(ValidationError):
            load_definition(DOCKER_YAML.replace("kind: Pipeline", "kind: Workflow"))

    def test_no_stages(self):
        text = "apiVersion: cispine.io/v1\nkind: Pipeline\nmetadata: {name: p}\nspec: {stages: []}\n"
        with pytest.raises(ValidationError):
            load_definition(text)

    def test_structural_error_surfaces(self):
        text = DOCKER_YAML.replace("inputs: [image-name]", "inputs: []")
        with pytest.raises(ValidationError, match="undeclared input"):
            load_definition(text)

    def test_bad_yaml(self):
        with pytest.raises(ValidationError, match="invalid YAML"):
            load_definition("spec: [unclosed", source="broken.yml")

    def test_top_level_must_be_mapping(self):
        with pytest.raises(ValidationError, match="mapping"):
            load_definition("- a\n- b\n")


class TestFiles:
    def test_load_file_returns_versions(self, tmp_path):
        path = tmp_path / "docker.yml"
        path.write_text(DOCKER_YAML)

        definition, versions = load_file(path)

        assert definition.name == "docker-image"
        assert versions == ["v1.0.0", "main"]

    def test_load_directory_publishes_versions(self, tmp_path):
        (tmp_path / "docker.yml").write_text(DOCKER_YAML)
        (tmp_path / "lint.yaml").write_text(
            "apiVersion: cispine.io/v1\nkind: Pipeline\nmetadata: {name: lint}\n"
            "spec:\n  stages:\n    - {name: ruff, run: ruff check .}\n"
        )
        (tmp_path / "README.md").write_text("ignored")
        registry = PipelineRegistry()

        published = load_directory(registry, tmp_path)

        assert len(published) == 3
        assert registry.list_versions("docker-image") == ["v1.0.0", "main"]
        assert registry.list_versions("lint") == ["main"]

    def test_missing_directory(self, tmp_path):
        with pytest.raises(ValidationError, match="not found"):
            load_directory(PipelineRegistry(), tmp_path / "nope")


class TestDump:
    def test_dump_then_load_preserves_definition(self):
        definition = load_definition(DOCKER_YAML)

        text = dump_definition(definition, ["v1.0.0"])

        data = yaml.safe_load(text)
        assert data["apiVersion"] == "cispine.io/v1"
        assert data["kind"] == "Pipeline"
        assert data["metadata"]["versions"] == ["v1.0.0"]
        assert load_definition(text) == definition

    def test_document_from_definition_omits_defaults(self):
        definition = load_definition(DOCKER_YAML)
        dumped = PipelineDocument.from_definition(definition).model_dump(by_alias=True, exclude_defaults=True)
        assert "on_failure" not in dumped["spec"]["stages"][1]
