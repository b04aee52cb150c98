"""
Tests for cispine.catalog — the built-in reusable pipelines.
"""

import pytest

from cispine.catalog import CATALOG_VERSION, builtin_definitions, register_catalog
from cispine.core.errors import MissingParameterError, VersionConflictError
from cispine.executor import StageExecutor
from cispine.registry import PipelineRegistry
from cispine.resolver import InvocationResolver
from cispine.testing import StubBackend, assert_pipeline_succeeded


@pytest.fixture
def catalog() -> PipelineRegistry:
    registry = PipelineRegistry()
    register_catalog(registry)
    return registry


class TestRegistration:
    def test_published_refs(self, catalog):
        assert catalog.list_pipelines() == [
            "code-quality",
            "continuous-integration",
            "docker-image",
            "python-wheel",
        ]
        for name in catalog.list_pipelines():
            assert catalog.list_versions(name) == [CATALOG_VERSION, "main", "v1"]

    def test_reregistering_tag_conflicts(self, catalog):
        with pytest.raises(VersionConflictError):
            register_catalog(catalog)

    def test_definitions_are_valid(self):
        assert len(builtin_definitions()) == 4


class TestContinuousIntegration:
    def test_defaults(self, catalog):
        plan = InvocationResolver(catalog).plan("continuous-integration", "v1")

        assert plan.values["python-version"] == "3.12"
        assert plan.values["pylint-target-score"] == 8.0
        assert plan.stage_names() == ["install", "ruff", "pylint", "mypy", "test"]

    def test_gates_and_rendering(self, catalog):
        plan = InvocationResolver(catalog).plan(
            "continuous-integration",
            "v1",
            {"run-mypy": False, "run-ruff": False, "pylint-target-score": 9.5, "source-dir": "pkg"},
        )

        assert plan.stage_names() == ["install", "pylint", "test"]
        pylint = plan.definition.get_stage("pylint")
        assert plan.render_command(pylint) == "pylint --fail-under=9.5 pkg"
        assert plan.render_image(pylint) == "python:3.12-slim"


class TestDockerImage:
    def test_requires_image_name(self, catalog):
        with pytest.raises(MissingParameterError, match="image-name"):
            InvocationResolver(catalog).plan("docker-image", "v1", {})

    def test_build_command_renders_image_reference(self, catalog):
        plan = InvocationResolver(catalog).plan("docker-image", "v1", {"image-name": "org/app"})
        build = plan.definition.get_stage("build-and-push")

        command = plan.render_command(build)

        assert '-t "ghcr.io/org/app:$tag"' in command
        assert "-f Dockerfile" in command
        assert "{{index .RepoDigests 0}}" in command
        assert "${{" not in command.replace("{{index", "")

    def test_pipeline_outputs_flow_through(self, catalog):
        plan = InvocationResolver(catalog).plan("docker-image", "v1", {"image-name": "org/app"})
        backend = StubBackend(
            outputs={"resolve-version": {"version": "1.2.3"}, "build-and-push": {"digest": "sha256:1"}}
        )

        result = StageExecutor(backend).run(plan)

        assert_pipeline_succeeded(result)
        assert result.outputs == {"version": "1.2.3", "digest": "sha256:1"}
        assert backend.stages_run == ["resolve-version", "test", "build-and-push"]


class TestPythonWheelAndCodeQuality:
    def test_wheel_stages(self, catalog):
        plan = InvocationResolver(catalog).plan("python-wheel", "main")
        assert plan.stage_names() == ["resolve-version", "build", "publish"]
        assert plan.definition.outputs == {"version": "resolve-version.version"}

    def test_code_quality_has_no_parameters(self, catalog):
        plan = InvocationResolver(catalog).plan("code-quality", "latest")
        assert plan.bindings == ()
        assert plan.version == CATALOG_VERSION
        assert ".cispine-lint.toml" in plan.render_command(plan.stages[0])
