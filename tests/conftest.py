"""
Shared pytest fixtures and configuration for ci-spine tests.

This module provides:
- Registry and settings cleanup for test isolation
- Sample pipeline definitions (the docker-image schema, a three-stage chain)
- A registry pre-populated with those definitions
"""

from __future__ import annotations

import os
from collections.abc import Generator

import pytest

from cispine.core.config import clear_settings_cache
from cispine.models import FailurePolicy, ParameterSpec, ParameterType, PipelineDefinition, StageSpec
from cispine.registry import PipelineRegistry, reset_registry
from cispine.resolver import InvocationResolver

# =============================================================================
# Isolation
# =============================================================================


@pytest.fixture(autouse=True)
def _isolate(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    """Reset the default registry, settings cache, and CISPINE_* env vars."""
    for key in list(os.environ):
        if key.startswith("CISPINE_"):
            monkeypatch.delenv(key, raising=False)
    reset_registry()
    clear_settings_cache()
    yield
    reset_registry()
    clear_settings_cache()


# =============================================================================
# Sample definitions
# =============================================================================


@pytest.fixture
def image_definition() -> PipelineDefinition:
    """Schema {python-version: string = "3.12", image-name: string required}."""
    return PipelineDefinition(
        name="docker-image",
        parameters={
            "python-version": ParameterSpec(ParameterType.STRING, default="3.12"),
            "image-name": ParameterSpec(ParameterType.STRING, required=True),
        },
        stages=(
            StageSpec("test", "echo testing on ${{ inputs.python-version }}", inputs=("python-version",)),
            StageSpec(
                "build-and-push",
                "echo building ${{ inputs.image-name }}",
                inputs=("image-name",),
                outputs=("digest",),
                needs=("test",),
            ),
        ),
        outputs={"digest": "build-and-push.digest"},
    )


@pytest.fixture
def chain_definition() -> PipelineDefinition:
    """Three stages: build -> verify -> release, all abort-pipeline."""
    return PipelineDefinition(
        name="chain",
        parameters={"strict": ParameterSpec(ParameterType.BOOLEAN, default=True)},
        stages=(
            StageSpec("build", "echo build"),
            StageSpec("verify", "exit 1"),
            StageSpec("release", "echo release"),
        ),
    )


@pytest.fixture
def lenient_definition() -> PipelineDefinition:
    """Three stages where the middle one continues on failure."""
    return PipelineDefinition(
        name="lenient",
        stages=(
            StageSpec("build", "echo build"),
            StageSpec("lint", "exit 3", failure_policy=FailurePolicy.CONTINUE),
            StageSpec("test", "echo test"),
        ),
    )


@pytest.fixture
def registry(image_definition, chain_definition, lenient_definition) -> PipelineRegistry:
    reg = PipelineRegistry()
    for definition in (image_definition, chain_definition, lenient_definition):
        reg.publish(definition, "v1.0.0")
        reg.publish(definition, "main")
    return reg


@pytest.fixture
def resolver(registry) -> InvocationResolver:
    return InvocationResolver(registry)
