"""Built-in catalog — the four reusable pipelines shipped with ci-spine.

Caller repositories invoke these by name and version ref with a block of
typed parameters, the same way they would call a shared reusable workflow:

=========================  ==============================================
Pipeline                   Parameters (default)
=========================  ==============================================
``continuous-integration`` python-version ("3.12"), source-dir ("src"),
                           test-dir ("tests"), run-pylint (true),
                           pylint-target-score (8.0), run-mypy (true),
                           run-ruff (true)
``docker-image``           python-version ("3.12"), dockerfile-path
                           ("Dockerfile"), registry ("ghcr.io"),
                           image-name (required)
``python-wheel``           python-version ("3.12"), pyproject-path
                           ("pyproject.toml")
``code-quality``           none; reads ``.cispine-lint.toml`` when the
                           caller repository provides one
=========================  ==============================================

Release pipelines read the version to publish from ``CISPINE_VERSION``
(set by the CLI from the triggering tag or dispatch input, see
:func:`cispine.triggers.resolve_release_version`) and emit it as the
``version`` output; ``docker-image`` also emits the pushed image
``digest``.

Every catalog pipeline is published under :data:`CATALOG_VERSION` and the
moving labels ``v1`` and ``main``.
"""

from __future__ import annotations

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

CATALOG_VERSION = "v1.0.0"
CATALOG_LABELS = ("v1", "main")

DEFAULT_BRANCH = "main"
SEMVER_TAG_PATTERN = "v*.*.*"

_PYTHON_IMAGE = "python:${{ inputs.python-version }}-slim"
_INSTALL_DEV = 'python -m pip install --upgrade pip && python -m pip install -e ".[dev]"'

_BRANCH_TRIGGERS = (
    TriggerSpec(TriggerEvent.PUSH, branches=(DEFAULT_BRANCH,)),
    TriggerSpec(TriggerEvent.PULL_REQUEST, branches=(DEFAULT_BRANCH,)),
)
_RELEASE_TRIGGERS = (
    TriggerSpec(TriggerEvent.TAG, tags=(SEMVER_TAG_PATTERN,)),
    TriggerSpec(TriggerEvent.DISPATCH, inputs=("version",)),
)


def _python_version() -> ParameterSpec:
    return ParameterSpec(ParameterType.STRING, default="3.12", description="Python version for the build image")


def continuous_integration() -> PipelineDefinition:
    """Lint, type-check, and test a Python project."""
    return PipelineDefinition(
        name="continuous-integration",
        description="Install dev dependencies, lint with ruff and pylint, type-check with mypy, run pytest",
        parameters={
            "python-version": _python_version(),
            "source-dir": ParameterSpec(ParameterType.STRING, default="src"),
            "test-dir": ParameterSpec(ParameterType.STRING, default="tests"),
            "run-pylint": ParameterSpec(ParameterType.BOOLEAN, default=True),
            "pylint-target-score": ParameterSpec(
                ParameterType.NUMBER, default=8.0, description="Minimum pylint score (--fail-under)"
            ),
            "run-mypy": ParameterSpec(ParameterType.BOOLEAN, default=True),
            "run-ruff": ParameterSpec(ParameterType.BOOLEAN, default=True),
        },
        stages=(
            StageSpec(
                "install",
                _INSTALL_DEV,
                inputs=("python-version",),
                image=_PYTHON_IMAGE,
            ),
            StageSpec(
                "ruff",
                "ruff check ${{ inputs.source-dir }} ${{ inputs.test-dir }}",
                inputs=("python-version", "source-dir", "test-dir"),
                when="run-ruff",
                needs=("install",),
                image=_PYTHON_IMAGE,
            ),
            StageSpec(
                "pylint",
                "pylint --fail-under=${{ inputs.pylint-target-score }} ${{ inputs.source-dir }}",
                inputs=("python-version", "source-dir", "pylint-target-score"),
                when="run-pylint",
                needs=("install",),
                image=_PYTHON_IMAGE,
            ),
            StageSpec(
                "mypy",
                "mypy ${{ inputs.source-dir }}",
                inputs=("python-version", "source-dir"),
                when="run-mypy",
                needs=("install",),
                image=_PYTHON_IMAGE,
            ),
            StageSpec(
                "test",
                "pytest ${{ inputs.test-dir }}",
                inputs=("python-version", "test-dir"),
                needs=("install",),
                image=_PYTHON_IMAGE,
            ),
        ),
        triggers=_BRANCH_TRIGGERS,
    )


def docker_image() -> PipelineDefinition:
    """Test, then build and push a container image."""
    image_ref = "${{ inputs.registry }}/${{ inputs.image-name }}"
    build_and_push = (
        'tag="${CISPINE_VERSION:-latest}" && '
        f'docker build -f ${{{{ inputs.dockerfile-path }}}} '
        f'--build-arg PYTHON_VERSION=${{{{ inputs.python-version }}}} -t "{image_ref}:$tag" . && '
        f'docker push "{image_ref}:$tag" && '
        f"digest=$(docker inspect --format '{{{{index .RepoDigests 0}}}}' \"{image_ref}:$tag\") && "
        'echo "digest=${digest#*@}" >> "$CISPINE_OUTPUT"'
    )
    return PipelineDefinition(
        name="docker-image",
        description="Run the test suite, then build and push a container image",
        parameters={
            "python-version": _python_version(),
            "dockerfile-path": ParameterSpec(ParameterType.STRING, default="Dockerfile"),
            "registry": ParameterSpec(ParameterType.STRING, default="ghcr.io"),
            "image-name": ParameterSpec(
                ParameterType.STRING, required=True, description="Image name, e.g. org/app"
            ),
        },
        stages=(
            StageSpec(
                "resolve-version",
                'echo "version=${CISPINE_VERSION:-latest}" >> "$CISPINE_OUTPUT"',
                outputs=("version",),
            ),
            StageSpec(
                "test",
                f"{_INSTALL_DEV} && pytest",
                inputs=("python-version",),
                image=_PYTHON_IMAGE,
            ),
            StageSpec(
                "build-and-push",
                build_and_push,
                inputs=("python-version", "dockerfile-path", "registry", "image-name"),
                outputs=("digest",),
                needs=("resolve-version", "test"),
            ),
        ),
        triggers=(TriggerSpec(TriggerEvent.PUSH, branches=(DEFAULT_BRANCH,)), *_RELEASE_TRIGGERS),
        outputs={"version": "resolve-version.version", "digest": "build-and-push.digest"},
    )


def python_wheel() -> PipelineDefinition:
    """Build a wheel and attach it to a release."""
    return PipelineDefinition(
        name="python-wheel",
        description="Build a wheel and sdist and publish them as release artifacts",
        parameters={
            "python-version": _python_version(),
            "pyproject-path": ParameterSpec(ParameterType.STRING, default="pyproject.toml"),
        },
        stages=(
            StageSpec(
                "resolve-version",
                'echo "version=${CISPINE_VERSION:?a release version is required}" >> "$CISPINE_OUTPUT"',
                outputs=("version",),
            ),
            StageSpec(
                "build",
                'python -m pip install build && python -m build --outdir dist "$(dirname ${{ inputs.pyproject-path }})"',
                inputs=("python-version", "pyproject-path"),
                needs=("resolve-version",),
                image=_PYTHON_IMAGE,
            ),
            StageSpec(
                "publish",
                'gh release create "v${CISPINE_VERSION}" dist/* --verify-tag --title "v${CISPINE_VERSION}"',
                needs=("build",),
            ),
        ),
        triggers=_RELEASE_TRIGGERS,
        outputs={"version": "resolve-version.version"},
    )


def code_quality() -> PipelineDefinition:
    """Lint the whole repository, honouring an optional caller config file."""
    return PipelineDefinition(
        name="code-quality",
        description="Lint the repository with ruff; uses .cispine-lint.toml when present",
        stages=(
            StageSpec(
                "lint",
                "if [ -f .cispine-lint.toml ]; then ruff check --config .cispine-lint.toml .; "
                "else ruff check .; fi",
                failure_policy=FailurePolicy.ABORT_PIPELINE,
            ),
        ),
        triggers=_BRANCH_TRIGGERS,
    )


def builtin_definitions() -> list[PipelineDefinition]:
    return [continuous_integration(), docker_image(), python_wheel(), code_quality()]


def register_catalog(
    registry: PipelineRegistry,
    *,
    version: str = CATALOG_VERSION,
    labels: tuple[str, ...] = CATALOG_LABELS,
) -> list[PipelineDefinition]:
    """Publish every built-in pipeline under *version* and each label."""
    published = []
    for definition in builtin_definitions():
        published.append(registry.publish(definition, version))
        for label in labels:
            registry.publish(definition, label)
    return published
