"""Pipeline Registry — versioned storage and lookup of pipeline definitions.

Manifesto:
Many caller repositories invoke the same centrally-defined pipelines. The
registry is the single lookup table that maps ``(name, version ref)`` to a
frozen :class:`~cispine.models.PipelineDefinition`, so that resolvers and
CLIs can find a pipeline without knowing where it was defined.

ARCHITECTURE
────────────
::

    registry.publish(definition, "v1.2.0")   → immutable tag
    registry.publish(definition, "main")     → moving label (repointed)
    registry.resolve("ci", "v1.2.0")         → PipelineDefinition or raises
    registry.resolve("ci", "latest")         → highest published tag
    registry.list_pipelines()                → names
    registry.list_versions("ci")             → refs

    NotFoundError          ── unknown name or ref
    VersionConflictError   ── tag already published
    InvalidVersionTagError ── malformed tag-like ref
    ValidationError        ── stage references an undeclared parameter

Reads and writes are serialised by an ``RLock``; definitions are frozen
dataclasses, so a resolved definition is a snapshot that a later repoint
of the same label does not affect.

BEST PRACTICES
──────────────
- Use ``reset_registry()`` in test fixtures to avoid leaks through the
  process-wide default registry.

Example::

    from cispine.registry import get_registry

    registry = get_registry()
    registry.publish(definition, "v1.0.0")
    registry.publish(definition, "main")
    definition = registry.resolve("docker-image", "main")
"""

from __future__ import annotations

import threading
from typing import Any

from cispine.core.errors import NotFoundError, ValidationError, VersionConflictError
from cispine.core.logging import get_logger
from cispine.models import PipelineDefinition
from cispine.versioning import LATEST, highest_tag, parse_version_ref

logger = get_logger(__name__)


class PipelineRegistry:
    """Thread-safe store of pipeline definitions keyed by name and version ref."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._pipelines: dict[str, dict[str, PipelineDefinition]] = {}

    def publish(self, definition: PipelineDefinition, version_ref: str) -> PipelineDefinition:
        """
        Store *definition* under *version_ref*.

        Tags (``vX.Y.Z``) are immutable: publishing an existing tag raises
        :class:`VersionConflictError`. Labels (``main``, ``v1``) are repointed.

        Args:
            definition: The pipeline to publish
            version_ref: Tag or label to publish under

        Returns:
            The stored definition, stamped with ``version_ref``

        Raises:
            InvalidVersionTagError: If the ref is tag-like but malformed
            VersionConflictError: If the tag is already published
            ValidationError: If the definition is structurally invalid
        """
        if not isinstance(definition, PipelineDefinition):
            raise TypeError(f"Expected PipelineDefinition, got {type(definition).__name__}")

        ref = parse_version_ref(version_ref)
        # Re-run construction-time validation on the stamped copy.
        stored = definition.with_version(ref.raw)
        if not stored.stages:
            raise ValidationError(f"Pipeline '{definition.name}' declares no stages").with_context(
                pipeline=definition.name
            )

        with self._lock:
            versions = self._pipelines.setdefault(definition.name, {})
            previous = versions.get(ref.raw)
            if previous is not None and ref.is_tag:
                raise VersionConflictError(definition.name, ref.raw)
            versions[ref.raw] = stored

        logger.info(
            "pipeline.published",
            pipeline=definition.name,
            version_ref=ref.raw,
            kind=ref.kind.value,
            repointed=previous is not None,
            stage_count=len(stored.stages),
        )
        return stored

    def resolve(self, name: str, version_ref: str) -> PipelineDefinition:
        """
        Look up a pipeline by name and version ref.

        The reserved ref ``latest`` resolves to the highest published tag.

        Raises:
            NotFoundError: If the name or ref is unknown
        """
        with self._lock:
            versions = self._pipelines.get(name)
            if versions is None:
                raise NotFoundError(name, available=sorted(self._pipelines))

            if version_ref == LATEST:
                tag = highest_tag(list(versions))
                if tag is None:
                    raise NotFoundError(name, version_ref, available=sorted(versions))
                return versions[tag]

            definition = versions.get(version_ref)
            if definition is None:
                raise NotFoundError(name, version_ref, available=sorted(versions))
            return definition

    def exists(self, name: str, version_ref: str | None = None) -> bool:
        """Check whether a pipeline (optionally at a given ref) is published."""
        with self._lock:
            versions = self._pipelines.get(name)
            if versions is None:
                return False
            if version_ref is None:
                return True
            if version_ref == LATEST:
                return highest_tag(list(versions)) is not None
            return version_ref in versions

    def list_pipelines(self) -> list[str]:
        """Sorted pipeline names."""
        with self._lock:
            return sorted(self._pipelines)

    def list_versions(self, name: str) -> list[str]:
        """Refs published for *name*: tags (highest first), then labels.

        Raises:
            NotFoundError: If *name* is not published
        """
        with self._lock:
            versions = self._pipelines.get(name)
            if versions is None:
                raise NotFoundError(name, available=sorted(self._pipelines))
            refs = [parse_version_ref(r) for r in versions]

        tags = sorted((r for r in refs if r.is_tag), key=lambda r: r.version, reverse=True)
        labels = sorted(r.raw for r in refs if r.is_label)
        return [t.raw for t in tags] + labels

    def clear(self) -> None:
        """Remove every definition (primarily for testing)."""
        with self._lock:
            self._pipelines.clear()
        logger.debug("pipeline_registry_cleared")

    def stats(self) -> dict[str, Any]:
        """Statistics about the registry (for debugging/health checks)."""
        with self._lock:
            return {
                "total_pipelines": len(self._pipelines),
                "versions_by_pipeline": {n: len(v) for n, v in self._pipelines.items()},
            }

    def __len__(self) -> int:
        with self._lock:
            return len(self._pipelines)


# Process-wide default registry
_default_registry: PipelineRegistry | None = None
_default_lock = threading.Lock()


def get_registry() -> PipelineRegistry:
    """Return the process-wide default registry, creating it on first use."""
    global _default_registry
    with _default_lock:
        if _default_registry is None:
            _default_registry = PipelineRegistry()
        return _default_registry


def reset_registry() -> None:
    """Drop the process-wide default registry (for testing)."""
    global _default_registry
    with _default_lock:
        _default_registry = None
