"""
Tests for cispine.registry — publish, resolve, immutability of tags.
"""

import threading

import pytest

from cispine.core.errors import InvalidVersionTagError, NotFoundError, ValidationError, VersionConflictError
from cispine.models import PipelineDefinition, StageSpec
from cispine.registry import PipelineRegistry, get_registry, reset_registry


def _definition(name="ci", command="echo one") -> PipelineDefinition:
    return PipelineDefinition(name=name, stages=[StageSpec("run", command)])


class TestPublishResolve:
    def test_round_trip(self, image_definition):
        registry = PipelineRegistry()
        registry.publish(image_definition, "v1.0.0")

        resolved = registry.resolve("docker-image", "v1.0.0")

        assert resolved == image_definition.with_version("v1.0.0")
        assert resolved.version == "v1.0.0"

    def test_publish_returns_stamped_definition(self):
        stored = PipelineRegistry().publish(_definition(), "main")
        assert stored.version == "main"

    def test_tag_is_immutable(self):
        registry = PipelineRegistry()
        registry.publish(_definition(), "v1.0.0")

        with pytest.raises(VersionConflictError):
            registry.publish(_definition(command="echo two"), "v1.0.0")

        assert registry.resolve("ci", "v1.0.0").stages[0].command == "echo one"

    def test_label_is_repointed(self):
        registry = PipelineRegistry()
        registry.publish(_definition(command="echo one"), "main")
        registry.publish(_definition(command="echo two"), "main")

        assert registry.resolve("ci", "main").stages[0].command == "echo two"

    def test_earlier_resolution_unaffected_by_repoint(self):
        registry = PipelineRegistry()
        registry.publish(_definition(command="echo one"), "main")
        before = registry.resolve("ci", "main")
        registry.publish(_definition(command="echo two"), "main")

        assert before.stages[0].command == "echo one"

    def test_malformed_tag_rejected(self):
        with pytest.raises(InvalidVersionTagError):
            PipelineRegistry().publish(_definition(), "1.0.0")

    def test_empty_pipeline_rejected(self):
        with pytest.raises(ValidationError, match="no stages"):
            PipelineRegistry().publish(PipelineDefinition(name="empty", stages=()), "main")

    def test_non_definition_rejected(self):
        with pytest.raises(TypeError):
            PipelineRegistry().publish({"name": "ci"}, "main")

    def test_latest_resolves_highest_tag(self):
        registry = PipelineRegistry()
        registry.publish(_definition(command="echo old"), "v1.9.0")
        registry.publish(_definition(command="echo new"), "v1.10.0")
        registry.publish(_definition(command="echo label"), "main")

        assert registry.resolve("ci", "latest").version == "v1.10.0"

    def test_latest_without_tags(self):
        registry = PipelineRegistry()
        registry.publish(_definition(), "main")
        with pytest.raises(NotFoundError):
            registry.resolve("ci", "latest")


class TestLookupErrors:
    def test_unknown_name(self, registry):
        with pytest.raises(NotFoundError, match="'nope' not found") as exc:
            registry.resolve("nope", "v1.0.0")
        assert exc.value.context.pipeline == "nope"

    def test_unknown_ref_lists_available(self, registry):
        with pytest.raises(NotFoundError, match="Available: main, v1.0.0"):
            registry.resolve("docker-image", "v9.9.9")


class TestListing:
    def test_list_pipelines_sorted(self, registry):
        assert registry.list_pipelines() == ["chain", "docker-image", "lenient"]

    def test_list_versions_tags_then_labels(self):
        registry = PipelineRegistry()
        for ref in ["main", "v1.2.0", "v1", "v1.10.0"]:
            registry.publish(_definition(), ref)
        assert registry.list_versions("ci") == ["v1.10.0", "v1.2.0", "main", "v1"]

    def test_exists(self, registry):
        assert registry.exists("chain")
        assert registry.exists("chain", "main")
        assert registry.exists("chain", "latest")
        assert not registry.exists("chain", "v2.0.0")
        assert not registry.exists("ghost")

    def test_stats_and_clear(self, registry):
        assert registry.stats()["total_pipelines"] == 3
        assert len(registry) == 3
        registry.clear()
        assert len(registry) == 0


class TestConcurrency:
    def test_concurrent_publish_of_same_tag_admits_one(self):
        registry = PipelineRegistry()
        conflicts = []
        barrier = threading.Barrier(8)

        def publish(i):
            barrier.wait()
            try:
                registry.publish(_definition(command=f"echo {i}"), "v1.0.0")
            except VersionConflictError:
                conflicts.append(i)

        threads = [threading.Thread(target=publish, args=(i,)) for i in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(conflicts) == 7


class TestDefaultRegistry:
    def test_singleton(self):
        assert get_registry() is get_registry()

    def test_reset(self):
        get_registry().publish(_definition(), "main")
        reset_registry()
        assert not get_registry().exists("ci")
