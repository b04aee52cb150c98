"""
Tests for cispine.core.logging.

Tests verify:
- JSON output uses ECS field names and carries service metadata
- LogContext binds and unbinds context variables
- DEBUG logs are suppressed at INFO level
"""

import json
import logging

import pytest
import structlog

from cispine.core.logging import (
    LogContext,
    bind_context,
    clear_context,
    configure_logging,
    unbind_context,
)


@pytest.fixture(autouse=True)
def _reset_structlog():
    clear_context()
    yield
    clear_context()
    structlog.reset_defaults()


class TestConfigureLogging:
    def test_json_output(self, caplog):
        configure_logging(level="INFO", json_format=True, service="ci-test")
        caplog.set_level(logging.INFO)

        structlog.get_logger("cispine.test").info("stage.start", stage="build")

        data = json.loads(caplog.records[-1].getMessage())
        assert data["event"] == "stage.start"
        assert data["stage"] == "build"
        assert data["log.level"] == "info"
        assert data["service.name"] == "ci-test"
        assert data["logger"] == "cispine.test"
        assert "@timestamp" in data

    def test_debug_suppressed_at_info(self, caplog):
        configure_logging(level="INFO", json_format=True)
        caplog.set_level(logging.DEBUG)

        structlog.get_logger("cispine.test").debug("plan.resolved")

        assert not [r for r in caplog.records if "plan.resolved" in r.getMessage()]

    def test_context_merged_into_output(self, caplog):
        configure_logging(level="INFO", json_format=True)
        caplog.set_level(logging.INFO)

        with LogContext(pipeline="docker-image", plan_id="abc"):
            structlog.get_logger("cispine.test").info("pipeline.start")

        data = json.loads(caplog.records[-1].getMessage())
        assert data["pipeline"] == "docker-image"
        assert data["plan_id"] == "abc"


class TestContext:
    def test_log_context_scoped(self):
        with LogContext(pipeline="ci", run_id="r1"):
            assert structlog.contextvars.get_contextvars() == {"pipeline": "ci", "run_id": "r1"}
        assert structlog.contextvars.get_contextvars() == {}

    def test_bind_and_unbind(self):
        bind_context(stage="build", plan_id="p")
        unbind_context("stage")
        assert structlog.contextvars.get_contextvars() == {"plan_id": "p"}
