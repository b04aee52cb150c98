"""Tests for cispine.cli — command smoke tests via CliRunner.

Commands build their registry from the built-in catalog plus YAML files in
a temporary definitions directory; runs use the local backend with plain
shell commands.
"""

from __future__ import annotations

import json
import logging
import textwrap
from unittest.mock import patch

import pydantic
import pytest
import structlog
from typer.testing import CliRunner

from cispine import __version__
from cispine.cli.app import app
from cispine.cli.utils import load_settings
from cispine.core.errors import ConfigError

runner = CliRunner()

SMOKE_YAML = textwrap.dedent(
    """\
    apiVersion: cispine.io/v1
    kind: Pipeline
    metadata:
      name: smoke
      versions: [v0.1.0, main]
    spec:
      parameters:
        greeting: {type: string, default: hello}
        fail: {type: boolean, default: false}
      stages:
        - name: greet
          run: echo "${{ inputs.greeting }}" && echo "said=${{ inputs.greeting }}" >> "$CISPINE_OUTPUT"
          inputs: [greeting]
          outputs: [said]
        - name: check
          run: test "${{ inputs.fail }}" = false
          inputs: [fail]
        - name: version
          run: echo "v=$CISPINE_VERSION" >> "$CISPINE_OUTPUT"
          outputs: [v]
      outputs:
        said: greet.said
        version: version.v
    """
)


@pytest.fixture(autouse=True)
def _quiet_logging():
    structlog.configure(wrapper_class=structlog.make_filtering_bound_logger(logging.CRITICAL))
    with patch("cispine.cli.utils.configure_logging"):
        yield
    structlog.reset_defaults()


@pytest.fixture
def definitions(tmp_path):
    directory = tmp_path / "pipelines"
    directory.mkdir()
    (directory / "smoke.yml").write_text(SMOKE_YAML)
    return directory


def test_version_flag():
    result = runner.invoke(app, ["--version"])
    assert result.exit_code == 0
    assert __version__ in result.output


# ─── pipelines ───────────────────────────────────────────────────────────


class TestPipelinesCLI:
    def test_list_json(self, definitions):
        result = runner.invoke(app, ["pipelines", "list", "--json", "-d", str(definitions)])
        assert result.exit_code == 0
        rows = {row["name"]: row["versions"] for row in json.loads(result.stdout)}
        assert rows["docker-image"] == "v1.0.0, main, v1"
        assert rows["smoke"] == "v0.1.0, main"

    def test_list_table(self):
        result = runner.invoke(app, ["pipelines", "list"])
        assert result.exit_code == 0
        assert "continuous-integration" in result.output

    def test_show(self):
        result = runner.invoke(app, ["pipelines", "show", "docker-image", "--ref", "v1"])
        assert result.exit_code == 0
        assert "image-name" in result.output

    def test_show_json(self):
        result = runner.invoke(app, ["pipelines", "show", "docker-image", "--json"])
        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["version"] == "v1.0.0"
        assert [s["name"] for s in data["stages"]] == ["resolve-version", "test", "build-and-push"]

    def test_show_yaml(self):
        result = runner.invoke(app, ["pipelines", "show", "code-quality", "--yaml"])
        assert result.exit_code == 0
        assert result.stdout.startswith("apiVersion: cispine.io/v1")

    def test_show_unknown(self):
        result = runner.invoke(app, ["pipelines", "show", "ghost"])
        assert result.exit_code == 1
        assert "NOT_FOUND" in result.output

    def test_validate(self, definitions, tmp_path):
        bad = tmp_path / "bad.yml"
        bad.write_text("apiVersion: cispine.io/v1\nkind: Pipeline\nmetadata: {name: bad}\nspec: {stages: []}\n")

        ok = runner.invoke(app, ["pipelines", "validate", str(definitions / "smoke.yml")])
        failed = runner.invoke(app, ["pipelines", "validate", str(definitions / "smoke.yml"), str(bad)])

        assert ok.exit_code == 0
        assert "smoke" in ok.output
        assert failed.exit_code == 1

    def test_triggered(self):
        result = runner.invoke(app, ["pipelines", "triggered", "--git-ref", "refs/tags/v1.2.3"])
        assert result.exit_code == 0
        assert result.stdout.split() == ["docker-image", "python-wheel"]


# ─── plan ────────────────────────────────────────────────────────────────


class TestPlanCLI:
    def test_plan_json(self):
        result = runner.invoke(
            app,
            ["plan", "continuous-integration", "-p", "run-mypy=false", "-p", "pylint-target-score=9", "--json"],
        )
        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["bindings"]["run-mypy"] is False
        assert data["bindings"]["pylint-target-score"] == 9
        assert [s["name"] for s in data["stages"]] == ["install", "ruff", "pylint", "test"]

    def test_missing_required(self):
        result = runner.invoke(app, ["plan", "docker-image"])
        assert result.exit_code == 1
        assert "image-name" in result.output

    def test_unknown_parameter(self):
        result = runner.invoke(app, ["plan", "docker-image", "-p", "image-name=org/app", "-p", "arch=arm"])
        assert result.exit_code == 1
        assert "arch" in result.output

    def test_bad_assignment(self):
        result = runner.invoke(app, ["plan", "docker-image", "-p", "image-name"])
        assert result.exit_code == 1


# ─── run ─────────────────────────────────────────────────────────────────


class TestRunCLI:
    def test_run_succeeds(self, definitions, tmp_path):
        result = runner.invoke(
            app,
            ["run", "smoke", "--ref", "main", "-d", str(definitions), "-w", str(tmp_path),
             "-p", "greeting=hi", "--tag", "v2.0.0", "--json"],
        )
        assert result.exit_code == 0, result.output
        data = json.loads(result.stdout)
        assert data["status"] == "succeeded"
        assert data["outputs"] == {"said": "hi", "version": "2.0.0"}

    def test_run_failure_exits_nonzero(self, definitions, tmp_path):
        result = runner.invoke(
            app,
            ["run", "smoke", "--ref", "v0.1.0", "-d", str(definitions), "-w", str(tmp_path),
             "-p", "fail=true", "--json"],
        )
        assert result.exit_code == 1
        data = json.loads(result.stdout)
        statuses = {s["name"]: s["status"] for s in data["stages"]}
        assert statuses == {"greet": "succeeded", "check": "failed", "version": "skipped"}

    def test_require_hook(self, definitions, tmp_path):
        result = runner.invoke(
            app,
            ["run", "smoke", "--ref", "main", "-d", str(definitions), "-w", str(tmp_path),
             "--require", "greet=models/*.py"],
        )
        assert result.exit_code == 1
        assert "Required path(s) not found" in result.output

    def test_repeated_require_for_one_stage(self, definitions, tmp_path):
        (tmp_path / "a.txt").write_text("present")
        result = runner.invoke(
            app,
            ["run", "smoke", "--ref", "main", "-d", str(definitions), "-w", str(tmp_path),
             "--require", "greet=missing.txt", "--require", "greet=a.txt", "--json"],
        )
        assert result.exit_code == 1
        greet = json.loads(result.stdout)["stages"][0]
        assert greet["status"] == "failed"
        assert greet["error"].endswith(": missing.txt")

    def test_require_all_present(self, definitions, tmp_path):
        (tmp_path / "a.txt").write_text("present")
        (tmp_path / "b.txt").write_text("present")
        result = runner.invoke(
            app,
            ["run", "smoke", "--ref", "main", "-d", str(definitions), "-w", str(tmp_path),
             "--require", "greet=a.txt", "--require", "greet=b.txt", "--json"],
        )
        assert result.exit_code == 0, result.output

    def test_malformed_release_tag(self, definitions, tmp_path):
        result = runner.invoke(
            app,
            ["run", "smoke", "--ref", "main", "-d", str(definitions), "-w", str(tmp_path), "--tag", "v2"],
        )
        assert result.exit_code == 1
        assert "VERSION" in result.output

    def test_unknown_backend(self, definitions):
        result = runner.invoke(app, ["run", "smoke", "-r", "main", "-d", str(definitions), "-b", "k8s"])
        assert result.exit_code == 1
        assert "Unknown backend" in result.output


# ─── version / config ────────────────────────────────────────────────────


class TestVersionCLI:
    def test_resolve_tag(self):
        result = runner.invoke(app, ["version", "resolve", "refs/tags/v1.4.0"])
        assert result.exit_code == 0
        assert result.stdout.strip() == "1.4.0"

    def test_resolve_dispatch(self):
        result = runner.invoke(app, ["version", "resolve", "--dispatch-version", "2.1.0"])
        assert result.stdout.strip() == "2.1.0"

    def test_malformed(self):
        result = runner.invoke(app, ["version", "resolve", "1.4.0"])
        assert result.exit_code == 1

    def test_invalid_settings(self, monkeypatch):
        monkeypatch.setenv("CISPINE_LOG_LEVEL", "LOUD")
        result = runner.invoke(app, ["version", "resolve", "v1.4.0"])
        assert result.exit_code == 1
        assert "Error (CONFIG)" in result.output
        assert not isinstance(result.exception, pydantic.ValidationError)


class TestLoadSettings:
    def test_invalid_settings_raise_config_error(self, monkeypatch):
        monkeypatch.setenv("CISPINE_MAX_CONCURRENT_RUNS", "many")
        with pytest.raises(ConfigError, match="Invalid settings"):
            load_settings()

    def test_run_reports_invalid_settings(self, monkeypatch):
        monkeypatch.setenv("CISPINE_BACKEND", "k8s")
        result = runner.invoke(app, ["run", "docker-image", "-p", "image-name=org/app"])
        assert result.exit_code == 1
        assert "Error (CONFIG)" in result.output


class TestConfigCLI:
    def test_show_env(self, monkeypatch):
        monkeypatch.setenv("CISPINE_BACKEND", "docker")
        result = runner.invoke(app, ["config", "show", "--format", "env"])
        assert result.exit_code == 0
        assert "CISPINE_BACKEND=docker" in result.stdout

    def test_show_json(self):
        result = runner.invoke(app, ["config", "show", "--format", "json"])
        assert result.exit_code == 0
        assert json.loads(result.stdout)["backend"] == "local"

    def test_show_table(self):
        result = runner.invoke(app, ["config", "show"])
        assert result.exit_code == 0
        assert "docker_image" in result.output
