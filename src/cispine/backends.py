"""Execution backends — run one stage command and report how it ended.

The executor is agnostic to what a stage does; it hands each stage to an
:class:`ExecutionBackend` as a :class:`StageInvocation` and gets back a
:class:`StageOutcome` (exit code, captured log, emitted outputs, and
whether the command timed out or was cancelled).

Key Concepts:
    LocalBackend: Runs the command through the local shell (subprocess).
    DockerBackend: Runs the command inside ``docker run --rm`` via the
        ``docker`` CLI (subprocess, no docker SDK), with the working
        directory mounted at ``/workspace``.
    Outputs: A stage emits outputs by appending ``name=value`` lines (or
        ``name<<DELIM`` ... ``DELIM`` blocks) to the file named by the
        ``CISPINE_OUTPUT`` environment variable.

Architecture Decisions:
    - subprocess, not docker-py: works with any runtime exposing a
      ``docker`` CLI (Docker Desktop, Podman, CI runners).
    - Command output is streamed to a scratch file rather than a pipe, so
      a chatty stage can never block on a full pipe buffer while the
      backend is polling for timeout or cancellation.
    - Label-based tracking: every container gets ``cispine.*`` labels and
      a deterministic name so it can be force-removed on timeout.

Tags:
    backend, subprocess, docker, container, timeout, cancellation
"""

from __future__ import annotations

import os
import shutil
import signal
import subprocess
import tempfile
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol, runtime_checkable

from cispine.core.errors import BackendUnavailableError
from cispine.core.logging import get_logger

logger = get_logger(__name__)

OUTPUT_ENV_VAR = "CISPINE_OUTPUT"

# Seconds between liveness checks while a stage runs.
_POLL_INTERVAL = 0.05
# Seconds a terminated process gets before SIGKILL.
_TERMINATE_GRACE = 5.0


# ---------------------------------------------------------------------------
# Data models
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class StageInvocation:
    """Everything a backend needs to run one stage."""

    stage: str
    command: str
    env: dict[str, str] = field(default_factory=dict)
    workdir: str = "."
    timeout_seconds: float | None = None
    image: str | None = None
    plan_id: str = ""
    run_id: str = ""


@dataclass
class StageOutcome:
    """How a stage command ended."""

    exit_code: int | None
    log: str = ""
    outputs: dict[str, str] = field(default_factory=dict)
    timed_out: bool = False
    cancelled: bool = False
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.exit_code == 0 and not self.timed_out and not self.cancelled and self.error is None


@runtime_checkable
class ExecutionBackend(Protocol):
    """Anything that can run a :class:`StageInvocation`."""

    name: str

    def run(self, invocation: StageInvocation, cancel: threading.Event | None = None) -> StageOutcome:
        ...


def parse_output_file(text: str) -> dict[str, str]:
    """Parse ``name=value`` lines and ``name<<DELIM`` blocks.

    Later assignments of the same name win. Lines without ``=`` are ignored.
    """
    outputs: dict[str, str] = {}
    lines = text.splitlines()
    i = 0
    while i < len(lines):
        line = lines[i]
        i += 1
        if "<<" in line and ("=" not in line or line.index("<<") < line.index("=")):
            name, _, delimiter = line.partition("<<")
            block: list[str] = []
            while i < len(lines) and lines[i] != delimiter:
                block.append(lines[i])
                i += 1
            i += 1  # skip delimiter
            outputs[name.strip()] = "\n".join(block)
        elif "=" in line:
            name, _, value = line.partition("=")
            if name.strip():
                outputs[name.strip()] = value
    return outputs


# ---------------------------------------------------------------------------
# Subprocess-based backends
# ---------------------------------------------------------------------------


def _signal_group(proc: subprocess.Popen, sig: int) -> None:
    """Send *sig* to the process group led by *proc*."""
    try:
        os.killpg(proc.pid, sig)
    except ProcessLookupError:
        pass


class SubprocessBackend(ABC):
    """Shared polling, timeout and cancellation logic for CLI-driven backends.

    The command runs in its own session so that a timeout or cancel signals
    the whole process group, not just the top-level shell.
    """

    name = "subprocess"

    def run(self, invocation: StageInvocation, cancel: threading.Event | None = None) -> StageOutcome:
        with tempfile.TemporaryDirectory(prefix="cispine-") as scratch:
            scratch_dir = Path(scratch)
            output_file = scratch_dir / "outputs"
            output_file.touch()
            log_path = scratch_dir / "stage.log"

            args, env = self._build_command(invocation, scratch_dir)

            with open(log_path, "w", encoding="utf-8") as log_file:
                try:
                    proc = subprocess.Popen(
                        args,
                        cwd=self._process_cwd(invocation),
                        env=env,
                        stdout=log_file,
                        stderr=subprocess.STDOUT,
                        text=True,
                        start_new_session=True,
                    )
                except OSError as e:
                    return StageOutcome(exit_code=None, error=f"Failed to start stage: {e}")

                timed_out, cancelled = self._wait(proc, invocation, cancel)

            log = log_path.read_text(encoding="utf-8", errors="replace")
            outputs = {}
            if not timed_out and not cancelled and proc.returncode == 0:
                outputs = parse_output_file(output_file.read_text(encoding="utf-8", errors="replace"))

        error = None
        if timed_out:
            error = f"Stage '{invocation.stage}' exceeded timeout of {invocation.timeout_seconds}s"
        elif cancelled:
            error = "Cancelled"
        elif proc.returncode != 0:
            error = f"Command exited with status {proc.returncode}"

        return StageOutcome(
            exit_code=proc.returncode,
            log=log,
            outputs=outputs,
            timed_out=timed_out,
            cancelled=cancelled,
            error=error,
        )

    def _wait(
        self,
        proc: subprocess.Popen,
        invocation: StageInvocation,
        cancel: threading.Event | None,
    ) -> tuple[bool, bool]:
        """Poll until exit, timeout, or cancellation. Returns (timed_out, cancelled)."""
        deadline = None
        if invocation.timeout_seconds is not None:
            deadline = time.monotonic() + invocation.timeout_seconds

        while proc.poll() is None:
            if cancel is not None and cancel.is_set():
                self._terminate(proc, invocation)
                return False, True
            if deadline is not None and time.monotonic() >= deadline:
                self._terminate(proc, invocation)
                return True, False
            if cancel is not None:
                cancel.wait(_POLL_INTERVAL)
            else:
                time.sleep(_POLL_INTERVAL)
        return False, False

    def _terminate(self, proc: subprocess.Popen, invocation: StageInvocation) -> None:
        logger.warning("stage.terminating", stage=invocation.stage, pid=proc.pid)
        _signal_group(proc, signal.SIGTERM)
        try:
            proc.wait(timeout=_TERMINATE_GRACE)
        except subprocess.TimeoutExpired:
            _signal_group(proc, signal.SIGKILL)
            proc.wait()
        # Children that ignored SIGTERM outlive the shell.
        _signal_group(proc, signal.SIGKILL)

    def _process_cwd(self, invocation: StageInvocation) -> str | None:
        return invocation.workdir

    @abstractmethod
    def _build_command(self, invocation: StageInvocation, scratch: Path) -> tuple[list[str], dict[str, str]]:
        """Return the argv and environment for the stage process."""


class LocalBackend(SubprocessBackend):
    """Run stage commands with ``sh -c`` on the local machine."""

    name = "local"

    def __init__(self, shell: str = "/bin/sh", inherit_env: bool = True) -> None:
        self._shell = shell
        self._inherit_env = inherit_env

    def _build_command(self, invocation: StageInvocation, scratch: Path) -> tuple[list[str], dict[str, str]]:
        env = dict(os.environ) if self._inherit_env else {}
        env.update(invocation.env)
        env[OUTPUT_ENV_VAR] = str(scratch / "outputs")
        return [self._shell, "-c", invocation.command], env


class DockerBackend(SubprocessBackend):
    """Run stage commands inside ephemeral containers via the ``docker`` CLI.

    The working directory is mounted at ``/workspace`` and the scratch
    directory holding the outputs file at ``/cispine``.
    """

    name = "docker"

    def __init__(self, default_image: str = "python:3.12-slim", docker_cmd: str | None = None) -> None:
        self._default_image = default_image
        self._docker_cmd = docker_cmd or self._find_docker()

    @staticmethod
    def _find_docker() -> str:
        """Find the docker CLI binary."""
        docker = shutil.which("docker")
        if docker is None:
            raise BackendUnavailableError(
                "Docker CLI not found on PATH. Install Docker or use the local backend."
            )
        return docker

    @staticmethod
    def is_docker_available() -> bool:
        """Check if Docker is installed and the daemon responds."""
        docker = shutil.which("docker")
        if docker is None:
            return False
        try:
            result = subprocess.run([docker, "info"], capture_output=True, timeout=10)
        except (subprocess.TimeoutExpired, OSError):
            return False
        return result.returncode == 0

    @staticmethod
    def container_name(invocation: StageInvocation) -> str:
        """Container name for a stage run; unique per executor run."""
        return f"cispine-{invocation.run_id or 'adhoc'}-{invocation.stage}"

    def _process_cwd(self, invocation: StageInvocation) -> str | None:
        return None

    def _build_command(self, invocation: StageInvocation, scratch: Path) -> tuple[list[str], dict[str, str]]:
        workdir = str(Path(invocation.workdir).resolve())
        cmd = [
            self._docker_cmd, "run", "--rm",
            "--name", self.container_name(invocation),
            "--label", "cispine.managed=true",
            "--label", f"cispine.stage={invocation.stage}",
            "--label", f"cispine.plan={invocation.plan_id}",
            "-v", f"{workdir}:/workspace",
            "-v", f"{scratch}:/cispine",
            "-w", "/workspace",
        ]
        stage_env = {**invocation.env, OUTPUT_ENV_VAR: "/cispine/outputs"}
        for key, value in stage_env.items():
            cmd.extend(["-e", f"{key}={value}"])
        cmd.extend([invocation.image or self._default_image, "sh", "-c", invocation.command])
        return cmd, dict(os.environ)

    def _terminate(self, proc: subprocess.Popen, invocation: StageInvocation) -> None:
        # Killing the CLI process does not stop the container.
        subprocess.run(
            [self._docker_cmd, "rm", "--force", self.container_name(invocation)],
            capture_output=True,
            text=True,
            check=False,
        )
        super()._terminate(proc, invocation)


def make_backend(kind: str, *, docker_image: str = "python:3.12-slim") -> ExecutionBackend:
    """Create a backend by name (``local`` or ``docker``)."""
    if kind == "local":
        return LocalBackend()
    if kind == "docker":
        return DockerBackend(default_image=docker_image)
    raise ValueError(f"Unknown backend: {kind!r} (expected 'local' or 'docker')")
