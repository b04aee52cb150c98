"""
Centralized settings for ci-spine.

:class:`CiSpineSettings` is the single, validated, cached source of
truth for runtime configuration. Every field can be set through a
``CISPINE_*`` environment variable (``CISPINE_BACKEND=docker``) or an
``.env`` file discovered by :mod:`~cispine.core.config.loader`.

Tags:
    ci-spine, configuration, settings, pydantic, caching
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class BackendKind(str, Enum):
    """Execution backend used by ``cispine run``."""

    LOCAL = "local"
    DOCKER = "docker"


class CiSpineSettings(BaseSettings):
    """ci-spine runtime configuration."""

    model_config = SettingsConfigDict(
        env_prefix="CISPINE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Logging ──────────────────────────────────────────────────
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="auto", description="json, console, or auto (json when not a tty)")

    # ── Execution ────────────────────────────────────────────────
    backend: BackendKind = Field(default=BackendKind.LOCAL)
    docker_image: str = Field(default="python:3.12-slim", description="Image for stages without an image override")
    stage_timeout_seconds: float | None = Field(
        default=None, gt=0, description="Default per-stage timeout; exceeding it fails the stage"
    )
    workdir: str = Field(default=".", description="Working directory stages run in")
    max_concurrent_runs: int = Field(default=4, ge=1)

    # ── Registry ─────────────────────────────────────────────────
    definitions_dir: str | None = Field(
        default=None, description="Directory of pipeline YAML files loaded on top of the built-in catalog"
    )
    load_builtin_catalog: bool = Field(default=True)

    @field_validator("log_level")
    @classmethod
    def _upper_level(cls, v: str) -> str:
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Invalid log level: {v}")
        return level

    @field_validator("log_format")
    @classmethod
    def _known_format(cls, v: str) -> str:
        fmt = v.lower()
        if fmt not in {"json", "console", "auto"}:
            raise ValueError(f"Invalid log format: {v}")
        return fmt

    @property
    def json_logs(self) -> bool | None:
        """Tri-state flag passed to ``configure_logging``."""
        if self.log_format == "auto":
            return None
        return self.log_format == "json"


_settings_cache: dict[str, CiSpineSettings] = {}


def get_settings(
    *,
    project_root: Path | None = None,
    _force_reload: bool = False,
) -> CiSpineSettings:
    """Load, validate, and cache a :class:`CiSpineSettings` instance.

    Parameters
    ----------
    project_root:
        Override the auto-detected project root used for ``.env`` discovery.
    _force_reload:
        Bypass cache and reload from disk.
    """
    from .loader import discover_env_files, find_project_root

    root = (project_root or find_project_root()).resolve()
    cache_key = str(root)

    if not _force_reload and cache_key in _settings_cache:
        return _settings_cache[cache_key]

    env_files = discover_env_files(root)
    settings = CiSpineSettings(
        _env_file=env_files or None,  # type: ignore[call-arg]
    )

    _settings_cache[cache_key] = settings
    return settings


def clear_settings_cache() -> None:
    """Clear the settings cache (primarily for testing)."""
    _settings_cache.clear()
