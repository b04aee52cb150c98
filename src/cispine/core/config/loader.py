"""
Env-file discovery for ci-spine settings.

Settings are read from ``CISPINE_*`` environment variables first, then from
``.env`` files found at the project root in this order (later files win)::

    .env.base
    .env.local
    .env
"""

from __future__ import annotations

from pathlib import Path


def find_project_root(start: Path | None = None) -> Path:
    """Walk upward from *start* to find the project root.

    Recognised root markers (checked in order):

    * ``pyproject.toml``
    * ``.git`` directory
    * ``setup.py``

    Falls back to *start* (or cwd) when no marker is found.
    """
    current = (start or Path.cwd()).resolve()
    for directory in (current, *current.parents):
        if (directory / "pyproject.toml").exists():
            return directory
        if (directory / ".git").exists():
            return directory
        if (directory / "setup.py").exists():
            return directory
    return current


def discover_env_files(project_root: Path | None = None) -> list[Path]:
    """Return an ordered list of ``.env`` files that exist on disk."""
    root = (project_root or find_project_root()).resolve()
    candidates = [root / ".env.base", root / ".env.local", root / ".env"]
    return [p for p in candidates if p.is_file()]
