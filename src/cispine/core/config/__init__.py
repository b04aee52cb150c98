"""Configuration: pydantic-settings model plus ``.env`` discovery."""

from .loader import discover_env_files, find_project_root
from .settings import BackendKind, CiSpineSettings, clear_settings_cache, get_settings

__all__ = [
    "BackendKind",
    "CiSpineSettings",
    "clear_settings_cache",
    "discover_env_files",
    "find_project_root",
    "get_settings",
]
