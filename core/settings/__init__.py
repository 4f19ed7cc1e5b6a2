"""File-backed settings and keybindings."""

from .errors import (
    FileSystemError,
    InitializationError,
    NotReadyError,
    ParseError,
    PermissionDeniedError,
    SettingsError,
    ValidationError,
)
from .paths import PathResolver, SettingsPaths
from .settings_manager import ManagerState, SettingsManager
from .toml_autofix import AutoFixResult

__all__ = [
    "AutoFixResult",
    "FileSystemError",
    "InitializationError",
    "ManagerState",
    "NotReadyError",
    "ParseError",
    "PathResolver",
    "PermissionDeniedError",
    "SettingsError",
    "SettingsManager",
    "SettingsPaths",
    "ValidationError",
]
