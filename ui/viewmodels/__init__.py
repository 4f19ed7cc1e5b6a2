"""ViewModels package."""

from .settings_viewmodel import SettingsFileError, SettingsViewModel

__all__ = [
    "SettingsFileError",
    "SettingsViewModel",
]
