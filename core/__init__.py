"""
Core package for TaskDesk.
Settings models, the file-backed settings manager and its persistence,
usable independently of the UI layer.
"""

from core.config import SettingsOptions
from core.models import AppSettings, ChangeEvent, Keybinding

__all__ = [
    "SettingsOptions",
    "AppSettings",
    "ChangeEvent",
    "Keybinding",
]
