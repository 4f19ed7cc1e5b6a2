"""ViewModel exposing settings state and file errors to the UI."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from PySide6.QtCore import QObject, Signal

from core.models import ChangeEvent, SettingsKind
from core.settings import (
    AutoFixResult,
    NotReadyError,
    ParseError,
    SettingsError,
    SettingsManager,
)
from core.settings.toml_autofix import can_auto_fix

logger = logging.getLogger(__name__)

_FILE_LABELS = {
    SettingsKind.SETTINGS: "Settings",
    SettingsKind.KEYBINDINGS: "Keybindings",
}


@dataclass(frozen=True)
class SettingsFileError:
    """An error attached to one of the managed files."""

    kind: SettingsKind
    error: SettingsError

    @property
    def file_name(self) -> Optional[str]:
        return self.error.path.name if self.error.path is not None else None

    @property
    def line(self) -> Optional[int]:
        return self.error.line if isinstance(self.error, ParseError) else None

    @property
    def can_auto_fix(self) -> bool:
        return isinstance(self.error, ParseError) and can_auto_fix(self.error)

    @property
    def user_message(self) -> str:
        if not isinstance(self.error, ParseError):
            return self.error.message
        parts = [f"{_FILE_LABELS[self.kind]} configuration file has syntax errors."]
        if self.error.line is not None:
            parts.append(f"Check line {self.error.line}.")
        if self.error.suggestion:
            parts.append(self.error.suggestion)
        return " ".join(parts)


class SettingsViewModel(QObject):
    """Bridge between the settings manager and widgets."""

    settings_changed = Signal(object)
    keybindings_changed = Signal(object)
    errors_changed = Signal()
    auto_fix_finished = Signal(bool, str)

    def __init__(self, manager: SettingsManager, parent: Optional[QObject] = None):
        super().__init__(parent)
        self._manager = manager
        self._errors: dict[SettingsKind, SettingsFileError] = {}
        self._manager.reload_failed.connect(self._on_reload_failed)
        self._manager.reload_succeeded.connect(self._on_reload_succeeded)
        self._unsubscribe = self._manager.on_change(self._on_settings_change)

    @property
    def manager(self) -> SettingsManager:
        return self._manager

    @property
    def errors(self) -> list[SettingsFileError]:
        return list(self._errors.values())

    def current_error(self) -> Optional[SettingsFileError]:
        return next(iter(self._errors.values()), None)

    def sync_errors(self) -> None:
        """Pick up parse errors recorded while the manager was starting."""
        for kind, error in self._manager.last_errors.items():
            self._errors[kind] = SettingsFileError(kind, error)
        self.errors_changed.emit()

    def report_initialization_error(self, error: SettingsError) -> None:
        self._errors[SettingsKind.SETTINGS] = SettingsFileError(SettingsKind.SETTINGS, error)
        self.errors_changed.emit()

    def dismiss_error(self, kind: SettingsKind) -> None:
        if self._errors.pop(kind, None) is not None:
            self.errors_changed.emit()

    def request_auto_fix(self, kind: SettingsKind) -> AutoFixResult:
        """Run the auto-fix the user confirmed for ``kind``."""
        try:
            result = self._manager.apply_auto_fix(kind)
        except SettingsError as exc:
            logger.error("Auto-fix failed: %s", exc)
            result = AutoFixResult(success=False, errors=[str(exc)])

        if result.success:
            self._errors.pop(kind, None)
            self.errors_changed.emit()
            self.auto_fix_finished.emit(True, ", ".join(result.fixes_applied))
        else:
            self.auto_fix_finished.emit(False, "; ".join(result.errors))
        return result

    def dispose(self) -> None:
        self._unsubscribe()

    def _kind_for(self, path: Optional[Path]) -> SettingsKind:
        try:
            if path is not None and path == self._manager.get_keybindings_path():
                return SettingsKind.KEYBINDINGS
        except NotReadyError:
            pass
        return SettingsKind.SETTINGS

    def _on_reload_failed(self, error: ParseError) -> None:
        kind = self._kind_for(error.path)
        self._errors[kind] = SettingsFileError(kind, error)
        self.errors_changed.emit()

    def _on_reload_succeeded(self, kind_value: str) -> None:
        self.dismiss_error(SettingsKind(kind_value))

    def _on_settings_change(self, event: ChangeEvent) -> None:
        if event.kind is SettingsKind.SETTINGS:
            self.settings_changed.emit(event.current)
        else:
            self.keybindings_changed.emit(event.current)
