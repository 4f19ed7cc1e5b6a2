"""One-shot import of settings stored by pre-TOML builds."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Mapping, Optional

from core.models import DEFAULT_KEYBINDINGS, AppSettings, Keybinding, KeybindingSnapshot
from core.persistence import SettingsRepository

from .file_io import write_text_atomic
from .settings_store import coerce_settings, dedupe_keybindings

logger = logging.getLogger(__name__)

LEGACY_SETTINGS_KEY = "appSettings"

WriteFiles = Callable[[AppSettings, KeybindingSnapshot], None]


@dataclass(frozen=True)
class MigrationResult:
    settings: AppSettings
    keybindings: KeybindingSnapshot
    backup_path: Optional[Path]
    legacy_removed: bool


def _startup_view(legacy: Mapping[str, Any]) -> Optional[str]:
    view = legacy.get("currentView")
    if view == "schedules":
        return "schedules"
    if view == "tasks":
        return "tasks-simple" if legacy.get("detailedMode") is False else "tasks-detailed"
    return None


def convert_legacy_settings(legacy: Mapping[str, Any]) -> AppSettings:
    """Map the flat legacy blob onto the sectioned settings schema."""
    data: dict[str, dict[str, Any]] = {
        "app": {
            "theme": legacy.get("darkMode"),
            "language": legacy.get("language"),
            "alwaysOnTop": legacy.get("alwaysOnTop"),
            "confirmDelete": legacy.get("confirmDelete"),
            "startupView": _startup_view(legacy),
        },
        "server": {"url": legacy.get("serverUrl")},
        "appearance": {"customCss": legacy.get("customCss")},
    }
    return coerce_settings(data)


def extract_legacy_keybindings(legacy: Mapping[str, Any]) -> KeybindingSnapshot:
    """Defaults plus any ``{key: command}`` pairs from the blob, the blob winning."""
    custom = legacy.get("keybindings")
    extracted = []
    if isinstance(custom, Mapping):
        for key, command in custom.items():
            if isinstance(command, str) and command.strip() and key.strip():
                extracted.append(Keybinding(key=key, command=command))
    return dedupe_keybindings([*DEFAULT_KEYBINDINGS, *extracted])


class LegacyMigration:
    """Move the legacy JSON settings blob into the TOML files."""

    def __init__(self, repository: SettingsRepository, backup_dir: Path):
        self._repository = repository
        self._backup_dir = backup_dir

    def run(self, write_files: WriteFiles, now: Optional[datetime] = None) -> Optional[MigrationResult]:
        try:
            setting = self._repository.get(LEGACY_SETTINGS_KEY)
            if setting is None:
                logger.info("No legacy settings found, nothing to migrate")
                return None

            legacy = json.loads(setting.value)
            if not isinstance(legacy, dict):
                logger.warning("Legacy settings blob is not an object, skipping migration")
                return None

            settings = convert_legacy_settings(legacy)
            keybindings = extract_legacy_keybindings(legacy)
            write_files(settings, keybindings)
        except Exception:
            logger.exception("Legacy settings migration failed")
            return None

        backup_path = self._backup(setting.value, now)
        legacy_removed = False
        if backup_path is not None:
            try:
                legacy_removed = self._repository.delete(LEGACY_SETTINGS_KEY)
            except Exception:
                logger.exception("Failed to remove legacy settings key")

        logger.info("Migrated legacy settings (backup: %s)", backup_path)
        return MigrationResult(settings, keybindings, backup_path, legacy_removed)

    def _backup(self, raw: str, now: Optional[datetime]) -> Optional[Path]:
        stamp = (now or datetime.now()).strftime("%Y-%m-%dT%H-%M-%S-%f")
        path = self._backup_dir / f"localStorage-backup-{stamp}.json"
        try:
            write_text_atomic(path, raw)
        except Exception:
            logger.exception("Failed to back up legacy settings; keeping legacy key")
            return None
        logger.info("Legacy settings backed up to %s", path)
        return path
