"""Settings manager: owns the TOML files, their watchers and the in-memory state."""

from __future__ import annotations

import logging
import time
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Mapping, Optional

from PySide6.QtCore import QObject, QTimer, Signal

from core.config import SettingsOptions
from core.models import (
    DEFAULT_KEYBINDINGS,
    DEFAULT_SETTINGS,
    AppSettings,
    ChangeEvent,
    ChangeOrigin,
    Keybinding,
    KeybindingSnapshot,
    SettingsKind,
)
from core.persistence import Database, SettingsRepository
from core.services.file_watcher_service import FileWatcherService

from .errors import (
    FileSystemError,
    InitializationError,
    NotReadyError,
    ParseError,
    SettingsError,
    ValidationError,
)
from .file_io import read_text, write_text_atomic
from .migration import LegacyMigration, MigrationResult
from .paths import PathResolver, SettingsPaths, ensure_directories
from .settings_store import (
    Listener,
    SettingsStore,
    coerce_settings,
    dedupe_keybindings,
    parse_keybindings,
)
from .toml_autofix import AutoFixResult, can_auto_fix, fix_file
from .toml_codec import (
    default_keybindings_text,
    default_settings_text,
    parse,
    render_keybindings,
    serialize_incremental,
)

logger = logging.getLogger(__name__)


class ManagerState(str, Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"
    FAILED = "failed"


class SettingsManager(QObject):
    """Single owner of settings.toml and keybindings.toml.

    App-originated changes are written with the file watcher suspended so
    they never come back as reloads; external edits are reloaded, validated
    and pushed to listeners with ``origin=file``.
    """

    state_changed = Signal(str)
    reload_failed = Signal(object)
    reload_succeeded = Signal(str)

    def __init__(
        self,
        resolver: Optional[PathResolver] = None,
        options: Optional[SettingsOptions] = None,
        sleep: Callable[[float], None] = time.sleep,
        parent: Optional[QObject] = None,
    ):
        super().__init__(parent)
        self._resolver = resolver or PathResolver()
        self._options = options or SettingsOptions.from_env()
        self._sleep = sleep
        self._store = SettingsStore()
        self._state = ManagerState.UNINITIALIZED
        self._init_error: Optional[InitializationError] = None
        self._paths: Optional[SettingsPaths] = None
        self._raw: dict[SettingsKind, str] = {}
        self._watchers: dict[SettingsKind, FileWatcherService] = {}
        self._last_errors: dict[SettingsKind, ParseError] = {}
        self._disposed = False

        self._startup_timer = QTimer(self)
        self._startup_timer.setSingleShot(True)
        self._startup_timer.timeout.connect(self.start_watching)

    # ----- State -----

    @property
    def state(self) -> ManagerState:
        return self._state

    @property
    def last_errors(self) -> dict[SettingsKind, ParseError]:
        return dict(self._last_errors)

    @property
    def store(self) -> SettingsStore:
        return self._store

    def watcher(self, kind: SettingsKind) -> Optional[FileWatcherService]:
        return self._watchers.get(kind)

    def _set_state(self, state: ManagerState) -> None:
        if state is self._state:
            return
        logger.debug("Settings manager %s -> %s", self._state.value, state.value)
        self._state = state
        self.state_changed.emit(state.value)

    def _require_ready(self) -> None:
        if self._disposed:
            raise NotReadyError("Settings manager has been disposed")
        if self._state is not ManagerState.READY:
            raise NotReadyError(f"Settings manager is not ready (state: {self._state.value})")

    # ----- Initialization -----

    def initialize(self) -> None:
        """Bring the manager to the ready state.

        Safe to call again once ready. A failed initialization is terminal
        and every later call re-raises the recorded error.
        """
        if self._disposed:
            raise NotReadyError("Settings manager has been disposed")
        if self._state is ManagerState.READY:
            return
        if self._state is ManagerState.FAILED:
            raise self._init_error
        if self._state is ManagerState.INITIALIZING:
            raise NotReadyError("Settings initialization already in progress")

        self._set_state(ManagerState.INITIALIZING)
        try:
            self._wait_for_filesystem()
            paths = self._resolver.resolve()
            ensure_directories(paths)
            self._paths = paths
            migration = self._migrate_if_needed(paths)
            self._load_or_create(SettingsKind.SETTINGS)
            self._load_or_create(SettingsKind.KEYBINDINGS)
            self._create_watchers(paths)
        except Exception as exc:
            path = exc.path if isinstance(exc, SettingsError) else None
            self._init_error = InitializationError(f"Failed to initialize settings: {exc}", path)
            logger.error("Settings initialization failed: %s", exc)
            self._set_state(ManagerState.FAILED)
            raise self._init_error from exc

        self._set_state(ManagerState.READY)
        logger.info("Settings initialized from %s", self._paths.config_dir)

        if migration is not None:
            self._store.notify(
                ChangeEvent(
                    SettingsKind.SETTINGS,
                    DEFAULT_SETTINGS,
                    self._store.settings,
                    ChangeOrigin.MIGRATION,
                )
            )
            if self._store.keybindings != DEFAULT_KEYBINDINGS:
                self._store.notify(
                    ChangeEvent(
                        SettingsKind.KEYBINDINGS,
                        DEFAULT_KEYBINDINGS,
                        self._store.keybindings,
                        ChangeOrigin.MIGRATION,
                    )
                )

        self._startup_timer.setInterval(self._options.watch_startup_delay_ms)
        self._startup_timer.start()

    def _wait_for_filesystem(self) -> None:
        attempts = self._options.filesystem_retry_attempts
        delay = self._options.filesystem_retry_delay_ms / 1000
        for attempt in range(1, attempts + 1):
            if self._resolver.probe():
                return
            logger.warning("Filesystem not ready (attempt %d/%d)", attempt, attempts)
            if attempt < attempts:
                self._sleep(delay)
        raise FileSystemError("Filesystem did not become available", self._resolver.home)

    def _migrate_if_needed(self, paths: SettingsPaths) -> Optional[MigrationResult]:
        if paths.settings_file.exists() or not paths.legacy_database.is_file():
            return None
        logger.info("Found legacy settings database at %s", paths.legacy_database)
        try:
            database = Database(paths.legacy_database)
        except Exception:
            logger.exception("Failed to open legacy settings database")
            return None
        try:
            migration = LegacyMigration(SettingsRepository(database), paths.backup_dir)
            return migration.run(self._write_migrated)
        finally:
            database.close()

    def _write_migrated(self, settings: AppSettings, keybindings: KeybindingSnapshot) -> None:
        write_text_atomic(self._paths.settings_file, default_settings_text(settings))
        write_text_atomic(self._paths.keybindings_file, default_keybindings_text(keybindings))

    def _load_or_create(self, kind: SettingsKind) -> None:
        path = self._path_for(kind)
        if not path.exists():
            if kind is SettingsKind.SETTINGS:
                text = default_settings_text()
            else:
                text = default_keybindings_text()
            write_text_atomic(path, text)
            logger.info("Created default %s", path)
        else:
            text = read_text(path)

        data, error = parse(text, path)
        self._raw[kind] = text
        if error is not None:
            logger.error("Failed to parse %s: %s", path, error)
            self._record_error(kind, error)
            return
        self._apply(kind, data, origin=None)

    def _create_watchers(self, paths: SettingsPaths) -> None:
        for kind in SettingsKind:
            watcher = FileWatcherService(
                self._path_for(kind),
                parent=self,
                debounce_ms=self._options.debounce_ms,
                settle_ms=self._options.settle_ms,
            )
            watcher.acknowledge(self._raw[kind])
            watcher.file_changed.connect(lambda _path, kind=kind: self._reload(kind))
            watcher.watcher_error.connect(
                lambda message, kind=kind: logger.warning("%s watcher: %s", kind.value, message)
            )
            self._watchers[kind] = watcher

    def start_watching(self) -> None:
        if self._disposed or self._state is not ManagerState.READY:
            return
        self._startup_timer.stop()
        for watcher in self._watchers.values():
            watcher.start()
        logger.info("Watching settings files for changes")

    # ----- Reads -----

    def get_settings(self) -> AppSettings:
        return self._store.settings

    def get_keybindings(self) -> KeybindingSnapshot:
        return self._store.keybindings

    def on_change(self, listener: Listener) -> Callable[[], None]:
        if self._disposed:
            raise NotReadyError("Settings manager has been disposed")
        return self._store.on_change(listener)

    def get_settings_path(self) -> Path:
        return self._path_for(SettingsKind.SETTINGS)

    def get_keybindings_path(self) -> Path:
        return self._path_for(SettingsKind.KEYBINDINGS)

    def _path_for(self, kind: SettingsKind) -> Path:
        if self._paths is None:
            raise NotReadyError("Settings paths are not resolved yet")
        if kind is SettingsKind.SETTINGS:
            return self._paths.settings_file
        return self._paths.keybindings_file

    # ----- Writes -----

    def update_settings(self, partial: Mapping[str, Any]) -> None:
        """Merge ``partial`` (snake_case or on-disk keys) into the settings and persist."""
        self._require_ready()
        if not partial:
            return
        previous = self._store.settings
        updated = self._store.preview_settings(partial)
        if updated == previous:
            logger.debug("Settings update changed nothing")
            return

        text = serialize_incremental(
            self._raw[SettingsKind.SETTINGS],
            updated.to_toml_dict(),
            defaults=DEFAULT_SETTINGS.to_toml_dict(),
        )
        self._write_managed(SettingsKind.SETTINGS, text)
        self._store.replace_settings(updated)
        self._store.notify(ChangeEvent(SettingsKind.SETTINGS, previous, updated, ChangeOrigin.APP))

    def add_keybinding(self, keybinding: Keybinding) -> None:
        """Add ``keybinding``, replacing any existing binding for the same key."""
        self._require_ready()
        if not keybinding.key.strip() or not keybinding.command.strip():
            raise ValidationError("Keybinding requires a key and a command")
        previous = self._store.keybindings
        self._commit_keybindings(previous, dedupe_keybindings([*previous, keybinding]))

    def remove_keybinding(self, key: str) -> None:
        self._require_ready()
        previous = self._store.keybindings
        self._commit_keybindings(previous, tuple(kb for kb in previous if kb.key != key))

    def _commit_keybindings(
        self, previous: KeybindingSnapshot, updated: KeybindingSnapshot
    ) -> None:
        self._write_managed(SettingsKind.KEYBINDINGS, render_keybindings(updated))
        self._store.replace_keybindings(updated)
        self._store.notify(
            ChangeEvent(SettingsKind.KEYBINDINGS, previous, updated, ChangeOrigin.APP)
        )

    def _write_managed(self, kind: SettingsKind, text: str) -> None:
        watcher = self._watchers.get(kind)
        if watcher is not None:
            watcher.suspend()
        try:
            write_text_atomic(self._path_for(kind), text)
            if watcher is not None:
                watcher.acknowledge(text)
        finally:
            if watcher is not None:
                watcher.resume()
        self._raw[kind] = text

    # ----- Reloads -----

    def _reload(self, kind: SettingsKind) -> None:
        if self._disposed or self._state is not ManagerState.READY:
            return
        watcher = self._watchers.get(kind)
        try:
            path = self._path_for(kind)
            try:
                text = read_text(path)
            except SettingsError as exc:
                logger.error("Failed to reload %s: %s", path, exc)
                return
            if watcher is not None:
                watcher.acknowledge(text)

            data, error = parse(text, path)
            if error is not None:
                logger.error("Failed to reload %s: %s", path, error)
                self._record_error(kind, error)
                return

            logger.info("Reloaded %s", path)
            self._raw[kind] = text
            self._clear_error(kind)
            self._apply(kind, data, origin=ChangeOrigin.FILE)
        finally:
            if watcher is not None and not self._disposed:
                watcher.restart()

    def _apply(
        self, kind: SettingsKind, data: Mapping[str, Any], origin: Optional[ChangeOrigin]
    ) -> None:
        if kind is SettingsKind.SETTINGS:
            current = coerce_settings(data)
            previous = self._store.replace_settings(current)
        else:
            current = parse_keybindings(data)
            previous = self._store.replace_keybindings(current)
        if origin is not None and current != previous:
            self._store.notify(ChangeEvent(kind, previous, current, origin))

    def _record_error(self, kind: SettingsKind, error: ParseError) -> None:
        self._last_errors[kind] = error
        self.reload_failed.emit(error)

    def _clear_error(self, kind: SettingsKind) -> None:
        if self._last_errors.pop(kind, None) is not None:
            self.reload_succeeded.emit(kind.value)

    # ----- Auto-fix -----

    def apply_auto_fix(self, kind: SettingsKind) -> AutoFixResult:
        """Repair the recorded parse error of ``kind``, backing the file up first."""
        self._require_ready()
        error = self._last_errors.get(kind)
        if error is None:
            return AutoFixResult(success=False, errors=["No parse error recorded for this file"])
        if not can_auto_fix(error):
            return AutoFixResult(success=False, errors=["This error cannot be fixed automatically"])

        path = self._path_for(kind)
        watcher = self._watchers.get(kind)
        if watcher is not None:
            watcher.suspend()
        try:
            result = fix_file(path, error, self._paths.backup_dir)
            if result.success and watcher is not None:
                watcher.acknowledge(result.fixed_content)
        finally:
            if watcher is not None:
                watcher.resume()

        if result.success:
            data, _ = parse(result.fixed_content, path)
            self._raw[kind] = result.fixed_content
            self._clear_error(kind)
            self._apply(kind, data, origin=ChangeOrigin.FILE)
        return result

    # ----- Teardown -----

    def dispose(self) -> None:
        if self._disposed:
            return
        self._disposed = True
        self._startup_timer.stop()
        for watcher in self._watchers.values():
            watcher.dispose()
        self._store.clear_listeners()
        logger.debug("Settings manager disposed")
