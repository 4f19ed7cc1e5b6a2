"""Content-aware watcher for a single managed config file."""

from __future__ import annotations

import hashlib
import logging
from enum import Enum
from pathlib import Path
from typing import Optional, Union

from PySide6.QtCore import QObject, QFileSystemWatcher, QTimer, Signal

logger = logging.getLogger(__name__)


class WatchState(str, Enum):
    STOPPED = "stopped"
    ACTIVE = "active"


def text_digest(text: str) -> str:
    return hashlib.sha1(text.encode("utf-8")).hexdigest()


class FileWatcherService(QObject):
    """Watch one file and emit ``file_changed`` once per burst of real edits.

    Notifications whose on-disk content matches the last acknowledged
    content (our own writes, metadata or access-time updates) are dropped.
    Editors that save by atomic replace leave ``QFileSystemWatcher`` watching
    a dead inode, so every reload path goes through ``restart()``.
    While the file is missing the parent directory is watched instead, and
    the file watch comes back as soon as the file reappears.
    """

    file_changed = Signal(str)
    watcher_error = Signal(str)

    def __init__(
        self,
        path: Union[str, Path],
        parent: Optional[QObject] = None,
        debounce_ms: int = 300,
        settle_ms: int = 500,
    ):
        super().__init__(parent)
        self._path = Path(path)
        self._settle_ms = settle_ms
        self._watcher: Optional[QFileSystemWatcher] = None
        self._dir_watcher: Optional[QFileSystemWatcher] = None
        self._enabled = False
        self._acknowledged: Optional[str] = None

        self._debounce_timer = QTimer(self)
        self._debounce_timer.setSingleShot(True)
        self._debounce_timer.setInterval(debounce_ms)
        self._debounce_timer.timeout.connect(self._emit_change)

        self._settle_timer = QTimer(self)
        self._settle_timer.setSingleShot(True)
        self._settle_timer.setInterval(settle_ms)
        self._settle_timer.timeout.connect(self.restart)

    @property
    def path(self) -> Path:
        return self._path

    @property
    def state(self) -> WatchState:
        return WatchState.ACTIVE if self._watcher is not None else WatchState.STOPPED

    def is_active(self) -> bool:
        return self._watcher is not None

    def has_pending_change(self) -> bool:
        return self._debounce_timer.isActive()

    def is_waiting_for_file(self) -> bool:
        return self._dir_watcher is not None

    def start(self) -> None:
        self._enabled = True
        self.restart()

    def stop(self) -> None:
        self._enabled = False
        self.suspend()

    def suspend(self) -> None:
        """Drop the subscription and any pending debounce or settle timer."""
        self._debounce_timer.stop()
        self._settle_timer.stop()
        self._teardown()

    def resume(self, settle_ms: Optional[int] = None) -> None:
        """Re-subscribe after the settle delay."""
        if not self._enabled:
            return
        self._settle_timer.setInterval(self._settle_ms if settle_ms is None else settle_ms)
        self._settle_timer.start()

    def acknowledge(self, text: str) -> None:
        """Record ``text`` as content this process has already seen."""
        self._acknowledged = text_digest(text)

    def restart(self) -> None:
        self._settle_timer.stop()
        self._teardown()
        if not self._enabled:
            return

        if not self._path.exists():
            logger.warning("Not watching %s: file does not exist", self._path)
            self.watcher_error.emit(f"File not found: {self._path}")
            self._watch_directory()
            return

        watcher = QFileSystemWatcher(self)
        if not watcher.addPath(str(self._path)):
            watcher.deleteLater()
            logger.warning("Failed to watch %s", self._path)
            self.watcher_error.emit(f"Unable to watch file: {self._path}")
            return
        watcher.fileChanged.connect(self._on_file_changed)
        self._watcher = watcher
        logger.debug("Watching %s", self._path)

        # An edit may have landed while the watcher was down.
        digest = self._disk_digest()
        if self._acknowledged is not None and digest is not None and digest != self._acknowledged:
            logger.debug("Catch-up change detected for %s", self._path)
            self._queue_change()

    def dispose(self) -> None:
        self.stop()

    def _watch_directory(self) -> None:
        directory = self._path.parent
        watcher = QFileSystemWatcher(self)
        if not directory.is_dir() or not watcher.addPath(str(directory)):
            watcher.deleteLater()
            logger.warning("Unable to watch %s for %s to reappear", directory, self._path.name)
            return
        watcher.directoryChanged.connect(self._on_directory_changed)
        self._dir_watcher = watcher
        logger.debug("Waiting for %s to reappear", self._path)

    def _on_directory_changed(self, _path: str) -> None:
        if self._dir_watcher is not None and self._path.exists():
            logger.info("%s reappeared", self._path)
            self.restart()

    def _teardown(self) -> None:
        if self._dir_watcher is not None:
            dir_watcher = self._dir_watcher
            self._dir_watcher = None
            dir_watcher.directoryChanged.disconnect(self._on_directory_changed)
            directories = dir_watcher.directories()
            if directories:
                dir_watcher.removePaths(directories)
            dir_watcher.deleteLater()
        if self._watcher is None:
            return
        watcher = self._watcher
        self._watcher = None
        watcher.fileChanged.disconnect(self._on_file_changed)
        files = watcher.files()
        if files:
            watcher.removePaths(files)
        watcher.deleteLater()

    def _disk_digest(self) -> Optional[str]:
        try:
            return hashlib.sha1(self._path.read_bytes()).hexdigest()
        except OSError:
            return None

    def _on_file_changed(self, _path: str) -> None:
        if self._watcher is None:
            return
        digest = self._disk_digest()
        if digest is not None and digest == self._acknowledged:
            logger.debug("Ignoring metadata-only change on %s", self._path)
            if str(self._path) not in self._watcher.files():
                self.restart()
            return
        self._queue_change()

    def _queue_change(self) -> None:
        self._debounce_timer.start()

    def _emit_change(self) -> None:
        logger.info("Detected change in %s", self._path)
        self.file_changed.emit(str(self._path))
