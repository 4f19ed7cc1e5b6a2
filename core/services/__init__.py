"""Services package for Qt-side helpers."""

from .file_watcher_service import FileWatcherService, WatchState

__all__ = [
    "FileWatcherService",
    "WatchState",
]
