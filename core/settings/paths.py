"""Config file locations per operating system."""

from __future__ import annotations

import logging
import os
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

import platformdirs
from platformdirs.api import PlatformDirsABC
from platformdirs.unix import Unix

from core.config import ENV_CONFIG_DIR

from .file_io import as_settings_error

logger = logging.getLogger(__name__)

SETTINGS_FILE_NAME = "settings.toml"
KEYBINDINGS_FILE_NAME = "keybindings.toml"
BACKUP_DIR_NAME = "backups"


@dataclass(frozen=True)
class SettingsPaths:
    """Resolved locations of the managed files."""

    config_dir: Path
    settings_file: Path
    keybindings_file: Path
    backup_dir: Path
    legacy_dir: Optional[Path]
    legacy_database: Path


class PathResolver:
    """Compute OS-appropriate config paths without touching the disk.

    The per-OS user config root comes from ``platformdirs``; ``dirs_class``
    defaults to the class for the running OS and can be swapped for another
    ``platformdirs`` implementation.
    """

    UNIX_DIR_NAME = "taskdesk"
    APP_DIR_NAME = "TaskDesk"

    def __init__(
        self,
        dirs_class: Optional[type[PlatformDirsABC]] = None,
        home: Optional[Path] = None,
        environ: Optional[Mapping[str, str]] = None,
    ):
        self._dirs_class = dirs_class or platformdirs.PlatformDirs
        self._home = home
        self._environ = os.environ if environ is None else environ

    @property
    def dirs_class(self) -> type[PlatformDirsABC]:
        return self._dirs_class

    @property
    def is_unix(self) -> bool:
        return issubclass(self._dirs_class, Unix)

    @property
    def app_dir_name(self) -> str:
        return self.UNIX_DIR_NAME if self.is_unix else self.APP_DIR_NAME

    @property
    def home(self) -> Path:
        return self._home if self._home is not None else Path.home()

    def probe(self) -> bool:
        """Whether the host home directory is reachable yet."""
        try:
            return self.home.is_dir()
        except (OSError, RuntimeError):
            return False

    def config_dir(self) -> Path:
        override = self._environ.get(ENV_CONFIG_DIR)
        if override:
            return Path(override).expanduser()
        dirs = self._dirs_class(self.app_dir_name, appauthor=False, roaming=True)
        return Path(dirs.user_config_dir)

    def legacy_dir(self) -> Optional[Path]:
        """Pre-XDG location used by older Linux builds."""
        if self.is_unix:
            return self.home / ".local" / "share" / self.UNIX_DIR_NAME
        return None

    def resolve(self) -> SettingsPaths:
        config_dir = self.config_dir()
        return SettingsPaths(
            config_dir=config_dir,
            settings_file=config_dir / SETTINGS_FILE_NAME,
            keybindings_file=config_dir / KEYBINDINGS_FILE_NAME,
            backup_dir=config_dir / BACKUP_DIR_NAME,
            legacy_dir=self.legacy_dir(),
            legacy_database=self.home / ".taskdesk" / "database.db",
        )


def ensure_directories(paths: SettingsPaths) -> None:
    """Create the config and backup directories and pull legacy files forward."""
    for directory in (paths.config_dir, paths.backup_dir):
        if directory.is_dir():
            continue
        logger.info("Creating directory: %s", directory)
        try:
            directory.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise as_settings_error(exc, directory, "create directory") from exc

    if paths.legacy_dir is None or not paths.legacy_dir.is_dir():
        return

    for target in (paths.settings_file, paths.keybindings_file):
        source = paths.legacy_dir / target.name
        if not source.is_file():
            continue
        if target.exists():
            logger.info("Skipping legacy %s: %s already exists", source, target)
            continue
        try:
            shutil.copy2(source, target)
            logger.info("Copied legacy %s to %s", source, target)
        except OSError as exc:
            logger.error("Failed to copy legacy file %s: %s", source, exc)
