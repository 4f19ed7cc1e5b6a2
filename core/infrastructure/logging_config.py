"""
Logging setup for TaskDesk.

Records go to a rotating ``taskdesk.log`` in the config directory and to
stdout. The settings subsystem (watchers, reloads, managed writes) has its
own threshold, so watcher chatter can be turned up to DEBUG while the rest
of the application stays at INFO. Qt's own warnings, such as a
``QFileSystemWatcher`` that cannot add a path, are routed into the ``qt``
logger.

Levels come from arguments or from the environment:

- TASKDESK_LOG_FILE_LEVEL      threshold of the log file (INFO)
- TASKDESK_LOG_CONSOLE_LEVEL   threshold of stdout (INFO)
- TASKDESK_LOG_SETTINGS_LEVEL  threshold for the settings subsystem on both
"""

from __future__ import annotations

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Mapping, Optional

from PySide6.QtCore import QtMsgType, qInstallMessageHandler

from core.settings.paths import SettingsPaths

LOG_DIR_NAME = "logs"
LOG_FILE_NAME = "taskdesk.log"

ENV_FILE_LEVEL = "TASKDESK_LOG_FILE_LEVEL"
ENV_CONSOLE_LEVEL = "TASKDESK_LOG_CONSOLE_LEVEL"
ENV_SETTINGS_LEVEL = "TASKDESK_LOG_SETTINGS_LEVEL"

SETTINGS_LOGGERS = ("core.settings", "core.services", "core.persistence")

_QT_LEVELS = {
    QtMsgType.QtDebugMsg: logging.DEBUG,
    QtMsgType.QtInfoMsg: logging.INFO,
    QtMsgType.QtWarningMsg: logging.WARNING,
    QtMsgType.QtCriticalMsg: logging.ERROR,
    QtMsgType.QtFatalMsg: logging.CRITICAL,
}


def parse_level(value: Optional[str], default: int) -> int:
    if not value:
        return default
    return logging.getLevelNamesMapping().get(value.strip().upper(), default)


def is_settings_logger(name: str) -> bool:
    return any(name == prefix or name.startswith(prefix + ".") for prefix in SETTINGS_LOGGERS)


class SubsystemLevelFilter(logging.Filter):
    """Handler threshold with a separate threshold for the settings loggers."""

    def __init__(self, level: int, settings_level: int):
        super().__init__()
        self.level = level
        self.settings_level = settings_level

    def filter(self, record: logging.LogRecord) -> bool:
        if is_settings_logger(record.name):
            return record.levelno >= self.settings_level
        return record.levelno >= self.level


def _forward_qt_message(mode, context, message: str) -> None:
    logging.getLogger("qt").log(_QT_LEVELS.get(mode, logging.WARNING), message)


def configure_logging(
    paths: SettingsPaths,
    file_level: Optional[str] = None,
    console_level: Optional[str] = None,
    settings_level: Optional[str] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> Optional[Path]:
    """Install the file and console handlers.

    Returns the log file path, or ``None`` when the log directory cannot be
    created and only console logging is active.
    """
    environ = os.environ if environ is None else environ
    file_value = parse_level(file_level or environ.get(ENV_FILE_LEVEL), logging.INFO)
    console_value = parse_level(console_level or environ.get(ENV_CONSOLE_LEVEL), logging.INFO)
    settings_value = parse_level(
        settings_level or environ.get(ENV_SETTINGS_LEVEL), min(file_value, console_value)
    )

    formatter = logging.Formatter("%(asctime)s %(levelname)s [%(name)s] %(message)s")
    log_file: Optional[Path] = paths.config_dir / LOG_DIR_NAME / LOG_FILE_NAME

    handlers: list[logging.Handler] = []
    file_error: Optional[OSError] = None
    try:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=1024 * 1024,
            backupCount=3,
            encoding="utf-8",
        )
    except OSError as exc:
        file_error = exc
        log_file = None
    else:
        file_handler.addFilter(SubsystemLevelFilter(file_value, settings_value))
        handlers.append(file_handler)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.addFilter(SubsystemLevelFilter(console_value, settings_value))
    handlers.append(console_handler)

    for handler in handlers:
        handler.setFormatter(formatter)

    logging.basicConfig(
        level=min(file_value, console_value, settings_value),
        handlers=handlers,
        force=True,
    )
    logging.captureWarnings(True)
    qInstallMessageHandler(_forward_qt_message)

    logger = logging.getLogger(__name__)
    if file_error is not None:
        logger.warning("File logging disabled: %s", file_error)
    else:
        logger.debug("Logging to %s", log_file)
    return log_file
