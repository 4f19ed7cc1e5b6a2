"""Tests for logging setup."""

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

import pytest
from platformdirs.unix import Unix

from core.infrastructure.logging_config import (
    ENV_SETTINGS_LEVEL,
    SubsystemLevelFilter,
    configure_logging,
    is_settings_logger,
    parse_level,
)
from core.settings.paths import PathResolver


@pytest.fixture
def paths(tmp_path: Path):
    environ = {"TASKDESK_CONFIG_DIR": str(tmp_path / "cfg")}
    return PathResolver(dirs_class=Unix, home=tmp_path, environ=environ).resolve()


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    saved_handlers, saved_level = root.handlers[:], root.level
    yield root
    for handler in root.handlers[:]:
        root.removeHandler(handler)
        handler.close()
    for handler in saved_handlers:
        root.addHandler(handler)
    root.setLevel(saved_level)
    logging.captureWarnings(False)


def test_parse_level() -> None:
    assert parse_level("debug", logging.INFO) == logging.DEBUG
    assert parse_level(" Warning ", logging.INFO) == logging.WARNING
    assert parse_level("nonsense", logging.INFO) == logging.INFO
    assert parse_level(None, logging.WARNING) == logging.WARNING


def test_is_settings_logger() -> None:
    assert is_settings_logger("core.settings.settings_manager")
    assert is_settings_logger("core.services")
    assert not is_settings_logger("core.settingsx")
    assert not is_settings_logger("ui.main_window")


def test_filter_applies_subsystem_threshold() -> None:
    level_filter = SubsystemLevelFilter(logging.WARNING, logging.DEBUG)

    def record(name: str, level: int) -> logging.LogRecord:
        return logging.LogRecord(name, level, __file__, 1, "msg", None, None)

    assert level_filter.filter(record("core.services.file_watcher_service", logging.DEBUG))
    assert not level_filter.filter(record("ui.main_window", logging.INFO))
    assert level_filter.filter(record("ui.main_window", logging.ERROR))


def test_log_file_lives_in_config_dir(paths, restore_root_logger) -> None:
    log_file = configure_logging(paths, environ={})

    assert log_file == paths.config_dir / "logs" / "taskdesk.log"
    file_handlers = [h for h in restore_root_logger.handlers if isinstance(h, RotatingFileHandler)]
    assert len(file_handlers) == 1
    assert restore_root_logger.level == logging.INFO


def test_settings_level_is_independent(paths, restore_root_logger) -> None:
    log_file = configure_logging(paths, file_level="INFO", environ={ENV_SETTINGS_LEVEL: "DEBUG"})

    logging.getLogger("core.services.file_watcher_service").debug("watcher detail")
    logging.getLogger("ui.main_window").debug("window detail")
    for handler in restore_root_logger.handlers:
        handler.flush()

    text = log_file.read_text(encoding="utf-8")
    assert "watcher detail" in text
    assert "window detail" not in text


def test_unwritable_log_dir_falls_back_to_console(tmp_path: Path, restore_root_logger) -> None:
    (tmp_path / "cfg").write_text("not a directory", encoding="utf-8")
    paths = PathResolver(
        dirs_class=Unix, home=tmp_path, environ={"TASKDESK_CONFIG_DIR": str(tmp_path / "cfg")}
    ).resolve()

    assert configure_logging(paths, environ={}) is None
    assert not any(isinstance(h, RotatingFileHandler) for h in restore_root_logger.handlers)
