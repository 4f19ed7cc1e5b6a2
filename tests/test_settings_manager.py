"""Tests for the settings manager."""

import json
import os
from pathlib import Path

import pytest
from platformdirs.unix import Unix

from core.config import SettingsOptions
from core.models import (
    DEFAULT_KEYBINDINGS,
    ChangeEvent,
    ChangeOrigin,
    Keybinding,
    SettingsKind,
)
from core.persistence import Database, SettingsRepository
from core.settings import (
    FileSystemError,
    InitializationError,
    ManagerState,
    NotReadyError,
    PathResolver,
    SettingsManager,
    ValidationError,
)
from core.settings.toml_codec import parse

FAST_OPTIONS = SettingsOptions(
    debounce_ms=50,
    settle_ms=20,
    watch_startup_delay_ms=0,
    filesystem_retry_attempts=3,
    filesystem_retry_delay_ms=0,
)


def _resolver(home: Path) -> PathResolver:
    return PathResolver(
        dirs_class=Unix,
        home=home,
        environ={"TASKDESK_CONFIG_DIR": str(home / "config" / "taskdesk")},
    )


@pytest.fixture
def manager(qtbot, tmp_path: Path):
    instance = SettingsManager(resolver=_resolver(tmp_path), options=FAST_OPTIONS)
    yield instance
    instance.dispose()


@pytest.fixture
def events(manager: SettingsManager) -> list[ChangeEvent]:
    captured: list[ChangeEvent] = []
    manager.on_change(captured.append)
    return captured


def _write_external(path: Path, text: str) -> None:
    tmp = path.with_suffix(".editor-tmp")
    tmp.write_text(text, encoding="utf-8")
    os.replace(tmp, path)


def test_fresh_start_uses_defaults(manager: SettingsManager, tmp_path: Path) -> None:
    manager.initialize()

    assert manager.state is ManagerState.READY
    assert manager.get_settings().app.theme == "auto"
    assert manager.get_keybindings() == DEFAULT_KEYBINDINGS
    assert manager.get_settings_path() == tmp_path / "config" / "taskdesk" / "settings.toml"
    assert manager.get_settings_path().is_file()
    assert manager.get_keybindings_path().is_file()
    assert (tmp_path / "config" / "taskdesk" / "backups").is_dir()


def test_initialize_is_idempotent_when_ready(manager: SettingsManager) -> None:
    manager.initialize()
    text = manager.get_settings_path().read_text(encoding="utf-8")

    manager.initialize()

    assert manager.state is ManagerState.READY
    assert manager.get_settings_path().read_text(encoding="utf-8") == text


def test_operations_require_ready_state(manager: SettingsManager) -> None:
    with pytest.raises(NotReadyError):
        manager.update_settings({"app": {"theme": "dark"}})
    with pytest.raises(NotReadyError):
        manager.add_keybinding(Keybinding(key="F5", command="refresh"))
    with pytest.raises(NotReadyError):
        manager.get_settings_path()


def test_filesystem_wait_exhausts_retries(qtbot, tmp_path: Path) -> None:
    sleeps: list[float] = []
    manager = SettingsManager(
        resolver=_resolver(tmp_path / "not-mounted"),
        options=FAST_OPTIONS,
        sleep=sleeps.append,
    )

    with pytest.raises(InitializationError) as excinfo:
        manager.initialize()

    assert isinstance(excinfo.value.__cause__, FileSystemError)
    assert len(sleeps) == FAST_OPTIONS.filesystem_retry_attempts - 1
    assert manager.state is ManagerState.FAILED

    with pytest.raises(InitializationError) as again:
        manager.initialize()
    assert again.value is excinfo.value
    with pytest.raises(NotReadyError):
        manager.update_settings({"app": {"theme": "dark"}})


def test_directory_failure_is_fatal(qtbot, tmp_path: Path) -> None:
    blocker = tmp_path / "config"
    blocker.write_text("not a directory", encoding="utf-8")
    manager = SettingsManager(resolver=_resolver(tmp_path), options=FAST_OPTIONS)

    with pytest.raises(InitializationError):
        manager.initialize()
    assert manager.state is ManagerState.FAILED


def test_update_settings_rewrites_single_line(manager, events) -> None:
    manager.initialize()
    path = manager.get_settings_path()
    before = path.read_text(encoding="utf-8")

    manager.update_settings({"app": {"theme": "dark"}})

    after = path.read_text(encoding="utf-8")
    assert after == before.replace('theme = "auto"', 'theme = "dark"')
    assert manager.get_settings().app.theme == "dark"
    assert len(events) == 1
    assert events[0].origin is ChangeOrigin.APP
    assert events[0].previous.app.theme == "auto"
    assert events[0].current.app.theme == "dark"


def test_update_settings_accepts_snake_case(manager, events) -> None:
    manager.initialize()

    manager.update_settings({"ui": {"font_size": 18}, "app": {"always_on_top": True}})

    value, _ = parse(manager.get_settings_path().read_text(encoding="utf-8"))
    assert value["ui"]["fontSize"] == 18
    assert value["app"]["alwaysOnTop"] is True
    assert manager.get_settings().app.always_on_top is True


def test_empty_update_writes_nothing(manager, events) -> None:
    manager.initialize()
    path = manager.get_settings_path()
    stat_before = path.stat()

    manager.update_settings({})
    manager.update_settings({"app": {"theme": "auto"}})

    assert path.stat().st_mtime_ns == stat_before.st_mtime_ns
    assert events == []


def test_write_error_leaves_state_untouched(manager, events, monkeypatch) -> None:
    manager.initialize()
    before = manager.get_settings()

    def failing_write(path, content):
        raise FileSystemError("disk full", path)

    monkeypatch.setattr("core.settings.settings_manager.write_text_atomic", failing_write)

    with pytest.raises(FileSystemError):
        manager.update_settings({"app": {"theme": "dark"}})

    assert manager.get_settings() == before
    assert events == []


def test_add_keybinding_replaces_same_key(manager, events) -> None:
    manager.initialize()

    manager.add_keybinding(Keybinding(key="Ctrl+N", command="task.add", args={"position": "end"}))

    bindings = manager.get_keybindings()
    matching = [kb for kb in bindings if kb.key == "Ctrl+N"]
    assert matching == [Keybinding(key="Ctrl+N", command="task.add", args={"position": "end"})]
    on_disk, _ = parse(manager.get_keybindings_path().read_text(encoding="utf-8"))
    keys = [entry["key"] for entry in on_disk["keybindings"]]
    assert len(keys) == len(set(keys))
    assert events[-1].kind is SettingsKind.KEYBINDINGS


def test_add_keybinding_rejects_blank_command(manager) -> None:
    manager.initialize()
    with pytest.raises(ValidationError):
        manager.add_keybinding(Keybinding(key="F5", command="  "))


def test_remove_unknown_keybinding_still_emits(manager, events) -> None:
    manager.initialize()
    path = manager.get_keybindings_path()
    path.write_text("# stale\n", encoding="utf-8")

    manager.remove_keybinding("Ctrl+Alt+Nothing")

    assert len(events) == 1
    assert events[0].previous == events[0].current
    assert "[[keybindings]]" in path.read_text(encoding="utf-8")


def test_remove_keybinding(manager) -> None:
    manager.initialize()
    manager.remove_keybinding("F1")
    assert all(kb.key != "F1" for kb in manager.get_keybindings())


def test_external_edits_are_detected_twice(qtbot, manager, events) -> None:
    manager.initialize()
    manager.start_watching()
    path = manager.get_settings_path()
    original = path.read_text(encoding="utf-8")

    path.write_text(original.replace('theme = "auto"', 'theme = "dark"'), encoding="utf-8")
    qtbot.waitUntil(lambda: manager.get_settings().app.theme == "dark", timeout=3000)

    _write_external(path, original.replace('theme = "auto"', 'theme = "light"'))
    qtbot.waitUntil(lambda: manager.get_settings().app.theme == "light", timeout=3000)

    assert [event.origin for event in events] == [ChangeOrigin.FILE, ChangeOrigin.FILE]


def test_app_writes_do_not_trigger_reload(qtbot, manager, events) -> None:
    manager.initialize()
    manager.start_watching()

    manager.update_settings({"app": {"theme": "dark"}})
    manager.add_keybinding(Keybinding(key="F5", command="refresh"))
    qtbot.wait(400)

    assert [event.origin for event in events] == [ChangeOrigin.APP, ChangeOrigin.APP]
    assert manager.watcher(SettingsKind.SETTINGS).is_active()


def test_reload_failure_keeps_state_and_records_error(qtbot, manager, events) -> None:
    manager.initialize()
    path = manager.get_settings_path()
    path.write_text('[app]\ntheme = "dark\n', encoding="utf-8")

    with qtbot.waitSignal(manager.reload_failed) as blocker:
        manager._reload(SettingsKind.SETTINGS)

    assert blocker.args[0].line == 2
    assert manager.get_settings().app.theme == "auto"
    assert SettingsKind.SETTINGS in manager.last_errors
    assert events == []


def test_apply_auto_fix_backs_up_and_applies(qtbot, manager, events, tmp_path: Path) -> None:
    manager.initialize()
    path = manager.get_settings_path()
    path.write_text('[app]\ntheme = "dark\n', encoding="utf-8")
    manager._reload(SettingsKind.SETTINGS)

    with qtbot.waitSignal(manager.reload_succeeded):
        result = manager.apply_auto_fix(SettingsKind.SETTINGS)

    assert result.success
    assert result.backup_path.parent == tmp_path / "config" / "taskdesk" / "backups"
    assert result.backup_path.read_text(encoding="utf-8") == '[app]\ntheme = "dark\n'
    assert manager.get_settings().app.theme == "dark"
    assert manager.last_errors == {}
    assert events[-1].origin is ChangeOrigin.FILE


def test_apply_auto_fix_without_error(manager) -> None:
    manager.initialize()
    result = manager.apply_auto_fix(SettingsKind.SETTINGS)
    assert not result.success


def test_broken_file_at_startup_falls_back_to_defaults(qtbot, tmp_path: Path) -> None:
    config_dir = tmp_path / "config" / "taskdesk"
    config_dir.mkdir(parents=True)
    (config_dir / "settings.toml").write_text('[app]\ntheme = "\\!dark"\n', encoding="utf-8")
    manager = SettingsManager(resolver=_resolver(tmp_path), options=FAST_OPTIONS)

    manager.initialize()

    assert manager.state is ManagerState.READY
    assert manager.get_settings().app.theme == "auto"
    assert manager.last_errors[SettingsKind.SETTINGS].line == 2
    manager.dispose()


def test_dispose_refuses_later_mutations(manager) -> None:
    manager.initialize()
    manager.start_watching()

    manager.dispose()

    assert not manager.watcher(SettingsKind.SETTINGS).is_active()
    assert manager.store.listener_count() == 0
    with pytest.raises(NotReadyError):
        manager.update_settings({"app": {"theme": "dark"}})
    with pytest.raises(NotReadyError):
        manager.remove_keybinding("F1")


def test_legacy_blob_is_migrated(qtbot, tmp_path: Path) -> None:
    database = Database(tmp_path / ".taskdesk" / "database.db")
    SettingsRepository(database).set(
        "appSettings",
        json.dumps({"darkMode": "dark", "serverUrl": "http://tasks.local:3001"}),
        "app",
    )
    database.close()

    manager = SettingsManager(resolver=_resolver(tmp_path), options=FAST_OPTIONS)
    events: list[ChangeEvent] = []
    manager.on_change(events.append)

    manager.initialize()

    assert manager.get_settings().app.theme == "dark"
    assert manager.get_settings().server.url == "http://tasks.local:3001"
    assert [event.origin for event in events] == [ChangeOrigin.MIGRATION]
    backups = list((tmp_path / "config" / "taskdesk" / "backups").glob("localStorage-backup-*.json"))
    assert len(backups) == 1

    check = Database(tmp_path / ".taskdesk" / "database.db")
    assert SettingsRepository(check).get("appSettings") is None
    check.close()
    manager.dispose()


@pytest.mark.parametrize(
    "layout",
    [
        'app = { theme = "dark" }\n\n[server]\nurl = "http://localhost:3001"\n',
        'app.theme = "dark"\n\n[server]\nurl = "http://localhost:3001"\n',
    ],
    ids=["inline-table", "dotted-keys"],
)
def test_update_settings_keeps_hand_written_layout_valid(qtbot, tmp_path: Path, layout: str) -> None:
    config_dir = tmp_path / "config" / "taskdesk"
    config_dir.mkdir(parents=True)
    (config_dir / "settings.toml").write_text(layout, encoding="utf-8")
    manager = SettingsManager(resolver=_resolver(tmp_path), options=FAST_OPTIONS)
    manager.initialize()
    assert manager.get_settings().app.theme == "dark"

    manager.update_settings({"app": {"theme": "light", "language": "ja"}})
    manager.update_settings({"ui": {"font_size": 20}})
    manager.dispose()

    restarted = SettingsManager(resolver=_resolver(tmp_path), options=FAST_OPTIONS)
    restarted.initialize()
    assert restarted.last_errors == {}
    assert restarted.get_settings().app.theme == "light"
    assert restarted.get_settings().app.language == "ja"
    assert restarted.get_settings().ui.font_size == 20
    assert "[app]" not in restarted.get_settings_path().read_text(encoding="utf-8")
    restarted.dispose()


def test_invalid_update_keeps_current_value(manager, events) -> None:
    manager.initialize()
    manager.update_settings({"ui": {"font_size": 20}})
    path = manager.get_settings_path()
    text = path.read_text(encoding="utf-8")

    manager.update_settings({"ui": {"font_size": 500}})

    assert manager.get_settings().ui.font_size == 20
    assert path.read_text(encoding="utf-8") == text
    assert len(events) == 1


def test_deleted_then_recreated_file_is_reloaded(qtbot, manager, events) -> None:
    manager.initialize()
    manager.start_watching()
    path = manager.get_settings_path()
    original = path.read_text(encoding="utf-8")

    path.unlink()
    qtbot.waitUntil(lambda: manager.watcher(SettingsKind.SETTINGS).is_waiting_for_file(), timeout=3000)
    path.write_text(original.replace('theme = "auto"', 'theme = "dark"'), encoding="utf-8")

    qtbot.waitUntil(lambda: manager.get_settings().app.theme == "dark", timeout=3000)
    assert events[-1].origin is ChangeOrigin.FILE
