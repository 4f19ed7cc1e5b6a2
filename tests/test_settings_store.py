"""Tests for the in-memory settings store and its helpers."""

import copy
import logging

from core.models import (
    DEFAULT_KEYBINDINGS,
    DEFAULT_SETTINGS,
    ChangeEvent,
    ChangeOrigin,
    Keybinding,
    SettingsKind,
)
from core.settings.settings_store import (
    SettingsStore,
    coerce_settings,
    dedupe_keybindings,
    merge_with_defaults,
    parse_keybindings,
)


def test_merge_with_defaults_overlays_recursively() -> None:
    defaults = {"app": {"theme": "auto", "alwaysOnTop": False}, "list": [1, 2]}
    loaded = {"app": {"theme": "dark", "alwaysOnTop": None}, "list": [3], "extra": {"a": 1}}
    defaults_before = copy.deepcopy(defaults)
    loaded_before = copy.deepcopy(loaded)

    merged = merge_with_defaults(loaded, defaults)

    assert merged == {
        "app": {"theme": "dark", "alwaysOnTop": False},
        "list": [3],
        "extra": {"a": 1},
    }
    assert defaults == defaults_before
    assert loaded == loaded_before


def test_merge_with_defaults_handles_empty_input() -> None:
    defaults = {"app": {"theme": "auto"}}
    merged = merge_with_defaults(None, defaults)
    assert merged == defaults
    assert merged is not defaults


def test_merged_partial_equals_field_wise_overlay() -> None:
    partial = {"ui": {"fontSize": 20}}
    settings = coerce_settings(partial)

    assert settings.ui.font_size == 20
    assert settings.ui.font_family == DEFAULT_SETTINGS.ui.font_family
    assert settings.app == DEFAULT_SETTINGS.app


def test_coerce_settings_resets_invalid_leaves(caplog) -> None:
    data = {
        "app": {"theme": "purple", "language": "ja"},
        "ui": {"fontSize": 500},
        "server": {"timeout": "soon"},
    }
    with caplog.at_level(logging.WARNING):
        settings = coerce_settings(data)

    assert settings.app.theme == "auto"
    assert settings.app.language == "ja"
    assert settings.ui.font_size == DEFAULT_SETTINGS.ui.font_size
    assert settings.server.timeout == DEFAULT_SETTINGS.server.timeout
    assert "app.theme" in caplog.text


def test_coerce_settings_replaces_non_table_section() -> None:
    settings = coerce_settings({"app": 5, "server": {"url": "http://example.test"}})
    assert settings.app == DEFAULT_SETTINGS.app
    assert settings.server.url == "http://example.test"


def test_parse_keybindings_drops_incomplete_entries_and_dedupes() -> None:
    data = {
        "keybindings": [
            {"key": "Ctrl+N", "command": "newTask"},
            {"key": "", "command": "nothing"},
            {"key": "Ctrl+X"},
            {"key": "Ctrl+N", "command": "task.add", "args": {"position": "end"}},
            "not a table",
        ]
    }

    bindings = parse_keybindings(data)

    assert bindings == (
        Keybinding(key="Ctrl+N", command="task.add", args={"position": "end"}),
    )


def test_parse_keybindings_defaults_when_array_missing() -> None:
    assert parse_keybindings({}) == DEFAULT_KEYBINDINGS
    assert parse_keybindings({"keybindings": "nope"}) == DEFAULT_KEYBINDINGS
    assert parse_keybindings({"keybindings": []}) == ()


def test_dedupe_keybindings_last_wins() -> None:
    first = Keybinding(key="F1", command="showHelp")
    other = Keybinding(key="F2", command="editTask")
    last = Keybinding(key="F1", command="openSettings")

    assert dedupe_keybindings([first, other, last]) == (other, last)


def test_preview_settings_accepts_both_key_styles() -> None:
    store = SettingsStore()

    snake = store.preview_settings({"app": {"always_on_top": True}})
    camel = store.preview_settings({"app": {"alwaysOnTop": True}})

    assert snake == camel
    assert snake.app.always_on_top is True
    assert store.settings == DEFAULT_SETTINGS


def test_notify_counts_deliveries_and_failures() -> None:
    store = SettingsStore()
    received: list[ChangeEvent] = []

    def broken(_event: ChangeEvent) -> None:
        raise RuntimeError("listener bug")

    store.on_change(broken)
    unsubscribe = store.on_change(received.append)
    event = ChangeEvent(SettingsKind.SETTINGS, DEFAULT_SETTINGS, DEFAULT_SETTINGS, ChangeOrigin.APP)

    store.notify(event)

    assert received == [event]
    assert store.delivered_count == 1
    assert store.failed_count == 1

    unsubscribe()
    unsubscribe()
    store.notify(event)
    assert received == [event]
    assert store.listener_count() == 1


def test_preview_keeps_current_value_for_invalid_update() -> None:
    store = SettingsStore()
    store.replace_settings(store.preview_settings({"ui": {"font_size": 20}}))

    preview = store.preview_settings({"ui": {"font_size": 500}, "app": {"theme": "dark"}})

    assert preview.ui.font_size == 20
    assert preview.app.theme == "dark"


def test_coerce_settings_uses_fallback_for_invalid_leaves() -> None:
    fallback = coerce_settings({"ui": {"fontSize": 30}})
    settings = coerce_settings({"ui": {"fontSize": 500}}, fallback=fallback)
    assert settings.ui.font_size == 30
