"""In-memory authoritative copy of settings and keybindings."""

from __future__ import annotations

import copy
import logging
from typing import Any, Callable, Iterable, Mapping, Optional

from pydantic import ValidationError as PydanticValidationError

from core.models import (
    DEFAULT_KEYBINDINGS,
    DEFAULT_SETTINGS,
    AppSettings,
    ChangeEvent,
    Keybinding,
    KeybindingSnapshot,
)

logger = logging.getLogger(__name__)

Listener = Callable[[ChangeEvent], None]


def merge_with_defaults(loaded: Optional[Mapping[str, Any]], defaults: Mapping[str, Any]) -> dict[str, Any]:
    """Overlay ``loaded`` on ``defaults`` recursively.

    Mappings merge key by key, anything else (arrays included) replaces the
    default wholesale. ``None`` never overrides a default and keys unknown to
    ``defaults`` are kept. Neither input is mutated.
    """
    result = copy.deepcopy(dict(defaults))
    if not loaded:
        return result
    for key, value in loaded.items():
        if value is None:
            continue
        base = result.get(key)
        if isinstance(value, Mapping) and isinstance(base, Mapping):
            result[key] = merge_with_defaults(value, base)
        else:
            result[key] = copy.deepcopy(value)
    return result


def _reset_leaf(data: dict[str, Any], loc: tuple, defaults: Mapping[str, Any]) -> bool:
    target: Any = data
    default: Any = defaults
    for part in loc[:-1]:
        if not isinstance(target, dict) or part not in target:
            return False
        target = target[part]
        default = default.get(part, {}) if isinstance(default, Mapping) else {}
    leaf = loc[-1]
    if not isinstance(target, dict):
        return False
    if isinstance(default, Mapping) and leaf in default:
        target[leaf] = copy.deepcopy(default[leaf])
    else:
        target.pop(leaf, None)
    return True


def coerce_settings(
    data: Optional[Mapping[str, Any]], fallback: Optional[AppSettings] = None
) -> AppSettings:
    """Build ``AppSettings`` from parsed TOML, resetting invalid leaves.

    An invalid leaf takes its value from ``fallback`` when given, otherwise
    from the defaults.
    """
    defaults = DEFAULT_SETTINGS.to_toml_dict()
    merged = merge_with_defaults(data, defaults)
    restore = fallback.to_toml_dict() if fallback is not None else defaults
    try:
        return AppSettings.model_validate(merged)
    except PydanticValidationError as exc:
        for error in exc.errors():
            loc = tuple(error["loc"])
            if not loc:
                continue
            logger.warning(
                "Invalid setting %s=%r (%s); keeping %s",
                ".".join(str(part) for part in loc),
                error.get("input"),
                error["msg"],
                "previous value" if fallback is not None else "default",
            )
            _reset_leaf(merged, loc, restore)

    try:
        return AppSettings.model_validate(merged)
    except PydanticValidationError as exc:
        logger.error("Settings still invalid after resetting fields, using defaults: %s", exc)
        return DEFAULT_SETTINGS


def dedupe_keybindings(bindings: Iterable[Keybinding]) -> KeybindingSnapshot:
    """Keep one binding per key; the last occurrence wins and takes its position."""
    by_key: dict[str, Keybinding] = {}
    for binding in bindings:
        by_key.pop(binding.key, None)
        by_key[binding.key] = binding
    return tuple(by_key.values())


def parse_keybindings(data: Optional[Mapping[str, Any]]) -> KeybindingSnapshot:
    """Read the ``keybindings`` array of a parsed keybindings.toml."""
    if not data or "keybindings" not in data:
        return DEFAULT_KEYBINDINGS
    entries = data["keybindings"]
    if not isinstance(entries, list):
        logger.warning("keybindings is not an array; using defaults")
        return DEFAULT_KEYBINDINGS

    bindings = []
    for index, entry in enumerate(entries):
        if not isinstance(entry, Mapping):
            logger.warning("Skipping keybinding #%d: not a table", index)
            continue
        key = entry.get("key")
        command = entry.get("command")
        if not isinstance(key, str) or not key.strip() or not isinstance(command, str) or not command.strip():
            logger.warning("Skipping keybinding #%d: missing key or command", index)
            continue
        try:
            bindings.append(Keybinding.model_validate(entry))
        except PydanticValidationError as exc:
            logger.warning("Skipping keybinding #%d: %s", index, exc)
    return dedupe_keybindings(bindings)


class SettingsStore:
    """Holds the current snapshots and fans out change events."""

    def __init__(self):
        self._settings: AppSettings = DEFAULT_SETTINGS
        self._keybindings: KeybindingSnapshot = DEFAULT_KEYBINDINGS
        self._listeners: list[Listener] = []
        self.delivered_count = 0
        self.failed_count = 0

    @property
    def settings(self) -> AppSettings:
        return self._settings

    @property
    def keybindings(self) -> KeybindingSnapshot:
        return self._keybindings

    def replace_settings(self, settings: AppSettings) -> AppSettings:
        previous = self._settings
        self._settings = settings
        return previous

    def replace_keybindings(self, keybindings: KeybindingSnapshot) -> KeybindingSnapshot:
        previous = self._keybindings
        self._keybindings = tuple(keybindings)
        return previous

    def preview_settings(self, partial: Mapping[str, Any]) -> AppSettings:
        """Settings that would result from applying ``partial``, without storing them."""
        current = self._settings.to_toml_dict()
        merged = merge_with_defaults(AppSettings.alias_partial(partial), current)
        return coerce_settings(merged, fallback=self._settings)

    def on_change(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def listener_count(self) -> int:
        return len(self._listeners)

    def clear_listeners(self) -> None:
        self._listeners.clear()

    def notify(self, event: ChangeEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                self.failed_count += 1
                logger.exception("Settings listener failed for %s change", event.kind.value)
            else:
                self.delivered_count += 1
