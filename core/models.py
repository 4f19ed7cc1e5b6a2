"""Domain models for the settings and keybinding files."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Literal, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class SettingsKind(str, Enum):
    """Which managed file a change concerns."""

    SETTINGS = "settings"
    KEYBINDINGS = "keybindings"


class ChangeOrigin(str, Enum):
    """Where a change came from."""

    FILE = "file"
    APP = "app"
    MIGRATION = "migration"


ThemeMode = Literal["auto", "light", "dark"]
LanguageCode = Literal["auto", "en", "ja"]
StartupView = Literal["tasks-detailed", "tasks-simple", "schedules"]


class _Section(BaseModel):
    """Snake_case in Python, camelCase on disk."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )


class AppSection(_Section):
    theme: ThemeMode = "auto"
    language: LanguageCode = "auto"
    always_on_top: bool = False
    confirm_delete: bool = True
    startup_view: StartupView = "tasks-detailed"


class ServerSection(_Section):
    url: str = "http://localhost:3001"
    reconnect_interval: int = Field(default=5000, ge=0)
    timeout: int = Field(default=30000, ge=0)


class UISection(_Section):
    auto_hide_header: bool = True
    font_size: int = Field(default=14, ge=6, le=72)
    font_family: str = "Inter, sans-serif"


class AppearanceSection(_Section):
    custom_css: str = ""


class AppSettings(_Section):
    """Complete application settings as stored in settings.toml."""

    app: AppSection = Field(default_factory=AppSection)
    server: ServerSection = Field(default_factory=ServerSection)
    ui: UISection = Field(default_factory=UISection)
    appearance: AppearanceSection = Field(default_factory=AppearanceSection)

    def to_toml_dict(self) -> dict[str, Any]:
        """Plain nested dict keyed by on-disk names."""
        return self.model_dump(by_alias=True)

    @classmethod
    def alias_partial(cls, partial: Mapping[str, Any]) -> dict[str, Any]:
        """Rename snake_case keys of a partial update to their on-disk names.

        Unknown sections and keys pass through untouched.
        """
        result: dict[str, Any] = {}
        for section_name, section_value in partial.items():
            section_field = cls.model_fields.get(section_name)
            if section_field is None or not isinstance(section_value, Mapping):
                result[section_name] = section_value
                continue
            section_model = section_field.annotation
            renamed: dict[str, Any] = {}
            for key, value in section_value.items():
                key_field = section_model.model_fields.get(key)
                alias = key_field.alias if key_field is not None and key_field.alias else key
                renamed[alias] = value
            result[section_name] = renamed
        return result


class Keybinding(BaseModel):
    """A single keyboard shortcut entry."""

    model_config = ConfigDict(frozen=True)

    key: str
    command: str
    when: Optional[str] = None
    args: Optional[dict[str, Any]] = None

    def to_toml_dict(self) -> dict[str, Any]:
        return self.model_dump(exclude_none=True)


DEFAULT_SETTINGS = AppSettings()

DEFAULT_KEYBINDINGS: tuple[Keybinding, ...] = (
    # Global
    Keybinding(key="Ctrl+Shift+P", command="openCommandPalette"),
    Keybinding(key="Ctrl+N", command="newTask", when="!inputFocus"),
    Keybinding(key="Ctrl+,", command="openSettings"),
    Keybinding(key="Ctrl+F", command="toggleSearch"),
    Keybinding(key="Ctrl+Shift+F", command="toggleFilter"),
    Keybinding(key="Alt+C", command="toggleCaseSensitive"),
    Keybinding(key="Alt+R", command="toggleRegex"),
    Keybinding(key="Alt+W", command="toggleWholeWord"),
    Keybinding(key="Ctrl+K Ctrl+S", command="showKeybindings"),
    # Tasks
    Keybinding(key="Ctrl+A", command="selectAll", when="!inputFocus"),
    Keybinding(key="Ctrl+D", command="toggleTaskComplete", when="taskSelected && !inputFocus"),
    Keybinding(key="Delete", command="deleteSelected", when="taskSelected && !inputFocus"),
    Keybinding(key="F2", command="editTask", when="taskSelected && !inputFocus"),
    Keybinding(key="E", command="editTask", when="taskSelected && !inputFocus"),
    Keybinding(key="Enter", command="confirmEdit", when="editing"),
    Keybinding(key="Escape", command="cancelAction"),
    # Navigation
    Keybinding(key="ArrowDown", command="nextTask", when="!inputFocus && !editing"),
    Keybinding(key="ArrowUp", command="previousTask", when="!inputFocus && !editing"),
    Keybinding(key="Home", command="firstTask", when="!inputFocus && !editing"),
    Keybinding(key="End", command="lastTask", when="!inputFocus && !editing"),
    # Views
    Keybinding(key="Ctrl+1", command="showTasks"),
    Keybinding(key="Ctrl+2", command="showSchedules"),
    # Help
    Keybinding(key="F1", command="showHelp"),
)


KeybindingSnapshot = tuple[Keybinding, ...]


@dataclass(frozen=True)
class ChangeEvent:
    """Immutable notification delivered to settings listeners."""

    kind: SettingsKind
    previous: Union[AppSettings, KeybindingSnapshot]
    current: Union[AppSettings, KeybindingSnapshot]
    origin: ChangeOrigin


@dataclass
class Setting:
    """A row of the legacy key/value settings table."""

    key: str
    value: str
    category: str
    updated_at: datetime = field(default_factory=datetime.now)
