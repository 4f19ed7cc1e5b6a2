"""
TOML codec for settings.toml and keybindings.toml.

Parsing goes through ``tomllib``. Writing never round-trips through a
generic TOML dumper: settings.toml is patched line by line so that comments,
blank lines and ordering written by the user survive a managed rewrite, and
keybindings.toml is regenerated from scratch.
"""

from __future__ import annotations

import datetime as dt
import logging
import math
import re
import tomllib
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Iterable, Iterator, Mapping, Optional, Sequence, Union

from core.models import DEFAULT_KEYBINDINGS, AppSettings, Keybinding

from .errors import ParseError

logger = logging.getLogger(__name__)


# ----- Parsing -----

_POSITION_RE = re.compile(r"\s*\(at line (\d+), column (\d+)\)\s*$")
_END_OF_DOCUMENT_RE = re.compile(r"\s*\(at end of document\)\s*$")


def parse(
    text: str, path: Optional[Union[str, Path]] = None
) -> tuple[Optional[dict[str, Any]], Optional[ParseError]]:
    """Parse TOML text, returning ``(value, None)`` or ``(None, error)``."""
    try:
        return tomllib.loads(text), None
    except tomllib.TOMLDecodeError as exc:
        return None, _to_parse_error(exc, text, path)


def _to_parse_error(
    exc: tomllib.TOMLDecodeError, text: str, path: Optional[Union[str, Path]]
) -> ParseError:
    raw = str(exc)
    message = getattr(exc, "msg", None)
    line = getattr(exc, "lineno", None)
    column = getattr(exc, "colno", None)

    match = _POSITION_RE.search(raw)
    if match:
        line = line or int(match.group(1))
        column = column or int(match.group(2))
        message = message or raw[: match.start()]
    elif _END_OF_DOCUMENT_RE.search(raw):
        message = message or _END_OF_DOCUMENT_RE.sub("", raw)
        line = line or text.count("\n") + 1
    message = message or raw

    return ParseError(
        message,
        path=path,
        line=line,
        column=column,
        diagnosis=_diagnose(message),
    )


def _diagnose(message: str) -> str:
    if "Unescaped '\\'" in message or "escape" in message.lower():
        return ParseError.DIAGNOSIS_INVALID_ESCAPE
    if "Unterminated string" in message or "Illegal character '\\n'" in message:
        return ParseError.DIAGNOSIS_UNTERMINATED_STRING
    return ParseError.DIAGNOSIS_SYNTAX


# ----- Line model -----


class LineKind(str, Enum):
    BLANK = "blank"
    COMMENT = "comment"
    SECTION = "section"
    ARRAY_TABLE = "array-table"
    KEY_VALUE = "key-value"
    OTHER = "other"


@dataclass(frozen=True)
class TomlLine:
    """One logical line of a TOML document.

    A key/value whose value spans several physical lines is a single entry
    whose ``text`` contains the embedded newlines. ``section`` is ``None``
    for keys that live inside an array of tables.
    """

    kind: LineKind
    text: str
    section: Optional[tuple[str, ...]] = ()
    key: tuple[str, ...] = ()
    indent: str = ""
    raw_key: str = ""
    value_text: str = ""


_BARE_KEY = r"[A-Za-z0-9_-]+"
_BASIC_KEY = r'"(?:[^"\\\n]|\\.)*"'
_LITERAL_KEY = r"'[^'\n]*'"
_SIMPLE_KEY = rf"(?:{_BARE_KEY}|{_BASIC_KEY}|{_LITERAL_KEY})"
_DOTTED_KEY = rf"{_SIMPLE_KEY}(?:\s*\.\s*{_SIMPLE_KEY})*"

_KEY_VALUE_RE = re.compile(rf"^(\s*)({_DOTTED_KEY})\s*=\s*(.*)$", re.DOTALL)
_SECTION_RE = re.compile(rf"^\s*\[\s*({_DOTTED_KEY})\s*\]\s*(?:#.*)?$")
_ARRAY_TABLE_RE = re.compile(rf"^\s*\[\[\s*({_DOTTED_KEY})\s*\]\]\s*(?:#.*)?$")
_KEY_PART_RE = re.compile(_SIMPLE_KEY)
_BARE_KEY_RE = re.compile(rf"^{_BARE_KEY}$")


def _split_dotted(dotted: str) -> tuple[str, ...]:
    parts = []
    for match in _KEY_PART_RE.finditer(dotted):
        part = match.group(0)
        if part.startswith('"'):
            part = tomllib.loads(f"k = {part}")["k"]
        elif part.startswith("'"):
            part = part[1:-1]
        parts.append(part)
    return tuple(parts)


def _find_closing(text: str, start: int, delimiter: str, escapes: bool) -> int:
    """Index just past ``delimiter`` closing a string opened before ``start``, or -1."""
    single_line = len(delimiter) == 1
    i = start
    while i < len(text):
        ch = text[i]
        if escapes and ch == "\\":
            i += 2
            continue
        if single_line and ch == "\n":
            return i
        if text.startswith(delimiter, i):
            end = i + len(delimiter)
            if not single_line:
                # Up to two quotes may precede the closing delimiter.
                extra = 0
                while extra < 2 and text.startswith(delimiter[0], end):
                    end += 1
                    extra += 1
            return end
        i += 1
    return -1


def _scan_value(value: str) -> tuple[bool, int]:
    """Return ``(complete, comment_start)`` for a value fragment.

    ``complete`` is False while a multi-line string or an array is still
    open. ``comment_start`` is the index of a trailing ``#`` comment on the
    last line, or -1.
    """
    depth = 0
    comment_start = -1
    i = 0
    n = len(value)
    while i < n:
        ch = value[i]
        if value.startswith('"""', i) or value.startswith("'''", i):
            end = _find_closing(value, i + 3, value[i : i + 3], escapes=ch == '"')
            if end < 0:
                return False, -1
            i = end
            continue
        if ch in ("'", '"'):
            end = _find_closing(value, i + 1, ch, escapes=ch == '"')
            i = n if end < 0 else end
            continue
        if ch == "#":
            newline = value.find("\n", i)
            if newline < 0:
                comment_start = i
                break
            i = newline + 1
            continue
        if ch in "[{":
            depth += 1
        elif ch in "]}":
            depth -= 1
        i += 1
    return depth <= 0, comment_start


def scan_lines(text: str) -> list[TomlLine]:
    """Split TOML text into typed logical lines.

    ``"\\n".join(line.text for line in scan_lines(text)) == text`` always holds.
    """
    physical = text.split("\n")
    lines: list[TomlLine] = []
    section: Optional[tuple[str, ...]] = ()
    index = 0
    while index < len(physical):
        raw = physical[index]
        stripped = raw.strip()
        index += 1

        if not stripped:
            lines.append(TomlLine(LineKind.BLANK, raw, section))
            continue
        if stripped.startswith("#"):
            lines.append(TomlLine(LineKind.COMMENT, raw, section))
            continue

        array_match = _ARRAY_TABLE_RE.match(raw)
        if array_match:
            section = None
            lines.append(
                TomlLine(LineKind.ARRAY_TABLE, raw, None, key=_split_dotted(array_match.group(1)))
            )
            continue

        section_match = _SECTION_RE.match(raw)
        if section_match:
            section = _split_dotted(section_match.group(1))
            lines.append(TomlLine(LineKind.SECTION, raw, section, key=section))
            continue

        kv_match = _KEY_VALUE_RE.match(raw)
        if kv_match:
            indent, raw_key, value = kv_match.groups()
            block = [raw]
            complete, _ = _scan_value(value)
            while not complete and index < len(physical):
                block.append(physical[index])
                value = f"{value}\n{physical[index]}"
                index += 1
                complete, _ = _scan_value(value)
            lines.append(
                TomlLine(
                    LineKind.KEY_VALUE,
                    "\n".join(block),
                    section,
                    key=_split_dotted(raw_key),
                    indent=indent,
                    raw_key=raw_key,
                    value_text=value,
                )
            )
            continue

        lines.append(TomlLine(LineKind.OTHER, raw, section))
    return lines


# ----- Value rendering -----


class UnsupportedValue(TypeError):
    """A rendering strategy cannot express the given value."""


_CONTROL_ESCAPES = {
    "\b": "\\b",
    "\t": "\\t",
    "\n": "\\n",
    "\f": "\\f",
    "\r": "\\r",
    '"': '\\"',
    "\\": "\\\\",
}


def _escape(value: str, multiline: bool) -> str:
    out = []
    for ch in value:
        if multiline and ch in ("\n", "\t"):
            out.append(ch)
        elif ch in _CONTROL_ESCAPES:
            out.append(_CONTROL_ESCAPES[ch])
        elif ord(ch) < 0x20 or ord(ch) == 0x7F:
            out.append(f"\\u{ord(ch):04X}")
        else:
            out.append(ch)
    return "".join(out)


def basic_string(value: str) -> str:
    """Single-line TOML basic string."""
    return f'"{_escape(value, multiline=False)}"'


def quote_string(value: str) -> str:
    """Basic string, switching to a triple-quoted string when ``value`` has a newline."""
    if "\n" in value:
        return f'"""\n{_escape(value, multiline=True)}"""'
    return basic_string(value)


def format_key(key: str) -> str:
    return key if _BARE_KEY_RE.match(key) else basic_string(key)


def format_literal(value: Any) -> str:
    """Typed TOML literal for scalars."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, Decimal):
        if value.is_finite() and value == value.to_integral_value():
            return str(int(value))
        raise UnsupportedValue(f"non-integral Decimal {value}")
    if isinstance(value, float):
        if math.isnan(value):
            return "nan"
        if math.isinf(value):
            return "inf" if value > 0 else "-inf"
        return repr(value)
    if isinstance(value, str):
        return quote_string(value)
    if isinstance(value, (dt.datetime, dt.date, dt.time)):
        return value.isoformat()
    raise UnsupportedValue(type(value).__name__)


def _format_nested(value: Any) -> str:
    try:
        return format_literal(value)
    except UnsupportedValue:
        return format_structured(value)


def format_structured(value: Any) -> str:
    """Inline TOML array or inline table, rendered recursively."""
    if isinstance(value, Mapping):
        items = []
        for key, item in value.items():
            if not isinstance(key, str):
                raise UnsupportedValue(f"non-string key {key!r}")
            items.append(f"{format_key(key)} = {_format_nested(item)}")
        return "{ " + ", ".join(items) + " }" if items else "{}"
    if isinstance(value, (list, tuple)):
        return "[" + ", ".join(_format_nested(item) for item in value) + "]"
    raise UnsupportedValue(type(value).__name__)


def format_coerced(value: Any) -> str:
    """Last resort: the value's string form as a quoted string."""
    return quote_string(str(value))


VALUE_STRATEGIES = (format_literal, format_structured, format_coerced)


def format_value(value: Any) -> str:
    """Render ``value`` with the first strategy in ``VALUE_STRATEGIES`` that accepts it."""
    for strategy in VALUE_STRATEGIES:
        try:
            return strategy(value)
        except UnsupportedValue as exc:
            logger.debug("%s rejected %r: %s", strategy.__name__, value, exc)
    raise UnsupportedValue(f"cannot render {value!r}")


# ----- Structure-preserving rewrite -----


_MISSING = object()


def _lookup(document: Mapping[str, Any], path: Sequence[str]) -> Any:
    current: Any = document
    for part in path:
        if not isinstance(current, Mapping) or part not in current:
            return _MISSING
        current = current[part]
    return current


def _normalize(value: Any) -> Any:
    if isinstance(value, tuple):
        return [_normalize(item) for item in value]
    if isinstance(value, list):
        return [_normalize(item) for item in value]
    if isinstance(value, Mapping):
        return {key: _normalize(item) for key, item in value.items()}
    if isinstance(value, Decimal) and value.is_finite() and value == value.to_integral_value():
        return int(value)
    return value


def values_equal(old: Any, new: Any) -> bool:
    """Type-aware equality between a parsed TOML value and a Python value."""
    old, new = _normalize(old), _normalize(new)
    if isinstance(old, bool) or isinstance(new, bool):
        return isinstance(old, bool) and isinstance(new, bool) and old == new
    if isinstance(old, (int, float)) and isinstance(new, (int, float)):
        if type(old) is not type(new):
            return False
        if isinstance(old, float) and math.isnan(old) and math.isnan(new):
            return True
        return old == new
    if isinstance(old, list) and isinstance(new, list):
        return len(old) == len(new) and all(values_equal(a, b) for a, b in zip(old, new))
    if isinstance(old, dict) and isinstance(new, dict):
        return old.keys() == new.keys() and all(values_equal(old[k], new[k]) for k in old)
    return type(old) is type(new) and old == new


def _iter_leaves(
    value: Mapping[str, Any], prefix: tuple[str, ...] = ()
) -> Iterator[tuple[tuple[str, ...], str, Any]]:
    for key, item in value.items():
        if isinstance(item, Mapping):
            yield from _iter_leaves(item, prefix + (key,))
        else:
            yield prefix, key, item


def _render_key_value(line: TomlLine, value: Any) -> str:
    rendered = f"{line.indent}{line.raw_key} = {format_value(value)}"
    if "\n" not in line.value_text:
        _, comment_start = _scan_value(line.value_text)
        if comment_start >= 0:
            rendered += "  " + line.value_text[comment_start:].rstrip("\r")
    if line.text.endswith("\r"):
        rendered += "\r"
    return rendered


def _inline_target(
    old: Any, new: Mapping[str, Any], path: tuple[str, ...], defaults: Optional[Mapping[str, Any]]
) -> dict[str, Any]:
    if not isinstance(old, Mapping):
        return dict(new)
    scope = None
    if defaults is not None:
        default = _lookup(defaults, path)
        scope = default if isinstance(default, Mapping) else {}
    return _merge_inline(old, new, scope)


def _merge_inline(
    old: Mapping[str, Any], new: Mapping[str, Any], defaults: Optional[Mapping[str, Any]]
) -> dict[str, Any]:
    """Carry ``new`` into an inline table, keeping its key order and unknown keys.

    Keys absent from ``old`` are added only when ``defaults`` is given and
    the new value differs from the default.
    """
    merged: dict[str, Any] = {}
    for key, old_item in old.items():
        if key not in new:
            merged[key] = old_item
            continue
        new_item = new[key]
        if isinstance(old_item, Mapping) and isinstance(new_item, Mapping):
            child = None
            if defaults is not None:
                child = defaults.get(key)
                child = child if isinstance(child, Mapping) else {}
            merged[key] = _merge_inline(old_item, new_item, child)
        else:
            merged[key] = new_item
    if defaults is not None:
        for key, new_item in new.items():
            if key in old:
                continue
            default = defaults.get(key, _MISSING)
            if default is _MISSING or not values_equal(default, new_item):
                merged[key] = new_item
    return merged


def serialize_incremental(
    previous_text: str,
    new_value: Mapping[str, Any],
    defaults: Optional[Mapping[str, Any]] = None,
) -> str:
    """Rewrite ``previous_text`` so that it parses to ``new_value``.

    Blank lines, comments and headers are copied verbatim. A ``key = value``
    line is re-emitted only when its value changed; unchanged lines keep
    their exact text. Keys missing from ``previous_text`` are appended to
    their section only when ``defaults`` is given and the new value differs
    from the default; otherwise the in-memory default covers them.

    A table may be written as a ``[header]``, as an inline table or through
    dotted keys. Missing keys follow the layout the table already uses, so
    a table is never declared twice.
    """
    old_document, error = parse(previous_text)
    if error is not None:
        logger.warning("Previous text does not parse (%s); rewriting every known key", error)
        old_document = {}

    out: list[str] = []
    seen: set[tuple[str, ...]] = set()
    section_end: dict[tuple[str, ...], int] = {}
    dotted_end: dict[tuple[str, ...], tuple[int, tuple[str, ...]]] = {}
    first_header: Optional[int] = None

    for line in scan_lines(previous_text):
        if line.kind in (LineKind.SECTION, LineKind.ARRAY_TABLE):
            if first_header is None:
                first_header = len(out)
            out.append(line.text)
            if line.kind is LineKind.SECTION:
                section_end.setdefault(line.section, len(out))
            continue

        if line.kind is not LineKind.KEY_VALUE or line.section is None:
            out.append(line.text)
            continue

        path = line.section + line.key
        seen.add(path)
        new = _lookup(new_value, path)
        old = _lookup(old_document, path)
        if isinstance(new, Mapping):
            target = _inline_target(old, new, path, defaults)
            seen.update(prefix + (key,) for prefix, key, _ in _iter_leaves(new, path))
            if isinstance(old, Mapping) and values_equal(old, target):
                out.append(line.text)
            else:
                out.append(_render_key_value(line, target))
        elif new is not _MISSING and (old is _MISSING or not values_equal(old, new)):
            out.append(_render_key_value(line, new))
        else:
            out.append(line.text)
        section_end[line.section] = len(out)
        for depth in range(1, len(line.key)):
            dotted_end[line.section + line.key[:depth]] = (len(out), line.key[:depth])

    if defaults is not None:
        _append_missing(out, new_value, defaults, seen, section_end, dotted_end, first_header)

    return "\n".join(out)


def _dotted_anchor(
    section: tuple[str, ...], dotted_end: dict[tuple[str, ...], tuple[int, tuple[str, ...]]]
) -> Optional[tuple[int, tuple[str, ...]]]:
    """Insert position and key prefix for a table defined through dotted keys."""
    for depth in range(len(section), 0, -1):
        anchor = dotted_end.get(section[:depth])
        if anchor is not None:
            position, prefix = anchor
            return position, prefix + section[depth:]
    return None


def _append_missing(
    out: list[str],
    new_value: Mapping[str, Any],
    defaults: Mapping[str, Any],
    seen: set[tuple[str, ...]],
    section_end: dict[tuple[str, ...], int],
    dotted_end: dict[tuple[str, ...], tuple[int, tuple[str, ...]]],
    first_header: Optional[int],
) -> None:
    missing: dict[tuple[str, ...], list[tuple[str, Any]]] = {}
    for section, key, value in _iter_leaves(new_value):
        if section + (key,) in seen:
            continue
        default = _lookup(defaults, section + (key,))
        if default is not _MISSING and values_equal(default, value):
            continue
        missing.setdefault(section, []).append((key, value))

    if not missing:
        return

    if () in missing and () not in section_end:
        section_end[()] = first_header if first_header is not None else 0

    inserts: list[tuple[int, list[str]]] = []
    headed: dict[tuple[str, ...], list[str]] = {}
    for section, items in missing.items():
        if section in section_end:
            lines = [f"{format_key(key)} = {format_value(value)}" for key, value in items]
            inserts.append((section_end[section], lines))
            continue
        anchor = _dotted_anchor(section, dotted_end)
        if anchor is not None:
            position, prefix = anchor
            lines = [
                f"{'.'.join(format_key(part) for part in prefix + (key,))} = {format_value(value)}"
                for key, value in items
            ]
            inserts.append((position, lines))
            continue
        headed[section] = [f"{format_key(key)} = {format_value(value)}" for key, value in items]

    for position, lines in sorted(inserts, key=lambda item: item[0], reverse=True):
        out[position:position] = lines

    if not headed:
        return
    trailing_newline = bool(out) and out[-1] == ""
    if trailing_newline:
        out.pop()
    for section, lines in headed.items():
        if out and out[-1].strip():
            out.append("")
        out.append("[" + ".".join(format_key(part) for part in section) + "]")
        out.extend(lines)
    if trailing_newline:
        out.append("")


# ----- Keybindings -----

KEYBINDINGS_FORMAT_HELP = (
    "#",
    "# Format:",
    "# [[keybindings]]",
    '# key = "Ctrl+N"              # Key combination',
    '# command = "newTask"         # Command to execute',
    '# when = "!inputFocus"        # Optional: condition for the keybinding',
    '# args = { position = "end" } # Optional: arguments for the command',
)


def command_group(command: str) -> str:
    """Group name for a command: its first dot-segment, ``global`` when dotless."""
    if "." not in command:
        return "global"
    return command.split(".", 1)[0] or "global"


def _render_binding(binding: Keybinding) -> list[str]:
    lines = [
        "[[keybindings]]",
        f"key = {format_value(binding.key)}",
        f"command = {format_value(binding.command)}",
    ]
    if binding.when is not None:
        lines.append(f"when = {format_value(binding.when)}")
    if binding.args is not None:
        lines.append(f"args = {format_value(binding.args)}")
    return lines


def render_keybindings(
    bindings: Iterable[Keybinding],
    now: Optional[dt.datetime] = None,
    group_of: Callable[[str], str] = command_group,
) -> str:
    """Regenerate keybindings.toml, grouping entries by command prefix."""
    now = now or dt.datetime.now(dt.timezone.utc)
    lines = [
        "# TaskDesk Keyboard Shortcuts",
        "# This file is automatically reloaded when changed",
        f"# Last modified: {now.isoformat()}",
        *KEYBINDINGS_FORMAT_HELP,
        "",
    ]

    groups: dict[str, list[Keybinding]] = {}
    for binding in bindings:
        groups.setdefault(group_of(binding.command), []).append(binding)

    for group, entries in groups.items():
        lines.append(f"# {group[:1].upper()}{group[1:]} Commands")
        lines.append("")
        for binding in entries:
            lines.extend(_render_binding(binding))
            lines.append("")
    return "\n".join(lines)


# ----- First-run settings file -----

_SETTINGS_DOCS: tuple[tuple[str, tuple[tuple[str, str], ...]], ...] = (
    (
        "app",
        (
            ("theme", 'Theme: "auto" | "light" | "dark"'),
            ("language", 'Language: "auto" | "en" | "ja"'),
            ("alwaysOnTop", "Window always on top"),
            ("confirmDelete", "Confirm before deleting tasks"),
            ("startupView", 'View shown at startup: "tasks-detailed" | "tasks-simple" | "schedules"'),
        ),
    ),
    (
        "server",
        (
            ("url", "Backend server URL"),
            ("reconnectInterval", "Reconnection interval in milliseconds"),
            ("timeout", "Request timeout in milliseconds"),
        ),
    ),
    (
        "ui",
        (
            ("autoHideHeader", "Auto-hide header when mouse leaves"),
            ("fontSize", "Font size in pixels"),
            ("fontFamily", "Font family (CSS font-family format)"),
        ),
    ),
    (
        "appearance",
        (("customCss", "Custom CSS styles"),),
    ),
)


def default_settings_text(
    settings: Optional[AppSettings] = None, now: Optional[dt.datetime] = None
) -> str:
    """Commented settings.toml for first run."""
    now = now or dt.datetime.now(dt.timezone.utc)
    values = (settings or AppSettings()).to_toml_dict()
    lines = [
        "# TaskDesk Settings",
        "# This file is automatically reloaded when changed",
        f"# Generated: {now.isoformat()}",
    ]
    for section, entries in _SETTINGS_DOCS:
        lines.append("")
        lines.append(f"[{section}]")
        for index, (key, comment) in enumerate(entries):
            if index:
                lines.append("")
            lines.append(f"# {comment}")
            lines.append(f"{key} = {format_value(values[section][key])}")
    lines.append("")
    return "\n".join(lines)


_DEFAULT_COMMAND_GROUPS = {
    "selectAll": "task",
    "toggleTaskComplete": "task",
    "deleteSelected": "task",
    "editTask": "task",
    "confirmEdit": "task",
    "cancelAction": "task",
    "nextTask": "navigation",
    "previousTask": "navigation",
    "firstTask": "navigation",
    "lastTask": "navigation",
    "showTasks": "view",
    "showSchedules": "view",
    "showHelp": "help",
}


def _default_group(command: str) -> str:
    return _DEFAULT_COMMAND_GROUPS.get(command) or command_group(command)


def default_keybindings_text(
    bindings: Optional[Iterable[Keybinding]] = None, now: Optional[dt.datetime] = None
) -> str:
    """keybindings.toml for first run, with the shipped bindings grouped by purpose."""
    return render_keybindings(
        DEFAULT_KEYBINDINGS if bindings is None else bindings, now, group_of=_default_group
    )
