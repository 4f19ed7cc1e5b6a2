"""Automatic repair of common hand-editing mistakes in TOML files."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Optional

from .errors import ParseError
from .file_io import read_text, write_text_atomic
from .toml_codec import parse

logger = logging.getLogger(__name__)

FIXABLE_DIAGNOSES = frozenset(
    {ParseError.DIAGNOSIS_INVALID_ESCAPE, ParseError.DIAGNOSIS_UNTERMINATED_STRING}
)

# Escapes users type by habit (shell, regex) that TOML rejects.
INVALID_ESCAPE_CHARS = frozenset("!@#&%<>=;:,.?")

_UNTERMINATED_RE = re.compile(r'^(\s*[^=#\[\s][^=]*?=\s*)"(?!"")(.*)$')


@dataclass
class AutoFixResult:
    success: bool
    fixed_content: Optional[str] = None
    backup_content: Optional[str] = None
    fixes_applied: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    backup_path: Optional[Path] = None


def can_auto_fix(error: Optional[ParseError]) -> bool:
    return error is not None and error.diagnosis in FIXABLE_DIAGNOSES


def fix_invalid_escapes(content: str) -> tuple[str, list[str]]:
    """Drop the backslash of allow-listed invalid escapes inside basic strings.

    Literal strings and comments are left alone.
    """
    out: list[str] = []
    fixes: list[str] = []
    state: Optional[str] = None
    i = 0
    n = len(content)
    while i < n:
        ch = content[i]

        if state is None:
            for opener in ('"""', "'''", '"', "'"):
                if content.startswith(opener, i):
                    state = opener
                    out.append(opener)
                    i += len(opener)
                    break
            else:
                if ch == "#":
                    state = "#"
                out.append(ch)
                i += 1
            continue

        if state == "#":
            if ch == "\n":
                state = None
            out.append(ch)
            i += 1
            continue

        if state in ("'", "'''"):
            if content.startswith(state, i):
                out.append(state)
                i += len(state)
                state = None
                continue
            if state == "'" and ch == "\n":
                state = None
            out.append(ch)
            i += 1
            continue

        # Inside a basic string.
        if ch == "\\" and i + 1 < n:
            escaped = content[i + 1]
            if escaped in INVALID_ESCAPE_CHARS:
                description = f"Removed invalid escape \\{escaped}"
                if description not in fixes:
                    fixes.append(description)
                out.append(escaped)
            else:
                out.append(content[i : i + 2])
            i += 2
            continue
        if content.startswith(state, i):
            out.append(state)
            i += len(state)
            state = None
            continue
        if state == '"' and ch == "\n":
            state = None
        out.append(ch)
        i += 1

    return "".join(out), fixes


def _closes(value: str) -> bool:
    i = 0
    while i < len(value):
        if value[i] == "\\":
            i += 2
            continue
        if value[i] == '"':
            return True
        i += 1
    return False


def fix_unterminated_strings(content: str, line: Optional[int] = None) -> tuple[str, list[str]]:
    """Close single-line basic strings missing their closing quote.

    When ``line`` is given only that line is considered first; the whole
    file is scanned if that line does not hold an open string.
    """
    lines = content.split("\n")
    fixes: list[str] = []

    def close(index: int) -> bool:
        raw = lines[index]
        eol = "\r" if raw.endswith("\r") else ""
        body = raw[: len(raw) - len(eol)]
        match = _UNTERMINATED_RE.match(body)
        if not match or _closes(match.group(2)):
            return False
        lines[index] = f'{body.rstrip()}"{eol}'
        fixes.append(f"Closed unterminated string on line {index + 1}")
        return True

    if line is not None and 1 <= line <= len(lines) and close(line - 1):
        return "\n".join(lines), fixes

    for index in range(len(lines)):
        close(index)
    return "\n".join(lines), fixes


def normalize_whitespace(content: str) -> tuple[str, list[str]]:
    fixes = []
    stripped = re.sub(r"[ \t]+(\r?)$", r"\1", content, flags=re.MULTILINE)
    if stripped != content:
        fixes.append("Removed trailing whitespace")
    if stripped and not stripped.endswith("\n"):
        stripped += "\n"
        fixes.append("Added final newline")
    return stripped, fixes


def auto_fix(content: str, error: ParseError) -> AutoFixResult:
    """Attempt to repair ``content`` for the diagnosed ``error``.

    The targeted fix runs first; whitespace normalization only runs when the
    targeted fix alone does not make the document parse.
    """
    if not can_auto_fix(error):
        return AutoFixResult(
            success=False,
            errors=[f"No automatic fix for {error.diagnosis} errors"],
        )

    if error.diagnosis == ParseError.DIAGNOSIS_INVALID_ESCAPE:
        fixed, fixes = fix_invalid_escapes(content)
    else:
        fixed, fixes = fix_unterminated_strings(content, error.line)

    _, remaining = parse(fixed)
    if remaining is not None:
        fixed, general = normalize_whitespace(fixed)
        fixes.extend(general)
        _, remaining = parse(fixed)

    if fixed == content:
        return AutoFixResult(success=False, errors=["No automatic fixes could be applied"])

    if remaining is not None:
        location = f" (line {remaining.line})" if remaining.line else ""
        return AutoFixResult(
            success=False,
            fixes_applied=fixes,
            errors=[f"File still has syntax errors after auto-fix{location}: {remaining.message}"],
        )

    return AutoFixResult(
        success=True,
        fixed_content=fixed,
        backup_content=content,
        fixes_applied=fixes,
    )


def backup_filename(path: Path, now: Optional[datetime] = None) -> str:
    stamp = (now or datetime.now()).strftime("%Y-%m-%dT%H-%M-%S-%f")
    return f"{path.stem}.backup.{stamp}.toml"


def write_backup(
    path: Path, content: str, backup_dir: Path, now: Optional[datetime] = None
) -> Path:
    backup_path = backup_dir / backup_filename(path, now)
    write_text_atomic(backup_path, content)
    logger.info("Backed up %s to %s", path, backup_path)
    return backup_path


def fix_file(
    path: Path, error: ParseError, backup_dir: Path, now: Optional[datetime] = None
) -> AutoFixResult:
    """Fix ``path`` in place, writing a backup of the original first."""
    content = read_text(path)
    result = auto_fix(content, error)
    if not result.success:
        logger.warning("Auto-fix failed for %s: %s", path, "; ".join(result.errors))
        return result

    result.backup_path = write_backup(path, content, backup_dir, now)
    write_text_atomic(path, result.fixed_content)
    logger.info("Auto-fixed %s: %s", path, ", ".join(result.fixes_applied))
    return result
