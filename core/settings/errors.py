"""Error taxonomy for the settings subsystem."""

from __future__ import annotations

from pathlib import Path
from typing import Optional, Union


PathLike = Union[str, Path]


class SettingsError(Exception):
    """Base class for configuration errors."""

    code = "SETTINGS_ERROR"

    def __init__(self, message: str, path: Optional[PathLike] = None):
        super().__init__(message)
        self.message = message
        self.path = Path(path) if path is not None else None

    def __str__(self) -> str:
        if self.path is not None:
            return f"{self.message} ({self.path})"
        return self.message


class FileSystemError(SettingsError):
    """A path could not be read, written or created."""

    code = "FILE_ERROR"


class PermissionDeniedError(SettingsError):
    """The host refused access to a path."""

    code = "PERMISSION_ERROR"


class ValidationError(SettingsError):
    """Content parsed but a value is semantically wrong."""

    code = "VALIDATION_ERROR"


class ParseError(SettingsError):
    """Malformed TOML content.

    ``line`` and ``column`` are 1-based when known. ``diagnosis`` is one of
    the ``DIAGNOSIS_*`` constants and drives the auto-fix allow-list.
    """

    code = "PARSE_ERROR"

    DIAGNOSIS_INVALID_ESCAPE = "invalid-escape"
    DIAGNOSIS_UNTERMINATED_STRING = "unterminated-string"
    DIAGNOSIS_SYNTAX = "syntax"

    def __init__(
        self,
        message: str,
        path: Optional[PathLike] = None,
        line: Optional[int] = None,
        column: Optional[int] = None,
        diagnosis: str = DIAGNOSIS_SYNTAX,
    ):
        super().__init__(message, path)
        self.line = line
        self.column = column
        self.diagnosis = diagnosis

    @property
    def suggestion(self) -> Optional[str]:
        if self.diagnosis == self.DIAGNOSIS_INVALID_ESCAPE:
            return "Remove backslash escape characters (\\) in string values."
        if self.diagnosis == self.DIAGNOSIS_UNTERMINATED_STRING:
            return "Check that every string value has matching quotes."
        return None


class InitializationError(SettingsError):
    """Settings manager could not reach the ready state."""

    code = "INIT_ERROR"


class NotReadyError(SettingsError):
    """An operation was attempted outside the ready state."""

    code = "STATE_ERROR"
