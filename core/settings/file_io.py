"""Text file helpers that map OS failures onto settings errors."""

from __future__ import annotations

import os
import tempfile
from pathlib import Path

from .errors import FileSystemError, PermissionDeniedError, SettingsError


def as_settings_error(exc: OSError, path: Path, action: str) -> SettingsError:
    """Translate an OSError raised while touching ``path``."""
    if isinstance(exc, PermissionError):
        return PermissionDeniedError(f"Permission denied while trying to {action}", path)
    return FileSystemError(f"Failed to {action}: {exc.strerror or exc}", path)


def read_text(path: Path) -> str:
    try:
        return path.read_text(encoding="utf-8")
    except OSError as exc:
        raise as_settings_error(exc, path, "read file") from exc
    except UnicodeDecodeError as exc:
        raise FileSystemError(f"File is not valid UTF-8: {exc}", path) from exc


def write_text_atomic(path: Path, content: str) -> None:
    """Write ``content`` to ``path`` via a temp file and an atomic rename."""
    tmp_name = None
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{path.name}.", suffix=".tmp", dir=str(path.parent)
        )
        with os.fdopen(fd, "w", encoding="utf-8", newline="") as handle:
            handle.write(content)
        os.replace(tmp_name, path)
        tmp_name = None
    except OSError as exc:
        raise as_settings_error(exc, path, "write file") from exc
    finally:
        if tmp_name is not None:
            try:
                os.unlink(tmp_name)
            except OSError:
                pass
