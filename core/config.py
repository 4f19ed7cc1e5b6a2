"""
Runtime options for the settings subsystem.

Timings and the retry count can be tuned through environment variables:

- TASKDESK_WATCH_DEBOUNCE_MS      quiet period before a file change is handled
- TASKDESK_WATCH_SETTLE_MS        pause after a local write before watching again
- TASKDESK_WATCH_STARTUP_DELAY_MS delay between ready state and first watch
- TASKDESK_FS_RETRY_ATTEMPTS      attempts while waiting for the filesystem
- TASKDESK_FS_RETRY_DELAY_MS      fixed backoff between those attempts

TASKDESK_CONFIG_DIR (read by the path resolver) moves the config root.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Mapping, Optional

logger = logging.getLogger(__name__)

ENV_DEBOUNCE_MS = "TASKDESK_WATCH_DEBOUNCE_MS"
ENV_SETTLE_MS = "TASKDESK_WATCH_SETTLE_MS"
ENV_STARTUP_DELAY_MS = "TASKDESK_WATCH_STARTUP_DELAY_MS"
ENV_RETRY_ATTEMPTS = "TASKDESK_FS_RETRY_ATTEMPTS"
ENV_RETRY_DELAY_MS = "TASKDESK_FS_RETRY_DELAY_MS"
ENV_CONFIG_DIR = "TASKDESK_CONFIG_DIR"


@dataclass(frozen=True)
class SettingsOptions:
    """Timings for the settings manager and its file watchers."""

    debounce_ms: int = 300
    settle_ms: int = 500
    watch_startup_delay_ms: int = 2000
    filesystem_retry_attempts: int = 10
    filesystem_retry_delay_ms: int = 500

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "SettingsOptions":
        """Build options from environment variables, keeping defaults for bad values."""
        env = os.environ if environ is None else environ
        defaults = cls()
        return cls(
            debounce_ms=_read_int(env, ENV_DEBOUNCE_MS, defaults.debounce_ms),
            settle_ms=_read_int(env, ENV_SETTLE_MS, defaults.settle_ms),
            watch_startup_delay_ms=_read_int(
                env, ENV_STARTUP_DELAY_MS, defaults.watch_startup_delay_ms
            ),
            filesystem_retry_attempts=max(
                1, _read_int(env, ENV_RETRY_ATTEMPTS, defaults.filesystem_retry_attempts)
            ),
            filesystem_retry_delay_ms=_read_int(
                env, ENV_RETRY_DELAY_MS, defaults.filesystem_retry_delay_ms
            ),
        )


def _read_int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        logger.warning("Ignoring %s=%r: not an integer", name, raw)
        return default
    if value < 0:
        logger.warning("Ignoring %s=%r: must not be negative", name, raw)
        return default
    return value
