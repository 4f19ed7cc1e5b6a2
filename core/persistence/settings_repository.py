"""Settings repository over the legacy key/value table."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from core.models import Setting
from .database import Database

logger = logging.getLogger(__name__)


class SettingsRepository:
    """Repository for settings persistence operations."""

    def __init__(self, database: Database):
        self._db = database

    def _row_to_setting(self, row) -> Setting:
        return Setting(
            key=row["key"],
            value=row["value"],
            category=row["category"],
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )

    def get(self, key: str) -> Optional[Setting]:
        conn = self._db.get_connection()
        cursor = conn.execute(
            "SELECT key, value, category, updated_at FROM settings WHERE key = ?",
            (key,),
        )
        row = cursor.fetchone()
        if row is None:
            return None
        return self._row_to_setting(row)

    def set(self, key: str, value: str, category: str) -> Setting:
        conn = self._db.get_connection()
        now = datetime.now()
        conn.execute(
            """
            INSERT INTO settings (key, value, category, updated_at)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(key) DO UPDATE SET
                value = excluded.value,
                category = excluded.category,
                updated_at = excluded.updated_at
            """,
            (key, value, category, now.isoformat()),
        )
        conn.commit()
        return Setting(key=key, value=value, category=category, updated_at=now)

    def delete(self, key: str) -> bool:
        conn = self._db.get_connection()
        cursor = conn.execute("DELETE FROM settings WHERE key = ?", (key,))
        conn.commit()
        return cursor.rowcount > 0
