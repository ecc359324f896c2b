from __future__ import annotations

import sqlite3
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from autocat.models import ScanResult, serialize_datetime


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


class StateStore:
    """SQLite-backed preference table and scan history."""

    def __init__(self, db_path: str) -> None:
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.RLock()
        self._init_schema()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_schema(self) -> None:
        schema_sql = """
        CREATE TABLE IF NOT EXISTS scan_runs (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            run_at TEXT NOT NULL,
            trigger TEXT NOT NULL,
            forced INTEGER NOT NULL,
            status TEXT NOT NULL,
            message TEXT,
            duration_ms INTEGER NOT NULL,
            processed INTEGER NOT NULL,
            modified INTEGER NOT NULL,
            failed INTEGER NOT NULL
        );

        CREATE TABLE IF NOT EXISTS scan_details (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            run_id INTEGER NOT NULL,
            title TEXT NOT NULL,
            category TEXT NOT NULL,
            calendar TEXT NOT NULL
        );

        CREATE TABLE IF NOT EXISTS preferences (
            key TEXT PRIMARY KEY,
            value TEXT NOT NULL,
            updated_at TEXT NOT NULL
        );
        """
        with self._lock:
            with self._connect() as conn:
                conn.executescript(schema_sql)

    def record_scan_run(
        self,
        *,
        trigger: str,
        forced: bool,
        status: str,
        message: str,
        duration_ms: int,
        result: ScanResult,
    ) -> int:
        with self._lock:
            with self._connect() as conn:
                cursor = conn.execute(
                    """
                    INSERT INTO scan_runs(run_at, trigger, forced, status, message, duration_ms, processed, modified, failed)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        serialize_datetime(result.last_run) or _utc_now(),
                        trigger,
                        int(bool(forced)),
                        status,
                        message,
                        int(duration_ms),
                        result.processed,
                        result.modified,
                        result.failed,
                    ),
                )
                run_id = int(cursor.lastrowid)
                conn.executemany(
                    """
                    INSERT INTO scan_details(run_id, title, category, calendar)
                    VALUES (?, ?, ?, ?)
                    """,
                    [(run_id, item.title, item.category, item.calendar) for item in result.details],
                )
                conn.commit()
                return run_id

    def recent_scan_runs(self, limit: int = 20) -> list[dict[str, Any]]:
        with self._lock:
            with self._connect() as conn:
                rows = conn.execute(
                    """
                    SELECT id, run_at, trigger, forced, status, message, duration_ms, processed, modified, failed
                    FROM scan_runs
                    ORDER BY id DESC
                    LIMIT ?
                    """,
                    (max(1, limit),),
                ).fetchall()
        output: list[dict[str, Any]] = []
        for row in rows:
            item = dict(row)
            item["forced"] = bool(item["forced"])
            output.append(item)
        return output

    def scan_run_details(self, run_id: int) -> list[dict[str, Any]]:
        with self._lock:
            with self._connect() as conn:
                rows = conn.execute(
                    """
                    SELECT title, category, calendar
                    FROM scan_details
                    WHERE run_id = ?
                    ORDER BY id ASC
                    """,
                    (int(run_id),),
                ).fetchall()
        return [dict(row) for row in rows]

    def set_pref(self, key: str, value: str) -> None:
        with self._lock:
            with self._connect() as conn:
                conn.execute(
                    """
                    INSERT INTO preferences(key, value, updated_at)
                    VALUES (?, ?, ?)
                    ON CONFLICT(key) DO UPDATE SET
                        value = excluded.value,
                        updated_at = excluded.updated_at
                    """,
                    (str(key), str(value), _utc_now()),
                )
                conn.commit()

    def get_pref(self, key: str) -> str | None:
        with self._lock:
            with self._connect() as conn:
                row = conn.execute(
                    """
                    SELECT value
                    FROM preferences
                    WHERE key = ?
                    """,
                    (str(key),),
                ).fetchone()
        if row is None:
            return None
        return str(row["value"])

    def clear_pref(self, key: str) -> bool:
        with self._lock:
            with self._connect() as conn:
                cursor = conn.execute("DELETE FROM preferences WHERE key = ?", (str(key),))
                conn.commit()
                return cursor.rowcount > 0
