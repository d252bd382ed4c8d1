"""SQLite-backed key-value store for checkpoints, phase flag, settings and snapshots."""

from __future__ import annotations

import json
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from threading import Lock
from typing import Any, Dict, Mapping

from ..config import Settings
from ..errors import StorageError

CHECKPOINT_KEY = "import_checkpoint"
PHASE_KEY = "import_phase"
SETTINGS_KEY = "settings"
LAST_EXPORT_KEY = "last_export"
LAST_RESULT_KEY = "last_result"


class SQLiteManager:
    """Manage SQLite connections with basic schema guarantees."""

    def __init__(self, timeout: float = 5.0) -> None:
        self._connections: Dict[Path, sqlite3.Connection] = {}
        self._lock = Lock()
        self.timeout = timeout

    def connect(self, path: Path) -> sqlite3.Connection:
        path.parent.mkdir(parents=True, exist_ok=True)
        with self._lock:
            if path not in self._connections:
                conn = sqlite3.connect(path, timeout=self.timeout, check_same_thread=False)
                conn.row_factory = sqlite3.Row
                self._connections[path] = conn
                self._ensure_schema(conn)
            return self._connections[path]

    def _ensure_schema(self, conn: sqlite3.Connection) -> None:
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS kv_store (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
            """
        )
        conn.commit()

    def reset(self, path: Path) -> None:
        with self._lock:
            if path in self._connections:
                self._connections[path].close()
                del self._connections[path]
        if path.exists():
            path.unlink()

    def close_all(self) -> None:
        with self._lock:
            for conn in self._connections.values():
                conn.close()
            self._connections.clear()


class StateStore:
    """Durable JSON values keyed by name.

    Every ``sqlite3`` failure surfaces as ``StorageError`` so callers can treat a
    failed write as fatal for the current run.
    """

    def __init__(self, db_path: Path, manager: SQLiteManager | None = None) -> None:
        self.db_path = Path(db_path)
        self.manager = manager or SQLiteManager()

    def _conn(self) -> sqlite3.Connection:
        try:
            return self.manager.connect(self.db_path)
        except (sqlite3.Error, OSError) as exc:
            raise StorageError(f"Cannot open store {self.db_path}: {exc}") from exc

    def get(self, key: str, default: Any = None) -> Any:
        try:
            row = self._conn().execute(
                "SELECT value FROM kv_store WHERE key = ?", (key,)
            ).fetchone()
        except sqlite3.Error as exc:
            raise StorageError(f"Failed to read '{key}': {exc}") from exc
        if row is None:
            return default
        try:
            return json.loads(row["value"])
        except json.JSONDecodeError as exc:
            raise StorageError(f"Corrupt value stored under '{key}'") from exc

    def set(self, key: str, value: Any) -> None:
        conn = self._conn()
        try:
            payload = json.dumps(value, ensure_ascii=False)
        except (TypeError, ValueError) as exc:
            raise StorageError(f"Value for '{key}' is not JSON serialisable") from exc
        try:
            with conn:
                conn.execute(
                    """
                    INSERT INTO kv_store (key, value, updated_at) VALUES (?, ?, ?)
                    ON CONFLICT(key) DO UPDATE SET value = excluded.value,
                        updated_at = excluded.updated_at
                    """,
                    (key, payload, datetime.now(timezone.utc).isoformat()),
                )
        except sqlite3.Error as exc:
            raise StorageError(f"Failed to write '{key}': {exc}") from exc

    def delete(self, key: str) -> None:
        conn = self._conn()
        try:
            with conn:
                conn.execute("DELETE FROM kv_store WHERE key = ?", (key,))
        except sqlite3.Error as exc:
            raise StorageError(f"Failed to delete '{key}': {exc}") from exc

    def keys(self) -> list[str]:
        try:
            rows = self._conn().execute("SELECT key FROM kv_store ORDER BY key").fetchall()
        except sqlite3.Error as exc:
            raise StorageError(f"Failed to list keys: {exc}") from exc
        return [row["key"] for row in rows]

    # checkpoint & phase ------------------------------------------------------

    def load_checkpoint(self) -> dict[str, Any] | None:
        return self.get(CHECKPOINT_KEY)

    def save_checkpoint(self, payload: Mapping[str, Any]) -> None:
        self.set(CHECKPOINT_KEY, dict(payload))

    def clear_checkpoint(self) -> None:
        self.delete(CHECKPOINT_KEY)

    def get_phase(self) -> str | None:
        return self.get(PHASE_KEY)

    def set_phase(self, phase: str) -> None:
        self.set(PHASE_KEY, phase)

    # settings & snapshots ----------------------------------------------------

    def load_settings(self) -> dict[str, Any]:
        """Return the raw saved overrides; resolution against defaults is the caller's job."""

        return self.get(SETTINGS_KEY) or {}

    def save_settings(self, settings: Settings) -> None:
        self.set(SETTINGS_KEY, settings.model_dump(mode="json"))

    def last_export(self) -> dict[str, Any] | None:
        return self.get(LAST_EXPORT_KEY)

    def save_last_export(self, snapshot: Mapping[str, Any]) -> None:
        # replaced wholesale
        self.set(LAST_EXPORT_KEY, dict(snapshot))

    def last_result(self) -> dict[str, Any] | None:
        return self.get(LAST_RESULT_KEY)

    def save_last_result(self, result: Mapping[str, Any]) -> None:
        self.set(LAST_RESULT_KEY, dict(result))

    def close(self) -> None:
        self.manager.close_all()


__all__ = [
    "CHECKPOINT_KEY",
    "LAST_EXPORT_KEY",
    "LAST_RESULT_KEY",
    "PHASE_KEY",
    "SETTINGS_KEY",
    "SQLiteManager",
    "StateStore",
]
