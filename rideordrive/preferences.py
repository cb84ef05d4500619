"""Persistent key/value preferences backed by sqlite."""
from __future__ import annotations

import json
import logging
import os
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Iterator, List, Optional, Set
from urllib.parse import unquote, urlparse


logger = logging.getLogger(__name__)

MEMORY_URL = "sqlite:///:memory:"


class DatabaseSession:
    """Minimal DB-API session wrapper."""

    def __init__(self, connection: sqlite3.Connection):
        self.connection = connection

    def execute(self, sql: str, params: tuple = ()):
        cursor = self.connection.cursor()
        cursor.execute(sql, params)
        return cursor

    def fetchone(self, sql: str, params: tuple = ()):
        cursor = self.execute(sql, params)
        row = cursor.fetchone()
        cursor.close()
        return row

    def fetchall(self, sql: str, params: tuple = ()):
        cursor = self.execute(sql, params)
        rows = cursor.fetchall()
        cursor.close()
        return rows

    def commit(self) -> None:
        self.connection.commit()

    def rollback(self) -> None:
        self.connection.rollback()


def resolve_sqlite_path(url: str) -> str:
    """``sqlite:///prefs.db`` is relative, ``sqlite:////var/prefs.db`` absolute."""
    parsed = urlparse(url)
    if parsed.scheme and not parsed.scheme.startswith("sqlite"):
        raise ValueError(f"Unsupported database scheme: {parsed.scheme}")
    path = unquote(parsed.path or parsed.netloc or "")
    if parsed.scheme and path.startswith("/"):
        path = path[1:]
    if path in ("", ":memory:"):
        return ":memory:"
    return os.path.abspath(path)


def create_connection(url: str) -> sqlite3.Connection:
    db_path = resolve_sqlite_path(url)
    if db_path != ":memory:":
        os.makedirs(os.path.dirname(db_path), exist_ok=True)
    connection = sqlite3.connect(db_path, check_same_thread=False)
    connection.row_factory = sqlite3.Row
    return connection


def utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class PreferencesStore:
    """Typed accessors over a ``preferences`` table.

    Values are stored JSON encoded; a typed getter returns ``None`` when the
    key is missing or holds a value of another type.
    """

    def __init__(self, database_url: str = MEMORY_URL) -> None:
        self.database_url = database_url
        self._connection: Optional[sqlite3.Connection] = None
        self._lock = threading.RLock()

    # -- lifecycle ----------------------------------------------------------
    def initialize(self) -> None:
        with self._lock:
            if self._connection is not None:
                return
            logger.info("Opening preferences store %s", self.database_url)
            self._connection = create_connection(self.database_url)
            self._run_migrations()

    def close(self) -> None:
        with self._lock:
            if self._connection is not None:
                self._connection.close()
                self._connection = None

    @contextmanager
    def session_scope(self) -> Iterator[DatabaseSession]:
        with self._lock:
            if self._connection is None:
                self.initialize()
            session = DatabaseSession(self._connection)  # type: ignore[arg-type]
            try:
                yield session
                session.commit()
            except Exception:
                session.rollback()
                raise

    def _run_migrations(self) -> None:
        session = DatabaseSession(self._connection)  # type: ignore[arg-type]
        session.execute(
            """
            CREATE TABLE IF NOT EXISTS preferences (
                key VARCHAR(255) PRIMARY KEY,
                value TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
            """
        )
        session.commit()

    # -- raw access ---------------------------------------------------------
    def _get(self, key: str) -> Any:
        with self.session_scope() as session:
            row = session.fetchone("SELECT value FROM preferences WHERE key = ?", (key,))
        if row is None:
            return None
        try:
            return json.loads(row["value"])
        except ValueError:
            logger.warning("Discarding undecodable preference %s", key)
            return None

    def _set(self, key: str, value: Any) -> bool:
        if not key:
            raise ValueError("key must be provided")
        encoded = json.dumps(value)
        with self.session_scope() as session:
            session.execute(
                """
                INSERT INTO preferences (key, value, updated_at) VALUES (?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at
                """,
                (key, encoded, utcnow_iso()),
            )
        return True

    # -- typed accessors ----------------------------------------------------
    def get_string(self, key: str) -> Optional[str]:
        value = self._get(key)
        return value if isinstance(value, str) else None

    def set_string(self, key: str, value: str) -> bool:
        return self._set(key, str(value))

    def get_string_list(self, key: str) -> Optional[List[str]]:
        value = self._get(key)
        if isinstance(value, list) and all(isinstance(item, str) for item in value):
            return value
        return None

    def set_string_list(self, key: str, value: List[str]) -> bool:
        return self._set(key, [str(item) for item in value])

    def get_bool(self, key: str) -> Optional[bool]:
        value = self._get(key)
        return value if isinstance(value, bool) else None

    def set_bool(self, key: str, value: bool) -> bool:
        return self._set(key, bool(value))

    def get_int(self, key: str) -> Optional[int]:
        value = self._get(key)
        if isinstance(value, bool) or not isinstance(value, int):
            return None
        return value

    def set_int(self, key: str, value: int) -> bool:
        return self._set(key, int(value))

    def get_float(self, key: str) -> Optional[float]:
        value = self._get(key)
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return None
        return float(value)

    def set_float(self, key: str, value: float) -> bool:
        return self._set(key, float(value))

    def remove(self, key: str) -> bool:
        with self.session_scope() as session:
            cursor = session.execute("DELETE FROM preferences WHERE key = ?", (key,))
            return cursor.rowcount > 0

    def keys(self) -> Set[str]:
        with self.session_scope() as session:
            rows = session.fetchall("SELECT key FROM preferences")
        return {row["key"] for row in rows}

    def clear(self) -> bool:
        with self.session_scope() as session:
            session.execute("DELETE FROM preferences")
        return True


__all__ = ["DatabaseSession", "MEMORY_URL", "PreferencesStore", "create_connection", "resolve_sqlite_path"]
