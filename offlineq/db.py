import json
import os
import sqlite3
import threading
from typing import Any, Dict, Optional

from .config import DEFAULT_CONFIG, parse_value

DB_FILE = os.environ.get("OFFLINEQ_DB", "offlineq.db")

# Logical document keys
ITEMS_KEY = "items"
COMPLETION_LOG_KEY = "completion_log"
COMPLETED_COUNT_KEY = "completed_count"
SYNC_MODE_KEY = "sync_mode"

SCHEMA = """
PRAGMA journal_mode=WAL;
CREATE TABLE IF NOT EXISTS documents (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS config (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL
);
"""


class StoreError(RuntimeError):
    """The durable store could not read or write a document."""


def connect_db(path: Optional[str] = None) -> sqlite3.Connection:
    conn = sqlite3.connect(path or DB_FILE, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.executescript(SCHEMA)
    return conn


def init_db(path: Optional[str] = None) -> None:
    conn = connect_db(path)
    with conn:
        # seed defaults
        for k, v in DEFAULT_CONFIG.items():
            conn.execute(
                "INSERT OR IGNORE INTO config(key, value) VALUES(?,?)", (k, v)
            )
    conn.close()


# ---------- Config ----------
def get_config(conn) -> Dict[str, str]:
    cur = conn.execute("SELECT key, value FROM config")
    return {r["key"]: r["value"] for r in cur.fetchall()}


def set_config(conn, key: str, value: str):
    parse_value(key, value)
    with conn:
        conn.execute(
            "INSERT INTO config(key,value) VALUES(?,?) "
            "ON CONFLICT(key) DO UPDATE SET value=excluded.value",
            (key, str(value).strip()),
        )


# ---------- Documents ----------
class SQLiteStore:
    """Key/value document store backed by the ``documents`` table.

    Values are JSON-serializable documents. A missing key loads as ``None``;
    a row that does not parse raises :class:`StoreError`. Writes are serialized
    by a lock so a drain thread and a producer thread can share one store.
    """

    def __init__(self, conn: sqlite3.Connection):
        self._conn = conn
        self._lock = threading.Lock()

    @classmethod
    def open(cls, path: Optional[str] = None) -> "SQLiteStore":
        return cls(connect_db(path))

    def save(self, key: str, value: Any) -> None:
        try:
            encoded = json.dumps(value)
        except (TypeError, ValueError) as e:
            raise StoreError(f"Document {key!r} is not serializable: {e}")
        try:
            with self._lock, self._conn:
                self._conn.execute(
                    "INSERT INTO documents(key, value, updated_at) "
                    "VALUES(?, ?, strftime('%Y-%m-%dT%H:%M:%fZ','now')) "
                    "ON CONFLICT(key) DO UPDATE SET value=excluded.value, updated_at=excluded.updated_at",
                    (key, encoded),
                )
        except sqlite3.Error as e:
            raise StoreError(f"DB error while saving {key!r}: {e}")

    def load(self, key: str) -> Any:
        try:
            with self._lock:
                row = self._conn.execute(
                    "SELECT value FROM documents WHERE key=?", (key,)
                ).fetchone()
        except sqlite3.Error as e:
            raise StoreError(f"DB error while loading {key!r}: {e}")
        if row is None:
            return None
        try:
            return json.loads(row["value"])
        except ValueError as e:
            raise StoreError(f"Document {key!r} is corrupt: {e}")

    def clear_all(self) -> None:
        try:
            with self._lock, self._conn:
                self._conn.execute("DELETE FROM documents")
        except sqlite3.Error as e:
            raise StoreError(f"DB error while clearing documents: {e}")

    def config(self) -> Dict[str, str]:
        with self._lock:
            return get_config(self._conn)

    def set_config(self, key: str, value: str) -> None:
        with self._lock:
            set_config(self._conn, key, value)

    def close(self) -> None:
        self._conn.close()
