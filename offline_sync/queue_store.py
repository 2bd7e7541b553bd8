"""
Durable key/value storage for the persisted operation queue.

The queue is stored as one serialized value under a well-known key and
rewritten in full on every mutation.
"""

import logging
import sqlite3
import time
from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from .exceptions import QueueStoreError

logger = logging.getLogger(__name__)


class QueueStore(ABC):
    """Read-then-overwrite storage for serialized queue values."""

    @abstractmethod
    def load(self, key: str) -> Optional[str]:
        """Return the value stored under ``key``, or None."""

    @abstractmethod
    def save(self, key: str, value: str) -> None:
        """Overwrite the value stored under ``key``."""

    @abstractmethod
    def delete(self, key: str) -> None:
        """Remove ``key`` if present."""


class MemoryQueueStore(QueueStore):
    """In-process store. Survives queue re-creation, not process restarts."""

    def __init__(self):
        self._values: dict[str, str] = {}

    def load(self, key: str) -> Optional[str]:
        return self._values.get(key)

    def save(self, key: str, value: str) -> None:
        self._values[key] = value

    def delete(self, key: str) -> None:
        self._values.pop(key, None)


class SqliteQueueStore(QueueStore):
    """SQLite-backed key/value store."""

    SCHEMA = """
    CREATE TABLE IF NOT EXISTS kv_store (
        key TEXT PRIMARY KEY,
        value TEXT NOT NULL,
        updated_at TEXT NOT NULL
    );
    """

    def __init__(self, db_path: Path):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _init_db(self) -> None:
        """Initialize the database schema."""
        with self._get_connection() as conn:
            conn.executescript(self.SCHEMA)
            conn.commit()

    def _connect(self) -> sqlite3.Connection:
        """Open a connection, backing off while another writer holds the lock."""
        for attempt in range(5):
            try:
                conn = sqlite3.connect(str(self.db_path), timeout=30.0)
            except sqlite3.OperationalError as e:
                if "database is locked" not in str(e) or attempt == 4:
                    raise QueueStoreError(f"Cannot open queue store {self.db_path}: {e}") from e
                time.sleep(0.1 * (2 ** attempt))
            else:
                conn.row_factory = sqlite3.Row
                return conn

    @contextmanager
    def _get_connection(self):
        conn = self._connect()
        try:
            yield conn
        except sqlite3.Error as e:
            raise QueueStoreError(f"Queue store error: {e}") from e
        finally:
            conn.close()

    def load(self, key: str) -> Optional[str]:
        with self._get_connection() as conn:
            cursor = conn.execute("SELECT value FROM kv_store WHERE key = ?", (key,))
            row = cursor.fetchone()
            return row["value"] if row else None

    def save(self, key: str, value: str) -> None:
        with self._get_connection() as conn:
            conn.execute(
                """
                INSERT OR REPLACE INTO kv_store (key, value, updated_at)
                VALUES (?, ?, ?)
                """,
                (key, value, datetime.now(timezone.utc).isoformat()),
            )
            conn.commit()

    def delete(self, key: str) -> None:
        with self._get_connection() as conn:
            conn.execute("DELETE FROM kv_store WHERE key = ?", (key,))
            conn.commit()
