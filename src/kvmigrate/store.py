"""
Persisted Store - key/value interface consumed by the migration subsystem

The migration subsystem only needs four synchronous primitives: get, set,
delete and list_keys. Applications plug in their own backend by subclassing
KeyValueStore; two reference backends are provided:

- MemoryStore: dict-backed, for tests and ephemeral state
- SQLiteStore: single-table SQLite file, WAL mode by default
"""

import sqlite3
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, List, Optional

from .errors import StoreError


class KeyValueStore(ABC):
    """
    Abstract base class for persisted key/value stores

    Values are raw strings. Backends raise StoreError when an operation
    cannot be completed; a missing key is not an error for get() or delete().
    """

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        """
        Read the raw value stored under key.

        Returns:
            The stored string, or None if the key is absent

        Raises:
            StoreError: If the read fails
        """
        pass

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        """
        Store value under key, replacing any previous value.

        Raises:
            StoreError: If the write fails
        """
        pass

    @abstractmethod
    def delete(self, key: str) -> None:
        """
        Remove key. Deleting an absent key is a no-op.

        Raises:
            StoreError: If the delete fails
        """
        pass

    @abstractmethod
    def list_keys(self) -> List[str]:
        """
        List every key currently in the store (unpaginated).

        Raises:
            StoreError: If the listing fails
        """
        pass

    def keys_with_prefix(self, prefix: str) -> List[str]:
        """List keys starting with prefix, sorted."""
        return sorted(k for k in self.list_keys() if k.startswith(prefix))


class MemoryStore(KeyValueStore):
    """Dict-backed store. Not persistent across processes."""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._data: Dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        if not isinstance(value, str):
            raise StoreError(f"Value for {key!r} must be a string, got {type(value).__name__}")
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def list_keys(self) -> List[str]:
        return list(self._data.keys())

    def to_dict(self) -> Dict[str, str]:
        """Copy of the full contents."""
        return dict(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def __repr__(self) -> str:
        return f"<MemoryStore: {len(self._data)} keys>"


class SQLiteStore(KeyValueStore):
    """
    SQLite-backed key/value store

    Pattern: One table (kv_store) keyed by TEXT primary key
    Lifetime: Persistent across application restarts

    Every operation opens its own connection and commits immediately, so
    each set/delete is durable before the call returns.
    """

    TABLE = "kv_store"

    def __init__(self, db_path: Path, enable_wal: bool = True):
        """
        Initialize SQLite store.

        Args:
            db_path: Path to SQLite database file (created if missing)
            enable_wal: Enable WAL journal mode (default: True)
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._enable_wal = enable_wal
        self._init_db()

    def _init_db(self) -> None:
        """Create the key/value table if needed."""
        try:
            with sqlite3.connect(self.db_path) as conn:
                if self._enable_wal:
                    conn.execute("PRAGMA journal_mode=WAL")
                conn.execute(f"""
                    CREATE TABLE IF NOT EXISTS {self.TABLE} (
                        key TEXT PRIMARY KEY,
                        value TEXT NOT NULL
                    )
                """)
                conn.commit()
        except sqlite3.Error as e:
            raise StoreError(f"Failed to initialize store at {self.db_path}: {e}") from e

    def get(self, key: str) -> Optional[str]:
        try:
            with sqlite3.connect(self.db_path) as conn:
                cursor = conn.execute(
                    f"SELECT value FROM {self.TABLE} WHERE key = ?", (key,)
                )
                row = cursor.fetchone()
        except sqlite3.Error as e:
            raise StoreError(f"Failed to read {key!r}: {e}") from e
        return row[0] if row else None

    def set(self, key: str, value: str) -> None:
        if not isinstance(value, str):
            raise StoreError(f"Value for {key!r} must be a string, got {type(value).__name__}")
        try:
            with sqlite3.connect(self.db_path) as conn:
                conn.execute(f"""
                    INSERT INTO {self.TABLE} (key, value) VALUES (?, ?)
                    ON CONFLICT(key) DO UPDATE SET value = excluded.value
                """, (key, value))
                conn.commit()
        except sqlite3.Error as e:
            raise StoreError(f"Failed to write {key!r}: {e}") from e

    def delete(self, key: str) -> None:
        try:
            with sqlite3.connect(self.db_path) as conn:
                conn.execute(f"DELETE FROM {self.TABLE} WHERE key = ?", (key,))
                conn.commit()
        except sqlite3.Error as e:
            raise StoreError(f"Failed to delete {key!r}: {e}") from e

    def list_keys(self) -> List[str]:
        try:
            with sqlite3.connect(self.db_path) as conn:
                cursor = conn.execute(f"SELECT key FROM {self.TABLE} ORDER BY key")
                return [row[0] for row in cursor]
        except sqlite3.Error as e:
            raise StoreError(f"Failed to list keys: {e}") from e

    def __repr__(self) -> str:
        return f"<SQLiteStore: {self.db_path}>"
