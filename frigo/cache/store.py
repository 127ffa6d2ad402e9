"""
Durable key-value stores backing the cache.

Stores hold raw bytes; encoding is the cache's concern. Every backend
failure surfaces as StorageError so the cache can degrade to pass-through.
"""
import sqlite3
import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, List, Optional, Protocol

from .errors import StorageError

logger = logging.getLogger("cache.store")

DEFAULT_NAMESPACE = "frigo-cache:"


class KeyValueStore(Protocol):
    """Interface the cache expects from a backing store."""

    def get(self, key: str) -> Optional[bytes]: ...

    def set(self, key: str, value: bytes) -> None: ...

    def delete(self, key: str) -> bool: ...

    def keys(self, prefix: str = "") -> List[str]: ...

    def clear(self) -> int: ...


class MemoryStore:
    """Process-local store. Entries are lost when the process exits."""

    def __init__(self):
        self._data: Dict[str, bytes] = {}

    def get(self, key: str) -> Optional[bytes]:
        return self._data.get(key)

    def set(self, key: str, value: bytes) -> None:
        self._data[key] = value

    def delete(self, key: str) -> bool:
        return self._data.pop(key, None) is not None

    def keys(self, prefix: str = "") -> List[str]:
        return [k for k in self._data if k.startswith(prefix)]

    def clear(self) -> int:
        count = len(self._data)
        self._data.clear()
        return count


SCHEMA = """
CREATE TABLE IF NOT EXISTS cache_entries (
    key TEXT PRIMARY KEY,
    value BLOB NOT NULL
);
"""


class SQLiteStore:
    """
    SQLite-backed store; entries survive process restarts.

    The schema is created on first use so that an unusable path is reported
    as StorageError from get/set rather than from the constructor.
    """

    def __init__(self, db_path: Path):
        self.db_path = Path(db_path)
        self._initialized = False

    @contextmanager
    def _get_connection(self):
        """Get a database connection, translating backend errors."""
        try:
            if not self._initialized:
                self.db_path.parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(str(self.db_path))
        except (sqlite3.Error, OSError) as e:
            raise StorageError(f"Cannot open cache database {self.db_path}: {e}") from e
        try:
            if not self._initialized:
                conn.executescript(SCHEMA)
                self._initialized = True
                logger.debug(f"Initialized cache database at {self.db_path}")
            yield conn
        except sqlite3.Error as e:
            raise StorageError(f"Cache database error ({self.db_path}): {e}") from e
        finally:
            conn.close()

    def get(self, key: str) -> Optional[bytes]:
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT value FROM cache_entries WHERE key = ?", (key,)
            ).fetchone()
        return bytes(row[0]) if row else None

    def set(self, key: str, value: bytes) -> None:
        with self._get_connection() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO cache_entries (key, value) VALUES (?, ?)",
                (key, sqlite3.Binary(value)),
            )
            conn.commit()

    def delete(self, key: str) -> bool:
        with self._get_connection() as conn:
            cursor = conn.execute("DELETE FROM cache_entries WHERE key = ?", (key,))
            conn.commit()
            return cursor.rowcount > 0

    def keys(self, prefix: str = "") -> List[str]:
        # substr() rather than LIKE so '%' and '_' in keys stay literal
        with self._get_connection() as conn:
            rows = conn.execute(
                "SELECT key FROM cache_entries WHERE substr(key, 1, ?) = ? ORDER BY key",
                (len(prefix), prefix),
            ).fetchall()
        return [row[0] for row in rows]

    def clear(self) -> int:
        with self._get_connection() as conn:
            cursor = conn.execute("DELETE FROM cache_entries")
            conn.commit()
            return cursor.rowcount


class NamespacedStore:
    """
    Prefixes every key so the cache can share a store with unrelated data.

    keys() returns un-prefixed keys and clear() only touches the namespace.
    """

    def __init__(self, store: KeyValueStore, namespace: str = DEFAULT_NAMESPACE):
        self._store = store
        self.namespace = namespace

    def _k(self, key: str) -> str:
        return f"{self.namespace}{key}"

    def get(self, key: str) -> Optional[bytes]:
        return self._store.get(self._k(key))

    def set(self, key: str, value: bytes) -> None:
        self._store.set(self._k(key), value)

    def delete(self, key: str) -> bool:
        return self._store.delete(self._k(key))

    def keys(self, prefix: str = "") -> List[str]:
        offset = len(self.namespace)
        return [k[offset:] for k in self._store.keys(self._k(prefix))]

    def clear(self) -> int:
        count = 0
        for key in self._store.keys(self.namespace):
            if self._store.delete(key):
                count += 1
        return count
