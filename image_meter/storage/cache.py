"""
Artifact cache stores.

Keyed object storage for generated artifacts. Reads are side-effect free;
writes are first-write-wins and never overwrite an existing entry.
"""

import threading
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Dict, Optional

from .db import DEFAULT_DB_PATH, get_connection
from .models import CacheEntry


class CacheStore(ABC):
    """Abstract base class for artifact storage backends."""

    @abstractmethod
    def get(self, key: str) -> Optional[CacheEntry]:
        """Return the entry stored under ``key``, or None."""
        pass

    @abstractmethod
    def put(self, key: str, data: bytes, content_type: str, cache_control: str) -> bool:
        """Store an artifact. Returns True if the store accepted the write."""
        pass


class InMemoryCacheStore(CacheStore):
    """
    In-memory cache store for testing.
    """

    def __init__(self):
        self.entries: Dict[str, CacheEntry] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[CacheEntry]:
        with self._lock:
            return self.entries.get(key)

    def put(self, key: str, data: bytes, content_type: str, cache_control: str) -> bool:
        with self._lock:
            self.entries.setdefault(key, CacheEntry(
                key=key,
                data=bytes(data),
                content_type=content_type,
                cache_control=cache_control,
                created_at=datetime.now()
            ))
        return True

    def __len__(self) -> int:
        return len(self.entries)

    def __contains__(self, key: str) -> bool:
        return key in self.entries


class SQLiteCacheStore(CacheStore):
    """Cache store backed by the ``cache_entry`` table.

    Opens a connection per call so instances can be shared across the
    request thread and the background persistence workers.
    """

    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        self.db_path = db_path

    def get(self, key: str) -> Optional[CacheEntry]:
        conn = get_connection(self.db_path)
        try:
            row = conn.execute(
                "SELECT key, data, content_type, cache_control, created_at "
                "FROM cache_entry WHERE key = ?",
                (key,)
            ).fetchone()
        finally:
            conn.close()

        if row is None:
            return None
        return CacheEntry(
            key=row[0],
            data=bytes(row[1]),
            content_type=row[2],
            cache_control=row[3],
            created_at=datetime.fromisoformat(row[4])
        )

    def put(self, key: str, data: bytes, content_type: str, cache_control: str) -> bool:
        conn = get_connection(self.db_path)
        try:
            conn.execute("""
                INSERT OR IGNORE INTO cache_entry
                (key, data, content_type, cache_control, created_at)
                VALUES (?, ?, ?, ?, ?)
            """, (
                key,
                bytes(data),
                content_type,
                cache_control,
                datetime.now().isoformat()
            ))
            conn.commit()
        finally:
            conn.close()
        return True
