"""Key/value storage backends for queue data."""

from __future__ import annotations

import abc
import logging
import os
import sqlite3
import threading

log = logging.getLogger(__name__)

NOT_EXISTED = "Data Not Existed"
MODE_NOT_MATCHED = "Storage Mode Not Matched"


class DataNotExisted(LookupError):
    """Raised when a key has no stored value."""

    def __init__(self, key: str = ""):
        self.key = key
        super().__init__(NOT_EXISTED)

    def __str__(self) -> str:
        return NOT_EXISTED


class Storage(abc.ABC):
    """A byte-valued key/value store."""

    @abc.abstractmethod
    def set(self, key: str, data: bytes) -> None:
        """Store data under key."""

    @abc.abstractmethod
    def get(self, key: str) -> bytes:
        """Return the data under key or raise DataNotExisted."""

    @abc.abstractmethod
    def delete(self, key: str) -> None:
        """Remove key."""

    @abc.abstractmethod
    def close(self) -> None:
        """Release the store."""

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.close()


class MemStore(Storage):
    """A store kept in a dictionary."""

    def __init__(self):
        self._lock = threading.Lock()
        self._db: dict[str, bytes] | None = {}

    def set(self, key: str, data: bytes) -> None:
        with self._lock:
            if self._db is None:
                raise RuntimeError("storage closed")
            self._db[key] = bytes(data)

    def get(self, key: str) -> bytes:
        with self._lock:
            if self._db is None or key not in self._db:
                raise DataNotExisted(key)
            return self._db[key]

    def delete(self, key: str) -> None:
        with self._lock:
            if self._db is None or key not in self._db:
                raise DataNotExisted(key)
            del self._db[key]

    def close(self) -> None:
        with self._lock:
            self._db = None


class LevelStore(Storage):
    """A persistent store kept in a database directory."""

    _FILE_NAME = "store.sqlite3"

    def __init__(self, path):
        self.path = os.fspath(path)
        os.makedirs(self.path, exist_ok=True)
        self._lock = threading.Lock()
        self._db: sqlite3.Connection | None = sqlite3.connect(
            os.path.join(self.path, self._FILE_NAME),
            check_same_thread=False,
            isolation_level=None,
        )
        self._db.execute(
            "CREATE TABLE IF NOT EXISTS kv (key TEXT PRIMARY KEY, value BLOB NOT NULL)"
        )

    def _conn(self) -> sqlite3.Connection:
        if self._db is None:
            raise RuntimeError("storage closed")
        return self._db

    def set(self, key: str, data: bytes) -> None:
        with self._lock:
            self._conn().execute(
                "INSERT OR REPLACE INTO kv (key, value) VALUES (?, ?)",
                (key, bytes(data)),
            )

    def get(self, key: str) -> bytes:
        with self._lock:
            row = self._conn().execute(
                "SELECT value FROM kv WHERE key = ?", (key,)
            ).fetchone()
        if row is None:
            raise DataNotExisted(key)
        return bytes(row[0])

    def delete(self, key: str) -> None:
        with self._lock:
            self._conn().execute("DELETE FROM kv WHERE key = ?", (key,))

    def close(self) -> None:
        with self._lock:
            if self._db is None:
                log.error("store close error: storage closed")
                raise RuntimeError("storage closed")
            self._db.close()
            self._db = None