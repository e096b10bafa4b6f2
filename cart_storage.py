"""
Durable blob storage for till state (the cart snapshot).

A backend only has to load, save and erase a whole string blob under a key;
callers own serialization.
"""
import datetime as dt
import os
import sqlite3
import tempfile
from pathlib import Path
from typing import Dict, Optional

from pos_errors import PersistenceError


def iso_now() -> str:
    return dt.datetime.utcnow().replace(microsecond=0).isoformat() + "Z"


class StorageAdapter:
    def load(self, key: str) -> Optional[str]:
        raise NotImplementedError

    def save(self, key: str, blob: str) -> None:
        raise NotImplementedError

    def erase(self, key: str) -> None:
        raise NotImplementedError


class MemoryStorage(StorageAdapter):
    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self.blobs: Dict[str, str] = dict(initial or {})

    def load(self, key: str) -> Optional[str]:
        return self.blobs.get(key)

    def save(self, key: str, blob: str) -> None:
        self.blobs[key] = blob

    def erase(self, key: str) -> None:
        self.blobs.pop(key, None)


def connect(db_path: str) -> sqlite3.Connection:
    conn = sqlite3.connect(db_path, timeout=30, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    if db_path != ":memory:":
        conn.execute("PRAGMA journal_mode=WAL;")
    conn.execute("PRAGMA synchronous=NORMAL;")
    conn.execute("PRAGMA foreign_keys=ON;")
    return conn


def _ensure_kv_table(conn: sqlite3.Connection):
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS kv_state (
            key TEXT PRIMARY KEY,
            value_json TEXT NOT NULL,
            updated_utc TEXT NOT NULL
        )
        """
    )
    conn.commit()


class SqliteStorage(StorageAdapter):
    """Blobs in the ``kv_state`` table of the till database."""

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn
        try:
            _ensure_kv_table(conn)
        except sqlite3.Error as exc:
            raise PersistenceError(f"Cannot prepare kv_state: {exc}") from exc

    def load(self, key: str) -> Optional[str]:
        try:
            row = self.conn.execute("SELECT value_json FROM kv_state WHERE key=?", (key,)).fetchone()
        except sqlite3.Error as exc:
            raise PersistenceError(f"Cannot read {key}: {exc}") from exc
        return row["value_json"] if row else None

    def save(self, key: str, blob: str) -> None:
        try:
            with self.conn:
                self.conn.execute(
                    """
                    INSERT INTO kv_state (key, value_json, updated_utc) VALUES (?,?,?)
                    ON CONFLICT(key) DO UPDATE SET value_json=excluded.value_json, updated_utc=excluded.updated_utc
                    """,
                    (key, blob, iso_now()),
                )
        except sqlite3.Error as exc:
            raise PersistenceError(f"Cannot write {key}: {exc}") from exc

    def erase(self, key: str) -> None:
        try:
            with self.conn:
                self.conn.execute("DELETE FROM kv_state WHERE key=?", (key,))
        except sqlite3.Error as exc:
            raise PersistenceError(f"Cannot erase {key}: {exc}") from exc


class JsonFileStorage(StorageAdapter):
    """One ``<key>.json`` file per blob, replaced atomically on save."""

    def __init__(self, directory):
        self.directory = Path(directory)

    def _path(self, key: str) -> Path:
        safe = "".join(c for c in key if c.isalnum() or c in ("-", "_"))
        if not safe:
            raise PersistenceError(f"Invalid storage key {key!r}")
        return self.directory / f"{safe}.json"

    def load(self, key: str) -> Optional[str]:
        path = self._path(key)
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except (OSError, UnicodeDecodeError) as exc:
            raise PersistenceError(f"Cannot read {path}: {exc}") from exc

    def save(self, key: str, blob: str) -> None:
        path = self._path(key)
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=str(self.directory), prefix=f".{path.stem}.", suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.write(blob)
                os.replace(tmp_name, path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as exc:
            raise PersistenceError(f"Cannot write {path}: {exc}") from exc

    def erase(self, key: str) -> None:
        path = self._path(key)
        try:
            path.unlink()
        except FileNotFoundError:
            return
        except OSError as exc:
            raise PersistenceError(f"Cannot remove {path}: {exc}") from exc
