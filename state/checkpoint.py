"""
SQLite persistence for long-lived monitor components.

Today that is the alert deduplication cache, so a restarted monitor keeps
suppressing alerts it already sent. Anything with to_dict()/from_dict()
can be registered. Rows are JSON blobs keyed by component name; a row that
no longer parses is treated as absent.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
import time
from pathlib import Path
from typing import Any, Protocol, TypeVar, runtime_checkable

logger = logging.getLogger(__name__)

_DDL = """
CREATE TABLE IF NOT EXISTS component_state (
    component   TEXT PRIMARY KEY,
    data_json   TEXT NOT NULL,
    pass_num    INTEGER NOT NULL DEFAULT 0,
    updated_at  REAL NOT NULL
)
"""
_WRITE = (
    "INSERT INTO component_state (component, data_json, pass_num, updated_at) VALUES (?, ?, ?, ?) "
    "ON CONFLICT(component) DO UPDATE SET data_json = excluded.data_json, "
    "pass_num = excluded.pass_num, updated_at = excluded.updated_at"
)
_READ = "SELECT data_json, updated_at FROM component_state WHERE component = ?"
_DELETE = "DELETE FROM component_state WHERE component = ?"


@runtime_checkable
class Serializable(Protocol):
    def to_dict(self) -> dict: ...

    @classmethod
    def from_dict(cls, data: dict) -> Any: ...


T = TypeVar("T")


class CheckpointManager:
    """
    Component store backed by one SQLite file. A single lock serializes
    access to the shared connection.

        mgr = CheckpointManager("state.db")
        dedup.restore_from(mgr.load("alert_dedup", AlertDeduplicator))
        mgr.register("alert_dedup", dedup)
        ...
        mgr.tick()   # after each monitor pass
    """

    def __init__(self, db_path: str | Path, auto_save_interval: int = 1) -> None:
        if auto_save_interval < 1:
            raise ValueError(f"auto_save_interval must be >= 1, got {auto_save_interval}")
        self._db_path = str(db_path)
        self._every = auto_save_interval
        self._passes = 0
        self._saves = 0
        self._registered: dict[str, Serializable] = {}
        self._lock = threading.Lock()
        self._conn: sqlite3.Connection | None = sqlite3.connect(self._db_path, check_same_thread=False)
        self._conn.execute("PRAGMA busy_timeout=5000")
        with self._conn:
            self._conn.execute(_DDL)

    def _connection(self) -> sqlite3.Connection:
        if self._conn is None:
            raise sqlite3.ProgrammingError(f"checkpoint store {self._db_path} is closed")
        return self._conn

    def _write(self, rows: list[tuple[str, str, int, float]]) -> None:
        with self._lock:
            conn = self._connection()
            with conn:
                conn.executemany(_WRITE, rows)
            self._saves += len(rows)

    def register(self, name: str, component: Serializable) -> None:
        """Include component in every tick()/save_all(). Nothing is written yet."""
        with self._lock:
            self._registered[name] = component

    def save(self, name: str, component: Serializable) -> None:
        payload = json.dumps(component.to_dict(), default=str)
        self._write([(name, payload, self._passes, time.time())])
        logger.debug("Saved %s (%d bytes)", name, len(payload))

    def save_all(self) -> int:
        """Write every registered component in one transaction. Returns the count."""
        with self._lock:
            components = list(self._registered.items())
        if not components:
            return 0
        now = time.time()
        self._write([
            (name, json.dumps(component.to_dict(), default=str), self._passes, now)
            for name, component in components
        ])
        logger.debug("Saved %d components at pass %d", len(components), self._passes)
        return len(components)

    def load(self, name: str, component_cls: type[T]) -> T | None:
        """component_cls.from_dict() of the stored row; None when missing or unreadable."""
        with self._lock:
            row = self._connection().execute(_READ, (name,)).fetchone()
        if row is None:
            return None

        payload, updated_at = row
        try:
            restored = component_cls.from_dict(json.loads(payload))  # type: ignore[attr-defined]
        except (json.JSONDecodeError, TypeError, KeyError, ValueError) as e:
            logger.warning("Ignoring unreadable checkpoint %s: %s", name, e)
            return None
        logger.info("Restored %s from checkpoint (%.0fs old)", name, time.time() - updated_at)
        return restored

    def tick(self) -> int:
        """Count one monitor pass; save registered components every Nth. Returns count saved."""
        self._passes += 1
        if self._passes % self._every:
            return 0
        return self.save_all()

    def delete(self, name: str) -> bool:
        with self._lock:
            conn = self._connection()
            with conn:
                deleted = conn.execute(_DELETE, (name,)).rowcount
        return deleted > 0

    def close(self) -> None:
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None

    @property
    def stats(self) -> dict[str, Any]:
        return {"db_path": self._db_path, "save_count": self._saves, "passes": self._passes}
