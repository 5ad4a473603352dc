"""SQLite-backed history of (cpu, gpu, fan speed) readings."""

import logging
import sqlite3
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

from smart_fan_controller.readings import isoformat

log = logging.getLogger(__name__)

MEMORY = ":memory:"

_SCHEMA = """
CREATE TABLE IF NOT EXISTS readings (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    timestamp REAL NOT NULL,
    cpu_temp INTEGER,
    gpu_temp INTEGER,
    fan_speed INTEGER
);
CREATE INDEX IF NOT EXISTS idx_readings_timestamp ON readings(timestamp);
"""


class StorageError(Exception):
    """The history database could not be opened, written or queried."""


@dataclass(frozen=True)
class HistoryPoint:
    timestamp: float
    cpu_temp: int
    gpu_temp: int
    fan_speed: int

    def to_dict(self) -> dict:
        return {
            "timestamp": isoformat(self.timestamp),
            "cpu_temp": self.cpu_temp,
            "gpu_temp": self.gpu_temp,
            "fan_speed": self.fan_speed,
        }


class HistoryStore:
    """Append-only reading history, safe to share between threads."""

    def __init__(self, path: str, clock: Callable[[], float] = time.time) -> None:
        """Open (creating if needed) the database at ``path``.

        Raises StorageError if the directory or database cannot be created.
        """
        self._path = path
        self._clock = clock
        self._lock = threading.Lock()

        try:
            if path != MEMORY:
                Path(path).parent.mkdir(parents=True, exist_ok=True)
            self._db = sqlite3.connect(path, check_same_thread=False)
            self._db.executescript(_SCHEMA)
        except (OSError, sqlite3.Error) as e:
            raise StorageError(f"Cannot open history database {path}: {e}") from e

        log.info("History database opened at %s", path)

    def close(self) -> None:
        with self._lock:
            self._db.close()

    def record_reading(self, cpu_temp: int, gpu_temp: int, fan_speed: int) -> None:
        """Append one reading. Raises StorageError on failure."""
        try:
            with self._lock, self._db:
                self._db.execute(
                    "INSERT INTO readings (timestamp, cpu_temp, gpu_temp, fan_speed) "
                    "VALUES (?, ?, ?, ?)",
                    (self._clock(), cpu_temp, gpu_temp, fan_speed),
                )
        except sqlite3.Error as e:
            raise StorageError(f"Failed to record reading: {e}") from e

    def get_history(self, duration: float) -> list[HistoryPoint]:
        """Readings from the last ``duration`` seconds, oldest first."""
        cutoff = self._clock() - duration
        try:
            with self._lock:
                rows = self._db.execute(
                    "SELECT timestamp, cpu_temp, gpu_temp, fan_speed FROM readings "
                    "WHERE timestamp > ? ORDER BY timestamp ASC",
                    (cutoff,),
                ).fetchall()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to query history: {e}") from e
        return [HistoryPoint(*row) for row in rows]

    def cleanup(self, retention: float) -> int:
        """Delete readings older than ``retention`` seconds. Returns the number removed."""
        cutoff = self._clock() - retention
        try:
            with self._lock, self._db:
                cursor = self._db.execute("DELETE FROM readings WHERE timestamp < ?", (cutoff,))
        except sqlite3.Error as e:
            raise StorageError(f"Failed to prune history: {e}") from e
        if cursor.rowcount:
            log.info("Pruned %d history rows older than %.0fs", cursor.rowcount, retention)
        return cursor.rowcount
