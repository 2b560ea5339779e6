"""SQLite storage for decoded measurements and status changes.

One row per published measurement and one per status transition.
Timestamps are stored as Unix epoch integers (seconds since
1970-01-01 00:00:00 UTC).

Example:
    >>> from flexbatch.storage import Storage
    >>> with Storage(":memory:") as store:
    ...     store.insert(1, "ActivePower-1", 123.45, "W")
    ...     store.commit()
    ...     store.fetch(1)[0]["value"]
    123.45
"""

import logging
import sqlite3
import threading
import time
from pathlib import Path

log = logging.getLogger(__name__)

SCHEMA = """\
CREATE TABLE IF NOT EXISTS measurements (
    id         INTEGER PRIMARY KEY,
    ts         INTEGER NOT NULL,  -- Unix timestamp (seconds since epoch, UTC)
    device_id  INTEGER NOT NULL,  -- Modbus unit id
    channel    TEXT    NOT NULL,  -- e.g. ActivePower-3
    value      REAL    NOT NULL,
    unit       TEXT    NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_measurements_channel_ts
    ON measurements (channel, ts);
CREATE TABLE IF NOT EXISTS status (
    id          INTEGER PRIMARY KEY,
    ts          INTEGER NOT NULL,
    status      TEXT    NOT NULL,  -- UNKNOWN, ONLINE, OFFLINE
    detail      TEXT    NOT NULL,
    description TEXT
);
"""

_INSERT = """\
INSERT INTO measurements (ts, device_id, channel, value, unit)
VALUES (?, ?, ?, ?, ?)"""

_INSERT_STATUS = """\
INSERT INTO status (ts, status, detail, description)
VALUES (?, ?, ?, ?)"""

_FETCH_RECENT = """\
SELECT id, ts, device_id, channel, value, unit
FROM measurements ORDER BY id DESC LIMIT ?"""

_FETCH_STATUS = """\
SELECT id, ts, status, detail, description
FROM status ORDER BY id DESC LIMIT ?"""


class Storage:
    """SQLite-backed storage for measurements.

    Opens (or creates) the database at *db_path*, creates the tables if
    absent, and enables WAL journaling for concurrent-read safety.  The
    connection may be used from poll threads; callers serialize access
    (see ``StorageSink``).

    Args:
        db_path: Path to the SQLite database file, or ``":memory:"``.
    """

    def __init__(self, db_path: str):
        """Open the database and ensure the schema exists."""
        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.executescript(SCHEMA)
        self._conn.commit()

    def insert(self, device_id: int, channel: str, value: float,
               unit: str) -> None:
        """Insert one measurement row.

        Does not commit; call ``commit()`` after a batch of inserts.
        """
        ts = int(time.time())
        self._conn.execute(_INSERT, (ts, device_id, channel, value, unit))

    def insert_status(self, status: str, detail: str,
                      description: str | None) -> None:
        """Insert one status row.  Does not commit."""
        ts = int(time.time())
        self._conn.execute(_INSERT_STATUS, (ts, status, detail, description))

    def fetch(self, count: int) -> list[dict]:
        """Return the newest *count* measurements, newest first."""
        cursor = self._conn.execute(_FETCH_RECENT, (count,))
        return [dict(row) for row in cursor.fetchall()]

    def fetch_status(self, count: int) -> list[dict]:
        """Return the newest *count* status rows, newest first."""
        cursor = self._conn.execute(_FETCH_STATUS, (count,))
        return [dict(row) for row in cursor.fetchall()]

    def purge(self, days: int) -> int:
        """Delete measurements older than *days* days and vacuum.

        Returns the number of deleted rows.
        """
        cutoff = int(time.time()) - days * 86400
        cursor = self._conn.execute(
            "DELETE FROM measurements WHERE ts < ?", (cutoff,)
        )
        deleted = cursor.rowcount
        self._conn.commit()
        if deleted > 0:
            self._conn.execute("VACUUM")
            log.info("purged %d measurements older than %d days", deleted, days)
        return deleted

    def commit(self) -> None:
        """Commit the current transaction."""
        self._conn.commit()

    def __enter__(self) -> "Storage":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def close(self) -> None:
        """Close the database connection."""
        self._conn.close()


class StorageSink:
    """Status sink that records everything the handler publishes.

    Args:
        storage: ``Storage`` instance shared with nothing else.
    """

    def __init__(self, storage: Storage):
        self._storage = storage
        self._lock = threading.Lock()
        self.status = None
        self.channels = []

    def update_status(self, status, detail=None, description=None) -> None:
        detail_value = detail.value if detail is not None else "NONE"
        if description:
            log.info("status %s (%s): %s", status.value, detail_value, description)
        else:
            log.info("status %s", status.value)
        with self._lock:
            self.status = status
            self._storage.insert_status(status.value, detail_value, description)
            self._storage.commit()

    def update_channels(self, channels) -> None:
        self.channels = list(channels)
        log.debug("channels: %s", ", ".join(c.uid for c in self.channels))

    def update_state(self, channel_uid, measurement) -> None:
        log.debug(
            "%s = %.2f %s", channel_uid, measurement.value, measurement.unit
        )
        with self._lock:
            self._storage.insert(
                measurement.device_id,
                measurement.channel_key,
                measurement.value,
                measurement.unit,
            )
            self._storage.commit()
