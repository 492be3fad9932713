"""Append-only event log stored in sqlite."""
from __future__ import annotations

import logging
import sqlite3
import threading
from typing import List, Optional

from .errors import StorageFailure
from .models import Event, EventQuery, EventType

logger = logging.getLogger(__name__)

EVENTS_TABLE_NAME = "RPI_EVENT_TABLE"


class EventLogger:
    """Records notable actions (station switched, forced shutoff, ...).

    Events are only ever inserted and read back; nothing updates or deletes
    them.  One connection is shared by the request thread, the scheduler's
    worker threads and the safety timers, so every statement runs under a
    lock.
    """

    def __init__(self, path: str):
        self.path = path
        self._db: Optional[sqlite3.Connection] = None
        self._lock = threading.Lock()

    def init(self) -> None:
        logger.debug("init(%s)", self.path)
        try:
            self._db = sqlite3.connect(self.path, check_same_thread=False)
            with self._lock, self._db:
                self._db.execute(
                    f"CREATE TABLE IF NOT EXISTS {EVENTS_TABLE_NAME} ("
                    "event_time INTEGER, event_type TEXT, event_source TEXT, "
                    "event_text TEXT, device_id TEXT)"
                )
        except sqlite3.Error as e:
            logger.error("Failed to init events DB %s: %s", self.path, e)
            raise StorageFailure(f"Failed to open event log {self.path}: {e}") from e

    def close(self) -> None:
        if self._db is not None:
            self._db.close()
            self._db = None

    def _conn(self) -> sqlite3.Connection:
        if self._db is None:
            raise StorageFailure("Event log is not initialised")
        return self._db

    def append(self, event: Event) -> None:
        db = self._conn()
        try:
            with self._lock, db:
                db.execute(
                    f"INSERT INTO {EVENTS_TABLE_NAME} "
                    "(event_time, event_type, event_source, event_text, device_id) "
                    "VALUES (?, ?, ?, ?, ?)",
                    (event.event_time, event.event_type.value, event.event_source, event.text, event.device_id),
                )
        except sqlite3.Error as e:
            raise StorageFailure(f"Failed to insert event: {e}") from e

    def get_events(self, query: Optional[EventQuery] = None) -> List[Event]:
        """Return matching events, newest first."""
        query = query or EventQuery()
        filters = []
        params: list = []
        if query.date_from is not None:
            filters.append("event_time >= ?")
            params.append(query.date_from)
        if query.date_to is not None:
            filters.append("event_time <= ?")
            params.append(query.date_to)
        if query.event_type is not None:
            filters.append("event_type = ?")
            params.append(EventType(query.event_type).value)
        if query.event_source:
            filters.append("event_source = ?")
            params.append(query.event_source)
        if query.device_id:
            filters.append("device_id = ?")
            params.append(query.device_id)

        sql = f"SELECT event_time, event_type, event_source, event_text, device_id FROM {EVENTS_TABLE_NAME}"
        if filters:
            sql += " WHERE " + " AND ".join(filters)
        # rowid breaks ties between events logged in the same millisecond
        sql += " ORDER BY event_time DESC, rowid DESC"
        if query.limit is not None or query.offset is not None:
            # sqlite wants a LIMIT before any OFFSET; -1 means no limit
            sql += " LIMIT ? OFFSET ?"
            params.append(query.limit if query.limit is not None else -1)
            params.append(query.offset or 0)
        logger.debug("SQL %s %s", sql, params)

        db = self._conn()
        try:
            with self._lock:
                rows = db.execute(sql, params).fetchall()
        except sqlite3.Error as e:
            raise StorageFailure(f"Failed to query events: {e}") from e
        return [
            Event(
                event_time=row[0],
                event_type=EventType(row[1]),
                event_source=row[2],
                text=row[3],
                device_id=row[4],
            )
            for row in rows
        ]
