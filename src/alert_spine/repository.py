"""Durable alert event log.

Append-only table of ``(group, key, timestamp, status, message)`` rows,
kept either in a local SQLite file or in a ClickHouse table.  The current
status of an alert is the row with the maximum timestamp for its
``(group, key)``; in SQLite ties go to the row inserted last.

Architecture::

    ┌────────────────────────────────────────────────────────────────────┐
    │                    AlertEventRepository                            │
    │                                                                    │
    │   conn: Connection        ← protocol from alert_spine.protocols    │
    │                                                                    │
    │   create_schema()          → CREATE TABLE/INDEX IF NOT EXISTS      │
    │   append(id, result)       → INSERT + commit                       │
    │   latest_statuses()        → max-timestamp row per alert           │
    │   history(id, since)       → rows for one alert, oldest first      │
    │   truncate()               → DELETE all rows + commit              │
    └────────────────────────────────────────────────────────────────────┘

    ClickHouseEventRepository exposes the same operations over a
    QueryBackend (``execute`` for DDL, INSERT and TRUNCATE; ``query`` for
    the argMax latest-row read).

Tags:
    repository, sqlite, clickhouse, alert-events, append-only, alert-spine
"""

from __future__ import annotations

import re
import sqlite3
import threading
from datetime import datetime
from pathlib import Path
from typing import Any

from alert_spine.clock import from_db_timestamp, to_db_timestamp
from alert_spine.errors import QueryError, StorageError
from alert_spine.models import AlertId, AlertResult, CurrentAlertStatus
from alert_spine.protocols import Connection, QueryBackend

DEFAULT_EVENT_TABLE = "dashica_alert_events"
_TABLE_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z_][A-Za-z0-9_]*)?$")

SCHEMA = """
CREATE TABLE IF NOT EXISTS alert_events (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    alert_id_group TEXT NOT NULL,
    alert_id_key TEXT NOT NULL,
    timestamp TEXT NOT NULL,
    status TEXT NOT NULL,
    message TEXT NOT NULL DEFAULT ''
);

CREATE INDEX IF NOT EXISTS idx_alert_events_id_ts
    ON alert_events (alert_id_group, alert_id_key, timestamp);
"""


class SqliteConnection:
    """SQLite file (or ``:memory:``) holding the alert event log.

    File databases run in WAL mode with a busy timeout, so ``alert-spine
    status`` can read while a scheduler process appends.  The parent
    directory is created on open.  One cursor serves every statement;
    :class:`AlertEventRepository` serializes access to it.
    """

    MEMORY = ":memory:"

    def __init__(self, path: str | Path = MEMORY, *, busy_timeout: float = 5.0) -> None:
        self.path = str(path) if str(path) == self.MEMORY else str(Path(path).expanduser())
        if self.path != self.MEMORY:
            Path(self.path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(self.path, timeout=busy_timeout, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        if self.path != self.MEMORY:
            self._conn.execute("PRAGMA journal_mode=WAL")
        self._cursor = self._conn.cursor()

    @property
    def journal_mode(self) -> str:
        return str(self._conn.execute("PRAGMA journal_mode").fetchone()[0]).lower()

    def execute(self, sql: str, params: tuple = ()) -> sqlite3.Cursor:
        self._cursor.execute(sql, params)
        return self._cursor

    def fetchall(self) -> list[sqlite3.Row]:
        return self._cursor.fetchall()

    def commit(self) -> None:
        self._conn.commit()

    def rollback(self) -> None:
        self._conn.rollback()

    def close(self) -> None:
        self._conn.close()

    def __repr__(self) -> str:
        return f"SqliteConnection(path={self.path!r})"


class BaseRepository:
    """Helpers shared by repositories built on a :class:`Connection`."""

    def __init__(self, conn: Connection) -> None:
        self.conn = conn

    def ph(self, count: int) -> str:
        """``?`` placeholders for *count* values."""
        return ", ".join("?" for _ in range(count))

    def execute(self, sql: str, params: tuple = ()) -> Any:
        return self.conn.execute(sql, params)

    def query(self, sql: str, params: tuple = ()) -> list[dict[str, Any]]:
        """Execute a SELECT and return rows as dicts."""
        cursor = self.conn.execute(sql, params)
        rows = cursor.fetchall()
        if not rows:
            return []

        try:
            return [dict(row) for row in rows]
        except (TypeError, ValueError):
            pass

        columns = [desc[0] for desc in cursor.description]
        return [dict(zip(columns, row, strict=False)) for row in rows]

    def insert(self, table: str, data: dict[str, Any]) -> Any:
        columns = list(data.keys())
        sql = f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({self.ph(len(columns))})"
        return self.conn.execute(sql, tuple(data.values()))

    def commit(self) -> None:
        self.conn.commit()


class AlertEventRepository(BaseRepository):
    """Reads and appends rows of the ``alert_events`` table."""

    TABLE = "alert_events"

    def __init__(self, conn: Connection) -> None:
        super().__init__(conn)
        # one cursor per connection: execute and fetch must not interleave
        self._io_lock = threading.RLock()

    def create_schema(self) -> None:
        with self._io_lock:
            try:
                for statement in filter(None, (s.strip() for s in SCHEMA.split(";"))):
                    self.execute(statement)
                self.commit()
            except sqlite3.Error as e:
                raise StorageError(f"creating {self.TABLE}: {e}", cause=e) from e

    def append(self, alert_id: AlertId, result: AlertResult) -> None:
        """Durably record *result* for *alert_id*."""
        row = {
            "alert_id_group": alert_id.group,
            "alert_id_key": alert_id.key,
            "timestamp": to_db_timestamp(result.timestamp),
            "status": result.state,
            "message": result.message,
        }
        with self._io_lock:
            try:
                self.insert(self.TABLE, row)
                self.commit()
            except sqlite3.Error as e:
                self.conn.rollback()
                raise StorageError(f"persisting {alert_id}: {e}", cause=e).with_context(
                    alert_id=str(alert_id)
                ) from e

    def latest_statuses(self) -> list[CurrentAlertStatus]:
        """Max-timestamp row per alert, ordered by group then key."""
        sql = f"""
            SELECT e.alert_id_group, e.alert_id_key,
                   e.timestamp AS latest_timestamp,
                   e.status AS latest_status,
                   e.message AS latest_message
            FROM {self.TABLE} e
            JOIN (
                SELECT alert_id_group, alert_id_key, MAX(timestamp) AS max_ts
                FROM {self.TABLE}
                GROUP BY alert_id_group, alert_id_key
            ) m
              ON e.alert_id_group = m.alert_id_group
             AND e.alert_id_key = m.alert_id_key
             AND e.timestamp = m.max_ts
            ORDER BY e.alert_id_group, e.alert_id_key, e.id
        """
        with self._io_lock:
            try:
                rows = self.query(sql)
            except sqlite3.Error as e:
                raise StorageError(f"loading alert events: {e}", cause=e) from e

        # rows are ordered by insertion within a timestamp tie; last one wins
        latest: dict[AlertId, CurrentAlertStatus] = {}
        for row in rows:
            alert_id = AlertId(row["alert_id_group"], row["alert_id_key"])
            latest[alert_id] = CurrentAlertStatus(
                alert_id=alert_id,
                latest_timestamp=from_db_timestamp(row["latest_timestamp"]),
                latest_state=row["latest_status"],
                latest_message=row["latest_message"] or "",
            )
        return list(latest.values())

    def history(self, alert_id: AlertId, since: datetime | None = None) -> list[AlertResult]:
        """All recorded results for *alert_id*, oldest first."""
        sql = (
            f"SELECT timestamp, status, message FROM {self.TABLE} "
            f"WHERE alert_id_group = {self.ph(1)} AND alert_id_key = {self.ph(1)}"
        )
        params: tuple = (alert_id.group, alert_id.key)
        if since is not None:
            sql += f" AND timestamp >= {self.ph(1)}"
            params = (*params, to_db_timestamp(since))
        sql += " ORDER BY timestamp, id"
        with self._io_lock:
            try:
                rows = self.query(sql, params)
            except sqlite3.Error as e:
                raise StorageError(f"loading history of {alert_id}: {e}", cause=e) from e
        return [
            AlertResult(
                state=row["status"],
                message=row["message"] or "",
                timestamp=from_db_timestamp(row["timestamp"]),
            )
            for row in rows
        ]

    def count(self) -> int:
        with self._io_lock:
            rows = self.query(f"SELECT COUNT(*) AS cnt FROM {self.TABLE}")
        return int(rows[0]["cnt"]) if rows else 0

    def truncate(self) -> None:
        with self._io_lock:
            try:
                self.execute(f"DELETE FROM {self.TABLE}")
                self.commit()
            except sqlite3.Error as e:
                self.conn.rollback()
                raise StorageError(f"truncating {self.TABLE}: {e}", cause=e) from e


class ClickHouseEventRepository:
    """The event log kept in a ClickHouse table, next to the queried data.

    Statements go through a :class:`~alert_spine.protocols.QueryBackend`:
    DDL, inserts and truncation via ``execute``, reads via ``query``.
    Values are bound server-side as ``{name:Type}`` parameters.  The latest
    row per alert is picked with ``argMax``; on a timestamp tie ClickHouse
    does not define which row wins.
    """

    def __init__(self, backend: QueryBackend, table: str = DEFAULT_EVENT_TABLE) -> None:
        if not _TABLE_RE.match(table):
            raise StorageError(f"invalid event table name: {table!r}")
        self.backend = backend
        self.table = table

    def create_schema(self) -> None:
        sql = f"""
            CREATE TABLE IF NOT EXISTS {self.table} (
                alert_id_group String,
                alert_id_key String,
                timestamp DateTime('UTC'),
                status LowCardinality(String),
                message String
            )
            ENGINE = MergeTree
            ORDER BY (alert_id_group, alert_id_key, timestamp)
        """
        self._execute(sql, None, f"creating {self.table}")

    def append(self, alert_id: AlertId, result: AlertResult) -> None:
        """Durably record *result* for *alert_id*."""
        sql = (
            f"INSERT INTO {self.table} (alert_id_group, alert_id_key, timestamp, status, message) "
            "VALUES ({alert_id_group:String}, {alert_id_key:String}, "
            "toDateTime({timestamp:String}, 'UTC'), {status:String}, {message:String})"
        )
        params = {
            "alert_id_group": alert_id.group,
            "alert_id_key": alert_id.key,
            "timestamp": to_db_timestamp(result.timestamp),
            "status": result.state,
            "message": result.message,
        }
        try:
            self.backend.execute(sql, params)
        except QueryError as e:
            raise StorageError(f"persisting {alert_id}: {e.message}", cause=e).with_context(
                alert_id=str(alert_id)
            ) from e

    def latest_statuses(self) -> list[CurrentAlertStatus]:
        """Max-timestamp row per alert, ordered by group then key."""
        sql = f"""
            SELECT alert_id_group, alert_id_key,
                   toString(max(timestamp)) AS latest_timestamp,
                   argMax(status, timestamp) AS latest_status,
                   argMax(message, timestamp) AS latest_message
            FROM {self.table}
            GROUP BY alert_id_group, alert_id_key
            ORDER BY alert_id_group, alert_id_key
        """
        rows = self._query(sql, None, "loading alert events")
        return [
            CurrentAlertStatus(
                alert_id=AlertId(row["alert_id_group"], row["alert_id_key"]),
                latest_timestamp=from_db_timestamp(row["latest_timestamp"]),
                latest_state=row["latest_status"],
                latest_message=row["latest_message"] or "",
            )
            for row in rows
        ]

    def history(self, alert_id: AlertId, since: datetime | None = None) -> list[AlertResult]:
        """All recorded results for *alert_id*, oldest first."""
        sql = (
            f"SELECT toString(timestamp) AS timestamp, status, message FROM {self.table} "
            "WHERE alert_id_group = {alert_id_group:String} AND alert_id_key = {alert_id_key:String}"
        )
        params = {"alert_id_group": alert_id.group, "alert_id_key": alert_id.key}
        if since is not None:
            sql += " AND timestamp >= toDateTime({since:String}, 'UTC')"
            params["since"] = to_db_timestamp(since)
        sql += " ORDER BY timestamp"
        rows = self._query(sql, params, f"loading history of {alert_id}")
        return [
            AlertResult(
                state=row["status"],
                message=row["message"] or "",
                timestamp=from_db_timestamp(row["timestamp"]),
            )
            for row in rows
        ]

    def count(self) -> int:
        rows = self._query(f"SELECT count() AS cnt FROM {self.table}", None, f"counting {self.table}")
        return int(rows[0]["cnt"]) if rows else 0

    def truncate(self) -> None:
        self._execute(f"TRUNCATE TABLE IF EXISTS {self.table}", None, f"truncating {self.table}")

    def _execute(self, sql: str, params: dict[str, str] | None, action: str) -> None:
        try:
            self.backend.execute(sql, params)
        except QueryError as e:
            raise StorageError(f"{action}: {e.message}", cause=e) from e

    def _query(self, sql: str, params: dict[str, str] | None, action: str) -> list[dict[str, Any]]:
        try:
            return self.backend.query(sql, params)
        except QueryError as e:
            raise StorageError(f"{action}: {e.message}", cause=e) from e

    def __repr__(self) -> str:
        return f"ClickHouseEventRepository(table={self.table!r})"


__all__ = [
    "AlertEventRepository",
    "BaseRepository",
    "ClickHouseEventRepository",
    "DEFAULT_EVENT_TABLE",
    "SCHEMA",
    "SqliteConnection",
]
