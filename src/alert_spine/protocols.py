"""
Collaborator protocols.

Core components depend on these structural types only, never on a concrete
driver.  That keeps the evaluator, store and reconciler testable with plain
fakes and lets the transport change without touching them.

Architecture:
    ::

        QueryBackend (time-series reads, e.g. ClickHouse over HTTP)
        ┌────────────────────────────────────────────────────────┐
        │ query(sql, params)   → list[dict]   read variant       │
        │ execute(sql, params) → None         write variant      │
        └────────────────────────────────────────────────────────┘

        Connection (durable alert event log, DB-API style)
        ┌────────────────────────────────────────────────────────┐
        │ execute(sql, params)   → Execute single statement      │
        │ fetchall()             → Rows of the last statement    │
        │ commit() / rollback()                                  │
        └────────────────────────────────────────────────────────┘

        EventRepository (durable alert event log, SQLite or ClickHouse)
        ┌────────────────────────────────────────────────────────┐
        │ create_schema() / truncate()                           │
        │ append(id, result)     → one row                       │
        │ latest_statuses()      → latest row per alert          │
        │ history(id, since) / count()                           │
        └────────────────────────────────────────────────────────┘

        Notifier
        ┌────────────────────────────────────────────────────────┐
        │ () → None, raises on failure                           │
        └────────────────────────────────────────────────────────┘

Tags:
    protocols, interfaces, typing, alert-spine

Doc-Types:
    - API Reference
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from datetime import datetime
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from alert_spine.models import AlertId, AlertResult, CurrentAlertStatus


@runtime_checkable
class QueryBackend(Protocol):
    """Time-series query backend.

    Implementations enforce their own timeout and raise
    :class:`~alert_spine.errors.QueryError` on any failure.
    """

    def query(self, sql: str, params: Mapping[str, str] | None = None) -> list[dict[str, Any]]:
        """Run a read-only query and return rows as dicts."""
        ...

    def execute(self, sql: str, params: Mapping[str, str] | None = None) -> None:
        """Run a statement that writes."""
        ...


@runtime_checkable
class Connection(Protocol):
    """
    Minimal SYNCHRONOUS connection interface for the durable event log.

    Satisfied by :class:`~alert_spine.repository.SqliteConnection` and by
    any DB-API connection adapter exposing the same methods.
    """

    def execute(self, sql: str, params: tuple = ()) -> Any:
        """Execute SQL statement."""
        ...

    def fetchall(self) -> list[Any]:
        """Fetch all rows from last query."""
        ...

    def commit(self) -> None:
        """Commit current transaction."""
        ...

    def rollback(self) -> None:
        """Rollback current transaction."""
        ...


@runtime_checkable
class EventRepository(Protocol):
    """Append-only alert event log behind the result store.

    Implementations raise :class:`~alert_spine.errors.StorageError` on any
    failure.
    """

    def create_schema(self) -> None: ...

    def append(self, alert_id: AlertId, result: AlertResult) -> None: ...

    def latest_statuses(self) -> list[CurrentAlertStatus]:
        """Latest row per alert, ordered by group then key."""
        ...

    def history(self, alert_id: AlertId, since: datetime | None = None) -> list[AlertResult]: ...

    def count(self) -> int: ...

    def truncate(self) -> None: ...


Notifier = Callable[[], None]
"""Zero-argument notification hook.  Returning means success; raising means failure."""


__all__ = ["Connection", "EventRepository", "Notifier", "QueryBackend"]
