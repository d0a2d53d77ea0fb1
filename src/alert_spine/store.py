"""
Result store: write-on-change persistence with failure-aware notification.

Holds the latest known state per alert in memory and decides whether a new
result must be durably recorded.  A notification fires exactly when a
record is written.

Manifesto:
    Persist transitions, not samples.  Writing every evaluation would flood
    the event log; writing only transitions loses history for alerts that
    never change.  The daily backstop sits in between: at least one row per
    alert per UTC day, otherwise only state changes.

Architecture:
    ::

        persist_and_notify_if_changed(id, result, notify)
        ┌───────────────────────────────────────────────────────────────┐
        │ 1. read lock: cached state == result.state AND same UTC day?  │
        │       yes → return None (no side effects)                     │
        │ 2. notify()            (no lock held)                         │
        │       raises → result := ERROR "Error triggering notifier: …" │
        │ 3. repository.append() (no lock held)                         │
        │       raises → StorageError propagates, cache untouched       │
        │ 4. write lock: create or overwrite the cache entry            │
        └───────────────────────────────────────────────────────────────┘

    The decision and the cache update are not one atomic step.  Each alert
    is driven by exactly one scheduler task, so no two writers race on the
    same id; readers may briefly see the previous state.

Guardrails:
    ❌ DON'T: Hold the lock while notifying or writing
    ✅ DO: Release it after the decision; a slow webhook must not block readers

    ❌ DON'T: Let a notifier exception escape
    ✅ DO: Record it as an ERROR result with the original timestamp

Tags:
    result-store, write-on-change, daily-backstop, rwlock, alert-spine

Doc-Types:
    - API Reference
    - Architecture
"""

from __future__ import annotations

import threading
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import replace

import structlog

from alert_spine.clock import ensure_utc, same_utc_day
from alert_spine.models import AlertId, AlertResult, AlertState, CurrentAlertStatus
from alert_spine.protocols import EventRepository, Notifier

logger = structlog.get_logger(__name__)


class ReadWriteLock:
    """Many concurrent readers or one writer.  Waiting writers block new readers."""

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    @contextmanager
    def read(self) -> Iterator[None]:
        with self._cond:
            while self._writer or self._writers_waiting:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextmanager
    def write(self) -> Iterator[None]:
        with self._cond:
            self._writers_waiting += 1
            try:
                while self._writer or self._readers:
                    self._cond.wait()
            finally:
                self._writers_waiting -= 1
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


class ResultStore:
    """In-memory current status backed by the durable alert event log.

    Example:
        >>> store = ResultStore(AlertEventRepository(SqliteConnection(":memory:")))
        >>> store.load_status_into_memory()
        >>> store.persist_and_notify_if_changed(alert_id, result, no_notification)
    """

    def __init__(self, repository: EventRepository) -> None:
        self.repository = repository
        self._lock = ReadWriteLock()
        self._status: dict[AlertId, CurrentAlertStatus] = {}

    # -- startup ------------------------------------------------------------

    def load_status_into_memory(self) -> None:
        """Rebuild the cache from the durable log (max-timestamp row per alert).

        Idempotent; must run before the store is used.
        """
        statuses = self.repository.latest_statuses()
        indexed = {status.alert_id: status for status in statuses}
        with self._lock.write():
            self._status = indexed
        logger.info("store.loaded", alert_count=len(indexed))

    # -- core operation -----------------------------------------------------

    def persist_and_notify_if_changed(
        self,
        alert_id: AlertId,
        result: AlertResult,
        notify: Notifier,
    ) -> AlertResult | None:
        """Record *result* and call *notify* unless the write is suppressed.

        Suppressed iff a cached entry exists with the same state on the same
        UTC calendar day as ``result.timestamp``.

        Returns:
            The result actually persisted (the notifier-failure ERROR when
            *notify* raised), or ``None`` when suppressed.

        Raises:
            StorageError: If the durable write fails; the cache is unchanged.
        """
        # the durable log keeps whole UTC seconds; the cache must hold the same value
        result = replace(result, timestamp=ensure_utc(result.timestamp).replace(microsecond=0))

        with self._lock.read():
            current = self._status.get(alert_id)
            suppressed = (
                current is not None
                and current.latest_state == result.state
                and same_utc_day(current.latest_timestamp, result.timestamp)
            )
        if suppressed:
            logger.debug("store.suppressed", alert_id=str(alert_id), state=result.state)
            return None

        try:
            notify()
        except Exception as e:
            logger.warning("store.notifier_failed", alert_id=str(alert_id), error=str(e))
            result = AlertResult(
                state=AlertState.ERROR.value,
                message=f"Error triggering notifier: {e}",
                timestamp=result.timestamp,
            )

        self.repository.append(alert_id, result)

        with self._lock.write():
            entry = self._status.get(alert_id)
            if entry is None:
                self._status[alert_id] = CurrentAlertStatus(
                    alert_id=alert_id,
                    latest_timestamp=result.timestamp,
                    latest_state=result.state,
                    latest_message=result.message,
                )
            else:
                entry.latest_timestamp = result.timestamp
                entry.latest_state = result.state
                entry.latest_message = result.message

        logger.info(
            "store.persisted",
            alert_id=str(alert_id),
            state=result.state,
            previous_state=current.latest_state if current else None,
        )
        return result

    # -- reads --------------------------------------------------------------

    def get_status(self, alert_id: AlertId) -> CurrentAlertStatus | None:
        """Snapshot of the cached entry for *alert_id*."""
        with self._lock.read():
            entry = self._status.get(alert_id)
            return replace(entry) if entry is not None else None

    def statuses(self) -> list[CurrentAlertStatus]:
        """Snapshot of every cached entry, ordered by alert id."""
        with self._lock.read():
            entries = [replace(entry) for entry in self._status.values()]
        return sorted(entries, key=lambda s: s.alert_id)

    def __len__(self) -> int:
        with self._lock.read():
            return len(self._status)

    # -- administration -----------------------------------------------------

    def clear_all(self) -> None:
        """Truncate the durable log and empty the cache."""
        self.repository.truncate()
        with self._lock.write():
            self._status = {}
        logger.warning("store.cleared")


__all__ = ["ReadWriteLock", "ResultStore"]
