"""Per-alert cron scheduler.

One daemon thread per alert definition, each sleeping until its next cron
tick and then running evaluate → persist-and-notify-if-changed.

┌──────────────────────────────────────────────────────────────────────────────┐
│  ALERT SCHEDULER                                                              │
│                                                                               │
│   start()                                                                     │
│      │                                                                        │
│      ├── store.load_status_into_memory()                                      │
│      ├── startup pass: evaluate + persist every alert once                    │
│      │       any failure → ScheduleError, nothing is started                  │
│      ▼                                                                        │
│   ┌──────────────────────────────┐  ┌──────────────────────────────┐          │
│   │ Daemon Thread (alert A)      │  │ Daemon Thread (alert B)      │  ...     │
│   │                              │  │                              │          │
│   │ while not stop.wait(delay):  │  │ while not stop.wait(delay):  │          │
│   │     evaluate(A)              │  │     evaluate(B)              │          │
│   │     persist_and_notify(A)    │  │     persist_and_notify(B)    │          │
│   │     (failure → log, count)   │  │     (failure → log, count)   │          │
│   └──────────────────────────────┘  └──────────────────────────────┘          │
│                                                                               │
│   stop()  → stop_event.set(); join each thread (timeout=5.0)                  │
│                                                                               │
│  A slow alert only delays its own next tick.  A failed tick is that           │
│  alert's failure; the other threads keep running.                             │
└──────────────────────────────────────────────────────────────────────────────┘
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from alert_spine import cron
from alert_spine.errors import ScheduleError
from alert_spine.evaluator import ThresholdEvaluator
from alert_spine.models import AlertDefinition, AlertId, AlertResult
from alert_spine.notifier import no_notification
from alert_spine.protocols import Notifier
from alert_spine.store import ResultStore

logger = logging.getLogger(__name__)

NotifierFactory = Callable[[AlertDefinition, AlertResult], Notifier]


def _silent(definition: AlertDefinition, result: AlertResult) -> Notifier:
    return no_notification


@dataclass
class AlertTaskStats:
    """Counters for one alert's recurring task."""

    tick_count: int = 0
    failure_count: int = 0
    last_tick: datetime | None = None
    last_error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "tick_count": self.tick_count,
            "failure_count": self.failure_count,
            "last_tick": self.last_tick.isoformat() if self.last_tick else None,
            "last_error": self.last_error,
        }


class AlertScheduler:
    """Runs every alert definition on its own cron schedule.

    Example:
        >>> scheduler = AlertScheduler(definitions, evaluator, store, webhook.bind)
        >>> scheduler.start()      # raises ScheduleError if any startup evaluation fails
        >>> # ... later ...
        >>> scheduler.stop()
    """

    name = "thread"

    def __init__(
        self,
        definitions: Sequence[AlertDefinition],
        evaluator: ThresholdEvaluator,
        store: ResultStore,
        notifier_factory: NotifierFactory | None = None,
    ) -> None:
        self.definitions = list(definitions)
        self.evaluator = evaluator
        self.store = store
        self.notifier_factory: NotifierFactory = notifier_factory or _silent
        self._stop_event = threading.Event()
        self._threads: dict[AlertId, threading.Thread] = {}
        self._stats: dict[AlertId, AlertTaskStats] = {d.id: AlertTaskStats() for d in self.definitions}
        self._stats_lock = threading.Lock()
        self._started = False

    # -- lifecycle ------------------------------------------------------------

    def start(self) -> None:
        """Load status, evaluate every alert once, then start one thread per alert.

        Raises:
            ScheduleError: If loading status or any startup evaluation fails.
                No recurring task is started in that case.
        """
        if self._started:
            logger.warning("AlertScheduler already started")
            return

        try:
            self.store.load_status_into_memory()
        except Exception as e:
            raise ScheduleError(f"loading alert status into memory: {e}", cause=e) from e

        if not self.definitions:
            logger.info("No alert definitions loaded; scheduler has nothing to do")
            self._started = True
            return

        for definition in self.definitions:
            try:
                self.run_once(definition)
            except Exception as e:
                raise ScheduleError(
                    f"evaluating alert {definition.id}: {e}", cause=e
                ).with_context(alert_id=str(definition.id)) from e

        self._stop_event.clear()
        for definition in self.definitions:
            thread = threading.Thread(
                target=self._loop,
                args=(definition,),
                daemon=True,
                name=f"alert-{definition.id}",
            )
            self._threads[definition.id] = thread
            thread.start()

        self._started = True
        logger.info(f"AlertScheduler started ({len(self._threads)} alerts)")

    def stop(self) -> None:
        """Stop all alert threads.

        Waits up to 5 seconds per thread for a running tick to complete.
        """
        if not self._started:
            return

        self._stop_event.set()
        for alert_id, thread in self._threads.items():
            thread.join(timeout=5.0)
            if thread.is_alive():
                logger.warning(f"Alert thread {alert_id} did not stop cleanly")

        self._threads.clear()
        self._started = False
        logger.info("AlertScheduler shutdown complete")

    def run_forever(self, poll_seconds: float = 1.0) -> None:
        """Block until :meth:`stop` is called or the process is interrupted."""
        try:
            while not self._stop_event.wait(poll_seconds):
                pass
        except KeyboardInterrupt:
            logger.info("Interrupted; stopping scheduler")
        finally:
            self.stop()

    # -- work -----------------------------------------------------------------

    def run_once(self, definition: AlertDefinition) -> AlertResult | None:
        """Evaluate one alert and hand the result to the store."""
        result = self.evaluator.evaluate(definition)
        return self.store.persist_and_notify_if_changed(
            definition.id, result, self.notifier_factory(definition, result)
        )

    def _loop(self, definition: AlertDefinition) -> None:
        logger.debug(f"Alert thread started for {definition.id} ({definition.check_every})")
        last_due: datetime | None = None
        while True:
            now = datetime.now(UTC)
            reference = max(now, last_due) if last_due else now
            try:
                due = cron.next_tick(definition.check_every, reference)
            except ScheduleError:
                logger.exception(f"Cannot schedule alert {definition.id}")
                return

            delay = (due - now).total_seconds()
            if self._stop_event.wait(max(delay, 0.0)):
                break
            last_due = due
            self._tick(definition)

        logger.debug(f"Alert thread stopped for {definition.id}")

    def _tick(self, definition: AlertDefinition) -> None:
        stats = self._stats[definition.id]
        with self._stats_lock:
            stats.tick_count += 1
            stats.last_tick = datetime.now(UTC)

        try:
            self.run_once(definition)
        except Exception as e:
            with self._stats_lock:
                stats.failure_count += 1
                stats.last_error = str(e)
            logger.exception(f"Alert tick failed for {definition.id}: {e}")

    # -- introspection --------------------------------------------------------

    @property
    def is_running(self) -> bool:
        return self._started and any(t.is_alive() for t in self._threads.values())

    def stats(self, alert_id: AlertId) -> AlertTaskStats:
        with self._stats_lock:
            s = self._stats[alert_id]
            return AlertTaskStats(s.tick_count, s.failure_count, s.last_tick, s.last_error)

    def health(self) -> dict[str, Any]:
        """Return scheduler health.

        Returns:
            dict with healthy, backend, alert count and per-alert stats
        """
        alive = {alert_id: t.is_alive() for alert_id, t in self._threads.items()}
        with self._stats_lock:
            alerts = {
                str(alert_id): {**s.to_dict(), "alive": alive.get(alert_id, False)}
                for alert_id, s in self._stats.items()
            }
        return {
            "healthy": self._started and all(alive.values()),
            "backend": self.name,
            "alerts": alerts,
            "alert_count": len(self.definitions),
        }


__all__ = ["AlertScheduler", "AlertTaskStats", "NotifierFactory"]
