"""Alert manager: wiring of loader, evaluator, store, scheduler and backfill.

Owns the currently loaded definition set.  A (re)discovery replaces the set
wholesale; there are no partial updates.

Tags:
    manager, composition, alerting, alert-spine
"""

from __future__ import annotations

import threading
from datetime import datetime
from pathlib import Path

import structlog

from alert_spine.backfill import BackfillReconciler, BackfillReport
from alert_spine.clickhouse import ClickHouseBackend
from alert_spine.evaluator import ThresholdEvaluator
from alert_spine.loader import DEFAULT_PATTERN, discover_definitions
from alert_spine.models import AlertDefinition, AlertId
from alert_spine.notifier import WebhookNotifier
from alert_spine.protocols import EventRepository, QueryBackend
from alert_spine.repository import AlertEventRepository, ClickHouseEventRepository, SqliteConnection
from alert_spine.scheduler import AlertScheduler, NotifierFactory
from alert_spine.settings import AlertSpineSettings
from alert_spine.store import ResultStore

logger = structlog.get_logger(__name__)


def make_backend(settings: AlertSpineSettings) -> ClickHouseBackend:
    return ClickHouseBackend(
        settings.clickhouse_url,
        user=settings.clickhouse_user,
        password=settings.clickhouse_password,
        database=settings.clickhouse_database,
        timeout=settings.query_timeout_seconds,
    )


def make_repository(settings: AlertSpineSettings, backend: QueryBackend | None = None) -> EventRepository:
    """Event log selected by ``settings.event_log``; the schema is not created here."""
    if settings.event_log == "clickhouse":
        return ClickHouseEventRepository(backend or make_backend(settings), settings.event_table)
    return AlertEventRepository(SqliteConnection(settings.database_path))


class AlertManager:
    """Entry point used by the CLI.

    Example:
        >>> manager = AlertManager.from_settings(get_settings())
        >>> manager.discover_definitions()
        >>> scheduler = manager.run_scheduler()
    """

    def __init__(
        self,
        backend: QueryBackend,
        store: ResultStore,
        evaluator: ThresholdEvaluator | None = None,
        *,
        root: Path | str = ".",
        pattern: str = DEFAULT_PATTERN,
        notifier_factory: NotifierFactory | None = None,
    ) -> None:
        self.backend = backend
        self.store = store
        self.evaluator = evaluator or ThresholdEvaluator(backend)
        self.root = Path(root)
        self.pattern = pattern
        self.notifier_factory = notifier_factory
        self._lock = threading.RLock()
        self._definitions: list[AlertDefinition] = []

    @classmethod
    def from_settings(cls, settings: AlertSpineSettings) -> AlertManager:
        """Build the production object graph from *settings*."""
        backend = make_backend(settings)
        repository = make_repository(settings, backend)
        repository.create_schema()
        notifier = WebhookNotifier(settings.webhook_url, settings.id_group)
        return cls(
            backend,
            ResultStore(repository),
            root=settings.definitions_root,
            pattern=settings.definitions_pattern,
            notifier_factory=notifier.bind,
        )

    # -- definitions ----------------------------------------------------------

    def discover_definitions(self) -> list[AlertDefinition]:
        """Reload every definition; on failure the previous set stays in place."""
        definitions = discover_definitions(self.root, self.pattern)
        with self._lock:
            self._definitions = definitions
        return list(definitions)

    @property
    def definitions(self) -> list[AlertDefinition]:
        with self._lock:
            return list(self._definitions)

    def get_definition(self, alert_id: AlertId) -> AlertDefinition | None:
        for definition in self.definitions:
            if definition.id == alert_id:
                return definition
        return None

    # -- operations -----------------------------------------------------------

    def create_scheduler(self) -> AlertScheduler:
        return AlertScheduler(self.definitions, self.evaluator, self.store, self.notifier_factory)

    def run_scheduler(self) -> AlertScheduler:
        """Start a scheduler for the loaded definitions (fatal on startup failure)."""
        scheduler = self.create_scheduler()
        scheduler.start()
        return scheduler

    def backfill(self, start: datetime, end: datetime, *, clear: bool = False) -> list[BackfillReport]:
        """Rediscover definitions and replay them over ``(start, end]``.

        With ``clear=True`` the event log is truncated first, so the
        history is rebuilt from scratch.
        """
        definitions = self.discover_definitions()
        if clear:
            self.store.clear_all()
        else:
            self.store.load_status_into_memory()

        logger.info("backfill.started", alert_count=len(definitions), start=start.isoformat(), end=end.isoformat())
        reconciler = BackfillReconciler(self.backend, self.evaluator, self.store)
        return reconciler.reconcile_all(definitions, start, end)


__all__ = ["AlertManager", "make_backend", "make_repository"]
