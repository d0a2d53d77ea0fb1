"""
alert-spine: cron-scheduled threshold alerts over time-series queries.

Alert definitions (YAML + SQL) are evaluated on their cron schedules
against a query backend; state changes are written to a durable event log
and pushed to a webhook.  A batch backfill replays history with one bucket
query and one wide query per alert.

Quick start:
    >>> from alert_spine import AlertManager, get_settings
    >>> manager = AlertManager.from_settings(get_settings())
    >>> manager.discover_definitions()
    >>> manager.run_scheduler().run_forever()
"""

from alert_spine.backfill import BackfillReconciler, BackfillReport
from alert_spine.clock import Clock, FixedClock, SystemClock
from alert_spine.errors import (
    AlertSpineError,
    DefinitionError,
    ErrorCategory,
    InvariantViolationError,
    NotifierError,
    QueryError,
    ScheduleError,
    StorageError,
)
from alert_spine.evaluator import ThresholdEvaluator
from alert_spine.loader import discover_definitions, load_definition_file
from alert_spine.manager import AlertManager
from alert_spine.models import (
    AlertCondition,
    AlertDefinition,
    AlertId,
    AlertResult,
    AlertState,
    CurrentAlertStatus,
)
from alert_spine.scheduler import AlertScheduler
from alert_spine.settings import AlertSpineSettings, get_settings
from alert_spine.store import ResultStore

__version__ = "0.1.0"

__all__ = [
    "AlertCondition",
    "AlertDefinition",
    "AlertId",
    "AlertManager",
    "AlertResult",
    "AlertScheduler",
    "AlertSpineError",
    "AlertSpineSettings",
    "AlertState",
    "BackfillReconciler",
    "BackfillReport",
    "Clock",
    "CurrentAlertStatus",
    "DefinitionError",
    "ErrorCategory",
    "FixedClock",
    "InvariantViolationError",
    "NotifierError",
    "QueryError",
    "ResultStore",
    "ScheduleError",
    "StorageError",
    "SystemClock",
    "ThresholdEvaluator",
    "__version__",
    "discover_definitions",
    "get_settings",
    "load_definition_file",
]
