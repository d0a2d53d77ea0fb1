"""
Threshold evaluator.

Runs one definition's query and reduces the result set to exactly one
:class:`~alert_spine.models.AlertResult`.

Reduction policy:
    1. zero rows   → value 0
    2. one row     → that row's ``value``
    3. > one row   → ERROR ``QUERY ERROR: found <n> result rows, but only 0 or 1 allowed``
    4. ``value_gt``: value > t → ERROR (configured message), else OK
       ``value_lt``: value < t → ERROR (configured message), else OK
    5. a state outside {error, warn, OK} → ERROR ``INTERNAL ERROR: ...``

Query failures are NOT converted into alert state; they propagate as
:class:`~alert_spine.errors.QueryError` and the caller decides what to do.

Placeholders (pure string substitution, redone on every evaluation):
    ``--HAVING--``  → ``HAVING``
    ``--BUCKET--``  → the definition's bucket expression, in which
    ``--NOW--``     → the clock's SQL literal (``now()`` or ``toDateTime('...')``)

Guardrails:
    ❌ DON'T: Take the result timestamp from the query rows
    ✅ DO: Stamp from the injected clock (or the backfill tick)

Tags:
    evaluator, threshold, alerting, alert-spine
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from datetime import datetime
from typing import Any

import structlog

from alert_spine.clock import Clock, SystemClock
from alert_spine.errors import QueryError
from alert_spine.models import ALL_ALERT_STATES, AlertDefinition, AlertResult, AlertState
from alert_spine.protocols import QueryBackend

logger = structlog.get_logger(__name__)

NOW_PLACEHOLDER = "--NOW--"
HAVING_PLACEHOLDER = "--HAVING--"
BUCKET_PLACEHOLDER = "--BUCKET--"

# state, message
Decision = tuple[str, str]


def preprocess_sql(definition: AlertDefinition, clock: Clock) -> str:
    """Resolve the textual placeholders in *definition*'s query for *clock*."""
    bucket = definition.bucket_expression.replace(NOW_PLACEHOLDER, clock.now_sql())
    sql = definition.query_text.replace(HAVING_PLACEHOLDER, "HAVING")
    return sql.replace(BUCKET_PLACEHOLDER, bucket)


def row_value(row: dict[str, Any]) -> float:
    """Numeric ``value`` column of a result row (missing/NULL counts as 0).

    Raises:
        QueryError: If the column holds something that is not a number.
    """
    value = row.get("value")
    if value is None:
        return 0.0
    try:
        return float(value)
    except (TypeError, ValueError) as e:
        raise QueryError(f"result column 'value' is not numeric: {value!r}", cause=e) from e


class ThresholdEvaluator:
    """Evaluate alert definitions against a :class:`QueryBackend`.

    Example:
        >>> evaluator = ThresholdEvaluator(backend, FixedClock.parse("2025-04-02 00:55:12"))
        >>> result = evaluator.evaluate(definition)
        >>> result.state
        'error'
    """

    def __init__(self, backend: QueryBackend, clock: Clock | None = None) -> None:
        self.backend = backend
        self.clock: Clock = clock or SystemClock()

    def with_clock(self, clock: Clock) -> ThresholdEvaluator:
        """Same backend, different clock."""
        return ThresholdEvaluator(self.backend, clock)

    def evaluate(self, definition: AlertDefinition) -> AlertResult:
        """Run *definition*'s query now and reduce the rows to one result.

        Raises:
            QueryError: If the backend fails.
        """
        sql = preprocess_sql(definition, self.clock)
        rows = self.backend.query(sql, definition.params)
        return self.evaluate_rows(definition, rows)

    def evaluate_rows(
        self,
        definition: AlertDefinition,
        rows: Sequence[dict[str, Any]],
        timestamp: datetime | None = None,
    ) -> AlertResult:
        """Apply the reduction policy to an already fetched result set.

        Args:
            definition: Alert whose condition and message apply.
            rows: Result rows, each with a ``value`` column.
            timestamp: Result timestamp; defaults to ``clock.now()``.
        """
        ts = timestamp if timestamp is not None else self.clock.now()

        logger.debug(
            "evaluator.result_set",
            alert_id=str(definition.id),
            query_path=definition.query_path,
            current_time=self.clock.now_sql(),
            rows=list(rows),
        )

        if len(rows) > 1:
            return AlertResult.error(
                f"QUERY ERROR: found {len(rows)} result rows, but only 0 or 1 allowed", ts
            )

        decide = _decision_for(definition)
        if decide is None:
            return AlertResult.error("INTERNAL ERROR: no alert_if condition found.", ts)

        value = row_value(rows[0]) if rows else 0.0
        state, message = decide(value)
        if state not in ALL_ALERT_STATES:
            supported = "[" + " ".join(ALL_ALERT_STATES) + "]"
            return AlertResult.error(
                f"INTERNAL ERROR: alert state '{state}' evaluated, but only {supported} supported", ts
            )
        return AlertResult(state=state, message=message, timestamp=ts)


def _decision_for(definition: AlertDefinition) -> Callable[[float], Decision] | None:
    condition = definition.condition
    message = definition.message

    if condition.greater_than is not None:
        threshold = condition.greater_than

        def greater_than(value: float) -> Decision:
            if value > threshold:
                return AlertState.ERROR.value, message
            return AlertState.OK.value, ""

        return greater_than

    if condition.less_than is not None:
        threshold = condition.less_than

        def less_than(value: float) -> Decision:
            if value < threshold:
                return AlertState.ERROR.value, message
            return AlertState.OK.value, ""

        return less_than

    return None


__all__ = [
    "BUCKET_PLACEHOLDER",
    "HAVING_PLACEHOLDER",
    "NOW_PLACEHOLDER",
    "ThresholdEvaluator",
    "preprocess_sql",
    "row_value",
]
