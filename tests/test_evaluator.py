"""Tests for ThresholdEvaluator."""

from datetime import UTC, datetime

import pytest

from alert_spine import evaluator as evaluator_module
from alert_spine.clock import FixedClock
from alert_spine.errors import QueryError
from alert_spine.evaluator import ThresholdEvaluator, preprocess_sql, row_value


class TestPreprocessSql:
    def test_substitutes_placeholders(self, make_definition):
        definition = make_definition(bucket="toStartOfFifteenMinutes(--NOW-- - INTERVAL 15 MINUTE)")
        sql = preprocess_sql(definition, FixedClock.parse("2025-04-02 00:55:12"))

        assert "--HAVING--" not in sql
        assert "--BUCKET--" not in sql
        assert "HAVING time_ts = toUnixTimestamp(" in sql
        assert "toStartOfFifteenMinutes(toDateTime('2025-04-02 00:55:12') - INTERVAL 15 MINUTE)" in sql

    def test_header_line_left_alone(self, make_definition):
        """The --BUCKET: header is a comment and keeps its --NOW--."""
        sql = preprocess_sql(make_definition(), FixedClock())
        assert sql.splitlines()[0] == "--BUCKET: toStartOfFifteenMinutes(--NOW--)"

    def test_redone_per_clock(self, make_definition):
        definition = make_definition()
        clock = FixedClock.parse("2025-04-02 00:55:12")
        first = preprocess_sql(definition, clock)
        clock.advance(minutes=15)
        assert preprocess_sql(definition, clock) != first


class TestRowValue:
    def test_missing_and_null_are_zero(self):
        assert row_value({}) == 0
        assert row_value({"value": None}) == 0

    def test_numeric_strings(self):
        assert row_value({"value": "12"}) == 12.0

    def test_non_numeric_is_query_error(self):
        with pytest.raises(QueryError, match="not numeric: 'abc'") as exc_info:
            row_value({"value": "abc"})
        assert isinstance(exc_info.value.cause, ValueError)

    def test_unconvertible_type_is_query_error(self):
        with pytest.raises(QueryError, match="not numeric"):
            row_value({"value": [1, 2]})


class TestEvaluate:
    def test_value_above_threshold_is_error(self, evaluator, backend, make_definition, clock):
        backend.rows = [{"time_ts": 0, "value": 11}]
        result = evaluator.evaluate(make_definition(value_gt=10, message="ERROR - too many"))
        assert result.state == "error"
        assert result.message == "ERROR - too many"
        assert result.timestamp == clock.now()

    def test_value_at_threshold_is_ok(self, evaluator, backend, make_definition):
        backend.rows = [{"value": 10}]
        result = evaluator.evaluate(make_definition(value_gt=10))
        assert result.state == "OK"
        assert result.message == ""

    def test_value_below_lower_bound_is_error(self, evaluator, backend, make_definition):
        backend.rows = [{"value": 0}]
        result = evaluator.evaluate(make_definition(value_gt=None, value_lt=1, message="no traffic"))
        assert result.state == "error"
        assert result.message == "no traffic"

    def test_zero_rows_count_as_zero(self, evaluator, backend, make_definition):
        """An empty result set is value 0."""
        backend.rows = []
        assert evaluator.evaluate(make_definition(value_gt=None, value_lt=1)).state == "error"
        assert evaluator.evaluate(make_definition(value_gt=0)).state == "OK"

    def test_too_many_rows(self, evaluator, backend, make_definition):
        backend.rows = [{"value": 1}, {"value": 2}, {"value": 3}]
        result = evaluator.evaluate(make_definition())
        assert result.state == "error"
        assert result.message == "QUERY ERROR: found 3 result rows, but only 0 or 1 allowed"

    def test_greater_than_wins_when_both_set(self, evaluator, backend, make_definition):
        backend.rows = [{"value": 5}]
        result = evaluator.evaluate(make_definition(value_gt=10, value_lt=100))
        assert result.state == "OK"

    def test_no_condition(self, evaluator, backend, make_definition):
        backend.rows = [{"value": 5}]
        result = evaluator.evaluate(make_definition(value_gt=None, value_lt=None))
        assert result.state == "error"
        assert result.message == "INTERNAL ERROR: no alert_if condition found."

    def test_unsupported_state(self, evaluator, backend, make_definition, monkeypatch):
        monkeypatch.setattr(evaluator_module, "_decision_for", lambda d: lambda v: ("critical", ""))
        result = evaluator.evaluate(make_definition())
        assert result.state == "error"
        assert result.message == (
            "INTERNAL ERROR: alert state 'critical' evaluated, but only [error warn OK] supported"
        )

    def test_sends_params_and_resolved_sql(self, evaluator, backend, make_definition):
        evaluator.evaluate(make_definition(params={"shop": "main"}))
        sql, params = backend.calls[-1]
        assert params == {"shop": "main"}
        assert "toDateTime('2025-04-04 10:00:01')" in sql

    def test_query_error_propagates(self, evaluator, backend, make_definition):
        """Backend failures are not turned into alert state."""
        backend.error = QueryError("unsuccessful clickhouse response (status 500): boom")
        with pytest.raises(QueryError):
            evaluator.evaluate(make_definition())

    def test_non_numeric_value_column_raises_query_error(self, evaluator, backend, make_definition):
        backend.rows = [{"time_ts": 1743760800, "value": "n/a"}]
        with pytest.raises(QueryError, match="result column 'value' is not numeric"):
            evaluator.evaluate(make_definition())


class TestEvaluateRows:
    def test_explicit_timestamp(self, evaluator, make_definition):
        tick = datetime(2023, 8, 15, 10, 15, tzinfo=UTC)
        result = evaluator.evaluate_rows(make_definition(), [{"value": 50}], timestamp=tick)
        assert result.timestamp == tick
        assert result.state == "error"

    def test_with_clock(self, backend, make_definition):
        base = ThresholdEvaluator(backend)
        later = base.with_clock(FixedClock.parse("2030-01-01 00:00:00"))
        assert later.backend is backend
        assert later.evaluate_rows(make_definition(), []).timestamp == datetime(2030, 1, 1, tzinfo=UTC)
