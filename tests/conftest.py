"""
Shared pytest fixtures for alert-spine tests.

This module provides:
- An in-memory SQLite event log, repository and result store
- A fixed clock
- A fake query backend that records every call and answers bucket
  conversion queries the way ClickHouse would for the expressions used here
- A definitions tree on disk (YAML + SQL) under ``tmp_path``
"""

from __future__ import annotations

import re
from collections.abc import Callable, Mapping
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import pytest

from alert_spine.clock import FixedClock
from alert_spine.evaluator import (
    BUCKET_PLACEHOLDER,
    HAVING_PLACEHOLDER,
    NOW_PLACEHOLDER,
    ThresholdEvaluator,
)
from alert_spine.models import AlertCondition, AlertDefinition, AlertId
from alert_spine.repository import AlertEventRepository, SqliteConnection
from alert_spine.store import ResultStore

# =============================================================================
# Fake query backend
# =============================================================================

_INPUTS_RE = re.compile(r"arrayJoin\(\[([^\]]*)\]\)")
_BUCKET_RE = re.compile(
    r"toUnixTimestamp\(toStartOf(FifteenMinutes|Hour)\(input_datetime"
    r"(?:\s*-\s*INTERVAL\s+(\d+)\s+MINUTE)?\)\)"
)
_BUCKET_SECONDS = {"FifteenMinutes": 900, "Hour": 3600}


def compute_bucket_rows(sql: str) -> list[dict[str, Any]]:
    """Answer a bucket conversion query for toStartOfFifteenMinutes/toStartOfHour."""
    inputs_match = _INPUTS_RE.search(sql)
    bucket_match = _BUCKET_RE.search(sql)
    assert inputs_match and bucket_match, f"unsupported bucket query: {sql}"

    width = _BUCKET_SECONDS[bucket_match.group(1)]
    shift = int(bucket_match.group(2) or 0) * 60
    inputs = [int(v) for v in inputs_match.group(1).split(",") if v.strip()]
    return [
        {
            "input": ts,
            "input_datetime": datetime.fromtimestamp(ts, UTC).strftime("%Y-%m-%d %H:%M:%S"),
            "target_bucket": (ts - shift) // width * width,
        }
        for ts in inputs
    ]


def assert_placeholders_only_in_comments(sql: str) -> None:
    """The raw text runs as the backfill wide query, so placeholders must sit on ``--`` lines."""
    for number, line in enumerate(sql.splitlines(), start=1):
        if any(p in line for p in (NOW_PLACEHOLDER, BUCKET_PLACEHOLDER, HAVING_PLACEHOLDER)):
            assert line.lstrip().startswith("--"), f"line {number} uses a placeholder outside a comment: {line}"


class FakeQueryBackend:
    """QueryBackend double.

    Alert queries return ``rows`` (or raise ``error``); bucket conversion
    queries are computed unless ``bucket_rows`` overrides them.
    """

    def __init__(self, rows: list[dict[str, Any]] | None = None) -> None:
        self.rows: list[dict[str, Any]] = list(rows or [])
        self.error: Exception | None = None
        self.bucket_rows: list[dict[str, Any]] | None = None
        self.calls: list[tuple[str, dict[str, str]]] = []

    def query(self, sql: str, params: Mapping[str, str] | None = None) -> list[dict[str, Any]]:
        self.calls.append((sql, dict(params or {})))
        if self.error is not None:
            raise self.error
        if "arrayJoin" in sql:
            if self.bucket_rows is not None:
                return [dict(r) for r in self.bucket_rows]
            return compute_bucket_rows(sql)
        return [dict(r) for r in self.rows]

    def execute(self, sql: str, params: Mapping[str, str] | None = None) -> None:
        self.calls.append((sql, dict(params or {})))

    @property
    def alert_queries(self) -> list[tuple[str, dict[str, str]]]:
        return [c for c in self.calls if "arrayJoin" not in c[0]]

    @property
    def bucket_queries(self) -> list[tuple[str, dict[str, str]]]:
        return [c for c in self.calls if "arrayJoin" in c[0]]


# =============================================================================
# Core fixtures
# =============================================================================


@pytest.fixture
def repository() -> AlertEventRepository:
    repo = AlertEventRepository(SqliteConnection(":memory:"))
    repo.create_schema()
    return repo


@pytest.fixture
def store(repository: AlertEventRepository) -> ResultStore:
    s = ResultStore(repository)
    s.load_status_into_memory()
    return s


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock.parse("2025-04-04 10:00:01")


@pytest.fixture
def backend() -> FakeQueryBackend:
    return FakeQueryBackend()


@pytest.fixture
def evaluator(backend: FakeQueryBackend, clock: FixedClock) -> ThresholdEvaluator:
    return ThresholdEvaluator(backend, clock)


@pytest.fixture
def make_definition() -> Callable[..., AlertDefinition]:
    """Factory for in-memory definitions (no files involved)."""

    def _make(
        key: str = "alert1",
        *,
        group: str = "group1",
        value_gt: float | None = 10,
        value_lt: float | None = None,
        check_every: str = "* * * * *",
        bucket: str = "toStartOfFifteenMinutes(--NOW--)",
        query_text: str | None = None,
        message: str = "too many failures",
        params: dict[str, str] | None = None,
        channel: str | None = None,
    ) -> AlertDefinition:
        if query_text is None:
            query_text = (
                f"--BUCKET: {bucket}\n"
                "SELECT toUnixTimestamp(toStartOfFifteenMinutes(timestamp)) AS time_ts, count(*) AS value\n"
                "FROM events\n"
                "GROUP BY time_ts\n"
                "--HAVING-- time_ts = toUnixTimestamp(--BUCKET--)\n"
            )
            assert_placeholders_only_in_comments(query_text)
        return AlertDefinition(
            id=AlertId(group, key),
            query_text=query_text,
            bucket_expression=bucket,
            condition=AlertCondition(greater_than=value_gt, less_than=value_lt),
            check_every=check_every,
            message=message,
            params=params or {},
            query_path="queries/q.sql",
            notify_channel=channel,
        )

    return _make


# =============================================================================
# Definition files
# =============================================================================

QUERY_SQL = """--BUCKET: toStartOfFifteenMinutes(--NOW--)
SELECT toUnixTimestamp(toStartOfFifteenMinutes(timestamp)) AS time_ts, count(*) AS value
FROM orders
WHERE shop = {shop:String}
GROUP BY time_ts
--HAVING-- time_ts = toUnixTimestamp(--BUCKET--)
"""

ALERTS_YAML = """
alerts:
  order_failures:
    query_path: queries/order_failures.sql
    params:
      shop: main
      window: 90
    alert_if:
      value_gt: 10
    message: "ERROR - too many failures"
    check_every: "*/15 * * * *"
    slack_channel: "#shop-alerts"
  low_traffic:
    query_path: queries/order_failures.sql
    alert_if:
      value_lt: 1
    message: "ERROR - no traffic"
    check_every: "0 * * * *"
"""


@pytest.fixture
def definitions_root(tmp_path: Path) -> Path:
    """Tree laid out under the default discovery pattern."""
    root = tmp_path / "defs"
    assert_placeholders_only_in_comments(QUERY_SQL)
    shop = root / "client" / "content" / "shop"
    (shop / "queries").mkdir(parents=True)
    (shop / "alerts.yaml").write_text(ALERTS_YAML, encoding="utf-8")
    (shop / "queries" / "order_failures.sql").write_text(QUERY_SQL, encoding="utf-8")
    return root
