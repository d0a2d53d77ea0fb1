"""
Alert domain models.

Plain dataclasses shared by every component.  The definition file schema
(pydantic) lives in :mod:`alert_spine.loader`; once validated, entries are
converted to the frozen :class:`AlertDefinition` below.

Architecture:
    ::

        AlertId ("group#key")
           │
           ├── AlertDefinition   (query, bucket, params, condition, cron)
           │        │
           │        ▼ evaluate
           ├── AlertResult       (state, message, timestamp) - immutable
           │        │
           │        ▼ persist_and_notify_if_changed
           └── CurrentAlertStatus (latest durable row, cached in memory)

Tags:
    models, dataclasses, alerting, alert-spine

Doc-Types:
    - API Reference
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from alert_spine.clock import to_db_timestamp


class AlertState(str, Enum):
    """Outcome of one evaluation.

    ``WARN`` is stored and compared like the others but no evaluation
    currently produces it.
    """

    ERROR = "error"
    WARN = "warn"
    OK = "OK"


ALL_ALERT_STATES: tuple[str, ...] = tuple(s.value for s in AlertState)


@dataclass(frozen=True, order=True)
class AlertId:
    """Composite alert key: definition file (group) plus entry name (key)."""

    group: str
    key: str

    @classmethod
    def from_string(cls, value: str) -> AlertId:
        """Parse ``"<group>#<key>"``, splitting on the first ``#``."""
        group, sep, key = value.partition("#")
        if not sep:
            raise ValueError(f"Invalid alert id {value!r}: expected '<group>#<key>'")
        return cls(group=group, key=key)

    def __str__(self) -> str:
        return f"{self.group}#{self.key}"


@dataclass(frozen=True)
class AlertCondition:
    """Threshold condition.  Exactly one of the two bounds should be set."""

    greater_than: float | None = None
    less_than: float | None = None

    @property
    def is_set(self) -> bool:
        return self.greater_than is not None or self.less_than is not None


@dataclass(frozen=True)
class AlertDefinition:
    """A fully loaded alert: resolved query text plus its schedule."""

    id: AlertId
    query_text: str
    bucket_expression: str
    condition: AlertCondition
    check_every: str
    message: str = ""
    params: dict[str, str] = field(default_factory=dict)
    query_path: str = ""
    notify_channel: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": str(self.id),
            "query_path": self.query_path,
            "bucket_expression": self.bucket_expression,
            "params": dict(self.params),
            "value_gt": self.condition.greater_than,
            "value_lt": self.condition.less_than,
            "message": self.message,
            "check_every": self.check_every,
            "notify_channel": self.notify_channel,
        }


@dataclass(frozen=True)
class AlertResult:
    """Result of a single evaluation; never mutated after creation."""

    state: str
    message: str
    timestamp: datetime

    @classmethod
    def error(cls, message: str, timestamp: datetime) -> AlertResult:
        return cls(state=AlertState.ERROR.value, message=message, timestamp=timestamp)

    def to_dict(self) -> dict[str, Any]:
        return {
            "state": self.state,
            "message": self.message,
            "timestamp": to_db_timestamp(self.timestamp),
        }


@dataclass
class CurrentAlertStatus:
    """Latest durably stored result for one alert (cache entry)."""

    alert_id: AlertId
    latest_timestamp: datetime
    latest_state: str
    latest_message: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "alert_id": str(self.alert_id),
            "latest_timestamp": to_db_timestamp(self.latest_timestamp),
            "latest_state": self.latest_state,
            "latest_message": self.latest_message,
        }


__all__ = [
    "ALL_ALERT_STATES",
    "AlertCondition",
    "AlertDefinition",
    "AlertId",
    "AlertResult",
    "AlertState",
    "CurrentAlertStatus",
]
