"""
Structured error types for alert-spine.

Every failure that leaves a component as an exception is an
:class:`AlertSpineError` subclass carrying a category, a retry hint, a
context dict and the chained cause.  Evaluation outcomes such as "too many
rows" are NOT exceptions: they become ERROR alert results so operators see
them in the alert history.

Manifesto:
    - **Typed Error Hierarchy:** One error type per failure domain
    - **Explicit Retry Semantics:** Each error knows if it's retryable
    - **Rich Context:** Errors carry the alert id, file or index involved
    - **Error Chaining:** Preserve original exceptions while adding context

Architecture:
    ::

        ┌─────────────────────────────────────────────────────────────────┐
        │                       AlertSpineError                            │
        │  (category, retryable, context, cause)                          │
        ├─────────────────────────────────────────────────────────────────┤
        │                                                                  │
        │  DefinitionError   QueryError        StorageError               │
        │  (DEFINITION)      (QUERY)           (STORAGE)                  │
        │                                                                  │
        │  ScheduleError     NotifierError     InvariantViolationError    │
        │  (SCHEDULE)        (NOTIFICATION)    (INTERNAL)                 │
        └─────────────────────────────────────────────────────────────────┘

Guardrails:
    ❌ DON'T: Raise for a query that returned too many rows
    ✅ DO: Return an ERROR AlertResult describing it

    ❌ DON'T: Let a NotifierError escape the result store
    ✅ DO: Persist it as an ERROR result

Examples:
    >>> err = DefinitionError("no query path defined", key="cpu_usage")
    >>> err.to_dict()["key"]
    'cpu_usage'

Tags:
    errors, exceptions, alerting, alert-spine

Doc-Types:
    - API Reference
    - Error Handling Guide
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Error categories used for classification in logs and CLI output."""

    DEFINITION = "definition"
    QUERY = "query"
    STORAGE = "storage"
    SCHEDULE = "schedule"
    NOTIFICATION = "notification"
    INTERNAL = "internal"
    UNKNOWN = "unknown"


class AlertSpineError(Exception):
    """
    Base exception for all alert-spine errors.

    Subclasses set ``default_category`` and ``default_retryable`` so callers
    only pass what differs from the domain default.
    """

    default_category: ErrorCategory = ErrorCategory.UNKNOWN
    default_retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        retryable: bool | None = None,
        context: dict[str, Any] | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.retryable = retryable if retryable is not None else self.default_retryable
        self.context: dict[str, Any] = dict(context or {})
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> AlertSpineError:
        """
        Add context to this error (fluent API).

        Usage:
            raise QueryError("backend down").with_context(alert_id="g#k")
        """
        self.context.update(kwargs)
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result: dict[str, Any] = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
        }
        if self.context:
            result["context"] = dict(self.context)
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# DEFINITION ERRORS
# =============================================================================


class DefinitionError(AlertSpineError):
    """
    Alert definition could not be loaded.

    Raised for a malformed definition file, a missing ``query_path``, an
    unreadable query file or a missing ``--BUCKET:`` marker.  Loading is all
    or nothing, so one of these aborts the whole load.
    """

    default_category = ErrorCategory.DEFINITION
    default_retryable = False

    def __init__(
        self,
        message: str,
        *,
        key: str | None = None,
        path: str | None = None,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.key = key
        self.path = path

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        if self.key:
            result["key"] = self.key
        if self.path:
            result["path"] = self.path
        return result


# =============================================================================
# QUERY / STORAGE ERRORS
# =============================================================================


class QueryError(AlertSpineError):
    """Query backend failure (transport error, non-200 response, bad SQL)."""

    default_category = ErrorCategory.QUERY
    default_retryable = True


class StorageError(AlertSpineError):
    """Durable alert event log could not be read or written."""

    default_category = ErrorCategory.STORAGE
    default_retryable = False


# =============================================================================
# SCHEDULING ERRORS
# =============================================================================


class ScheduleError(AlertSpineError):
    """Invalid cron expression, or a scheduler that failed to start."""

    default_category = ErrorCategory.SCHEDULE
    default_retryable = False


class InvariantViolationError(AlertSpineError):
    """Internal consistency check failed; indicates a bug, not bad input."""

    default_category = ErrorCategory.INTERNAL
    default_retryable = False

    def __init__(self, message: str, *, index: int | None = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.index = index


# =============================================================================
# NOTIFICATION ERRORS
# =============================================================================


class NotifierError(AlertSpineError):
    """Outbound notification failed."""

    default_category = ErrorCategory.NOTIFICATION
    default_retryable = True


__all__ = [
    "AlertSpineError",
    "DefinitionError",
    "ErrorCategory",
    "InvariantViolationError",
    "NotifierError",
    "QueryError",
    "ScheduleError",
    "StorageError",
]
