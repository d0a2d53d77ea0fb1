"""
YAML loader for alert definition files.

Each definition file maps alert keys to entries; every entry points at a SQL
file whose header declares the bucket expression.  Loading is all or
nothing: the first bad entry aborts the whole load with a
:class:`~alert_spine.errors.DefinitionError` naming the offending key.

File Format (YAML):
    alerts:
      shop_order_failures:
        query_path: queries/order_failures.sql
        params:
          shop: "main"
        alert_if:
          value_gt: 10
        message: "ERROR - too many failures"
        check_every: "*/5 * * * *"
        slack_channel: "#shop-alerts"

Query File Header:
    --BUCKET: toStartOfFifteenMinutes(--NOW--)
    SELECT toUnixTimestamp(toStartOfFifteenMinutes(timestamp)) AS time_ts, count(*) AS value
    ...
    --HAVING-- time_ts = toUnixTimestamp(--BUCKET--)

    The marker must appear within the first three lines; anything may
    precede it on its line.  Everything after the marker, stripped, is the
    bucket expression.  ``--BUCKET--`` and ``--HAVING--`` belong on
    ``--`` comment lines only: backfill sends the raw text, where they stay
    comments.
"""

from __future__ import annotations

import posixpath
from pathlib import Path
from typing import Any

import structlog
import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from alert_spine import cron
from alert_spine.errors import DefinitionError, ScheduleError
from alert_spine.models import AlertCondition, AlertDefinition, AlertId

logger = structlog.get_logger(__name__)

BUCKET_MARKER = "--BUCKET:"
BUCKET_HEADER_LINES = 3

DEFAULT_PATTERN = "client/content/*/alerts.yaml"


# ---------------------------------------------------------------------------
# File schema
# ---------------------------------------------------------------------------


class AlertConditionSpec(BaseModel):
    """The ``alert_if`` section of an entry."""

    model_config = ConfigDict(extra="ignore")

    value_gt: float | None = Field(default=None, description="Alert when value > threshold")
    value_lt: float | None = Field(default=None, description="Alert when value < threshold")


class AlertEntrySpec(BaseModel):
    """One alert entry inside a definition file."""

    model_config = ConfigDict(extra="ignore")

    query_path: str = Field(default="", description="SQL file, relative to the definition file")
    params: dict[str, str] = Field(default_factory=dict, description="Named query parameters")
    alert_if: AlertConditionSpec = Field(default_factory=AlertConditionSpec)
    message: str = Field(default="", description="Message attached to ERROR results")
    check_every: str = Field(..., min_length=1, description="Cron expression")
    slack_channel: str | None = Field(default=None, description="Notification channel")

    @field_validator("params", mode="before")
    @classmethod
    def stringify_params(cls, v: Any) -> Any:
        """YAML scalars such as ``90`` arrive as ints; query params are strings."""
        if isinstance(v, dict):
            return {str(k): "" if val is None else str(val) for k, val in v.items()}
        if v is None:
            return {}
        return v


class AlertFileSpec(BaseModel):
    """Root of a definition file."""

    model_config = ConfigDict(extra="ignore")

    alerts: dict[str, dict[str, Any]] = Field(default_factory=dict)

    @field_validator("alerts", mode="before")
    @classmethod
    def none_as_empty(cls, v: Any) -> Any:
        return {} if v is None else v


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------


def extract_bucket_expression(sql: str) -> str:
    """Return the ``--BUCKET:`` expression from the first three lines of *sql*.

    Raises:
        ValueError: If no marker is found within the header lines, or the
            marker is followed by nothing.
    """
    for line in sql.splitlines()[:BUCKET_HEADER_LINES]:
        idx = line.find(BUCKET_MARKER)
        if idx >= 0:
            expression = line[idx + len(BUCKET_MARKER):].strip()
            if not expression:
                raise ValueError(f"Bucket Expression {BUCKET_MARKER} is empty")
            return expression
    raise ValueError(f"Bucket Expression {BUCKET_MARKER} ... not found in first {BUCKET_HEADER_LINES} lines")


def load_definition_file(path: Path | str, root: Path | str | None = None) -> list[AlertDefinition]:
    """
    Load every alert defined in one YAML file.

    Args:
        path: Definition file.  Relative paths are resolved against *root*.
        root: Lookup root.  When given, the alert group and the stored
            ``query_path`` are relative to it; otherwise *path* is used as given.

    Returns:
        Definitions in file order.

    Raises:
        DefinitionError: On unreadable/invalid YAML, a missing ``query_path``,
            an unreadable query file, a missing bucket marker or a bad cron.
    """
    rel = Path(path).as_posix()
    base = Path(root) if root is not None else Path()
    file_path = base / rel

    logger.debug("loader.load_yaml", path=rel)

    try:
        with open(file_path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except OSError as e:
        raise DefinitionError(f"reading file {rel}: {e}", path=rel, cause=e) from e
    except yaml.YAMLError as e:
        raise DefinitionError(f"Invalid YAML in {rel}: {e}", path=rel, cause=e) from e

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise DefinitionError(f"Expected mapping in {rel}, got {type(data).__name__}", path=rel)

    try:
        file_spec = AlertFileSpec.model_validate(data)
    except ValidationError as e:
        raise DefinitionError(f"Invalid alert file {rel}: {e}", path=rel, cause=e) from e

    definitions = [
        _load_entry(key, raw, rel, base) for key, raw in file_spec.alerts.items()
    ]

    logger.info("loader.loaded", path=rel, alert_count=len(definitions))
    return definitions


def _load_entry(key: str, raw: dict[str, Any] | None, rel: str, base: Path) -> AlertDefinition:
    try:
        entry = AlertEntrySpec.model_validate(raw or {})
    except ValidationError as e:
        raise DefinitionError(f"{key} - invalid definition: {e}", key=key, path=rel, cause=e) from e

    if not entry.query_path:
        raise DefinitionError(f"{key} - no query path defined", key=key, path=rel)

    query_path = posixpath.normpath(posixpath.join(posixpath.dirname(rel), entry.query_path))
    try:
        query_text = (base / query_path).read_text(encoding="utf-8")
    except OSError as e:
        raise DefinitionError(
            f"{key} - reading file {query_path}: {e}", key=key, path=query_path, cause=e
        ) from e

    try:
        bucket_expression = extract_bucket_expression(query_text)
    except ValueError as e:
        raise DefinitionError(
            f"{key} - extracting bucket interval from {query_path}: {e}",
            key=key,
            path=query_path,
            cause=e,
        ) from e

    try:
        cron.validate(entry.check_every)
    except ScheduleError as e:
        raise DefinitionError(f"{key} - {e.message}", key=key, path=rel, cause=e) from e

    return AlertDefinition(
        id=AlertId(group=rel, key=key),
        query_text=query_text,
        bucket_expression=bucket_expression,
        condition=AlertCondition(
            greater_than=entry.alert_if.value_gt,
            less_than=entry.alert_if.value_lt,
        ),
        check_every=entry.check_every,
        message=entry.message,
        params=dict(entry.params),
        query_path=query_path,
        notify_channel=entry.slack_channel or None,
    )


def discover_definitions(root: Path | str, pattern: str = DEFAULT_PATTERN) -> list[AlertDefinition]:
    """
    Glob *pattern* under *root* and load every matching definition file.

    Files are processed in sorted order.  The first failure aborts discovery,
    so callers never see a partial definition set.
    """
    root = Path(root)
    if not root.is_dir():
        raise DefinitionError(f"definitions root not found: {root}", path=str(root))

    paths = sorted(p.relative_to(root).as_posix() for p in root.glob(pattern) if p.is_file())
    logger.debug("loader.discovered", root=str(root), pattern=pattern, files=paths)

    definitions: list[AlertDefinition] = []
    for rel in paths:
        try:
            definitions.extend(load_definition_file(rel, root=root))
        except DefinitionError as e:
            raise DefinitionError(
                f"processing {rel}: {e.message}", key=e.key, path=e.path or rel, cause=e
            ) from e

    logger.info("loader.discovery_complete", files=len(paths), alert_count=len(definitions))
    return definitions


__all__ = [
    "AlertConditionSpec",
    "AlertEntrySpec",
    "AlertFileSpec",
    "BUCKET_MARKER",
    "DEFAULT_PATTERN",
    "discover_definitions",
    "extract_bucket_expression",
    "load_definition_file",
]
