"""Tests for the YAML definition loader."""

from pathlib import Path

import pytest

from alert_spine.errors import DefinitionError
from alert_spine.loader import (
    discover_definitions,
    extract_bucket_expression,
    load_definition_file,
)
from alert_spine.models import AlertId

SHOP_YAML = "client/content/shop/alerts.yaml"


def write(path: Path, text: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    return path


class TestExtractBucketExpression:
    def test_first_line(self):
        assert extract_bucket_expression("--BUCKET: toStartOfHour(--NOW--)\nSELECT 1") == "toStartOfHour(--NOW--)"

    def test_strips_whitespace(self):
        assert extract_bucket_expression("--BUCKET:   15m   \nSELECT 1") == "15m"

    def test_text_before_marker(self):
        sql = "SELECT 1\n/* header */ --BUCKET: toStartOfHour(--NOW--)\n"
        assert extract_bucket_expression(sql) == "toStartOfHour(--NOW--)"

    def test_third_line_allowed(self):
        sql = "-- a\n-- b\n--BUCKET: x\nSELECT 1"
        assert extract_bucket_expression(sql) == "x"

    def test_fourth_line_rejected(self):
        sql = "-- a\n-- b\n-- c\n--BUCKET: x\nSELECT 1"
        with pytest.raises(ValueError, match="not found"):
            extract_bucket_expression(sql)

    def test_missing_marker(self):
        with pytest.raises(ValueError, match=r"Bucket Expression --BUCKET: \.\.\. not found"):
            extract_bucket_expression("SELECT 1")

    def test_empty_expression_rejected(self):
        """A marker with nothing after it is not a bucket expression."""
        with pytest.raises(ValueError, match="is empty"):
            extract_bucket_expression("--BUCKET:   \nSELECT 1")


class TestLoadDefinitionFile:
    def test_loads_entries(self, definitions_root: Path):
        """Every entry is loaded with its query resolved relative to the file."""
        definitions = load_definition_file(SHOP_YAML, root=definitions_root)
        by_key = {d.id.key: d for d in definitions}
        assert set(by_key) == {"order_failures", "low_traffic"}

        failures = by_key["order_failures"]
        assert failures.id == AlertId(SHOP_YAML, "order_failures")
        assert failures.query_path == "client/content/shop/queries/order_failures.sql"
        assert failures.bucket_expression == "toStartOfFifteenMinutes(--NOW--)"
        assert failures.condition.greater_than == 10
        assert failures.condition.less_than is None
        assert failures.check_every == "*/15 * * * *"
        assert failures.message == "ERROR - too many failures"
        assert failures.notify_channel == "#shop-alerts"
        assert "--HAVING--" in failures.query_text

    def test_params_are_strings(self, definitions_root: Path):
        failures = load_definition_file(SHOP_YAML, root=definitions_root)[0]
        assert failures.params == {"shop": "main", "window": "90"}

    def test_without_root_uses_path_as_given(self, definitions_root: Path):
        path = definitions_root / SHOP_YAML
        definitions = load_definition_file(path)
        assert definitions[0].id.group == path.as_posix()

    def test_missing_query_path(self, tmp_path: Path):
        write(tmp_path / "alerts.yaml", "alerts:\n  a1:\n    check_every: '* * * * *'\n")
        with pytest.raises(DefinitionError, match="a1 - no query path defined") as exc:
            load_definition_file("alerts.yaml", root=tmp_path)
        assert exc.value.key == "a1"

    def test_missing_query_file(self, tmp_path: Path):
        write(
            tmp_path / "alerts.yaml",
            "alerts:\n  a1:\n    query_path: missing.sql\n    check_every: '* * * * *'\n",
        )
        with pytest.raises(DefinitionError, match="a1 - reading file missing.sql"):
            load_definition_file("alerts.yaml", root=tmp_path)

    def test_missing_bucket_marker(self, tmp_path: Path):
        write(tmp_path / "q.sql", "SELECT 1 AS value\n")
        write(
            tmp_path / "alerts.yaml",
            "alerts:\n  a1:\n    query_path: q.sql\n    check_every: '* * * * *'\n",
        )
        with pytest.raises(DefinitionError, match="extracting bucket interval from q.sql"):
            load_definition_file("alerts.yaml", root=tmp_path)

    def test_empty_bucket_marker(self, tmp_path: Path):
        write(tmp_path / "q.sql", "--BUCKET:\nSELECT 1 AS value\n")
        write(
            tmp_path / "alerts.yaml",
            "alerts:\n  a1:\n    query_path: q.sql\n    check_every: '* * * * *'\n",
        )
        with pytest.raises(DefinitionError, match="a1 - extracting bucket interval from q.sql: .* is empty"):
            load_definition_file("alerts.yaml", root=tmp_path)

    def test_invalid_cron(self, tmp_path: Path):
        write(tmp_path / "q.sql", "--BUCKET: toStartOfHour(--NOW--)\nSELECT 1\n")
        write(
            tmp_path / "alerts.yaml",
            "alerts:\n  a1:\n    query_path: q.sql\n    check_every: 'not a cron'\n",
        )
        with pytest.raises(DefinitionError, match="a1 - invalid cron expression"):
            load_definition_file("alerts.yaml", root=tmp_path)

    def test_missing_check_every(self, tmp_path: Path):
        write(tmp_path / "alerts.yaml", "alerts:\n  a1:\n    query_path: q.sql\n")
        with pytest.raises(DefinitionError, match="a1 - invalid definition"):
            load_definition_file("alerts.yaml", root=tmp_path)

    def test_invalid_yaml(self, tmp_path: Path):
        write(tmp_path / "alerts.yaml", "alerts: [unclosed\n")
        with pytest.raises(DefinitionError, match="Invalid YAML"):
            load_definition_file("alerts.yaml", root=tmp_path)

    def test_empty_file(self, tmp_path: Path):
        write(tmp_path / "alerts.yaml", "")
        assert load_definition_file("alerts.yaml", root=tmp_path) == []

    def test_missing_definition_file(self, tmp_path: Path):
        with pytest.raises(DefinitionError, match="reading file nope.yaml"):
            load_definition_file("nope.yaml", root=tmp_path)


class TestDiscoverDefinitions:
    def test_discovers_default_pattern(self, definitions_root: Path):
        definitions = discover_definitions(definitions_root)
        assert [d.id.key for d in definitions] == ["order_failures", "low_traffic"]

    def test_files_in_sorted_order(self, definitions_root: Path):
        other = definitions_root / "client" / "content" / "billing"
        write(other / "q.sql", "--BUCKET: toStartOfHour(--NOW--)\nSELECT 1\n")
        write(
            other / "alerts.yaml",
            "alerts:\n  invoices:\n    query_path: q.sql\n    alert_if:\n      value_lt: 1\n"
            "    check_every: '0 * * * *'\n",
        )
        groups = [d.id.group for d in discover_definitions(definitions_root)]
        assert groups[0] == "client/content/billing/alerts.yaml"
        assert groups[1:] == [SHOP_YAML, SHOP_YAML]

    def test_one_bad_file_aborts_everything(self, definitions_root: Path):
        bad = definitions_root / "client" / "content" / "zzz" / "alerts.yaml"
        write(bad, "alerts:\n  broken:\n    check_every: '* * * * *'\n")
        with pytest.raises(DefinitionError, match="processing client/content/zzz/alerts.yaml: broken"):
            discover_definitions(definitions_root)

    def test_no_matches(self, tmp_path: Path):
        assert discover_definitions(tmp_path) == []

    def test_missing_root(self, tmp_path: Path):
        with pytest.raises(DefinitionError, match="definitions root not found"):
            discover_definitions(tmp_path / "absent")
