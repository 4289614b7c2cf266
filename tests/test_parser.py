"""Tests for the Logs Insights query builder and row parser."""

import pytest

from coldtrack.parser import (
    build_cold_start_query,
    default_log_group,
    first_field,
    parse_number,
    parse_query_row,
    parse_query_rows,
    parse_report_line,
)
from tests.conftest import report_row


@pytest.mark.unit
class TestBuildColdStartQuery:
    """Test the generated query text."""

    def test_query_lines(self):
        lines = build_cold_start_query().split("\n")

        assert lines[0] == "fields @timestamp, @message"
        assert lines[1] == "| filter @message like /REPORT/"
        assert lines[2] == r"| parse @message /Init Duration: (?<initMs>\d+\.?\d*) ms/"
        assert lines[3] == "| sort @timestamp desc"
        assert lines[4] == "| limit 10000"

    def test_custom_limit(self):
        assert build_cold_start_query(limit=500).endswith("| limit 500")

    def test_default_log_group(self):
        assert default_log_group("checkout-api") == "/aws/lambda/checkout-api"

    def test_default_log_group_from_arn(self):
        arn = "arn:aws:lambda:us-east-1:123456789012:function:checkout-api"
        assert default_log_group(arn) == "/aws/lambda/checkout-api"


@pytest.mark.unit
class TestFieldLookup:
    """Test the tagged field lookup helpers."""

    def test_first_field_priority(self):
        row = {"initMs": "120", "initDurationMs": "999"}
        assert first_field(row, ("initMs", "initDurationMs")) == "120"

    def test_first_field_skips_blank_values(self):
        row = {"initMs": "  ", "initDurationMs": "999"}
        assert first_field(row, ("initMs", "initDurationMs")) == "999"

    def test_first_field_missing(self):
        assert first_field({}, ("initMs",)) is None

    @pytest.mark.parametrize(
        "text, expected",
        [("150", 150.0), ("234.56", 234.56), (" 7 ", 7.0), ("abc", None), ("", None), (None, None), ("nan", None), ("inf", None)],
    )
    def test_parse_number(self, text, expected):
        assert parse_number(text) == expected


@pytest.mark.unit
class TestParseQueryRow:
    """Test mapping result rows to samples."""

    def test_cold_row(self):
        sample = parse_query_row({"@timestamp": "2024-01-15 10:00:00.000", "initMs": "234.56"})

        assert sample.timestamp == "2024-01-15 10:00:00.000"
        assert sample.is_cold_start is True
        assert sample.init_duration_ms == 234.56

    def test_alternate_field_spellings(self):
        sample = parse_query_row({"timestamp": "t1", "initDurationMs": "88"})

        assert sample.timestamp == "t1"
        assert sample.is_cold_start is True
        assert sample.init_duration_ms == 88.0

    def test_warm_row(self):
        sample = parse_query_row({"@timestamp": "t1"})

        assert sample.is_cold_start is False
        assert sample.init_duration_ms is None

    def test_non_numeric_init_is_warm(self):
        sample = parse_query_row({"@timestamp": "t1", "initMs": "n/a"})

        assert sample.is_cold_start is False
        assert sample.init_duration_ms is None

    def test_missing_timestamp(self):
        assert parse_query_row({"initMs": "5"}).timestamp == ""

    def test_falls_back_to_report_message(self):
        row = report_row("t1", init_ms=312.5)
        del row["initMs"]

        sample = parse_query_row(row)

        assert sample.is_cold_start is True
        assert sample.init_duration_ms == 312.5

    def test_report_message_without_init_is_warm(self):
        assert parse_query_row(report_row("t1")).is_cold_start is False

    def test_parse_rows_preserves_order(self):
        rows = [report_row("t1", 150), report_row("t2"), report_row("t3", 450)]
        samples = parse_query_rows(rows)

        assert [s.timestamp for s in samples] == ["t1", "t2", "t3"]
        assert [s.is_cold_start for s in samples] == [True, False, True]


@pytest.mark.unit
class TestParseReportLine:
    """Test init duration extraction from raw REPORT messages."""

    def test_cold_report(self):
        message = (
            "REPORT RequestId: abc-123 Duration: 45.67 ms Billed Duration: 46 ms "
            "Memory Size: 512 MB Max Memory Used: 128 MB Init Duration: 234.56 ms"
        )
        assert parse_report_line(message) == 234.56

    def test_non_report_line(self):
        assert parse_report_line("START RequestId: abc Init Duration: 10 ms") is None
