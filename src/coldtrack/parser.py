"""Build the cold-start Logs Insights query and parse its result rows."""

from __future__ import annotations

import math
import re
from collections.abc import Iterable, Mapping

from coldtrack.models import InvocationSample

# Result fields, in priority order
TIMESTAMP_FIELDS = ("@timestamp", "timestamp")
INIT_DURATION_FIELDS = ("initMs", "initDurationMs")
MESSAGE_FIELD = "@message"

# Example: REPORT RequestId: abc-123 Duration: 45.67 ms Billed Duration: 46 ms
#          Memory Size: 512 MB Max Memory Used: 128 MB Init Duration: 234.56 ms
INIT_DURATION_PATTERN = re.compile(r"Init Duration:\s*(?P<init>\d+(?:\.\d+)?)\s*ms")
REPORT_MARKER = re.compile(r"^\s*REPORT\s+RequestId:")

DEFAULT_QUERY_LIMIT = 10000


def default_log_group(function_name: str) -> str:
    """Return the default CloudWatch log group for a Lambda function."""
    if function_name.startswith("arn:"):
        parts = function_name.split(":")
        function_name = parts[6] if len(parts) > 6 else parts[-1]
    return f"/aws/lambda/{function_name}"


def build_cold_start_query(limit: int = DEFAULT_QUERY_LIMIT) -> str:
    """
    Build a Logs Insights query returning REPORT rows with an initMs field.

    Warm invocations have no Init Duration, so initMs is absent on their rows.
    The log group is passed to StartQuery, not embedded in the query text.
    """
    return "\n".join([
        "fields @timestamp, @message",
        "| filter @message like /REPORT/",
        r"| parse @message /Init Duration: (?<initMs>\d+\.?\d*) ms/",
        "| sort @timestamp desc",
        f"| limit {limit}",
    ])


def first_field(row: Mapping[str, str], names: Iterable[str]) -> str | None:
    """Return the first non-empty value among the given field names."""
    for name in names:
        value = row.get(name)
        if value is not None and str(value).strip() != "":
            return str(value)
    return None


def parse_number(text: str | None) -> float | None:
    """Parse a finite float, returning None for missing or non-numeric text."""
    if text is None:
        return None
    try:
        value = float(text.strip())
    except (TypeError, ValueError):
        return None
    if not math.isfinite(value):
        return None
    return value


def parse_report_line(message: str) -> float | None:
    """
    Extract the init duration from a raw REPORT log message.

    Args:
        message: The log message text

    Returns:
        Init duration in milliseconds, or None for warm or non-REPORT lines
    """
    if not REPORT_MARKER.match(message):
        return None
    match = INIT_DURATION_PATTERN.search(message)
    if not match:
        return None
    return parse_number(match.group("init"))


def parse_query_row(row: Mapping[str, str]) -> InvocationSample:
    """
    Map one Logs Insights result row to an InvocationSample.

    A row is a cold start iff its init duration parses to a finite number.
    When neither init field is present, the raw @message is checked instead.
    """
    timestamp = first_field(row, TIMESTAMP_FIELDS) or ""

    init_text = first_field(row, INIT_DURATION_FIELDS)
    if init_text is not None:
        init_ms = parse_number(init_text)
    else:
        message = row.get(MESSAGE_FIELD)
        init_ms = parse_report_line(message) if message else None

    return InvocationSample(
        timestamp=timestamp,
        is_cold_start=init_ms is not None,
        init_duration_ms=init_ms,
    )


def parse_query_rows(rows: Iterable[Mapping[str, str]]) -> list[InvocationSample]:
    """Parse multiple result rows into samples, preserving order."""
    return [parse_query_row(row) for row in rows]
