"""Export functionality for metrics snapshots."""

import csv
import io
from collections.abc import Iterable
from pathlib import Path

from coldtrack.models import MetricsSnapshot

SNAPSHOT_FIELDS = [
    "period_start",
    "period_end",
    "region",
    "cold_count",
    "warm_count",
    "p50_init_ms",
    "p90_init_ms",
    "p99_init_ms",
    "source",
    "created_at",
]


def _optional(value) -> object:
    return "" if value is None else value


def _write_snapshots(snapshots: Iterable[MetricsSnapshot], f) -> None:
    writer = csv.DictWriter(f, fieldnames=SNAPSHOT_FIELDS)
    writer.writeheader()

    for snapshot in snapshots:
        writer.writerow({
            "period_start": snapshot.period_start.isoformat(),
            "period_end": snapshot.period_end.isoformat(),
            "region": snapshot.region,
            "cold_count": snapshot.cold_count,
            "warm_count": snapshot.warm_count,
            "p50_init_ms": _optional(snapshot.p50_init_ms),
            "p90_init_ms": _optional(snapshot.p90_init_ms),
            "p99_init_ms": _optional(snapshot.p99_init_ms),
            "source": snapshot.source,
            "created_at": snapshot.created_at.isoformat(),
        })


def snapshots_to_csv(snapshots: Iterable[MetricsSnapshot]) -> str:
    """Render snapshots as CSV text with a header row."""
    buffer = io.StringIO()
    _write_snapshots(snapshots, buffer)
    return buffer.getvalue()


def export_snapshots_to_csv(snapshots: Iterable[MetricsSnapshot], output_path: str | Path) -> None:
    """
    Export snapshots to a CSV file.

    Args:
        snapshots: Snapshots to export
        output_path: Path to write the CSV file
    """
    output_path = Path(output_path)
    with output_path.open("w", newline="") as f:
        _write_snapshots(snapshots, f)

