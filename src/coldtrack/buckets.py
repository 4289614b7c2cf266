"""Re-aggregate stored snapshots into fixed time buckets for charting."""

from collections.abc import Iterable
from datetime import datetime, timezone

from coldtrack.models import MetricsSnapshot, TimeBucket

MIN_BUCKETS = 1
MAX_BUCKETS = 200
DEFAULT_BUCKETS = 24


def clamp_bucket_count(bucket_count: int | None) -> int:
    """Clamp a requested bucket count to [1, 200], defaulting to 24."""
    if bucket_count is None:
        return DEFAULT_BUCKETS
    return max(MIN_BUCKETS, min(int(bucket_count), MAX_BUCKETS))


def _to_epoch(value: datetime | float) -> float:
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.timestamp()
    return float(value)


def _to_datetime(epoch: float) -> datetime:
    return datetime.fromtimestamp(epoch, tz=timezone.utc)


def bucketize(
    snapshots: Iterable[MetricsSnapshot],
    window_start: datetime | float,
    window_end: datetime | float,
    bucket_count: int,
) -> list[TimeBucket]:
    """
    Spread snapshots over bucket_count equal-width buckets.

    Each snapshot lands in the bucket containing its period_start; snapshots
    outside [window_start, window_end) are dropped. A degenerate window
    (end <= start) becomes bucket_count seconds long.

    Args:
        snapshots: Snapshots to aggregate
        window_start: Window start (epoch seconds or datetime)
        window_end: Window end (epoch seconds or datetime)
        bucket_count: Number of buckets, at least 1

    Returns:
        List of bucket_count TimeBuckets in chronological order
    """
    if bucket_count < 1:
        raise ValueError("bucket_count must be at least 1")

    start = _to_epoch(window_start)
    end = _to_epoch(window_end)
    if end <= start:
        end = start + bucket_count

    width = (end - start) / bucket_count

    bounds = []
    for i in range(bucket_count):
        bucket_end = end if i == bucket_count - 1 else start + (i + 1) * width
        bounds.append((start + i * width, bucket_end))

    cold = [0] * bucket_count
    warm = [0] * bucket_count
    p90_values: list[list[int]] = [[] for _ in range(bucket_count)]

    for snapshot in snapshots:
        ts = _to_epoch(snapshot.period_start)
        if ts < start or ts >= end:
            continue
        idx = min(int((ts - start) // width), bucket_count - 1)
        cold[idx] += snapshot.cold_count
        warm[idx] += snapshot.warm_count
        if snapshot.p90_init_ms is not None:
            p90_values[idx].append(snapshot.p90_init_ms)

    return [
        TimeBucket(
            start=_to_datetime(bucket_start),
            end=_to_datetime(bucket_end),
            cold_count=cold[i],
            warm_count=warm[i],
            avg_p90_init_ms=sum(p90_values[i]) / len(p90_values[i]) if p90_values[i] else None,
        )
        for i, (bucket_start, bucket_end) in enumerate(bounds)
    ]
