"""Percentile aggregation over cold-start init durations."""

import math
from collections.abc import Iterable, Sequence

from coldtrack.models import AggregatedColdStartMetrics, InvocationSample

PERCENTILES = (50, 90, 99)


def nearest_rank_percentile(values: Sequence[float], percentile: float) -> float | None:
    """
    Calculate a percentile using the nearest-rank method.

    Picks the value at index ceil(p/100 * n) - 1 of the sorted values,
    clamped to the list bounds. No interpolation.

    Returns None if the list is empty.
    """
    if not values:
        return None

    sorted_values = sorted(values)
    n = len(sorted_values)
    idx = math.ceil((percentile / 100) * n) - 1
    return sorted_values[max(0, min(idx, n - 1))]


def is_valid_duration(value) -> bool:
    """Return True for a finite int or float that is not a bool."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value)


def cold_start_durations(samples: Iterable[InvocationSample]) -> list[float]:
    """Return init durations of cold samples that carry a valid value."""
    return [
        s.init_duration_ms
        for s in samples
        if s.is_cold_start and is_valid_duration(s.init_duration_ms)
    ]


def aggregate_cold_starts(samples: Iterable[InvocationSample]) -> AggregatedColdStartMetrics:
    """
    Count cold and warm invocations and compute init-duration percentiles.

    Every cold-flagged sample counts towards cold_count, but only those with
    a valid init duration feed the percentiles. When none do, all three
    percentiles are None.

    Args:
        samples: Parsed invocation samples (not modified)

    Returns:
        AggregatedColdStartMetrics with counts and p50/p90/p99
    """
    samples = list(samples)
    durations = cold_start_durations(samples)
    cold_count = sum(1 for s in samples if s.is_cold_start)

    p50, p90, p99 = (nearest_rank_percentile(durations, p) for p in PERCENTILES)

    return AggregatedColdStartMetrics(
        cold_count=cold_count,
        warm_count=len(samples) - cold_count,
        p50_init_ms=p50,
        p90_init_ms=p90,
        p99_init_ms=p99,
    )


def round_half_up(value: float | None) -> int | None:
    """Round to the nearest integer with halves going up; None passes through."""
    if value is None:
        return None
    return int(math.floor(value + 0.5))
