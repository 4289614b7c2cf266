"""Data models for cold-start samples, snapshots and alerts."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, NamedTuple


@dataclass
class InvocationSample:
    """A single invocation row parsed from a Logs Insights query result."""

    timestamp: str
    is_cold_start: bool
    init_duration_ms: float | None = None  # Cold start only


@dataclass
class AggregatedColdStartMetrics:
    """Cold/warm counts and init-duration percentiles for one refresh."""

    cold_count: int
    warm_count: int
    p50_init_ms: float | None = None
    p90_init_ms: float | None = None
    p99_init_ms: float | None = None

    @property
    def total(self) -> int:
        """Return the number of invocations seen."""
        return self.cold_count + self.warm_count


@dataclass(frozen=True)
class MetricsSnapshot:
    """One persisted aggregate for a function, region and time window."""

    id: str
    function_id: str
    region: str
    period_start: datetime
    period_end: datetime
    cold_count: int
    warm_count: int
    p50_init_ms: int | None
    p90_init_ms: int | None
    p99_init_ms: int | None
    source: str
    created_at: datetime
    query_id: str | None = None

    @property
    def cold_start_rate(self) -> float:
        """Return the cold start ratio, 0.0 when nothing was invoked."""
        total = self.cold_count + self.warm_count
        return self.cold_count / total if total > 0 else 0.0


@dataclass
class TimeBucket:
    """Snapshots re-aggregated over one chart interval."""

    start: datetime
    end: datetime
    cold_count: int = 0
    warm_count: int = 0
    avg_p90_init_ms: float | None = None


class AlertStatus(str, Enum):
    OPEN = "open"
    RESOLVED = "resolved"


class AlertSeverity(str, Enum):
    WARNING = "warning"
    CRITICAL = "critical"


class AlertKey(NamedTuple):
    """Alerts are deduplicated per function, region and metric."""

    function_id: str
    region: str
    metric: str


@dataclass
class Alert:
    """A threshold alert; at most one is open per AlertKey."""

    id: str
    function_id: str
    region: str
    metric: str
    severity: AlertSeverity
    message: str
    observed_value: float | None
    threshold: float | None
    created_at: datetime
    org_id: str | None = None
    status: AlertStatus = AlertStatus.OPEN
    updated_at: datetime | None = None
    resolved_at: datetime | None = None

    @property
    def key(self) -> AlertKey:
        return AlertKey(self.function_id, self.region, self.metric)

    @property
    def is_open(self) -> bool:
        return self.status is AlertStatus.OPEN


@dataclass
class NotificationPayload:
    """Body handed to a notifier when a new alert opens."""

    title: str
    message: str
    severity: str
    data: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class AssumedCredentials:
    """Short-lived delegated credentials from STS AssumeRole."""

    access_key_id: str
    secret_access_key: str
    session_token: str
    expiration: datetime | None = None

    def __repr__(self) -> str:
        return f"AssumedCredentials(access_key_id={self.access_key_id!r}, expiration={self.expiration!r})"


@dataclass
class FunctionRecord:
    """A Lambda function linked to an AWS account connection."""

    id: str
    function_name: str
    org_id: str
    aws_account_id: str
    region: str | None = None


@dataclass
class AccountRecord:
    """A cross-account role the service may assume."""

    id: str
    role_arn: str
    external_id: str


@dataclass
class AuthContext:
    """Identity of the caller asking for a refresh or a read."""

    user_id: str
    claims: dict[str, Any] = field(default_factory=dict)


@dataclass
class PollResult:
    """One GetQueryResults round trip."""

    status: str
    rows: list[dict[str, str]] = field(default_factory=list)


@dataclass
class QueryResult:
    """Outcome of run_query; rows is None when the query is still pending."""

    query_id: str
    rows: list[dict[str, str]] | None

    @property
    def timed_out(self) -> bool:
        return self.rows is None


@dataclass
class RefreshResult:
    """Outcome of one metrics refresh."""

    query_id: str
    region: str
    start: int
    end: int
    snapshot: MetricsSnapshot | None = None

    @property
    def pending(self) -> bool:
        """Return True if the query timed out and can be collected later."""
        return self.snapshot is None


@dataclass
class RefreshSchedule:
    """A recurring refresh of one function over one or more regions."""

    function_id: str
    range: str | None = None
    regions: list[str] = field(default_factory=list)
    id: str | None = None


@dataclass
class ScheduleRunSummary:
    """Counts from one pass over the refresh schedules."""

    processed: int = 0
    succeeded: int = 0
    failed: int = 0
