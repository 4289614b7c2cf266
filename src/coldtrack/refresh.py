"""Metrics refresh: query, aggregate, persist a snapshot, evaluate alerts."""

from __future__ import annotations

import logging
import time
import uuid
from collections.abc import Callable, Iterable
from datetime import datetime, timezone

from botocore.exceptions import BotoCoreError, ClientError

from coldtrack.buckets import bucketize, clamp_bucket_count
from coldtrack.cloudwatch import InsightsQueryClient, assume_role
from coldtrack.config import Settings
from coldtrack.errors import (
    AuthorizationError,
    ConfigurationError,
    GatewayError,
    NotFoundError,
    SubmissionError,
    TerminalQueryError,
)
from coldtrack.export import snapshots_to_csv
from coldtrack.models import (
    AccountRecord,
    Alert,
    AlertStatus,
    AuthContext,
    FunctionRecord,
    MetricsSnapshot,
    RefreshResult,
    RefreshSchedule,
    ScheduleRunSummary,
    TimeBucket,
)
from coldtrack.parser import build_cold_start_query, default_log_group, parse_query_rows
from coldtrack.ranges import TimeWindow, parse_range
from coldtrack.stats import aggregate_cold_starts, round_half_up

logger = logging.getLogger(__name__)

SOURCE_MANUAL = "manual"
SOURCE_SCHEDULED = "scheduled"
SOURCE_INTERNAL = "internal"

TRANSPORT_ERRORS = (
    AuthorizationError,
    SubmissionError,
    TerminalQueryError,
    ClientError,
    BotoCoreError,
)


def _request_id(error: BaseException) -> str | None:
    if isinstance(error, ClientError):
        return error.response.get("ResponseMetadata", {}).get("RequestId")
    return getattr(error, "request_id", None)


def _to_datetime(epoch: int) -> datetime:
    return datetime.fromtimestamp(epoch, tz=timezone.utc)


class MetricsRefresher:
    """
    Runs cold-start metric refreshes for stored Lambda functions.

    Collaborators are injected: a directory of functions and accounts, a
    snapshot store, an alert evaluator, and optionally an authorize(auth,
    org_id) callable and a client_factory(account, region) returning a query
    client. A fresh client, and so fresh credentials, is built per refresh.
    """

    def __init__(
        self,
        directory,
        snapshots,
        alerts=None,
        settings: Settings | None = None,
        client_factory: Callable[[AccountRecord, str], InsightsQueryClient] | None = None,
        authorize: Callable[[AuthContext, str], None] | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.directory = directory
        self.snapshots = snapshots
        self.alerts = alerts
        self.settings = settings or Settings()
        self.client_factory = client_factory or self._assume_role_client
        self.authorize = authorize
        self.clock = clock

    def _assume_role_client(self, account: AccountRecord, region: str) -> InsightsQueryClient:
        credentials = assume_role(account.role_arn, account.external_id, region=region)
        return InsightsQueryClient.from_credentials(
            credentials,
            region,
            poll_interval_ms=self.settings.poll_interval_ms,
            timeout_ms=self.settings.query_timeout_ms,
            base_backoff_ms=self.settings.base_backoff_ms,
            max_backoff_ms=self.settings.max_backoff_ms,
        )

    # Lookups

    def get_function(self, function_id: str, auth: AuthContext | None = None) -> tuple[FunctionRecord, AccountRecord]:
        """
        Load a function and its account connection, authorizing the caller.

        Raises:
            NotFoundError: If the function or its account does not exist
        """
        function = self.directory.get_function(function_id)
        if function is None:
            raise NotFoundError("Function not found")
        if auth is not None and self.authorize is not None:
            self.authorize(auth, function.org_id)
        account = self.directory.get_account(function.aws_account_id)
        if account is None:
            raise NotFoundError("AWS account connection not found")
        return function, account

    def resolve_region(self, function: FunctionRecord, region_override: str | None = None) -> str:
        region = region_override or function.region
        if not region:
            raise ConfigurationError("region missing")
        return region

    # Refresh

    def refresh(
        self,
        function_id: str,
        auth: AuthContext,
        range: str | None = None,
        region_override: str | None = None,
    ) -> RefreshResult:
        """
        Refresh metrics for a function on behalf of a caller.

        Args:
            function_id: Stored function id
            auth: Caller identity, checked by the injected authorizer
            range: Relative range like 15m or 7d (default 7d)
            region_override: Region to query instead of the function's own

        Returns:
            RefreshResult; its snapshot is None if the query is still pending

        Raises:
            NotFoundError: Unknown function or account
            ConfigurationError: No region available
            GatewayError: Any AWS transport failure
        """
        function, account = self.get_function(function_id, auth)
        return self._refresh(function, account, range, region_override, SOURCE_MANUAL)

    def refresh_internal(
        self,
        function_id: str,
        range: str | None = None,
        region_override: str | None = None,
        source: str = SOURCE_INTERNAL,
    ) -> RefreshResult:
        """Refresh without caller authorization, for scheduled and internal jobs."""
        function, account = self.get_function(function_id)
        return self._refresh(function, account, range, region_override, source)

    def _refresh(
        self,
        function: FunctionRecord,
        account: AccountRecord,
        range: str | None,
        region_override: str | None,
        source: str,
    ) -> RefreshResult:
        region = self.resolve_region(function, region_override)
        window = parse_range(range, now=self.clock())

        logger.info(
            f"Refreshing metrics for {function.id} ({function.function_name}) "
            f"in {region} over [{window.start}, {window.end}]"
        )

        try:
            client = self.client_factory(account, region)
            log_group = client.resolve_log_group(function.function_name)
            result = client.run_query(
                log_group,
                window.start,
                window.end,
                build_cold_start_query(self.settings.query_limit),
                limit=self.settings.query_limit,
            )
        except TRANSPORT_ERRORS as e:
            raise self._gateway_error(function, e) from e

        if result.timed_out:
            logger.warning(
                f"Query {result.query_id} for {function.id} still pending; no snapshot written"
            )
            return RefreshResult(
                query_id=result.query_id, region=region, start=window.start, end=window.end
            )

        snapshot = self._record(function, region, window, result.query_id, result.rows, source)
        return RefreshResult(
            query_id=result.query_id,
            region=region,
            start=window.start,
            end=window.end,
            snapshot=snapshot,
        )

    def collect(
        self,
        function_id: str,
        query_id: str,
        start: int,
        end: int,
        region_override: str | None = None,
        source: str = SOURCE_INTERNAL,
    ) -> RefreshResult:
        """
        Resume a query that timed out during an earlier refresh.

        Args:
            function_id: Stored function id
            query_id: Id from the pending RefreshResult
            start: Window start the query was submitted with (RefreshResult.start)
            end: Window end the query was submitted with (RefreshResult.end)
            region_override: Region the query was submitted in, if not the function's own
            source: Snapshot source tag

        Returns:
            RefreshResult; its snapshot is None if the query is still pending
        """
        function, account = self.get_function(function_id)
        region = self.resolve_region(function, region_override)
        window = TimeWindow(int(start), int(end))
        if window.end <= window.start:
            raise ConfigurationError("query window end must be after its start")

        try:
            client = self.client_factory(account, region)
            result = client.wait_for(query_id)
        except TRANSPORT_ERRORS as e:
            raise self._gateway_error(function, e) from e

        if result.timed_out:
            return RefreshResult(query_id=query_id, region=region, start=window.start, end=window.end)

        snapshot = self._record(function, region, window, query_id, result.rows, source)
        return RefreshResult(
            query_id=query_id, region=region, start=window.start, end=window.end, snapshot=snapshot
        )

    def _record(
        self,
        function: FunctionRecord,
        region: str,
        window: TimeWindow,
        query_id: str,
        rows: list[dict[str, str]],
        source: str,
    ) -> MetricsSnapshot:
        agg = aggregate_cold_starts(parse_query_rows(rows))
        snapshot = self.snapshots.add(
            MetricsSnapshot(
                id=str(uuid.uuid4()),
                function_id=function.id,
                region=region,
                period_start=_to_datetime(window.start),
                period_end=_to_datetime(window.end),
                cold_count=agg.cold_count,
                warm_count=agg.warm_count,
                p50_init_ms=round_half_up(agg.p50_init_ms),
                p90_init_ms=round_half_up(agg.p90_init_ms),
                p99_init_ms=round_half_up(agg.p99_init_ms),
                source=source,
                created_at=datetime.now(timezone.utc),
                query_id=query_id,
            )
        )
        logger.info(
            f"Metrics refreshed for {function.id}: {agg.cold_count} cold, "
            f"{agg.warm_count} warm, p90 {snapshot.p90_init_ms}ms"
        )

        if self.alerts is not None:
            try:
                self.alerts.evaluate(
                    function.id,
                    function.org_id,
                    region,
                    snapshot.cold_count,
                    snapshot.warm_count,
                    snapshot.p90_init_ms,
                )
            except Exception:
                logger.exception(f"Alert evaluation failed for {function.id} in {region}")

        return snapshot

    def _gateway_error(self, function: FunctionRecord, error: BaseException) -> GatewayError:
        request_id = _request_id(error)
        if isinstance(error, ClientError):
            message = error.response.get("Error", {}).get("Message") or str(error)
        else:
            message = str(error) or "CloudWatch Logs error"
        # Messages only; credentials and tracebacks stay out of the log
        logger.error(
            f"Provider error during metrics refresh of {function.id}: {message} "
            f"(request id {request_id})"
        )
        return GatewayError(message, request_id)

    # Scheduled refresh

    def run_schedules(self, schedules: Iterable[RefreshSchedule]) -> ScheduleRunSummary:
        """
        Refresh every schedule in every listed region, one at a time.

        A failing schedule or region is logged and counted; the pass continues.
        """
        summary = ScheduleRunSummary()
        for schedule in schedules:
            summary.processed += 1
            target_range = schedule.range or self.settings.scheduled_range
            for region in schedule.regions or [None]:
                try:
                    self.refresh_internal(
                        schedule.function_id, target_range, region, source=SOURCE_SCHEDULED
                    )
                    summary.succeeded += 1
                except Exception as e:
                    logger.error(
                        f"Auto refresh failed for schedule {schedule.id or schedule.function_id} "
                        f"in {region or 'default region'}: {e}"
                    )
                    summary.failed += 1
        return summary

    # Read paths

    def _window(self, range: str | None) -> tuple[datetime, datetime]:
        window = parse_range(range, now=self.clock())
        return _to_datetime(window.start), _to_datetime(window.end)

    def latest_snapshot(
        self, function_id: str, auth: AuthContext, range: str | None = None, region: str | None = None
    ) -> MetricsSnapshot | None:
        """Return the newest snapshot whose period lies inside the range."""
        function, _ = self.get_function(function_id, auth)
        start, end = self._window(range)
        return self.snapshots.latest(function.id, start, end, region)

    def region_snapshots(
        self, function_id: str, auth: AuthContext, region: str | None = None, range: str | None = None
    ) -> dict[str, list[MetricsSnapshot]]:
        """Group snapshots in the range by region."""
        function, _ = self.get_function(function_id, auth)
        start, end = self._window(range)
        grouped: dict[str, list[MetricsSnapshot]] = {}
        for snapshot in self.snapshots.list(function.id, start, end, region):
            grouped.setdefault(snapshot.region, []).append(snapshot)
        return grouped

    def metric_buckets(
        self,
        function_id: str,
        auth: AuthContext,
        range: str | None = None,
        region: str | None = None,
        buckets: int | None = None,
    ) -> list[TimeBucket]:
        """Chart data: snapshots in the range spread over up to 200 buckets."""
        function, _ = self.get_function(function_id, auth)
        window = parse_range(range, now=self.clock())
        snapshots = self.snapshots.list(function.id, region=region)
        return bucketize(snapshots, window.start, window.end, clamp_bucket_count(buckets))

    def export_csv(
        self, function_id: str, auth: AuthContext, range: str | None = None, region: str | None = None
    ) -> str:
        function, _ = self.get_function(function_id, auth)
        start, end = self._window(range)
        return snapshots_to_csv(self.snapshots.list(function.id, start, end, region))

    def list_regions(self, function_id: str, auth: AuthContext) -> list[str]:
        """Return the regions the function has snapshots in, sorted."""
        function, _ = self.get_function(function_id, auth)
        return self.snapshots.regions(function.id)

    def list_alerts(
        self, function_id: str, auth: AuthContext, status: AlertStatus | None = None
    ) -> list[Alert]:
        """Return the function's alerts newest first, optionally only open or resolved ones."""
        function, _ = self.get_function(function_id, auth)
        if self.alerts is None:
            return []
        return self.alerts.store.list(function.id, status)

    def logs_insights_query(
        self,
        function_id: str,
        auth: AuthContext,
        resolve: bool = False,
        region_override: str | None = None,
    ) -> tuple[str, str]:
        """
        Return the query text and log group a refresh would use.

        Without resolve, the log group is the default /aws/lambda/<name>, which
        differs from the queried one for functions with a custom
        LoggingConfig.LogGroup. With resolve, the role is assumed and the
        function configuration read, exactly as refresh does.

        Raises:
            ConfigurationError: resolve is set and no region is available
            GatewayError: resolve is set and the AWS lookup fails
        """
        function, account = self.get_function(function_id, auth)
        query = build_cold_start_query(self.settings.query_limit)
        if not resolve:
            return query, default_log_group(function.function_name)

        region = self.resolve_region(function, region_override)
        try:
            client = self.client_factory(account, region)
            log_group = client.resolve_log_group(function.function_name)
        except TRANSPORT_ERRORS as e:
            raise self._gateway_error(function, e) from e
        return query, log_group
