"""CloudWatch Logs Insights client for cross-account cold-start queries."""

from __future__ import annotations

import logging
import math
import os
import random
import re
import time
from collections.abc import Callable

import boto3
from botocore.exceptions import ClientError

from coldtrack.errors import (
    AuthorizationError,
    SubmissionError,
    TerminalQueryError,
    ThrottleError,
)
from coldtrack.models import AssumedCredentials, PollResult, QueryResult
from coldtrack.parser import default_log_group

logger = logging.getLogger(__name__)

FALLBACK_REGION = "us-east-1"
SESSION_DURATION_SECONDS = 3600

STATUS_COMPLETE = "Complete"
TERMINAL_FAILURES = ("Failed", "Cancelled")

THROTTLE_PATTERN = re.compile(r"thrott", re.IGNORECASE)


def assume_role(
    role_arn: str,
    external_id: str,
    region: str | None = None,
    sts_client=None,
) -> AssumedCredentials:
    """
    Exchange a cross-account role for one hour of delegated credentials.

    Args:
        role_arn: ARN of the role to assume
        external_id: External id required by the role's trust policy
        region: Region for the STS endpoint (AWS_REGION or us-east-1 if not specified)
        sts_client: Optional pre-built STS client

    Returns:
        AssumedCredentials for a single refresh

    Raises:
        AuthorizationError: If STS rejects the call or returns no credentials
    """
    if sts_client is None:
        sts_client = boto3.client(
            "sts", region_name=region or os.environ.get("AWS_REGION") or FALLBACK_REGION
        )

    try:
        response = sts_client.assume_role(
            RoleArn=role_arn,
            RoleSessionName=f"coldtrack-assume-{int(time.time() * 1000)}",
            ExternalId=external_id,
            DurationSeconds=SESSION_DURATION_SECONDS,
        )
    except ClientError as e:
        error_code = e.response.get("Error", {}).get("Code", "Unknown")
        error_message = e.response.get("Error", {}).get("Message", str(e))
        raise AuthorizationError(
            f"AssumeRole failed for {role_arn} ({error_code}): {error_message}. "
            "Check the role's trust policy and external id."
        ) from e

    creds = response.get("Credentials")
    if not creds:
        raise AuthorizationError("AssumeRole failed: missing credentials")

    return AssumedCredentials(
        access_key_id=creds["AccessKeyId"],
        secret_access_key=creds["SecretAccessKey"],
        session_token=creds["SessionToken"],
        expiration=creds.get("Expiration"),
    )


def is_throttle_error(error: BaseException) -> bool:
    """Return True for throttling errors by code, exception name or HTTP 429."""
    if isinstance(error, ThrottleError):
        return True
    if THROTTLE_PATTERN.search(type(error).__name__):
        return True
    if isinstance(error, ClientError):
        code = error.response.get("Error", {}).get("Code", "")
        if THROTTLE_PATTERN.search(code):
            return True
        status = error.response.get("ResponseMetadata", {}).get("HTTPStatusCode")
        if status == 429:
            return True
    return False


def flatten_results(results: list[list[dict]]) -> list[dict[str, str]]:
    """Turn GetQueryResults cells into {field: value} rows."""
    rows = []
    for row in results or []:
        flat = {}
        for cell in row:
            name = cell.get("field")
            if name:
                flat[name] = cell.get("value") or ""
        rows.append(flat)
    return rows


class InsightsQueryClient:
    """
    Submits one Logs Insights query and polls it to completion.

    The clock, sleep and random source are injected so the poll loop can be
    driven without wall-clock delays. All durations are in milliseconds.
    """

    def __init__(
        self,
        logs_client,
        lambda_client=None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
        rng: random.Random | None = None,
        poll_interval_ms: int = 2000,
        timeout_ms: int = 60_000,
        base_backoff_ms: int = 1000,
        max_backoff_ms: int = 10_000,
    ):
        self.logs_client = logs_client
        self.lambda_client = lambda_client
        self.clock = clock
        self.sleep = sleep
        self.rng = rng or random.Random()
        self.poll_interval_ms = poll_interval_ms
        self.timeout_ms = timeout_ms
        self.base_backoff_ms = base_backoff_ms
        self.max_backoff_ms = max_backoff_ms

    @classmethod
    def from_credentials(
        cls, credentials: AssumedCredentials, region: str, **kwargs
    ) -> InsightsQueryClient:
        """Build a client whose boto3 session uses the delegated credentials."""
        session = boto3.Session(
            aws_access_key_id=credentials.access_key_id,
            aws_secret_access_key=credentials.secret_access_key,
            aws_session_token=credentials.session_token,
            region_name=region,
        )
        return cls(
            session.client("logs"),
            lambda_client=session.client("lambda"),
            **kwargs,
        )

    def resolve_log_group(self, function_name: str) -> str:
        """
        Get the CloudWatch log group name for a Lambda function.

        Honors a custom LoggingConfig.LogGroup when the function has one and
        falls back to /aws/lambda/<name> otherwise.
        """
        if self.lambda_client is None:
            return default_log_group(function_name)

        try:
            response = self.lambda_client.get_function_configuration(FunctionName=function_name)
        except ClientError as e:
            error_code = e.response.get("Error", {}).get("Code", "Unknown")
            logger.warning(
                f"Could not read configuration of {function_name} ({error_code}); "
                "using the default log group"
            )
            return default_log_group(function_name)

        logging_config = response.get("LoggingConfig", {})
        if log_group := logging_config.get("LogGroup"):
            return log_group

        return default_log_group(response.get("FunctionName", function_name))

    def start_query(
        self,
        log_group: str,
        start_time: int,
        end_time: int,
        query_string: str,
        limit: int | None = None,
    ) -> str:
        """
        Submit a Logs Insights query.

        Args:
            log_group: Log group to search
            start_time: Window start in epoch seconds
            end_time: Window end in epoch seconds
            query_string: Logs Insights query text
            limit: Optional cap on returned rows

        Returns:
            The query id

        Raises:
            SubmissionError: If no query id is returned
        """
        params = {
            "logGroupName": log_group,
            "startTime": int(start_time),
            "endTime": int(end_time),
            "queryString": query_string,
        }
        if limit is not None:
            params["limit"] = limit

        response = self.logs_client.start_query(**params)
        query_id = response.get("queryId")
        if not query_id:
            raise SubmissionError("StartQuery failed: missing queryId")

        logger.info(f"Started Logs Insights query {query_id} on {log_group}")
        return query_id

    def poll(self, query_id: str) -> PollResult:
        """Check the status of a query once, without waiting."""
        response = self.logs_client.get_query_results(queryId=query_id)
        return PollResult(
            status=response.get("status") or "Unknown",
            rows=flatten_results(response.get("results", [])),
        )

    def run_query(
        self,
        log_group: str,
        start_time: int,
        end_time: int,
        query_string: str,
        limit: int | None = None,
    ) -> QueryResult:
        """Submit a query and wait for it; see wait_for."""
        query_id = self.start_query(log_group, start_time, end_time, query_string, limit)
        return self.wait_for(query_id)

    def wait_for(self, query_id: str) -> QueryResult:
        """
        Poll a query until it completes or the timeout elapses.

        In-progress statuses wait poll_interval_ms. Throttled calls wait an
        exponentially growing backoff plus jitter. Other errors propagate.

        Returns:
            QueryResult with rows, or rows=None if the timeout elapsed

        Raises:
            TerminalQueryError: If the query ends Failed or Cancelled
        """
        started = self.clock()
        backoff_ms = self.base_backoff_ms
        attempts = 0

        while (self.clock() - started) * 1000 < self.timeout_ms:
            attempts += 1
            try:
                result = self.poll(query_id)
            except Exception as e:
                if not is_throttle_error(e):
                    raise
                wait_ms = self._with_jitter(min(backoff_ms, self.max_backoff_ms))
                logger.warning(f"Query {query_id} throttled; retrying in {wait_ms}ms")
                self.sleep(wait_ms / 1000)
                backoff_ms = min(self.max_backoff_ms, max(self.base_backoff_ms, backoff_ms * 2))
                continue

            if result.status == STATUS_COMPLETE:
                logger.info(
                    f"Query {query_id} complete after {attempts} polls ({len(result.rows)} rows)"
                )
                return QueryResult(query_id=query_id, rows=result.rows)
            if result.status in TERMINAL_FAILURES:
                raise TerminalQueryError(result.status, query_id)

            self.sleep(self.poll_interval_ms / 1000)
            backoff_ms = self.base_backoff_ms

        logger.warning(
            f"Query {query_id} did not complete within {self.timeout_ms}ms; "
            "results can be collected later"
        )
        return QueryResult(query_id=query_id, rows=None)

    def _with_jitter(self, wait_ms: float) -> int:
        jitter = math.floor(self.rng.random() * min(1000, max(100, wait_ms / 4)))
        return int(wait_ms + jitter)
