"""
Pytest configuration and fixtures for coldtrack tests.
"""

import uuid
from datetime import datetime, timezone

import pytest
from botocore.exceptions import ClientError

from coldtrack.alerts import AlertEvaluator
from coldtrack.cloudwatch import InsightsQueryClient
from coldtrack.config import Settings
from coldtrack.models import AccountRecord, FunctionRecord, MetricsSnapshot
from coldtrack.refresh import MetricsRefresher
from coldtrack.store import InMemoryAlertStore, InMemoryDirectory, InMemorySnapshotStore

NOW = 1_700_000_000
ALERT_TIME = datetime(2023, 11, 14, 22, 13, 20, tzinfo=timezone.utc)


class FakeClock:
    """Monotonic clock that only moves when sleep() is called."""

    def __init__(self, start: float = 1000.0):
        self.now = start
        self.sleeps = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class FixedRandom:
    """Random source returning the same value every time."""

    def __init__(self, value: float = 0.0):
        self.value = value

    def random(self) -> float:
        return self.value


class FakeLogsClient:
    """
    Stands in for a boto3 CloudWatch Logs client.

    Each entry of `responses` is returned (or raised, if an exception) by
    successive get_query_results calls; the last entry repeats.
    """

    def __init__(self, responses=None, query_id="query-1"):
        self.responses = list(responses or [{"status": "Complete", "results": []}])
        self.query_id = query_id
        self.start_calls = []
        self.result_calls = []

    def start_query(self, **params):
        self.start_calls.append(params)
        return {"queryId": self.query_id} if self.query_id else {}

    def get_query_results(self, queryId):
        self.result_calls.append(queryId)
        idx = min(len(self.result_calls) - 1, len(self.responses) - 1)
        response = self.responses[idx]
        if isinstance(response, BaseException):
            raise response
        return response


class RecordingNotifier:
    def __init__(self):
        self.sent = []

    def notify(self, org_id, payload):
        self.sent.append((org_id, payload))


def client_error(code, message="error", operation="GetQueryResults", http_status=400, request_id="req-123"):
    return ClientError(
        {
            "Error": {"Code": code, "Message": message},
            "ResponseMetadata": {"HTTPStatusCode": http_status, "RequestId": request_id},
        },
        operation,
    )


def result_cells(*rows):
    """Build GetQueryResults cells from plain dicts."""
    return [[{"field": k, "value": v} for k, v in row.items()] for row in rows]


def report_row(timestamp, init_ms=None):
    message = (
        "REPORT RequestId: 8f5b0c1e Duration: 12.34 ms Billed Duration: 13 ms "
        "Memory Size: 512 MB Max Memory Used: 80 MB"
    )
    row = {"@timestamp": timestamp}
    if init_ms is not None:
        message += f" Init Duration: {init_ms} ms"
        row["initMs"] = str(init_ms)
    row["@message"] = message
    return row


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def alert_store():
    return InMemoryAlertStore()


@pytest.fixture
def evaluator(alert_store, notifier):
    return AlertEvaluator(alert_store, notifier=notifier, clock=lambda: ALERT_TIME)


@pytest.fixture
def snapshot_store():
    return InMemorySnapshotStore()


@pytest.fixture
def directory():
    directory = InMemoryDirectory()
    directory.add_account(
        AccountRecord(
            id="acct-1",
            role_arn="arn:aws:iam::123456789012:role/coldtrack-reader",
            external_id="ext-123",
        )
    )
    directory.add_function(
        FunctionRecord(
            id="fn-1",
            function_name="checkout-api",
            org_id="org-1",
            aws_account_id="acct-1",
            region="us-east-1",
        )
    )
    return directory


@pytest.fixture
def make_query_client(clock):
    """Factory for InsightsQueryClient instances driven by the fake clock."""

    def factory(logs_client, **kwargs):
        kwargs.setdefault("rng", FixedRandom(0.0))
        return InsightsQueryClient(logs_client, clock=clock, sleep=clock.sleep, **kwargs)

    return factory


@pytest.fixture
def make_refresher(directory, snapshot_store, evaluator, make_query_client):
    """
    Build a MetricsRefresher whose client factory hands out query clients
    over the given fake logs clients, one per refresh.
    """

    def factory(*logs_clients, **kwargs):
        clients = list(logs_clients)
        calls = []

        def client_factory(account, region):
            calls.append((account.id, region))
            return make_query_client(clients.pop(0))

        refresher = MetricsRefresher(
            directory,
            snapshot_store,
            alerts=kwargs.pop("alerts", evaluator),
            settings=kwargs.pop("settings", Settings()),
            client_factory=client_factory,
            clock=kwargs.pop("clock", lambda: NOW),
            **kwargs,
        )
        refresher.factory_calls = calls
        return refresher

    return factory


@pytest.fixture
def make_snapshot():
    def factory(period_start, cold=1, warm=1, p90=None, region="us-east-1", function_id="fn-1", period_end=None):
        start = datetime.fromtimestamp(period_start, tz=timezone.utc)
        end = datetime.fromtimestamp(period_end if period_end is not None else period_start + 60, tz=timezone.utc)
        return MetricsSnapshot(
            id=str(uuid.uuid4()),
            function_id=function_id,
            region=region,
            period_start=start,
            period_end=end,
            cold_count=cold,
            warm_count=warm,
            p50_init_ms=p90,
            p90_init_ms=p90,
            p99_init_ms=p90,
            source="manual",
            created_at=end,
        )

    return factory
