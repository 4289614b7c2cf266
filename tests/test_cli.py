"""Tests for the command-line interface."""

import pytest
from click.testing import CliRunner

from coldtrack import refresh as refresh_module
from coldtrack.cli import format_ms, main
from coldtrack.cloudwatch import InsightsQueryClient
from coldtrack.models import AssumedCredentials
from tests.conftest import FakeLogsClient, report_row, result_cells

ROLE_ARGS = [
    "--role-arn", "arn:aws:iam::123456789012:role/coldtrack-reader",
    "--external-id", "ext-123",
]


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def fake_aws(monkeypatch):
    """Replace STS and the Logs client with fakes; returns the logs client."""
    logs = FakeLogsClient([{
        "status": "Complete",
        "results": result_cells(
            report_row("2023-11-14 22:00:03.000", 150),
            report_row("2023-11-14 22:00:02.000", 450),
            report_row("2023-11-14 22:00:01.000"),
        ),
    }])
    regions = []

    def fake_assume_role(role_arn, external_id, region=None):
        return AssumedCredentials("ASIAEXAMPLEEXAMPLE12", "secret", "token")

    def fake_from_credentials(credentials, region, **kwargs):
        regions.append(region)
        return InsightsQueryClient(logs, **kwargs)

    monkeypatch.setattr(refresh_module, "assume_role", fake_assume_role)
    monkeypatch.setattr(InsightsQueryClient, "from_credentials", fake_from_credentials)
    logs.regions = regions
    return logs


@pytest.mark.unit
class TestWindowCommand:
    """Test the window command."""

    def test_window(self, runner):
        result = runner.invoke(main, ["window", "15m"])

        assert result.exit_code == 0
        assert "900 seconds" in result.output

    def test_default_window(self, runner):
        result = runner.invoke(main, ["window"])

        assert result.exit_code == 0
        assert "604800 seconds" in result.output

    @pytest.mark.parametrize("value", ["0m", "15x", "abc"])
    def test_invalid_range(self, runner, value):
        result = runner.invoke(main, ["window", value])

        assert result.exit_code == 2
        assert "Invalid range" in result.output


@pytest.mark.unit
class TestQueryCommand:
    """Test the query command."""

    def test_prints_query(self, runner):
        result = runner.invoke(main, ["query", "checkout-api", "--limit", "50"])

        assert result.exit_code == 0
        assert "/aws/lambda/checkout-api" in result.output
        assert "| filter @message like /REPORT/" in result.output
        assert "| limit 50" in result.output

    def test_limit_bounds(self, runner):
        result = runner.invoke(main, ["query", "checkout-api", "--limit", "20000"])

        assert result.exit_code == 2


@pytest.mark.unit
class TestRefreshCommand:
    """Test the refresh command."""

    def test_refresh(self, runner, fake_aws):
        result = runner.invoke(
            main, ["refresh", "checkout-api", *ROLE_ARGS, "--region", "us-east-1", "--range", "1h"]
        )

        assert result.exit_code == 0, result.output
        assert "Cold Starts" in result.output
        assert "66.7%" in result.output
        assert "cold_ratio" in result.output
        assert fake_aws.regions == ["us-east-1"]
        assert fake_aws.start_calls[0]["logGroupName"] == "/aws/lambda/checkout-api"

    def test_refresh_threshold_override(self, runner, fake_aws):
        result = runner.invoke(
            main,
            [
                "refresh", "checkout-api", *ROLE_ARGS, "--region", "us-east-1",
                "--cold-ratio-threshold", "0.9",
            ],
        )

        assert result.exit_code == 0, result.output
        assert "No thresholds exceeded." in result.output

    def test_export_csv(self, runner, fake_aws, tmp_path):
        output = tmp_path / "snapshot.csv"

        result = runner.invoke(
            main,
            [
                "refresh", "checkout-api", *ROLE_ARGS, "--region", "us-east-1",
                "--export", "csv", "-o", str(output),
            ],
        )

        assert result.exit_code == 0, result.output
        lines = output.read_text().splitlines()
        assert lines[0].startswith("period_start,period_end,region")
        assert ",us-east-1,2,1,150,450,450,manual," in lines[1]

    def test_export_requires_output(self, runner, fake_aws):
        result = runner.invoke(
            main, ["refresh", "checkout-api", *ROLE_ARGS, "--region", "us-east-1", "--export", "csv"]
        )

        assert result.exit_code == 2

    def test_missing_region(self, runner, fake_aws):
        result = runner.invoke(main, ["refresh", "checkout-api", *ROLE_ARGS])

        assert result.exit_code == 1
        assert "region missing" in result.output
        assert fake_aws.start_calls == []

    def test_requires_role(self, runner):
        result = runner.invoke(main, ["refresh", "checkout-api", "--region", "us-east-1"])

        assert result.exit_code == 2


@pytest.mark.unit
class TestCollectCommand:
    """Test the collect command."""

    def test_collect(self, runner, fake_aws):
        result = runner.invoke(
            main,
            [
                "collect", "checkout-api", "query-1", *ROLE_ARGS, "--region", "us-east-1",
                "--start", "1699999100", "--end", "1700000000",
            ],
        )

        assert result.exit_code == 0, result.output
        assert "Cold Starts" in result.output
        assert "2023-11-14 21:58:20 to 2023-11-14 22:13:20 UTC" in result.output
        assert fake_aws.start_calls == []
        assert fake_aws.result_calls == ["query-1"]

    def test_collect_requires_window(self, runner, fake_aws):
        result = runner.invoke(
            main, ["collect", "checkout-api", "query-1", *ROLE_ARGS, "--region", "us-east-1"]
        )

        assert result.exit_code == 2
        assert fake_aws.result_calls == []


@pytest.mark.unit
@pytest.mark.parametrize(
    "ms,expected",
    [(None, "-"), (150, "150ms"), (999.4, "999ms"), (1500, "1.50s")],
)
def test_format_ms(ms, expected):
    assert format_ms(ms) == expected
