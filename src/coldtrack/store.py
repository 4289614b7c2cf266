"""In-memory stores for function records, snapshots and alerts."""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime

from coldtrack.models import (
    AccountRecord,
    Alert,
    AlertKey,
    AlertStatus,
    FunctionRecord,
    MetricsSnapshot,
)


class InMemoryDirectory:
    """Function and AWS account connection lookup."""

    def __init__(self):
        self._functions: dict[str, FunctionRecord] = {}
        self._accounts: dict[str, AccountRecord] = {}

    def add_function(self, function: FunctionRecord) -> None:
        self._functions[function.id] = function

    def add_account(self, account: AccountRecord) -> None:
        self._accounts[account.id] = account

    def get_function(self, function_id: str) -> FunctionRecord | None:
        return self._functions.get(function_id)

    def get_account(self, account_id: str) -> AccountRecord | None:
        return self._accounts.get(account_id)


class InMemorySnapshotStore:
    """Append-only snapshot storage queried by function, window and region."""

    def __init__(self):
        self._snapshots: list[MetricsSnapshot] = []

    def add(self, snapshot: MetricsSnapshot) -> MetricsSnapshot:
        self._snapshots.append(snapshot)
        return snapshot

    def list(
        self,
        function_id: str,
        start: datetime | None = None,
        end: datetime | None = None,
        region: str | None = None,
    ) -> list[MetricsSnapshot]:
        """
        Return snapshots for a function whose period lies inside [start, end].

        Results are ordered oldest first by creation time.
        """
        matches = [
            s
            for s in self._snapshots
            if s.function_id == function_id
            and (start is None or s.period_start >= start)
            and (end is None or s.period_end <= end)
            and (region is None or s.region == region)
        ]
        return sorted(matches, key=lambda s: s.created_at)

    def latest(
        self,
        function_id: str,
        start: datetime | None = None,
        end: datetime | None = None,
        region: str | None = None,
    ) -> MetricsSnapshot | None:
        matches = self.list(function_id, start, end, region)
        return matches[-1] if matches else None

    def regions(self, function_id: str) -> list[str]:
        """Return the regions with at least one snapshot, sorted."""
        return sorted({s.region for s in self._snapshots if s.function_id == function_id})


class InMemoryAlertStore:
    """Alert storage keeping at most one open alert per key."""

    def __init__(self):
        self._alerts: dict[str, Alert] = {}

    def find_open(self, key: AlertKey) -> Alert | None:
        for alert in self._alerts.values():
            if alert.is_open and alert.key == key:
                return alert
        return None

    def create(self, alert: Alert) -> Alert:
        if self.find_open(alert.key) is not None:
            raise ValueError(f"An open alert already exists for {alert.key}")
        self._alerts[alert.id] = alert
        return alert

    def update(self, alert: Alert) -> Alert:
        if alert.id not in self._alerts:
            raise KeyError(alert.id)
        self._alerts[alert.id] = alert
        return alert

    def resolve_open(self, key: AlertKey, resolved_at: datetime) -> int:
        """Mark every open alert for the key resolved; return how many changed."""
        resolved = 0
        for alert_id, alert in list(self._alerts.items()):
            if alert.is_open and alert.key == key:
                self._alerts[alert_id] = replace(
                    alert, status=AlertStatus.RESOLVED, resolved_at=resolved_at
                )
                resolved += 1
        return resolved

    def list(self, function_id: str | None = None, status: AlertStatus | None = None) -> list[Alert]:
        """Return alerts newest first, optionally filtered."""
        alerts = [
            a
            for a in self._alerts.values()
            if (function_id is None or a.function_id == function_id)
            and (status is None or a.status is status)
        ]
        return sorted(alerts, key=lambda a: a.created_at, reverse=True)
