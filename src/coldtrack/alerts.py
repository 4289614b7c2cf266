"""
Alert threshold evaluation for fresh metrics snapshots.
Opens, updates and resolves p90 init-time and cold-ratio alerts.
"""

from __future__ import annotations

import json
import logging
import uuid
from collections.abc import Callable, Iterable
from dataclasses import asdict, replace
from datetime import datetime, timezone

import boto3

from coldtrack.models import (
    Alert,
    AlertKey,
    AlertSeverity,
    NotificationPayload,
)
from coldtrack.stats import round_half_up

logger = logging.getLogger(__name__)

METRIC_P90_INIT = "p90_init"
METRIC_COLD_RATIO = "cold_ratio"

DEFAULT_P90_THRESHOLD_MS = 2000
DEFAULT_COLD_RATIO_THRESHOLD = 0.10


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class LoggingNotifier:
    """Writes notifications to the log; the default when nothing else is wired."""

    def notify(self, org_id: str | None, payload: NotificationPayload) -> None:
        logger.warning(f"[{payload.severity}] {payload.title} (org {org_id}): {payload.message}")


class SnsNotifier:
    """Publishes notifications to an SNS topic as JSON."""

    def __init__(self, topic_arn: str, sns_client=None, region: str | None = None):
        self.topic_arn = topic_arn
        self.sns_client = sns_client or boto3.client("sns", region_name=region)

    def notify(self, org_id: str | None, payload: NotificationPayload) -> None:
        message = json.dumps({"orgId": org_id, **asdict(payload)}, default=str)
        # SNS subjects are capped at 100 characters
        self.sns_client.publish(
            TopicArn=self.topic_arn,
            Subject=payload.title[:100],
            Message=message,
        )


class CompositeNotifier:
    """Fans a notification out to several notifiers; one failing does not stop the rest."""

    def __init__(self, notifiers: Iterable):
        self.notifiers = list(notifiers)

    def notify(self, org_id: str | None, payload: NotificationPayload) -> None:
        for notifier in self.notifiers:
            try:
                notifier.notify(org_id, payload)
            except Exception:
                logger.exception(f"Notification via {type(notifier).__name__} failed")


class AlertEvaluator:
    """
    Compares a snapshot against thresholds and keeps alert records current.

    Both checks are idempotent: raising an already open alert updates it in
    place, and resolving a key with nothing open is a no-op.
    """

    def __init__(
        self,
        store,
        notifier=None,
        p90_threshold_ms: float = DEFAULT_P90_THRESHOLD_MS,
        cold_ratio_threshold: float = DEFAULT_COLD_RATIO_THRESHOLD,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.notifier = notifier or LoggingNotifier()
        self.p90_threshold_ms = p90_threshold_ms
        self.cold_ratio_threshold = cold_ratio_threshold
        self.clock = clock

    @classmethod
    def from_settings(cls, store, settings, notifier=None) -> AlertEvaluator:
        return cls(
            store,
            notifier=notifier,
            p90_threshold_ms=settings.p90_threshold_ms,
            cold_ratio_threshold=settings.cold_ratio_threshold,
        )

    def evaluate(
        self,
        function_id: str,
        org_id: str | None,
        region: str,
        cold_count: int,
        warm_count: int,
        p90_init_ms: float | None = None,
    ) -> None:
        """Run the p90 latency and cold ratio checks for one function/region."""
        self.check_p90_latency(function_id, org_id, region, p90_init_ms)
        self.check_cold_ratio(function_id, org_id, region, cold_count, warm_count)

    def check_p90_latency(
        self, function_id: str, org_id: str | None, region: str, p90_init_ms: float | None
    ) -> None:
        key = AlertKey(function_id, region, METRIC_P90_INIT)
        if not p90_init_ms:
            self.resolve(key)
            return

        if p90_init_ms > self.p90_threshold_ms:
            self.raise_alert(
                key,
                org_id=org_id,
                severity=AlertSeverity.CRITICAL,
                message=(
                    f"P90 init time {_format_number(p90_init_ms)}ms exceeds "
                    f"{_format_number(self.p90_threshold_ms)}ms"
                ),
                observed_value=p90_init_ms,
                threshold=self.p90_threshold_ms,
            )
        else:
            self.resolve(key)

    def check_cold_ratio(
        self, function_id: str, org_id: str | None, region: str, cold_count: int, warm_count: int
    ) -> None:
        key = AlertKey(function_id, region, METRIC_COLD_RATIO)
        total = cold_count + warm_count
        if total == 0:
            self.resolve(key)
            return

        # Compare raw fractions, store rounded percentages
        ratio = cold_count / total
        if ratio > self.cold_ratio_threshold:
            self.raise_alert(
                key,
                org_id=org_id,
                severity=AlertSeverity.WARNING,
                message=(
                    f"Cold start ratio {ratio * 100:.1f}% exceeds "
                    f"{self.cold_ratio_threshold * 100:.1f}%"
                ),
                observed_value=round_half_up(ratio * 100),
                threshold=round_half_up(self.cold_ratio_threshold * 100),
            )
        else:
            self.resolve(key)

    def raise_alert(
        self,
        key: AlertKey,
        org_id: str | None,
        severity: AlertSeverity,
        message: str,
        observed_value: float | None,
        threshold: float | None,
    ) -> Alert:
        """
        Open an alert for the key, or update the one already open.

        Only a newly opened alert triggers a notification.
        """
        now = self.clock()
        existing = self.store.find_open(key)
        if existing is not None:
            updated = replace(
                existing,
                message=message,
                observed_value=observed_value,
                threshold=threshold,
                updated_at=now,
            )
            self.store.update(updated)
            logger.info(f"Updated open {key.metric} alert {existing.id} for {key.function_id}/{key.region}")
            return updated

        alert = self.store.create(
            Alert(
                id=str(uuid.uuid4()),
                function_id=key.function_id,
                org_id=org_id,
                region=key.region,
                metric=key.metric,
                severity=severity,
                message=message,
                observed_value=observed_value,
                threshold=threshold,
                created_at=now,
                updated_at=now,
            )
        )
        logger.info(f"Opened {key.metric} alert {alert.id} for {key.function_id}/{key.region}: {message}")
        self._notify(alert)
        return alert

    def resolve(self, key: AlertKey) -> int:
        """Resolve every open alert for the key; return the number resolved."""
        resolved = self.store.resolve_open(key, self.clock())
        if resolved:
            logger.info(f"Resolved {resolved} {key.metric} alert(s) for {key.function_id}/{key.region}")
        return resolved

    def _notify(self, alert: Alert) -> None:
        payload = NotificationPayload(
            title=f"Lambda alert ({alert.metric})",
            message=alert.message,
            severity=alert.severity.value,
            data={
                "functionId": alert.function_id,
                "alertId": alert.id,
                "region": alert.region,
            },
        )
        try:
            self.notifier.notify(alert.org_id, payload)
        except Exception:
            logger.exception(f"Notification dispatch failed for alert {alert.id}")


def _format_number(value: float) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)
