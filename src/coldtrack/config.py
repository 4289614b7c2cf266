"""Configuration for metrics refreshes and alert thresholds."""

from __future__ import annotations

import json
import os
from collections.abc import Mapping
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any

from coldtrack.errors import ConfigurationError

# Settings field -> environment variable
ENV_VARS = {
    "p90_threshold_ms": "ALERT_P90_THRESHOLD_MS",
    "cold_ratio_threshold": "ALERT_COLD_RATIO",
    "poll_interval_ms": "COLDTRACK_POLL_INTERVAL_MS",
    "query_timeout_ms": "COLDTRACK_QUERY_TIMEOUT_MS",
    "base_backoff_ms": "COLDTRACK_BASE_BACKOFF_MS",
    "max_backoff_ms": "COLDTRACK_MAX_BACKOFF_MS",
    "query_limit": "COLDTRACK_QUERY_LIMIT",
    "scheduled_range": "METRICS_REFRESH_RANGE",
}


@dataclass
class Settings:
    """Tunables for the query client, the refresher and the alert evaluator."""

    # Alert thresholds
    p90_threshold_ms: float = 2000
    cold_ratio_threshold: float = 0.10

    # Logs Insights polling
    poll_interval_ms: int = 2000
    query_timeout_ms: int = 60_000
    base_backoff_ms: int = 1000
    max_backoff_ms: int = 10_000
    query_limit: int = 10_000

    # Refresh defaults
    scheduled_range: str = "7d"

    def __post_init__(self):
        """Coerce and validate values after initialization."""
        try:
            self.p90_threshold_ms = float(self.p90_threshold_ms)
            self.cold_ratio_threshold = float(self.cold_ratio_threshold)
            self.poll_interval_ms = int(self.poll_interval_ms)
            self.query_timeout_ms = int(self.query_timeout_ms)
            self.base_backoff_ms = int(self.base_backoff_ms)
            self.max_backoff_ms = int(self.max_backoff_ms)
            self.query_limit = int(self.query_limit)
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid numeric setting: {e}") from e

        if self.p90_threshold_ms <= 0:
            raise ConfigurationError("p90_threshold_ms must be positive")
        if not 0 <= self.cold_ratio_threshold <= 1:
            raise ConfigurationError("cold_ratio_threshold must be between 0 and 1")
        if self.poll_interval_ms < 0 or self.query_timeout_ms <= 0:
            raise ConfigurationError("poll_interval_ms must be >= 0 and query_timeout_ms > 0")
        if self.base_backoff_ms <= 0 or self.max_backoff_ms < self.base_backoff_ms:
            raise ConfigurationError("backoff must satisfy 0 < base_backoff_ms <= max_backoff_ms")
        if not 1 <= self.query_limit <= 10_000:
            raise ConfigurationError("query_limit must be between 1 and 10000")

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Settings:
        """Build settings from a mapping, ignoring unknown keys."""
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None, base: Mapping[str, Any] | None = None) -> Settings:
        """
        Build settings from environment variables.

        Args:
            environ: Mapping to read instead of os.environ
            base: Values to start from before environment overrides

        Returns:
            Settings with environment values applied
        """
        environ = os.environ if environ is None else environ
        values = dict(base or {})
        for name, var in ENV_VARS.items():
            value = environ.get(var)
            if value not in (None, ""):
                values[name] = value
        return cls.from_dict(values)

    @classmethod
    def from_file(cls, path: str | Path, environ: Mapping[str, str] | None = None) -> Settings:
        """Load settings from a JSON file; environment variables take precedence."""
        path = Path(path)
        try:
            data = json.loads(path.read_text())
        except FileNotFoundError as e:
            raise ConfigurationError(f"Config file not found: {path}") from e
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"Invalid JSON in {path}: {e}") from e
        if not isinstance(data, dict):
            raise ConfigurationError(f"Config file {path} must contain a JSON object")
        return cls.from_env(environ, base=data)
