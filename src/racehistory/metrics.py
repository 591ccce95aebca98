"""Operational metrics emitted by the client and the ingestion pipeline."""

from __future__ import annotations

from typing import Any, Protocol

UPSTREAM_RATELIMIT_REMAINING = "upstream_ratelimit_remaining"
DRIVER_SESSIONS_INGESTED = "driver_sessions_ingested"
JOURNAL_ENTRIES_CREATED = "journal_entries_created"


class MetricsEmitter(Protocol):
    def emit_gauge(self, name: str, value: float) -> None: ...

    def emit_count(self, name: str, count: int) -> None: ...


class NoopMetrics:
    """Emitter that drops everything. Used in tests and local runs."""

    def emit_gauge(self, name: str, value: float) -> None:
        return None

    def emit_count(self, name: str, count: int) -> None:
        return None


class CloudWatchMetrics:
    """Emitter backed by CloudWatch ``PutMetricData``."""

    def __init__(self, client: Any, namespace: str) -> None:
        self._client = client
        self._namespace = namespace

    def _put(self, name: str, value: float) -> None:
        self._client.put_metric_data(
            Namespace=self._namespace,
            MetricData=[{"MetricName": name, "Value": value, "Unit": "Count"}],
        )

    def emit_gauge(self, name: str, value: float) -> None:
        self._put(name, float(value))

    def emit_count(self, name: str, count: int) -> None:
        self._put(name, float(count))
