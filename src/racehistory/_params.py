"""Query parameter builders for the upstream data API."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

# ISO-8601 with minute precision, as the search endpoints expect.
UPSTREAM_TIME_FORMAT = "%Y-%m-%dT%H:%MZ"

EVENT_TYPE_PRACTICE = 2
EVENT_TYPE_QUALIFY = 3
EVENT_TYPE_TIME_TRIAL = 4
EVENT_TYPE_RACE = 5


def format_upstream_time(value: datetime) -> str:
    """Format a datetime in UTC at minute precision. Naive values are taken as UTC."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime(UPSTREAM_TIME_FORMAT)


@dataclass(frozen=True)
class FinishRange:
    """Finish-time window for the series search endpoint.

    Usage:
        FinishRange(begin, end)  # produces: finish_range_begin=...&finish_range_end=...
    """

    begin: datetime
    end: datetime

    def to_params(self) -> list[tuple[str, str]]:
        """Convert this window to a list of (key, value) pairs."""
        return [
            ("finish_range_begin", format_upstream_time(self.begin)),
            ("finish_range_end", format_upstream_time(self.end)),
        ]


def _format_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (list, tuple)):
        return ",".join(str(v) for v in value)
    if isinstance(value, datetime):
        return format_upstream_time(value)
    return str(value)


def build_query_params(*ranges: FinishRange, **kwargs: Any) -> list[tuple[str, str]]:
    """Build a list of query parameter tuples.

    ``None`` values and empty sequences are skipped. Booleans render as
    ``true``/``false`` and sequences as comma-separated lists.

    Args:
        *ranges: FinishRange windows to expand into begin/end parameters.
        **kwargs: Plain parameters keyed by their upstream names.

    Returns:
        List of (key, value) tuples suitable for httpx params.
    """
    params: list[tuple[str, str]] = []
    for window in ranges:
        params.extend(window.to_params())
    for key, value in kwargs.items():
        if value is None:
            continue
        if isinstance(value, (list, tuple)) and not value:
            continue
        params.append((key, _format_value(value)))
    return params
