"""Whole-second time handling for store keys and external race ids.

Every timestamp is truncated to the second before it becomes part of a key,
so range conditions over ``session#<unix>`` style sort keys stay exact.
"""

from __future__ import annotations

import math
from datetime import datetime, timezone


def to_unix_seconds(t: datetime) -> int:
    """Whole seconds since the epoch, truncating any sub-second part."""
    if t.tzinfo is None:
        t = t.replace(tzinfo=timezone.utc)
    return math.floor(t.timestamp())


def from_unix_seconds(seconds: int) -> datetime:
    return datetime.fromtimestamp(seconds, tz=timezone.utc)


def driver_race_id_from_time(t: datetime) -> int:
    """External race id for a driver's race starting at ``t``.

    Race ids are scoped to one driver; two drivers may share an id.
    """
    return to_unix_seconds(t)


def time_from_driver_race_id(race_id: int) -> datetime:
    """Start time (UTC) of the race with the given driver race id."""
    return from_unix_seconds(race_id)
