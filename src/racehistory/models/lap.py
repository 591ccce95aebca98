"""Lap data models."""

from __future__ import annotations

from datetime import datetime, timedelta

from pydantic import BaseModel, ConfigDict, Field

from racehistory.models.chunk import ChunkInfo


def lap_time_to_timedelta(lap_time: int) -> timedelta:
    """Convert an upstream lap time (ten-thousandths of a second) to a timedelta."""
    return timedelta(microseconds=lap_time * 100)


class Lap(BaseModel):
    """One lap's timing and event data."""

    model_config = ConfigDict(frozen=True)

    cust_id: int | None = None
    group_id: int | None = None
    lap_number: int
    flags: int = 0
    incident: bool = False
    session_time: int | None = None
    lap_time: int = -1
    personal_best_lap: bool = False
    lap_events: list[str] = Field(default_factory=list)

    @property
    def lap_timedelta(self) -> timedelta | None:
        """Lap time as a timedelta, or None when the lap has no valid time."""
        if self.lap_time < 0:
            return None
        return lap_time_to_timedelta(self.lap_time)


class LapDataResponse(BaseModel):
    """Lap data envelope. ``laps`` is filled from the chunk manifest."""

    model_config = ConfigDict(frozen=True)

    success: bool = True
    best_lap_num: int | None = None
    best_lap_time: int | None = None
    best_nlaps_num: int | None = None
    best_nlaps_time: int | None = None
    best_qual_lap_num: int | None = None
    best_qual_lap_time: int | None = None
    best_qual_lap_at: datetime | None = None
    last_updated: datetime | None = None
    group_id: int | None = None
    cust_id: int | None = None
    name: str | None = None
    car_id: int | None = None
    license_level: int | None = None
    chunk_info: ChunkInfo = Field(default_factory=ChunkInfo)
    laps: list[Lap] = Field(default_factory=list)
