"""Series search result model (one row per subsession the member took part in)."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict


class TrackRef(BaseModel):
    """Track reference embedded in result payloads."""

    model_config = ConfigDict(frozen=True)

    track_id: int
    track_name: str | None = None
    config_name: str | None = None


class SeriesResult(BaseModel):
    """A single race/practice/qualifying entry from the series search endpoint."""

    model_config = ConfigDict(frozen=True)

    subsession_id: int
    session_id: int | None = None
    start_time: datetime
    end_time: datetime

    license_category_id: int | None = None
    license_category: str | None = None

    event_type: int | None = None
    event_type_name: str | None = None
    num_drivers: int | None = None
    driver_changes: bool = False

    cust_id: int | None = None
    starting_position: int | None = None
    finish_position: int | None = None
    starting_position_in_class: int | None = None
    finish_position_in_class: int | None = None
    laps_complete: int | None = None
    laps_led: int | None = None
    incidents: int | None = None

    car_id: int | None = None
    car_name: str | None = None
    car_class_id: int | None = None
    car_class_name: str | None = None

    track: TrackRef | None = None

    official_session: bool | None = None
    series_id: int | None = None
    series_name: str | None = None
    season_id: int | None = None
    season_year: int | None = None
    season_quarter: int | None = None
    race_week_num: int | None = None

    event_strength_of_field: int | None = None
    champ_points: int | None = None
