"""Domain entities persisted by the store."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta


@dataclass
class Driver:
    driver_id: int
    driver_name: str
    member_since: datetime
    first_login: datetime
    last_login: datetime
    login_count: int = 0
    session_count: int = 0
    # Exclusive upper bound of ingested races; only ever moves forward.
    races_ingested_to: datetime | None = None
    # Derived from a live ingestion lock; never written on the info record.
    ingestion_blocked_until: datetime | None = None
    entitlements: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class Track:
    track_id: int
    name: str


@dataclass(frozen=True)
class GlobalCounters:
    drivers: int = 0
    tracks: int = 0
    notes: int = 0
    sessions: int = 0
    laps: int = 0
    journal_entries: int = 0


@dataclass(frozen=True)
class SessionCarClassCar:
    subsession_id: int
    car_class_id: int
    car_id: int


@dataclass
class SessionCarClass:
    subsession_id: int
    car_class_id: int
    strength_of_field: int
    number_of_entries: int
    cars: list[SessionCarClassCar] = field(default_factory=list)


@dataclass
class Session:
    subsession_id: int
    track_id: int
    series_id: int
    series_name: str
    license_category: str
    start_time: datetime
    car_classes: list[SessionCarClass] = field(default_factory=list)


@dataclass(frozen=True)
class SessionDriver:
    subsession_id: int
    driver_id: int
    car_id: int
    start_position: int = 0
    start_position_in_class: int = 0
    finish_position: int = 0
    finish_position_in_class: int = 0
    incidents: int = 0
    old_cpi: float = 0.0
    new_cpi: float = 0.0
    old_irating: int = 0
    new_irating: int = 0
    old_license_level: int = 0
    new_license_level: int = 0
    old_sub_level: int = 0
    new_sub_level: int = 0
    reason_out: str = ""
    ai: bool = False


@dataclass(frozen=True)
class SessionDriverLap:
    subsession_id: int
    driver_id: int
    lap_number: int
    lap_time: timedelta | None
    flags: int = 0
    incident: bool = False
    lap_events: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class DriverSession:
    """Driver-scoped projection of one race, keyed by start time."""

    driver_id: int
    subsession_id: int
    track_id: int
    car_id: int
    series_id: int
    series_name: str
    start_time: datetime
    start_position: int = 0
    start_position_in_class: int = 0
    finish_position: int = 0
    finish_position_in_class: int = 0
    incidents: int = 0
    old_cpi: float = 0.0
    new_cpi: float = 0.0
    old_irating: int = 0
    new_irating: int = 0
    old_license_level: int = 0
    new_license_level: int = 0
    old_sub_level: int = 0
    new_sub_level: int = 0
    reason_out: str = ""


@dataclass(frozen=True)
class DriverNote:
    driver_id: int
    timestamp: datetime
    session_id: int
    lap_number: int
    is_mistake: bool
    category: str
    notes: str


@dataclass
class RaceJournalEntry:
    driver_id: int
    race_id: int
    notes: str
    tags: list[str] = field(default_factory=list)
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass(frozen=True)
class WebSocketConnection:
    driver_id: int
    connection_id: str
    connected_at: datetime | None = None


@dataclass
class SessionDataInsertion:
    """Everything written for one race in a single persistence call."""

    session_entries: list[Session] = field(default_factory=list)
    session_driver_entries: list[SessionDriver] = field(default_factory=list)
    session_driver_lap_entries: list[SessionDriverLap] = field(default_factory=list)
    driver_session_entries: list[DriverSession] = field(default_factory=list)
