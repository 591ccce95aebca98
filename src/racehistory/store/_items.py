"""Key space and item mapping for the single-table store.

Items are built as plain Python dicts and converted to DynamoDB attribute
values at the client boundary with boto3's type (de)serializers.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any

from boto3.dynamodb.types import TypeDeserializer, TypeSerializer

from racehistory.store.entities import (
    Driver,
    DriverNote,
    DriverSession,
    GlobalCounters,
    RaceJournalEntry,
    Session,
    SessionCarClass,
    SessionCarClassCar,
    SessionDriver,
    SessionDriverLap,
    Track,
    WebSocketConnection,
)
from racehistory.store.race_id import from_unix_seconds, to_unix_seconds

PARTITION_KEY = "partition_key"
SORT_KEY = "sort_key"

INFO_SORT_KEY = "info"
GLOBAL_PARTITION = "global"
COUNTERS_SORT_KEY = "counters"
INGESTION_LOCK_SORT_KEY = "ingestion_lock"

SESSION_PREFIX = "session#"
NOTE_PREFIX = "note#"
JOURNAL_PREFIX = "journal#"
WEBSOCKET_PREFIX = "ws#"
CAR_CLASS_PREFIX = "car_class#"
SESSION_DRIVER_PREFIX = "drivers#driver#"
CAR_MARKER = "#car#"

WEBSOCKET_TTL = timedelta(hours=24)

_serializer = TypeSerializer()
_deserializer = TypeDeserializer()


# ── Keys ───────────────────────────────────────────────────────


def driver_partition(driver_id: int) -> str:
    return f"driver#{driver_id}"


def track_partition(track_id: int) -> str:
    return f"track#{track_id}"


def session_partition(subsession_id: int) -> str:
    return f"session#{subsession_id}"


def websocket_partition(connection_id: str) -> str:
    return f"websocket#{connection_id}"


def driver_session_sort_key(start_time: datetime) -> str:
    return f"{SESSION_PREFIX}{to_unix_seconds(start_time)}"


def note_sort_key(timestamp: datetime) -> str:
    return f"{NOTE_PREFIX}{to_unix_seconds(timestamp)}"


def journal_sort_key(race_id: int) -> str:
    return f"{JOURNAL_PREFIX}{race_id}"


def websocket_sort_key(connection_id: str) -> str:
    return f"{WEBSOCKET_PREFIX}{connection_id}"


def car_class_sort_key(car_class_id: int) -> str:
    return f"{CAR_CLASS_PREFIX}{car_class_id}"


def car_class_car_sort_key(car_class_id: int, car_id: int) -> str:
    return f"{CAR_CLASS_PREFIX}{car_class_id}{CAR_MARKER}{car_id}"


def session_driver_sort_key(driver_id: int) -> str:
    return f"{SESSION_DRIVER_PREFIX}{driver_id}"


def laps_prefix(driver_id: int) -> str:
    return f"laps#driver#{driver_id}#"


def lap_sort_key(driver_id: int, lap_number: int) -> str:
    # Zero padded so laps come back in lap order.
    return f"{laps_prefix(driver_id)}{lap_number:05d}"


def key(partition: str, sort: str) -> dict[str, str]:
    return {PARTITION_KEY: partition, SORT_KEY: sort}


# ── Attribute values ───────────────────────────────────────────


def _to_storable(value: Any) -> Any:
    if isinstance(value, bool):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    if isinstance(value, dict):
        return {k: _to_storable(v) for k, v in value.items() if v is not None}
    if isinstance(value, list):
        return [_to_storable(v) for v in value]
    return value


def serialize(item: dict[str, Any]) -> dict[str, Any]:
    """Convert a plain item to DynamoDB's attribute-value form. None values are dropped."""
    return {k: _serializer.serialize(_to_storable(v)) for k, v in item.items() if v is not None}


def serialize_value(value: Any) -> dict[str, Any]:
    return _serializer.serialize(_to_storable(value))


def deserialize(raw: dict[str, Any]) -> dict[str, Any]:
    return {k: _deserializer.deserialize(v) for k, v in raw.items()}


def _int(item: dict[str, Any], name: str, default: int = 0) -> int:
    value = item.get(name)
    return default if value is None else int(value)


def _float(item: dict[str, Any], name: str) -> float:
    value = item.get(name)
    return 0.0 if value is None else float(value)


def _time(item: dict[str, Any], name: str) -> datetime | None:
    value = item.get(name)
    return None if value is None else from_unix_seconds(int(value))


def _unix(t: datetime | None) -> int | None:
    return None if t is None else to_unix_seconds(t)


# ── Drivers, tracks, counters ──────────────────────────────────


def driver_item(driver: Driver) -> dict[str, Any]:
    return {
        **key(driver_partition(driver.driver_id), INFO_SORT_KEY),
        "driver_id": driver.driver_id,
        "driver_name": driver.driver_name,
        "member_since": _unix(driver.member_since),
        "first_login": _unix(driver.first_login),
        "last_login": _unix(driver.last_login),
        "login_count": driver.login_count,
        "session_count": driver.session_count,
        "races_ingested_to": _unix(driver.races_ingested_to),
        "entitlements": list(driver.entitlements) or None,
    }


def driver_from_item(item: dict[str, Any]) -> Driver:
    return Driver(
        driver_id=_int(item, "driver_id"),
        driver_name=item.get("driver_name", ""),
        member_since=_time(item, "member_since"),  # type: ignore[arg-type]
        first_login=_time(item, "first_login"),  # type: ignore[arg-type]
        last_login=_time(item, "last_login"),  # type: ignore[arg-type]
        login_count=_int(item, "login_count"),
        session_count=_int(item, "session_count"),
        races_ingested_to=_time(item, "races_ingested_to"),
        entitlements=list(item.get("entitlements", [])),
    )


def track_item(track: Track) -> dict[str, Any]:
    return {
        **key(track_partition(track.track_id), INFO_SORT_KEY),
        "track_id": track.track_id,
        "name": track.name,
    }


def track_from_item(item: dict[str, Any]) -> Track:
    return Track(track_id=_int(item, "track_id"), name=item.get("name", ""))


def counters_from_item(item: dict[str, Any]) -> GlobalCounters:
    return GlobalCounters(
        drivers=_int(item, "drivers"),
        tracks=_int(item, "tracks"),
        notes=_int(item, "notes"),
        sessions=_int(item, "sessions"),
        laps=_int(item, "laps"),
        journal_entries=_int(item, "journal_entries"),
    )


# ── Sessions ───────────────────────────────────────────────────


def session_item(session: Session) -> dict[str, Any]:
    return {
        **key(session_partition(session.subsession_id), INFO_SORT_KEY),
        "subsession_id": session.subsession_id,
        "track_id": session.track_id,
        "series_id": session.series_id,
        "series_name": session.series_name,
        "license_category": session.license_category,
        "start_time": _unix(session.start_time),
    }


def session_from_item(item: dict[str, Any]) -> Session:
    return Session(
        subsession_id=_int(item, "subsession_id"),
        track_id=_int(item, "track_id"),
        series_id=_int(item, "series_id"),
        series_name=item.get("series_name", ""),
        license_category=item.get("license_category", ""),
        start_time=_time(item, "start_time"),  # type: ignore[arg-type]
    )


def car_class_item(car_class: SessionCarClass) -> dict[str, Any]:
    return {
        **key(session_partition(car_class.subsession_id), car_class_sort_key(car_class.car_class_id)),
        "subsession_id": car_class.subsession_id,
        "car_class_id": car_class.car_class_id,
        "strength_of_field": car_class.strength_of_field,
        "number_of_entries": car_class.number_of_entries,
    }


def car_class_from_item(item: dict[str, Any]) -> SessionCarClass:
    return SessionCarClass(
        subsession_id=_int(item, "subsession_id"),
        car_class_id=_int(item, "car_class_id"),
        strength_of_field=_int(item, "strength_of_field"),
        number_of_entries=_int(item, "number_of_entries"),
    )


def car_class_car_item(car: SessionCarClassCar) -> dict[str, Any]:
    return {
        **key(session_partition(car.subsession_id), car_class_car_sort_key(car.car_class_id, car.car_id)),
        "subsession_id": car.subsession_id,
        "car_class_id": car.car_class_id,
        "car_id": car.car_id,
    }


def car_class_car_from_item(item: dict[str, Any]) -> SessionCarClassCar:
    return SessionCarClassCar(
        subsession_id=_int(item, "subsession_id"),
        car_class_id=_int(item, "car_class_id"),
        car_id=_int(item, "car_id"),
    )


_RESULT_FIELDS = (
    "start_position",
    "start_position_in_class",
    "finish_position",
    "finish_position_in_class",
    "incidents",
    "old_irating",
    "new_irating",
    "old_license_level",
    "new_license_level",
    "old_sub_level",
    "new_sub_level",
)


def _result_attrs(entry: SessionDriver | DriverSession) -> dict[str, Any]:
    attrs: dict[str, Any] = {name: getattr(entry, name) for name in _RESULT_FIELDS}
    attrs["old_cpi"] = entry.old_cpi
    attrs["new_cpi"] = entry.new_cpi
    attrs["reason_out"] = entry.reason_out
    return attrs


def _result_kwargs(item: dict[str, Any]) -> dict[str, Any]:
    kwargs: dict[str, Any] = {name: _int(item, name) for name in _RESULT_FIELDS}
    kwargs["old_cpi"] = _float(item, "old_cpi")
    kwargs["new_cpi"] = _float(item, "new_cpi")
    kwargs["reason_out"] = item.get("reason_out", "")
    return kwargs


def session_driver_item(driver: SessionDriver) -> dict[str, Any]:
    return {
        **key(session_partition(driver.subsession_id), session_driver_sort_key(driver.driver_id)),
        "subsession_id": driver.subsession_id,
        "driver_id": driver.driver_id,
        "car_id": driver.car_id,
        "ai": driver.ai,
        **_result_attrs(driver),
    }


def session_driver_from_item(item: dict[str, Any]) -> SessionDriver:
    return SessionDriver(
        subsession_id=_int(item, "subsession_id"),
        driver_id=_int(item, "driver_id"),
        car_id=_int(item, "car_id"),
        ai=bool(item.get("ai", False)),
        **_result_kwargs(item),
    )


def lap_item(lap: SessionDriverLap) -> dict[str, Any]:
    lap_time_us = None if lap.lap_time is None else lap.lap_time // timedelta(microseconds=1)
    return {
        **key(session_partition(lap.subsession_id), lap_sort_key(lap.driver_id, lap.lap_number)),
        "subsession_id": lap.subsession_id,
        "driver_id": lap.driver_id,
        "lap_number": lap.lap_number,
        "lap_time_us": lap_time_us,
        "flags": lap.flags,
        "incident": lap.incident,
        "lap_events": list(lap.lap_events),
    }


def lap_from_item(item: dict[str, Any]) -> SessionDriverLap:
    lap_time_us = item.get("lap_time_us")
    return SessionDriverLap(
        subsession_id=_int(item, "subsession_id"),
        driver_id=_int(item, "driver_id"),
        lap_number=_int(item, "lap_number"),
        lap_time=None if lap_time_us is None else timedelta(microseconds=int(lap_time_us)),
        flags=_int(item, "flags"),
        incident=bool(item.get("incident", False)),
        lap_events=list(item.get("lap_events", [])),
    )


def driver_session_item(entry: DriverSession) -> dict[str, Any]:
    return {
        **key(driver_partition(entry.driver_id), driver_session_sort_key(entry.start_time)),
        "driver_id": entry.driver_id,
        "subsession_id": entry.subsession_id,
        "track_id": entry.track_id,
        "car_id": entry.car_id,
        "series_id": entry.series_id,
        "series_name": entry.series_name,
        "start_time": _unix(entry.start_time),
        **_result_attrs(entry),
    }


def driver_session_from_item(item: dict[str, Any]) -> DriverSession:
    return DriverSession(
        driver_id=_int(item, "driver_id"),
        subsession_id=_int(item, "subsession_id"),
        track_id=_int(item, "track_id"),
        car_id=_int(item, "car_id"),
        series_id=_int(item, "series_id"),
        series_name=item.get("series_name", ""),
        start_time=_time(item, "start_time"),  # type: ignore[arg-type]
        **_result_kwargs(item),
    )


# ── Notes, journal, connections ────────────────────────────────


def note_item(note: DriverNote) -> dict[str, Any]:
    return {
        **key(driver_partition(note.driver_id), note_sort_key(note.timestamp)),
        "driver_id": note.driver_id,
        "timestamp": _unix(note.timestamp),
        "session_id": note.session_id,
        "lap_number": note.lap_number,
        "is_mistake": note.is_mistake,
        "category": note.category,
        "notes": note.notes,
    }


def note_from_item(item: dict[str, Any]) -> DriverNote:
    return DriverNote(
        driver_id=_int(item, "driver_id"),
        timestamp=_time(item, "timestamp"),  # type: ignore[arg-type]
        session_id=_int(item, "session_id"),
        lap_number=_int(item, "lap_number"),
        is_mistake=bool(item.get("is_mistake", False)),
        category=item.get("category", ""),
        notes=item.get("notes", ""),
    )


def journal_item(entry: RaceJournalEntry) -> dict[str, Any]:
    return {
        **key(driver_partition(entry.driver_id), journal_sort_key(entry.race_id)),
        "driver_id": entry.driver_id,
        "race_id": entry.race_id,
        "notes": entry.notes,
        "tags": list(entry.tags),
        "created_at": _unix(entry.created_at),
        "updated_at": _unix(entry.updated_at),
    }


def journal_from_item(item: dict[str, Any]) -> RaceJournalEntry:
    return RaceJournalEntry(
        driver_id=_int(item, "driver_id"),
        race_id=_int(item, "race_id"),
        notes=item.get("notes", ""),
        tags=list(item.get("tags", [])),
        created_at=_time(item, "created_at"),
        updated_at=_time(item, "updated_at"),
    )


def connection_items(connection: WebSocketConnection, now: datetime) -> list[dict[str, Any]]:
    """The two registry rows: one per driver partition, one per connection."""
    attrs = {
        "driver_id": connection.driver_id,
        "connection_id": connection.connection_id,
        "connected_at": _unix(connection.connected_at or now),
        "ttl": _unix(now + WEBSOCKET_TTL),
    }
    return [
        {**key(driver_partition(connection.driver_id), websocket_sort_key(connection.connection_id)), **attrs},
        {**key(websocket_partition(connection.connection_id), INFO_SORT_KEY), **attrs},
    ]


def connection_from_item(item: dict[str, Any]) -> WebSocketConnection:
    return WebSocketConnection(
        driver_id=_int(item, "driver_id"),
        connection_id=item.get("connection_id", ""),
        connected_at=_time(item, "connected_at"),
    )
