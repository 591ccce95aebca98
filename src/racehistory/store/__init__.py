"""Persistent single-table store."""

from racehistory.store.dynamo import DynamoStore, translate_error
from racehistory.store.entities import (
    Driver,
    DriverNote,
    DriverSession,
    GlobalCounters,
    RaceJournalEntry,
    Session,
    SessionCarClass,
    SessionCarClassCar,
    SessionDataInsertion,
    SessionDriver,
    SessionDriverLap,
    Track,
    WebSocketConnection,
)
from racehistory.store.race_id import driver_race_id_from_time, time_from_driver_race_id

__all__ = [
    "Driver",
    "DriverNote",
    "DriverSession",
    "DynamoStore",
    "GlobalCounters",
    "RaceJournalEntry",
    "Session",
    "SessionCarClass",
    "SessionCarClassCar",
    "SessionDataInsertion",
    "SessionDriver",
    "SessionDriverLap",
    "Track",
    "WebSocketConnection",
    "driver_race_id_from_time",
    "time_from_driver_race_id",
    "translate_error",
]
