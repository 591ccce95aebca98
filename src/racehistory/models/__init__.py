"""Upstream data API models."""

from racehistory.models.catalog import CarAssets, CarInfo, TrackAssets, TrackInfo, TrackMapLayers
from racehistory.models.chunk import ChunkInfo, SearchResponse
from racehistory.models.lap import Lap, LapDataResponse
from racehistory.models.member import MemberInfo
from racehistory.models.series_result import SeriesResult, TrackRef
from racehistory.models.session_result import (
    CarClassCar,
    CarClassResult,
    DriverResult,
    SessionResult,
    SimSessionResult,
)
from racehistory.models.token import TokenResponse

__all__ = [
    "CarAssets",
    "CarClassCar",
    "CarClassResult",
    "CarInfo",
    "ChunkInfo",
    "DriverResult",
    "Lap",
    "LapDataResponse",
    "MemberInfo",
    "SearchResponse",
    "SeriesResult",
    "SessionResult",
    "SimSessionResult",
    "TokenResponse",
    "TrackAssets",
    "TrackInfo",
    "TrackMapLayers",
    "TrackRef",
]
