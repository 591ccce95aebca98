"""racehistory: race history ingestion for a racing simulation's data API."""

from racehistory.cache import CachingDataClient
from racehistory.catalog import CarService, TrackService
from racehistory.client import DataClient
from racehistory.config import AppConfig, UpstreamConfig
from racehistory.exceptions import (
    CacheError,
    ChunkFetchError,
    DriverNotFoundError,
    EntityAlreadyExistsError,
    MalformedPayloadError,
    RaceHistoryError,
    StoreError,
    TransactionBatchError,
    UpstreamAPIError,
    UpstreamConnectionError,
    UpstreamTimeoutError,
    UpstreamUnauthorizedError,
)
from racehistory.ingestion import (
    IngestionResult,
    IngestionStatus,
    RaceIngestionCoordinator,
    RaceIngestionRequest,
)
from racehistory.handler import IngestionHandler
from racehistory.journal import JournalService
from racehistory.login import LoginResult, LoginService
from racehistory.oauth import OAuthClient
from racehistory.store import DynamoStore

__all__ = [
    "AppConfig",
    "CacheError",
    "CarService",
    "CachingDataClient",
    "ChunkFetchError",
    "DataClient",
    "DriverNotFoundError",
    "DynamoStore",
    "EntityAlreadyExistsError",
    "IngestionHandler",
    "IngestionResult",
    "IngestionStatus",
    "JournalService",
    "LoginResult",
    "LoginService",
    "MalformedPayloadError",
    "OAuthClient",
    "RaceHistoryError",
    "RaceIngestionCoordinator",
    "RaceIngestionRequest",
    "StoreError",
    "TrackService",
    "TransactionBatchError",
    "UpstreamAPIError",
    "UpstreamConnectionError",
    "UpstreamTimeoutError",
    "UpstreamConfig",
    "UpstreamUnauthorizedError",
]

__version__ = "0.1.0"
