"""Two-tier caching for slow-changing reference data.

Each layer implements ``Fetcher.fetch(access_token)`` and wraps the next one:

    MemoryCache(BlobCache(RemoteFetcher(client.get_tracks), ...))

The memory layer coalesces concurrent callers in one process into a single
downstream call. The blob layer keeps a JSON copy in S3 and treats an object
older than its TTL exactly like a missing one. Neither layer ever stores a
failed fetch.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Generic, Protocol, TypeVar

from botocore.exceptions import BotoCoreError, ClientError
from pydantic import TypeAdapter, ValidationError

from racehistory.client import DataClient
from racehistory.exceptions import CacheError, MalformedPayloadError
from racehistory.models.catalog import CarAssets, CarInfo, TrackAssets, TrackInfo
from racehistory.models.lap import LapDataResponse
from racehistory.models.member import MemberInfo
from racehistory.models.series_result import SeriesResult
from racehistory.models.session_result import SessionResult

logger = logging.getLogger(__name__)

T = TypeVar("T")

TRACKS_KEY = "tracks"
TRACK_ASSETS_KEY = "trackAssets"
CARS_KEY = "cars"
CAR_ASSETS_KEY = "carAssets"


class Fetcher(Protocol[T]):
    def fetch(self, access_token: str) -> T: ...


class RemoteFetcher(Generic[T]):
    """Innermost layer: adapts a client call to the Fetcher protocol."""

    def __init__(self, fn: Callable[[str], T]) -> None:
        self._fn = fn

    def fetch(self, access_token: str) -> T:
        return self._fn(access_token)


def _error_code(exc: ClientError) -> str:
    return str(exc.response.get("Error", {}).get("Code", ""))


def _status_code(exc: ClientError) -> int | None:
    return exc.response.get("ResponseMetadata", {}).get("HTTPStatusCode")


def _is_not_modified(exc: ClientError) -> bool:
    return _status_code(exc) == 304 or _error_code(exc) in ("304", "NotModified")


def _is_no_such_key(exc: ClientError) -> bool:
    # NoSuchBucket is a 404 too, but a misconfiguration rather than a miss
    return _error_code(exc) in ("NoSuchKey", "404")


class BlobCache(Generic[T]):
    """Durable layer keeping the serialized value in an S3 object.

    Freshness comes from the object's own Last-Modified: the read is a
    conditional ``GetObject`` with ``IfModifiedSince = now - ttl``, so a stale
    object answers 304 and is refreshed. Concurrent misses in different
    processes may both write; the refresh is idempotent.
    """

    def __init__(
        self,
        s3_client: Any,
        bucket: str,
        key: str,
        ttl: timedelta,
        wrapped: Fetcher[T],
        value_type: Any,
        now: Callable[[], datetime] | None = None,
    ) -> None:
        self._s3 = s3_client
        self._bucket = bucket
        self._key = key
        self._ttl = ttl
        self._wrapped = wrapped
        self._adapter: TypeAdapter[T] = TypeAdapter(value_type)
        self._now = now or (lambda: datetime.now(timezone.utc))

    def fetch(self, access_token: str) -> T:
        earliest = self._now() - self._ttl
        try:
            response = self._s3.get_object(
                Bucket=self._bucket,
                Key=self._key,
                IfModifiedSince=earliest,
            )
        except ClientError as exc:
            not_modified = _is_not_modified(exc)
            no_such_key = not not_modified and _is_no_such_key(exc)
            if not (not_modified or no_such_key):
                raise CacheError(f"reading s3://{self._bucket}/{self._key}: {exc}") from exc
            logger.debug(
                "fetching fresh value for s3://%s/%s (not_modified=%s, no_such_key=%s)",
                self._bucket, self._key, not_modified, no_such_key,
            )
            return self._fetch_and_cache(access_token)
        except BotoCoreError as exc:
            raise CacheError(f"reading s3://{self._bucket}/{self._key}: {exc}") from exc

        body = response["Body"].read()
        try:
            return self._adapter.validate_json(body)
        except ValidationError as exc:
            raise MalformedPayloadError(
                f"cached value at s3://{self._bucket}/{self._key} is invalid: {exc}"
            ) from exc

    def _fetch_and_cache(self, access_token: str) -> T:
        value = self._wrapped.fetch(access_token)
        payload = self._adapter.dump_json(value)
        try:
            self._s3.put_object(
                Bucket=self._bucket,
                Key=self._key,
                Body=payload,
                ContentType="application/json",
            )
        except (ClientError, BotoCoreError) as exc:
            raise CacheError(f"writing s3://{self._bucket}/{self._key}: {exc}") from exc
        return value


class MemoryCache(Generic[T]):
    """Process-lifetime layer with single-flight semantics."""

    def __init__(self, wrapped: Fetcher[T]) -> None:
        self._wrapped = wrapped
        self._lock = threading.Lock()
        self._cached = False
        self._value: T | None = None

    def fetch(self, access_token: str) -> T:
        with self._lock:
            if self._cached:
                return self._value  # type: ignore[return-value]
            value = self._wrapped.fetch(access_token)
            self._value = value
            self._cached = True
            return value


def two_tier(
    fn: Callable[[str], T],
    s3_client: Any,
    bucket: str,
    key: str,
    ttl: timedelta,
    value_type: Any,
) -> Fetcher[T]:
    """Build the memory-over-blob-over-remote chain for one operation."""
    return MemoryCache(BlobCache(s3_client, bucket, key, ttl, RemoteFetcher(fn), value_type))


class CachingDataClient:
    """DataClient whose reference-data calls go through the two-tier cache."""

    def __init__(self, client: DataClient, s3_client: Any, bucket: str, ttl: timedelta) -> None:
        self._client = client
        self._tracks = two_tier(client.get_tracks, s3_client, bucket, TRACKS_KEY, ttl, list[TrackInfo])
        self._track_assets = two_tier(
            client.get_track_assets, s3_client, bucket, TRACK_ASSETS_KEY, ttl, dict[int, TrackAssets]
        )
        self._cars = two_tier(client.get_cars, s3_client, bucket, CARS_KEY, ttl, list[CarInfo])
        self._car_assets = two_tier(
            client.get_car_assets, s3_client, bucket, CAR_ASSETS_KEY, ttl, dict[int, CarAssets]
        )

    def close(self) -> None:
        self._client.close()

    # ── Cached ─────────────────────────────────────────────────

    def get_tracks(self, access_token: str) -> list[TrackInfo]:
        return self._tracks.fetch(access_token)

    def get_track_assets(self, access_token: str) -> dict[int, TrackAssets]:
        return self._track_assets.fetch(access_token)

    def get_cars(self, access_token: str) -> list[CarInfo]:
        return self._cars.fetch(access_token)

    def get_car_assets(self, access_token: str) -> dict[int, CarAssets]:
        return self._car_assets.fetch(access_token)

    # ── Pass-through ───────────────────────────────────────────

    def get_member_info(self, access_token: str) -> MemberInfo:
        return self._client.get_member_info(access_token)

    def search_series_results(
        self,
        access_token: str,
        finish_range_begin: datetime,
        finish_range_end: datetime,
        **kwargs: Any,
    ) -> list[SeriesResult]:
        return self._client.search_series_results(
            access_token, finish_range_begin, finish_range_end, **kwargs
        )

    def get_session_results(self, access_token: str, subsession_id: int, **kwargs: Any) -> SessionResult:
        return self._client.get_session_results(access_token, subsession_id, **kwargs)

    def get_lap_data(
        self, access_token: str, subsession_id: int, simsession_number: int, **kwargs: Any
    ) -> LapDataResponse:
        return self._client.get_lap_data(access_token, subsession_id, simsession_number, **kwargs)
