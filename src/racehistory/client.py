"""Public client for the upstream racing data API."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, TypeVar

from pydantic import TypeAdapter, ValidationError

from racehistory._http import DEFAULT_BASE_URL, DEFAULT_TIMEOUT, SyncTransport
from racehistory._logging import log_api_call
from racehistory._params import FinishRange, build_query_params
from racehistory.exceptions import (
    ChunkFetchError,
    MalformedPayloadError,
    UpstreamAPIError,
    UpstreamConnectionError,
    UpstreamTimeoutError,
)
from racehistory.metrics import MetricsEmitter
from racehistory.models.catalog import CarAssets, CarInfo, TrackAssets, TrackInfo
from racehistory.models.chunk import ChunkInfo, SearchResponse
from racehistory.models.lap import Lap, LapDataResponse
from racehistory.models.member import MemberInfo
from racehistory.models.series_result import SeriesResult
from racehistory.models.session_result import SessionResult

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _validate(model_type: type[T] | Any, data: Any, what: str) -> T:
    """Validate raw JSON against a model type, failing fast on bad payloads."""
    try:
        return TypeAdapter(model_type).validate_python(data)
    except ValidationError as exc:
        raise MalformedPayloadError(f"Failed to validate {what} response: {exc}") from exc


def _validate_list(model_type: type[T], data: Any, what: str) -> list[T]:
    return _validate(list[model_type], data, what)  # type: ignore[valid-type]


def _int_keyed(raw: dict[str, T], id_field: str) -> dict[int, T]:
    """Re-key an asset map by integer id, stamping the id onto each value."""
    keyed: dict[int, T] = {}
    for key, value in raw.items():
        try:
            item_id = int(key)
        except ValueError:
            logger.debug("skipping asset with non-numeric id %r", key)
            continue
        keyed[item_id] = value.model_copy(update={id_field: item_id})  # type: ignore[attr-defined]
    return keyed


class DataClient:
    """Synchronous client for the upstream data API.

    Every call takes the member's OAuth access token. Large results arrive
    either as a signed link to the payload or as a manifest of chunk files;
    both are resolved into materialized values here.

    Usage:
        with DataClient() as client:
            member = client.get_member_info(token)
            races = client.search_series_results(token, begin, end, cust_id=member.cust_id)
    """

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = DEFAULT_TIMEOUT,
        metrics: MetricsEmitter | None = None,
    ) -> None:
        self._transport = SyncTransport(base_url=base_url, timeout=timeout, metrics=metrics)

    def __enter__(self) -> DataClient:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    def close(self) -> None:
        """Close the underlying HTTP connection."""
        self._transport.close()

    # ── Response shapes ────────────────────────────────────────

    def _fetch_linked(
        self,
        endpoint: str,
        access_token: str,
        params: list[tuple[str, str]] | None = None,
    ) -> Any:
        """Call an endpoint that answers with a signed link, then follow the link."""
        body = self._transport.api_get(endpoint, access_token, params)
        link = body.get("link") if isinstance(body, dict) else None
        if not link:
            raise MalformedPayloadError(f"no link in response from {endpoint}")
        return self._transport.fetch(link)

    def _fetch_chunks(self, info: ChunkInfo, model: type[T]) -> list[T]:
        """Download every chunk in manifest order and concatenate the pages."""
        if info.rows == 0:
            return []

        total = len(info.chunk_file_names)
        logger.debug("fetching %d chunks (%d rows)", total, info.rows)

        results: list[T] = []
        for index, file_name in enumerate(info.chunk_file_names, start=1):
            try:
                page = self._transport.fetch(info.base_download_url + file_name)
            except (UpstreamAPIError, UpstreamConnectionError, UpstreamTimeoutError) as exc:
                raise ChunkFetchError(index, total, exc) from exc
            except MalformedPayloadError as exc:
                raise MalformedPayloadError(f"chunk {index}/{total}: {exc}") from exc
            results.extend(_validate_list(model, page, f"chunk {index}/{total}"))

        logger.debug("fetched %d rows from %d chunks", len(results), total)
        return results

    # ── Endpoints ──────────────────────────────────────────────

    @log_api_call
    def get_member_info(self, access_token: str) -> MemberInfo:
        """Get the authenticated member's id, display name and join date."""
        data = self._fetch_linked("/data/member/info", access_token)
        return _validate(MemberInfo, data, "member info")

    @log_api_call
    def search_series_results(
        self,
        access_token: str,
        finish_range_begin: datetime,
        finish_range_end: datetime,
        *,
        cust_id: int | None = None,
        event_types: list[int] | None = None,
    ) -> list[SeriesResult]:
        """Search official results finishing inside the given window."""
        params = build_query_params(
            FinishRange(finish_range_begin, finish_range_end),
            cust_id=cust_id,
            event_types=event_types,
        )
        body = self._transport.api_get("/data/results/search_series", access_token, params)
        search = _validate(SearchResponse, body, "series search")
        if not search.data.success:
            raise MalformedPayloadError("series search was not successful")
        return self._fetch_chunks(search.data.chunk_info, SeriesResult)

    @log_api_call
    def get_session_results(
        self,
        access_token: str,
        subsession_id: int,
        *,
        include_licenses: bool | None = None,
    ) -> SessionResult:
        """Get the full results of a subsession."""
        params = build_query_params(subsession_id=subsession_id, include_licenses=include_licenses)
        data = self._fetch_linked("/data/results/get", access_token, params)
        return _validate(SessionResult, data, "session results")

    @log_api_call
    def get_lap_data(
        self,
        access_token: str,
        subsession_id: int,
        simsession_number: int,
        *,
        cust_id: int | None = None,
        team_id: int | None = None,
    ) -> LapDataResponse:
        """Get lap-by-lap data for one driver (or team) in a simsession."""
        params = build_query_params(
            subsession_id=subsession_id,
            simsession_number=simsession_number,
            cust_id=cust_id,
            team_id=team_id,
        )
        data = self._fetch_linked("/data/results/lap_data", access_token, params)
        envelope = _validate(LapDataResponse, data, "lap data")
        laps = self._fetch_chunks(envelope.chunk_info, Lap)
        return envelope.model_copy(update={"laps": laps})

    @log_api_call
    def get_tracks(self, access_token: str) -> list[TrackInfo]:
        """Get the full track catalog."""
        data = self._fetch_linked("/data/track/get", access_token)
        return _validate_list(TrackInfo, data, "tracks")

    @log_api_call
    def get_track_assets(self, access_token: str) -> dict[int, TrackAssets]:
        """Get track images, maps and descriptions keyed by track id."""
        data = self._fetch_linked("/data/track/assets", access_token)
        raw = _validate(dict[str, TrackAssets], data, "track assets")
        return _int_keyed(raw, "track_id")

    @log_api_call
    def get_cars(self, access_token: str) -> list[CarInfo]:
        """Get the full car catalog."""
        data = self._fetch_linked("/data/car/get", access_token)
        return _validate_list(CarInfo, data, "cars")

    @log_api_call
    def get_car_assets(self, access_token: str) -> dict[int, CarAssets]:
        """Get car images and descriptions keyed by car id."""
        data = self._fetch_linked("/data/car/assets", access_token)
        raw = _validate(dict[str, CarAssets], data, "car assets")
        return _int_keyed(raw, "car_id")
