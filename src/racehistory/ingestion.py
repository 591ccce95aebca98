"""Per-driver race ingestion.

One run moves a driver's watermark forward by at most one search window:
search races finishing in ``[begin, end)``, persist each new one, advance
``races_ingested_to`` to ``end`` and, if ``end`` is still behind now, queue
another round. Runs for the same driver are serialized by the store's
ingestion lock.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import StrEnum
from typing import Callable, Protocol

from pydantic import BaseModel, ConfigDict, Field

from racehistory._logging import log_service_call
from racehistory._params import EVENT_TYPE_RACE
from racehistory.events import EventDispatcher
from racehistory.exceptions import (
    DriverNotFoundError,
    EntityAlreadyExistsError,
    RaceHistoryError,
    UpstreamUnauthorizedError,
)
from racehistory.metrics import DRIVER_SESSIONS_INGESTED, MetricsEmitter, NoopMetrics
from racehistory.models.lap import LapDataResponse
from racehistory.models.series_result import SeriesResult, TrackRef
from racehistory.models.session_result import MAIN_EVENT_SIMSESSION_NUMBER, SessionResult
from racehistory.notify import (
    INGESTION_CHUNK_COMPLETE,
    INGESTION_FAILED_STALE_CREDENTIALS,
    RACE_INGESTED,
)
from racehistory.store import DynamoStore
from racehistory.store.entities import (
    DriverSession,
    Session,
    SessionCarClass,
    SessionCarClassCar,
    SessionDataInsertion,
    SessionDriver,
    SessionDriverLap,
    Track,
)
from racehistory.store.race_id import driver_race_id_from_time

logger = logging.getLogger(__name__)

DEFAULT_LOCK_DURATION = timedelta(minutes=5)
DEFAULT_SEARCH_WINDOW = timedelta(days=10)


class RaceIngestionRequest(BaseModel):
    """Queued request to ingest one round of a driver's races."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    driver_id: int = Field(alias="driverID")
    access_token: str = Field(alias="iRacingAccessToken", repr=False)
    notify_connection_id: str | None = Field(default=None, alias="notifyConnectionID")


class IngestionStatus(StrEnum):
    COMPLETED = "completed"
    BLOCKED = "blocked"
    STALE_CREDENTIALS = "stale_credentials"


@dataclass(frozen=True)
class IngestionResult:
    status: IngestionStatus
    more_pending: bool = False
    races_found: int = 0
    races_ingested: int = 0
    ingested_to: datetime | None = None


class RaceDataSource(Protocol):
    def search_series_results(
        self,
        access_token: str,
        finish_range_begin: datetime,
        finish_range_end: datetime,
        *,
        cust_id: int | None = None,
        event_types: list[int] | None = None,
    ) -> list[SeriesResult]: ...

    def get_session_results(
        self, access_token: str, subsession_id: int, *, include_licenses: bool | None = None
    ) -> SessionResult: ...

    def get_lap_data(
        self,
        access_token: str,
        subsession_id: int,
        simsession_number: int,
        *,
        cust_id: int | None = None,
        team_id: int | None = None,
    ) -> LapDataResponse: ...


class Notifier(Protocol):
    def push(self, connection_id: str, action: str, payload: object) -> bool: ...

    def broadcast(self, driver_id: int, action: str, payload: object) -> int: ...


def build_session_data(result: SessionResult, driver_id: int) -> SessionDataInsertion | None:
    """Denormalize a subsession result into the records stored for one race.

    Returns None when there is no main event or the driver is not in it.
    """
    main = result.main_event
    if main is None:
        logger.warning("no main event in subsession %d", result.subsession_id)
        return None
    own = result.driver_result(driver_id)
    if own is None:
        logger.warning("driver %d not in main event of subsession %d", driver_id, result.subsession_id)
        return None

    subsession_id = result.subsession_id
    car_classes = [
        SessionCarClass(
            subsession_id=subsession_id,
            car_class_id=cc.car_class_id,
            strength_of_field=cc.strength_of_field,
            number_of_entries=cc.num_entries,
            cars=[
                SessionCarClassCar(subsession_id=subsession_id, car_class_id=cc.car_class_id, car_id=car.car_id)
                for car in cc.cars_in_class
            ],
        )
        for cc in result.car_classes
    ]
    session = Session(
        subsession_id=subsession_id,
        track_id=result.track.track_id,
        series_id=result.series_id,
        series_name=result.series_name,
        license_category=result.license_category,
        start_time=result.start_time,
        car_classes=car_classes,
    )
    drivers = [
        SessionDriver(
            subsession_id=subsession_id,
            driver_id=r.cust_id,
            car_id=r.car_id,
            start_position=r.starting_position,
            start_position_in_class=r.starting_position_in_class,
            finish_position=r.finish_position,
            finish_position_in_class=r.finish_position_in_class,
            incidents=r.incidents,
            old_cpi=r.old_cpi,
            new_cpi=r.new_cpi,
            old_irating=r.old_irating,
            new_irating=r.new_irating,
            old_license_level=r.old_license_level,
            new_license_level=r.new_license_level,
            old_sub_level=r.old_sub_level,
            new_sub_level=r.new_sub_level,
            reason_out=r.reason_out,
            ai=r.ai,
        )
        for r in main.results
    ]
    driver_session = DriverSession(
        driver_id=driver_id,
        subsession_id=subsession_id,
        track_id=result.track.track_id,
        car_id=own.car_id,
        series_id=result.series_id,
        series_name=result.series_name,
        start_time=result.start_time,
        start_position=own.starting_position,
        start_position_in_class=own.starting_position_in_class,
        finish_position=own.finish_position,
        finish_position_in_class=own.finish_position_in_class,
        incidents=own.incidents,
        old_cpi=own.old_cpi,
        new_cpi=own.new_cpi,
        old_irating=own.old_irating,
        new_irating=own.new_irating,
        old_license_level=own.old_license_level,
        new_license_level=own.new_license_level,
        old_sub_level=own.old_sub_level,
        new_sub_level=own.new_sub_level,
        reason_out=own.reason_out,
    )
    return SessionDataInsertion(
        session_entries=[session],
        session_driver_entries=drivers,
        driver_session_entries=[driver_session],
    )


class RaceIngestionCoordinator:
    """Runs locked ingestion rounds and serves lap detail on demand.

    Usage:
        coordinator = RaceIngestionCoordinator(store, client, pusher, dispatcher)
        result = coordinator.ingest_races(RaceIngestionRequest.model_validate_json(body))
    """

    def __init__(
        self,
        store: DynamoStore,
        client: RaceDataSource,
        pusher: Notifier,
        dispatcher: EventDispatcher | None = None,
        metrics: MetricsEmitter | None = None,
        *,
        lock_duration: timedelta = DEFAULT_LOCK_DURATION,
        search_window: timedelta = DEFAULT_SEARCH_WINDOW,
        now: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._client = client
        self._pusher = pusher
        self._dispatcher = dispatcher
        self._metrics = metrics or NoopMetrics()
        self._lock_duration = lock_duration
        self._search_window = search_window
        self._now = now or (lambda: datetime.now(timezone.utc))

    @log_service_call
    def ingest_races(self, request: RaceIngestionRequest) -> IngestionResult:
        """Ingest one search window of the driver's races.

        Returns BLOCKED when another run holds the driver's lock and
        STALE_CREDENTIALS when upstream rejects the access token. Any other
        failure is raised after the watermark is moved past the races that
        were fully processed.
        """
        driver_id = request.driver_id
        if not self._store.acquire_ingestion_lock(driver_id, self._lock_duration):
            logger.warning("ingestion lock for driver %d already held, skipping", driver_id)
            return IngestionResult(IngestionStatus.BLOCKED)

        try:
            result = self._ingest_locked(request)
        except UpstreamUnauthorizedError:
            logger.warning("stale upstream credentials for driver %d", driver_id)
            self._notify_stale_credentials(request.notify_connection_id)
            return IngestionResult(IngestionStatus.STALE_CREDENTIALS)
        finally:
            self._release_lock(driver_id)

        if result.more_pending:
            self._dispatch_next_round(request)
        return result

    def _ingest_locked(self, request: RaceIngestionRequest) -> IngestionResult:
        driver_id = request.driver_id
        driver = self._store.get_driver(driver_id)
        if driver is None:
            raise DriverNotFoundError(driver_id)

        begin = driver.races_ingested_to or driver.member_since
        now = self._now()
        # The search API works at minute precision; end on a minute boundary
        # so no race can fall between the searched range and the watermark.
        end = min(begin + self._search_window, now).replace(second=0, microsecond=0)
        if end <= begin:
            logger.info("driver %d already ingested up to %s", driver_id, begin)
            return IngestionResult(IngestionStatus.COMPLETED, ingested_to=begin)
        more_pending = begin + self._search_window < now

        logger.info("searching races for driver %d in [%s, %s)", driver_id, begin, end)
        results = self._client.search_series_results(
            request.access_token, begin, end, cust_id=driver_id, event_types=[EVENT_TYPE_RACE]
        )
        races = []
        for race in results:
            if race.driver_changes:
                logger.warning("skipping team event %d", race.subsession_id)
                continue
            if begin <= race.end_time < end:
                races.append(race)
        races.sort(key=lambda r: r.end_time)

        ingested = 0
        processed_to: datetime | None = None
        for race in races:
            try:
                if self._ingest_race(request, race):
                    ingested += 1
            except RaceHistoryError:
                if processed_to is not None:
                    self._store.update_driver_races_ingested_to(driver_id, processed_to)
                raise
            processed_to = race.end_time

        self._store.update_driver_races_ingested_to(driver_id, end)
        self._pusher.broadcast(driver_id, INGESTION_CHUNK_COMPLETE, {"ingestedTo": end.isoformat()})
        logger.info(
            "driver %d: %d races found, %d new, ingested to %s (more pending: %s)",
            driver_id, len(races), ingested, end, more_pending,
        )
        return IngestionResult(
            IngestionStatus.COMPLETED,
            more_pending=more_pending,
            races_found=len(races),
            races_ingested=ingested,
            ingested_to=end,
        )

    def _ingest_race(self, request: RaceIngestionRequest, race: SeriesResult) -> bool:
        """Persist one race. Returns False if it was already stored."""
        driver_id = request.driver_id
        if self._store.get_driver_session(driver_id, race.start_time) is not None:
            logger.debug("subsession %d already ingested for driver %d", race.subsession_id, driver_id)
            return False

        result = self._client.get_session_results(
            request.access_token, race.subsession_id, include_licenses=True
        )
        data = build_session_data(result, driver_id)
        if data is None:
            return False

        try:
            self._store.persist_session_data(data)
        except EntityAlreadyExistsError:
            logger.info("subsession %d already persisted for driver %d", race.subsession_id, driver_id)
            return False

        self._emit_ingested()
        self._pusher.broadcast(
            driver_id, RACE_INGESTED, {"raceId": driver_race_id_from_time(result.start_time)}
        )
        self._ensure_track(result.track)
        return True

    def _ensure_track(self, track: TrackRef) -> None:
        try:
            self._store.insert_track(Track(track_id=track.track_id, name=track.track_name or ""))
        except EntityAlreadyExistsError:
            pass

    def _emit_ingested(self) -> None:
        try:
            self._metrics.emit_count(DRIVER_SESSIONS_INGESTED, 1)
        except Exception:
            logger.warning("failed to emit driver sessions ingested metric", exc_info=True)

    def _release_lock(self, driver_id: int) -> None:
        try:
            self._store.release_ingestion_lock(driver_id)
        except RaceHistoryError:
            # The lock still expires on its own.
            logger.exception("failed to release ingestion lock for driver %d", driver_id)

    def _notify_stale_credentials(self, connection_id: str | None) -> None:
        if not connection_id:
            logger.warning("no connection to notify of stale credentials")
            return
        try:
            self._pusher.push(connection_id, INGESTION_FAILED_STALE_CREDENTIALS, None)
        except RaceHistoryError:
            logger.exception("failed to notify connection %s of stale credentials", connection_id)

    def _dispatch_next_round(self, request: RaceIngestionRequest) -> None:
        if self._dispatcher is None:
            logger.warning("more races pending for driver %d but no dispatcher configured", request.driver_id)
            return
        logger.info("more races to ingest for driver %d, dispatching another round", request.driver_id)
        self._dispatcher.publish_event(request)

    # ── Lap detail ─────────────────────────────────────────────

    @log_service_call
    def get_session_driver_laps(
        self, access_token: str, subsession_id: int, driver_id: int
    ) -> list[SessionDriverLap]:
        """Stored laps for a driver in a session, fetched and saved on first use."""
        stored = self._store.get_session_driver_laps(subsession_id, driver_id)
        if stored:
            return stored

        lap_data = self._client.get_lap_data(
            access_token, subsession_id, MAIN_EVENT_SIMSESSION_NUMBER, cust_id=driver_id
        )
        laps = [
            SessionDriverLap(
                subsession_id=subsession_id,
                driver_id=driver_id,
                lap_number=lap.lap_number,
                lap_time=lap.lap_timedelta,
                flags=lap.flags,
                incident=lap.incident,
                lap_events=list(lap.lap_events),
            )
            for lap in lap_data.laps
        ]
        self._store.save_session_driver_laps(subsession_id, driver_id, laps)
        return laps
