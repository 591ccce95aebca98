"""Full subsession result model (``/data/results/get``)."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from racehistory.models.series_result import TrackRef

MAIN_EVENT_SIMSESSION_NUMBER = 0


class DriverResult(BaseModel):
    """One participant's result within a simsession."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    cust_id: int
    display_name: str | None = None
    ai: bool = False
    car_id: int
    car_class_id: int | None = None
    starting_position: int = 0
    starting_position_in_class: int = 0
    finish_position: int = 0
    finish_position_in_class: int = 0
    incidents: int = 0
    laps_complete: int | None = None
    laps_lead: int | None = None
    best_lap_time: int | None = None
    average_lap: int | None = None
    old_cpi: float = 0.0
    new_cpi: float = 0.0
    # Upstream spells these "oldi_rating" / "newi_rating".
    old_irating: int = Field(default=0, alias="oldi_rating")
    new_irating: int = Field(default=0, alias="newi_rating")
    old_license_level: int = 0
    new_license_level: int = 0
    old_sub_level: int = 0
    new_sub_level: int = 0
    reason_out: str = ""


class SimSessionResult(BaseModel):
    """Results of one simsession (practice, qualifying, main event)."""

    model_config = ConfigDict(frozen=True)

    simsession_number: int
    simsession_name: str | None = None
    simsession_type: int | None = None
    simsession_type_name: str | None = None
    results: list[DriverResult] = Field(default_factory=list)


class CarClassCar(BaseModel):
    model_config = ConfigDict(frozen=True)

    car_id: int


class CarClassResult(BaseModel):
    """A car class as it ran in one subsession."""

    model_config = ConfigDict(frozen=True)

    car_class_id: int
    name: str | None = None
    short_name: str | None = None
    strength_of_field: int = 0
    num_entries: int = 0
    cars_in_class: list[CarClassCar] = Field(default_factory=list)


class SessionResult(BaseModel):
    """A complete subsession result."""

    model_config = ConfigDict(frozen=True)

    subsession_id: int
    session_id: int | None = None
    series_id: int = 0
    series_name: str = ""
    season_id: int | None = None
    license_category_id: int | None = None
    license_category: str = ""
    start_time: datetime
    end_time: datetime | None = None
    event_strength_of_field: int | None = None
    track: TrackRef
    car_classes: list[CarClassResult] = Field(default_factory=list)
    session_results: list[SimSessionResult] = Field(default_factory=list)

    @property
    def main_event(self) -> SimSessionResult | None:
        """The simsession holding the race results, or None if absent."""
        for simsession in self.session_results:
            if simsession.simsession_number == MAIN_EVENT_SIMSESSION_NUMBER:
                return simsession
        return None

    def driver_result(self, cust_id: int) -> DriverResult | None:
        """This member's main-event result, or None if they did not take part."""
        main = self.main_event
        if main is None:
            return None
        for result in main.results:
            if result.cust_id == cust_id:
                return result
        return None
