"""Slow-changing reference data: track and car catalogs and their assets."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class TrackInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    track_id: int
    track_name: str
    config_name: str | None = None
    category: str | None = None
    category_id: int | None = None
    location: str | None = None
    track_config_length: float | None = None
    corners_per_lap: int | None = None
    free_with_subscription: bool | None = None
    retired: bool | None = None


class TrackMapLayers(BaseModel):
    # Accepts the upstream key and the field name used in cached copies
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    background: str | None = None
    inactive: str | None = None
    active: str | None = None
    pitroad: str | None = None
    start_finish: str | None = Field(default=None, alias="start-finish")
    turns: str | None = None


class TrackAssets(BaseModel):
    model_config = ConfigDict(frozen=True)

    track_id: int | None = None
    folder: str | None = None
    logo: str | None = None
    track_map: str | None = None
    track_map_layers: TrackMapLayers | None = None
    detail_copy: str | None = None
    large_image: str | None = None
    small_image: str | None = None


class CarInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    car_id: int
    car_name: str
    car_name_abbreviated: str | None = None
    car_make: str | None = None
    car_model: str | None = None
    hp: int | None = None
    car_weight: int | None = None
    categories: list[str] | None = None
    free_with_subscription: bool | None = None
    retired: bool | None = None


class CarAssets(BaseModel):
    model_config = ConfigDict(frozen=True)

    car_id: int | None = None
    folder: str | None = None
    logo: str | None = None
    detail_copy: str | None = None
    large_image: str | None = None
    small_image: str | None = None
