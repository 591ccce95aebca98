"""Track and car catalogs merged with their display assets.

Both services read through ``CachingDataClient``, so the upstream catalog and
asset endpoints are hit at most once per TTL across all processes.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol

from racehistory._logging import log_service_call
from racehistory.models.catalog import CarAssets, CarInfo, TrackAssets, TrackInfo

IMAGE_BASE_URL = "https://images-static.iracing.com"


class TrackCatalogSource(Protocol):
    def get_tracks(self, access_token: str) -> list[TrackInfo]: ...

    def get_track_assets(self, access_token: str) -> dict[int, TrackAssets]: ...


class CarCatalogSource(Protocol):
    def get_cars(self, access_token: str) -> list[CarInfo]: ...

    def get_car_assets(self, access_token: str) -> dict[int, CarAssets]: ...


@dataclass(frozen=True)
class TrackMapLayerUrls:
    background: str = ""
    inactive: str = ""
    active: str = ""
    pitroad: str = ""
    start_finish: str = ""
    turns: str = ""


@dataclass(frozen=True)
class Track:
    track_id: int
    name: str
    config_name: str = ""
    category: str = ""
    location: str = ""
    corners_per_lap: int = 0
    length_miles: float = 0.0
    free_with_subscription: bool = False
    retired: bool = False
    description: str = ""
    logo_url: str = ""
    small_image_url: str = ""
    large_image_url: str = ""
    track_map_url: str = ""
    track_map_layers: TrackMapLayerUrls = field(default_factory=TrackMapLayerUrls)


@dataclass(frozen=True)
class Car:
    car_id: int
    name: str
    name_abbreviated: str = ""
    make: str = ""
    model: str = ""
    weight: int = 0
    hp: int = 0
    categories: list[str] = field(default_factory=list)
    free_with_subscription: bool = False
    retired: bool = False
    description: str = ""
    logo_url: str = ""
    small_image_url: str = ""
    large_image_url: str = ""


def _logo_url(logo: str | None) -> str:
    return IMAGE_BASE_URL + logo if logo else ""


def _image_url(folder: str | None, image: str | None) -> str:
    # Images resolve only together with their asset folder
    if not (folder and image):
        return ""
    return f"{IMAGE_BASE_URL}{folder}/{image}"


def merge_track(info: TrackInfo, asset: TrackAssets | None) -> Track:
    """Combine a catalog entry with its assets. Missing assets leave URLs empty."""
    asset = asset or TrackAssets()
    layers = asset.track_map_layers
    return Track(
        track_id=info.track_id,
        name=info.track_name,
        config_name=info.config_name or "",
        category=info.category or "",
        location=info.location or "",
        corners_per_lap=info.corners_per_lap or 0,
        length_miles=info.track_config_length or 0.0,
        free_with_subscription=bool(info.free_with_subscription),
        retired=bool(info.retired),
        description=asset.detail_copy or "",
        logo_url=_logo_url(asset.logo),
        small_image_url=_image_url(asset.folder, asset.small_image),
        large_image_url=_image_url(asset.folder, asset.large_image),
        track_map_url=asset.track_map or "",
        track_map_layers=TrackMapLayerUrls(
            background=layers.background or "",
            inactive=layers.inactive or "",
            active=layers.active or "",
            pitroad=layers.pitroad or "",
            start_finish=layers.start_finish or "",
            turns=layers.turns or "",
        ) if layers else TrackMapLayerUrls(),
    )


def merge_car(info: CarInfo, asset: CarAssets | None) -> Car:
    asset = asset or CarAssets()
    return Car(
        car_id=info.car_id,
        name=info.car_name,
        name_abbreviated=info.car_name_abbreviated or "",
        make=info.car_make or "",
        model=info.car_model or "",
        weight=info.car_weight or 0,
        hp=info.hp or 0,
        categories=list(info.categories or []),
        free_with_subscription=bool(info.free_with_subscription),
        retired=bool(info.retired),
        description=asset.detail_copy or "",
        logo_url=_logo_url(asset.logo),
        small_image_url=_image_url(asset.folder, asset.small_image),
        large_image_url=_image_url(asset.folder, asset.large_image),
    )


class TrackService:
    """Serves the track catalog.

    Usage:
        tracks = TrackService(caching_client).get_all(access_token)
    """

    def __init__(self, source: TrackCatalogSource) -> None:
        self._source = source

    @log_service_call
    def get_all(self, access_token: str) -> list[Track]:
        infos = self._source.get_tracks(access_token)
        assets = self._source.get_track_assets(access_token)
        return [merge_track(info, assets.get(info.track_id)) for info in infos]


class CarService:
    """Serves the car catalog."""

    def __init__(self, source: CarCatalogSource) -> None:
        self._source = source

    @log_service_call
    def get_all(self, access_token: str) -> list[Car]:
        infos = self._source.get_cars(access_token)
        assets = self._source.get_car_assets(access_token)
        return [merge_car(info, assets.get(info.car_id)) for info in infos]
