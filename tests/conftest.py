"""Shared test fixtures and sample API responses."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

import boto3
import pytest
from moto import mock_aws

from racehistory.store import DynamoStore

BASE_URL = "https://members-ng.iracing.com"
CHUNK_BASE_URL = "https://scorpio-assets.s3.amazonaws.com/chunks/"
LINK_BASE_URL = "https://scorpio-assets.s3.amazonaws.com/links/"

REGION = "us-east-1"
TABLE = "racehistory-test"
CACHE_BUCKET = "racehistory-cache-test"

DRIVER_ID = 1001


SAMPLE_MEMBER_INFO = {
    "cust_id": DRIVER_ID,
    "display_name": "Test Driver",
    "member_since": "2015-03-02",
    "last_login": "2023-11-15T10:00:00.000Z",
}

SAMPLE_TRACK = {
    "track_id": 18,
    "track_name": "Lime Rock Park",
    "config_name": "Full Course",
    "category": "road",
    "category_id": 2,
    "location": "Lakeville, Connecticut, USA",
    "track_config_length": 1.53,
    "corners_per_lap": 7,
    "free_with_subscription": True,
    "retired": False,
}

SAMPLE_CAR = {
    "car_id": 165,
    "car_name": "Dallara F3",
    "car_name_abbreviated": "F3",
    "car_make": "Dallara",
    "car_model": "F3",
    "hp": 240,
    "car_weight": 1245,
    "categories": ["formula_car"],
    "free_with_subscription": False,
    "retired": False,
}

SAMPLE_TOKEN = {
    "access_token": "eyJhbGciOiJIUzI1NiJ9.access.signature",
    "token_type": "Bearer",
    "expires_in": 600,
    "refresh_token": "eyJhbGciOiJIUzI1NiJ9.refresh.signature",
}

SAMPLE_LAP = {
    "group_id": DRIVER_ID,
    "cust_id": DRIVER_ID,
    "lap_number": 1,
    "flags": 0,
    "incident": False,
    "session_time": 1234567,
    "lap_time": 589876,
    "personal_best_lap": True,
    "lap_events": [],
}

# A token long enough to be kept out of log lines.
ACCESS_TOKEN = "a" * 40


def unix(seconds: int) -> datetime:
    return datetime.fromtimestamp(seconds, tz=timezone.utc)


def iso(t: datetime) -> str:
    return t.strftime("%Y-%m-%dT%H:%M:%SZ")


def series_result(subsession_id: int, start: datetime, **overrides: Any) -> dict[str, Any]:
    row = {
        "subsession_id": subsession_id,
        "session_id": subsession_id * 10,
        "start_time": iso(start),
        "end_time": iso(start + timedelta(minutes=30)),
        "license_category": "Formula Car",
        "event_type": 5,
        "event_type_name": "Race",
        "num_drivers": 2,
        "driver_changes": False,
        "cust_id": DRIVER_ID,
        "starting_position": 3,
        "finish_position": 1,
        "incidents": 2,
        "car_id": 165,
        "car_class_id": 74,
        "track": {"track_id": 18, "track_name": "Lime Rock Park", "config_name": "Full Course"},
        "series_id": 285,
        "series_name": "Formula C - Dallara F3",
    }
    row.update(overrides)
    return row


def driver_result(cust_id: int, **overrides: Any) -> dict[str, Any]:
    row = {
        "cust_id": cust_id,
        "display_name": f"Driver {cust_id}",
        "car_id": 165,
        "car_class_id": 74,
        "starting_position": 3,
        "starting_position_in_class": 3,
        "finish_position": 1,
        "finish_position_in_class": 1,
        "incidents": 2,
        "old_cpi": 45.2,
        "new_cpi": 46.1,
        "oldi_rating": 1500,
        "newi_rating": 1545,
        "old_license_level": 14,
        "new_license_level": 14,
        "old_sub_level": 320,
        "new_sub_level": 334,
        "reason_out": "Running",
        "ai": False,
    }
    row.update(overrides)
    return row


def session_result(
    subsession_id: int,
    start: datetime,
    cust_ids: tuple[int, ...] = (DRIVER_ID, 2002),
    track_id: int = 18,
) -> dict[str, Any]:
    return {
        "subsession_id": subsession_id,
        "session_id": subsession_id * 10,
        "series_id": 285,
        "series_name": "Formula C - Dallara F3",
        "license_category": "formula_car",
        "start_time": iso(start),
        "end_time": iso(start + timedelta(minutes=30)),
        "track": {"track_id": track_id, "track_name": "Lime Rock Park", "config_name": "Full Course"},
        "car_classes": [
            {
                "car_class_id": 74,
                "name": "Dallara F3",
                "strength_of_field": 1650,
                "num_entries": len(cust_ids),
                "cars_in_class": [{"car_id": 165}],
            }
        ],
        "session_results": [
            {
                "simsession_number": -1,
                "simsession_name": "QUALIFY",
                "results": [driver_result(c) for c in cust_ids],
            },
            {
                "simsession_number": 0,
                "simsession_name": "RACE",
                "results": [
                    driver_result(c, finish_position=i + 1, finish_position_in_class=i + 1)
                    for i, c in enumerate(cust_ids)
                ],
            },
        ],
    }


def search_envelope(file_names: list[str], rows: int) -> dict[str, Any]:
    return {
        "type": "search_series",
        "data": {
            "success": True,
            "chunk_info": {
                "chunk_size": 500,
                "num_chunks": len(file_names),
                "rows": rows,
                "base_download_url": CHUNK_BASE_URL,
                "chunk_file_names": file_names,
            },
        },
    }


class FakeClock:
    """Settable time source for code that takes a ``now`` callable."""

    def __init__(self, start: datetime) -> None:
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, delta: timedelta) -> None:
        self.current += delta


@pytest.fixture
def base_url() -> str:
    return BASE_URL


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2023, 11, 15, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def aws_credentials(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", "testing")
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "testing")
    monkeypatch.setenv("AWS_SESSION_TOKEN", "testing")
    monkeypatch.setenv("AWS_DEFAULT_REGION", REGION)


@pytest.fixture
def dynamodb_client(aws_credentials: None) -> Any:
    with mock_aws():
        client = boto3.client("dynamodb", region_name=REGION)
        client.create_table(
            TableName=TABLE,
            KeySchema=[
                {"AttributeName": "partition_key", "KeyType": "HASH"},
                {"AttributeName": "sort_key", "KeyType": "RANGE"},
            ],
            AttributeDefinitions=[
                {"AttributeName": "partition_key", "AttributeType": "S"},
                {"AttributeName": "sort_key", "AttributeType": "S"},
            ],
            BillingMode="PAY_PER_REQUEST",
        )
        yield client


@pytest.fixture
def store(dynamodb_client: Any, clock: FakeClock) -> DynamoStore:
    return DynamoStore(dynamodb_client, TABLE, now=clock)


@pytest.fixture
def s3_client(aws_credentials: None) -> Any:
    with mock_aws():
        client = boto3.client("s3", region_name=REGION)
        client.create_bucket(Bucket=CACHE_BUCKET)
        yield client


@pytest.fixture
def wall_clock() -> FakeClock:
    """Clock starting at real time, for code compared against S3's own timestamps."""
    return FakeClock(datetime.now(timezone.utc))
