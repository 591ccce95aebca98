"""Tests for the upstream data client."""

from __future__ import annotations

import logging
from datetime import date, datetime, timedelta, timezone

import httpx
import pytest
import respx

from racehistory import DataClient
from racehistory.exceptions import (
    ChunkFetchError,
    MalformedPayloadError,
    UpstreamConnectionError,
    UpstreamUnauthorizedError,
)
from racehistory.models import Lap, MemberInfo, SeriesResult, SessionResult, TrackInfo
from tests.conftest import (
    ACCESS_TOKEN,
    BASE_URL,
    CHUNK_BASE_URL,
    LINK_BASE_URL,
    SAMPLE_CAR,
    SAMPLE_LAP,
    SAMPLE_MEMBER_INFO,
    SAMPLE_TRACK,
    search_envelope,
    series_result,
    session_result,
    unix,
)

BEGIN = datetime(2023, 11, 10, tzinfo=timezone.utc)
END = datetime(2023, 11, 15, tzinfo=timezone.utc)


def _link(endpoint: str, name: str, payload: object) -> None:
    respx.get(f"{BASE_URL}{endpoint}").mock(
        return_value=httpx.Response(200, json={"link": f"{LINK_BASE_URL}{name}", "expires": "2023-11-15T12:10:00Z"})
    )
    respx.get(f"{LINK_BASE_URL}{name}").mock(return_value=httpx.Response(200, json=payload))


class TestLinkedEndpoints:
    @respx.mock
    def test_member_info(self) -> None:
        _link("/data/member/info", "member", SAMPLE_MEMBER_INFO)
        with DataClient() as client:
            member = client.get_member_info(ACCESS_TOKEN)
        assert isinstance(member, MemberInfo)
        assert member.cust_id == 1001
        assert member.member_since == date(2015, 3, 2)

    @respx.mock
    def test_session_results(self) -> None:
        route = respx.get(f"{BASE_URL}/data/results/get").mock(
            return_value=httpx.Response(200, json={"link": f"{LINK_BASE_URL}session"})
        )
        respx.get(f"{LINK_BASE_URL}session").mock(
            return_value=httpx.Response(200, json=session_result(12345, unix(1700000000)))
        )
        with DataClient() as client:
            result = client.get_session_results(ACCESS_TOKEN, 12345, include_licenses=True)
        assert isinstance(result, SessionResult)
        assert result.main_event is not None
        assert result.driver_result(1001).new_irating == 1545
        params = route.calls.last.request.url.params
        assert params["subsession_id"] == "12345"
        assert params["include_licenses"] == "true"

    @respx.mock
    def test_tracks(self) -> None:
        _link("/data/track/get", "tracks", [SAMPLE_TRACK])
        with DataClient() as client:
            tracks = client.get_tracks(ACCESS_TOKEN)
        assert len(tracks) == 1
        assert isinstance(tracks[0], TrackInfo)
        assert tracks[0].track_name == "Lime Rock Park"

    @respx.mock
    def test_cars(self) -> None:
        _link("/data/car/get", "cars", [SAMPLE_CAR])
        with DataClient() as client:
            cars = client.get_cars(ACCESS_TOKEN)
        assert cars[0].car_id == 165

    @respx.mock
    def test_assets_keyed_by_int(self) -> None:
        _link("/data/track/assets", "track-assets", {"18": {"logo": "/img/logos/tracks/limerock.png"}})
        with DataClient() as client:
            assets = client.get_track_assets(ACCESS_TOKEN)
        assert list(assets) == [18]
        assert assets[18].track_id == 18

    @respx.mock
    def test_missing_link(self) -> None:
        respx.get(f"{BASE_URL}/data/member/info").mock(return_value=httpx.Response(200, json={}))
        with DataClient() as client, pytest.raises(MalformedPayloadError):
            client.get_member_info(ACCESS_TOKEN)

    @respx.mock
    def test_invalid_payload(self) -> None:
        _link("/data/member/info", "member", {"display_name": "no id"})
        with DataClient() as client, pytest.raises(MalformedPayloadError):
            client.get_member_info(ACCESS_TOKEN)

    @respx.mock
    def test_unauthorized(self) -> None:
        respx.get(f"{BASE_URL}/data/member/info").mock(return_value=httpx.Response(401))
        with DataClient() as client, pytest.raises(UpstreamUnauthorizedError):
            client.get_member_info(ACCESS_TOKEN)


class TestChunkedSearch:
    @respx.mock
    def test_chunks_concatenated_in_manifest_order(self) -> None:
        respx.get(f"{BASE_URL}/data/results/search_series").mock(
            return_value=httpx.Response(200, json=search_envelope(["b.json", "a.json"], rows=3))
        )
        respx.get(f"{CHUNK_BASE_URL}b.json").mock(
            return_value=httpx.Response(
                200,
                json=[series_result(1, unix(1700000000)), series_result(2, unix(1700001000))],
            )
        )
        respx.get(f"{CHUNK_BASE_URL}a.json").mock(
            return_value=httpx.Response(200, json=[series_result(3, unix(1699000000))])
        )
        with DataClient() as client:
            results = client.search_series_results(ACCESS_TOKEN, BEGIN, END, cust_id=1001, event_types=[5])
        assert [r.subsession_id for r in results] == [1, 2, 3]
        assert all(isinstance(r, SeriesResult) for r in results)

    @respx.mock
    def test_search_params(self) -> None:
        route = respx.get(f"{BASE_URL}/data/results/search_series").mock(
            return_value=httpx.Response(200, json=search_envelope([], rows=0))
        )
        with DataClient() as client:
            client.search_series_results(ACCESS_TOKEN, BEGIN, END, cust_id=1001, event_types=[5])
        params = route.calls.last.request.url.params
        assert params["finish_range_begin"] == "2023-11-10T00:00Z"
        assert params["finish_range_end"] == "2023-11-15T00:00Z"
        assert params["cust_id"] == "1001"
        assert params["event_types"] == "5"

    @respx.mock(assert_all_called=False)
    def test_zero_rows_skips_downloads(self, respx_mock: respx.MockRouter) -> None:
        respx_mock.get(f"{BASE_URL}/data/results/search_series").mock(
            return_value=httpx.Response(200, json=search_envelope(["a.json"], rows=0))
        )
        chunk = respx_mock.get(f"{CHUNK_BASE_URL}a.json").mock(return_value=httpx.Response(200, json=[]))
        with DataClient() as client:
            results = client.search_series_results(ACCESS_TOKEN, BEGIN, END)
        assert results == []
        assert not chunk.called

    @respx.mock
    def test_chunk_failure_names_index(self) -> None:
        respx.get(f"{BASE_URL}/data/results/search_series").mock(
            return_value=httpx.Response(200, json=search_envelope(["a.json", "b.json"], rows=2))
        )
        respx.get(f"{CHUNK_BASE_URL}a.json").mock(
            return_value=httpx.Response(200, json=[series_result(1, unix(1700000000))])
        )
        respx.get(f"{CHUNK_BASE_URL}b.json").mock(return_value=httpx.Response(503, text="Slow Down"))
        with DataClient() as client, pytest.raises(ChunkFetchError) as exc_info:
            client.search_series_results(ACCESS_TOKEN, BEGIN, END)
        assert exc_info.value.index == 2
        assert exc_info.value.total == 2
        assert "chunk 2/2" in str(exc_info.value)

    @respx.mock
    def test_chunk_read_error_names_index(self) -> None:
        respx.get(f"{BASE_URL}/data/results/search_series").mock(
            return_value=httpx.Response(200, json=search_envelope(["a.json", "b.json"], rows=2))
        )
        respx.get(f"{CHUNK_BASE_URL}a.json").mock(
            return_value=httpx.Response(200, json=[series_result(1, unix(1700000000))])
        )
        respx.get(f"{CHUNK_BASE_URL}b.json").mock(side_effect=httpx.ReadError("connection reset"))
        with DataClient() as client, pytest.raises(ChunkFetchError) as exc_info:
            client.search_series_results(ACCESS_TOKEN, BEGIN, END)
        assert exc_info.value.index == 2
        assert exc_info.value.total == 2
        assert isinstance(exc_info.value.__cause__, UpstreamConnectionError)

    @respx.mock
    def test_malformed_chunk(self) -> None:
        respx.get(f"{BASE_URL}/data/results/search_series").mock(
            return_value=httpx.Response(200, json=search_envelope(["a.json"], rows=1))
        )
        respx.get(f"{CHUNK_BASE_URL}a.json").mock(
            return_value=httpx.Response(200, json=[{"subsession_id": "not a number"}])
        )
        with DataClient() as client, pytest.raises(MalformedPayloadError):
            client.search_series_results(ACCESS_TOKEN, BEGIN, END)

    @respx.mock
    def test_unsuccessful_search(self) -> None:
        respx.get(f"{BASE_URL}/data/results/search_series").mock(
            return_value=httpx.Response(200, json={"type": "search_series", "data": {"success": False}})
        )
        with DataClient() as client, pytest.raises(MalformedPayloadError):
            client.search_series_results(ACCESS_TOKEN, BEGIN, END)


class TestLapData:
    @respx.mock
    def test_laps_from_chunks(self) -> None:
        envelope = {
            "success": True,
            "best_lap_num": 1,
            "best_lap_time": 589876,
            "cust_id": 1001,
            "chunk_info": {
                "rows": 2,
                "base_download_url": CHUNK_BASE_URL,
                "chunk_file_names": ["laps.json"],
            },
        }
        route = respx.get(f"{BASE_URL}/data/results/lap_data").mock(
            return_value=httpx.Response(200, json={"link": f"{LINK_BASE_URL}laps"})
        )
        respx.get(f"{LINK_BASE_URL}laps").mock(return_value=httpx.Response(200, json=envelope))
        respx.get(f"{CHUNK_BASE_URL}laps.json").mock(
            return_value=httpx.Response(200, json=[SAMPLE_LAP, {**SAMPLE_LAP, "lap_number": 2, "lap_time": -1}])
        )
        with DataClient() as client:
            data = client.get_lap_data(ACCESS_TOKEN, 12345, 0, cust_id=1001)
        assert [lap.lap_number for lap in data.laps] == [1, 2]
        assert isinstance(data.laps[0], Lap)
        assert data.laps[0].lap_timedelta == timedelta(seconds=58, microseconds=987600)
        assert data.laps[1].lap_timedelta is None
        params = route.calls.last.request.url.params
        assert params["simsession_number"] == "0"
        assert params["cust_id"] == "1001"


class TestClientLifecycle:
    @respx.mock
    def test_context_manager(self) -> None:
        _link("/data/car/get", "cars", [])
        with DataClient() as client:
            assert client.get_cars(ACCESS_TOKEN) == []

    @respx.mock
    def test_access_token_not_logged(self, caplog: pytest.LogCaptureFixture) -> None:
        _link("/data/car/get", "cars", [])
        with caplog.at_level(logging.DEBUG, logger="racehistory.api"):
            with DataClient() as client:
                client.get_cars("shortTok19")
        assert "shortTok19" not in caplog.text
        assert "OK: DataClient.get_cars() -> 0 items" in caplog.text

    def test_all_endpoint_methods_exist(self) -> None:
        client = DataClient()
        endpoints = [
            "get_member_info", "search_series_results", "get_session_results",
            "get_lap_data", "get_tracks", "get_track_assets", "get_cars", "get_car_assets",
        ]
        for endpoint in endpoints:
            assert callable(getattr(client, endpoint)), f"Missing endpoint: {endpoint}"
        client.close()
