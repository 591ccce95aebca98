"""Tests for the query parameter builders."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from racehistory._params import (
    EVENT_TYPE_RACE,
    FinishRange,
    build_query_params,
    format_upstream_time,
)


class TestFormatUpstreamTime:
    def test_minute_precision(self) -> None:
        t = datetime(2023, 11, 14, 22, 13, 20, 500000, tzinfo=timezone.utc)
        assert format_upstream_time(t) == "2023-11-14T22:13Z"

    def test_naive_is_utc(self) -> None:
        assert format_upstream_time(datetime(2024, 1, 2, 3, 4)) == "2024-01-02T03:04Z"

    def test_converts_to_utc(self) -> None:
        t = datetime(2024, 1, 2, 5, 4, tzinfo=timezone(timedelta(hours=2)))
        assert format_upstream_time(t) == "2024-01-02T03:04Z"


class TestFinishRange:
    def test_to_params(self) -> None:
        window = FinishRange(
            datetime(2023, 11, 10, tzinfo=timezone.utc),
            datetime(2023, 11, 20, tzinfo=timezone.utc),
        )
        assert window.to_params() == [
            ("finish_range_begin", "2023-11-10T00:00Z"),
            ("finish_range_end", "2023-11-20T00:00Z"),
        ]

    def test_frozen(self) -> None:
        """FinishRange should be immutable."""
        window = FinishRange(datetime(2023, 1, 1), datetime(2023, 1, 2))
        with pytest.raises(AttributeError):
            window.begin = datetime(2024, 1, 1)  # type: ignore[misc]


class TestBuildQueryParams:
    def test_simple_params(self) -> None:
        params = build_query_params(subsession_id=12345, simsession_number=0)
        assert params == [("subsession_id", "12345"), ("simsession_number", "0")]

    def test_none_skipped(self) -> None:
        params = build_query_params(subsession_id=12345, cust_id=None)
        assert params == [("subsession_id", "12345")]

    def test_empty_list_skipped(self) -> None:
        assert build_query_params(event_types=[]) == []

    def test_list_as_csv(self) -> None:
        assert build_query_params(event_types=[EVENT_TYPE_RACE, 2]) == [("event_types", "5,2")]

    def test_bool_lowercase(self) -> None:
        assert build_query_params(include_licenses=True) == [("include_licenses", "true")]
        assert build_query_params(include_licenses=False) == [("include_licenses", "false")]

    def test_range_first(self) -> None:
        window = FinishRange(datetime(2023, 11, 10), datetime(2023, 11, 11))
        params = build_query_params(window, cust_id=1001)
        assert params[0][0] == "finish_range_begin"
        assert params[1][0] == "finish_range_end"
        assert params[2] == ("cust_id", "1001")

    def test_empty(self) -> None:
        assert build_query_params() == []
