"""Tests for the HTTP transport layer."""

from __future__ import annotations

import logging
from unittest.mock import MagicMock

import httpx
import pytest
import respx

from racehistory._http import SyncTransport
from racehistory.exceptions import (
    MalformedPayloadError,
    UpstreamAPIError,
    UpstreamConnectionError,
    UpstreamTimeoutError,
    UpstreamUnauthorizedError,
)
from racehistory.metrics import UPSTREAM_RATELIMIT_REMAINING

BASE_URL = "https://members-ng.iracing.com"
TOKEN = "t" * 40


class TestSyncTransport:
    @respx.mock
    def test_api_get_success(self) -> None:
        respx.get(f"{BASE_URL}/data/member/info").mock(
            return_value=httpx.Response(200, json={"link": "https://example.com/x"})
        )
        transport = SyncTransport()
        result = transport.api_get("/data/member/info", TOKEN)
        assert result == {"link": "https://example.com/x"}
        transport.close()

    @respx.mock
    def test_api_get_sends_bearer_token_and_params(self) -> None:
        route = respx.get(f"{BASE_URL}/data/results/get").mock(
            return_value=httpx.Response(200, json={})
        )
        transport = SyncTransport()
        transport.api_get("/data/results/get", TOKEN, [("subsession_id", "12345")])
        request = route.calls.last.request
        assert request.headers["Authorization"] == f"Bearer {TOKEN}"
        assert request.url.params["subsession_id"] == "12345"
        transport.close()

    @respx.mock
    def test_fetch_does_not_send_token(self) -> None:
        route = respx.get("https://scorpio-assets.s3.amazonaws.com/chunk.json").mock(
            return_value=httpx.Response(200, json=[])
        )
        transport = SyncTransport()
        assert transport.fetch("https://scorpio-assets.s3.amazonaws.com/chunk.json") == []
        assert "Authorization" not in route.calls.last.request.headers
        transport.close()

    @respx.mock
    def test_api_get_401(self) -> None:
        respx.get(f"{BASE_URL}/data/member/info").mock(
            return_value=httpx.Response(401, text="Unauthorized")
        )
        transport = SyncTransport()
        with pytest.raises(UpstreamUnauthorizedError):
            transport.api_get("/data/member/info", TOKEN)
        transport.close()

    @respx.mock
    def test_401_is_not_an_api_error(self) -> None:
        respx.get(f"{BASE_URL}/data/member/info").mock(
            return_value=httpx.Response(401, text="Unauthorized")
        )
        transport = SyncTransport()
        with pytest.raises(UpstreamUnauthorizedError) as exc_info:
            transport.api_get("/data/member/info", TOKEN)
        assert not isinstance(exc_info.value, UpstreamAPIError)
        transport.close()

    @respx.mock
    def test_api_get_500(self) -> None:
        respx.get(f"{BASE_URL}/data/member/info").mock(
            return_value=httpx.Response(500, text="Internal Server Error")
        )
        transport = SyncTransport()
        with pytest.raises(UpstreamAPIError) as exc_info:
            transport.api_get("/data/member/info", TOKEN)
        assert exc_info.value.status_code == 500
        transport.close()

    @respx.mock
    def test_fetch_404(self) -> None:
        respx.get("https://scorpio-assets.s3.amazonaws.com/missing.json").mock(
            return_value=httpx.Response(404, text="Not Found")
        )
        transport = SyncTransport()
        with pytest.raises(UpstreamAPIError) as exc_info:
            transport.fetch("https://scorpio-assets.s3.amazonaws.com/missing.json")
        assert exc_info.value.status_code == 404
        transport.close()

    @respx.mock
    def test_invalid_json(self) -> None:
        respx.get(f"{BASE_URL}/data/member/info").mock(
            return_value=httpx.Response(200, text="<html>maintenance</html>")
        )
        transport = SyncTransport()
        with pytest.raises(MalformedPayloadError):
            transport.api_get("/data/member/info", TOKEN)
        transport.close()

    @respx.mock
    def test_connection_error(self) -> None:
        respx.get(f"{BASE_URL}/data/member/info").mock(side_effect=httpx.ConnectError("fail"))
        transport = SyncTransport()
        with pytest.raises(UpstreamConnectionError):
            transport.api_get("/data/member/info", TOKEN)
        transport.close()

    @respx.mock
    def test_timeout_error(self) -> None:
        respx.get(f"{BASE_URL}/data/member/info").mock(side_effect=httpx.ReadTimeout("timeout"))
        transport = SyncTransport()
        with pytest.raises(UpstreamTimeoutError):
            transport.api_get("/data/member/info", TOKEN)
        transport.close()

    @respx.mock
    def test_read_error_is_connection_error(self) -> None:
        respx.get("https://scorpio-assets.s3.amazonaws.com/chunk.json").mock(
            side_effect=httpx.ReadError("connection reset")
        )
        transport = SyncTransport()
        with pytest.raises(UpstreamConnectionError):
            transport.fetch("https://scorpio-assets.s3.amazonaws.com/chunk.json")
        transport.close()

    @respx.mock
    def test_protocol_error_is_connection_error(self) -> None:
        respx.get(f"{BASE_URL}/data/member/info").mock(
            side_effect=httpx.RemoteProtocolError("server disconnected")
        )
        transport = SyncTransport()
        with pytest.raises(UpstreamConnectionError):
            transport.api_get("/data/member/info", TOKEN)
        transport.close()


class TestRateLimit:
    @respx.mock
    def test_emits_remaining_gauge(self) -> None:
        respx.get(f"{BASE_URL}/data/member/info").mock(
            return_value=httpx.Response(
                200,
                json={},
                headers={"x-ratelimit-limit": "240", "x-ratelimit-remaining": "200"},
            )
        )
        metrics = MagicMock()
        transport = SyncTransport(metrics=metrics)
        transport.api_get("/data/member/info", TOKEN)
        metrics.emit_gauge.assert_called_once_with(UPSTREAM_RATELIMIT_REMAINING, 200.0)
        transport.close()

    @respx.mock
    def test_warns_when_quota_low(self, caplog: pytest.LogCaptureFixture) -> None:
        respx.get(f"{BASE_URL}/data/member/info").mock(
            return_value=httpx.Response(
                200,
                json={},
                headers={"x-ratelimit-limit": "240", "x-ratelimit-remaining": "10"},
            )
        )
        transport = SyncTransport()
        with caplog.at_level(logging.DEBUG, logger="racehistory._http"):
            transport.api_get("/data/member/info", TOKEN)
        warnings = [r for r in caplog.records if r.levelno == logging.WARNING]
        assert len(warnings) == 1
        assert "running low" in warnings[0].getMessage()
        transport.close()

    @respx.mock
    def test_no_headers_no_metric(self) -> None:
        respx.get(f"{BASE_URL}/data/member/info").mock(return_value=httpx.Response(200, json={}))
        metrics = MagicMock()
        transport = SyncTransport(metrics=metrics)
        transport.api_get("/data/member/info", TOKEN)
        metrics.emit_gauge.assert_not_called()
        transport.close()

    @respx.mock
    def test_metric_failure_does_not_fail_request(self) -> None:
        respx.get(f"{BASE_URL}/data/member/info").mock(
            return_value=httpx.Response(200, json={"ok": True}, headers={"x-ratelimit-remaining": "5"})
        )
        metrics = MagicMock()
        metrics.emit_gauge.side_effect = RuntimeError("cloudwatch down")
        transport = SyncTransport(metrics=metrics)
        assert transport.api_get("/data/member/info", TOKEN) == {"ok": True}
        transport.close()
