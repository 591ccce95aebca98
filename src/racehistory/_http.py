"""Low-level HTTP transport layer wrapping httpx."""

from __future__ import annotations

import logging
import time
from typing import Any

import httpx

from racehistory.exceptions import (
    MalformedPayloadError,
    UpstreamAPIError,
    UpstreamConnectionError,
    UpstreamTimeoutError,
    UpstreamUnauthorizedError,
)
from racehistory.metrics import UPSTREAM_RATELIMIT_REMAINING, MetricsEmitter, NoopMetrics

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://members-ng.iracing.com"
DEFAULT_TIMEOUT = 30.0

# Warn once remaining quota drops under limit / LOW_QUOTA_DIVISOR (20%).
LOW_QUOTA_DIVISOR = 5


def _parse_json(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError as exc:
        raise MalformedPayloadError(f"response from {response.url} is not JSON: {exc}") from exc


def _handle_response(response: httpx.Response) -> Any:
    """Validate response status and return parsed JSON."""
    if response.status_code == 401:
        logger.warning("401 received from upstream API: %s", response.text)
        raise UpstreamUnauthorizedError()
    if response.status_code != 200:
        raise UpstreamAPIError(
            status_code=response.status_code,
            message=response.text,
        )
    return _parse_json(response)


def _header_int(value: str) -> int:
    try:
        return int(value)
    except ValueError:
        return 0


class SyncTransport:
    """Synchronous HTTP transport using httpx.Client.

    ``api_get`` talks to the authenticated data API; ``fetch`` follows signed
    links and chunk URLs, which must not carry the bearer token.
    """

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = DEFAULT_TIMEOUT,
        metrics: MetricsEmitter | None = None,
    ) -> None:
        self._client = httpx.Client(
            base_url=base_url,
            timeout=timeout,
            headers={"Accept": "application/json"},
        )
        self._metrics = metrics or NoopMetrics()

    def _send(self, url: str, **kwargs: Any) -> httpx.Response:
        try:
            return self._client.get(url, **kwargs)
        except httpx.ConnectError as exc:
            raise UpstreamConnectionError(str(exc)) from exc
        except httpx.TimeoutException as exc:
            raise UpstreamTimeoutError(str(exc)) from exc
        except httpx.TransportError as exc:
            raise UpstreamConnectionError(str(exc)) from exc

    def api_get(
        self,
        endpoint: str,
        access_token: str,
        params: list[tuple[str, str]] | None = None,
    ) -> Any:
        """Perform an authenticated GET request and return parsed JSON."""
        response = self._send(
            endpoint,
            params=params or [],
            headers={"Authorization": f"Bearer {access_token}"},
        )
        self._record_rate_limit(response)
        return _handle_response(response)

    def fetch(self, url: str) -> Any:
        """Perform an unauthenticated GET of an absolute URL and return parsed JSON."""
        response = self._send(url)
        if response.status_code != 200:
            raise UpstreamAPIError(
                status_code=response.status_code,
                message=response.text,
            )
        return _parse_json(response)

    def _record_rate_limit(self, response: httpx.Response) -> None:
        limit_str = response.headers.get("x-ratelimit-limit", "")
        remaining_str = response.headers.get("x-ratelimit-remaining", "")
        reset_str = response.headers.get("x-ratelimit-reset", "")
        if not (limit_str or remaining_str or reset_str):
            return

        limit = _header_int(limit_str)
        remaining = _header_int(remaining_str)

        try:
            self._metrics.emit_gauge(UPSTREAM_RATELIMIT_REMAINING, float(remaining))
        except Exception:
            logger.warning("failed to emit rate limit metric", exc_info=True)

        reset_in = _header_int(reset_str) - int(time.time()) if reset_str else None
        is_low = limit > 0 and remaining < limit / LOW_QUOTA_DIVISOR
        logger.log(
            logging.WARNING if is_low else logging.DEBUG,
            "%s: limit=%s remaining=%s reset=%s reset_in=%ss",
            "upstream rate limit running low" if is_low else "upstream rate limit status",
            limit_str, remaining_str, reset_str, reset_in,
        )

    def close(self) -> None:
        self._client.close()
