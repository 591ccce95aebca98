"""OAuth token client for the upstream authorization server."""

from __future__ import annotations

import base64
import hashlib

import httpx
from pydantic import ValidationError

from racehistory.exceptions import (
    MalformedPayloadError,
    OAuthError,
    UpstreamConnectionError,
    UpstreamTimeoutError,
)
from racehistory.models.token import TokenResponse

DEFAULT_TOKEN_URL = "https://oauth.iracing.com/oauth2/token"


def mask_secret(client_secret: str, client_id: str) -> str:
    """Mask a client secret the way the token endpoint requires.

    ``base64(sha256(secret + lowercase(trim(client_id))))``
    """
    digest = hashlib.sha256((client_secret + client_id.strip().lower()).encode("utf-8")).digest()
    return base64.b64encode(digest).decode("ascii")


class OAuthClient:
    """Exchanges authorization codes and refresh tokens for access tokens."""

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        token_url: str = DEFAULT_TOKEN_URL,
        timeout: float = 30.0,
    ) -> None:
        self._client_id = client_id
        self._client_secret = client_secret
        self._token_url = token_url
        self._client = httpx.Client(timeout=timeout)

    def __enter__(self) -> OAuthClient:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    def close(self) -> None:
        self._client.close()

    def exchange_code(self, code: str, code_verifier: str, redirect_uri: str) -> TokenResponse:
        """Exchange an authorization code (PKCE flow) for tokens."""
        return self._request_token({
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": redirect_uri,
            "code_verifier": code_verifier,
        })

    def refresh(self, refresh_token: str) -> TokenResponse:
        """Trade a refresh token for a fresh access token."""
        return self._request_token({
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
        })

    def _request_token(self, form: dict[str, str]) -> TokenResponse:
        form = {
            **form,
            "client_id": self._client_id,
            "client_secret": mask_secret(self._client_secret, self._client_id),
        }
        try:
            response = self._client.post(self._token_url, data=form)
        except httpx.ConnectError as exc:
            raise UpstreamConnectionError(str(exc)) from exc
        except httpx.TimeoutException as exc:
            raise UpstreamTimeoutError(str(exc)) from exc
        except httpx.TransportError as exc:
            raise UpstreamConnectionError(str(exc)) from exc

        if response.status_code != 200:
            raise OAuthError(response.status_code, response.text)
        try:
            return TokenResponse.model_validate_json(response.content)
        except ValidationError as exc:
            raise MalformedPayloadError(f"Failed to validate token response: {exc}") from exc
