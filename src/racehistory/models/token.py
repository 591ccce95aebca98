"""OAuth token response model."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from pydantic import BaseModel, ConfigDict


class TokenResponse(BaseModel):
    """Tokens issued by the authorization server."""

    model_config = ConfigDict(frozen=True)

    access_token: str
    token_type: str
    expires_in: int
    refresh_token: str | None = None

    def token_expiry(self, now: datetime | None = None) -> datetime:
        """Absolute expiry of the access token, measured from ``now``."""
        start = now or datetime.now(timezone.utc)
        return start + timedelta(seconds=self.expires_in)
