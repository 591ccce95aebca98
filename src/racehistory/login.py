"""Member sign-in: authorization code in, driver record created or stamped.

    service = LoginService(oauth, DataClient(), store)
    result = service.handle_callback(code, code_verifier, redirect_uri)

Session tokens for the browser are issued elsewhere; this layer hands back the
upstream tokens and who they belong to.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timezone
from typing import Callable, Protocol

from racehistory._logging import log_service_call
from racehistory.exceptions import EntityAlreadyExistsError
from racehistory.models.member import MemberInfo
from racehistory.models.token import TokenResponse
from racehistory.store.entities import Driver

logger = logging.getLogger(__name__)


class TokenIssuer(Protocol):
    def exchange_code(self, code: str, code_verifier: str, redirect_uri: str) -> TokenResponse: ...

    def refresh(self, refresh_token: str) -> TokenResponse: ...


class MemberSource(Protocol):
    def get_member_info(self, access_token: str) -> MemberInfo: ...


class DriverStore(Protocol):
    def get_driver(self, driver_id: int) -> Driver | None: ...

    def insert_driver(self, driver: Driver) -> None: ...

    def record_login(self, driver_id: int) -> None: ...


@dataclass(frozen=True)
class LoginResult:
    token: TokenResponse
    expires_at: datetime
    driver_id: int
    driver_name: str
    first_login: bool = False


def _midnight(day: date) -> datetime:
    return datetime.combine(day, time(), tzinfo=timezone.utc)


class LoginService:
    def __init__(
        self,
        oauth: TokenIssuer,
        members: MemberSource,
        store: DriverStore,
        now: Callable[[], datetime] | None = None,
    ) -> None:
        self._oauth = oauth
        self._members = members
        self._store = store
        self._now = now or (lambda: datetime.now(timezone.utc))

    @log_service_call
    def handle_callback(self, code: str, code_verifier: str, redirect_uri: str) -> LoginResult:
        """Complete an authorization-code sign-in.

        A first sign-in creates the driver record (and bumps the drivers
        counter); later ones stamp ``last_login`` and bump ``login_count``.
        """
        token = self._oauth.exchange_code(code, code_verifier, redirect_uri)
        member = self._members.get_member_info(token.access_token)
        first_login = self._register(member)
        return LoginResult(
            token=token,
            expires_at=token.token_expiry(self._now()),
            driver_id=member.cust_id,
            driver_name=member.display_name,
            first_login=first_login,
        )

    @log_service_call
    def handle_refresh(self, driver_id: int, driver_name: str, refresh_token: str) -> LoginResult:
        """Trade a refresh token for new upstream tokens. Does not count as a sign-in."""
        token = self._oauth.refresh(refresh_token)
        return LoginResult(
            token=token,
            expires_at=token.token_expiry(self._now()),
            driver_id=driver_id,
            driver_name=driver_name,
        )

    def _register(self, member: MemberInfo) -> bool:
        if self._store.get_driver(member.cust_id) is not None:
            self._store.record_login(member.cust_id)
            return False

        now = self._now()
        try:
            self._store.insert_driver(Driver(
                driver_id=member.cust_id,
                driver_name=member.display_name,
                member_since=_midnight(member.member_since),
                first_login=now,
                last_login=now,
                login_count=1,
            ))
        except EntityAlreadyExistsError:
            # Lost a race with a concurrent first sign-in
            logger.info("driver %d created concurrently, recording login", member.cust_id)
            self._store.record_login(member.cust_id)
            return False
        logger.info("registered driver %d", member.cust_id)
        return True
