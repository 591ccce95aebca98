"""Member info model."""

from __future__ import annotations

from datetime import date

from pydantic import BaseModel, ConfigDict


class MemberInfo(BaseModel):
    """The authenticated member, as returned by ``/data/member/info``."""

    model_config = ConfigDict(frozen=True)

    cust_id: int
    display_name: str
    member_since: date
