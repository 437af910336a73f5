import uuid
from datetime import datetime

from pydantic import BaseModel


class RegisterOut(BaseModel):
    registrant_id: int
    status: str                      # confirmed | waitlist
    waitlist_pos: int | None = None


class WithdrawOut(BaseModel):
    prior_status: str
    promoted_user_ids: list[uuid.UUID] = []


class MyRegistrationOut(BaseModel):
    """Registration with activity details for the player's schedule"""
    registrant_id: int
    activity_id: uuid.UUID
    activity_title: str | None = None
    starts_at_utc: datetime
    activity_status: str             # scheduled | closed | canceled
    unit_type: str
    status: str                      # confirmed | waitlist
    waitlist_pos: int | None = None
    team_id: int | None = None
    partner_status: str = "none"
