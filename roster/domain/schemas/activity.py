import uuid
from datetime import datetime, timezone

from pydantic import BaseModel, Field, field_validator
from typing import Optional, Literal, Annotated


class ActivityCreateIn(BaseModel):
    title: Optional[Annotated[str, Field(max_length=200)]] = None
    starts_at_utc: datetime
    capacity: Annotated[int, Field(ge=0, le=1000)]
    unit_type: Literal["players", "teams"] = "players"

    @field_validator("starts_at_utc")
    @classmethod
    def ensure_tz(cls, v: datetime):
        if v.tzinfo is None:
            # treat naive input as UTC
            return v.replace(tzinfo=timezone.utc)
        return v.astimezone(timezone.utc)


class ActivityOut(BaseModel):
    id: uuid.UUID
    title: str | None = None
    starts_at_utc: datetime
    capacity: int
    unit_type: str
    status: str                      # scheduled | closed | canceled
    confirmed_count: int
    waitlist_count: int
    spots_left: int


class RegistrantRowOut(BaseModel):
    registrant_id: int
    user_id: uuid.UUID
    name: str
    photo_url: str | None = None
    status: str                      # confirmed | waitlist
    waitlist_pos: int | None = None
    team_id: int | None = None
    looking_for_partner: bool = False
    partner_status: str = "none"
    registered_at: datetime


class CloseDueOut(BaseModel):
    count: int
    activity_ids: list[uuid.UUID] = []
