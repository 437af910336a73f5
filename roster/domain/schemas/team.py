import uuid
from datetime import datetime

from pydantic import BaseModel
from typing import Optional


class InviteIn(BaseModel):
    invitee_id: uuid.UUID


class InviteOut(BaseModel):
    team_id: int


class RespondIn(BaseModel):
    accept: bool
    notification_id: Optional[int] = None


class RespondOut(BaseModel):
    team_id: int
    accepted: bool
    status: str | None = None        # confirmed | waitlist when accepted
    waitlist_pos: int | None = None


class LeaveIn(BaseModel):
    notification_id: Optional[int] = None


class LeaveOut(BaseModel):
    team_id: int
    team_status: str                 # status before dissolving
    promoted_user_ids: list[uuid.UUID] = []


class TeamMemberOut(BaseModel):
    user_id: uuid.UUID
    name: str
    photo_url: str | None = None


class TeamOut(BaseModel):
    team_id: int
    status: str                      # pending | confirmed
    player1: TeamMemberOut
    player2: TeamMemberOut
    unit_status: str | None = None   # confirmed | waitlist once the team holds a unit
    waitlist_pos: int | None = None
    created_at: datetime
    confirmed_at: datetime | None = None
