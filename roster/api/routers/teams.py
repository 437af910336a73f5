from __future__ import annotations
import uuid

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from ...auth.deps import get_current_user
from ...db import get_db
from ...models import User
from ...services import teams as teams_service
from ...services.errors import RosterError
from ...domain.schemas.team import InviteIn, InviteOut, RespondIn, RespondOut, LeaveIn, LeaveOut
from ..errors import to_http

router = APIRouter(tags=["teams"])


@router.post("/activities/{activity_id}/invites", response_model=InviteOut, status_code=status.HTTP_201_CREATED)
async def invite(
    activity_id: uuid.UUID,
    payload: InviteIn,
    current: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    try:
        res = await teams_service.invite_teammate(db, current.id, payload.invitee_id, activity_id)
    except RosterError as e:
        raise to_http(e)
    return InviteOut(team_id=res.team_id)


@router.post("/teams/{team_id}/respond", response_model=RespondOut)
async def respond(
    team_id: int,
    payload: RespondIn,
    current: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    try:
        res = await teams_service.respond_to_invite(
            db, current.id, team_id, payload.accept, notification_id=payload.notification_id
        )
    except RosterError as e:
        raise to_http(e)
    return RespondOut(team_id=res.team_id, accepted=res.accepted, status=res.status, waitlist_pos=res.waitlist_pos)


@router.post("/teams/{team_id}/leave", response_model=LeaveOut)
async def leave(
    team_id: int,
    payload: LeaveIn | None = None,
    current: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    try:
        res = await teams_service.leave_team(
            db, current.id, team_id, notification_id=payload.notification_id if payload else None
        )
    except RosterError as e:
        raise to_http(e)
    return LeaveOut(team_id=res.team_id, team_status=res.team_status, promoted_user_ids=res.promoted_user_ids)
