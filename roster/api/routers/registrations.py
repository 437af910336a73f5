from __future__ import annotations
import uuid

from fastapi import APIRouter, Depends, Query
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ...auth.deps import get_current_user
from ...db import get_db
from ...models import Activity, Registrant, User
from ...repos.registrants import ACTIVE
from ...services import registration as registration_service
from ...services.errors import RosterError
from ...domain.schemas.registration import RegisterOut, WithdrawOut, MyRegistrationOut
from ..errors import to_http

router = APIRouter(tags=["registrations"])


@router.post("/activities/{activity_id}/register", response_model=RegisterOut)
async def register(
    activity_id: uuid.UUID,
    current: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    try:
        res = await registration_service.register(db, current.id, activity_id)
    except RosterError as e:
        raise to_http(e)
    return RegisterOut(registrant_id=res.registrant_id, status=res.status, waitlist_pos=res.waitlist_pos)


@router.post("/activities/{activity_id}/withdraw", response_model=WithdrawOut)
async def withdraw(
    activity_id: uuid.UUID,
    current: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    try:
        res = await registration_service.withdraw(db, current.id, activity_id)
    except RosterError as e:
        raise to_http(e)
    return WithdrawOut(prior_status=res.prior_status, promoted_user_ids=res.promoted_user_ids)


@router.get("/me/registrations", response_model=list[MyRegistrationOut])
async def my_registrations(
    current: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    show_past: bool = Query(default=False, description="Show closed activities instead of upcoming"),
):
    q = (
        select(Registrant, Activity)
        .join(Activity, Activity.id == Registrant.activity_id)
        .where(Registrant.user_id == current.id, Registrant.status.in_(ACTIVE))
    )
    if show_past:
        q = q.where(Activity.status == "closed").order_by(Activity.starts_at.desc())
    else:
        q = q.where(Activity.status != "closed").order_by(Activity.starts_at.asc())
    rows = await db.execute(q)

    return [
        MyRegistrationOut(
            registrant_id=reg.id,
            activity_id=a.id,
            activity_title=a.title,
            starts_at_utc=a.starts_at,
            activity_status=a.status,
            unit_type=a.unit_type,
            status=reg.status,
            waitlist_pos=reg.waitlist_pos,
            team_id=reg.team_id,
            partner_status=reg.partner_status,
        )
        for reg, a in rows.all()
    ]
