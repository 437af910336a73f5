from __future__ import annotations
import uuid
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ...auth.deps import require_admin
from ...config import get_settings
from ...db import get_db
from ...models import Activity, Registrant, User
from ...repos import activities as activities_repo
from ...repos import registrants as regs_repo
from ...repos import teams as teams_repo
from ...repos import users as users_repo
from ...services.activity_lifecycle import close_due_activities
from ...services.errors import RosterError
from ...domain.profile import UNKNOWN_PLAYER
from ...domain.schemas.activity import ActivityCreateIn, ActivityOut, CloseDueOut, RegistrantRowOut
from ...domain.schemas.team import TeamMemberOut, TeamOut
from ..errors import to_http

router = APIRouter(prefix="/activities", tags=["activities"])

S = get_settings()


def _activity_out(a: Activity) -> ActivityOut:
    return ActivityOut(
        id=a.id,
        title=a.title,
        starts_at_utc=a.starts_at,
        capacity=a.capacity,
        unit_type=a.unit_type,
        status=a.status,
        confirmed_count=a.confirmed_count,
        waitlist_count=a.waitlist_count,
        spots_left=max(0, a.capacity - a.confirmed_count),
    )


def _row_out(reg: Registrant, user: User) -> RegistrantRowOut:
    return RegistrantRowOut(
        registrant_id=reg.id,
        user_id=user.id,
        name=user.name,
        photo_url=user.photo_url,
        status=reg.status,
        waitlist_pos=reg.waitlist_pos,
        team_id=reg.team_id,
        looking_for_partner=reg.looking_for_partner,
        partner_status=reg.partner_status,
        registered_at=reg.registered_at,
    )


async def _get_or_404(db: AsyncSession, activity_id: uuid.UUID) -> Activity:
    a = await activities_repo.get(db, activity_id)
    if not a:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="activity not found")
    return a


@router.post("", response_model=ActivityOut, status_code=status.HTTP_201_CREATED)
async def create_activity(
    payload: ActivityCreateIn,
    _: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    a = await activities_repo.create_activity(
        db,
        title=payload.title,
        starts_at_utc=payload.starts_at_utc,
        capacity=payload.capacity,
        unit_type=payload.unit_type,
    )
    await db.commit()
    return _activity_out(a)


@router.post("/close-due", response_model=CloseDueOut)
async def close_due(
    _: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Run the auto-close pass now instead of waiting for the closer worker."""
    try:
        closed = await close_due_activities(db, batch=S.AUTO_CLOSE_BATCH, grace_hours=S.AUTO_CLOSE_GRACE_HOURS)
    except RosterError as e:
        raise to_http(e)
    return CloseDueOut(count=len(closed), activity_ids=closed)


@router.get("", response_model=list[ActivityOut])
async def list_activities(
    db: AsyncSession = Depends(get_db),
    limit: int = Query(default=50, ge=1, le=200),
):
    rows = await activities_repo.list_upcoming(db, now_utc=datetime.now(timezone.utc), limit=limit)
    return [_activity_out(a) for a in rows]


@router.get("/{activity_id}", response_model=ActivityOut)
async def get_activity(activity_id: uuid.UUID, db: AsyncSession = Depends(get_db)):
    return _activity_out(await _get_or_404(db, activity_id))


@router.get("/{activity_id}/registrants", response_model=list[RegistrantRowOut])
async def list_registrants(activity_id: uuid.UUID, db: AsyncSession = Depends(get_db)):
    await _get_or_404(db, activity_id)
    return [_row_out(reg, user) for reg, user in await regs_repo.list_for_activity(db, activity_id)]


@router.get("/{activity_id}/free-agents", response_model=list[RegistrantRowOut])
async def list_free_agents(activity_id: uuid.UUID, db: AsyncSession = Depends(get_db)):
    await _get_or_404(db, activity_id)
    return [_row_out(reg, user) for reg, user in await regs_repo.list_free_agents(db, activity_id)]


@router.get("/{activity_id}/teams", response_model=list[TeamOut])
async def list_teams(
    activity_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    status_filter: str | None = Query(default=None, alias="status", pattern="^(pending|confirmed)$"),
):
    await _get_or_404(db, activity_id)
    teams = await teams_repo.list_for_activity(db, activity_id, status=status_filter)
    if not teams:
        return []

    users = await users_repo.get_many(db, list({t.player1_id for t in teams} | {t.player2_id for t in teams}))
    # unit row of each confirmed team carries its place in the ledger
    units = {
        r.team_id: r
        for r in (
            await db.execute(
                select(Registrant).where(
                    Registrant.team_id.in_([t.id for t in teams]),
                    Registrant.is_primary.is_(True),
                    Registrant.status.in_(regs_repo.ACTIVE),
                )
            )
        ).scalars().all()
    }

    def member(uid: uuid.UUID) -> TeamMemberOut:
        u = users.get(uid)
        return TeamMemberOut(user_id=uid, name=u.name if u else UNKNOWN_PLAYER, photo_url=u.photo_url if u else None)

    out: list[TeamOut] = []
    for t in teams:
        unit = units.get(t.id)
        out.append(
            TeamOut(
                team_id=t.id,
                status=t.status,
                player1=member(t.player1_id),
                player2=member(t.player2_id),
                unit_status=unit.status if unit else None,
                waitlist_pos=unit.waitlist_pos if unit else None,
                created_at=t.created_at,
                confirmed_at=t.confirmed_at,
            )
        )
    return out
