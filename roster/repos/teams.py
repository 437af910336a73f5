from __future__ import annotations
import uuid
from typing import Iterable, Optional, Sequence

from sqlalchemy import select, or_
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import Team


async def get(db: AsyncSession, team_id: int) -> Optional[Team]:
    res = await db.execute(select(Team).where(Team.id == team_id))
    return res.scalar_one_or_none()


async def get_for_update(db: AsyncSession, team_id: int) -> Optional[Team]:
    res = await db.execute(
        select(Team)
        .where(Team.id == team_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return res.scalar_one_or_none()


async def find_pending(
    db: AsyncSession, *, activity_id: uuid.UUID, inviter_id: uuid.UUID, invitee_id: uuid.UUID
) -> Optional[Team]:
    res = await db.execute(
        select(Team).where(
            Team.activity_id == activity_id,
            Team.player1_id == inviter_id,
            Team.player2_id == invitee_id,
            Team.status == "pending",
        )
    )
    return res.scalars().first()


async def list_pending_involving(
    db: AsyncSession,
    *,
    activity_id: uuid.UUID,
    user_ids: Iterable[uuid.UUID],
    exclude_team_id: Optional[int] = None,
) -> Sequence[Team]:
    ids = list(user_ids)
    q = (
        select(Team)
        .where(
            Team.activity_id == activity_id,
            Team.status == "pending",
            or_(Team.player1_id.in_(ids), Team.player2_id.in_(ids)),
        )
        .order_by(Team.id.asc())
        .with_for_update()
    )
    if exclude_team_id is not None:
        q = q.where(Team.id != exclude_team_id)
    res = await db.execute(q)
    return list(res.scalars().all())


async def list_pending_for_update(db: AsyncSession, activity_id: uuid.UUID) -> Sequence[Team]:
    res = await db.execute(
        select(Team)
        .where(Team.activity_id == activity_id, Team.status == "pending")
        .order_by(Team.id.asc())
        .with_for_update()
    )
    return list(res.scalars().all())


async def create_pending(
    db: AsyncSession, *, activity_id: uuid.UUID, inviter_id: uuid.UUID, invitee_id: uuid.UUID
) -> Team:
    t = Team(activity_id=activity_id, player1_id=inviter_id, player2_id=invitee_id, status="pending")
    db.add(t)
    await db.flush()
    return t


# ---------- read side ----------
async def list_for_activity(db: AsyncSession, activity_id: uuid.UUID, *, status: Optional[str] = None) -> Sequence[Team]:
    q = select(Team).where(Team.activity_id == activity_id).order_by(Team.id.asc())
    if status:
        q = q.where(Team.status == status)
    res = await db.execute(q)
    return list(res.scalars().all())


async def has_pending_as_inviter(db: AsyncSession, *, activity_id: uuid.UUID, user_id: uuid.UUID) -> bool:
    res = await db.execute(
        select(Team.id)
        .where(Team.activity_id == activity_id, Team.player1_id == user_id, Team.status == "pending")
        .limit(1)
    )
    return res.scalar_one_or_none() is not None
