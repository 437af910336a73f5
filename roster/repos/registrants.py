from __future__ import annotations
import uuid
from typing import Optional, Sequence

from sqlalchemy import select, func, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import Registrant, User
from ..domain.transitions import ACTIVE_REG_STATES, RegState

ACTIVE = tuple(sorted(s.value for s in ACTIVE_REG_STATES))


async def get_active(
    db: AsyncSession, *, activity_id: uuid.UUID, user_id: uuid.UUID, for_update: bool = False
) -> Optional[Registrant]:
    q = select(Registrant).where(
        Registrant.activity_id == activity_id,
        Registrant.user_id == user_id,
        Registrant.status.in_(ACTIVE),
    )
    if for_update:
        q = q.with_for_update().execution_options(populate_existing=True)
    res = await db.execute(q)
    return res.scalar_one_or_none()


async def get_latest_cancelled(db: AsyncSession, *, activity_id: uuid.UUID, user_id: uuid.UUID) -> Optional[Registrant]:
    """Most recent cancelled record; re-registration recycles it instead of inserting."""
    res = await db.execute(
        select(Registrant)
        .where(
            Registrant.activity_id == activity_id,
            Registrant.user_id == user_id,
            Registrant.status == "cancelled",
        )
        .order_by(Registrant.id.desc())
        .limit(1)
        .with_for_update()
    )
    return res.scalars().first()


async def claim_record(
    db: AsyncSession, *, activity_id: uuid.UUID, user_id: uuid.UUID, now
) -> tuple[Registrant, RegState]:
    """Row to (re)register into: the latest cancelled record, reset, or a new transient one.

    The caller sets the new status and then ``db.add``s the row.
    """
    reg = await get_latest_cancelled(db, activity_id=activity_id, user_id=user_id)
    if reg is None:
        return Registrant(activity_id=activity_id, user_id=user_id, registered_at=now), RegState.NONE
    reg.registered_at = now
    reg.waitlist_pos = None
    reg.team_id = None
    reg.looking_for_partner = False
    reg.partner_status = "none"
    reg.waitlisted_at = None
    reg.promoted_at = None
    reg.cancelled_at = None
    return reg, RegState.CANCELLED


async def get_for_team(db: AsyncSession, team_id: int) -> Sequence[Registrant]:
    res = await db.execute(
        select(Registrant)
        .where(Registrant.team_id == team_id, Registrant.status.in_(ACTIVE))
        .order_by(Registrant.id.asc())
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return list(res.scalars().all())


async def next_waitlist_pos(db: AsyncSession, activity_id: uuid.UUID) -> int:
    """Compute the next tail position among unit rows."""
    max_pos = await db.execute(
        select(func.coalesce(func.max(Registrant.waitlist_pos), 0)).where(
            Registrant.activity_id == activity_id,
            Registrant.status == "waitlist",
            Registrant.is_primary.is_(True),
        )
    )
    return int(max_pos.scalar_one()) + 1


async def collapse_waitlist_after(db: AsyncSession, activity_id: uuid.UUID, vacated_pos: Optional[int]) -> None:
    """Shift waitlist positions down to keep them contiguous after removing an entry."""
    if not vacated_pos:
        return
    # partners of a waitlisted team mirror the captain's position
    await db.execute(
        update(Registrant)
        .where(
            Registrant.activity_id == activity_id,
            Registrant.status == "waitlist",
            Registrant.waitlist_pos > vacated_pos,
        )
        .values(waitlist_pos=Registrant.waitlist_pos - 1)
    )


async def waitlist_head(db: AsyncSession, activity_id: uuid.UUID) -> Optional[Registrant]:
    """Longest-waiting unit row; FIFO by waitlisted_at, ties by registration time, then id.

    A recycled record keeps its old id, so id alone is not creation order.
    """
    res = await db.execute(
        select(Registrant)
        .where(
            Registrant.activity_id == activity_id,
            Registrant.status == "waitlist",
            Registrant.is_primary.is_(True),
        )
        .order_by(Registrant.waitlisted_at.asc(), Registrant.registered_at.asc(), Registrant.id.asc())
        .limit(1)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return res.scalars().first()


async def refresh_for_update(db: AsyncSession, reg_id: int) -> Optional[Registrant]:
    res = await db.execute(
        select(Registrant)
        .where(Registrant.id == reg_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return res.scalar_one_or_none()


async def list_waitlisted_for_update(db: AsyncSession, activity_id: uuid.UUID) -> Sequence[Registrant]:
    res = await db.execute(
        select(Registrant)
        .where(Registrant.activity_id == activity_id, Registrant.status == "waitlist")
        .with_for_update()
    )
    return list(res.scalars().all())


# ---------- read side (outside transactions) ----------
async def list_for_activity(db: AsyncSession, activity_id: uuid.UUID) -> Sequence[tuple[Registrant, User]]:
    rows = await db.execute(
        select(Registrant, User)
        .join(User, User.id == Registrant.user_id)
        .where(Registrant.activity_id == activity_id, Registrant.status.in_(ACTIVE))
        .order_by(Registrant.registered_at.asc(), Registrant.id.asc())
    )
    out = list(rows.all())
    # stable ordering for UI: confirmed first, then waitlist by pos
    out.sort(key=lambda r: (0 if r[0].status == "confirmed" else 1, r[0].waitlist_pos or 0))
    return out


async def list_free_agents(db: AsyncSession, activity_id: uuid.UUID) -> Sequence[tuple[Registrant, User]]:
    rows = await db.execute(
        select(Registrant, User)
        .join(User, User.id == Registrant.user_id)
        .where(
            Registrant.activity_id == activity_id,
            Registrant.status.in_(ACTIVE),
            Registrant.team_id.is_(None),
            Registrant.looking_for_partner.is_(True),
        )
        .order_by(Registrant.registered_at.asc(), Registrant.id.asc())
    )
    return list(rows.all())
