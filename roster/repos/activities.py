from __future__ import annotations
import uuid
from datetime import datetime
from typing import Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import Activity


async def create_activity(
    db: AsyncSession,
    *,
    title: Optional[str],
    starts_at_utc: datetime,
    capacity: int,
    unit_type: str,
) -> Activity:
    a = Activity(
        title=title,
        starts_at=starts_at_utc,
        capacity=capacity,
        unit_type=unit_type,
        status="scheduled",
        confirmed_count=0,
        waitlist_count=0,
    )
    db.add(a)
    await db.flush()
    return a


async def get(db: AsyncSession, activity_id: uuid.UUID) -> Optional[Activity]:
    res = await db.execute(select(Activity).where(Activity.id == activity_id))
    return res.scalar_one_or_none()


async def get_for_update(db: AsyncSession, activity_id: uuid.UUID) -> Optional[Activity]:
    # populate_existing: a retried transaction must not reuse counters from the identity map
    res = await db.execute(
        select(Activity)
        .where(Activity.id == activity_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return res.scalar_one_or_none()


async def list_upcoming(db: AsyncSession, *, now_utc: datetime, limit: int = 50) -> Sequence[Activity]:
    res = await db.execute(
        select(Activity)
        .where(Activity.status == "scheduled", Activity.starts_at >= now_utc)
        .order_by(Activity.starts_at.asc())
        .limit(limit)
    )
    return list(res.scalars().all())


async def list_due_for_close(db: AsyncSession, *, cutoff_utc: datetime, limit: int) -> Sequence[Activity]:
    res = await db.execute(
        select(Activity)
        .where(Activity.status == "scheduled", Activity.starts_at <= cutoff_utc)
        .order_by(Activity.starts_at.asc())
        .limit(limit)
        .with_for_update(skip_locked=True)
    )
    return list(res.scalars().all())
