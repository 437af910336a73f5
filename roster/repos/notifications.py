from __future__ import annotations
import uuid
from typing import Optional, Sequence

from sqlalchemy import select, desc
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import Notification


async def add_notification(
    db: AsyncSession,
    *,
    recipient_id: uuid.UUID,
    type: str,
    payload: dict,
    dedupe_key: str,
) -> Notification:
    """Stage a notification row in the caller's transaction.

    Idempotent on ``dedupe_key``: an existing row is returned unchanged.
    """
    res = await db.execute(select(Notification).where(Notification.dedupe_key == dedupe_key))
    existing = res.scalar_one_or_none()
    if existing:
        return existing

    n = Notification(recipient_id=recipient_id, type=type, payload=payload, dedupe_key=dedupe_key, read=False)
    db.add(n)
    # no commit here; caller's transaction should commit
    return n


async def mark_read(db: AsyncSession, *, notification_id: int, recipient_id: uuid.UUID) -> bool:
    res = await db.execute(
        select(Notification).where(
            Notification.id == notification_id,
            Notification.recipient_id == recipient_id,
        )
    )
    n = res.scalar_one_or_none()
    if n is None:
        return False
    n.read = True
    return True


async def list_for_user(
    db: AsyncSession,
    *,
    user_id: uuid.UUID,
    unread_only: bool = False,
    limit: int = 50,
    before_id: Optional[int] = None,
) -> Sequence[Notification]:
    q = select(Notification).where(Notification.recipient_id == user_id).order_by(desc(Notification.id)).limit(limit)
    if unread_only:
        q = q.where(Notification.read.is_(False))
    if before_id:
        q = q.where(Notification.id < before_id)
    res = await db.execute(q)
    return list(res.scalars().all())


async def list_unsent_for_update(db: AsyncSession, *, limit: int) -> Sequence[Notification]:
    res = await db.execute(
        select(Notification)
        .where(Notification.sent_at.is_(None))
        .order_by(Notification.id.asc())
        .limit(limit)
        .with_for_update(skip_locked=True)
    )
    return list(res.scalars().all())
