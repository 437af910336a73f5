from __future__ import annotations
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from ...auth.deps import get_current_user
from ...db import get_db
from ...models import User
from ...repos import notifications as notifications_repo
from ...domain.schemas.notification import NotificationOut

router = APIRouter(tags=["notifications"])


@router.get("/me/notifications", response_model=list[NotificationOut])
async def my_notifications(
    current: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    unread_only: bool = Query(default=False),
    limit: int = Query(default=50, ge=1, le=200),
    before_id: Optional[int] = Query(default=None, description="Page backwards from this id"),
):
    rows = await notifications_repo.list_for_user(
        db, user_id=current.id, unread_only=unread_only, limit=limit, before_id=before_id
    )
    return [NotificationOut.model_validate(n) for n in rows]


@router.post("/notifications/{notification_id}/read", status_code=status.HTTP_204_NO_CONTENT)
async def mark_read(
    notification_id: int,
    current: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    ok = await notifications_repo.mark_read(db, notification_id=notification_id, recipient_id=current.id)
    if not ok:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="notification not found")
    await db.commit()
