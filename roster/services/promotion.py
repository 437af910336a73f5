from __future__ import annotations
import logging
import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from ..models import Activity, Registrant
from ..repos import registrants as regs_repo
from ..domain.transitions import RegEvent, next_registrant_state
from . import ledger, notifier

log = logging.getLogger("roster.promotion")


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


async def _still_eligible(db: AsyncSession, activity: Activity, head: Registrant) -> list[Registrant] | None:
    """Re-check the locked head and return every row that moves with it, or None if it was claimed."""
    head = await regs_repo.refresh_for_update(db, head.id)
    if head is None or head.status != ledger.WAITLIST or not head.is_primary:
        return None
    if activity.unit_type != "teams":
        return [head]
    if head.team_id is None:
        return None
    members = await regs_repo.get_for_team(db, head.team_id)
    if not any(m.id == head.id for m in members):
        return None
    return members


async def fill_vacancy(db: AsyncSession, activity: Activity) -> list[uuid.UUID]:
    """A confirmed unit just left ``activity``; hand its slot to the waitlist head.

    Must run in the vacating transaction, after the leaving row is already
    cancelled or detached. Strict FIFO: the head by (waitlisted_at, id) gets the
    slot or, when there is none (or it was claimed meanwhile), the slot opens
    and confirmed_count drops by one. Returns the promoted user ids.
    """
    head = await regs_repo.waitlist_head(db, activity.id)
    members = await _still_eligible(db, activity, head) if head is not None else None

    if not members:
        ledger.release(db, activity, ledger.CONFIRMED)
        log.info("slot_opened", extra={"extra": f"activity_id={activity.id}"})
        return []

    ledger.promote_swap(db, activity)
    old_pos = head.waitlist_pos
    now = _now_utc()
    for m in members:
        m.status = next_registrant_state(m.status, RegEvent.PROMOTE).value
        m.waitlist_pos = None
        m.promoted_at = now
    await db.flush()

    # positions > old_pos move up so they stay contiguous (1..N)
    await regs_repo.collapse_waitlist_after(db, activity.id, old_pos)

    for m in members:
        await notifier.promoted(db, activity=activity, registrant=m)

    log.info(
        "waitlist_promoted",
        extra={"extra": f"activity_id={activity.id} registrant_id={head.id} team_id={head.team_id}"},
    )
    return [m.user_id for m in members]


async def vacate_unit(
    db: AsyncSession, activity: Activity, *, prior_status: str, vacated_pos: Optional[int]
) -> list[uuid.UUID]:
    """Give back a unit that was held in ``prior_status``.

    A confirmed unit goes through promotion; a waitlisted one is released and the
    positions behind it collapse.
    """
    if prior_status == ledger.CONFIRMED:
        return await fill_vacancy(db, activity)
    ledger.release(db, activity, prior_status)
    await db.flush()
    await regs_repo.collapse_waitlist_after(db, activity.id, vacated_pos)
    return []
