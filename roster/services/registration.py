from __future__ import annotations
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from ..models import Activity
from ..repos import activities as activities_repo
from ..repos import registrants as regs_repo
from ..domain.transitions import RegEvent, next_registrant_state
from ..observability.metrics import REG_CONFIRMED, REG_WAITLISTED, REG_CANCELLED, PROMOTED, SLOT_OPENED
from .errors import ActivityNotFound, ActivityClosed, AlreadyRegistered, NotRegistered
from . import ledger, teams
from .promotion import vacate_unit
from .tx import run_in_transaction

log = logging.getLogger("roster.registration")


@dataclass(frozen=True)
class RegisterResult:
    registrant_id: int
    status: str                   # 'confirmed' | 'waitlist'
    waitlist_pos: Optional[int] = None


@dataclass(frozen=True)
class WithdrawResult:
    prior_status: str
    promoted_user_ids: list[uuid.UUID] = field(default_factory=list)
    # a confirmed unit left and nobody was waiting for it
    opened_slot: bool = False


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


async def load_open_activity(db: AsyncSession, activity_id: uuid.UUID) -> Activity:
    """Lock the activity row; it must exist and still take registrations."""
    activity = await activities_repo.get_for_update(db, activity_id)
    if activity is None:
        raise ActivityNotFound(f"activity {activity_id} not found")
    if activity.status != "scheduled":
        raise ActivityClosed(f"activity is {activity.status}")
    return activity


async def register(db: AsyncSession, user_id: uuid.UUID, activity_id: uuid.UUID) -> RegisterResult:
    """Register ``user_id`` for an activity.

    Players activities: admitted while confirmed_count < capacity, otherwise
    appended to the waitlist. Teams activities: the user joins as a free agent
    looking for a partner; no unit is reserved until a team forms.
    """

    async def _op(db: AsyncSession) -> RegisterResult:
        activity = await load_open_activity(db, activity_id)

        existing = await regs_repo.get_active(db, activity_id=activity_id, user_id=user_id, for_update=True)
        if existing:
            raise AlreadyRegistered("already registered for this activity")

        now = _now_utc()
        if activity.unit_type == "teams":
            reg = await teams.admit_free_agent(db, activity=activity, user_id=user_id, now=now)
            return RegisterResult(registrant_id=reg.id, status=reg.status)

        reg, prior = await regs_repo.claim_record(db, activity_id=activity_id, user_id=user_id, now=now)
        unit = ledger.try_reserve(db, activity)
        pos = await regs_repo.next_waitlist_pos(db, activity_id) if unit == ledger.WAITLIST else None

        event = RegEvent.ADMIT if unit == ledger.CONFIRMED else RegEvent.QUEUE
        reg.status = next_registrant_state(prior, event).value
        reg.is_primary = True
        reg.waitlist_pos = pos
        reg.waitlisted_at = now if pos else None
        db.add(reg)
        await db.flush()
        return RegisterResult(registrant_id=reg.id, status=reg.status, waitlist_pos=pos)

    res = await run_in_transaction(db, _op, op="register")

    if res.status == ledger.CONFIRMED:
        REG_CONFIRMED.labels(activity_id=str(activity_id)).inc()
    else:
        REG_WAITLISTED.labels(activity_id=str(activity_id)).inc()
    log.info(
        "registered",
        extra={"extra": f"activity_id={activity_id} user_id={user_id} status={res.status} pos={res.waitlist_pos}"},
    )
    return res


async def withdraw(db: AsyncSession, user_id: uuid.UUID, activity_id: uuid.UUID) -> WithdrawResult:
    """Cancel the caller's active registration.

    A confirmed unit hands its slot to the waitlist head in the same
    transaction; a waitlisted one is released and the queue closes up. A
    partnered registrant in a teams activity leaves its team instead.
    """

    async def _op(db: AsyncSession) -> WithdrawResult:
        activity = await load_open_activity(db, activity_id)

        reg = await regs_repo.get_active(db, activity_id=activity_id, user_id=user_id, for_update=True)
        if reg is None:
            raise NotRegistered("no active registration for this activity")

        prior = reg.status
        if activity.unit_type == "teams" and reg.team_id is not None:
            left = await teams.dissolve_team(db, activity=activity, team_id=reg.team_id, leaver_id=user_id)
            return WithdrawResult(
                prior_status=prior,
                promoted_user_ids=left.promoted_user_ids,
                opened_slot=left.slot_status == ledger.CONFIRMED and not left.promoted_user_ids,
            )

        held_unit = reg.is_primary
        vacated_pos = reg.waitlist_pos
        reg.status = next_registrant_state(prior, RegEvent.WITHDRAW).value
        reg.cancelled_at = _now_utc()
        reg.waitlist_pos = None
        reg.is_primary = False
        reg.looking_for_partner = False
        reg.partner_status = "none"

        if activity.unit_type == "teams":
            # free agent: invites in flight die with the registration
            await teams.drop_pending_invites(db, activity=activity, user_id=user_id)
            return WithdrawResult(prior_status=prior)

        if not held_unit:
            return WithdrawResult(prior_status=prior)
        await db.flush()
        promoted = await vacate_unit(db, activity, prior_status=prior, vacated_pos=vacated_pos)
        return WithdrawResult(
            prior_status=prior,
            promoted_user_ids=promoted,
            opened_slot=prior == ledger.CONFIRMED and not promoted,
        )

    res = await run_in_transaction(db, _op, op="withdraw")

    REG_CANCELLED.labels(activity_id=str(activity_id)).inc()
    if res.promoted_user_ids:
        PROMOTED.labels(activity_id=str(activity_id)).inc()
    elif res.opened_slot:
        SLOT_OPENED.labels(activity_id=str(activity_id)).inc()
    log.info(
        "withdrawn",
        extra={
            "extra": f"activity_id={activity_id} user_id={user_id} prior={res.prior_status} "
                     f"promoted={[str(u) for u in res.promoted_user_ids]}"
        },
    )
    return res
