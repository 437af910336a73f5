"""Team formation: invite, accept, decline, leave.

A pending invite lives only on its Team row. Registrants are linked to a team
when it is accepted; from then on player1's registrant holds the activity unit
and player2 mirrors its status and waitlist position. Dissolving a team
deletes the row and leaves any survivor as a free agent.
"""
from __future__ import annotations
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from ..models import Activity, Registrant, Team
from ..repos import activities as activities_repo
from ..repos import registrants as regs_repo
from ..repos import teams as teams_repo
from ..repos import users as users_repo
from ..repos.notifications import mark_read
from ..domain.transitions import (
    RegEvent, TeamEvent, TeamState, next_registrant_state, next_team_state,
)
from ..observability.metrics import TEAM_INVITES, TEAM_ACCEPTED, TEAM_DISSOLVED, PROMOTED, SLOT_OPENED
from .errors import (
    ActivityNotFound, ActivityClosed, AlreadyInvited, AlreadyRegistered, AlreadyResponded,
    InvalidInvite, InviteNoLongerValid, NotRegistered, NotTeamActivity, NotTeamMember,
)
from . import ledger, notifier
from .promotion import vacate_unit
from .tx import run_in_transaction

log = logging.getLogger("roster.teams")


@dataclass(frozen=True)
class InviteResult:
    team_id: int


@dataclass(frozen=True)
class RespondResult:
    team_id: int
    activity_id: uuid.UUID
    accepted: bool
    status: Optional[str] = None          # unit status when accepted
    waitlist_pos: Optional[int] = None
    superseded_team_ids: list[int] = field(default_factory=list)


@dataclass(frozen=True)
class LeaveResult:
    team_id: int
    activity_id: uuid.UUID
    team_status: str                      # 'pending' | 'confirmed' before dissolving
    slot_status: Optional[str] = None     # unit status the team held, if any
    promoted_user_ids: list[uuid.UUID] = field(default_factory=list)


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


async def _load_team_activity(db: AsyncSession, activity_id: uuid.UUID) -> Activity:
    activity = await activities_repo.get_for_update(db, activity_id)
    if activity is None:
        raise ActivityNotFound(f"activity {activity_id} not found")
    if activity.status != "scheduled":
        raise ActivityClosed(f"activity is {activity.status}")
    if activity.unit_type != "teams":
        raise NotTeamActivity("activity is not played in teams")
    return activity


def _as_free_agent(reg: Registrant) -> None:
    reg.team_id = None
    reg.looking_for_partner = True
    reg.partner_status = "none"
    reg.is_primary = False
    reg.waitlist_pos = None


async def admit_free_agent(
    db: AsyncSession, *, activity: Activity, user_id: uuid.UUID, now: datetime
) -> Registrant:
    """Create (or recycle) an unpartnered registrant. Holds no unit, so counters stay put."""
    reg, prior = await regs_repo.claim_record(db, activity_id=activity.id, user_id=user_id, now=now)
    reg.status = next_registrant_state(prior, RegEvent.ADMIT).value
    _as_free_agent(reg)
    db.add(reg)
    await db.flush()
    return reg


async def _ensure_free_agent(db: AsyncSession, activity: Activity, user_id: uuid.UUID) -> Registrant:
    reg = await regs_repo.get_active(db, activity_id=activity.id, user_id=user_id, for_update=True)
    if reg is None:
        return await admit_free_agent(db, activity=activity, user_id=user_id, now=_now_utc())
    if reg.team_id is not None:
        raise AlreadyRegistered("already in a team for this activity")
    return reg


async def _sync_partner_status(db: AsyncSession, activity_id: uuid.UUID, user_id: uuid.UUID) -> None:
    """Inviter-side partner_status after one of its invites went away."""
    reg = await regs_repo.get_active(db, activity_id=activity_id, user_id=user_id, for_update=True)
    if reg is None or reg.team_id is not None or reg.partner_status != "pending":
        return
    if not await teams_repo.has_pending_as_inviter(db, activity_id=activity_id, user_id=user_id):
        reg.partner_status = "none"


async def _drop_pending(
    db: AsyncSession, *, activity: Activity, teams: list[Team], by_user_id: uuid.UUID, reason: str
) -> list[int]:
    dropped: list[int] = []
    inviters: set[uuid.UUID] = set()
    for t in teams:
        next_team_state(t.status, TeamEvent.SUPERSEDE if reason == "partner_unavailable" else TeamEvent.LEAVE)
        counterpart = t.player2_id if t.player1_id == by_user_id else t.player1_id
        await notifier.invite_cancelled(
            db, activity=activity, team=t, by_user_id=by_user_id, recipient_id=counterpart, reason=reason
        )
        inviters.add(t.player1_id)
        dropped.append(t.id)
        await db.delete(t)
    await db.flush()
    for inviter_id in inviters:
        await _sync_partner_status(db, activity.id, inviter_id)
    return dropped


async def drop_pending_invites(db: AsyncSession, *, activity: Activity, user_id: uuid.UUID) -> list[int]:
    """Delete every pending invite ``user_id`` takes part in; each counterpart is told."""
    pending = await teams_repo.list_pending_involving(db, activity_id=activity.id, user_ids=[user_id])
    return await _drop_pending(db, activity=activity, teams=list(pending), by_user_id=user_id, reason="withdrawn")


async def invite_teammate(
    db: AsyncSession, inviter_id: uuid.UUID, invitee_id: uuid.UUID, activity_id: uuid.UUID
) -> InviteResult:
    """Invite ``invitee_id`` to team up. The inviter joins as a free agent if not yet registered."""

    async def _op(db: AsyncSession) -> InviteResult:
        if inviter_id == invitee_id:
            raise InvalidInvite("cannot invite yourself")
        activity = await _load_team_activity(db, activity_id)
        if await users_repo.get_by_id(db, invitee_id) is None:
            raise InvalidInvite("unknown invitee")

        for a, b in ((inviter_id, invitee_id), (invitee_id, inviter_id)):
            if await teams_repo.find_pending(db, activity_id=activity_id, inviter_id=a, invitee_id=b):
                raise AlreadyInvited("an invite between these players is already pending")

        inviter_reg = await _ensure_free_agent(db, activity, inviter_id)
        invitee_reg = await regs_repo.get_active(db, activity_id=activity_id, user_id=invitee_id, for_update=True)
        if invitee_reg is not None and invitee_reg.team_id is not None:
            raise AlreadyRegistered("invitee already has a partner")

        next_team_state(TeamState.NONE, TeamEvent.INVITE)
        team = await teams_repo.create_pending(db, activity_id=activity_id, inviter_id=inviter_id, invitee_id=invitee_id)
        inviter_reg.partner_status = "pending"
        await notifier.invite_sent(db, activity=activity, team=team)
        return InviteResult(team_id=team.id)

    res = await run_in_transaction(db, _op, op="invite")

    TEAM_INVITES.labels(activity_id=str(activity_id)).inc()
    log.info("team_invite", extra={"extra": f"team_id={res.team_id} inviter={inviter_id} invitee={invitee_id}"})
    return res


async def drop_pending_on_close(db: AsyncSession, *, activity: Activity) -> list[int]:
    """Delete every unanswered invite of an activity being closed.

    Runs in the closing transaction. Inviters go back to ``partner_status='none'``;
    nobody is notified, a late answer gets InviteNoLongerValid.
    """
    dropped: list[int] = []
    inviters: set[uuid.UUID] = set()
    for t in await teams_repo.list_pending_for_update(db, activity.id):
        next_team_state(t.status, TeamEvent.CLOSE)
        inviters.add(t.player1_id)
        dropped.append(t.id)
        await db.delete(t)
    await db.flush()
    for inviter_id in inviters:
        await _sync_partner_status(db, activity.id, inviter_id)
    return dropped


async def respond_to_invite(
    db: AsyncSession,
    invitee_id: uuid.UUID,
    team_id: int,
    accept: bool,
    notification_id: Optional[int] = None,
) -> RespondResult:
    """Accept or decline a pending invite.

    Accepting reserves one team unit and both players take its status. Every
    other pending invite either player is part of in the activity is dropped.
    Declining deletes the team and never touches the counters.
    """

    async def _op(db: AsyncSession) -> RespondResult:
        # lock order is activity, then team, same as withdraw
        seen = await teams_repo.get(db, team_id)
        if seen is None:
            raise InviteNoLongerValid("this invite no longer exists")
        activity = await activities_repo.get_for_update(db, seen.activity_id)

        team = await teams_repo.get_for_update(db, team_id)
        if team is None:
            raise InviteNoLongerValid("this invite no longer exists")
        if team.player2_id != invitee_id:
            raise NotTeamMember("only the invited player can respond")
        if team.status == TeamState.CONFIRMED.value:
            raise AlreadyResponded("invite already accepted")
        if activity is None:
            raise InviteNoLongerValid("activity no longer exists")
        if activity.status != "scheduled":
            raise ActivityClosed(f"activity is {activity.status}")

        inviter_reg = await regs_repo.get_active(
            db, activity_id=activity.id, user_id=team.player1_id, for_update=True
        )
        if inviter_reg is None or inviter_reg.team_id is not None:
            raise InviteNoLongerValid("the inviter is no longer available")

        if notification_id is not None:
            await mark_read(db, notification_id=notification_id, recipient_id=invitee_id)

        if not accept:
            next_team_state(team.status, TeamEvent.DECLINE)
            inviter_reg.partner_status = "denied"
            await notifier.invite_declined(db, activity=activity, team=team)
            await db.delete(team)
            await db.flush()
            return RespondResult(team_id=team_id, activity_id=activity.id, accepted=False)

        invitee_reg = await regs_repo.get_active(db, activity_id=activity.id, user_id=invitee_id, for_update=True)
        if invitee_reg is not None and invitee_reg.team_id is not None:
            raise AlreadyResponded("already in another team for this activity")
        if invitee_reg is None:
            invitee_reg = await admit_free_agent(db, activity=activity, user_id=invitee_id, now=_now_utc())

        next_team_state(team.status, TeamEvent.ACCEPT)
        unit = ledger.try_reserve(db, activity)
        pos = await regs_repo.next_waitlist_pos(db, activity.id) if unit == ledger.WAITLIST else None
        event = RegEvent.ADMIT if unit == ledger.CONFIRMED else RegEvent.QUEUE

        now = _now_utc()
        for reg in (inviter_reg, invitee_reg):
            reg.status = next_registrant_state(reg.status, event).value
            reg.team_id = team.id
            reg.looking_for_partner = False
            reg.partner_status = "confirmed"
            reg.is_primary = reg is inviter_reg
            reg.waitlist_pos = pos
            reg.waitlisted_at = now if pos else None
        team.status = TeamState.CONFIRMED.value
        team.confirmed_at = now
        await db.flush()

        others = await teams_repo.list_pending_involving(
            db, activity_id=activity.id, user_ids=[team.player1_id, team.player2_id], exclude_team_id=team.id
        )
        superseded: list[int] = []
        for p in (team.player1_id, team.player2_id):
            mine = [t for t in others if p in (t.player1_id, t.player2_id) and t.id not in superseded]
            superseded += await _drop_pending(
                db, activity=activity, teams=mine, by_user_id=p, reason="partner_unavailable"
            )

        await notifier.invite_accepted(db, activity=activity, team=team, status=unit)
        return RespondResult(
            team_id=team_id,
            activity_id=activity.id,
            accepted=True,
            status=unit,
            waitlist_pos=pos,
            superseded_team_ids=superseded,
        )

    res = await run_in_transaction(db, _op, op="respond")

    if res.accepted:
        TEAM_ACCEPTED.labels(activity_id=str(res.activity_id)).inc()
    else:
        TEAM_DISSOLVED.labels(activity_id=str(res.activity_id), reason="declined").inc()
    log.info(
        "team_respond",
        extra={"extra": f"team_id={team_id} invitee={invitee_id} accepted={res.accepted} status={res.status}"},
    )
    return res


async def dissolve_team(
    db: AsyncSession, *, activity: Activity, team_id: int, leaver_id: uuid.UUID
) -> LeaveResult:
    """Take ``leaver_id`` out of a team inside the caller's transaction.

    Pending team: the invite is retracted, the counterpart is told.
    Confirmed team: the leaver's registration is cancelled, the partner stays
    as a free agent with its status kept, and the unit the team held is given
    back (a confirmed slot goes to the waitlist head).
    """
    team = await teams_repo.get_for_update(db, team_id)
    if team is None:
        raise InviteNoLongerValid("this team no longer exists")
    if leaver_id not in (team.player1_id, team.player2_id):
        raise NotTeamMember("not a member of this team")
    team_status = team.status
    next_team_state(team_status, TeamEvent.LEAVE)

    if team_status == TeamState.PENDING.value:
        await _drop_pending(db, activity=activity, teams=[team], by_user_id=leaver_id, reason="withdrawn")
        return LeaveResult(team_id=team_id, activity_id=activity.id, team_status=team_status)

    members = await regs_repo.get_for_team(db, team.id)
    leaver = next((m for m in members if m.user_id == leaver_id), None)
    if leaver is None:
        raise NotRegistered("no active registration in this team")
    survivor = next((m for m in members if m.user_id != leaver_id), None)
    unit = next((m for m in members if m.is_primary), None)
    slot_status = unit.status if unit is not None else None
    vacated_pos = unit.waitlist_pos if unit is not None else None

    leaver.status = next_registrant_state(leaver.status, RegEvent.WITHDRAW).value
    leaver.cancelled_at = _now_utc()
    leaver.team_id = None
    leaver.looking_for_partner = False
    leaver.partner_status = "none"
    leaver.is_primary = False
    leaver.waitlist_pos = None
    if survivor is not None:
        _as_free_agent(survivor)
    # detach registrants before the team row goes
    await db.flush()
    await db.delete(team)
    await db.flush()

    promoted: list[uuid.UUID] = []
    if slot_status is not None:
        promoted = await vacate_unit(db, activity, prior_status=slot_status, vacated_pos=vacated_pos)
    if survivor is not None:
        await notifier.partner_left(
            db, activity=activity, team=team, leaver_id=leaver_id, survivor_id=survivor.user_id
        )
    return LeaveResult(
        team_id=team_id,
        activity_id=activity.id,
        team_status=team_status,
        slot_status=slot_status,
        promoted_user_ids=promoted,
    )


async def leave_team(
    db: AsyncSession, user_id: uuid.UUID, team_id: int, notification_id: Optional[int] = None
) -> LeaveResult:
    """Either party leaves (or retracts) a team."""

    async def _op(db: AsyncSession) -> LeaveResult:
        # unlocked read; dissolve_team locks the team after the activity
        team = await teams_repo.get(db, team_id)
        if team is None:
            raise InviteNoLongerValid("this team no longer exists")
        if user_id not in (team.player1_id, team.player2_id):
            raise NotTeamMember("not a member of this team")
        activity = await _load_team_activity(db, team.activity_id)
        if notification_id is not None:
            await mark_read(db, notification_id=notification_id, recipient_id=user_id)
        return await dissolve_team(db, activity=activity, team_id=team_id, leaver_id=user_id)

    res = await run_in_transaction(db, _op, op="leave")

    reason = "left" if res.team_status == "confirmed" else "retracted"
    TEAM_DISSOLVED.labels(activity_id=str(res.activity_id), reason=reason).inc()
    if res.promoted_user_ids:
        PROMOTED.labels(activity_id=str(res.activity_id)).inc()
    elif res.slot_status == ledger.CONFIRMED:
        SLOT_OPENED.labels(activity_id=str(res.activity_id)).inc()
    log.info(
        "team_leave",
        extra={
            "extra": f"team_id={team_id} user_id={user_id} team_status={res.team_status} "
                     f"slot={res.slot_status} promoted={[str(u) for u in res.promoted_user_ids]}"
        },
    )
    return res
