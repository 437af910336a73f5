"""Notification emitter.

Every helper stages rows in the caller's transaction; nothing here commits.
Dedupe keys are derived from the transition itself (team id, registrant id,
activity version), so re-running a transition after a conflict, or replaying
it, lands on the same key and inserts nothing new.
"""
from __future__ import annotations
import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from ..models import Activity, Registrant, Team
from ..repos.notifications import add_notification
from ..repos import users as users_repo
from ..domain.profile import UNKNOWN_PLAYER

PARTNER_INVITE = "partner_invite"
PARTNER_ACCEPTED = "partner_accepted"
PARTNER_DECLINED = "partner_declined"
PARTNER_LEFT = "partner_left"
INVITE_CANCELLED = "invite_cancelled"
PARTNER_UNAVAILABLE = "partner_unavailable"
WAITLIST_PROMOTED = "waitlist_promoted"


async def _display_name(db: AsyncSession, user_id: uuid.UUID) -> str:
    user = await users_repo.get_by_id(db, user_id)
    return user.name if user else UNKNOWN_PLAYER


def _payload(activity: Activity, *, team_id: Optional[int], from_user_id: Optional[uuid.UUID], **extra) -> dict:
    out = {
        "activity_id": str(activity.id),
        "activity_title": activity.title,
        "team_id": team_id,
        "from_user_id": str(from_user_id) if from_user_id else None,
        "ts": datetime.now(timezone.utc).isoformat(),
    }
    out.update(extra)
    return out


async def invite_sent(db: AsyncSession, *, activity: Activity, team: Team) -> None:
    name = await _display_name(db, team.player1_id)
    await add_notification(
        db,
        recipient_id=team.player2_id,
        type=PARTNER_INVITE,
        payload=_payload(
            activity,
            team_id=team.id,
            from_user_id=team.player1_id,
            from_name=name,
            message=f"{name} invited you to team up",
        ),
        dedupe_key=f"invite:{team.id}",
    )


async def invite_accepted(db: AsyncSession, *, activity: Activity, team: Team, status: str) -> None:
    name = await _display_name(db, team.player2_id)
    await add_notification(
        db,
        recipient_id=team.player1_id,
        type=PARTNER_ACCEPTED,
        payload=_payload(
            activity,
            team_id=team.id,
            from_user_id=team.player2_id,
            from_name=name,
            status=status,
            message=f"{name} accepted your invite",
        ),
        dedupe_key=f"accepted:{team.id}",
    )


async def invite_declined(db: AsyncSession, *, activity: Activity, team: Team) -> None:
    name = await _display_name(db, team.player2_id)
    await add_notification(
        db,
        recipient_id=team.player1_id,
        type=PARTNER_DECLINED,
        payload=_payload(
            activity,
            team_id=team.id,
            from_user_id=team.player2_id,
            from_name=name,
            message=f"{name} declined your invite",
        ),
        dedupe_key=f"declined:{team.id}",
    )


async def partner_left(
    db: AsyncSession, *, activity: Activity, team: Team, leaver_id: uuid.UUID, survivor_id: uuid.UUID
) -> None:
    name = await _display_name(db, leaver_id)
    await add_notification(
        db,
        recipient_id=survivor_id,
        type=PARTNER_LEFT,
        payload=_payload(
            activity,
            team_id=team.id,
            from_user_id=leaver_id,
            from_name=name,
            message=f"{name} left your team, you are now looking for a partner",
        ),
        dedupe_key=f"left:{team.id}:{survivor_id}",
    )


async def invite_cancelled(
    db: AsyncSession,
    *,
    activity: Activity,
    team: Team,
    by_user_id: uuid.UUID,
    recipient_id: uuid.UUID,
    reason: str,
) -> None:
    """A pending invite went away without an answer.

    ``reason`` is ``"withdrawn"`` when one side left the activity and
    ``"partner_unavailable"`` when one side teamed up with someone else.
    """
    name = await _display_name(db, by_user_id)
    if reason == "partner_unavailable":
        kind = PARTNER_UNAVAILABLE
        message = f"{name} joined another team"
    else:
        kind = INVITE_CANCELLED
        message = f"{name} is no longer available for this activity"
    await add_notification(
        db,
        recipient_id=recipient_id,
        type=kind,
        payload=_payload(
            activity, team_id=team.id, from_user_id=by_user_id, from_name=name, reason=reason, message=message
        ),
        dedupe_key=f"cancelled:{team.id}:{recipient_id}",
    )


async def promoted(db: AsyncSession, *, activity: Activity, registrant: Registrant) -> None:
    # one committed counter change per activity version, so the pair is unique per promotion
    await add_notification(
        db,
        recipient_id=registrant.user_id,
        type=WAITLIST_PROMOTED,
        payload=_payload(
            activity,
            team_id=registrant.team_id,
            from_user_id=None,
            registrant_id=registrant.id,
            message="A spot opened up, you are now confirmed",
        ),
        dedupe_key=f"promoted:{registrant.id}:v{activity.version}",
    )
