"""Capacity ledger.

``Activity.confirmed_count`` / ``waitlist_count`` count *units*: one per solo
registrant in a players activity, one per confirmed team in a teams activity.
The registrant row that stands for a unit has ``is_primary = True``. Counters
are only touched here, and only inside the transaction that writes the
membership change they describe; the Activity row is versioned, so two
transactions racing on the same counters cannot both commit.
"""
from __future__ import annotations

from typing import Iterable

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import Activity, Registrant
from .errors import InvariantViolation

CONFIRMED = "confirmed"
WAITLIST = "waitlist"

_TOUCHED = "roster.touched_activities"


def reset_touched(db: AsyncSession) -> None:
    db.info[_TOUCHED] = {}


def touched_activities(db: AsyncSession) -> Iterable[Activity]:
    return list(db.info.get(_TOUCHED, {}).values())


def _touch(db: AsyncSession, activity: Activity) -> None:
    db.info.setdefault(_TOUCHED, {})[activity.id] = activity


def try_reserve(db: AsyncSession, activity: Activity) -> str:
    """Take one unit: a confirmed slot if one is free, otherwise a waitlist place."""
    _touch(db, activity)
    if activity.confirmed_count < activity.capacity:
        activity.confirmed_count += 1
        return CONFIRMED
    activity.waitlist_count += 1
    return WAITLIST


def release(db: AsyncSession, activity: Activity, prior_status: str) -> None:
    """Give back one unit that was held in ``prior_status``."""
    _touch(db, activity)
    if prior_status == CONFIRMED:
        if activity.confirmed_count <= 0:
            raise InvariantViolation(f"activity {activity.id}: confirmed_count would go negative")
        activity.confirmed_count -= 1
    elif prior_status == WAITLIST:
        if activity.waitlist_count <= 0:
            raise InvariantViolation(f"activity {activity.id}: waitlist_count would go negative")
        activity.waitlist_count -= 1
    else:
        raise InvariantViolation(f"activity {activity.id}: cannot release a {prior_status!r} unit")


def promote_swap(db: AsyncSession, activity: Activity) -> None:
    """A waitlisted unit takes a vacated confirmed slot: confirmed stays, waitlist shrinks."""
    _touch(db, activity)
    if activity.waitlist_count <= 0:
        raise InvariantViolation(f"activity {activity.id}: promotion with an empty waitlist")
    activity.waitlist_count -= 1


def release_waitlist(db: AsyncSession, activity: Activity) -> int:
    """Drop the whole waitlist (activity closing). Returns how many units were released."""
    _touch(db, activity)
    n = activity.waitlist_count
    activity.waitlist_count = 0
    return n


async def count_units(db: AsyncSession, activity_id) -> tuple[int, int]:
    rows = await db.execute(
        select(Registrant.status, func.count())
        .where(
            Registrant.activity_id == activity_id,
            Registrant.is_primary.is_(True),
            Registrant.status.in_((CONFIRMED, WAITLIST)),
        )
        .group_by(Registrant.status)
    )
    counts = dict(rows.all())
    return int(counts.get(CONFIRMED, 0)), int(counts.get(WAITLIST, 0))


async def assert_consistent(db: AsyncSession, activity: Activity) -> None:
    """Recount unit rows and compare with the counters. Raises InvariantViolation on drift."""
    await db.flush()
    confirmed, waitlisted = await count_units(db, activity.id)
    if (confirmed, waitlisted) != (activity.confirmed_count, activity.waitlist_count):
        raise InvariantViolation(
            f"activity {activity.id}: counters ({activity.confirmed_count}, {activity.waitlist_count}) "
            f"!= unit rows ({confirmed}, {waitlisted})"
        )
    if confirmed > activity.capacity:
        raise InvariantViolation(f"activity {activity.id}: {confirmed} confirmed units over capacity {activity.capacity}")

    positions = (
        await db.execute(
            select(Registrant.waitlist_pos)
            .where(
                Registrant.activity_id == activity.id,
                Registrant.is_primary.is_(True),
                Registrant.status == WAITLIST,
            )
            .order_by(Registrant.waitlist_pos.asc())
        )
    ).scalars().all()
    if list(positions) != list(range(1, len(positions) + 1)):
        raise InvariantViolation(f"activity {activity.id}: waitlist positions not contiguous: {list(positions)}")
