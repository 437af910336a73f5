from __future__ import annotations
from datetime import datetime, timezone, timedelta
from sqlalchemy.ext.asyncio import AsyncSession

from ..repos import activities as activities_repo
from ..repos import registrants as regs_repo
from ..domain.transitions import RegEvent, next_registrant_state
from ..observability.metrics import ACTIVITIES_AUTOCLOSED
from . import ledger, teams
from .tx import run_in_transaction


async def close_due_activities(db: AsyncSession, *, batch: int = 200, grace_hours: int = 2) -> list[str]:
    """
    Close at most `batch` scheduled activities whose start lies at least
    `grace_hours` in the past. Waitlisted registrants are cancelled, the
    waitlist counter drops to zero and pending invites are deleted;
    confirmed registrants are kept as the attendance record. Returns the ids
    closed in this run.
    """

    async def _op(db: AsyncSession) -> list[str]:
        now = datetime.now(timezone.utc)
        closed: list[str] = []

        # SKIP LOCKED: rows held by an in-flight registration are picked up next tick
        due = await activities_repo.list_due_for_close(
            db, cutoff_utc=now - timedelta(hours=grace_hours), limit=batch
        )
        for a in due:
            a.status = "closed"
            for reg in await regs_repo.list_waitlisted_for_update(db, a.id):
                reg.status = next_registrant_state(reg.status, RegEvent.CLOSE).value
                reg.cancelled_at = now
                reg.waitlist_pos = None
                reg.is_primary = False
            # waitlists are moot once closed
            ledger.release_waitlist(db, a)
            if a.unit_type == "teams":
                # unanswered invites could no longer be declined or retracted
                await teams.drop_pending_on_close(db, activity=a)
            closed.append(str(a.id))
        await db.flush()
        return closed

    closed = await run_in_transaction(db, _op, op="auto_close")
    if closed:
        ACTIVITIES_AUTOCLOSED.inc(len(closed))
    return closed
