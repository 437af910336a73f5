import asyncio
import uuid

import pytest
from sqlalchemy import select

from roster.db import SessionLocal
from roster.models import Registrant, Team
from roster.services.registration import register, withdraw
from roster.services.teams import invite_teammate, respond_to_invite
from roster.services.errors import InviteNoLongerValid
from roster.services.ledger import count_units
from tests.conftest import mk_user, mk_activity, counts

pytestmark = pytest.mark.asyncio


async def _register_concurrently(activity_id: uuid.UUID, user_ids: list[uuid.UUID]):
    async def one(u: uuid.UUID):
        async with SessionLocal() as s:
            return await register(s, u, activity_id)

    return await asyncio.gather(*[one(u) for u in user_ids], return_exceptions=True)


async def _waitlist_positions_contiguous(activity_id: uuid.UUID):
    async with SessionLocal() as s:
        rows = (
            await s.execute(
                select(Registrant.waitlist_pos).where(
                    Registrant.activity_id == activity_id,
                    Registrant.status == "waitlist",
                    Registrant.is_primary.is_(True),
                )
            )
        ).scalars().all()
    assert None not in rows
    assert sorted(rows) == list(range(1, len(rows) + 1))


async def test_concurrent_registrations_never_overbook():
    aid = await mk_activity(capacity=3)
    users = [await mk_user(f"U{i}") for i in range(10)]

    results = await _register_concurrently(aid, users)
    errors = [r for r in results if isinstance(r, Exception)]
    assert errors == []

    confirmed = [r for r in results if r.status == "confirmed"]
    waitlisted = [r for r in results if r.status == "waitlist"]
    assert len(confirmed) == 3
    assert len(waitlisted) == 7
    assert sorted(r.waitlist_pos for r in waitlisted) == list(range(1, 8))

    assert await counts(aid) == (3, 7)
    async with SessionLocal() as s:
        assert await count_units(s, aid) == (3, 7)
    await _waitlist_positions_contiguous(aid)


async def test_concurrent_withdrawals_promote_in_order():
    aid = await mk_activity(capacity=3)
    users = [await mk_user(f"U{i}") for i in range(6)]
    for u in users:
        async with SessionLocal() as s:
            await register(s, u, aid)

    async def leave(u):
        async with SessionLocal() as s:
            return await withdraw(s, u, aid)

    results = await asyncio.gather(*[leave(u) for u in users[:3]])
    promoted = sorted(uid for r in results for uid in r.promoted_user_ids)
    assert promoted == sorted(users[3:])
    assert await counts(aid) == (3, 0)
    await _waitlist_positions_contiguous(aid)


async def test_same_user_double_submit_registers_once():
    aid = await mk_activity(capacity=5)
    u = await mk_user("Twice")

    results = await _register_concurrently(aid, [u, u])
    ok = [r for r in results if not isinstance(r, Exception)]
    assert len(ok) == 1
    assert await counts(aid) == (1, 0)


async def test_two_invitees_accept_at_once():
    aid = await mk_activity(capacity=2, unit_type="teams")
    a, b, c = await mk_user("A"), await mk_user("B"), await mk_user("C")
    async with SessionLocal() as s:
        ab = await invite_teammate(s, a, b, aid)
        ac = await invite_teammate(s, a, c, aid)

    async def accept(uid, team_id):
        async with SessionLocal() as s:
            return await respond_to_invite(s, uid, team_id, accept=True)

    results = await asyncio.gather(accept(b, ab.team_id), accept(c, ac.team_id), return_exceptions=True)
    ok = [r for r in results if not isinstance(r, Exception)]
    stale = [r for r in results if isinstance(r, InviteNoLongerValid)]
    assert len(ok) == 1 and len(stale) == 1

    assert await counts(aid) == (1, 0)
    async with SessionLocal() as s:
        teams = (await s.execute(select(Team).where(Team.activity_id == aid))).scalars().all()
    assert len(teams) == 1 and teams[0].status == "confirmed"
