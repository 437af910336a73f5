from datetime import datetime, timezone, timedelta

import pytest
from sqlalchemy import select

from roster.db import SessionLocal
from roster.models import Activity, Registrant
from roster.services.registration import register, withdraw
from roster.services.errors import (
    ActivityClosed, ActivityNotFound, AlreadyRegistered, NotRegistered, ResultCode,
)
from roster.services.notifier import WAITLIST_PROMOTED
from tests.conftest import mk_user, mk_activity, counts, registrant, notifications_for

pytestmark = pytest.mark.asyncio


async def test_capacity_one_scenario(db):
    aid = await mk_activity(capacity=1)
    a = await mk_user("A")
    b = await mk_user("B")

    ra = await register(db, a, aid)
    assert ra.status == "confirmed" and ra.waitlist_pos is None
    assert await counts(aid) == (1, 0)

    rb = await register(db, b, aid)
    assert rb.status == "waitlist" and rb.waitlist_pos == 1
    assert await counts(aid) == (1, 1)

    res = await withdraw(db, a, aid)
    assert res.prior_status == "confirmed"
    assert res.promoted_user_ids == [b]
    assert await counts(aid) == (1, 0)

    reg_b = await registrant(aid, b)
    assert reg_b.status == "confirmed"
    assert reg_b.waitlist_pos is None
    assert reg_b.promoted_at is not None
    assert (await registrant(aid, a)).status == "cancelled"

    promoted = await notifications_for(b, WAITLIST_PROMOTED)
    assert len(promoted) == 1
    assert promoted[0].payload["activity_id"] == str(aid)
    # the one who left is not told anything
    assert await notifications_for(a) == []


async def test_withdraw_confirmed_with_empty_waitlist_opens_slot(db):
    aid = await mk_activity(capacity=2)
    a = await mk_user("A")
    b = await mk_user("B")
    await register(db, a, aid)
    await register(db, b, aid)
    assert await counts(aid) == (2, 0)

    res = await withdraw(db, a, aid)
    assert res.promoted_user_ids == []
    assert res.opened_slot is True
    assert await counts(aid) == (1, 0)


async def test_double_withdraw_is_rejected_without_counter_change(db):
    aid = await mk_activity(capacity=3)
    a = await mk_user("A")
    await register(db, a, aid)
    await withdraw(db, a, aid)
    before = await counts(aid)

    with pytest.raises(NotRegistered) as ei:
        await withdraw(db, a, aid)
    assert ei.value.code is ResultCode.NOT_REGISTERED
    assert await counts(aid) == before == (0, 0)


async def test_register_twice_rejected(db):
    aid = await mk_activity(capacity=1)
    a = await mk_user("A")
    await register(db, a, aid)
    with pytest.raises(AlreadyRegistered):
        await register(db, a, aid)
    assert await counts(aid) == (1, 0)


async def test_waitlist_withdraw_collapses_positions(db):
    aid = await mk_activity(capacity=1)
    users = [await mk_user(f"U{i}") for i in range(4)]
    for u in users:
        await register(db, u, aid)
    assert await counts(aid) == (1, 3)

    # middle of the queue leaves
    res = await withdraw(db, users[2], aid)
    assert res.prior_status == "waitlist"
    assert res.promoted_user_ids == []
    assert await counts(aid) == (1, 2)

    assert (await registrant(aid, users[1])).waitlist_pos == 1
    assert (await registrant(aid, users[3])).waitlist_pos == 2


async def test_reregister_recycles_cancelled_record(db):
    aid = await mk_activity(capacity=1)
    a = await mk_user("A")
    b = await mk_user("B")
    first = await register(db, a, aid)
    await withdraw(db, a, aid)
    await register(db, b, aid)

    again = await register(db, a, aid)
    assert again.registrant_id == first.registrant_id
    assert again.status == "waitlist" and again.waitlist_pos == 1

    async with SessionLocal() as s:
        rows = (
            await s.execute(select(Registrant).where(Registrant.activity_id == aid, Registrant.user_id == a))
        ).scalars().all()
    assert len(rows) == 1
    assert rows[0].cancelled_at is None


async def test_unknown_and_closed_activity(db):
    import uuid

    a = await mk_user("A")
    with pytest.raises(ActivityNotFound):
        await register(db, a, uuid.uuid4())

    aid = await mk_activity(capacity=1)
    async with SessionLocal() as s:
        act = (await s.execute(select(Activity).where(Activity.id == aid))).scalar_one()
        act.status = "closed"
        await s.commit()
    with pytest.raises(ActivityClosed):
        await register(db, a, aid)


async def test_zero_capacity_goes_straight_to_waitlist(db):
    aid = await mk_activity(capacity=0)
    a = await mk_user("A")
    res = await register(db, a, aid)
    assert res.status == "waitlist" and res.waitlist_pos == 1
    assert await counts(aid) == (0, 1)

    res = await withdraw(db, a, aid)
    assert await counts(aid) == (0, 0)


async def test_version_moves_with_counters(db):
    aid = await mk_activity(capacity=2)
    a = await mk_user("A")

    async with SessionLocal() as s:
        v0 = (await s.execute(select(Activity.version).where(Activity.id == aid))).scalar_one()
    await register(db, a, aid)
    async with SessionLocal() as s:
        v1 = (await s.execute(select(Activity.version).where(Activity.id == aid))).scalar_one()
    assert v1 > v0
