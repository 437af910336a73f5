import json

import pytest
from sqlalchemy import select

from roster.db import SessionLocal
from roster.models import Notification
from roster.services.registration import register, withdraw
from roster.workers.outbox_dispatcher import publish_once
from roster.redis_client import user_channel
from tests.conftest import mk_user, mk_activity

pytestmark = pytest.mark.asyncio


class FakePublisher:
    def __init__(self, fail_for: set[str] | None = None):
        self.sent: list[tuple[str, dict]] = []
        self.fail_for = fail_for or set()

    async def publish(self, channel: str, message: str):
        if channel in self.fail_for:
            raise ConnectionError("redis unavailable")
        self.sent.append((channel, json.loads(message)))
        return 1


async def _promote_one():
    aid = await mk_activity(capacity=1)
    a, b = await mk_user("A"), await mk_user("B")
    async with SessionLocal() as s:
        await register(s, a, aid)
        await register(s, b, aid)
        await withdraw(s, a, aid)
    return aid, a, b


async def _all_notifications() -> list[Notification]:
    async with SessionLocal() as s:
        return list((await s.execute(select(Notification).order_by(Notification.id))).scalars().all())


async def test_publish_marks_sent():
    aid, _, b = await _promote_one()
    pub = FakePublisher()

    async with SessionLocal() as s:
        assert await publish_once(s, publisher=pub) == 1

    [(channel, msg)] = pub.sent
    assert channel == user_channel(b)
    assert msg["type"] == "waitlist_promoted"
    assert msg["payload"]["activity_id"] == str(aid)

    [n] = await _all_notifications()
    assert n.sent_at is not None
    assert n.attempts == 1
    assert n.error is None

    # nothing left on the next pass
    async with SessionLocal() as s:
        assert await publish_once(s, publisher=pub) == 0
    assert len(pub.sent) == 1


async def test_failed_publish_is_retried_later():
    _, _, b = await _promote_one()
    down = FakePublisher(fail_for={user_channel(b)})

    async with SessionLocal() as s:
        assert await publish_once(s, publisher=down) == 0

    [n] = await _all_notifications()
    assert n.sent_at is None
    assert n.attempts == 1
    assert "redis unavailable" in n.error

    up = FakePublisher()
    async with SessionLocal() as s:
        assert await publish_once(s, publisher=up) == 1
    [n] = await _all_notifications()
    assert n.sent_at is not None
    assert n.attempts == 2
    assert n.error is None


async def test_batch_limit():
    aid = await mk_activity(capacity=1)
    users = [await mk_user(f"U{i}") for i in range(4)]
    async with SessionLocal() as s:
        for u in users:
            await register(s, u, aid)
        # each withdrawal of the confirmed player promotes the next in line
        for u in users[:3]:
            await withdraw(s, u, aid)

    pub = FakePublisher()
    async with SessionLocal() as s:
        assert await publish_once(s, publisher=pub, batch=2) == 2
    async with SessionLocal() as s:
        assert await publish_once(s, publisher=pub, batch=2) == 1
    assert [m["id"] for _, m in pub.sent] == sorted(m["id"] for _, m in pub.sent)
