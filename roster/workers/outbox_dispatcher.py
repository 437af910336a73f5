from __future__ import annotations
import asyncio
import json
import logging
from datetime import datetime, timezone

from sqlalchemy.ext.asyncio import AsyncSession

from ..config import get_settings
from ..db import SessionLocal
from ..models import Notification
from ..repos.notifications import list_unsent_for_update
from ..redis_client import redis, user_channel
from ..observability.heartbeat import beat
from ..observability.logging import setup_logging
from ..observability.metrics import NOTIFICATIONS_SENT

S = get_settings()
log = logging.getLogger("worker.outbox_dispatcher")

SLEEP_EMPTY = 1.0  # seconds
SLEEP_ERROR = 2.0


def _message(n: Notification) -> dict:
    return {
        "id": n.id,
        "type": n.type,
        "payload": n.payload,
        "created_at": n.created_at.isoformat() if n.created_at else None,
    }


async def publish_once(db: AsyncSession, *, publisher=None, batch: int | None = None) -> int:
    """Publish committed, unsent notifications to each recipient's channel.

    Rows are locked with SKIP LOCKED so several dispatchers can run side by
    side. A failed publish bumps ``attempts`` and keeps ``sent_at`` NULL, so
    the row is retried on a later pass.
    """
    publisher = publisher or redis
    rows = await list_unsent_for_update(db, limit=batch or S.OUTBOX_BATCH)
    if not rows:
        await db.rollback()
        return 0

    count = 0
    for n in rows:
        n.attempts = (n.attempts or 0) + 1
        try:
            await publisher.publish(user_channel(n.recipient_id), json.dumps(_message(n)))
            n.sent_at = datetime.now(timezone.utc)
            n.error = None
            count += 1
        except Exception as e:
            n.error = str(e)
            log.warning("publish_failed", extra={"extra": f"notification_id={n.id} attempts={n.attempts} error={e}"})
    await db.commit()
    if count:
        NOTIFICATIONS_SENT.inc(count)
    return count


async def run_forever():
    while True:
        try:
            async with SessionLocal() as db:
                sent = await publish_once(db)
            await asyncio.sleep(SLEEP_EMPTY if sent == 0 else 0.05)
        except Exception:
            log.exception("outbox_dispatcher error")
            await asyncio.sleep(SLEEP_ERROR)


async def amain():
    setup_logging()
    # start heartbeat as a background task
    hb = asyncio.create_task(beat("hb:outbox_dispatcher:global"))
    try:
        await run_forever()
    finally:
        hb.cancel()


def main():
    asyncio.run(amain())


if __name__ == "__main__":
    main()
