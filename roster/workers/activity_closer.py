from __future__ import annotations
import asyncio
import logging

from ..config import get_settings
from ..db import SessionLocal
from ..redis_client import redis
from ..services.activity_lifecycle import close_due_activities
from ..observability.heartbeat import beat
from ..observability.logging import setup_logging

S = get_settings()
log = logging.getLogger("worker.activity_closer")


def _lock_key() -> str: return "lock:activity_closer"


async def _acquire_lock() -> bool:
    # Only one instance performs the scan; others idle
    return await redis.set(_lock_key(), "1", ex=S.AUTO_CLOSE_LOCK_TTL_SEC, nx=True) is True


async def run_once() -> int:
    # Acquire short lock; if taken, just skip this tick
    if not await _acquire_lock():
        return 0
    async with SessionLocal() as db:
        closed = await close_due_activities(
            db, batch=S.AUTO_CLOSE_BATCH, grace_hours=S.AUTO_CLOSE_GRACE_HOURS
        )
    if closed:
        log.info("auto_closed", extra={"extra": f"count={len(closed)} ids={','.join(closed)}"})
    return len(closed)


async def run_forever():
    # heartbeat for ops
    hb = asyncio.create_task(beat("hb:activity_closer"))
    try:
        while True:
            try:
                await run_once()
            except Exception as e:
                log.exception("activity_closer error: %s", e)
            await asyncio.sleep(S.AUTO_CLOSE_INTERVAL_SEC)
    finally:
        hb.cancel()


def main():
    setup_logging()
    asyncio.run(run_forever())


if __name__ == "__main__":
    main()
