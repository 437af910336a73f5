from fastapi import APIRouter
from sqlalchemy import select, func

from ...db import db_health, SessionLocal
from ...models import Notification
from ...redis_client import redis_health

router = APIRouter(prefix="/health", tags=["health"])


async def _outbox_backlog() -> int | str:
    try:
        async with SessionLocal() as db:
            res = await db.execute(select(func.count()).select_from(Notification).where(Notification.sent_at.is_(None)))
            return int(res.scalar_one())
    except Exception:
        return "unknown"


@router.get("")
async def health():
    db_ok, redis_ok = await db_health(), await redis_health()
    status = "ok" if (db_ok and redis_ok) else "degraded"
    return {
        "status": status,
        "dependencies": {
            "database": db_ok,
            "redis": redis_ok,
        },
    }


@router.get("/readiness")
async def readiness():
    # the API itself can serve without Redis; only SSE and dispatch need it
    db_ok, redis_ok = await db_health(), await redis_health()
    return {"ready": bool(db_ok), "database": db_ok, "redis": redis_ok, "outbox": await _outbox_backlog()}


@router.get("/liveness")
async def liveness():
    return {"alive": True}
