import os
import tempfile
import uuid
from datetime import datetime, timezone, timedelta

# Settings are read once, at first import; point them at a throwaway database
# unless the caller supplied one (e.g. a PostgreSQL DATABASE_URL).
os.environ.setdefault(
    "DATABASE_URL",
    f"sqlite+aiosqlite:///{os.path.join(tempfile.gettempdir(), f'roster-test-{os.getpid()}.db')}",
)
os.environ.setdefault("ENV", "test")
os.environ.setdefault("LEDGER_VERIFY", "true")
os.environ.setdefault("TX_RETRY_BASE_MS", "1")

import pytest_asyncio
from sqlalchemy import select

# IMPORTANT: import engine/SessionLocal only after config is loaded
from roster.db import engine, SessionLocal
from roster.models import Base, Activity, Registrant, Team, Notification, User
from roster.repos import activities as activities_repo


# Fresh schema before each test, on the SAME loop as the test function.
# Also DISPOSE the engine after each test so no pooled connection (bound to
# a previous loop) is reused by the next test.
@pytest_asyncio.fixture(autouse=True, loop_scope="function")
async def _db_clean():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    yield
    await engine.dispose()


@pytest_asyncio.fixture
async def db():
    async with SessionLocal() as s:
        yield s


# ---------- helpers ----------
# Each helper uses its own short-lived session: on SQLite every transaction
# holds the write lock, so nothing may stay open across service calls.
async def mk_user(name: str, *, email: str | None = None, is_admin: bool = False) -> uuid.UUID:
    async with SessionLocal() as s:
        u = User(name=name, email=email, is_admin=is_admin, profile={"displayName": name})
        s.add(u)
        await s.commit()
        return u.id


async def mk_activity(
    *, capacity: int, unit_type: str = "players", title: str = "game", starts_at_utc: datetime | None = None
) -> uuid.UUID:
    async with SessionLocal() as s:
        a = await activities_repo.create_activity(
            s,
            title=title,
            starts_at_utc=starts_at_utc or datetime.now(timezone.utc) + timedelta(days=2),
            capacity=capacity,
            unit_type=unit_type,
        )
        await s.commit()
        return a.id


async def counts(activity_id: uuid.UUID) -> tuple[int, int]:
    async with SessionLocal() as s:
        a = (await s.execute(select(Activity).where(Activity.id == activity_id))).scalar_one()
        return a.confirmed_count, a.waitlist_count


async def registrant(activity_id: uuid.UUID, user_id: uuid.UUID) -> Registrant | None:
    """Latest record for the user, cancelled or not."""
    async with SessionLocal() as s:
        res = await s.execute(
            select(Registrant)
            .where(Registrant.activity_id == activity_id, Registrant.user_id == user_id)
            .order_by(Registrant.id.desc())
            .limit(1)
        )
        return res.scalars().first()


async def team(team_id: int) -> Team | None:
    async with SessionLocal() as s:
        return (await s.execute(select(Team).where(Team.id == team_id))).scalar_one_or_none()


async def notifications_for(user_id: uuid.UUID, type: str | None = None) -> list[Notification]:
    async with SessionLocal() as s:
        q = select(Notification).where(Notification.recipient_id == user_id).order_by(Notification.id.asc())
        if type:
            q = q.where(Notification.type == type)
        return list((await s.execute(q)).scalars().all())
