import pytest
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError
from sqlalchemy.orm.exc import StaleDataError

from roster.services.tx import run_in_transaction, is_retryable
from roster.services.errors import CapacityConflict, InvariantViolation, NotRegistered, ResultCode
from roster.db import SessionLocal
from roster.services.registration import register, withdraw
from roster.services.teams import invite_teammate, respond_to_invite, leave_team
from roster.services import notifier
from roster.services import tx as tx_module
from tests.conftest import mk_user, mk_activity, counts, notifications_for

pytestmark = pytest.mark.asyncio


class _PgError(Exception):
    def __init__(self, sqlstate):
        super().__init__(f"sqlstate {sqlstate}")
        self.sqlstate = sqlstate


def test_retry_classification():
    assert is_retryable(StaleDataError("version mismatch"))
    assert is_retryable(DBAPIError("stmt", {}, _PgError("40001")))
    assert is_retryable(DBAPIError("stmt", {}, _PgError("40P01")))
    assert is_retryable(IntegrityError("stmt", {}, _PgError("23505")))
    assert is_retryable(IntegrityError("stmt", {}, Exception("UNIQUE constraint failed: registrants.user_id")))
    assert is_retryable(OperationalError("stmt", {}, Exception("database is locked")))

    assert not is_retryable(IntegrityError("stmt", {}, _PgError("23503")))   # foreign key
    assert not is_retryable(OperationalError("stmt", {}, Exception("no such table: x")))
    assert not is_retryable(ValueError("nope"))


async def test_conflict_retried_then_succeeds(db):
    calls = []

    async def fn(s):
        calls.append(1)
        if len(calls) == 1:
            raise StaleDataError("concurrent update")
        return "done"

    assert await run_in_transaction(db, fn, op="test") == "done"
    assert len(calls) == 2


async def test_exhausted_retries_raise_capacity_conflict(db):
    calls = []

    async def fn(s):
        calls.append(1)
        raise DBAPIError("stmt", {}, _PgError("40001"))

    with pytest.raises(CapacityConflict) as ei:
        await run_in_transaction(db, fn, op="test", max_attempts=3)
    assert len(calls) == 3
    assert ei.value.retryable is True
    assert ei.value.code is ResultCode.CAPACITY_CONFLICT


async def test_domain_errors_are_not_retried(db):
    calls = []

    async def fn(s):
        calls.append(1)
        raise NotRegistered()

    with pytest.raises(NotRegistered):
        await run_in_transaction(db, fn, op="test")
    assert len(calls) == 1


async def test_invariant_violation_is_fatal(db):
    calls = []

    async def fn(s):
        calls.append(1)
        raise InvariantViolation("counter drift")

    with pytest.raises(InvariantViolation):
        await run_in_transaction(db, fn, op="test")
    assert len(calls) == 1


def _fail_first_commit(db, monkeypatch) -> dict:
    """First commit hits a serialization failure, so the whole operation re-runs."""
    real_commit = db.commit
    state = {"commits": 0}

    async def flaky_commit():
        state["commits"] += 1
        if state["commits"] == 1:
            raise DBAPIError("COMMIT", {}, _PgError("40001"))
        await real_commit()

    monkeypatch.setattr(db, "commit", flaky_commit)
    return state


async def test_retried_register_writes_once(db, monkeypatch):
    aid = await mk_activity(capacity=2)
    u = await mk_user("U")

    state = _fail_first_commit(db, monkeypatch)
    res = await register(db, u, aid)
    assert state["commits"] == 2
    assert res.status == "confirmed"
    assert await counts(aid) == (1, 0)


async def test_verification_catches_drift(db, monkeypatch):
    aid = await mk_activity(capacity=2)
    u = await mk_user("U")
    monkeypatch.setattr(tx_module.S, "LEDGER_VERIFY", True)

    from roster.services import ledger

    real_reserve = ledger.try_reserve

    def double_reserve(s, activity):
        real_reserve(s, activity)
        return real_reserve(s, activity)

    monkeypatch.setattr("roster.services.registration.ledger.try_reserve", double_reserve)
    with pytest.raises(InvariantViolation):
        await register(db, u, aid)
    assert await counts(aid) == (0, 0)


async def test_retried_withdraw_notifies_promoted_once(db, monkeypatch):
    aid = await mk_activity(capacity=1)
    a, b = await mk_user("A"), await mk_user("B")
    async with SessionLocal() as s:
        await register(s, a, aid)
        await register(s, b, aid)

    state = _fail_first_commit(db, monkeypatch)
    res = await withdraw(db, a, aid)
    assert state["commits"] == 2
    assert res.promoted_user_ids == [b]

    assert len(await notifications_for(b, notifier.WAITLIST_PROMOTED)) == 1
    assert await notifications_for(a) == []
    assert await counts(aid) == (1, 0)


async def test_retried_team_leave_notifies_once(db, monkeypatch):
    aid = await mk_activity(capacity=1, unit_type="teams")
    a, b, c, d = await mk_user("A"), await mk_user("B"), await mk_user("C"), await mk_user("D")
    async with SessionLocal() as s:
        first = await invite_teammate(s, a, b, aid)
        await respond_to_invite(s, b, first.team_id, accept=True)
        second = await invite_teammate(s, c, d, aid)
        queued = await respond_to_invite(s, d, second.team_id, accept=True)
    assert queued.status == "waitlist"

    state = _fail_first_commit(db, monkeypatch)
    res = await leave_team(db, b, first.team_id)
    assert state["commits"] == 2
    assert sorted(res.promoted_user_ids) == sorted([c, d])

    for uid in (c, d):
        assert len(await notifications_for(uid, notifier.WAITLIST_PROMOTED)) == 1
    assert len(await notifications_for(a, notifier.PARTNER_LEFT)) == 1
    assert await counts(aid) == (1, 0)
