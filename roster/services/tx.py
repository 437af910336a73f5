from __future__ import annotations
import asyncio
import logging
import random
from typing import Awaitable, Callable, TypeVar

from sqlalchemy import text
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from ..config import get_settings
from ..observability.metrics import TX_RETRIES, TX_CONFLICTS
from .errors import RosterError, CapacityConflict, InvariantViolation
from .ledger import assert_consistent, reset_touched, touched_activities

S = get_settings()
log = logging.getLogger("roster.tx")

T = TypeVar("T")

# serialization_failure, deadlock_detected
_RETRY_SQLSTATES = {"40001", "40P01"}
_UNIQUE_VIOLATION = "23505"


async def begin_serializable_tx(db: AsyncSession) -> None:
    """
    Ensure we're not inside an active transaction, then start a new one where
    the very first statement is 'SET TRANSACTION ISOLATION LEVEL SERIALIZABLE'.
    On SQLite the engine's begin hook issues BEGIN IMMEDIATE instead.
    """
    # End any auto-begun tx from earlier reads on the same session (safe if none).
    if db.in_transaction():
        await db.rollback()
    reset_touched(db)

    if db.get_bind().dialect.name == "postgresql":
        # This execute will implicitly BEGIN a new tx; SET TRANSACTION is its first statement.
        await db.execute(text("SET TRANSACTION ISOLATION LEVEL SERIALIZABLE"))


def _sqlstate(exc: DBAPIError) -> str | None:
    orig = exc.orig
    return getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)


def is_retryable(exc: BaseException) -> bool:
    """True for errors caused by a concurrent commit rather than by this operation."""
    if isinstance(exc, StaleDataError):
        # versioned Activity row changed under us
        return True
    if not isinstance(exc, DBAPIError):
        return False
    code = _sqlstate(exc)
    if code in _RETRY_SQLSTATES:
        return True
    if isinstance(exc, IntegrityError):
        # a concurrent insert won the partial unique index; the re-run sees it
        return code == _UNIQUE_VIOLATION or "UNIQUE constraint failed" in str(exc.orig)
    if isinstance(exc, OperationalError):
        return "database is locked" in str(exc.orig)
    return False


def _backoff_sec(attempt: int) -> float:
    base = S.TX_RETRY_BASE_MS / 1000.0
    return base * (2 ** (attempt - 1)) * (0.5 + random.random())


async def run_in_transaction(
    db: AsyncSession,
    fn: Callable[[AsyncSession], Awaitable[T]],
    *,
    op: str,
    max_attempts: int | None = None,
) -> T:
    """Run ``fn`` in one serializable transaction and commit it.

    ``fn`` must do every decision-relevant read itself, since it is re-run
    from scratch after a conflict. Domain errors and invariant violations
    roll back and propagate on the first attempt. Conflicts are retried up to
    ``max_attempts`` times, then surface as ``CapacityConflict``.
    """
    attempts = max_attempts or S.TX_MAX_RETRIES
    for attempt in range(1, attempts + 1):
        await begin_serializable_tx(db)
        try:
            result = await fn(db)
            if S.LEDGER_VERIFY:
                for activity in touched_activities(db):
                    await assert_consistent(db, activity)
            await db.commit()
            return result
        except RosterError:
            await db.rollback()
            raise
        except InvariantViolation:
            await db.rollback()
            log.error("invariant_violation", extra={"extra": f"op={op} attempt={attempt}"}, exc_info=True)
            raise
        except (DBAPIError, StaleDataError) as exc:
            await db.rollback()
            if not is_retryable(exc):
                raise
            if attempt == attempts:
                break
            TX_RETRIES.labels(op=op).inc()
            log.warning("tx_conflict_retry", extra={"extra": f"op={op} attempt={attempt} error={type(exc).__name__}"})
            await asyncio.sleep(_backoff_sec(attempt))
        except Exception:
            await db.rollback()
            raise

    TX_CONFLICTS.labels(op=op).inc()
    log.warning("tx_conflict_exhausted", extra={"extra": f"op={op} attempts={attempts}"})
    raise CapacityConflict(f"{op}: too many concurrent updates, please try again")
