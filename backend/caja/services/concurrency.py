# Overview: Unit of work, till locking and retry handling for every ledger mutation.

from __future__ import annotations

import time
from contextlib import contextmanager
from typing import Callable, TypeVar

from flask import current_app
from sqlalchemy import text, update
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import NoOpenTillError, TillBusyError, TillClosedError, TillConflictError, TillNotFoundError
from ..extensions import db
from ..models import Till, TILL_OPEN
"""
Caja Concurrency Invariants (authoritative)

- Every open/close/adjust/transact runs inside exactly one unit of work.
- The till row is locked BEFORE its state is read, and stays locked until
  the unit commits or rolls back.
- Lock waits are bounded (LOCK_TIMEOUT_SECONDS); contention is retried with
  exponential backoff and then surfaces as TillBusyError.
- Optimistic version conflicts surface as TillConflictError.
- Any exception rolls back every mutation of the unit. Retries start over
  from a clean session, so partial state is never committed.
- Different tills never lock each other.
"""

T = TypeVar("T")

_LOCK_ERROR_MARKERS = (
    "database is locked",
    "database table is locked",
    "lock timeout",
    "lock_timeout",
    "could not obtain lock",
    "deadlock",
)


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE; acquire_till compensates.
    """
    return query.with_for_update()


def is_lock_error(exc: OperationalError) -> bool:
    message = str(exc.orig if exc.orig is not None else exc).lower()
    return any(marker in message for marker in _LOCK_ERROR_MARKERS)


def run_with_retry(func: Callable[[], T], *, attempts: int = 3, backoff_base: float = 0.1) -> T:
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on lock-related OperationalError and StaleDataError (optimistic
    locking conflicts). Anything else is rolled back and re-raised at once.
    """
    last_exc = None
    for attempt in range(attempts):
        try:
            return func()
        except OperationalError as exc:
            db.session.rollback()
            if not is_lock_error(exc) or attempt >= attempts - 1:
                raise
            last_exc = exc
        except StaleDataError as exc:
            db.session.rollback()
            if attempt >= attempts - 1:
                raise
            last_exc = exc
        current_app.logger.info(
            "Retrying after concurrency conflict (attempt %s/%s): %s", attempt + 1, attempts, last_exc
        )
        time.sleep(backoff_base * (2 ** attempt))
    if last_exc:
        raise last_exc


@contextmanager
def unit_of_work():
    """Commit everything done inside the block, or roll all of it back."""
    try:
        yield db.session
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise


def _dialect_name() -> str:
    return db.session.get_bind().dialect.name


def bound_lock_wait() -> None:
    """
    Bound how long the current transaction waits for row locks.

    PostgreSQL waits forever by default, so SET LOCAL lock_timeout is issued
    for this transaction only. SQLite waits are already bounded by the
    connection timeout set in create_app.
    """
    if _dialect_name() == "postgresql":
        timeout_ms = int(current_app.config["LOCK_TIMEOUT_SECONDS"] * 1000)
        db.session.execute(text(f"SET LOCAL lock_timeout = '{timeout_ms}ms'"))


def _till_criteria(*, till_id: int | None, operator_id: int | None) -> list:
    if till_id is not None:
        criteria = [Till.id == till_id]
        if operator_id is not None:
            criteria.append(Till.operator_id == operator_id)
        return criteria
    return [Till.operator_id == operator_id, Till.state == TILL_OPEN]


def acquire_till(*, till_id: int | None = None, operator_id: int | None = None) -> Till | None:
    """
    Lock and load a till row: by id, or the operator's OPEN till.

    PostgreSQL: SELECT ... FOR UPDATE under SET LOCAL lock_timeout.
    SQLite: FOR UPDATE is ignored, so a no-op UPDATE on the row takes the
    database write lock first; the wait is bounded by the connection timeout.
    The row is then re-read so the state seen is the committed one.
    """
    if till_id is None and operator_id is None:
        raise ValueError("till_id or operator_id required")

    criteria = _till_criteria(till_id=till_id, operator_id=operator_id)
    dialect = _dialect_name()

    bound_lock_wait()
    if dialect == "sqlite":
        db.session.execute(
            update(Till)
            .where(*criteria)
            .values(state=Till.state)
            .execution_options(synchronize_session=False)
        )

    query = db.session.query(Till).filter(*criteria).order_by(Till.id.desc())
    return lock_for_update(query).populate_existing().first()


def run_in_till_scope(
    work: Callable[[Till], T],
    *,
    till_id: int | None = None,
    operator_id: int | None = None,
    require_open: bool = True,
) -> T:
    """
    Run work(till) as one atomic unit under an exclusive till lock.

    WHY: Lot consumption, balance deltas, movement appends and the
    transaction insert must all commit together or not at all, and two
    requests against the same till must never interleave.

    Raises:
        NoOpenTillError: operator has no OPEN till (lookup by operator)
        TillNotFoundError: till_id does not exist for this operator
        TillClosedError: till is CLOSED and require_open is set
        TillBusyError: lock not acquired within the bounded wait
        TillConflictError: optimistic version check failed on every attempt
    """
    def _op():
        with unit_of_work():
            till = acquire_till(till_id=till_id, operator_id=operator_id)
            if till is None:
                if till_id is not None:
                    raise TillNotFoundError(f"Till {till_id} not found")
                raise NoOpenTillError("No open till for this operator")
            if require_open and till.state != TILL_OPEN:
                raise TillClosedError(f"Till {till.id} is closed")
            return work(till)

    try:
        return run_with_retry(
            _op,
            attempts=current_app.config["LOCK_RETRY_ATTEMPTS"],
            backoff_base=current_app.config["LOCK_RETRY_BACKOFF"],
        )
    except OperationalError as exc:
        if is_lock_error(exc):
            raise TillBusyError("Till is busy, retry the operation") from exc
        raise
    except StaleDataError as exc:
        raise TillConflictError("Till was modified concurrently, retry the operation") from exc
